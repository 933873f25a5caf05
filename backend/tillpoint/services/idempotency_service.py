# Overview: Idempotency guard; at most one monetary effect per client-supplied checkout key.

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import PosError, Unavailable, ValidationError, error_from_record
from ..extensions import db
from ..models import IdempotencyRecord, Transaction
from ..models.audit import IDEMPOTENCY_FAILED, IDEMPOTENCY_PENDING, IDEMPOTENCY_SUCCEEDED
from ..time_utils import normalize_utc, utcnow
"""
Idempotency guard protocol:

1. A live record for (store, cashier, key) short-circuits:
   SUCCEEDED -> the stored transaction is returned (replayed=True), fn is not called.
   FAILED    -> the recorded error is raised again with the same code/message/details.
   Expired records are deleted and the key counts as unseen.
2. Otherwise the key is claimed by inserting a PENDING record and flushing.
   The unique index makes a concurrent claimant wait on / collide with it.
3. fn runs in the same DB transaction and only flushes.
4. The record is marked SUCCEEDED and everything commits ONCE, so the
   checkout and its record are durable together or not at all.
5. IntegrityError while claiming or committing means another request won the
   key: roll back, re-read, replay its committed outcome. If nothing is
   visible yet the caller gets Unavailable and retries later.

Recordable PosErrors (validation, not found, stock/pricing conflicts) are
stored as FAILED after the rollback. Precondition errors the client can fix
(no open shift, role) and infrastructure errors are not stored.
"""


logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 128


@dataclass(frozen=True)
class GuardedResult:
    value: Any
    replayed: bool


def normalize_key(key) -> str:
    if not isinstance(key, str) or not key.strip():
        raise ValidationError("idempotency_key is required")
    key = key.strip()
    if len(key) > MAX_KEY_LENGTH:
        raise ValidationError(f"idempotency_key must be at most {MAX_KEY_LENGTH} characters")
    return key


def ttl() -> timedelta:
    hours = int(current_app.config.get("IDEMPOTENCY_TTL_HOURS", 24))
    return timedelta(hours=max(1, hours))


def _is_expired(record: IdempotencyRecord, now: datetime) -> bool:
    return normalize_utc(record.expires_at) <= now


def _find_record(key: str, store_id: int, cashier_id: int) -> IdempotencyRecord | None:
    return (
        db.session.query(IdempotencyRecord)
        .filter_by(key=key, store_id=store_id, cashier_id=cashier_id)
        .first()
    )


def _replay(record: IdempotencyRecord) -> GuardedResult:
    if record.status == IDEMPOTENCY_FAILED:
        logger.info("Replaying recorded failure %s for key %r", record.error_code, record.key)
        raise error_from_record(record.error_code, record.error_message, record.error_details)

    if record.status == IDEMPOTENCY_SUCCEEDED and record.transaction_id is not None:
        transaction = db.session.get(Transaction, record.transaction_id)
        if transaction is not None:
            logger.info("Replaying transaction %s for key %r", transaction.id, record.key)
            return GuardedResult(transaction, True)

    # PENDING is never committed; seeing it means a concurrent unit is mid-flight
    raise Unavailable("A request with this key is still in progress; retry", details={"key": record.key})


def _replay_after_conflict(key: str, store_id: int, cashier_id: int, now: datetime) -> GuardedResult:
    record = _find_record(key, store_id, cashier_id)
    if record is None or _is_expired(record, now):
        raise Unavailable("A request with this key is still in progress; retry", details={"key": key})
    return _replay(record)


def _record_failure(key: str, store_id: int, cashier_id: int, exc: PosError, now: datetime) -> None:
    stale = _find_record(key, store_id, cashier_id)
    if stale is not None:
        if not _is_expired(stale, now):
            return
        db.session.delete(stale)
        db.session.flush()

    db.session.add(IdempotencyRecord(
        key=key,
        store_id=store_id,
        cashier_id=cashier_id,
        status=IDEMPOTENCY_FAILED,
        error_code=exc.code,
        error_message=exc.message[:255],
        error_details=exc.details or {},
        created_at=now,
        expires_at=now + ttl(),
    ))
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent request recorded its own outcome first; keep it
        db.session.rollback()


def execute(
    key: str,
    store_id: int,
    cashier_id: int,
    fn: Callable[[], Any],
    *,
    now: datetime | None = None,
) -> GuardedResult:
    """
    Run fn at most once per (store_id, cashier_id, key).

    fn must write through db.session without committing and return an object
    with an `id` and a `to_dict()` (the Transaction it created).
    """
    key = normalize_key(key)
    now = normalize_utc(now) if now is not None else utcnow()

    existing = _find_record(key, store_id, cashier_id)
    if existing is not None:
        if not _is_expired(existing, now):
            return _replay(existing)
        db.session.delete(existing)
        db.session.flush()

    record = IdempotencyRecord(
        key=key,
        store_id=store_id,
        cashier_id=cashier_id,
        status=IDEMPOTENCY_PENDING,
        created_at=now,
        expires_at=now + ttl(),
    )
    db.session.add(record)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        return _replay_after_conflict(key, store_id, cashier_id, now)

    try:
        value = fn()
    except PosError as exc:
        db.session.rollback()
        if exc.recordable:
            _record_failure(key, store_id, cashier_id, exc, now)
        raise
    except Exception:
        db.session.rollback()
        raise

    record.status = IDEMPOTENCY_SUCCEEDED
    record.transaction_id = value.id
    record.response = value.to_dict()
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return _replay_after_conflict(key, store_id, cashier_id, now)

    return GuardedResult(value, False)


def lookup(key: str, store_id: int, cashier_id: int, *, now: datetime | None = None) -> IdempotencyRecord | None:
    """Live record for a key, for terminals recovering after a timeout."""
    key = normalize_key(key)
    now = normalize_utc(now) if now is not None else utcnow()
    record = _find_record(key, store_id, cashier_id)
    if record is None or _is_expired(record, now):
        return None
    return record


def purge_expired(now: datetime | None = None) -> int:
    now = normalize_utc(now) if now is not None else utcnow()
    deleted = (
        db.session.query(IdempotencyRecord)
        .filter(IdempotencyRecord.expires_at <= now)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    logger.info("Purged %d expired idempotency records", deleted)
    return int(deleted or 0)

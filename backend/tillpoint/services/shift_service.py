# Overview: Shift state machine and cash-drawer event log; gates every monetary operation.

from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..actor import Actor
from ..errors import Forbidden, NotFound, ShiftAlreadyOpen, ShiftClosed, ShiftNotOpen, ValidationError
from ..extensions import db
from ..models import DrawerEvent, Refund, Shift, Transaction
from ..models.shifts import SHIFT_CLOSED, SHIFT_OPEN
from ..models.transactions import TX_COMPLETED, TX_REFUNDED, TX_VOIDED
from ..time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_with_retry
"""
Shift invariants:

- At most one OPEN shift per (cashier, store). The service checks first; the
  uq_shifts_one_open constraint is the backstop for concurrent openers.
- CLOSED is terminal. A closed shift accepts no drawer events.
- expected_cash = opening_cash + sum of cash-affecting drawer movements.
  SHIFT_OPEN/SHIFT_CLOSE carry counts, not movements, and never enter the sum.
- variance = counted closing cash - expected_cash. It is recorded, never
  rejected.
- There is no process-wide "current shift": callers look the shift up by
  (cashier, store) every time.
"""


logger = logging.getLogger(__name__)

EVENT_SHIFT_OPEN = "SHIFT_OPEN"
EVENT_CASH_IN = "CASH_IN"
EVENT_CASH_OUT = "CASH_OUT"
EVENT_SALE = "SALE"
EVENT_REFUND = "REFUND"
EVENT_VOID = "VOID"
EVENT_SHIFT_CLOSE = "SHIFT_CLOSE"

MANUAL_EVENT_TYPES = {EVENT_CASH_IN, EVENT_CASH_OUT}
TRANSACTION_EVENT_TYPES = {EVENT_SALE, EVENT_REFUND, EVENT_VOID}
COUNT_EVENT_TYPES = {EVENT_SHIFT_OPEN, EVENT_SHIFT_CLOSE}
DRAWER_EVENT_TYPES = MANUAL_EVENT_TYPES | TRANSACTION_EVENT_TYPES | COUNT_EVENT_TYPES


def _require_cents(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer number of cents")
    if value < 0:
        raise ValidationError(f"{name} must be >= 0")
    return value


def get_open_shift(cashier_id: int, store_id: int) -> Shift | None:
    return (
        db.session.query(Shift)
        .filter_by(cashier_id=cashier_id, store_id=store_id, status=SHIFT_OPEN)
        .first()
    )


def require_open_shift(cashier_id: int, store_id: int) -> Shift:
    """The open shift for (cashier, store), or ShiftNotOpen."""
    shift = get_open_shift(cashier_id, store_id)
    if shift is None:
        raise ShiftNotOpen(
            "Open a shift before taking payments",
            details={"cashier_id": cashier_id, "store_id": store_id},
        )
    return shift


def get_shift(shift_id: int, store_id: int | None = None, *, lock: bool = False) -> Shift:
    query = db.session.query(Shift).filter_by(id=shift_id)
    if lock:
        query = lock_for_update(query)
    shift = query.first()
    if shift is None or (store_id is not None and shift.store_id != store_id):
        raise NotFound("Shift not found", details={"shift_id": shift_id})
    return shift


def compute_expected_cash_cents(shift: Shift) -> int:
    movements = (
        db.session.query(func.coalesce(func.sum(DrawerEvent.amount_cents), 0))
        .filter(
            DrawerEvent.shift_id == shift.id,
            DrawerEvent.affects_cash.is_(True),
            DrawerEvent.event_type.notin_(COUNT_EVENT_TYPES),
        )
        .scalar()
    )
    return (shift.opening_cash_cents or 0) + int(movements or 0)


def _add_drawer_event(
    shift: Shift,
    *,
    event_type: str,
    amount_cents: int,
    actor_id: int,
    affects_cash: bool = True,
    transaction_id: int | None = None,
    reason: str | None = None,
) -> DrawerEvent:
    event = DrawerEvent(
        shift_id=shift.id,
        store_id=shift.store_id,
        actor_id=actor_id,
        event_type=event_type,
        amount_cents=amount_cents,
        affects_cash=affects_cash,
        transaction_id=transaction_id,
        reason=reason,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    db.session.flush()
    return event


def open_shift(actor: Actor, opening_cash_cents: int, terminal_id: str | None = None) -> Shift:
    """
    Open a shift for the acting cashier in the actor's store.

    Raises:
        ValidationError: negative or non-integer opening float
        ShiftAlreadyOpen: the cashier already has an open shift in this store
    """
    opening_cash_cents = _require_cents(opening_cash_cents, "opening_cash_cents")

    def _op() -> Shift:
        existing = get_open_shift(actor.actor_id, actor.store_id)
        if existing is not None:
            raise ShiftAlreadyOpen(details={"shift_id": existing.id})

        shift = Shift(
            store_id=actor.store_id,
            cashier_id=actor.actor_id,
            terminal_id=terminal_id,
            status=SHIFT_OPEN,
            open_slot=1,
            opening_cash_cents=opening_cash_cents,
            opened_at=utcnow(),
        )
        db.session.add(shift)
        try:
            db.session.flush()
        except IntegrityError:
            # A concurrent opener committed first
            db.session.rollback()
            raise ShiftAlreadyOpen(details={"cashier_id": actor.actor_id, "store_id": actor.store_id})

        _add_drawer_event(
            shift,
            event_type=EVENT_SHIFT_OPEN,
            amount_cents=opening_cash_cents,
            actor_id=actor.actor_id,
            reason="Shift opened",
        )
        append_audit_event(
            store_id=shift.store_id,
            action="shift.opened",
            entity_type="shift",
            entity_id=shift.id,
            actor=actor,
            detail={"opening_cash_cents": opening_cash_cents, "terminal_id": terminal_id},
        )
        db.session.commit()
        return shift

    shift = run_with_retry(_op)
    logger.info("Shift %s opened for cashier %s in store %s", shift.id, shift.cashier_id, shift.store_id)
    return shift


def close_shift(shift_id: int, closing_cash_cents: int, actor: Actor, notes: str | None = None) -> Shift:
    """
    Close a shift, recording expected cash and variance.

    Closing someone else's shift needs an elevated role or a manager
    override. A second close raises ShiftClosed.
    """
    closing_cash_cents = _require_cents(closing_cash_cents, "closing_cash_cents")

    def _op() -> Shift:
        shift = get_shift(shift_id, actor.store_id, lock=True)
        if shift.status != SHIFT_OPEN:
            raise ShiftClosed(details={"shift_id": shift.id})
        if shift.cashier_id != actor.actor_id and not actor.is_elevated:
            raise Forbidden(
                "Only the shift owner can close this shift without a manager",
                details={"shift_id": shift.id},
            )

        expected = compute_expected_cash_cents(shift)
        variance = closing_cash_cents - expected

        shift.status = SHIFT_CLOSED
        shift.open_slot = None
        shift.closed_at = utcnow()
        shift.closed_by_id = actor.actor_id
        shift.closing_cash_cents = closing_cash_cents
        shift.expected_cash_cents = expected
        shift.variance_cents = variance
        shift.notes = notes

        _add_drawer_event(
            shift,
            event_type=EVENT_SHIFT_CLOSE,
            amount_cents=closing_cash_cents,
            actor_id=actor.actor_id,
            affects_cash=False,
            reason=f"Shift closed. Variance: {variance / 100:.2f}",
        )
        append_audit_event(
            store_id=shift.store_id,
            action="shift.closed",
            entity_type="shift",
            entity_id=shift.id,
            actor=actor,
            detail={
                "closing_cash_cents": closing_cash_cents,
                "expected_cash_cents": expected,
                "variance_cents": variance,
            },
        )
        db.session.commit()
        return shift

    shift = run_with_retry(_op)
    if shift.variance_cents:
        logger.warning("Shift %s closed with variance %s cents", shift.id, shift.variance_cents)
    return shift


def record_drawer_event(
    shift_id: int,
    kind: str,
    amount_cents: int,
    actor: Actor,
    reason: str | None = None,
    transaction_id: int | None = None,
    affects_cash: bool = True,
    *,
    commit: bool = True,
) -> DrawerEvent:
    """
    Append a drawer event to an OPEN shift.

    CASH_IN / CASH_OUT take a positive amount; CASH_OUT is stored negative.
    SALE / REFUND / VOID are written by the transaction lifecycle inside its
    own unit with commit=False and carry an already-signed amount.

    Raises:
        ValidationError: unknown kind or bad amount
        NotFound: shift missing or in another store
        ShiftClosed: shift is not open
        Forbidden: manual cash movement on another cashier's shift without a manager
    """
    if kind not in DRAWER_EVENT_TYPES or kind in COUNT_EVENT_TYPES:
        raise ValidationError(f"Unsupported drawer event '{kind}'")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError("amount_cents must be an integer number of cents")

    if kind in MANUAL_EVENT_TYPES:
        if amount_cents <= 0:
            raise ValidationError("amount_cents must be > 0")
        signed = amount_cents if kind == EVENT_CASH_IN else -amount_cents
    else:
        signed = amount_cents

    def _op() -> DrawerEvent:
        shift = get_shift(shift_id, actor.store_id, lock=commit)
        if shift.status != SHIFT_OPEN:
            raise ShiftClosed(details={"shift_id": shift.id})
        if kind in MANUAL_EVENT_TYPES and shift.cashier_id != actor.actor_id and not actor.is_elevated:
            raise Forbidden("Cash movements on another cashier's shift need a manager", details={"shift_id": shift.id})

        event = _add_drawer_event(
            shift,
            event_type=kind,
            amount_cents=signed,
            actor_id=actor.actor_id,
            affects_cash=affects_cash,
            transaction_id=transaction_id,
            reason=reason,
        )
        if kind in MANUAL_EVENT_TYPES:
            append_audit_event(
                store_id=shift.store_id,
                action=f"drawer.{kind.lower()}",
                entity_type="drawer_event",
                entity_id=event.id,
                actor=actor,
                detail={"shift_id": shift.id, "amount_cents": signed, "reason": reason},
            )
        if commit:
            db.session.commit()
        return event

    if not commit:
        return _op()
    return run_with_retry(_op)


def get_shift_summary(shift_id: int, store_id: int | None = None) -> dict:
    """
    Shift with its drawer log and sales figures.

    expected/variance are the recorded values once closed; while open,
    expected is computed live and variance is None.
    """
    shift = get_shift(shift_id, store_id)

    sales = (
        db.session.query(
            func.count(Transaction.id),
            func.coalesce(func.sum(Transaction.total_cents), 0),
        )
        .filter(
            Transaction.shift_id == shift.id,
            Transaction.status.in_([TX_COMPLETED, TX_REFUNDED]),
        )
        .one()
    )
    void_count = (
        db.session.query(func.count(Transaction.id))
        .filter(Transaction.shift_id == shift.id, Transaction.status == TX_VOIDED)
        .scalar()
    )
    refunds = (
        db.session.query(
            func.count(Refund.id),
            func.coalesce(func.sum(Refund.amount_cents), 0),
        )
        .filter(Refund.shift_id == shift.id)
        .one()
    )

    if shift.is_open:
        expected = compute_expected_cash_cents(shift)
        variance = None
    else:
        expected = shift.expected_cash_cents
        variance = shift.variance_cents

    return {
        "shift": shift.to_dict(),
        "drawer_events": [ev.to_dict() for ev in shift.drawer_events],
        "sale_count": int(sales[0] or 0),
        "sales_total_cents": int(sales[1] or 0),
        "void_count": int(void_count or 0),
        "refund_count": int(refunds[0] or 0),
        "refunds_total_cents": int(refunds[1] or 0),
        "expected_cash_cents": expected,
        "variance_cents": variance,
        "is_closed": not shift.is_open,
    }

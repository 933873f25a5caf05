from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


IDEMPOTENCY_PENDING = "PENDING"
IDEMPOTENCY_SUCCEEDED = "SUCCEEDED"
IDEMPOTENCY_FAILED = "FAILED"


class IdempotencyRecord(db.Model):
    """
    Outcome of a checkout attempt, keyed by the client's idempotency key.

    The key is scoped per (store_id, cashier_id). The unique constraint is
    what linearizes concurrent duplicates: the first request claims the key
    inside its checkout unit, any other insert of the same key collides.

    STATES:
    - PENDING: claimed by an in-flight unit (never visible once committed)
    - SUCCEEDED: transaction_id and response hold the result
    - FAILED: error_code/error_message/error_details hold the recorded failure
    """
    __tablename__ = "idempotency_records"
    __table_args__ = (
        db.UniqueConstraint("store_id", "cashier_id", "key", name="uq_idempotency_scope_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False)
    store_id = db.Column(db.Integer, nullable=False)
    cashier_id = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=IDEMPOTENCY_PENDING)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)
    response = db.Column(db.JSON, nullable=True)

    error_code = db.Column(db.String(64), nullable=True)
    error_message = db.Column(db.String(255), nullable=True)
    error_details = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "store_id": self.store_id,
            "cashier_id": self.cashier_id,
            "status": self.status,
            "transaction_id": self.transaction_id,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
        }


class AuditEvent(db.Model):
    """
    Append-only audit trail for monetary and shift actions.

    Written inside the same DB transaction as the change it records, so an
    event exists if and only if its change committed.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_store_occurred", "store_id", "occurred_at"),
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, nullable=False)
    actor_id = db.Column(db.Integer, nullable=True)
    actor_role = db.Column(db.String(16), nullable=True)

    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    detail = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "detail": self.detail or {},
            "occurred_at": to_utc_z(self.occurred_at),
        }


class DocumentSequence(db.Model):
    """Per-store counters for human-readable document numbers."""
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("store_id", "document_type", name="uq_doc_sequences_store_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)

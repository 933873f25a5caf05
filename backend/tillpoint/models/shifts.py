from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SHIFT_OPEN = "OPEN"
SHIFT_CLOSED = "CLOSED"


class Shift(db.Model):
    """
    Cashier shift: the period during which a cashier may move money.

    LIFECYCLE:
    - OPEN: transactions, refunds and drawer events may be recorded
    - CLOSED: cash counted, variance recorded; immutable afterwards

    ONE OPEN SHIFT: open_slot is 1 while OPEN and NULL once CLOSED. The unique
    constraint over (store_id, cashier_id, open_slot) lets any number of closed
    shifts coexist (NULLs never collide) but rejects a second open shift for
    the same cashier and store at the database, even across processes.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.UniqueConstraint("store_id", "cashier_id", "open_slot", name="uq_shifts_one_open"),
        db.Index("ix_shifts_store_cashier_status", "store_id", "cashier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, nullable=False, index=True)
    cashier_id = db.Column(db.Integer, nullable=False, index=True)
    terminal_id = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SHIFT_OPEN, index=True)
    open_slot = db.Column(db.Integer, nullable=True, default=1)

    # Cash tracking (all amounts in cents)
    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_cash_cents = db.Column(db.Integer, nullable=True)
    expected_cash_cents = db.Column(db.Integer, nullable=True)  # opening + net cash movements
    variance_cents = db.Column(db.Integer, nullable=True)  # closing - expected

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by_id = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SHIFT_OPEN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "cashier_id": self.cashier_id,
            "terminal_id": self.terminal_id,
            "status": self.status,
            "opening_cash_cents": self.opening_cash_cents,
            "closing_cash_cents": self.closing_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "variance_cents": self.variance_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "closed_by_id": self.closed_by_id,
            "notes": self.notes,
        }


class DrawerEvent(db.Model):
    """
    Cash drawer event log for a shift.

    EVENT TYPES:
    - SHIFT_OPEN: opening float (amount = counted float)
    - CASH_IN / CASH_OUT: manual float top-up / removal
    - SALE: checkout (amount = +grand total)
    - REFUND: refund cash-out (amount = -refund)
    - VOID: compensating entry for a voided sale (amount = -grand total)
    - SHIFT_CLOSE: final count (amount = counted cash)

    amount_cents is the signed effect on the drawer. SHIFT_OPEN and SHIFT_CLOSE
    carry counts, not movements. affects_cash is False for card/QRIS/transfer
    tenders: they are logged for the audit trail but do not change the
    expected cash.
    """
    __tablename__ = "drawer_events"
    __table_args__ = (
        db.Index("ix_drawer_events_shift_occurred", "shift_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, nullable=False, index=True)
    actor_id = db.Column(db.Integer, nullable=False)

    event_type = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    affects_cash = db.Column(db.Boolean, nullable=False, default=True)

    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    shift = db.relationship(
        "Shift",
        backref=db.backref("drawer_events", lazy=True, order_by="DrawerEvent.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "store_id": self.store_id,
            "actor_id": self.actor_id,
            "event_type": self.event_type,
            "amount_cents": self.amount_cents,
            "affects_cash": self.affects_cash,
            "transaction_id": self.transaction_id,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }

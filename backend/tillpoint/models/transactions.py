from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TX_PENDING = "PENDING"
TX_COMPLETED = "COMPLETED"
TX_VOIDED = "VOIDED"
TX_REFUNDED = "REFUNDED"

PRICING_AUTO = "AUTO"
PRICING_MANUAL = "MANUAL"


class Transaction(db.Model):
    """
    Checkout transaction.

    LIFECYCLE:
    - PENDING: written inside the checkout unit, never visible after commit
    - COMPLETED: paid; immutable apart from status-transition fields
    - VOIDED: reversed in full within the void window (terminal)
    - REFUNDED: refunds reached total_cents (terminal)

    Partial refunds keep COMPLETED and grow refunded_cents.

    PRICING AUDIT: pricing_mode is MANUAL when an elevated actor replaced the
    computed discount/tax (pricing_note carries the override reason) or when
    the cashier keyed a discount (manual_discount_cents, also listed in
    applied_rules next to the automatic rule that fired).
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("store_id", "document_number", name="uq_transactions_store_docnum"),
        db.Index("ix_transactions_store_status_created", "store_id", "status", "created_at"),
        db.Index("ix_transactions_idempotency", "store_id", "cashier_id", "idempotency_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, nullable=False, index=True)
    document_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=TX_PENDING, index=True)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    manual_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    refunded_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    pricing_mode = db.Column(db.String(16), nullable=False, default=PRICING_AUTO)
    pricing_note = db.Column(db.String(255), nullable=True)
    applied_rules = db.Column(db.JSON, nullable=True)

    # Payment
    payment_method = db.Column(db.String(16), nullable=False)
    payment_reference = db.Column(db.String(128), nullable=True)
    cash_received_cents = db.Column(db.Integer, nullable=False, default=0)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    # Attribution
    cashier_id = db.Column(db.Integer, nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    terminal_id = db.Column(db.String(64), nullable=True)
    idempotency_key = db.Column(db.String(128), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Void audit trail
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)
    voided_by_id = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "TransactionLine",
        backref="transaction",
        lazy=True,
        order_by="TransactionLine.line_number",
    )
    shift = db.relationship("Shift")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def refundable_cents(self) -> int:
        return self.total_cents - (self.refunded_cents or 0)

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "document_number": self.document_number,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "manual_discount_cents": self.manual_discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "refunded_cents": self.refunded_cents,
            "tax_rate_percent": str(self.tax_rate_percent),
            "pricing_mode": self.pricing_mode,
            "pricing_note": self.pricing_note,
            "applied_rules": self.applied_rules or [],
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "cash_received_cents": self.cash_received_cents,
            "change_cents": self.change_cents,
            "cashier_id": self.cashier_id,
            "shift_id": self.shift_id,
            "terminal_id": self.terminal_id,
            "idempotency_key": self.idempotency_key,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "voided_by_id": self.voided_by_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class TransactionLine(db.Model):
    """
    Line item priced at time of sale.

    line_discount_cents and line_due_cents are the line's shares of the
    transaction discount and grand total; each sums exactly to its header
    total. Refund attribution consumes line_due_cents in line order.
    """
    __tablename__ = "transaction_lines"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "line_number", name="uq_transaction_lines_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)
    line_due_cents = db.Column(db.Integer, nullable=False)

    refunded_cents = db.Column(db.Integer, nullable=False, default=0)
    restocked_quantity = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_discount_cents": self.line_discount_cents,
            "line_total_cents": self.line_total_cents,
            "line_due_cents": self.line_due_cents,
            "refunded_cents": self.refunded_cents,
            "restocked_quantity": self.restocked_quantity,
        }


class Refund(db.Model):
    """
    Money returned against an original transaction (never against a refund).

    A transaction may collect several refunds; their sum never exceeds the
    transaction's total_cents.
    """
    __tablename__ = "refunds"
    __table_args__ = (
        db.UniqueConstraint("store_id", "document_number", name="uq_refunds_store_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, nullable=False, index=True)
    document_number = db.Column(db.String(64), nullable=False)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    cashier_id = db.Column(db.Integer, nullable=False)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("Transaction", backref=db.backref("refunds", lazy=True, order_by="Refund.id"))
    lines = db.relationship("RefundLine", backref="refund", lazy=True, order_by="RefundLine.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "document_number": self.document_number,
            "transaction_id": self.transaction_id,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "cashier_id": self.cashier_id,
            "shift_id": self.shift_id,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class RefundLine(db.Model):
    __tablename__ = "refund_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id"), nullable=False, index=True)
    transaction_line_id = db.Column(db.Integer, db.ForeignKey("transaction_lines.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    restocked_quantity = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "transaction_line_id": self.transaction_line_id,
            "product_id": self.product_id,
            "amount_cents": self.amount_cents,
            "restocked_quantity": self.restocked_quantity,
        }

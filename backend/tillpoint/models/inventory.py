from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Movement reasons
REASON_SALE = "SALE"
REASON_VOID_REVERSAL = "VOID_REVERSAL"
REASON_REFUND_REVERSAL = "REFUND_REVERSAL"
REASON_RECEIVE = "RECEIVE"
REASON_ADJUSTMENT = "ADJUSTMENT"

MOVEMENT_REASONS = {REASON_SALE, REASON_VOID_REVERSAL, REASON_REFUND_REVERSAL, REASON_RECEIVE, REASON_ADJUSTMENT}


class StockMovement(db.Model):
    """
    Append-only stock ledger.

    Quantity on hand is SUM(quantity_delta) per (store_id, product_id).
    Rows are never updated or deleted: a reversal is a new compensating row
    (VOID_REVERSAL, REFUND_REVERSAL), never a decrement undone in place.

    reference_type/reference_id point at the originating document:
    transaction (SALE, VOID_REVERSAL), refund (REFUND_REVERSAL),
    purchase_order (RECEIVE) or stock_count (ADJUSTMENT).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        # Covering index for derived stock reads
        db.Index("ix_stock_movements_store_product", "store_id", "product_id", "quantity_delta"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False, index=True)

    reference_type = db.Column(db.String(32), nullable=False)
    reference_id = db.Column(db.Integer, nullable=False)

    actor_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "quantity_delta": self.quantity_delta,
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "actor_id": self.actor_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class StockCount(db.Model):
    """
    Physical stock count (stock opname).

    Posting a count appends one ADJUSTMENT movement per product whose counted
    quantity differs from derived stock; adjustments keeps the per-product
    system/counted/delta figures as they were at posting time.
    """
    __tablename__ = "stock_counts"
    __table_args__ = (
        db.UniqueConstraint("store_id", "document_number", name="uq_stock_counts_store_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, nullable=False, index=True)
    document_number = db.Column(db.String(64), nullable=False)
    notes = db.Column(db.String(255), nullable=True)
    adjustments = db.Column(db.JSON, nullable=False)

    counted_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "document_number": self.document_number,
            "notes": self.notes,
            "adjustments": self.adjustments or [],
            "counted_by_id": self.counted_by_id,
            "created_at": to_utc_z(self.created_at),
        }

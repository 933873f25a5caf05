from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data, scoped to a store.

    STOCK: There is deliberately no quantity column. On-hand quantity is the
    sum of StockMovement.quantity_delta for (store_id, product_id).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("store_id", "sku", name="uq_products_store_sku"),
        db.Index("ix_products_store_active", "store_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)
    # Gross margin in basis points (2500 = 25%), used by upsell scoring
    margin_bps = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "margin_bps": self.margin_bps,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class DiscountRule(db.Model):
    """
    Automatic discount applied at checkout.

    KINDS:
    - PERCENT: percent of subtotal (half-up to the cent)
    - FLAT: fixed amount in cents

    A rule only applies when the cart subtotal reaches min_subtotal_cents.
    """
    __tablename__ = "discount_rules"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    kind = db.Column(db.String(16), nullable=False)
    percent = db.Column(db.Numeric(5, 2), nullable=True)
    flat_cents = db.Column(db.Integer, nullable=True)
    min_subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "kind": self.kind,
            "percent": str(self.percent) if self.percent is not None else None,
            "flat_cents": self.flat_cents,
            "min_subtotal_cents": self.min_subtotal_cents,
            "is_active": self.is_active,
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "created_at": to_utc_z(self.created_at),
        }


class PurchaseOrder(db.Model):
    """
    Purchase order from a supplier.

    LIFECYCLE:
    - OPEN: nothing received yet
    - PARTIAL: some lines have outstanding quantity
    - RECEIVED: every line fully received (terminal)
    - CANCELLED: closed without receiving (terminal)

    Receiving appends RECEIVE stock movements; it never edits a stock counter.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("store_id", "document_number", name="uq_purchase_orders_store_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    document_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)

    created_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_by_id = db.Column(db.Integer, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier", backref=db.backref("purchase_orders", lazy=True))
    lines = db.relationship(
        "PurchaseOrderLine",
        backref="purchase_order",
        lazy=True,
        order_by="PurchaseOrderLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "supplier_id": self.supplier_id,
            "document_number": self.document_number,
            "status": self.status,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
            "received_at": to_utc_z(self.received_at) if self.received_at else None,
            "received_by_id": self.received_by_id,
            "lines": [line.to_dict() for line in self.lines],
        }


class PurchaseOrderLine(db.Model):
    __tablename__ = "purchase_order_lines"
    __table_args__ = (
        db.UniqueConstraint("purchase_order_id", "product_id", name="uq_po_lines_po_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity_ordered = db.Column(db.Integer, nullable=False)
    quantity_received = db.Column(db.Integer, nullable=False, default=0)
    unit_cost_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")

    @property
    def quantity_outstanding(self) -> int:
        return self.quantity_ordered - (self.quantity_received or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity_ordered": self.quantity_ordered,
            "quantity_received": self.quantity_received,
            "quantity_outstanding": self.quantity_outstanding,
            "unit_cost_cents": self.unit_cost_cents,
        }

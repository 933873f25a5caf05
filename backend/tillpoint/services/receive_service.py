# Overview: Suppliers, purchase orders and receiving stock against them.

"""
Purchase Order Receiving

LIFECYCLE:
1. OPEN: created, nothing received
2. PARTIAL: some quantity received, some outstanding
3. RECEIVED: every line fully received (terminal)
4. CANCELLED: closed without receiving (terminal)

Receiving appends one RECEIVE stock movement per received line, referencing
the purchase order, and bumps quantity_received. It never edits a stock
counter. Creating and receiving purchase orders needs a manager or admin.
"""

from __future__ import annotations

import logging

from ..actor import Actor, require_elevated
from ..errors import InvalidTransition, NotFound, ValidationError
from ..extensions import db
from ..models import PurchaseOrder, PurchaseOrderLine, Supplier
from ..models.inventory import REASON_RECEIVE
from ..time_utils import utcnow
from ..validation import coerce_cents, coerce_int, optional_str, require_str
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import DOC_PURCHASE_ORDER, next_document_number
from .inventory_service import append_movement, lock_products


logger = logging.getLogger(__name__)

PO_OPEN = "OPEN"
PO_PARTIAL = "PARTIAL"
PO_RECEIVED = "RECEIVED"
PO_CANCELLED = "CANCELLED"
PO_STATUSES = (PO_OPEN, PO_PARTIAL, PO_RECEIVED, PO_CANCELLED)

LIST_LIMIT = 200

REFERENCE_PURCHASE_ORDER = "purchase_order"


def create_supplier(name: str, phone: str | None = None) -> Supplier:
    supplier = Supplier(
        name=require_str(name, "name", max_length=128),
        phone=optional_str(phone, "phone", max_length=32),
    )
    db.session.add(supplier)
    db.session.commit()
    return supplier


def list_suppliers(limit: int = LIST_LIMIT) -> list[Supplier]:
    return db.session.query(Supplier).order_by(Supplier.name.asc(), Supplier.id.asc()).limit(limit).all()


def list_purchase_orders(store_id: int, status: str | None = None, limit: int = LIST_LIMIT) -> list[PurchaseOrder]:
    """Newest purchase orders of a store, optionally filtered by status."""
    query = db.session.query(PurchaseOrder).filter(PurchaseOrder.store_id == store_id)
    if status:
        status = status.strip().upper()
        if status not in PO_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(PO_STATUSES)}", details={"status": status}
            )
        query = query.filter(PurchaseOrder.status == status)
    return query.order_by(PurchaseOrder.id.desc()).limit(limit).all()


def _parse_order_lines(lines) -> list[tuple[int, int, int]]:
    if not isinstance(lines, (list, tuple)) or not lines:
        raise ValidationError("Purchase order must have at least one line")
    parsed: list[tuple[int, int, int]] = []
    seen: set[int] = set()
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{index}] must be an object")
        product_id = coerce_int(raw.get("product_id"), f"lines[{index}].product_id")
        quantity = coerce_int(raw.get("quantity"), f"lines[{index}].quantity")
        unit_cost = coerce_cents(raw.get("unit_cost_cents", 0), f"lines[{index}].unit_cost_cents")
        if quantity <= 0:
            raise ValidationError("quantity must be > 0", details={"product_id": product_id})
        if product_id in seen:
            raise ValidationError("Duplicate product on purchase order", details={"product_id": product_id})
        seen.add(product_id)
        parsed.append((product_id, quantity, unit_cost))
    return parsed


def create_purchase_order(actor: Actor, supplier_id: int, lines) -> PurchaseOrder:
    """Create an OPEN purchase order for the actor's store."""
    require_elevated(actor, "Purchase orders")
    parsed = _parse_order_lines(lines)

    def _op() -> PurchaseOrder:
        supplier = db.session.get(Supplier, supplier_id)
        if supplier is None:
            raise NotFound("Supplier not found", details={"supplier_id": supplier_id})
        lock_products(actor.store_id, [product_id for product_id, _, _ in parsed], require_active=False)

        po = PurchaseOrder(
            store_id=actor.store_id,
            supplier_id=supplier.id,
            document_number=next_document_number(store_id=actor.store_id, document_type=DOC_PURCHASE_ORDER),
            status=PO_OPEN,
            created_by_id=actor.actor_id,
            created_at=utcnow(),
        )
        db.session.add(po)
        db.session.flush()

        for product_id, quantity, unit_cost in parsed:
            db.session.add(PurchaseOrderLine(
                purchase_order_id=po.id,
                product_id=product_id,
                quantity_ordered=quantity,
                quantity_received=0,
                unit_cost_cents=unit_cost,
            ))

        append_audit_event(
            store_id=po.store_id,
            action="purchase_order.created",
            entity_type="purchase_order",
            entity_id=po.id,
            actor=actor,
            detail={"document_number": po.document_number, "supplier_id": supplier.id, "line_count": len(parsed)},
        )
        db.session.commit()
        return po

    return run_with_retry(_op)


def receive_purchase_order(purchase_order_id: int, lines, actor: Actor) -> PurchaseOrder:
    """
    Receive stock against a purchase order.

    lines is a list of {"product_id", "quantity"}; None receives everything
    still outstanding.

    Raises:
        Forbidden: actor is not a manager/admin and has no override
        NotFound: purchase order missing or in another store
        InvalidTransition: order already RECEIVED or CANCELLED
        ValidationError: product not on the order, or more than outstanding
    """
    require_elevated(actor, "Receiving")

    requested: dict[int, int] | None = None
    if lines is not None:
        if not isinstance(lines, (list, tuple)) or not lines:
            raise ValidationError("lines must be a non-empty list")
        requested = {}
        for index, raw in enumerate(lines):
            if not isinstance(raw, dict):
                raise ValidationError(f"lines[{index}] must be an object")
            product_id = coerce_int(raw.get("product_id"), f"lines[{index}].product_id")
            quantity = coerce_int(raw.get("quantity"), f"lines[{index}].quantity")
            if quantity <= 0:
                raise ValidationError("quantity must be > 0", details={"product_id": product_id})
            requested[product_id] = requested.get(product_id, 0) + quantity

    def _op() -> PurchaseOrder:
        po = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=purchase_order_id)).first()
        if po is None or po.store_id != actor.store_id:
            raise NotFound("Purchase order not found", details={"purchase_order_id": purchase_order_id})
        if po.status in (PO_RECEIVED, PO_CANCELLED):
            raise InvalidTransition(
                f"Cannot receive a {po.status} purchase order",
                details={"purchase_order_id": po.id, "status": po.status},
            )

        by_product = {line.product_id: line for line in po.lines}
        if requested is None:
            receipt = {pid: line.quantity_outstanding for pid, line in by_product.items() if line.quantity_outstanding > 0}
        else:
            unknown = sorted(pid for pid in requested if pid not in by_product)
            if unknown:
                raise ValidationError("Product is not on this purchase order", details={"product_ids": unknown})
            over = [
                {"product_id": pid, "requested": qty, "outstanding": by_product[pid].quantity_outstanding}
                for pid, qty in sorted(requested.items())
                if qty > by_product[pid].quantity_outstanding
            ]
            if over:
                raise ValidationError("Received quantity exceeds outstanding quantity", details={"lines": over})
            receipt = requested

        if not receipt:
            raise InvalidTransition("Nothing outstanding on this purchase order", details={"purchase_order_id": po.id})

        lock_products(po.store_id, receipt.keys(), require_active=False)
        received_at = utcnow()
        for product_id in sorted(receipt):
            quantity = receipt[product_id]
            line = by_product[product_id]
            line.quantity_received = (line.quantity_received or 0) + quantity
            append_movement(
                store_id=po.store_id,
                product_id=product_id,
                quantity_delta=quantity,
                reason=REASON_RECEIVE,
                reference_type=REFERENCE_PURCHASE_ORDER,
                reference_id=po.id,
                actor_id=actor.actor_id,
                occurred_at=received_at,
            )

        fully_received = all(line.quantity_outstanding == 0 for line in po.lines)
        po.status = PO_RECEIVED if fully_received else PO_PARTIAL
        po.received_at = received_at
        po.received_by_id = actor.actor_id

        append_audit_event(
            store_id=po.store_id,
            action="purchase_order.received",
            entity_type="purchase_order",
            entity_id=po.id,
            actor=actor,
            detail={
                "document_number": po.document_number,
                "received": {str(pid): qty for pid, qty in sorted(receipt.items())},
                "status": po.status,
            },
            occurred_at=received_at,
        )
        db.session.commit()
        return po

    po = run_with_retry(_op)
    logger.info("Purchase order %s received (%s)", po.document_number, po.status)
    return po

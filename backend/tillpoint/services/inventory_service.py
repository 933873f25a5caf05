# Overview: Ledger-derived stock: quantity reads, product row locking, movement append.

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import func

from ..actor import Actor, require_elevated
from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Product, StockCount, StockMovement
from ..models.inventory import MOVEMENT_REASONS, REASON_ADJUSTMENT
from ..time_utils import utcnow
from ..validation import coerce_int, optional_str
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import DOC_STOCK_COUNT, next_document_number
"""
Stock invariants:

- Stock is never stored. On-hand quantity is SUM(quantity_delta) over
  StockMovement rows for (store_id, product_id).
- Movements are append-only. Sales write negative deltas; void/refund
  reversals and purchase-order receipts write positive ones. A stock count
  writes the signed difference between counted and derived quantity.
- Any unit that writes movements first locks the affected Product rows in
  ascending id order, then reads derived stock. Ordered locking keeps two
  checkouts sharing products from deadlocking and makes the
  read-check-write sequence atomic per product.
"""


logger = logging.getLogger(__name__)

REFERENCE_STOCK_COUNT = "stock_count"


def get_quantity_on_hand(store_id: int, product_id: int) -> int:
    q = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity_delta), 0)
    ).filter(
        StockMovement.store_id == store_id,
        StockMovement.product_id == product_id,
    )
    return int(q.scalar() or 0)


def get_stock_map(store_id: int, product_ids: Iterable[int] | None = None) -> dict[int, int]:
    """On-hand quantity per product; products without movements are omitted."""
    q = db.session.query(
        StockMovement.product_id,
        func.coalesce(func.sum(StockMovement.quantity_delta), 0),
    ).filter(StockMovement.store_id == store_id)
    if product_ids is not None:
        ids = list(product_ids)
        if not ids:
            return {}
        q = q.filter(StockMovement.product_id.in_(ids))
    rows = q.group_by(StockMovement.product_id).all()
    return {int(pid): int(qty or 0) for pid, qty in rows}


def lock_products(store_id: int, product_ids: Iterable[int], *, require_active: bool = True) -> dict[int, Product]:
    """
    Load and row-lock the given products in ascending id order.

    Unknown ids, products of another store and (by default) inactive products
    raise NotFound naming every offending id.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}

    query = db.session.query(Product).filter(Product.id.in_(ids)).order_by(Product.id.asc())
    products = {p.id: p for p in lock_for_update(query).all()}

    missing = [
        pid for pid in ids
        if pid not in products
        or products[pid].store_id != store_id
        or (require_active and not products[pid].is_active)
    ]
    if missing:
        raise NotFound("Unknown or inactive product", details={"product_ids": missing})
    return products


def append_movement(
    *,
    store_id: int,
    product_id: int,
    quantity_delta: int,
    reason: str,
    reference_type: str,
    reference_id: int,
    actor_id: int | None = None,
    occurred_at=None,
) -> StockMovement:
    """Append one movement inside the caller's unit (flush only)."""
    if reason not in MOVEMENT_REASONS:
        raise ValidationError(f"Unknown movement reason '{reason}'")
    if quantity_delta == 0:
        raise ValidationError("quantity_delta must be non-zero")

    movement = StockMovement(
        store_id=store_id,
        product_id=product_id,
        quantity_delta=quantity_delta,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        actor_id=actor_id,
        occurred_at=occurred_at,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def list_movements(store_id: int, *, product_id: int | None = None, reference_type: str | None = None,
                   reference_id: int | None = None) -> list[StockMovement]:
    query = db.session.query(StockMovement).filter(StockMovement.store_id == store_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if reference_type:
        query = query.filter(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(StockMovement.reference_id == reference_id)
    return query.order_by(StockMovement.id.asc()).all()


def create_product(
    *,
    store_id: int,
    sku: str,
    name: str,
    price_cents: int,
    margin_bps: int = 0,
    category: str | None = None,
) -> Product:
    sku = (sku or "").strip()
    name = (name or "").strip()
    if not sku:
        raise ValidationError("sku is required")
    if not name:
        raise ValidationError("name is required")
    if price_cents < 0:
        raise ValidationError("price_cents must be >= 0")
    if not 0 <= margin_bps <= 10000:
        raise ValidationError("margin_bps must be between 0 and 10000")

    existing = db.session.query(Product.id).filter_by(store_id=store_id, sku=sku).first()
    if existing:
        raise ValidationError(f"SKU '{sku}' already exists in this store", details={"sku": sku})

    product = Product(
        store_id=store_id,
        sku=sku,
        name=name,
        category=category,
        price_cents=price_cents,
        margin_bps=margin_bps,
        is_active=True,
    )
    db.session.add(product)
    db.session.commit()
    return product


def list_products(store_id: int, *, include_inactive: bool = False) -> list[dict]:
    """Products with their derived on-hand quantity."""
    query = db.session.query(Product).filter(Product.store_id == store_id)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    products = query.order_by(Product.id.asc()).all()
    stock = get_stock_map(store_id, [p.id for p in products])
    rows = []
    for p in products:
        row = p.to_dict()
        row["quantity_on_hand"] = stock.get(p.id, 0)
        rows.append(row)
    return rows


def _parse_counts(items) -> dict[int, int]:
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("Stock count must have at least one item")
    counts: dict[int, int] = {}
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = coerce_int(raw.get("product_id"), f"items[{index}].product_id")
        counted = coerce_int(raw.get("counted_quantity"), f"items[{index}].counted_quantity")
        if counted < 0:
            raise ValidationError("counted_quantity must be >= 0", details={"product_id": product_id})
        if product_id in counts:
            raise ValidationError("Product counted twice", details={"product_id": product_id})
        counts[product_id] = counted
    return counts


def post_stock_count(actor: Actor, items, notes: str | None = None) -> StockCount:
    """
    Post a physical count and bring derived stock in line with it.

    items is a list of {"product_id", "counted_quantity"}. Every product gets
    an adjustment row in the result; only products whose count differs from
    derived stock get an ADJUSTMENT movement.

    Raises:
        Forbidden: actor is not a manager/admin and has no override
        ValidationError: empty count, negative or duplicate entries
        NotFound: unknown product or product of another store
    """
    require_elevated(actor, "Stock counts")
    counts = _parse_counts(items)
    notes = optional_str(notes, "notes")

    def _op() -> StockCount:
        lock_products(actor.store_id, counts.keys(), require_active=False)
        on_hand = get_stock_map(actor.store_id, counts.keys())
        now = utcnow()

        adjustments = []
        for product_id in sorted(counts):
            system_quantity = on_hand.get(product_id, 0)
            adjustments.append({
                "product_id": product_id,
                "system_quantity": system_quantity,
                "counted_quantity": counts[product_id],
                "delta": counts[product_id] - system_quantity,
            })

        count = StockCount(
            store_id=actor.store_id,
            document_number=next_document_number(store_id=actor.store_id, document_type=DOC_STOCK_COUNT),
            notes=notes,
            adjustments=adjustments,
            counted_by_id=actor.actor_id,
            created_at=now,
        )
        db.session.add(count)
        db.session.flush()

        for row in adjustments:
            if row["delta"]:
                append_movement(
                    store_id=actor.store_id,
                    product_id=row["product_id"],
                    quantity_delta=row["delta"],
                    reason=REASON_ADJUSTMENT,
                    reference_type=REFERENCE_STOCK_COUNT,
                    reference_id=count.id,
                    actor_id=actor.actor_id,
                    occurred_at=now,
                )

        append_audit_event(
            store_id=actor.store_id,
            action="stock_count.posted",
            entity_type="stock_count",
            entity_id=count.id,
            actor=actor,
            detail={
                "document_number": count.document_number,
                "items": len(adjustments),
                "adjusted": sum(1 for row in adjustments if row["delta"]),
                "notes": notes,
            },
            occurred_at=now,
        )
        db.session.commit()
        return count

    count = run_with_retry(_op)
    logger.info("Stock count %s posted for store %s", count.document_number, count.store_id)
    return count

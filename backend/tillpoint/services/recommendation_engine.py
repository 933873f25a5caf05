# Overview: Upsell scoring over the store's co-purchase history.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import distinct, func, select

from ..extensions import db
from ..models import Product, Transaction, TransactionLine
from ..models.transactions import TX_COMPLETED
from .inventory_service import get_stock_map
from .pricing_service import round_half_up


AFFINITY_WEIGHT = 0.45
MARGIN_WEIGHT = 0.30
STOCK_WEIGHT = 0.25

MARGIN_SATURATION_BPS = 4000
STOCK_SATURATION_UNITS = 90
MIN_CONFIDENCE = 0.35

REASON_BOUGHT_TOGETHER = "often_bought_together"
REASON_HIGH_MARGIN = "high_margin_boost"
REASON_HEALTHY_STOCK = "healthy_stock"


@dataclass(frozen=True)
class Suggestion:
    product_id: int
    sku: str
    name: str
    price_cents: int
    expected_margin_lift_cents: int
    reason_code: str
    confidence: float

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "expected_margin_lift_cents": self.expected_margin_lift_cents,
            "reason_code": self.reason_code,
            "confidence": self.confidence,
        }


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _dominant_reason(affinity: float, margin: float, stock: float) -> str:
    # First listed wins a tie
    components = [
        (REASON_BOUGHT_TOGETHER, affinity),
        (REASON_HIGH_MARGIN, margin),
        (REASON_HEALTHY_STOCK, stock),
    ]
    return max(components, key=lambda c: c[1])[0]


def co_purchase_counts(store_id: int, product_ids: Iterable[int], at: datetime | None = None) -> tuple[int, dict[int, int]]:
    """
    (basket_count, {candidate_id: co_occurrences}).

    basket_count is the number of COMPLETED transactions containing any cart
    product; co_occurrences counts those that also contain the candidate.
    """
    cart = sorted(set(product_ids))
    baskets = (
        db.session.query(TransactionLine.transaction_id)
        .join(Transaction, Transaction.id == TransactionLine.transaction_id)
        .filter(
            Transaction.store_id == store_id,
            Transaction.status == TX_COMPLETED,
            TransactionLine.product_id.in_(cart),
        )
    )
    if at is not None:
        baskets = baskets.filter(Transaction.created_at <= at)
    baskets = baskets.distinct().subquery()

    basket_count = db.session.query(func.count()).select_from(baskets).scalar() or 0
    if not basket_count:
        return 0, {}

    rows = (
        db.session.query(
            TransactionLine.product_id,
            func.count(distinct(TransactionLine.transaction_id)),
        )
        .filter(
            TransactionLine.transaction_id.in_(select(baskets.c.transaction_id)),
            TransactionLine.product_id.notin_(cart),
        )
        .group_by(TransactionLine.product_id)
        .all()
    )
    return int(basket_count), {int(pid): int(n) for pid, n in rows}


def suggest_upsells(store_id: int, product_ids: Iterable[int], limit: int = 3, at: datetime | None = None) -> list[Suggestion]:
    """
    Rank products frequently bought with the cart.

    score = 0.45*affinity + 0.30*margin_score + 0.25*stock_score where
    affinity is the co-purchase rate, margin_score = margin_bps/4000 and
    stock_score = stock/90 (both clamped to [0, 1]). Candidates already in
    the cart, inactive or out of stock are skipped; scores below 0.35 are
    dropped; equal scores order by product id. `at` limits history to
    transactions created at or before it.
    """
    cart = set(product_ids)
    if not cart or limit <= 0:
        return []

    basket_count, co_counts = co_purchase_counts(store_id, cart, at)
    if not co_counts:
        return []

    candidates = (
        db.session.query(Product)
        .filter(
            Product.store_id == store_id,
            Product.is_active.is_(True),
            Product.id.in_(list(co_counts)),
        )
        .all()
    )
    stock = get_stock_map(store_id, [p.id for p in candidates])

    scored: list[tuple[float, int, Suggestion]] = []
    for product in candidates:
        on_hand = stock.get(product.id, 0)
        if on_hand <= 0:
            continue

        affinity = _clamp(co_counts[product.id] / basket_count)
        margin_score = _clamp((product.margin_bps or 0) / MARGIN_SATURATION_BPS)
        stock_score = _clamp(on_hand / STOCK_SATURATION_UNITS)
        score = AFFINITY_WEIGHT * affinity + MARGIN_WEIGHT * margin_score + STOCK_WEIGHT * stock_score
        if score < MIN_CONFIDENCE:
            continue

        suggestion = Suggestion(
            product_id=product.id,
            sku=product.sku,
            name=product.name,
            price_cents=product.price_cents,
            expected_margin_lift_cents=round_half_up(
                Decimal(product.price_cents) * Decimal(product.margin_bps or 0) / Decimal(10000)
            ),
            reason_code=_dominant_reason(affinity, margin_score, stock_score),
            confidence=round(score, 2),
        )
        scored.append((score, product.id, suggestion))

    scored.sort(key=lambda s: (-s[0], s[1]))
    return [s[2] for s in scored[:limit]]

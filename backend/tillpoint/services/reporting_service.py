# Overview: Service-layer reporting; daily sales summary and audit trail reads.

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Product, Refund, Transaction, TransactionLine
from ..models.transactions import TX_COMPLETED, TX_REFUNDED
from ..time_utils import to_utc_z, utcnow
from .audit_service import list_audit_events
from .pricing_service import round_half_up


DEFAULT_AUDIT_LIMIT = 100
MAX_AUDIT_LIMIT = 500


def _parse_day(value: str | None) -> date | None:
    if value is None or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError("date must be YYYY-MM-DD", details={"date": value})


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)


def daily_report(store_id: int, day: str | None = None) -> dict:
    """
    Sales summary for one UTC day (today when day is omitted).

    Only completed and refunded sales count; voided ones are left out. Refunds count on the day they
    were issued and come off net sales, which never goes below zero.
    """
    report_day = _parse_day(day) or utcnow().date()
    start, end = _day_bounds(report_day)

    in_window = (
        Transaction.store_id == store_id,
        Transaction.status.in_((TX_COMPLETED, TX_REFUNDED)),
        Transaction.created_at >= start,
        Transaction.created_at < end,
    )

    count, subtotal, discount, tax, total = db.session.query(
        func.count(Transaction.id),
        func.coalesce(func.sum(Transaction.subtotal_cents), 0),
        func.coalesce(func.sum(Transaction.discount_cents), 0),
        func.coalesce(func.sum(Transaction.tax_cents), 0),
        func.coalesce(func.sum(Transaction.total_cents), 0),
    ).filter(*in_window).one()

    refunded = db.session.query(func.coalesce(func.sum(Refund.amount_cents), 0)).filter(
        Refund.store_id == store_id,
        Refund.created_at >= start,
        Refund.created_at < end,
    ).scalar()

    # Margin is estimated on list price at time of sale
    margin_basis = db.session.query(
        func.coalesce(func.sum(TransactionLine.quantity * TransactionLine.unit_price_cents * Product.margin_bps), 0)
    ).join(Transaction, Transaction.id == TransactionLine.transaction_id).join(
        Product, Product.id == TransactionLine.product_id
    ).filter(*in_window).scalar()

    by_payment = db.session.query(
        Transaction.payment_method,
        func.count(Transaction.id),
        func.coalesce(func.sum(Transaction.total_cents), 0),
    ).filter(*in_window).group_by(Transaction.payment_method).order_by(Transaction.payment_method).all()

    by_terminal = db.session.query(
        Transaction.terminal_id,
        func.count(Transaction.id),
        func.coalesce(func.sum(Transaction.total_cents), 0),
    ).filter(*in_window).group_by(Transaction.terminal_id).order_by(Transaction.terminal_id).all()

    return {
        "store_id": store_id,
        "date": report_day.isoformat(),
        "transactions": int(count or 0),
        "gross_sales_cents": int(subtotal or 0),
        "discount_cents": int(discount or 0),
        "tax_cents": int(tax or 0),
        "refunded_cents": int(refunded or 0),
        "net_sales_cents": max(int(total or 0) - int(refunded or 0), 0),
        "estimated_margin_cents": round_half_up(Decimal(int(margin_basis or 0)) / Decimal(10000)),
        "by_payment": [
            {"payment_method": method, "transactions": int(n), "total_cents": int(cents)}
            for method, n, cents in by_payment
        ],
        "by_terminal": [
            {"terminal_id": terminal, "transactions": int(n), "total_cents": int(cents)}
            for terminal, n, cents in by_terminal
        ],
    }


def audit_trail(
    store_id: int,
    *,
    day: str | None = None,
    entity_type: str | None = None,
    action: str | None = None,
    limit: int = DEFAULT_AUDIT_LIMIT,
) -> dict:
    """Audit events newest first, for one UTC day or the last 24 hours."""
    report_day = _parse_day(day)
    if report_day is not None:
        start, end = _day_bounds(report_day)
    else:
        start, end = utcnow() - timedelta(hours=24), None
    limit = min(max(limit, 1), MAX_AUDIT_LIMIT)

    events = list_audit_events(
        store_id,
        entity_type=entity_type,
        action=action,
        start=start,
        end=end,
        limit=limit,
        newest_first=True,
    )
    return {
        "store_id": store_id,
        "start": to_utc_z(start),
        "end": to_utc_z(end) if end else None,
        "limit": limit,
        "events": [event.to_dict() for event in events],
    }

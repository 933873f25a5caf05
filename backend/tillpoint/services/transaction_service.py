# Overview: Transaction lifecycle; checkout, void and refund with their stock and drawer effects.

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..actor import Actor, require_elevated
from ..errors import (
    AlreadyVoided,
    InvalidTransition,
    NotFound,
    OutOfStock,
    PosError,
    RefundExceedsTotal,
    ValidationError,
    VoidWindowExpired,
)
from ..extensions import db
from ..models import DiscountRule, Refund, RefundLine, Transaction, TransactionLine
from ..models.inventory import REASON_REFUND_REVERSAL, REASON_SALE, REASON_VOID_REVERSAL
from ..models.transactions import TX_COMPLETED, TX_PENDING, TX_REFUNDED, TX_VOIDED
from ..time_utils import is_within_window, utcnow
from ..validation import PAYMENT_CASH, Payment, parse_cart, parse_override, parse_payment, require_str
from . import idempotency_service, recommendation_service
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import DOC_REFUND, DOC_TRANSACTION, next_document_number
from .inventory_service import append_movement, get_stock_map, lock_products
from .pricing_service import ManualOverride, PricedLine, PricingResult, compute_pricing
from .shift_service import EVENT_REFUND, EVENT_SALE, EVENT_VOID, record_drawer_event, require_open_shift
"""
Transaction lifecycle:

    PENDING -> COMPLETED -> VOIDED
                         -> REFUNDED

- PENDING only exists inside the checkout unit; a committed transaction is
  at least COMPLETED.
- VOIDED and REFUNDED are terminal. Partial refunds keep COMPLETED and grow
  refunded_cents.
- Every operation here is ONE atomic unit: rows, stock movements, drawer
  event, audit event (and for checkout the idempotency record) commit
  together or not at all.
- Stock is only ever changed by appending movements. A void appends one
  VOID_REVERSAL per line; a refund appends REFUND_REVERSAL only for units
  that were fully paid back.
"""


logger = logging.getLogger(__name__)

TRANSACTION_STATUSES = {TX_PENDING, TX_COMPLETED, TX_VOIDED, TX_REFUNDED}
VALID_TRANSITIONS = {
    (TX_PENDING, TX_COMPLETED),
    (TX_COMPLETED, TX_VOIDED),
    (TX_COMPLETED, TX_REFUNDED),
}

REFERENCE_TRANSACTION = "transaction"
REFERENCE_REFUND = "refund"


@dataclass(frozen=True)
class CheckoutResult:
    transaction: Transaction
    replayed: bool
    recommendations: dict | None = None

    def to_dict(self) -> dict:
        return {
            "transaction": self.transaction.to_dict(),
            "replayed": self.replayed,
            "recommendations": self.recommendations,
        }


@dataclass(frozen=True)
class RefundAllocation:
    line: TransactionLine
    amount_cents: int
    restock_quantity: int


def can_transition(from_status: str, to_status: str) -> bool:
    if from_status not in TRANSACTION_STATUSES or to_status not in TRANSACTION_STATUSES:
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(sorted(TRANSACTION_STATUSES))}"
        )
    return (from_status, to_status) in VALID_TRANSITIONS


def _transition(tx: Transaction, to_status: str) -> None:
    if not can_transition(tx.status, to_status):
        raise InvalidTransition(
            f"Cannot move transaction from {tx.status} to {to_status}",
            details={"transaction_id": tx.id, "status": tx.status},
        )
    tx.status = to_status


def _get_transaction_for_update(transaction_id: int, store_id: int) -> Transaction:
    query = db.session.query(Transaction).filter_by(id=transaction_id)
    tx = lock_for_update(query).first()
    if tx is None or tx.store_id != store_id:
        raise NotFound("Transaction not found", details={"transaction_id": transaction_id})
    return tx


def _tax_rate(tax_rate_percent) -> str:
    if tax_rate_percent is not None:
        return tax_rate_percent
    return current_app.config.get("DEFAULT_TAX_RATE_PERCENT", "0")


def _active_discount_rules(store_id: int) -> list[DiscountRule]:
    return (
        db.session.query(DiscountRule)
        .filter_by(store_id=store_id, is_active=True)
        .order_by(DiscountRule.id.asc())
        .all()
    )


def _validate_tender(payment: Payment, total_cents: int) -> tuple[int, int]:
    """(cash_received_cents, change_cents) for the tender, or ValidationError."""
    if payment.is_cash:
        if payment.cash_received_cents < total_cents:
            raise ValidationError(
                "Cash received is less than the total",
                details={"total_cents": total_cents, "cash_received_cents": payment.cash_received_cents},
            )
        return payment.cash_received_cents, payment.cash_received_cents - total_cents
    if not payment.reference:
        raise ValidationError(
            f"payment.reference is required for {payment.method} payments",
            details={"method": payment.method},
        )
    return 0, 0


# =============================================================================
# CHECKOUT
# =============================================================================

def _checkout_unit(
    *,
    cart,
    payment,
    actor: Actor,
    tax_rate_percent,
    manual_discount_cents: int,
    override: ManualOverride | None,
    terminal_id: str | None,
    idempotency_key: str,
) -> Transaction:
    """Writes of one checkout; flushes only, the idempotency guard commits."""
    shift = require_open_shift(actor.actor_id, actor.store_id)

    items = parse_cart(cart)
    tender = parse_payment(payment)
    override = parse_override(override)
    if override is not None:
        require_elevated(actor, "Manual pricing")

    products = lock_products(actor.store_id, [item.product_id for item in items])
    on_hand = get_stock_map(actor.store_id, products.keys())

    shortages = [
        {
            "product_id": item.product_id,
            "requested": item.quantity,
            "on_hand": on_hand.get(item.product_id, 0),
        }
        for item in items
        if on_hand.get(item.product_id, 0) < item.quantity
    ]
    if shortages:
        raise OutOfStock(details={"lines": shortages})

    priced = [
        PricedLine(
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price_cents=products[item.product_id].price_cents,
        )
        for item in items
    ]
    pricing: PricingResult = compute_pricing(
        priced,
        tax_rate_percent=_tax_rate(tax_rate_percent),
        discount_rules=() if override is not None else _active_discount_rules(actor.store_id),
        manual_discount_cents=manual_discount_cents,
        override=override,
    )
    cash_received, change = _validate_tender(tender, pricing.grand_total_cents)

    now = utcnow()
    tx = Transaction(
        store_id=actor.store_id,
        document_number=next_document_number(store_id=actor.store_id, document_type=DOC_TRANSACTION),
        status=TX_PENDING,
        subtotal_cents=pricing.subtotal_cents,
        discount_cents=pricing.discount_cents,
        manual_discount_cents=pricing.manual_discount_cents,
        tax_cents=pricing.tax_cents,
        total_cents=pricing.grand_total_cents,
        refunded_cents=0,
        tax_rate_percent=pricing.tax_rate_percent,
        pricing_mode=pricing.pricing_mode,
        pricing_note=pricing.pricing_note,
        applied_rules=pricing.applied_rules,
        payment_method=tender.method,
        payment_reference=tender.reference,
        cash_received_cents=cash_received,
        change_cents=change,
        cashier_id=actor.actor_id,
        shift_id=shift.id,
        terminal_id=terminal_id,
        idempotency_key=idempotency_key,
        created_at=now,
    )
    db.session.add(tx)
    db.session.flush()

    for number, (line, discount, line_total, due) in enumerate(
        zip(priced, pricing.line_discounts, pricing.line_totals, pricing.line_dues), start=1
    ):
        db.session.add(TransactionLine(
            transaction_id=tx.id,
            line_number=number,
            product_id=line.product_id,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            line_discount_cents=discount,
            line_total_cents=line_total,
            line_due_cents=due,
            refunded_cents=0,
            restocked_quantity=0,
        ))
        append_movement(
            store_id=tx.store_id,
            product_id=line.product_id,
            quantity_delta=-line.quantity,
            reason=REASON_SALE,
            reference_type=REFERENCE_TRANSACTION,
            reference_id=tx.id,
            actor_id=actor.actor_id,
            occurred_at=now,
        )

    _transition(tx, TX_COMPLETED)
    tx.completed_at = now

    record_drawer_event(
        shift.id,
        EVENT_SALE,
        tx.total_cents,
        actor,
        reason=tx.document_number,
        transaction_id=tx.id,
        affects_cash=tender.is_cash,
        commit=False,
    )
    append_audit_event(
        store_id=tx.store_id,
        action="transaction.completed",
        entity_type="transaction",
        entity_id=tx.id,
        actor=actor,
        detail={
            "document_number": tx.document_number,
            "total_cents": tx.total_cents,
            "payment_method": tx.payment_method,
            "pricing_mode": tx.pricing_mode,
            "pricing_note": tx.pricing_note,
            "discount_cents": tx.discount_cents,
            "manual_discount_cents": tx.manual_discount_cents,
            "applied_rules": tx.applied_rules,
        },
        occurred_at=now,
    )
    db.session.flush()
    return tx


def checkout(
    cart,
    idempotency_key: str,
    actor: Actor,
    *,
    payment,
    tax_rate_percent=None,
    manual_discount_cents: int = 0,
    override: ManualOverride | dict | None = None,
    terminal_id: str | None = None,
    attach_recommendations: bool = True,
) -> CheckoutResult:
    """
    Turn a cart into a COMPLETED transaction, exactly once per idempotency key.

    A repeated key returns the original transaction with replayed=True and
    writes nothing. Upsell recommendations are attached after the commit;
    their failure never fails the checkout.

    Raises:
        ShiftNotOpen: the cashier has no open shift in the store
        ValidationError: empty cart, bad quantity, bad tender
        NotFound: unknown, inactive or foreign product
        OutOfStock: any line exceeds derived stock (whole cart rejected)
        InvalidPricing: discount/tax inputs out of range
        Forbidden: manual pricing override without an elevated role
        Unavailable: storage contended or the key is mid-flight elsewhere
    """
    key = idempotency_service.normalize_key(idempotency_key)

    def _unit() -> Transaction:
        return _checkout_unit(
            cart=cart,
            payment=payment,
            actor=actor,
            tax_rate_percent=tax_rate_percent,
            manual_discount_cents=manual_discount_cents,
            override=override,
            terminal_id=terminal_id,
            idempotency_key=key,
        )

    guarded = run_with_retry(
        lambda: idempotency_service.execute(key, actor.store_id, actor.actor_id, _unit)
    )
    tx = guarded.value
    if guarded.replayed:
        logger.info("Checkout key %r replayed transaction %s", key, tx.id)
    else:
        logger.info("Checkout %s committed: total=%s store=%s", tx.document_number, tx.total_cents, tx.store_id)

    recommendations = None
    if attach_recommendations:
        recommendations = _recommendations_for(tx)
    return CheckoutResult(transaction=tx, replayed=guarded.replayed, recommendations=recommendations)


def _recommendations_for(tx: Transaction) -> dict | None:
    try:
        return recommendation_service.recommend([line.product_id for line in tx.lines], tx.store_id)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Recommendation lookup failed for transaction %s", tx.id)
        return None


# =============================================================================
# VOID
# =============================================================================

def void_transaction(transaction_id: int, reason: str, actor: Actor, now: datetime | None = None) -> Transaction:
    """
    Reverse a COMPLETED transaction in full within the void window.

    The window (VOID_WINDOW_MINUTES) is inclusive: a void exactly at the
    boundary is allowed.
    """
    require_elevated(actor, "Void")
    reason = require_str(reason, "reason")
    window = timedelta(minutes=int(current_app.config.get("VOID_WINDOW_MINUTES", 30)))

    def _op() -> Transaction:
        shift = require_open_shift(actor.actor_id, actor.store_id)
        tx = _get_transaction_for_update(transaction_id, actor.store_id)

        if tx.status == TX_VOIDED:
            raise AlreadyVoided(details={"transaction_id": tx.id})
        if tx.status != TX_COMPLETED or tx.refunded_cents:
            raise InvalidTransition(
                "Only unrefunded COMPLETED transactions can be voided",
                details={"transaction_id": tx.id, "status": tx.status, "refunded_cents": tx.refunded_cents},
            )
        if not is_within_window(tx.created_at, window, now):
            raise VoidWindowExpired(details={
                "transaction_id": tx.id,
                "window_minutes": int(window.total_seconds() // 60),
            })

        lock_products(tx.store_id, [line.product_id for line in tx.lines], require_active=False)
        voided_at = utcnow()
        for line in tx.lines:
            append_movement(
                store_id=tx.store_id,
                product_id=line.product_id,
                quantity_delta=line.quantity,
                reason=REASON_VOID_REVERSAL,
                reference_type=REFERENCE_TRANSACTION,
                reference_id=tx.id,
                actor_id=actor.actor_id,
                occurred_at=voided_at,
            )

        _transition(tx, TX_VOIDED)
        tx.voided_at = voided_at
        tx.void_reason = reason
        tx.voided_by_id = actor.actor_id

        record_drawer_event(
            shift.id,
            EVENT_VOID,
            -tx.total_cents,
            actor,
            reason=reason,
            transaction_id=tx.id,
            affects_cash=tx.payment_method == PAYMENT_CASH,
            commit=False,
        )
        append_audit_event(
            store_id=tx.store_id,
            action="transaction.voided",
            entity_type="transaction",
            entity_id=tx.id,
            actor=actor,
            detail={"document_number": tx.document_number, "total_cents": tx.total_cents, "reason": reason},
            occurred_at=voided_at,
        )
        db.session.commit()
        return tx

    tx = run_with_retry(_op)
    logger.info("Transaction %s voided by %s", tx.document_number, actor.actor_id)
    return tx


# =============================================================================
# REFUND
# =============================================================================

def allocate_refund(
    lines: Sequence[TransactionLine],
    amount_cents: int,
    *,
    completes: bool = False,
) -> list[RefundAllocation]:
    """
    Attribute a refund amount to lines, first line first.

    Each line absorbs up to its unrefunded share of the grand total
    (line_due_cents - refunded_cents). Units are restocked only once fully
    paid back: floor(refunded * quantity / line_due) minus what earlier
    refunds already restocked. When the refund completes the transaction,
    every remaining unit is restocked, including zero-priced lines.
    """
    allocations: list[RefundAllocation] = []
    remaining = amount_cents
    for line in sorted(lines, key=lambda l: l.line_number):
        capacity = line.line_due_cents - (line.refunded_cents or 0)
        take = min(max(capacity, 0), remaining)
        refunded_after = (line.refunded_cents or 0) + take

        if completes or line.line_due_cents <= 0:
            units_paid_back = line.quantity if completes else 0
        else:
            units_paid_back = refunded_after * line.quantity // line.line_due_cents
        restock = units_paid_back - (line.restocked_quantity or 0)

        if take or restock > 0:
            allocations.append(RefundAllocation(line=line, amount_cents=take, restock_quantity=max(restock, 0)))
        remaining -= take
    return allocations


def refund_transaction(transaction_id: int, amount_cents: int, reason: str | None, actor: Actor) -> Refund:
    """
    Refund part or all of a COMPLETED transaction.

    Cumulative refunds never exceed the total: an excessive amount raises
    RefundExceedsTotal and writes nothing. Reaching the total moves the
    transaction to REFUNDED.
    """
    require_elevated(actor, "Refund")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer", details={"amount_cents": amount_cents})

    def _op() -> Refund:
        shift = require_open_shift(actor.actor_id, actor.store_id)
        tx = _get_transaction_for_update(transaction_id, actor.store_id)

        if tx.status == TX_VOIDED:
            raise AlreadyVoided(details={"transaction_id": tx.id})
        if tx.status != TX_COMPLETED:
            raise InvalidTransition(
                f"Cannot refund a {tx.status} transaction",
                details={"transaction_id": tx.id, "status": tx.status},
            )

        refundable = tx.refundable_cents
        if amount_cents > refundable:
            raise RefundExceedsTotal(details={
                "transaction_id": tx.id,
                "requested_cents": amount_cents,
                "refundable_cents": refundable,
            })

        completes = amount_cents == refundable
        allocations = allocate_refund(tx.lines, amount_cents, completes=completes)

        refund = Refund(
            store_id=tx.store_id,
            document_number=next_document_number(store_id=tx.store_id, document_type=DOC_REFUND),
            transaction_id=tx.id,
            amount_cents=amount_cents,
            reason=reason,
            cashier_id=actor.actor_id,
            shift_id=shift.id,
            created_at=utcnow(),
        )
        db.session.add(refund)
        db.session.flush()

        restocking = [a for a in allocations if a.restock_quantity > 0]
        if restocking:
            lock_products(tx.store_id, [a.line.product_id for a in restocking], require_active=False)

        for allocation in allocations:
            line = allocation.line
            line.refunded_cents = (line.refunded_cents or 0) + allocation.amount_cents
            line.restocked_quantity = (line.restocked_quantity or 0) + allocation.restock_quantity
            db.session.add(RefundLine(
                refund_id=refund.id,
                transaction_line_id=line.id,
                product_id=line.product_id,
                amount_cents=allocation.amount_cents,
                restocked_quantity=allocation.restock_quantity,
            ))
            if allocation.restock_quantity > 0:
                append_movement(
                    store_id=tx.store_id,
                    product_id=line.product_id,
                    quantity_delta=allocation.restock_quantity,
                    reason=REASON_REFUND_REVERSAL,
                    reference_type=REFERENCE_REFUND,
                    reference_id=refund.id,
                    actor_id=actor.actor_id,
                    occurred_at=refund.created_at,
                )

        tx.refunded_cents = (tx.refunded_cents or 0) + amount_cents
        if tx.refunded_cents == tx.total_cents:
            _transition(tx, TX_REFUNDED)

        record_drawer_event(
            shift.id,
            EVENT_REFUND,
            -amount_cents,
            actor,
            reason=reason or refund.document_number,
            transaction_id=tx.id,
            affects_cash=tx.payment_method == PAYMENT_CASH,
            commit=False,
        )
        append_audit_event(
            store_id=tx.store_id,
            action="transaction.refunded",
            entity_type="transaction",
            entity_id=tx.id,
            actor=actor,
            detail={
                "refund_id": refund.id,
                "document_number": refund.document_number,
                "amount_cents": amount_cents,
                "refunded_cents": tx.refunded_cents,
                "status": tx.status,
            },
        )
        db.session.commit()
        return refund

    refund = run_with_retry(_op)
    logger.info("Refund %s of %s cents on transaction %s", refund.document_number, amount_cents, transaction_id)
    return refund


# =============================================================================
# QUERIES
# =============================================================================

def get_transaction(transaction_id: int, store_id: int) -> Transaction:
    tx = db.session.get(Transaction, transaction_id)
    if tx is None or tx.store_id != store_id:
        raise NotFound("Transaction not found", details={"transaction_id": transaction_id})
    return tx


def list_transactions(
    store_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Transaction]:
    """Transactions created in [start, end], newest first."""
    query = db.session.query(Transaction).filter(Transaction.store_id == store_id)
    if status:
        status = status.upper()
        if status not in TRANSACTION_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(sorted(TRANSACTION_STATUSES))}")
        query = query.filter(Transaction.status == status)
    if start is not None:
        query = query.filter(Transaction.created_at >= start)
    if end is not None:
        query = query.filter(Transaction.created_at <= end)

    limit = min(max(limit, 1), 500)
    offset = max(offset, 0)
    return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).offset(offset).limit(limit).all()


def lookup_checkout(idempotency_key: str, actor: Actor) -> dict:
    """
    Outcome of an earlier checkout attempt, for a terminal that timed out.

    Raises NotFound when the key was never seen (or expired): the terminal
    may safely submit it again.
    """
    record = idempotency_service.lookup(idempotency_key, actor.store_id, actor.actor_id)
    if record is None:
        raise NotFound("No checkout recorded for this key", details={"key": idempotency_key})

    result = record.to_dict()
    if record.transaction_id is not None:
        result["transaction"] = get_transaction(record.transaction_id, actor.store_id).to_dict()
    if record.error_code:
        result["error"] = {
            "code": record.error_code,
            "message": record.error_message,
            "details": record.error_details or {},
        }
    return result


# =============================================================================
# OFFLINE SYNC
# =============================================================================

SYNC_ACCEPTED = "accepted"
SYNC_DUPLICATE = "duplicate"
SYNC_REJECTED = "rejected"


def sync_offline(entries: Iterable[dict], actor: Actor) -> list[dict]:
    """
    Replay checkouts captured while a terminal was offline.

    Each entry is keyed by its own idempotency_key, or by its
    client_transaction_id when it has none, so a batch can be resent safely:
    already-synced entries come back as duplicate. A rejected
    entry does not stop the rest of the batch.
    """
    results: list[dict] = []
    for index, entry in enumerate(entries or []):
        client_id = entry.get("client_transaction_id") if isinstance(entry, dict) else None
        row = {"client_transaction_id": client_id, "transaction_id": None, "document_number": None}
        try:
            if not isinstance(entry, dict):
                raise ValidationError(f"entries[{index}] must be an object")
            result = checkout(
                entry.get("items"),
                entry.get("idempotency_key") or client_id,
                actor,
                payment=entry.get("payment"),
                tax_rate_percent=entry.get("tax_rate_percent"),
                manual_discount_cents=entry.get("manual_discount_cents") or 0,
                override=entry.get("pricing_override"),
                terminal_id=entry.get("terminal_id"),
                attach_recommendations=False,
            )
        except PosError as exc:
            logger.warning("Offline entry %r rejected: %s", client_id, exc.code)
            row.update(status=SYNC_REJECTED, error=exc.to_dict())
        else:
            row.update(
                status=SYNC_DUPLICATE if result.replayed else SYNC_ACCEPTED,
                transaction_id=result.transaction.id,
                document_number=result.transaction.document_number,
            )
        results.append(row)
    return results

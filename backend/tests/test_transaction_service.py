from datetime import timedelta

import pytest

from conftest import OTHER_STORE_ID, cash, make_product
from tillpoint.actor import Actor
from tillpoint.errors import (
    AlreadyVoided,
    Forbidden,
    InvalidTransition,
    NotFound,
    OutOfStock,
    RefundExceedsTotal,
    ShiftNotOpen,
    ValidationError,
    VoidWindowExpired,
)
from tillpoint.models import DiscountRule, DrawerEvent, Refund, StockMovement, Transaction
from tillpoint.services import audit_service, inventory_service, shift_service, transaction_service


def _sell(actor, products, key="tx-1", quantities=(2, 1), payment=None, **kwargs):
    cart = [
        {"product_id": product.id, "quantity": qty}
        for product, qty in zip(products, quantities)
        if qty
    ]
    return transaction_service.checkout(
        cart,
        key,
        actor,
        payment=payment or cash(1_000_000),
        attach_recommendations=False,
        **kwargs,
    ).transaction


def _on_hand(actor, product):
    return inventory_service.get_quantity_on_hand(actor.store_id, product.id)


# =============================================================================
# CHECKOUT
# =============================================================================

def test_checkout_writes_transaction_movements_and_drawer_event(db_session, cashier, cashier_shift, products):
    tx = _sell(cashier, products, payment=cash(25000))

    assert tx.status == "COMPLETED"
    assert tx.document_number == "TX-000001"
    assert tx.total_cents == 22500
    assert tx.change_cents == 2500
    assert [line.line_number for line in tx.lines] == [1, 2]
    assert _on_hand(cashier, products[0]) == 8
    assert _on_hand(cashier, products[1]) == 9

    sale_events = db_session.query(DrawerEvent).filter_by(transaction_id=tx.id, event_type="SALE").all()
    assert [(e.amount_cents, e.affects_cash) for e in sale_events] == [(22500, True)]
    audit = audit_service.list_audit_events(cashier.store_id, entity_type="transaction", entity_id=tx.id)
    assert [event.action for event in audit] == ["transaction.completed"]
    assert audit[0].actor_role == "cashier"


def test_checkout_applies_active_rules_and_tax(db_session, cashier, cashier_shift, products):
    db_session.add(DiscountRule(store_id=cashier.store_id, name="10% off", kind="PERCENT", percent=10,
                                min_subtotal_cents=0, is_active=True))
    db_session.commit()

    tx = _sell(cashier, products, tax_rate_percent="11")

    assert (tx.subtotal_cents, tx.discount_cents, tx.tax_cents, tx.total_cents) == (22500, 2250, 2228, 22478)
    assert sum(line.line_due_cents for line in tx.lines) == 22478
    assert tx.applied_rules[0]["amount_cents"] == 2250


def test_flat_rule_larger_than_cart_still_checks_out(db_session, cashier, cashier_shift):
    gum = make_product(db_session, "GUM", 300, stock=5)
    db_session.add(DiscountRule(store_id=cashier.store_id, name="5000 off", kind="FLAT", flat_cents=5000,
                                min_subtotal_cents=0, is_active=True))
    db_session.commit()

    tx = transaction_service.checkout(
        [{"product_id": gum.id, "quantity": 1}], "flat-1", cashier, payment=cash(0), attach_recommendations=False,
    ).transaction

    assert (tx.subtotal_cents, tx.discount_cents, tx.total_cents) == (300, 300, 0)
    assert [(rule["kind"], rule["amount_cents"]) for rule in tx.applied_rules] == [("FLAT", 300)]


def test_overlapping_percent_rules_apply_the_best_one(db_session, cashier, cashier_shift, products):
    for name, percent in (("Sixty", 60), ("Half", 50)):
        db_session.add(DiscountRule(store_id=cashier.store_id, name=name, kind="PERCENT", percent=percent,
                                    min_subtotal_cents=0, is_active=True))
    db_session.commit()

    tx = _sell(cashier, products, quantities=(1, 0))

    assert tx.discount_cents == 6000
    assert tx.total_cents == 4000
    assert [rule["name"] for rule in tx.applied_rules] == ["Sixty"]
    assert tx.pricing_mode == "AUTO"


def test_cashier_discount_is_recorded_as_manual_pricing(db_session, cashier, cashier_shift, products):
    tx = _sell(cashier, products, quantities=(1, 0), manual_discount_cents=9999)

    assert tx.pricing_mode == "MANUAL"
    assert tx.manual_discount_cents == 9999
    assert tx.total_cents == 1
    assert tx.applied_rules == [{"id": None, "name": "Cashier discount", "kind": "CASHIER", "amount_cents": 9999}]

    audit = audit_service.list_audit_events(cashier.store_id, entity_id=tx.id, action="transaction.completed")
    assert audit[0].detail["manual_discount_cents"] == 9999
    assert audit[0].detail["pricing_mode"] == "MANUAL"


def test_duplicate_cart_lines_are_merged(db_session, cashier, cashier_shift, products):
    tx = transaction_service.checkout(
        [
            {"product_id": products[1].id, "quantity": 1},
            {"product_id": products[1].id, "quantity": 2},
        ],
        "merge-1",
        cashier,
        payment=cash(7500),
        attach_recommendations=False,
    ).transaction
    assert len(tx.lines) == 1
    assert tx.lines[0].quantity == 3


def test_out_of_stock_rejects_whole_cart(db_session, cashier, cashier_shift, products):
    movements_before = db_session.query(StockMovement).count()
    with pytest.raises(OutOfStock) as excinfo:
        _sell(cashier, products, quantities=(1, 11))

    assert excinfo.value.details["lines"] == [
        {"product_id": products[1].id, "requested": 11, "on_hand": 10},
    ]
    assert db_session.query(StockMovement).count() == movements_before
    assert _on_hand(cashier, products[0]) == 10


def test_checkout_without_shift_fails(db_session, cashier, products):
    with pytest.raises(ShiftNotOpen):
        _sell(cashier, products)


@pytest.mark.parametrize("cart", [[], None, [{"product_id": 1, "quantity": 0}], [{"product_id": 1, "quantity": 1.5}]])
def test_invalid_cart_rejected(db_session, cashier, cashier_shift, cart):
    with pytest.raises(ValidationError):
        transaction_service.checkout(cart, "bad-cart", cashier, payment=cash(100), attach_recommendations=False)


def test_inactive_and_foreign_products_not_found(db_session, cashier, cashier_shift):
    inactive = make_product(db_session, "OLD", 100, stock=5, is_active=False)
    foreign = make_product(db_session, "FOREIGN", 100, stock=5, store_id=OTHER_STORE_ID)

    with pytest.raises(NotFound) as excinfo:
        transaction_service.checkout(
            [{"product_id": inactive.id, "quantity": 1}, {"product_id": foreign.id, "quantity": 1}],
            "nf-1",
            cashier,
            payment=cash(200),
            attach_recommendations=False,
        )
    assert excinfo.value.details["product_ids"] == sorted([inactive.id, foreign.id])


def test_non_cash_payment_needs_reference(db_session, cashier, cashier_shift, products):
    with pytest.raises(ValidationError):
        _sell(cashier, products, payment={"method": "qris"})

    tx = _sell(cashier, products, key="tx-qris", payment={"method": "qris", "reference": "QR-77"})
    assert tx.payment_reference == "QR-77"
    event = db_session.query(DrawerEvent).filter_by(transaction_id=tx.id).one()
    assert event.affects_cash is False


def test_manual_override_needs_elevated_role(db_session, cashier, cashier_shift, products):
    override = {"discount_cents": 2500, "tax_cents": 0, "reason": "Price match"}
    with pytest.raises(Forbidden):
        _sell(cashier, products, override=override)

    elevated = Actor(actor_id=cashier.actor_id, role=cashier.role, store_id=cashier.store_id, manager_override=True)
    tx = _sell(elevated, products, key="tx-override", override=override)
    assert tx.pricing_mode == "MANUAL"
    assert tx.pricing_note == "Price match"
    assert tx.total_cents == 20000


def test_document_numbers_are_sequential_per_store(db_session, cashier, cashier_shift, products):
    first = _sell(cashier, products, key="seq-1", quantities=(1, 0))
    second = _sell(cashier, products, key="seq-2", quantities=(1, 0))
    assert (first.document_number, second.document_number) == ("TX-000001", "TX-000002")


# =============================================================================
# VOID
# =============================================================================

def test_void_restores_stock(db_session, cashier, manager, cashier_shift, manager_shift, products):
    tx = _sell(cashier, products)
    voided = transaction_service.void_transaction(tx.id, "Customer changed mind", manager)

    assert voided.status == "VOIDED"
    assert voided.voided_by_id == manager.actor_id
    assert _on_hand(cashier, products[0]) == 10
    assert _on_hand(cashier, products[1]) == 10

    # The reversal lands on the voiding manager's drawer
    void_event = db_session.query(DrawerEvent).filter_by(transaction_id=tx.id, event_type="VOID").one()
    assert void_event.shift_id == manager_shift.id
    assert void_event.amount_cents == -22500


def test_double_void_writes_one_reversal_per_line(db_session, cashier, manager, cashier_shift, manager_shift, products):
    tx = _sell(cashier, products)
    transaction_service.void_transaction(tx.id, "Mistake", manager)

    with pytest.raises(AlreadyVoided):
        transaction_service.void_transaction(tx.id, "Mistake again", manager)

    movements = inventory_service.list_movements(cashier.store_id, reference_type="transaction", reference_id=tx.id)
    assert [m.reason for m in movements] == ["SALE", "SALE", "VOID_REVERSAL", "VOID_REVERSAL"]


def test_void_requires_elevated_role(db_session, cashier, cashier_shift, products):
    tx = _sell(cashier, products)
    with pytest.raises(Forbidden):
        transaction_service.void_transaction(tx.id, "Mistake", cashier)

    with_override = Actor(actor_id=cashier.actor_id, role=cashier.role, store_id=cashier.store_id, manager_override=True)
    assert transaction_service.void_transaction(tx.id, "Mistake", with_override).status == "VOIDED"


def test_void_requires_reason(db_session, manager, cashier, cashier_shift, manager_shift, products):
    tx = _sell(cashier, products)
    with pytest.raises(ValidationError):
        transaction_service.void_transaction(tx.id, "  ", manager)


def test_void_needs_open_shift(db_session, cashier, manager, cashier_shift, products):
    tx = _sell(cashier, products)
    with pytest.raises(ShiftNotOpen):
        transaction_service.void_transaction(tx.id, "Mistake", manager)


def test_void_window_boundary_is_inclusive(db_session, cashier, manager, cashier_shift, manager_shift, products):
    late = _sell(cashier, products, key="late")
    on_time = _sell(cashier, products, key="on-time", quantities=(1, 0))

    with pytest.raises(VoidWindowExpired):
        transaction_service.void_transaction(
            late.id, "Too late", manager, now=late.created_at + timedelta(minutes=30, seconds=1)
        )
    assert db_session.query(StockMovement).filter_by(reason="VOID_REVERSAL").count() == 0

    voided = transaction_service.void_transaction(
        on_time.id, "Just in time", manager, now=on_time.created_at + timedelta(minutes=30)
    )
    assert voided.status == "VOIDED"


def test_void_after_partial_refund_rejected(db_session, cashier, manager, cashier_shift, manager_shift, products):
    tx = _sell(cashier, products)
    transaction_service.refund_transaction(tx.id, 1000, "Dent", manager)
    with pytest.raises(InvalidTransition):
        transaction_service.void_transaction(tx.id, "Mistake", manager)


def test_void_in_other_store_not_found(db_session, cashier, cashier_shift, products):
    tx = _sell(cashier, products)
    outsider = Actor(actor_id=99, role="manager", store_id=OTHER_STORE_ID)
    shift_service.open_shift(outsider, 0)
    with pytest.raises(NotFound):
        transaction_service.void_transaction(tx.id, "Mistake", outsider)


# =============================================================================
# REFUND
# =============================================================================

def test_partial_then_full_refund(db_session, cashier, manager, cashier_shift, manager_shift, products):
    tx = _sell(cashier, products)  # lines due: 20000 (2 x A), 2500 (1 x B)

    first = transaction_service.refund_transaction(tx.id, 10000, "One unit back", manager)
    assert first.document_number == "RF-000001"
    assert [(l.amount_cents, l.restocked_quantity) for l in first.lines] == [(10000, 1)]
    assert _on_hand(cashier, products[0]) == 9
    assert db_session.get(Transaction, tx.id).status == "COMPLETED"

    second = transaction_service.refund_transaction(tx.id, 12500, "Rest", manager)
    assert [(l.amount_cents, l.restocked_quantity) for l in second.lines] == [(10000, 1), (2500, 1)]

    tx = db_session.get(Transaction, tx.id)
    assert tx.status == "REFUNDED"
    assert tx.refunded_cents == tx.total_cents
    assert _on_hand(cashier, products[0]) == 10
    assert _on_hand(cashier, products[1]) == 10

    with pytest.raises(InvalidTransition):
        transaction_service.refund_transaction(tx.id, 1, "More", manager)


def test_refund_that_does_not_cover_a_unit_restocks_nothing(db_session, cashier, manager, cashier_shift,
                                                            manager_shift, products):
    tx = _sell(cashier, products)
    refund = transaction_service.refund_transaction(tx.id, 9999, "Goodwill", manager)
    assert refund.lines[0].restocked_quantity == 0
    assert db_session.query(StockMovement).filter_by(reason="REFUND_REVERSAL").count() == 0


def test_excess_refund_writes_nothing(db_session, cashier, manager, cashier_shift, manager_shift, products):
    tx = _sell(cashier, products)
    transaction_service.refund_transaction(tx.id, 10000, "Partial", manager)
    drawer_events_before = db_session.query(DrawerEvent).count()

    with pytest.raises(RefundExceedsTotal) as excinfo:
        transaction_service.refund_transaction(tx.id, 12501, "Too much", manager)

    assert excinfo.value.details["refundable_cents"] == 12500
    assert db_session.query(Refund).count() == 1
    assert db_session.query(DrawerEvent).count() == drawer_events_before
    assert db_session.get(Transaction, tx.id).refunded_cents == 10000


def test_refund_of_voided_transaction(db_session, cashier, manager, cashier_shift, manager_shift, products):
    tx = _sell(cashier, products)
    transaction_service.void_transaction(tx.id, "Mistake", manager)
    with pytest.raises(AlreadyVoided):
        transaction_service.refund_transaction(tx.id, 100, "x", manager)


@pytest.mark.parametrize("amount", [0, -5, 1.5, True])
def test_refund_amount_must_be_positive_int(db_session, manager, amount):
    with pytest.raises(ValidationError):
        transaction_service.refund_transaction(1, amount, "x", manager)


def test_refund_drawer_event_is_negative(db_session, cashier, manager, cashier_shift, manager_shift, products):
    tx = _sell(cashier, products)
    transaction_service.refund_transaction(tx.id, 2500, "Return", manager)
    event = db_session.query(DrawerEvent).filter_by(transaction_id=tx.id, event_type="REFUND").one()
    assert event.amount_cents == -2500
    assert event.shift_id == manager_shift.id


def test_can_transition():
    assert transaction_service.can_transition("PENDING", "COMPLETED")
    assert transaction_service.can_transition("COMPLETED", "VOIDED")
    assert not transaction_service.can_transition("VOIDED", "COMPLETED")
    assert not transaction_service.can_transition("REFUNDED", "VOIDED")
    with pytest.raises(ValidationError):
        transaction_service.can_transition("COMPLETED", "LOST")


# =============================================================================
# QUERIES AND OFFLINE SYNC
# =============================================================================

def test_list_transactions_by_status_and_range(db_session, cashier, manager, cashier_shift, manager_shift, products):
    kept = _sell(cashier, products, key="l-1", quantities=(1, 0))
    voided = _sell(cashier, products, key="l-2", quantities=(1, 0))
    transaction_service.void_transaction(voided.id, "Mistake", manager)

    completed = transaction_service.list_transactions(cashier.store_id, status="completed")
    assert [tx.id for tx in completed] == [kept.id]

    window = transaction_service.list_transactions(
        cashier.store_id,
        start=kept.created_at - timedelta(minutes=1),
        end=voided.created_at + timedelta(minutes=1),
    )
    assert {tx.id for tx in window} == {kept.id, voided.id}

    assert transaction_service.list_transactions(cashier.store_id, end=kept.created_at - timedelta(minutes=1)) == []


def test_sync_offline_reports_each_entry(db_session, cashier, cashier_shift, products):
    entry = {
        "client_transaction_id": "offline-1",
        "items": [{"product_id": products[1].id, "quantity": 1}],
        "payment": cash(2500),
    }
    results = transaction_service.sync_offline(
        [entry, entry, {"client_transaction_id": "offline-2", "items": [], "payment": cash(0)}],
        cashier,
    )

    assert [r["status"] for r in results] == ["accepted", "duplicate", "rejected"]
    assert results[0]["transaction_id"] == results[1]["transaction_id"]
    assert results[2]["error"]["code"] == "validation_error"
    assert db_session.query(Transaction).count() == 1


def test_sync_offline_prefers_the_entry_idempotency_key(db_session, cashier, manager, manager_shift, products):
    entry = {
        "client_transaction_id": "offline-9",
        "idempotency_key": "till-9",
        "items": [{"product_id": products[0].id, "quantity": 1}],
        "payment": cash(10000),
        "pricing_override": {"discount_cents": 1000, "tax_cents": 0, "reason": "Loyalty"},
    }
    [row] = transaction_service.sync_offline([entry], manager)
    assert row["status"] == "accepted"

    tx = transaction_service.get_transaction(row["transaction_id"], manager.store_id)
    assert tx.idempotency_key == "till-9"
    assert (tx.pricing_mode, tx.pricing_note, tx.total_cents) == ("MANUAL", "Loyalty", 9000)

    replay = transaction_service.checkout(
        entry["items"], "till-9", manager, payment=cash(10000), attach_recommendations=False,
    )
    assert replay.replayed is True
    assert replay.transaction.id == tx.id

import pytest

from conftest import OTHER_STORE_ID, cash
from tillpoint.actor import Actor
from tillpoint.errors import Forbidden, NotFound, ShiftAlreadyOpen, ShiftClosed, ShiftNotOpen, ValidationError
from tillpoint.models import AuditEvent, DrawerEvent
from tillpoint.services import shift_service, transaction_service


def test_open_shift_records_opening_float(db_session, cashier):
    shift = shift_service.open_shift(cashier, 50000, terminal_id="T1")

    assert shift.is_open
    assert shift.opening_cash_cents == 50000
    events = db_session.query(DrawerEvent).filter_by(shift_id=shift.id).all()
    assert [e.event_type for e in events] == ["SHIFT_OPEN"]
    assert db_session.query(AuditEvent).filter_by(action="shift.opened", entity_id=shift.id).count() == 1


def test_second_open_fails(db_session, cashier, cashier_shift):
    with pytest.raises(ShiftAlreadyOpen):
        shift_service.open_shift(cashier, 0)


def test_same_cashier_may_open_in_another_store(db_session, cashier, cashier_shift):
    elsewhere = Actor(actor_id=cashier.actor_id, role=cashier.role, store_id=OTHER_STORE_ID)
    shift = shift_service.open_shift(elsewhere, 0)
    assert shift.store_id == OTHER_STORE_ID


def test_negative_opening_float_rejected(db_session, cashier):
    with pytest.raises(ValidationError):
        shift_service.open_shift(cashier, -1)


def test_require_open_shift_without_shift(db_session, cashier):
    with pytest.raises(ShiftNotOpen):
        shift_service.require_open_shift(cashier.actor_id, cashier.store_id)


def test_close_computes_expected_and_variance(db_session, cashier, cashier_shift, products):
    transaction_service.checkout(
        [{"product_id": products[1].id, "quantity": 2}],
        "close-k1",
        cashier,
        payment=cash(5000),
        attach_recommendations=False,
    )
    shift_service.record_drawer_event(cashier_shift.id, "CASH_IN", 2000, cashier, reason="Change float")
    shift_service.record_drawer_event(cashier_shift.id, "CASH_OUT", 1000, cashier, reason="Supplies")

    # 100000 opening + 5000 sale + 2000 in - 1000 out
    shift = shift_service.close_shift(cashier_shift.id, 105500, cashier)

    assert not shift.is_open
    assert shift.expected_cash_cents == 106000
    assert shift.variance_cents == -500
    assert shift.open_slot is None


def test_card_sale_does_not_change_expected_cash(db_session, cashier, cashier_shift, products):
    transaction_service.checkout(
        [{"product_id": products[0].id, "quantity": 1}],
        "card-k1",
        cashier,
        payment={"method": "card", "reference": "APPROVAL-1"},
        attach_recommendations=False,
    )
    assert shift_service.compute_expected_cash_cents(cashier_shift) == 100000


def test_close_twice_fails(db_session, cashier, cashier_shift):
    shift_service.close_shift(cashier_shift.id, 100000, cashier)
    with pytest.raises(ShiftClosed):
        shift_service.close_shift(cashier_shift.id, 100000, cashier)


def test_reopen_after_close(db_session, cashier, cashier_shift):
    shift_service.close_shift(cashier_shift.id, 100000, cashier)
    shift = shift_service.open_shift(cashier, 0)
    assert shift.id != cashier_shift.id


def test_other_cashier_cannot_close(db_session, other_cashier, cashier_shift):
    with pytest.raises(Forbidden):
        shift_service.close_shift(cashier_shift.id, 100000, other_cashier)


def test_manager_can_close_cashier_shift(db_session, manager, cashier_shift):
    shift = shift_service.close_shift(cashier_shift.id, 100000, manager)
    assert shift.closed_by_id == manager.actor_id
    assert shift.variance_cents == 0


def test_drawer_event_on_closed_shift_fails(db_session, cashier, cashier_shift):
    shift_service.close_shift(cashier_shift.id, 100000, cashier)
    with pytest.raises(ShiftClosed):
        shift_service.record_drawer_event(cashier_shift.id, "CASH_IN", 100, cashier)


def test_drawer_event_validation(db_session, cashier, cashier_shift):
    with pytest.raises(ValidationError):
        shift_service.record_drawer_event(cashier_shift.id, "CASH_IN", 0, cashier)
    with pytest.raises(ValidationError):
        shift_service.record_drawer_event(cashier_shift.id, "SHIFT_CLOSE", 100, cashier)


def test_cash_out_is_stored_negative(db_session, cashier, cashier_shift):
    event = shift_service.record_drawer_event(cashier_shift.id, "CASH_OUT", 700, cashier)
    assert event.amount_cents == -700


def test_shift_in_other_store_not_found(db_session, cashier_shift):
    with pytest.raises(NotFound):
        shift_service.get_shift(cashier_shift.id, OTHER_STORE_ID)


def test_shift_summary(db_session, cashier, cashier_shift, products):
    transaction_service.checkout(
        [{"product_id": products[1].id, "quantity": 1}],
        "summary-k1",
        cashier,
        payment=cash(2500),
        attach_recommendations=False,
    )
    summary = shift_service.get_shift_summary(cashier_shift.id, cashier.store_id)

    assert summary["sale_count"] == 1
    assert summary["sales_total_cents"] == 2500
    assert summary["expected_cash_cents"] == 102500
    assert summary["variance_cents"] is None
    assert summary["is_closed"] is False

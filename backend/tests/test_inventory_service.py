import pytest

from conftest import OTHER_STORE_ID, make_product
from tillpoint.errors import Forbidden, NotFound, ValidationError
from tillpoint.services import audit_service, inventory_service


def _on_hand(actor, product):
    return inventory_service.get_quantity_on_hand(actor.store_id, product.id)


def test_stock_count_posts_adjustment_movements(db_session, manager, products):
    a, b = products
    count = inventory_service.post_stock_count(
        manager,
        [{"product_id": b.id, "counted_quantity": 10}, {"product_id": a.id, "counted_quantity": 7}],
        notes="Monthly count",
    )

    assert count.document_number == "SC-000001"
    assert count.adjustments == [
        {"product_id": a.id, "system_quantity": 10, "counted_quantity": 7, "delta": -3},
        {"product_id": b.id, "system_quantity": 10, "counted_quantity": 10, "delta": 0},
    ]
    assert _on_hand(manager, a) == 7
    assert _on_hand(manager, b) == 10

    movements = inventory_service.list_movements(
        manager.store_id, reference_type="stock_count", reference_id=count.id
    )
    # Unchanged products get no movement
    assert [(m.product_id, m.quantity_delta, m.reason) for m in movements] == [(a.id, -3, "ADJUSTMENT")]

    events = audit_service.list_audit_events(manager.store_id, entity_type="stock_count", entity_id=count.id)
    assert [e.action for e in events] == ["stock_count.posted"]
    assert events[0].detail["adjusted"] == 1


def test_stock_count_raises_stock_and_counts_inactive_products(db_session, admin):
    retired = make_product(db_session, "OLD", 900, stock=2, is_active=False)

    inventory_service.post_stock_count(admin, [{"product_id": retired.id, "counted_quantity": 5}])

    assert _on_hand(admin, retired) == 5


def test_cashier_cannot_post_stock_count(db_session, cashier, products):
    with pytest.raises(Forbidden):
        inventory_service.post_stock_count(cashier, [{"product_id": products[0].id, "counted_quantity": 1}])


@pytest.mark.parametrize("items", [
    [],
    None,
    [{"product_id": 1, "counted_quantity": -1}],
    [{"product_id": 1, "counted_quantity": 1}, {"product_id": 1, "counted_quantity": 2}],
    [{"product_id": 1, "counted_quantity": "1.5"}],
])
def test_stock_count_validation(db_session, manager, products, items):
    with pytest.raises(ValidationError):
        inventory_service.post_stock_count(manager, items)


def test_stock_count_of_other_store_product_not_found(db_session, manager):
    foreign = make_product(db_session, "FOREIGN", 100, stock=3, store_id=OTHER_STORE_ID)
    with pytest.raises(NotFound):
        inventory_service.post_stock_count(manager, [{"product_id": foreign.id, "counted_quantity": 0}])

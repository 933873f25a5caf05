"""HTTP surface: header identity, status codes and error envelope."""

from conftest import actor_headers, cash


def _checkout_body(products, key="route-1"):
    return {
        "idempotency_key": key,
        "items": [{"product_id": products[0].id, "quantity": 1}],
        "payment": cash(10000),
    }


def test_health(client, db_session):
    response = client.get('/api/health')
    assert response.status_code == 200
    assert response.json['status'] == 'healthy'
    assert response.json['checks']['database']['status'] == 'healthy'
    assert response.json['checks']['recommendation_cache']['status'] == 'disabled'


def test_missing_identity_headers(client, db_session):
    response = client.post('/api/checkout', json={})
    assert response.status_code == 401
    assert response.json['error']['code'] == 'unauthenticated'


def test_checkout_created_then_replayed(client, db_session, cashier, cashier_shift, products):
    first = client.post('/api/checkout', json=_checkout_body(products), headers=actor_headers(cashier))
    assert first.status_code == 201
    assert first.json['replayed'] is False
    assert first.json['transaction']['total_cents'] == 10000

    second = client.post('/api/checkout', json=_checkout_body(products), headers=actor_headers(cashier))
    assert second.status_code == 200
    assert second.json['replayed'] is True
    assert second.json['transaction']['id'] == first.json['transaction']['id']


def test_checkout_key_from_header(client, db_session, cashier, cashier_shift, products):
    body = _checkout_body(products)
    del body['idempotency_key']
    headers = dict(actor_headers(cashier), **{'Idempotency-Key': 'hdr-1'})

    response = client.post('/api/checkout', json=body, headers=headers)
    assert response.status_code == 201
    assert response.json['transaction']['idempotency_key'] == 'hdr-1'


def test_checkout_without_shift_is_conflict(client, db_session, cashier, products):
    response = client.post('/api/checkout', json=_checkout_body(products), headers=actor_headers(cashier))
    assert response.status_code == 409
    assert response.json['error'] == {
        'code': 'shift_not_open',
        'kind': 'state_conflict',
        'message': 'Open a shift before taking payments',
        'details': {'cashier_id': cashier.actor_id, 'store_id': cashier.store_id},
    }


def test_checkout_lookup(client, db_session, cashier, cashier_shift, products):
    client.post('/api/checkout', json=_checkout_body(products, key="look-1"), headers=actor_headers(cashier))

    found = client.get('/api/checkout/lookup?key=look-1', headers=actor_headers(cashier))
    assert found.status_code == 200
    assert found.json['checkout']['status'] == 'SUCCEEDED'

    missing = client.get('/api/checkout/lookup?key=nope', headers=actor_headers(cashier))
    assert missing.status_code == 404

    no_key = client.get('/api/checkout/lookup', headers=actor_headers(cashier))
    assert no_key.status_code == 400


def test_checkout_sync(client, db_session, cashier, cashier_shift, products):
    entry = {"client_transaction_id": "off-1", "items": [{"product_id": products[1].id, "quantity": 1}],
             "payment": cash(2500)}
    response = client.post('/api/checkout/sync', json={"entries": [entry, entry]}, headers=actor_headers(cashier))
    assert response.status_code == 200
    assert [r['status'] for r in response.json['results']] == ['accepted', 'duplicate']


def test_void_forbidden_for_cashier(client, db_session, cashier, cashier_shift, products):
    created = client.post('/api/checkout', json=_checkout_body(products), headers=actor_headers(cashier))
    tx_id = created.json['transaction']['id']

    response = client.post(f'/api/transactions/{tx_id}/void', json={"reason": "oops"}, headers=actor_headers(cashier))
    assert response.status_code == 403

    response = client.post(
        f'/api/transactions/{tx_id}/void',
        json={"reason": "oops"},
        headers=actor_headers(cashier, override=True),
    )
    assert response.status_code == 200
    assert response.json['transaction']['status'] == 'VOIDED'


def test_refund_and_transaction_detail(client, db_session, cashier, manager, cashier_shift, manager_shift, products):
    created = client.post('/api/checkout', json=_checkout_body(products), headers=actor_headers(cashier))
    tx_id = created.json['transaction']['id']

    refund = client.post(f'/api/transactions/{tx_id}/refunds', json={"amount_cents": 4000, "reason": "Scratch"},
                         headers=actor_headers(manager))
    assert refund.status_code == 201
    assert refund.json['transaction']['refunded_cents'] == 4000

    too_much = client.post(f'/api/transactions/{tx_id}/refunds', json={"amount_cents": 6001},
                           headers=actor_headers(manager))
    assert too_much.status_code == 409
    assert too_much.json['error']['code'] == 'refund_exceeds_total'

    detail = client.get(f'/api/transactions/{tx_id}', headers=actor_headers(cashier))
    assert detail.status_code == 200
    assert len(detail.json['transaction']['refunds']) == 1


def test_list_transactions_rejects_bad_datetime(client, db_session, cashier):
    response = client.get('/api/transactions?start=yesterday', headers=actor_headers(cashier))
    assert response.status_code == 400
    assert response.json['error']['kind'] == 'validation'


def test_shift_routes(client, db_session, cashier):
    opened = client.post('/api/shifts/open', json={"opening_cash_cents": 10000}, headers=actor_headers(cashier))
    assert opened.status_code == 201
    shift_id = opened.json['shift']['id']

    again = client.post('/api/shifts/open', json={"opening_cash_cents": 10000}, headers=actor_headers(cashier))
    assert again.status_code == 409

    event = client.post(f'/api/shifts/{shift_id}/drawer-events', json={"kind": "cash_out", "amount_cents": 500},
                        headers=actor_headers(cashier))
    assert event.status_code == 201
    assert event.json['drawer_event']['amount_cents'] == -500

    active = client.get('/api/shifts/active', headers=actor_headers(cashier))
    assert active.json['expected_cash_cents'] == 9500

    closed = client.post(f'/api/shifts/{shift_id}/close', json={"closing_cash_cents": 9500},
                         headers=actor_headers(cashier))
    assert closed.status_code == 200
    assert closed.json['shift']['variance_cents'] == 0

    assert client.get('/api/shifts/active', headers=actor_headers(cashier)).json == {"shift": None}


def test_recommendations_route(client, db_session, cashier):
    response = client.post('/api/recommendations', json={"product_ids": []}, headers=actor_headers(cashier))
    assert response.status_code == 200
    assert response.json['ui_policy'] == {"show": False, "cooldown_seconds": 30}

    bad = client.post('/api/recommendations', json={"product_ids": "1,2"}, headers=actor_headers(cashier))
    assert bad.status_code == 400


def test_catalog_and_receiving_routes(client, db_session, cashier, manager):
    denied = client.post('/api/products', json={"sku": "X", "name": "X", "price_cents": 100},
                         headers=actor_headers(cashier))
    assert denied.status_code == 403

    product = client.post('/api/products', json={"sku": "NEW-1", "name": "New", "price_cents": 1500,
                                                 "margin_bps": 2500}, headers=actor_headers(manager))
    assert product.status_code == 201
    product_id = product.json['product']['id']

    supplier = client.post('/api/suppliers', json={"name": "Acme"}, headers=actor_headers(manager))
    assert supplier.status_code == 201

    po = client.post('/api/purchase-orders', json={
        "supplier_id": supplier.json['supplier']['id'],
        "lines": [{"product_id": product_id, "quantity": 12, "unit_cost_cents": 800}],
    }, headers=actor_headers(manager))
    assert po.status_code == 201

    received = client.post(f"/api/purchase-orders/{po.json['purchase_order']['id']}/receive", json={},
                           headers=actor_headers(manager))
    assert received.status_code == 200
    assert received.json['purchase_order']['status'] == 'RECEIVED'

    listing = client.get('/api/products', headers=actor_headers(cashier))
    assert listing.json['products'][0]['quantity_on_hand'] == 12


def test_supplier_purchase_order_and_stock_count_routes(client, db_session, cashier, manager, products):
    client.post('/api/suppliers', json={"name": "Acme"}, headers=actor_headers(manager))
    suppliers = client.get('/api/suppliers', headers=actor_headers(cashier))
    assert [s['name'] for s in suppliers.json['suppliers']] == ['Acme']

    client.post('/api/purchase-orders', json={
        "supplier_id": suppliers.json['suppliers'][0]['id'],
        "lines": [{"product_id": products[0].id, "quantity": 2}],
    }, headers=actor_headers(manager))
    orders = client.get('/api/purchase-orders?status=OPEN', headers=actor_headers(manager))
    assert len(orders.json['purchase_orders']) == 1
    bad_status = client.get('/api/purchase-orders?status=LOST', headers=actor_headers(manager))
    assert bad_status.status_code == 400

    body = {"items": [{"product_id": products[0].id, "counted_quantity": 4}]}
    denied = client.post('/api/stock-counts', json=body, headers=actor_headers(cashier))
    assert denied.status_code == 403

    posted = client.post('/api/stock-counts', json=body, headers=actor_headers(manager))
    assert posted.status_code == 201
    assert posted.json['stock_count']['adjustments'][0]['delta'] == -6

    movements = client.get(
        f"/api/stock-movements?reference_type=stock_count&reference_id={posted.json['stock_count']['id']}",
        headers=actor_headers(manager),
    )
    assert [(m['quantity_delta'], m['reason']) for m in movements.json['movements']] == [(-6, 'ADJUSTMENT')]


def test_discount_rule_routes(client, db_session, cashier, manager):
    denied = client.post('/api/discount-rules', json={"name": "Fiver", "kind": "FLAT", "flat_cents": 500},
                         headers=actor_headers(cashier))
    assert denied.status_code == 403

    created = client.post('/api/discount-rules', json={"name": "Fiver", "kind": "FLAT", "flat_cents": 500},
                          headers=actor_headers(manager))
    assert created.status_code == 201
    rule_id = created.json['discount_rule']['id']

    invalid = client.post('/api/discount-rules', json={"name": "Too much", "kind": "PERCENT", "percent": "150"},
                          headers=actor_headers(manager))
    assert invalid.status_code == 400
    assert invalid.json['error']['code'] == 'validation_error'

    toggled = client.patch(f'/api/discount-rules/{rule_id}', json={"is_active": False},
                           headers=actor_headers(manager))
    assert toggled.status_code == 200
    assert toggled.json['discount_rule']['is_active'] is False

    active = client.get('/api/discount-rules?active=true', headers=actor_headers(cashier))
    assert active.json['discount_rules'] == []
    missing = client.patch('/api/discount-rules/999', json={"is_active": True}, headers=actor_headers(manager))
    assert missing.status_code == 404


def test_report_routes(client, db_session, cashier, manager, cashier_shift, products):
    client.post('/api/checkout', json=_checkout_body(products), headers=actor_headers(cashier))

    assert client.get('/api/reports/daily', headers=actor_headers(cashier)).status_code == 403

    daily = client.get('/api/reports/daily', headers=actor_headers(manager))
    assert daily.status_code == 200
    assert daily.json['transactions'] == 1
    assert daily.json['net_sales_cents'] == 10000

    bad_date = client.get('/api/reports/daily?date=18-10-2026', headers=actor_headers(manager))
    assert bad_date.status_code == 400

    audit = client.get('/api/reports/audit?action=transaction.completed&limit=5', headers=actor_headers(manager))
    assert audit.status_code == 200
    assert [e['action'] for e in audit.json['events']] == ['transaction.completed']
    assert audit.json['limit'] == 5

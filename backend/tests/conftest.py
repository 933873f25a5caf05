"""
Pytest fixtures for tillpoint backend tests.

Provides the app on in-memory SQLite, a clean database per test, actors,
stocked products and open shifts.
"""

import pytest

from tillpoint import create_app
from tillpoint.actor import Actor, ROLE_ADMIN, ROLE_CASHIER, ROLE_MANAGER
from tillpoint.config import TestConfig
from tillpoint.extensions import db
from tillpoint.models import Product, StockMovement
from tillpoint.models.inventory import REASON_RECEIVE
from tillpoint.services import shift_service


STORE_ID = 1
OTHER_STORE_ID = 2


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def cashier():
    return Actor(actor_id=10, role=ROLE_CASHIER, store_id=STORE_ID)


@pytest.fixture(scope='function')
def other_cashier():
    return Actor(actor_id=11, role=ROLE_CASHIER, store_id=STORE_ID)


@pytest.fixture(scope='function')
def manager():
    return Actor(actor_id=20, role=ROLE_MANAGER, store_id=STORE_ID)


@pytest.fixture(scope='function')
def admin():
    return Actor(actor_id=30, role=ROLE_ADMIN, store_id=STORE_ID)


def make_product(session, sku, price_cents, *, stock=0, margin_bps=0, store_id=STORE_ID, is_active=True):
    """Product with `stock` units received through the movement ledger."""
    product = Product(
        store_id=store_id,
        sku=sku,
        name=f"Product {sku}",
        price_cents=price_cents,
        margin_bps=margin_bps,
        is_active=is_active,
    )
    session.add(product)
    session.flush()
    if stock:
        session.add(StockMovement(
            store_id=store_id,
            product_id=product.id,
            quantity_delta=stock,
            reason=REASON_RECEIVE,
            reference_type="fixture",
            reference_id=0,
        ))
    session.commit()
    return product


@pytest.fixture(scope='function')
def products(db_session):
    """Two stocked products: 10000 x 10 units and 2500 x 10 units."""
    return [
        make_product(db_session, "SKU-A", 10000, stock=10, margin_bps=3000),
        make_product(db_session, "SKU-B", 2500, stock=10, margin_bps=2000),
    ]


@pytest.fixture(scope='function')
def cashier_shift(db_session, cashier):
    return shift_service.open_shift(cashier, 100000)


@pytest.fixture(scope='function')
def manager_shift(db_session, manager):
    return shift_service.open_shift(manager, 0)


def cash(amount_cents):
    return {"method": "cash", "cash_received_cents": amount_cents}


def actor_headers(actor, override=False):
    """Helper to create the gateway identity headers for an actor."""
    headers = {
        'X-Actor-Id': str(actor.actor_id),
        'X-Actor-Role': actor.role,
        'X-Store-Id': str(actor.store_id),
    }
    if override:
        headers['X-Manager-Override'] = 'true'
    return headers

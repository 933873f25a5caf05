# Overview: Flask CLI command groups for bootstrap and maintenance.

# backend/tillpoint/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent). Use `flask db upgrade` for migrated databases.
# - python -m flask system seed-demo --store-id 1
#   Demo catalog for a store: products, a discount rule, a supplier and a
#   received purchase order so the products have stock.
#
# Maintenance:
# - python -m flask maintenance purge-idempotency
#   Delete expired idempotency records.

import click
from flask.cli import with_appcontext

from .actor import Actor, ROLE_ADMIN
from .errors import PosError
from .extensions import db
from .models import DiscountRule, Product
from .services import idempotency_service, inventory_service, receive_service


DEMO_PRODUCTS = [
    # sku, name, category, price_cents, margin_bps
    ("COF-001", "House Coffee", "beverage", 2500, 4500),
    ("TEA-001", "Iced Tea", "beverage", 1800, 5000),
    ("CRS-001", "Butter Croissant", "bakery", 2200, 3500),
    ("MUF-001", "Blueberry Muffin", "bakery", 2000, 3000),
    ("CHP-001", "Potato Chips", "snack", 1200, 2500),
]


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Tables created")


@system_group.command('seed-demo')
@click.option('--store-id', default=1, show_default=True, type=int, help='Store to seed')
@click.option('--quantity', default=50, show_default=True, type=int, help='Units received per product')
@with_appcontext
def seed_demo(store_id, quantity):
    """Seed a demo catalog with stock."""
    actor = Actor(actor_id=0, role=ROLE_ADMIN, store_id=store_id)

    products = []
    for sku, name, category, price_cents, margin_bps in DEMO_PRODUCTS:
        existing = db.session.query(Product).filter_by(store_id=store_id, sku=sku).first()
        if existing:
            click.echo(f"WARN  Product '{sku}' already exists, skipping...")
            products.append(existing)
            continue
        product = inventory_service.create_product(
            store_id=store_id,
            sku=sku,
            name=name,
            category=category,
            price_cents=price_cents,
            margin_bps=margin_bps,
        )
        click.echo(f"PASS Created product: {sku} (ID: {product.id})")
        products.append(product)

    if not db.session.query(DiscountRule).filter_by(store_id=store_id).first():
        db.session.add(DiscountRule(
            store_id=store_id,
            name="10% off from 100.00",
            kind="PERCENT",
            percent=10,
            min_subtotal_cents=10000,
            is_active=True,
        ))
        db.session.commit()
        click.echo("PASS Created discount rule: 10% off from 100.00")

    try:
        supplier = receive_service.create_supplier("Demo Supplier")
        po = receive_service.create_purchase_order(
            actor,
            supplier.id,
            [{"product_id": p.id, "quantity": quantity, "unit_cost_cents": p.price_cents // 2} for p in products],
        )
        po = receive_service.receive_purchase_order(po.id, None, actor)
    except PosError as e:
        click.echo(f"FAIL Could not receive demo stock: {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Received {po.document_number}: {quantity} units of {len(products)} products")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('purge-idempotency')
@with_appcontext
def purge_idempotency():
    """Delete expired idempotency records."""
    deleted = idempotency_service.purge_expired()
    click.echo(f"PASS Deleted {deleted} expired idempotency records")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(maintenance_group)

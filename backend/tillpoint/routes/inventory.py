# Overview: Flask API routes for products, suppliers, purchase-order receiving and stock counts.

# backend/tillpoint/routes/inventory.py
"""Catalog and receiving API routes"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import OperationalError

from ..actor import require_elevated
from ..decorators import require_actor
from ..errors import PosError, internal_error_body
from ..services import inventory_service, receive_service
from ..validation import coerce_cents, coerce_int, optional_str, require_str


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api")


@inventory_bp.get("/products")
@require_actor
def list_products_route():
    """Products with derived quantity_on_hand. ?include_inactive=true adds inactive ones."""
    include_inactive = request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
    products = inventory_service.list_products(g.actor.store_id, include_inactive=include_inactive)
    return jsonify({"products": products}), 200


@inventory_bp.post("/products")
@require_actor
def create_product_route():
    """
    Requires: manager/admin role
    Body: {"sku", "name", "price_cents", "margin_bps", "category"}
    """
    try:
        require_elevated(g.actor, "Product creation")
        data = request.get_json(silent=True) or {}

        product = inventory_service.create_product(
            store_id=g.actor.store_id,
            sku=require_str(data.get("sku"), "sku", max_length=64),
            name=require_str(data.get("name"), "name", max_length=255),
            price_cents=coerce_cents(data.get("price_cents"), "price_cents"),
            margin_bps=coerce_int(data.get("margin_bps", 0), "margin_bps"),
            category=optional_str(data.get("category"), "category", max_length=64),
        )
        return jsonify({"product": product.to_dict()}), 201

    except (PosError, OperationalError):
        raise
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify(internal_error_body()), 500


@inventory_bp.get("/suppliers")
@require_actor
def list_suppliers_route():
    suppliers = receive_service.list_suppliers()
    return jsonify({"suppliers": [s.to_dict() for s in suppliers]}), 200


@inventory_bp.post("/suppliers")
@require_actor
def create_supplier_route():
    require_elevated(g.actor, "Supplier creation")
    data = request.get_json(silent=True) or {}
    supplier = receive_service.create_supplier(data.get("name"), data.get("phone"))
    return jsonify({"supplier": supplier.to_dict()}), 201


@inventory_bp.get("/purchase-orders")
@require_actor
def list_purchase_orders_route():
    """?status=OPEN|PARTIAL|RECEIVED|CANCELLED, newest first."""
    orders = receive_service.list_purchase_orders(g.actor.store_id, request.args.get("status"))
    return jsonify({"purchase_orders": [po.to_dict() for po in orders]}), 200


@inventory_bp.post("/purchase-orders")
@require_actor
def create_purchase_order_route():
    """
    Requires: manager/admin role
    Body: {"supplier_id": 1, "lines": [{"product_id", "quantity", "unit_cost_cents"}]}
    """
    try:
        data = request.get_json(silent=True) or {}
        supplier_id = coerce_int(data.get("supplier_id"), "supplier_id")

        po = receive_service.create_purchase_order(g.actor, supplier_id, data.get("lines"))
        return jsonify({"purchase_order": po.to_dict()}), 201

    except (PosError, OperationalError):
        raise
    except Exception:
        current_app.logger.exception("Failed to create purchase order")
        return jsonify(internal_error_body()), 500


@inventory_bp.post("/purchase-orders/<int:purchase_order_id>/receive")
@require_actor
def receive_purchase_order_route(purchase_order_id: int):
    """
    Receive stock against a purchase order.

    Requires: manager/admin role
    Body: {"lines": [{"product_id", "quantity"}]}; omit lines to receive everything outstanding.
    """
    try:
        data = request.get_json(silent=True) or {}

        po = receive_service.receive_purchase_order(purchase_order_id, data.get("lines"), g.actor)
        return jsonify({"purchase_order": po.to_dict()}), 200

    except (PosError, OperationalError):
        raise
    except Exception:
        current_app.logger.exception("Failed to receive purchase order")
        return jsonify(internal_error_body()), 500


@inventory_bp.post("/stock-counts")
@require_actor
def post_stock_count_route():
    """
    Post a physical stock count.

    Requires: manager/admin role
    Body: {"items": [{"product_id", "counted_quantity"}], "notes": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}

        count = inventory_service.post_stock_count(g.actor, data.get("items"), data.get("notes"))
        return jsonify({"stock_count": count.to_dict()}), 201

    except (PosError, OperationalError):
        raise
    except Exception:
        current_app.logger.exception("Failed to post stock count")
        return jsonify(internal_error_body()), 500


@inventory_bp.get("/stock-movements")
@require_actor
def list_stock_movements_route():
    """Movement ledger. Filters: ?product_id=&reference_type=&reference_id="""
    args = request.args
    movements = inventory_service.list_movements(
        g.actor.store_id,
        product_id=coerce_int(args["product_id"], "product_id") if "product_id" in args else None,
        reference_type=args.get("reference_type") or None,
        reference_id=coerce_int(args["reference_id"], "reference_id") if "reference_id" in args else None,
    )
    return jsonify({"movements": [m.to_dict() for m in movements]}), 200

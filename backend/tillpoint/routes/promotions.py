# Overview: Flask API routes for store discount rules.

# backend/tillpoint/routes/promotions.py
"""Discount rule API routes"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import OperationalError

from ..decorators import require_actor
from ..errors import PosError, internal_error_body
from ..services import promotion_service


promotions_bp = Blueprint("promotions", __name__, url_prefix="/api/discount-rules")


@promotions_bp.get("")
@require_actor
def list_discount_rules_route():
    """?active=true limits the list to rules applied at checkout."""
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    rules = promotion_service.list_discount_rules(g.actor.store_id, active_only=active_only)
    return jsonify({"discount_rules": [r.to_dict() for r in rules]}), 200


@promotions_bp.post("")
@require_actor
def create_discount_rule_route():
    """
    Requires: manager/admin role
    Body: {"name", "kind": "PERCENT"|"FLAT", "percent": "10", "flat_cents": 500, "min_subtotal_cents": 0}
    """
    try:
        data = request.get_json(silent=True) or {}

        rule = promotion_service.create_discount_rule(g.actor, data)
        return jsonify({"discount_rule": rule.to_dict()}), 201

    except (PosError, OperationalError):
        raise
    except Exception:
        current_app.logger.exception("Failed to create discount rule")
        return jsonify(internal_error_body()), 500


@promotions_bp.patch("/<int:rule_id>")
@require_actor
def update_discount_rule_route(rule_id: int):
    """Body: {"is_active": false}. Requires: manager/admin role"""
    try:
        data = request.get_json(silent=True) or {}

        rule = promotion_service.set_discount_rule_active(rule_id, data.get("is_active"), g.actor)
        return jsonify({"discount_rule": rule.to_dict()}), 200

    except (PosError, OperationalError):
        raise
    except Exception:
        current_app.logger.exception("Failed to update discount rule")
        return jsonify(internal_error_body()), 500

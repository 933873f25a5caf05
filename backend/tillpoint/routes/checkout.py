# Overview: Flask API routes for checkout, checkout lookup and offline sync.

# backend/tillpoint/routes/checkout.py
"""Checkout API routes"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import OperationalError

from ..decorators import require_actor
from ..errors import PosError, ValidationError, internal_error_body
from ..services import transaction_service


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


@checkout_bp.post("")
@require_actor
def checkout_route():
    """
    Complete a sale from a cart.

    Body:
    {
      "idempotency_key": "...",          (or Idempotency-Key header)
      "items": [{"product_id": 1, "quantity": 2}],
      "payment": {"method": "cash", "cash_received_cents": 50000},
      "tax_rate_percent": "11",          (optional, store default otherwise)
      "manual_discount_cents": 0,        (optional)
      "pricing_override": {...},         (optional, manager/admin only)
      "terminal_id": "T1"                (optional)
    }

    Returns 201 on a new transaction, 200 when the key was already used.
    """
    try:
        data = request.get_json(silent=True) or {}
        key = data.get("idempotency_key") or request.headers.get("Idempotency-Key")

        result = transaction_service.checkout(
            data.get("items"),
            key,
            g.actor,
            payment=data.get("payment"),
            tax_rate_percent=data.get("tax_rate_percent"),
            manual_discount_cents=data.get("manual_discount_cents") or 0,
            override=data.get("pricing_override"),
            terminal_id=data.get("terminal_id"),
        )
        return jsonify(result.to_dict()), 200 if result.replayed else 201

    except (PosError, OperationalError):
        raise
    except Exception:
        current_app.logger.exception("Failed to complete checkout")
        return jsonify(internal_error_body()), 500


@checkout_bp.get("/lookup")
@require_actor
def lookup_route():
    """Outcome of an earlier checkout attempt by idempotency key."""
    key = request.args.get("key")
    if not key:
        raise ValidationError("key query parameter is required")
    return jsonify({"checkout": transaction_service.lookup_checkout(key, g.actor)}), 200


@checkout_bp.post("/sync")
@require_actor
def sync_route():
    """
    Replay checkouts captured offline.

    Body: {"entries": [{"client_transaction_id", "items", "payment", ...}]}
    Returns one result per entry (accepted | duplicate | rejected).
    """
    try:
        data = request.get_json(silent=True) or {}
        entries = data.get("entries")
        if not isinstance(entries, list):
            raise ValidationError("entries must be a list")

        results = transaction_service.sync_offline(entries, g.actor)
        return jsonify({"results": results}), 200

    except (PosError, OperationalError):
        raise
    except Exception:
        current_app.logger.exception("Failed to sync offline checkouts")
        return jsonify(internal_error_body()), 500

# Overview: Flask API routes for transaction history, void and refund.

# backend/tillpoint/routes/transactions.py
"""Transaction API routes"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import OperationalError

from ..decorators import require_actor
from ..errors import PosError, ValidationError, internal_error_body
from ..services import transaction_service
from ..time_utils import parse_iso_datetime
from ..validation import coerce_cents, coerce_int, require_str, optional_str


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.get("")
@require_actor
def list_transactions_route():
    """
    List transactions for the actor's store, newest first.

    Query params:
    - start, end: ISO-8601 datetimes (inclusive)
    - status: PENDING | COMPLETED | VOIDED | REFUNDED
    - limit (default 100, max 500), offset
    """
    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError as e:
        raise ValidationError(f"Invalid datetime: {e}")
    if start and end and start > end:
        raise ValidationError("start must be before end")

    limit = coerce_int(request.args.get("limit", "100"), "limit")
    offset = coerce_int(request.args.get("offset", "0"), "offset")

    transactions = transaction_service.list_transactions(
        g.actor.store_id,
        start=start,
        end=end,
        status=request.args.get("status"),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "transactions": [tx.to_dict(include_lines=False) for tx in transactions],
        "count": len(transactions),
    }), 200


@transactions_bp.get("/<int:transaction_id>")
@require_actor
def get_transaction_route(transaction_id: int):
    tx = transaction_service.get_transaction(transaction_id, g.actor.store_id)
    data = tx.to_dict()
    data["refunds"] = [refund.to_dict() for refund in tx.refunds]
    return jsonify({"transaction": data}), 200


@transactions_bp.post("/<int:transaction_id>/void")
@require_actor
def void_transaction_route(transaction_id: int):
    """
    Void a completed transaction within the void window.

    Requires: manager/admin role or X-Manager-Override
    Body: {"reason": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        reason = require_str(data.get("reason"), "reason")

        tx = transaction_service.void_transaction(transaction_id, reason, g.actor)
        return jsonify({"transaction": tx.to_dict()}), 200

    except (PosError, OperationalError):
        raise
    except Exception:
        current_app.logger.exception("Failed to void transaction")
        return jsonify(internal_error_body()), 500


@transactions_bp.post("/<int:transaction_id>/refunds")
@require_actor
def refund_transaction_route(transaction_id: int):
    """
    Refund part or all of a completed transaction.

    Requires: manager/admin role or X-Manager-Override
    Body: {"amount_cents": 5000, "reason": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        amount_cents = coerce_cents(data.get("amount_cents"), "amount_cents", minimum=1)
        reason = optional_str(data.get("reason"), "reason")

        refund = transaction_service.refund_transaction(transaction_id, amount_cents, reason, g.actor)
        tx = transaction_service.get_transaction(transaction_id, g.actor.store_id)
        return jsonify({"refund": refund.to_dict(), "transaction": tx.to_dict()}), 201

    except (PosError, OperationalError):
        raise
    except Exception:
        current_app.logger.exception("Failed to refund transaction")
        return jsonify(internal_error_body()), 500

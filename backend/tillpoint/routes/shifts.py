# Overview: Flask API routes for shifts and cash-drawer events.

# backend/tillpoint/routes/shifts.py
"""Shift API routes"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import OperationalError

from ..decorators import require_actor
from ..errors import PosError, ValidationError, internal_error_body
from ..services import shift_service
from ..validation import coerce_cents, optional_str


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


@shifts_bp.post("/open")
@require_actor
def open_shift_route():
    """
    Open a shift for the acting cashier in their store.

    Body: {"opening_cash_cents": 100000, "terminal_id": "T1"}
    """
    try:
        data = request.get_json(silent=True) or {}
        opening = coerce_cents(data.get("opening_cash_cents", 0), "opening_cash_cents")
        terminal_id = optional_str(data.get("terminal_id"), "terminal_id", max_length=64)

        shift = shift_service.open_shift(g.actor, opening, terminal_id)
        return jsonify({"shift": shift.to_dict()}), 201

    except (PosError, OperationalError):
        raise
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return jsonify(internal_error_body()), 500


@shifts_bp.post("/<int:shift_id>/close")
@require_actor
def close_shift_route(shift_id: int):
    """
    Close a shift with the counted cash.

    Body: {"closing_cash_cents": 154000, "notes": "..."}
    Variance is recorded, never rejected.
    """
    try:
        data = request.get_json(silent=True) or {}
        if "closing_cash_cents" not in data:
            raise ValidationError("closing_cash_cents is required")
        closing = coerce_cents(data.get("closing_cash_cents"), "closing_cash_cents")
        notes = optional_str(data.get("notes"), "notes", max_length=1024)

        shift = shift_service.close_shift(shift_id, closing, g.actor, notes)
        return jsonify({"shift": shift.to_dict()}), 200

    except (PosError, OperationalError):
        raise
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return jsonify(internal_error_body()), 500


@shifts_bp.get("/active")
@require_actor
def active_shift_route():
    """Open shift for the acting cashier, or null."""
    shift = shift_service.get_open_shift(g.actor.actor_id, g.actor.store_id)
    if shift is None:
        return jsonify({"shift": None}), 200
    return jsonify(shift_service.get_shift_summary(shift.id, g.actor.store_id)), 200


@shifts_bp.get("/<int:shift_id>")
@require_actor
def get_shift_route(shift_id: int):
    return jsonify(shift_service.get_shift_summary(shift_id, g.actor.store_id)), 200


@shifts_bp.post("/<int:shift_id>/drawer-events")
@require_actor
def drawer_event_route(shift_id: int):
    """
    Record a manual cash movement.

    Body: {"kind": "CASH_IN" | "CASH_OUT", "amount_cents": 5000, "reason": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        kind = (data.get("kind") or "").strip().upper() if isinstance(data.get("kind"), str) else ""
        if kind not in shift_service.MANUAL_EVENT_TYPES:
            raise ValidationError(
                f"kind must be one of: {', '.join(sorted(shift_service.MANUAL_EVENT_TYPES))}",
                details={"kind": data.get("kind")},
            )
        amount = coerce_cents(data.get("amount_cents"), "amount_cents", minimum=1)
        reason = optional_str(data.get("reason"), "reason")

        event = shift_service.record_drawer_event(shift_id, kind, amount, g.actor, reason=reason)
        return jsonify({"drawer_event": event.to_dict()}), 201

    except (PosError, OperationalError):
        raise
    except Exception:
        current_app.logger.exception("Failed to record drawer event")
        return jsonify(internal_error_body()), 500

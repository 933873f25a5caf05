# Overview: Flask API routes for the daily sales report and audit trail.

# backend/tillpoint/routes/reports.py
"""Reporting API routes"""

from flask import Blueprint, request, jsonify, g

from ..actor import require_elevated
from ..decorators import require_actor
from ..services import reporting_service
from ..validation import coerce_int


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/daily")
@require_actor
def daily_report_route():
    """?date=YYYY-MM-DD (UTC), today when omitted. Requires: manager/admin role"""
    require_elevated(g.actor, "Daily report")
    report = reporting_service.daily_report(g.actor.store_id, request.args.get("date"))
    return jsonify(report), 200


@reports_bp.get("/audit")
@require_actor
def audit_trail_route():
    """
    Audit events newest first.

    Requires: manager/admin role
    Query: ?date=YYYY-MM-DD&entity_type=&action=&limit=100 (last 24 hours without date)
    """
    require_elevated(g.actor, "Audit trail")
    args = request.args
    limit = coerce_int(args["limit"], "limit") if "limit" in args else reporting_service.DEFAULT_AUDIT_LIMIT

    report = reporting_service.audit_trail(
        g.actor.store_id,
        day=args.get("date"),
        entity_type=args.get("entity_type") or None,
        action=args.get("action") or None,
        limit=limit,
    )
    return jsonify(report), 200

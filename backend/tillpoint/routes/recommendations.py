# Overview: Flask API route for cart upsell suggestions.

# backend/tillpoint/routes/recommendations.py

from flask import Blueprint, request, jsonify, g

from ..decorators import require_actor
from ..errors import ValidationError
from ..services import recommendation_service
from ..validation import coerce_int


recommendations_bp = Blueprint("recommendations", __name__, url_prefix="/api/recommendations")


@recommendations_bp.post("")
@require_actor
def recommend_route():
    """
    Body: {"product_ids": [1, 2]} or {"items": [{"product_id": 1, "quantity": 2}]}

    Quantities do not affect the suggestions.
    """
    data = request.get_json(silent=True) or {}
    if "product_ids" in data:
        raw_ids = data.get("product_ids")
        if not isinstance(raw_ids, list):
            raise ValidationError("product_ids must be a list")
        product_ids = [coerce_int(pid, f"product_ids[{i}]") for i, pid in enumerate(raw_ids)]
    else:
        items = data.get("items") or []
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise ValidationError("items must be a list of objects")
        product_ids = [coerce_int(item.get("product_id"), f"items[{i}].product_id") for i, item in enumerate(items)]

    return jsonify(recommendation_service.recommend(product_ids, g.actor.store_id)), 200

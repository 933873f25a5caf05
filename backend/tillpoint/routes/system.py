# backend/tillpoint/routes/system.py
"""
System health endpoint.

Checks the database (critical) and the recommendation cache (optional:
a failing cache only degrades upsell suggestions).
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..cache import EXTENSION_KEY, RedisRecommendationCache
from ..extensions import db
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_cache_health() -> dict:
    cache = current_app.extensions.get(EXTENSION_KEY)
    if not isinstance(cache, RedisRecommendationCache):
        return {"status": "disabled"}

    start_time = time.time()
    ok = cache.ping()
    elapsed_ms = (time.time() - start_time) * 1000
    if not ok:
        current_app.logger.warning("Recommendation cache ping failed")
        return {"status": "degraded", "latency_ms": round(elapsed_ms, 2), "warning": "Cache unreachable"}
    return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (cache down)
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    cache_health = check_cache_health()

    if database_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif cache_health["status"] == "degraded":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    total_elapsed_ms = (time.time() - start_time) * 1000
    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "recommendation_cache": cache_health,
        },
    }, http_status

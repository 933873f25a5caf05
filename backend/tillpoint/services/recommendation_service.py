# Overview: Cache-aside orchestration around the upsell engine.

from __future__ import annotations

import hashlib
import logging
from typing import Iterable

from flask import current_app

from ..cache import EXTENSION_KEY, CacheError, NoopRecommendationCache, RecommendationCache
from . import recommendation_engine


logger = logging.getLogger(__name__)

KEY_PREFIX = "pos:recommendation:"
EMPTY_CART_COOLDOWN_SECONDS = 30
DEFAULT_COOLDOWN_SECONDS = 45


def cache_key(store_id: int, product_ids: Iterable[int]) -> str:
    """Same store + same set of products -> same key, whatever the order or quantities."""
    ids = sorted({int(pid) for pid in product_ids})
    raw = "|".join([str(store_id)] + [str(pid) for pid in ids])
    return KEY_PREFIX + hashlib.sha1(raw.encode("utf-8")).hexdigest()


def _default_cache() -> RecommendationCache:
    return current_app.extensions.get(EXTENSION_KEY) or NoopRecommendationCache()


def _default_ttl() -> int:
    return max(1, int(current_app.config.get("RECOMMENDATION_TTL_SECONDS", 20)))


def build_payload(store_id: int, product_ids: Iterable[int]) -> dict:
    suggestions = recommendation_engine.suggest_upsells(store_id, product_ids)
    return {
        "store_id": store_id,
        "items": [s.to_dict() for s in suggestions],
        "ui_policy": {
            "show": bool(suggestions),
            "cooldown_seconds": DEFAULT_COOLDOWN_SECONDS,
        },
    }


def recommend(
    product_ids: Iterable[int],
    store_id: int,
    *,
    cache: RecommendationCache | None = None,
    ttl: int | None = None,
) -> dict:
    """
    Upsell suggestions for a cart, served cache-aside.

    Hit -> cached payload. Miss -> compute, store with the TTL, return.
    A failing cache is logged and bypassed; it never fails the caller.
    """
    ids = sorted({int(pid) for pid in product_ids or ()})
    if not ids:
        return {
            "store_id": store_id,
            "items": [],
            "ui_policy": {"show": False, "cooldown_seconds": EMPTY_CART_COOLDOWN_SECONDS},
        }

    cache = cache if cache is not None else _default_cache()
    key = cache_key(store_id, ids)

    try:
        cached, found = cache.get(key)
    except CacheError as e:
        logger.warning("Recommendation cache get failed (%s); computing without cache", e)
        cached, found = None, False
    if found and cached is not None:
        return cached

    payload = build_payload(store_id, ids)

    try:
        cache.set(key, payload, ttl if ttl is not None else _default_ttl())
    except CacheError as e:
        logger.warning("Recommendation cache set failed (%s); result not cached", e)
    return payload

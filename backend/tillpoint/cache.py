"""
Recommendation cache backends.

The cache is never a source of truth: entries are short-lived JSON payloads
keyed by store + cart. Backends raise CacheError for any failure and the
orchestrator degrades to compute-without-caching.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol

import redis
from flask import Flask
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

EXTENSION_KEY = "tillpoint.recommendation_cache"


class CacheError(Exception):
    """Cache backend failed (unreachable, timeout, corrupt entry)."""


class RecommendationCache(Protocol):
    def get(self, key: str) -> tuple[Optional[dict], bool]:
        """(payload, found). Raises CacheError."""
        ...

    def set(self, key: str, payload: dict, ttl: int) -> None:
        """Store payload for ttl seconds. Raises CacheError."""
        ...


class NoopRecommendationCache:
    """Always misses, never stores."""

    def get(self, key: str) -> tuple[Optional[dict], bool]:
        return None, False

    def set(self, key: str, payload: dict, ttl: int) -> None:
        return None


class RedisRecommendationCache:
    """
    Redis-backed cache (SETEX with JSON payloads).

    The client is created lazily by redis-py; no connection is made until the
    first get/set, so an unreachable Redis only degrades recommendations.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisRecommendationCache":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=1,
            socket_timeout=1,
            retry_on_timeout=False,
            health_check_interval=30,
        )
        return cls(client)

    def get(self, key: str) -> tuple[Optional[dict], bool]:
        try:
            raw = self.client.get(key)
        except RedisError as e:
            raise CacheError(f"get failed: {e}") from e
        if raw is None:
            return None, False
        try:
            payload: Any = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise CacheError(f"corrupt entry for {key}: {e}") from e
        if not isinstance(payload, dict):
            raise CacheError(f"corrupt entry for {key}: not an object")
        return payload, True

    def set(self, key: str, payload: dict, ttl: int) -> None:
        try:
            serialized = json.dumps(payload, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise CacheError(f"payload not serializable: {e}") from e
        try:
            self.client.setex(key, max(1, int(ttl)), serialized)
        except RedisError as e:
            raise CacheError(f"set failed: {e}") from e

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError:
            return False


def build_recommendation_cache(app: Flask) -> RecommendationCache:
    """Redis when REDIS_URL is set, otherwise the no-op cache."""
    url = app.config.get("REDIS_URL")
    if not url:
        logger.info("REDIS_URL not set; recommendation cache disabled")
        return NoopRecommendationCache()
    logger.info("Recommendation cache: %s", url)
    return RedisRecommendationCache.from_url(url)


def init_app(app: Flask) -> None:
    app.extensions[EXTENSION_KEY] = build_recommendation_cache(app)

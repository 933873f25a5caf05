# backend/tillpoint/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int, minimum: int | None = None) -> int:
    raw = os.environ.get(name)
    try:
        value = int(raw) if raw else default
    except ValueError:
        value = default
    if minimum is not None and value < minimum:
        value = minimum
    return value


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tillpoint.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tillpoint.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Recommendation cache (unset REDIS_URL -> no-op cache)
    REDIS_URL = os.environ.get("REDIS_URL") or None
    RECOMMENDATION_TTL_SECONDS = _int_env("RECOMMENDATION_TTL_SECONDS", 20, minimum=1)

    # Transaction lifecycle policy
    VOID_WINDOW_MINUTES = _int_env("VOID_WINDOW_MINUTES", 30, minimum=0)
    # Never shorter than an hour: terminals retry across reconnects
    IDEMPOTENCY_TTL_HOURS = _int_env("IDEMPOTENCY_TTL_HOURS", 24, minimum=1)
    DEFAULT_TAX_RATE_PERCENT = os.environ.get("DEFAULT_TAX_RATE_PERCENT", "0")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    REDIS_URL = None
    VOID_WINDOW_MINUTES = 30
    IDEMPOTENCY_TTL_HOURS = 24
    DEFAULT_TAX_RATE_PERCENT = "0"

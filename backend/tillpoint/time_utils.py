from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_utc(dt: datetime) -> datetime:
    """Aware datetimes are converted to UTC; naive ones are already UTC."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 query/body value into a UTC-naive datetime.

    Accepts a trailing 'Z' or an explicit offset; None and "" give None.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return normalize_utc(datetime.fromisoformat(s))


def is_within_window(started_at: datetime, window: timedelta, now: Optional[datetime] = None) -> bool:
    """Inclusive: an action exactly `window` after `started_at` is still inside."""
    now = normalize_utc(now) if now is not None else utcnow()
    return now - normalize_utc(started_at) <= window


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize as ISO-8601 with trailing 'Z' (naive is treated as UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")

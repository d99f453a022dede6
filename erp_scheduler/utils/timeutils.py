from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """
    Current time as a naive UTC datetime.

    Timestamps are stored naive-UTC everywhere; SQLite doesn't preserve tzinfo,
    so mixing aware and naive values breaks comparisons in queries.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def iso_utc(dt: Optional[datetime]) -> Optional[str]:
    # RFC3339 with 'Z' and milliseconds (JS Date parsing compatibility across browsers).
    aware = ensure_utc(dt)
    if aware is None:
        return None
    return aware.isoformat(timespec="milliseconds").replace("+00:00", "Z")

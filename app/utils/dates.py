"""Timestamp helpers shared by the store and the dispatch engines.

Everything is normalised to aware UTC; naive values are assumed to be UTC
already (SQLite hands back naive datetimes even for timezone-aware columns).
Text timestamps are stricter: ``parse_iso8601`` requires an explicit offset.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware_utc(dt: datetime) -> datetime:
    """Normalize any datetime to aware UTC (naive => assume UTC)."""
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso8601(value: Optional[str]) -> datetime:
    """Parse an RFC 3339 timestamp into aware UTC.

    Accepts a trailing ``Z``. Raises ``ValueError`` for empty or malformed input,
    including date-only and naive values that carry no UTC offset.
    """
    if not value or not value.strip():
        raise ValueError("empty timestamp")
    s = value.strip()
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    has_time = len(s) > 10 and s[10] in "Tt "
    if not has_time or dt.tzinfo is None or dt.utcoffset() is None:
        raise ValueError(f"timestamp {value!r} has no time or UTC offset")
    return dt.astimezone(timezone.utc)

"""
UTC helpers for session timestamps.

SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
columns, so everything read from the database passes through ``as_utc``.
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime (patch this in tests)."""
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to a naive datetime; aware datetimes and None pass through.

    Aware values keep their own offset rather than being converted.
    """
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)

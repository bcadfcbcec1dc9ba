# utils/converters.py
from datetime import datetime, timezone
from typing import Any, Optional


def from_unix(ts: Any) -> Optional[datetime]:
    """
    Stripe epoch seconds -> aware UTC datetime (second precision). None/"" stay None.
    """
    if ts is None or ts == "":
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        # SQLite hands back naive values; they are stored as UTC
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

"""UTC helpers; every timestamp stored by ClassPay is a UTC instant."""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Return ``dt`` as an aware UTC datetime.

    Some dialects (SQLite) hand back naive values for timezone-aware columns;
    those are UTC by construction, so the tzinfo is attached rather than
    converted.
    """
    if dt is None:
        return None
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

# tripsync/Core/time_utils.py
"""
UTC helpers.

Every timestamp in the service is timezone-aware UTC. SQLite hands back
naive datetimes, so values read from the database pass through
``ensure_utc`` before they are compared.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

"""
Civil-time timestamp helpers.

Persisted research timestamps are ``YYYY-MM-DD HH:MM:SS`` strings in a fixed
civil timezone, so plain string comparison orders them chronologically.
"""

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

from marginalia.config import get_settings

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def format_civil(moment: datetime, tz_name: Optional[str] = None) -> str:
    """Format an aware (or UTC-naive) datetime in the configured civil zone."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    zone = _zone(tz_name or get_settings().research.timezone)
    return moment.astimezone(zone).strftime(TIMESTAMP_FORMAT)


def now_civil(tz_name: Optional[str] = None) -> str:
    """Current time as a persisted timestamp string."""
    return format_civil(datetime.now(timezone.utc), tz_name)


def civil_after(hours: float, tz_name: Optional[str] = None) -> str:
    """Timestamp string ``hours`` from now, used for record expiry."""
    return format_civil(datetime.now(timezone.utc) + timedelta(hours=hours), tz_name)

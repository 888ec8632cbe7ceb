"""
Timezone utilities: attendance timestamps are stored in UTC, while "today",
punctuality and daily summaries are evaluated on the company's local clock.
"""

from datetime import date, datetime
from datetime import time as datetime_time
from datetime import timezone
from typing import Optional, Tuple, Union
from zoneinfo import ZoneInfo

from core.settings import APP_TIMEZONE


def ensure_timezone_aware(dt: datetime) -> datetime:
    """
    Ensure a datetime is timezone-aware, defaulting to UTC if naive.

    SQLite hands stored datetimes back naive; they were written as UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def from_utc_to_local(utc_dt: datetime, tz: str = APP_TIMEZONE) -> datetime:
    """
    Convert UTC datetime to local datetime in the specified timezone.

    Args:
        utc_dt: UTC datetime (naive values are treated as UTC)
        tz: IANA timezone string (e.g., 'America/Sao_Paulo')

    Returns:
        datetime: Local datetime in the specified timezone
    """
    return ensure_timezone_aware(utc_dt).astimezone(ZoneInfo(tz))


def local_day_bounds(
    date_or_dt: Union[date, datetime], tz: str = APP_TIMEZONE
) -> Tuple[datetime, datetime]:
    """
    Get the [start, end] of a local calendar day, expressed in UTC.

    Args:
        date_or_dt: date, or datetime (converted to the local day first)
        tz: IANA timezone string

    Returns:
        Tuple of (start_of_day_utc, end_of_day_utc)
    """
    if isinstance(date_or_dt, datetime):
        local_date = from_utc_to_local(date_or_dt, tz).date()
    else:
        local_date = date_or_dt

    target_tz = ZoneInfo(tz)
    local_start = datetime.combine(local_date, datetime_time.min, tzinfo=target_tz)
    local_end = datetime.combine(local_date, datetime_time.max, tzinfo=target_tz)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)


def format_utc_datetime(dt: Optional[datetime]) -> Optional[str]:
    """ISO 8601 in UTC with a 'Z' suffix (naive values are treated as UTC)."""
    if dt is None:
        return None
    return ensure_timezone_aware(dt).astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

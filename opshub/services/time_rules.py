"""
Time rules and timezone conversions.

Timestamps are stored in UTC. Business dates (``YYYY-MM-DD``) and shift
times (``HH:MM``) are local to ``settings.tz_default``.
"""
import math
from datetime import datetime, date, time, timedelta
from enum import Enum
from typing import Optional, Tuple
import pytz
from ..config import settings
from ..errors import ValidationError


def utc_now() -> datetime:
    return datetime.now(tz=pytz.UTC)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalise a datetime to timezone-aware UTC.

    Naive values are taken to already be UTC (SQLite hands them back naive).
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def utc_to_local(utc_datetime: datetime, timezone_str: Optional[str] = None) -> datetime:
    """
    Convert UTC datetime to local timezone.

    Args:
        utc_datetime: UTC datetime (timezone-aware or naive)
        timezone_str: Timezone string (defaults to TZ_DEFAULT)

    Returns:
        Local datetime (timezone-aware)
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    return ensure_utc(utc_datetime).astimezone(tz)


def local_to_utc(local_datetime: datetime, timezone_str: Optional[str] = None) -> datetime:
    """
    Convert local datetime to UTC.

    Args:
        local_datetime: Local datetime (naive)
        timezone_str: Timezone string (defaults to TZ_DEFAULT)

    Returns:
        UTC datetime (timezone-aware)
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    if local_datetime.tzinfo is None:
        local_dt = tz.localize(local_datetime)
    else:
        local_dt = local_datetime.astimezone(tz)
    return local_dt.astimezone(pytz.UTC)


def local_date_str(dt: datetime, timezone_str: Optional[str] = None) -> str:
    """Business date (YYYY-MM-DD) of a UTC instant."""
    return utc_to_local(dt, timezone_str).strftime("%Y-%m-%d")


def parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date: {value!r} (expected YYYY-MM-DD)")


def parse_hhmm(value: str) -> time:
    try:
        return datetime.strptime(value, "%H:%M").time()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid time: {value!r} (expected HH:MM)")


def combine_date_time(date_str: str, hhmm: str, timezone_str: Optional[str] = None) -> datetime:
    """
    Combine a local business date and HH:MM into a UTC datetime.

    Args:
        date_str: YYYY-MM-DD
        hhmm: HH:MM
        timezone_str: Timezone string (defaults to TZ_DEFAULT)

    Returns:
        UTC datetime (timezone-aware)
    """
    naive_dt = datetime.combine(parse_date(date_str), parse_hhmm(hhmm))
    return local_to_utc(naive_dt, timezone_str)


def format_hhmm(dt: datetime, timezone_str: Optional[str] = None) -> str:
    return utc_to_local(dt, timezone_str).strftime("%H:%M")


def local_day_bounds(date_str: str, timezone_str: Optional[str] = None):
    """UTC [start, end) of a local business date."""
    start = combine_date_time(date_str, "00:00", timezone_str)
    next_day = (parse_date(date_str) + timedelta(days=1)).strftime("%Y-%m-%d")
    return start, combine_date_time(next_day, "00:00", timezone_str)


def minutes_between(start: datetime, end: datetime) -> float:
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 60


class ArrivalStatus(str, Enum):
    on_time = "on_time"
    grace_period = "grace_period"
    late = "late"


def evaluate_arrival(
    scheduled_start: datetime,
    actual_start: datetime,
    on_time_window: Optional[int] = None,
    grace_minutes: Optional[int] = None,
) -> Tuple[ArrivalStatus, int]:
    """
    Classify a clock-in against its scheduled start.

    Whole minutes past the scheduled start are compared against the on-time
    window, then the grace band after it. Anything beyond is late.

    Args:
        scheduled_start: Scheduled start (UTC)
        actual_start: Earliest clock-in (UTC)
        on_time_window: Minutes still on time (default from settings)
        grace_minutes: Width of the grace band (default from settings)

    Returns:
        (status, minutes past the scheduled start, never negative)
    """
    if on_time_window is None:
        on_time_window = settings.attendance_on_time_window_min
    if grace_minutes is None:
        grace_minutes = settings.attendance_grace_period_min

    minutes_late = max(0, math.floor(minutes_between(scheduled_start, actual_start)))
    if minutes_late <= on_time_window:
        return ArrivalStatus.on_time, minutes_late
    if minutes_late <= on_time_window + grace_minutes:
        return ArrivalStatus.grace_period, minutes_late
    return ArrivalStatus.late, minutes_late

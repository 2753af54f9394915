"""Date and time utilities for the Special Dates application."""

from datetime import date, datetime, timedelta
from typing import Union

import pytz

from .exceptions import ConfigurationError


def get_timezone(tz_name: str) -> pytz.BaseTzInfo:
    """
    Resolve a timezone name.

    Args:
        tz_name: IANA timezone name (e.g. "Europe/Istanbul")

    Returns:
        pytz timezone

    Raises:
        ConfigurationError: If the name is unknown
    """
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError as e:
        raise ConfigurationError(f"Unknown timezone: {tz_name}") from e


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure datetime is in UTC.

    Args:
        dt: Datetime to convert

    Returns:
        UTC datetime
    """
    if dt.tzinfo is None:
        return pytz.utc.localize(dt)
    return dt.astimezone(pytz.utc)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(pytz.utc)


def local_today(tz_name: str = "UTC") -> date:
    """
    Today's calendar date in the given timezone.

    A day runs midnight to midnight in this timezone; everything that asks
    "is it today" goes through here.
    """
    return utc_now().astimezone(get_timezone(tz_name)).date()


def to_local_date(value: Union[date, datetime], tz_name: str = "UTC") -> date:
    """
    Calendar date of a provider timestamp in the given timezone.

    Naive datetimes are taken as UTC. Plain dates are returned unchanged.
    """
    if not isinstance(value, datetime):
        return value
    return ensure_utc(value).astimezone(get_timezone(tz_name)).date()


def get_sync_window(
    lookback_days: int = 365,
    lookahead_days: int = 365,
) -> tuple[datetime, datetime]:
    """
    Get the sync window (start, end) in UTC.

    Args:
        lookback_days: Days to look back from now
        lookahead_days: Days to look ahead from now

    Returns:
        Tuple of (start_date, end_date) in UTC
    """
    now = utc_now()
    today_midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    start = today_midnight - timedelta(days=lookback_days)
    # End at midnight after the last day to include all of it
    end = today_midnight + timedelta(days=lookahead_days + 1)
    return start, end


def week_bounds(day: date) -> tuple[date, date]:
    """Monday and Sunday of the week containing ``day``."""
    start = day - timedelta(days=day.weekday())
    return start, start + timedelta(days=6)

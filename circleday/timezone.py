"""
Timezone conversion utilities.
"""

from datetime import date, datetime, timedelta

import pytz


def resolve_timezone(*candidates: str | None, default: str = "UTC") -> str:
    """
    Pick the first valid timezone name from candidates.

    Recipient timezones come from user-editable fields, so unknown names
    are skipped rather than raised.

    Returns:
        A timezone name accepted by pytz (falls back to default)
    """
    for tz_name in candidates:
        if not tz_name:
            continue
        try:
            pytz.timezone(tz_name)
        except pytz.UnknownTimeZoneError:
            continue
        return tz_name
    return default


def local_hour_to_utc(day: date, hour: int, tz_name: str) -> datetime:
    """
    Convert a local calendar day at a given hour to an aware UTC datetime.

    Args:
        day: Local calendar date
        hour: Hour in 24-hour format (0-23)
        tz_name: Timezone string (e.g., "America/New_York")

    Returns:
        Timezone-aware datetime in UTC
    """
    tz = pytz.timezone(tz_name)

    # is_dst=None would raise on DST gaps; pick standard time instead
    local_dt = tz.localize(datetime(day.year, day.month, day.day, hour, 0), is_dst=False)

    return local_dt.astimezone(pytz.UTC)


def today_in_timezone(tz_name: str, now: datetime | None = None) -> date:
    """
    Get the current calendar date in a timezone.

    Args:
        tz_name: Timezone string
        now: Override for the current instant (naive datetimes treated as UTC)
    """
    if now is None:
        now = datetime.now(pytz.UTC)
    elif now.tzinfo is None:
        now = pytz.UTC.localize(now)

    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        tz = pytz.UTC

    return now.astimezone(tz).date()


def utc_day_bounds(now: datetime | None = None) -> tuple[datetime, datetime]:
    """
    Get [start, end) of the current UTC day.

    Returns:
        (start_of_day, start_of_next_day) as aware UTC datetimes
    """
    if now is None:
        now = datetime.now(pytz.UTC)
    elif now.tzinfo is None:
        now = pytz.UTC.localize(now)

    start = now.astimezone(pytz.UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def format_date_long(day: date) -> str:
    """Format a date like "January 9, 2025"."""
    return f"{day.strftime('%B')} {day.day}, {day.year}"


def format_date_short(day: date) -> str:
    """Format a date like "Jan 9, 2025"."""
    return f"{day.strftime('%b')} {day.day}, {day.year}"

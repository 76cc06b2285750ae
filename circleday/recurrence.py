"""
Recurrence resolution for occasions.

Computes when a birthday, anniversary or custom date next falls relative
to "today". Recurring occasions repeat on the anchor's month/day every
year; one-time occasions stay on their anchor date.

Feb 29 anchors follow the group's leap-day policy in non-leap years:
    FEB_28 - celebrate on Feb 28 (default)
    MAR_1  - celebrate on Mar 1
"""

import calendar
from dataclasses import dataclass
from datetime import date

from .enums import LeapDayPolicy


@dataclass(frozen=True)
class Occurrence:
    """Resolved next occurrence of an occasion."""

    date: date
    days_until: int
    years: int | None  # age for birthdays, years for anniversaries


def parse_leap_day_policy(value) -> LeapDayPolicy:
    """Coerce a stored policy value, defaulting to FEB_28."""
    try:
        return LeapDayPolicy(value)
    except ValueError:
        return LeapDayPolicy.FEB_28


def anniversary_in_year(
    anchor: date,
    year: int,
    leap_day_policy: LeapDayPolicy = LeapDayPolicy.FEB_28,
) -> date:
    """
    Place an anchor's month/day into a given year.

    Args:
        anchor: Original occasion date
        year: Target year
        leap_day_policy: How to place Feb 29 in non-leap years

    Returns:
        The anniversary date in `year`
    """
    if anchor.month == 2 and anchor.day == 29 and not calendar.isleap(year):
        if leap_day_policy == LeapDayPolicy.MAR_1:
            return date(year, 3, 1)
        return date(year, 2, 28)
    return date(year, anchor.month, anchor.day)


def next_occurrence(
    anchor: date,
    repeat: bool,
    today: date,
    leap_day_policy: LeapDayPolicy = LeapDayPolicy.FEB_28,
) -> date:
    """
    Compute the next calendar occurrence of an occasion.

    One-time occasions return the anchor unchanged (it may be in the past;
    the scheduling horizon filters those out). Recurring occasions return
    this year's anniversary, or next year's if this year's has passed.
    The result for recurring occasions is always >= today.
    """
    if not repeat:
        return anchor

    candidate = anniversary_in_year(anchor, today.year, leap_day_policy)
    if candidate < today:
        candidate = anniversary_in_year(anchor, today.year + 1, leap_day_policy)
    return candidate


def days_until(target: date, today: date) -> int:
    """Whole days from today to target (negative if target is past)."""
    return (target - today).days


def years_since(anchor: date, occurrence: date, year_known: bool) -> int | None:
    """Age/duration at an occurrence, only when the anchor year is known."""
    if not year_known:
        return None
    return occurrence.year - anchor.year


def resolve_occurrence(
    event: dict,
    today: date,
    leap_day_policy: LeapDayPolicy = LeapDayPolicy.FEB_28,
) -> Occurrence:
    """
    Resolve an event row into its next occurrence.

    Args:
        event: Dict with "date", "repeat" and "year_known" keys
        today: Start-of-day in the reference timezone
        leap_day_policy: Group's Feb 29 handling
    """
    anchor = event["date"]
    if anchor is None:
        raise ValueError(f"Event {event.get('event_id')} has no date")

    occurrence = next_occurrence(anchor, event.get("repeat", True), today, leap_day_policy)
    return Occurrence(
        date=occurrence,
        days_until=days_until(occurrence, today),
        years=years_since(anchor, occurrence, event.get("year_known", True)),
    )

"""
Offset matching for reminder rules.

A rule carries signed day offsets relative to an occurrence
(negative = before, 0 = on the day, positive = after) and a mapping
from each offset to the channels it fires on:

    offsets  = [-7, -1, 0]
    channels = {"-7": ["EMAIL"], "-1": ["EMAIL", "SMS"], "0": ["EMAIL"]}
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta

from .enums import ChannelType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OffsetMatch:
    """An offset whose send date falls inside the scheduling window."""

    offset: int
    channels: tuple[ChannelType, ...]
    send_date: date


def channels_for_offset(channels_map: dict | None, offset: int) -> list[ChannelType]:
    """
    Look up the channels configured for an offset.

    Keys are stored as strings (JSON object keys). Unknown channel names
    are dropped with a warning; duplicates are collapsed in order.
    """
    if not channels_map:
        return []

    raw = channels_map.get(str(offset)) or []
    resolved: list[ChannelType] = []
    for name in raw:
        try:
            channel = ChannelType(name)
        except ValueError:
            logger.warning(f"Ignoring unknown channel {name!r} for offset {offset}")
            continue
        if channel not in resolved:
            resolved.append(channel)
    return resolved


def offsets_due_today(offsets: list[int], days_until: int) -> list[int]:
    """
    Offsets that fire today for an occasion `days_until` days away.

    Only before/on-the-day offsets can match a future occurrence:
    a match is `days_until == abs(offset)`.
    """
    return [offset for offset in offsets if offset <= 0 and days_until == abs(offset)]


def match_offsets(
    offsets: list[int],
    channels_map: dict | None,
    occurrence: date,
    today: date,
    horizon_days: int,
) -> list[OffsetMatch]:
    """
    Offsets whose send date falls within [today, today + horizon_days].

    Offsets without channels are skipped. Offsets due beyond the horizon
    are left for a later scheduling pass.
    """
    deadline = today + timedelta(days=horizon_days)
    matches = []
    for offset in sorted(set(offsets)):
        channels = channels_for_offset(channels_map, offset)
        if not channels:
            continue

        send_date = occurrence + timedelta(days=offset)
        if send_date < today or send_date > deadline:
            continue

        matches.append(OffsetMatch(offset=offset, channels=tuple(channels), send_date=send_date))
    return matches

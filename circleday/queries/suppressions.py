"""Suppression lookups using SQLAlchemy Core."""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncConnection

from ..enums import ChannelType
from ..identifiers import suppression_lookup_keys
from ..tables import suppressions


def _stored_key(channel: ChannelType):
    """SQL form of `identifiers.suppression_key` for the stored column."""
    if channel == ChannelType.SMS:
        return func.regexp_replace(suppressions.c.identifier, r"\D", "", "g")
    return func.lower(func.trim(suppressions.c.identifier))


async def is_identifier_suppressed(
    conn: AsyncConnection,
    identifier: str,
    channel: ChannelType,
) -> bool:
    """
    Check for a suppression row matching (identifier, channel).

    Both sides are normalized, so an opt-out stored as "Jane@Example.com"
    or "415-555-2671" matches "jane@example.com" or "+14155552671".
    """
    result = await conn.execute(
        select(suppressions.c.suppression_id)
        .where(_stored_key(channel).in_(suppression_lookup_keys(identifier, channel)))
        .where(suppressions.c.channel == channel)
        .limit(1)
    )
    return result.first() is not None

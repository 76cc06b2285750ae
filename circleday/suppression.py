"""
Suppression (opt-out) checks.

A suppression row for (identifier, channel) means "never deliver on this
channel to this address". Stored and looked-up identifiers are compared
in normalized form.
"""

from sqlalchemy.ext.asyncio import AsyncConnection

from .enums import ChannelType
from .identifiers import normalize_identifier
from .queries.suppressions import is_identifier_suppressed


async def is_suppressed(
    conn: AsyncConnection,
    identifier: str,
    channel: ChannelType,
) -> bool:
    """Check whether an identifier has opted out of a channel."""
    return await is_identifier_suppressed(conn, identifier, channel)


class SuppressionCache:
    """
    Memoizes suppression lookups for one scheduling pass.

    The same recipient is usually checked once per event and offset, so
    a pass would otherwise repeat identical queries.
    """

    def __init__(self, conn: AsyncConnection):
        self._conn = conn
        self._results: dict[tuple[str, ChannelType], bool] = {}

    async def is_suppressed(self, identifier: str, channel: ChannelType) -> bool:
        key = (normalize_identifier(identifier, channel), channel)
        if key not in self._results:
            self._results[key] = await is_suppressed(self._conn, identifier, channel)
        return self._results[key]

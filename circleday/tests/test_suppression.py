"""Tests for suppression lookups."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from circleday.enums import ChannelType
from circleday.identifiers import suppression_key, suppression_lookup_keys
from circleday.queries.suppressions import is_identifier_suppressed
from circleday.suppression import SuppressionCache, is_suppressed

# Opt-outs as a collaborator might have stored them, unnormalized
STORED = [
    ("Jane@Example.com", ChannelType.EMAIL),
    ("4155552671", ChannelType.SMS),
    ("+44 20 7946 0958", ChannelType.SMS),
]


async def _fake_lookup(conn, identifier, channel):
    """Applies the same key comparison the SQL query does, over STORED."""
    keys = suppression_lookup_keys(identifier, channel)
    return any(
        stored_channel == channel and suppression_key(stored, channel) in keys
        for stored, stored_channel in STORED
    )


class TestIsSuppressed:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "identifier, channel",
        [
            ("Jane@Example.com", ChannelType.EMAIL),
            (" jane@example.com", ChannelType.EMAIL),
            ("4155552671", ChannelType.SMS),
            ("+14155552671", ChannelType.SMS),
            ("(415) 555-2671", ChannelType.SMS),
            ("+442079460958", ChannelType.SMS),
        ],
    )
    async def test_matches_stored_raw_identifiers(self, identifier, channel):
        with patch("circleday.suppression.is_identifier_suppressed", _fake_lookup):
            assert await is_suppressed(AsyncMock(), identifier, channel) is True

    @pytest.mark.asyncio
    async def test_other_channel_or_address_not_suppressed(self):
        with patch("circleday.suppression.is_identifier_suppressed", _fake_lookup):
            assert await is_suppressed(AsyncMock(), "jane@example.com", ChannelType.SMS) is False
            assert await is_suppressed(AsyncMock(), "john@example.com", ChannelType.EMAIL) is False
            assert await is_suppressed(AsyncMock(), "+14155550000", ChannelType.SMS) is False


class TestSuppressionQuery:
    async def _compiled(self, identifier, channel):
        conn = MagicMock()
        conn.execute = AsyncMock(return_value=MagicMock(first=MagicMock(return_value=(1,))))

        assert await is_identifier_suppressed(conn, identifier, channel) is True

        stmt = conn.execute.await_args.args[0]
        return stmt.compile(dialect=postgresql.dialect())

    @pytest.mark.asyncio
    async def test_email_normalizes_stored_column(self):
        compiled = await self._compiled("Jane@Example.com", ChannelType.EMAIL)

        assert "lower(trim(suppressions.identifier))" in str(compiled)
        assert "jane@example.com" in str(compiled.params.values())

    @pytest.mark.asyncio
    async def test_phone_compares_digits_with_and_without_country_code(self):
        compiled = await self._compiled("(415) 555-2671", ChannelType.SMS)

        assert "regexp_replace(suppressions.identifier" in str(compiled)
        params = str(compiled.params.values())
        assert "14155552671" in params
        assert "'4155552671'" in params


class TestSuppressionKeys:
    def test_stored_keys(self):
        assert suppression_key(" Jane@Example.COM ", ChannelType.EMAIL) == "jane@example.com"
        assert suppression_key("+1 (415) 555-2671", ChannelType.SMS) == "14155552671"

    def test_lookup_keys(self):
        assert suppression_lookup_keys("415-555-2671", ChannelType.SMS) == [
            "14155552671",
            "4155552671",
        ]
        assert suppression_lookup_keys("+442079460958", ChannelType.SMS) == ["442079460958"]


class TestSuppressionCache:
    @pytest.mark.asyncio
    async def test_repeated_lookups_hit_db_once(self):
        cache = SuppressionCache(AsyncMock())
        with patch(
            "circleday.suppression.is_identifier_suppressed",
            AsyncMock(return_value=False),
        ) as mock_lookup:
            await cache.is_suppressed("a@example.com", ChannelType.EMAIL)
            await cache.is_suppressed("A@example.com", ChannelType.EMAIL)
            await cache.is_suppressed("a@example.com", ChannelType.SMS)

        assert mock_lookup.await_count == 2

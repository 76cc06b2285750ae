"""Tests for the idempotent scheduling pass."""

from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from circleday.enums import ChannelType
from circleday.notifications.planner import (
    event_display_name,
    generate_idempotency_key,
    plan_rule,
    reminders_due_on,
    schedule_upcoming_reminders,
)

TODAY = date(2025, 3, 1)


def _user(user_id, email=None, phone=None, tz=None):
    return {
        "user_id": user_id,
        "name": f"User {user_id}",
        "email": email,
        "phone": phone,
        "default_timezone": tz,
    }


def _membership(user_id, contact_id, events=(), email=None, phone=None):
    return {
        "membership_id": contact_id,
        "user_id": user_id,
        "contact_id": contact_id,
        "role": "MEMBER",
        "status": "ACTIVE",
        "user": _user(user_id, email=email, phone=phone) if user_id else None,
        "contact": {
            "contact_id": contact_id,
            "name": f"Contact {contact_id}",
            "events": list(events),
        },
    }


def _birthday(event_id, contact_id, day):
    return {
        "event_id": event_id,
        "contact_id": contact_id,
        "type": "BIRTHDAY",
        "title": None,
        "date": day,
        "year_known": True,
        "repeat": True,
    }


def _rule(group_type, memberships, offsets=(-7,), channels=None, owner_id=1):
    return {
        "rule_id": 1,
        "group_id": 10,
        "offsets": list(offsets),
        "channels": channels or {"-7": ["EMAIL"]},
        "send_hour": 9,
        "group": {
            "group_id": 10,
            "name": "Friends",
            "type": group_type,
            "owner_id": owner_id,
            "default_timezone": "UTC",
            "leap_day_policy": "FEB_28",
            "memberships": memberships,
        },
    }


class FakeSendStore:
    """In-memory stand-in for the scheduled_sends upsert."""

    def __init__(self):
        self.rows: dict[str, dict] = {}

    async def upsert(self, conn, *, idempotency_key, **fields):
        if idempotency_key in self.rows:
            self.rows[idempotency_key]["due_at_utc"] = fields["due_at_utc"]
            self.rows[idempotency_key]["recipient_user_id"] = fields["recipient_user_id"]
        else:
            self.rows[idempotency_key] = {"status": "PENDING", **fields}


class FakeSuppressionCache:
    suppressed: set = set()

    def __init__(self, conn):
        pass

    async def is_suppressed(self, identifier, channel):
        return (identifier.lower(), channel) in self.suppressed


@asynccontextmanager
async def _fake_conn():
    yield MagicMock()


async def _run(rules, store, suppressed=frozenset()):
    FakeSuppressionCache.suppressed = set(suppressed)
    with (
        patch("circleday.notifications.planner.get_connection", _fake_conn),
        patch("circleday.notifications.planner.get_transaction", _fake_conn),
        patch(
            "circleday.notifications.planner.get_active_reminder_rules",
            AsyncMock(return_value=rules),
        ),
        patch("circleday.notifications.planner.SuppressionCache", FakeSuppressionCache),
        patch("circleday.notifications.planner.upsert_scheduled_send", store.upsert),
        patch("circleday.notifications.planner.get_default_timezone", return_value="UTC"),
    ):
        return await schedule_upcoming_reminders(today=TODAY, horizon_days=30)


class TestIdempotencyKey:
    def test_format(self):
        key = generate_idempotency_key(
            42, date(2025, 3, 8), -7, ChannelType.EMAIL, "a@example.com"
        )
        assert key == "42-2025-03-08--7-EMAIL-a@example.com"


class TestEventDisplayName:
    def test_title_wins(self):
        assert event_display_name({"title": "Wedding", "type": "ANNIVERSARY"}, "Jane") == "Wedding"

    def test_falls_back_to_contact_and_type(self):
        assert event_display_name({"title": None, "type": "BIRTHDAY"}, "Jane Doe") == "Jane Doe BIRTHDAY"


class TestScheduleUpcomingReminders:
    @pytest.mark.asyncio
    async def test_personal_group_reminds_only_owner(self):
        """Birthday 7 days out, offset -7, EMAIL: one send to the owner regardless of member count."""
        rules = [
            _rule(
                "PERSONAL",
                [
                    _membership(1, 100, email="owner@example.com"),
                    _membership(2, 200, events=[_birthday(5, 200, date(1990, 3, 8))], email="b@example.com"),
                    _membership(3, 300, email="c@example.com"),
                    _membership(4, 400, email="d@example.com"),
                ],
            )
        ]
        store = FakeSendStore()

        result = await _run(rules, store)

        assert result == {"scheduled": 1, "skipped": 0, "errors": 0}
        (row,) = store.rows.values()
        assert row["recipient_user_id"] == 1
        assert row["target_date"] == date(2025, 3, 8)
        assert row["offset"] == -7
        assert row["due_at_utc"] == datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_team_group_excludes_celebrated_member(self):
        rules = [
            _rule(
                "TEAM",
                [
                    _membership(1, 100, email="owner@example.com"),
                    _membership(2, 200, events=[_birthday(5, 200, date(1990, 3, 8))], email="b@example.com"),
                    _membership(3, 300, email="c@example.com"),
                ],
            )
        ]
        store = FakeSendStore()

        result = await _run(rules, store)

        assert result["scheduled"] == 2
        recipients = sorted(row["recipient_user_id"] for row in store.rows.values())
        assert recipients == [1, 3]

    @pytest.mark.asyncio
    async def test_rerun_produces_same_rows(self):
        rules = [
            _rule(
                "TEAM",
                [
                    _membership(1, 100, email="owner@example.com"),
                    _membership(2, 200, events=[_birthday(5, 200, date(1990, 3, 8))], email="b@example.com"),
                ],
            )
        ]
        store = FakeSendStore()

        await _run(rules, store)
        first = {k: dict(v) for k, v in store.rows.items()}
        await _run(rules, store)

        assert store.rows == first

    @pytest.mark.asyncio
    async def test_suppressed_channel_is_skipped_others_proceed(self):
        rules = [
            _rule(
                "TEAM",
                [
                    _membership(1, 100, email="owner@example.com", phone="+14155550001"),
                    _membership(2, 200, events=[_birthday(5, 200, date(1990, 3, 8))]),
                    _membership(3, 300, email="c@example.com"),
                ],
                channels={"-7": ["EMAIL", "SMS"]},
            )
        ]
        store = FakeSendStore()

        result = await _run(rules, store, suppressed={("owner@example.com", ChannelType.EMAIL)})

        channels = sorted(
            (row["recipient_user_id"], row["channel"].value) for row in store.rows.values()
        )
        # Owner keeps SMS, member 3 keeps EMAIL (and has no phone for SMS)
        assert channels == [(1, "SMS"), (3, "EMAIL")]
        assert result["skipped"] == 2  # one suppressed, one missing phone

    @pytest.mark.asyncio
    async def test_occasion_beyond_horizon_produces_nothing(self):
        rules = [
            _rule(
                "PERSONAL",
                [_membership(1, 100, events=[_birthday(5, 100, date(1990, 4, 30))], email="o@example.com")],
            )
        ]
        store = FakeSendStore()

        result = await _run(rules, store)

        assert result["scheduled"] == 0
        assert store.rows == {}

    @pytest.mark.asyncio
    async def test_bad_event_counts_error_and_continues(self):
        broken = _birthday(6, 100, None)
        rules = [
            _rule(
                "PERSONAL",
                [
                    _membership(
                        1,
                        100,
                        events=[broken, _birthday(5, 100, date(1990, 3, 8))],
                        email="o@example.com",
                    )
                ],
            )
        ]
        store = FakeSendStore()

        result = await _run(rules, store)

        assert result == {"scheduled": 1, "skipped": 0, "errors": 1}

    @pytest.mark.asyncio
    async def test_persistence_failure_counts_error(self):
        rules = [
            _rule(
                "PERSONAL",
                [_membership(1, 100, events=[_birthday(5, 100, date(1990, 3, 8))], email="o@example.com")],
            )
        ]
        store = FakeSendStore()
        store.upsert = AsyncMock(side_effect=RuntimeError("db down"))

        result = await _run(rules, store)

        assert result == {"scheduled": 0, "skipped": 0, "errors": 1}

    @pytest.mark.asyncio
    async def test_same_key_from_two_rules_is_upserted_once(self):
        membership = _membership(1, 100, events=[_birthday(5, 100, date(1990, 3, 8))], email="o@example.com")
        rule_a = _rule("PERSONAL", [membership])
        rule_b = _rule("PERSONAL", [membership])
        rule_b["rule_id"] = 2
        store = FakeSendStore()
        store.upsert = AsyncMock()

        result = await _run([rule_a, rule_b], store)

        assert result["scheduled"] == 1
        store.upsert.assert_awaited_once()


class TestPlanRule:
    def test_due_time_uses_recipient_timezone(self):
        membership = _membership(1, 100, events=[_birthday(5, 100, date(1990, 3, 8))], email="o@example.com")
        membership["user"]["default_timezone"] = "America/New_York"
        plan = plan_rule(_rule("PERSONAL", [membership]), TODAY, 30)

        assert plan.sends[0].due_at_utc == datetime(2025, 3, 1, 14, 0, tzinfo=timezone.utc)


class TestRemindersDueOn:
    def test_lists_offsets_firing_today(self):
        rules = [
            _rule(
                "PERSONAL",
                [_membership(1, 100, events=[_birthday(5, 100, date(1990, 3, 8))], email="o@example.com")],
                offsets=(-7, -1),
                channels={"-7": ["EMAIL"], "-1": ["EMAIL"]},
            )
        ]

        due = reminders_due_on(rules, TODAY)

        assert len(due) == 1
        assert due[0]["offset"] == -7
        assert due[0]["days_until"] == 7
        assert due[0]["event_name"] == "Contact 100 BIRTHDAY"

"""Tests for channel send activities (retry policy and outcome recording)."""

import time
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from circleday.enums import ChannelType, DeliveryState
from circleday.notifications.activities import ChannelWorkerPool, DeliveryActivities
from circleday.notifications.delivery import ReminderInput
from circleday.notifications.errors import PermanentSendError, TransientSendError


def _reminder():
    return ReminderInput(
        event_id=5,
        event_name="Jane Doe BIRTHDAY",
        occasion_date=date(2025, 3, 8),
        days_until=7,
        recipient_name="Owner",
        channels=(ChannelType.EMAIL, ChannelType.SMS),
        due_at=datetime(2025, 3, 1, 9, tzinfo=timezone.utc),
        recipient_email="owner@example.com",
        recipient_phone="+14155550001",
        group_name="Friends",
        scheduled_send_id=11,
    )


@pytest.fixture
def pool():
    pool = ChannelWorkerPool(max_workers=2, timeout=5)
    yield pool
    pool.shutdown()


class TestSendChannel:
    @pytest.mark.asyncio
    async def test_email_goes_through_sender(self, pool):
        sender = MagicMock()
        sender.send_email.return_value = "sg-123"
        activities = DeliveryActivities({ChannelType.EMAIL: sender}, pool, sleep=AsyncMock())

        outcome = await activities.send_channel(_reminder(), ChannelType.EMAIL)

        assert outcome.sent
        assert outcome.provider_message_id == "sg-123"
        assert outcome.label == "EMAIL_SENT"
        sender.send_email.assert_called_once_with(
            "owner@example.com", "Owner", "Jane Doe BIRTHDAY", date(2025, 3, 8), 7, "Friends"
        )

    @pytest.mark.asyncio
    async def test_sms_has_no_group_name(self, pool):
        sender = MagicMock()
        sender.send_sms.return_value = "SM1"
        activities = DeliveryActivities({ChannelType.SMS: sender}, pool, sleep=AsyncMock())

        await activities.send_channel(_reminder(), ChannelType.SMS)

        sender.send_sms.assert_called_once_with(
            "+14155550001", "Owner", "Jane Doe BIRTHDAY", date(2025, 3, 8), 7
        )

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried_with_backoff(self, pool):
        sender = MagicMock()
        sender.send_email.side_effect = [TransientSendError("503"), TransientSendError("503"), "sg-1"]
        sleep = AsyncMock()
        activities = DeliveryActivities({ChannelType.EMAIL: sender}, pool, max_attempts=3, sleep=sleep)

        with patch("circleday.notifications.activities.get_retry_delay", side_effect=[1.0, 2.0]):
            outcome = await activities.send_channel(_reminder(), ChannelType.EMAIL)

        assert outcome.sent
        assert outcome.attempts == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, pool):
        sender = MagicMock()
        sender.send_email.side_effect = TransientSendError("timeout")
        activities = DeliveryActivities({ChannelType.EMAIL: sender}, pool, max_attempts=3, sleep=AsyncMock())

        outcome = await activities.send_channel(_reminder(), ChannelType.EMAIL)

        assert not outcome.sent
        assert outcome.attempts == 3
        assert outcome.label == "EMAIL_FAILED"
        assert sender.send_email.call_count == 3

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self, pool):
        sender = MagicMock()
        sender.send_email.side_effect = PermanentSendError("bad address", status_code=400)
        activities = DeliveryActivities({ChannelType.EMAIL: sender}, pool, sleep=AsyncMock())

        outcome = await activities.send_channel(_reminder(), ChannelType.EMAIL)

        assert not outcome.sent
        assert outcome.attempts == 1
        assert "bad address" in outcome.error

    @pytest.mark.asyncio
    async def test_missing_sender_fails_channel(self, pool):
        activities = DeliveryActivities({}, pool, sleep=AsyncMock())

        outcome = await activities.send_channel(_reminder(), ChannelType.SMS)

        assert not outcome.sent
        assert outcome.attempts == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported(self, pool):
        sender = MagicMock()
        sender.send_email.side_effect = KeyError("oops")
        activities = DeliveryActivities({ChannelType.EMAIL: sender}, pool, sleep=AsyncMock())

        with patch("circleday.notifications.activities.sentry_sdk") as mock_sentry:
            outcome = await activities.send_channel(_reminder(), ChannelType.EMAIL)

        assert not outcome.sent
        mock_sentry.capture_exception.assert_called_once()


class TestWorkerPool:
    @pytest.mark.asyncio
    async def test_slow_send_times_out_as_transient(self):
        pool = ChannelWorkerPool(max_workers=1, timeout=0.05)
        try:
            with pytest.raises(TransientSendError):
                await pool.run(time.sleep, 0.5)
        finally:
            pool.shutdown(wait=False)


class TestRecordOutcome:
    @pytest.mark.asyncio
    async def test_calls_recorder(self, pool):
        recorder = AsyncMock()
        activities = DeliveryActivities({}, pool, outcome_recorder=recorder, sleep=AsyncMock())

        await activities.record_outcome("reminder-a", _reminder(), [], DeliveryState.FAILED, "x")

        recorder.assert_awaited_once()
        assert recorder.await_args.kwargs["instance_id"] == "reminder-a"

    @pytest.mark.asyncio
    async def test_recorder_failure_is_retried_then_reported(self, pool):
        recorder = AsyncMock(side_effect=RuntimeError("db down"))
        activities = DeliveryActivities(
            {}, pool, outcome_recorder=recorder, sleep=AsyncMock(), max_record_attempts=3
        )

        with patch("circleday.notifications.activities.sentry_sdk") as mock_sentry:
            await activities.record_outcome("reminder-a", _reminder(), [], DeliveryState.FAILED, "x")

        assert recorder.await_count == 3
        mock_sentry.capture_exception.assert_called_once()

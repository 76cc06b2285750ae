"""Tests for the reminder delivery state machine."""

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from circleday.enums import ChannelType, DeliveryState
from circleday.notifications.delivery import (
    ChannelOutcome,
    ReminderDelivery,
    ReminderInput,
    validate_reminder_input,
)
from circleday.notifications.errors import ReminderValidationError

START = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock whose sleep() advances time instantly and runs a hook."""

    def __init__(self, now: datetime):
        self.current = now
        self.on_sleep = None

    def now(self) -> datetime:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)
        if self.on_sleep:
            self.on_sleep()
        await asyncio.sleep(0)


class FakeActivities:
    def __init__(self, clock: FakeClock, fail_channels=()):
        self.clock = clock
        self.fail_channels = set(fail_channels)
        self.sent: list[tuple[ChannelType, datetime]] = []
        self.recorded: list[tuple] = []
        self.on_send = None

    async def send_channel(self, reminder, channel):
        self.sent.append((channel, self.clock.now()))
        if self.on_send:
            self.on_send(channel)
        if channel in self.fail_channels:
            return ChannelOutcome(channel=channel, sent=False, error="boom", attempts=3)
        return ChannelOutcome(channel=channel, sent=True, provider_message_id="msg-1", attempts=1)

    async def record_outcome(self, instance_id, reminder, outcomes, state, result):
        self.recorded.append((instance_id, state, result))


def _reminder(due_at=START + timedelta(hours=1), channels=(ChannelType.EMAIL,), **overrides):
    fields = dict(
        event_id=5,
        event_name="Jane Doe BIRTHDAY",
        occasion_date=date(2025, 3, 8),
        days_until=7,
        recipient_name="Owner",
        channels=channels,
        due_at=due_at,
        recipient_email="owner@example.com",
        recipient_phone="+14155550001",
        group_name="Friends",
        scheduled_send_id=11,
    )
    fields.update(overrides)
    return ReminderInput(**fields)


def _delivery(reminder, clock, activities, checkpoints=None):
    async def checkpoint(instance_id, **fields):
        if checkpoints is not None:
            checkpoints.append(fields)

    return ReminderDelivery(
        instance_id="reminder-test",
        reminder=reminder,
        activities=activities,
        check_interval=60.0,
        sleep=clock.sleep,
        clock=clock.now,
        checkpoint=checkpoint,
    )


class TestValidation:
    def test_missing_identifier_for_requested_channel(self):
        with pytest.raises(ReminderValidationError):
            validate_reminder_input(_reminder(channels=(ChannelType.SMS,), recipient_phone=None))

    def test_missing_date(self):
        with pytest.raises(ReminderValidationError):
            validate_reminder_input(_reminder(occasion_date=None))

    @pytest.mark.asyncio
    async def test_invalid_input_fails_without_waiting(self):
        clock = FakeClock(START)
        activities = FakeActivities(clock)
        delivery = _delivery(_reminder(recipient_email=""), clock, activities)

        with pytest.raises(ReminderValidationError):
            await delivery.run()

        assert clock.now() == START
        assert activities.sent == []
        assert delivery.state == DeliveryState.FAILED


class TestWaitAndSend:
    @pytest.mark.asyncio
    async def test_sends_at_due_time(self):
        clock = FakeClock(START)
        activities = FakeActivities(clock)
        delivery = _delivery(_reminder(), clock, activities)

        result = await delivery.run()

        assert result == "EMAIL_SENT"
        assert activities.sent == [(ChannelType.EMAIL, START + timedelta(hours=1))]
        assert delivery.state == DeliveryState.SENT
        assert delivery.reminders_sent == 1
        assert activities.recorded == [("reminder-test", DeliveryState.SENT, "EMAIL_SENT")]

    @pytest.mark.asyncio
    async def test_past_due_sends_immediately(self):
        clock = FakeClock(START)
        activities = FakeActivities(clock)
        delivery = _delivery(_reminder(due_at=START - timedelta(hours=2)), clock, activities)

        await delivery.run()

        assert activities.sent == [(ChannelType.EMAIL, START)]

    @pytest.mark.asyncio
    async def test_sleeps_in_bounded_increments_with_checkpoints(self):
        clock = FakeClock(START)
        checkpoints = []
        delivery = _delivery(
            _reminder(due_at=START + timedelta(minutes=5)), clock, FakeActivities(clock), checkpoints
        )

        await delivery.run()

        waits = [c["remaining_wait_s"] for c in checkpoints if "remaining_wait_s" in c and "state" not in c]
        assert waits == [240.0, 180.0, 120.0, 60.0, 0.0]

    @pytest.mark.asyncio
    async def test_channel_failure_does_not_block_other_channels(self):
        clock = FakeClock(START)
        activities = FakeActivities(clock, fail_channels={ChannelType.SMS})
        delivery = _delivery(
            _reminder(channels=(ChannelType.SMS, ChannelType.EMAIL)), clock, activities
        )

        result = await delivery.run()

        assert result == "SMS_FAILED, EMAIL_SENT"
        assert delivery.state == DeliveryState.PARTIALLY_SENT

    @pytest.mark.asyncio
    async def test_all_channels_failing_is_failed(self):
        clock = FakeClock(START)
        activities = FakeActivities(clock, fail_channels={ChannelType.EMAIL})
        delivery = _delivery(_reminder(), clock, activities)

        assert await delivery.run() == "EMAIL_FAILED"
        assert delivery.state == DeliveryState.FAILED


class TestSignals:
    @pytest.mark.asyncio
    async def test_pause_past_due_time_then_resume(self):
        clock = FakeClock(START)
        activities = FakeActivities(clock)
        delivery = _delivery(_reminder(), clock, activities)
        resume_at = START + timedelta(hours=3)

        def maybe_resume():
            assert activities.sent == []  # nothing sent while paused
            if delivery.is_paused and clock.now() >= resume_at:
                delivery.resume()

        delivery.pause()
        assert delivery.status().is_paused
        clock.on_sleep = maybe_resume

        result = await delivery.run()

        assert result == "EMAIL_SENT"
        (channel, sent_at), = activities.sent
        # One hour was left when paused, so delivery happens an hour after resume
        assert sent_at == resume_at + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_cancel_before_due(self):
        clock = FakeClock(START)
        activities = FakeActivities(clock)
        delivery = _delivery(_reminder(), clock, activities)

        def cancel_after_ten_minutes():
            if clock.now() >= START + timedelta(minutes=10):
                delivery.cancel()

        clock.on_sleep = cancel_after_ten_minutes

        assert await delivery.run() == "CANCELED"
        assert activities.sent == []
        assert activities.recorded == []
        assert delivery.state == DeliveryState.CANCELED
        assert delivery.status().is_canceled

    @pytest.mark.asyncio
    async def test_cancel_while_paused(self):
        clock = FakeClock(START)
        activities = FakeActivities(clock)
        delivery = _delivery(_reminder(), clock, activities)
        delivery.pause()
        clock.on_sleep = delivery.cancel

        assert await delivery.run() == "CANCELED"
        assert activities.sent == []

    @pytest.mark.asyncio
    async def test_cancel_between_channels_stops_remaining_sends(self):
        clock = FakeClock(START)
        activities = FakeActivities(clock)
        delivery = _delivery(
            _reminder(channels=(ChannelType.EMAIL, ChannelType.SMS)), clock, activities
        )
        activities.on_send = lambda channel: delivery.cancel()

        result = await delivery.run()

        assert [c for c, _ in activities.sent] == [ChannelType.EMAIL]
        assert result == "EMAIL_SENT, CANCELED"
        assert delivery.state == DeliveryState.CANCELED

    @pytest.mark.asyncio
    async def test_signals_after_finish_are_ignored(self):
        clock = FakeClock(START)
        delivery = _delivery(_reminder(), clock, FakeActivities(clock))
        await delivery.run()

        assert delivery.pause() == {}
        assert delivery.cancel() == {}
        assert delivery.state == DeliveryState.SENT

    def test_status_reports_next_reminder_time(self):
        clock = FakeClock(START)
        delivery = _delivery(_reminder(), clock, FakeActivities(clock))

        status = delivery.status()

        assert status.next_reminder_at == START + timedelta(hours=1)
        assert status.event_name == "Jane Doe BIRTHDAY"
        assert status.reminders_sent == 0
        assert not status.is_paused

    def test_unknown_signal(self):
        clock = FakeClock(START)
        delivery = _delivery(_reminder(), clock, FakeActivities(clock))
        with pytest.raises(ValueError):
            delivery.apply_signal("explode")


class TestRestore:
    @pytest.mark.asyncio
    async def test_resumes_sending_without_repeating_finished_channels(self):
        clock = FakeClock(START)
        activities = FakeActivities(clock)
        reminder = _reminder(channels=(ChannelType.EMAIL, ChannelType.SMS))
        record = {
            "instance_id": "reminder-test",
            "state": "SENDING",
            "payload": reminder.to_payload(),
            "due_at": reminder.due_at,
            "paused_at": None,
            "canceled_at": None,
            "reminders_sent": 1,
            "result": "EMAIL_SENT",
        }
        delivery = ReminderDelivery.from_record(
            record, activities, sleep=clock.sleep, clock=clock.now
        )

        result = await delivery.run()

        assert [c for c, _ in activities.sent] == [ChannelType.SMS]
        assert result == "EMAIL_SENT, SMS_SENT"
        assert delivery.state == DeliveryState.SENT

    def test_payload_round_trip_keeps_channels_and_times(self):
        reminder = _reminder(channels=(ChannelType.EMAIL, ChannelType.SMS))
        restored = ReminderInput.from_payload(reminder.to_payload())
        assert restored == reminder

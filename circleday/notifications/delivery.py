"""
Per-reminder delivery state machine.

A ReminderDelivery waits until its due time in bounded sleeps, honours
pause/resume/cancel signals at each interval boundary, then sends every
requested channel through the injected activities. State changes are
handed to a checkpoint callback so an instance can be rebuilt after a
restart with ``ReminderDelivery.from_record``.

Pausing shifts the due time forward by however long the instance stayed
paused, so a pause always delays delivery.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from ..enums import ChannelType, DeliveryState
from .errors import ReminderValidationError

logger = logging.getLogger(__name__)

CANCELED_RESULT = "CANCELED"
VALIDATION_FAILED_PREFIX = "VALIDATION_FAILED"

Checkpoint = Callable[..., Awaitable[None]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class ReminderInput:
    """Everything a delivery instance needs, captured when it starts."""

    event_id: int
    event_name: str
    occasion_date: date
    days_until: int
    recipient_name: str
    channels: tuple[ChannelType, ...]
    due_at: datetime
    recipient_email: str | None = None
    recipient_phone: str | None = None
    group_name: str | None = None
    scheduled_send_id: int | None = None

    def identifier_for(self, channel: ChannelType) -> str | None:
        if channel == ChannelType.EMAIL:
            return self.recipient_email or None
        if channel == ChannelType.SMS:
            return self.recipient_phone or None
        return None

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe dict stored with the instance record."""
        return {
            "event_id": self.event_id,
            "event_name": self.event_name,
            "occasion_date": (
                self.occasion_date.isoformat() if self.occasion_date else None
            ),
            "days_until": self.days_until,
            "recipient_name": self.recipient_name,
            "channels": [c.value for c in self.channels],
            "due_at": self.due_at.isoformat() if self.due_at else None,
            "recipient_email": self.recipient_email,
            "recipient_phone": self.recipient_phone,
            "group_name": self.group_name,
            "scheduled_send_id": self.scheduled_send_id,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ReminderInput":
        occasion_date = payload.get("occasion_date")
        return cls(
            event_id=payload["event_id"],
            event_name=payload["event_name"],
            occasion_date=date.fromisoformat(occasion_date) if occasion_date else None,
            days_until=payload["days_until"],
            recipient_name=payload["recipient_name"],
            channels=tuple(ChannelType(c) for c in payload.get("channels", [])),
            due_at=_parse_datetime(payload.get("due_at")),
            recipient_email=payload.get("recipient_email"),
            recipient_phone=payload.get("recipient_phone"),
            group_name=payload.get("group_name"),
            scheduled_send_id=payload.get("scheduled_send_id"),
        )


def validate_reminder_input(reminder: ReminderInput) -> None:
    """
    Raises:
        ReminderValidationError: if the reminder can never be delivered
    """
    if not reminder.channels:
        raise ReminderValidationError("No channels requested")
    if reminder.occasion_date is None:
        raise ReminderValidationError(f"Event {reminder.event_id} has no date")
    if reminder.due_at is None:
        raise ReminderValidationError("No due time")
    for channel in reminder.channels:
        if not reminder.identifier_for(channel):
            raise ReminderValidationError(
                f"Missing recipient identifier for {channel.value}"
            )


@dataclass
class ChannelOutcome:
    """Result of sending one channel, after retries."""

    channel: ChannelType
    sent: bool
    provider_message_id: str | None = None
    error: str | None = None
    attempts: int = 0

    @property
    def label(self) -> str:
        return f"{self.channel.value}_{'SENT' if self.sent else 'FAILED'}"


@dataclass
class WorkflowStatus:
    is_paused: bool
    is_canceled: bool
    reminders_sent: int
    next_reminder_at: datetime | None
    event_name: str
    state: DeliveryState = DeliveryState.WAITING
    result: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "isPaused": self.is_paused,
            "isCanceled": self.is_canceled,
            "remindersSent": self.reminders_sent,
            "nextReminderAt": (
                self.next_reminder_at.isoformat() if self.next_reminder_at else None
            ),
            "eventName": self.event_name,
            "state": self.state.value,
            "result": self.result,
        }


@dataclass
class ReminderDelivery:
    """
    One durable reminder delivery.

    ``activities`` must provide ``send_channel(reminder, channel)`` and
    ``record_outcome(instance_id, reminder, outcomes, state, result)``.
    """

    instance_id: str
    reminder: ReminderInput
    activities: Any
    check_interval: float = 60.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    clock: Callable[[], datetime] = utc_now
    checkpoint: Checkpoint | None = None
    state: DeliveryState = DeliveryState.WAITING
    due_at: datetime | None = None
    paused_at: datetime | None = None
    canceled_at: datetime | None = None
    reminders_sent: int = 0
    result: str | None = None
    outcomes: list[ChannelOutcome] = field(default_factory=list)
    # Channels already attempted before a restart during SENDING
    completed_labels: list[str] = field(default_factory=list)

    def __post_init__(self):
        if self.due_at is None:
            self.due_at = self.reminder.due_at

    @classmethod
    def from_record(cls, record: dict[str, Any], activities, **kwargs) -> "ReminderDelivery":
        """Rebuild an instance from its persisted checkpoint."""
        state = DeliveryState(record["state"])
        completed = []
        if state == DeliveryState.SENDING and record.get("result"):
            completed = [label.strip() for label in record["result"].split(",")]
        return cls(
            instance_id=record["instance_id"],
            reminder=ReminderInput.from_payload(record["payload"]),
            activities=activities,
            state=state,
            due_at=_parse_datetime(record.get("due_at")),
            paused_at=_parse_datetime(record.get("paused_at")),
            canceled_at=_parse_datetime(record.get("canceled_at")),
            reminders_sent=record.get("reminders_sent") or 0,
            result=record.get("result"),
            completed_labels=completed,
            **kwargs,
        )

    # -- signals -----------------------------------------------------------

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None

    @property
    def is_canceled(self) -> bool:
        return self.canceled_at is not None

    def pause(self) -> dict[str, Any]:
        """Apply a pause signal. Returns the fields to persist."""
        if self.state.is_terminal or self.is_paused or self.is_canceled:
            return {}
        self.paused_at = self.clock()
        if self.state == DeliveryState.WAITING:
            self.state = DeliveryState.PAUSED
        return {
            "state": self.state,
            "paused_at": self.paused_at,
            "remaining_wait_s": self.remaining_wait(),
        }

    def resume(self) -> dict[str, Any]:
        """Apply a resume signal. Returns the fields to persist."""
        if self.state.is_terminal or not self.is_paused:
            return {}
        self.due_at = self.due_at + (self.clock() - self.paused_at)
        self.paused_at = None
        if self.state == DeliveryState.PAUSED:
            self.state = DeliveryState.WAITING
        return {"state": self.state, "paused_at": None, "due_at": self.due_at}

    def cancel(self) -> dict[str, Any]:
        """Apply a cancel signal. Returns the fields to persist."""
        if self.state.is_terminal or self.is_canceled:
            return {}
        self.canceled_at = self.clock()
        return {"canceled_at": self.canceled_at}

    def apply_signal(self, name: str) -> dict[str, Any]:
        handlers = {"pause": self.pause, "resume": self.resume, "cancel": self.cancel}
        if name not in handlers:
            raise ValueError(f"Unknown signal: {name}")
        return handlers[name]()

    # -- queries -----------------------------------------------------------

    def remaining_wait(self) -> float:
        """Seconds left before sending, not counting any ongoing pause."""
        reference = self.paused_at or self.clock()
        return max((self.due_at - reference).total_seconds(), 0.0)

    def next_reminder_at(self) -> datetime | None:
        if self.state.is_terminal or self.state == DeliveryState.SENDING:
            return None
        if self.is_paused:
            return self.due_at + (self.clock() - self.paused_at)
        return self.due_at

    def status(self) -> WorkflowStatus:
        return WorkflowStatus(
            is_paused=self.is_paused,
            is_canceled=self.is_canceled,
            reminders_sent=self.reminders_sent,
            next_reminder_at=self.next_reminder_at(),
            event_name=self.reminder.event_name,
            state=self.state,
            result=self.result,
        )

    # -- execution ---------------------------------------------------------

    async def _save(self, **fields) -> None:
        if self.checkpoint is not None:
            await self.checkpoint(self.instance_id, **fields)

    async def _finish(self, state: DeliveryState, result: str) -> str:
        self.state = state
        self.result = result
        await self._save(
            state=state,
            result=result,
            reminders_sent=self.reminders_sent,
            completed_at=self.clock(),
        )
        logger.info(f"Delivery {self.instance_id} finished: {result}")
        return result

    async def run(self) -> str:
        """
        Drive the instance to a terminal state.

        Returns:
            Comma-joined channel outcomes (e.g. "EMAIL_SENT, SMS_FAILED")
            or "CANCELED"

        Raises:
            ReminderValidationError: if the input can never be delivered
        """
        if self.state.is_terminal:
            return self.result

        try:
            validate_reminder_input(self.reminder)
        except ReminderValidationError as e:
            result = f"{VALIDATION_FAILED_PREFIX}: {e}"
            await self.activities.record_outcome(
                self.instance_id, self.reminder, [], DeliveryState.FAILED, result
            )
            await self._finish(DeliveryState.FAILED, result)
            raise

        if self.state != DeliveryState.SENDING:
            await self._wait_until_due()
            if self.is_canceled:
                return await self._finish(DeliveryState.CANCELED, CANCELED_RESULT)
            self.state = DeliveryState.SENDING
            await self._save(state=self.state, remaining_wait_s=0.0)

        return await self._send_all()

    async def _wait_until_due(self) -> None:
        while not self.is_canceled:
            if self.is_paused:
                await self.sleep(self.check_interval)
                continue

            remaining = self.remaining_wait()
            if remaining <= 0:
                return

            await self.sleep(min(self.check_interval, remaining))
            if not self.is_paused and not self.is_canceled:
                await self._save(remaining_wait_s=self.remaining_wait())

    async def _send_all(self) -> str:
        labels = list(self.completed_labels)
        done = {label.rsplit("_", 1)[0] for label in labels}

        for channel in self.reminder.channels:
            if channel.value in done:
                continue
            if self.is_canceled:
                break
            outcome = await self.activities.send_channel(self.reminder, channel)
            self.outcomes.append(outcome)
            labels.append(outcome.label)
            if outcome.sent:
                self.reminders_sent += 1
            await self._save(
                reminders_sent=self.reminders_sent, result=", ".join(labels)
            )

        if self.is_canceled and len(labels) < len(self.reminder.channels):
            result = ", ".join(labels + [CANCELED_RESULT])
            state = DeliveryState.CANCELED
        else:
            result = ", ".join(labels)
            if self.reminders_sent == len(self.reminder.channels):
                state = DeliveryState.SENT
            elif self.reminders_sent > 0:
                state = DeliveryState.PARTIALLY_SENT
            else:
                state = DeliveryState.FAILED

        if labels:
            await self.activities.record_outcome(
                self.instance_id, self.reminder, self.outcomes, state, result
            )
        return await self._finish(state, result)

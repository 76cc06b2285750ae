"""
Side-effecting operations used by delivery instances.

Channel sends run on a thread pool (the provider SDKs are synchronous),
each attempt with its own timeout, and are retried with backoff on
transient errors. Nothing here touches the waiting logic in delivery.py.
"""

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Awaitable, Callable

import sentry_sdk

from ..enums import ChannelType, DeliveryState
from .delivery import ChannelOutcome, ReminderInput
from .errors import ChannelNotConfiguredError, ChannelSendError, TransientSendError
from .retry import get_retry_delay

logger = logging.getLogger(__name__)

OutcomeRecorder = Callable[..., Awaitable[None]]


class ChannelWorkerPool:
    """Runs blocking provider calls off the event loop with a per-call timeout."""

    def __init__(self, max_workers: int = 8, timeout: float = 300.0):
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="reminder-channel"
        )

    async def run(self, fn: Callable, *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(
            self._executor, functools.partial(fn, *args, **kwargs)
        )
        try:
            return await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError as e:
            raise TransientSendError(
                f"Channel send timed out after {self.timeout:.0f}s"
            ) from e

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _call_sender(sender, reminder: ReminderInput, channel: ChannelType):
    """Dispatch to the sender method for a channel."""
    to = reminder.identifier_for(channel)
    if channel == ChannelType.EMAIL:
        return functools.partial(
            sender.send_email,
            to,
            reminder.recipient_name,
            reminder.event_name,
            reminder.occasion_date,
            reminder.days_until,
            reminder.group_name,
        )
    if channel == ChannelType.SMS:
        return functools.partial(
            sender.send_sms,
            to,
            reminder.recipient_name,
            reminder.event_name,
            reminder.occasion_date,
            reminder.days_until,
        )
    raise ChannelNotConfiguredError(f"Unsupported channel: {channel.value}")


class DeliveryActivities:
    """
    The operations a ReminderDelivery performs against the outside world.

    Args:
        senders: Channel -> sender object (EmailSender, SmsSender or a double)
        pool: Worker pool for the blocking sends
        max_attempts: Attempts per channel before it is marked FAILED
        outcome_recorder: async callable persisting the final outcome
        sleep: Backoff sleep, injectable for tests
    """

    def __init__(
        self,
        senders: dict[ChannelType, Any],
        pool: ChannelWorkerPool,
        max_attempts: int = 3,
        outcome_recorder: OutcomeRecorder | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_record_attempts: int = 3,
    ):
        self.senders = senders
        self.pool = pool
        self.max_attempts = max_attempts
        self.outcome_recorder = outcome_recorder
        self._sleep = sleep
        self.max_record_attempts = max_record_attempts

    async def send_channel(
        self, reminder: ReminderInput, channel: ChannelType
    ) -> ChannelOutcome:
        """Send one channel, retrying transient failures with backoff."""
        sender = self.senders.get(channel)
        if sender is None:
            logger.warning(f"No sender configured for {channel.value}")
            return ChannelOutcome(
                channel=channel,
                sent=False,
                error=f"{channel.value} sender not configured",
                attempts=0,
            )

        attempt = 0
        while True:
            attempt += 1
            try:
                message_id = await self.pool.run(_call_sender(sender, reminder, channel))
                return ChannelOutcome(
                    channel=channel,
                    sent=True,
                    provider_message_id=message_id,
                    attempts=attempt,
                )
            except ChannelSendError as e:
                if not e.retryable or attempt >= self.max_attempts:
                    logger.warning(
                        f"{channel.value} send for event {reminder.event_id} failed "
                        f"after {attempt} attempt(s): {e}"
                    )
                    return ChannelOutcome(
                        channel=channel, sent=False, error=str(e), attempts=attempt
                    )
                delay = get_retry_delay(attempt - 1)
                logger.info(
                    f"Retrying {channel.value} send for event {reminder.event_id} "
                    f"in {delay:.1f}s (attempt {attempt + 1})"
                )
                await self._sleep(delay)
            except Exception as e:
                logger.error(f"Unexpected {channel.value} send error: {e}")
                sentry_sdk.capture_exception(e)
                return ChannelOutcome(
                    channel=channel, sent=False, error=str(e), attempts=attempt
                )

    async def record_outcome(
        self,
        instance_id: str,
        reminder: ReminderInput,
        outcomes: list[ChannelOutcome],
        state: DeliveryState,
        result: str,
    ) -> None:
        """
        Persist a finished delivery (send logs and scheduled send status).

        Retried like a channel send; if it still fails the error goes to
        Sentry and the instance finishes anyway, so a recording problem
        never causes a second send.
        """
        if self.outcome_recorder is None:
            return

        for attempt in range(self.max_record_attempts):
            try:
                await self.outcome_recorder(
                    instance_id=instance_id,
                    reminder=reminder,
                    outcomes=outcomes,
                    state=state,
                    result=result,
                )
                return
            except Exception as e:
                if attempt + 1 >= self.max_record_attempts:
                    logger.error(f"Failed to record outcome for {instance_id}: {e}")
                    sentry_sdk.capture_exception(e)
                    return
                await self._sleep(get_retry_delay(attempt))

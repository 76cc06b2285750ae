"""
Dispatch of due scheduled sends to delivery instances.

Each PENDING/QUEUED row due today gets one delivery instance, keyed by
its idempotency key (plus the retry count for requeued rows), so
dispatching the same row twice attaches to the same instance.
"""

import logging
from datetime import datetime

import sentry_sdk

from ..database import get_connection, get_transaction
from ..distribution import DEFAULT_RECIPIENT_NAME
from ..enums import ChannelType, DeliveryState, SendLogStatus
from ..queries import deliveries as delivery_queries
from ..queries import scheduled_sends as send_queries
from ..timezone import utc_day_bounds
from .delivery import ChannelOutcome, ReminderInput
from .engine import DeliveryEngine, get_delivery_engine
from .planner import event_display_name

logger = logging.getLogger(__name__)


def instance_id_for(send: dict) -> str:
    """Delivery instance id for a scheduled send row."""
    instance_id = f"reminder-{send['idempotency_key']}"
    if send.get("retry_count"):
        instance_id += f"-retry{send['retry_count']}"
    return instance_id


def build_reminder_input(send: dict) -> ReminderInput:
    """Delivery input from a scheduled send joined with its context."""
    event_name = event_display_name(
        {"title": send.get("event_title"), "type": send.get("event_type")},
        send.get("contact_name"),
    )
    return ReminderInput(
        event_id=send["event_id"],
        event_name=event_name,
        occasion_date=send["target_date"],
        days_until=-send["offset_days"],
        recipient_name=(
            send.get("recipient_name")
            or send.get("recipient_email")
            or DEFAULT_RECIPIENT_NAME
        ),
        channels=(ChannelType(send["channel"]),),
        due_at=send["due_at_utc"],
        recipient_email=send.get("recipient_email"),
        recipient_phone=send.get("recipient_phone"),
        group_name=send.get("group_name"),
        scheduled_send_id=send["scheduled_send_id"],
    )


async def get_pending_scheduled_sends_for_today(now: datetime | None = None) -> list[dict]:
    """PENDING/QUEUED sends due within the current UTC day."""
    day_start, day_end = utc_day_bounds(now)
    async with get_connection() as conn:
        return await send_queries.get_pending_scheduled_sends_for_today(
            conn, day_start, day_end
        )


async def dispatch_due_sends(
    now: datetime | None = None,
    engine: DeliveryEngine | None = None,
) -> dict:
    """
    Start a delivery instance for every send due today.

    Rows whose instance already finished (including canceled ones) are
    not dispatched again.

    Returns:
        Dict with "dispatched", "skipped" and "errors" counts
    """
    engine = engine or get_delivery_engine()
    if engine is None:
        logger.warning("Delivery engine not initialized, cannot dispatch reminders")
        return {"dispatched": 0, "skipped": 0, "errors": 0}

    sends = await get_pending_scheduled_sends_for_today(now)
    if not sends:
        return {"dispatched": 0, "skipped": 0, "errors": 0}

    instance_ids = {send["scheduled_send_id"]: instance_id_for(send) for send in sends}
    async with get_connection() as conn:
        existing = await delivery_queries.get_delivery_instances(
            conn, list(instance_ids.values())
        )

    started: list[int] = []
    skipped = errors = 0
    for send in sends:
        instance_id = instance_ids[send["scheduled_send_id"]]
        record = existing.get(instance_id)
        if record and DeliveryState(record["state"]).is_terminal:
            skipped += 1
            continue
        try:
            await engine.start(
                instance_id, build_reminder_input(send), send["scheduled_send_id"]
            )
            started.append(send["scheduled_send_id"])
        except Exception as e:
            logger.error(f"Failed to dispatch scheduled send {send['scheduled_send_id']}: {e}")
            sentry_sdk.capture_exception(e)
            errors += 1

    if started:
        async with get_transaction() as conn:
            await send_queries.mark_sends_queued(conn, started)

    logger.info(f"Dispatched {len(started)} reminders ({skipped} already finished, {errors} errors)")
    return {"dispatched": len(started), "skipped": skipped, "errors": errors}


async def record_delivery_outcome(
    *,
    instance_id: str,
    reminder: ReminderInput,
    outcomes: list[ChannelOutcome],
    state: DeliveryState,
    result: str,
) -> None:
    """
    Append send logs and move the scheduled send to SENT or FAILED.

    A canceled delivery with nothing sent leaves the row's status as is.
    """
    async with get_transaction() as conn:
        for outcome in outcomes:
            await delivery_queries.append_send_log(
                conn,
                scheduled_send_id=reminder.scheduled_send_id,
                instance_id=instance_id,
                channel=outcome.channel,
                status=SendLogStatus.SENT if outcome.sent else SendLogStatus.FAILED,
                provider_message_id=outcome.provider_message_id,
                error_message=outcome.error,
                attempts=outcome.attempts,
            )

        if reminder.scheduled_send_id is None:
            return

        if any(outcome.sent for outcome in outcomes):
            await send_queries.mark_send_sent(conn, reminder.scheduled_send_id)
        elif state != DeliveryState.CANCELED:
            error = "; ".join(o.error for o in outcomes if o.error) or result
            await send_queries.mark_send_failed(conn, reminder.scheduled_send_id, error)

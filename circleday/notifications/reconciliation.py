"""Cross-check scheduled sends against their delivery instances."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import sentry_sdk

from ..database import get_connection
from ..enums import DeliveryState, SendStatus
from ..queries import deliveries as delivery_queries
from ..queries import scheduled_sends as send_queries
from .dispatcher import instance_id_for

logger = logging.getLogger(__name__)

DEFAULT_STATUSES = (SendStatus.PENDING, SendStatus.QUEUED, SendStatus.FAILED)
ERROR_STATES = (DeliveryState.FAILED, DeliveryState.CANCELED)


@dataclass
class ReminderDiscrepancy:
    scheduled_send_id: int
    idempotency_key: str
    type: str  # "missing-instance" | "instance-error"
    details: str
    instance_state: str | None = None

    def to_dict(self) -> dict:
        return {
            "scheduledSendId": self.scheduled_send_id,
            "idempotencyKey": self.idempotency_key,
            "type": self.type,
            "details": self.details,
            "instanceState": self.instance_state,
        }


async def reconcile_scheduled_sends(
    limit: int = 100,
    window_hours: int = 48,
    statuses: tuple[SendStatus, ...] | list[SendStatus] = DEFAULT_STATUSES,
    group_id: int | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Find sends due in the last `window_hours` whose delivery is missing or broken.

    Returns:
        Dict with "windowStart", "windowEnd", "checked" and "discrepancies"
    """
    window_end = now or datetime.now(timezone.utc)
    window_start = window_end - timedelta(hours=window_hours)

    async with get_connection() as conn:
        sends = await send_queries.get_sends_due_in_window(
            conn, window_start, window_end, list(statuses), limit=limit, group_id=group_id
        )
        instances = await delivery_queries.get_delivery_instances(
            conn, [instance_id_for(send) for send in sends]
        )

    discrepancies: list[ReminderDiscrepancy] = []
    for send in sends:
        instance = instances.get(instance_id_for(send))
        if instance is None:
            discrepancies.append(
                ReminderDiscrepancy(
                    scheduled_send_id=send["scheduled_send_id"],
                    idempotency_key=send["idempotency_key"],
                    type="missing-instance",
                    details="No delivery instance exists for this send",
                )
            )
            continue

        state = DeliveryState(instance["state"])
        if state in ERROR_STATES:
            discrepancies.append(
                ReminderDiscrepancy(
                    scheduled_send_id=send["scheduled_send_id"],
                    idempotency_key=send["idempotency_key"],
                    type="instance-error",
                    details=f"Delivery instance has state {state.value}",
                    instance_state=state.value,
                )
            )

    if discrepancies:
        logger.warning(
            f"Reconciliation found {len(discrepancies)} discrepancies among {len(sends)} sends"
        )
        for d in discrepancies:
            logger.warning(
                f"  {d.type} for scheduled send {d.scheduled_send_id} ({d.idempotency_key}): {d.details}"
            )
        sentry_sdk.capture_message(
            f"Reminder reconciliation detected {len(discrepancies)} discrepancies",
            level="warning",
        )

    return {
        "windowStart": window_start,
        "windowEnd": window_end,
        "checked": len(sends),
        "discrepancies": [d.to_dict() for d in discrepancies],
    }

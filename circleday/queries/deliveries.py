"""Delivery instance checkpoints and send log queries using SQLAlchemy Core."""

from datetime import datetime
from typing import Any

from sqlalchemy import func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncConnection

from ..enums import TERMINAL_DELIVERY_STATES, ChannelType, DeliveryState, SendLogStatus
from ..tables import delivery_instances, send_logs


async def create_delivery_instance(
    conn: AsyncConnection,
    *,
    instance_id: str,
    scheduled_send_id: int | None,
    payload: dict[str, Any],
    due_at: datetime,
) -> bool:
    """
    Insert a WAITING delivery instance record.

    Returns:
        True if created, False if the instance_id already existed
    """
    result = await conn.execute(
        pg_insert(delivery_instances)
        .values(
            instance_id=instance_id,
            scheduled_send_id=scheduled_send_id,
            state=DeliveryState.WAITING,
            payload=payload,
            due_at=due_at,
        )
        .on_conflict_do_nothing(index_elements=["instance_id"])
        .returning(delivery_instances.c.instance_id)
    )
    return result.first() is not None


async def get_delivery_instance(
    conn: AsyncConnection,
    instance_id: str,
) -> dict[str, Any] | None:
    result = await conn.execute(
        select(delivery_instances).where(delivery_instances.c.instance_id == instance_id)
    )
    row = result.mappings().first()
    return dict(row) if row else None


async def get_delivery_instances(
    conn: AsyncConnection,
    instance_ids: list[str],
) -> dict[str, dict[str, Any]]:
    """Delivery instance records keyed by instance_id."""
    if not instance_ids:
        return {}
    result = await conn.execute(
        select(delivery_instances).where(delivery_instances.c.instance_id.in_(instance_ids))
    )
    return {row["instance_id"]: dict(row) for row in result.mappings()}


async def get_unfinished_delivery_instances(conn: AsyncConnection) -> list[dict[str, Any]]:
    """Instances that have not reached a terminal state, oldest due first."""
    result = await conn.execute(
        select(delivery_instances)
        .where(delivery_instances.c.state.notin_(TERMINAL_DELIVERY_STATES))
        .order_by(delivery_instances.c.due_at.asc())
    )
    return [dict(row) for row in result.mappings()]


async def save_delivery_checkpoint(
    conn: AsyncConnection,
    instance_id: str,
    **fields: Any,
) -> None:
    """
    Persist part of an instance's state.

    Accepts any of: state, remaining_wait_s, paused_at, canceled_at,
    reminders_sent, result, completed_at.
    """
    await conn.execute(
        update(delivery_instances)
        .where(delivery_instances.c.instance_id == instance_id)
        .values(**fields, updated_at=func.now())
    )


async def append_send_log(
    conn: AsyncConnection,
    *,
    scheduled_send_id: int | None,
    instance_id: str | None,
    channel: ChannelType,
    status: SendLogStatus,
    provider_message_id: str | None = None,
    error_message: str | None = None,
    attempts: int = 1,
) -> None:
    await conn.execute(
        insert(send_logs).values(
            scheduled_send_id=scheduled_send_id,
            instance_id=instance_id,
            channel=channel,
            status=status,
            provider_message_id=provider_message_id,
            error_message=error_message,
            attempts=attempts,
        )
    )

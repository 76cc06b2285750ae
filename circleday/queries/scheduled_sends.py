"""Scheduled send (notification intent) queries using SQLAlchemy Core."""

from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncConnection

from ..enums import TERMINAL_SEND_STATUSES, ChannelType, SendStatus
from ..tables import contacts, events, groups, scheduled_sends, send_logs, users


def _with_context():
    """Scheduled sends joined with the event, contact, recipient and group."""
    return (
        select(
            scheduled_sends,
            events.c.type.label("event_type"),
            events.c.title.label("event_title"),
            events.c.contact_id,
            contacts.c.name.label("contact_name"),
            users.c.name.label("recipient_name"),
            users.c.email.label("recipient_email"),
            users.c.phone.label("recipient_phone"),
            groups.c.name.label("group_name"),
        )
        .select_from(
            scheduled_sends.join(events, scheduled_sends.c.event_id == events.c.event_id)
            .join(contacts, events.c.contact_id == contacts.c.contact_id)
            .join(users, scheduled_sends.c.recipient_user_id == users.c.user_id)
            .outerjoin(groups, scheduled_sends.c.group_id == groups.c.group_id)
        )
    )


async def upsert_scheduled_send(
    conn: AsyncConnection,
    *,
    idempotency_key: str,
    event_id: int,
    group_id: int | None,
    recipient_user_id: int,
    target_date: date,
    offset: int,
    channel: ChannelType,
    due_at_utc: datetime,
) -> None:
    """
    Create a PENDING scheduled send, or refresh an existing one.

    The unique idempotency_key makes concurrent passes converge on one row.
    An existing row only has due_at_utc/recipient_user_id refreshed, and
    rows that were already sent are left untouched.
    """
    stmt = pg_insert(scheduled_sends).values(
        idempotency_key=idempotency_key,
        event_id=event_id,
        group_id=group_id,
        recipient_user_id=recipient_user_id,
        target_date=target_date,
        offset_days=offset,
        channel=channel,
        due_at_utc=due_at_utc,
        status=SendStatus.PENDING,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["idempotency_key"],
        set_={
            "due_at_utc": stmt.excluded.due_at_utc,
            "recipient_user_id": stmt.excluded.recipient_user_id,
            "updated_at": func.now(),
        },
        where=scheduled_sends.c.status.notin_(TERMINAL_SEND_STATUSES),
    )
    await conn.execute(stmt)


async def get_pending_scheduled_sends_for_today(
    conn: AsyncConnection,
    day_start: datetime,
    day_end: datetime,
) -> list[dict[str, Any]]:
    """PENDING/QUEUED sends due within [day_start, day_end), earliest first."""
    result = await conn.execute(
        _with_context()
        .where(scheduled_sends.c.due_at_utc >= day_start)
        .where(scheduled_sends.c.due_at_utc < day_end)
        .where(scheduled_sends.c.status.in_([SendStatus.PENDING, SendStatus.QUEUED]))
        .order_by(scheduled_sends.c.due_at_utc)
    )
    return [dict(row) for row in result.mappings()]


async def get_failed_sends_to_retry(
    conn: AsyncConnection,
    max_retries: int = 3,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """FAILED sends still under the retry cap, oldest failure first."""
    result = await conn.execute(
        _with_context()
        .where(scheduled_sends.c.status == SendStatus.FAILED)
        .where(scheduled_sends.c.retry_count < max_retries)
        .order_by(scheduled_sends.c.failed_at.asc())
        .limit(limit)
    )
    return [dict(row) for row in result.mappings()]


async def get_exhausted_failed_sends(
    conn: AsyncConnection,
    max_retries: int = 3,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """FAILED sends at or beyond the retry cap (need operator attention)."""
    result = await conn.execute(
        select(
            scheduled_sends.c.scheduled_send_id,
            scheduled_sends.c.idempotency_key,
            scheduled_sends.c.retry_count,
            scheduled_sends.c.last_error,
            scheduled_sends.c.failed_at,
        )
        .where(scheduled_sends.c.status == SendStatus.FAILED)
        .where(scheduled_sends.c.retry_count >= max_retries)
        .order_by(scheduled_sends.c.failed_at.desc())
        .limit(limit)
    )
    return [dict(row) for row in result.mappings()]


async def requeue_failed_sends(
    conn: AsyncConnection,
    scheduled_send_ids: list[int],
    max_retries: int = 3,
) -> list[int]:
    """
    Reset FAILED sends back to PENDING for another dispatch.

    The retry cap is re-checked in the UPDATE so a concurrent requeue
    cannot push a row past it.

    Returns:
        IDs that were actually requeued
    """
    if not scheduled_send_ids:
        return []
    result = await conn.execute(
        update(scheduled_sends)
        .where(scheduled_sends.c.scheduled_send_id.in_(scheduled_send_ids))
        .where(scheduled_sends.c.status == SendStatus.FAILED)
        .where(scheduled_sends.c.retry_count < max_retries)
        .values(
            status=SendStatus.PENDING,
            failed_at=None,
            retry_count=scheduled_sends.c.retry_count + 1,
            # Keep requeued rows inside the dispatch window of the current day
            due_at_utc=func.greatest(scheduled_sends.c.due_at_utc, func.now()),
            updated_at=func.now(),
        )
        .returning(scheduled_sends.c.scheduled_send_id)
    )
    return [row[0] for row in result.fetchall()]


async def mark_sends_queued(conn: AsyncConnection, scheduled_send_ids: list[int]) -> None:
    """Move PENDING sends to QUEUED once handed to a delivery instance."""
    if not scheduled_send_ids:
        return
    await conn.execute(
        update(scheduled_sends)
        .where(scheduled_sends.c.scheduled_send_id.in_(scheduled_send_ids))
        .where(scheduled_sends.c.status == SendStatus.PENDING)
        .values(status=SendStatus.QUEUED, updated_at=func.now())
    )


async def mark_send_sent(
    conn: AsyncConnection,
    scheduled_send_id: int,
    sent_at: datetime | None = None,
) -> None:
    await conn.execute(
        update(scheduled_sends)
        .where(scheduled_sends.c.scheduled_send_id == scheduled_send_id)
        .values(
            status=SendStatus.SENT,
            sent_at=sent_at or datetime.now(timezone.utc),
            last_error=None,
            updated_at=func.now(),
        )
    )


async def mark_send_failed(
    conn: AsyncConnection,
    scheduled_send_id: int,
    error: str | None,
    failed_at: datetime | None = None,
) -> None:
    await conn.execute(
        update(scheduled_sends)
        .where(scheduled_sends.c.scheduled_send_id == scheduled_send_id)
        .values(
            status=SendStatus.FAILED,
            failed_at=failed_at or datetime.now(timezone.utc),
            last_error=error,
            updated_at=func.now(),
        )
    )


async def _count(conn: AsyncConnection, *conditions) -> int:
    result = await conn.execute(
        select(func.count()).select_from(scheduled_sends).where(and_(*conditions))
    )
    return result.scalar() or 0


async def get_scheduler_stats(
    conn: AsyncConnection,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Counts for monitoring plus sends from the last 7 days.

    Returns:
        {
            "totalPending": int,
            "totalSent": int,       # SENT or DELIVERED
            "totalFailed": int,
            "totalRetrying": int,   # FAILED with retry_count > 0
            "recentSends": [...],   # newest first, max 100
        }
    """
    now = now or datetime.now(timezone.utc)

    total_pending = await _count(conn, scheduled_sends.c.status == SendStatus.PENDING)
    total_sent = await _count(
        conn, scheduled_sends.c.status.in_([SendStatus.SENT, SendStatus.DELIVERED])
    )
    total_failed = await _count(conn, scheduled_sends.c.status == SendStatus.FAILED)
    total_retrying = await _count(
        conn,
        scheduled_sends.c.status == SendStatus.FAILED,
        scheduled_sends.c.retry_count > 0,
    )

    recent_result = await conn.execute(
        _with_context()
        .where(scheduled_sends.c.sent_at >= now - timedelta(days=7))
        .order_by(scheduled_sends.c.sent_at.desc())
        .limit(100)
    )
    recent_sends = [dict(row) for row in recent_result.mappings()]

    return {
        "totalPending": total_pending,
        "totalSent": total_sent,
        "totalFailed": total_failed,
        "totalRetrying": total_retrying,
        "recentSends": recent_sends,
    }


async def get_reminder_status_counts(conn: AsyncConnection) -> dict[str, int]:
    """Number of scheduled sends in each status."""
    result = await conn.execute(
        select(scheduled_sends.c.status, func.count())
        .group_by(scheduled_sends.c.status)
    )
    counts = {status.value.lower(): 0 for status in SendStatus}
    for status, count in result.all():
        counts[SendStatus(status).value.lower()] = count
    return counts


async def get_reminder_history(
    conn: AsyncConnection,
    event_id: int,
) -> list[dict[str, Any]]:
    """Scheduled sends for an event with their send logs, newest due first."""
    result = await conn.execute(
        _with_context()
        .where(scheduled_sends.c.event_id == event_id)
        .order_by(scheduled_sends.c.due_at_utc.desc())
    )
    sends = [dict(row) for row in result.mappings()]
    if not sends:
        return []

    logs_result = await conn.execute(
        select(send_logs)
        .where(
            send_logs.c.scheduled_send_id.in_([s["scheduled_send_id"] for s in sends])
        )
        .order_by(send_logs.c.created_at.desc())
    )
    logs_by_send: dict[int, list[dict[str, Any]]] = {}
    for row in logs_result.mappings():
        logs_by_send.setdefault(row["scheduled_send_id"], []).append(dict(row))

    for send in sends:
        send["send_logs"] = logs_by_send.get(send["scheduled_send_id"], [])
    return sends


async def get_sends_due_in_window(
    conn: AsyncConnection,
    window_start: datetime,
    window_end: datetime,
    statuses: list[SendStatus],
    limit: int = 100,
    group_id: int | None = None,
) -> list[dict[str, Any]]:
    """Sends in the given statuses due inside [window_start, window_end]."""
    query = (
        select(scheduled_sends)
        .where(scheduled_sends.c.due_at_utc >= window_start)
        .where(scheduled_sends.c.due_at_utc <= window_end)
        .where(scheduled_sends.c.status.in_(statuses))
    )
    if group_id is not None:
        query = query.where(scheduled_sends.c.group_id == group_id)

    result = await conn.execute(
        query.order_by(scheduled_sends.c.due_at_utc.asc()).limit(limit)
    )
    return [dict(row) for row in result.mappings()]

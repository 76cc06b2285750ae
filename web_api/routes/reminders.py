"""
Reminder monitoring and delivery control routes.

Endpoints:
- GET /api/reminders/stats - Scheduler stats (pending/sent/failed/retrying + recent sends)
- GET /api/reminders/status-counts - Scheduled send counts per status
- GET /api/reminders/events/{event_id}/history - Scheduled sends and send logs for an event
- GET /api/reminders/deliveries/{instance_id} - Delivery instance status
- POST /api/reminders/deliveries/{instance_id}/pause - Pause a delivery
- POST /api/reminders/deliveries/{instance_id}/resume - Resume a paused delivery
- POST /api/reminders/deliveries/{instance_id}/cancel - Cancel a delivery
"""

from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from circleday.database import get_connection
from circleday.notifications.engine import get_delivery_engine
from circleday.notifications.errors import DeliveryNotFoundError
from circleday.queries.scheduled_sends import (
    get_reminder_history,
    get_reminder_status_counts,
    get_scheduler_stats,
)

router = APIRouter(prefix="/api/reminders", tags=["reminders"])


class DeliveryStatusResponse(BaseModel):
    """Delivery instance status as exposed to clients."""

    instanceId: str
    isPaused: bool
    isCanceled: bool
    remindersSent: int
    nextReminderAt: str | None
    eventName: str
    state: str
    result: str | None = None


class SignalResponse(BaseModel):
    instanceId: str
    signal: str
    accepted: bool = True


def _engine_or_503():
    engine = get_delivery_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Delivery engine not running")
    return engine


@router.get("/stats")
async def reminder_stats() -> dict[str, Any]:
    async with get_connection() as conn:
        return await get_scheduler_stats(conn)


@router.get("/status-counts")
async def reminder_status_counts() -> dict[str, int]:
    async with get_connection() as conn:
        return await get_reminder_status_counts(conn)


@router.get("/events/{event_id}/history")
async def reminder_history(event_id: int) -> dict[str, Any]:
    async with get_connection() as conn:
        sends = await get_reminder_history(conn, event_id)
    return {"eventId": event_id, "sends": sends}


@router.get("/deliveries/{instance_id}", response_model=DeliveryStatusResponse)
async def delivery_status(instance_id: str) -> DeliveryStatusResponse:
    engine = _engine_or_503()
    try:
        status = await engine.describe(instance_id)
    except DeliveryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return DeliveryStatusResponse(instanceId=instance_id, **status.to_dict())


async def _send_signal(instance_id: str, signal: str) -> SignalResponse:
    engine = _engine_or_503()
    try:
        await engine.signal(instance_id, signal)
    except DeliveryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return SignalResponse(instanceId=instance_id, signal=signal)


@router.post("/deliveries/{instance_id}/pause", response_model=SignalResponse)
async def pause_delivery(instance_id: str) -> SignalResponse:
    return await _send_signal(instance_id, "pause")


@router.post("/deliveries/{instance_id}/resume", response_model=SignalResponse)
async def resume_delivery(instance_id: str) -> SignalResponse:
    return await _send_signal(instance_id, "resume")


@router.post("/deliveries/{instance_id}/cancel", response_model=SignalResponse)
async def cancel_delivery(instance_id: str) -> SignalResponse:
    return await _send_signal(instance_id, "cancel")

"""
Cron-triggered reminder jobs.

These mirror the APScheduler jobs so an external scheduler can drive
them too. All endpoints require the CRON_SECRET bearer token in production.

Endpoints:
- POST /api/cron/schedule-reminders - Run the scheduling pass
- POST /api/cron/send-reminders - Dispatch sends due today
- POST /api/cron/retry-failed - Requeue FAILED sends under the retry cap
- POST /api/cron/reconcile-reminders - Report sends with missing/broken deliveries
"""

import logging
from typing import Any

import sentry_sdk
from fastapi import APIRouter, Depends, HTTPException

from circleday.notifications.dispatcher import dispatch_due_sends
from circleday.notifications.planner import schedule_upcoming_reminders
from circleday.notifications.reconciliation import reconcile_scheduled_sends
from circleday.notifications.retry import requeue_failed_sends
from web_api.auth import require_cron_secret

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cron",
    tags=["cron"],
    dependencies=[Depends(require_cron_secret)],
)


def _job_failed(name: str, e: Exception) -> HTTPException:
    logger.error(f"{name} failed: {e}")
    sentry_sdk.capture_exception(e)
    return HTTPException(status_code=500, detail=str(e))


@router.post("/schedule-reminders")
async def schedule_reminders_endpoint() -> dict[str, Any]:
    try:
        result = await schedule_upcoming_reminders()
    except Exception as e:
        raise _job_failed("Reminder scheduling", e) from e
    return {"success": True, "message": "Reminders scheduled", **result}


@router.post("/send-reminders")
async def send_reminders_endpoint() -> dict[str, Any]:
    try:
        result = await dispatch_due_sends()
    except Exception as e:
        raise _job_failed("Reminder dispatch", e) from e
    return {"success": True, "message": "Due reminders dispatched", **result}


@router.post("/retry-failed")
async def retry_failed_endpoint() -> dict[str, Any]:
    try:
        result = await requeue_failed_sends()
    except Exception as e:
        raise _job_failed("Reminder retry", e) from e
    return {
        "success": True,
        "requeued": result["requeued"],
        "exhausted": len(result["exhausted"]),
    }


@router.post("/reconcile-reminders")
async def reconcile_reminders_endpoint(
    limit: int | None = None,
    window_hours: int | None = None,
) -> dict[str, Any]:
    """Optional query params: limit, window_hours."""
    kwargs = {}
    if limit is not None:
        kwargs["limit"] = limit
    if window_hours is not None:
        kwargs["window_hours"] = window_hours
    try:
        result = await reconcile_scheduled_sends(**kwargs)
    except Exception as e:
        raise _job_failed("Reminder reconciliation", e) from e
    return {"success": True, "message": "Reconciliation completed", **result}

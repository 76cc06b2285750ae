"""
APScheduler-based periodic jobs for reminders.

Jobs are persisted to PostgreSQL so they survive restarts:
    reminder_scheduling      daily scheduling pass (cron, REMINDER_SCHEDULE_HOUR_UTC)
    reminder_dispatch        start delivery instances for sends due today
    reminder_retry           requeue FAILED sends under the retry cap
    reminder_reconciliation  report sends whose delivery is missing or broken

Job functions are module-level so the job store can reference them by name.
"""

import logging

import sentry_sdk
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..config import get_dispatch_interval_minutes, get_schedule_hour_utc
from ..database import get_sync_database_url

logger = logging.getLogger(__name__)

RETRY_INTERVAL_MINUTES = 15
RECONCILE_INTERVAL_HOURS = 6

JOB_DEFAULTS = {
    "coalesce": True,  # Combine missed runs into one
    "max_instances": 1,
    "misfire_grace_time": 3600,  # Allow 1 hour late execution
}

_scheduler: AsyncIOScheduler | None = None


# =============================================================================
# Scheduler initialization and shutdown
# =============================================================================


def init_scheduler(skip_if_db_unavailable: bool = True) -> AsyncIOScheduler | None:
    """
    Initialize and start the APScheduler, then register the reminder jobs.

    Call this during app startup (in FastAPI lifespan).

    Args:
        skip_if_db_unavailable: If True, fall back to an in-memory job store
                                when the DB is unreachable instead of failing.
    """
    global _scheduler

    if _scheduler is not None:
        return _scheduler

    database_url = get_sync_database_url()

    jobstores = {}
    if database_url:
        jobstores["default"] = SQLAlchemyJobStore(
            url=database_url,
            tablename="apscheduler_jobs",
        )

    _scheduler = AsyncIOScheduler(jobstores=jobstores, job_defaults=JOB_DEFAULTS)

    try:
        _scheduler.start()
        print("Reminder scheduler started")
    except Exception as e:
        if skip_if_db_unavailable and "timeout" in str(e).lower():
            print("Warning: Could not connect to database for scheduler: timeout expired")
            print("  └─ Scheduler running in memory-only mode (jobs won't persist)")
            _scheduler = AsyncIOScheduler(jobstores={}, job_defaults=JOB_DEFAULTS)
            _scheduler.start()
            print("Reminder scheduler started (memory-only)")
        else:
            raise

    register_reminder_jobs(_scheduler)
    return _scheduler


def shutdown_scheduler() -> None:
    """
    Shutdown the scheduler gracefully.

    Call this during app shutdown.
    """
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=True)
        _scheduler = None
        print("Reminder scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    return _scheduler


def register_reminder_jobs(scheduler: AsyncIOScheduler) -> None:
    """Add (or replace) the periodic reminder jobs."""
    scheduler.add_job(
        run_scheduling_pass,
        trigger="cron",
        hour=get_schedule_hour_utc(),
        minute=0,
        id="reminder_scheduling",
        replace_existing=True,
    )
    scheduler.add_job(
        run_dispatch,
        trigger="interval",
        minutes=get_dispatch_interval_minutes(),
        id="reminder_dispatch",
        replace_existing=True,
    )
    scheduler.add_job(
        run_retry_requeue,
        trigger="interval",
        minutes=RETRY_INTERVAL_MINUTES,
        id="reminder_retry",
        replace_existing=True,
    )
    scheduler.add_job(
        run_reconciliation,
        trigger="interval",
        hours=RECONCILE_INTERVAL_HOURS,
        id="reminder_reconciliation",
        replace_existing=True,
    )
    logger.info("Registered reminder jobs")


# =============================================================================
# Job functions
# =============================================================================


async def run_scheduling_pass() -> dict | None:
    """Scheduling pass followed by an immediate dispatch of today's sends."""
    from .dispatcher import dispatch_due_sends
    from .planner import schedule_upcoming_reminders

    try:
        result = await schedule_upcoming_reminders()
        await dispatch_due_sends()
        return result
    except Exception as e:
        logger.error(f"Reminder scheduling pass failed: {e}")
        sentry_sdk.capture_exception(e)
        return None


async def run_dispatch() -> dict | None:
    from .dispatcher import dispatch_due_sends

    try:
        return await dispatch_due_sends()
    except Exception as e:
        logger.error(f"Reminder dispatch failed: {e}")
        sentry_sdk.capture_exception(e)
        return None


async def run_retry_requeue() -> dict | None:
    from .retry import requeue_failed_sends

    try:
        return await requeue_failed_sends()
    except Exception as e:
        logger.error(f"Reminder retry requeue failed: {e}")
        sentry_sdk.capture_exception(e)
        return None


async def run_reconciliation() -> dict | None:
    from .reconciliation import reconcile_scheduled_sends

    try:
        return await reconcile_scheduled_sends()
    except Exception as e:
        logger.error(f"Reminder reconciliation failed: {e}")
        sentry_sdk.capture_exception(e)
        return None

"""
Reminder planning and delivery.

Usage:
    from circleday.notifications import schedule_upcoming_reminders, dispatch_due_sends

    await schedule_upcoming_reminders()
    await dispatch_due_sends()
"""

from .dispatcher import dispatch_due_sends, get_pending_scheduled_sends_for_today
from .engine import (
    DeliveryEngine,
    DeliveryHandle,
    get_delivery_engine,
    init_delivery_engine,
    shutdown_delivery_engine,
)
from .planner import calculate_reminders_for_today, schedule_upcoming_reminders
from .reconciliation import reconcile_scheduled_sends
from .retry import get_failed_sends_to_retry, requeue_failed_sends
from .scheduler import init_scheduler, shutdown_scheduler

__all__ = [
    "schedule_upcoming_reminders",
    "calculate_reminders_for_today",
    "dispatch_due_sends",
    "get_pending_scheduled_sends_for_today",
    "get_failed_sends_to_retry",
    "requeue_failed_sends",
    "reconcile_scheduled_sends",
    "DeliveryEngine",
    "DeliveryHandle",
    "init_delivery_engine",
    "get_delivery_engine",
    "shutdown_delivery_engine",
    "init_scheduler",
    "shutdown_scheduler",
]

"""Query layer for database operations using SQLAlchemy Core."""

from .deliveries import (
    append_send_log,
    create_delivery_instance,
    get_delivery_instance,
    get_unfinished_delivery_instances,
    save_delivery_checkpoint,
)
from .rules import get_active_reminder_rules
from .scheduled_sends import (
    get_failed_sends_to_retry,
    get_pending_scheduled_sends_for_today,
    get_scheduler_stats,
    upsert_scheduled_send,
)
from .suppressions import is_identifier_suppressed

__all__ = [
    # Rules
    "get_active_reminder_rules",
    # Scheduled sends
    "upsert_scheduled_send",
    "get_pending_scheduled_sends_for_today",
    "get_failed_sends_to_retry",
    "get_scheduler_stats",
    # Suppressions
    "is_identifier_suppressed",
    # Delivery instances
    "create_delivery_instance",
    "get_delivery_instance",
    "get_unfinished_delivery_instances",
    "save_delivery_checkpoint",
    "append_send_log",
]

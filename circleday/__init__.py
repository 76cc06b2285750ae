"""
CircleDay reminder engine - recurrence, distribution and scheduling logic.
Used by the web API and the periodic jobs.
"""

# Database (SQLAlchemy)
from .database import get_connection, get_transaction, get_engine, close_engine, is_configured

# Enums
from .enums import ChannelType, DeliveryState, GroupType, LeapDayPolicy, SendStatus

# Timezone utilities
from .timezone import local_hour_to_utc, resolve_timezone, today_in_timezone

# Recurrence and offsets
from .recurrence import Occurrence, next_occurrence, resolve_occurrence
from .offsets import OffsetMatch, match_offsets, offsets_due_today

# Recipient resolution
from .distribution import Recipient, resolve_recipients

# Identifiers and suppression
from .identifiers import format_phone_number, normalize_identifier
from .suppression import SuppressionCache, is_suppressed

__all__ = [
    "get_connection",
    "get_transaction",
    "get_engine",
    "close_engine",
    "is_configured",
    "ChannelType",
    "DeliveryState",
    "GroupType",
    "LeapDayPolicy",
    "SendStatus",
    "local_hour_to_utc",
    "resolve_timezone",
    "today_in_timezone",
    "Occurrence",
    "next_occurrence",
    "resolve_occurrence",
    "OffsetMatch",
    "match_offsets",
    "offsets_due_today",
    "Recipient",
    "resolve_recipients",
    "format_phone_number",
    "normalize_identifier",
    "SuppressionCache",
    "is_suppressed",
]

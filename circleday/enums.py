"""SQLAlchemy enum definitions for the database schema."""

import enum

from sqlalchemy import Enum as SQLEnum


# =====================================================
# Python Enum Classes
# =====================================================


class EventType(str, enum.Enum):
    BIRTHDAY = "BIRTHDAY"
    ANNIVERSARY = "ANNIVERSARY"
    CUSTOM = "CUSTOM"


class GroupType(str, enum.Enum):
    PERSONAL = "PERSONAL"
    TEAM = "TEAM"


class LeapDayPolicy(str, enum.Enum):
    FEB_28 = "FEB_28"
    MAR_1 = "MAR_1"


class MembershipRole(str, enum.Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class MembershipStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INVITED = "INVITED"
    REMOVED = "REMOVED"


class ChannelType(str, enum.Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"


class SendStatus(str, enum.Enum):
    PENDING = "PENDING"
    QUEUED = "QUEUED"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class SendLogStatus(str, enum.Enum):
    SENT = "SENT"
    FAILED = "FAILED"


class DeliveryState(str, enum.Enum):
    WAITING = "WAITING"
    PAUSED = "PAUSED"
    SENDING = "SENDING"
    SENT = "SENT"
    PARTIALLY_SENT = "PARTIALLY_SENT"
    CANCELED = "CANCELED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_DELIVERY_STATES


TERMINAL_DELIVERY_STATES = frozenset(
    {
        DeliveryState.SENT,
        DeliveryState.PARTIALLY_SENT,
        DeliveryState.CANCELED,
        DeliveryState.FAILED,
    }
)

# Rows in these states are never rewritten by the scheduling pass
TERMINAL_SEND_STATUSES = (SendStatus.SENT, SendStatus.DELIVERED)


# =====================================================
# SQLAlchemy Enum Types
# These reference existing PostgreSQL types (create_type=False)
# =====================================================

event_type_enum = SQLEnum(
    EventType, name="event_type", create_type=False, native_enum=True
)
group_type_enum = SQLEnum(
    GroupType, name="group_type", create_type=False, native_enum=True
)
leap_day_policy_enum = SQLEnum(
    LeapDayPolicy, name="leap_day_policy", create_type=False, native_enum=True
)
membership_role_enum = SQLEnum(
    MembershipRole, name="membership_role", create_type=False, native_enum=True
)
membership_status_enum = SQLEnum(
    MembershipStatus, name="membership_status", create_type=False, native_enum=True
)
channel_type_enum = SQLEnum(
    ChannelType, name="channel_type", create_type=False, native_enum=True
)
send_status_enum = SQLEnum(
    SendStatus, name="send_status", create_type=False, native_enum=True
)
send_log_status_enum = SQLEnum(
    SendLogStatus, name="send_log_status", create_type=False, native_enum=True
)
delivery_state_enum = SQLEnum(
    DeliveryState, name="delivery_state", create_type=False, native_enum=True
)

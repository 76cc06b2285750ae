"""SQLAlchemy Core table definitions for the database schema."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, TIMESTAMP

from .enums import (
    channel_type_enum,
    delivery_state_enum,
    event_type_enum,
    group_type_enum,
    leap_day_policy_enum,
    membership_role_enum,
    membership_status_enum,
    send_log_status_enum,
    send_status_enum,
)

# Naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}
metadata = MetaData(naming_convention=convention)


# =====================================================
# 1. USERS
# =====================================================
# Accounts that can log in and receive notifications
users = Table(
    "users",
    metadata,
    Column("user_id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text),
    Column("email", Text),
    Column("phone", Text),
    Column("default_timezone", Text),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("deleted_at", TIMESTAMP(timezone=True)),
    Index("idx_users_email", "email"),
)


# =====================================================
# 2. CONTACTS
# =====================================================
# People being celebrated; may or may not have a linked account
contacts = Table(
    "contacts",
    metadata,
    Column("contact_id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("email", Text),
    Column("phone", Text),
    Column("timezone", Text),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("deleted_at", TIMESTAMP(timezone=True)),
)


# =====================================================
# 3. GROUPS
# =====================================================
groups = Table(
    "groups",
    metadata,
    Column("group_id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("type", group_type_enum, nullable=False, server_default="PERSONAL"),
    Column(
        "owner_id",
        Integer,
        ForeignKey("users.user_id", ondelete="SET NULL"),
    ),
    Column("default_timezone", Text),
    Column("leap_day_policy", leap_day_policy_enum, server_default="FEB_28"),
    Column("reminders_enabled", Boolean, nullable=False, server_default="true"),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("deleted_at", TIMESTAMP(timezone=True)),
    Index("idx_groups_owner_id", "owner_id"),
)


# =====================================================
# 4. MEMBERSHIPS
# =====================================================
memberships = Table(
    "memberships",
    metadata,
    Column("membership_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "group_id",
        Integer,
        ForeignKey("groups.group_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "contact_id",
        Integer,
        ForeignKey("contacts.contact_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.user_id", ondelete="SET NULL"),
    ),  # NULL = contact has no account
    Column("role", membership_role_enum, nullable=False, server_default="MEMBER"),
    Column("status", membership_status_enum, server_default="ACTIVE"),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    UniqueConstraint("group_id", "contact_id", name="uq_memberships_group_contact"),
    Index("idx_memberships_group_id", "group_id"),
    Index("idx_memberships_user_id", "user_id"),
)


# =====================================================
# 5. EVENTS (occasions)
# =====================================================
events = Table(
    "events",
    metadata,
    Column("event_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "contact_id",
        Integer,
        ForeignKey("contacts.contact_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("type", event_type_enum, nullable=False),
    Column("title", Text),  # required for CUSTOM events when rendered
    Column("date", Date, nullable=False),  # anchor date
    Column("year_known", Boolean, nullable=False, server_default="true"),
    Column("repeat", Boolean, nullable=False, server_default="true"),
    Column("notes", Text),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("deleted_at", TIMESTAMP(timezone=True)),
    Index("idx_events_contact_id", "contact_id"),
)


# =====================================================
# 6. REMINDER_RULES
# =====================================================
reminder_rules = Table(
    "reminder_rules",
    metadata,
    Column("rule_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "group_id",
        Integer,
        ForeignKey("groups.group_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("offsets", ARRAY(Integer), nullable=False),  # days, negative = before
    Column("channels", JSONB, nullable=False),  # {"-7": ["EMAIL"], "0": ["EMAIL", "SMS"]}
    Column("send_hour", Integer, nullable=False, server_default="9"),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    CheckConstraint("send_hour >= 0 AND send_hour <= 23", name="send_hour_range"),
    Index("idx_reminder_rules_group_id", "group_id"),
)


# =====================================================
# 7. SUPPRESSIONS
# =====================================================
# Opt-outs per (identifier, channel); presence means "never deliver"
suppressions = Table(
    "suppressions",
    metadata,
    Column("suppression_id", Integer, primary_key=True, autoincrement=True),
    Column("identifier", Text, nullable=False),  # normalized email or E.164 phone
    Column("channel", channel_type_enum, nullable=False),
    Column("reason", Text),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    UniqueConstraint(
        "identifier", "channel", name="uq_suppressions_identifier_channel"
    ),
)


# =====================================================
# 8. SCHEDULED_SENDS (notification intents)
# =====================================================
scheduled_sends = Table(
    "scheduled_sends",
    metadata,
    Column("scheduled_send_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "event_id",
        Integer,
        ForeignKey("events.event_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "group_id",
        Integer,
        ForeignKey("groups.group_id", ondelete="SET NULL"),
    ),
    Column(
        "recipient_user_id",
        Integer,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("target_date", Date, nullable=False),  # resolved occurrence date
    Column("offset_days", Integer, nullable=False),
    Column("channel", channel_type_enum, nullable=False),
    Column("due_at_utc", TIMESTAMP(timezone=True), nullable=False),
    Column("status", send_status_enum, nullable=False, server_default="PENDING"),
    Column("idempotency_key", Text, nullable=False),
    Column("retry_count", Integer, nullable=False, server_default="0"),
    Column("sent_at", TIMESTAMP(timezone=True)),
    Column("failed_at", TIMESTAMP(timezone=True)),
    Column("last_error", Text),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    UniqueConstraint("idempotency_key", name="uq_scheduled_sends_idempotency_key"),
    Index("idx_scheduled_sends_status_due", "status", "due_at_utc"),
    Index("idx_scheduled_sends_event_id", "event_id"),
)


# =====================================================
# 9. SEND_LOGS
# =====================================================
# Append-only record of each delivery attempt outcome
send_logs = Table(
    "send_logs",
    metadata,
    Column("send_log_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "scheduled_send_id",
        Integer,
        ForeignKey("scheduled_sends.scheduled_send_id", ondelete="CASCADE"),
    ),  # NULL for ad-hoc reminders
    Column("instance_id", Text),
    Column("channel", channel_type_enum, nullable=False),
    Column("status", send_log_status_enum, nullable=False),
    Column("provider_message_id", Text),
    Column("error_message", Text),
    Column("attempts", Integer, nullable=False, server_default="1"),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Index("idx_send_logs_scheduled_send_id", "scheduled_send_id"),
    Index("idx_send_logs_created_at", "created_at"),
)


# =====================================================
# 10. DELIVERY_INSTANCES
# =====================================================
# Durable checkpoint for each delivery state machine
delivery_instances = Table(
    "delivery_instances",
    metadata,
    Column("instance_id", Text, primary_key=True),  # "reminder-{idempotency_key}"
    Column(
        "scheduled_send_id",
        Integer,
        ForeignKey("scheduled_sends.scheduled_send_id", ondelete="CASCADE"),
    ),
    Column("state", delivery_state_enum, nullable=False, server_default="WAITING"),
    Column("payload", JSONB, nullable=False),
    Column("due_at", TIMESTAMP(timezone=True), nullable=False),
    Column("remaining_wait_s", Float),  # NULL = not yet computed
    Column("paused_at", TIMESTAMP(timezone=True)),
    Column("canceled_at", TIMESTAMP(timezone=True)),
    Column("reminders_sent", Integer, nullable=False, server_default="0"),
    Column("result", Text),
    Column("started_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("completed_at", TIMESTAMP(timezone=True)),
    Index("idx_delivery_instances_state", "state"),
    Index("idx_delivery_instances_scheduled_send_id", "scheduled_send_id"),
)

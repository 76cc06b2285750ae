"""Reminder rule queries using SQLAlchemy Core."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncConnection

from ..enums import MembershipStatus
from ..tables import contacts, events, groups, memberships, reminder_rules, users


async def get_active_reminder_rules(conn: AsyncConnection) -> list[dict[str, Any]]:
    """
    Load every rule whose group has reminders enabled and is not deleted.

    Returns:
        [
            {
                "rule_id": 1,
                "group_id": 10,
                "offsets": [-7, 0],
                "channels": {"-7": ["EMAIL"], "0": ["EMAIL", "SMS"]},
                "send_hour": 9,
                "group": {
                    "group_id": 10,
                    "name": "Family",
                    "type": "PERSONAL",
                    "owner_id": 3,
                    "default_timezone": "Europe/London",
                    "leap_day_policy": "FEB_28",
                    "memberships": [
                        {
                            "membership_id": 5,
                            "user_id": 3,        # or None
                            "contact_id": 7,
                            "role": "OWNER",
                            "status": "ACTIVE",
                            "user": {...} | None,
                            "contact": {"contact_id": 7, "name": ..., "events": [...]},
                        },
                        ...
                    ],
                },
            },
            ...
        ]
    """
    rules_result = await conn.execute(
        select(
            reminder_rules.c.rule_id,
            reminder_rules.c.group_id,
            reminder_rules.c.offsets,
            reminder_rules.c.channels,
            reminder_rules.c.send_hour,
            groups.c.name.label("group_name"),
            groups.c.type.label("group_type"),
            groups.c.owner_id,
            groups.c.default_timezone,
            groups.c.leap_day_policy,
        )
        .join(groups, reminder_rules.c.group_id == groups.c.group_id)
        .where(groups.c.reminders_enabled.is_(True))
        .where(groups.c.deleted_at.is_(None))
        .order_by(reminder_rules.c.rule_id)
    )
    rule_rows = [dict(row) for row in rules_result.mappings()]
    if not rule_rows:
        return []

    group_ids = {row["group_id"] for row in rule_rows}
    memberships_by_group = await _get_active_memberships(conn, group_ids)

    rules = []
    for row in rule_rows:
        group_id = row["group_id"]
        rules.append(
            {
                "rule_id": row["rule_id"],
                "group_id": group_id,
                "offsets": list(row["offsets"] or []),
                "channels": row["channels"] or {},
                "send_hour": row["send_hour"],
                "group": {
                    "group_id": group_id,
                    "name": row["group_name"],
                    "type": row["group_type"],
                    "owner_id": row["owner_id"],
                    "default_timezone": row["default_timezone"],
                    "leap_day_policy": row["leap_day_policy"],
                    "memberships": memberships_by_group.get(group_id, []),
                },
            }
        )
    return rules


async def _get_active_memberships(
    conn: AsyncConnection,
    group_ids: set[int],
) -> dict[int, list[dict[str, Any]]]:
    """ACTIVE memberships per group with linked user, contact and live events."""
    result = await conn.execute(
        select(
            memberships.c.membership_id,
            memberships.c.group_id,
            memberships.c.user_id,
            memberships.c.contact_id,
            memberships.c.role,
            memberships.c.status,
            users.c.name.label("user_name"),
            users.c.email.label("user_email"),
            users.c.phone.label("user_phone"),
            users.c.default_timezone.label("user_timezone"),
            users.c.deleted_at.label("user_deleted_at"),
            contacts.c.name.label("contact_name"),
            contacts.c.email.label("contact_email"),
            contacts.c.phone.label("contact_phone"),
        )
        .join(contacts, memberships.c.contact_id == contacts.c.contact_id)
        .outerjoin(users, memberships.c.user_id == users.c.user_id)
        .where(memberships.c.group_id.in_(group_ids))
        .where(memberships.c.status == MembershipStatus.ACTIVE)
        .where(contacts.c.deleted_at.is_(None))
        .order_by(memberships.c.membership_id)
    )
    membership_rows = [dict(row) for row in result.mappings()]

    contact_ids = {row["contact_id"] for row in membership_rows}
    events_by_contact = await _get_live_events(conn, contact_ids)

    by_group: dict[int, list[dict[str, Any]]] = {}
    for row in membership_rows:
        has_account = row["user_id"] is not None and row["user_deleted_at"] is None
        user = (
            {
                "user_id": row["user_id"],
                "name": row["user_name"],
                "email": row["user_email"],
                "phone": row["user_phone"],
                "default_timezone": row["user_timezone"],
            }
            if has_account
            else None
        )
        by_group.setdefault(row["group_id"], []).append(
            {
                "membership_id": row["membership_id"],
                "user_id": row["user_id"] if has_account else None,
                "contact_id": row["contact_id"],
                "role": row["role"],
                "status": row["status"],
                "user": user,
                "contact": {
                    "contact_id": row["contact_id"],
                    "name": row["contact_name"],
                    "email": row["contact_email"],
                    "phone": row["contact_phone"],
                    "events": events_by_contact.get(row["contact_id"], []),
                },
            }
        )
    return by_group


async def _get_live_events(
    conn: AsyncConnection,
    contact_ids: set[int],
) -> dict[int, list[dict[str, Any]]]:
    """Non-deleted events grouped by contact."""
    if not contact_ids:
        return {}

    result = await conn.execute(
        select(
            events.c.event_id,
            events.c.contact_id,
            events.c.type,
            events.c.title,
            events.c.date,
            events.c.year_known,
            events.c.repeat,
            events.c.notes,
        )
        .where(events.c.contact_id.in_(contact_ids))
        .where(events.c.deleted_at.is_(None))
        .order_by(events.c.event_id)
    )
    by_contact: dict[int, list[dict[str, Any]]] = {}
    for row in result.mappings():
        by_contact.setdefault(row["contact_id"], []).append(dict(row))
    return by_contact

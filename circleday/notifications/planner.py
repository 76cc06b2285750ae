"""
Idempotent reminder scheduling.

The scheduling pass walks every active reminder rule, resolves each
occasion's next date, matches the rule's offsets inside the lookahead
horizon, resolves recipients for the group type and upserts one
scheduled send per (event, date, offset, channel, recipient). Running
it again on the same data converges on the same rows.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

import sentry_sdk

from ..config import get_default_timezone, get_lookahead_days
from ..database import get_connection, get_transaction
from ..distribution import resolve_recipients
from ..enums import ChannelType
from ..offsets import channels_for_offset, match_offsets, offsets_due_today
from ..queries import get_active_reminder_rules, upsert_scheduled_send
from ..recurrence import parse_leap_day_policy, resolve_occurrence
from ..suppression import SuppressionCache
from ..timezone import local_hour_to_utc, today_in_timezone

logger = logging.getLogger(__name__)

DEFAULT_SEND_HOUR = 9


def generate_idempotency_key(
    event_id: int,
    target_date: date,
    offset: int,
    channel: ChannelType,
    recipient_identifier: str,
) -> str:
    """
    Deterministic key for one notification intent.

    Format: {eventId}-{yyyy-MM-dd}-{offset}-{channel}-{recipientIdentifier}
    """
    return (
        f"{event_id}-{target_date:%Y-%m-%d}-{offset}-{channel.value}-{recipient_identifier}"
    )


def _enum_value(value) -> str:
    return getattr(value, "value", value) or ""


def event_display_name(event: dict, contact_name: str | None) -> str:
    """Event title, else "<contact name> <TYPE>"."""
    if event.get("title"):
        return event["title"]
    return f"{contact_name or 'Someone'} {_enum_value(event.get('type'))}".strip()


@dataclass(frozen=True)
class PlannedSend:
    """One notification intent produced by the planner."""

    idempotency_key: str
    rule_id: int
    event_id: int
    group_id: int
    recipient_user_id: int
    recipient_identifier: str
    target_date: date
    offset: int
    channel: ChannelType
    send_date: date
    due_at_utc: datetime


@dataclass
class RulePlan:
    sends: list[PlannedSend] = field(default_factory=list)
    skipped: int = 0
    errors: int = 0


def _occasions(group: dict):
    """(contact, event) pairs for every live event of the group's members."""
    seen_events = set()
    for membership in group.get("memberships", []):
        contact = membership.get("contact") or {}
        for event in contact.get("events", []):
            if event["event_id"] in seen_events:
                continue
            seen_events.add(event["event_id"])
            yield contact, event


def plan_rule(
    rule: dict,
    today: date,
    horizon_days: int,
    default_timezone: str = "UTC",
) -> RulePlan:
    """
    Plan every send a rule produces for [today, today + horizon_days].

    Recipients without the identifier a channel needs are counted as
    skipped. Events that cannot be resolved are counted as errors.
    """
    plan = RulePlan()
    group = rule["group"]
    policy = parse_leap_day_policy(group.get("leap_day_policy"))
    send_hour = rule.get("send_hour")
    if send_hour is None:
        send_hour = DEFAULT_SEND_HOUR

    for contact, event in _occasions(group):
        try:
            occurrence = resolve_occurrence(event, today, policy)
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping event {event.get('event_id')} in rule {rule['rule_id']}: {e}")
            plan.errors += 1
            continue

        matches = match_offsets(
            rule.get("offsets") or [],
            rule.get("channels"),
            occurrence.date,
            today,
            horizon_days,
        )
        if not matches:
            continue

        recipients = resolve_recipients(group, contact["contact_id"], default_timezone)
        for match in matches:
            for recipient in recipients:
                due_at_utc = local_hour_to_utc(match.send_date, send_hour, recipient.timezone)
                for channel in match.channels:
                    identifier = recipient.identifier_for(channel)
                    if identifier is None:
                        plan.skipped += 1
                        continue
                    plan.sends.append(
                        PlannedSend(
                            idempotency_key=generate_idempotency_key(
                                event["event_id"], occurrence.date, match.offset, channel, identifier
                            ),
                            rule_id=rule["rule_id"],
                            event_id=event["event_id"],
                            group_id=group["group_id"],
                            recipient_user_id=recipient.user_id,
                            recipient_identifier=identifier,
                            target_date=occurrence.date,
                            offset=match.offset,
                            channel=channel,
                            send_date=match.send_date,
                            due_at_utc=due_at_utc,
                        )
                    )
    return plan


async def schedule_upcoming_reminders(
    today: date | None = None,
    horizon_days: int | None = None,
) -> dict:
    """
    Upsert scheduled sends for every active rule.

    Safe to run repeatedly and concurrently: all writes are keyed by the
    idempotency key. A failing rule or row is counted and the pass goes on.

    Returns:
        Dict with "scheduled", "skipped" and "errors" counts
    """
    default_timezone = get_default_timezone()
    if today is None:
        today = today_in_timezone(default_timezone)
    if horizon_days is None:
        horizon_days = get_lookahead_days()

    scheduled = skipped = errors = 0
    seen_keys: set[str] = set()

    async with get_connection() as conn:
        rules = await get_active_reminder_rules(conn)
        suppressions = SuppressionCache(conn)

        for rule in rules:
            try:
                plan = plan_rule(rule, today, horizon_days, default_timezone)
            except Exception as e:
                logger.error(f"Failed to plan reminder rule {rule.get('rule_id')}: {e}")
                sentry_sdk.capture_exception(e)
                errors += 1
                continue

            skipped += plan.skipped
            errors += plan.errors

            for send in plan.sends:
                if send.idempotency_key in seen_keys:
                    continue
                seen_keys.add(send.idempotency_key)

                if await suppressions.is_suppressed(send.recipient_identifier, send.channel):
                    logger.debug(f"Suppressed {send.channel.value} reminder {send.idempotency_key}")
                    skipped += 1
                    continue

                try:
                    async with get_transaction() as tx:
                        await upsert_scheduled_send(
                            tx,
                            idempotency_key=send.idempotency_key,
                            event_id=send.event_id,
                            group_id=send.group_id,
                            recipient_user_id=send.recipient_user_id,
                            target_date=send.target_date,
                            offset=send.offset,
                            channel=send.channel,
                            due_at_utc=send.due_at_utc,
                        )
                    scheduled += 1
                except Exception as e:
                    logger.error(f"Failed to upsert scheduled send {send.idempotency_key}: {e}")
                    sentry_sdk.capture_exception(e)
                    errors += 1

    logger.info(
        f"Reminder scheduling for {today}: {scheduled} scheduled, "
        f"{skipped} skipped, {errors} errors"
    )
    return {"scheduled": scheduled, "skipped": skipped, "errors": errors}


def reminders_due_on(
    rules: list[dict],
    today: date,
    default_timezone: str = "UTC",
) -> list[dict]:
    """Offsets that fire exactly on `today`, with their recipients and channels."""
    due = []
    for rule in rules:
        group = rule["group"]
        policy = parse_leap_day_policy(group.get("leap_day_policy"))
        for contact, event in _occasions(group):
            try:
                occurrence = resolve_occurrence(event, today, policy)
            except (ValueError, TypeError):
                continue

            for offset in offsets_due_today(rule.get("offsets") or [], occurrence.days_until):
                channels = channels_for_offset(rule.get("channels"), offset)
                if not channels:
                    continue
                for recipient in resolve_recipients(group, contact["contact_id"], default_timezone):
                    usable = [c for c in channels if recipient.identifier_for(c)]
                    if not usable:
                        continue
                    due.append(
                        {
                            "rule_id": rule["rule_id"],
                            "group_id": group["group_id"],
                            "event_id": event["event_id"],
                            "event_name": event_display_name(event, contact.get("name")),
                            "occurrence_date": occurrence.date,
                            "days_until": occurrence.days_until,
                            "offset": offset,
                            "recipient_user_id": recipient.user_id,
                            "channels": usable,
                        }
                    )
    return due


async def calculate_reminders_for_today(today: date | None = None) -> list[dict]:
    """Reminders whose offset lands on today (monitoring preview)."""
    default_timezone = get_default_timezone()
    if today is None:
        today = today_in_timezone(default_timezone)
    async with get_connection() as conn:
        rules = await get_active_reminder_rules(conn)
    return reminders_due_on(rules, today, default_timezone)

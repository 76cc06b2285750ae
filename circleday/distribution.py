"""
Recipient resolution per group type.

PERSONAL groups funnel every reminder to the group owner (coordinator
model, including the owner's own occasions). TEAM groups remind every
active member with an account except the person being celebrated.

Each group type maps to its own resolver function; unknown or missing
types resolve as PERSONAL.
"""

from dataclasses import dataclass
from typing import Callable

from .enums import ChannelType, GroupType, MembershipStatus
from .timezone import resolve_timezone

DEFAULT_RECIPIENT_NAME = "CircleDay member"


@dataclass(frozen=True)
class Recipient:
    """An account that can receive reminders."""

    user_id: int
    email: str | None
    phone: str | None
    name: str
    timezone: str

    def identifier_for(self, channel: ChannelType) -> str | None:
        """
        The address to use for a channel.

        EMAIL needs an email, SMS needs a phone. Missing or blank
        identifiers return None (a skip, not an error).
        """
        if channel == ChannelType.EMAIL:
            value = self.email
        elif channel == ChannelType.SMS:
            value = self.phone
        else:
            return None
        if value is None or not value.strip():
            return None
        return value


def parse_group_type(value) -> GroupType:
    """Coerce a stored group type, defaulting to PERSONAL."""
    try:
        return GroupType(value)
    except ValueError:
        return GroupType.PERSONAL


def _active_memberships(group: dict) -> list[dict]:
    return [
        m
        for m in group.get("memberships", [])
        if m.get("status", MembershipStatus.ACTIVE) == MembershipStatus.ACTIVE
    ]


def _recipient_from_membership(membership: dict, group: dict, default_timezone: str) -> Recipient:
    user = membership["user"]
    return Recipient(
        user_id=user["user_id"],
        email=user.get("email"),
        phone=user.get("phone"),
        name=user.get("name") or user.get("email") or DEFAULT_RECIPIENT_NAME,
        timezone=resolve_timezone(
            user.get("default_timezone"),
            group.get("default_timezone"),
            default=default_timezone,
        ),
    )


def _personal_recipients(
    group: dict, celebrated_contact_id: int, default_timezone: str
) -> list[Recipient]:
    owner_id = group.get("owner_id")
    for membership in _active_memberships(group):
        user = membership.get("user")
        if user and owner_id is not None and membership.get("user_id") == owner_id:
            return [_recipient_from_membership(membership, group, default_timezone)]
    return []


def _team_recipients(
    group: dict, celebrated_contact_id: int, default_timezone: str
) -> list[Recipient]:
    recipients = []
    seen_user_ids = set()
    for membership in _active_memberships(group):
        if not membership.get("user"):
            continue
        if membership.get("contact_id") == celebrated_contact_id:
            continue
        recipient = _recipient_from_membership(membership, group, default_timezone)
        if recipient.user_id in seen_user_ids:
            continue
        seen_user_ids.add(recipient.user_id)
        recipients.append(recipient)
    return recipients


RECIPIENT_RESOLVERS: dict[GroupType, Callable[[dict, int, str], list[Recipient]]] = {
    GroupType.PERSONAL: _personal_recipients,
    GroupType.TEAM: _team_recipients,
}


def resolve_recipients(
    group: dict,
    celebrated_contact_id: int,
    default_timezone: str = "UTC",
) -> list[Recipient]:
    """
    Determine who should be reminded of an occasion in a group.

    Args:
        group: Group dict with "type", "owner_id", "default_timezone" and
            "memberships" (each with "user_id", "contact_id", "status" and
            a nested "user" dict or None)
        celebrated_contact_id: Contact whose occasion it is
        default_timezone: Fallback when neither user nor group has one

    Returns:
        Recipients with linked accounts only
    """
    resolver = RECIPIENT_RESOLVERS[parse_group_type(group.get("type"))]
    return resolver(group, celebrated_contact_id, default_timezone)

"""Normalization of recipient identifiers (emails and phone numbers)."""

import re

from .enums import ChannelType

E164_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")


def normalize_email(email: str) -> str:
    """Trim and lower-case an email address."""
    return email.strip().lower()


def format_phone_number(phone: str) -> str:
    """
    Format a phone number to E.164 (required by Twilio).

    Examples:
        +14155552671   -> +14155552671
        (415) 555-2671 -> +14155552671
        14155552671    -> +14155552671
    """
    cleaned = re.sub(r"[^\d+]", "", phone)

    if not cleaned.startswith("+"):
        if len(cleaned) == 10:
            # Assume US/Canada
            cleaned = "+1" + cleaned
        elif cleaned:
            cleaned = "+" + cleaned

    return cleaned


def is_valid_phone_number(phone: str | None) -> bool:
    """Check a phone number can be formatted to valid E.164."""
    if not phone or not phone.strip():
        return False
    return bool(E164_PATTERN.match(format_phone_number(phone)))


def normalize_identifier(identifier: str, channel: ChannelType) -> str:
    """Normalize an identifier for suppression lookups."""
    if channel == ChannelType.SMS:
        return format_phone_number(identifier)
    return normalize_email(identifier)


def suppression_key(stored: str, channel: ChannelType) -> str:
    """
    Comparable form of a stored suppression identifier.

    Emails are trimmed and lower-cased; phones are reduced to their digits.
    Mirrors the SQL expression in `queries.suppressions`.
    """
    if channel == ChannelType.SMS:
        return re.sub(r"\D", "", stored)
    return normalize_email(stored)


def suppression_lookup_keys(identifier: str, channel: ChannelType) -> list[str]:
    """
    Keys a stored identifier may reduce to for the same recipient.

    A US/Canada number may be stored with or without its country code.
    """
    if channel != ChannelType.SMS:
        return [normalize_email(identifier)]
    digits = format_phone_number(identifier).lstrip("+")
    keys = [digits]
    if len(digits) == 11 and digits.startswith("1"):
        keys.append(digits[1:])
    return keys

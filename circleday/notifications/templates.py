"""Message template loading and rendering."""

from datetime import date
from pathlib import Path

import yaml

from ..config import get_app_url
from ..timezone import format_date_long, format_date_short

_templates: dict | None = None


def load_templates() -> dict:
    """
    Load message templates from YAML file.

    Caches templates after first load.
    """
    global _templates
    if _templates is not None:
        return _templates

    yaml_path = Path(__file__).parent / "messages.yaml"
    with open(yaml_path) as f:
        _templates = yaml.safe_load(f)

    return _templates


def render_message(template: str, context: dict) -> str:
    """
    Render a message template with context variables.

    Raises:
        KeyError: If a required variable is missing from context
    """
    return template.format(**context)


def get_message(message_type: str, channel: str, context: dict) -> str:
    """
    Get and render a message for a specific type and channel.

    Args:
        message_type: e.g., "reminder"
        channel: e.g., "email_subject", "email_body", "sms"
        context: Variables to substitute
    """
    templates = load_templates()
    template = templates[message_type][channel]
    return render_message(template, context)


def describe_days_until(days_until: int) -> str:
    """Human wording for the distance to an occasion."""
    if days_until == 0:
        return "today"
    if days_until == 1:
        return "tomorrow"
    if days_until == -1:
        return "yesterday"
    if days_until < 0:
        return f"{abs(days_until)} days ago"
    return f"in {days_until} days"


def build_reminder_context(
    recipient_name: str,
    occasion_name: str,
    occasion_date: date,
    days_until: int,
    group_name: str | None = None,
) -> dict:
    """Template variables for a reminder message."""
    return {
        "recipient_name": recipient_name,
        "occasion_name": occasion_name,
        "date_long": format_date_long(occasion_date),
        "date_short": format_date_short(occasion_date),
        "days_text": describe_days_until(days_until),
        "group_name": group_name or "CircleDay",
        "app_url": get_app_url(),
    }

#!/usr/bin/env python3
"""
Send test reminders through the real channel senders.

Usage:
    python scripts/send_test_reminders.py <email_or_phone> [days_until ...]

Examples:
    python scripts/send_test_reminders.py test@example.com 7 1 0
    python scripts/send_test_reminders.py +14155550001      # sends "tomorrow"
"""

import sys
from datetime import date, timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env.local")
load_dotenv()

from circleday.enums import ChannelType
from circleday.notifications.channels import build_channel_senders
from circleday.notifications.errors import ChannelSendError
from circleday.notifications.templates import build_reminder_context, get_message


def send_test_reminder(to: str, days_until: int, senders: dict) -> bool:
    """Send one test reminder for an occasion `days_until` days from today."""
    channel = ChannelType.EMAIL if "@" in to else ChannelType.SMS
    sender = senders.get(channel)
    if sender is None:
        print(f"{channel.value} channel is not configured")
        return False

    occasion_date = date.today() + timedelta(days=days_until)
    occasion_name = "[TEST] Jane Doe BIRTHDAY"
    context = build_reminder_context("Test User", occasion_name, occasion_date, days_until)

    print(f"\n{'='*60}")
    print(f"Sending: {channel.value} ({days_until} days)")
    print(f"To: {to}")
    print(f"{'='*60}")
    print(get_message("reminder", "sms" if channel == ChannelType.SMS else "email_body", context))
    print(f"{'='*60}")

    try:
        if channel == ChannelType.EMAIL:
            message_id = sender.send_email(to, "Test User", occasion_name, occasion_date, days_until)
        else:
            message_id = sender.send_sms(to, "Test User", occasion_name, occasion_date, days_until)
    except ChannelSendError as e:
        print(f"Result: ✗ Failed ({e})")
        return False

    print(f"Result: ✓ Sent ({message_id})")
    return True


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    to = sys.argv[1]
    days = [int(d) for d in sys.argv[2:]] or [1]
    senders = build_channel_senders()

    results = {d: send_test_reminder(to, d, senders) for d in days}

    print(f"\n{'='*60}")
    print("Summary:")
    for d, success in results.items():
        status = "✓" if success else "✗"
        print(f"  {status} {d} days")


if __name__ == "__main__":
    main()

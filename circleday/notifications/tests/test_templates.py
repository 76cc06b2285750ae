"""Tests for reminder message templates."""

from datetime import date

import pytest

from circleday.notifications.templates import (
    build_reminder_context,
    describe_days_until,
    get_message,
    load_templates,
)


class TestLoadTemplates:
    def test_reminder_has_all_channels(self):
        templates = load_templates()
        assert set(templates["reminder"]) == {"email_subject", "email_body", "sms"}


class TestDescribeDaysUntil:
    @pytest.mark.parametrize(
        "days, expected",
        [(0, "today"), (1, "tomorrow"), (7, "in 7 days"), (-1, "yesterday"), (-3, "3 days ago")],
    )
    def test_wording(self, days, expected):
        assert describe_days_until(days) == expected


class TestGetMessage:
    def test_renders_sms(self):
        context = build_reminder_context("Owner", "Jane Doe BIRTHDAY", date(2025, 3, 8), 0)
        message = get_message("reminder", "sms", context)

        assert "Jane Doe BIRTHDAY is today" in message
        assert "Mar 8, 2025" in message

    def test_email_body_uses_group_name_and_long_date(self):
        context = build_reminder_context(
            "Owner", "Jane Doe BIRTHDAY", date(2025, 3, 8), 7, group_name="Friends"
        )
        body = get_message("reminder", "email_body", context)

        assert body.startswith("Hi Owner,")
        assert "from Friends" in body
        assert "March 8, 2025 (in 7 days)" in body

    def test_missing_variable_raises(self):
        with pytest.raises(KeyError):
            get_message("reminder", "sms", {"occasion_name": "x"})

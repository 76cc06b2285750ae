"""Tests for periodic reminder job registration and job functions."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from circleday.notifications import scheduler


class TestRegisterReminderJobs:
    def test_registers_all_jobs(self):
        mock_scheduler = MagicMock()

        with (
            patch("circleday.notifications.scheduler.get_schedule_hour_utc", return_value=8),
            patch("circleday.notifications.scheduler.get_dispatch_interval_minutes", return_value=5),
        ):
            scheduler.register_reminder_jobs(mock_scheduler)

        jobs = {c.kwargs["id"]: c for c in mock_scheduler.add_job.call_args_list}
        assert set(jobs) == {
            "reminder_scheduling",
            "reminder_dispatch",
            "reminder_retry",
            "reminder_reconciliation",
        }
        assert jobs["reminder_scheduling"].kwargs["trigger"] == "cron"
        assert jobs["reminder_scheduling"].kwargs["hour"] == 8
        assert jobs["reminder_dispatch"].kwargs["minutes"] == 5
        assert jobs["reminder_retry"].kwargs["minutes"] == scheduler.RETRY_INTERVAL_MINUTES
        assert all(c.kwargs["replace_existing"] for c in jobs.values())


class TestJobFunctions:
    @pytest.mark.asyncio
    async def test_scheduling_pass_dispatches_afterwards(self):
        with (
            patch(
                "circleday.notifications.planner.schedule_upcoming_reminders",
                AsyncMock(return_value={"scheduled": 2, "skipped": 0, "errors": 0}),
            ),
            patch(
                "circleday.notifications.dispatcher.dispatch_due_sends", AsyncMock()
            ) as mock_dispatch,
        ):
            result = await scheduler.run_scheduling_pass()

        assert result["scheduled"] == 2
        mock_dispatch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_job_errors_are_reported_not_raised(self):
        with (
            patch(
                "circleday.notifications.retry.requeue_failed_sends",
                AsyncMock(side_effect=RuntimeError("db down")),
            ),
            patch("circleday.notifications.scheduler.sentry_sdk") as mock_sentry,
        ):
            result = await scheduler.run_retry_requeue()

        assert result is None
        mock_sentry.capture_exception.assert_called_once()

    @pytest.mark.asyncio
    async def test_reconciliation_job_returns_report(self):
        report = {"checked": 0, "discrepancies": []}
        with patch(
            "circleday.notifications.reconciliation.reconcile_scheduled_sends",
            AsyncMock(return_value=report),
        ):
            assert await scheduler.run_reconciliation() == report

"""Tests for the engagement CLI."""

import re
from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from guest_engagement.cli import app
from guest_engagement.core.datetime_utils import utc_now
from guest_engagement.schemas.engagement import EngagementRunReport

runner = CliRunner()


class TestRunKeyCommand:
    """Tests for `engagement run-key`."""

    def test_prints_bucketed_key(self):
        result = runner.invoke(app, ["run-key"])

        assert result.exit_code == 0
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:(00|15|30|45)\n", result.output)


class TestRunCommand:
    """Tests for `engagement run`."""

    def test_prints_report(self):
        report = EngagementRunReport(run_key="2025-03-03T12:00", processed_at=utc_now())

        with patch("guest_engagement.jobs.engagement.main", AsyncMock(return_value=report)):
            result = runner.invoke(app, ["run"])

        assert result.exit_code == 0
        assert '"runKey": "2025-03-03T12:00"' in result.output

    def test_aborted_run_exits_2(self):
        report = EngagementRunReport(
            run_key="2025-03-03T12:00",
            processed_at=utc_now(),
            aborted=True,
            abort_reason="logging_failed",
        )

        with patch("guest_engagement.jobs.engagement.main", AsyncMock(return_value=report)):
            result = runner.invoke(app, ["run"])

        assert result.exit_code == 2

    def test_failed_run_exits_1(self):
        with patch("guest_engagement.jobs.engagement.main", AsyncMock(side_effect=RuntimeError("boom"))):
            result = runner.invoke(app, ["run"])

        assert result.exit_code == 1

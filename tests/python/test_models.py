"""Tests for the models module."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from quick_watch.models import (
    ActiveOutage,
    CheckResult,
    HookNotification,
    ResolvedOutage,
    StatusReportData,
)


class TestCheckResult:
    """Test cases for CheckResult model."""

    def test_create_minimal(self) -> None:
        result = CheckResult(success=True)

        assert result.status_code == 0
        assert result.response_time == 0.0
        assert result.error is None
        assert result.alert_count == 0
        assert result.timestamp.tzinfo is not None

    def test_failure_factory(self) -> None:
        """Test failure() builds an unsuccessful result with extra fields."""
        stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
        result = CheckResult.failure("Request failed: timed out", timestamp=stamp)

        assert result.success is False
        assert result.error == "Request failed: timed out"
        assert result.timestamp == stamp

    def test_negative_values_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CheckResult(success=True, response_time=-1)
        with pytest.raises(ValidationError):
            CheckResult(success=True, response_size=-1)

    def test_copy_with_alert_count(self) -> None:
        result = CheckResult(success=False, status_code=503)
        copied = result.model_copy(update={"alert_count": 3})

        assert copied.alert_count == 3
        assert result.alert_count == 0


class TestHookNotification:
    """Test cases for HookNotification model."""

    def test_defaults(self) -> None:
        notification = HookNotification(message="shipped")

        assert notification.hook_name == "webhook"
        assert notification.data == {}
        assert notification.metadata == {}

    def test_message_required(self) -> None:
        with pytest.raises(ValidationError):
            HookNotification(hook_name="cron")

    def test_validate_from_json(self) -> None:
        notification = HookNotification.model_validate(
            {"hook_name": "cron", "message": "done", "data": {"rows": 3}}
        )
        assert notification.data["rows"] == 3


class TestStatusReportData:
    """Test cases for StatusReportData model."""

    def test_healthy(self) -> None:
        now = datetime.now(tz=timezone.utc)
        report = StatusReportData(period_start=now - timedelta(hours=1), period_end=now)

        assert report.is_healthy
        assert report.alerts_sent == 0

    def test_outages(self) -> None:
        now = datetime.now(tz=timezone.utc)
        report = StatusReportData(
            period_start=now - timedelta(hours=1),
            period_end=now,
            active_outages=[ActiveOutage(target_name="db", duration=timedelta(minutes=4))],
            resolved_outages=[
                ResolvedOutage(target_name="api", down_duration=timedelta(seconds=90))
            ],
        )

        assert not report.is_healthy
        data = report.model_dump(mode="json")
        assert data["active_outages"][0]["target_name"] == "db"
        assert data["active_outages"][0]["acknowledged"] is False
        assert data["resolved_outages"][0]["target_name"] == "api"

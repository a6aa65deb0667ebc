"""
Core data models for the monitoring engine.

Value objects passed between checks, the engine, notification channels and
the HTTP API.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class CheckResult(BaseModel):
    """Outcome of a single probe of a target."""

    success: bool = Field(..., description="Whether the target passed the check")
    status_code: int = Field(default=0, description="HTTP status code (0 when not applicable)")
    response_time: float = Field(default=0.0, ge=0.0, description="Probe latency in seconds")
    response_size: int = Field(default=0, ge=0, description="Bytes read from the response")
    error: str | None = Field(default=None, description="Failure description")
    timestamp: datetime = Field(default_factory=utcnow, description="When the probe finished")
    alert_count: int = Field(default=0, description="Alerts sent in the current incident")
    content_type: str | None = Field(default=None, description="Response content type")
    response_body: str | None = Field(default=None, description="Captured JSON body")

    @classmethod
    def failure(cls, error: str, **kwargs: Any) -> CheckResult:
        """Build a failed result for a transport error."""
        return cls(success=False, error=error, **kwargs)


class HookNotification(BaseModel):
    """A notification received on an inbound hook or the generic webhook."""

    hook_name: str = Field(default="webhook", description="Hook that produced this notification")
    message: str = Field(..., description="Notification text")
    data: dict[str, Any] = Field(default_factory=dict, description="Request payload")
    metadata: dict[str, str] = Field(default_factory=dict, description="Hook metadata")
    received_at: datetime = Field(default_factory=utcnow)


class ActiveOutage(BaseModel):
    """A target that is down at report time."""

    model_config = {"ser_json_timedelta": "float"}

    target_name: str
    duration: timedelta
    acknowledged: bool = False
    acknowledged_by: str | None = None


class ResolvedOutage(BaseModel):
    """An incident that ended inside the report period."""

    model_config = {"ser_json_timedelta": "float"}

    target_name: str
    down_duration: timedelta


class StatusReportData(BaseModel):
    """Aggregate health summary over a reporting period."""

    period_start: datetime
    period_end: datetime
    active_outages: list[ActiveOutage] = Field(default_factory=list)
    resolved_outages: list[ResolvedOutage] = Field(default_factory=list)
    alerts_sent: int = 0
    notifications_sent: int = 0

    @property
    def is_healthy(self) -> bool:
        return not self.active_outages

"""
In-memory health state for monitored targets and hook notifications.

A TargetState is the authoritative record of one target's incident. All
reads and writes go through its lock; ``snapshot`` returns a frozen copy
for decisions and reporting.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from quick_watch.config import TargetConfig
    from quick_watch.models import CheckResult, HookNotification

MAX_RESOLVED_INCIDENTS = 100


@dataclass(frozen=True)
class IncidentRecord:
    """A finished incident, kept for status reports."""

    down_since: datetime
    recovered_at: datetime

    @property
    def duration(self) -> timedelta:
        return self.recovered_at - self.down_since


@dataclass(frozen=True)
class StateSnapshot:
    """Immutable copy of a TargetState taken under its lock."""

    name: str
    url: str
    threshold: int
    is_down: bool
    down_since: datetime | None
    failure_count: int
    alert_count: int
    last_alert_time: datetime | None
    acknowledged_at: datetime | None
    acknowledged_by: str | None
    acknowledgement_note: str | None
    acknowledgement_contact: str | None
    current_ack_token: str | None
    recovery_time: datetime | None
    last_check: CheckResult | None
    message: str = ""

    @property
    def is_acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    def to_status(self) -> dict[str, Any]:
        """Render the fields exposed by the status API."""
        status: dict[str, Any] = {
            "name": self.name,
            "url": self.url,
            "is_down": self.is_down,
            "down_since": self.down_since.isoformat() if self.down_since else None,
            "last_check": self.last_check.model_dump(mode="json") if self.last_check else None,
        }
        if self.is_acknowledged:
            status["acknowledged_by"] = self.acknowledged_by
            status["acknowledged_at"] = self.acknowledged_at.isoformat()  # type: ignore[union-attr]
            if self.acknowledgement_contact:
                status["acknowledgement_contact"] = self.acknowledgement_contact
        if self.recovery_time:
            status["recovery_time"] = self.recovery_time.isoformat()
        return status


@dataclass(eq=False)
class TargetState:
    """
    Mutable health record for one target.

    Attributes:
        target: The configured target.
        key: Configuration key the target was loaded under.
        threshold: Seconds a target must be down before the first alert.
        is_down: Whether an incident is open.
        down_since: When the open incident started.
        failure_count: Consecutive failed checks in the open incident.
        alert_count: Alerts sent in the open incident.
        last_alert_time: When the most recent alert was sent.
        acknowledged_at: When the open incident was acknowledged.
        acknowledged_by: Who acknowledged it.
        acknowledgement_note: Free-form note left with the acknowledgement.
        acknowledgement_contact: How to reach the acknowledger (Slack, phone).
        current_ack_token: Token that acknowledges the open incident.
        size_history: Recent successful response sizes, oldest first.
        recovery_time: Scheduled auto-recovery for triggered targets.
        recovery_timer: Timer driving that auto-recovery.
        recovery_generation: Incremented on every reschedule.
        last_check: Most recent check result.
        message: Trigger message for webhook targets.
        resolved_incidents: Recently finished incidents.
    """

    target: TargetConfig
    key: str = ""
    threshold: int = 30
    is_down: bool = False
    down_since: datetime | None = None
    failure_count: int = 0
    alert_count: int = 0
    last_alert_time: datetime | None = None
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    acknowledgement_note: str | None = None
    acknowledgement_contact: str | None = None
    current_ack_token: str | None = None
    size_history: list[int] = field(default_factory=list)
    recovery_time: datetime | None = None
    recovery_timer: threading.Timer | None = field(default=None, repr=False)
    recovery_generation: int = 0
    last_check: CheckResult | None = None
    message: str = ""
    resolved_incidents: deque[IncidentRecord] = field(
        default_factory=lambda: deque(maxlen=MAX_RESOLVED_INCIDENTS)
    )
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @property
    def name(self) -> str:
        return self.target.display_name

    @property
    def url(self) -> str:
        return self.target.url

    def snapshot(self) -> StateSnapshot:
        with self.lock:
            return StateSnapshot(
                name=self.name,
                url=self.url,
                threshold=self.threshold,
                is_down=self.is_down,
                down_since=self.down_since,
                failure_count=self.failure_count,
                alert_count=self.alert_count,
                last_alert_time=self.last_alert_time,
                acknowledged_at=self.acknowledged_at,
                acknowledged_by=self.acknowledged_by,
                acknowledgement_note=self.acknowledgement_note,
                acknowledgement_contact=self.acknowledgement_contact,
                current_ack_token=self.current_ack_token,
                recovery_time=self.recovery_time,
                last_check=self.last_check,
                message=self.message,
            )

    def open_incident(self, now: datetime) -> None:
        """Start an incident, or count another failure in the open one."""
        with self.lock:
            if self.is_down:
                self.failure_count += 1
                return
            self.is_down = True
            self.down_since = now
            self.failure_count = 1
            self.alert_count = 0
            self.last_alert_time = None

    def record_alert(self, now: datetime) -> int:
        """Note that an alert went out; returns the new alert count."""
        with self.lock:
            self.alert_count += 1
            self.last_alert_time = now
            return self.alert_count

    def close_incident(self, now: datetime) -> tuple[IncidentRecord | None, str | None]:
        """
        Reset every incident field.

        Returns:
            The finished incident (None if the target was not down) and the
            acknowledgement token that must be revoked.
        """
        with self.lock:
            record = None
            if self.is_down and self.down_since is not None:
                record = IncidentRecord(down_since=self.down_since, recovered_at=now)
                self.resolved_incidents.append(record)

            token = self.current_ack_token
            self.is_down = False
            self.down_since = None
            self.failure_count = 0
            self.alert_count = 0
            self.last_alert_time = None
            self.acknowledged_at = None
            self.acknowledged_by = None
            self.acknowledgement_note = None
            self.acknowledgement_contact = None
            self.current_ack_token = None
            self.recovery_time = None
            self.message = ""
            return record, token


@dataclass(eq=False)
class HookState:
    """
    Acknowledgement record for one hook notification.

    Guarded by the acknowledgement registry's lock.
    """

    notification: HookNotification
    channels: list[str]
    ack_token: str = ""
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    acknowledgement_note: str | None = None
    acknowledgement_contact: str | None = None

    @property
    def hook_name(self) -> str:
        return self.notification.hook_name

    @property
    def triggered_at(self) -> datetime:
        return self.notification.received_at

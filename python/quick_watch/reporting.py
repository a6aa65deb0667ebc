"""
Status report aggregation.

``build_report`` summarizes the state of every target over a period
without mutating anything. StatusReporter generates and sends reports on
a fixed interval.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

import structlog

from quick_watch.models import ActiveOutage, ResolvedOutage, StatusReportData

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from datetime import datetime

    from quick_watch.alerting.dispatcher import CounterSnapshot
    from quick_watch.state import TargetState

logger = structlog.get_logger(__name__)


def build_report(
    period_start: datetime,
    period_end: datetime,
    states: Iterable[TargetState],
    counters: CounterSnapshot,
) -> StatusReportData:
    """
    Summarize target health over a period.

    Args:
        period_start: Start of the period (inclusive).
        period_end: End of the period (exclusive), also "now" for active outages.
        states: Target states to summarize.
        counters: Delivery counts accumulated during the period.

    Returns:
        The report. Targets are listed in name order.
    """
    active: list[ActiveOutage] = []
    resolved: list[ResolvedOutage] = []

    for state in states:
        with state.lock:
            snapshot = state.snapshot()
            incidents = list(state.resolved_incidents)

        if snapshot.is_down and snapshot.down_since is not None:
            active.append(
                ActiveOutage(
                    target_name=snapshot.name,
                    duration=period_end - snapshot.down_since,
                    acknowledged=snapshot.is_acknowledged,
                    acknowledged_by=snapshot.acknowledged_by,
                )
            )

        for incident in incidents:
            if period_start <= incident.recovered_at < period_end:
                resolved.append(
                    ResolvedOutage(target_name=snapshot.name, down_duration=incident.duration)
                )

    return StatusReportData(
        period_start=period_start,
        period_end=period_end,
        active_outages=sorted(active, key=lambda o: o.target_name),
        resolved_outages=sorted(resolved, key=lambda o: o.target_name),
        alerts_sent=counters.alerts_sent,
        notifications_sent=counters.notifications_sent,
    )


class StatusReporter:
    """Background thread producing a status report every interval."""

    def __init__(self, generate: Callable[[], Any], interval_seconds: float) -> None:
        """
        Initialize the reporter.

        Args:
            generate: Builds and sends one report.
            interval_seconds: Seconds between reports.
        """
        self._generate = generate
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._reports_sent = 0
        self._logger = logger.bind(component="status-reporter")

    @property
    def reports_sent(self) -> int:
        return self._reports_sent

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            raise RuntimeError("Status reporter is already running")

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="quick-watch-status-reporter", daemon=True
        )
        self._thread.start()
        self._logger.info("status_reporter_started", interval=self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._logger.info("status_reporter_stopped", reports_sent=self._reports_sent)

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self._generate()
            except Exception as e:
                self._logger.error("status_report_failed", error=str(e))
                continue
            self._reports_sent += 1

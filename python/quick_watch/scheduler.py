"""
Check scheduler.

Runs one daemon thread per polled target. Each loop waits the check
interval on a shared stop event, probes the target and hands the result to
the engine. Results that arrive after stop was requested are discarded.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from quick_watch.models import CheckResult
    from quick_watch.state import TargetState

logger = structlog.get_logger(__name__)


class SchedulerState(str, Enum):
    """State of the scheduler."""

    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class SchedulerStats:
    """Statistics for the scheduler."""

    checks_run: int = 0
    failed_checks: int = 0
    processing_errors: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now(tz=timezone.utc) - self.started_at).total_seconds()


class Scheduler:
    """
    Periodic check loops, one per target.

    Example:
        scheduler = Scheduler(states, engine.run_check, engine.process_result, 5)
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(
        self,
        states: Sequence[TargetState],
        check: Callable[[TargetState], CheckResult],
        process: Callable[[TargetState, CheckResult], Any],
        interval_seconds: float = 5.0,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            states: Targets to poll.
            check: Runs one probe for a target.
            process: Applies a probe result to the target's state.
            interval_seconds: Delay between checks of the same target.
        """
        self._states = list(states)
        self._check = check
        self._process = process
        self._interval = interval_seconds
        self._logger = logger.bind(component="scheduler")

        self._state = SchedulerState.STOPPED
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._stats = SchedulerStats()
        self._stats_lock = threading.Lock()

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def stats(self) -> SchedulerStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    def start(self) -> None:
        """
        Start one loop per target.

        Raises:
            RuntimeError: If the scheduler is already running.
        """
        if self._state == SchedulerState.RUNNING:
            raise RuntimeError("Scheduler is already running")

        self._stop_event.clear()
        self._stats = SchedulerStats()
        self._threads = [
            threading.Thread(
                target=self._run,
                args=(state,),
                name=f"quick-watch-check-{state.name}",
                daemon=True,
            )
            for state in self._states
        ]
        for thread in self._threads:
            thread.start()

        self._state = SchedulerState.RUNNING
        self._logger.info(
            "scheduler_started",
            targets=len(self._threads),
            interval=self._interval,
        )

    def stop(self, timeout: float = 10.0) -> None:
        """
        Stop every loop.

        Args:
            timeout: Maximum time to wait for each loop to exit.
        """
        if self._state != SchedulerState.RUNNING:
            return

        self._state = SchedulerState.STOPPING
        self._stop_event.set()

        for thread in self._threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                self._logger.warning("check_loop_stop_timeout", thread=thread.name)
        self._threads = []

        self._state = SchedulerState.STOPPED
        self._logger.info("scheduler_stopped")

    def _run(self, state: TargetState) -> None:
        log = self._logger.bind(target=state.name)
        log.debug("check_loop_started")

        while not self._stop_event.wait(self._interval):
            result = self._check(state)
            if self._stop_event.is_set():
                break

            with self._stats_lock:
                self._stats.checks_run += 1
                if not result.success:
                    self._stats.failed_checks += 1

            try:
                self._process(state, result)
            except Exception as e:
                log.error("check_processing_error", error=str(e), exc_info=True)
                with self._stats_lock:
                    self._stats.processing_errors += 1

        log.debug("check_loop_stopped")

    def get_status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "targets": len(self._states),
            "interval": self._interval,
            "stats": {
                "checks_run": self._stats.checks_run,
                "failed_checks": self._stats.failed_checks,
                "processing_errors": self._stats.processing_errors,
            },
        }

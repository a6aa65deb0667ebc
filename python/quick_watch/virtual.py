"""
Webhook-triggered virtual targets.

Targets using the ``webhook`` check strategy are never polled. They go
down when triggered through the API and come back up when their recovery
timer fires. Re-triggering a target that is already down restarts the
timer and sends a fresh alert.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

import structlog

from quick_watch.exceptions import InvalidTriggerError, TargetNotFoundError
from quick_watch.models import CheckResult

if TYPE_CHECKING:
    from collections.abc import Iterable

    from quick_watch.engine import MonitorEngine
    from quick_watch.state import TargetState

logger = structlog.get_logger(__name__)

DEFAULT_TRIGGER_MESSAGE = "Triggered via webhook"


@dataclass(frozen=True)
class TriggerOutcome:
    """
    Result of triggering a virtual target.

    Attributes:
        target_name: Display name of the target.
        message: Message the alert was sent with.
        triggered_at: When the trigger was processed.
        duration: Seconds until auto-recovery (0 means none).
        recovery_time: Scheduled recovery, if any.
        ack_url: Acknowledgement link sent with the alert.
        alerted: False when the incident was already acknowledged.
    """

    target_name: str
    message: str
    triggered_at: datetime
    duration: int = 0
    recovery_time: datetime | None = None
    ack_url: str | None = None
    alerted: bool = True

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": "triggered",
            "target": self.target_name,
            "message": self.message,
            "triggered_at": self.triggered_at.isoformat(),
            "alerted": self.alerted,
        }
        if self.duration:
            data["duration_seconds"] = self.duration
        if self.recovery_time:
            data["recovery_time"] = self.recovery_time.isoformat()
        if self.ack_url:
            data["acknowledgement_url"] = self.ack_url
        return data


class VirtualTargetController:
    """Triggers webhook targets and schedules their recovery."""

    def __init__(
        self,
        engine: MonitorEngine,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        self._engine = engine
        self._timer_factory = timer_factory
        self._logger = logger.bind(component="virtual-targets")

    def trigger(self, key: str, message: str = "", duration: int = 0) -> TriggerOutcome:
        """
        Mark a webhook target down and alert.

        Args:
            key: Target key, name or URL.
            message: Alert text (defaults to a generic trigger message).
            duration: Seconds until auto-recovery; 0 uses the target's
                configured duration. With neither set the target stays down.

        Returns:
            What was done.

        Raises:
            TargetNotFoundError: If no target matches ``key``.
            InvalidTriggerError: If the target is actively polled.
        """
        engine = self._engine
        state = engine.find_state(key)
        if state is None:
            raise TargetNotFoundError.for_name(key)

        strategy = engine.strategy_for(state)
        if strategy.polled:
            raise InvalidTriggerError.not_virtual(state.name, strategy.name)

        now = engine.now()
        message = message or DEFAULT_TRIGGER_MESSAGE
        duration = max(duration, 0) or state.target.duration

        with state.lock:
            state.open_incident(now)
            state.message = message
            result = CheckResult.failure(message, timestamp=now)

            alerted = state.acknowledged_at is None
            ack_url = None
            if alerted:
                count = state.record_alert(now)
                result = result.model_copy(update={"alert_count": count})
                ack_url = engine.issue_incident_token(state)

            state.last_check = result
            recovery_time = self._schedule_recovery(state, duration, now)

        self._logger.info(
            "target_triggered",
            target=state.name,
            message=message,
            duration=duration,
            alerted=alerted,
        )
        if alerted:
            engine.dispatcher.dispatch_alert(
                engine.channels_for(state), state.target, result, ack_url
            )

        return TriggerOutcome(
            target_name=state.name,
            message=message,
            triggered_at=now,
            duration=duration,
            recovery_time=recovery_time,
            ack_url=ack_url,
            alerted=alerted,
        )

    def _schedule_recovery(
        self, state: TargetState, duration: int, now: datetime
    ) -> datetime | None:
        # Caller holds state.lock
        if state.recovery_timer is not None:
            state.recovery_timer.cancel()
            state.recovery_timer = None
        state.recovery_generation += 1

        if duration <= 0:
            state.recovery_time = None
            return None

        generation = state.recovery_generation
        timer = self._timer_factory(duration, self._expire, args=(state, generation))
        timer.daemon = True
        state.recovery_timer = timer
        state.recovery_time = now + timedelta(seconds=duration)
        timer.start()
        return state.recovery_time

    def _expire(self, state: TargetState, generation: int) -> None:
        try:
            self._engine.recover(state, generation=generation)
        except Exception as e:
            self._logger.error("auto_recovery_failed", target=state.name, error=str(e))

    def cancel_all(self, states: Iterable[TargetState]) -> None:
        """Cancel every pending recovery timer."""
        for state in states:
            with state.lock:
                if state.recovery_timer is not None:
                    state.recovery_timer.cancel()
                    state.recovery_timer = None
                    state.recovery_generation += 1

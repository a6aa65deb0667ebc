"""
Target monitoring and alerting engine.

The engine is built from one configuration snapshot. It owns the target
states, the check strategies, the alert dispatcher, the acknowledgement
registry and the background loops, and implements the incident state
machine:

- first failure opens an incident; the first alert waits for the threshold
- further failures re-alert with exponential backoff until acknowledged
- a successful check closes the incident and sends an all-clear

Decisions and state mutations happen under the target's lock; channel I/O
happens after the lock is released. A configuration reload builds a new
engine.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

import structlog

from quick_watch import __version__
from quick_watch.acks import AcknowledgementOutcome, AcknowledgementRegistry
from quick_watch.alerting.dispatcher import AlertDispatcher
from quick_watch.checks import CheckStrategy, CheckStrategyFactory
from quick_watch.config import DEFAULT_CHANNEL
from quick_watch.evaluation import detect_size_drift, size_change
from quick_watch.exceptions import ConfigurationError, ReportUnavailableError
from quick_watch.models import CheckResult, HookNotification
from quick_watch.policy import should_alert
from quick_watch.reporting import StatusReporter, build_report
from quick_watch.scheduler import Scheduler
from quick_watch.state import HookState, TargetState
from quick_watch.virtual import TriggerOutcome, VirtualTargetController

if TYPE_CHECKING:
    from quick_watch.alerting.base import BaseNotifier
    from quick_watch.config import Config, HookConfig
    from quick_watch.models import StatusReportData

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class Transition(str, Enum):
    """How a check result moved a target through the state machine."""

    STILL_UP = "still_up"
    WENT_DOWN = "went_down"
    STILL_DOWN = "still_down"
    RECOVERED = "recovered"


@dataclass(frozen=True)
class CheckOutcome:
    """What processing a check result did."""

    transition: Transition
    alerted: bool = False
    size_drift: bool = False


@dataclass(frozen=True)
class HookOutcome:
    """Result of an inbound hook notification."""

    notification: HookNotification
    ack_url: str | None
    delivered: int

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": "received",
            "hook": self.notification.hook_name,
            "message": self.notification.message,
            "delivered": self.delivered,
        }
        if self.ack_url:
            data["acknowledgement_url"] = self.ack_url
        return data


class MonitorEngine:
    """
    Runs checks for every configured target and drives alerting.

    Example:
        engine = MonitorEngine(Config.load("watch-state.yml"))
        engine.start()
        ...
        engine.stop()
    """

    def __init__(
        self,
        config: Config,
        dispatcher: AlertDispatcher | None = None,
        clock: Callable[[], datetime] | None = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        """
        Build the engine from a configuration snapshot.

        Targets naming an unknown check strategy and channels that cannot
        be built are skipped with a warning.

        Args:
            config: Configuration snapshot.
            dispatcher: Channel dispatcher (built from ``config.alerts`` if None).
            clock: Source of the current time.
            timer_factory: Factory for virtual target recovery timers.
        """
        self._config = config
        self._settings = config.settings
        self._clock = clock or _utcnow
        self._logger = logger.bind(component="engine")

        self._dispatcher = dispatcher or AlertDispatcher.from_config(config.alerts)
        self._acks = AcknowledgementRegistry(clock=self._clock)

        self._states: dict[str, TargetState] = {}
        self._strategies: dict[str, CheckStrategy] = {}
        self._channels: dict[str, list[BaseNotifier]] = {}

        for key, target in config.targets.items():
            try:
                strategy = CheckStrategyFactory.create(
                    target.check_strategy,
                    target_name=target.display_name,
                    timeout_seconds=self._settings.check_timeout,
                )
            except ConfigurationError as e:
                self._logger.warning(
                    "target_skipped",
                    target=target.display_name,
                    error=e.message,
                    context=e.context,
                )
                continue

            state = TargetState(
                target=target,
                key=key,
                threshold=target.effective_threshold(self._settings.default_threshold),
            )
            self._states[key] = state
            self._strategies[key] = strategy
            self._channels[key] = self._dispatcher.resolve(
                target.channel_names, owner=target.display_name
            )

        self._hooks: dict[str, HookConfig] = dict(config.hooks)
        self._virtual = VirtualTargetController(self, timer_factory=timer_factory)
        self._scheduler = Scheduler(
            [s for k, s in self._states.items() if self._strategies[k].polled],
            check=self.run_check,
            process=self.process_result,
            interval_seconds=self._settings.check_interval,
        )

        report_settings = self._settings.status_report
        self._report_lock = threading.Lock()
        self._last_report_at = self._clock()
        self._reporter = StatusReporter(
            self.generate_status_report, interval_seconds=report_settings.interval * 60
        )
        self._started = False

    # Accessors

    @property
    def config(self) -> Config:
        return self._config

    @property
    def dispatcher(self) -> AlertDispatcher:
        return self._dispatcher

    @property
    def acknowledgements(self) -> AcknowledgementRegistry:
        return self._acks

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def states(self) -> list[TargetState]:
        return list(self._states.values())

    @property
    def acknowledgements_enabled(self) -> bool:
        return self._settings.acknowledgements_enabled

    @property
    def is_running(self) -> bool:
        return self._started

    def now(self) -> datetime:
        return self._clock()

    def find_state(self, key: str) -> TargetState | None:
        """Find a target by configuration key, name or URL."""
        if key in self._states:
            return self._states[key]
        for state in self._states.values():
            if key in (state.name, state.url, state.target.name):
                return state
        return None

    def strategy_for(self, state: TargetState) -> CheckStrategy:
        return self._strategies[state.key]

    def channels_for(self, state: TargetState) -> list[BaseNotifier]:
        return self._channels.get(state.key, [])

    def get_hook(self, name: str) -> HookConfig | None:
        return self._hooks.get(name)

    def ack_url(self, token: str) -> str:
        return f"{self._settings.public_address}/api/acknowledge/{token}"

    # Lifecycle

    def start(self) -> None:
        """Announce startup and start the check loops and the reporter."""
        if self._started:
            return

        self.send_startup_message()
        self._scheduler.start()

        report_settings = self._settings.status_report
        if report_settings.enabled and self._report_channels():
            self._reporter.start()

        self._started = True
        self._logger.info(
            "engine_started",
            targets=len(self._states),
            hooks=len(self._hooks),
            channels=sorted(self._dispatcher.notifiers),
            acknowledgements=self.acknowledgements_enabled,
        )

    def stop(self) -> None:
        """Stop the loops, the reporter and pending recovery timers."""
        self._scheduler.stop()
        if self._reporter.is_running:
            self._reporter.stop()
        self._virtual.cancel_all(self._states.values())
        self._started = False
        self._logger.info("engine_stopped")

    # Checks and the incident state machine

    def run_check(self, state: TargetState) -> CheckResult:
        """Probe a target once, folding unexpected errors into a failed result."""
        strategy = self.strategy_for(state)
        try:
            return strategy.check(state.target)
        except Exception as e:
            self._logger.warning("check_raised", target=state.name, error=str(e))
            return CheckResult.failure(f"Check failed: {e}")

    def process_result(
        self, state: TargetState, result: CheckResult, now: datetime | None = None
    ) -> CheckOutcome:
        """
        Apply a check result to a target.

        Args:
            state: Target the result belongs to.
            result: Outcome of the probe.
            now: Time of evaluation (defaults to the engine clock).

        Returns:
            The transition taken and what was dispatched.
        """
        now = now or self._clock()
        target = state.target
        channels = self.channels_for(state)
        pending: list[Callable[[], Any]] = []
        alerted = False
        drifted = False

        with state.lock:
            was_down = state.is_down
            state.last_check = result

            if result.success:
                transition = Transition.STILL_UP
                if was_down:
                    transition = Transition.RECOVERED
                    record, token = state.close_incident(now)
                    self._acks.revoke(token)
                    down_duration = record.duration if record else None
                    pending.append(
                        lambda: self._dispatcher.dispatch_all_clear(
                            channels, target, result, down_duration
                        )
                    )

                size = target.size_alerts
                if result.response_size > 0 and detect_size_drift(
                    state.size_history,
                    result.response_size,
                    size.enabled,
                    size.history_size,
                    size.threshold,
                ):
                    drifted = True
                    average, change = size_change(state.size_history)
                    new_size = result.response_size
                    pending.append(
                        lambda: self._dispatcher.dispatch_size_change(
                            channels, target, new_size, average, change or 0.0
                        )
                    )
            else:
                transition = Transition.STILL_DOWN if was_down else Transition.WENT_DOWN
                state.open_incident(now)

                if should_alert(state.snapshot(), now):
                    alerted = True
                    count = state.record_alert(now)
                    alert_result = result.model_copy(update={"alert_count": count})
                    state.last_check = alert_result
                    ack_url = self.issue_incident_token(state)
                    pending.append(
                        lambda: self._dispatcher.dispatch_alert(
                            channels, target, alert_result, ack_url
                        )
                    )

        if transition in (Transition.WENT_DOWN, Transition.RECOVERED):
            self._logger.info(
                "target_" + transition.value,
                target=state.name,
                error=result.error,
                status_code=result.status_code,
            )

        for action in pending:
            action()

        return CheckOutcome(transition=transition, alerted=alerted, size_drift=drifted)

    def issue_incident_token(self, state: TargetState) -> str | None:
        """
        Get the acknowledgement link for a target's open incident.

        Must be called with the state's lock held. Returns None when
        acknowledgements are off or the incident is already acknowledged.

        The token is created on the first alert of an incident and reused
        by every later alert until recovery revokes it.
        """
        if not self.acknowledgements_enabled or state.acknowledged_at is not None:
            return None

        if state.current_ack_token:
            return self.ack_url(state.current_ack_token)

        state.current_ack_token = self._acks.issue_token(state)
        return self.ack_url(state.current_ack_token)

    def recover(
        self,
        state: TargetState,
        now: datetime | None = None,
        generation: int | None = None,
    ) -> bool:
        """
        Close a target's incident and send the all-clear.

        Args:
            state: Target to recover.
            now: Recovery time (defaults to the engine clock).
            generation: Recovery timer generation; a stale one is ignored.

        Returns:
            True if an incident was closed.
        """
        now = now or self._clock()
        with state.lock:
            if generation is not None and generation != state.recovery_generation:
                return False
            if not state.is_down:
                return False

            if state.recovery_timer is not None:
                state.recovery_timer.cancel()
                state.recovery_timer = None

            result = CheckResult(success=True, status_code=200, timestamp=now)
            state.last_check = result
            record, token = state.close_incident(now)
            self._acks.revoke(token)

        self._logger.info("target_recovered", target=state.name, automatic=generation is not None)
        self._dispatcher.dispatch_all_clear(
            self.channels_for(state),
            state.target,
            result,
            record.duration if record else None,
        )
        return True

    # Acknowledgements, triggers and hooks

    def acknowledge(
        self,
        token: str,
        acknowledged_by: str | None = None,
        note: str = "",
        contact: str = "",
    ) -> AcknowledgementOutcome:
        """
        Acknowledge an incident or hook notification.

        The acknowledgement notice is sent once, on the first successful
        acknowledgement.

        Raises:
            InvalidTokenError: If the token was never issued.
            NoActiveIncidentError: If the incident is already over.
        """
        outcome = self._acks.acknowledge(token, acknowledged_by, note, contact)
        if outcome.already_acknowledged:
            return outcome

        subject = outcome.subject
        if isinstance(subject, HookState):
            self._dispatcher.dispatch_notification_acknowledgement(
                self._dispatcher.resolve(subject.channels, owner=subject.hook_name),
                subject.notification,
                outcome.acknowledged_by,
                outcome.note,
                outcome.contact,
            )
        else:
            self._dispatcher.dispatch_acknowledgement(
                self.channels_for(subject),
                subject.target,
                outcome.acknowledged_by,
                outcome.note,
                outcome.contact,
            )
        return outcome

    def trigger(self, key: str, message: str = "", duration: int = 0) -> TriggerOutcome:
        """
        Mark a webhook target down and alert immediately.

        Raises:
            TargetNotFoundError: If no target matches ``key``.
            InvalidTriggerError: If the target is actively polled.
        """
        return self._virtual.trigger(key, message=message, duration=duration)

    def handle_hook(
        self, hook_name: str, message: str, data: dict[str, Any] | None = None
    ) -> HookOutcome:
        """
        Fan a hook notification out to the hook's channels.

        Raises:
            KeyError: If no hook has that name.
        """
        hook = self._hooks[hook_name]
        notification = HookNotification(
            hook_name=hook_name,
            message=message,
            data=data or {},
            metadata=dict(hook.metadata),
            received_at=self._clock(),
        )
        channel_names = hook.alerts or [DEFAULT_CHANNEL]

        ack_url = None
        if self.acknowledgements_enabled:
            hook_state = HookState(notification=notification, channels=list(channel_names))
            ack_url = self.ack_url(self._acks.issue_token(hook_state))

        delivered = self._dispatcher.dispatch_notification(
            self._dispatcher.resolve(channel_names, owner=hook_name), notification, ack_url
        )
        return HookOutcome(notification=notification, ack_url=ack_url, delivered=delivered)

    def handle_webhook_notification(self, notification: HookNotification) -> int:
        """Forward a generic webhook notification to the console channel."""
        return self._dispatcher.dispatch_notification(
            self._dispatcher.resolve([DEFAULT_CHANNEL], owner=notification.hook_name),
            notification,
        )

    # Status and reports

    def status(self) -> list[dict[str, Any]]:
        """Per-target status for the API, ordered by name."""
        snapshots = [state.snapshot() for state in self._states.values()]
        return [s.to_status() for s in sorted(snapshots, key=lambda s: s.name)]

    def _report_channels(self) -> list[BaseNotifier]:
        return self._dispatcher.resolve(self._settings.status_report.alerts, owner="status_report")

    def generate_status_report(self, now: datetime | None = None) -> StatusReportData:
        """
        Build a report for the period since the previous one and send it.

        Raises:
            ReportUnavailableError: If reports are disabled or have no channel.
        """
        if not self._settings.status_report.enabled:
            raise ReportUnavailableError.disabled()
        channels = self._report_channels()
        if not channels:
            raise ReportUnavailableError.no_channels()

        now = now or self._clock()
        with self._report_lock:
            period_start = self._last_report_at
            self._last_report_at = now
            counters = self._dispatcher.counters.snapshot_and_reset()

        report = build_report(period_start, now, self._states.values(), counters)
        self._dispatcher.dispatch_status_report(channels, report)
        return report

    # Startup

    def send_startup_message(self) -> None:
        """Announce startup and optionally report every target's current status."""
        startup = self._settings.startup
        if not startup.enabled:
            return

        channels = self._dispatcher.resolve(startup.alerts or [DEFAULT_CHANNEL], owner="startup")
        self._dispatcher.dispatch_startup(channels, __version__, len(self._states))

        if not startup.check_all_targets:
            return

        for key, state in self._states.items():
            if not self._strategies[key].polled:
                continue
            result = self.run_check(state)
            if result.success:
                self._dispatcher.dispatch_all_clear(channels, state.target, result)
            else:
                self._dispatcher.dispatch_alert(channels, state.target, result)

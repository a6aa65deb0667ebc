"""
Tests for the monitoring engine.

Covers the incident state machine: threshold suppression, backoff between
repeated alerts, acknowledgement, recovery, size drift, status reports,
hooks and startup.
"""

from __future__ import annotations

import threading
from unittest.mock import patch

import pytest
from conftest import FakeTimer, ManualClock, RecordingNotifier, make_config

from quick_watch.alerting.dispatcher import AlertDispatcher
from quick_watch.engine import MonitorEngine, Transition
from quick_watch.exceptions import (
    InvalidTokenError,
    NoActiveIncidentError,
    ReportUnavailableError,
)
from quick_watch.models import CheckResult

# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def engine(dispatcher: AlertDispatcher, clock: ManualClock) -> MonitorEngine:
    """Create an engine with a recording channel and a manual clock."""
    return MonitorEngine(make_config(), dispatcher=dispatcher, clock=clock, timer_factory=FakeTimer)


def failed(error: str = "connection refused") -> CheckResult:
    return CheckResult(success=False, error=error)


def ok(size: int = 0) -> CheckResult:
    return CheckResult(success=True, status_code=200, response_size=size)


# =============================================================================
# Construction
# =============================================================================


class TestEngineConstruction:
    """Tests for building an engine from configuration."""

    def test_states_created_per_target(self, engine: MonitorEngine) -> None:
        """Every configured target gets a state."""
        assert sorted(s.name for s in engine.states) == ["api", "deploy"]

    def test_threshold_from_target(self, engine: MonitorEngine) -> None:
        """Per-target threshold overrides the default."""
        assert engine.find_state("api").threshold == 10

    def test_default_threshold_applied(self, dispatcher: AlertDispatcher) -> None:
        """Targets without a threshold use settings.default_threshold."""
        config = make_config(
            targets={"https://a.example.com": {"name": "a"}},
            settings={"default_threshold": 45},
        )
        engine = MonitorEngine(config, dispatcher=dispatcher)
        assert engine.find_state("a").threshold == 45

    def test_unknown_check_strategy_skipped(self, dispatcher: AlertDispatcher) -> None:
        """A target naming an unknown strategy is left out."""
        config = make_config(
            targets={
                "https://a.example.com": {"name": "a"},
                "https://b.example.com": {"name": "b", "check_strategy": "carrier-pigeon"},
            }
        )
        engine = MonitorEngine(config, dispatcher=dispatcher)
        assert [s.name for s in engine.states] == ["a"]

    def test_only_polled_targets_scheduled(self, engine: MonitorEngine) -> None:
        """Webhook targets are never handed to the scheduler."""
        assert engine.scheduler.get_status()["targets"] == 1

    def test_find_state_by_key_name_or_url(self, engine: MonitorEngine) -> None:
        """Targets resolve by config key, display name or URL."""
        by_key = engine.find_state("https://api.example.com/health")
        assert by_key is engine.find_state("api")
        assert engine.find_state("missing") is None

    def test_ack_url(self, engine: MonitorEngine) -> None:
        """Acknowledgement links use the public server address."""
        assert engine.ack_url("abc") == "http://watch.example.com/api/acknowledge/abc"


# =============================================================================
# Alerting state machine
# =============================================================================


class TestThresholdAndBackoff:
    """Tests for first-alert threshold and re-alert backoff."""

    def test_failure_below_threshold_does_not_alert(
        self, engine: MonitorEngine, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """The first failure opens an incident without alerting."""
        state = engine.find_state("api")
        outcome = engine.process_result(state, failed())

        assert outcome.transition == Transition.WENT_DOWN
        assert outcome.alerted is False
        assert state.is_down
        assert state.down_since == clock.now
        assert state.failure_count == 1
        assert recorder.messages == []

    def test_alert_once_threshold_elapsed(
        self, engine: MonitorEngine, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """The first alert goes out once the target has been down for the threshold."""
        state = engine.find_state("api")
        engine.process_result(state, failed())
        clock.advance(9)
        assert engine.process_result(state, failed()).alerted is False

        clock.advance(1)
        outcome = engine.process_result(state, failed())

        assert outcome.transition == Transition.STILL_DOWN
        assert outcome.alerted is True
        assert recorder.kinds() == ["alert"]
        assert state.alert_count == 1
        assert state.failure_count == 3
        assert state.last_alert_time == clock.now

    def test_alert_carries_ack_link(
        self, engine: MonitorEngine, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """Alerts to acknowledgement-aware channels include the link."""
        state = engine.find_state("api")
        engine.process_result(state, failed())
        clock.advance(10)
        engine.process_result(state, failed())

        ack_url = recorder.messages[0].ack_url
        assert ack_url == f"http://watch.example.com/api/acknowledge/{state.current_ack_token}"
        assert state.current_ack_token in engine.acknowledgements

    def test_zero_threshold_alerts_immediately(
        self, dispatcher: AlertDispatcher, recorder: RecordingNotifier
    ) -> None:
        """A zero threshold alerts on the first failure."""
        config = make_config(
            targets={"https://a.example.com": {"name": "a", "threshold": 0, "alerts": ["recorder"]}}
        )
        engine = MonitorEngine(config, dispatcher=dispatcher)
        assert engine.process_result(engine.find_state("a"), failed()).alerted
        assert recorder.kinds() == ["alert"]

    def test_backoff_between_repeated_alerts(
        self, engine: MonitorEngine, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """Repeats wait 5s, then 10s, then 20s."""
        state = engine.find_state("api")
        engine.process_result(state, failed())
        clock.advance(10)
        engine.process_result(state, failed())

        schedule = [(4, False), (1, True), (9, False), (1, True), (19, False), (1, True)]
        for seconds, expected in schedule:
            clock.advance(seconds)
            assert engine.process_result(state, failed()).alerted is expected

        assert recorder.kinds() == ["alert"] * 4
        assert state.alert_count == 4

    def test_alert_number_reported(
        self, engine: MonitorEngine, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """Repeated alerts carry their sequence number."""
        state = engine.find_state("api")
        engine.process_result(state, failed())
        clock.advance(10)
        engine.process_result(state, failed())
        clock.advance(5)
        engine.process_result(state, failed())

        assert recorder.messages[1].metadata["alert_count"] == 2
        assert "(alert #2)" in recorder.messages[1].message

    def test_ack_token_reused_across_repeats(
        self, engine: MonitorEngine, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """Repeated alerts in one incident share a token."""
        state = engine.find_state("api")
        engine.process_result(state, failed())
        clock.advance(10)
        engine.process_result(state, failed())
        clock.advance(5)
        engine.process_result(state, failed())

        assert recorder.messages[0].ack_url == recorder.messages[1].ack_url
        assert len(engine.acknowledgements) == 1

    def test_no_ack_link_when_disabled(
        self, dispatcher: AlertDispatcher, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """With acknowledgements off, alerts have no link and no token exists."""
        config = make_config(settings={"acknowledgements_enabled": False})
        engine = MonitorEngine(config, dispatcher=dispatcher, clock=clock)
        state = engine.find_state("api")
        engine.process_result(state, failed())
        clock.advance(10)
        engine.process_result(state, failed())

        assert recorder.messages[0].ack_url is None
        assert state.current_ack_token is None
        assert len(engine.acknowledgements) == 0


class TestRecovery:
    """Tests for closing incidents."""

    def _alerted(self, engine: MonitorEngine, clock: ManualClock):
        state = engine.find_state("api")
        engine.process_result(state, failed())
        clock.advance(10)
        engine.process_result(state, failed())
        return state

    def test_success_while_up_is_quiet(
        self, engine: MonitorEngine, recorder: RecordingNotifier
    ) -> None:
        """Success on a healthy target changes nothing."""
        outcome = engine.process_result(engine.find_state("api"), ok())
        assert outcome.transition == Transition.STILL_UP
        assert recorder.messages == []

    def test_recovery_sends_all_clear(
        self, engine: MonitorEngine, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """Recovery sends an all-clear with the outage length."""
        state = self._alerted(engine, clock)
        clock.advance(20)
        outcome = engine.process_result(state, ok())

        assert outcome.transition == Transition.RECOVERED
        assert recorder.kinds() == ["alert", "all_clear"]
        assert recorder.messages[1].metadata["down_seconds"] == 30.0

    def test_recovery_resets_incident(
        self, engine: MonitorEngine, clock: ManualClock
    ) -> None:
        """All incident fields reset and the next failure starts fresh."""
        state = self._alerted(engine, clock)
        engine.acknowledge(state.current_ack_token, "alice")
        clock.advance(5)
        engine.process_result(state, ok())

        assert state.is_down is False
        assert state.down_since is None
        assert state.failure_count == 0
        assert state.alert_count == 0
        assert state.last_alert_time is None
        assert state.acknowledged_at is None
        assert state.acknowledged_by is None
        assert state.current_ack_token is None

        engine.process_result(state, failed())
        assert state.failure_count == 1
        assert state.down_since == clock.now

    def test_recovery_without_alert_still_notifies(
        self, engine: MonitorEngine, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """A short blip below threshold still ends with an all-clear."""
        state = engine.find_state("api")
        engine.process_result(state, failed())
        clock.advance(3)
        engine.process_result(state, ok())
        assert recorder.kinds() == ["all_clear"]

    def test_resolved_incident_recorded(
        self, engine: MonitorEngine, clock: ManualClock
    ) -> None:
        """Finished incidents are kept for reports."""
        state = self._alerted(engine, clock)
        engine.process_result(state, ok())
        assert len(state.resolved_incidents) == 1
        assert state.resolved_incidents[0].duration.total_seconds() == 10

    def test_stale_token_after_recovery(
        self, engine: MonitorEngine, clock: ManualClock
    ) -> None:
        """A token from a closed incident reports no active incident."""
        state = self._alerted(engine, clock)
        token = state.current_ack_token
        engine.process_result(state, ok())

        with pytest.raises(NoActiveIncidentError):
            engine.acknowledge(token, "bob")
        assert state.acknowledged_at is None


class TestAcknowledgement:
    """Tests for acknowledging incidents through the engine."""

    def _alerted(self, engine: MonitorEngine, clock: ManualClock):
        state = engine.find_state("api")
        engine.process_result(state, failed())
        clock.advance(10)
        engine.process_result(state, failed())
        return state

    def test_acknowledge_notifies_once(
        self, engine: MonitorEngine, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """Acknowledging twice sends a single acknowledgement notice."""
        state = self._alerted(engine, clock)
        token = state.current_ack_token

        first = engine.acknowledge(token, "alice", "looking")
        second = engine.acknowledge(token, "bob")

        assert first.already_acknowledged is False
        assert second.already_acknowledged is True
        assert second.acknowledged_by == "alice"
        assert recorder.kinds().count("acknowledgement") == 1
        assert "alice" in recorder.messages[-1].message

    def test_acknowledged_incident_stops_alerts(
        self, engine: MonitorEngine, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """No further alerts after acknowledgement, however long it stays down."""
        state = self._alerted(engine, clock)
        engine.acknowledge(state.current_ack_token)

        for _ in range(5):
            clock.advance(1000)
            assert engine.process_result(state, failed()).alerted is False

        assert recorder.kinds() == ["alert", "acknowledgement"]
        assert state.failure_count == 7

    def test_anonymous_acknowledger(self, engine: MonitorEngine, clock: ManualClock) -> None:
        """Missing acknowledger is recorded as Anonymous."""
        state = self._alerted(engine, clock)
        outcome = engine.acknowledge(state.current_ack_token)
        assert outcome.acknowledged_by == "Anonymous"
        assert state.acknowledged_by == "Anonymous"

    def test_unknown_token(self, engine: MonitorEngine) -> None:
        """A token that was never issued is rejected."""
        with pytest.raises(InvalidTokenError):
            engine.acknowledge("not-a-token")

    def test_acknowledged_state_in_status(
        self, engine: MonitorEngine, clock: ManualClock
    ) -> None:
        """Status shows who acknowledged."""
        state = self._alerted(engine, clock)
        engine.acknowledge(state.current_ack_token, "carol")
        api = next(s for s in engine.status() if s["name"] == "api")
        assert api["is_down"] is True
        assert api["acknowledged_by"] == "carol"

    def test_contact_in_notice_and_status(
        self, engine: MonitorEngine, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """The contact reaches the notice and the status, and recovery clears it."""
        state = self._alerted(engine, clock)
        engine.acknowledge(state.current_ack_token, "carol", "rolling back", contact="555-0100")

        notice = recorder.messages[-1]
        assert notice.metadata["contact"] == "555-0100"
        assert notice.message.endswith("Contact: 555-0100")
        api = next(s for s in engine.status() if s["name"] == "api")
        assert api["acknowledgement_contact"] == "555-0100"

        engine.process_result(state, ok())
        assert state.acknowledgement_contact is None
        api = next(s for s in engine.status() if s["name"] == "api")
        assert "acknowledgement_contact" not in api


class TestAcknowledgementConcurrency:
    """Acknowledgement is serialized against other acknowledgers and recovery."""

    ACKNOWLEDGERS = 8

    def _alerted(self, engine: MonitorEngine, clock: ManualClock):
        state = engine.find_state("api")
        engine.process_result(state, failed())
        clock.advance(10)
        engine.process_result(state, failed())
        assert state.current_ack_token is not None
        return state

    def _run_together(self, *targets) -> None:
        barrier = threading.Barrier(len(targets))

        def run(target) -> None:
            barrier.wait()
            target()

        threads = [threading.Thread(target=run, args=(t,)) for t in targets]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)
        assert not any(thread.is_alive() for thread in threads)

    def test_concurrent_acknowledgers(
        self, engine: MonitorEngine, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """Exactly one caller wins and one notice is sent."""
        state = self._alerted(engine, clock)
        token = state.current_ack_token
        outcomes = []

        def acknowledge(name: str):
            return lambda: outcomes.append(engine.acknowledge(token, name))

        self._run_together(*(acknowledge(f"user-{i}") for i in range(self.ACKNOWLEDGERS)))

        first = [o for o in outcomes if not o.already_acknowledged]
        assert len(outcomes) == self.ACKNOWLEDGERS
        assert len(first) == 1
        assert all(o.acknowledged_by == first[0].acknowledged_by for o in outcomes)
        assert state.acknowledged_by == first[0].acknowledged_by
        assert recorder.kinds().count("acknowledgement") == 1

    def test_acknowledge_racing_recovery(
        self, engine: MonitorEngine, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """Late acknowledgements are rejected and never land on a closed incident."""
        for _ in range(20):
            recorder.messages.clear()
            state = self._alerted(engine, clock)
            token = state.current_ack_token
            outcomes, rejected = [], []

            def acknowledge(name: str, token: str = token):
                def run() -> None:
                    try:
                        outcomes.append(engine.acknowledge(token, name))
                    except NoActiveIncidentError:
                        rejected.append(name)

                return run

            def recover(state=state) -> None:
                engine.process_result(state, ok())

            self._run_together(
                recover, *(acknowledge(f"user-{i}") for i in range(self.ACKNOWLEDGERS))
            )

            first = [o for o in outcomes if not o.already_acknowledged]
            assert len(outcomes) + len(rejected) == self.ACKNOWLEDGERS
            assert len(first) <= 1
            assert recorder.kinds().count("acknowledgement") == len(first)
            assert recorder.kinds().count("all_clear") == 1
            assert not state.is_down
            assert state.acknowledged_at is None
            assert state.current_ack_token is None
            clock.advance(60)


class TestSizeDrift:
    """Tests for response size change notifications."""

    @pytest.fixture
    def sized_engine(self, dispatcher: AlertDispatcher, clock: ManualClock) -> MonitorEngine:
        config = make_config(
            targets={
                "https://a.example.com": {
                    "name": "a",
                    "alerts": ["recorder"],
                    "size_alerts": {"enabled": True, "history_size": 10, "threshold": 0.5},
                }
            }
        )
        return MonitorEngine(config, dispatcher=dispatcher, clock=clock)

    def test_size_change_notified(
        self, sized_engine: MonitorEngine, recorder: RecordingNotifier
    ) -> None:
        """A response twice the recent mean is reported."""
        state = sized_engine.find_state("a")
        for _ in range(3):
            sized_engine.process_result(state, ok(100))
        outcome = sized_engine.process_result(state, ok(200))

        assert outcome.size_drift is True
        assert recorder.kinds() == ["size_change"]
        assert recorder.messages[0].metadata["new_size"] == 200
        assert recorder.messages[0].metadata["average"] == 100

    def test_small_change_ignored(
        self, sized_engine: MonitorEngine, recorder: RecordingNotifier
    ) -> None:
        """A 20% change under a 50% threshold is quiet."""
        state = sized_engine.find_state("a")
        for size in (100, 100, 120):
            sized_engine.process_result(state, ok(size))
        assert recorder.messages == []

    def test_disabled_by_default(self, engine: MonitorEngine, recorder: RecordingNotifier) -> None:
        """Size tracking is off unless enabled."""
        state = engine.find_state("api")
        for size in (100, 100, 1000):
            engine.process_result(state, ok(size))
        assert recorder.messages == []
        assert state.size_history == []


class TestRunCheck:
    """Tests for probing through the configured strategy."""

    def test_exception_folded_into_failure(self, engine: MonitorEngine) -> None:
        """A strategy that raises yields a failed result."""
        state = engine.find_state("api")
        with patch.object(engine.strategy_for(state), "check", side_effect=RuntimeError("boom")):
            result = engine.run_check(state)
        assert result.success is False
        assert "boom" in result.error


# =============================================================================
# Reports, hooks and startup
# =============================================================================


class TestStatusReports:
    """Tests for on-demand status reports."""

    def test_disabled_reports_unavailable(self, engine: MonitorEngine) -> None:
        """Reports require status_report.enabled."""
        with pytest.raises(ReportUnavailableError):
            engine.generate_status_report()

    def test_no_channels_unavailable(self, dispatcher: AlertDispatcher) -> None:
        """Reports require at least one channel."""
        config = make_config(settings={"status_report": {"enabled": True, "alerts": []}})
        engine = MonitorEngine(config, dispatcher=dispatcher)
        with pytest.raises(ReportUnavailableError):
            engine.generate_status_report()

    def test_report_contents_and_counter_reset(
        self, dispatcher: AlertDispatcher, recorder: RecordingNotifier, clock: ManualClock
    ) -> None:
        """Reports list outages and reset delivery counters."""
        config = make_config(
            settings={
                "acknowledgements_enabled": True,
                "startup": {"enabled": False},
                "status_report": {"enabled": True, "alerts": ["recorder"]},
            }
        )
        engine = MonitorEngine(config, dispatcher=dispatcher, clock=clock)
        state = engine.find_state("api")
        engine.process_result(state, failed())
        clock.advance(10)
        engine.process_result(state, failed())
        clock.advance(50)

        report = engine.generate_status_report()

        assert report.alerts_sent == 1
        assert report.notifications_sent == 1
        assert [o.target_name for o in report.active_outages] == ["api"]
        assert report.active_outages[0].duration.total_seconds() == 60
        assert recorder.kinds()[-1] == "status_report"

        clock.advance(60)
        second = engine.generate_status_report()
        assert second.alerts_sent == 0
        assert second.notifications_sent == 0
        assert second.period_start == report.period_end


class TestHooks:
    """Tests for inbound hook notifications."""

    @pytest.fixture
    def hook_engine(self, dispatcher: AlertDispatcher, clock: ManualClock) -> MonitorEngine:
        config = make_config(
            hooks={"deploys": {"alerts": ["recorder"], "metadata": {"team": "platform"}}}
        )
        return MonitorEngine(config, dispatcher=dispatcher, clock=clock)

    def test_hook_notification_dispatched(
        self, hook_engine: MonitorEngine, recorder: RecordingNotifier
    ) -> None:
        """Hook notifications reach the hook's channels with a link."""
        outcome = hook_engine.handle_hook("deploys", "v2 shipped", {"sha": "abc"})

        assert outcome.delivered == 1
        assert outcome.ack_url.startswith("http://watch.example.com/api/acknowledge/")
        message = recorder.messages[0]
        assert message.kind.value == "notification"
        assert message.message == "v2 shipped"
        assert message.metadata["team"] == "platform"
        assert message.ack_url == outcome.ack_url

    def test_hook_acknowledgement_notifies_once(
        self, hook_engine: MonitorEngine, recorder: RecordingNotifier
    ) -> None:
        """Acknowledging a hook notification tells its channels once."""
        outcome = hook_engine.handle_hook("deploys", "v2 shipped")
        token = outcome.ack_url.rsplit("/", 1)[-1]

        hook_engine.acknowledge(token, "dave")
        again = hook_engine.acknowledge(token, "erin")

        assert again.already_acknowledged is True
        assert recorder.kinds() == ["notification", "acknowledgement"]

    def test_hook_acknowledgement_contact(
        self, hook_engine: MonitorEngine, recorder: RecordingNotifier
    ) -> None:
        outcome = hook_engine.handle_hook("deploys", "v2 shipped")
        hook_engine.acknowledge(outcome.ack_url.rsplit("/", 1)[-1], "dave", contact="#deploys")

        assert recorder.messages[-1].metadata["contact"] == "#deploys"
        assert "Contact: #deploys" in recorder.messages[-1].message

    def test_unknown_hook(self, hook_engine: MonitorEngine) -> None:
        """Unknown hook names raise KeyError."""
        with pytest.raises(KeyError):
            hook_engine.handle_hook("nope", "hello")

    def test_webhook_notification_goes_to_console(
        self, engine: MonitorEngine, dispatcher: AlertDispatcher, recorder: RecordingNotifier
    ) -> None:
        """The generic webhook forwards to the console channel only."""
        from quick_watch.models import HookNotification

        delivered = engine.handle_webhook_notification(HookNotification(message="hello"))

        assert delivered == 1
        assert dispatcher.get("console").messages[0].message == "hello"
        assert recorder.messages == []


class TestStartup:
    """Tests for the startup announcement."""

    def test_startup_announcement(self, clock: ManualClock) -> None:
        """Startup sends version and target count."""
        console = RecordingNotifier("console")
        dispatcher = AlertDispatcher({"console": console})
        config = make_config(settings={"startup": {"enabled": True}})
        engine = MonitorEngine(config, dispatcher=dispatcher, clock=clock)

        engine.send_startup_message()

        assert console.kinds() == ["startup"]
        assert console.messages[0].metadata["target_count"] == 2

    def test_startup_checks_polled_targets(self, clock: ManualClock) -> None:
        """check_all_targets reports each polled target without touching state."""
        console = RecordingNotifier("console")
        dispatcher = AlertDispatcher({"console": console})
        config = make_config(settings={"startup": {"enabled": True, "check_all_targets": True}})
        engine = MonitorEngine(config, dispatcher=dispatcher, clock=clock)

        with patch.object(engine, "run_check", return_value=failed()) as run_check:
            engine.send_startup_message()

        run_check.assert_called_once()
        assert console.kinds() == ["startup", "alert"]
        assert engine.find_state("api").is_down is False

    def test_startup_disabled(self, engine: MonitorEngine, dispatcher: AlertDispatcher) -> None:
        """Nothing is sent when startup is disabled."""
        engine.send_startup_message()
        assert dispatcher.get("console").messages == []

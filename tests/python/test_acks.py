"""Tests for the acknowledgement token registry."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from conftest import ManualClock

from quick_watch.acks import (
    ANONYMOUS,
    MAX_HOOK_TOKENS,
    MAX_RETIRED_TOKENS,
    AcknowledgementRegistry,
)
from quick_watch.config import TargetConfig
from quick_watch.exceptions import InvalidTokenError, NoActiveIncidentError
from quick_watch.models import HookNotification
from quick_watch.state import HookState, TargetState


@pytest.fixture
def registry(clock: ManualClock) -> AcknowledgementRegistry:
    """Create a registry on a manual clock."""
    return AcknowledgementRegistry(clock=clock)


@pytest.fixture
def down_state(clock: ManualClock) -> TargetState:
    """Create a target with an open incident."""
    state = TargetState(target=TargetConfig(name="db", url="db.internal:5432"))
    state.open_incident(clock.now)
    return state


def hook_state(name: str = "deploys") -> HookState:
    return HookState(
        notification=HookNotification(hook_name=name, message="shipped"), channels=["console"]
    )


def issue(registry: AcknowledgementRegistry, state: TargetState) -> str:
    token = registry.issue_token(state)
    state.current_ack_token = token
    return token


class TestIssueToken:
    """Tests for token issuance."""

    def test_tokens_are_unique(self, registry: AcknowledgementRegistry, down_state: TargetState) -> None:
        """Each call yields a distinct URL-safe token."""
        tokens = {registry.issue_token(down_state) for _ in range(50)}
        assert len(tokens) == 50
        assert all(len(t) >= 16 for t in tokens)

    def test_lookup(self, registry: AcknowledgementRegistry, down_state: TargetState) -> None:
        """Issued tokens resolve to their subject."""
        token = issue(registry, down_state)
        assert registry.lookup(token) is down_state
        assert token in registry
        assert len(registry) == 1

    def test_hook_token_recorded_on_state(self, registry: AcknowledgementRegistry) -> None:
        """Hook states remember their token."""
        hook = HookState(notification=HookNotification(message="hi"), channels=["console"])
        token = registry.issue_token(hook)
        assert hook.ack_token == token


class TestAcknowledge:
    """Tests for acknowledging through the registry."""

    def test_acknowledge_target(
        self, registry: AcknowledgementRegistry, down_state: TargetState, clock: ManualClock
    ) -> None:
        """First acknowledgement records who, when and the note."""
        token = issue(registry, down_state)
        outcome = registry.acknowledge(token, "alice", "restarting")

        assert outcome.already_acknowledged is False
        assert outcome.subject_name == "db"
        assert down_state.acknowledged_at == clock.now
        assert down_state.acknowledged_by == "alice"
        assert down_state.acknowledgement_note == "restarting"

    def test_acknowledge_is_idempotent(
        self, registry: AcknowledgementRegistry, down_state: TargetState, clock: ManualClock
    ) -> None:
        """A replay reports the original acknowledgement unchanged."""
        token = issue(registry, down_state)
        first = registry.acknowledge(token, "alice")
        clock.advance(60)
        second = registry.acknowledge(token, "bob", "me too")

        assert second.already_acknowledged is True
        assert second.acknowledged_by == "alice"
        assert second.acknowledged_at == first.acknowledged_at
        assert down_state.acknowledged_by == "alice"

    def test_default_acknowledger(self, registry: AcknowledgementRegistry, down_state: TargetState) -> None:
        """Missing names become Anonymous."""
        token = issue(registry, down_state)
        assert registry.acknowledge(token, "").acknowledged_by == ANONYMOUS

    def test_unknown_token(self, registry: AcknowledgementRegistry) -> None:
        """Never-issued tokens raise InvalidTokenError."""
        with pytest.raises(InvalidTokenError) as exc_info:
            registry.acknowledge("bogus")
        assert exc_info.value.context["token"] == "bogus"

    def test_revoked_token(self, registry: AcknowledgementRegistry, down_state: TargetState) -> None:
        """Revoked tokens report that the incident is over."""
        token = issue(registry, down_state)
        registry.revoke(token)

        with pytest.raises(NoActiveIncidentError):
            registry.acknowledge(token)
        assert token not in registry

    def test_recovered_target(
        self, registry: AcknowledgementRegistry, down_state: TargetState, clock: ManualClock
    ) -> None:
        """A token whose target is up again is rejected without mutation."""
        token = issue(registry, down_state)
        down_state.is_down = False

        with pytest.raises(NoActiveIncidentError):
            registry.acknowledge(token)
        assert down_state.acknowledged_at is None

    def test_superseded_token(self, registry: AcknowledgementRegistry, down_state: TargetState) -> None:
        """Only the state's current token acknowledges it."""
        old = issue(registry, down_state)
        issue(registry, down_state)

        with pytest.raises(NoActiveIncidentError):
            registry.acknowledge(old)

    def test_acknowledge_hook(self, registry: AcknowledgementRegistry) -> None:
        """Hook notifications are acknowledged once."""
        hook = HookState(
            notification=HookNotification(hook_name="deploys", message="shipped"),
            channels=["console"],
        )
        token = registry.issue_token(hook)

        first = registry.acknowledge(token, "ops")
        second = registry.acknowledge(token, "dev")

        assert first.subject_name == "deploys"
        assert first.already_acknowledged is False
        assert second.already_acknowledged is True
        assert hook.acknowledged_by == "ops"

    def test_contact_recorded(self, registry: AcknowledgementRegistry, down_state: TargetState) -> None:
        """The contact is stored and replays return the original one."""
        token = issue(registry, down_state)
        first = registry.acknowledge(token, "alice", contact="slack:#db-oncall")
        replay = registry.acknowledge(token, "bob", contact="555-0100")

        assert first.contact == "slack:#db-oncall"
        assert replay.contact == "slack:#db-oncall"
        assert down_state.acknowledgement_contact == "slack:#db-oncall"

    def test_empty_contact_not_stored(
        self, registry: AcknowledgementRegistry, down_state: TargetState
    ) -> None:
        token = issue(registry, down_state)
        registry.acknowledge(token, "alice")
        assert down_state.acknowledgement_contact is None

    def test_hook_contact_recorded(self, registry: AcknowledgementRegistry) -> None:
        hook = hook_state()
        registry.acknowledge(registry.issue_token(hook), "ops", contact="zoom.example.com/j/1")
        assert hook.acknowledgement_contact == "zoom.example.com/j/1"


class TestRevoke:
    """Tests for token revocation."""

    def test_revoke_none_is_noop(self, registry: AcknowledgementRegistry) -> None:
        """Revoking nothing does nothing."""
        registry.revoke(None)
        registry.revoke("")
        assert len(registry) == 0

    def test_retired_tokens_bounded(self, registry: AcknowledgementRegistry) -> None:
        """Old retired tokens are eventually forgotten."""
        state = TargetState(target=TargetConfig(url="https://x.example.com"))
        state.open_incident(datetime.now(tz=timezone.utc))
        first = registry.issue_token(state)
        registry.revoke(first)

        for _ in range(MAX_RETIRED_TOKENS):
            registry.revoke(registry.issue_token(state))

        with pytest.raises(InvalidTokenError):
            registry.acknowledge(first)


class TestHookTokenLimit:
    """Tests for the cap on live hook tokens."""

    def test_oldest_hook_tokens_retired(self, clock: ManualClock) -> None:
        """Past the cap the oldest hook token stops acknowledging."""
        registry = AcknowledgementRegistry(clock=clock, max_hook_tokens=3)
        tokens = [registry.issue_token(hook_state(f"hook-{i}")) for i in range(5)]

        assert len(registry) == 3
        with pytest.raises(NoActiveIncidentError) as exc_info:
            registry.acknowledge(tokens[0])
        assert exc_info.value.context == {"hook": "hook-0"}
        assert registry.acknowledge(tokens[-1], "ops").already_acknowledged is False

    def test_target_tokens_not_counted(self, clock: ManualClock, down_state: TargetState) -> None:
        """Target tokens live until recovery, whatever the hook traffic."""
        registry = AcknowledgementRegistry(clock=clock, max_hook_tokens=2)
        target_token = issue(registry, down_state)

        for _ in range(10):
            registry.issue_token(hook_state())

        assert target_token in registry
        assert len(registry) == 3
        assert registry.acknowledge(target_token, "alice").already_acknowledged is False

    def test_default_cap_holds(self, registry: AcknowledgementRegistry) -> None:
        for _ in range(MAX_HOOK_TOKENS + 50):
            registry.issue_token(hook_state())
        assert len(registry) == MAX_HOOK_TOKENS

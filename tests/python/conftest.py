"""Pytest configuration and shared fixtures for Python tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from quick_watch.alerting.base import AcknowledgementAware, AlertMessage, BaseNotifier, NotifierConfig
from quick_watch.alerting.dispatcher import AlertDispatcher
from quick_watch.config import Config


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


class RecordingNotifier(AcknowledgementAware):
    """Acknowledgement-aware channel that keeps every message it is given."""

    def __init__(self, name: str = "recorder", fail: bool = False) -> None:
        super().__init__(NotifierConfig(name=name))
        self.messages: list[AlertMessage] = []
        self.fail = fail

    def _send(self, message: AlertMessage) -> None:
        if self.fail:
            raise ConnectionError("channel unavailable")
        self.messages.append(message)

    def kinds(self) -> list[str]:
        return [m.kind.value for m in self.messages]


class PlainNotifier(BaseNotifier):
    """Channel without acknowledgement support."""

    def __init__(self, name: str = "plain") -> None:
        super().__init__(NotifierConfig(name=name))
        self.messages: list[AlertMessage] = []

    def _send(self, message: AlertMessage) -> None:
        self.messages.append(message)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeTimer:
    """Stand-in for threading.Timer that fires only when asked."""

    created: list[FakeTimer] = []

    def __init__(self, interval: float, function: Any, args: Any = None) -> None:
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.function(*self.args)


@pytest.fixture
def clock() -> ManualClock:
    """Create a manual clock."""
    return ManualClock()


@pytest.fixture
def recorder() -> RecordingNotifier:
    """Create a recording channel named 'recorder'."""
    return RecordingNotifier()


@pytest.fixture
def dispatcher(recorder: RecordingNotifier) -> AlertDispatcher:
    """Create a dispatcher whose console channel is silent and which has a recorder."""
    return AlertDispatcher({"console": RecordingNotifier("console"), "recorder": recorder})


@pytest.fixture
def fake_timers() -> list[FakeTimer]:
    """Reset and expose the FakeTimer registry."""
    FakeTimer.created = []
    return FakeTimer.created


def make_config(**overrides: Any) -> Config:
    """Build a config with one HTTP target and one webhook target."""
    data: dict[str, Any] = {
        "targets": {
            "https://api.example.com/health": {
                "name": "api",
                "threshold": 10,
                "alerts": ["recorder"],
            },
            "deploy-hook": {
                "name": "deploy",
                "check_strategy": "webhook",
                "duration": 30,
                "alerts": ["recorder"],
            },
        },
        "settings": {
            "acknowledgements_enabled": True,
            "server_address": "http://watch.example.com",
            "startup": {"enabled": False},
        },
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(data.get(key), dict):
            data[key] = {**data[key], **value}
        else:
            data[key] = value
    return Config(**data)

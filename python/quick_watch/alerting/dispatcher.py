"""
Alert dispatch for multi-channel notification delivery.

The dispatcher owns the configured channels, resolves channel names for
targets and hooks, fans messages out and counts what was delivered for
status reports. A failing channel never blocks the others.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from quick_watch.alerting.base import (
    AcknowledgementAware,
    BaseNotifier,
    DeliveryResult,
    NotifierFactory,
)
from quick_watch.alerting.console import ConsoleConfig, ConsoleNotifier
from quick_watch.config import DEFAULT_CHANNEL
from quick_watch.exceptions import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence
    from datetime import timedelta

    from quick_watch.config import AlertChannelConfig, TargetConfig
    from quick_watch.models import CheckResult, HookNotification, StatusReportData

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CounterSnapshot:
    """Delivery counts accumulated over a reporting period."""

    alerts_sent: int = 0
    notifications_sent: int = 0


class DeliveryCounters:
    """
    Thread-safe delivery counters.

    ``alerts_sent`` counts down-alert dispatches that reached at least one
    channel. ``notifications_sent`` counts every successful channel
    delivery other than status reports.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._alerts_sent = 0
        self._notifications_sent = 0

    def record(self, delivered: int, is_alert: bool = False) -> None:
        if delivered <= 0:
            return
        with self._lock:
            self._notifications_sent += delivered
            if is_alert:
                self._alerts_sent += 1

    def snapshot(self) -> CounterSnapshot:
        with self._lock:
            return CounterSnapshot(self._alerts_sent, self._notifications_sent)

    def snapshot_and_reset(self) -> CounterSnapshot:
        """Return the current counts and start a new period."""
        with self._lock:
            snapshot = CounterSnapshot(self._alerts_sent, self._notifications_sent)
            self._alerts_sent = 0
            self._notifications_sent = 0
            return snapshot


class AlertDispatcher:
    """
    Routes engine events to notification channels.

    Example:
        dispatcher = AlertDispatcher.from_config(config.alerts)
        channels = dispatcher.resolve(target.channel_names, owner=target.name)
        dispatcher.dispatch_alert(channels, target, result, ack_url)
    """

    def __init__(self, notifiers: Mapping[str, BaseNotifier] | None = None) -> None:
        self._notifiers: dict[str, BaseNotifier] = dict(notifiers or {})
        if DEFAULT_CHANNEL not in self._notifiers:
            self._notifiers[DEFAULT_CHANNEL] = ConsoleNotifier(ConsoleConfig(name=DEFAULT_CHANNEL))
        self._counters = DeliveryCounters()
        self._logger = logger.bind(component="dispatcher")

    @classmethod
    def from_config(cls, channels: Mapping[str, AlertChannelConfig]) -> AlertDispatcher:
        """
        Build channels from configuration.

        Channels with unknown types or invalid settings are skipped with a
        warning.
        """
        notifiers: dict[str, BaseNotifier] = {}
        for name, channel in channels.items():
            try:
                notifiers[name] = NotifierFactory.from_channel(channel)
            except ConfigurationError as e:
                logger.warning(
                    "alert_channel_skipped",
                    channel=name,
                    type=channel.type,
                    error=e.message,
                    context=e.context,
                )
        return cls(notifiers)

    @property
    def counters(self) -> DeliveryCounters:
        return self._counters

    @property
    def notifiers(self) -> dict[str, BaseNotifier]:
        return dict(self._notifiers)

    def get(self, name: str) -> BaseNotifier | None:
        return self._notifiers.get(name)

    def resolve(self, names: Iterable[str], owner: str = "") -> list[BaseNotifier]:
        """
        Resolve channel names to enabled notifiers.

        Unknown names are logged and skipped.
        """
        resolved: list[BaseNotifier] = []
        for name in names:
            notifier = self._notifiers.get(name)
            if notifier is None:
                self._logger.warning(
                    "alert_channel_unknown",
                    channel=name,
                    owner=owner,
                    error=ConfigurationError.unknown_channel(name).message,
                )
                continue
            if notifier.is_enabled:
                resolved.append(notifier)
        return resolved

    def _fan_out(
        self,
        notifiers: Sequence[BaseNotifier],
        deliver: Callable[[BaseNotifier], DeliveryResult],
        event: str,
        subject: str,
    ) -> int:
        delivered = 0
        for notifier in notifiers:
            try:
                result = deliver(notifier)
            except Exception as e:
                # Keep delivering to the remaining channels
                self._logger.error(
                    "notifier_error",
                    notifier=notifier.name,
                    dispatch=event,
                    subject=subject,
                    error=str(e),
                )
                continue
            if result.is_success:
                delivered += 1
        self._logger.info(
            event,
            subject=subject,
            channels=[n.name for n in notifiers],
            delivered=delivered,
        )
        return delivered

    def dispatch_alert(
        self,
        notifiers: Sequence[BaseNotifier],
        target: TargetConfig,
        result: CheckResult,
        ack_url: str | None = None,
    ) -> int:
        """Send a down alert; ack-aware channels get the acknowledgement link."""

        def deliver(notifier: BaseNotifier) -> DeliveryResult:
            if ack_url and isinstance(notifier, AcknowledgementAware):
                return notifier.send_alert_with_ack(target, result, ack_url)
            return notifier.send_alert(target, result)

        delivered = self._fan_out(notifiers, deliver, "alert_dispatched", target.display_name)
        self._counters.record(delivered, is_alert=True)
        return delivered

    def dispatch_all_clear(
        self,
        notifiers: Sequence[BaseNotifier],
        target: TargetConfig,
        result: CheckResult | None,
        down_duration: timedelta | None = None,
    ) -> int:
        delivered = self._fan_out(
            notifiers,
            lambda n: n.send_all_clear(target, result, down_duration),
            "all_clear_dispatched",
            target.display_name,
        )
        self._counters.record(delivered)
        return delivered

    def dispatch_acknowledgement(
        self,
        notifiers: Sequence[BaseNotifier],
        target: TargetConfig,
        acknowledged_by: str,
        note: str = "",
        contact: str = "",
    ) -> int:
        """Tell acknowledgement-aware channels that an incident was acknowledged."""
        aware = [n for n in notifiers if isinstance(n, AcknowledgementAware)]
        delivered = self._fan_out(
            aware,
            lambda n: n.send_acknowledgement(target, acknowledged_by, note, contact),  # type: ignore[attr-defined]
            "acknowledgement_dispatched",
            target.display_name,
        )
        self._counters.record(delivered)
        return delivered

    def dispatch_size_change(
        self,
        notifiers: Sequence[BaseNotifier],
        target: TargetConfig,
        new_size: int,
        average: float,
        change: float,
    ) -> int:
        delivered = self._fan_out(
            notifiers,
            lambda n: n.send_size_change(target, new_size, average, change),
            "size_change_dispatched",
            target.display_name,
        )
        self._counters.record(delivered)
        return delivered

    def dispatch_notification(
        self,
        notifiers: Sequence[BaseNotifier],
        notification: HookNotification,
        ack_url: str | None = None,
    ) -> int:
        def deliver(notifier: BaseNotifier) -> DeliveryResult:
            if ack_url and isinstance(notifier, AcknowledgementAware):
                return notifier.handle_notification_with_ack(notification, ack_url)
            return notifier.handle_notification(notification)

        delivered = self._fan_out(
            notifiers, deliver, "notification_dispatched", notification.hook_name
        )
        self._counters.record(delivered)
        return delivered

    def dispatch_notification_acknowledgement(
        self,
        notifiers: Sequence[BaseNotifier],
        notification: HookNotification,
        acknowledged_by: str,
        note: str = "",
        contact: str = "",
    ) -> int:
        aware = [n for n in notifiers if isinstance(n, AcknowledgementAware)]
        delivered = self._fan_out(
            aware,
            lambda n: n.send_notification_acknowledgement(  # type: ignore[attr-defined]
                notification, acknowledged_by, note, contact
            ),
            "notification_acknowledgement_dispatched",
            notification.hook_name,
        )
        self._counters.record(delivered)
        return delivered

    def dispatch_status_report(
        self, notifiers: Sequence[BaseNotifier], report: StatusReportData
    ) -> int:
        return self._fan_out(
            notifiers, lambda n: n.send_status_report(report), "status_report_dispatched", "report"
        )

    def dispatch_startup(
        self, notifiers: Sequence[BaseNotifier], version: str, target_count: int
    ) -> int:
        return self._fan_out(
            notifiers,
            lambda n: n.send_startup(version, target_count),
            "startup_dispatched",
            "startup",
        )

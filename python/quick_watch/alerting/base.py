"""
Base classes for the alerting framework.

Every notification channel extends BaseNotifier and implements ``_send``
for its transport. The public ``send_*`` methods render engine events
(alerts, all-clears, size changes, status reports, hook notifications)
into an AlertMessage and deliver it through ``send``.

Channels that can render acknowledgement links and acknowledgement
notices additionally extend AcknowledgementAware.
"""

from __future__ import annotations

import dataclasses
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

import structlog

from quick_watch.exceptions import ConfigurationError, DeliveryError

if TYPE_CHECKING:
    from datetime import timedelta

    from quick_watch.config import AlertChannelConfig, TargetConfig
    from quick_watch.models import CheckResult, HookNotification, StatusReportData

logger = structlog.get_logger(__name__)


class MessageKind(str, Enum):
    """Kinds of messages a channel can deliver."""

    ALERT = "alert"
    ALL_CLEAR = "all_clear"
    ACKNOWLEDGEMENT = "acknowledgement"
    SIZE_CHANGE = "size_change"
    STATUS_REPORT = "status_report"
    STARTUP = "startup"
    NOTIFICATION = "notification"


class AlertStatus(str, Enum):
    """Status of a delivery attempt."""

    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class AlertMessage:
    """
    A rendered message ready for delivery.

    Attributes:
        kind: What the message is about.
        title: Short summary line.
        message: Body text.
        target_name: Target or hook the message concerns.
        target_url: URL of the target, if any.
        ack_url: Acknowledgement link, if acknowledgements are on.
        metadata: Additional structured data for transports.
        event_id: Unique identifier for this message.
        timestamp: When the message was rendered.
    """

    kind: MessageKind
    title: str
    message: str
    target_name: str = ""
    target_url: str = ""
    ack_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {
            "event_id": self.event_id,
            "type": self.kind.value,
            "title": self.title,
            "message": self.message,
            "target": self.target_name,
            "url": self.target_url,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }
        if self.ack_url:
            data["acknowledgement_url"] = self.ack_url
        return data


@dataclass
class DeliveryResult:
    """
    Result of a delivery attempt.

    Attributes:
        event_id: ID of the message that was processed.
        status: Delivery status.
        notifier_name: Name of the channel that processed it.
        attempts: Number of delivery attempts.
        error: Error message if failed.
        delivered_at: When the message was delivered.
    """

    event_id: str
    status: AlertStatus
    notifier_name: str
    attempts: int = 1
    error: str | None = None
    delivered_at: datetime | None = None

    @property
    def is_success(self) -> bool:
        return self.status == AlertStatus.SENT


@dataclass
class NotifierConfig:
    """
    Base configuration for notifiers.

    Attributes:
        name: Unique channel name.
        enabled: Whether this channel is active.
        max_retries: Delivery attempts per message (1 means no retry).
        retry_delay_seconds: Base delay between attempts.
        timeout_seconds: Transport timeout.
    """

    name: str = "base-notifier"
    enabled: bool = True
    max_retries: int = 1
    retry_delay_seconds: float = 1.0
    timeout_seconds: float = 10.0


def _format_duration(duration: timedelta) -> str:
    seconds = int(duration.total_seconds())
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{seconds:02d}s"
    if minutes:
        return f"{minutes}m{seconds:02d}s"
    return f"{seconds}s"


def _acknowledgement_text(subject: str, acknowledged_by: str, note: str, contact: str) -> str:
    text = f"{subject} was acknowledged by {acknowledged_by}"
    if note:
        text += f": {note}"
    if contact:
        text += f"\nContact: {contact}"
    return text


class BaseNotifier(ABC):
    """
    Abstract base class for all notification channels.

    Provides message rendering for every engine event plus the delivery
    loop with logging, counters and optional retries. Subclasses implement
    ``_send`` for their transport.
    """

    config_class: ClassVar[type[NotifierConfig]] = NotifierConfig

    def __init__(self, config: NotifierConfig) -> None:
        """
        Initialize the notifier.

        Args:
            config: Notifier configuration.
        """
        self._config = config
        self._logger = logger.bind(notifier=config.name)
        self._sent_count = 0
        self._failed_count = 0

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def is_enabled(self) -> bool:
        return self._config.enabled

    @property
    def stats(self) -> dict[str, int]:
        """Get delivery statistics."""
        return {
            "sent": self._sent_count,
            "failed": self._failed_count,
            "total": self._sent_count + self._failed_count,
        }

    def send(self, message: AlertMessage) -> DeliveryResult:
        """
        Deliver a rendered message.

        Failures are logged and reported on the result, never raised.

        Args:
            message: The message to deliver.

        Returns:
            Result of the delivery attempt.
        """
        if not self._config.enabled:
            self._logger.debug("notifier_disabled", event_id=message.event_id)
            return DeliveryResult(
                event_id=message.event_id,
                status=AlertStatus.SKIPPED,
                notifier_name=self.name,
            )

        attempts = 0
        last_error: str | None = None
        max_attempts = max(1, self._config.max_retries)

        while attempts < max_attempts:
            attempts += 1
            try:
                self._send(message)
            except Exception as e:
                last_error = str(e)
                self._logger.warning(
                    "delivery_attempt_failed",
                    event_id=message.event_id,
                    kind=message.kind.value,
                    target=message.target_name,
                    attempt=attempts,
                    error=last_error,
                )
                if isinstance(e, DeliveryError) and not e.is_retryable:
                    break
                if attempts < max_attempts:
                    time.sleep(self._config.retry_delay_seconds * (2 ** (attempts - 1)))
                continue

            self._sent_count += 1
            self._logger.debug(
                "message_delivered",
                event_id=message.event_id,
                kind=message.kind.value,
                target=message.target_name,
                attempts=attempts,
            )
            return DeliveryResult(
                event_id=message.event_id,
                status=AlertStatus.SENT,
                notifier_name=self.name,
                attempts=attempts,
                delivered_at=datetime.now(tz=timezone.utc),
            )

        self._failed_count += 1
        self._logger.error(
            "delivery_failed",
            event_id=message.event_id,
            kind=message.kind.value,
            target=message.target_name,
            attempts=attempts,
            error=last_error,
        )
        return DeliveryResult(
            event_id=message.event_id,
            status=AlertStatus.FAILED,
            notifier_name=self.name,
            attempts=attempts,
            error=last_error,
        )

    @abstractmethod
    def _send(self, message: AlertMessage) -> None:
        """
        Perform the actual send operation.

        Args:
            message: The message to deliver.

        Raises:
            Exception: If delivery fails.
        """

    # Event rendering

    def send_alert(self, target: TargetConfig, result: CheckResult) -> DeliveryResult:
        """Notify that a target is down."""
        return self.send(self._alert_message(target, result))

    def send_all_clear(
        self,
        target: TargetConfig,
        result: CheckResult | None,
        down_duration: timedelta | None = None,
    ) -> DeliveryResult:
        """Notify that a target recovered."""
        text = f"{target.display_name} is back up"
        if down_duration is not None:
            text += f" after {_format_duration(down_duration)}"
        metadata: dict[str, Any] = {}
        if result is not None:
            metadata.update(status_code=result.status_code, response_time=result.response_time)
        if down_duration is not None:
            metadata["down_seconds"] = down_duration.total_seconds()
        return self.send(
            AlertMessage(
                kind=MessageKind.ALL_CLEAR,
                title=f"RECOVERED: {target.display_name}",
                message=text,
                target_name=target.display_name,
                target_url=target.url,
                metadata=metadata,
            )
        )

    def send_size_change(
        self, target: TargetConfig, new_size: int, average: float, change: float
    ) -> DeliveryResult:
        """Notify that a response size drifted from its recent mean."""
        return self.send(
            AlertMessage(
                kind=MessageKind.SIZE_CHANGE,
                title=f"SIZE CHANGE: {target.display_name}",
                message=(
                    f"Response size {new_size} bytes differs from the average of "
                    f"{average:.0f} bytes by {change:.0%}"
                ),
                target_name=target.display_name,
                target_url=target.url,
                metadata={"new_size": new_size, "average": average, "change": change},
            )
        )

    def send_status_report(self, report: StatusReportData) -> DeliveryResult:
        """Deliver a periodic status summary."""
        lines = [
            f"Period: {report.period_start.isoformat()} - {report.period_end.isoformat()}",
            f"Alerts sent: {report.alerts_sent}",
            f"Notifications sent: {report.notifications_sent}",
        ]
        if not report.is_healthy:
            lines.append("Active outages:")
            for outage in report.active_outages:
                ack = f" (acknowledged by {outage.acknowledged_by})" if outage.acknowledged else ""
                lines.append(
                    f"  - {outage.target_name}: down {_format_duration(outage.duration)}{ack}"
                )
        else:
            lines.append("All targets are up")
        if report.resolved_outages:
            lines.append("Resolved outages:")
            for resolved in report.resolved_outages:
                lines.append(
                    f"  - {resolved.target_name}: down {_format_duration(resolved.down_duration)}"
                )
        return self.send(
            AlertMessage(
                kind=MessageKind.STATUS_REPORT,
                title="Status report",
                message="\n".join(lines),
                metadata=report.model_dump(mode="json"),
            )
        )

    def send_startup(self, version: str, target_count: int) -> DeliveryResult:
        """Announce that monitoring started."""
        return self.send(
            AlertMessage(
                kind=MessageKind.STARTUP,
                title="Quick Watch started",
                message=f"Quick Watch {version} is monitoring {target_count} target(s)",
                metadata={"version": version, "target_count": target_count},
            )
        )

    def handle_notification(self, notification: HookNotification) -> DeliveryResult:
        """Deliver a notification received on a hook."""
        return self.send(self._notification_message(notification))

    def _alert_message(self, target: TargetConfig, result: CheckResult) -> AlertMessage:
        reason = result.error or f"status code {result.status_code}"
        text = f"{target.display_name} is down: {reason}"
        if result.alert_count > 1:
            text += f" (alert #{result.alert_count})"
        return AlertMessage(
            kind=MessageKind.ALERT,
            title=f"DOWN: {target.display_name}",
            message=text,
            target_name=target.display_name,
            target_url=target.url,
            metadata={
                "status_code": result.status_code,
                "response_time": result.response_time,
                "alert_count": result.alert_count,
            },
        )

    def _notification_message(self, notification: HookNotification) -> AlertMessage:
        return AlertMessage(
            kind=MessageKind.NOTIFICATION,
            title=f"Hook: {notification.hook_name}",
            message=notification.message,
            target_name=notification.hook_name,
            metadata={**notification.metadata, "data": notification.data},
        )

    def validate_config(self) -> list[str]:
        """
        Validate the notifier configuration.

        Returns:
            List of validation error messages.
        """
        errors: list[str] = []
        if not self._config.name:
            errors.append("Notifier name is required")
        if self._config.max_retries < 1:
            errors.append("max_retries must be at least 1")
        if self._config.timeout_seconds <= 0:
            errors.append("timeout_seconds must be positive")
        return errors

    def health_check(self) -> bool:
        return self._config.enabled


class AcknowledgementAware(BaseNotifier):
    """
    Extension for channels that understand acknowledgements.

    These channels receive alerts carrying an acknowledgement link and are
    told when someone acknowledges an incident or a hook notification.
    """

    def send_alert_with_ack(
        self, target: TargetConfig, result: CheckResult, ack_url: str
    ) -> DeliveryResult:
        message = self._alert_message(target, result)
        message.ack_url = ack_url
        return self.send(message)

    def send_acknowledgement(
        self, target: TargetConfig, acknowledged_by: str, note: str = "", contact: str = ""
    ) -> DeliveryResult:
        text = _acknowledgement_text(target.display_name, acknowledged_by, note, contact)
        return self.send(
            AlertMessage(
                kind=MessageKind.ACKNOWLEDGEMENT,
                title=f"ACKNOWLEDGED: {target.display_name}",
                message=text,
                target_name=target.display_name,
                target_url=target.url,
                metadata={"acknowledged_by": acknowledged_by, "note": note, "contact": contact},
            )
        )

    def handle_notification_with_ack(
        self, notification: HookNotification, ack_url: str
    ) -> DeliveryResult:
        message = self._notification_message(notification)
        message.ack_url = ack_url
        return self.send(message)

    def send_notification_acknowledgement(
        self,
        notification: HookNotification,
        acknowledged_by: str,
        note: str = "",
        contact: str = "",
    ) -> DeliveryResult:
        text = _acknowledgement_text(
            f"Hook '{notification.hook_name}'", acknowledged_by, note, contact
        )
        return self.send(
            AlertMessage(
                kind=MessageKind.ACKNOWLEDGEMENT,
                title=f"ACKNOWLEDGED: {notification.hook_name}",
                message=text,
                target_name=notification.hook_name,
                metadata={"acknowledged_by": acknowledged_by, "note": note, "contact": contact},
            )
        )


class NotifierFactory:
    """Registry creating notifiers from channel configuration."""

    _registry: ClassVar[dict[str, type[BaseNotifier]]] = {}

    @classmethod
    def register(cls, notifier_type: str, notifier_class: type[BaseNotifier]) -> None:
        """
        Register a notifier type.

        Args:
            notifier_type: Unique type identifier.
            notifier_class: Notifier class to register.
        """
        cls._registry[notifier_type] = notifier_class
        logger.debug("notifier_registered", notifier_type=notifier_type)

    @classmethod
    def create(cls, notifier_type: str, config: NotifierConfig) -> BaseNotifier:
        """
        Create a notifier instance.

        Raises:
            ConfigurationError: If the notifier type is not registered.
        """
        if notifier_type not in cls._registry:
            raise ConfigurationError.validation_failed(
                "type", notifier_type, "unknown notifier type"
            )
        return cls._registry[notifier_type](config)

    @classmethod
    def from_channel(cls, channel: AlertChannelConfig) -> BaseNotifier:
        """
        Build and validate a notifier from a configured channel.

        Settings keys that the channel's config class does not know are
        ignored.

        Raises:
            ConfigurationError: If the type is unknown or the settings are invalid.
        """
        notifier_class = cls._registry.get(channel.type)
        if notifier_class is None:
            raise ConfigurationError.validation_failed(
                f"alerts.{channel.name}.type", channel.type, "unknown notifier type"
            )

        config_class = notifier_class.config_class
        known = {f.name for f in dataclasses.fields(config_class)}
        options = {k: v for k, v in channel.settings.items() if k in known}
        options.update(name=channel.name, enabled=channel.enabled)

        try:
            config = config_class(**options)
        except (TypeError, ValueError) as e:
            raise ConfigurationError.validation_failed(
                f"alerts.{channel.name}.settings", channel.settings, str(e)
            ) from e

        notifier = notifier_class(config)
        errors = notifier.validate_config()
        if errors:
            raise ConfigurationError.validation_failed(
                f"alerts.{channel.name}", channel.type, "; ".join(errors)
            )
        return notifier

    @classmethod
    def available_types(cls) -> list[str]:
        return list(cls._registry.keys())

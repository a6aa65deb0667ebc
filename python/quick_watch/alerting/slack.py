"""
Slack webhook notifier.

Posts color-coded attachments to a Slack incoming webhook. Acknowledgement
links are rendered as a button.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import structlog

from quick_watch.alerting.base import (
    AcknowledgementAware,
    AlertMessage,
    MessageKind,
    NotifierConfig,
    NotifierFactory,
)
from quick_watch.exceptions import DeliveryError

logger = structlog.get_logger(__name__)


KIND_COLORS: dict[MessageKind, str] = {
    MessageKind.ALERT: "#dc3545",  # Red
    MessageKind.ALL_CLEAR: "#28a745",  # Green
    MessageKind.ACKNOWLEDGEMENT: "#ffc107",  # Yellow
    MessageKind.SIZE_CHANGE: "#fd7e14",  # Orange
    MessageKind.STATUS_REPORT: "#17a2b8",  # Blue
    MessageKind.STARTUP: "#6c757d",  # Gray
    MessageKind.NOTIFICATION: "#17a2b8",
}


@dataclass
class SlackConfig(NotifierConfig):
    """
    Configuration for the Slack notifier.

    Attributes:
        webhook_url: Slack incoming webhook URL.
        channel: Optional channel override.
        username: Bot username to display.
        icon_emoji: Emoji used as the bot avatar.
    """

    webhook_url: str = ""
    channel: str | None = None
    username: str = "Quick Watch"
    icon_emoji: str | None = None

    def __post_init__(self) -> None:
        if not self.name or self.name == "base-notifier":
            self.name = "slack"


class SlackNotifier(AcknowledgementAware):
    """Sends messages to Slack through an incoming webhook."""

    config_class = SlackConfig

    def __init__(self, config: SlackConfig) -> None:
        super().__init__(config)
        self._slack_config = config
        self._logger = logger.bind(notifier=config.name, channel=config.channel)

    def _send(self, message: AlertMessage) -> None:
        """
        Send a message to Slack.

        Raises:
            DeliveryError: If the webhook URL is missing or Slack rejects the post.
            URLError: If connection fails.
        """
        if not self._slack_config.webhook_url:
            raise DeliveryError.misconfigured(self.name, "Slack webhook URL is required")

        self._post_webhook(self._build_payload(message))

    def _build_payload(self, message: AlertMessage) -> dict[str, Any]:
        """
        Build the Slack message payload.

        Args:
            message: Message to format.

        Returns:
            Slack message payload.
        """
        fields: list[dict[str, Any]] = []
        if message.target_url:
            fields.append({"title": "URL", "value": message.target_url, "short": False})
        for key in ("status_code", "alert_count", "acknowledged_by", "contact"):
            value = message.metadata.get(key)
            if value:
                fields.append({"title": key.replace("_", " ").title(), "value": str(value), "short": True})

        attachment: dict[str, Any] = {
            "fallback": message.title,
            "color": KIND_COLORS.get(message.kind, "#6c757d"),
            "title": message.title,
            "text": message.message,
            "fields": fields,
            "footer": "Quick Watch",
            "ts": int(message.timestamp.timestamp()),
        }

        if message.ack_url:
            attachment["actions"] = [
                {
                    "type": "button",
                    "text": "Acknowledge",
                    "url": message.ack_url,
                    "style": "primary",
                }
            ]

        payload: dict[str, Any] = {"attachments": [attachment]}

        if self._slack_config.channel:
            payload["channel"] = self._slack_config.channel
        if self._slack_config.username:
            payload["username"] = self._slack_config.username
        if self._slack_config.icon_emoji:
            payload["icon_emoji"] = self._slack_config.icon_emoji

        return payload

    def _post_webhook(self, payload: dict[str, Any]) -> str:
        data = json.dumps(payload).encode("utf-8")

        request = Request(
            self._slack_config.webhook_url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "User-Agent": "Quick-Watch/1.0",
            },
            method="POST",
        )

        try:
            with urlopen(request, timeout=self._slack_config.timeout_seconds) as response:
                return response.read().decode("utf-8")
        except HTTPError as e:
            self._logger.error("slack_http_error", status_code=e.code, reason=e.reason)
            raise DeliveryError.send_failed(self.name, f"HTTP {e.code} {e.reason}") from e
        except URLError as e:
            self._logger.error("slack_connection_error", reason=str(e.reason))
            raise

    def validate_config(self) -> list[str]:
        errors = super().validate_config()

        if not self._slack_config.webhook_url:
            errors.append("Slack webhook URL is required")
        elif not self._slack_config.webhook_url.startswith("https://"):
            errors.append("Slack webhook URL must use HTTPS")

        return errors

    def health_check(self) -> bool:
        return super().health_check() and bool(self._slack_config.webhook_url)


NotifierFactory.register("slack", SlackNotifier)

"""
Generic webhook notifier.

Posts a JSON document describing each message to an arbitrary endpoint.
Supports custom headers and bearer or basic authentication. This channel
does not take part in acknowledgements.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import structlog

from quick_watch.alerting.base import (
    AlertMessage,
    BaseNotifier,
    NotifierConfig,
    NotifierFactory,
)
from quick_watch.exceptions import DeliveryError

logger = structlog.get_logger(__name__)


@dataclass
class WebhookConfig(NotifierConfig):
    """
    Configuration for the webhook notifier.

    Attributes:
        url: Endpoint URL.
        method: HTTP method (POST, PUT, PATCH).
        headers: Custom HTTP headers.
        auth_type: Authentication type (none, bearer, basic).
        auth_token: Bearer token.
        auth_username: Basic auth username.
        auth_password: Basic auth password.
        custom_fields: Extra fields merged into every payload.
    """

    url: str = ""
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    auth_type: str = "none"
    auth_token: str = ""
    auth_username: str = ""
    auth_password: str = ""
    custom_fields: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name or self.name == "base-notifier":
            self.name = "webhook"
        self.method = self.method.upper()


class WebhookNotifier(BaseNotifier):
    """Sends JSON payloads to a webhook endpoint."""

    config_class = WebhookConfig

    def __init__(self, config: WebhookConfig) -> None:
        super().__init__(config)
        self._webhook_config = config
        self._logger = logger.bind(notifier=config.name, url=config.url)

    def _send(self, message: AlertMessage) -> None:
        """
        Post a message to the endpoint.

        Raises:
            DeliveryError: If the URL is missing or the endpoint rejects the request.
            URLError: If connection fails.
        """
        if not self._webhook_config.url:
            raise DeliveryError.misconfigured(self.name, "webhook URL is required")

        self._post_webhook(self._build_payload(message), self._build_headers())

    def _build_payload(self, message: AlertMessage) -> dict[str, Any]:
        payload = message.to_dict()
        payload["service"] = "quick_watch"
        payload.update(self._webhook_config.custom_fields)
        return payload

    def _build_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "Quick-Watch/1.0",
        }
        headers.update(self._webhook_config.headers)

        config = self._webhook_config
        if config.auth_type == "bearer" and config.auth_token:
            headers["Authorization"] = f"Bearer {config.auth_token}"
        elif config.auth_type == "basic" and config.auth_username:
            credentials = f"{config.auth_username}:{config.auth_password}"
            encoded = base64.b64encode(credentials.encode()).decode()
            headers["Authorization"] = f"Basic {encoded}"

        return headers

    def _post_webhook(self, payload: dict[str, Any], headers: dict[str, str]) -> int:
        data = json.dumps(payload).encode("utf-8")
        request = Request(
            self._webhook_config.url,
            data=data,
            headers=headers,
            method=self._webhook_config.method,
        )

        try:
            with urlopen(request, timeout=self._webhook_config.timeout_seconds) as response:
                return response.status
        except HTTPError as e:
            self._logger.error("webhook_http_error", status_code=e.code, reason=e.reason)
            raise DeliveryError.send_failed(self.name, f"HTTP {e.code} {e.reason}") from e
        except URLError as e:
            self._logger.error("webhook_connection_error", reason=str(e.reason))
            raise

    def validate_config(self) -> list[str]:
        errors = super().validate_config()

        if not self._webhook_config.url:
            errors.append("Webhook URL is required")
        elif not self._webhook_config.url.startswith(("http://", "https://")):
            errors.append("Webhook URL must use HTTP or HTTPS")

        if self._webhook_config.method not in ("POST", "PUT", "PATCH"):
            errors.append("HTTP method must be POST, PUT, or PATCH")

        if self._webhook_config.auth_type not in ("none", "bearer", "basic"):
            errors.append("Invalid auth_type")

        return errors

    def health_check(self) -> bool:
        return super().health_check() and bool(self._webhook_config.url)


NotifierFactory.register("webhook", WebhookNotifier)

"""
Email SMTP notifier.

Sends multipart (plain text and HTML) emails. The SMTP password is read
from the environment variable named by ``password_env`` so it never lives
in the watch file.
"""

from __future__ import annotations

import html
import os
import smtplib
import ssl
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

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
    MessageKind.ALERT: "#c62828",
    MessageKind.ALL_CLEAR: "#2e7d32",
    MessageKind.ACKNOWLEDGEMENT: "#f9a825",
    MessageKind.SIZE_CHANGE: "#ef6c00",
    MessageKind.STATUS_REPORT: "#1565c0",
    MessageKind.STARTUP: "#546e7a",
    MessageKind.NOTIFICATION: "#1565c0",
}


@dataclass
class EmailConfig(NotifierConfig):
    """
    Configuration for the email notifier.

    Attributes:
        smtp_host: SMTP server hostname.
        smtp_port: SMTP server port (465 implies implicit SSL).
        username: SMTP login, also used as the sender address.
        password_env: Environment variable holding the SMTP password.
        to: Recipient address or addresses.
        from_address: Sender address override.
        use_tls: Whether to upgrade plain connections with STARTTLS.
        subject_prefix: Prefix for email subjects.
    """

    smtp_host: str = ""
    smtp_port: int = 587
    username: str = ""
    password_env: str = ""
    to: str | list[str] = field(default_factory=list)
    from_address: str = ""
    use_tls: bool = True
    subject_prefix: str = "[Quick Watch]"

    def __post_init__(self) -> None:
        if not self.name or self.name == "base-notifier":
            self.name = "email"

    @property
    def recipients(self) -> list[str]:
        if isinstance(self.to, str):
            return [addr.strip() for addr in self.to.split(",") if addr.strip()]
        return list(self.to)

    @property
    def sender(self) -> str:
        return self.from_address or self.username

    @property
    def password(self) -> str:
        return os.environ.get(self.password_env, "") if self.password_env else ""


class EmailNotifier(AcknowledgementAware):
    """Sends messages by email."""

    config_class = EmailConfig

    def __init__(self, config: EmailConfig) -> None:
        super().__init__(config)
        self._email_config = config
        self._logger = logger.bind(notifier=config.name, smtp_host=config.smtp_host)

    def _send(self, message: AlertMessage) -> None:
        """
        Send a message via SMTP.

        Raises:
            DeliveryError: If no recipient is configured.
            smtplib.SMTPException: If sending fails.
            OSError: If the server cannot be reached.
        """
        if not self._email_config.recipients:
            raise DeliveryError.misconfigured(self.name, "no recipients configured")
        mime = self._build_message(message)
        self._send_smtp(mime, self._email_config.recipients)

    def _build_message(self, message: AlertMessage) -> MIMEMultipart:
        mime = MIMEMultipart("alternative")
        subject = message.title
        if self._email_config.subject_prefix:
            subject = f"{self._email_config.subject_prefix} {subject}"
        mime["Subject"] = subject
        mime["From"] = self._email_config.sender
        mime["To"] = ", ".join(self._email_config.recipients)
        mime["X-Quick-Watch-Event-ID"] = message.event_id

        mime.attach(MIMEText(self._build_plain_body(message), "plain", "utf-8"))
        mime.attach(MIMEText(self._build_html_body(message), "html", "utf-8"))
        return mime

    def _build_plain_body(self, message: AlertMessage) -> str:
        lines = [message.title, "", message.message, ""]
        if message.target_url:
            lines.append(f"URL: {message.target_url}")
        lines.append(f"Time: {message.timestamp.isoformat()}")
        if message.ack_url:
            lines.extend(["", f"Acknowledge: {message.ack_url}"])
        lines.extend(["", "---", "This is an automated message from Quick Watch."])
        return "\n".join(lines)

    def _build_html_body(self, message: AlertMessage) -> str:
        color = KIND_COLORS.get(message.kind, "#546e7a")
        body = html.escape(message.message).replace("\n", "<br>")
        rows = f"<li><strong>Time:</strong> {message.timestamp.isoformat()}</li>"
        if message.target_url:
            rows = f"<li><strong>URL:</strong> {html.escape(message.target_url)}</li>" + rows
        ack = ""
        if message.ack_url:
            ack = (
                f'<p><a href="{html.escape(message.ack_url)}" '
                'style="background:#1565c0;color:white;padding:8px 14px;'
                'border-radius:4px;text-decoration:none;">Acknowledge</a></p>'
            )
        return (
            "<html><body>"
            f'<h2 style="color:{color}">{html.escape(message.title)}</h2>'
            f"<p>{body}</p><ul>{rows}</ul>{ack}"
            '<p style="color:#6c757d;font-size:12px;">'
            "This is an automated message from Quick Watch.</p>"
            "</body></html>"
        )

    def _send_smtp(self, mime: MIMEMultipart, recipients: list[str]) -> None:
        config = self._email_config

        self._logger.debug("smtp_connecting", host=config.smtp_host, port=config.smtp_port)
        context = ssl.create_default_context()

        try:
            if config.smtp_port == 465:
                server: smtplib.SMTP = smtplib.SMTP_SSL(
                    config.smtp_host,
                    config.smtp_port,
                    timeout=config.timeout_seconds,
                    context=context,
                )
            else:
                server = smtplib.SMTP(
                    config.smtp_host,
                    config.smtp_port,
                    timeout=config.timeout_seconds,
                )
                if config.use_tls:
                    server.starttls(context=context)

            try:
                if config.username and config.password:
                    server.login(config.username, config.password)
                server.sendmail(config.sender, recipients, mime.as_string())
                self._logger.debug("smtp_sent", recipients=len(recipients))
            finally:
                server.quit()

        except smtplib.SMTPException as e:
            self._logger.error("smtp_error", error=str(e))
            raise

    def validate_config(self) -> list[str]:
        errors = super().validate_config()
        config = self._email_config

        if not config.smtp_host:
            errors.append("SMTP host is required")
        if not config.sender:
            errors.append("username or from_address is required")
        if not config.recipients:
            errors.append("At least one recipient address is required")
        if config.password_env and not config.password:
            errors.append(f"Environment variable {config.password_env} is not set")

        return errors


NotifierFactory.register("email", EmailNotifier)

"""
Console notifier.

Prints messages to a text stream, either as plain one-liners or in a
stylized multi-line block with optional ANSI colors.
"""

from __future__ import annotations

import sys
import threading
from dataclasses import dataclass, field
from typing import TextIO

import structlog

from quick_watch.alerting.base import (
    AcknowledgementAware,
    AlertMessage,
    MessageKind,
    NotifierConfig,
    NotifierFactory,
)

logger = structlog.get_logger(__name__)

RESET = "\033[0m"
BOLD = "\033[1m"

KIND_COLORS: dict[MessageKind, str] = {
    MessageKind.ALERT: "\033[31m",  # Red
    MessageKind.ALL_CLEAR: "\033[32m",  # Green
    MessageKind.ACKNOWLEDGEMENT: "\033[33m",  # Yellow
    MessageKind.SIZE_CHANGE: "\033[35m",  # Magenta
    MessageKind.STATUS_REPORT: "\033[36m",  # Cyan
    MessageKind.STARTUP: "\033[34m",  # Blue
    MessageKind.NOTIFICATION: "\033[36m",
}

KIND_ICONS: dict[MessageKind, str] = {
    MessageKind.ALERT: "🚨",
    MessageKind.ALL_CLEAR: "✅",
    MessageKind.ACKNOWLEDGEMENT: "👍",
    MessageKind.SIZE_CHANGE: "📏",
    MessageKind.STATUS_REPORT: "📊",
    MessageKind.STARTUP: "🚀",
    MessageKind.NOTIFICATION: "🔔",
}


@dataclass
class ConsoleConfig(NotifierConfig):
    """
    Configuration for the console notifier.

    Attributes:
        style: "plain" for one line per message, "stylized" for blocks.
        color: Whether to emit ANSI colors.
        bold: Whether stylized titles are bold.
        output: Stream to write to.
    """

    style: str = "stylized"
    color: bool = True
    bold: bool = True
    output: TextIO = field(default_factory=lambda: sys.stdout)

    def __post_init__(self) -> None:
        if not self.name or self.name == "base-notifier":
            self.name = "console"


class ConsoleNotifier(AcknowledgementAware):
    """Writes messages to the console."""

    config_class = ConsoleConfig

    def __init__(self, config: ConsoleConfig) -> None:
        super().__init__(config)
        self._console_config = config
        self._lock = threading.Lock()

    def _send(self, message: AlertMessage) -> None:
        if self._console_config.style == "plain":
            text = self._render_plain(message)
        else:
            text = self._render_stylized(message)

        # Scheduler threads share the stream
        with self._lock:
            self._console_config.output.write(text + "\n")
            self._console_config.output.flush()

    def _paint(self, text: str, message: AlertMessage, bold: bool = False) -> str:
        if not self._console_config.color:
            return text
        prefix = KIND_COLORS.get(message.kind, "")
        if bold and self._console_config.bold:
            prefix += BOLD
        return f"{prefix}{text}{RESET}"

    def _render_plain(self, message: AlertMessage) -> str:
        stamp = message.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        line = f"[{stamp}] {message.kind.value.upper()} {message.message}"
        if message.ack_url:
            line += f" | acknowledge: {message.ack_url}"
        return self._paint(line, message)

    def _render_stylized(self, message: AlertMessage) -> str:
        icon = KIND_ICONS.get(message.kind, "")
        stamp = message.timestamp.strftime("%H:%M:%S")
        lines = [self._paint(f"{icon} {message.title}", message, bold=True)]
        lines.extend(f"   {line}" for line in message.message.splitlines())
        if message.target_url:
            lines.append(f"   url: {message.target_url}")
        if message.ack_url:
            lines.append(f"   acknowledge: {message.ack_url}")
        lines.append(f"   at {stamp}")
        return "\n".join(lines)

    def validate_config(self) -> list[str]:
        errors = super().validate_config()
        if self._console_config.style not in ("plain", "stylized"):
            errors.append("style must be 'plain' or 'stylized'")
        return errors


NotifierFactory.register("console", ConsoleNotifier)

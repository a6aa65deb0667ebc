"""
File notifier.

Appends one JSON object per message to a log file using OpenTelemetry-style
dotted keys. When ``max_size_before_compress`` (MB) is set, the file is
checked at most once per ``rotation_check_seconds`` and, once too large,
archived as ``<file>.<timestamp>.tar.gz`` and truncated.
"""

from __future__ import annotations

import json
import tarfile
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from quick_watch.alerting.base import (
    AcknowledgementAware,
    AlertMessage,
    MessageKind,
    NotifierConfig,
    NotifierFactory,
)

logger = structlog.get_logger(__name__)

KIND_LEVELS: dict[MessageKind, str] = {
    MessageKind.ALERT: "error",
    MessageKind.SIZE_CHANGE: "warn",
}


@dataclass
class FileConfig(NotifierConfig):
    """
    Configuration for the file notifier.

    Attributes:
        file_path: JSON lines file to append to.
        max_size_before_compress: Size in MB that triggers archiving (0 disables).
        rotation_check_seconds: Minimum time between size checks.
    """

    file_path: str = "alerts.jsonl"
    max_size_before_compress: float = 0
    rotation_check_seconds: float = 3600.0

    def __post_init__(self) -> None:
        if not self.name or self.name == "base-notifier":
            self.name = "file"


class FileNotifier(AcknowledgementAware):
    """Appends messages to a JSON lines file."""

    config_class = FileConfig

    def __init__(self, config: FileConfig) -> None:
        super().__init__(config)
        self._file_config = config
        self._path = Path(config.file_path)
        self._lock = threading.Lock()
        self._last_rotation_check = time.monotonic()
        self._logger = logger.bind(notifier=config.name, path=str(self._path))

    @property
    def path(self) -> Path:
        return self._path

    def _send(self, message: AlertMessage) -> None:
        entry = self._build_entry(message)
        with self._lock:
            self._check_rotation()
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=str) + "\n")

    def _build_entry(self, message: AlertMessage) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "timestamp": message.timestamp.isoformat(),
            "level": KIND_LEVELS.get(message.kind, "info"),
            "service.name": "quick_watch",
            "event.type": message.kind.value,
            "event.id": message.event_id,
            "message": message.message,
        }
        if message.target_name:
            entry["target.name"] = message.target_name
        if message.target_url:
            entry["target.url"] = message.target_url
        if message.ack_url:
            entry["acknowledgement.url"] = message.ack_url
        if message.metadata:
            entry["attributes"] = message.metadata
        return entry

    def _check_rotation(self) -> None:
        limit = self._file_config.max_size_before_compress
        if limit <= 0:
            return

        now = time.monotonic()
        if now - self._last_rotation_check < self._file_config.rotation_check_seconds:
            return
        self._last_rotation_check = now

        if not self._path.exists():
            return
        if self._path.stat().st_size < limit * 1024 * 1024:
            return

        self.rotate()

    def rotate(self) -> Path:
        """
        Archive the current file into a tar.gz and truncate it.

        Returns:
            Path of the created archive.
        """
        stamp = datetime.now(tz=timezone.utc).strftime("%Y%m%d-%H%M%S")
        archive = self._path.with_name(f"{self._path.name}.{stamp}.tar.gz")

        with tarfile.open(archive, "w:gz") as tar:
            tar.add(self._path, arcname=self._path.name)
        self._path.write_text("", encoding="utf-8")

        self._logger.info("alert_file_rotated", archive=str(archive))
        return archive

    def validate_config(self) -> list[str]:
        errors = super().validate_config()
        if not self._file_config.file_path:
            errors.append("file_path is required")
        if self._file_config.max_size_before_compress < 0:
            errors.append("max_size_before_compress must be non-negative")
        return errors


NotifierFactory.register("file", FileNotifier)

"""
Configuration management for Quick Watch.

The watch file is a YAML document holding targets (keyed by URL), server
settings, alert channels and inbound hooks. Environment variables prefixed
with QUICK_WATCH_ override file values.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CHANNEL = "console"


class SizeAlertConfig(BaseModel):
    """Response size drift detection for a target."""

    enabled: bool = Field(default=False, description="Enable size change detection")
    history_size: int = Field(default=100, ge=1, description="Number of responses to track")
    threshold: float = Field(default=0.5, ge=0.0, description="Relative change that trips (0.5 = 50%)")


class TargetConfig(BaseModel):
    """A monitored target."""

    name: str = Field(default="", description="Display name (defaults to the URL)")
    url: str = Field(description="URL for HTTP checks, host or host:port for TCP checks")
    method: str = Field(default="GET", description="HTTP method")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra request headers")
    threshold: int | None = Field(
        default=None, ge=0, description="Seconds down before the first alert"
    )
    status_codes: list[str] = Field(
        default_factory=lambda: ["*"], description="Accepted status code patterns"
    )
    ports: list[int] = Field(default_factory=list, description="Ports for TCP checks")
    size_alerts: SizeAlertConfig = Field(default_factory=SizeAlertConfig)
    check_strategy: str = Field(default="http", description="Check strategy (http, tcp, webhook)")
    duration: int = Field(
        default=0, ge=0, description="Seconds a triggered webhook target stays down"
    )
    alerts: list[str] = Field(default_factory=list, description="Alert channel names")
    alert_strategy: str | None = Field(default=None, description="Legacy single channel name")

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper() or "GET"

    @property
    def display_name(self) -> str:
        return self.name or self.url

    @property
    def channel_names(self) -> list[str]:
        """Alert channels for this target, falling back to the console."""
        if self.alerts:
            return list(self.alerts)
        if self.alert_strategy:
            return [self.alert_strategy]
        return [DEFAULT_CHANNEL]

    def effective_threshold(self, default: int) -> int:
        return default if self.threshold is None else self.threshold


class HookAuth(BaseModel):
    """Credentials required by an inbound hook."""

    bearer_token: str = ""
    username: str = ""
    password: str = ""

    @property
    def required(self) -> bool:
        return bool(self.bearer_token or self.username)


class HookConfig(BaseModel):
    """A named inbound hook route mounted at /hooks/<name>."""

    name: str = ""
    path: str = ""
    methods: list[str] = Field(default_factory=lambda: ["POST"])
    alerts: list[str] = Field(default_factory=lambda: [DEFAULT_CHANNEL])
    auth: HookAuth = Field(default_factory=HookAuth)
    message: str = ""
    metadata: dict[str, str] = Field(default_factory=dict)


class AlertChannelConfig(BaseModel):
    """A configured notification channel."""

    name: str = ""
    type: str = Field(default=DEFAULT_CHANNEL, description="console, slack, email, file or webhook")
    enabled: bool = True
    settings: dict[str, Any] = Field(default_factory=dict)
    description: str = ""


class StartupConfig(BaseModel):
    """Announcement sent when the engine starts."""

    enabled: bool = True
    alerts: list[str] = Field(default_factory=lambda: [DEFAULT_CHANNEL])
    check_all_targets: bool = False


class StatusReportConfig(BaseModel):
    """Periodic status summaries."""

    enabled: bool = False
    interval: int = Field(default=60, ge=1, description="Minutes between reports")
    alerts: list[str] = Field(default_factory=list)


class ServerSettings(BaseModel):
    """Engine and HTTP API settings."""

    host: str = Field(default="0.0.0.0", description="API bind address")
    webhook_port: int = Field(default=8080, description="API port")
    webhook_path: str = Field(default="/webhook", description="Generic webhook intake path")
    check_interval: float = Field(default=5, gt=0, description="Seconds between checks")
    default_threshold: int = Field(default=30, ge=0, description="Default alert threshold")
    check_timeout: float = Field(default=10.0, gt=0, description="Probe timeout in seconds")
    acknowledgements_enabled: bool = False
    server_address: str = Field(default="", description="Public base URL for ack links")
    startup: StartupConfig = Field(default_factory=StartupConfig)
    status_report: StatusReportConfig = Field(default_factory=StatusReportConfig)

    @property
    def public_address(self) -> str:
        if self.server_address:
            return self.server_address.rstrip("/")
        return f"http://localhost:{self.webhook_port}"


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format (json, plain)")
    file: str | None = Field(default=None, description="Log file name (None for the default)")
    dir: str = Field(default="logs", description="Log directory")
    max_bytes: int = Field(default=10 * 1024 * 1024, ge=1024, description="Rotate after this size")
    backup_count: int = Field(default=5, ge=0, description="Rotated files to keep")


class Config(BaseSettings):
    """Main configuration for the monitoring engine."""

    model_config = SettingsConfigDict(
        env_prefix="QUICK_WATCH_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    version: str = "1.0"
    targets: dict[str, TargetConfig] = Field(default_factory=dict)
    settings: ServerSettings = Field(default_factory=ServerSettings)
    alerts: dict[str, AlertChannelConfig] = Field(default_factory=dict)
    hooks: dict[str, HookConfig] = Field(default_factory=dict)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("targets", mode="before")
    @classmethod
    def _fill_target_urls(cls, value: Any) -> Any:
        # Targets are keyed by URL; the key supplies a missing url field
        if isinstance(value, dict):
            filled: dict[str, Any] = {}
            for key, target in value.items():
                if isinstance(target, dict):
                    target = {"url": key, **target}
                    if not target.get("name"):
                        target["name"] = key
                filled[key] = target
            return filled
        return value

    @field_validator("alerts", "hooks", mode="before")
    @classmethod
    def _fill_names(cls, value: Any) -> Any:
        if isinstance(value, dict):
            filled: dict[str, Any] = {}
            for key, item in value.items():
                if isinstance(item, dict) and not item.get("name"):
                    item = {**item, "name": key}
                filled[key] = item
            return filled
        return value

    @classmethod
    def from_yaml(cls, path: str | Path) -> Config:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with path.open() as f:
            data = yaml.safe_load(f) or {}

        # Older watch files call the channel map "notifiers"
        if "alerts" not in data and "notifiers" in data:
            data["alerts"] = data.pop("notifiers")

        return cls(**data)

    @classmethod
    def load(cls, config_path: str | None = None) -> Config:
        """
        Load configuration with precedence:
        1. Environment variables (highest)
        2. Config file
        3. Defaults (lowest)
        """
        if config_path is None:
            config_path = os.getenv("QUICK_WATCH_CONFIG")

        if config_path is None:
            for candidate in [
                "watch-state.yml",
                "watch-state.yaml",
                "quick-watch.yaml",
                "config/quick-watch.yaml",
            ]:
                if Path(candidate).exists():
                    config_path = candidate
                    break

        if config_path and Path(config_path).exists():
            return cls.from_yaml(config_path)

        return cls()

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with path.open("w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)

    def find_target(self, key: str) -> TargetConfig | None:
        """Look a target up by name or URL."""
        if key in self.targets:
            return self.targets[key]
        for target in self.targets.values():
            if target.name == key or target.url == key:
                return target
        return None


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config

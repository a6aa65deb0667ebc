"""
Custom exception hierarchy for Quick Watch.

- QuickWatchError: Base exception for all quick-watch errors
- ConfigurationError: Unknown strategies, channels and invalid settings
- CheckError: A probe could not be executed at all
- DeliveryError: A notification channel failed to deliver
- AcknowledgementError: Invalid tokens and acknowledgements without an incident
- TriggerError: Virtual target lookups and triggers
- ReportUnavailableError: Status reports requested while disabled

Each exception includes:
- error_code: Machine-readable error identifier
- context: Additional structured data for debugging
- is_retryable: Whether the operation can be retried
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes for categorization and monitoring."""

    # Configuration errors (1xxx)
    CONFIG_INVALID = "QW_1001"
    CONFIG_MISSING = "QW_1002"
    CONFIG_VALIDATION = "QW_1003"
    CONFIG_UNKNOWN_CHECK = "QW_1004"
    CONFIG_UNKNOWN_CHANNEL = "QW_1005"

    # Check errors (2xxx)
    CHECK_FAILED = "QW_2001"
    CHECK_INVALID_TARGET = "QW_2002"

    # Delivery errors (3xxx)
    DELIVERY_FAILED = "QW_3001"
    DELIVERY_MISCONFIGURED = "QW_3002"

    # Acknowledgement errors (4xxx)
    ACK_INVALID_TOKEN = "QW_4001"
    ACK_NO_ACTIVE_INCIDENT = "QW_4002"

    # Trigger errors (5xxx)
    TRIGGER_TARGET_NOT_FOUND = "QW_5001"
    TRIGGER_NOT_VIRTUAL = "QW_5002"

    # Reporting errors (6xxx)
    REPORT_UNAVAILABLE = "QW_6001"

    # General errors (9xxx)
    UNKNOWN = "QW_9999"


@dataclass
class QuickWatchError(Exception):
    """
    Base exception for all Quick Watch errors.

    Provides structured error information for logging and API responses.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error identifier
        context: Additional structured data for debugging
        is_retryable: Whether the operation can be safely retried
        cause: Original exception that caused this error
    """

    message: str
    error_code: ErrorCode = ErrorCode.UNKNOWN
    context: dict[str, Any] = field(default_factory=dict)
    is_retryable: bool = False
    cause: Exception | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.error_code.value}] {self.message}"]
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f" ({context_str})")
        return "".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"context={self.context!r}, "
            f"is_retryable={self.is_retryable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging and JSON responses."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value,
            "message": self.message,
            "context": self.context,
            "is_retryable": self.is_retryable,
            "cause": str(self.cause) if self.cause else None,
        }


@dataclass
class ConfigurationError(QuickWatchError):
    """Raised when configuration is invalid or references unknown components."""

    error_code: ErrorCode = ErrorCode.CONFIG_INVALID

    @classmethod
    def missing_file(cls, path: str) -> ConfigurationError:
        """Create error for missing configuration file."""
        return cls(
            message=f"Configuration file not found: {path}",
            error_code=ErrorCode.CONFIG_MISSING,
            context={"path": path},
        )

    @classmethod
    def validation_failed(cls, field: str, value: Any, reason: str) -> ConfigurationError:
        """Create error for validation failure."""
        return cls(
            message=f"Configuration validation failed for '{field}': {reason}",
            error_code=ErrorCode.CONFIG_VALIDATION,
            context={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def unknown_check(cls, strategy: str, target: str) -> ConfigurationError:
        """Create error for a target naming an unregistered check strategy."""
        return cls(
            message=f"Unknown check strategy '{strategy}'",
            error_code=ErrorCode.CONFIG_UNKNOWN_CHECK,
            context={"strategy": strategy, "target": target},
        )

    @classmethod
    def unknown_channel(cls, channel: str) -> ConfigurationError:
        """Create error for a reference to an unconfigured alert channel."""
        return cls(
            message=f"Unknown alert channel '{channel}'",
            error_code=ErrorCode.CONFIG_UNKNOWN_CHANNEL,
            context={"channel": channel},
        )


@dataclass
class CheckError(QuickWatchError):
    """Raised when a probe cannot be attempted (as opposed to a failed probe)."""

    error_code: ErrorCode = ErrorCode.CHECK_FAILED

    @classmethod
    def invalid_target(cls, url: str, reason: str) -> CheckError:
        """Create error for a target address the strategy cannot probe."""
        return cls(
            message=f"Cannot check '{url}': {reason}",
            error_code=ErrorCode.CHECK_INVALID_TARGET,
            context={"url": url, "reason": reason},
        )


@dataclass
class DeliveryError(QuickWatchError):
    """Raised when a notification channel fails to deliver."""

    error_code: ErrorCode = ErrorCode.DELIVERY_FAILED
    is_retryable: bool = True

    @classmethod
    def send_failed(cls, channel: str, reason: str) -> DeliveryError:
        """Create error for a failed delivery attempt."""
        return cls(
            message=f"Delivery through '{channel}' failed: {reason}",
            error_code=ErrorCode.DELIVERY_FAILED,
            context={"channel": channel, "reason": reason},
        )

    @classmethod
    def misconfigured(cls, channel: str, reason: str) -> DeliveryError:
        """Create error for a channel whose settings cannot work."""
        return cls(
            message=f"Channel '{channel}' is misconfigured: {reason}",
            error_code=ErrorCode.DELIVERY_MISCONFIGURED,
            context={"channel": channel, "reason": reason},
            is_retryable=False,
        )


@dataclass
class AcknowledgementError(QuickWatchError):
    """Raised when an acknowledgement request cannot be applied."""

    error_code: ErrorCode = ErrorCode.ACK_INVALID_TOKEN


@dataclass
class InvalidTokenError(AcknowledgementError):
    """Raised for tokens that were never issued or have been revoked."""

    @classmethod
    def for_token(cls, token: str) -> InvalidTokenError:
        """Create error for an unknown token."""
        return cls(
            message="Invalid or expired acknowledgement token",
            error_code=ErrorCode.ACK_INVALID_TOKEN,
            context={"token": token},
        )


@dataclass
class NoActiveIncidentError(AcknowledgementError):
    """Raised when a token's target has no incident to acknowledge."""

    error_code: ErrorCode = ErrorCode.ACK_NO_ACTIVE_INCIDENT

    @classmethod
    def for_target(cls, target: str) -> NoActiveIncidentError:
        """Create error for a target that is not down."""
        return cls(
            message=f"Target '{target}' has no active incident",
            error_code=ErrorCode.ACK_NO_ACTIVE_INCIDENT,
            context={"target": target},
        )

    @classmethod
    def for_hook(cls, hook: str) -> NoActiveIncidentError:
        """Create error for a hook notification whose token has expired."""
        return cls(
            message=f"Notification from hook '{hook}' is no longer acknowledgeable",
            error_code=ErrorCode.ACK_NO_ACTIVE_INCIDENT,
            context={"hook": hook},
        )


@dataclass
class TriggerError(QuickWatchError):
    """Raised when a virtual target trigger cannot be applied."""

    error_code: ErrorCode = ErrorCode.TRIGGER_TARGET_NOT_FOUND


@dataclass
class TargetNotFoundError(TriggerError):
    """Raised when no target matches a trigger name or URL."""

    @classmethod
    def for_name(cls, name: str) -> TargetNotFoundError:
        """Create error for an unknown target."""
        return cls(
            message=f"Target not found: {name}",
            error_code=ErrorCode.TRIGGER_TARGET_NOT_FOUND,
            context={"target": name},
        )


@dataclass
class InvalidTriggerError(TriggerError):
    """Raised when a trigger names a target that is actively polled."""

    error_code: ErrorCode = ErrorCode.TRIGGER_NOT_VIRTUAL

    @classmethod
    def not_virtual(cls, name: str, strategy: str) -> InvalidTriggerError:
        """Create error for a polled target."""
        return cls(
            message=f"Target '{name}' uses the '{strategy}' check and cannot be triggered",
            error_code=ErrorCode.TRIGGER_NOT_VIRTUAL,
            context={"target": name, "check_strategy": strategy},
        )


@dataclass
class ReportUnavailableError(QuickWatchError):
    """Raised when a status report is requested but reporting is off."""

    error_code: ErrorCode = ErrorCode.REPORT_UNAVAILABLE

    @classmethod
    def disabled(cls) -> ReportUnavailableError:
        """Create error for disabled status reports."""
        return cls(
            message="Status reports are disabled",
            error_code=ErrorCode.REPORT_UNAVAILABLE,
            context={"reason": "disabled"},
        )

    @classmethod
    def no_channels(cls) -> ReportUnavailableError:
        """Create error for status reports without any channel."""
        return cls(
            message="No alert channels are configured for status reports",
            error_code=ErrorCode.REPORT_UNAVAILABLE,
            context={"reason": "no_channels"},
        )

"""
Base classes for check strategies.

A check strategy performs one probe of a target and reports the outcome as
a CheckResult. Ordinary network failures are outcomes, not exceptions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

import structlog

from quick_watch.exceptions import ConfigurationError

if TYPE_CHECKING:
    from quick_watch.config import TargetConfig
    from quick_watch.models import CheckResult

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class CheckStrategy(ABC):
    """
    Abstract base class for all check strategies.

    Subclasses implement ``check``. Strategies that are not ``polled`` are
    never scheduled; their targets change state only through triggers.
    """

    name: ClassVar[str] = "base"
    polled: ClassVar[bool] = True

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._timeout = timeout_seconds
        self._logger = logger.bind(strategy=self.name)

    @property
    def timeout(self) -> float:
        return self._timeout

    @abstractmethod
    def check(self, target: TargetConfig) -> CheckResult:
        """
        Probe a target once.

        Args:
            target: Target to probe.

        Returns:
            Outcome of the probe. Transport failures yield an unsuccessful
            result carrying the error text.
        """


class CheckStrategyFactory:
    """Registry mapping check strategy names to implementations."""

    _registry: ClassVar[dict[str, type[CheckStrategy]]] = {}

    @classmethod
    def register(cls, strategy_name: str, strategy_class: type[CheckStrategy]) -> None:
        cls._registry[strategy_name] = strategy_class
        logger.debug("check_strategy_registered", strategy=strategy_name)

    @classmethod
    def create(
        cls,
        strategy_name: str,
        target_name: str = "",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> CheckStrategy:
        """
        Create a check strategy instance.

        Raises:
            ConfigurationError: If the strategy name is not registered.
        """
        strategy_class = cls._registry.get(strategy_name or "http")
        if strategy_class is None:
            raise ConfigurationError.unknown_check(strategy_name, target_name)
        return strategy_class(timeout_seconds)

    @classmethod
    def available_types(cls) -> list[str]:
        return list(cls._registry.keys())

"""
Passive check strategy for webhook-triggered targets.

Webhook targets are never polled; they go down when triggered through the
API and recover when their duration runs out.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from quick_watch.checks.base import CheckStrategy, CheckStrategyFactory
from quick_watch.models import CheckResult

if TYPE_CHECKING:
    from quick_watch.config import TargetConfig


class WebhookCheck(CheckStrategy):
    """Always reports success."""

    name = "webhook"
    polled = False

    def check(self, target: TargetConfig) -> CheckResult:  # noqa: ARG002
        return CheckResult(success=True, status_code=200)


CheckStrategyFactory.register("webhook", WebhookCheck)

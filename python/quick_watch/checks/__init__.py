"""
Check strategies for probing targets.

Importing this package registers the built-in strategies (http, tcp,
webhook) with the CheckStrategyFactory.
"""

from quick_watch.checks.base import CheckStrategy, CheckStrategyFactory
from quick_watch.checks.http import HTTPCheck
from quick_watch.checks.tcp import TCPCheck
from quick_watch.checks.webhook import WebhookCheck

__all__ = [
    "CheckStrategy",
    "CheckStrategyFactory",
    "HTTPCheck",
    "TCPCheck",
    "WebhookCheck",
]

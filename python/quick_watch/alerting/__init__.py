"""
Alerting module for Quick Watch.

Notification channels and the dispatcher that fans engine events out to
them:
- Console, Slack, email, generic webhook and JSON lines file channels
- Optional acknowledgement support (links in alerts, acknowledgement notices)
- Name-based channel registry built from configuration
- Delivery counters feeding status reports

Design Patterns:
- Strategy Pattern: Pluggable notification channels
- Template Method: Common rendering and delivery workflow
- Factory Pattern: Channel creation from configuration
"""

from quick_watch.alerting.base import (
    AcknowledgementAware,
    AlertMessage,
    AlertStatus,
    BaseNotifier,
    DeliveryResult,
    MessageKind,
    NotifierConfig,
    NotifierFactory,
)
from quick_watch.alerting.console import ConsoleConfig, ConsoleNotifier
from quick_watch.alerting.dispatcher import (
    AlertDispatcher,
    CounterSnapshot,
    DeliveryCounters,
)
from quick_watch.alerting.email import EmailConfig, EmailNotifier
from quick_watch.alerting.file import FileConfig, FileNotifier
from quick_watch.alerting.slack import SlackConfig, SlackNotifier
from quick_watch.alerting.webhook import WebhookConfig, WebhookNotifier

__all__ = [
    "AcknowledgementAware",
    "AlertDispatcher",
    "AlertMessage",
    "AlertStatus",
    "BaseNotifier",
    "ConsoleConfig",
    "ConsoleNotifier",
    "CounterSnapshot",
    "DeliveryCounters",
    "DeliveryResult",
    "EmailConfig",
    "EmailNotifier",
    "FileConfig",
    "FileNotifier",
    "MessageKind",
    "NotifierConfig",
    "NotifierFactory",
    "SlackConfig",
    "SlackNotifier",
    "WebhookConfig",
    "WebhookNotifier",
]

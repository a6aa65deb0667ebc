"""
Alert suppression policy.

The first alert of an incident waits for the target's threshold. Every
later alert waits ``backoff_seconds(alert_count)`` after the previous one,
so repeats arrive after 5s, 10s, 20s, 40s and so on. Acknowledged
incidents never alert again.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from quick_watch.state import StateSnapshot

BASE_BACKOFF_SECONDS = 5


def backoff_seconds(alert_count: int) -> float:
    """
    Delay required after the ``alert_count``-th alert before the next one.

    Args:
        alert_count: Alerts already sent in the incident (1-based).

    Returns:
        ``5 * 2 ** (alert_count - 1)`` seconds; 0 before any alert.
    """
    if alert_count < 1:
        return 0.0
    return float(BASE_BACKOFF_SECONDS * 2 ** (alert_count - 1))


def should_alert(snapshot: StateSnapshot, now: datetime) -> bool:
    """
    Decide whether an alert is due for a down target.

    Args:
        snapshot: Frozen state of the target.
        now: Current time.

    Returns:
        True if an alert should be sent now.
    """
    if not snapshot.is_down or snapshot.down_since is None:
        return False
    if snapshot.is_acknowledged:
        return False

    if snapshot.alert_count == 0 or snapshot.last_alert_time is None:
        return (now - snapshot.down_since).total_seconds() >= snapshot.threshold

    elapsed = (now - snapshot.last_alert_time).total_seconds()
    return elapsed >= backoff_seconds(snapshot.alert_count)

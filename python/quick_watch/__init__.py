"""
Quick Watch - target monitoring and alerting engine

This package probes HTTP endpoints and TCP ports on a fixed interval and
drives an alerting pipeline on top of the results:
- Per-target health state machine with threshold suppression
- Exponential backoff between repeated alerts
- Acknowledgement tokens that silence an incident
- Webhook-triggered virtual targets with timed auto-recovery
- Named inbound hooks fanned out to notification channels
- Periodic status reports
"""

__version__ = "0.3.0"
__all__ = [
    "acks",
    "alerting",
    "checks",
    "config",
    "engine",
    "evaluation",
    "exceptions",
    "hooks",
    "logging",
    "models",
    "policy",
    "reporting",
    "scheduler",
    "server",
    "service",
    "state",
    "virtual",
]

"""Logging and metrics shared by the bridge services."""

from .logging import (
    RequestContextMiddleware,
    bind_alert_context,
    configure_logging,
    get_alert_context,
)
from .metrics import record_action, record_notification, setup_metrics

__all__ = [
    "RequestContextMiddleware",
    "bind_alert_context",
    "configure_logging",
    "get_alert_context",
    "record_action",
    "record_notification",
    "setup_metrics",
]

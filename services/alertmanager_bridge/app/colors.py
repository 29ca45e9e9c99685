"""Attachment colors for alert notifications."""

from __future__ import annotations

from .config import AlertConfig

STATE_FIRING = "firing"
STATE_ACKED = "acked"
STATE_RESOLVED = "resolved"

COLOR_FIRING = "#FF0000"
COLOR_ACKNOWLEDGED = "#9013FE"
COLOR_RESOLVED = "#008000"
COLOR_EXPIRED = "#F0F8FF"

SEVERITY_COLORS = {
    "critical": "#FF0000",
    "error": "#F5A623",
    "warning": "#F8E71C",
    "info": "#0080FF",
    "debug": "#87CEEB",
}

_STATE_DEFAULTS = {
    STATE_ACKED: COLOR_ACKNOWLEDGED,
    STATE_RESOLVED: COLOR_RESOLVED,
}


def resolve_color(alert_config: AlertConfig, severity: str, state: str) -> str:
    """Return the display color for an alert.

    Acknowledged and resolved alerts use their state color whatever the
    severity. Firing alerts prefer, in order: the configured severity color,
    the configured firing color, the built-in severity color, plain red.
    """

    if state in _STATE_DEFAULTS:
        override = alert_config.state_colors.get(state)
        if override:
            return override
        return _STATE_DEFAULTS[state]

    if state == STATE_FIRING:
        if severity:
            override = alert_config.severity_colors.get(severity)
            if override:
                return override
        override = alert_config.state_colors.get(STATE_FIRING)
        if override:
            return override
        return SEVERITY_COLORS.get(severity, COLOR_FIRING)

    return COLOR_FIRING

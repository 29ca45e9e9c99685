"""Rendering of operator supplied alert templates."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from jinja2 import TemplateError
from jinja2.sandbox import SandboxedEnvironment

from .schemas import WebhookAlert

RFC1123 = "%a, %d %b %Y %H:%M:%S %Z"

DEFAULT_FIRING_TEMPLATE = """🔥 **{{ Labels.alertname }}**

{% if Annotations.summary %}**Summary:** {{ Annotations.summary }}{% endif %}
{% if Annotations.description %}**Description:** {{ Annotations.description }}{% endif %}

**Severity:** {{ Labels.severity }}
**Started at:** {{ StartsAt | formatTimestamp }}"""

DEFAULT_RESOLVED_TEMPLATE = """✅ **{{ Labels.alertname }} - RESOLVED**

{% if Annotations.summary %}**Summary:** {{ Annotations.summary }}{% endif %}

**Started at:** {{ StartsAt | formatTimestamp }}
**Resolved at:** {{ EndsAt | formatTimestamp }}
**Duration:** {{ EndsAt - StartsAt }}"""


class TemplateRenderingError(Exception):
    """Raised when a custom template cannot be compiled or rendered."""


def format_timestamp(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime(RFC1123)
    return str(value)


def uppercase(value: Any) -> str:
    return str(value).upper()


class AlertTemplateRenderer:
    """Render custom templates against an alert's structured data."""

    def __init__(self) -> None:
        self._environment = SandboxedEnvironment(
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        helpers = {
            "uppercase": uppercase,
            "formatTimestamp": format_timestamp,
            "toUpper": uppercase,
            "formatTime": format_timestamp,
        }
        self._environment.filters.update(helpers)
        self._environment.globals.update(helpers)

    def render(self, template: str, alert: WebhookAlert) -> str:
        if not template:
            return ""
        context = {
            "alert": alert,
            "Status": alert.status,
            "Fingerprint": alert.fingerprint,
            "Labels": dict(alert.labels),
            "Annotations": dict(alert.annotations),
            "StartsAt": alert.starts_at,
            "EndsAt": alert.ends_at,
            "GeneratorURL": alert.generator_url,
        }
        try:
            compiled = self._environment.from_string(template)
            return compiled.render(context)
        except TemplateError as exc:
            raise TemplateRenderingError(f"failed to render template: {exc}") from exc
        except Exception as exc:
            raise TemplateRenderingError(f"failed to execute template: {exc}") from exc

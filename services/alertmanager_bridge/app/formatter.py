"""Turn alerts into the chat notification representation."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from .actions import default_buttons
from .attachments import Attachment, AttachmentField, RenderedMessage
from .colors import STATE_ACKED, STATE_FIRING, STATE_RESOLVED, resolve_color
from .config import AlertConfig
from .schemas import WebhookAlert
from .templates import RFC1123, AlertTemplateRenderer, TemplateRenderingError

logger = logging.getLogger(__name__)

TITLE_FIRING = "🔥 FIRING 🔥"
TITLE_ACKED = "👁️ ACKNOWLEDGED 👁️"
TITLE_RESOLVED = "✅ RESOLVED ✅"
CONFIG_ID_LABEL = "AlertManager Config ID"

_TITLES = {
    STATE_FIRING: TITLE_FIRING,
    STATE_ACKED: TITLE_ACKED,
    STATE_RESOLVED: TITLE_RESOLVED,
}

_UNITS = (
    ("week", 7 * 24 * 3600),
    ("day", 24 * 3600),
    ("hour", 3600),
    ("minute", 60),
    ("second", 1),
)


def humanize_duration(delta: timedelta, limit: int = 2) -> str:
    """Render ``delta`` with its first ``limit`` non-zero units, largest first."""

    total = int(abs(delta.total_seconds()))
    parts: list[str] = []
    for name, size in _UNITS:
        amount, total = divmod(total, size)
        if amount:
            parts.append(f"{amount} {name}{'' if amount == 1 else 's'}")
        if len(parts) == limit:
            break
    if not parts:
        return "0 seconds"
    rendered = " ".join(parts)
    return f"-{rendered}" if delta.total_seconds() < 0 else rendered


def title_for(state: str) -> str:
    return _TITLES.get(state, TITLE_FIRING)


def _title_case(key: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in key.split(" "))


def _key_value_lines(values: Mapping[str, Any]) -> str:
    return "".join(f"**{_title_case(key)}:** {values[key]}\n" for key in sorted(values))


class NotificationFormatter:
    """Build :class:`RenderedMessage` instances for every lifecycle state."""

    def __init__(
        self,
        renderer: AlertTemplateRenderer | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._renderer = renderer or AlertTemplateRenderer()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def format(
        self,
        alert_config: AlertConfig,
        alert: WebhookAlert,
        external_url: str,
        receiver: str,
        state: str,
        *,
        action_url: str = "",
    ) -> RenderedMessage:
        color = resolve_color(alert_config, alert.severity, state)

        leading = ""
        if state != STATE_RESOLVED and alert.severity:
            leading = alert_config.severity_mentions.get(alert.severity, "")

        actions = ()
        if state != STATE_RESOLVED and alert_config.enable_actions:
            if action_url:
                actions = default_buttons(alert_config, alert.fingerprint, action_url)
            else:
                logger.warning(
                    "Site URL is not configured, action buttons are omitted",
                    extra={"config_id": alert_config.id, "fingerprint": alert.fingerprint},
                )

        template = (
            alert_config.resolved_template if state == STATE_RESOLVED else alert_config.firing_template
        )
        if template:
            try:
                custom = self._renderer.render(template, alert)
            except TemplateRenderingError as exc:
                logger.error(
                    "Custom template failed, falling back to the default layout: %s",
                    exc,
                    extra={"config_id": alert_config.id, "fingerprint": alert.fingerprint},
                )
            else:
                text = f"{leading}\n\n{custom}" if leading else custom
                return RenderedMessage(text=text, attachment=Attachment(color=color, actions=actions))

        fields = self._default_fields(alert_config, alert, external_url, receiver, state)
        return RenderedMessage(
            text=leading,
            attachment=Attachment(color=color, fields=fields, actions=actions),
        )

    def _default_fields(
        self,
        alert_config: AlertConfig,
        alert: WebhookAlert,
        external_url: str,
        receiver: str,
        state: str,
    ) -> tuple[AttachmentField, AttachmentField]:
        now = self._clock()
        body = _key_value_lines(alert.annotations)
        body += " \n"
        if state == STATE_RESOLVED:
            body += f"**Started at:** {alert.starts_at.strftime(RFC1123)}\n"
            body += f"**Ended at:** {alert.ends_at.strftime(RFC1123)}\n"
            body += f"**Duration:** {humanize_duration(alert.ends_at - alert.starts_at)}\n"
        else:
            body += (
                f"**Started at:** {alert.starts_at.strftime(RFC1123)} "
                f"({humanize_duration(now - alert.starts_at)} ago)\n"
            )
        body += " \n"
        body += (
            f"Generated by a [Prometheus Alert]({alert.generator_url}) and sent to the "
            f"[Alertmanager]({external_url}) '{receiver}' receiver."
        )

        labels = {**alert.labels, CONFIG_ID_LABEL: alert_config.id}
        return (
            AttachmentField(title=title_for(state), value=body, short=True),
            AttachmentField(title="", value=_key_value_lines(labels), short=True),
        )


__all__ = [
    "CONFIG_ID_LABEL",
    "NotificationFormatter",
    "TITLE_ACKED",
    "TITLE_FIRING",
    "TITLE_RESOLVED",
    "humanize_duration",
    "title_for",
]

"""Alert lifecycle engine.

Per fingerprint the notification moves through
``no notification -> firing <-> acknowledged -> resolved``. Silences are an
annotation on top of those states. Every transition runs under the store's
per-fingerprint lock so the "is there already a handle" check and the write
that follows cannot interleave with another delivery for the same alert.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable

from libs.observability import bind_alert_context, record_action, record_notification

from .actions import (
    ACTION_ACK,
    ACTION_UNACK,
    AckCommand,
    ActionCommand,
    ExpireSilenceCommand,
    SilenceCommand,
    UnackCommand,
    expire_button,
    remove_expire_button,
    swap_ack_button,
)
from .attachments import AttachmentField, RenderedMessage
from .clients import AlertmanagerClient, MessageRef, MessagingClient
from .colors import COLOR_EXPIRED, STATE_ACKED, STATE_FIRING, STATE_RESOLVED, resolve_color
from .config import AlertConfig, ConfigurationHolder
from .errors import BridgeError, ExternalServiceError, NotFound
from .formatter import TITLE_ACKED, TITLE_FIRING, NotificationFormatter, humanize_duration
from .schemas import AlertOutcome, WebhookAlert, WebhookMessage
from .store import AcknowledgmentRecord, AlertStateStore, NotificationHandle
from .templates import RFC1123

logger = logging.getLogger(__name__)

OUTCOME_CREATED = "created"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_RESOLVED = "resolved"
OUTCOME_FAILED = "failed"


@dataclass(slots=True)
class ActionResult:
    """What the actor sees after clicking a button."""

    message: str
    update: RenderedMessage | None = None


class AlertLifecycleEngine:
    """Apply webhook alerts and button commands to the store and the chat platform."""

    def __init__(
        self,
        store: AlertStateStore,
        messaging: MessagingClient,
        alertmanager: AlertmanagerClient,
        configuration: ConfigurationHolder,
        *,
        formatter: NotificationFormatter | None = None,
        action_url: str = "",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._messaging = messaging
        self._alertmanager = alertmanager
        self._configuration = configuration
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._formatter = formatter or NotificationFormatter(clock=self._clock)
        self._action_url = action_url

    # Webhook ingestion

    async def handle_webhook(
        self, alert_config: AlertConfig, message: WebhookMessage
    ) -> list[AlertOutcome]:
        """Process every alert of a delivery independently of its siblings."""

        results: list[AlertOutcome] = []
        for alert in message.alerts:
            with bind_alert_context(alert.fingerprint, alert_config.id):
                try:
                    outcome = await self.process_alert(
                        alert_config, alert, message.external_url, message.receiver
                    )
                except Exception as exc:
                    logger.exception("Failed to process %s alert", alert.status)
                    record_notification(alert_config.id, OUTCOME_FAILED)
                    results.append(
                        AlertOutcome(
                            fingerprint=alert.fingerprint, outcome=OUTCOME_FAILED, detail=str(exc)
                        )
                    )
                    continue
            record_notification(alert_config.id, outcome)
            results.append(AlertOutcome(fingerprint=alert.fingerprint, outcome=outcome))
        return results

    async def process_alert(
        self,
        alert_config: AlertConfig,
        alert: WebhookAlert,
        external_url: str,
        receiver: str,
    ) -> str:
        async with self._store.lock(alert.fingerprint):
            handle = await self._store.get_handle(alert.fingerprint)
            if alert.is_resolved:
                if handle is None:
                    logger.warning("No notification found for resolved alert, treating it as firing")
                    await self._create(alert_config, alert, external_url, receiver)
                    return OUTCOME_CREATED
                await self._resolve(alert_config, alert, external_url, receiver, handle)
                return OUTCOME_RESOLVED

            if handle is not None:
                logger.debug("Alert already has notification %s, skipping", handle.message_id)
                return OUTCOME_DUPLICATE
            await self._create(alert_config, alert, external_url, receiver)
            return OUTCOME_CREATED

    async def _create(
        self,
        alert_config: AlertConfig,
        alert: WebhookAlert,
        external_url: str,
        receiver: str,
    ) -> None:
        rendered = self._formatter.format(
            alert_config, alert, external_url, receiver, STATE_FIRING, action_url=self._action_url
        )
        channel_id = await self._messaging.resolve_channel(alert_config.team, alert_config.channel)
        ref = await self._messaging.create_message(channel_id, rendered.text, rendered.attachment)

        handle = NotificationHandle(
            message_id=ref.message_id,
            channel_id=ref.channel_id,
            config_id=alert_config.id,
            message=rendered,
            severity=alert.severity,
            labels=dict(alert.labels),
        )
        await self._store.put_handle(alert.fingerprint, handle)
        logger.info("Created notification %s for firing alert", ref.message_id)

    async def _resolve(
        self,
        alert_config: AlertConfig,
        alert: WebhookAlert,
        external_url: str,
        receiver: str,
        handle: NotificationHandle,
    ) -> None:
        rendered = self._formatter.format(
            alert_config, alert, external_url, receiver, STATE_RESOLVED, action_url=self._action_url
        )
        try:
            await self._messaging.update_message(handle.ref, rendered.text, rendered.attachment)
        except BridgeError as exc:
            logger.error("Failed to update notification %s: %s", handle.message_id, exc.message)
        else:
            duration = alert.ends_at - alert.starts_at
            summary = (
                "✅ **Alert Resolved**\n\n"
                f"**Fired at:** {alert.starts_at.strftime(RFC1123)}\n"
                f"**Resolved at:** {alert.ends_at.strftime(RFC1123)}\n"
                f"**Duration:** {humanize_duration(duration)}"
            )
            try:
                await self._messaging.create_reply(handle.ref, summary)
            except BridgeError as exc:
                logger.error("Failed to reply to notification %s: %s", handle.message_id, exc.message)

        await self._store.delete_handle(alert.fingerprint)
        await self._store.delete_ack(alert.fingerprint)
        logger.info("Resolved notification %s", handle.message_id)

    # Button actions

    async def handle_action(self, command: ActionCommand) -> ActionResult:
        action = _action_name(command)
        fingerprint = getattr(command, "fingerprint", "") or None
        with bind_alert_context(fingerprint, getattr(command, "config_id", None)):
            try:
                if isinstance(command, AckCommand):
                    result = await self.acknowledge(command)
                elif isinstance(command, UnackCommand):
                    result = await self.unacknowledge(command)
                elif isinstance(command, SilenceCommand):
                    result = await self.silence(command)
                elif isinstance(command, ExpireSilenceCommand):
                    result = await self.expire_silence(command)
                else:
                    raise TypeError(f"Unsupported command: {command!r}")
            except BridgeError:
                record_action(action, "rejected")
                raise
        record_action(action, "ok")
        return result

    async def acknowledge(self, command: AckCommand) -> ActionResult:
        username = await self._messaging.get_username(command.user_id)
        now = self._clock()
        async with self._store.lock(command.fingerprint):
            handle = await self._require_handle(command.fingerprint)
            record = AcknowledgmentRecord(
                user_id=command.user_id,
                username=username,
                timestamp=int(now.timestamp() * 1000),
            )
            await self._store.put_ack(command.fingerprint, record)
            handle = await self._swap(handle, command.fingerprint, ACTION_UNACK, STATE_ACKED, TITLE_ACKED)

        logger.info("Alert acknowledged by %s", username)
        reply = f"👁️ **Alert Acknowledged**\n\nBy: @{username}\nAt: {now.strftime(RFC1123)}"
        await self._publish(handle, reply)
        return ActionResult(message=f"👁️ Acknowledged by @{username}", update=handle.message)

    async def unacknowledge(self, command: UnackCommand) -> ActionResult:
        username = await self._messaging.get_username(command.user_id)
        now = self._clock()
        async with self._store.lock(command.fingerprint):
            handle = await self._require_handle(command.fingerprint)
            await self._store.delete_ack(command.fingerprint)
            handle = await self._swap(handle, command.fingerprint, ACTION_ACK, STATE_FIRING, TITLE_FIRING)

        logger.info("Alert unacknowledged by %s", username)
        reply = f"🔄 **Alert Unacknowledged**\n\nBy: @{username}\nAt: {now.strftime(RFC1123)}"
        await self._publish(handle, reply)
        return ActionResult(message=f"🔄 Unacknowledged by @{username}", update=handle.message)

    async def silence(self, command: SilenceCommand) -> ActionResult:
        alert_config = self._require_config(command.config_id)
        username = await self._messaging.get_username(command.user_id)
        async with self._store.lock(command.fingerprint):
            handle = await self._store.get_handle(command.fingerprint)
            labels = handle.labels if handle is not None else command.labels
            silence_id = await self._alertmanager.create_silence(
                alert_config.alertmanager_url,
                labels,
                command.duration,
                created_by=username,
                comment=f"Silenced for {command.duration_label} by @{username} from chat",
            )
            logger.info("Silence %s created by %s", silence_id, username)

            if handle is not None and alert_config.enable_actions and self._action_url:
                attachment = handle.message.attachment
                button = expire_button(
                    self._action_url, command.fingerprint, alert_config.id, silence_id
                )
                attachment = replace(attachment, actions=(*attachment.actions, button))
                handle = replace(handle, message=replace(handle.message, attachment=attachment))
                await self._store.put_handle(command.fingerprint, handle)

        until = self._clock() + command.duration
        reply = (
            f"🔕 **Silenced for {command.duration_label}**\n\n"
            f"By: @{username}\nUntil: {until.strftime(RFC1123)}"
        )
        message = f"🔕 Silenced for {command.duration_label} by @{username}"
        if handle is None:
            ref = await self._lookup_ref(command.message_id)
            if ref is not None:
                await self._messaging.create_reply(ref, reply)
            return ActionResult(message=message)

        await self._publish(handle, reply)
        return ActionResult(message=message, update=handle.message)

    async def expire_silence(
        self, command: ExpireSilenceCommand, alert_config: AlertConfig | None = None
    ) -> ActionResult:
        alert_config = alert_config or self._require_config(command.config_id)
        await self._alertmanager.expire_silence(alert_config.alertmanager_url, command.silence_id)
        message = f"Silence {command.silence_id} expired."

        try:
            username: str | None = await self._messaging.get_username(command.user_id)
        except BridgeError as exc:
            logger.warning("Could not resolve user %s: %s", command.user_id, exc.message)
            username = None
        expired_by = f"Silence expired by @{username}" if username else "Silence expired"

        handle = None
        if command.fingerprint:
            async with self._store.lock(command.fingerprint):
                handle = await self._store.get_handle(command.fingerprint)
                if handle is not None:
                    attachment, _ = remove_expire_button(handle.message.attachment, command.silence_id)
                    attachment = replace(
                        attachment,
                        color=COLOR_EXPIRED,
                        fields=(
                            *attachment.fields,
                            AttachmentField(title="Expired by", value=expired_by, short=False),
                        ),
                    )
                    handle = replace(handle, message=replace(handle.message, attachment=attachment))
                    await self._store.put_handle(command.fingerprint, handle)

        reply = f"🔔 **Silence expired**\n\n{expired_by} ({command.silence_id})"
        if handle is None:
            ref = await self._lookup_ref(command.message_id)
            if ref is not None:
                await self._messaging.create_reply(ref, reply)
            return ActionResult(message=message)

        await self._publish(handle, reply)
        return ActionResult(message=message, update=handle.message)

    # Helpers

    def _require_config(self, config_id: str) -> AlertConfig:
        alert_config = self._configuration.get().get(config_id)
        if alert_config is None:
            raise NotFound("Config not found")
        return alert_config

    async def _require_handle(self, fingerprint: str) -> NotificationHandle:
        handle = await self._store.get_handle(fingerprint)
        if handle is None:
            raise NotFound("No active notification for this alert")
        return handle

    async def _swap(
        self,
        handle: NotificationHandle,
        fingerprint: str,
        target: str,
        state: str,
        title: str,
    ) -> NotificationHandle:
        alert_config = self._configuration.get().get(handle.config_id) or AlertConfig(
            id=handle.config_id
        )
        attachment = swap_ack_button(
            handle.message.attachment,
            fingerprint,
            target,
            action_url=self._action_url,
            color=resolve_color(alert_config, handle.severity, state),
            title=title,
        )
        handle = replace(handle, message=replace(handle.message, attachment=attachment))
        await self._store.put_handle(fingerprint, handle)
        return handle

    async def _publish(self, handle: NotificationHandle, reply: str) -> None:
        """Push the stored representation to the chat platform and reply in thread.

        Both calls are attempted; the first failure is raised afterwards. The
        store is not rolled back.
        """

        failure: BridgeError | None = None
        try:
            await self._messaging.update_message(
                handle.ref, handle.message.text, handle.message.attachment
            )
        except BridgeError as exc:
            logger.error("Failed to update notification %s: %s", handle.message_id, exc.message)
            failure = exc
        try:
            await self._messaging.create_reply(handle.ref, reply)
        except BridgeError as exc:
            logger.error("Failed to reply to notification %s: %s", handle.message_id, exc.message)
            failure = failure or exc
        if failure is not None:
            raise failure

    async def _lookup_ref(self, message_id: str) -> MessageRef | None:
        if not message_id:
            return None
        try:
            data = await self._messaging.get_message(MessageRef(message_id=message_id, channel_id=""))
        except (NotFound, ExternalServiceError) as exc:
            logger.warning("Could not load message %s: %s", message_id, exc.message)
            return None
        return MessageRef(message_id=message_id, channel_id=data.get("channel_id", ""))


def _action_name(command: ActionCommand) -> str:
    return {
        AckCommand: "ack",
        UnackCommand: "unack",
        SilenceCommand: "silence",
        ExpireSilenceCommand: "expire",
    }.get(type(command), "unknown")


__all__ = ["ActionResult", "AlertLifecycleEngine"]

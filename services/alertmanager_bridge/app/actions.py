"""Action button codec.

A button carries an opaque context dictionary that the chat platform posts
back verbatim when the button is clicked. ``encode_action`` writes that
context and ``decode_action`` turns it back into one of a closed set of typed
commands, raising :class:`InvalidPayload` for anything else.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Mapping, Union

from .attachments import ActionButton, Attachment
from .config import AlertConfig
from .errors import InvalidPayload

ACTION_SILENCE = "silence"
ACTION_ACK = "ack"
ACTION_UNACK = "unack"
ACTION_EXPIRE = "expire"

ACTIONS = frozenset({ACTION_SILENCE, ACTION_ACK, ACTION_UNACK, ACTION_EXPIRE})

DEFAULT_SILENCE_DURATIONS = ("1h", "4h")

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_FULL = re.compile(r"(?:\d+(?:\.\d+)?(?:ms|h|m|s))+")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


@dataclass(frozen=True, slots=True)
class SilenceCommand:
    fingerprint: str
    config_id: str
    duration: timedelta
    duration_label: str
    user_id: str
    message_id: str
    labels: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AckCommand:
    fingerprint: str
    user_id: str
    message_id: str


@dataclass(frozen=True, slots=True)
class UnackCommand:
    fingerprint: str
    user_id: str
    message_id: str


@dataclass(frozen=True, slots=True)
class ExpireSilenceCommand:
    silence_id: str
    config_id: str
    fingerprint: str
    user_id: str
    message_id: str


ActionCommand = Union[SilenceCommand, AckCommand, UnackCommand, ExpireSilenceCommand]


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as ``1h``, ``90s`` or ``1h30m``."""

    text = value.strip()
    if not text or not _DURATION_FULL.fullmatch(text):
        raise InvalidPayload(f"Invalid duration: {value!r}")
    seconds = sum(
        float(amount) * _UNIT_SECONDS[unit] for amount, unit in _DURATION_PART.findall(text)
    )
    if seconds <= 0:
        raise InvalidPayload(f"Invalid duration: {value!r}")
    return timedelta(seconds=seconds)


def encode_action(
    action: str,
    fingerprint: str,
    *,
    config_id: str | None = None,
    duration: str | None = None,
    silence_id: str | None = None,
) -> dict[str, Any]:
    """Return the context dictionary embedded in a button for ``action``."""

    if action not in ACTIONS:
        raise ValueError(f"Unsupported action: {action}")
    context: dict[str, Any] = {"action": action, "fingerprint": fingerprint}
    if action == ACTION_SILENCE:
        if not config_id or not duration:
            raise ValueError("silence actions need a config id and a duration")
        context["config_id"] = config_id
        context["duration"] = duration
    elif action == ACTION_EXPIRE:
        if not config_id or not silence_id:
            raise ValueError("expire actions need a config id and a silence id")
        context["config_id"] = config_id
        context["silence_id"] = silence_id
    return context


def _required_str(context: Mapping[str, Any], key: str, action: str) -> str:
    value = context.get(key)
    if not isinstance(value, str) or not value:
        raise InvalidPayload(f"Missing or invalid {key} for {action} action")
    return value


def action_of(context: Mapping[str, Any] | None) -> str | None:
    """Return the discriminator of a button context, or ``None`` if unknown."""

    if not isinstance(context, Mapping):
        return None
    action = context.get("action")
    if isinstance(action, str) and action in ACTIONS:
        return action
    return None


def decode_action(
    context: Mapping[str, Any] | None,
    *,
    user_id: str,
    message_id: str,
) -> ActionCommand:
    """Validate a posted button context and return the matching command.

    ``user_id`` must come from the authenticated integration request; any
    identity found inside ``context`` is ignored.
    """

    if not isinstance(context, Mapping):
        raise InvalidPayload("Invalid action context")
    action = action_of(context)
    if action is None:
        raise InvalidPayload("Unknown action")

    if action == ACTION_EXPIRE:
        silence_id = _required_str(context, "silence_id", action)
        config_id = _required_str(context, "config_id", action)
        fingerprint = context.get("fingerprint")
        return ExpireSilenceCommand(
            silence_id=silence_id,
            config_id=config_id,
            fingerprint=fingerprint if isinstance(fingerprint, str) else "",
            user_id=user_id,
            message_id=message_id,
        )

    fingerprint = _required_str(context, "fingerprint", action)
    if action == ACTION_ACK:
        return AckCommand(fingerprint=fingerprint, user_id=user_id, message_id=message_id)
    if action == ACTION_UNACK:
        return UnackCommand(fingerprint=fingerprint, user_id=user_id, message_id=message_id)

    config_id = _required_str(context, "config_id", action)
    duration_label = _required_str(context, "duration", action)
    labels = context.get("labels")
    if labels is not None and not isinstance(labels, Mapping):
        raise InvalidPayload("Invalid labels for silence action")
    return SilenceCommand(
        fingerprint=fingerprint,
        config_id=config_id,
        duration=parse_duration(duration_label),
        duration_label=duration_label,
        user_id=user_id,
        message_id=message_id,
        labels=dict(labels or {}),
    )


def silence_button(action_url: str, fingerprint: str, config_id: str, duration: str) -> ActionButton:
    return ActionButton(
        id=f"silence{duration}",
        name=f"🔕 Silence {duration}",
        url=action_url,
        context=encode_action(
            ACTION_SILENCE, fingerprint, config_id=config_id, duration=duration
        ),
    )


def ack_button(action_url: str, fingerprint: str) -> ActionButton:
    return ActionButton(
        id="ack",
        name="👁️ ACK",
        url=action_url,
        context=encode_action(ACTION_ACK, fingerprint),
    )


def unack_button(action_url: str, fingerprint: str) -> ActionButton:
    return ActionButton(
        id="unack",
        name="🔄 UNACK",
        url=action_url,
        context=encode_action(ACTION_UNACK, fingerprint),
    )


def expire_button(
    action_url: str, fingerprint: str, config_id: str, silence_id: str
) -> ActionButton:
    return ActionButton(
        id=f"expire{re.sub(r'[^A-Za-z0-9]', '', silence_id)}",
        name="🔔 Expire silence",
        url=action_url,
        context=encode_action(
            ACTION_EXPIRE, fingerprint, config_id=config_id, silence_id=silence_id
        ),
    )


def default_buttons(
    alert_config: AlertConfig, fingerprint: str, action_url: str
) -> tuple[ActionButton, ...]:
    """Buttons rendered on a freshly fired alert."""

    buttons = [
        silence_button(action_url, fingerprint, alert_config.id, duration)
        for duration in DEFAULT_SILENCE_DURATIONS
    ]
    buttons.append(ack_button(action_url, fingerprint))
    return tuple(buttons)


def swap_ack_button(
    attachment: Attachment,
    fingerprint: str,
    target: str,
    *,
    action_url: str,
    color: str,
    title: str,
) -> Attachment:
    """Replace the ACK button by UNACK (``target="unack"``) or the reverse.

    The button is found by its decoded discriminator, never by position;
    silence, expire and unrelated buttons are kept in place. Color and the
    first field title are always rewritten.
    """

    if target == ACTION_UNACK:
        source, build = ACTION_ACK, unack_button
    elif target == ACTION_ACK:
        source, build = ACTION_UNACK, ack_button
    else:
        raise ValueError(f"Unsupported swap target: {target}")

    actions = []
    for button in attachment.actions:
        if action_of(button.context) == source:
            actions.append(build(button.url or action_url, fingerprint))
        else:
            actions.append(button)

    updated = replace(attachment, actions=tuple(actions), color=color)
    return updated.with_title(title)


def remove_expire_button(attachment: Attachment, silence_id: str) -> tuple[Attachment, bool]:
    """Drop the expire button bound to ``silence_id``; report whether one was found."""

    kept = []
    found = False
    for button in attachment.actions:
        if action_of(button.context) == ACTION_EXPIRE and button.context.get("silence_id") == silence_id:
            found = True
            continue
        kept.append(button)
    return replace(attachment, actions=tuple(kept)), found


__all__ = [
    "ACTIONS",
    "ACTION_ACK",
    "ACTION_EXPIRE",
    "ACTION_SILENCE",
    "ACTION_UNACK",
    "AckCommand",
    "ActionCommand",
    "ExpireSilenceCommand",
    "SilenceCommand",
    "UnackCommand",
    "action_of",
    "decode_action",
    "default_buttons",
    "encode_action",
    "expire_button",
    "parse_duration",
    "remove_expire_button",
    "swap_ack_button",
]

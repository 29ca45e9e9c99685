"""Closed message representation authored by the formatter.

These types are what the engine persists alongside a notification handle and
what it edits when a button is clicked. They are converted to the chat
platform's attachment props only when a request leaves the process.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(frozen=True, slots=True)
class AttachmentField:
    title: str
    value: str
    short: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "value": self.value, "short": self.short}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AttachmentField":
        return cls(
            title=str(data.get("title", "")),
            value=str(data.get("value", "")),
            short=bool(data.get("short", True)),
        )


@dataclass(frozen=True, slots=True)
class ActionButton:
    id: str
    name: str
    url: str
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": "button",
            "integration": {"url": self.url, "context": dict(self.context)},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActionButton":
        integration = data.get("integration") or {}
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            url=str(integration.get("url", "")),
            context=dict(integration.get("context") or {}),
        )


@dataclass(frozen=True, slots=True)
class Attachment:
    color: str
    text: str = ""
    fields: tuple[AttachmentField, ...] = ()
    actions: tuple[ActionButton, ...] = ()

    def with_title(self, title: str) -> "Attachment":
        """Return a copy whose first field carries ``title``."""

        if not self.fields:
            return self
        first = replace(self.fields[0], title=title)
        return replace(self, fields=(first, *self.fields[1:]))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"color": self.color}
        if self.text:
            payload["text"] = self.text
        if self.fields:
            payload["fields"] = [item.to_dict() for item in self.fields]
        if self.actions:
            payload["actions"] = [action.to_dict() for action in self.actions]
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attachment":
        return cls(
            color=str(data.get("color", "")),
            text=str(data.get("text", "")),
            fields=tuple(AttachmentField.from_dict(item) for item in data.get("fields") or ()),
            actions=tuple(ActionButton.from_dict(item) for item in data.get("actions") or ()),
        )


@dataclass(frozen=True, slots=True)
class RenderedMessage:
    """Leading text plus the single attachment of a notification."""

    text: str
    attachment: Attachment

    def to_props(self) -> dict[str, Any]:
        return {"attachments": [self.attachment.to_dict()]}

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "attachment": self.attachment.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RenderedMessage":
        return cls(
            text=str(data.get("text", "")),
            attachment=Attachment.from_dict(data.get("attachment") or {}),
        )


__all__ = ["ActionButton", "Attachment", "AttachmentField", "RenderedMessage"]

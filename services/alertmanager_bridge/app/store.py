"""Durable per-fingerprint alert state."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from .attachments import RenderedMessage
from .clients import MessageRef
from .models import AlertStateEntry

HANDLE_PREFIX = "handle:"
ACK_PREFIX = "ack:"


@dataclass(frozen=True, slots=True)
class NotificationHandle:
    """The single chat message representing an alert, plus what we rendered into it."""

    message_id: str
    channel_id: str
    config_id: str
    message: RenderedMessage
    severity: str = ""
    labels: dict[str, Any] = field(default_factory=dict)

    @property
    def ref(self) -> MessageRef:
        return MessageRef(message_id=self.message_id, channel_id=self.channel_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "channel_id": self.channel_id,
            "config_id": self.config_id,
            "severity": self.severity,
            "labels": dict(self.labels),
            "message": self.message.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NotificationHandle":
        return cls(
            message_id=data["message_id"],
            channel_id=data.get("channel_id", ""),
            config_id=data.get("config_id", ""),
            severity=data.get("severity", ""),
            labels=dict(data.get("labels") or {}),
            message=RenderedMessage.from_dict(data.get("message") or {}),
        )


@dataclass(frozen=True, slots=True)
class AcknowledgmentRecord:
    user_id: str
    username: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {"user_id": self.user_id, "username": self.username, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AcknowledgmentRecord":
        return cls(
            user_id=data.get("user_id", ""),
            username=data.get("username", ""),
            timestamp=int(data.get("timestamp", 0)),
        )


class _KeyedLocks:
    """Hand out one asyncio lock per key, forgetting locks nobody holds."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if not self._waiters[key]:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class AlertStateStore:
    """Key-value store mapping fingerprints to handles and acknowledgments.

    Every operation is idempotent. Callers that read and then write the same
    fingerprint must do so inside ``lock(fingerprint)``.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._locks = _KeyedLocks()

    def lock(self, fingerprint: str):
        return self._locks.hold(fingerprint)

    async def put_handle(self, fingerprint: str, handle: NotificationHandle) -> None:
        await self._set(HANDLE_PREFIX + fingerprint, handle.to_dict())

    async def get_handle(self, fingerprint: str) -> NotificationHandle | None:
        data = await self._get(HANDLE_PREFIX + fingerprint)
        if data is None:
            return None
        return NotificationHandle.from_dict(data)

    async def delete_handle(self, fingerprint: str) -> None:
        await self._delete(HANDLE_PREFIX + fingerprint)

    async def put_ack(self, fingerprint: str, record: AcknowledgmentRecord) -> None:
        await self._set(ACK_PREFIX + fingerprint, record.to_dict())

    async def get_ack(self, fingerprint: str) -> AcknowledgmentRecord | None:
        data = await self._get(ACK_PREFIX + fingerprint)
        if data is None:
            return None
        return AcknowledgmentRecord.from_dict(data)

    async def delete_ack(self, fingerprint: str) -> None:
        await self._delete(ACK_PREFIX + fingerprint)

    async def _set(self, key: str, value: dict[str, Any]) -> None:
        payload = json.dumps(value)

        def _write() -> None:
            with self._session_factory() as session:
                session.merge(AlertStateEntry(key=key, value=payload))
                session.commit()

        await asyncio.to_thread(_write)

    async def _get(self, key: str) -> dict[str, Any] | None:
        def _read() -> str | None:
            with self._session_factory() as session:
                entry = session.get(AlertStateEntry, key)
                return entry.value if entry is not None else None

        raw = await asyncio.to_thread(_read)
        if raw is None:
            return None
        return json.loads(raw)

    async def _delete(self, key: str) -> None:
        def _remove() -> None:
            with self._session_factory() as session:
                entry = session.get(AlertStateEntry, key)
                if entry is not None:
                    session.delete(entry)
                    session.commit()

        await asyncio.to_thread(_remove)


__all__ = ["AcknowledgmentRecord", "AlertStateStore", "NotificationHandle"]

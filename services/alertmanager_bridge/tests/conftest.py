from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Mapping

import pytest
import sqlalchemy
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from services.alertmanager_bridge.app.attachments import Attachment
from services.alertmanager_bridge.app.clients import AlertmanagerClient, MessageRef
from services.alertmanager_bridge.app.config import AlertConfig, Configuration, ConfigurationHolder
from services.alertmanager_bridge.app.database import Base
from services.alertmanager_bridge.app.engine import AlertLifecycleEngine
from services.alertmanager_bridge.app.errors import NoMatchers, NotFound
from services.alertmanager_bridge.app.formatter import NotificationFormatter
from services.alertmanager_bridge.app.store import AlertStateStore

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
ACTION_URL = "https://bridge.example.com/api/action"


class FakeMessagingClient:
    """In-memory chat platform recording every call."""

    def __init__(self) -> None:
        self.posts: dict[str, dict[str, Any]] = {}
        self.created: list[dict[str, Any]] = []
        self.updates: list[dict[str, Any]] = []
        self.replies: list[dict[str, Any]] = []
        self.usernames: dict[str, str] = {"u1": "alice", "u2": "bob"}
        self.fail_updates_with: Exception | None = None
        self.fail_create_with: Exception | None = None
        self._counter = 0

    async def resolve_channel(self, team: str, channel: str) -> str:
        return f"{team}-{channel}-id"

    async def create_message(self, channel_id: str, text: str, attachment: Attachment) -> MessageRef:
        if self.fail_create_with is not None:
            # Fail a single call only.
            exc, self.fail_create_with = self.fail_create_with, None
            raise exc
        self._counter += 1
        message_id = f"post-{self._counter}"
        record = {"id": message_id, "channel_id": channel_id, "text": text, "attachment": attachment}
        self.posts[message_id] = record
        self.created.append(record)
        return MessageRef(message_id=message_id, channel_id=channel_id)

    async def update_message(self, ref: MessageRef, text: str, attachment: Attachment) -> None:
        if self.fail_updates_with is not None:
            raise self.fail_updates_with
        if ref.message_id not in self.posts:
            raise NotFound(f"post {ref.message_id} not found")
        self.posts[ref.message_id].update(text=text, attachment=attachment)
        self.updates.append({"id": ref.message_id, "text": text, "attachment": attachment})

    async def get_message(self, ref: MessageRef) -> dict[str, Any]:
        if ref.message_id not in self.posts:
            raise NotFound(f"post {ref.message_id} not found")
        return {"id": ref.message_id, "channel_id": self.posts[ref.message_id]["channel_id"]}

    async def create_reply(self, ref: MessageRef, text: str) -> None:
        self.replies.append({"root_id": ref.message_id, "channel_id": ref.channel_id, "text": text})

    async def get_username(self, user_id: str) -> str:
        if user_id not in self.usernames:
            raise NotFound(f"user {user_id} not found")
        return self.usernames[user_id]

    async def aclose(self) -> None:  # pragma: no cover - interface requirement
        return None


class FakeAlertmanagerClient(AlertmanagerClient):
    def __init__(self) -> None:
        self._own_client = False
        self.silences: list[dict[str, Any]] = []
        self.expired: list[tuple[str, str]] = []

    async def create_silence(
        self,
        base_url: str,
        labels: Mapping[str, Any],
        duration: timedelta,
        created_by: str,
        comment: str,
    ) -> str:
        if not any(isinstance(value, str) for value in labels.values()):
            raise NoMatchers("No valid matchers found in alert labels")
        silence_id = f"silence-{len(self.silences) + 1}"
        self.silences.append(
            {
                "id": silence_id,
                "base_url": base_url,
                "labels": dict(labels),
                "duration": duration,
                "created_by": created_by,
                "comment": comment,
            }
        )
        return silence_id

    async def expire_silence(self, base_url: str, silence_id: str) -> None:
        self.expired.append((base_url, silence_id))

    async def aclose(self) -> None:  # pragma: no cover - interface requirement
        return None


def make_alert_config(**overrides: Any) -> AlertConfig:
    values: dict[str, Any] = {
        "id": "prod",
        "token": "secret-token",
        "team": "ops",
        "channel": "alerts",
        "alertmanager_url": "http://alertmanager:9093",
        "enable_actions": True,
        "severity_mentions": {"critical": "@oncall"},
    }
    values.update(overrides)
    return AlertConfig(**values)


def make_holder(*configs: AlertConfig) -> ConfigurationHolder:
    mapping = {config.id: config for config in configs}
    return ConfigurationHolder(Configuration(alert_configs=MappingProxyType(mapping)))


def webhook_alert(
    fingerprint: str = "fp-1",
    status: str = "firing",
    severity: str = "critical",
    **labels: Any,
) -> dict[str, Any]:
    return {
        "status": status,
        "fingerprint": fingerprint,
        "labels": {"alertname": "HighLatency", "severity": severity, **labels},
        "annotations": {"summary": "Latency above threshold"},
        "startsAt": "2024-05-01T11:00:00Z",
        "endsAt": "2024-05-01T11:45:30Z" if status == "resolved" else "0001-01-01T00:00:00Z",
        "generatorURL": "http://prometheus:9090/graph",
    }


def webhook_payload(*alerts: dict[str, Any]) -> dict[str, Any]:
    return {
        "version": "4",
        "groupKey": "{}:{alertname=\"HighLatency\"}",
        "status": alerts[0]["status"] if alerts else "firing",
        "receiver": "chat",
        "externalURL": "http://alertmanager:9093",
        "alerts": list(alerts),
    }


@pytest.fixture()
def in_memory_session_factory() -> Iterator[sessionmaker[Session]]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=sqlalchemy.pool.StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture()
def store(in_memory_session_factory: sessionmaker[Session]) -> AlertStateStore:
    return AlertStateStore(in_memory_session_factory)


@pytest.fixture()
def messaging() -> FakeMessagingClient:
    return FakeMessagingClient()


@pytest.fixture()
def alertmanager() -> FakeAlertmanagerClient:
    return FakeAlertmanagerClient()


@pytest.fixture()
def alert_config() -> AlertConfig:
    return make_alert_config()


@pytest.fixture()
def holder(alert_config: AlertConfig) -> ConfigurationHolder:
    return make_holder(alert_config)


@pytest.fixture()
def lifecycle_engine(
    store: AlertStateStore,
    messaging: FakeMessagingClient,
    alertmanager: FakeAlertmanagerClient,
    holder: ConfigurationHolder,
) -> AlertLifecycleEngine:
    return AlertLifecycleEngine(
        store=store,
        messaging=messaging,
        alertmanager=alertmanager,
        configuration=holder,
        formatter=NotificationFormatter(clock=lambda: NOW),
        action_url=ACTION_URL,
        clock=lambda: NOW,
    )


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def action_url() -> str:
    return ACTION_URL


@pytest.fixture()
def build_config():
    return make_alert_config


@pytest.fixture()
def build_holder():
    return make_holder


@pytest.fixture()
def build_alert():
    return webhook_alert


@pytest.fixture()
def build_payload():
    return webhook_payload

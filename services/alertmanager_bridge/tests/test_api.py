from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from services.alertmanager_bridge.app.config import Settings
from services.alertmanager_bridge.app.main import create_app

pytestmark = pytest.mark.asyncio

TOKEN = {"token": "secret-token"}


@pytest.fixture()
def app(in_memory_session_factory, messaging, alertmanager, holder) -> FastAPI:
    return create_app(
        settings=Settings(site_url="https://bridge.example.com"),
        session_factory=in_memory_session_factory,
        messaging=messaging,
        alertmanager=alertmanager,
        configuration=holder,
    )


def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def test_health(app: FastAPI) -> None:
    async with _client(app) as client:
        response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_metrics_endpoint(app: FastAPI, build_alert, build_payload) -> None:
    async with _client(app) as client:
        await client.post("/api/webhook", params=TOKEN, json=build_payload(build_alert()))
        response = await client.get("/metrics")

    assert response.status_code == 200
    assert "alert_notifications_total" in response.text


async def test_incoming_correlation_id_is_echoed(app: FastAPI) -> None:
    async with _client(app) as client:
        response = await client.get("/health", headers={"X-Correlation-ID": "corr-42"})

    assert response.headers["X-Correlation-ID"] == "corr-42"


@pytest.mark.parametrize("params", [{}, {"token": "wrong"}])
async def test_webhook_rejects_bad_token(
    app: FastAPI, messaging, params, build_alert, build_payload
) -> None:
    async with _client(app) as client:
        response = await client.post("/api/webhook", params=params, json=build_payload(build_alert()))

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid or missing token"}
    assert messaging.created == []


@pytest.mark.parametrize("body", [b"{not json", b"{}", b'{"alerts": [{"status": "firing"}]}'])
async def test_webhook_rejects_malformed_body(app: FastAPI, messaging, body: bytes) -> None:
    async with _client(app) as client:
        response = await client.post(
            "/api/webhook",
            params=TOKEN,
            content=body,
            headers={"Content-Type": "application/json"},
        )

    assert response.status_code == 400
    assert messaging.created == []


async def test_webhook_creates_and_deduplicates(
    app: FastAPI, messaging, build_alert, build_payload
) -> None:
    payload = build_payload(build_alert(), build_alert(fingerprint="fp-2"))

    async with _client(app) as client:
        first = await client.post("/api/webhook", params=TOKEN, json=payload)
        second = await client.post("/api/webhook", params=TOKEN, json=payload)

    assert first.status_code == 200
    assert first.json()["config_id"] == "prod"
    assert [item["outcome"] for item in first.json()["results"]] == ["created", "created"]
    assert [item["outcome"] for item in second.json()["results"]] == ["duplicate", "duplicate"]
    assert len(messaging.created) == 2
    assert "X-Correlation-ID" in first.headers


async def test_action_acknowledges_and_returns_update(
    app: FastAPI, store, build_alert, build_payload
) -> None:
    async with _client(app) as client:
        await client.post("/api/webhook", params=TOKEN, json=build_payload(build_alert()))
        response = await client.post(
            "/api/action",
            json={
                "user_id": "u1",
                "post_id": "post-1",
                "channel_id": "ops-alerts-id",
                "context": {"action": "ack", "fingerprint": "fp-1", "user_id": "u2"},
            },
        )

    assert response.status_code == 200
    body = response.json()
    assert body["ephemeral_text"] == "👁️ Acknowledged by @alice"
    attachment = body["update"]["props"]["attachments"][0]
    assert attachment["color"] == "#9013FE"
    assert [action["id"] for action in attachment["actions"]] == ["silence1h", "silence4h", "unack"]
    record = await store.get_ack("fp-1")
    assert record is not None
    assert record.username == "alice"


async def test_action_for_unknown_alert_is_not_found(app: FastAPI) -> None:
    async with _client(app) as client:
        response = await client.post(
            "/api/action",
            json={"user_id": "u1", "post_id": "post-9", "context": {"action": "ack", "fingerprint": "nope"}},
        )

    assert response.status_code == 404
    assert response.json() == {"ephemeral_text": "No active notification for this alert"}


async def test_action_errors_stay_ephemeral_on_custom_paths(
    in_memory_session_factory, messaging, alertmanager, holder
) -> None:
    app = create_app(
        settings=Settings(site_url="https://bridge.example.com", action_path="/hooks/click"),
        session_factory=in_memory_session_factory,
        messaging=messaging,
        alertmanager=alertmanager,
        configuration=holder,
    )

    async with _client(app) as client:
        action = await client.post(
            "/hooks/click",
            json={"user_id": "u1", "post_id": "post-9", "context": {"action": "ack", "fingerprint": "nope"}},
        )
        webhook = await client.post("/api/webhook", json={})

    assert action.status_code == 404
    assert action.json() == {"ephemeral_text": "No active notification for this alert"}
    assert webhook.status_code == 400
    assert webhook.json() == {"detail": "Invalid or missing token"}


@pytest.mark.parametrize(
    "payload",
    [
        {"user_id": "u1", "context": {"action": "reboot", "fingerprint": "fp-1"}},
        {
            "user_id": "u1",
            "context": {"action": "silence", "fingerprint": "fp-1", "config_id": "prod", "duration": "ever"},
        },
        {"user_id": "", "context": {"action": "ack", "fingerprint": "fp-1"}},
        {"user_id": "u1"},
    ],
)
async def test_action_rejects_invalid_payloads(app: FastAPI, alertmanager, payload) -> None:
    async with _client(app) as client:
        response = await client.post("/api/action", json=payload)

    assert response.status_code == 400
    assert "ephemeral_text" in response.json()
    assert alertmanager.silences == []


async def test_silence_action_without_string_labels(app: FastAPI) -> None:
    async with _client(app) as client:
        response = await client.post(
            "/api/action",
            json={
                "user_id": "u1",
                "post_id": "",
                "context": {
                    "action": "silence",
                    "fingerprint": "gone",
                    "config_id": "prod",
                    "duration": "1h",
                    "labels": {"replicas": 3},
                },
            },
        )

    assert response.status_code == 422


async def test_silence_then_expire_through_token_endpoint(
    app: FastAPI, alertmanager, build_alert, build_payload
) -> None:
    async with _client(app) as client:
        await client.post("/api/webhook", params=TOKEN, json=build_payload(build_alert()))
        silenced = await client.post(
            "/api/action",
            json={
                "user_id": "u1",
                "post_id": "post-1",
                "context": {"action": "silence", "fingerprint": "fp-1", "config_id": "prod", "duration": "1h"},
            },
        )
        expired = await client.post(
            "/api/expire",
            params=TOKEN,
            json={
                "user_id": "u2",
                "post_id": "post-1",
                "context": {"silence_id": "silence-1", "fingerprint": "fp-1"},
            },
        )

    assert silenced.status_code == 200
    actions = silenced.json()["update"]["props"]["attachments"][0]["actions"]
    assert actions[-1]["integration"]["context"]["silence_id"] == "silence-1"

    assert expired.status_code == 200
    assert expired.json()["ephemeral_text"] == "Silence silence-1 expired."
    assert alertmanager.expired == [("http://alertmanager:9093", "silence-1")]
    attachment = expired.json()["update"]["props"]["attachments"][0]
    assert attachment["color"] == "#F0F8FF"
    assert [action["id"] for action in attachment["actions"]] == ["silence1h", "silence4h", "ack"]


async def test_expire_requires_token_and_silence_id(app: FastAPI) -> None:
    async with _client(app) as client:
        missing_token = await client.post("/api/expire", json={"context": {"silence_id": "abc"}})
        missing_id = await client.post("/api/expire", params=TOKEN, json={"context": {}})

    assert missing_token.status_code == 400
    assert missing_id.status_code == 400
    assert missing_id.json() == {"ephemeral_text": "Missing silence_id"}

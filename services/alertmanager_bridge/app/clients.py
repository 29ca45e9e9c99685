"""HTTP clients for the chat platform and Alertmanager."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Protocol

import httpx

from .attachments import Attachment
from .errors import ExternalServiceError, NoMatchers, NotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MessageRef:
    """Where a chat message lives."""

    message_id: str
    channel_id: str


class MessagingClient(Protocol):
    """Operations the lifecycle engine needs from the chat platform."""

    async def resolve_channel(self, team: str, channel: str) -> str: ...

    async def create_message(self, channel_id: str, text: str, attachment: Attachment) -> MessageRef: ...

    async def update_message(self, ref: MessageRef, text: str, attachment: Attachment) -> None: ...

    async def get_message(self, ref: MessageRef) -> dict[str, Any]: ...

    async def create_reply(self, ref: MessageRef, text: str) -> None: ...

    async def get_username(self, user_id: str) -> str: ...

    async def aclose(self) -> None: ...


def _raise_for_response(response: httpx.Response, what: str) -> None:
    if response.status_code == httpx.codes.NOT_FOUND:
        raise NotFound(f"{what} not found")
    if response.is_error:
        raise ExternalServiceError(
            f"{what} failed with status {response.status_code}: {response.text[:200]}"
        )


class MattermostClient:
    """Messaging collaborator backed by the Mattermost REST API v4."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        *,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._own_client = client is None
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )
        self._channels: dict[tuple[str, str], str] = {}

    async def _request(self, method: str, url: str, what: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"{what} failed: {exc}") from exc
        _raise_for_response(response, what)
        return response

    async def resolve_channel(self, team: str, channel: str) -> str:
        cached = self._channels.get((team, channel))
        if cached:
            return cached
        response = await self._request(
            "GET", f"/api/v4/teams/name/{team}/channels/name/{channel}", f"channel {team}/{channel}"
        )
        channel_id = response.json()["id"]
        self._channels[(team, channel)] = channel_id
        return channel_id

    async def create_message(self, channel_id: str, text: str, attachment: Attachment) -> MessageRef:
        payload = {
            "channel_id": channel_id,
            "message": text,
            "props": {"attachments": [attachment.to_dict()]},
        }
        response = await self._request("POST", "/api/v4/posts", "create post", json=payload)
        data = response.json()
        if not data.get("id"):
            raise ExternalServiceError("create post returned no post id")
        return MessageRef(message_id=data["id"], channel_id=data.get("channel_id", channel_id))

    async def update_message(self, ref: MessageRef, text: str, attachment: Attachment) -> None:
        payload = {
            "id": ref.message_id,
            "channel_id": ref.channel_id,
            "message": text,
            "props": {"attachments": [attachment.to_dict()]},
        }
        await self._request(
            "PUT", f"/api/v4/posts/{ref.message_id}", f"post {ref.message_id}", json=payload
        )

    async def get_message(self, ref: MessageRef) -> dict[str, Any]:
        response = await self._request(
            "GET", f"/api/v4/posts/{ref.message_id}", f"post {ref.message_id}"
        )
        return response.json()

    async def create_reply(self, ref: MessageRef, text: str) -> None:
        payload = {"channel_id": ref.channel_id, "root_id": ref.message_id, "message": text}
        await self._request("POST", "/api/v4/posts", f"reply to {ref.message_id}", json=payload)

    async def get_username(self, user_id: str) -> str:
        response = await self._request("GET", f"/api/v4/users/{user_id}", f"user {user_id}")
        return response.json().get("username") or user_id

    async def aclose(self) -> None:
        if self._own_client:
            await self._client.aclose()


def build_matchers(labels: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Equality matchers for every string valued label."""

    return [
        {"name": name, "value": value, "isRegex": False, "isEqual": True}
        for name, value in sorted(labels.items())
        if isinstance(value, str)
    ]


class AlertmanagerClient:
    """Client for the Alertmanager v2 silence API."""

    def __init__(self, *, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self._own_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def create_silence(
        self,
        base_url: str,
        labels: Mapping[str, Any],
        duration: timedelta,
        created_by: str,
        comment: str,
    ) -> str:
        matchers = build_matchers(labels)
        if not matchers:
            raise NoMatchers("No valid matchers found in alert labels")

        now = datetime.now(timezone.utc)
        payload = {
            "matchers": matchers,
            "startsAt": now.isoformat(),
            "endsAt": (now + duration).isoformat(),
            "createdBy": created_by,
            "comment": comment,
        }
        logger.debug("Creating silence on %s with %d matcher(s)", base_url, len(matchers))
        try:
            response = await self._client.post(f"{base_url}/api/v2/silences", json=payload)
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"failed to send request to Alertmanager: {exc}") from exc
        if response.status_code not in (httpx.codes.OK, httpx.codes.CREATED):
            raise ExternalServiceError(
                f"Alertmanager returned status {response.status_code}: {response.text[:200]}"
            )
        try:
            silence_id = response.json()["silenceID"]
        except (ValueError, KeyError, TypeError) as exc:
            raise ExternalServiceError(f"failed to parse Alertmanager response: {exc}") from exc
        logger.info("Created silence %s for %s", silence_id, duration)
        return silence_id

    async def expire_silence(self, base_url: str, silence_id: str) -> None:
        try:
            response = await self._client.delete(f"{base_url}/api/v2/silence/{silence_id}")
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"failed to send request to Alertmanager: {exc}") from exc
        _raise_for_response(response, f"silence {silence_id}")

    async def aclose(self) -> None:
        if self._own_client:
            await self._client.aclose()


__all__ = [
    "AlertmanagerClient",
    "MattermostClient",
    "MessageRef",
    "MessagingClient",
    "build_matchers",
]

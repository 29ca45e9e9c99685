"""Pydantic models describing the inbound wire formats."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

ALERT_STATUS_FIRING = "firing"
ALERT_STATUS_RESOLVED = "resolved"

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    if value.year == 1:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class WebhookAlert(BaseModel):
    """Single alert of an Alertmanager webhook delivery."""

    model_config = ConfigDict(populate_by_name=True)

    status: str = Field(ALERT_STATUS_FIRING)
    fingerprint: str = Field(..., min_length=1)
    labels: dict[str, Any] = Field(default_factory=dict)
    annotations: dict[str, Any] = Field(default_factory=dict)
    starts_at: datetime = Field(_ZERO_TIME, alias="startsAt")
    ends_at: datetime = Field(_ZERO_TIME, alias="endsAt")
    generator_url: str = Field("", alias="generatorURL")

    @field_validator("starts_at", "ends_at")
    @classmethod
    def _ensure_timezone(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def severity(self) -> str:
        value = self.labels.get("severity", "")
        return value if isinstance(value, str) else ""

    @property
    def is_resolved(self) -> bool:
        return self.status == ALERT_STATUS_RESOLVED


class WebhookMessage(BaseModel):
    """Alertmanager webhook payload (version 4)."""

    model_config = ConfigDict(populate_by_name=True)

    version: str = ""
    group_key: str = Field("", alias="groupKey")
    truncated_alerts: int = Field(0, alias="truncatedAlerts")
    status: str = ""
    receiver: str = ""
    group_labels: dict[str, Any] = Field(default_factory=dict, alias="groupLabels")
    common_labels: dict[str, Any] = Field(default_factory=dict, alias="commonLabels")
    common_annotations: dict[str, Any] = Field(default_factory=dict, alias="commonAnnotations")
    external_url: str = Field("", alias="externalURL")
    alerts: list[WebhookAlert] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.status or self.receiver or self.external_url or self.alerts)


class ActionRequest(BaseModel):
    """Integration request posted by the chat platform when a button is clicked."""

    user_id: str = ""
    user_name: str = ""
    post_id: str = ""
    channel_id: str = ""
    team_id: str = ""
    context: dict[str, Any] | None = None


class AlertOutcome(BaseModel):
    fingerprint: str
    outcome: str
    detail: str | None = None


class WebhookResponse(BaseModel):
    config_id: str
    processed: int
    results: list[AlertOutcome]


__all__ = [
    "ALERT_STATUS_FIRING",
    "ALERT_STATUS_RESOLVED",
    "ActionRequest",
    "AlertOutcome",
    "WebhookAlert",
    "WebhookMessage",
    "WebhookResponse",
]

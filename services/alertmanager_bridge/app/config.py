"""Environment configuration and alert profile snapshots for the bridge."""

from __future__ import annotations

import hmac
import json
import logging
import threading
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class AlertConfig(BaseModel):
    """Destination and formatting profile selected by its shared-secret token."""

    model_config = ConfigDict(frozen=True)

    id: str = Field("", description="Profile identifier, injected from the mapping key")
    token: str = Field("", description="Shared secret expected on inbound webhooks", repr=False)
    team: str = Field("", description="Chat team owning the alert channel")
    channel: str = Field("", description="Channel receiving the notifications")
    alertmanager_url: str = Field("", description="Alertmanager base URL used for silences")
    enable_actions: bool = Field(False, description="Render Silence/ACK/UNACK buttons")
    firing_template: str = Field("", description="Custom Jinja template for firing alerts")
    resolved_template: str = Field("", description="Custom Jinja template for resolved alerts")
    severity_mentions: dict[str, str] = Field(default_factory=dict)
    severity_colors: dict[str, str] = Field(default_factory=dict)
    state_colors: dict[str, str] = Field(default_factory=dict)

    @field_validator("severity_mentions", mode="before")
    @classmethod
    def _parse_mentions(cls, value: Any) -> Any:
        # The admin console stores this map as a JSON encoded string.
        if value is None:
            return {}
        if isinstance(value, str):
            if not value.strip():
                return {}
            try:
                return json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError(f"severity_mentions is not valid JSON: {exc}") from exc
        return value

    @field_validator("alertmanager_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def validate_complete(self) -> None:
        """Raise ``ValueError`` when a mandatory setting is missing."""

        if not self.team:
            raise ValueError("must set a Team")
        if not self.channel:
            raise ValueError("must set a Channel")
        if not self.token:
            raise ValueError("must set a Token")
        if not self.alertmanager_url:
            raise ValueError("must set the AlertManager URL")


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    service_name: str = Field("alertmanager-bridge", description="Service identifier")
    database_url: str = Field(
        "sqlite:///./alertmanager_bridge.db",
        description="SQLAlchemy URL of the alert state store",
    )
    site_url: str = Field(
        "",
        description="Public base URL of the bridge, used to build action button callbacks",
    )
    action_path: str = Field("/api/action", description="Path of the action ingress endpoint")
    mattermost_url: str = Field("http://mattermost:8065", description="Chat platform base URL")
    mattermost_token: str = Field(
        "", description="Bot access token used against the chat platform", repr=False
    )
    http_timeout: float = Field(5.0, description="Timeout for chat platform requests")
    alertmanager_timeout: float = Field(10.0, description="Timeout for Alertmanager requests")
    alert_configs: dict[str, AlertConfig] = Field(
        default_factory=dict,
        description="Alert profiles keyed by identifier (JSON encoded in the environment)",
    )
    alert_configs_file: str = Field(
        "",
        description="Optional JSON file with additional alert profiles",
    )

    class Config:
        env_prefix = "ALERTMANAGER_BRIDGE_"
        case_sensitive = False

    @property
    def action_url(self) -> str:
        if not self.site_url:
            return ""
        return f"{self.site_url.rstrip('/')}{self.action_path}"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


@dataclass(frozen=True)
class Configuration:
    """Immutable snapshot of every alert profile known to the process."""

    alert_configs: Mapping[str, AlertConfig] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def get(self, config_id: str) -> AlertConfig | None:
        return self.alert_configs.get(config_id)

    def find_by_token(self, token: str) -> AlertConfig | None:
        """Return the first profile whose token matches, comparing in constant time."""

        if not token:
            return None
        candidate = token.encode("utf-8")
        for alert_config in self.alert_configs.values():
            if hmac.compare_digest(candidate, alert_config.token.encode("utf-8")):
                return alert_config
        return None


def _read_configs_file(path: str) -> dict[str, Any]:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"{path} must contain a JSON object keyed by config id")
    return raw


def load_configuration(settings: Settings) -> Configuration:
    """Build a configuration snapshot from settings, skipping invalid profiles."""

    raw: dict[str, Any] = {}
    if settings.alert_configs_file:
        raw.update(_read_configs_file(settings.alert_configs_file))
    raw.update({key: value.model_dump() for key, value in settings.alert_configs.items()})

    configs: dict[str, AlertConfig] = {}
    for config_id, values in raw.items():
        try:
            data = values if isinstance(values, dict) else dict(values)
            alert_config = AlertConfig.model_validate({**data, "id": config_id})
            alert_config.validate_complete()
        except (ValidationError, ValueError, TypeError) as exc:
            logger.warning(
                "Skipping invalid alert configuration %s: %s",
                config_id,
                exc,
                extra={"config_id": config_id},
            )
            continue
        configs[config_id] = alert_config

    logger.info("Loaded %d alert configuration(s)", len(configs))
    return Configuration(alert_configs=MappingProxyType(configs))


class ConfigurationHolder:
    """Hold the active configuration and swap it wholesale on reload.

    Readers take the current reference without locking; the snapshot they get
    is immutable, so a concurrent reload is never observed half applied.
    """

    def __init__(self, configuration: Configuration | None = None) -> None:
        self._configuration = configuration
        self._lock = threading.Lock()

    def get(self) -> Configuration:
        configuration = self._configuration
        if configuration is None:
            return Configuration()
        return configuration

    def replace(self, configuration: Configuration) -> None:
        with self._lock:
            if configuration is self._configuration:
                raise RuntimeError("replace called with the active configuration")
            self._configuration = configuration

    def reload(self, settings: Settings) -> Configuration:
        configuration = load_configuration(settings)
        self.replace(configuration)
        logger.info("Configuration reloaded")
        return configuration


__all__ = [
    "AlertConfig",
    "Configuration",
    "ConfigurationHolder",
    "Settings",
    "get_settings",
    "load_configuration",
]

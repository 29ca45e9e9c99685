"""FastAPI application bridging Alertmanager webhooks and chat notifications."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Coroutine

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from pydantic import ValidationError
from sqlalchemy.orm import Session, sessionmaker

from libs.observability import RequestContextMiddleware, configure_logging, setup_metrics

from .actions import ExpireSilenceCommand, decode_action
from .clients import AlertmanagerClient, MattermostClient, MessagingClient
from .config import AlertConfig, ConfigurationHolder, Settings, get_settings, load_configuration
from .database import create_session_factory
from .engine import ActionResult, AlertLifecycleEngine
from .errors import BridgeError, DecodeError, InvalidPayload
from .formatter import NotificationFormatter
from .schemas import ActionRequest, WebhookMessage, WebhookResponse
from .store import AlertStateStore

logger = logging.getLogger(__name__)


class EphemeralErrorRoute(APIRoute):
    """Route whose bridge errors are answered as ephemeral chat text.

    Chat platforms show ``ephemeral_text`` to the clicking user only, so button
    and expire callbacks report failures in that shape instead of ``detail``.
    """

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        handler = super().get_route_handler()

        async def _handler(request: Request) -> Response:
            try:
                return await handler(request)
            except BridgeError as exc:
                logger.warning(
                    "Action rejected: %s", exc.message, extra={"status": exc.status_code}
                )
                return JSONResponse(
                    status_code=exc.status_code, content={"ephemeral_text": exc.message}
                )

        return _handler


def _action_response(result: ActionResult) -> dict[str, Any]:
    payload: dict[str, Any] = {"ephemeral_text": result.message}
    if result.update is not None:
        payload["update"] = {
            "message": result.update.text,
            "props": result.update.to_props(),
        }
    return payload


async def _parse_body(request: Request, model: type[Any]) -> Any:
    body = await request.body()
    try:
        raw = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeError(f"Invalid JSON body: {exc}") from exc
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise DecodeError(f"Invalid payload: {exc.error_count()} validation error(s)") from exc


def create_app(
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    messaging: MessagingClient | None = None,
    alertmanager: AlertmanagerClient | None = None,
    configuration: ConfigurationHolder | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.service_name)

    session_factory = session_factory or create_session_factory(settings)
    messaging = messaging or MattermostClient(
        settings.mattermost_url, settings.mattermost_token, timeout=settings.http_timeout
    )
    alertmanager = alertmanager or AlertmanagerClient(timeout=settings.alertmanager_timeout)
    configuration = configuration or ConfigurationHolder(load_configuration(settings))

    engine = AlertLifecycleEngine(
        store=AlertStateStore(session_factory),
        messaging=messaging,
        alertmanager=alertmanager,
        configuration=configuration,
        formatter=NotificationFormatter(),
        action_url=settings.action_url,
    )

    app = FastAPI(title="Alertmanager Bridge", version="0.1.0")
    app.add_middleware(RequestContextMiddleware, service_name=settings.service_name)
    setup_metrics(app, service_name=settings.service_name)

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.configuration = configuration
    app.state.lifecycle_engine = engine
    app.state.clients = [messaging, alertmanager]

    @app.on_event("shutdown")
    async def _shutdown() -> None:  # pragma: no cover - FastAPI wiring
        for client in app.state.clients:
            await client.aclose()

    @app.exception_handler(BridgeError)
    async def _bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
        logger.warning("Request rejected: %s", exc.message, extra={"status": exc.status_code})
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    def _config_for_token(token: str | None) -> AlertConfig:
        alert_config = configuration.get().find_by_token(token or "")
        if alert_config is None:
            raise DecodeError("Invalid or missing token")
        return alert_config

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/webhook", response_model=WebhookResponse)
    async def receive_webhook(request: Request, token: str | None = None) -> WebhookResponse:
        """Accept an Alertmanager delivery for the profile owning ``token``."""

        alert_config = _config_for_token(token)
        message: WebhookMessage = await _parse_body(request, WebhookMessage)
        if message.is_empty():
            raise DecodeError("Empty webhook message")

        logger.info(
            "Received webhook with %d alert(s)",
            len(message.alerts),
            extra={"config_id": alert_config.id, "receiver": message.receiver},
        )
        results = await engine.handle_webhook(alert_config, message)
        return WebhookResponse(config_id=alert_config.id, processed=len(results), results=results)

    actions = APIRouter(route_class=EphemeralErrorRoute, tags=["actions"])

    @actions.post(settings.action_path)
    async def receive_action(request: Request) -> dict[str, Any]:
        """Handle a button click posted back by the chat platform."""

        action: ActionRequest = await _parse_body(request, ActionRequest)
        if not action.user_id:
            raise InvalidPayload("Missing user id")
        command = decode_action(action.context, user_id=action.user_id, message_id=action.post_id)
        result = await engine.handle_action(command)
        return _action_response(result)

    @actions.post("/api/expire")
    async def receive_expire(request: Request, token: str | None = None) -> dict[str, Any]:
        """Expire a silence on behalf of the profile owning ``token``."""

        alert_config = _config_for_token(token)
        action: ActionRequest = await _parse_body(request, ActionRequest)
        context = action.context or {}
        silence_id = context.get("silence_id")
        if not isinstance(silence_id, str) or not silence_id:
            raise InvalidPayload("Missing silence_id")
        fingerprint = context.get("fingerprint")
        command = ExpireSilenceCommand(
            silence_id=silence_id,
            config_id=alert_config.id,
            fingerprint=fingerprint if isinstance(fingerprint, str) else "",
            user_id=action.user_id,
            message_id=action.post_id,
        )
        result = await engine.expire_silence(command, alert_config=alert_config)
        return _action_response(result)

    app.include_router(actions)
    return app


app = create_app()

"""Prometheus metrics for the bridge services."""

from __future__ import annotations

import time

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

_REQUEST_COUNTER = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    labelnames=("service", "method", "path", "status"),
)
_REQUEST_LATENCY = Histogram(
    "http_request_latency_seconds",
    "Latency of HTTP requests in seconds",
    labelnames=("service", "method", "path"),
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
NOTIFICATIONS = Counter(
    "alert_notifications_total",
    "Webhook alerts processed, by outcome",
    labelnames=("config_id", "outcome"),
)
ACTIONS = Counter(
    "alert_actions_total",
    "Button actions processed, by outcome",
    labelnames=("action", "outcome"),
)


def record_notification(config_id: str, outcome: str) -> None:
    NOTIFICATIONS.labels(config_id or "unknown", outcome).inc()


def record_action(action: str, outcome: str) -> None:
    ACTIONS.labels(action or "unknown", outcome).inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Collect request count and latency for every route."""

    def __init__(self, app: ASGIApp, *, service_name: str) -> None:
        super().__init__(app)
        self._service_name = service_name

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        route = request.scope.get("route")
        path_template: str = getattr(route, "path", request.url.path)
        method = request.method.upper()
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            _REQUEST_COUNTER.labels(self._service_name, method, path_template, "500").inc()
            _REQUEST_LATENCY.labels(self._service_name, method, path_template).observe(duration)
            raise
        duration = time.perf_counter() - start
        _REQUEST_COUNTER.labels(
            self._service_name, method, path_template, str(response.status_code)
        ).inc()
        _REQUEST_LATENCY.labels(self._service_name, method, path_template).observe(duration)
        return response


def setup_metrics(app: FastAPI, *, service_name: str) -> None:
    """Attach the metrics middleware and the ``/metrics`` endpoint."""

    if getattr(app.state, "_metrics_configured", False):
        return

    app.add_middleware(MetricsMiddleware, service_name=service_name)

    async def metrics_endpoint() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.add_api_route(
        "/metrics",
        metrics_endpoint,
        methods=["GET"],
        include_in_schema=False,
        name="metrics",
    )
    app.state._metrics_configured = True

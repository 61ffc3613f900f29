"""Prometheus metrics shared by the scrapper and bot services.

All collectors live in a dedicated registry exposed at ``/metrics`` by each
service, so importing this module twice (tests, reloads) never collides
with the default global registry.
"""

from __future__ import annotations

import time

from fastapi import Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware

NAMESPACE = "link_tracker"

REGISTRY = CollectorRegistry()

HTTP_REQUESTS = Counter(
    "http_requests_total",
    "HTTP requests served",
    ["service", "method", "endpoint", "status"],
    namespace=NAMESPACE,
    registry=REGISTRY,
)
HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["service", "method", "endpoint"],
    namespace=NAMESPACE,
    registry=REGISTRY,
)

LINK_UPDATES_PROCESSED = Counter(
    "link_updates_processed_total",
    "Links checked by the scheduler, by outcome",
    ["status"],
    namespace=NAMESPACE,
    subsystem="scrapper",
    registry=REGISTRY,
)
SCRAPE_REQUESTS = Counter(
    "scrape_requests_total",
    "Upstream last-update probes",
    ["link_type", "status"],
    namespace=NAMESPACE,
    subsystem="scrapper",
    registry=REGISTRY,
)
SCRAPE_DURATION = Histogram(
    "scrape_request_duration_seconds",
    "Upstream last-update probe latency",
    ["link_type"],
    namespace=NAMESPACE,
    subsystem="scrapper",
    registry=REGISTRY,
)
NOTIFICATIONS = Counter(
    "notifications_total",
    "Update events handed to the bot service",
    ["mode", "status"],
    namespace=NAMESPACE,
    subsystem="scrapper",
    registry=REGISTRY,
)
CIRCUIT_BREAKER_STATE = Gauge(
    "circuit_breaker_state",
    "Breaker state per upstream: 0 closed, 1 half-open, 2 open",
    ["breaker"],
    namespace=NAMESPACE,
    registry=REGISTRY,
)

BOT_MESSAGES = Counter(
    "messages_sent_total",
    "Telegram messages sent per chat, by outcome",
    ["status"],
    namespace=NAMESPACE,
    subsystem="bot",
    registry=REGISTRY,
)

BREAKER_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


def record_breaker_state(breaker: str, state: str) -> None:
    CIRCUIT_BREAKER_STATE.labels(breaker=breaker).set(BREAKER_STATE_VALUES[state])


class MetricsMiddleware(BaseHTTPMiddleware):
    """Counts requests and observes latency, labelled by route template."""

    def __init__(self, app, service: str) -> None:
        super().__init__(app)
        self.service = service

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)
            HTTP_REQUESTS.labels(
                service=self.service,
                method=request.method,
                endpoint=endpoint,
                status=str(status),
            ).inc()
            HTTP_REQUEST_DURATION.labels(
                service=self.service, method=request.method, endpoint=endpoint
            ).observe(time.perf_counter() - start)


def metrics_response() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "HTTP_REQUESTS",
    "HTTP_REQUEST_DURATION",
    "LINK_UPDATES_PROCESSED",
    "SCRAPE_REQUESTS",
    "SCRAPE_DURATION",
    "NOTIFICATIONS",
    "CIRCUIT_BREAKER_STATE",
    "BOT_MESSAGES",
    "MetricsMiddleware",
    "metrics_response",
    "record_breaker_state",
]

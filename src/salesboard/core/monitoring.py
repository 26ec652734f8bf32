"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: request count/latency labelled by route template
- Dashboard metrics: feed events, resyncs, live view models, deal submissions
- init_sentry(): Sentry with session credentials scrubbed from events
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import time

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "salesboard_http_requests_total",
    "HTTP requests by route and status",
    ["method", "route", "status_code"],
)

http_request_duration_seconds = Histogram(
    "salesboard_http_request_duration_seconds",
    "HTTP request latency by route",
    ["method", "route"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# ── Dashboard Metrics ────────────────────────────────────────────────────────

feed_events_total = Counter(
    "salesboard_feed_events_total",
    "Deal insert events handled by view models",
    ["outcome"],  # applied | out_of_quarter | in_baseline
)

view_model_resyncs_total = Counter(
    "salesboard_view_model_resyncs_total",
    "Full resynchronisations requested after a load or feed failure",
)

active_view_models = Gauge(
    "salesboard_active_view_models",
    "View models currently alive (one per dashboard session)",
)

deal_submissions_total = Counter(
    "salesboard_deal_submissions_total",
    "Deal form submissions by result",
    ["result"],  # inserted | validation_error | insert_rejected
)

# Connection lifetime, not latency.
_UNTIMED_SUFFIXES = ("/stream",)


def _route_label(request: Request) -> str:
    """Route template (``/api/v1/deals``), or ``unmatched`` for 404s."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request count and latency for every HTTP request except /metrics."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path == "/metrics":
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        route = _route_label(request)

        http_requests_total.labels(
            method=request.method,
            route=route,
            status_code=str(response.status_code),
        ).inc()
        if not path.endswith(_UNTIMED_SUFFIXES):
            http_request_duration_seconds.labels(method=request.method, route=route).observe(
                time.perf_counter() - started
            )
        return response


# ── Sentry Integration ───────────────────────────────────────────────────────

_SECRET_HEADERS = {"authorization", "cookie", "apikey"}


def scrub_event(event: dict, hint: dict | None = None) -> dict:
    """Remove session tokens and platform keys from a Sentry event."""
    request = event.get("request")
    if isinstance(request, dict):
        request.pop("cookies", None)
        headers = request.get("headers")
        if isinstance(headers, dict):
            for name in [h for h in headers if h.lower() in _SECRET_HEADERS]:
                headers.pop(name)
    return event


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        send_default_pii=False,
        integrations=[StarletteIntegration(), FastApiIntegration()],
        before_send=scrub_event,
    )


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)

"""Structured logging setup and per-request log middleware.

Every request gets a request id (the caller's X-Request-ID if it sent one)
bound into structlog's context variables, so log lines emitted while the
request is handled (form submissions, view model loads) carry it too. The
completion line records method, path, status, duration and the signed-in
user id that the session dependency leaves on ``request.state``.

Production renders JSON; every other environment renders console output.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.salesboard.config import Environment, Settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Probes and scrapes are logged at debug to keep request logs readable.
_QUIET_PATHS = frozenset({"/health", "/health/ready", "/metrics"})


def configure_structlog(settings: Settings) -> None:
    """Route structlog through stdlib logging at the configured level."""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=level)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request and echoes the request id in the response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.bind_contextvars(request_id=request_id)
        started = time.monotonic()
        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.exception(
                    "http.request_failed",
                    method=request.method,
                    path=request.url.path,
                    duration_ms=_elapsed_ms(started),
                    user_id=getattr(request.state, "user_id", None),
                )
                raise

            response.headers[REQUEST_ID_HEADER] = request_id
            self._log_completed(request, response, started)
            return response
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

    @staticmethod
    def _log_completed(request: Request, response: Response, started: float) -> None:
        path = request.url.path
        if response.status_code >= 500:
            log = logger.error
        elif response.status_code >= 400:
            log = logger.warning
        elif path in _QUIET_PATHS:
            log = logger.debug
        else:
            log = logger.info

        # Streaming responses return once headers are ready; duration is time-to-first-byte.
        log(
            "http.request_completed",
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=_elapsed_ms(started),
            user_id=getattr(request.state, "user_id", None),
        )


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)

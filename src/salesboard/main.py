"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
the error-kind exception handler, and the v1 router. Configuration is
validated here, so a missing platform URL or key stops the process before
it serves anything.

Run with:
    uvicorn --factory src.salesboard.main:create_app
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import partial

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response

from src.salesboard.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.salesboard.api.v1.router import router as v1_router
from src.salesboard.config import Settings, load_settings
from src.salesboard.core.errors import DashboardError
from src.salesboard.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.salesboard.core.session import SessionManager
from src.salesboard.platform.base import PlatformFactory

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: logging and Sentry on startup, sessions closed on shutdown."""
    settings: Settings = app.state.settings
    configure_structlog(settings)

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    logger.info(
        "app.started",
        environment=settings.ENVIRONMENT.value,
        platform_url=settings.SUPABASE_URL,
        timezone=settings.DASHBOARD_TIMEZONE,
    )

    yield

    await app.state.session_manager.close()
    logger.info("app.stopped")


async def dashboard_error_handler(request: Request, exc: DashboardError) -> JSONResponse:
    """Every DashboardError leaves the API as ``{"error": {kind, message}}``."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def create_app(
    settings: Settings | None = None,
    platform_factory: PlatformFactory | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Explicit settings; loaded (and validated) from the
            environment when omitted.
        platform_factory: Async callable producing a Platform per session;
            the Supabase-backed factory when omitted.

    Raises:
        ConfigurationError: When required configuration is missing or invalid.
    """
    settings = settings or load_settings()

    if platform_factory is None:
        from src.salesboard.platform.supabase import create_platform

        platform_factory = partial(create_platform, settings)

    app = FastAPI(
        title="Sales Dashboard API",
        version="0.1.0",
        description="Per-rep quarterly deal totals with live updates",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_manager = SessionManager(
        platform_factory,
        tz=settings.timezone,
        include_zero_totals=settings.DASHBOARD_INCLUDE_ZERO_TOTALS,
    )

    app.add_exception_handler(DashboardError, dashboard_error_handler)

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app

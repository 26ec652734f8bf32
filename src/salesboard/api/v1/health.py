"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready). Readiness probes
the hosted platform's auth health endpoint with the configured key.
"""

from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from src.salesboard.api.deps import get_app_settings
from src.salesboard.config import Settings

router = APIRouter(tags=["health"])

PLATFORM_TIMEOUT = 5.0


@router.get("/health")
async def health_check(request: Request, settings: Settings = Depends(get_app_settings)):
    """Basic liveness check. No external dependencies are checked."""
    manager = getattr(request.app.state, "session_manager", None)
    return {
        "status": "ok",
        "environment": settings.ENVIRONMENT.value,
        "sessions": len(manager) if manager is not None else 0,
    }


async def _check_platform(settings: Settings) -> dict:
    """Probe the platform's auth service. Returns check results dict."""
    checks: dict = {"platform": "ok"}
    try:
        async with httpx.AsyncClient(timeout=PLATFORM_TIMEOUT) as client:
            response = await client.get(
                f"{settings.SUPABASE_URL}/auth/v1/health",
                headers={"apikey": settings.SUPABASE_ANON_KEY},
            )
        if response.status_code != 200:
            checks["platform"] = "error"
            checks["platform_error"] = f"HTTP {response.status_code}"
    except httpx.HTTPError as e:
        checks["platform"] = "error"
        checks["platform_error"] = str(e)
    return checks


@router.get("/health/ready")
async def readiness_check(settings: Settings = Depends(get_app_settings)):
    """Readiness check: 200 if the platform answers, 503 otherwise."""
    checks = await _check_platform(settings)
    healthy = checks.get("platform") == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if healthy else "degraded",
            "checks": checks,
        },
    )

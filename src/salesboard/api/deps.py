"""FastAPI dependency injection for settings, sessions, and authentication.

These dependencies are used in endpoint function signatures to inject the
session manager and the caller's explicit session context.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from src.salesboard.config import Settings, get_settings
from src.salesboard.core.errors import AuthError
from src.salesboard.core.session import Session, SessionManager, SignedIn
from src.salesboard.sales.guard import can_view_dashboard


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with (falls back to the environment)."""
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


def get_session_manager(request: Request) -> SessionManager:
    """Retrieve SessionManager from app.state, 503 if not available."""
    manager = getattr(request.app.state, "session_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session management not initialized",
        )
    return manager


def session_id_from_request(request: Request, settings: Settings) -> str | None:
    """Bearer header first, then the session cookie."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get(settings.SESSION_COOKIE_NAME)


async def get_session(
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_app_settings),
) -> Session:
    """Resolve the caller's session; NO_SESSION when there is none."""
    session = manager.resolve(session_id_from_request(request, settings))
    if isinstance(session, SignedIn):
        request.state.user_id = session.user.id
    return session


async def require_session(session: Session = Depends(get_session)) -> SignedIn:
    """Signed-in session with a confirmed account, else AuthError (401)."""
    if not can_view_dashboard(session):
        raise AuthError("Sign in to continue.")
    return session


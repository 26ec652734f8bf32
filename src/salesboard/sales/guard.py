"""Dashboard route guard -- a pure predicate over the session context."""

from __future__ import annotations

from fastapi import status
from fastapi.responses import RedirectResponse

from src.salesboard.core.session import Session, SignedIn


def can_view_dashboard(session: Session) -> bool:
    """Only signed-in users with a confirmed email may see the dashboard."""
    return isinstance(session, SignedIn) and session.email_confirmed


def guard_dashboard(session: Session, signin_path: str = "/signin") -> RedirectResponse | None:
    """Return a redirect to sign-in when access is denied, else None."""
    if can_view_dashboard(session):
        return None
    return RedirectResponse(url=signin_path, status_code=status.HTTP_303_SEE_OTHER)

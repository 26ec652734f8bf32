"""Page entry points guarded by session state.

``/dashboard`` is the guarded view: callers without a valid session are
redirected to the sign-in page instead of receiving an error.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse

from src.salesboard.api.deps import get_app_settings, get_session, get_session_manager
from src.salesboard.api.v1.dashboard import RETRY_URL, load_view_model
from src.salesboard.config import Settings
from src.salesboard.core.session import Session, SessionManager
from src.salesboard.sales.guard import guard_dashboard
from src.salesboard.sales.rendering import DashboardView, render_dashboard

router = APIRouter(tags=["pages"])


@router.get("/dashboard", response_model=None)
async def dashboard_page(
    session: Session = Depends(get_session),
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_app_settings),
) -> RedirectResponse | DashboardView:
    """Dashboard for signed-in users, redirect to sign-in otherwise."""
    redirect = guard_dashboard(session, settings.SIGNIN_PATH)
    if redirect is not None:
        return redirect
    view_model = await load_view_model(manager, session)
    return render_dashboard(view_model.state(), retry_url=RETRY_URL)


@router.get("/signin")
async def signin_page() -> dict:
    """Where the sign-in and sign-up forms post to."""
    return {
        "detail": "Sign in to view the dashboard.",
        "signin_url": "/api/v1/auth/signin",
        "signup_url": "/api/v1/auth/signup",
        "fields": {
            "signin": ["email", "password"],
            "signup": ["email", "password", "name", "account_type"],
        },
    }

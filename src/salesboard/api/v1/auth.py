"""Authentication API endpoints.

Sign-up, sign-in, sign-out, and current user info. Credentials are checked
by the hosted identity provider; this service only keeps the resulting
session and hands out an opaque session token (also set as a cookie).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, EmailStr, Field

from src.salesboard.api.deps import (
    get_app_settings,
    get_session,
    get_session_manager,
    require_session,
)
from src.salesboard.config import Environment, Settings
from src.salesboard.core.session import Session, SessionManager, SignedIn
from src.salesboard.sales.schemas import AccountType

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


# ── Schemas ──────────────────────────────────────────────────────────────────


class SignUpRequest(BaseModel):
    """Request schema for account creation."""

    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=6, description="User password")
    name: str = Field(..., min_length=1, max_length=200, description="Display name")
    account_type: AccountType = Field(default=AccountType.REP)


class SignUpResponse(BaseModel):
    id: str
    email_confirmed: bool
    confirmation_required: bool


class SignInRequest(BaseModel):
    """Request schema for sign-in."""

    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")


class ProfileResponse(BaseModel):
    """Response schema for current user info."""

    id: str
    name: str
    account_type: AccountType


class SignInResponse(BaseModel):
    """Opaque session token plus the signed-in profile."""

    session_token: str
    token_type: str = "bearer"
    user: ProfileResponse


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/signup", response_model=SignUpResponse, status_code=201)
async def sign_up(
    body: SignUpRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> SignUpResponse:
    """Create an account. Most projects require email confirmation first."""
    user = await manager.sign_up(body.email, body.password, body.name, body.account_type)
    return SignUpResponse(
        id=user.id,
        email_confirmed=user.email_confirmed,
        confirmation_required=not user.email_confirmed,
    )


@router.post("/signin", response_model=SignInResponse)
async def sign_in(
    body: SignInRequest,
    response: Response,
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_app_settings),
) -> SignInResponse:
    """Authenticate and start a session."""
    session = await manager.sign_in(body.email, body.password)
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        session.session_id,
        httponly=True,
        samesite="lax",
        secure=settings.ENVIRONMENT == Environment.production,
    )
    return SignInResponse(
        session_token=session.session_id,
        user=ProfileResponse(
            id=session.user.id,
            name=session.user.name,
            account_type=session.user.account_type,
        ),
    )


@router.post("/signout", status_code=status.HTTP_204_NO_CONTENT)
async def sign_out(
    session: Session = Depends(get_session),
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    """End the session (no-op without one) and clear the cookie."""
    await manager.sign_out(session)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return response


@router.get("/me", response_model=ProfileResponse)
async def me(session: SignedIn = Depends(require_session)) -> ProfileResponse:
    """Current user's profile."""
    return ProfileResponse(
        id=session.user.id,
        name=session.user.name,
        account_type=session.user.account_type,
    )

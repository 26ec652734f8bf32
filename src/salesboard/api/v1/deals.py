"""REST API endpoints for deal entry.

The form options endpoint implements the role-conditioned picker; the
submit endpoint runs the DealFormController. Neither touches the dashboard
aggregate: new deals reach every open dashboard through the live feed.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.salesboard.api.deps import require_session
from src.salesboard.api.v1.auth import ProfileResponse
from src.salesboard.core.session import SignedIn
from src.salesboard.sales.form import DealFormController
from src.salesboard.sales.schemas import AccountType

router = APIRouter(prefix="/api/v1/deals", tags=["deals"])


# ── Schemas ──────────────────────────────────────────────────────────────────


class DealFormOptions(BaseModel):
    """What the deal form should offer the current user."""

    acting_user: ProfileResponse
    rep_locked: bool
    rep_choices: list[ProfileResponse] = Field(default_factory=list)


class SubmitDealRequest(BaseModel):
    """Raw form input; validated by the form controller, not here."""

    rep_id: str | None = None
    value: Any = None


class SubmitDealResponse(BaseModel):
    id: str


def _profile(p: Any) -> ProfileResponse:
    return ProfileResponse(id=p.id, name=p.name, account_type=p.account_type)


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("/form", response_model=DealFormOptions)
async def deal_form(session: SignedIn = Depends(require_session)) -> DealFormOptions:
    """Role-conditioned rep picker: reps are locked to themselves."""
    user = session.user
    if user.account_type == AccountType.REP:
        profiles = [user]
    else:
        profiles = await session.platform.store.list_profiles()
    choices = DealFormController.rep_choices(user, profiles)
    return DealFormOptions(
        acting_user=_profile(user),
        rep_locked=user.account_type == AccountType.REP,
        rep_choices=[_profile(p) for p in choices],
    )


@router.post("", response_model=SubmitDealResponse, status_code=201)
async def submit_deal(
    body: SubmitDealRequest,
    session: SignedIn = Depends(require_session),
) -> SubmitDealResponse:
    """Insert one deal for the chosen rep (a rep's own id when omitted)."""
    user = session.user
    target = body.rep_id
    if target is None and user.account_type == AccountType.REP:
        target = user.id

    controller = DealFormController(session.platform.store)
    deal_id = await controller.submit(user, target or "", body.value)
    return SubmitDealResponse(id=deal_id)

"""Pydantic schemas for deals, profiles, and the derived per-rep aggregate.

Defines:
- Enums: AccountType, FeedStatus
- Platform rows: UserProfile, Deal, NewDeal, DealFilter
- Derived: AggregateRow, DashboardState
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.salesboard.sales.quarter import QuarterWindow


# ── Enums ───────────────────────────────────────────────────────────────────


class AccountType(str, Enum):
    """Role stored on the profile at sign-up."""

    ADMIN = "admin"
    REP = "rep"


class FeedStatus(str, Enum):
    """Lifecycle of a view model's baseline + live subscription."""

    IDLE = "idle"
    SYNCING = "syncing"
    LIVE = "live"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    DISPOSED = "disposed"


# ── Platform Rows ───────────────────────────────────────────────────────────


class UserProfile(BaseModel):
    """Read-only, possibly stale copy of a platform profile row."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    account_type: AccountType

    @property
    def is_admin(self) -> bool:
        return self.account_type == AccountType.ADMIN


class Deal(BaseModel):
    """A committed deal row. Quarter membership is derived from created_at."""

    model_config = ConfigDict(frozen=True)

    id: str
    rep_id: str
    value: int = Field(ge=0)
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class NewDeal(BaseModel):
    """Insert payload produced by the form controller."""

    rep_id: str = Field(min_length=1)
    value: int = Field(gt=0)


class DealFilter(BaseModel):
    """Optional server-side bounds for a bulk deal read (half-open range)."""

    created_from: datetime | None = None
    created_before: datetime | None = None

    @classmethod
    def for_quarter(cls, window: QuarterWindow) -> DealFilter:
        return cls(created_from=window.start, created_before=window.end)


# ── Derived ─────────────────────────────────────────────────────────────────


class AggregateRow(BaseModel):
    """One rep's current-quarter total. Derived, never persisted."""

    rep_id: str
    rep_name: str
    total_value: int = 0
    deal_count: int = 0
    resolved: bool = True


class DashboardState(BaseModel):
    """What a view model publishes to listeners after every change."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    rows: list[AggregateRow] = Field(default_factory=list)
    status: FeedStatus = FeedStatus.IDLE
    error_kind: str | None = None
    error_message: str | None = None
    quarter: QuarterWindow | None = None

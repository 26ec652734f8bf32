"""Platform adapter abstract base classes -- the interfaces the dashboard consumes.

Authentication, row storage, and realtime change delivery all live on the
hosted platform. These ABCs pin down the boundary so the view model, the
form controller, and the session layer can be exercised against in-memory
doubles, and so a different backend can be plugged in without touching them.

Every implementation converts its SDK's exceptions into the error taxonomy
in ``src.salesboard.core.errors`` before they leave the adapter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from src.salesboard.sales.schemas import AccountType, Deal, DealFilter, NewDeal, UserProfile


# ── Identity ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CurrentUser:
    """Identity as reported by the provider."""

    id: str
    email_confirmed: bool
    email: str | None = None


@dataclass(frozen=True)
class AuthSession:
    """Tokens plus the identity they belong to."""

    access_token: str
    refresh_token: str
    user: CurrentUser


class AuthEvent(str, Enum):
    """Session state changes pushed by the provider."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


AuthListener = Callable[[AuthEvent, "AuthSession | None"], None]


class IdentityProvider(ABC):
    """Credential checks and session state, owned by the platform."""

    @abstractmethod
    async def sign_up(
        self,
        email: str,
        password: str,
        name: str,
        account_type: AccountType,
    ) -> CurrentUser:
        """Create an account; the provider's hook provisions the profile row."""
        ...

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthSession:
        """Exchange credentials for a session. Raises AuthError."""
        ...

    @abstractmethod
    async def sign_out(self) -> None:
        """End the provider session."""
        ...

    @abstractmethod
    async def get_current_user(self) -> CurrentUser:
        """Return the signed-in identity. Raises AuthError when there is none."""
        ...

    @abstractmethod
    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        ...


# ── Store ───────────────────────────────────────────────────────────────────


class DealStore(ABC):
    """Deal and profile tables. Access policy is enforced by the platform."""

    @abstractmethod
    async def list_deals(self, filters: DealFilter | None = None) -> list[Deal]:
        """Bulk read of deal rows, optionally bounded by created_at."""
        ...

    @abstractmethod
    async def insert_deal(self, deal: NewDeal) -> Deal:
        """Insert one deal. Raises InsertRejected on policy or constraint denial."""
        ...

    @abstractmethod
    async def list_profiles(self) -> list[UserProfile]:
        """All profile rows visible to the caller."""
        ...

    @abstractmethod
    async def get_profile(self, user_id: str) -> UserProfile | None:
        """One profile by id, or None."""
        ...


# ── Live Feed ───────────────────────────────────────────────────────────────


DEAL_ENTITY = "Deal"


class FeedState(str, Enum):
    """Transport-level subscription status reported by a ChangeFeed."""

    SUBSCRIBED = "subscribed"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


InsertCallback = Callable[[Deal], None]
StatusCallback = Callable[[FeedState, "Exception | None"], None]


@dataclass
class FeedSubscription:
    """Opaque handle returned by ChangeFeed.subscribe."""

    entity: str
    handle: object = None
    active: bool = True
    extra: dict = field(default_factory=dict)


class ChangeFeed(ABC):
    """Push notifications for committed inserts."""

    @abstractmethod
    async def subscribe(
        self,
        entity: str,
        on_insert: InsertCallback,
        on_status: StatusCallback | None = None,
    ) -> FeedSubscription:
        """Open a subscription. Raises InitializationError if it cannot be established."""
        ...

    @abstractmethod
    async def unsubscribe(self, subscription: FeedSubscription) -> None:
        """Close a subscription. No callbacks fire for it afterwards."""
        ...


# ── Bundle ──────────────────────────────────────────────────────────────────


@dataclass
class Platform:
    """The three platform services bound to one client/session."""

    identity: IdentityProvider
    store: DealStore
    feed: ChangeFeed
    closer: Callable[[], Awaitable[None]] | None = None

    async def close(self) -> None:
        if self.closer is not None:
            await self.closer()


PlatformFactory = Callable[[], Awaitable[Platform]]

"""Explicit session context for signed-in users.

A session is either ``SignedIn`` or the ``NO_SESSION`` singleton; nothing
downstream looks identity up from ambient state. SessionManager creates a
SignedIn on sign-in, hands it to whoever needs identity, and tears it down
(view model disposed, provider signed out, client closed) on sign-out or
when the provider reports SIGNED_OUT.

Each session gets its own platform client, so the platform's row-level
policies see the real caller, and at most one SalesViewModel.
"""

from __future__ import annotations

import asyncio
import secrets
from dataclasses import dataclass, field
from datetime import timezone, tzinfo

import structlog

from src.salesboard.core.errors import AuthError, DashboardError
from src.salesboard.platform.base import AuthEvent, AuthSession, CurrentUser, Platform, PlatformFactory
from src.salesboard.sales.aggregator import SalesViewModel
from src.salesboard.sales.schemas import AccountType, UserProfile

logger = structlog.get_logger(__name__)


@dataclass
class SignedIn:
    """A live, authenticated session."""

    session_id: str
    user: UserProfile
    email_confirmed: bool
    platform: Platform
    access_token: str
    refresh_token: str
    view_model: SalesViewModel | None = None
    _remove_auth_listener: object = field(default=None, repr=False)
    _dashboard_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class NoSession:
    """The explicit absence of a session."""

    _instance: NoSession | None = None

    def __new__(cls) -> NoSession:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_SESSION"


NO_SESSION = NoSession()

Session = SignedIn | NoSession


class SessionManager:
    """Owns every SignedIn session of this process.

    Args:
        platform_factory: Async callable returning a fresh Platform bundle.
        tz: Calendar timezone handed to view models.
        include_zero_totals: Zero-total policy handed to view models.
    """

    def __init__(
        self,
        platform_factory: PlatformFactory,
        *,
        tz: tzinfo = timezone.utc,
        include_zero_totals: bool = False,
    ) -> None:
        self._platform_factory = platform_factory
        self._tz = tz
        self._include_zero_totals = include_zero_totals
        self._sessions: dict[str, SignedIn] = {}
        self._background: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    async def sign_up(
        self,
        email: str,
        password: str,
        name: str,
        account_type: AccountType,
    ) -> CurrentUser:
        """Create an account. The session is not signed in afterwards."""
        platform = await self._platform_factory()
        try:
            user = await platform.identity.sign_up(email, password, name, account_type)
        finally:
            await platform.close()
        logger.info("session.signed_up", user_id=user.id, account_type=account_type.value)
        return user

    async def sign_in(self, email: str, password: str) -> SignedIn:
        """Authenticate and register a new session.

        Raises:
            AuthError: Bad credentials, unconfirmed email, or no profile row.
        """
        platform = await self._platform_factory()
        try:
            auth = await platform.identity.sign_in(email, password)
            if not auth.user.email_confirmed:
                raise AuthError("Confirm your email address before signing in.")
            try:
                profile = await platform.store.get_profile(auth.user.id)
            except DashboardError as exc:
                logger.warning("session.profile_lookup_failed", user_id=auth.user.id, error=exc.message)
                raise AuthError("Sign-in could not be completed. Please try again.") from exc
            if profile is None:
                raise AuthError("Your account has no profile yet. Please try again shortly.")
        except BaseException:
            await platform.close()
            raise

        session = SignedIn(
            session_id=secrets.token_urlsafe(32),
            user=profile,
            email_confirmed=auth.user.email_confirmed,
            platform=platform,
            access_token=auth.access_token,
            refresh_token=auth.refresh_token,
        )
        session._remove_auth_listener = platform.identity.on_auth_state_change(
            lambda event, auth_session: self._on_auth_event(session.session_id, event, auth_session)
        )
        self._sessions[session.session_id] = session
        logger.info(
            "session.signed_in",
            user_id=profile.id,
            account_type=profile.account_type.value,
        )
        return session

    def resolve(self, session_id: str | None) -> Session:
        """Look up a session id; unknown or missing ids give NO_SESSION."""
        if not session_id:
            return NO_SESSION
        return self._sessions.get(session_id, NO_SESSION)

    async def dashboard_for(self, session: SignedIn) -> SalesViewModel:
        """Return the session's view model, creating and initializing it once.

        Raises:
            InitializationError: If the first initialize fails. The view
                model stays attached so a later retry can resync it.
        """
        async with session._dashboard_lock:
            if session.view_model is None or session.view_model.disposed:
                session.view_model = SalesViewModel(
                    session.platform.store,
                    session.platform.feed,
                    tz=self._tz,
                    include_zero_totals=self._include_zero_totals,
                )
                await session.view_model.initialize(session.user.id)
            return session.view_model

    async def sign_out(self, session: Session) -> None:
        """End a session. Idempotent; NO_SESSION is a no-op."""
        if not isinstance(session, SignedIn):
            return
        if self._sessions.pop(session.session_id, None) is None:
            return
        await self._teardown(session, provider_sign_out=True)

    async def close(self) -> None:
        """Dispose every session (application shutdown)."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await self._teardown(session, provider_sign_out=False)
        for task in list(self._background):
            task.cancel()

    # ── Internals ───────────────────────────────────────────────────────────

    async def _teardown(self, session: SignedIn, *, provider_sign_out: bool) -> None:
        if callable(session._remove_auth_listener):
            session._remove_auth_listener()
        if session.view_model is not None:
            await session.view_model.dispose()
        if provider_sign_out:
            try:
                await session.platform.identity.sign_out()
            except DashboardError as exc:
                logger.warning("session.provider_sign_out_failed", user_id=session.user.id, error=exc.message)
        await session.platform.close()
        logger.info("session.signed_out", user_id=session.user.id)

    def _on_auth_event(
        self,
        session_id: str,
        event: AuthEvent,
        auth_session: AuthSession | None,
    ) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return

        if event == AuthEvent.TOKEN_REFRESHED and auth_session is not None:
            session.access_token = auth_session.access_token
            session.refresh_token = auth_session.refresh_token
            logger.debug("session.token_refreshed", user_id=session.user.id)
        elif event == AuthEvent.SIGNED_OUT:
            self._sessions.pop(session_id, None)
            task = asyncio.get_running_loop().create_task(
                self._teardown(session, provider_sign_out=False),
                name=f"session_teardown_{session.user.id}",
            )
            self._background.add(task)
            task.add_done_callback(self._background.discard)

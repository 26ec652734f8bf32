"""Supabase adapters -- identity, tables, and realtime on supabase.AsyncClient.

Implements the platform ABCs on top of the official ``supabase`` SDK:

- SupabaseIdentityProvider: GoTrue sign-up/sign-in/sign-out and auth events
- SupabaseDealStore: PostgREST reads/inserts on ``deals`` and ``profiles``
- SupabaseChangeFeed: Realtime ``postgres_changes`` INSERT subscriptions

Key implementation details:
- Reads are retried with tenacity on transport errors; inserts are not
- Every SDK exception is converted to the dashboard error taxonomy here;
  provider detail goes to the log, never to the user
- One AsyncClient per session so row-level policies see the real caller

Platform schema (owned by the platform project, consumed as a contract):
    profiles(id uuid, full_name text, account_type text)
    deals(id, user_id uuid -> profiles.id, value int, created_at timestamptz)
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from typing import Any

import httpx
import structlog
from supabase import AsyncClient, PostgrestAPIError, acreate_client
from supabase import AuthError as SupabaseAuthError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.salesboard.config import Settings
from src.salesboard.core.errors import AuthError, InitializationError, InsertRejected
from src.salesboard.platform.base import (
    DEAL_ENTITY,
    AuthEvent,
    AuthListener,
    AuthSession,
    ChangeFeed,
    CurrentUser,
    DealStore,
    FeedState,
    FeedSubscription,
    IdentityProvider,
    InsertCallback,
    Platform,
    StatusCallback,
)
from src.salesboard.sales.schemas import AccountType, Deal, DealFilter, NewDeal, UserProfile

logger = structlog.get_logger(__name__)

SCHEMA = "public"
DEALS_TABLE = "deals"
PROFILES_TABLE = "profiles"

# entity name (ChangeFeed contract) -> table
ENTITY_TABLES = {DEAL_ENTITY: DEALS_TABLE}

# PostgREST / Postgres error codes that mean "policy or constraint said no"
_POLICY_CODES = {"42501", "PGRST301"}
_CONSTRAINT_CODES = {"23502", "23503", "23505", "23514"}


# ── Row Mapping ──────────────────────────────────────────────────────────────


def deal_from_row(row: dict[str, Any]) -> Deal:
    """Convert a ``deals`` row (REST or realtime record) into a Deal."""
    return Deal(
        id=str(row["id"]),
        rep_id=str(row["user_id"]),
        value=int(row["value"]),
        created_at=row["created_at"],
    )


def profile_from_row(row: dict[str, Any]) -> UserProfile:
    """Convert a ``profiles`` row into a UserProfile.

    Unknown account types are treated as ``rep``, the least-privileged role.
    """
    raw_type = str(row.get("account_type") or "").lower()
    try:
        account_type = AccountType(raw_type)
    except ValueError:
        logger.warning("supabase.unknown_account_type", profile_id=row.get("id"), value=raw_type)
        account_type = AccountType.REP
    return UserProfile(
        id=str(row["id"]),
        name=row.get("full_name") or "",
        account_type=account_type,
    )


def _record_from_payload(payload: Any) -> dict[str, Any] | None:
    """Pull the inserted row out of a realtime postgres_changes payload."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if isinstance(data, dict):
        record = data.get("record")
        if isinstance(record, dict):
            return record
    for key in ("record", "new"):
        record = payload.get(key)
        if isinstance(record, dict):
            return record
    return None


def _user_from_sdk(user: Any) -> CurrentUser:
    return CurrentUser(
        id=str(user.id),
        email_confirmed=bool(getattr(user, "email_confirmed_at", None)),
        email=getattr(user, "email", None),
    )


def _auth_session_from_sdk(session: Any) -> AuthSession | None:
    if session is None or getattr(session, "user", None) is None:
        return None
    return AuthSession(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        user=_user_from_sdk(session.user),
    )


# ── Identity ─────────────────────────────────────────────────────────────────


class SupabaseIdentityProvider(IdentityProvider):
    """GoTrue-backed identity.

    Args:
        client: Supabase AsyncClient owned by this session.
    """

    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    async def sign_up(
        self,
        email: str,
        password: str,
        name: str,
        account_type: AccountType,
    ) -> CurrentUser:
        try:
            response = await self._client.auth.sign_up({
                "email": email,
                "password": password,
                "options": {"data": {"full_name": name, "account_type": account_type.value}},
            })
        except SupabaseAuthError as exc:
            logger.warning("supabase.sign_up_failed", error=str(exc), code=getattr(exc, "code", None))
            raise AuthError("Sign-up was not accepted. Check your details and try again.") from exc
        except httpx.HTTPError as exc:
            logger.warning("supabase.sign_up_unreachable", error=str(exc))
            raise AuthError("Sign-up is unavailable right now. Please try again.") from exc

        if response.user is None:
            raise AuthError("Sign-up was not accepted. Check your details and try again.")
        return _user_from_sdk(response.user)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        try:
            response = await self._client.auth.sign_in_with_password({
                "email": email,
                "password": password,
            })
        except SupabaseAuthError as exc:
            code = getattr(exc, "code", None)
            logger.info("supabase.sign_in_rejected", code=code)
            if code == "email_not_confirmed" or "not confirmed" in str(exc).lower():
                raise AuthError("Confirm your email address before signing in.") from exc
            raise AuthError("Invalid email or password.") from exc
        except httpx.HTTPError as exc:
            logger.warning("supabase.sign_in_unreachable", error=str(exc))
            raise AuthError("Sign-in is unavailable right now. Please try again.") from exc

        session = _auth_session_from_sdk(response.session)
        if session is None:
            raise AuthError("Invalid email or password.")
        return session

    async def sign_out(self) -> None:
        try:
            await self._client.auth.sign_out()
        except (SupabaseAuthError, httpx.HTTPError) as exc:
            logger.warning("supabase.sign_out_failed", error=str(exc))
            raise AuthError("Sign-out could not reach the server.") from exc

    async def get_current_user(self) -> CurrentUser:
        try:
            response = await self._client.auth.get_user()
        except (SupabaseAuthError, httpx.HTTPError) as exc:
            logger.info("supabase.get_user_failed", error=str(exc))
            raise AuthError("Your session has expired. Please sign in again.") from exc
        if response is None or response.user is None:
            raise AuthError("Your session has expired. Please sign in again.")
        return _user_from_sdk(response.user)

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        def callback(event: str, session: Any) -> None:
            try:
                auth_event = AuthEvent(event)
            except ValueError:
                logger.debug("supabase.auth_event_ignored", auth_event=event)
                return
            listener(auth_event, _auth_session_from_sdk(session))

        subscription = self._client.auth.on_auth_state_change(callback)
        return subscription.unsubscribe


# ── Store ────────────────────────────────────────────────────────────────────


class SupabaseDealStore(DealStore):
    """PostgREST-backed deal and profile tables.

    Args:
        client: Supabase AsyncClient owned by this session.
        max_retries: Attempts for read calls on transport errors.
    """

    def __init__(self, client: AsyncClient, max_retries: int = 3) -> None:
        self._client = client
        self._max_retries = max(1, max_retries)

    async def _read(self, operation: str, query: Callable[[], Any]) -> list[dict[str, Any]]:
        """Execute a read with retry; convert failures to InitializationError."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await query().execute()
        except PostgrestAPIError as exc:
            logger.warning("supabase.read_failed", operation=operation, code=exc.code, error=exc.message)
            raise InitializationError("Could not load data from the server.") from exc
        except httpx.HTTPError as exc:
            logger.warning("supabase.read_unreachable", operation=operation, error=str(exc))
            raise InitializationError("The server could not be reached.") from exc
        return list(response.data or [])

    async def list_deals(self, filters: DealFilter | None = None) -> list[Deal]:
        def query() -> Any:
            builder = self._client.table(DEALS_TABLE).select("id,user_id,value,created_at")
            if filters is not None and filters.created_from is not None:
                builder = builder.gte("created_at", filters.created_from.isoformat())
            if filters is not None and filters.created_before is not None:
                builder = builder.lt("created_at", filters.created_before.isoformat())
            return builder.order("created_at")

        rows = await self._read("list_deals", query)
        deals = []
        for row in rows:
            try:
                deals.append(deal_from_row(row))
            except (KeyError, TypeError, ValueError):
                logger.warning("supabase.malformed_deal_row", row_id=row.get("id"))
        return deals

    async def insert_deal(self, deal: NewDeal) -> Deal:
        try:
            response = await (
                self._client.table(DEALS_TABLE)
                .insert({"user_id": deal.rep_id, "value": deal.value})
                .execute()
            )
        except PostgrestAPIError as exc:
            logger.warning("supabase.insert_rejected", code=exc.code, error=exc.message)
            if exc.code in _POLICY_CODES:
                raise InsertRejected("You are not allowed to add a deal for this representative.") from exc
            if exc.code in _CONSTRAINT_CODES:
                raise InsertRejected("The deal was rejected because it references an unknown representative or has invalid data.") from exc
            raise InsertRejected("The deal could not be saved.") from exc
        except httpx.HTTPError as exc:
            logger.warning("supabase.insert_unreachable", error=str(exc))
            raise InsertRejected("The deal could not be saved because the server was unreachable.") from exc

        if not response.data:
            # RLS can filter the returned representation to nothing.
            raise InsertRejected("You are not allowed to add a deal for this representative.")
        return deal_from_row(response.data[0])

    async def list_profiles(self) -> list[UserProfile]:
        rows = await self._read(
            "list_profiles",
            lambda: self._client.table(PROFILES_TABLE).select("id,full_name,account_type"),
        )
        return [profile_from_row(row) for row in rows if row.get("id")]

    async def get_profile(self, user_id: str) -> UserProfile | None:
        rows = await self._read(
            "get_profile",
            lambda: (
                self._client.table(PROFILES_TABLE)
                .select("id,full_name,account_type")
                .eq("id", user_id)
                .limit(1)
            ),
        )
        return profile_from_row(rows[0]) if rows else None


# ── Live Feed ────────────────────────────────────────────────────────────────


class SupabaseChangeFeed(ChangeFeed):
    """Realtime ``postgres_changes`` INSERT subscriptions.

    Args:
        client: Supabase AsyncClient owned by this session.
        subscribe_timeout: Seconds to wait for the channel to report SUBSCRIBED.
    """

    def __init__(self, client: AsyncClient, subscribe_timeout: float = 10.0) -> None:
        self._client = client
        self._subscribe_timeout = subscribe_timeout

    async def subscribe(
        self,
        entity: str,
        on_insert: InsertCallback,
        on_status: StatusCallback | None = None,
    ) -> FeedSubscription:
        table = ENTITY_TABLES.get(entity)
        if table is None:
            raise InitializationError(f"No live feed for {entity!r}.")

        subscription = FeedSubscription(entity=entity)
        subscribed = asyncio.Event()
        failure: list[Exception | None] = []

        def handle_insert(payload: Any) -> None:
            if not subscription.active:
                return
            record = _record_from_payload(payload)
            if record is None:
                logger.warning("supabase.feed_payload_without_record", entity=entity)
                return
            try:
                deal = deal_from_row(record)
            except (KeyError, TypeError, ValueError):
                logger.warning("supabase.feed_malformed_record", entity=entity, row_id=record.get("id"))
                return
            on_insert(deal)

        def handle_status(status: Any, err: Exception | None = None) -> None:
            state = str(getattr(status, "value", status)).upper()
            if state == "SUBSCRIBED":
                subscribed.set()
                if on_status is not None and subscription.active:
                    on_status(FeedState.SUBSCRIBED, None)
                return

            if not subscribed.is_set():
                failure.append(err or RuntimeError(f"channel {state.lower()}"))
                subscribed.set()
                return

            if not subscription.active or on_status is None:
                return
            if state == "CLOSED":
                on_status(FeedState.CLOSED, err)
            else:
                on_status(FeedState.DISCONNECTED, err)

        channel = None
        try:
            channel = self._client.channel(f"{table}-inserts-{uuid.uuid4().hex[:8]}")
            channel.on_postgres_changes("INSERT", schema=SCHEMA, table=table, callback=handle_insert)
            await channel.subscribe(handle_status)
            await asyncio.wait_for(subscribed.wait(), timeout=self._subscribe_timeout)
        except asyncio.TimeoutError as exc:
            subscription.active = False
            logger.warning("supabase.feed_subscribe_timeout", table=table)
            await self._remove_quietly(channel)
            raise InitializationError("Live updates did not connect in time.") from exc
        except Exception as exc:
            subscription.active = False
            logger.warning("supabase.feed_subscribe_failed", table=table, error=str(exc))
            await self._remove_quietly(channel)
            raise InitializationError("Could not connect to live updates.") from exc

        if failure:
            subscription.active = False
            logger.warning("supabase.feed_subscribe_rejected", table=table, error=str(failure[0]))
            await self._remove_quietly(channel)
            raise InitializationError("Could not connect to live updates.")

        subscription.handle = channel
        logger.info("supabase.feed_subscribed", table=table)
        return subscription

    async def unsubscribe(self, subscription: FeedSubscription) -> None:
        if not subscription.active:
            return
        subscription.active = False
        await self._remove_quietly(subscription.handle)
        logger.info("supabase.feed_unsubscribed", entity=subscription.entity)

    async def _remove_quietly(self, channel: Any) -> None:
        if channel is None:
            return
        try:
            await self._client.remove_channel(channel)
        except Exception as exc:
            logger.warning("supabase.remove_channel_failed", error=str(exc))


# ── Factory ──────────────────────────────────────────────────────────────────


async def create_platform(settings: Settings) -> Platform:
    """Build a Platform bundle on a fresh AsyncClient."""
    client = await acreate_client(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)

    async def close() -> None:
        try:
            await client.remove_all_channels()
        except Exception as exc:
            logger.warning("supabase.client_close_failed", error=str(exc))

    return Platform(
        identity=SupabaseIdentityProvider(client),
        store=SupabaseDealStore(client, max_retries=settings.STORE_MAX_RETRIES),
        feed=SupabaseChangeFeed(client, subscribe_timeout=settings.FEED_SUBSCRIBE_TIMEOUT_SECONDS),
        closer=close,
    )

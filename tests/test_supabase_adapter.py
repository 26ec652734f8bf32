"""Unit tests for the Supabase adapters.

Uses MagicMock/AsyncMock stand-ins for supabase.AsyncClient -- no network.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from supabase import AuthError as SupabaseAuthError
from supabase import PostgrestAPIError

from src.salesboard.core.errors import AuthError, InitializationError, InsertRejected
from src.salesboard.platform.base import DEAL_ENTITY, ChangeFeed, DealStore, FeedState, IdentityProvider
from src.salesboard.platform.supabase import (
    SupabaseChangeFeed,
    SupabaseDealStore,
    SupabaseIdentityProvider,
    _record_from_payload,
    deal_from_row,
    profile_from_row,
)
from src.salesboard.sales.schemas import AccountType, DealFilter, NewDeal


# ── Helpers ────────────────────────────────────────────────────────────────


def _client_with_rows(rows=None, error=None) -> tuple[MagicMock, MagicMock]:
    """Client whose query builder chains to itself and executes to ``rows``."""
    builder = MagicMock()
    for method in ("select", "insert", "eq", "gte", "lt", "order", "limit"):
        getattr(builder, method).return_value = builder
    if error is not None:
        builder.execute = AsyncMock(side_effect=error)
    else:
        builder.execute = AsyncMock(return_value=MagicMock(data=rows))
    client = MagicMock()
    client.table.return_value = builder
    return client, builder


def _api_error(code: str, message: str = "denied") -> PostgrestAPIError:
    return PostgrestAPIError({"message": message, "code": code, "hint": None, "details": None})


DEAL_ROW = {"id": 7, "user_id": "u1", "value": 120, "created_at": "2026-10-05T09:30:00+00:00"}


# ── ABC Contract ───────────────────────────────────────────────────────────


class TestPlatformABCs:
    def test_deal_store_abstract_methods(self):
        assert DealStore.__abstractmethods__ == {"list_deals", "insert_deal", "list_profiles", "get_profile"}

    def test_change_feed_abstract_methods(self):
        assert ChangeFeed.__abstractmethods__ == {"subscribe", "unsubscribe"}

    def test_identity_cannot_be_instantiated(self):
        with pytest.raises(TypeError, match="abstract"):
            IdentityProvider()


# ── Row Mapping ────────────────────────────────────────────────────────────


class TestRowMapping:
    def test_deal_from_row(self):
        deal = deal_from_row(DEAL_ROW)
        assert (deal.id, deal.rep_id, deal.value) == ("7", "u1", 120)
        assert deal.created_at == datetime(2026, 10, 5, 9, 30, tzinfo=timezone.utc)

    def test_profile_from_row(self):
        profile = profile_from_row({"id": "u9", "full_name": "Zed", "account_type": "ADMIN"})
        assert profile.account_type == AccountType.ADMIN
        assert profile.name == "Zed"

    def test_unknown_account_type_is_least_privileged(self):
        profile = profile_from_row({"id": "u9", "full_name": None, "account_type": "owner"})
        assert profile.account_type == AccountType.REP
        assert profile.name == ""

    @pytest.mark.parametrize(
        "payload",
        [
            {"data": {"record": DEAL_ROW}},
            {"record": DEAL_ROW},
            {"new": DEAL_ROW},
        ],
    )
    def test_record_from_realtime_payload_shapes(self, payload):
        assert _record_from_payload(payload) == DEAL_ROW

    def test_record_missing(self):
        assert _record_from_payload({"data": {}}) is None
        assert _record_from_payload("nope") is None


# ── Store ──────────────────────────────────────────────────────────────────


class TestSupabaseDealStore:
    @pytest.mark.asyncio
    async def test_list_deals_applies_quarter_bounds(self):
        client, builder = _client_with_rows([DEAL_ROW])
        store = SupabaseDealStore(client)
        start = datetime(2026, 10, 1, tzinfo=timezone.utc)
        end = datetime(2027, 1, 1, tzinfo=timezone.utc)

        deals = await store.list_deals(DealFilter(created_from=start, created_before=end))

        client.table.assert_called_with("deals")
        builder.gte.assert_called_once_with("created_at", start.isoformat())
        builder.lt.assert_called_once_with("created_at", end.isoformat())
        assert [d.id for d in deals] == ["7"]

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self):
        client, _ = _client_with_rows([DEAL_ROW, {"id": 8, "value": 3}])
        deals = await SupabaseDealStore(client).list_deals()
        assert [d.id for d in deals] == ["7"]

    @pytest.mark.asyncio
    async def test_api_error_becomes_initialization_error(self):
        client, _ = _client_with_rows(error=_api_error("PGRST000", "boom"))

        with pytest.raises(InitializationError):
            await SupabaseDealStore(client).list_deals()

    @pytest.mark.asyncio
    async def test_transport_errors_retry_then_fail(self):
        client, builder = _client_with_rows(error=httpx.ConnectError("refused"))

        with pytest.raises(InitializationError, match="could not be reached"):
            await SupabaseDealStore(client, max_retries=1).list_profiles()

        assert builder.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self):
        client, builder = _client_with_rows()
        builder.execute = AsyncMock(side_effect=[httpx.ReadTimeout("slow"), MagicMock(data=[DEAL_ROW])])

        deals = await SupabaseDealStore(client, max_retries=2).list_deals()

        assert builder.execute.await_count == 2
        assert len(deals) == 1

    @pytest.mark.asyncio
    async def test_insert_maps_rep_to_user_id(self):
        client, builder = _client_with_rows([DEAL_ROW])

        deal = await SupabaseDealStore(client).insert_deal(NewDeal(rep_id="u1", value=120))

        builder.insert.assert_called_once_with({"user_id": "u1", "value": 120})
        assert deal.id == "7"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code,fragment",
        [("42501", "not allowed"), ("23503", "unknown representative"), ("XX000", "could not be saved")],
    )
    async def test_insert_errors_become_insert_rejected(self, code, fragment):
        client, _ = _client_with_rows(error=_api_error(code))

        with pytest.raises(InsertRejected, match=fragment):
            await SupabaseDealStore(client).insert_deal(NewDeal(rep_id="u2", value=5))

    @pytest.mark.asyncio
    async def test_insert_with_empty_representation_is_rejected(self):
        client, _ = _client_with_rows([])

        with pytest.raises(InsertRejected):
            await SupabaseDealStore(client).insert_deal(NewDeal(rep_id="u2", value=5))

    @pytest.mark.asyncio
    async def test_insert_is_not_retried(self):
        client, builder = _client_with_rows(error=httpx.ConnectError("refused"))

        with pytest.raises(InsertRejected, match="unreachable"):
            await SupabaseDealStore(client, max_retries=3).insert_deal(NewDeal(rep_id="u1", value=5))

        assert builder.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_get_profile(self):
        client, builder = _client_with_rows([{"id": "u1", "full_name": "Alice", "account_type": "rep"}])

        profile = await SupabaseDealStore(client).get_profile("u1")

        builder.eq.assert_called_once_with("id", "u1")
        assert profile.name == "Alice"

    @pytest.mark.asyncio
    async def test_get_profile_missing(self):
        client, _ = _client_with_rows([])
        assert await SupabaseDealStore(client).get_profile("nobody") is None


# ── Identity ───────────────────────────────────────────────────────────────


def _sdk_user(confirmed: bool = True) -> MagicMock:
    return MagicMock(id="u1", email="a@example.com", email_confirmed_at="2026-01-01T00:00:00Z" if confirmed else None)


class TestSupabaseIdentityProvider:
    @pytest.mark.asyncio
    async def test_sign_up_passes_profile_metadata(self):
        client = MagicMock()
        client.auth.sign_up = AsyncMock(return_value=MagicMock(user=_sdk_user(confirmed=False)))

        user = await SupabaseIdentityProvider(client).sign_up("a@example.com", "pw1234", "Alice", AccountType.REP)

        payload = client.auth.sign_up.await_args.args[0]
        assert payload["options"]["data"] == {"full_name": "Alice", "account_type": "rep"}
        assert user.email_confirmed is False

    @pytest.mark.asyncio
    async def test_sign_in_returns_tokens(self):
        client = MagicMock()
        session = MagicMock(access_token="at", refresh_token="rt", user=_sdk_user())
        client.auth.sign_in_with_password = AsyncMock(return_value=MagicMock(session=session))

        auth = await SupabaseIdentityProvider(client).sign_in("a@example.com", "pw1234")

        assert (auth.access_token, auth.refresh_token, auth.user.id) == ("at", "rt", "u1")
        assert auth.user.email_confirmed

    @pytest.mark.asyncio
    async def test_bad_credentials(self):
        client = MagicMock()
        client.auth.sign_in_with_password = AsyncMock(
            side_effect=SupabaseAuthError("Invalid login credentials", "invalid_credentials")
        )

        with pytest.raises(AuthError, match="Invalid email or password"):
            await SupabaseIdentityProvider(client).sign_in("a@example.com", "bad")

    @pytest.mark.asyncio
    async def test_unconfirmed_email(self):
        client = MagicMock()
        client.auth.sign_in_with_password = AsyncMock(
            side_effect=SupabaseAuthError("Email not confirmed", "email_not_confirmed")
        )

        with pytest.raises(AuthError, match="Confirm your email"):
            await SupabaseIdentityProvider(client).sign_in("a@example.com", "pw1234")

    def test_auth_events_are_translated(self):
        client = MagicMock()
        events = []
        SupabaseIdentityProvider(client).on_auth_state_change(lambda event, session: events.append((event, session)))
        callback = client.auth.on_auth_state_change.call_args.args[0]

        callback("SIGNED_OUT", None)
        callback("PASSWORD_RECOVERY", None)

        assert [e.value for e, _ in events] == ["SIGNED_OUT"]


# ── Live Feed ──────────────────────────────────────────────────────────────


def _realtime_client(status: str = "SUBSCRIBED") -> tuple[MagicMock, MagicMock]:
    channel = MagicMock()

    async def subscribe(callback):
        callback(status, None)
        return channel

    channel.subscribe = AsyncMock(side_effect=subscribe)
    client = MagicMock()
    client.channel.return_value = channel
    client.remove_channel = AsyncMock()
    return client, channel


class TestSupabaseChangeFeed:
    @pytest.mark.asyncio
    async def test_subscribe_registers_insert_listener(self):
        client, channel = _realtime_client()
        received = []

        subscription = await SupabaseChangeFeed(client).subscribe(DEAL_ENTITY, received.append)

        kwargs = channel.on_postgres_changes.call_args.kwargs
        assert channel.on_postgres_changes.call_args.args[0] == "INSERT"
        assert (kwargs["schema"], kwargs["table"]) == ("public", "deals")
        kwargs["callback"]({"data": {"record": DEAL_ROW}})
        assert [d.id for d in received] == ["7"]
        assert subscription.active

    @pytest.mark.asyncio
    async def test_rejected_subscription_raises_and_cleans_up(self):
        client, channel = _realtime_client(status="CHANNEL_ERROR")

        with pytest.raises(InitializationError):
            await SupabaseChangeFeed(client).subscribe(DEAL_ENTITY, lambda deal: None)

        client.remove_channel.assert_awaited_once_with(channel)

    @pytest.mark.asyncio
    async def test_subscribe_timeout(self):
        client, channel = _realtime_client()
        channel.subscribe = AsyncMock(return_value=channel)

        with pytest.raises(InitializationError, match="in time"):
            await SupabaseChangeFeed(client, subscribe_timeout=0.01).subscribe(DEAL_ENTITY, lambda deal: None)

    @pytest.mark.asyncio
    async def test_unknown_entity(self):
        client, _ = _realtime_client()
        with pytest.raises(InitializationError):
            await SupabaseChangeFeed(client).subscribe("Invoice", lambda deal: None)

    @pytest.mark.asyncio
    async def test_drop_after_subscribe_reports_disconnect(self):
        client, channel = _realtime_client()
        statuses = []
        feed = SupabaseChangeFeed(client)

        await feed.subscribe(DEAL_ENTITY, lambda deal: None, lambda state, exc: statuses.append(state))
        status_callback = channel.subscribe.await_args.args[0]
        status_callback("TIMED_OUT", None)
        status_callback("CLOSED", None)

        assert statuses == [FeedState.SUBSCRIBED, FeedState.DISCONNECTED, FeedState.CLOSED]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self):
        client, channel = _realtime_client()
        received = []
        feed = SupabaseChangeFeed(client)

        subscription = await feed.subscribe(DEAL_ENTITY, received.append)
        await feed.unsubscribe(subscription)
        await feed.unsubscribe(subscription)
        channel.on_postgres_changes.call_args.kwargs["callback"]({"record": DEAL_ROW})

        assert received == []
        client.remove_channel.assert_awaited_once_with(channel)

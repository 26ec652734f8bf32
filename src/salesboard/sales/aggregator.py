"""Live per-rep quarter totals: baseline read plus realtime insert events.

SalesViewModel owns the mapping from representative to current-quarter
total for one signed-in session. It is fed by two sources:

1. A bulk read of the quarter's deals (the baseline).
2. Insert events pushed by the platform's change feed.

The feed subscription is opened BEFORE the bulk read. Its callback only
enqueues onto an asyncio.Queue; a single consumer task drains that queue
in arrival order once the baseline exists. Events that arrived while the
read was in flight are therefore buffered, not dropped or raced, and any
of them already contained in the baseline (same deal id) are skipped.

Events after that point are applied as delivered. The feed is not assumed
to be exactly-once: a redelivered insert is counted again. Only the
baseline/feed overlap is reconciled by id.

Reconnection always goes through a full initialize (``resync``); the view
model never assumes it missed nothing while disconnected.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone, tzinfo

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.salesboard.core.errors import DashboardError, FeedDisconnected, InitializationError
from src.salesboard.core.monitoring import active_view_models, feed_events_total, view_model_resyncs_total
from src.salesboard.platform.base import (
    DEAL_ENTITY,
    ChangeFeed,
    DealStore,
    FeedState,
    FeedSubscription,
)
from src.salesboard.sales.quarter import QuarterWindow, quarter_window
from src.salesboard.sales.schemas import (
    AccountType,
    AggregateRow,
    DashboardState,
    Deal,
    DealFilter,
    FeedStatus,
    UserProfile,
)

logger = structlog.get_logger(__name__)

StateListener = Callable[[DashboardState], None]


def fallback_rep_name(rep_id: str) -> str:
    """Display name for a deal whose profile is not (yet) visible."""
    return f"Unknown rep ({rep_id[:8]})"


class SalesViewModel:
    """Single source of truth for the dashboard's per-rep quarter totals.

    Args:
        store: Deal/profile store used for the baseline and profile lookups.
        feed: Change feed delivering deal inserts.
        tz: Calendar timezone for quarter boundaries.
        include_zero_totals: Also show every known ``rep`` profile with a
            zero total when they have no deals this quarter.
        clock: Returns "now"; read once per initialize.
        resync_attempts: Initialize attempts made by ``resync``.
        resync_wait: tenacity wait strategy between resync attempts.
    """

    def __init__(
        self,
        store: DealStore,
        feed: ChangeFeed,
        *,
        tz: tzinfo = timezone.utc,
        include_zero_totals: bool = False,
        clock: Callable[[], datetime] | None = None,
        resync_attempts: int = 3,
        resync_wait=None,
    ) -> None:
        self._store = store
        self._feed = feed
        self._tz = tz
        self._include_zero_totals = include_zero_totals
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._resync_attempts = max(1, resync_attempts)
        self._resync_wait = resync_wait or wait_exponential(multiplier=0.5, min=0.5, max=8)

        self._totals: dict[str, int] = {}
        self._counts: dict[str, int] = {}
        self._profiles: dict[str, UserProfile] = {}
        self._quarter: QuarterWindow | None = None

        self._status = FeedStatus.IDLE
        self._error: DashboardError | None = None
        self._listeners: list[StateListener] = []

        self._generation = 0
        self._disposed = False
        self._user_id: str | None = None
        self._init_lock = asyncio.Lock()
        self._subscription: FeedSubscription | None = None
        self._consumer: asyncio.Task | None = None
        self._queue: asyncio.Queue | None = None
        self._profile_refresh: asyncio.Task | None = None
        self._refresh_requested: set[str] = set()
        self._refresh_pending: set[str] = set()
        self._dropped_during_sync = False

        active_view_models.inc()

    # ── Properties ──────────────────────────────────────────────────────────

    @property
    def status(self) -> FeedStatus:
        return self._status

    @property
    def last_error(self) -> DashboardError | None:
        return self._error

    @property
    def quarter(self) -> QuarterWindow | None:
        return self._quarter

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def stale(self) -> bool:
        """True when displayed totals may be missing events."""
        return self._status in (FeedStatus.DISCONNECTED, FeedStatus.FAILED)

    # ── Lifecycle ───────────────────────────────────────────────────────────

    async def initialize(self, current_user_id: str) -> None:
        """Fix the quarter, subscribe, read the baseline, then go live.

        Safe to call again: the previous subscription and consumer are torn
        down and the mapping is rebuilt from scratch.

        Raises:
            InitializationError: If the subscription or the bulk read fails,
                or the view model has been disposed. The caller may retry.
        """
        if self._disposed:
            raise InitializationError("Dashboard has been closed; open it again to reload.")

        async with self._init_lock:
            await self._teardown_live()

            self._generation += 1
            generation = self._generation
            self._user_id = current_user_id
            self._dropped_during_sync = False
            window = quarter_window(self._clock(), self._tz)
            self._quarter = window
            queue: asyncio.Queue[tuple[int, Deal]] = asyncio.Queue()
            self._queue = queue
            self._set_status(FeedStatus.SYNCING, None)

            log = logger.bind(user_id=current_user_id, generation=generation, quarter=window.label)
            log.info("view_model.initialize_started")

            def on_insert(deal: Deal) -> None:
                self._enqueue(generation, queue, deal)

            def on_status(state: FeedState, exc: Exception | None) -> None:
                self._on_feed_status(generation, state, exc)

            try:
                subscription = await self._feed.subscribe(DEAL_ENTITY, on_insert, on_status)
            except Exception as exc:
                if self._is_stale(generation):
                    return
                error = self._fail(exc, "Could not connect to live updates.")
                log.warning("view_model.subscribe_failed", error=str(exc))
                if error is exc:
                    raise
                raise error from exc

            if self._is_stale(generation):
                # Disposed while subscribing -- release the handle we just got.
                await self._release(subscription)
                return
            self._subscription = subscription

            try:
                deals = await self._store.list_deals(DealFilter.for_quarter(window))
                profiles = await self._store.list_profiles()
            except Exception as exc:
                if self._is_stale(generation):
                    log.info("view_model.baseline_discarded")
                    return
                await self._teardown_live()
                error = self._fail(exc, "Could not load this quarter's deals.")
                log.warning("view_model.baseline_failed", error=str(exc))
                if error is exc:
                    raise
                raise error from exc

            if self._is_stale(generation):
                log.info("view_model.baseline_discarded")
                return

            baseline_ids = self._load_baseline(window, deals, profiles)
            buffered = queue.qsize()
            self._consumer = asyncio.create_task(
                self._consume(generation, queue, buffered, baseline_ids),
                name=f"sales_view_model_consumer_{generation}",
            )

            if self._dropped_during_sync:
                self._set_status(FeedStatus.DISCONNECTED, FeedDisconnected(
                    "Live updates were interrupted while loading; totals may be out of date."
                ))
            else:
                self._set_status(FeedStatus.LIVE, None)

            log.info(
                "view_model.initialized",
                baseline_deals=len(baseline_ids),
                buffered_events=buffered,
                reps=len(self._totals),
            )

    async def resync(self) -> None:
        """Full resynchronisation: re-run initialize with retry and backoff.

        Raises:
            InitializationError: After the final failed attempt, or when the
                view model was never initialized or has been disposed.
        """
        if self._disposed:
            raise InitializationError("Dashboard has been closed; open it again to reload.")
        if self._user_id is None:
            raise InitializationError("Dashboard has not been loaded yet.")

        view_model_resyncs_total.inc()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._resync_attempts),
            wait=self._resync_wait,
            retry=retry_if_exception_type(InitializationError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                logger.info(
                    "view_model.resync_attempt",
                    attempt=attempt.retry_state.attempt_number,
                    user_id=self._user_id,
                )
                await self.initialize(self._user_id)

    async def dispose(self) -> None:
        """Stop everything. Idempotent; safe while initialize is in flight.

        After this returns no listener is called again and feed events
        (including ones already queued) never touch the mapping.
        """
        if self._disposed:
            return
        self._disposed = True
        self._generation += 1
        self._status = FeedStatus.DISPOSED
        self._listeners.clear()
        self._queue = None
        await self._teardown_live()
        active_view_models.dec()
        logger.info("view_model.disposed", user_id=self._user_id)

    # ── Events ──────────────────────────────────────────────────────────────

    def on_deal_inserted(self, deal: Deal) -> bool:
        """Apply one insert event. Returns True if the mapping changed.

        Out-of-quarter deals are ignored. No deduplication by id happens
        here: a redelivered event is counted again.
        """
        if self._disposed or self._quarter is None:
            return False

        if not self._quarter.contains(deal.created_at):
            feed_events_total.labels(outcome="out_of_quarter").inc()
            return False

        self._totals[deal.rep_id] = self._totals.get(deal.rep_id, 0) + deal.value
        self._counts[deal.rep_id] = self._counts.get(deal.rep_id, 0) + 1
        feed_events_total.labels(outcome="applied").inc()

        if deal.rep_id not in self._profiles:
            self._request_profile_refresh(deal.rep_id)

        self._notify()
        return True

    # ── Snapshot ────────────────────────────────────────────────────────────

    def current_snapshot(self) -> list[AggregateRow]:
        """Rows ordered by total (desc), then name, then rep id."""
        rep_ids = set(self._totals)
        if self._include_zero_totals:
            rep_ids.update(
                p.id for p in self._profiles.values() if p.account_type == AccountType.REP
            )

        rows = []
        for rep_id in rep_ids:
            profile = self._profiles.get(rep_id)
            rows.append(
                AggregateRow(
                    rep_id=rep_id,
                    rep_name=profile.name if profile else fallback_rep_name(rep_id),
                    total_value=self._totals.get(rep_id, 0),
                    deal_count=self._counts.get(rep_id, 0),
                    resolved=profile is not None,
                )
            )
        rows.sort(key=lambda r: (-r.total_value, r.rep_name.lower(), r.rep_id))
        return rows

    def state(self) -> DashboardState:
        return DashboardState(
            rows=self.current_snapshot(),
            status=self._status,
            error_kind=self._error.kind if self._error else None,
            error_message=self._error.message if self._error else None,
            quarter=self._quarter,
        )

    async def settle(self) -> None:
        """Wait until every event received so far has been applied.

        Also waits for a pending profile refresh, so rep names requested by
        those events are resolved when this returns.
        """
        queue = self._queue
        if queue is not None and self._consumer is not None and not self._consumer.done():
            await queue.join()
        refresh = self._profile_refresh
        if refresh is not None and not refresh.done():
            await asyncio.wait([refresh])

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a synchronous change listener; returns its remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # ── Internals ───────────────────────────────────────────────────────────

    def _is_stale(self, generation: int) -> bool:
        return self._disposed or generation != self._generation

    def _load_baseline(
        self,
        window: QuarterWindow,
        deals: list[Deal],
        profiles: list[UserProfile],
    ) -> set[str]:
        self._totals = {}
        self._counts = {}
        self._profiles = {p.id: p for p in profiles}
        self._refresh_requested = set()
        self._refresh_pending = set()

        baseline_ids: set[str] = set()
        for deal in deals:
            # The store may ignore the filter; membership is decided here.
            if not window.contains(deal.created_at):
                continue
            baseline_ids.add(deal.id)
            self._totals[deal.rep_id] = self._totals.get(deal.rep_id, 0) + deal.value
            self._counts[deal.rep_id] = self._counts.get(deal.rep_id, 0) + 1

        unresolved = set(self._totals) - set(self._profiles)
        if unresolved:
            logger.warning("view_model.unresolved_reps", rep_ids=sorted(unresolved))
            for rep_id in sorted(unresolved):
                self._request_profile_refresh(rep_id)
        return baseline_ids

    def _enqueue(self, generation: int, queue: asyncio.Queue, deal: Deal) -> None:
        if self._is_stale(generation):
            return
        queue.put_nowait((generation, deal))

    async def _consume(
        self,
        generation: int,
        queue: asyncio.Queue,
        buffered: int,
        baseline_ids: set[str],
    ) -> None:
        """Drain the channel in arrival order, one event at a time."""
        remaining_overlap = buffered
        while True:
            event_generation, deal = await queue.get()
            try:
                if self._is_stale(generation) or event_generation != generation:
                    continue
                if remaining_overlap > 0:
                    remaining_overlap -= 1
                    if deal.id in baseline_ids:
                        feed_events_total.labels(outcome="in_baseline").inc()
                        logger.debug("view_model.buffered_event_in_baseline", deal_id=deal.id)
                        continue
                self.on_deal_inserted(deal)
            except Exception:
                logger.error("view_model.event_failed", deal_id=deal.id, exc_info=True)
            finally:
                queue.task_done()

    def _on_feed_status(self, generation: int, state: FeedState, exc: Exception | None) -> None:
        if self._is_stale(generation):
            return
        if state == FeedState.SUBSCRIBED:
            logger.debug("view_model.feed_subscribed", generation=generation)
            return

        logger.warning(
            "view_model.feed_disconnected",
            generation=generation,
            state=state.value,
            error=str(exc) if exc else None,
        )
        if self._status == FeedStatus.SYNCING:
            self._dropped_during_sync = True
            return
        self._set_status(
            FeedStatus.DISCONNECTED,
            FeedDisconnected("Live updates were interrupted; totals may be out of date."),
        )

    def _fail(self, exc: Exception, message: str) -> InitializationError:
        error = exc if isinstance(exc, InitializationError) else InitializationError(message)
        self._set_status(FeedStatus.FAILED, error)
        return error

    def _set_status(self, status: FeedStatus, error: DashboardError | None) -> None:
        self._status = status
        self._error = error
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        state = self.state()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.warning("view_model.listener_failed", exc_info=True)

    def _request_profile_refresh(self, rep_id: str) -> None:
        if rep_id in self._refresh_requested:
            return
        self._refresh_requested.add(rep_id)
        self._refresh_pending.add(rep_id)
        if self._profile_refresh is not None and not self._profile_refresh.done():
            # Picked up by the running refresh's next round.
            return
        self._profile_refresh = asyncio.create_task(
            self._refresh_profiles(self._generation),
            name="sales_view_model_profile_refresh",
        )

    async def _refresh_profiles(self, generation: int) -> None:
        """Re-read profiles until every pending rep has had a read issued after its request.

        Reps still unknown afterwards are forgotten, so their next live
        event asks again.
        """
        while self._refresh_pending:
            batch, self._refresh_pending = self._refresh_pending, set()
            try:
                profiles = await self._store.list_profiles()
            except Exception as exc:
                logger.warning("view_model.profile_refresh_failed", error=str(exc))
                if not self._is_stale(generation):
                    self._refresh_requested -= batch | self._refresh_pending
                    self._refresh_pending = set()
                return
            if self._is_stale(generation):
                return
            self._profiles = {p.id: p for p in profiles}
            self._refresh_requested -= batch - set(self._profiles)
            logger.debug("view_model.profiles_refreshed", count=len(profiles))
            self._notify()

    async def _release(self, subscription: FeedSubscription) -> None:
        try:
            await self._feed.unsubscribe(subscription)
        except Exception as exc:
            logger.warning("view_model.unsubscribe_failed", error=str(exc))

    async def _teardown_live(self) -> None:
        tasks = [t for t in (self._consumer, self._profile_refresh) if t is not None]
        self._consumer = None
        self._profile_refresh = None
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await self._release(subscription)

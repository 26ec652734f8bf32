"""Dashboard endpoints: current view, live Server-Sent Events, and retry.

Each session's SalesViewModel is created on first access. A failed first
load is not an HTTP error: the view comes back with ``stale=True`` and a
banner pointing at the retry endpoint.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from src.salesboard.api.deps import get_session_manager, require_session
from src.salesboard.core.errors import InitializationError
from src.salesboard.core.session import SessionManager, SignedIn
from src.salesboard.sales.aggregator import SalesViewModel
from src.salesboard.sales.rendering import DashboardView, render_dashboard
from src.salesboard.sales.schemas import DashboardState

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])

RETRY_URL = "/api/v1/dashboard/retry"
HEARTBEAT_SECONDS = 15.0


async def load_view_model(manager: SessionManager, session: SignedIn) -> SalesViewModel:
    """The session's view model; a failed first load is kept for retry."""
    try:
        return await manager.dashboard_for(session)
    except InitializationError:
        if session.view_model is None:
            raise
        return session.view_model


@router.get("", response_model=DashboardView)
async def get_dashboard(
    session: SignedIn = Depends(require_session),
    manager: SessionManager = Depends(get_session_manager),
) -> DashboardView:
    """Current per-rep totals for this quarter."""
    view_model = await load_view_model(manager, session)
    return render_dashboard(view_model.state(), retry_url=RETRY_URL)


@router.post("/retry", response_model=DashboardView)
async def retry_dashboard(
    session: SignedIn = Depends(require_session),
    manager: SessionManager = Depends(get_session_manager),
) -> DashboardView:
    """Full resync: new subscription and a fresh baseline read.

    A resync that still fails returns the stale view with its banner.
    """
    view_model = await load_view_model(manager, session)
    try:
        await view_model.resync()
    except InitializationError as exc:
        logger.warning("dashboard.retry_failed", user_id=session.user.id, error=exc.message)
    return render_dashboard(view_model.state(), retry_url=RETRY_URL)


def latest_only(updates: asyncio.Queue[DashboardState]) -> Callable[[DashboardState], None]:
    """Listener that keeps only the newest state in a one-slot queue.

    A slow stream reader skips intermediate snapshots instead of piling them up.
    """

    def put(state: DashboardState) -> None:
        if updates.full():
            updates.get_nowait()
        updates.put_nowait(state)

    return put


def _sse(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


@router.get("/stream")
async def stream_dashboard(
    request: Request,
    session: SignedIn = Depends(require_session),
    manager: SessionManager = Depends(get_session_manager),
) -> StreamingResponse:
    """Server-Sent Events: one ``snapshot`` event per view model change."""
    view_model = await load_view_model(manager, session)
    updates: asyncio.Queue[DashboardState] = asyncio.Queue(maxsize=1)
    remove = view_model.add_listener(latest_only(updates))

    async def events() -> AsyncGenerator[str, None]:
        try:
            yield _sse("snapshot", render_dashboard(view_model.state(), RETRY_URL).model_dump_json())
            while not view_model.disposed:
                try:
                    state = await asyncio.wait_for(updates.get(), timeout=HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        break
                    yield ": keep-alive\n\n"
                    continue
                yield _sse("snapshot", render_dashboard(state, RETRY_URL).model_dump_json())
        finally:
            remove()
            logger.debug("dashboard.stream_closed", user_id=session.user.id)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )

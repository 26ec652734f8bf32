"""Chart/table view models built from a DashboardState.

Pure functions; nothing here holds state or mutates the aggregate.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from src.salesboard.sales.schemas import AggregateRow, DashboardState, FeedStatus

_STALE_STATUSES = (FeedStatus.DISCONNECTED, FeedStatus.FAILED)


class ChartData(BaseModel):
    """Parallel label/value series for a bar chart."""

    labels: list[str] = Field(default_factory=list)
    values: list[int] = Field(default_factory=list)


class TableRow(BaseModel):
    rep_id: str
    rep_name: str
    total_value: int
    deal_count: int
    share_pct: float
    resolved: bool = True


class Banner(BaseModel):
    """Stale-data notice with an explicit retry action."""

    kind: str
    message: str
    retry_url: str


class DashboardView(BaseModel):
    """Everything the dashboard page needs to draw itself."""

    quarter: str | None = None
    quarter_start: str | None = None
    quarter_end: str | None = None
    status: FeedStatus
    stale: bool = False
    grand_total: int = 0
    rows: list[TableRow] = Field(default_factory=list)
    chart: ChartData = Field(default_factory=ChartData)
    banner: Banner | None = None


def build_chart(rows: list[AggregateRow]) -> ChartData:
    return ChartData(
        labels=[r.rep_name for r in rows],
        values=[r.total_value for r in rows],
    )


def build_table(rows: list[AggregateRow]) -> list[TableRow]:
    grand_total = sum(r.total_value for r in rows)
    table = []
    for r in rows:
        share = round(100.0 * r.total_value / grand_total, 1) if grand_total else 0.0
        table.append(
            TableRow(
                rep_id=r.rep_id,
                rep_name=r.rep_name,
                total_value=r.total_value,
                deal_count=r.deal_count,
                share_pct=share,
                resolved=r.resolved,
            )
        )
    return table


def render_dashboard(state: DashboardState, retry_url: str = "/api/v1/dashboard/retry") -> DashboardView:
    """Build the dashboard view for one state snapshot."""
    stale = state.status in _STALE_STATUSES
    banner = None
    if stale:
        banner = Banner(
            kind=state.error_kind or "feed_disconnected",
            message=state.error_message or "Live updates are unavailable; totals may be out of date.",
            retry_url=retry_url,
        )

    quarter = state.quarter
    return DashboardView(
        quarter=quarter.label if quarter else None,
        quarter_start=quarter.start.isoformat() if quarter else None,
        quarter_end=quarter.end.isoformat() if quarter else None,
        status=state.status,
        stale=stale,
        grand_total=sum(r.total_value for r in state.rows),
        rows=build_table(state.rows),
        chart=build_chart(state.rows),
        banner=banner,
    )

"""Tests for the chart/table view built from a DashboardState."""

from __future__ import annotations

from datetime import datetime, timezone

from src.salesboard.sales.quarter import quarter_window
from src.salesboard.sales.rendering import build_chart, build_table, render_dashboard
from src.salesboard.sales.schemas import AggregateRow, DashboardState, FeedStatus

ROWS = [
    AggregateRow(rep_id="u2", rep_name="Bob", total_value=300, deal_count=1),
    AggregateRow(rep_id="u1", rep_name="Alice", total_value=100, deal_count=2),
]


def test_chart_and_table_share_order():
    chart = build_chart(ROWS)
    table = build_table(ROWS)

    assert chart.labels == ["Bob", "Alice"]
    assert chart.values == [300, 100]
    assert [(r.rep_name, r.share_pct) for r in table] == [("Bob", 75.0), ("Alice", 25.0)]


def test_zero_grand_total_has_zero_shares():
    rows = [AggregateRow(rep_id="u1", rep_name="Alice")]
    assert build_table(rows)[0].share_pct == 0.0


def test_live_state_has_no_banner():
    window = quarter_window(datetime(2026, 10, 18, tzinfo=timezone.utc))
    view = render_dashboard(DashboardState(rows=ROWS, status=FeedStatus.LIVE, quarter=window))

    assert view.quarter == "Q4 2026"
    assert view.quarter_start == "2026-10-01T00:00:00+00:00"
    assert view.grand_total == 400
    assert not view.stale
    assert view.banner is None


def test_disconnected_state_keeps_rows_and_offers_retry():
    state = DashboardState(
        rows=ROWS,
        status=FeedStatus.DISCONNECTED,
        error_kind="feed_disconnected",
        error_message="Live updates were interrupted; totals may be out of date.",
    )

    view = render_dashboard(state, retry_url="/retry-here")

    assert view.stale
    assert len(view.rows) == 2
    assert view.banner.kind == "feed_disconnected"
    assert view.banner.retry_url == "/retry-here"


def test_failed_state_without_message_gets_default_banner():
    view = render_dashboard(DashboardState(status=FeedStatus.FAILED))

    assert view.quarter is None
    assert view.banner.retry_url == "/api/v1/dashboard/retry"
    assert "out of date" in view.banner.message

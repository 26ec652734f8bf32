"""Calendar quarter boundaries.

Pure functions of (timestamp, timezone) so the dashboard window never
depends on an implicit local clock or library default. A quarter is the
half-open interval from local midnight on the first day of January, April,
July or October to the same instant three months later.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo


@dataclass(frozen=True)
class QuarterWindow:
    """A fixed quarter, ``start <= ts < end``, both timezone-aware."""

    year: int
    quarter: int
    start: datetime
    end: datetime

    def contains(self, ts: datetime) -> bool:
        return self.start <= _aware(ts) < self.end

    @property
    def label(self) -> str:
        return f"Q{self.quarter} {self.year}"


def _aware(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def quarter_window(ts: datetime, tz: tzinfo = timezone.utc) -> QuarterWindow:
    """Return the quarter containing ``ts`` in calendar ``tz``.

    Args:
        ts: Any instant. Naive values are interpreted as UTC.
        tz: Calendar whose month boundaries define the quarter.

    Returns:
        QuarterWindow whose start/end carry ``tz``.
    """
    local = _aware(ts).astimezone(tz)
    quarter = (local.month - 1) // 3 + 1
    first_month = 3 * (quarter - 1) + 1
    start = datetime(local.year, first_month, 1, tzinfo=tz)

    if quarter == 4:
        end = datetime(local.year + 1, 1, 1, tzinfo=tz)
    else:
        end = datetime(local.year, first_month + 3, 1, tzinfo=tz)

    return QuarterWindow(year=local.year, quarter=quarter, start=start, end=end)

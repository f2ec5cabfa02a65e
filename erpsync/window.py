"""
Fetch windows and boundary arithmetic.

Boundaries are calendar dates in the account's reporting timezone. The end
of a window defaults to "yesterday" so a window never covers a day that is
still accumulating records.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional, Union
from zoneinfo import ZoneInfo

ONE_UNIT = timedelta(days=1)

BoundaryLike = Union[date, datetime, str]


@dataclass(frozen=True)
class FetchWindow:
    """Inclusive [start, end] date range for one run."""

    start: date
    end: date
    is_empty: bool = False

    @property
    def days(self) -> int:
        if self.is_empty:
            return 0
        return (self.end - self.start).days + 1

    def chunks(self, max_days: int) -> List["FetchWindow"]:
        """Split into consecutive windows of at most max_days days each."""
        if max_days < 1:
            raise ValueError("max_days must be >= 1")
        if self.is_empty:
            return []
        parts = []
        start = self.start
        while start <= self.end:
            end = min(start + (max_days - 1) * ONE_UNIT, self.end)
            parts.append(FetchWindow(start=start, end=end))
            start = end + ONE_UNIT
        return parts

    def as_params(self) -> dict:
        return {"start_date": self.start.isoformat(), "end_date": self.end.isoformat()}

    def __str__(self) -> str:
        return f"{self.start.isoformat()} ~ {self.end.isoformat()}"


def parse_boundary(value: BoundaryLike) -> date:
    """Accept a date, a datetime, or a YYYY-MM-DD string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as e:
            raise ValueError(f"Invalid boundary {value!r}, expected YYYY-MM-DD") from e
    raise TypeError(f"Unsupported boundary type: {type(value).__name__}")


def today_in(timezone: str, now: Optional[datetime] = None) -> date:
    tz = ZoneInfo(timezone)
    current = now.astimezone(tz) if now is not None else datetime.now(tz)
    return current.date()


def yesterday_in(timezone: str, now: Optional[datetime] = None) -> date:
    return today_in(timezone, now) - ONE_UNIT


def compute_window(
    end: date,
    prior_end: Optional[date] = None,
    lookback_units: int = 7,
) -> FetchWindow:
    """
    Derive the next window from the last synced boundary.

    Without a prior boundary the window covers the last lookback_units days
    ending at `end`. With one, it starts the day after prior_end. A start
    past the end yields an empty window.
    """
    if lookback_units < 1:
        raise ValueError("lookback_units must be >= 1")

    if prior_end is None:
        start = end - (lookback_units - 1) * ONE_UNIT
    else:
        start = prior_end + ONE_UNIT

    return FetchWindow(start=start, end=end, is_empty=start > end)

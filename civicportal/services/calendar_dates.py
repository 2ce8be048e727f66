"""
Civil calendar helpers.
Pure functions over naive dates; no time-of-day, no timezone except for
``today_local`` which reads the configured civil timezone.
"""
from datetime import date, datetime, timedelta
from typing import Iterator, Optional, Tuple

import pytz

from ..config import settings


SUNDAY = 0
SATURDAY = 6
WEEKEND = frozenset({SATURDAY, SUNDAY})


def weekday_index(day: date) -> int:
    """Weekday with 0=Sunday .. 6=Saturday."""
    return day.isoweekday() % 7


def is_weekend(day: date) -> bool:
    return weekday_index(day) in WEEKEND


def same_day_of_month(day: date, anchor: date) -> bool:
    """
    True when ``day`` falls on the anchor's day-of-month.
    Months without that day (e.g. the 31st in April) never match.
    """
    return day.day == anchor.day


def is_within(day: date, start: date, end: date) -> bool:
    """Inclusive range membership."""
    return start <= day <= end


class DayRange:
    """
    Consecutive civil days from ``start`` to ``end`` inclusive.

    Iterating is lazy and can be repeated; ``start > end`` is simply empty.
    """

    __slots__ = ("start", "end")

    def __init__(self, start: date, end: date):
        self.start = start
        self.end = end

    def __iter__(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def __len__(self) -> int:
        return max((self.end - self.start).days + 1, 0)

    def __contains__(self, day) -> bool:
        return isinstance(day, date) and is_within(day, self.start, self.end)

    def __repr__(self) -> str:
        return f"DayRange({self.start.isoformat()}, {self.end.isoformat()})"


def enumerate_days(start: date, end: date) -> DayRange:
    return DayRange(start, end)


def today_local(timezone_str: Optional[str] = None) -> date:
    """Current civil date in the given timezone (default from settings)."""
    tz = pytz.timezone(timezone_str or settings.tz_default)
    return datetime.now(tz).date()


def week_bounds(day: date) -> Tuple[date, date]:
    """Monday..Sunday week containing ``day``."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def parse_iso_date(value: str) -> date:
    """Parse ``YYYY-MM-DD``; raises ValueError on anything else."""
    return datetime.strptime(value, "%Y-%m-%d").date()

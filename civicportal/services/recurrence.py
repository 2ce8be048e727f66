"""
Recurrence rules for activity series.

Each pattern is its own rule type so only WEEKLY carries weekdays.
``rule_for`` builds the rule from a stored activity; ``matches`` decides
whether a candidate date produces an occurrence.
"""
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Union

from .calendar_dates import is_weekend, same_day_of_month, weekday_index


class RecurrencePattern(str, Enum):
    DAILY = "DAILY"
    DAILY_NO_WEEKEND = "DAILY_NO_WEEKEND"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


@dataclass(frozen=True)
class DailyRule:
    end_date: Optional[date] = None


@dataclass(frozen=True)
class WeekdaysRule:
    """Every day except Saturday and Sunday."""
    end_date: Optional[date] = None


@dataclass(frozen=True)
class WeeklyRule:
    # Empty means "the anchor's own weekday"
    days: FrozenSet[int] = frozenset()
    end_date: Optional[date] = None


@dataclass(frozen=True)
class MonthlyRule:
    end_date: Optional[date] = None


RecurrenceRule = Union[DailyRule, WeekdaysRule, WeeklyRule, MonthlyRule]


def parse_pattern(value) -> Optional[RecurrencePattern]:
    """Return the pattern for a stored value, or None when unknown/empty."""
    if value is None:
        return None
    if isinstance(value, RecurrencePattern):
        return value
    try:
        return RecurrencePattern(str(value).strip().upper())
    except ValueError:
        return None


def build_rule(
    pattern,
    days: Optional[Iterable[int]] = None,
    end_date: Optional[date] = None,
) -> Optional[RecurrenceRule]:
    parsed = parse_pattern(pattern)
    if parsed is RecurrencePattern.DAILY:
        return DailyRule(end_date=end_date)
    if parsed is RecurrencePattern.DAILY_NO_WEEKEND:
        return WeekdaysRule(end_date=end_date)
    if parsed is RecurrencePattern.WEEKLY:
        return WeeklyRule(days=frozenset(int(d) for d in (days or ())), end_date=end_date)
    if parsed is RecurrencePattern.MONTHLY:
        return MonthlyRule(end_date=end_date)
    return None


def rule_for(activity) -> Optional[RecurrenceRule]:
    """Rule of a recurring activity (ORM row or snapshot); None if it does not recur."""
    if not getattr(activity, "is_recurrent", False):
        return None
    return build_rule(
        getattr(activity, "recurrence_pattern", None),
        getattr(activity, "recurrence_days", None),
        getattr(activity, "recurrence_end_date", None),
    )


def matches(rule: Optional[RecurrenceRule], anchor: date, candidate: date) -> bool:
    """
    Does ``rule`` anchored on ``anchor`` produce an occurrence on ``candidate``?

    Dates before the anchor or after the (inclusive) end date never match.
    Unknown rules never match.
    """
    if rule is None or candidate < anchor:
        return False
    if rule.end_date is not None and candidate > rule.end_date:
        return False

    if isinstance(rule, DailyRule):
        return True
    if isinstance(rule, WeekdaysRule):
        return not is_weekend(candidate)
    if isinstance(rule, WeeklyRule):
        if rule.days:
            return weekday_index(candidate) in rule.days
        return weekday_index(candidate) == weekday_index(anchor)
    if isinstance(rule, MonthlyRule):
        return same_day_of_month(candidate, anchor)
    return False

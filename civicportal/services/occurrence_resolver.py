"""
Occurrence resolution.

Expands recurring parents into virtual occurrences over a date window and
merges them with the physical records already stored. Works on an immutable
snapshot of the activity set; no database access happens here.
"""
import uuid
from dataclasses import dataclass
from datetime import date, time
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from .calendar_dates import enumerate_days
from .recurrence import RecurrenceRule, matches, rule_for


VIRTUAL_ID_SEPARATOR = "@"


@dataclass(frozen=True)
class ActivitySnapshot:
    """Read-only copy of the fields the resolver needs from an Activity row."""
    id: uuid.UUID
    establishment_id: Optional[uuid.UUID]
    title: str
    date: date
    start_time: time
    end_time: time
    status: str
    description: Optional[str] = None
    activity_type: Optional[str] = None
    location: Optional[str] = None
    responsible_name: Optional[str] = None
    is_public: bool = True
    is_validated: bool = False
    is_recurrent: bool = False
    recurrence_pattern: Optional[str] = None
    recurrence_days: Tuple[int, ...] = ()
    recurrence_end_date: Optional[date] = None
    recurrence_parent_id: Optional[uuid.UUID] = None
    report_complete: bool = False

    @classmethod
    def from_model(cls, activity) -> "ActivitySnapshot":
        return cls(
            id=activity.id,
            establishment_id=activity.establishment_id,
            title=activity.title,
            date=activity.date,
            start_time=activity.start_time,
            end_time=activity.end_time,
            status=activity.status,
            description=activity.description,
            activity_type=activity.activity_type,
            location=activity.location,
            responsible_name=activity.responsible_name,
            is_public=bool(activity.is_public),
            is_validated=bool(activity.is_validated),
            is_recurrent=bool(activity.is_recurrent),
            recurrence_pattern=activity.recurrence_pattern,
            recurrence_days=tuple(sorted(int(d) for d in (activity.recurrence_days or ()))),
            recurrence_end_date=activity.recurrence_end_date,
            recurrence_parent_id=activity.recurrence_parent_id,
            report_complete=bool(activity.report_complete),
        )

    @property
    def is_series_parent(self) -> bool:
        return self.is_recurrent and self.recurrence_parent_id is None


@dataclass(frozen=True)
class Occurrence:
    """
    One activity visible on one day. Virtual occurrences are projections of
    a series parent and are never written back directly.
    """
    source_activity_id: uuid.UUID
    effective_date: date
    start_time: time
    end_time: time
    title: str
    status: str
    is_virtual: bool
    establishment_id: Optional[uuid.UUID] = None
    parent_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    activity_type: Optional[str] = None
    location: Optional[str] = None
    responsible_name: Optional[str] = None
    is_public: bool = True
    is_validated: bool = False
    is_recurrent: bool = False
    recurrence_pattern: Optional[str] = None
    report_complete: bool = False
    # The parent row shown on its own anchor date
    is_series_anchor: bool = False

    @property
    def occurrence_id(self) -> str:
        # Series dates are always addressed by date, the anchor included
        if self.is_virtual or self.is_series_anchor:
            return virtual_occurrence_id(self.source_activity_id, self.effective_date)
        return str(self.source_activity_id)

    def sort_key(self):
        return (self.effective_date, self.start_time, self.title, self.occurrence_id)


def virtual_occurrence_id(parent_id: uuid.UUID, day: date) -> str:
    return f"{parent_id}{VIRTUAL_ID_SEPARATOR}{day.isoformat()}"


def split_occurrence_id(value: str) -> Tuple[str, Optional[str]]:
    """``"<uuid>@<date>"`` -> (uuid, date); a plain id -> (id, None)."""
    raw = str(value).strip()
    if VIRTUAL_ID_SEPARATOR in raw:
        head, _, tail = raw.partition(VIRTUAL_ID_SEPARATOR)
        return head, tail
    return raw, None


def _occurrence(activity: ActivitySnapshot, day: date, *, virtual: bool) -> Occurrence:
    anchor = not virtual and activity.is_series_parent
    return Occurrence(
        source_activity_id=activity.id,
        effective_date=day,
        start_time=activity.start_time,
        end_time=activity.end_time,
        title=activity.title,
        # A virtual occurrence has no lifecycle of its own
        status=activity.status,
        is_virtual=virtual,
        establishment_id=activity.establishment_id,
        parent_id=activity.id if (virtual or anchor) else activity.recurrence_parent_id,
        description=activity.description,
        activity_type=activity.activity_type,
        location=activity.location,
        responsible_name=activity.responsible_name,
        is_public=activity.is_public,
        is_validated=activity.is_validated,
        is_recurrent=activity.is_recurrent or virtual,
        recurrence_pattern=activity.recurrence_pattern,
        report_complete=activity.report_complete,
        is_series_anchor=anchor,
    )


class OccurrenceResolver:
    """
    Resolver bound to one snapshot of the activity set.

    The (parent id, date) index of physical children is built once so the
    anti-duplicate check is a set lookup.
    """

    def __init__(self, activities: Iterable[ActivitySnapshot]):
        self.activities: Tuple[ActivitySnapshot, ...] = tuple(activities)
        self.child_keys: FrozenSet[Tuple[uuid.UUID, date]] = frozenset(
            (a.recurrence_parent_id, a.date)
            for a in self.activities
            if a.recurrence_parent_id is not None
        )
        self._rules: Dict[uuid.UUID, Optional[RecurrenceRule]] = {
            a.id: rule_for(a) for a in self.activities if a.is_series_parent
        }

    def has_child(self, parent_id: uuid.UUID, day: date) -> bool:
        return (parent_id, day) in self.child_keys

    def occurrences_on(self, day: date) -> List[Occurrence]:
        found: List[Occurrence] = []
        for activity in self.activities:
            if activity.date == day:
                if activity.is_series_parent and self.has_child(activity.id, day):
                    # An override of the first session replaces the parent on its anchor date
                    continue
                found.append(_occurrence(activity, day, virtual=False))
                continue
            rule = self._rules.get(activity.id)
            if rule is None or day <= activity.date:
                continue
            if not matches(rule, activity.date, day):
                continue
            if self.has_child(activity.id, day):
                # The stored child is emitted on its own date instead
                continue
            found.append(_occurrence(activity, day, virtual=True))
        return found

    def resolve(self, range_start: date, range_end: date) -> List[Occurrence]:
        result: List[Occurrence] = []
        for day in enumerate_days(range_start, range_end):
            result.extend(self.occurrences_on(day))
        result.sort(key=Occurrence.sort_key)
        return result


def resolve(activities: Iterable[ActivitySnapshot], range_start: date, range_end: date) -> List[Occurrence]:
    return OccurrenceResolver(activities).resolve(range_start, range_end)


def produces_occurrence(parent: ActivitySnapshot, day: date) -> bool:
    """True when a series parent has an occurrence on ``day``: its anchor date or a later rule match."""
    if not parent.is_series_parent or day < parent.date:
        return False
    return day == parent.date or matches(rule_for(parent), parent.date, day)

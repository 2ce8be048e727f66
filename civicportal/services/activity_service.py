"""
Activity programme service.

Loads activity snapshots for a window, resolves occurrences, and applies
writes: create, series/occurrence updates and deletes, lifecycle
transitions and the bulk "submit all drafts" operation. Functions flush;
committing is left to the caller.
"""
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

import structlog
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConflictError, NotFoundError, StateTransitionError, ValidationError
from ..models.models import Activity, Establishment, User
from ..schemas.activities import ActivityCreate, ActivityReport, ActivityUpdate
from .audit import compute_diff, create_audit_log
from .calendar_dates import parse_iso_date
from .lifecycle import (
    INITIAL_STATUSES,
    ActivityStatus,
    LifecycleAction,
    is_terminal,
    parse_action,
    parse_status,
    plan_transition,
)
from .occurrence_resolver import (
    ActivitySnapshot,
    Occurrence,
    OccurrenceResolver,
    produces_occurrence,
    split_occurrence_id,
)
from .permissions import primary_role
from .recurrence import RecurrencePattern, parse_pattern


logger = structlog.get_logger(__name__)


class Scope(str, Enum):
    OCCURRENCE = "occurrence"
    SERIES = "series"


# Fields a child copies from its parent when an occurrence is materialized
_INHERITED_FIELDS = (
    "establishment_id",
    "title",
    "description",
    "activity_type",
    "location",
    "responsible_name",
    "expected_participants",
    "start_time",
    "end_time",
    "status",
    "is_public",
    "is_validated",
    "requires_validation",
    "created_by_id",
)

_DESCRIPTIVE_FIELDS = (
    "title",
    "description",
    "activity_type",
    "location",
    "responsible_name",
    "expected_participants",
    "start_time",
    "end_time",
    "is_public",
    "requires_validation",
)

_RECURRENCE_FIELDS = ("is_recurrent", "recurrence_pattern", "recurrence_days", "recurrence_end_date")

_AUDITED_FIELDS = _DESCRIPTIVE_FIELDS + _RECURRENCE_FIELDS + ("date", "status")


@dataclass
class OccurrenceTarget:
    """What an activity or occurrence id points at."""
    parent: Optional[Activity]
    day: date
    # None while the occurrence is still virtual
    activity: Optional[Activity] = None

    @property
    def is_virtual(self) -> bool:
        return self.activity is None


@dataclass
class BulkSubmitOutcome:
    activity_id: uuid.UUID
    outcome: str  # submitted|already_submitted|failed
    error: Optional[str] = None


@dataclass
class BulkSubmitResult:
    items: List[BulkSubmitOutcome] = field(default_factory=list)

    def _count(self, outcome: str) -> int:
        return sum(1 for item in self.items if item.outcome == outcome)

    @property
    def submitted(self) -> int:
        return self._count("submitted")

    @property
    def already_submitted(self) -> int:
        return self._count("already_submitted")

    @property
    def failed(self) -> int:
        return self._count("failed")

    @property
    def committed(self) -> bool:
        # One failure voids the batch; the caller rolls back
        return self.failed == 0


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def _parse_uuid(raw: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(raw))
    except ValueError as exc:
        raise NotFoundError("Activity not found", details={"id": str(raw)}) from exc


def establishment_uuids(establishment_ids: Iterable) -> List[uuid.UUID]:
    ids = []
    for raw in establishment_ids:
        try:
            ids.append(uuid.UUID(str(raw)))
        except ValueError as exc:
            raise ValidationError("Invalid establishment id", details={"establishment_id": str(raw)}) from exc
    return ids


def _is_series_parent(activity: Optional[Activity]) -> bool:
    return activity is not None and bool(activity.is_recurrent) and activity.recurrence_parent_id is None


def get_activity(db: Session, activity_id, *, lock: bool = False) -> Activity:
    query = db.query(Activity).filter(Activity.id == _parse_uuid(activity_id))
    if lock:
        query = query.with_for_update()
    activity = query.first()
    if not activity:
        raise NotFoundError("Activity not found", details={"id": str(activity_id)})
    return activity


def find_child(db: Session, parent_id: uuid.UUID, day: date) -> Optional[Activity]:
    return (
        db.query(Activity)
        .filter(Activity.recurrence_parent_id == parent_id, Activity.date == day)
        .first()
    )


def resolve_target(db: Session, occurrence_id: str, *, lock: bool = False) -> OccurrenceTarget:
    """
    Turn a physical id or a ``<parent>@<date>`` virtual id into a target.

    A virtual id whose date already has a stored child resolves to that child.
    A virtual id naming a date the parent's rule does not produce is unknown.
    """
    raw_id, raw_day = split_occurrence_id(occurrence_id)
    if raw_day is None:
        activity = get_activity(db, raw_id, lock=lock)
        return OccurrenceTarget(parent=activity.parent, day=activity.date, activity=activity)

    parent = get_activity(db, raw_id, lock=lock)
    try:
        day = parse_iso_date(raw_day)
    except ValueError as exc:
        raise NotFoundError("Occurrence not found", details={"id": str(occurrence_id)}) from exc

    if not produces_occurrence(ActivitySnapshot.from_model(parent), day):
        raise NotFoundError(
            "The series has no occurrence on this date",
            details={"id": str(occurrence_id), "date": day.isoformat()},
        )
    child = find_child(db, parent.id, day)
    if child is not None and lock:
        child = get_activity(db, child.id, lock=True)
    return OccurrenceTarget(parent=parent, day=day, activity=child)


def load_window(
    db: Session,
    range_start: date,
    range_end: date,
    establishment_ids: Optional[Iterable] = None,
) -> List[Activity]:
    """Every stored activity that can show up between ``range_start`` and ``range_end``."""
    in_window = and_(Activity.date >= range_start, Activity.date <= range_end)
    recurring_parent = and_(
        Activity.is_recurrent.is_(True),
        Activity.recurrence_parent_id.is_(None),
        Activity.date <= range_end,
        or_(Activity.recurrence_end_date.is_(None), Activity.recurrence_end_date >= range_start),
    )
    query = db.query(Activity).filter(or_(in_window, recurring_parent))
    if establishment_ids is not None:
        ids = establishment_uuids(establishment_ids)
        if not ids:
            return []
        query = query.filter(Activity.establishment_id.in_(ids))
    return query.order_by(Activity.date.asc(), Activity.start_time.asc(), Activity.id.asc()).all()


def list_occurrences(
    db: Session,
    range_start: date,
    range_end: date,
    establishment_ids: Optional[Iterable] = None,
    public_only: bool = False,
) -> List[Occurrence]:
    """Occurrences per day over the inclusive window, sorted by (date, start time)."""
    if range_start > range_end:
        return []
    span = (range_end - range_start).days + 1
    if span > settings.max_query_range_days:
        raise ValidationError(
            f"Date range cannot exceed {settings.max_query_range_days} days",
            details={"start": range_start.isoformat(), "end": range_end.isoformat()},
        )
    rows = load_window(db, range_start, range_end, establishment_ids)
    resolver = OccurrenceResolver(ActivitySnapshot.from_model(a) for a in rows)
    occurrences = resolver.resolve(range_start, range_end)
    if public_only:
        # Filter after resolving so hidden children still suppress their virtual twin
        occurrences = [o for o in occurrences if o.is_public and o.is_validated]
    return occurrences


def project_occurrence(db: Session, occurrence_id: str) -> Occurrence:
    """Single occurrence for an id, virtual or physical."""
    target = resolve_target(db, occurrence_id)
    source = target.activity or target.parent
    day = target.day
    for occurrence in OccurrenceResolver([ActivitySnapshot.from_model(source)]).occurrences_on(day):
        return occurrence
    raise NotFoundError("Occurrence not found", details={"id": str(occurrence_id)})


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _snapshot_values(activity: Activity) -> Dict[str, Any]:
    values = {name: getattr(activity, name) for name in _AUDITED_FIELDS}
    values["recurrence_days"] = list(activity.recurrence_days or [])
    return values


def _validate_values(values: Dict[str, Any], *, is_child: bool = False) -> None:
    title = values.get("title") or ""
    if len(title) < settings.activity_title_min_chars:
        raise ValidationError(
            f"Title must be at least {settings.activity_title_min_chars} characters",
            details={"field": "title"},
        )
    if len(title) > settings.activity_title_max_chars:
        raise ValidationError(
            f"Title cannot exceed {settings.activity_title_max_chars} characters",
            details={"field": "title"},
        )
    if len(values.get("activity_type") or "") < 2:
        raise ValidationError("A valid activity type is required", details={"field": "activity_type"})
    if values.get("date") is None:
        raise ValidationError("Date is required", details={"field": "date"})

    start_time, end_time = values.get("start_time"), values.get("end_time")
    if start_time is None or end_time is None:
        raise ValidationError("Start and end time are required", details={"field": "start_time"})
    if start_time >= end_time:
        raise ValidationError(
            "Start time must be before end time",
            details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
        )

    if not values.get("is_recurrent"):
        return
    if is_child:
        raise ValidationError("An occurrence override cannot itself recur", details={"field": "is_recurrent"})
    raw_pattern = values.get("recurrence_pattern")
    if parse_pattern(raw_pattern) is None:
        raise ValidationError(
            "Invalid recurrence pattern",
            details={"field": "recurrence_pattern", "value": raw_pattern, "allowed": [p.value for p in RecurrencePattern]},
        )
    end_date = values.get("recurrence_end_date")
    if end_date is not None and end_date < values["date"]:
        raise ValidationError(
            "Recurrence end date cannot precede the activity date",
            details={"field": "recurrence_end_date"},
        )


def _normalise_recurrence(values: Dict[str, Any]) -> None:
    if not values.get("is_recurrent"):
        values["is_recurrent"] = False
        values["recurrence_pattern"] = None
        values["recurrence_days"] = []
        values["recurrence_end_date"] = None
        return
    pattern = parse_pattern(values.get("recurrence_pattern"))
    values["recurrence_pattern"] = pattern.value
    if pattern is not RecurrencePattern.WEEKLY:
        values["recurrence_days"] = []
    else:
        values["recurrence_days"] = sorted(set(int(d) for d in (values.get("recurrence_days") or [])))


def _audit(db: Session, activity_id, action: str, actor: Optional[User], **kwargs) -> None:
    create_audit_log(
        db,
        entity_type=kwargs.pop("entity_type", "activity"),
        entity_id=activity_id,
        action=action,
        actor_id=actor.id if actor is not None else None,
        actor_role=primary_role(actor) if actor is not None else "system",
        source="api" if actor is not None else "system",
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def create_activity(db: Session, payload: ActivityCreate, actor: Optional[User] = None) -> Activity:
    """Persist a standalone activity or a series parent."""
    status = parse_status(payload.status)
    if status not in INITIAL_STATUSES:
        raise ValidationError(
            f"Activities cannot be created as {status.value}",
            details={"field": "status", "allowed": sorted(s.value for s in INITIAL_STATUSES)},
        )

    if db.get(Establishment, payload.establishment_id) is None:
        raise ValidationError("Unknown establishment", details={"establishment_id": str(payload.establishment_id)})

    values = payload.model_dump(exclude={"status"})
    _validate_values(values)
    _normalise_recurrence(values)

    now = datetime.utcnow()
    activity = Activity(
        **values,
        status=status.value,
        # Planned directly means an authorized submitter already validated it
        is_validated=status is ActivityStatus.PLANNED,
        created_by_id=actor.id if actor is not None else None,
        created_at=now,
        updated_at=now,
    )
    db.add(activity)
    db.flush()

    _audit(
        db, activity.id, "CREATE", actor,
        context={"establishment_id": activity.establishment_id, "status": activity.status, "is_recurrent": activity.is_recurrent},
    )
    logger.info(
        "activity_created",
        activity_id=str(activity.id),
        establishment_id=str(activity.establishment_id),
        is_recurrent=activity.is_recurrent,
        status=activity.status,
    )
    return activity


def materialize_occurrence(
    db: Session,
    parent: Activity,
    day: date,
    overrides: Optional[Dict[str, Any]] = None,
    actor: Optional[User] = None,
) -> Activity:
    """
    Store the parent's occurrence on ``day`` as a child record.

    Raises ConflictError when another request created the same child first.
    """
    values = {name: getattr(parent, name) for name in _INHERITED_FIELDS}
    values.update(overrides or {})
    values.update(
        date=day,
        recurrence_parent_id=parent.id,
        is_recurrent=False,
        recurrence_pattern=None,
        recurrence_days=[],
        recurrence_end_date=None,
    )
    _validate_values(values, is_child=True)

    now = datetime.utcnow()
    child = Activity(**values, created_at=now, updated_at=now)
    try:
        with db.begin_nested():
            db.add(child)
            db.flush()
    except IntegrityError as exc:
        logger.warning(
            "occurrence_child_conflict",
            parent_id=str(parent.id),
            date=day.isoformat(),
        )
        raise ConflictError(
            "This occurrence was modified concurrently; reload and retry",
            details={"parent_id": str(parent.id), "date": day.isoformat()},
        ) from exc

    _audit(
        db, child.id, "MATERIALIZE", actor,
        context={"parent_id": parent.id, "date": day, "overrides": sorted((overrides or {}).keys())},
    )
    logger.info("occurrence_materialized", parent_id=str(parent.id), child_id=str(child.id), date=day.isoformat())
    return child


def _apply_values(activity: Activity, values: Dict[str, Any]) -> None:
    for name, value in values.items():
        setattr(activity, name, value)
    activity.updated_at = datetime.utcnow()


def _update_fields(payload: ActivityUpdate) -> Dict[str, Any]:
    return payload.model_dump(exclude_unset=True)


def _update_series(db: Session, activity: Activity, payload: ActivityUpdate, actor: Optional[User]) -> Activity:
    changes = _update_fields(payload)
    before = _snapshot_values(activity)
    merged = {**before, **changes}
    _validate_values(merged, is_child=activity.recurrence_parent_id is not None)
    _normalise_recurrence(merged)

    _apply_values(activity, {k: merged[k] for k in _AUDITED_FIELDS if k != "status"})
    db.flush()

    diff = compute_diff(before, _snapshot_values(activity))
    _audit(db, activity.id, "UPDATE", actor, changes_json=diff, context={"scope": Scope.SERIES.value})
    logger.info("activity_updated", activity_id=str(activity.id), scope=Scope.SERIES.value, fields=sorted(diff))
    return activity


def _update_occurrence(db: Session, target: OccurrenceTarget, payload: ActivityUpdate, actor: Optional[User]) -> Activity:
    changes = _update_fields(payload)
    if any(changes.get(name) for name in _RECURRENCE_FIELDS):
        raise ValidationError("Recurrence can only be changed on the whole series", details={"scope": Scope.OCCURRENCE.value})
    for name in _RECURRENCE_FIELDS:
        changes.pop(name, None)
    if "date" in changes and changes["date"] != target.day:
        raise ValidationError("An occurrence keeps its date; edit the series instead", details={"field": "date"})
    changes.pop("date", None)

    if target.is_virtual:
        return materialize_occurrence(db, target.parent, target.day, changes, actor)

    activity = target.activity
    before = _snapshot_values(activity)
    merged = {**before, **changes}
    _validate_values(merged, is_child=True)
    _apply_values(activity, changes)
    db.flush()

    diff = compute_diff(before, _snapshot_values(activity))
    _audit(db, activity.id, "UPDATE", actor, changes_json=diff, context={"scope": Scope.OCCURRENCE.value})
    logger.info("activity_updated", activity_id=str(activity.id), scope=Scope.OCCURRENCE.value, fields=sorted(diff))
    return activity


def parse_scope(value) -> Scope:
    try:
        return Scope(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown scope: {value}",
            details={"scope": str(value), "allowed": [s.value for s in Scope]},
        )


def _reject_undated_series(target: OccurrenceTarget, occurrence_id: str, scope: Scope) -> None:
    if target.parent is None and _is_series_parent(target.activity):
        raise ValidationError(
            "Address a dated occurrence (<id>@<date>) or use the series scope",
            details={"id": str(occurrence_id), "scope": scope.value},
        )


def update_activity(
    db: Session,
    occurrence_id: str,
    payload: ActivityUpdate,
    scope=Scope.SERIES,
    actor: Optional[User] = None,
) -> Activity:
    """
    SERIES rewrites the parent (or the standalone record itself).
    OCCURRENCE edits one date: it creates the child on the first edit of a
    virtual occurrence and updates the existing child afterwards.
    """
    scope = parse_scope(scope)
    target = resolve_target(db, occurrence_id, lock=True)

    if scope is Scope.SERIES or target.parent is None:
        if scope is Scope.OCCURRENCE:
            _reject_undated_series(target, occurrence_id, scope)
        record = target.parent if target.parent is not None else target.activity
        return _update_series(db, record, payload, actor)
    return _update_occurrence(db, target, payload, actor)


def delete_activity(
    db: Session,
    occurrence_id: str,
    scope=Scope.SERIES,
    actor: Optional[User] = None,
) -> Dict[str, Any]:
    """
    SERIES deletes the parent and all its children.
    OCCURRENCE on a series date stores (or turns) that date's child into CANCELLED
    so the rest of the series is untouched.
    """
    scope = parse_scope(scope)
    target = resolve_target(db, occurrence_id, lock=True)

    if scope is Scope.SERIES or target.parent is None:
        if scope is Scope.OCCURRENCE:
            _reject_undated_series(target, occurrence_id, scope)
        record = target.parent if target.parent is not None else target.activity
        # Children go first; the foreign key cascade is not enforced on every backend
        children = list(record.children)
        for child in children:
            db.delete(child)
        deleted_children = len(children)
        record_id = record.id
        _audit(
            db, record_id, "DELETE", actor,
            context={"scope": scope.value, "children_deleted": deleted_children, "title": record.title},
        )
        db.delete(record)
        db.flush()
        logger.info("activity_deleted", activity_id=str(record_id), children_deleted=deleted_children, scope=scope.value)
        return {"deleted": 1 + deleted_children, "cancelled": 0, "activity_id": record_id}

    if target.is_virtual:
        child = materialize_occurrence(
            db, target.parent, target.day, {"status": ActivityStatus.CANCELLED.value}, actor
        )
        _audit(db, child.id, "CANCEL", actor, context={"scope": scope.value, "date": target.day})
        return {"deleted": 0, "cancelled": 1, "activity_id": child.id}

    child = target.activity
    if is_terminal(child.status):
        # Already cancelled or closed with a report
        return {"deleted": 0, "cancelled": 0, "activity_id": child.id}
    _transition(db, child, LifecycleAction.CANCEL, actor)
    return {"deleted": 0, "cancelled": 1, "activity_id": child.id}


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def _compare_and_set_status(db: Session, activity: Activity, prior: str, values: Dict[str, Any]) -> None:
    """Write the new status only if nobody changed it since we read ``prior``."""
    updated = (
        db.query(Activity)
        .filter(Activity.id == activity.id, Activity.status == prior)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        raise ConflictError(
            "The activity status changed concurrently; reload and retry",
            details={"activity_id": str(activity.id), "expected_status": prior},
        )
    db.refresh(activity)


def _report_values(activity: Activity, report: Optional[ActivityReport]) -> Dict[str, Any]:
    if report is None:
        raise ValidationError("A report is required to close an activity", details={"field": "report"})
    summary = (report.summary or "").strip()
    if len(summary) < settings.report_summary_min_chars:
        raise ValidationError(
            f"Report summary must be at least {settings.report_summary_min_chars} characters",
            details={"field": "summary"},
        )
    rate = None
    if activity.expected_participants:
        rate = round(report.attendance_count / activity.expected_participants * 100)
    return {
        "report_complete": True,
        "attendance_count": report.attendance_count,
        "attendance_rate": rate,
        "quality_rating": report.quality_rating,
        "report_summary": summary,
        "report_difficulties": report.difficulties,
        "report_highlights": report.highlights,
        "report_recommendations": report.recommendations,
        "reported_at": datetime.utcnow(),
    }


def _transition(
    db: Session,
    activity: Activity,
    action: LifecycleAction,
    actor: Optional[User],
    report: Optional[ActivityReport] = None,
) -> bool:
    plan = plan_transition(activity.status, action)
    if not plan.changed:
        return False

    values: Dict[str, Any] = {"status": plan.target.value, "updated_at": datetime.utcnow()}
    if action is LifecycleAction.VALIDATE:
        values["is_validated"] = True
    if action is LifecycleAction.REPORT:
        values.update(_report_values(activity, report))

    _compare_and_set_status(db, activity, plan.prior.value, values)
    _audit(
        db, activity.id, action.value.upper(), actor,
        changes_json={"status": {"before": plan.prior.value, "after": plan.target.value}},
    )
    logger.info(
        "activity_transitioned",
        activity_id=str(activity.id),
        action=action.value,
        prior=plan.prior.value,
        status=plan.target.value,
    )
    return True


# Actions that belong to one session and never to a whole series
_SESSION_ACTIONS = (LifecycleAction.START, LifecycleAction.COMPLETE, LifecycleAction.REPORT)


def transition_activity(
    db: Session,
    occurrence_id: str,
    action,
    actor: Optional[User] = None,
    report: Optional[ActivityReport] = None,
) -> Union[Activity, Occurrence]:
    """
    Apply a lifecycle action. On a virtual occurrence the child is stored
    first, so the change only affects that date. A no-op on a virtual
    occurrence stores nothing and returns its projection.
    """
    action = parse_action(action)
    target = resolve_target(db, occurrence_id, lock=True)
    if target.parent is None and _is_series_parent(target.activity) and action in _SESSION_ACTIONS:
        raise ValidationError(
            "Sessions of a series are addressed by date (<id>@<date>), the first one included",
            details={"id": str(occurrence_id), "action": action.value},
        )
    if target.is_virtual:
        # Check before materializing so an invalid action leaves nothing behind
        plan = plan_transition(target.parent.status, action)
        if not plan.changed:
            return project_occurrence(db, occurrence_id)
        activity = materialize_occurrence(db, target.parent, target.day, None, actor)
    else:
        activity = target.activity
    _transition(db, activity, action, actor, report)
    return activity


def submit_all_drafts(
    db: Session,
    establishment_ids: Optional[Iterable] = None,
    actor: Optional[User] = None,
) -> BulkSubmitResult:
    """
    Submit every draft in scope for validation.

    Already-submitted records are reported as no-ops. Each record is written
    in its own savepoint; any failure is reported per item and marks the
    whole batch as not committed.
    """
    result = BulkSubmitResult()
    query = db.query(Activity).filter(
        Activity.status.in_([ActivityStatus.DRAFT.value, ActivityStatus.PENDING_VALIDATION.value])
    )
    if establishment_ids is not None:
        ids = establishment_uuids(establishment_ids)
        if not ids:
            return result
        query = query.filter(Activity.establishment_id.in_(ids))
    candidates = query.order_by(Activity.date.asc(), Activity.start_time.asc(), Activity.id.asc()).all()

    for activity in candidates:
        if activity.status == ActivityStatus.PENDING_VALIDATION.value:
            result.items.append(BulkSubmitOutcome(activity.id, "already_submitted"))
            continue
        try:
            with db.begin_nested():
                _transition(db, activity, LifecycleAction.SUBMIT, actor)
        except (ConflictError, StateTransitionError, SQLAlchemyError) as exc:
            logger.warning("bulk_submit_item_failed", activity_id=str(activity.id), error=str(exc))
            result.items.append(BulkSubmitOutcome(activity.id, "failed", str(exc)))
            continue
        result.items.append(BulkSubmitOutcome(activity.id, "submitted"))

    if result.items:
        _audit(
            db, uuid.uuid4(), "BULK_SUBMIT", actor,
            entity_type="activity_batch",
            context={
                "submitted": result.submitted,
                "already_submitted": result.already_submitted,
                "failed": result.failed,
                "establishment_ids": [str(e) for e in establishment_ids] if establishment_ids is not None else None,
            },
        )
    logger.info(
        "bulk_submit_finished",
        submitted=result.submitted,
        already_submitted=result.already_submitted,
        failed=result.failed,
        committed=result.committed,
    )
    return result

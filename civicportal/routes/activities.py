import uuid
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from fastapi import APIRouter, Body, Depends, File, Query, UploadFile
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, get_optional_user
from ..config import settings
from ..db import get_db
from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..models.models import Activity, Establishment, User
from ..schemas.activities import (
    ActivityCreate,
    ActivityReport,
    ActivityResponse,
    ActivityStats,
    ActivityUpdate,
    BulkSubmitItem,
    BulkSubmitRequest,
    BulkSubmitResponse,
    EstablishmentSnapshot,
    ImportResponse,
    ImportRowError,
    OccurrenceResponse,
)
from ..services import activity_service
from ..services.activity_import import import_activities
from ..services.activity_service import Scope
from ..services.activity_stats import activity_stats
from ..services.audit import get_audit_logs
from ..services.calendar_dates import today_local, week_bounds
from ..services.lifecycle import ActivityStatus, LifecycleAction
from ..services.occurrence_resolver import Occurrence
from ..services.permissions import (
    can_manage_establishment,
    ensure_admin,
    ensure_can_manage,
    is_admin,
    is_coordinator,
    managed_establishments,
)


router = APIRouter(prefix="/activities", tags=["activities"])


def _establishment_directory(db: Session, ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, Establishment]:
    wanted = {i for i in ids if i}
    if not wanted:
        return {}
    rows = db.query(Establishment).filter(Establishment.id.in_(wanted)).all()
    return {e.id: e for e in rows}


def _serialize_occurrence(occurrence: Occurrence, directory: Dict[uuid.UUID, Establishment]) -> Dict[str, Any]:
    establishment = directory.get(occurrence.establishment_id)
    payload = OccurrenceResponse(
        id=occurrence.occurrence_id,
        source_activity_id=occurrence.source_activity_id,
        parent_id=occurrence.parent_id,
        is_virtual=occurrence.is_virtual,
        date=occurrence.effective_date,
        start_time=occurrence.start_time,
        end_time=occurrence.end_time,
        title=occurrence.title,
        description=occurrence.description,
        activity_type=occurrence.activity_type,
        location=occurrence.location,
        responsible_name=occurrence.responsible_name,
        status=occurrence.status,
        is_recurrent=occurrence.is_recurrent,
        recurrence_pattern=occurrence.recurrence_pattern,
        report_complete=occurrence.report_complete,
        establishment=EstablishmentSnapshot(
            id=establishment.id, name=establishment.name, sector=establishment.sector
        ) if establishment else None,
    )
    return payload.model_dump(mode="json")


def _serialize_activity(activity: Activity) -> Dict[str, Any]:
    return ActivityResponse.model_validate(activity).model_dump(mode="json")


def _visible_to_public(occurrence: Occurrence) -> bool:
    return bool(occurrence.is_public and occurrence.is_validated)


def _viewer_scope(me: Optional[User], establishment_id: Optional[uuid.UUID]) -> Optional[List[str]]:
    """
    Establishments a viewer may list. None means no restriction.
    - Admin sees everything (optionally narrowed to one establishment)
    - Coordinator sees the establishments they manage
    - Citizens and anonymous callers see every establishment, public items only
    """
    if is_coordinator(me) and not is_admin(me):
        managed = managed_establishments(me)
        if establishment_id is not None:
            return [str(establishment_id)] if str(establishment_id) in managed else []
        return managed
    if establishment_id is not None:
        return [str(establishment_id)]
    return None


def _target_establishment(db: Session, occurrence_id: str) -> uuid.UUID:
    target = activity_service.resolve_target(db, occurrence_id)
    record = target.activity if target.activity is not None else target.parent
    return record.establishment_id


@router.get("/occurrences")
def list_occurrences(
    establishment_id: Optional[uuid.UUID] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db),
    me: Optional[User] = Depends(get_optional_user),
):
    if start is None or end is None:
        week_start, week_end = week_bounds(today_local(settings.tz_default))
        start = start or week_start
        end = end or week_end

    public_only = not (is_admin(me) or is_coordinator(me))
    occurrences = activity_service.list_occurrences(
        db,
        start,
        end,
        establishment_ids=_viewer_scope(me, establishment_id),
        public_only=public_only,
    )
    directory = _establishment_directory(db, (o.establishment_id for o in occurrences))
    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "items": [_serialize_occurrence(o, directory) for o in occurrences],
    }


@router.post("/submit-all", response_model=BulkSubmitResponse)
def submit_all(
    body: Optional[BulkSubmitRequest] = Body(default=None),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    establishment_id = body.establishment_id if body else None
    if establishment_id is not None:
        ensure_can_manage(me, establishment_id)
        scope = [establishment_id]
    elif is_admin(me):
        scope = None
    elif is_coordinator(me):
        scope = managed_establishments(me)
    else:
        raise AuthorizationError("Only coordinators and administrators may submit activities")

    result = activity_service.submit_all_drafts(db, scope, actor=me)
    if result.committed:
        db.commit()
    else:
        db.rollback()
    return BulkSubmitResponse(
        submitted=result.submitted,
        already_submitted=result.already_submitted,
        failed=result.failed,
        committed=result.committed,
        items=[BulkSubmitItem(activity_id=i.activity_id, outcome=i.outcome, error=i.error) for i in result.items],
    )


@router.post("/import", response_model=ImportResponse)
async def import_activities_csv(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    if not (is_admin(me) or is_coordinator(me)):
        raise AuthorizationError("Only coordinators and administrators may import activities")
    raw = await file.read()
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError("The file must be UTF-8 encoded CSV", details={"filename": file.filename})
    result = import_activities(db, content, actor=me)
    db.commit()
    return ImportResponse(
        imported=result.imported,
        total=result.total,
        errors=[ImportRowError(row=e.row, message=e.message) for e in result.errors],
    )


@router.get("/stats", response_model=ActivityStats)
def get_stats(
    establishment_id: Optional[uuid.UUID] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    sector: Optional[str] = None,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    if not (is_admin(me) or is_coordinator(me)):
        raise AuthorizationError("Only coordinators and administrators may read programme statistics")
    stats = activity_stats(
        db,
        establishment_ids=_viewer_scope(me, establishment_id),
        start=start,
        end=end,
        sector=sector,
    )
    return ActivityStats(**stats)


@router.get("/{occurrence_id}")
def get_activity(
    occurrence_id: str,
    db: Session = Depends(get_db),
    me: Optional[User] = Depends(get_optional_user),
):
    occurrence = activity_service.project_occurrence(db, occurrence_id)
    if not _visible_to_public(occurrence) and not can_manage_establishment(me, occurrence.establishment_id):
        # Unpublished items exist only for the people who manage them
        raise NotFoundError("Activity not found", details={"id": occurrence_id})
    directory = _establishment_directory(db, [occurrence.establishment_id])
    return _serialize_occurrence(occurrence, directory)


@router.post("")
def create_activity(
    payload: ActivityCreate,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    ensure_can_manage(me, payload.establishment_id)
    if payload.status.upper() == ActivityStatus.PLANNED.value:
        ensure_admin(me, "create planned activities")
    activity = activity_service.create_activity(db, payload, actor=me)
    db.commit()
    db.refresh(activity)
    return _serialize_activity(activity)


@router.patch("/{occurrence_id}")
def update_activity(
    occurrence_id: str,
    payload: ActivityUpdate,
    scope: str = Query(default=Scope.SERIES.value),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    ensure_can_manage(me, _target_establishment(db, occurrence_id))
    activity = activity_service.update_activity(db, occurrence_id, payload, scope=scope, actor=me)
    db.commit()
    db.refresh(activity)
    return _serialize_activity(activity)


@router.delete("/{occurrence_id}")
def delete_activity(
    occurrence_id: str,
    scope: str = Query(default=Scope.SERIES.value),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    ensure_can_manage(me, _target_establishment(db, occurrence_id))
    outcome = activity_service.delete_activity(db, occurrence_id, scope=scope, actor=me)
    db.commit()
    return {
        "deleted": outcome["deleted"],
        "cancelled": outcome["cancelled"],
        "activity_id": str(outcome["activity_id"]),
    }


def _run_action(
    db: Session,
    me: User,
    occurrence_id: str,
    action: LifecycleAction,
    report: Optional[ActivityReport] = None,
) -> Dict[str, Any]:
    ensure_can_manage(me, _target_establishment(db, occurrence_id))
    result = activity_service.transition_activity(db, occurrence_id, action, actor=me, report=report)
    db.commit()
    if isinstance(result, Occurrence):
        # No-op on a virtual occurrence: nothing was stored
        directory = _establishment_directory(db, [result.establishment_id])
        return _serialize_occurrence(result, directory)
    db.refresh(result)
    return _serialize_activity(result)


@router.post("/{occurrence_id}/submit")
def submit_activity(occurrence_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return _run_action(db, me, occurrence_id, LifecycleAction.SUBMIT)


@router.post("/{occurrence_id}/validate")
def validate_activity(occurrence_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    ensure_admin(me, "validate activities")
    return _run_action(db, me, occurrence_id, LifecycleAction.VALIDATE)


@router.post("/{occurrence_id}/start")
def start_activity(occurrence_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return _run_action(db, me, occurrence_id, LifecycleAction.START)


@router.post("/{occurrence_id}/complete")
def complete_activity(occurrence_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return _run_action(db, me, occurrence_id, LifecycleAction.COMPLETE)


@router.post("/{occurrence_id}/cancel")
def cancel_activity(occurrence_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return _run_action(db, me, occurrence_id, LifecycleAction.CANCEL)


@router.post("/{occurrence_id}/report")
def report_activity(
    occurrence_id: str,
    report: ActivityReport,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    return _run_action(db, me, occurrence_id, LifecycleAction.REPORT, report=report)


def _serialize_audit(entry) -> Dict[str, Any]:
    return {
        "id": str(entry.id),
        "action": entry.action,
        "actor_id": str(entry.actor_id) if entry.actor_id else None,
        "actor_role": entry.actor_role,
        "source": entry.source,
        "changes": entry.changes_json,
        "context": entry.context,
        "timestamp_utc": entry.timestamp_utc.isoformat() if entry.timestamp_utc else None,
        "integrity_hash": entry.integrity_hash,
    }


@router.get("/{occurrence_id}/audit")
def get_activity_audit(
    occurrence_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    ensure_admin(me, "read the audit trail")
    target = activity_service.resolve_target(db, occurrence_id)
    record = target.activity if target.activity is not None else target.parent
    entries = get_audit_logs(db, entity_type="activity", entity_id=record.id, limit=limit, offset=offset)
    return {"activity_id": str(record.id), "items": [_serialize_audit(e) for e in entries]}

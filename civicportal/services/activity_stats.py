"""
Programme statistics ("bilans") over stored activity records.

Only stored rows count: a series parent is one record, and its sessions
count once they have been materialized (reported, cancelled or edited).
"""
from collections import Counter
from datetime import date
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from ..models.models import Activity, Establishment
from .activity_service import establishment_uuids


def activity_stats(
    db: Session,
    establishment_ids: Optional[Iterable] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    sector: Optional[str] = None,
) -> Dict[str, Any]:
    query = db.query(Activity, Establishment.sector).outerjoin(
        Establishment, Establishment.id == Activity.establishment_id
    )
    if establishment_ids is not None:
        query = query.filter(Activity.establishment_id.in_(establishment_uuids(establishment_ids)))
    if start is not None:
        query = query.filter(Activity.date >= start)
    if end is not None:
        query = query.filter(Activity.date <= end)
    if sector:
        query = query.filter(Establishment.sector == sector)

    by_status: Counter = Counter()
    by_sector: Counter = Counter()
    by_type: Counter = Counter()
    rates = []
    reported = 0
    participants = 0
    total = 0
    for activity, activity_sector in query.all():
        total += 1
        by_status[activity.status] += 1
        if not activity.report_complete:
            continue
        # Sector and type breakdowns cover reported activities, as in the yearly report
        reported += 1
        participants += activity.attendance_count or 0
        if activity.attendance_rate is not None:
            rates.append(activity.attendance_rate)
        by_sector[activity_sector or "unknown"] += 1
        by_type[activity.activity_type] += 1

    return {
        "total": total,
        "by_status": dict(by_status),
        "reported": reported,
        "total_participants": participants,
        "average_attendance_rate": round(sum(rates) / len(rates), 1) if rates else None,
        "by_sector": dict(by_sector),
        "by_activity_type": dict(by_type),
    }

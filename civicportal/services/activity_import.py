"""
Bulk import of activities from a ``;``-separated CSV file.

Expected header (extra columns are ignored):
    date;start_time;end_time;title;activity_type;establishment_id
Optional columns:
    description;location;responsible_name;expected_participants

Each row goes through the same validation as a single create and is written
in its own savepoint, so bad rows are reported without blocking good ones.
Imported activities start as hidden drafts.
"""
import csv
import io
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

import structlog
from pydantic import ValidationError as PayloadError
from sqlalchemy.orm import Session

from ..errors import SchedulingError, ValidationError
from ..models.models import User
from ..schemas.activities import ActivityCreate
from .activity_service import create_activity
from .calendar_dates import parse_iso_date, today_local
from .permissions import can_manage_establishment


logger = structlog.get_logger(__name__)

DELIMITER = ";"
REQUIRED_COLUMNS = ("date", "start_time", "end_time", "title", "activity_type", "establishment_id")
OPTIONAL_COLUMNS = ("description", "location", "responsible_name", "expected_participants")


@dataclass
class ImportRowError:
    row: int
    message: str


@dataclass
class ImportResult:
    total: int = 0
    imported: int = 0
    errors: List[ImportRowError] = field(default_factory=list)


def _normalize_field(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _payload_message(exc: PayloadError) -> str:
    first = exc.errors()[0]
    where = ".".join(str(part) for part in first.get("loc", ()))
    return f"{where}: {first.get('msg')}" if where else str(first.get("msg"))


def _row_payload(row: Dict[str, Optional[str]], today: date) -> ActivityCreate:
    values = {name: _normalize_field(row.get(name)) for name in REQUIRED_COLUMNS + OPTIONAL_COLUMNS}
    try:
        day = parse_iso_date(values["date"] or "")
    except ValueError:
        raise ValidationError("Invalid date (expected YYYY-MM-DD)", details={"field": "date"})
    if day < today:
        raise ValidationError("The date cannot be in the past", details={"field": "date"})
    values["date"] = day
    values = {k: v for k, v in values.items() if v is not None}
    return ActivityCreate(**values, status="DRAFT", is_public=False)


def read_rows(content: str) -> csv.DictReader:
    reader = csv.DictReader(io.StringIO(content), delimiter=DELIMITER, quoting=csv.QUOTE_MINIMAL)
    # Normalise headers: strip spaces, lower-case
    if reader.fieldnames:
        reader.fieldnames = [(name or "").strip().lower() for name in reader.fieldnames]
    missing = [name for name in REQUIRED_COLUMNS if name not in (reader.fieldnames or [])]
    if missing:
        raise ValidationError(
            "Missing required columns",
            details={"missing": missing, "expected": list(REQUIRED_COLUMNS), "delimiter": DELIMITER},
        )
    return reader


def import_activities(
    db: Session,
    content: str,
    actor: Optional[User] = None,
    *,
    today: Optional[date] = None,
) -> ImportResult:
    """Create one draft activity per valid row. Flushes; the caller commits."""
    today = today or today_local()
    reader = read_rows(content)
    result = ImportResult()

    # Row 1 is the header
    for row_number, row in enumerate(reader, start=2):
        if not any(_normalize_field(v) for v in row.values() if isinstance(v, str)):
            continue
        result.total += 1
        try:
            payload = _row_payload(row, today)
            if not can_manage_establishment(actor, payload.establishment_id):
                raise ValidationError(
                    "You do not manage this establishment",
                    details={"establishment_id": str(payload.establishment_id)},
                )
            with db.begin_nested():
                create_activity(db, payload, actor=actor)
        except PayloadError as exc:
            result.errors.append(ImportRowError(row=row_number, message=_payload_message(exc)))
        except SchedulingError as exc:
            result.errors.append(ImportRowError(row=row_number, message=exc.message))
        else:
            result.imported += 1

    if result.total == 0:
        raise ValidationError("The file contains no activity rows")

    logger.info(
        "activities_imported",
        total=result.total,
        imported=result.imported,
        failed=len(result.errors),
        actor_id=str(actor.id) if actor is not None else None,
    )
    return result

import re
import uuid
from datetime import date as Date, datetime, time
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


_TIME_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?$")


def parse_civil_time(value):
    """Accepts 9, "9", "09", "9:30" or "09:30" as well as time objects."""
    if value is None or isinstance(value, time):
        return value
    if isinstance(value, int):
        value = str(value)
    match = _TIME_RE.match(str(value).strip())
    if not match:
        raise ValueError("Invalid time format (e.g. 9 or 09:00)")
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    if hour > 23 or minute > 59:
        raise ValueError("Invalid time of day")
    return time(hour, minute)


class ActivityBase(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    activity_type: Optional[str] = None
    location: Optional[str] = None
    responsible_name: Optional[str] = None
    expected_participants: Optional[int] = Field(default=None, gt=0)
    date: Optional[Date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    is_public: Optional[bool] = None
    requires_validation: Optional[bool] = None

    # Recurrence
    is_recurrent: Optional[bool] = None
    recurrence_pattern: Optional[str] = None
    recurrence_days: Optional[List[int]] = None
    recurrence_end_date: Optional[Date] = None

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def normalise_time(cls, v):
        return parse_civil_time(v)

    @field_validator('title', 'description', 'activity_type', 'location', 'responsible_name', 'recurrence_pattern', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator('recurrence_days')
    @classmethod
    def weekday_indices(cls, v):
        if v is None:
            return None
        for d in v:
            if d < 0 or d > 6:
                raise ValueError("Weekdays are 0 (Sunday) to 6 (Saturday)")
        return sorted(set(v))


class ActivityCreate(ActivityBase):
    establishment_id: uuid.UUID
    title: str
    activity_type: str
    date: Date
    start_time: time
    end_time: time
    is_public: bool = True
    requires_validation: bool = True
    is_recurrent: bool = False
    # DRAFT for coordinators; PLANNED is reserved for administrators
    status: str = "DRAFT"


class ActivityUpdate(ActivityBase):
    """Partial update; unset fields are left untouched."""
    pass


class ActivityResponse(BaseModel):
    id: uuid.UUID
    establishment_id: uuid.UUID
    title: str
    description: Optional[str] = None
    activity_type: str
    location: Optional[str] = None
    responsible_name: Optional[str] = None
    expected_participants: Optional[int] = None
    date: Date
    start_time: time
    end_time: time
    status: str
    is_public: bool
    is_validated: bool
    requires_validation: bool
    is_recurrent: bool
    recurrence_pattern: Optional[str] = None
    recurrence_days: Optional[List[int]] = None
    recurrence_end_date: Optional[Date] = None
    recurrence_parent_id: Optional[uuid.UUID] = None
    report_complete: bool
    attendance_count: Optional[int] = None
    attendance_rate: Optional[int] = None
    quality_rating: Optional[int] = None
    report_summary: Optional[str] = None
    report_difficulties: Optional[str] = None
    report_highlights: Optional[str] = None
    report_recommendations: Optional[str] = None
    reported_at: Optional[datetime] = None
    created_by_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EstablishmentSnapshot(BaseModel):
    id: uuid.UUID
    name: str
    sector: Optional[str] = None


class OccurrenceResponse(BaseModel):
    id: str
    source_activity_id: uuid.UUID
    parent_id: Optional[uuid.UUID] = None
    is_virtual: bool
    date: Date
    start_time: time
    end_time: time
    title: str
    description: Optional[str] = None
    activity_type: Optional[str] = None
    location: Optional[str] = None
    responsible_name: Optional[str] = None
    status: str
    is_recurrent: bool
    recurrence_pattern: Optional[str] = None
    report_complete: bool
    establishment: Optional[EstablishmentSnapshot] = None


class ActivityReport(BaseModel):
    attendance_count: int = Field(ge=0)
    quality_rating: Optional[int] = Field(default=None, ge=1, le=5)
    summary: str
    difficulties: Optional[str] = None
    highlights: Optional[str] = None
    recommendations: Optional[str] = None


class BulkSubmitRequest(BaseModel):
    establishment_id: Optional[uuid.UUID] = None


class BulkSubmitItem(BaseModel):
    activity_id: uuid.UUID
    outcome: str  # submitted|already_submitted|failed
    error: Optional[str] = None


class BulkSubmitResponse(BaseModel):
    submitted: int
    already_submitted: int
    failed: int
    committed: bool
    items: List[BulkSubmitItem] = []


class ImportRowError(BaseModel):
    row: int
    message: str


class ImportResponse(BaseModel):
    imported: int
    total: int
    errors: List[ImportRowError] = []


class ActivityStats(BaseModel):
    total: int
    by_status: Dict[str, int] = {}
    reported: int
    total_participants: int
    average_attendance_rate: Optional[float] = None
    by_sector: Dict[str, int] = {}
    by_activity_type: Dict[str, int] = {}

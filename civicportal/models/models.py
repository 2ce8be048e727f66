import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Date,
    Time,
    Boolean,
    ForeignKey,
    Table,
    Integer,
    JSON,
    UniqueConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


# Association table for many-to-many User<->Role
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", UUID(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("user_id", "role_id", name="uq_user_role"),
)


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)  # admin|coordinator|citizen
    description: Mapped[Optional[str]] = mapped_column(String(255))

    users = relationship("User", secondary=user_roles, back_populates="roles")


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    # Establishments a coordinator manages, as a list of establishment id strings
    managed_establishment_ids: Mapped[Optional[list]] = mapped_column(JSON, default=list)

    roles = relationship("Role", secondary=user_roles, back_populates="users")


class Establishment(Base):
    """Directory entry; activities only read it for display."""
    __tablename__ = "establishments"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sector: Mapped[Optional[str]] = mapped_column(String(100), index=True)  # health|education|youth|sport|...
    commune: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class Activity(Base):
    """
    One scheduled activity of an establishment programme.

    recurrence_parent_id NULL + is_recurrent  -> series parent
    recurrence_parent_id set                  -> physical child overriding one date of the parent
    recurrence_parent_id NULL + not recurrent -> standalone activity
    """
    __tablename__ = "activities"

    id: Mapped[uuid.UUID] = uuid_pk()
    establishment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("establishments.id", ondelete="CASCADE"), nullable=False, index=True
    )

    title: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    activity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255))
    responsible_name: Mapped[Optional[str]] = mapped_column(String(255))
    expected_participants: Mapped[Optional[int]] = mapped_column(Integer)

    date: Mapped[Date] = mapped_column(Date, nullable=False, index=True)  # Local civil date (anchor)
    start_time: Mapped[Time] = mapped_column(Time(timezone=False), nullable=False)  # Local time
    end_time: Mapped[Time] = mapped_column(Time(timezone=False), nullable=False)  # Local time

    status: Mapped[str] = mapped_column(String(30), default="DRAFT", nullable=False, index=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    is_validated: Mapped[bool] = mapped_column(Boolean, default=False)
    requires_validation: Mapped[bool] = mapped_column(Boolean, default=True)

    # Recurrence
    is_recurrent: Mapped[bool] = mapped_column(Boolean, default=False)
    recurrence_pattern: Mapped[Optional[str]] = mapped_column(String(30))  # DAILY|DAILY_NO_WEEKEND|WEEKLY|MONTHLY
    recurrence_days: Mapped[Optional[list]] = mapped_column(JSON, default=list)  # 0=Sunday .. 6=Saturday
    recurrence_end_date: Mapped[Optional[Date]] = mapped_column(Date)
    recurrence_parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("activities.id", ondelete="CASCADE"), index=True
    )

    # Post-activity report
    report_complete: Mapped[bool] = mapped_column(Boolean, default=False)
    attendance_count: Mapped[Optional[int]] = mapped_column(Integer)
    attendance_rate: Mapped[Optional[int]] = mapped_column(Integer)  # percent of expected_participants
    quality_rating: Mapped[Optional[int]] = mapped_column(Integer)  # 1..5
    report_summary: Mapped[Optional[str]] = mapped_column(Text)
    report_difficulties: Mapped[Optional[str]] = mapped_column(Text)
    report_highlights: Mapped[Optional[str]] = mapped_column(Text)
    report_recommendations: Mapped[Optional[str]] = mapped_column(Text)
    reported_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    establishment = relationship("Establishment")
    parent = relationship("Activity", remote_side=[id], back_populates="children")
    children = relationship("Activity", back_populates="parent", passive_deletes=True)

    __table_args__ = (
        # At most one physical child per (parent, date)
        UniqueConstraint("recurrence_parent_id", "date", name="uq_activity_parent_date"),
        Index("idx_activity_establishment_date", "establishment_id", "date"),
    )


class AuditLog(Base):
    """Append-only audit log for activity programme actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # activity|activity_batch
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|UPDATE|MATERIALIZE|DELETE|SUBMIT|...
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50))  # admin|coordinator|system
    source: Mapped[Optional[str]] = mapped_column(String(50))  # api|system|script
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
        Index('idx_audit_actor', 'actor_id', 'timestamp_utc'),
    )

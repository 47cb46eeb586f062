"""
Event model with lifecycle audit trail.

Key design decisions:
- Audience, session and scanner configs are JSON documents (JSONB on
  PostgreSQL); they are validated in the service layer, never here
- Scanner assignments are also denormalised into `event_scanners` so the
  scanner listing is an indexed join instead of a JSON containment scan
- Index on (start_date, end_date) for the venue availability range query
- Index on (lifecycle_status, visibility) for public/student listings
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from sems.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Event(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "events"

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    poster_image_url = Column(String(1000), nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    facility_id = Column(String(36), ForeignKey("facilities.id", ondelete="SET NULL"), nullable=True, index=True)

    target_audience = Column(JSONDocument, nullable=False)
    session_config = Column(JSONDocument, nullable=False)
    scanner_assignments = Column(JSONDocument, nullable=False)

    visibility = Column(String(20), nullable=False, default="internal")
    registration_required = Column(Boolean, nullable=False, default=False)
    registration_opens_at = Column(DateTime(timezone=True), nullable=True)
    registration_closes_at = Column(DateTime(timezone=True), nullable=True)
    capacity_limit = Column(Integer, nullable=True)

    # Lifecycle
    lifecycle_status = Column(String(20), nullable=False, default="draft")
    owner_user_id = Column(String(36), nullable=True, index=True)
    submitted_for_approval_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(String(36), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approval_comment = Column(Text, nullable=True)
    rejected_by = Column(String(36), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_comment = Column(Text, nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(String(36), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_by = Column(String(36), nullable=True)
    updated_by = Column(String(36), nullable=True)

    facility = relationship("Facility", lazy="joined")
    scanners = relationship("EventScanner", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        CheckConstraint(
            "lifecycle_status IN ('draft', 'pending_approval', 'approved', 'published', 'completed', 'cancelled')",
            name="check_event_lifecycle_status",
        ),
        CheckConstraint("visibility IN ('internal', 'student', 'public')", name="check_event_visibility"),
        CheckConstraint("capacity_limit IS NULL OR capacity_limit > 0", name="check_event_capacity_positive"),
        CheckConstraint("end_date IS NULL OR start_date IS NULL OR end_date >= start_date", name="check_event_dates"),
        Index("ix_events_date_range", "start_date", "end_date"),
        Index("ix_events_status_visibility", "lifecycle_status", "visibility"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, status={self.lifecycle_status})>"


class EventScanner(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "event_scanners"

    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    scanner_user_id = Column(String(36), nullable=False, index=True)

    __table_args__ = (UniqueConstraint("event_id", "scanner_user_id", name="uq_event_scanner"),)


class AttendanceLog(Base, UUIDPrimaryKeyMixin):
    """A single scan. Written by the scanning app; only counted here."""

    __tablename__ = "attendance_logs"

    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(String(100), nullable=False)
    direction = Column(String(10), nullable=False)
    scanned_at = Column(DateTime(timezone=True), nullable=False)
    scanned_by = Column(String(36), nullable=True)

    __table_args__ = (
        CheckConstraint("direction IN ('in', 'out')", name="check_attendance_direction"),
        Index("ix_attendance_event_student", "event_id", "student_id"),
    )

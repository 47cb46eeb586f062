"""Initial schema: school structure, facilities, events, scanners and attendance.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONDocument = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # School structure (read-only for the event engine)
    op.create_table(
        "levels",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
    )

    op.create_table(
        "sections",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("level_id", sa.String(36), sa.ForeignKey("levels.id", ondelete="CASCADE"), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_sections_level_id", "sections", ["level_id"])

    op.create_table(
        "students",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("student_number", sa.String(50), nullable=False, unique=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("middle_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("section_id", sa.String(36), sa.ForeignKey("sections.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("app_user_id", sa.String(36), nullable=True),
        *_timestamps(),
    )
    # Every audience count filters on section + is_active
    op.create_index("ix_students_section_active", "students", ["section_id", "is_active"])
    op.create_index("ix_students_app_user_id", "students", ["app_user_id"])

    op.create_table(
        "student_guardians",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("student_id", sa.String(36), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("guardian_user_id", sa.String(36), nullable=False),
        sa.Column("relationship_label", sa.String(50), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("student_id", "guardian_user_id", name="uq_student_guardian"),
    )
    op.create_index("ix_student_guardians_student_id", "student_guardians", ["student_id"])
    op.create_index("ix_student_guardians_guardian_user_id", "student_guardians", ["guardian_user_id"])

    # Facilities
    op.create_table(
        "facilities",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("location_identifier", sa.String(255), nullable=False),
        sa.Column("image_url", sa.String(1000), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'operational'")),
        *_timestamps(),
        sa.CheckConstraint("status IN ('operational', 'maintenance', 'closed')", name="check_facility_status"),
        sa.CheckConstraint("capacity IS NULL OR capacity > 0", name="check_facility_capacity_positive"),
    )
    op.create_index("ix_facilities_status", "facilities", ["status"])

    # Events
    op.create_table(
        "events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("poster_image_url", sa.String(1000), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("facility_id", sa.String(36), sa.ForeignKey("facilities.id", ondelete="SET NULL"), nullable=True),
        sa.Column("target_audience", JSONDocument, nullable=False),
        sa.Column("session_config", JSONDocument, nullable=False),
        sa.Column("scanner_assignments", JSONDocument, nullable=False),
        sa.Column("visibility", sa.String(20), nullable=False, server_default=sa.text("'internal'")),
        sa.Column("registration_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("registration_opens_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("registration_closes_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("capacity_limit", sa.Integer(), nullable=True),
        sa.Column("lifecycle_status", sa.String(20), nullable=False, server_default=sa.text("'draft'")),
        sa.Column("owner_user_id", sa.String(36), nullable=True),
        sa.Column("submitted_for_approval_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.String(36), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approval_comment", sa.Text(), nullable=True),
        sa.Column("rejected_by", sa.String(36), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_comment", sa.Text(), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(36), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=True),
        sa.Column("updated_by", sa.String(36), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "lifecycle_status IN ('draft', 'pending_approval', 'approved', 'published', 'completed', 'cancelled')",
            name="check_event_lifecycle_status",
        ),
        sa.CheckConstraint("visibility IN ('internal', 'student', 'public')", name="check_event_visibility"),
        sa.CheckConstraint("capacity_limit IS NULL OR capacity_limit > 0", name="check_event_capacity_positive"),
        sa.CheckConstraint(
            "end_date IS NULL OR start_date IS NULL OR end_date >= start_date", name="check_event_dates"
        ),
    )
    op.create_index("ix_events_facility_id", "events", ["facility_id"])
    op.create_index("ix_events_owner_user_id", "events", ["owner_user_id"])
    # Venue availability: WHERE start_date <= :end AND coalesce(end_date, start_date) >= :start
    op.create_index("ix_events_date_range", "events", ["start_date", "end_date"])
    # Public / student / parent listings: WHERE lifecycle_status = 'published' AND visibility IN (...)
    op.create_index("ix_events_status_visibility", "events", ["lifecycle_status", "visibility"])

    op.create_table(
        "event_scanners",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("scanner_user_id", sa.String(36), nullable=False),
        sa.UniqueConstraint("event_id", "scanner_user_id", name="uq_event_scanner"),
    )
    op.create_index("ix_event_scanners_scanner_user_id", "event_scanners", ["scanner_user_id"])

    op.create_table(
        "attendance_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("student_id", sa.String(36), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("session_id", sa.String(100), nullable=False),
        sa.Column("direction", sa.String(10), nullable=False),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scanned_by", sa.String(36), nullable=True),
        sa.CheckConstraint("direction IN ('in', 'out')", name="check_attendance_direction"),
    )
    op.create_index("ix_attendance_event_student", "attendance_logs", ["event_id", "student_id"])


def downgrade() -> None:
    op.drop_table("attendance_logs")
    op.drop_table("event_scanners")
    op.drop_table("events")
    op.drop_table("facilities")
    op.drop_table("student_guardians")
    op.drop_table("students")
    op.drop_table("sections")
    op.drop_table("levels")

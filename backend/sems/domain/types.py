"""
Domain types for the school event governance engine.

Audience, session and scanner configurations are stored as JSON on the
event row. Here they are immutable pydantic models; audience rules form a
discriminated union keyed on `kind`. Raw JSON is validated once at the
boundary (see audience_engine / session_validator / event_validation)
before any of these models is built.
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class LifecycleStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PUBLISHED = "published"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({LifecycleStatus.COMPLETED, LifecycleStatus.CANCELLED})


class WorkflowAction(str, Enum):
    SUBMIT_FOR_APPROVAL = "SUBMIT_FOR_APPROVAL"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    PUBLISH = "PUBLISH"
    COMPLETE = "COMPLETE"
    CANCEL = "CANCEL"


class Visibility(str, Enum):
    INTERNAL = "internal"
    STUDENT = "student"
    PUBLIC = "public"


class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    SCANNER = "SCANNER"
    TEACHER = "TEACHER"
    STAFF = "STAFF"
    PARENT = "PARENT"
    STUDENT = "STUDENT"


ADMIN_ROLES = frozenset({UserRole.SUPER_ADMIN.value, UserRole.ADMIN.value})
ORGANIZER_ROLES = frozenset({UserRole.TEACHER.value, UserRole.STAFF.value})


class RuleEffect(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"


class SessionPeriod(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class SessionDirection(str, Enum):
    IN = "in"
    OUT = "out"


PERIOD_ORDER = (SessionPeriod.MORNING, SessionPeriod.AFTERNOON, SessionPeriod.EVENING)
DIRECTION_ORDER = (SessionDirection.IN, SessionDirection.OUT)


class DisplayStatus(str, Enum):
    """Clock-derived status shown in listings (independent of lifecycle)."""

    LIVE = "live"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"


class VenueStatus(str, Enum):
    AVAILABLE = "available"
    PARTIAL = "partial"
    UNAVAILABLE = "unavailable"


class DomainModel(BaseModel):
    model_config = ConfigDict(frozen=True)


# ============================================================================
# Audience configuration
# ============================================================================


class AllStudentsRule(DomainModel):
    kind: Literal["ALL_STUDENTS"] = "ALL_STUDENTS"
    effect: RuleEffect


class LevelRule(DomainModel):
    kind: Literal["LEVEL"] = "LEVEL"
    effect: RuleEffect
    level_ids: tuple[str, ...]


class SectionRule(DomainModel):
    kind: Literal["SECTION"] = "SECTION"
    effect: RuleEffect
    section_ids: tuple[str, ...]


class StudentRule(DomainModel):
    kind: Literal["STUDENT"] = "STUDENT"
    effect: RuleEffect
    student_ids: tuple[str, ...]


AudienceRule = Annotated[
    Union[AllStudentsRule, LevelRule, SectionRule, StudentRule],
    Field(discriminator="kind"),
]

AUDIENCE_RULE_KINDS = ("ALL_STUDENTS", "LEVEL", "SECTION", "STUDENT")


class AudienceConfig(DomainModel):
    version: Literal[1] = 1
    rules: tuple[AudienceRule, ...] = ()

    @property
    def include_rules(self) -> tuple:
        return tuple(r for r in self.rules if r.effect is RuleEffect.INCLUDE)

    @property
    def exclude_rules(self) -> tuple:
        return tuple(r for r in self.rules if r.effect is RuleEffect.EXCLUDE)


class StudentAudienceContext(DomainModel):
    """The groups one student belongs to, used for membership tests."""

    student_id: str
    section_id: Optional[str] = None
    level_id: Optional[str] = None


# ============================================================================
# Session configuration
# ============================================================================


class Session(DomainModel):
    id: str
    name: str
    period: SessionPeriod
    direction: SessionDirection
    opens: str
    closes: str
    late_after: Optional[str] = None

    @property
    def supports_late_after(self) -> bool:
        # Exit scans are never late
        return self.direction is SessionDirection.IN


class DateSessionConfig(DomainModel):
    date: date
    sessions: tuple[Session, ...] = ()


class SessionConfig(DomainModel):
    version: Literal[2] = 2
    dates: tuple[DateSessionConfig, ...] = ()

    def for_date(self, day: date) -> Optional[DateSessionConfig]:
        for entry in self.dates:
            if entry.date == day:
                return entry
        return None


class ScannerConfig(DomainModel):
    version: Literal[1] = 1
    scanner_ids: tuple[str, ...] = ()


# ============================================================================
# Actors and facilities
# ============================================================================


class ActorContext(DomainModel):
    """Authenticated caller: user id plus role names."""

    user_id: str
    roles: tuple[str, ...] = ()

    @property
    def is_admin(self) -> bool:
        return any(role in ADMIN_ROLES for role in self.roles)

    @property
    def is_organizer(self) -> bool:
        return any(role in ORGANIZER_ROLES for role in self.roles)

    def has_role(self, role: UserRole) -> bool:
        return role.value in self.roles


class FacilitySummary(DomainModel):
    id: str
    name: str
    location: str


class Facility(DomainModel):
    id: str
    name: str
    location: str
    image_url: Optional[str] = None
    capacity: Optional[int] = None


class BookedEvent(DomainModel):
    """An existing event as seen by the venue availability checker."""

    id: str
    title: str
    facility_id: Optional[str]
    start_date: date
    end_date: date
    session_config: SessionConfig = SessionConfig()


# ============================================================================
# Event payloads
# ============================================================================


class EventFields(DomainModel):
    """
    Editable event fields, all optional.

    Presence is tracked with pydantic's fields-set: a field is part of the
    change only when it was passed to the constructor, so an explicit None
    (e.g. clearing the facility) differs from "not provided".
    """

    title: Optional[str] = None
    description: Optional[str] = None
    poster_image_url: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    facility_id: Optional[str] = None
    audience_config: Optional[AudienceConfig] = None
    session_config: Optional[SessionConfig] = None
    scanner_config: Optional[ScannerConfig] = None
    visibility: Optional[Visibility] = None
    registration_required: Optional[bool] = None
    registration_opens_at: Optional[datetime] = None
    registration_closes_at: Optional[datetime] = None
    capacity_limit: Optional[int] = None

    def provided(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}

    def has(self, name: str) -> bool:
        return name in self.model_fields_set


class EventUpdate(EventFields):
    id: str


class EventPatch(EventFields):
    """Commit payload handed to the repository by update_event."""

    lifecycle_status: Optional[LifecycleStatus] = None
    submitted_for_approval_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_comment: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_comment: Optional[str] = None
    published_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


class EventCreate(DomainModel):
    title: str
    description: Optional[str] = None
    poster_image_url: Optional[str] = None
    start_date: date
    end_date: date
    facility_id: Optional[str] = None
    audience_config: AudienceConfig
    session_config: SessionConfig
    scanner_config: ScannerConfig
    visibility: Visibility
    registration_required: bool = False
    registration_opens_at: Optional[datetime] = None
    registration_closes_at: Optional[datetime] = None
    capacity_limit: Optional[int] = None
    owner_user_id: Optional[str] = None


class NewEvent(EventCreate):
    """Commit payload handed to the repository by create_event."""

    owner_user_id: str
    lifecycle_status: LifecycleStatus
    submitted_for_approval_at: Optional[datetime] = None


class EventRecord(DomainModel):
    """A persisted event as returned by the repository."""

    id: str
    title: str
    description: Optional[str] = None
    poster_image_url: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    facility_id: Optional[str] = None
    facility: Optional[FacilitySummary] = None
    audience_config: AudienceConfig = AudienceConfig()
    session_config: SessionConfig = SessionConfig()
    scanner_config: ScannerConfig = ScannerConfig()
    visibility: Visibility = Visibility.INTERNAL
    registration_required: bool = False
    registration_opens_at: Optional[datetime] = None
    registration_closes_at: Optional[datetime] = None
    capacity_limit: Optional[int] = None

    lifecycle_status: LifecycleStatus = LifecycleStatus.DRAFT
    owner_user_id: Optional[str] = None
    submitted_for_approval_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_comment: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_comment: Optional[str] = None
    published_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.lifecycle_status in TERMINAL_STATUSES


class ListEventsOptions(DomainModel):
    page: int = 1
    page_size: Optional[int] = None
    facility_id: Optional[str] = None
    search_term: Optional[str] = None
    owner_user_id: Optional[str] = None
    # Owned by this user OR internal visibility (organizer listing)
    organizer_scope_user_id: Optional[str] = None
    lifecycle_statuses: Optional[tuple[LifecycleStatus, ...]] = None
    visibilities: Optional[tuple[Visibility, ...]] = None
    disable_pagination: bool = False

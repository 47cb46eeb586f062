"""
SQLAlchemy implementation of EventRepository.

Works on a request-scoped AsyncSession; it flushes but never commits
(get_db commits once the request succeeds). Runs unchanged on PostgreSQL
(asyncpg) and SQLite (aiosqlite, used by the test suite).
"""

from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from sems.core.logging import get_logger
from sems.domain.types import (
    AudienceConfig,
    BookedEvent,
    EventPatch,
    EventRecord,
    Facility,
    FacilitySummary,
    ListEventsOptions,
    NewEvent,
    ScannerConfig,
    SessionConfig,
    StudentAudienceContext,
)
from sems.models.event import AttendanceLog, Event, EventScanner
from sems.models.facility import Facility as FacilityModel
from sems.models.school import Level, Section, Student, StudentGuardian
from sems.repositories.interfaces import EventRepository

logger = get_logger(__name__)

# Domain field -> column, where the names differ
_COLUMN_FOR_FIELD = {
    "audience_config": "target_audience",
    "scanner_config": "scanner_assignments",
}

_JSON_FIELDS = ("audience_config", "session_config", "scanner_config")


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _column_value(field: str, value: Any) -> Any:
    if value is None:
        return None
    if field in _JSON_FIELDS:
        return value.model_dump(mode="json")
    if hasattr(value, "value"):
        return value.value
    return value


def _contains_pattern(term: str) -> str:
    # Search text is literal; LIKE wildcards in it are escaped
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _to_record(row: Event, with_facility: bool = False) -> EventRecord:
    facility = None
    if with_facility and row.facility is not None:
        facility = FacilitySummary(
            id=row.facility.id, name=row.facility.name, location=row.facility.location_identifier
        )

    return EventRecord(
        id=row.id,
        title=row.title,
        description=row.description,
        poster_image_url=row.poster_image_url,
        start_date=row.start_date,
        end_date=row.end_date,
        facility_id=row.facility_id,
        facility=facility,
        audience_config=AudienceConfig.model_validate(row.target_audience or {}),
        session_config=SessionConfig.model_validate(row.session_config or {}),
        scanner_config=ScannerConfig.model_validate(row.scanner_assignments or {}),
        visibility=row.visibility,
        registration_required=row.registration_required,
        registration_opens_at=_aware(row.registration_opens_at),
        registration_closes_at=_aware(row.registration_closes_at),
        capacity_limit=row.capacity_limit,
        lifecycle_status=row.lifecycle_status,
        owner_user_id=row.owner_user_id,
        submitted_for_approval_at=_aware(row.submitted_for_approval_at),
        approved_by=row.approved_by,
        approved_at=_aware(row.approved_at),
        approval_comment=row.approval_comment,
        rejected_by=row.rejected_by,
        rejected_at=_aware(row.rejected_at),
        rejection_comment=row.rejection_comment,
        published_at=_aware(row.published_at),
        completed_at=_aware(row.completed_at),
        cancelled_by=row.cancelled_by,
        cancelled_at=_aware(row.cancelled_at),
        cancellation_reason=row.cancellation_reason,
        created_by=row.created_by,
        created_at=_aware(row.created_at),
        updated_by=row.updated_by,
        updated_at=_aware(row.updated_at),
    )


class SqlAlchemyEventRepository(EventRepository):
    def __init__(self, db: AsyncSession):
        self.db = db

    # ---- events ----

    async def _get_row(self, event_id: str) -> Optional[Event]:
        result = await self.db.execute(
            select(Event).where(Event.id == event_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _replace_scanners(self, event_id: str, scanner_ids: tuple[str, ...]) -> None:
        await self.db.execute(delete(EventScanner).where(EventScanner.event_id == event_id))
        for scanner_id in dict.fromkeys(scanner_ids):
            self.db.add(EventScanner(event_id=event_id, scanner_user_id=scanner_id))

    async def create(self, event: NewEvent, created_by: str) -> EventRecord:
        values = {
            _COLUMN_FOR_FIELD.get(name, name): _column_value(name, getattr(event, name))
            for name in NewEvent.model_fields
        }
        row = Event(**values, created_by=created_by, updated_by=created_by)
        self.db.add(row)
        await self.db.flush()
        await self._replace_scanners(row.id, event.scanner_config.scanner_ids)
        await self.db.flush()
        await self.db.refresh(row)

        logger.debug("event_row_inserted", event_id=row.id)
        return _to_record(row)

    async def update(self, event_id: str, patch: EventPatch, updated_by: str) -> EventRecord:
        row = await self._get_row(event_id)
        if row is None:
            raise LookupError(f"Event not found: {event_id}")

        for name, value in patch.provided().items():
            setattr(row, _COLUMN_FOR_FIELD.get(name, name), _column_value(name, value))
        row.updated_by = updated_by

        if patch.has("scanner_config") and patch.scanner_config is not None:
            await self._replace_scanners(event_id, patch.scanner_config.scanner_ids)

        await self.db.flush()
        await self.db.refresh(row)
        return _to_record(row)

    async def find_by_id(self, event_id: str) -> Optional[EventRecord]:
        row = await self._get_row(event_id)
        return _to_record(row) if row else None

    async def find_by_id_with_facility(self, event_id: str) -> Optional[EventRecord]:
        row = await self._get_row(event_id)
        return _to_record(row, with_facility=True) if row else None

    def _apply_filters(self, query, options: ListEventsOptions):
        if options.facility_id:
            query = query.where(Event.facility_id == options.facility_id)
        if options.search_term:
            query = query.where(Event.title.ilike(_contains_pattern(options.search_term), escape="\\"))
        if options.owner_user_id:
            query = query.where(Event.owner_user_id == options.owner_user_id)
        if options.organizer_scope_user_id:
            query = query.where(
                or_(Event.owner_user_id == options.organizer_scope_user_id, Event.visibility == "internal")
            )
        if options.lifecycle_statuses:
            query = query.where(Event.lifecycle_status.in_([s.value for s in options.lifecycle_statuses]))
        if options.visibilities:
            query = query.where(Event.visibility.in_([v.value for v in options.visibilities]))
        return query

    async def _paginate(self, query, options: ListEventsOptions) -> tuple[list[EventRecord], int]:
        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(Event.start_date.desc().nulls_last(), Event.created_at.desc())
        if not options.disable_pagination:
            page_size = options.page_size or 50
            query = query.offset((max(options.page, 1) - 1) * page_size).limit(page_size)

        result = await self.db.execute(query)
        rows = result.scalars().all()
        return [_to_record(row, with_facility=True) for row in rows], total

    async def find_all(self, options: ListEventsOptions) -> tuple[list[EventRecord], int]:
        return await self._paginate(self._apply_filters(select(Event), options), options)

    async def find_all_for_scanner(
        self, scanner_id: str, options: ListEventsOptions
    ) -> tuple[list[EventRecord], int]:
        query = select(Event).join(EventScanner, EventScanner.event_id == Event.id).where(
            EventScanner.scanner_user_id == scanner_id
        )
        return await self._paginate(self._apply_filters(query, options), options)

    async def find_events_in_date_range(
        self, start_date: date, end_date: date, exclude_event_id: Optional[str] = None
    ) -> list[BookedEvent]:
        effective_end = func.coalesce(Event.end_date, Event.start_date)
        query = select(Event).where(
            Event.facility_id.is_not(None),
            Event.start_date.is_not(None),
            Event.start_date <= end_date,
            effective_end >= start_date,
        )
        if exclude_event_id:
            query = query.where(Event.id != exclude_event_id)

        result = await self.db.execute(query)
        return [
            BookedEvent(
                id=row.id,
                title=row.title,
                facility_id=row.facility_id,
                start_date=row.start_date,
                end_date=row.end_date or row.start_date,
                session_config=SessionConfig.model_validate(row.session_config or {}),
            )
            for row in result.scalars().all()
        ]

    async def delete_many_by_ids(self, ids: list[str]) -> int:
        if not ids:
            return 0
        result = await self.db.execute(delete(Event).where(Event.id.in_(ids)))
        return result.rowcount or 0

    # ---- facilities ----

    async def facility_exists(self, facility_id: str) -> bool:
        result = await self.db.execute(
            select(FacilityModel.id).where(FacilityModel.id == facility_id, FacilityModel.status == "operational")
        )
        return result.scalar_one_or_none() is not None

    async def get_operational_facilities(self) -> list[Facility]:
        result = await self.db.execute(
            select(FacilityModel).where(FacilityModel.status == "operational").order_by(FacilityModel.name.asc())
        )
        return [
            Facility(
                id=row.id,
                name=row.name,
                location=row.location_identifier,
                image_url=row.image_url,
                capacity=row.capacity,
            )
            for row in result.scalars().all()
        ]

    # ---- students ----

    async def count_active_students(self) -> int:
        result = await self.db.execute(select(func.count(Student.id)).where(Student.is_active.is_(True)))
        return result.scalar() or 0

    async def count_students_by_levels(self, level_ids: list[str]) -> int:
        if not level_ids:
            return 0
        result = await self.db.execute(
            select(func.count(Student.id))
            .join(Section, Section.id == Student.section_id)
            .where(Section.level_id.in_(level_ids), Student.is_active.is_(True))
        )
        return result.scalar() or 0

    async def count_students_by_sections(self, section_ids: list[str]) -> int:
        if not section_ids:
            return 0
        result = await self.db.execute(
            select(func.count(Student.id)).where(Student.section_id.in_(section_ids), Student.is_active.is_(True))
        )
        return result.scalar() or 0

    async def get_level_names(self, level_ids: list[str]) -> dict[str, str]:
        if not level_ids:
            return {}
        result = await self.db.execute(select(Level.id, Level.name).where(Level.id.in_(level_ids)))
        return {level_id: name for level_id, name in result.all()}

    async def get_student_contexts_for_user(self, app_user_id: str) -> list[StudentAudienceContext]:
        guarded = select(StudentGuardian.student_id).where(StudentGuardian.guardian_user_id == app_user_id)
        result = await self.db.execute(
            select(Student.id, Student.section_id, Section.level_id)
            .outerjoin(Section, Section.id == Student.section_id)
            .where(
                Student.is_active.is_(True),
                or_(Student.app_user_id == app_user_id, Student.id.in_(guarded)),
            )
        )
        return [
            StudentAudienceContext(student_id=student_id, section_id=section_id, level_id=level_id)
            for student_id, section_id, level_id in result.all()
        ]

    async def count_event_attendees(self, event_id: str) -> int:
        result = await self.db.execute(
            select(func.count(func.distinct(AttendanceLog.student_id))).where(AttendanceLog.event_id == event_id)
        )
        return result.scalar() or 0

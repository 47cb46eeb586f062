"""
Tests for SqlAlchemyEventRepository against in-memory SQLite (aiosqlite).
"""

from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from conftest import make_session
from sems.core.clock import FixedClock
from sems.db.base import Base
from sems.domain.errors import ValidationError
from sems.domain.types import (
    ActorContext,
    AudienceConfig,
    EventPatch,
    LifecycleStatus,
    ListEventsOptions,
    NewEvent,
    ScannerConfig,
    SessionConfig,
    StudentAudienceContext,
    Visibility,
)
from sems.models import AttendanceLog, Event, EventScanner, Facility, Level, Section, Student, StudentGuardian
from sems.repositories.sqlalchemy_repository import SqlAlchemyEventRepository
from sems.services.event_service import EventService

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
GYM = "11111111-1111-4111-8111-111111111111"
HALL = "22222222-2222-4222-8222-222222222222"
CLOSED = "33333333-3333-4333-8333-333333333333"
GRADE_7 = "a7a7a7a7-0000-4000-8000-000000000007"
SECTION_7A = "5ec7a000-0000-4000-8000-00000000007a"
SECTION_7B = "5ec7b000-0000-4000-8000-00000000007b"
OWNER = "7eac7e70-0000-4000-8000-000000000001"
OTHER = "7eac7e70-0000-4000-8000-000000000002"
SCANNER_ID = "5ca11e70-0000-4000-8000-000000000001"
PARENT_ID = "9a7e0700-0000-4000-8000-000000000001"


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory schema per test, seeded with facilities and students."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        session.add_all(
            [
                Facility(id=GYM, name="Main Gym", location_identifier="Building A", capacity=500),
                Facility(id=HALL, name="Auditorium", location_identifier="Building B"),
                Facility(id=CLOSED, name="Old Hall", location_identifier="Building C", status="closed"),
                Level(id=GRADE_7, name="Grade 7", sort_order=7),
                Section(id=SECTION_7A, name="7-A", level_id=GRADE_7),
                Section(id=SECTION_7B, name="7-B", level_id=GRADE_7),
                Student(id="s1", student_number="001", first_name="Ana", last_name="Cruz", section_id=SECTION_7A,
                        app_user_id="student-user"),
                Student(id="s2", student_number="002", first_name="Ben", last_name="Reyes", section_id=SECTION_7A),
                Student(id="s3", student_number="003", first_name="Cara", last_name="Lim", section_id=SECTION_7B),
                Student(id="s4", student_number="004", first_name="Dan", last_name="Tan", section_id=SECTION_7B,
                        is_active=False),
                Student(id="s5", student_number="005", first_name="Eli", last_name="Go"),
                StudentGuardian(student_id="s2", guardian_user_id=PARENT_ID, relationship_label="mother"),
                StudentGuardian(student_id="s4", guardian_user_id=PARENT_ID, relationship_label="mother"),
            ]
        )
        await session.flush()
        yield session

    await engine.dispose()


@pytest.fixture
def repository(db_session: AsyncSession) -> SqlAlchemyEventRepository:
    return SqlAlchemyEventRepository(db_session)


def new_event(day: date = date(2026, 3, 10), **overrides) -> NewEvent:
    fields = dict(
        title="Science Fair",
        description="Annual fair",
        start_date=day,
        end_date=day,
        facility_id=GYM,
        audience_config=AudienceConfig.model_validate(
            {"version": 1, "rules": [{"kind": "LEVEL", "effect": "include", "level_ids": [GRADE_7]}]}
        ),
        session_config=SessionConfig.model_validate(
            {"version": 2, "dates": [{"date": day.isoformat(), "sessions": [make_session()]}]}
        ),
        scanner_config=ScannerConfig(scanner_ids=(SCANNER_ID,)),
        visibility=Visibility.STUDENT,
        owner_user_id=OWNER,
        lifecycle_status=LifecycleStatus.PENDING_APPROVAL,
        submitted_for_approval_at=NOW,
    )
    fields.update(overrides)
    return NewEvent(**fields)


@pytest.mark.asyncio
async def test_create_and_read_back(repository, db_session):
    created = await repository.create(new_event(), OWNER)

    event = await repository.find_by_id_with_facility(created.id)
    assert event.title == "Science Fair"
    assert event.facility.name == "Main Gym"
    assert event.facility.location == "Building A"
    assert event.audience_config.include_rules[0].level_ids == (GRADE_7,)
    assert event.session_config.dates[0].sessions[0].opens == "08:00"
    assert event.lifecycle_status is LifecycleStatus.PENDING_APPROVAL
    assert event.submitted_for_approval_at == NOW
    assert event.created_by == OWNER
    assert event.created_at.tzinfo is not None

    scanners = (await db_session.execute(select(EventScanner.scanner_user_id))).scalars().all()
    assert scanners == [SCANNER_ID]


@pytest.mark.asyncio
async def test_find_missing_event(repository):
    assert await repository.find_by_id("00000000-0000-4000-8000-000000000000") is None


@pytest.mark.asyncio
async def test_update_applies_only_provided_fields(repository, db_session):
    created = await repository.create(new_event(), OWNER)

    patch = EventPatch(
        facility_id=None,
        lifecycle_status=LifecycleStatus.APPROVED,
        approved_by="admin",
        approved_at=NOW,
        scanner_config=ScannerConfig(scanner_ids=("x", "y", "x")),
    )
    updated = await repository.update(created.id, patch, "admin")

    assert updated.facility_id is None
    assert updated.lifecycle_status is LifecycleStatus.APPROVED
    assert updated.approved_at == NOW
    assert updated.title == "Science Fair"
    assert updated.updated_by == "admin"

    scanners = (
        await db_session.execute(select(EventScanner.scanner_user_id).order_by(EventScanner.scanner_user_id))
    ).scalars().all()
    assert scanners == ["x", "y"]


@pytest.mark.asyncio
async def test_update_missing_event(repository):
    with pytest.raises(LookupError):
        await repository.update("00000000-0000-4000-8000-000000000000", EventPatch(title="x"), "admin")


@pytest.mark.asyncio
async def test_find_all_filters_and_orders(repository, db_session):
    early = await repository.create(new_event(date(2026, 3, 1), title="Early"), OWNER)
    late = await repository.create(new_event(date(2026, 4, 1), title="Late Show"), OWNER)
    public = await repository.create(
        new_event(date(2026, 3, 15), title="Open Day", visibility=Visibility.PUBLIC, owner_user_id=OTHER,
                  lifecycle_status=LifecycleStatus.PUBLISHED),
        OTHER,
    )
    undated = Event(
        title="Someday", target_audience={}, session_config={}, scanner_assignments={}, owner_user_id=OWNER
    )
    db_session.add(undated)
    await db_session.flush()

    events, total = await repository.find_all(ListEventsOptions())
    assert total == 4
    assert [e.id for e in events] == [late.id, public.id, early.id, undated.id]

    events, total = await repository.find_all(ListEventsOptions(page=2, page_size=3))
    assert total == 4
    assert [e.id for e in events] == [undated.id]

    events, _ = await repository.find_all(ListEventsOptions(search_term="show"))
    assert [e.id for e in events] == [late.id]

    events, _ = await repository.find_all(
        ListEventsOptions(lifecycle_statuses=(LifecycleStatus.PUBLISHED,), visibilities=(Visibility.PUBLIC,))
    )
    assert [e.id for e in events] == [public.id]

    events, _ = await repository.find_all(ListEventsOptions(owner_user_id=OTHER))
    assert [e.id for e in events] == [public.id]


@pytest.mark.asyncio
async def test_organizer_scope_includes_internal_events(repository):
    mine = await repository.create(new_event(title="Mine"), OWNER)
    internal = await repository.create(
        new_event(title="Staff meeting", visibility=Visibility.INTERNAL, owner_user_id=OTHER), OTHER
    )
    await repository.create(new_event(title="Theirs", owner_user_id=OTHER), OTHER)

    events, total = await repository.find_all(ListEventsOptions(organizer_scope_user_id=OWNER))
    assert total == 2
    assert {e.id for e in events} == {mine.id, internal.id}


@pytest.mark.asyncio
async def test_find_all_for_scanner(repository):
    assigned = await repository.create(new_event(), OWNER)
    await repository.create(new_event(scanner_config=ScannerConfig()), OWNER)

    events, total = await repository.find_all_for_scanner(SCANNER_ID, ListEventsOptions())
    assert total == 1
    assert events[0].id == assigned.id


@pytest.mark.asyncio
async def test_find_events_in_date_range(repository):
    spanning = await repository.create(
        new_event(date(2026, 3, 9), end_date=date(2026, 3, 11)), OWNER
    )
    single = await repository.create(new_event(date(2026, 3, 10), end_date=None), OWNER)
    await repository.create(new_event(date(2026, 3, 10), facility_id=None), OWNER)
    await repository.create(new_event(date(2026, 3, 20)), OWNER)

    booked = await repository.find_events_in_date_range(date(2026, 3, 10), date(2026, 3, 10))
    assert {b.id for b in booked} == {spanning.id, single.id}
    assert next(b for b in booked if b.id == single.id).end_date == date(2026, 3, 10)

    booked = await repository.find_events_in_date_range(date(2026, 3, 10), date(2026, 3, 10), single.id)
    assert [b.id for b in booked] == [spanning.id]


@pytest.mark.asyncio
async def test_delete_many_by_ids(repository):
    first = await repository.create(new_event(), OWNER)
    second = await repository.create(new_event(), OWNER)
    deleted = await repository.delete_many_by_ids([first.id, second.id, "00000000-0000-4000-8000-000000000000"])
    assert deleted == 2
    assert await repository.find_by_id(first.id) is None
    assert await repository.delete_many_by_ids([]) == 0


@pytest.mark.asyncio
async def test_facilities(repository):
    assert await repository.facility_exists(GYM)
    assert not await repository.facility_exists(CLOSED)
    assert not await repository.facility_exists("00000000-0000-4000-8000-000000000000")

    facilities = await repository.get_operational_facilities()
    assert [f.name for f in facilities] == ["Auditorium", "Main Gym"]
    assert facilities[1].capacity == 500


@pytest.mark.asyncio
async def test_student_counts(repository):
    assert await repository.count_active_students() == 4
    assert await repository.count_students_by_levels([GRADE_7]) == 3
    assert await repository.count_students_by_sections([SECTION_7B]) == 1
    assert await repository.count_students_by_sections([]) == 0
    assert await repository.get_level_names([GRADE_7, "missing"]) == {GRADE_7: "Grade 7"}


@pytest.mark.asyncio
async def test_student_contexts_for_user(repository):
    own = await repository.get_student_contexts_for_user("student-user")
    assert own == [StudentAudienceContext(student_id="s1", section_id=SECTION_7A, level_id=GRADE_7)]

    # The inactive child is left out
    children = await repository.get_student_contexts_for_user(PARENT_ID)
    assert children == [StudentAudienceContext(student_id="s2", section_id=SECTION_7A, level_id=GRADE_7)]

    assert await repository.get_student_contexts_for_user("stranger") == []


@pytest.mark.asyncio
async def test_count_event_attendees_counts_distinct_students(repository, db_session):
    event = await repository.create(new_event(), OWNER)
    db_session.add_all(
        [
            AttendanceLog(event_id=event.id, student_id="s1", session_id="am-in", direction="in", scanned_at=NOW),
            AttendanceLog(event_id=event.id, student_id="s1", session_id="am-out", direction="out",
                          scanned_at=NOW + timedelta(hours=2)),
            AttendanceLog(event_id=event.id, student_id="s2", session_id="am-in", direction="in", scanned_at=NOW),
        ]
    )
    await db_session.flush()

    assert await repository.count_event_attendees(event.id) == 2
    total = (await db_session.execute(select(func.count(AttendanceLog.id)))).scalar()
    assert total == 3


@pytest.mark.asyncio
async def test_service_rejects_date_change_before_hitting_constraint(repository):
    service = EventService(repository, FixedClock(NOW))
    organizer = ActorContext(user_id=OWNER, roles=("TEACHER",))
    created = await repository.create(new_event(lifecycle_status=LifecycleStatus.DRAFT), OWNER)

    with pytest.raises(ValidationError) as exc_info:
        await service.update_event({"id": created.id, "start_date": "2026-03-20"}, organizer)
    assert exc_info.value.details[0].code == "INVALID_RANGE"

    stored = await repository.find_by_id(created.id)
    assert stored.start_date == date(2026, 3, 10)
    assert stored.end_date == date(2026, 3, 10)


@pytest.mark.asyncio
async def test_service_checks_venue_against_stored_bookings(repository):
    service = EventService(repository, FixedClock(NOW))
    organizer = ActorContext(user_id=OWNER, roles=("TEACHER",))
    await repository.create(new_event(title="Assembly"), OWNER)
    moving = await repository.create(new_event(facility_id=HALL, lifecycle_status=LifecycleStatus.DRAFT), OWNER)

    with pytest.raises(ValidationError) as exc_info:
        await service.update_event({"id": moving.id, "facility_id": GYM}, organizer)
    assert exc_info.value.details[0].code == "VENUE_CONFLICT"
    assert (await repository.find_by_id(moving.id)).facility_id == HALL


@pytest.mark.asyncio
async def test_search_treats_wildcards_literally(repository):
    awards = await repository.create(new_event(title="100% Attendance Awards"), OWNER)
    await repository.create(new_event(date(2026, 3, 11), title="1000 Days Celebration"), OWNER)
    await repository.create(new_event(date(2026, 3, 12), title="Grade_7 Assembly"), OWNER)

    events, total = await repository.find_all(ListEventsOptions(search_term="100%"))
    assert total == 1
    assert events[0].id == awards.id

    events, _ = await repository.find_all(ListEventsOptions(search_term="_"))
    assert [e.title for e in events] == ["Grade_7 Assembly"]

"""
Pytest fixtures: in-memory repository, fixed clock, actors, and an HTTP
client wired to them through dependency overrides.

Service and API tests run against InMemoryEventRepository; the SQLAlchemy
repository has its own tests on in-memory SQLite.
"""

import os

# Must be set before sems.core.config is imported anywhere
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from sems.api.deps import get_clock, get_repository
from sems.core.clock import FixedClock
from sems.domain.types import (
    ActorContext,
    BookedEvent,
    EventPatch,
    EventRecord,
    Facility,
    FacilitySummary,
    ListEventsOptions,
    NewEvent,
    StudentAudienceContext,
)
from sems.main import app
from sems.repositories.interfaces import EventRepository
from sems.services.event_service import EventService
from sems.services.venue_service import VenueService

FACILITY_ID = "11111111-1111-4111-8111-111111111111"
SECOND_FACILITY_ID = "22222222-2222-4222-8222-222222222222"
CLOSED_FACILITY_ID = "33333333-3333-4333-8333-333333333333"

GRADE_7 = "a7a7a7a7-0000-4000-8000-000000000007"
GRADE_8 = "a8a8a8a8-0000-4000-8000-000000000008"
SECTION_7A = "5ec7a000-0000-4000-8000-00000000007a"
SECTION_8A = "5ec8a000-0000-4000-8000-00000000008a"

# Monday 2 March 2026, 09:00 UTC
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@dataclass
class FakeStudent:
    id: str
    section_id: Optional[str]
    level_id: Optional[str]
    is_active: bool = True
    app_user_id: Optional[str] = None
    guardian_ids: tuple = ()


@dataclass
class InMemoryEventRepository(EventRepository):
    """EventRepository over plain dicts. Counts writes so tests can assert none happened."""

    events: dict = field(default_factory=dict)
    facilities: dict = field(default_factory=dict)
    students: list = field(default_factory=list)
    level_names: dict = field(default_factory=dict)
    attendance: dict = field(default_factory=dict)
    writes: int = 0

    def __post_init__(self):
        self._sequence = 0

    def add_facility(self, facility_id: str, name: str, operational: bool = True, **extra) -> None:
        self.facilities[facility_id] = (
            Facility(id=facility_id, name=name, location=extra.pop("location", f"{name} building"), **extra),
            operational,
        )

    def add_event(self, **fields) -> EventRecord:
        """Seed a stored event directly, bypassing the service."""
        self._sequence += 1
        fields.setdefault("id", str(uuid.uuid4()))
        fields.setdefault("title", f"Seeded event {self._sequence}")
        fields.setdefault("created_at", NOW + timedelta(seconds=self._sequence))
        record = EventRecord(**fields)
        self.events[record.id] = record
        return record

    # ---- events ----

    async def create(self, event: NewEvent, created_by: str) -> EventRecord:
        self.writes += 1
        self._sequence += 1
        record = EventRecord(
            id=str(uuid.uuid4()),
            **{name: getattr(event, name) for name in NewEvent.model_fields},
            created_by=created_by,
            updated_by=created_by,
            created_at=NOW + timedelta(seconds=self._sequence),
        )
        self.events[record.id] = record
        return record

    async def update(self, event_id: str, patch: EventPatch, updated_by: str) -> EventRecord:
        self.writes += 1
        current = self.events[event_id]
        updated = current.model_copy(update={**patch.provided(), "updated_by": updated_by})
        self.events[event_id] = updated
        return updated

    async def find_by_id(self, event_id: str) -> Optional[EventRecord]:
        return self.events.get(event_id)

    async def find_by_id_with_facility(self, event_id: str) -> Optional[EventRecord]:
        event = self.events.get(event_id)
        if event is None or event.facility_id not in self.facilities:
            return event
        facility, _ = self.facilities[event.facility_id]
        return event.model_copy(
            update={"facility": FacilitySummary(id=facility.id, name=facility.name, location=facility.location)}
        )

    def _matches(self, event: EventRecord, options: ListEventsOptions) -> bool:
        if options.facility_id and event.facility_id != options.facility_id:
            return False
        if options.search_term and options.search_term.lower() not in event.title.lower():
            return False
        if options.owner_user_id and event.owner_user_id != options.owner_user_id:
            return False
        if options.organizer_scope_user_id and not (
            event.owner_user_id == options.organizer_scope_user_id or event.visibility.value == "internal"
        ):
            return False
        if options.lifecycle_statuses and event.lifecycle_status not in options.lifecycle_statuses:
            return False
        if options.visibilities and event.visibility not in options.visibilities:
            return False
        return True

    async def _page(self, events: list, options: ListEventsOptions) -> tuple[list, int]:
        ordered = sorted(events, key=lambda e: e.created_at, reverse=True)
        ordered = sorted(ordered, key=lambda e: (e.start_date is None, -(e.start_date or date.min).toordinal()))
        total = len(ordered)
        if not options.disable_pagination:
            page_size = options.page_size or 50
            offset = (options.page - 1) * page_size
            ordered = ordered[offset : offset + page_size]
        return [await self.find_by_id_with_facility(e.id) for e in ordered], total

    async def find_all(self, options: ListEventsOptions) -> tuple[list, int]:
        return await self._page([e for e in self.events.values() if self._matches(e, options)], options)

    async def find_all_for_scanner(self, scanner_id: str, options: ListEventsOptions) -> tuple[list, int]:
        return await self._page(
            [
                e
                for e in self.events.values()
                if scanner_id in e.scanner_config.scanner_ids and self._matches(e, options)
            ],
            options,
        )

    async def find_events_in_date_range(
        self, start_date: date, end_date: date, exclude_event_id: Optional[str] = None
    ) -> list[BookedEvent]:
        booked = []
        for event in self.events.values():
            if event.id == exclude_event_id or not event.facility_id or event.start_date is None:
                continue
            effective_end = event.end_date or event.start_date
            if event.start_date <= end_date and effective_end >= start_date:
                booked.append(
                    BookedEvent(
                        id=event.id,
                        title=event.title,
                        facility_id=event.facility_id,
                        start_date=event.start_date,
                        end_date=effective_end,
                        session_config=event.session_config,
                    )
                )
        return booked

    async def delete_many_by_ids(self, ids: list[str]) -> int:
        self.writes += 1
        deleted = 0
        for event_id in ids:
            if self.events.pop(event_id, None) is not None:
                deleted += 1
        return deleted

    # ---- facilities ----

    async def facility_exists(self, facility_id: str) -> bool:
        entry = self.facilities.get(facility_id)
        return entry is not None and entry[1]

    async def get_operational_facilities(self) -> list[Facility]:
        return sorted((f for f, operational in self.facilities.values() if operational), key=lambda f: f.name)

    # ---- students ----

    def _active(self) -> list:
        return [s for s in self.students if s.is_active]

    async def count_active_students(self) -> int:
        return len(self._active())

    async def count_students_by_levels(self, level_ids: list[str]) -> int:
        return sum(1 for s in self._active() if s.level_id in level_ids)

    async def count_students_by_sections(self, section_ids: list[str]) -> int:
        return sum(1 for s in self._active() if s.section_id in section_ids)

    async def get_level_names(self, level_ids: list[str]) -> dict[str, str]:
        return {i: self.level_names[i] for i in level_ids if i in self.level_names}

    async def get_student_contexts_for_user(self, app_user_id: str) -> list[StudentAudienceContext]:
        return [
            StudentAudienceContext(student_id=s.id, section_id=s.section_id, level_id=s.level_id)
            for s in self._active()
            if s.app_user_id == app_user_id or app_user_id in s.guardian_ids
        ]

    async def count_event_attendees(self, event_id: str) -> int:
        return len(self.attendance.get(event_id, set()))


# ============================================================================
# Actors
# ============================================================================

ADMIN = ActorContext(user_id="aaaaaaaa-0000-4000-8000-00000000000a", roles=("ADMIN",))
TEACHER = ActorContext(user_id="7eac7e70-0000-4000-8000-000000000001", roles=("TEACHER",))
OTHER_TEACHER = ActorContext(user_id="7eac7e70-0000-4000-8000-000000000002", roles=("TEACHER",))
SCANNER = ActorContext(user_id="5ca11e70-0000-4000-8000-000000000001", roles=("SCANNER",))
PARENT = ActorContext(user_id="9a7e0700-0000-4000-8000-000000000001", roles=("PARENT",))
STUDENT_USER = ActorContext(user_id="57000000-0000-4000-8000-000000000001", roles=("STUDENT",))


def headers_for(actor: ActorContext) -> dict:
    return {"X-User-Id": actor.user_id, "X-User-Roles": ",".join(actor.roles)}


# ============================================================================
# Payload builders
# ============================================================================


def make_session(
    session_id="am-in",
    name="Morning Entry",
    period="morning",
    direction="in",
    opens="08:00",
    closes="10:00",
    late_after="08:15",
) -> dict:
    session = {
        "id": session_id,
        "name": name,
        "period": period,
        "direction": direction,
        "opens": opens,
        "closes": closes,
    }
    if late_after is not None:
        session["late_after"] = late_after
    return session


def make_payload(**overrides) -> dict:
    """A valid create payload for a one-day event on 2026-03-10."""
    day = overrides.pop("day", "2026-03-10")
    payload = {
        "title": "Science Fair",
        "description": "Annual science fair",
        "start_date": day,
        "end_date": day,
        "facility_id": FACILITY_ID,
        "visibility": "student",
        "registration_required": False,
        "audience_config": {"version": 1, "rules": [{"kind": "ALL_STUDENTS", "effect": "include"}]},
        "session_config": {"version": 2, "dates": [{"date": day, "sessions": [make_session()]}]},
        "scanner_config": {"version": 1, "scanner_ids": [SCANNER.user_id]},
    }
    payload.update(overrides)
    return payload


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def repo() -> InMemoryEventRepository:
    repository = InMemoryEventRepository()
    repository.add_facility(FACILITY_ID, "Main Gym", capacity=500)
    repository.add_facility(SECOND_FACILITY_ID, "Auditorium", capacity=300)
    repository.add_facility(CLOSED_FACILITY_ID, "Old Hall", operational=False)
    repository.level_names = {GRADE_7: "Grade 7", GRADE_8: "Grade 8"}
    repository.students = [
        FakeStudent("57000000-0000-4000-8000-0000000000a1", SECTION_7A, GRADE_7, app_user_id=STUDENT_USER.user_id),
        FakeStudent("57000000-0000-4000-8000-0000000000a2", SECTION_7A, GRADE_7, guardian_ids=(PARENT.user_id,)),
        FakeStudent("57000000-0000-4000-8000-0000000000b1", SECTION_8A, GRADE_8),
        FakeStudent("57000000-0000-4000-8000-0000000000b2", SECTION_8A, GRADE_8),
        FakeStudent("57000000-0000-4000-8000-0000000000b3", SECTION_8A, GRADE_8, is_active=False),
    ]
    return repository


@pytest.fixture
def service(repo: InMemoryEventRepository, clock: FixedClock) -> EventService:
    return EventService(repo, clock)


@pytest.fixture
def venue_service(repo: InMemoryEventRepository) -> VenueService:
    return VenueService(repo)


@pytest_asyncio.fixture(scope="function")
async def client(repo: InMemoryEventRepository, clock: FixedClock) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the repository and clock dependencies overridden."""
    app.dependency_overrides[get_repository] = lambda: repo
    app.dependency_overrides[get_clock] = lambda: clock

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

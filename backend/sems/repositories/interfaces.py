"""
Repository contract for event persistence.

The services depend on this interface only; SqlAlchemyEventRepository is
the production implementation and the tests use an in-memory one.
Repositories do persistence only: no validation, no business rules.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional

from sems.domain.types import (
    BookedEvent,
    EventPatch,
    EventRecord,
    Facility,
    ListEventsOptions,
    NewEvent,
    StudentAudienceContext,
)


class EventRepository(ABC):
    """
    Async persistence operations used by EventService and VenueService.

    Every method is a suspension point; nothing else in the engine awaits.
    """

    # ---- events ----

    @abstractmethod
    async def create(self, event: NewEvent, created_by: str) -> EventRecord:
        """Insert a new event and return the stored row."""
        pass

    @abstractmethod
    async def update(self, event_id: str, patch: EventPatch, updated_by: str) -> EventRecord:
        """Apply the provided fields of `patch` to the event."""
        pass

    @abstractmethod
    async def find_by_id(self, event_id: str) -> Optional[EventRecord]:
        pass

    @abstractmethod
    async def find_by_id_with_facility(self, event_id: str) -> Optional[EventRecord]:
        """Like find_by_id, with the `facility` summary populated."""
        pass

    @abstractmethod
    async def find_all(self, options: ListEventsOptions) -> tuple[list[EventRecord], int]:
        """
        Filtered, newest-first event page plus the total matching count.

        With options.disable_pagination every matching row is returned.
        """
        pass

    @abstractmethod
    async def find_all_for_scanner(
        self, scanner_id: str, options: ListEventsOptions
    ) -> tuple[list[EventRecord], int]:
        """Events the given user is assigned to scan."""
        pass

    @abstractmethod
    async def find_events_in_date_range(
        self, start_date: date, end_date: date, exclude_event_id: Optional[str] = None
    ) -> list[BookedEvent]:
        """Events with a venue whose date span intersects [start_date, end_date]."""
        pass

    @abstractmethod
    async def delete_many_by_ids(self, ids: list[str]) -> int:
        """Hard-delete events; returns how many rows were removed."""
        pass

    # ---- facilities ----

    @abstractmethod
    async def facility_exists(self, facility_id: str) -> bool:
        """True if the facility exists and is operational."""
        pass

    @abstractmethod
    async def get_operational_facilities(self) -> list[Facility]:
        pass

    # ---- students ----

    @abstractmethod
    async def count_active_students(self) -> int:
        pass

    @abstractmethod
    async def count_students_by_levels(self, level_ids: list[str]) -> int:
        """Active students whose section belongs to any of the levels."""
        pass

    @abstractmethod
    async def count_students_by_sections(self, section_ids: list[str]) -> int:
        pass

    @abstractmethod
    async def get_level_names(self, level_ids: list[str]) -> dict[str, str]:
        pass

    @abstractmethod
    async def get_student_contexts_for_user(self, app_user_id: str) -> list[StudentAudienceContext]:
        """
        Audience contexts for a user: their own student record (student
        accounts) plus every student they are a guardian of.
        """
        pass

    @abstractmethod
    async def count_event_attendees(self, event_id: str) -> int:
        """Distinct students with at least one attendance scan for the event."""
        pass

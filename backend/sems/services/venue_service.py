"""
Venue availability checker.

Two sessions conflict when they fall on the same date and their windows
overlap (half-open, so back-to-back bookings are fine):

    A.opens < B.closes and A.closes > B.opens

CONCURRENCY NOTE
================

Event create/update calls find_conflicts before writing, but nothing ties
the check to the write that follows, so two organizers can both see a
venue as free and both book it. Closing
that gap needs a storage-level guard (an exclusion constraint on
facility/date/period, or a serializable transaction around check + write);
it is intentionally not papered over here.
"""

import time
from collections import defaultdict
from datetime import date
from typing import Iterable, Optional

from sems.core.logging import get_logger
from sems.core.metrics import record_availability_check
from sems.domain.errors import ErrorDetail, ValidationError
from sems.domain.time_utils import time_windows_overlap
from sems.domain.types import (
    BookedEvent,
    DateSessionConfig,
    Facility,
    SessionConfig,
    SessionPeriod,
    VenueStatus,
)
from sems.repositories.interfaces import EventRepository
from sems.schemas.venue import (
    AvailabilitySummary,
    SessionConflict,
    VenueAvailabilityRequest,
    VenueAvailabilityResponse,
    VenueAvailabilityResult,
)

logger = get_logger(__name__)


def slot_key(day: date, period: SessionPeriod) -> str:
    return f"{day.isoformat()}:{period.value}"


def check_facility_conflicts(
    requested: Iterable[DateSessionConfig],
    booked: Iterable[BookedEvent],
) -> tuple[list[SessionConflict], dict[str, bool]]:
    """Compare requested sessions against the events already using one facility."""
    requested = list(requested)
    booked = list(booked)

    availability = {slot_key(entry.date, s.period): True for entry in requested for s in entry.sessions}
    conflicts: list[SessionConflict] = []

    for entry in requested:
        day = entry.date
        for wanted in entry.sessions:
            for event in booked:
                if day < event.start_date or day > event.end_date:
                    continue
                existing = event.session_config.for_date(day)
                if existing is None:
                    continue
                for taken in existing.sessions:
                    if not time_windows_overlap(wanted.opens, wanted.closes, taken.opens, taken.closes):
                        continue
                    availability[slot_key(day, wanted.period)] = False
                    conflicts.append(
                        SessionConflict(
                            date=day,
                            period=wanted.period,
                            time_range=f"{taken.opens} - {taken.closes}",
                            conflicting_event_title=event.title,
                            conflicting_event_id=event.id,
                        )
                    )

    return conflicts, availability


def determine_status(conflicts: list[SessionConflict], availability: dict[str, bool]) -> VenueStatus:
    if not conflicts:
        return VenueStatus.AVAILABLE
    if availability and not any(availability.values()):
        return VenueStatus.UNAVAILABLE
    return VenueStatus.PARTIAL


def _facility_result(
    facility: Facility, requested: list[DateSessionConfig], booked: list[BookedEvent]
) -> VenueAvailabilityResult:
    conflicts, availability = check_facility_conflicts(requested, booked)
    return VenueAvailabilityResult(
        facility_id=facility.id,
        facility_name=facility.name,
        facility_location=facility.location,
        facility_image_url=facility.image_url,
        facility_capacity=facility.capacity,
        status=determine_status(conflicts, availability),
        conflicts=conflicts,
        availability_map=availability,
    )


class VenueService:
    def __init__(self, repository: EventRepository):
        self.repository = repository

    async def check_availability(self, request: VenueAvailabilityRequest) -> VenueAvailabilityResponse:
        """Availability of every operational venue for the requested sessions."""
        if request.start_date > request.end_date:
            raise ValidationError(
                "Invalid availability request",
                [ErrorDetail(field="end_date", message="End date cannot be before start date", code="INVALID_RANGE")],
            )

        started = time.perf_counter()

        facilities = await self.repository.get_operational_facilities()
        existing = await self.repository.find_events_in_date_range(
            request.start_date, request.end_date, request.exclude_event_id
        )

        by_facility: dict[str, list[BookedEvent]] = defaultdict(list)
        for event in existing:
            if event.facility_id:
                by_facility[event.facility_id].append(event)

        venues = [_facility_result(f, request.sessions, by_facility.get(f.id, [])) for f in facilities]

        summary = AvailabilitySummary(
            total=len(venues),
            available=sum(1 for v in venues if v.status is VenueStatus.AVAILABLE),
            partial=sum(1 for v in venues if v.status is VenueStatus.PARTIAL),
            unavailable=sum(1 for v in venues if v.status is VenueStatus.UNAVAILABLE),
        )

        record_availability_check(summary.available, summary.total, time.perf_counter() - started)
        logger.info(
            "availability_checked",
            start_date=request.start_date.isoformat(),
            end_date=request.end_date.isoformat(),
            venues=summary.total,
            available=summary.available,
            partial=summary.partial,
            unavailable=summary.unavailable,
            existing_events=len(existing),
        )
        return VenueAvailabilityResponse(venues=venues, summary=summary)

    async def find_conflicts(
        self,
        facility_id: str,
        session_config: SessionConfig,
        exclude_event_id: Optional[str] = None,
    ) -> list[SessionConflict]:
        """Conflicts between one event's sessions and the other events booked at its facility."""
        if not session_config.dates:
            return []
        days = [entry.date for entry in session_config.dates]
        existing = await self.repository.find_events_in_date_range(min(days), max(days), exclude_event_id)
        booked = [event for event in existing if event.facility_id == facility_id]
        conflicts, _ = check_facility_conflicts(session_config.dates, booked)
        return conflicts

    async def is_slot_available(
        self,
        facility_id: str,
        day: date,
        period: SessionPeriod,
        exclude_event_id: Optional[str] = None,
    ) -> bool:
        """False if any event at the facility already uses this period on this day."""
        existing = await self.repository.find_events_in_date_range(day, day, exclude_event_id)
        for event in existing:
            if event.facility_id != facility_id:
                continue
            entry = event.session_config.for_date(day)
            if entry and any(s.period is period for s in entry.sessions):
                return False
        return True

"""
Pydantic schemas for venue availability checks.
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from sems.domain.types import DateSessionConfig, SessionPeriod, VenueStatus


class VenueAvailabilityRequest(BaseModel):
    start_date: date
    end_date: date
    sessions: list[DateSessionConfig] = Field(default_factory=list)
    # Set when editing, so the event does not conflict with itself
    exclude_event_id: Optional[str] = None


class SessionConflict(BaseModel):
    date: date
    period: SessionPeriod
    time_range: str
    conflicting_event_title: str
    conflicting_event_id: str


class VenueAvailabilityResult(BaseModel):
    facility_id: str
    facility_name: str
    facility_location: str
    facility_image_url: Optional[str] = None
    facility_capacity: Optional[int] = None
    status: VenueStatus
    conflicts: list[SessionConflict] = Field(default_factory=list)
    # Keyed "YYYY-MM-DD:period"
    availability_map: dict[str, bool] = Field(default_factory=dict)


class AvailabilitySummary(BaseModel):
    total: int = 0
    available: int = 0
    partial: int = 0
    unavailable: int = 0


class VenueAvailabilityResponse(BaseModel):
    venues: list[VenueAvailabilityResult]
    summary: AvailabilitySummary


class SlotAvailabilityResponse(BaseModel):
    facility_id: str
    date: date
    period: SessionPeriod
    available: bool

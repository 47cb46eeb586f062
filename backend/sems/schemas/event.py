"""
Pydantic schemas for event listing and API envelopes.
"""

from datetime import date
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from sems.domain.types import DisplayStatus, LifecycleStatus, Visibility

T = TypeVar("T")


class EventListItem(BaseModel):
    """One row of an event listing, with display fields precomputed."""

    id: str
    title: str
    time_range: str
    venue: Optional[str] = None
    description: Optional[str] = None
    audience_summary: str
    scanner_summary: str
    actual_attendees: int = 0
    expected_attendees: int = 0
    status: DisplayStatus
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    lifecycle_status: LifecycleStatus
    visibility: Visibility
    poster_image_url: Optional[str] = None


class Pagination(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int


class EventListResponse(BaseModel):
    events: list[EventListItem]
    pagination: Pagination
    cached: bool = False


class DeleteEventsRequest(BaseModel):
    ids: list[str] = Field(default_factory=list)


class DeleteEventsResponse(BaseModel):
    deleted: int


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: T

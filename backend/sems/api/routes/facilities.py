"""
Venue availability endpoints.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from sems.api.deps import get_venue_service, require_admin
from sems.domain.types import ActorContext, SessionPeriod
from sems.schemas.event import ApiResponse
from sems.schemas.venue import (
    SlotAvailabilityResponse,
    VenueAvailabilityRequest,
    VenueAvailabilityResponse,
)
from sems.services.venue_service import VenueService

router = APIRouter(prefix="/facilities", tags=["Facilities"])


@router.post("/availability", response_model=ApiResponse[VenueAvailabilityResponse])
async def check_availability_endpoint(
    request: VenueAvailabilityRequest,
    actor: ActorContext = Depends(require_admin),
    service: VenueService = Depends(get_venue_service),
):
    """Availability of every operational venue for a set of requested sessions."""
    return ApiResponse(data=await service.check_availability(request))


@router.get("/{facility_id}/availability", response_model=ApiResponse[SlotAvailabilityResponse])
async def slot_availability_endpoint(
    facility_id: str,
    day: date = Query(..., alias="date"),
    period: SessionPeriod = Query(...),
    exclude_event_id: Optional[str] = Query(None),
    actor: ActorContext = Depends(require_admin),
    service: VenueService = Depends(get_venue_service),
):
    available = await service.is_slot_available(facility_id, day, period, exclude_event_id)
    return ApiResponse(
        data=SlotAvailabilityResponse(facility_id=facility_id, date=day, period=period, available=available)
    )

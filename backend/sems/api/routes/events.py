"""
Event endpoints.

Writes invalidate the cached public listing; only /events/public is
served from Redis since every other listing depends on the caller.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, status

from sems.api.deps import get_actor, get_event_service, list_options, require_admin
from sems.core.logging import get_logger
from sems.domain.types import ActorContext, EventRecord, ListEventsOptions
from sems.schemas.event import (
    ApiResponse,
    DeleteEventsRequest,
    DeleteEventsResponse,
    EventListResponse,
)
from sems.services.cache_service import (
    get_cached_listing,
    invalidate_public_listings,
    make_public_listing_key,
    set_cached_listing,
)
from sems.services.event_service import EventService

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])


@router.post("/", response_model=ApiResponse[EventRecord], status_code=status.HTTP_201_CREATED)
async def create_event_endpoint(
    payload: dict[str, Any] = Body(...),
    actor: ActorContext = Depends(get_actor),
    service: EventService = Depends(get_event_service),
):
    """Create an event. Administrators and organizers only."""
    event = await service.create_event(payload, actor)
    await invalidate_public_listings()
    return ApiResponse(data=event)


@router.get("/", response_model=ApiResponse[EventListResponse])
async def list_events_endpoint(
    options: ListEventsOptions = Depends(list_options),
    actor: ActorContext = Depends(require_admin),
    service: EventService = Depends(get_event_service),
):
    return ApiResponse(data=await service.list_events(options))


@router.get("/organizer", response_model=ApiResponse[EventListResponse])
async def list_organizer_events_endpoint(
    options: ListEventsOptions = Depends(list_options),
    actor: ActorContext = Depends(get_actor),
    service: EventService = Depends(get_event_service),
):
    return ApiResponse(data=await service.list_organizer_events(actor, options))


@router.get("/scanner", response_model=ApiResponse[EventListResponse])
async def list_scanner_events_endpoint(
    options: ListEventsOptions = Depends(list_options),
    actor: ActorContext = Depends(get_actor),
    service: EventService = Depends(get_event_service),
):
    return ApiResponse(data=await service.list_scanner_events(actor, options))


@router.get("/student", response_model=ApiResponse[EventListResponse])
async def list_student_events_endpoint(
    options: ListEventsOptions = Depends(list_options),
    actor: ActorContext = Depends(get_actor),
    service: EventService = Depends(get_event_service),
):
    return ApiResponse(data=await service.list_student_events(actor, options))


@router.get("/parent", response_model=ApiResponse[EventListResponse])
async def list_parent_events_endpoint(
    options: ListEventsOptions = Depends(list_options),
    actor: ActorContext = Depends(get_actor),
    service: EventService = Depends(get_event_service),
):
    return ApiResponse(data=await service.list_parent_events(actor, options))


@router.get("/public", response_model=ApiResponse[EventListResponse])
async def list_public_events_endpoint(
    options: ListEventsOptions = Depends(list_options),
    service: EventService = Depends(get_event_service),
):
    """
    Published, public events. No authentication.
    Cached in Redis for REDIS_CACHE_TTL seconds; writes drop the cache.
    """
    page_size = min(options.page_size or service.settings.DEFAULT_PAGE_SIZE, service.settings.MAX_PAGE_SIZE)
    key = make_public_listing_key(options.page, page_size, options.facility_id, options.search_term)

    cached = await get_cached_listing(key)
    if cached:
        logger.info("public_listing_cache_hit", page=options.page)
        cached["cached"] = True
        return ApiResponse(data=EventListResponse(**cached))

    listing = await service.list_public_events(options)
    await set_cached_listing(key, listing.model_dump(mode="json"))
    return ApiResponse(data=listing)


@router.post("/delete", response_model=ApiResponse[DeleteEventsResponse])
async def delete_events_endpoint(
    request: DeleteEventsRequest,
    actor: ActorContext = Depends(require_admin),
    service: EventService = Depends(get_event_service),
):
    """Bulk delete by id. Administrators only."""
    deleted = await service.delete_events(request.ids)
    await invalidate_public_listings()
    return ApiResponse(data=DeleteEventsResponse(deleted=deleted))


@router.get("/{event_id}", response_model=ApiResponse[EventRecord])
async def get_event_endpoint(
    event_id: str,
    actor: ActorContext = Depends(get_actor),
    service: EventService = Depends(get_event_service),
):
    """Full event for editing. Not cached."""
    return ApiResponse(data=await service.get_event(event_id, actor))


@router.patch("/{event_id}", response_model=ApiResponse[EventRecord])
async def update_event_endpoint(
    event_id: str,
    payload: dict[str, Any] = Body(...),
    actor: ActorContext = Depends(get_actor),
    service: EventService = Depends(get_event_service),
):
    """Edit an event and/or apply a workflow_action (submit, approve, publish, ...)."""
    event = await service.update_event({**payload, "id": event_id}, actor)
    await invalidate_public_listings()
    return ApiResponse(data=event)

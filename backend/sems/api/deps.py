"""
FastAPI dependencies: the calling actor, the repository and the services.

Authentication happens upstream; the gateway forwards the authenticated
user as X-User-Id and X-User-Roles (comma separated).
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from sems.core.clock import Clock, SystemClock
from sems.db.session import get_db
from sems.domain.errors import BusinessRuleError
from sems.domain.types import ActorContext, ListEventsOptions
from sems.repositories.interfaces import EventRepository
from sems.repositories.sqlalchemy_repository import SqlAlchemyEventRepository
from sems.services.event_service import EventService
from sems.services.venue_service import VenueService

_system_clock = SystemClock()


async def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_roles: Optional[str] = Header(None),
) -> ActorContext:
    """Resolve the caller from gateway headers. 401 if no user id."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    roles = tuple(r.strip().upper() for r in (x_user_roles or "").split(",") if r.strip())
    return ActorContext(user_id=x_user_id.strip(), roles=roles)


async def require_admin(actor: ActorContext = Depends(get_actor)) -> ActorContext:
    if not actor.is_admin:
        raise BusinessRuleError.forbidden("Administrator access required.")
    return actor


def get_clock() -> Clock:
    return _system_clock


async def get_repository(db: AsyncSession = Depends(get_db)) -> EventRepository:
    return SqlAlchemyEventRepository(db)


async def get_event_service(
    repository: EventRepository = Depends(get_repository),
    clock: Clock = Depends(get_clock),
) -> EventService:
    return EventService(repository, clock)


async def get_venue_service(repository: EventRepository = Depends(get_repository)) -> VenueService:
    return VenueService(repository)


def list_options(
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    facility_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    owner_user_id: Optional[str] = Query(None),
) -> ListEventsOptions:
    return ListEventsOptions(
        page=page,
        page_size=page_size,
        facility_id=facility_id or None,
        search_term=(search or "").strip() or None,
        owner_user_id=owner_user_id or None,
    )

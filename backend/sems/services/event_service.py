"""
Event service: the lifecycle controller plus role-scoped listings.

UPDATE PIPELINE
===============

  1. load the stored event                      -> NotFoundError
  2. actor may manage it (admin / owning org.)  -> BusinessRuleError(FORBIDDEN)
  3. lifecycle allows the edit                  -> BusinessRuleError
  4. structural + config validation (all)       -> ValidationError
  5. merged start/end dates are in order        -> ValidationError
  6. facility exists and is operational         -> NotFoundError
  7. venue free for the merged sessions         -> ValidationError
  8. registration window on the merged state    -> BusinessRuleError
  9. workflow action, or approval reset when an approved event's critical
     fields change
 10. single repository.update with the whole patch

Nothing is written until every step has passed.

Create runs steps 4, 6, 7 and 10 after checking the actor may create events
at all.
"""

import math
from typing import Any, Mapping, Optional

from sems.core.clock import Clock, SystemClock, school_timezone
from sems.core.config import Settings, get_settings
from sems.core.logging import get_logger
from sems.core.metrics import (
    record_business_rule_violation,
    record_transition,
    record_validation_failure,
)
from sems.domain.errors import BusinessRuleError, ErrorDetail, NotFoundError, ValidationError
from sems.domain.time_utils import is_valid_uuid
from sems.domain.types import (
    ActorContext,
    EventCreate,
    EventPatch,
    EventRecord,
    LifecycleStatus,
    ListEventsOptions,
    NewEvent,
    SessionConfig,
    StudentAudienceContext,
    UserRole,
    Visibility,
    WorkflowAction,
)
from sems.repositories.interfaces import EventRepository
from sems.schemas.event import EventListItem, EventListResponse, Pagination
from sems.services import event_validation, lifecycle
from sems.services.audience_engine import (
    collect_level_ids,
    compute_expected_attendees,
    matches_any_context,
    summarize_audience,
)
from sems.services.event_display import compute_event_status, compute_time_range, scanner_summary
from sems.services.validation import ValidationResult
from sems.services.venue_service import VenueService

logger = get_logger(__name__)

AUDIENCE_VISIBILITIES = (Visibility.INTERNAL, Visibility.STUDENT, Visibility.PUBLIC)


def _parse_workflow_action(value: Any) -> Optional[WorkflowAction]:
    if value is None or value == "":
        return None
    try:
        return WorkflowAction(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            "Invalid event data",
            [
                ErrorDetail(
                    field="workflow_action",
                    message=f"Unsupported workflow action: {value}",
                    code="INVALID_VALUE",
                )
            ],
        ) from None


def _optional_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


class EventService:
    def __init__(
        self,
        repository: EventRepository,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.timezone = school_timezone(self.settings.SCHOOL_TIMEZONE)
        self.venues = VenueService(repository)

    # ========================================================================
    # Validation
    # ========================================================================

    def validate_create_event(self, raw: Any) -> ValidationResult:
        """Validate a create payload without persisting anything."""
        return event_validation.validate_create_event(raw, self.settings.MAX_TITLE_LENGTH)

    def validate_update_event(self, raw: Any) -> ValidationResult:
        return event_validation.validate_update_event(raw, self.settings.MAX_TITLE_LENGTH)

    def _rule_violation(self, error: BusinessRuleError, **context) -> BusinessRuleError:
        record_business_rule_violation(error.code)
        logger.warning("business_rule_violation", code=error.code, reason=error.message, **context)
        return error

    async def _assert_facility(self, facility_id: Optional[str]) -> None:
        if facility_id and not await self.repository.facility_exists(facility_id):
            raise NotFoundError("Selected venue does not exist or is not operational", "facility", facility_id)

    async def _assert_venue_free(
        self, facility_id: Optional[str], session_config: SessionConfig, exclude_event_id: Optional[str] = None
    ) -> None:
        if not facility_id:
            return
        conflicts = await self.venues.find_conflicts(facility_id, session_config, exclude_event_id)
        if not conflicts:
            return

        record_validation_failure("venue")
        logger.warning(
            "venue_conflict",
            facility_id=facility_id,
            event_id=exclude_event_id,
            conflicts=len(conflicts),
        )
        raise ValidationError(
            "Selected venue is not available",
            [
                ErrorDetail(
                    field="facility_id",
                    message=(
                        f"{c.period.value.title()} session on {c.date.isoformat()} overlaps "
                        f'"{c.conflicting_event_title}" ({c.time_range})'
                    ),
                    code="VENUE_CONFLICT",
                )
                for c in conflicts
            ],
        )

    # ========================================================================
    # Create / update / delete
    # ========================================================================

    async def create_event(self, raw: Mapping[str, Any], actor: ActorContext) -> EventRecord:
        """Validate and store a new event owned by the actor."""
        if not (actor.is_admin or actor.is_organizer):
            raise self._rule_violation(
                BusinessRuleError.forbidden("You do not have permission to create events."),
                actor_id=actor.user_id,
            )

        result = self.validate_create_event(raw)
        if not result.is_valid:
            record_validation_failure("create")
            raise ValidationError("Invalid event data", result.errors)
        dto = result.data

        await self._assert_facility(dto.facility_id)
        await self._assert_venue_free(dto.facility_id, dto.session_config)

        # Only administrators may create on behalf of someone else
        owner = dto.owner_user_id if actor.is_admin and dto.owner_user_id else actor.user_id

        now = self.clock.now()
        initial = lifecycle.initial_lifecycle_fields(now, self.settings.AUTO_SUBMIT_ON_CREATE)
        new_event = NewEvent(
            **{name: getattr(dto, name) for name in EventCreate.model_fields if name != "owner_user_id"},
            owner_user_id=owner,
            lifecycle_status=initial["lifecycle_status"],
            submitted_for_approval_at=initial["submitted_for_approval_at"],
        )

        created = await self.repository.create(new_event, actor.user_id)
        event = await self.repository.find_by_id_with_facility(created.id)
        if event is None:
            raise RuntimeError("Failed to retrieve created event")

        record_transition("CREATE")
        logger.info(
            "event_created",
            event_id=event.id,
            owner_user_id=owner,
            lifecycle_status=event.lifecycle_status.value,
            facility_id=event.facility_id,
        )
        return event

    async def get_event(self, event_id: str, actor: ActorContext) -> EventRecord:
        """Full event for the edit form; administrators and organizers only."""
        if not (actor.is_admin or actor.is_organizer):
            raise self._rule_violation(
                BusinessRuleError.forbidden("You do not have permission to view this event."),
                event_id=event_id,
                actor_id=actor.user_id,
            )
        event = await self.repository.find_by_id_with_facility(event_id) if is_valid_uuid(event_id) else None
        if event is None:
            raise NotFoundError("Event not found", "event", event_id)
        return event

    async def update_event(self, raw: Mapping[str, Any], actor: ActorContext) -> EventRecord:
        """
        Apply a field update and/or a workflow action.

        `raw` carries the event id, any fields to change, and optionally
        workflow_action with workflow_comment (APPROVE/REJECT) or
        action_reason (CANCEL).
        """
        raw = raw if isinstance(raw, Mapping) else {}
        event_id = raw.get("id")

        if not isinstance(event_id, str) or not is_valid_uuid(event_id.strip()):
            result = self.validate_update_event(raw)
            record_validation_failure("update")
            raise ValidationError("Invalid event data", result.errors)
        event_id = event_id.strip()

        existing = await self.repository.find_by_id(event_id)
        if existing is None:
            raise NotFoundError("Event not found", "event", event_id)

        if not lifecycle.can_manage_event(existing, actor):
            raise self._rule_violation(
                BusinessRuleError.forbidden("You do not have permission to modify this event."),
                event_id=event_id,
                actor_id=actor.user_id,
            )

        action = _parse_workflow_action(raw.get("workflow_action"))

        try:
            lifecycle.assert_event_mutable(existing, action, actor.is_admin)
        except BusinessRuleError as e:
            raise self._rule_violation(e, event_id=event_id)

        result = self.validate_update_event(raw)
        if not result.is_valid:
            record_validation_failure("update")
            raise ValidationError("Invalid event data", result.errors)
        update = result.data

        start_date = update.start_date if update.has("start_date") else existing.start_date
        end_date = update.end_date if update.has("end_date") else existing.end_date
        if start_date and end_date and start_date > end_date:
            record_validation_failure("update")
            raise ValidationError(
                "Invalid event data",
                [ErrorDetail(field="end_date", message="End date cannot be before start date", code="INVALID_RANGE")],
            )

        if update.has("facility_id"):
            await self._assert_facility(update.facility_id)

        if any(update.has(name) for name in ("facility_id", "session_config", "start_date", "end_date")):
            await self._assert_venue_free(
                update.facility_id if update.has("facility_id") else existing.facility_id,
                update.session_config or existing.session_config,
                exclude_event_id=event_id,
            )

        changes = {k: v for k, v in update.provided().items() if k != "id"}
        # Decided on the caller's own edits, before normalisation adds fields
        reset_approval = action is None and lifecycle.should_reset_approval(existing, changes)

        lifecycle.normalize_registration_payload(existing, changes)

        now = self.clock.now()
        try:
            lifecycle.assert_registration_state(existing, changes)
            if action is not None:
                changes.update(
                    lifecycle.apply_workflow_action(
                        existing,
                        action,
                        actor,
                        now,
                        comment=_optional_text(raw.get("workflow_comment")),
                        reason=_optional_text(raw.get("action_reason")),
                        pending=changes,
                    )
                )
            elif reset_approval:
                changes.update(lifecycle.build_approval_reset(now))
        except BusinessRuleError as e:
            raise self._rule_violation(e, event_id=event_id, action=action.value if action else None)

        await self.repository.update(event_id, EventPatch(**changes), actor.user_id)

        if action is not None:
            record_transition(action.value)
            logger.info(
                "lifecycle_transition",
                event_id=event_id,
                action=action.value,
                from_status=existing.lifecycle_status.value,
                to_status=changes["lifecycle_status"].value,
                actor_id=actor.user_id,
            )
        elif reset_approval:
            record_transition("APPROVAL_RESET")
            logger.info("approval_reset", event_id=event_id, actor_id=actor.user_id)
        else:
            logger.info("event_updated", event_id=event_id, fields=sorted(changes))

        event = await self.repository.find_by_id_with_facility(event_id)
        if event is None:
            raise RuntimeError("Failed to retrieve updated event")
        return event

    async def delete_events(self, ids: Any) -> int:
        """Hard-delete events by id. Ids are trimmed and de-duplicated first."""
        normalized: dict[str, None] = {}
        for value in ids or []:
            text = value.strip() if isinstance(value, str) else ""
            if text:
                normalized.setdefault(text, None)
        unique_ids = list(normalized)

        errors = []
        if not unique_ids:
            errors.append(ErrorDetail(field="ids", message="At least one event ID is required", code="REQUIRED"))
        for event_id in unique_ids:
            if not is_valid_uuid(event_id):
                errors.append(
                    ErrorDetail(field="ids", message=f"Invalid event ID format: {event_id}", code="INVALID_FORMAT")
                )
        if errors:
            record_validation_failure("delete")
            raise ValidationError("Invalid event IDs", errors)

        deleted = await self.repository.delete_many_by_ids(unique_ids)
        logger.info("events_deleted", requested=len(unique_ids), deleted=deleted)
        return deleted

    # ========================================================================
    # Listings
    # ========================================================================

    def _paging(self, options: Optional[ListEventsOptions]) -> ListEventsOptions:
        options = options or ListEventsOptions()
        page = max(options.page, 1)
        page_size = options.page_size or self.settings.DEFAULT_PAGE_SIZE
        page_size = max(1, min(page_size, self.settings.MAX_PAGE_SIZE))
        return options.model_copy(update={"page": page, "page_size": page_size})

    async def list_events(self, options: Optional[ListEventsOptions] = None) -> EventListResponse:
        """Every event, newest first (administrator listing)."""
        options = self._paging(options)
        events, total = await self.repository.find_all(options)
        return await self._build_paginated_list_response(events, options.page, options.page_size, total)

    async def list_scanner_events(
        self, actor: ActorContext, options: Optional[ListEventsOptions] = None
    ) -> EventListResponse:
        if not (actor.is_admin or actor.has_role(UserRole.SCANNER)):
            raise self._rule_violation(
                BusinessRuleError.forbidden("Only scanners can view scanner events."), actor_id=actor.user_id
            )
        options = self._paging(options)
        scoped = ListEventsOptions(
            page=options.page,
            page_size=options.page_size,
            facility_id=options.facility_id,
            search_term=options.search_term,
        )
        events, total = await self.repository.find_all_for_scanner(actor.user_id, scoped)
        return await self._build_paginated_list_response(events, options.page, options.page_size, total)

    async def list_organizer_events(
        self, actor: ActorContext, options: Optional[ListEventsOptions] = None
    ) -> EventListResponse:
        """Admins see everything; organizers see their own events plus internal ones."""
        if not (actor.is_admin or actor.is_organizer):
            raise self._rule_violation(
                BusinessRuleError.forbidden("You do not have permission to view organizer events."),
                actor_id=actor.user_id,
            )

        options = self._paging(options)
        if actor.is_admin:
            scoped = options.model_copy(update={"organizer_scope_user_id": None})
        else:
            scoped = options.model_copy(update={"owner_user_id": None, "organizer_scope_user_id": actor.user_id})

        events, total = await self.repository.find_all(scoped)
        return await self._build_paginated_list_response(events, options.page, options.page_size, total)

    async def list_student_events(
        self, actor: ActorContext, options: Optional[ListEventsOptions] = None
    ) -> EventListResponse:
        if not actor.has_role(UserRole.STUDENT):
            raise self._rule_violation(
                BusinessRuleError.forbidden("Only students can view student events."), actor_id=actor.user_id
            )
        contexts = await self.repository.get_student_contexts_for_user(actor.user_id)
        return await self._list_audience_scoped_events(contexts, options)

    async def list_parent_events(
        self, actor: ActorContext, options: Optional[ListEventsOptions] = None
    ) -> EventListResponse:
        if not actor.has_role(UserRole.PARENT):
            raise self._rule_violation(
                BusinessRuleError.forbidden("Only parents can view parent events."), actor_id=actor.user_id
            )
        contexts = await self.repository.get_student_contexts_for_user(actor.user_id)
        return await self._list_audience_scoped_events(contexts, options)

    async def list_public_events(self, options: Optional[ListEventsOptions] = None) -> EventListResponse:
        options = self._paging(options)
        scoped = ListEventsOptions(
            page=options.page,
            page_size=options.page_size,
            facility_id=options.facility_id,
            search_term=options.search_term,
            lifecycle_statuses=(LifecycleStatus.PUBLISHED,),
            visibilities=(Visibility.PUBLIC,),
        )
        events, total = await self.repository.find_all(scoped)
        return await self._build_paginated_list_response(events, options.page, options.page_size, total)

    async def _list_audience_scoped_events(
        self, contexts: list[StudentAudienceContext], options: Optional[ListEventsOptions]
    ) -> EventListResponse:
        """
        Published events visible to any of the given students.

        Audience rules live in JSON, so eligibility is filtered here after
        fetching every published candidate, and the page is sliced after.
        """
        options = self._paging(options)
        page, page_size = options.page, options.page_size

        if not contexts:
            return await self._build_paginated_list_response([], page, page_size, 0)

        candidates, _ = await self.repository.find_all(
            ListEventsOptions(
                facility_id=options.facility_id,
                search_term=options.search_term,
                lifecycle_statuses=(LifecycleStatus.PUBLISHED,),
                visibilities=AUDIENCE_VISIBILITIES,
                disable_pagination=True,
            )
        )
        eligible = [e for e in candidates if matches_any_context(e.audience_config, contexts)]

        offset = (page - 1) * page_size
        return await self._build_paginated_list_response(
            eligible[offset : offset + page_size], page, page_size, len(eligible)
        )

    async def _build_paginated_list_response(
        self, events: list[EventRecord], page: int, page_size: int, total: int
    ) -> EventListResponse:
        pagination = Pagination(
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) or 1,
        )
        if not events:
            return EventListResponse(events=[], pagination=pagination)

        total_active = await self.repository.count_active_students()
        level_names = await self.repository.get_level_names(
            collect_level_ids(e.audience_config for e in events)
        )

        now = self.clock.local_now(self.timezone)
        items = []
        for event in events:
            items.append(
                EventListItem(
                    id=event.id,
                    title=event.title,
                    time_range=compute_time_range(event.session_config, now.date()),
                    venue=event.facility.name if event.facility else None,
                    description=event.description,
                    audience_summary=summarize_audience(event.audience_config, level_names),
                    scanner_summary=scanner_summary(event.scanner_config),
                    actual_attendees=await self.repository.count_event_attendees(event.id),
                    expected_attendees=await compute_expected_attendees(
                        event.audience_config, total_active, self.repository
                    ),
                    status=compute_event_status(event.start_date, event.end_date, event.session_config, now),
                    start_date=event.start_date,
                    end_date=event.end_date or event.start_date,
                    lifecycle_status=event.lifecycle_status,
                    visibility=event.visibility,
                    poster_image_url=event.poster_image_url,
                )
            )

        return EventListResponse(events=items, pagination=pagination)

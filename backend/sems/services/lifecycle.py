"""
Event lifecycle state machine.

    draft -> pending_approval -> approved -> published -> completed
                  |                                  \\-> cancelled
                  \\-> draft (rejected)

Any non-terminal state may be cancelled by an administrator. completed and
cancelled are terminal.

Everything here is pure: functions take the stored EventRecord plus the
pending change set and either raise BusinessRuleError or return the
audit-field mutations to merge into the commit payload.
"""

from datetime import datetime
from typing import Any, Mapping, Optional

from sems.domain.errors import BusinessRuleError
from sems.domain.types import (
    ActorContext,
    EventRecord,
    LifecycleStatus,
    WorkflowAction,
)

# Editing any of these on an approved event sends it back for approval
CRITICAL_FIELDS = (
    "start_date",
    "end_date",
    "session_config",
    "audience_config",
    "facility_id",
    "capacity_limit",
    "registration_required",
    "registration_opens_at",
    "registration_closes_at",
)

_CLEARED_AUDIT_FIELDS = {
    "approved_by": None,
    "approved_at": None,
    "approval_comment": None,
    "rejected_by": None,
    "rejected_at": None,
    "rejection_comment": None,
    "published_at": None,
    "completed_at": None,
    "cancelled_by": None,
    "cancelled_at": None,
    "cancellation_reason": None,
}


def can_manage_event(event: EventRecord, actor: ActorContext) -> bool:
    """Admins manage everything; organizers manage the events they own."""
    if actor.is_admin:
        return True
    return event.owner_user_id == actor.user_id and actor.is_organizer


def initial_lifecycle_fields(now: datetime, auto_submit: bool) -> dict[str, Any]:
    """Lifecycle and audit fields for a freshly created event."""
    fields: dict[str, Any] = dict(_CLEARED_AUDIT_FIELDS)
    if auto_submit:
        fields["lifecycle_status"] = LifecycleStatus.PENDING_APPROVAL
        fields["submitted_for_approval_at"] = now
    else:
        fields["lifecycle_status"] = LifecycleStatus.DRAFT
        fields["submitted_for_approval_at"] = None
    return fields


def assert_event_mutable(event: EventRecord, action: Optional[WorkflowAction], actor_is_admin: bool) -> None:
    if event.is_terminal:
        raise BusinessRuleError("Completed or cancelled events can no longer be modified.")

    if action is not None:
        return

    if event.lifecycle_status is LifecycleStatus.PUBLISHED:
        raise BusinessRuleError("Published events require workflow actions (complete/cancel) for changes.")
    if event.lifecycle_status is LifecycleStatus.PENDING_APPROVAL and not actor_is_admin:
        raise BusinessRuleError.forbidden("Only administrators can edit events pending approval.")


def final_registration_state(event: EventRecord, changes: Mapping[str, Any]) -> dict[str, Any]:
    """Registration fields as they will be after the change set is applied."""
    required = changes.get("registration_required")
    if required is None:
        required = event.registration_required

    def merged(name: str) -> Any:
        return changes[name] if name in changes else getattr(event, name)

    return {
        "required": bool(required),
        "opens_at": merged("registration_opens_at"),
        "closes_at": merged("registration_closes_at"),
        "capacity_limit": merged("capacity_limit"),
    }


def normalize_registration_payload(event: EventRecord, changes: dict[str, Any]) -> None:
    """Registration off means no window and no capacity."""
    required = changes.get("registration_required")
    if required is None:
        required = event.registration_required
    if not required:
        changes["registration_opens_at"] = None
        changes["registration_closes_at"] = None
        changes["capacity_limit"] = None


def _assert_window(state: Mapping[str, Any], missing_message: str) -> None:
    opens_at, closes_at = state["opens_at"], state["closes_at"]
    if not opens_at or not closes_at:
        raise BusinessRuleError(missing_message)
    if opens_at >= closes_at:
        raise BusinessRuleError("registrationClosesAt must be after registrationOpensAt.")
    capacity = state["capacity_limit"]
    if capacity is not None and capacity <= 0:
        raise BusinessRuleError("capacityLimit must be a positive integer when provided.")


def assert_registration_state(event: EventRecord, changes: Mapping[str, Any]) -> None:
    state = final_registration_state(event, changes)
    if not state["required"]:
        return
    _assert_window(state, "Registration window must be provided when registration is enabled.")


def assert_publish_preconditions(event: EventRecord, changes: Mapping[str, Any]) -> None:
    start_date = changes.get("start_date") or event.start_date
    if not start_date:
        raise BusinessRuleError("Events must have a start date before they can be published.")

    state = final_registration_state(event, changes)
    if not state["required"]:
        return
    _assert_window(state, "Registration window must be defined before publishing events that require registration.")


def apply_workflow_action(
    event: EventRecord,
    action: WorkflowAction,
    actor: ActorContext,
    now: datetime,
    comment: Optional[str] = None,
    reason: Optional[str] = None,
    pending: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    """
    Validate one transition and return the fields it sets.

    State is checked before role for every action except CANCEL, which
    checks the role first.
    """
    status = event.lifecycle_status

    if action is WorkflowAction.SUBMIT_FOR_APPROVAL:
        if status is not LifecycleStatus.DRAFT:
            raise BusinessRuleError("Only draft events can be submitted for approval.")
        if not actor.is_admin and event.owner_user_id != actor.user_id:
            raise BusinessRuleError.forbidden("You are not allowed to submit this event.")
        return {
            "lifecycle_status": LifecycleStatus.PENDING_APPROVAL,
            "submitted_for_approval_at": now,
            "rejected_by": None,
            "rejected_at": None,
            "rejection_comment": None,
        }

    if action is WorkflowAction.APPROVE:
        if status is not LifecycleStatus.PENDING_APPROVAL:
            raise BusinessRuleError("Only pending events can be approved.")
        if not actor.is_admin:
            raise BusinessRuleError.forbidden("Only administrators can approve events.")
        return {
            "lifecycle_status": LifecycleStatus.APPROVED,
            "approved_by": actor.user_id,
            "approved_at": now,
            "approval_comment": comment or None,
            "rejected_by": None,
            "rejected_at": None,
            "rejection_comment": None,
        }

    if action is WorkflowAction.REJECT:
        if status is not LifecycleStatus.PENDING_APPROVAL:
            raise BusinessRuleError("Only pending events can be rejected.")
        if not actor.is_admin:
            raise BusinessRuleError.forbidden("Only administrators can reject events.")
        if not comment or not comment.strip():
            raise BusinessRuleError("A rejection comment is required.")
        return {
            "lifecycle_status": LifecycleStatus.DRAFT,
            "rejected_by": actor.user_id,
            "rejected_at": now,
            "rejection_comment": comment,
            "approved_by": None,
            "approved_at": None,
            "approval_comment": None,
            "submitted_for_approval_at": None,
        }

    if action is WorkflowAction.PUBLISH:
        if status is not LifecycleStatus.APPROVED:
            raise BusinessRuleError("Only approved events can be published.")
        if not actor.is_admin:
            raise BusinessRuleError.forbidden("Only administrators can publish events.")
        assert_publish_preconditions(event, pending or {})
        return {"lifecycle_status": LifecycleStatus.PUBLISHED, "published_at": now}

    if action is WorkflowAction.COMPLETE:
        if status is not LifecycleStatus.PUBLISHED:
            raise BusinessRuleError("Only published events can be completed.")
        if not actor.is_admin:
            raise BusinessRuleError.forbidden("Only administrators can complete events.")
        return {"lifecycle_status": LifecycleStatus.COMPLETED, "completed_at": now}

    if action is WorkflowAction.CANCEL:
        if not actor.is_admin:
            raise BusinessRuleError.forbidden("Only administrators can cancel events.")
        if event.is_terminal:
            raise BusinessRuleError("This event can no longer be cancelled.")
        cancellation_reason = (reason or "").strip()
        if not cancellation_reason:
            raise BusinessRuleError("A cancellation reason is required.")
        return {
            "lifecycle_status": LifecycleStatus.CANCELLED,
            "cancelled_by": actor.user_id,
            "cancelled_at": now,
            "cancellation_reason": cancellation_reason,
        }

    raise BusinessRuleError(f"Unsupported workflow action: {action}")


def should_reset_approval(event: EventRecord, changes: Mapping[str, Any]) -> bool:
    if event.lifecycle_status is not LifecycleStatus.APPROVED:
        return False
    # Resending a field with its stored value is not a change
    return any(field in changes and changes[field] != getattr(event, field) for field in CRITICAL_FIELDS)


def build_approval_reset(now: datetime) -> dict[str, Any]:
    return {
        "lifecycle_status": LifecycleStatus.PENDING_APPROVAL,
        "approved_by": None,
        "approved_at": None,
        "approval_comment": None,
        "rejected_by": None,
        "rejected_at": None,
        "rejection_comment": None,
        "submitted_for_approval_at": now,
        "published_at": None,
    }

"""
Tests for the lifecycle state machine and the field-mutability gate.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import ADMIN, OTHER_TEACHER, TEACHER
from sems.domain.errors import BusinessRuleError
from sems.domain.types import EventRecord, LifecycleStatus, WorkflowAction
from sems.services import lifecycle

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def event(status: LifecycleStatus, **fields) -> EventRecord:
    fields.setdefault("start_date", "2026-03-10")
    return EventRecord(
        id="e1", title="Event", lifecycle_status=status, owner_user_id=TEACHER.user_id, **fields
    )


def apply(status, action, actor=ADMIN, **kwargs):
    return lifecycle.apply_workflow_action(event(status), action, actor, NOW, **kwargs)


def test_submit_from_draft_clears_rejection():
    changes = apply(LifecycleStatus.DRAFT, WorkflowAction.SUBMIT_FOR_APPROVAL, TEACHER)
    assert changes["lifecycle_status"] is LifecycleStatus.PENDING_APPROVAL
    assert changes["submitted_for_approval_at"] == NOW
    assert changes["rejection_comment"] is None


def test_submit_by_non_owner_is_forbidden():
    with pytest.raises(BusinessRuleError) as exc_info:
        apply(LifecycleStatus.DRAFT, WorkflowAction.SUBMIT_FOR_APPROVAL, OTHER_TEACHER)
    assert exc_info.value.code == BusinessRuleError.FORBIDDEN


@pytest.mark.parametrize(
    "status",
    [s for s in LifecycleStatus if s is not LifecycleStatus.PENDING_APPROVAL],
)
def test_approve_outside_pending_fails(status):
    with pytest.raises(BusinessRuleError, match="Only pending events can be approved."):
        apply(status, WorkflowAction.APPROVE)


def test_approve_stamps_approver():
    changes = apply(LifecycleStatus.PENDING_APPROVAL, WorkflowAction.APPROVE, comment="Looks good")
    assert changes["lifecycle_status"] is LifecycleStatus.APPROVED
    assert changes["approved_by"] == ADMIN.user_id
    assert changes["approved_at"] == NOW
    assert changes["approval_comment"] == "Looks good"


def test_approve_by_organizer_is_forbidden():
    with pytest.raises(BusinessRuleError) as exc_info:
        apply(LifecycleStatus.PENDING_APPROVAL, WorkflowAction.APPROVE, TEACHER)
    assert exc_info.value.message == "Only administrators can approve events."
    assert exc_info.value.code == BusinessRuleError.FORBIDDEN


@pytest.mark.parametrize("comment", [None, "", "   "])
def test_reject_requires_comment(comment):
    with pytest.raises(BusinessRuleError, match="A rejection comment is required."):
        apply(LifecycleStatus.PENDING_APPROVAL, WorkflowAction.REJECT, comment=comment)


def test_reject_returns_to_draft_and_clears_approval():
    changes = apply(LifecycleStatus.PENDING_APPROVAL, WorkflowAction.REJECT, comment="Wrong venue")
    assert changes["lifecycle_status"] is LifecycleStatus.DRAFT
    assert changes["rejected_by"] == ADMIN.user_id
    assert changes["rejection_comment"] == "Wrong venue"
    assert changes["approved_by"] is None
    assert changes["submitted_for_approval_at"] is None


def test_publish_requires_registration_window():
    approved = event(LifecycleStatus.APPROVED, registration_required=True, registration_closes_at=NOW)
    with pytest.raises(BusinessRuleError, match="Registration window must be defined before publishing"):
        lifecycle.apply_workflow_action(approved, WorkflowAction.PUBLISH, ADMIN, NOW)


def test_publish_requires_start_date():
    approved = event(LifecycleStatus.APPROVED, start_date=None)
    with pytest.raises(BusinessRuleError, match="must have a start date"):
        lifecycle.apply_workflow_action(approved, WorkflowAction.PUBLISH, ADMIN, NOW)


def test_publish_checks_pending_changes_too():
    approved = event(LifecycleStatus.APPROVED)
    pending = {
        "registration_required": True,
        "registration_opens_at": NOW + timedelta(days=2),
        "registration_closes_at": NOW + timedelta(days=1),
    }
    with pytest.raises(BusinessRuleError, match="registrationClosesAt must be after registrationOpensAt."):
        lifecycle.apply_workflow_action(approved, WorkflowAction.PUBLISH, ADMIN, NOW, pending=pending)


def test_publish_stamps_time():
    changes = apply(LifecycleStatus.APPROVED, WorkflowAction.PUBLISH)
    assert changes == {"lifecycle_status": LifecycleStatus.PUBLISHED, "published_at": NOW}


def test_complete_only_from_published():
    with pytest.raises(BusinessRuleError, match="Only published events can be completed."):
        apply(LifecycleStatus.APPROVED, WorkflowAction.COMPLETE)
    assert apply(LifecycleStatus.PUBLISHED, WorkflowAction.COMPLETE)["completed_at"] == NOW


def test_cancel_checks_role_before_state():
    with pytest.raises(BusinessRuleError) as exc_info:
        apply(LifecycleStatus.COMPLETED, WorkflowAction.CANCEL, TEACHER, reason="x")
    assert exc_info.value.message == "Only administrators can cancel events."


def test_cancel_requires_reason_and_trims_it():
    with pytest.raises(BusinessRuleError, match="A cancellation reason is required."):
        apply(LifecycleStatus.PUBLISHED, WorkflowAction.CANCEL, reason="  ")
    changes = apply(LifecycleStatus.DRAFT, WorkflowAction.CANCEL, reason="  Weather  ")
    assert changes["cancellation_reason"] == "Weather"
    assert changes["cancelled_by"] == ADMIN.user_id


def test_terminal_events_cannot_be_cancelled():
    with pytest.raises(BusinessRuleError, match="can no longer be cancelled"):
        apply(LifecycleStatus.CANCELLED, WorkflowAction.CANCEL, reason="again")


# ============================================================================
# Mutability gate
# ============================================================================


@pytest.mark.parametrize("status", [LifecycleStatus.COMPLETED, LifecycleStatus.CANCELLED])
def test_terminal_events_are_immutable(status):
    with pytest.raises(BusinessRuleError, match="can no longer be modified"):
        lifecycle.assert_event_mutable(event(status), WorkflowAction.CANCEL, True)


def test_published_events_need_a_workflow_action():
    published = event(LifecycleStatus.PUBLISHED)
    with pytest.raises(BusinessRuleError, match="require workflow actions"):
        lifecycle.assert_event_mutable(published, None, True)
    lifecycle.assert_event_mutable(published, WorkflowAction.COMPLETE, True)


def test_pending_events_are_admin_editable_only():
    pending = event(LifecycleStatus.PENDING_APPROVAL)
    with pytest.raises(BusinessRuleError) as exc_info:
        lifecycle.assert_event_mutable(pending, None, False)
    assert exc_info.value.code == BusinessRuleError.FORBIDDEN
    lifecycle.assert_event_mutable(pending, None, True)


def test_can_manage_event():
    owned = event(LifecycleStatus.DRAFT)
    assert lifecycle.can_manage_event(owned, ADMIN)
    assert lifecycle.can_manage_event(owned, TEACHER)
    assert not lifecycle.can_manage_event(owned, OTHER_TEACHER)


# ============================================================================
# Approval reset and registration
# ============================================================================


def test_critical_field_edit_resets_approval():
    approved = event(LifecycleStatus.APPROVED, facility_id="f1")
    assert lifecycle.should_reset_approval(approved, {"facility_id": None})
    assert lifecycle.should_reset_approval(approved, {"start_date": date(2026, 3, 11)})
    assert not lifecycle.should_reset_approval(approved, {"title": "Renamed"})
    assert not lifecycle.should_reset_approval(event(LifecycleStatus.DRAFT), {"facility_id": None})


def test_resending_unchanged_critical_fields_keeps_approval():
    approved = event(LifecycleStatus.APPROVED, facility_id="f1", capacity_limit=40)
    unchanged = {"facility_id": "f1", "start_date": date(2026, 3, 10), "capacity_limit": 40, "title": "New"}
    assert not lifecycle.should_reset_approval(approved, unchanged)

    reset = lifecycle.build_approval_reset(NOW)
    assert reset["lifecycle_status"] is LifecycleStatus.PENDING_APPROVAL
    assert reset["approved_by"] is None and reset["approved_at"] is None
    assert reset["submitted_for_approval_at"] == NOW


def test_registration_off_clears_window_and_capacity():
    changes = {"registration_required": False, "capacity_limit": 20}
    lifecycle.normalize_registration_payload(event(LifecycleStatus.DRAFT), changes)
    assert changes["capacity_limit"] is None
    assert changes["registration_opens_at"] is None


def test_registration_on_requires_window_on_merged_state():
    stored = event(LifecycleStatus.DRAFT, registration_required=True, registration_opens_at=NOW)
    with pytest.raises(BusinessRuleError, match="Registration window must be provided"):
        lifecycle.assert_registration_state(stored, {})
    lifecycle.assert_registration_state(stored, {"registration_closes_at": NOW + timedelta(days=1)})


def test_initial_lifecycle_fields():
    assert lifecycle.initial_lifecycle_fields(NOW, True)["lifecycle_status"] is LifecycleStatus.PENDING_APPROVAL
    draft = lifecycle.initial_lifecycle_fields(NOW, False)
    assert draft["lifecycle_status"] is LifecycleStatus.DRAFT
    assert draft["submitted_for_approval_at"] is None

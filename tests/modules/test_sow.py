"""
Tests for the SOW module.

Covers:
- Creation and draft edits (authority, validation, audit entry)
- The full internal approval path and the vendor response
- Comment guards, terminal states and stale versions
- Tenancy and available_actions
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from procure_kernel.domain.roles import OrganizationRole
from procure_kernel.domain.values import MoneyAmount
from procure_kernel.exceptions import (
    ConcurrencyConflictError,
    EntityNotFoundError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationFailedError,
)
from procure_kernel.selectors.audit_log_selector import AuditLogSelector
from procure_modules.sow import ResponseStatus, SOWStatus


class TestCreate:

    def test_client_employee_creates_draft(self, sow_service, sow_draft, client_employee, client_org, vendor_org):
        result = sow_service.create(sow_draft(), client_employee)

        sow = result.entity
        assert sow.status is SOWStatus.DRAFT
        assert sow.version == 1
        assert sow.client_organization_id == client_org
        assert sow.vendor_organization_id == vendor_org
        assert sow.estimated_cost.amount == Decimal("100000")
        assert sow.vendor_response.status is ResponseStatus.PENDING

    def test_creation_writes_one_audit_entry(self, sow_service, sow_draft, client_employee, session):
        result = sow_service.create(sow_draft(), client_employee)

        trail = AuditLogSelector(session).entity_trail("sow", result.entity.id)
        assert len(trail) == 1
        assert trail[0].action_type == "create"
        assert trail[0].action == "SOW created: Data platform migration"
        assert trail[0].performed_by["organization_role"] == "client_employee"

    @pytest.mark.parametrize("role", [OrganizationRole.VENDOR_OWNER, OrganizationRole.ADMIN_OWNER, OrganizationRole.CLIENT_ACCOUNT])
    def test_other_roles_cannot_create(self, sow_service, sow_draft, make_actor, role):
        with pytest.raises(UnauthorizedError):
            sow_service.create(sow_draft(), make_actor(role))

    def test_blank_title_and_inverted_dates(self, sow_service, sow_draft, client_employee):
        draft = sow_draft(title="  ", start_date=date(2026, 9, 1), end_date=date(2026, 4, 1))

        with pytest.raises(ValidationFailedError) as exc_info:
            sow_service.create(draft, client_employee)

        assert set(exc_info.value.errors) == {"title", "end_date"}

    def test_unknown_sow(self, sow_service):
        with pytest.raises(EntityNotFoundError):
            sow_service.get(uuid4())


class TestUpdate:

    def test_draft_edit_lists_changed_fields(self, sow_service, sow_draft, client_employee):
        sow = sow_service.create(sow_draft(), client_employee).entity

        result = sow_service.update(
            sow.id, client_employee,
            title="Warehouse migration",
            estimated_cost=MoneyAmount(Decimal("120000"), "USD"),
        )

        assert result.entity.title == "Warehouse migration"
        assert result.entity.version == 2
        assert result.audit_entry.action_type == "update"
        assert {c["field"] for c in result.audit_entry.changes} == {"title", "estimated_amount"}

    def test_no_changes_rejected(self, sow_service, sow_draft, client_employee):
        sow = sow_service.create(sow_draft(), client_employee).entity

        with pytest.raises(ValidationFailedError) as exc_info:
            sow_service.update(sow.id, client_employee, title=sow.title)

        assert "fields" in exc_info.value.errors

    def test_currency_change_rejected(self, sow_service, sow_draft, client_employee):
        sow = sow_service.create(sow_draft(), client_employee).entity

        with pytest.raises(ValidationFailedError) as exc_info:
            sow_service.update(sow.id, client_employee, estimated_cost=MoneyAmount(Decimal("10"), "EUR"))

        assert "estimated_cost" in exc_info.value.errors

    def test_only_drafts_are_editable(self, sow_service, sow_draft, client_employee):
        sow = sow_service.create(sow_draft(), client_employee).entity
        sow_service.submit(sow.id, client_employee)

        with pytest.raises(InvalidTransitionError):
            sow_service.update(sow.id, client_employee, title="Too late")


class TestApprovalPath:

    def test_full_path_to_vendor_acceptance(self, sow_service, sow_draft, client_employee, client_owner, vendor_owner):
        sow = sow_service.create(sow_draft(), client_employee).entity

        pending = sow_service.submit_for_pm_approval(sow.id, client_employee, "Scope agreed").entity
        assert pending.status is SOWStatus.PM_APPROVAL_PENDING

        approved = sow_service.approve(sow.id, client_owner, "Approved").entity
        assert approved.status is SOWStatus.INTERNAL_APPROVED
        assert [a.decision for a in approved.approvals] == ["approved"]

        sent = sow_service.send_to_vendor(sow.id, client_employee).entity
        assert sent.status is SOWStatus.SENT_TO_VENDOR

        accepted = sow_service.vendor_response(sow.id, vendor_owner, "accepted", "Agreed").entity
        assert accepted.status is SOWStatus.VENDOR_ACCEPTED
        assert accepted.vendor_response.status is ResponseStatus.ACCEPTED
        assert accepted.vendor_response.responded_by == vendor_owner.user_id
        assert accepted.version == 5
        assert [h.status for h in accepted.workflow_history] == [
            "draft", "pm_approval_pending", "internal_approved", "sent_to_vendor", "vendor_accepted",
        ]

    def test_transition_audit_entry(self, sow_service, sow_draft, client_employee):
        sow = sow_service.create(sow_draft(), client_employee).entity

        entry = sow_service.submit_for_pm_approval(sow.id, client_employee, "Scope agreed").audit_entry

        assert entry.action == "SOW submit for pm approval: draft -> pm_approval_pending"
        assert entry.action_type == "status_change"
        assert entry.previous_state == {"status": "draft", "version": 1}
        assert entry.new_state == {"status": "pm_approval_pending", "version": 2}
        assert entry.comments == "Scope agreed"
        assert entry.metadata["workflow"] == "sow"

    def test_pm_submission_requires_comments(self, sow_service, sow_draft, client_employee):
        sow = sow_service.create(sow_draft(), client_employee).entity

        with pytest.raises(ValidationFailedError) as exc_info:
            sow_service.submit_for_pm_approval(sow.id, client_employee, "   ")

        assert "comments" in exc_info.value.errors
        assert sow_service.get(sow.id).status is SOWStatus.DRAFT

    def test_rejection_returns_to_draft(self, sow_service, sow_draft, client_employee, client_owner):
        sow = sow_service.create(sow_draft(), client_employee).entity
        sow_service.submit_for_pm_approval(sow.id, client_employee, "Please review")

        rejected = sow_service.reject(sow.id, client_owner, "Budget too high")

        assert rejected.entity.status is SOWStatus.DRAFT
        assert rejected.entity.approvals[-1].decision == "rejected"
        assert rejected.audit_entry.action_type == "rejection"

    def test_employee_cannot_approve(self, sow_service, sow_draft, client_employee):
        sow = sow_service.create(sow_draft(), client_employee).entity
        sow_service.submit_for_pm_approval(sow.id, client_employee, "Please review")

        with pytest.raises(UnauthorizedError):
            sow_service.approve(sow.id, client_employee)

    def test_vendor_rejection_needs_comments(self, sow_service, sow_draft, client_employee, client_owner, vendor_owner):
        sow = sow_service.create(sow_draft(), client_employee).entity
        sow_service.submit(sow.id, client_employee)
        sow_service.approve(sow.id, client_owner)
        sow_service.send_to_vendor(sow.id, client_employee)

        with pytest.raises(ValidationFailedError):
            sow_service.vendor_response(sow.id, vendor_owner, "rejected")

        rejected = sow_service.vendor_response(sow.id, vendor_owner, "rejected", "Rates too low").entity
        assert rejected.status is SOWStatus.VENDOR_REJECTED

    def test_unknown_response_status(self, sow_service, vendor_owner):
        with pytest.raises(ValidationFailedError) as exc_info:
            sow_service.vendor_response(uuid4(), vendor_owner, "maybe")

        assert "status" in exc_info.value.errors

    def test_terminal_sow_refuses_cancel(self, accepted_sow, sow_service, client_owner):
        sow = accepted_sow()

        with pytest.raises(InvalidTransitionError) as exc_info:
            sow_service.cancel(sow.id, client_owner)

        assert exc_info.value.reason == "state is terminal"

    def test_illegal_edge_lists_allowed_actions(self, sow_service, sow_draft, client_employee, client_owner):
        sow = sow_service.create(sow_draft(), client_employee).entity

        with pytest.raises(InvalidTransitionError) as exc_info:
            sow_service.approve(sow.id, client_owner)

        assert exc_info.value.current_state == "draft"
        assert "submit_for_pm_approval" in exc_info.value.reason

    def test_owner_can_cancel_draft(self, sow_service, sow_draft, client_employee, client_owner):
        sow = sow_service.create(sow_draft(), client_employee).entity

        assert sow_service.cancel(sow.id, client_owner, "Not needed").entity.status is SOWStatus.CANCELLED


class TestVersionAndTenancy:

    def test_stale_expected_version(self, sow_service, sow_draft, client_employee):
        sow = sow_service.create(sow_draft(), client_employee).entity
        sow_service.submit(sow.id, client_employee, expected_version=1)

        with pytest.raises(ConcurrencyConflictError):
            sow_service.submit_for_pm_approval(sow.id, client_employee, "again", expected_version=1)

    def test_other_client_organization_refused(self, sow_service, sow_draft, client_employee, make_actor):
        sow = sow_service.create(sow_draft(), client_employee).entity
        outsider = make_actor(OrganizationRole.CLIENT_EMPLOYEE, organization_id=uuid4())

        with pytest.raises(UnauthorizedError) as exc_info:
            sow_service.submit(sow.id, outsider)

        assert "not a party" in exc_info.value.reason

    def test_available_actions(self, sow_service, sow_draft, client_employee, client_owner, make_actor):
        sow = sow_service.create(sow_draft(), client_employee).entity
        outsider = make_actor(OrganizationRole.CLIENT_OWNER, organization_id=uuid4())

        assert set(sow_service.available_actions(sow.id, client_owner)) == {
            "submit", "submit_for_pm_approval", "cancel",
        }
        assert sow_service.available_actions(sow.id, outsider) == ()

    def test_list_for_organization(self, sow_service, sow_draft, client_employee, client_org, vendor_org):
        first = sow_service.create(sow_draft(), client_employee).entity
        second = sow_service.create(sow_draft(title="Second"), client_employee).entity
        sow_service.submit(second.id, client_employee)

        assert {s.id for s in sow_service.list_for_organization(client_org)} == {first.id, second.id}
        assert {s.id for s in sow_service.list_for_organization(vendor_org)} == {first.id, second.id}
        assert [s.id for s in sow_service.list_for_organization(client_org, SOWStatus.SUBMITTED)] == [second.id]


class TestLogging:

    def test_creation_and_transition_are_logged(self, sow_service, sow_draft, client_employee, captured_logs):
        sow = sow_service.create(sow_draft(), client_employee).entity
        sow_service.submit(sow.id, client_employee)

        records = captured_logs()
        created = [r for r in records if r["message"] == "sow_created"]
        applied = [r for r in records if r["message"] == "transition_applied"]
        assert created and created[0]["sow_id"] == str(sow.id)
        assert applied[0]["trace_type"] == "ENTITY_TRANSITION"
        assert applied[0]["to_state"] == "submitted"

    def test_refused_transition_is_logged(self, sow_service, sow_draft, client_employee, captured_logs):
        sow = sow_service.create(sow_draft(), client_employee).entity

        with pytest.raises(UnauthorizedError):
            sow_service.cancel(sow.id, client_employee)

        rejected = [r for r in captured_logs() if r["message"] == "transition_rejected"]
        assert rejected[0]["outcome"] == "unauthorized"
        assert rejected[0]["level"] == "WARNING"

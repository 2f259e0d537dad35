"""
Tests for the purchase order module.

Covers:
- Linkage preconditions: accepted SOW, one PO per SOW, matching currency
- The deviation rule (exactly 5% passes, anything above needs justification)
- Finance approval, vendor acceptance by the account holder, activation
- Payment tracking initialisation
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from procure_config.schema import LinkageSettings
from procure_kernel.domain.roles import OrganizationRole
from procure_kernel.domain.values import MoneyAmount
from procure_kernel.exceptions import (
    EntityNotFoundError,
    InvalidTransitionError,
    JustificationRequiredError,
    SowAlreadyUtilizedError,
    SowNotAcceptedError,
    UnauthorizedError,
    ValidationFailedError,
)
from procure_modules.po import PaymentTerms, POStatus, PurchaseOrderService


class TestLinkage:

    def test_po_from_accepted_sow(self, accepted_sow, po_service, po_draft, client_owner, vendor_org):
        sow = accepted_sow()

        result = po_service.create(po_draft(sow.id), client_owner)

        po = result.entity
        assert po.status is POStatus.DRAFT
        assert po.sow_id == sow.id
        assert po.vendor_id == vendor_org
        assert po.po_number.startswith("PO-20260302-")
        assert result.audit_entry.related_entities == (
            {"entity_type": "sow", "entity_id": str(sow.id)},
        )

    def test_sow_must_be_vendor_accepted(self, sow_service, sow_draft, po_service, po_draft, client_employee, client_owner):
        sow = sow_service.create(sow_draft(), client_employee).entity

        with pytest.raises(SowNotAcceptedError) as exc_info:
            po_service.create(po_draft(sow.id), client_owner)

        assert exc_info.value.sow_status == "draft"
        assert exc_info.value.kind == "ReferentialViolation"

    def test_one_po_per_sow(self, accepted_sow, po_service, po_draft, client_owner):
        sow = accepted_sow()
        first = po_service.create(po_draft(sow.id), client_owner).entity

        with pytest.raises(SowAlreadyUtilizedError) as exc_info:
            po_service.create(po_draft(sow.id), client_owner)

        assert exc_info.value.existing_po_id == str(first.id)

    def test_unknown_sow(self, po_service, po_draft, client_owner):
        with pytest.raises(EntityNotFoundError):
            po_service.create(po_draft(uuid4()), client_owner)

    def test_only_client_owner_creates(self, accepted_sow, po_service, po_draft, client_employee):
        sow = accepted_sow()

        with pytest.raises(UnauthorizedError):
            po_service.create(po_draft(sow.id), client_employee)

    def test_currency_must_match_sow(self, accepted_sow, po_service, po_draft, client_owner):
        sow = accepted_sow()
        draft = po_draft(sow.id, total_amount=MoneyAmount(Decimal("100000"), "EUR"))

        with pytest.raises(ValidationFailedError) as exc_info:
            po_service.create(draft, client_owner)

        assert "total_amount" in exc_info.value.errors

    def test_custom_terms_need_description(self, accepted_sow, po_service, po_draft, client_owner):
        sow = accepted_sow()

        with pytest.raises(ValidationFailedError) as exc_info:
            po_service.create(po_draft(sow.id, payment_terms=PaymentTerms.CUSTOM), client_owner)

        assert "custom_payment_terms" in exc_info.value.errors

    def test_get_by_sow(self, accepted_sow, po_service, po_draft, client_owner):
        sow = accepted_sow()
        assert po_service.get_by_sow(sow.id) is None

        po = po_service.create(po_draft(sow.id), client_owner).entity

        assert po_service.get_by_sow(sow.id).id == po.id


class TestDeviation:

    def test_exactly_five_percent_is_accepted(self, accepted_sow, po_service, po_draft, client_owner):
        sow = accepted_sow("100000")

        result = po_service.create(po_draft(sow.id, "105000"), client_owner)

        assert result.audit_entry.metadata["deviation_percent"] == "5.00"
        assert result.entity.justification is None

    def test_above_five_percent_needs_justification(self, accepted_sow, po_service, po_draft, client_owner):
        sow = accepted_sow("100000")

        with pytest.raises(JustificationRequiredError) as exc_info:
            po_service.create(po_draft(sow.id, "105010"), client_owner)

        assert exc_info.value.deviation_percent == "5.01"
        assert "justification" in exc_info.value.errors
        assert po_service.get_by_sow(sow.id) is None

    def test_justification_lets_deviation_through(self, accepted_sow, po_service, po_draft, client_owner):
        sow = accepted_sow("100000")

        result = po_service.create(
            po_draft(sow.id, "90000", justification="Reduced scope after discovery"),
            client_owner,
        )

        assert result.entity.justification == "Reduced scope after discovery"
        assert result.audit_entry.metadata["deviation_percent"] == "10.00"

    def test_blank_justification_does_not_count(self, accepted_sow, po_service, po_draft, client_owner):
        sow = accepted_sow("100000")

        with pytest.raises(JustificationRequiredError):
            po_service.create(po_draft(sow.id, "90000", justification="   "), client_owner)

    def test_configured_threshold(self, accepted_sow, session, clock, po_draft, client_owner):
        sow = accepted_sow("100000")
        service = PurchaseOrderService(
            session, clock, linkage=LinkageSettings(deviation_threshold_percent=Decimal("10")),
        )

        assert service.create(po_draft(sow.id, "108000"), client_owner).entity.status is POStatus.DRAFT

    def test_update_reruns_deviation(self, accepted_sow, po_service, po_draft, client_owner):
        sow = accepted_sow("100000")
        po = po_service.create(po_draft(sow.id), client_owner).entity

        with pytest.raises(JustificationRequiredError):
            po_service.update(po.id, client_owner, total_amount=MoneyAmount(Decimal("120000"), "USD"))

        updated = po_service.update(
            po.id, client_owner,
            total_amount=MoneyAmount(Decimal("120000"), "USD"),
            justification="Extra migration wave",
        ).entity
        assert updated.total_amount.amount == Decimal("120000")
        assert updated.payment_tracking.remaining_amount == Decimal("120000")


class TestLifecycle:

    def test_path_to_active(self, accepted_sow, po_service, po_draft, client_owner, vendor_account):
        sow = accepted_sow()
        po = po_service.create(po_draft(sow.id), client_owner).entity

        po_service.submit(po.id, client_owner)
        approved = po_service.finance_approval(po.id, client_owner, "approved", "Budget ok").entity
        assert approved.status is POStatus.FINANCE_APPROVED
        assert approved.finance_approval.status == "approved"

        po_service.send_to_vendor(po.id, client_owner)
        accepted = po_service.vendor_response(po.id, vendor_account, "accepted").entity
        assert accepted.status is POStatus.VENDOR_ACCEPTED
        assert accepted.accepted_by_id == vendor_account.user_id
        assert accepted.is_invoiceable

        active = po_service.activate(po.id, client_owner).entity
        assert active.status is POStatus.ACTIVE
        assert po_service.complete(po.id, client_owner).entity.status is POStatus.COMPLETED

    def test_finance_rejection_returns_to_draft(self, accepted_sow, po_service, po_draft, client_owner):
        po = po_service.create(po_draft(accepted_sow().id), client_owner).entity
        po_service.submit(po.id, client_owner)

        with pytest.raises(ValidationFailedError):
            po_service.finance_approval(po.id, client_owner, "rejected")

        rejected = po_service.finance_approval(po.id, client_owner, "rejected", "Wrong cost centre")
        assert rejected.entity.status is POStatus.DRAFT
        assert rejected.audit_entry.action_type == "rejection"

    def test_vendor_owner_cannot_accept(self, accepted_sow, po_service, po_draft, client_owner, vendor_owner):
        po = po_service.create(po_draft(accepted_sow().id), client_owner).entity
        po_service.submit(po.id, client_owner)
        po_service.finance_approval(po.id, client_owner, "approved")
        po_service.send_to_vendor(po.id, client_owner)

        with pytest.raises(UnauthorizedError):
            po_service.vendor_response(po.id, vendor_owner, "accepted")

    def test_employee_cannot_approve_finance(self, accepted_sow, po_service, po_draft, client_owner, client_employee):
        po = po_service.create(po_draft(accepted_sow().id), client_owner).entity
        po_service.submit(po.id, client_employee)

        with pytest.raises(UnauthorizedError):
            po_service.finance_approval(po.id, client_employee, "approved")

    def test_unknown_finance_decision(self, po_service, client_owner):
        with pytest.raises(ValidationFailedError) as exc_info:
            po_service.finance_approval(uuid4(), client_owner, "maybe")

        assert "status" in exc_info.value.errors

    def test_completed_po_is_terminal(self, accepted_po, po_service, client_owner):
        po = accepted_po()
        po_service.activate(po.id, client_owner)
        po_service.complete(po.id, client_owner)

        with pytest.raises(InvalidTransitionError):
            po_service.cancel(po.id, client_owner)

    def test_payment_tracking_starts_at_total(self, accepted_po):
        po = accepted_po("80000")

        tracking = po.payment_tracking
        assert tracking.total_invoiced == Decimal("0")
        assert tracking.total_paid == Decimal("0")
        assert tracking.remaining_amount == Decimal("80000")
        assert tracking.last_payment_date is None

    def test_available_actions_for_vendor(self, accepted_sow, po_service, po_draft, client_owner, vendor_account, make_actor):
        po = po_service.create(po_draft(accepted_sow().id), client_owner).entity
        po_service.submit(po.id, client_owner)
        po_service.finance_approval(po.id, client_owner, "approved")
        po_service.send_to_vendor(po.id, client_owner)
        other_vendor = make_actor(OrganizationRole.VENDOR_ACCOUNT, organization_id=uuid4())

        assert set(po_service.available_actions(po.id, vendor_account)) == {"vendor_accept", "vendor_reject"}
        assert po_service.available_actions(po.id, other_vendor) == ()

    def test_dates_validated(self, accepted_sow, po_service, po_draft, client_owner):
        draft = po_draft(accepted_sow().id, start_date=date(2026, 10, 1), end_date=date(2026, 4, 1))

        with pytest.raises(ValidationFailedError) as exc_info:
            po_service.create(draft, client_owner)

        assert "end_date" in exc_info.value.errors

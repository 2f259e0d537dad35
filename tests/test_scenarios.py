"""
End-to-end scenarios across SOW, purchase order and invoice.

Each scenario drives the public services only and checks the persisted
state and the audit trail a user would see.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from procure_kernel.exceptions import (
    ConcurrencyConflictError,
    SowNotAcceptedError,
    ValidationFailedError,
)
from procure_kernel.models.audit_log import AuditLogModel
from procure_kernel.selectors.audit_log_selector import AuditLogSelector
from procure_modules.invoice import InvoiceStatus, PaymentRecord
from procure_modules.po import POStatus, PurchaseOrderService
from procure_modules.po.orm import PurchaseOrderModel
from procure_modules.sow import SOWStatus


def audit_count(session) -> int:
    return session.scalar(select(func.count()).select_from(AuditLogModel))


class TestScenarios:

    def test_sow_reaches_vendor_acceptance(self, sow_service, sow_draft, client_employee, client_owner, vendor_owner, session):
        sow = sow_service.create(sow_draft(), client_employee).entity

        sow_service.submit_for_pm_approval(sow.id, client_employee, "initial scope")
        sow_service.approve(sow.id, client_owner)
        sow_service.send_to_vendor(sow.id, client_employee)
        final = sow_service.vendor_response(sow.id, vendor_owner, "accepted").entity

        assert final.status is SOWStatus.VENDOR_ACCEPTED
        transitions = AuditLogSelector(session).entity_trail("sow", sow.id)[1:]
        assert [(e.previous_state["status"], e.new_state["status"]) for e in transitions] == [
            ("draft", "pm_approval_pending"),
            ("pm_approval_pending", "internal_approved"),
            ("internal_approved", "sent_to_vendor"),
            ("sent_to_vendor", "vendor_accepted"),
        ]

    def test_po_against_draft_sow_writes_nothing(self, sow_service, sow_draft, po_service, po_draft, client_employee, client_owner, session):
        sow = sow_service.create(sow_draft(), client_employee).entity
        before = audit_count(session)

        with pytest.raises(SowNotAcceptedError):
            po_service.create(po_draft(sow.id), client_owner)

        assert session.scalar(select(func.count()).select_from(PurchaseOrderModel)) == 0
        assert audit_count(session) == before

    def test_ten_percent_deviation_needs_justification(self, accepted_sow, po_service, po_draft, client_owner):
        sow = accepted_sow("100000")

        with pytest.raises(ValidationFailedError):
            po_service.create(po_draft(sow.id, "110000"), client_owner)

        po = po_service.create(
            po_draft(sow.id, "110000", justification="Additional data sources in scope"),
            client_owner,
        ).entity
        assert po.total_amount.amount == Decimal("110000")

    def test_invoice_paid_rolls_into_po(self, accepted_po, invoice_service, invoice_draft, po_service, vendor_account, client_owner, clock):
        po = accepted_po("100000")
        invoice = invoice_service.create(invoice_draft(po.id, "1000"), vendor_account).entity
        paid_before = po_service.get(po.id).payment_tracking.total_paid

        invoice_service.approve(invoice.id, client_owner)
        paid = invoice_service.mark_paid(
            invoice.id, client_owner, PaymentRecord(paid_amount=Decimal("1000"), paid_date=clock.today()),
        ).entity

        assert paid.status is InvoiceStatus.PAID
        assert po_service.get(po.id).payment_tracking.total_paid == paid_before + Decimal("1000")

    def test_concurrent_finance_approvals(self, accepted_sow, po_service, po_draft, client_owner, make_actor, session_factory, clock):
        po = po_service.create(po_draft(accepted_sow().id), client_owner).entity
        po_service.submit(po.id, client_owner)
        rival_session = session_factory()
        try:
            rival = PurchaseOrderService(rival_session, clock)
            held = rival_session.get(PurchaseOrderModel, po.id)

            po_service.finance_approval(po.id, client_owner, "approved")
            assert held.status == "submitted"
            with pytest.raises(ConcurrencyConflictError):
                rival.finance_approval(po.id, make_actor("client_owner"), "approved")
        finally:
            rival_session.close()

        assert po_service.get(po.id).status is POStatus.FINANCE_APPROVED

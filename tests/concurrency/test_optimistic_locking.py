"""
Tests for optimistic concurrency between sessions.

Two sessions hold the same row; the first to commit wins and the second
gets ConcurrencyConflictError from its flush with nothing written.  The
rival keeps a reference to its ORM row so the stale version is what it
flushes against.
"""

from datetime import date
from decimal import Decimal

import pytest

from procure_kernel.exceptions import ConcurrencyConflictError, InvalidTransitionError
from procure_kernel.selectors.audit_log_selector import AuditLogSelector
from procure_kernel.services.sequence_service import SequenceService
from procure_modules.invoice import InvoiceService, InvoiceStatus, PaymentRecord
from procure_modules.invoice.orm import InvoiceModel
from procure_modules.po import POStatus, PurchaseOrderService
from procure_modules.po.orm import PurchaseOrderModel
from procure_modules.sow import SOWService, SOWStatus
from procure_modules.sow.orm import SOWModel
from procure_services.dispatcher import OperationDispatcher


@pytest.fixture
def second_session(session_factory):
    s = session_factory()
    yield s
    s.close()


class TestConcurrentTransitions:

    def test_second_approval_conflicts(self, sow_service, sow_draft, client_employee, client_owner, make_actor, second_session, clock):
        sow = sow_service.create(sow_draft(), client_employee).entity
        sow_service.submit_for_pm_approval(sow.id, client_employee, "Please review")
        other_owner = make_actor("client_owner")

        rival = SOWService(second_session, clock)
        held = second_session.get(SOWModel, sow.id)

        sow_service.approve(sow.id, client_owner, "Approved first")

        assert held.status == "pm_approval_pending"
        with pytest.raises(ConcurrencyConflictError) as exc_info:
            rival.approve(sow.id, other_owner, "Approved second")
        assert exc_info.value.entity_id == str(sow.id)

        second_session.expire_all()
        current = rival.get(sow.id)
        assert current.status is SOWStatus.INTERNAL_APPROVED
        assert [a.comments for a in current.approvals] == ["Approved first"]
        assert len(AuditLogSelector(second_session).entity_trail("sow", sow.id)) == 3

    def test_conflict_leaves_audit_sequence_untouched(self, sow_service, sow_draft, client_employee, client_owner, second_session, clock):
        sow = sow_service.create(sow_draft(), client_employee).entity
        sow_service.submit_for_pm_approval(sow.id, client_employee, "Please review")
        held = second_session.get(SOWModel, sow.id)
        sow_service.approve(sow.id, client_owner)

        assert held.version == 2
        with pytest.raises(ConcurrencyConflictError):
            SOWService(second_session, clock).approve(sow.id, client_owner)

        assert SequenceService(second_session).current_value(SequenceService.AUDIT_LOG) == 3
        assert AuditLogSelector(second_session).verify_chain()

    def test_retry_after_conflict_sees_new_state(self, sow_service, sow_draft, client_employee, client_owner, second_session, clock):
        sow = sow_service.create(sow_draft(), client_employee).entity
        sow_service.submit_for_pm_approval(sow.id, client_employee, "Please review")

        rival = SOWService(second_session, clock)
        held = second_session.get(SOWModel, sow.id)
        sow_service.approve(sow.id, client_owner)

        assert held.status == "pm_approval_pending"
        with pytest.raises(ConcurrencyConflictError):
            rival.approve(sow.id, client_owner)

        second_session.expire_all()
        with pytest.raises(InvalidTransitionError):
            rival.approve(sow.id, client_owner)

    def test_concurrent_finance_approvals(self, accepted_sow, po_service, po_draft, client_owner, make_actor, second_session, clock):
        po = po_service.create(po_draft(accepted_sow().id), client_owner).entity
        po_service.submit(po.id, client_owner)
        held = second_session.get(PurchaseOrderModel, po.id)

        po_service.finance_approval(po.id, client_owner, "approved")

        assert held.status == "submitted"
        with pytest.raises(ConcurrencyConflictError):
            PurchaseOrderService(second_session, clock).finance_approval(
                po.id, make_actor("client_owner"), "approved",
            )
        assert po_service.get(po.id).status is POStatus.FINANCE_APPROVED

    def test_concurrent_payments_apply_once(self, accepted_po, invoice_service, invoice_draft, vendor_account, client_owner, second_session, clock):
        po = accepted_po("100000")
        invoice = invoice_service.create(invoice_draft(po.id, "25000"), vendor_account).entity
        invoice_service.approve(invoice.id, client_owner)
        record = PaymentRecord(paid_amount=Decimal("25000"), paid_date=date(2026, 3, 20))

        rival = InvoiceService(second_session, clock)
        held = second_session.get(InvoiceModel, invoice.id)

        invoice_service.mark_paid(invoice.id, client_owner, record)

        assert held.status == "approved"
        with pytest.raises(ConcurrencyConflictError):
            rival.mark_paid(invoice.id, client_owner, record)

        second_session.expire_all()
        assert rival.get(invoice.id).status is InvoiceStatus.PAID
        tracking = PurchaseOrderService(second_session, clock).get(po.id).payment_tracking
        assert tracking.total_paid == Decimal("25000")
        assert tracking.remaining_amount == Decimal("75000")


class TestConflictEnvelope:

    def test_flush_conflict_is_a_typed_envelope(self, sow_service, sow_draft, client_employee, client_owner, second_session, clock):
        sow = sow_service.create(sow_draft(), client_employee).entity
        sow_service.submit_for_pm_approval(sow.id, client_employee, "Please review")
        held = second_session.get(SOWModel, sow.id)
        sow_service.approve(sow.id, client_owner)

        assert held.status == "pm_approval_pending"
        envelope = OperationDispatcher(second_session, clock).dispatch(
            "sow.approve", client_owner, {"sowId": str(sow.id)},
        )

        assert envelope["success"] is False
        assert envelope["error"]["kind"] == "ConcurrencyConflict"

"""
Invoice Service (``procure_modules.invoice.service``).

Responsibility
--------------
Vendor invoices against accepted or active purchase orders: creation with
due-date derivation, client approval and payment, vendor resubmission and
credit notes, and reminder alerts.  Every amount that moves rolls up into
the parent PO's payment tracking in the same transaction.

Architecture position
---------------------
**Modules layer** -- ``InvoiceService`` is the sole public entry point for
invoice operations.  Tracking arithmetic comes from
``procure_engines.amounts``, due dates and alerts from
``procure_engines.due_dates``.

Invariants enforced
-------------------
* An invoice is only raised against a PO in ``vendor_accepted`` or
  ``active`` (``PoNotAcceptedError``), in the PO's currency.
* ``po.total_invoiced`` never exceeds the PO total.
* After every ``mark_paid``:
  ``po.remaining_amount == po.total_amount - po.total_paid``.
* A replayed request id never applies an amount twice.
* Transaction boundary -- commit on success, rollback on any exception.

Failure modes
-------------
* ``PoNotAcceptedError``, ``ValidationFailedError`` on creation.
* Executor errors for transitions; guard failures report the payload field.

Audit relevance
---------------
The invoice's audit entry lists the PO under ``related_entities`` whenever
the PO's tracking changed, so the PO's payment history can be rebuilt from
invoice entries.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from procure_config.schema import LinkageSettings
from procure_engines.amounts import (
    amount_due,
    apply_credit_note,
    apply_invoice,
    apply_payment,
    release_invoice,
)
from procure_engines.authority import available_actions, can_create
from procure_engines.due_dates import derive_due_date, pending_alerts
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.domain.roles import ActingUser, system_actor_snapshot
from procure_kernel.domain.values import AuditActionType, EntityType, WorkflowHistoryEntry
from procure_kernel.exceptions import (
    PoNotAcceptedError,
    UnauthorizedError,
    ValidationFailedError,
)
from procure_kernel.logging_config import get_logger
from procure_modules._transaction import load_or_raise, owned_transaction
from procure_modules.invoice.models import (
    AlertType,
    Invoice,
    InvoiceDraft,
    InvoiceStatus,
    PaymentRecord,
)
from procure_modules.invoice.orm import InvoiceModel
from procure_modules.invoice.workflows import INVOICE_WORKFLOW
from procure_modules.po.models import INVOICEABLE_STATUSES
from procure_modules.po.orm import PurchaseOrderModel
from procure_services.transition_executor import (
    OperationResult,
    TransitionExecutor,
    TransitionRequest,
)

logger = get_logger("modules.invoice.service")

_INVOICEABLE = frozenset(s.value for s in INVOICEABLE_STATUSES)

_ALERT_MESSAGES = {
    AlertType.DUE_DATE_APPROACHING.value: "Invoice {number} is due on {due}",
    AlertType.OVERDUE.value: "Invoice {number} is overdue since {due}",
    AlertType.PAYMENT_RECEIVED.value: "Payment of {amount} received for invoice {number}",
    AlertType.CREDIT_NOTE_ISSUED.value: "Credit note of {amount} issued for invoice {number}",
}


class InvoiceService:
    """
    Invoice operations.

    Transaction boundary: this service commits on success, rolls back on
    failure.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        executor: TransitionExecutor | None = None,
        linkage: LinkageSettings | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._executor = executor or TransitionExecutor(session, self._clock)
        self._linkage = linkage or LinkageSettings()

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, invoice_id: UUID) -> Invoice:
        return load_or_raise(
            self._session, InvoiceModel, EntityType.INVOICE.value, invoice_id
        ).to_dto()

    def list_for_po(self, po_id: UUID) -> list[Invoice]:
        stmt = (
            select(InvoiceModel)
            .where(InvoiceModel.po_id == po_id)
            .order_by(InvoiceModel.invoice_date, InvoiceModel.created_at)
        )
        return [row.to_dto() for row in self._session.scalars(stmt)]

    def list_for_organization(
        self,
        organization_id: UUID,
        status: InvoiceStatus | None = None,
    ) -> list[Invoice]:
        stmt = select(InvoiceModel).where(
            (InvoiceModel.client_organization_id == organization_id)
            | (InvoiceModel.vendor_organization_id == organization_id)
        )
        if status is not None:
            stmt = stmt.where(InvoiceModel.status == status.value)
        stmt = stmt.order_by(InvoiceModel.created_at.desc())
        return [row.to_dto() for row in self._session.scalars(stmt)]

    def list_overdue(self, as_of: date | None = None) -> list[Invoice]:
        """Approved invoices past their due date."""
        as_of = as_of or self._clock.today()
        stmt = (
            select(InvoiceModel)
            .where(InvoiceModel.status == InvoiceStatus.APPROVED.value)
            .where(InvoiceModel.due_date < as_of)
            .order_by(InvoiceModel.due_date)
        )
        return [row.to_dto() for row in self._session.scalars(stmt)]

    def available_actions(self, invoice_id: UUID, actor: ActingUser) -> tuple[str, ...]:
        model = load_or_raise(self._session, InvoiceModel, EntityType.INVOICE.value, invoice_id)
        try:
            TransitionExecutor.check_tenancy(EntityType.INVOICE, "view", model, actor)
        except UnauthorizedError:
            return ()
        return available_actions(INVOICE_WORKFLOW, model.status, actor.organization_role)

    # =========================================================================
    # Creation
    # =========================================================================

    def create(
        self,
        draft: InvoiceDraft,
        actor: ActingUser,
        *,
        request_id: str | None = None,
    ) -> OperationResult[Invoice]:
        """Raise an invoice in ``pending`` and add it to the PO's invoiced total."""
        with owned_transaction(self._session, "invoice_create", po_id=str(draft.po_id)):
            replay = self._executor.find_replay(EntityType.INVOICE, "create", request_id)
            if replay is not None:
                return OperationResult(self.get(replay.entity_id), replay, replayed=True)

            if not can_create(EntityType.INVOICE, actor.organization_role):
                raise UnauthorizedError(
                    EntityType.INVOICE.value, "create", actor.organization_role.value,
                    reason="requires one of: vendor_account, vendor_owner",
                )
            po = load_or_raise(self._session, PurchaseOrderModel, EntityType.PO.value, draft.po_id)
            TransitionExecutor.check_tenancy(EntityType.INVOICE, "create", po, actor)
            if po.status not in _INVOICEABLE:
                raise PoNotAcceptedError(str(po.id), po.status)

            errors: dict[str, str] = {}
            if not draft.work_summary or not draft.work_summary.strip():
                errors["work_summary"] = "Work summary is required"
            if draft.invoice_amount.currency != po.currency:
                errors["invoice_amount"] = (
                    f"currency {draft.invoice_amount.currency} differs from the PO's {po.currency}"
                )
            if draft.vendor_id is not None and draft.vendor_id != po.vendor_id:
                errors["vendor_id"] = "vendor must match the PO's vendor"
            due_date = None
            try:
                due_date = derive_due_date(
                    draft.invoice_date,
                    po.payment_terms,
                    draft.due_date,
                    term_days=self._linkage.payment_term_days,
                )
            except ValueError as e:
                errors["due_date"] = str(e)
            tracking = None
            if "invoice_amount" not in errors:
                try:
                    tracking = apply_invoice(po.tracking(), invoice_amount=draft.invoice_amount.amount)
                except ValueError as e:
                    errors["invoice_amount"] = str(e)
            if errors:
                raise ValidationFailedError(errors)

            now = self._clock.now()
            po.apply_tracking(tracking)
            po.updated_at = now
            po.updated_by_id = actor.user_id
            model = InvoiceModel(
                invoice_number=_invoice_number(now),
                po_id=po.id,
                client_id=po.client_id,
                vendor_id=po.vendor_id,
                client_organization_id=po.client_organization_id,
                vendor_organization_id=po.vendor_organization_id,
                invoice_date=draft.invoice_date,
                due_date=due_date,
                invoice_amount=draft.invoice_amount.amount,
                currency=draft.invoice_amount.currency,
                work_summary=draft.work_summary.strip(),
                status=InvoiceStatus.PENDING.value,
                invoice_file=draft.invoice_file.to_dict() if draft.invoice_file else None,
                approval_details={},
                alerts=[],
                po_validation={
                    "po_status": po.status,
                    "po_accepted_date": po.accepted_at.isoformat() if po.accepted_at else None,
                    "po_accepted_by": str(po.accepted_by_id) if po.accepted_by_id else None,
                },
                workflow_history=[
                    WorkflowHistoryEntry(
                        status=InvoiceStatus.PENDING.value,
                        timestamp=now,
                        performed_by=str(actor.user_id),
                        role=actor.organization_role.value,
                        action="create",
                    ).to_dict()
                ],
                created_at=now,
                updated_at=now,
                created_by_id=actor.user_id,
            )
            self._session.add(model)
            record = self._executor.record_mutation(
                EntityType.INVOICE,
                model,
                actor.to_dict(),
                "create",
                AuditActionType.CREATE,
                f"Invoice created: {model.invoice_number}",
                request_id=request_id,
                new_state={"status": model.status},
                metadata={
                    "invoice_amount": draft.invoice_amount.to_dict(),
                    "due_date": due_date.isoformat(),
                    "po_total_invoiced": str(po.total_invoiced),
                },
                related_entities=({"entity_type": EntityType.PO.value, "entity_id": str(po.id)},),
            )
            logger.info("invoice_created", extra={
                "invoice_id": str(model.id),
                "invoice_number": model.invoice_number,
                "po_id": str(po.id),
                "invoice_amount": str(draft.invoice_amount.amount),
            })
            return OperationResult(model.to_dto(), record)

    # =========================================================================
    # Transitions
    # =========================================================================

    def approve(
        self, invoice_id: UUID, actor: ActingUser, comments: str | None = None, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[Invoice]:
        def effects(model: InvoiceModel, po: PurchaseOrderModel, now: datetime, from_state: str) -> None:
            model.approval_details = {
                **(model.approval_details or {}),
                "approved_by": str(actor.user_id),
                "approved_at": now.isoformat(),
            }

        return self._transition(
            invoice_id,
            TransitionRequest(
                "approve", actor, comments=comments,
                request_id=request_id, expected_version=expected_version,
            ),
            effects,
        )

    def reject(
        self, invoice_id: UUID, actor: ActingUser, reason: str | None, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[Invoice]:
        """Reject with a reason; the amount is released from the PO's invoiced total."""
        def effects(model: InvoiceModel, po: PurchaseOrderModel, now: datetime, from_state: str) -> None:
            model.approval_details = {
                **(model.approval_details or {}),
                "rejected_by": str(actor.user_id),
                "rejected_at": now.isoformat(),
                "rejection_reason": reason,
            }
            po.apply_tracking(release_invoice(po.tracking(), invoice_amount=_due(model)))

        return self._transition(
            invoice_id,
            TransitionRequest(
                "reject", actor, comments=reason, payload={"reason": reason},
                request_id=request_id, expected_version=expected_version,
            ),
            effects,
            touches_po=True,
        )

    def mark_paid(
        self,
        invoice_id: UUID,
        actor: ActingUser,
        payment: PaymentRecord,
        *,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> OperationResult[Invoice]:
        """Record payment and roll it into the PO's paid total."""
        def effects(model: InvoiceModel, po: PurchaseOrderModel, now: datetime, from_state: str) -> None:
            paid_amount = Decimal(str(payment.paid_amount))
            model.payment_details = {
                "paid_amount": str(paid_amount),
                "paid_date": payment.paid_date.isoformat(),
                "method": payment.method.value,
                "transaction_id": payment.transaction_id,
                "notes": payment.notes,
            }
            _add_alert(model, AlertType.PAYMENT_RECEIVED.value, now, amount=paid_amount)
            po.apply_tracking(apply_payment(po.tracking(), paid_amount=paid_amount))
            if po.last_payment_date is None or payment.paid_date > po.last_payment_date:
                po.last_payment_date = payment.paid_date

        return self._transition(
            invoice_id,
            TransitionRequest(
                "mark_paid", actor, comments=payment.notes,
                payload={"paid_amount": payment.paid_amount, "paid_date": payment.paid_date},
                request_id=request_id, expected_version=expected_version,
            ),
            effects,
            touches_po=True,
            metadata={"paid_amount": str(payment.paid_amount), "method": payment.method.value},
        )

    def resubmit(
        self, invoice_id: UUID, actor: ActingUser, comments: str | None = None, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[Invoice]:
        """Vendor sends a rejected invoice back for approval."""
        def effects(model: InvoiceModel, po: PurchaseOrderModel, now: datetime, from_state: str) -> None:
            try:
                tracking = apply_invoice(po.tracking(), invoice_amount=_due(model))
            except ValueError as e:
                raise ValidationFailedError({"invoice_amount": str(e)}) from e
            po.apply_tracking(tracking)

        return self._transition(
            invoice_id,
            TransitionRequest(
                "resubmit", actor, comments=comments,
                request_id=request_id, expected_version=expected_version,
            ),
            effects,
            touches_po=True,
        )

    def issue_credit_note(
        self,
        invoice_id: UUID,
        actor: ActingUser,
        amount: Decimal,
        reason: str | None,
        *,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> OperationResult[Invoice]:
        """Reduce what the invoice claims; the PO's invoiced total drops with it."""
        def effects(model: InvoiceModel, po: PurchaseOrderModel, now: datetime, from_state: str) -> None:
            credit = Decimal(str(amount))
            model.credit_note = {
                "amount": str(credit),
                "reason": reason.strip(),
                "created_at": now.isoformat(),
                "created_by": str(actor.user_id),
            }
            _add_alert(model, AlertType.CREDIT_NOTE_ISSUED.value, now, amount=credit)
            po.apply_tracking(apply_credit_note(po.tracking(), credit_amount=credit))

        return self._transition(
            invoice_id,
            TransitionRequest(
                "issue_credit_note", actor, comments=reason,
                payload={"credit_amount": amount, "reason": reason},
                request_id=request_id, expected_version=expected_version,
            ),
            effects,
            touches_po=True,
            metadata={"credit_amount": str(amount)},
        )

    def cancel(
        self, invoice_id: UUID, actor: ActingUser, comments: str | None = None, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[Invoice]:
        def effects(model: InvoiceModel, po: PurchaseOrderModel, now: datetime, from_state: str) -> None:
            # Rejected invoices were already released from the PO.
            if from_state != InvoiceStatus.REJECTED.value:
                po.apply_tracking(release_invoice(po.tracking(), invoice_amount=_due(model)))
        return self._transition(
            invoice_id,
            TransitionRequest(
                "cancel", actor, comments=comments,
                request_id=request_id, expected_version=expected_version,
            ),
            effects,
            touches_po=True,
        )

    # =========================================================================
    # Alerts
    # =========================================================================

    def refresh_alerts(self, as_of: date | None = None) -> list[Invoice]:
        """
        Add due-date and overdue reminders to open invoices.

        Each alert type is added at most once per invoice; every invoice that
        gains an alert gets one system-generated audit entry.
        """
        with owned_transaction(self._session, "invoice_refresh_alerts"):
            as_of = as_of or self._clock.today()
            now = self._clock.now()
            stmt = select(InvoiceModel).where(
                InvoiceModel.status.in_(
                    (InvoiceStatus.PENDING.value, InvoiceStatus.APPROVED.value)
                )
            )
            updated = []
            for model in self._session.scalars(stmt).all():
                existing = frozenset(alert["type"] for alert in model.alerts or ())
                new_types = pending_alerts(
                    model.due_date,
                    model.status,
                    as_of,
                    existing,
                    warning_days=self._linkage.invoice_due_warning_days,
                )
                if not new_types:
                    continue
                previous_version = model.version
                for alert_type in new_types:
                    _add_alert(model, alert_type, now)
                model.updated_at = now
                self._executor.record_mutation(
                    EntityType.INVOICE,
                    model,
                    system_actor_snapshot("invoice_alerts"),
                    "refresh_alerts",
                    AuditActionType.UPDATE,
                    f"Invoice alerts added: {', '.join(new_types)}",
                    previous_state={"status": model.status, "version": previous_version},
                    new_state={"status": model.status},
                    metadata={"alerts": list(new_types), "as_of": as_of.isoformat()},
                    system_generated=True,
                )
                updated.append(model.to_dto())
            logger.info("invoice_alerts_refreshed", extra={
                "as_of": as_of.isoformat(),
                "invoices_updated": len(updated),
            })
            return updated

    # =========================================================================
    # Internals
    # =========================================================================

    def _transition(
        self,
        invoice_id: UUID,
        request: TransitionRequest,
        effects,
        *,
        touches_po: bool = False,
        metadata: dict | None = None,
    ) -> OperationResult[Invoice]:
        with owned_transaction(
            self._session, f"invoice_{request.action}", invoice_id=str(invoice_id)
        ):
            model = load_or_raise(self._session, InvoiceModel, EntityType.INVOICE.value, invoice_id)
            po = load_or_raise(self._session, PurchaseOrderModel, EntityType.PO.value, model.po_id)
            from_state = model.status

            def apply(entity: InvoiceModel, now: datetime) -> None:
                effects(entity, po, now, from_state)
                if touches_po:
                    po.updated_at = now
                    po.updated_by_id = request.actor.user_id

            outcome = self._executor.execute(
                INVOICE_WORKFLOW,
                model,
                request,
                apply_effects=apply,
                guard_context={
                    "amount_due": _due(model),
                    "existing_credit_note": bool(model.credit_note),
                },
                audit_metadata=metadata,
                related_entities=(
                    ({"entity_type": EntityType.PO.value, "entity_id": str(po.id)},)
                    if touches_po
                    else ()
                ),
            )
            if touches_po and not outcome.replayed:
                logger.info("po_payment_tracking_updated", extra={
                    "po_id": str(po.id),
                    "total_invoiced": str(po.total_invoiced),
                    "total_paid": str(po.total_paid),
                    "remaining_amount": str(po.remaining_amount),
                })
            return OperationResult(model.to_dto(), outcome.audit_entry, outcome.replayed)


def _due(model: InvoiceModel) -> Decimal:
    return amount_due(model.invoice_amount, model.credit_amount)


def _add_alert(model: InvoiceModel, alert_type: str, now: datetime, amount: Decimal | None = None) -> None:
    message = _ALERT_MESSAGES[alert_type].format(
        number=model.invoice_number,
        due=model.due_date.isoformat(),
        amount=amount,
    )
    model.alerts = [
        *(model.alerts or []),
        {"date": now.isoformat(), "type": alert_type, "message": message, "is_read": False},
    ]


def _invoice_number(now: datetime) -> str:
    return f"INV-{now:%Y%m%d}-{uuid4().hex[:6].upper()}"

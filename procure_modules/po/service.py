"""
Purchase Order Service (``procure_modules.po.service``).

Responsibility
--------------
Raises purchase orders from accepted SOWs and drives them through finance
approval, vendor acceptance and execution.  Cross-entity linkage rules run
here as preconditions of ``create`` -- a caller cannot skip them.

Architecture position
---------------------
**Modules layer** -- ``PurchaseOrderService`` is the sole public entry point
for PO operations.  Deviation arithmetic comes from
``procure_engines.amounts``; transitions go through ``TransitionExecutor``.

Invariants enforced
-------------------
* A PO is only raised from a ``vendor_accepted`` SOW (``SowNotAcceptedError``).
* At most one PO per SOW -- checked up front and backed by the unique
  constraint on ``sow_id`` (``SowAlreadyUtilizedError``).
* A total deviating from the SOW estimate by more than the configured
  threshold needs a justification (``JustificationRequiredError``).
* The vendor is derived from the SOW, never chosen independently.
* Transaction boundary -- commit on success, rollback on any exception.

Failure modes
-------------
* ``ReferentialViolationError`` subclasses for linkage failures.
* ``ValidationFailedError`` for field errors, currency mismatch, custom
  payment terms without a description.
* Executor errors for transitions.

Audit relevance
---------------
Creation records the deviation percent and justification in the audit
entry's metadata so reviewers can see why a PO diverged from its SOW.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procure_config.schema import LinkageSettings
from procure_engines.amounts import deviation_percent, initial_tracking, requires_justification
from procure_engines.authority import available_actions, can_create, can_update
from procure_kernel.db.types import round_money
from procure_kernel.domain.audit import FieldChange
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.domain.roles import ActingUser
from procure_kernel.domain.values import (
    AuditActionType,
    EntityType,
    MoneyAmount,
    WorkflowHistoryEntry,
)
from procure_kernel.exceptions import (
    InvalidTransitionError,
    JustificationRequiredError,
    SowAlreadyUtilizedError,
    SowNotAcceptedError,
    UnauthorizedError,
    ValidationFailedError,
)
from procure_kernel.logging_config import get_logger
from procure_modules._transaction import load_or_raise, owned_transaction
from procure_modules.po.models import PaymentTerms, PODraft, POStatus, PurchaseOrder
from procure_modules.po.orm import PurchaseOrderModel
from procure_modules.po.workflows import PURCHASE_ORDER_WORKFLOW
from procure_modules.sow.models import ResponseStatus, SOWStatus
from procure_modules.sow.orm import SOWModel
from procure_services.transition_executor import (
    OperationResult,
    TransitionExecutor,
    TransitionRequest,
)

logger = get_logger("modules.po.service")


class PurchaseOrderService:
    """
    Purchase order operations.

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

    def get(self, po_id: UUID) -> PurchaseOrder:
        return load_or_raise(
            self._session, PurchaseOrderModel, EntityType.PO.value, po_id
        ).to_dto()

    def get_by_sow(self, sow_id: UUID) -> PurchaseOrder | None:
        row = self._find_by_sow(sow_id)
        return row.to_dto() if row is not None else None

    def list_for_organization(
        self,
        organization_id: UUID,
        status: POStatus | None = None,
    ) -> list[PurchaseOrder]:
        stmt = select(PurchaseOrderModel).where(
            (PurchaseOrderModel.client_organization_id == organization_id)
            | (PurchaseOrderModel.vendor_organization_id == organization_id)
        )
        if status is not None:
            stmt = stmt.where(PurchaseOrderModel.status == status.value)
        stmt = stmt.order_by(PurchaseOrderModel.created_at.desc())
        return [row.to_dto() for row in self._session.scalars(stmt)]

    def available_actions(self, po_id: UUID, actor: ActingUser) -> tuple[str, ...]:
        model = load_or_raise(self._session, PurchaseOrderModel, EntityType.PO.value, po_id)
        try:
            TransitionExecutor.check_tenancy(EntityType.PO, "view", model, actor)
        except UnauthorizedError:
            return ()
        return available_actions(PURCHASE_ORDER_WORKFLOW, model.status, actor.organization_role)

    # =========================================================================
    # Creation
    # =========================================================================

    def create(
        self,
        draft: PODraft,
        actor: ActingUser,
        *,
        request_id: str | None = None,
    ) -> OperationResult[PurchaseOrder]:
        """
        Raise a PO in ``draft`` from a ``vendor_accepted`` SOW.

        Preconditions run in order: authority, SOW acceptance, one PO per
        SOW, field validation, amount deviation.
        """
        with owned_transaction(self._session, "po_create", sow_id=str(draft.sow_id)):
            replay = self._executor.find_replay(EntityType.PO, "create", request_id)
            if replay is not None:
                return OperationResult(self.get(replay.entity_id), replay, replayed=True)

            if not can_create(EntityType.PO, actor.organization_role):
                raise UnauthorizedError(
                    EntityType.PO.value, "create", actor.organization_role.value,
                    reason="requires one of: client_owner",
                )
            sow = load_or_raise(self._session, SOWModel, EntityType.SOW.value, draft.sow_id)
            TransitionExecutor.check_tenancy(EntityType.PO, "create", sow, actor)

            if sow.status != SOWStatus.VENDOR_ACCEPTED.value:
                raise SowNotAcceptedError(str(sow.id), sow.status)
            existing = self._find_by_sow(sow.id)
            if existing is not None:
                raise SowAlreadyUtilizedError(str(sow.id), str(existing.id))

            errors = self._validate(
                draft.start_date, draft.end_date, draft.payment_terms, draft.custom_payment_terms
            )
            if draft.total_amount.currency != sow.currency:
                errors["total_amount"] = (
                    f"currency {draft.total_amount.currency} differs from the SOW's {sow.currency}"
                )
            if draft.vendor_id is not None and draft.vendor_id != sow.vendor_id:
                errors["vendor_id"] = "vendor must match the SOW's vendor"
            if errors:
                raise ValidationFailedError(errors)

            deviation = self._check_deviation(
                draft.total_amount.amount, sow.estimated_amount, draft.justification
            )

            now = self._clock.now()
            tracking = initial_tracking(draft.total_amount.amount)
            model = PurchaseOrderModel(
                po_number=_po_number(now),
                sow_id=sow.id,
                client_id=sow.client_id,
                vendor_id=sow.vendor_id,
                client_organization_id=sow.client_organization_id,
                vendor_organization_id=sow.vendor_organization_id,
                start_date=draft.start_date,
                end_date=draft.end_date,
                total_amount=draft.total_amount.amount,
                currency=draft.total_amount.currency,
                payment_terms=draft.payment_terms.value,
                custom_payment_terms=draft.custom_payment_terms,
                justification=_blank_to_none(draft.justification),
                notes=draft.notes,
                status=POStatus.DRAFT.value,
                finance_approval={"status": "pending"},
                vendor_response={"status": ResponseStatus.PENDING.value},
                total_invoiced=tracking.total_invoiced,
                total_paid=tracking.total_paid,
                remaining_amount=tracking.remaining_amount,
                workflow_history=[
                    WorkflowHistoryEntry(
                        status=POStatus.DRAFT.value,
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
            try:
                self._session.flush()
            except IntegrityError as exc:
                raise SowAlreadyUtilizedError(str(sow.id)) from exc

            record = self._executor.record_mutation(
                EntityType.PO,
                model,
                actor.to_dict(),
                "create",
                AuditActionType.CREATE,
                f"PO created: {model.po_number}",
                request_id=request_id,
                new_state={"status": model.status},
                metadata={
                    "total_amount": draft.total_amount.to_dict(),
                    "sow_estimated_amount": str(sow.estimated_amount),
                    "deviation_percent": str(round_money(deviation)),
                    "justification": model.justification,
                },
                related_entities=({"entity_type": EntityType.SOW.value, "entity_id": str(sow.id)},),
            )
            logger.info("po_created", extra={
                "po_id": str(model.id),
                "po_number": model.po_number,
                "sow_id": str(sow.id),
                "deviation_percent": str(round_money(deviation)),
            })
            return OperationResult(model.to_dto(), record)

    def update(
        self,
        po_id: UUID,
        actor: ActingUser,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        total_amount: MoneyAmount | None = None,
        payment_terms: PaymentTerms | None = None,
        custom_payment_terms: str | None = None,
        justification: str | None = None,
        notes: str | None = None,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> OperationResult[PurchaseOrder]:
        """Edit a draft PO.  A new total re-runs the deviation rule."""
        with owned_transaction(self._session, "po_update", po_id=str(po_id)):
            model = load_or_raise(self._session, PurchaseOrderModel, EntityType.PO.value, po_id)
            replay = self._executor.find_replay(EntityType.PO, "update", request_id, po_id)
            if replay is not None:
                return OperationResult(model.to_dto(), replay, replayed=True)

            self._executor.check_version(EntityType.PO, model, expected_version)
            if not can_update(EntityType.PO, actor.organization_role):
                raise UnauthorizedError(
                    EntityType.PO.value, "update", actor.organization_role.value,
                    reason="requires one of: client_owner",
                )
            TransitionExecutor.check_tenancy(EntityType.PO, "update", model, actor)
            if model.status != POStatus.DRAFT.value:
                raise InvalidTransitionError(
                    EntityType.PO.value, str(po_id), model.status, "update",
                    reason="only draft POs can be edited",
                )

            terms = payment_terms or PaymentTerms(model.payment_terms)
            errors = self._validate(
                start_date or model.start_date,
                end_date or model.end_date,
                terms,
                custom_payment_terms if custom_payment_terms is not None else model.custom_payment_terms,
            )
            if total_amount is not None and total_amount.currency != model.currency:
                errors["total_amount"] = (
                    f"currency {total_amount.currency} differs from {model.currency}"
                )
            if errors:
                raise ValidationFailedError(errors)

            metadata = {}
            if total_amount is not None and total_amount.amount != model.total_amount:
                sow = load_or_raise(self._session, SOWModel, EntityType.SOW.value, model.sow_id)
                deviation = self._check_deviation(
                    total_amount.amount,
                    sow.estimated_amount,
                    justification if justification is not None else model.justification,
                )
                metadata["deviation_percent"] = str(round_money(deviation))

            requested = {
                "start_date": start_date,
                "end_date": end_date,
                "total_amount": total_amount.amount if total_amount else None,
                "payment_terms": payment_terms.value if payment_terms else None,
                "custom_payment_terms": custom_payment_terms,
                "justification": justification,
                "notes": notes,
            }
            changes = []
            for field_name, new_value in requested.items():
                old_value = getattr(model, field_name)
                if new_value is None or new_value == old_value:
                    continue
                changes.append(FieldChange(field_name, _plain(old_value), _plain(new_value)))
                setattr(model, field_name, new_value)
            if not changes:
                raise ValidationFailedError({"fields": "no changes supplied"})
            if total_amount is not None:
                model.apply_tracking(initial_tracking(model.total_amount))

            previous_version = model.version
            model.updated_at = self._clock.now()
            model.updated_by_id = actor.user_id
            record = self._executor.record_mutation(
                EntityType.PO,
                model,
                actor.to_dict(),
                "update",
                AuditActionType.UPDATE,
                f"PO updated: {', '.join(c.field for c in changes)}",
                request_id=request_id,
                previous_state={"status": model.status, "version": previous_version},
                new_state={"status": model.status},
                changes=changes,
                metadata=metadata,
            )
            return OperationResult(model.to_dto(), record)

    # =========================================================================
    # Transitions
    # =========================================================================

    def submit(
        self, po_id: UUID, actor: ActingUser, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[PurchaseOrder]:
        return self._transition(po_id, TransitionRequest(
            "submit", actor, request_id=request_id, expected_version=expected_version,
        ))

    def finance_approval(
        self,
        po_id: UUID,
        actor: ActingUser,
        status: str,
        comments: str | None = None,
        *,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> OperationResult[PurchaseOrder]:
        """Finance decision: ``approved`` moves on, ``rejected`` returns to draft."""
        if status == "approved":
            action = "finance_approve"
        elif status == "rejected":
            action = "finance_reject"
        else:
            raise ValidationFailedError({"status": "must be 'approved' or 'rejected'"})

        def effects(model: PurchaseOrderModel, now: datetime) -> None:
            model.finance_approval = {
                "status": status,
                "comments": comments,
                "date": now.isoformat(),
                "user_id": str(actor.user_id),
            }

        return self._transition(
            po_id,
            TransitionRequest(
                action, actor, comments=comments,
                request_id=request_id, expected_version=expected_version,
            ),
            effects=effects,
        )

    def send_to_vendor(
        self, po_id: UUID, actor: ActingUser, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[PurchaseOrder]:
        return self._transition(po_id, TransitionRequest(
            "send_to_vendor", actor, request_id=request_id, expected_version=expected_version,
        ))

    def vendor_response(
        self,
        po_id: UUID,
        actor: ActingUser,
        status: str,
        comments: str | None = None,
        *,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> OperationResult[PurchaseOrder]:
        """Vendor account holder accepts or rejects the PO."""
        if status == ResponseStatus.ACCEPTED.value:
            action = "vendor_accept"
        elif status == ResponseStatus.REJECTED.value:
            action = "vendor_reject"
        else:
            raise ValidationFailedError({"status": "must be 'accepted' or 'rejected'"})

        def effects(model: PurchaseOrderModel, now: datetime) -> None:
            model.vendor_response = {
                "status": status,
                "comments": comments,
                "responded_by": str(actor.user_id),
                "responded_by_role": actor.organization_role.value,
                "response_date": now.isoformat(),
            }
            if action == "vendor_accept":
                model.accepted_at = now
                model.accepted_by_id = actor.user_id

        return self._transition(
            po_id,
            TransitionRequest(
                action, actor, comments=comments,
                request_id=request_id, expected_version=expected_version,
            ),
            effects=effects,
        )

    def activate(
        self, po_id: UUID, actor: ActingUser, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[PurchaseOrder]:
        return self._transition(po_id, TransitionRequest(
            "activate", actor, request_id=request_id, expected_version=expected_version,
        ))

    def complete(
        self, po_id: UUID, actor: ActingUser, comments: str | None = None, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[PurchaseOrder]:
        return self._transition(po_id, TransitionRequest(
            "complete", actor, comments=comments,
            request_id=request_id, expected_version=expected_version,
        ))

    def cancel(
        self, po_id: UUID, actor: ActingUser, comments: str | None = None, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[PurchaseOrder]:
        return self._transition(po_id, TransitionRequest(
            "cancel", actor, comments=comments,
            request_id=request_id, expected_version=expected_version,
        ))

    # =========================================================================
    # Internals
    # =========================================================================

    def _transition(self, po_id, request: TransitionRequest, effects=None) -> OperationResult[PurchaseOrder]:
        with owned_transaction(self._session, f"po_{request.action}", po_id=str(po_id)):
            model = load_or_raise(self._session, PurchaseOrderModel, EntityType.PO.value, po_id)
            outcome = self._executor.execute(
                PURCHASE_ORDER_WORKFLOW,
                model,
                request,
                apply_effects=effects,
                related_entities=(
                    {"entity_type": EntityType.SOW.value, "entity_id": str(model.sow_id)},
                ),
            )
            return OperationResult(model.to_dto(), outcome.audit_entry, outcome.replayed)

    def _find_by_sow(self, sow_id: UUID) -> PurchaseOrderModel | None:
        return self._session.execute(
            select(PurchaseOrderModel).where(PurchaseOrderModel.sow_id == sow_id)
        ).scalar_one_or_none()

    def _validate(
        self,
        start_date: date,
        end_date: date,
        payment_terms: PaymentTerms,
        custom_payment_terms: str | None,
    ) -> dict[str, str]:
        errors: dict[str, str] = {}
        if start_date > end_date:
            errors["end_date"] = "End date must not be before start date"
        if payment_terms is PaymentTerms.CUSTOM and not _blank_to_none(custom_payment_terms):
            errors["custom_payment_terms"] = "Custom payment terms need a description"
        return errors

    def _check_deviation(
        self,
        po_amount: Decimal,
        sow_amount: Decimal,
        justification: str | None,
    ) -> Decimal:
        """Deviation percent; raises when it needs a justification that is missing."""
        threshold = self._linkage.deviation_threshold_percent
        deviation = deviation_percent(po_amount=po_amount, sow_amount=sow_amount)
        needs_note = requires_justification(
            po_amount=po_amount, sow_amount=sow_amount, threshold_percent=threshold
        )
        if needs_note and not _blank_to_none(justification):
            logger.warning("po_justification_missing", extra={
                "deviation_percent": str(round_money(deviation)),
                "threshold_percent": str(threshold),
            })
            raise JustificationRequiredError(str(round_money(deviation)), str(threshold))
        return deviation


def _po_number(now: datetime) -> str:
    return f"PO-{now:%Y%m%d}-{uuid4().hex[:6].upper()}"


def _blank_to_none(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()


def _plain(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, bool)):
        return value
    return str(value)

"""
SOW Service (``procure_modules.sow.service``).

Responsibility
--------------
Orchestrates Statement of Work operations -- drafting, internal approval,
hand-over to the vendor and the vendor's response -- by delegating state
changes to ``TransitionExecutor`` and authority decisions to
``procure_engines.authority``.

Architecture position
---------------------
**Modules layer** -- thin ERP glue.  ``SOWService`` is the sole public
entry point for SOW operations.  Imports the executor from the services
layer, as every entity module does.

Invariants enforced
-------------------
* Transaction boundary -- each public method commits on success and rolls
  back on any exception; the entity row, its audit entry and its ledger row
  are never committed separately.
* A client actor only acts on SOWs of its own client organization, a vendor
  actor only on SOWs addressed to its vendor organization.
* Draft edits are only possible in ``draft``.

Failure modes
-------------
* ``InvalidTransitionError``, ``UnauthorizedError``, ``ValidationFailedError``
  from the executor.
* ``EntityNotFoundError`` for an unknown SOW id.

Audit relevance
---------------
Creation, every draft edit and every transition write exactly one audit
entry.  Internal approvals and the vendor response are also kept on the row
for at-a-glance display.

Usage
-----
    service = SOWService(session, clock=clock)
    result = service.create(SOWDraft(...), actor)
    service.submit_for_pm_approval(result.entity.id, actor, comments="scope ok")
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procure_engines.authority import available_actions, can_create, can_update
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
    UnauthorizedError,
    ValidationFailedError,
)
from procure_kernel.logging_config import get_logger
from procure_modules._transaction import load_or_raise, owned_transaction
from procure_modules.sow.models import SOW, ResponseStatus, SOWApproval, SOWDraft, SOWStatus
from procure_modules.sow.orm import SOWModel
from procure_modules.sow.workflows import SOW_WORKFLOW
from procure_services.transition_executor import (
    OperationResult,
    TransitionExecutor,
    TransitionRequest,
)

logger = get_logger("modules.sow.service")


class SOWService:
    """
    Statement of Work operations.

    Transaction boundary: this service commits on success, rolls back on
    failure.  Clock is injectable for deterministic testing.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        executor: TransitionExecutor | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._executor = executor or TransitionExecutor(session, self._clock)

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, sow_id: UUID) -> SOW:
        return load_or_raise(self._session, SOWModel, EntityType.SOW.value, sow_id).to_dto()

    def list_for_organization(
        self,
        organization_id: UUID,
        status: SOWStatus | None = None,
    ) -> list[SOW]:
        """SOWs where the organization is either party, newest first."""
        stmt = select(SOWModel).where(
            (SOWModel.client_organization_id == organization_id)
            | (SOWModel.vendor_organization_id == organization_id)
        )
        if status is not None:
            stmt = stmt.where(SOWModel.status == status.value)
        stmt = stmt.order_by(SOWModel.created_at.desc())
        return [row.to_dto() for row in self._session.scalars(stmt)]

    def available_actions(self, sow_id: UUID, actor: ActingUser) -> tuple[str, ...]:
        """Actions the actor could perform now; drives UI button visibility."""
        model = load_or_raise(self._session, SOWModel, EntityType.SOW.value, sow_id)
        try:
            TransitionExecutor.check_tenancy(EntityType.SOW, "view", model, actor)
        except UnauthorizedError:
            return ()
        return available_actions(SOW_WORKFLOW, model.status, actor.organization_role)

    # =========================================================================
    # Drafting
    # =========================================================================

    def create(
        self,
        draft: SOWDraft,
        actor: ActingUser,
        *,
        request_id: str | None = None,
    ) -> OperationResult[SOW]:
        """Create an SOW in ``draft`` for the actor's client organization."""
        with owned_transaction(self._session, "sow_create", request_id=request_id):
            replay = self._executor.find_replay(EntityType.SOW, "create", request_id)
            if replay is not None:
                return OperationResult(self.get(replay.entity_id), replay, replayed=True)

            if not can_create(EntityType.SOW, actor.organization_role):
                raise UnauthorizedError(
                    EntityType.SOW.value, "create", actor.organization_role.value,
                    reason="requires one of: client_employee, client_owner",
                )
            errors = _validate_fields(draft.title, draft.start_date, draft.end_date)
            if errors:
                raise ValidationFailedError(errors)

            now = self._clock.now()
            model = SOWModel(
                title=draft.title.strip(),
                description=draft.description,
                requirement_id=draft.requirement_id,
                client_id=actor.organization_id,
                vendor_id=draft.vendor_id,
                client_organization_id=actor.organization_id,
                vendor_organization_id=draft.vendor_organization_id or draft.vendor_id,
                start_date=draft.start_date,
                end_date=draft.end_date,
                estimated_amount=draft.estimated_cost.amount,
                currency=draft.estimated_cost.currency,
                status=SOWStatus.DRAFT.value,
                approvals=[],
                vendor_response={"status": ResponseStatus.PENDING.value},
                workflow_history=[_history(SOWStatus.DRAFT.value, now, actor, "create")],
                created_at=now,
                updated_at=now,
                created_by_id=actor.user_id,
            )
            self._session.add(model)
            record = self._executor.record_mutation(
                EntityType.SOW,
                model,
                actor.to_dict(),
                "create",
                AuditActionType.CREATE,
                f"SOW created: {model.title}",
                request_id=request_id,
                new_state={"status": model.status},
                metadata={
                    "estimated_cost": draft.estimated_cost.to_dict(),
                    "vendor_id": str(draft.vendor_id),
                },
            )
            logger.info("sow_created", extra={
                "sow_id": str(model.id),
                "client_organization_id": str(model.client_organization_id),
                "vendor_organization_id": str(model.vendor_organization_id),
            })
            return OperationResult(model.to_dto(), record)

    def update(
        self,
        sow_id: UUID,
        actor: ActingUser,
        *,
        title: str | None = None,
        description: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        estimated_cost: MoneyAmount | None = None,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> OperationResult[SOW]:
        """Edit a draft SOW.  Each changed field is listed in the audit entry."""
        with owned_transaction(self._session, "sow_update", sow_id=str(sow_id)):
            model = load_or_raise(self._session, SOWModel, EntityType.SOW.value, sow_id)
            replay = self._executor.find_replay(EntityType.SOW, "update", request_id, sow_id)
            if replay is not None:
                return OperationResult(model.to_dto(), replay, replayed=True)

            self._executor.check_version(EntityType.SOW, model, expected_version)
            if not can_update(EntityType.SOW, actor.organization_role):
                raise UnauthorizedError(
                    EntityType.SOW.value, "update", actor.organization_role.value,
                    reason="requires one of: client_employee, client_owner",
                )
            TransitionExecutor.check_tenancy(EntityType.SOW, "update", model, actor)
            if model.status != SOWStatus.DRAFT.value:
                raise InvalidTransitionError(
                    EntityType.SOW.value, str(sow_id), model.status, "update",
                    reason="only draft SOWs can be edited",
                )

            errors = _validate_fields(
                title if title is not None else model.title,
                start_date or model.start_date,
                end_date or model.end_date,
            )
            if estimated_cost is not None and estimated_cost.currency != model.currency:
                errors["estimated_cost"] = (
                    f"currency {estimated_cost.currency} differs from {model.currency}"
                )
            if errors:
                raise ValidationFailedError(errors)

            requested = {
                "title": title.strip() if title is not None else None,
                "description": description,
                "start_date": start_date,
                "end_date": end_date,
                "estimated_amount": estimated_cost.amount if estimated_cost else None,
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

            previous_version = model.version
            model.updated_at = self._clock.now()
            model.updated_by_id = actor.user_id
            record = self._executor.record_mutation(
                EntityType.SOW,
                model,
                actor.to_dict(),
                "update",
                AuditActionType.UPDATE,
                f"SOW updated: {', '.join(c.field for c in changes)}",
                request_id=request_id,
                previous_state={"status": model.status, "version": previous_version},
                new_state={"status": model.status},
                changes=changes,
            )
            return OperationResult(model.to_dto(), record)

    # =========================================================================
    # Transitions
    # =========================================================================

    def submit(
        self, sow_id: UUID, actor: ActingUser, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[SOW]:
        return self._transition(sow_id, TransitionRequest(
            "submit", actor, request_id=request_id, expected_version=expected_version,
        ))

    def submit_for_pm_approval(
        self, sow_id: UUID, actor: ActingUser, comments: str | None, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[SOW]:
        """Route the SOW to the PM approver.  Comments must be non-blank."""
        return self._transition(sow_id, TransitionRequest(
            "submit_for_pm_approval", actor, comments=comments,
            request_id=request_id, expected_version=expected_version,
        ))

    def approve(
        self, sow_id: UUID, actor: ActingUser, comments: str | None = None, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[SOW]:
        return self._transition(
            sow_id,
            TransitionRequest(
                "approve", actor, comments=comments,
                request_id=request_id, expected_version=expected_version,
            ),
            effects=_record_approval(actor, "approved", comments),
        )

    def reject(
        self, sow_id: UUID, actor: ActingUser, comments: str | None, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[SOW]:
        """Send the SOW back to ``draft`` for rework."""
        return self._transition(
            sow_id,
            TransitionRequest(
                "reject", actor, comments=comments,
                request_id=request_id, expected_version=expected_version,
            ),
            effects=_record_approval(actor, "rejected", comments),
        )

    def send_to_vendor(
        self, sow_id: UUID, actor: ActingUser, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[SOW]:
        return self._transition(sow_id, TransitionRequest(
            "send_to_vendor", actor, request_id=request_id, expected_version=expected_version,
        ))

    def vendor_response(
        self,
        sow_id: UUID,
        actor: ActingUser,
        status: str,
        comments: str | None = None,
        proposed_changes: str | None = None,
        *,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> OperationResult[SOW]:
        """Record the vendor's ``accepted``/``rejected`` decision."""
        if status == ResponseStatus.ACCEPTED.value:
            action = "vendor_accept"
        elif status == ResponseStatus.REJECTED.value:
            action = "vendor_reject"
        else:
            raise ValidationFailedError({"status": "must be 'accepted' or 'rejected'"})

        def effects(model: SOWModel, now: datetime) -> None:
            model.vendor_response = {
                "status": status,
                "comments": comments,
                "proposed_changes": proposed_changes,
                "responded_by": str(actor.user_id),
                "responded_by_role": actor.organization_role.value,
                "response_date": now.isoformat(),
            }

        return self._transition(
            sow_id,
            TransitionRequest(
                action, actor, comments=comments,
                request_id=request_id, expected_version=expected_version,
            ),
            effects=effects,
        )

    def cancel(
        self, sow_id: UUID, actor: ActingUser, comments: str | None = None, *,
        expected_version: int | None = None, request_id: str | None = None,
    ) -> OperationResult[SOW]:
        return self._transition(sow_id, TransitionRequest(
            "cancel", actor, comments=comments,
            request_id=request_id, expected_version=expected_version,
        ))

    def _transition(self, sow_id, request: TransitionRequest, effects=None) -> OperationResult[SOW]:
        with owned_transaction(self._session, f"sow_{request.action}", sow_id=str(sow_id)):
            model = load_or_raise(self._session, SOWModel, EntityType.SOW.value, sow_id)
            outcome = self._executor.execute(SOW_WORKFLOW, model, request, apply_effects=effects)
            return OperationResult(model.to_dto(), outcome.audit_entry, outcome.replayed)


# =============================================================================
# Helpers
# =============================================================================


def _validate_fields(title: str | None, start_date: date, end_date: date) -> dict[str, str]:
    errors: dict[str, str] = {}
    if not title or not title.strip():
        errors["title"] = "Title is required"
    if start_date > end_date:
        errors["end_date"] = "End date must not be before start date"
    return errors


def _record_approval(actor: ActingUser, decision: str, comments: str | None):
    def effects(model: SOWModel, now: datetime) -> None:
        approval = SOWApproval(
            user_id=actor.user_id,
            role=actor.organization_role.value,
            decision=decision,
            decided_at=now,
            comments=comments,
        )
        model.approvals = [*(model.approvals or []), approval.to_dict()]
    return effects


def _history(status: str, now: datetime, actor: ActingUser, action: str) -> dict:
    return WorkflowHistoryEntry(
        status=status,
        timestamp=now,
        performed_by=str(actor.user_id),
        role=actor.organization_role.value,
        action=action,
    ).to_dict()


def _plain(value):
    """JSON-native rendering of a field value for the audit ``changes`` list."""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, bool)):
        return value
    return str(value)

"""
procure_services.transition_executor -- entity state transitions.

Responsibility:
    Executes one state transition of an SOW, PO or invoice: idempotent
    replay, optimistic version check, edge lookup, authority, payload guards,
    status mutation with workflow history, and exactly one audit entry.
    Thin coordinator -- delegates authority to the pure resolver, guard
    evaluation to GuardExecutor, audit writes to AuditLogService and replay
    detection to IdempotencyService.

Architecture position:
    Services layer.  May import from procure_engines/ (pure engines) and
    procure_kernel/ (domain, services, models, selectors).  Called by the
    entity services in procure_modules, which own the transaction boundary.

Invariants enforced:
    - Checks run in a fixed order before any mutation: replay, version,
      edge, authority, tenancy, guards.  A refused request leaves the entity
      and the audit log untouched.
    - Every applied transition flushes the entity update (a compare-and-swap
      on ``version``), its audit entry and its request-ledger row together.
    - A replayed request id returns the original audit entry and mutates
      nothing.

Failure modes:
    - InvalidTransitionError, UnauthorizedError, ValidationFailedError.
    - ConcurrencyConflictError on version mismatch or StaleDataError.
    - PersistenceFailureError on any other storage error.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Generic, Protocol, TypeVar
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from procure_engines.authority import denial_reason
from procure_kernel.domain.audit import AuditLogEntry, AuditLogRecord, FieldChange
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.domain.roles import ActingUser, UserType
from procure_kernel.domain.values import AuditActionType, EntityType, WorkflowHistoryEntry
from procure_kernel.domain.workflow import Guard, Workflow
from procure_kernel.exceptions import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    PersistenceFailureError,
    ProcureWorkflowError,
    UnauthorizedError,
    ValidationFailedError,
)
from procure_kernel.logging_config import LogContext, get_logger
from procure_kernel.selectors.audit_log_selector import AuditLogSelector
from procure_kernel.services.audit_log_service import AuditLogService
from procure_kernel.services.idempotency_service import IdempotencyService

logger = get_logger("services.transition_executor")

TRACE_TYPE_ENTITY_TRANSITION = "ENTITY_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_REPLAYED = "replayed"
OUTCOME_NO_TRANSITION = "no_transition"
OUTCOME_UNAUTHORIZED = "unauthorized"
OUTCOME_GUARD_FAILED = "guard_failed"
OUTCOME_CONFLICT = "concurrency_conflict"
OUTCOME_PERSISTENCE_FAILED = "persistence_failed"

ENTITY_LABELS = {
    EntityType.SOW: "SOW",
    EntityType.PO: "PO",
    EntityType.INVOICE: "Invoice",
    EntityType.WORKFLOW_CONFIGURATION: "Workflow configuration",
    EntityType.WORKFLOW_INSTANCE: "Workflow instance",
}


def _emit_transition_trace(
    workflow_name: str,
    action: str,
    entity_type: str,
    entity_id: UUID,
    from_state: str,
    outcome: str,
    reason: str,
    duration_ms: float,
    to_state: str | None = None,
) -> None:
    """Structured transition record; one per execute() call."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_ENTITY_TRANSITION,
        "workflow": workflow_name,
        "action": action,
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "from_state": from_state,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
    }
    if to_state is not None:
        record["to_state"] = to_state
    if outcome in (OUTCOME_SUCCESS, OUTCOME_REPLAYED):
        logger.info("transition_applied", extra=record)
    else:
        logger.warning("transition_rejected", extra=record)


# ---------------------------------------------------------------------------
# Guard evaluation (payload guards on transitions)
# ---------------------------------------------------------------------------


def _decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _non_blank(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _comments_present(context: Mapping[str, Any]) -> bool:
    return _non_blank(context.get("comments"))


def _reason_present(context: Mapping[str, Any]) -> bool:
    return _non_blank(context.get("reason"))


def _paid_amount_positive(context: Mapping[str, Any]) -> bool:
    amount = _decimal(context.get("paid_amount"))
    return amount is not None and amount.is_finite() and amount > 0


def _paid_date_present(context: Mapping[str, Any]) -> bool:
    return isinstance(context.get("paid_date"), date)


def _paid_amount_within_due(context: Mapping[str, Any]) -> bool:
    amount = _decimal(context.get("paid_amount"))
    due = _decimal(context.get("amount_due"))
    if amount is None or due is None:
        return False
    return amount <= due


def _credit_amount_valid(context: Mapping[str, Any]) -> bool:
    amount = _decimal(context.get("credit_amount"))
    due = _decimal(context.get("amount_due"))
    if amount is None or due is None or not amount.is_finite():
        return False
    return Decimal("0") < amount <= due


def _credit_note_absent(context: Mapping[str, Any]) -> bool:
    return not context.get("existing_credit_note")


class GuardExecutor:
    """Evaluates transition guards against the request context.

    Guards are declared on transitions (name + field). This executor holds
    the evaluation logic per guard name.
    """

    def __init__(self) -> None:
        self._evaluators: dict[str, Callable[[Mapping[str, Any]], bool]] = {}

    def register(self, guard_name: str, evaluator: Callable[[Mapping[str, Any]], bool]) -> None:
        self._evaluators[guard_name] = evaluator

    def evaluate(self, guard: Guard, context: Mapping[str, Any]) -> bool:
        """Returns True if the guard passes. Unknown guards fail closed."""
        fn = self._evaluators.get(guard.name)
        if fn is None:
            logger.warning("guard_no_evaluator", extra={"guard_name": guard.name})
            return False
        try:
            return bool(fn(context))
        except (TypeError, ValueError, ArithmeticError) as e:
            logger.warning(
                "guard_evaluation_error",
                extra={"guard_name": guard.name, "error": str(e)},
            )
            return False

    def failures(self, guards: Sequence[Guard], context: Mapping[str, Any]) -> dict[str, str]:
        """Field -> message for every failing guard."""
        return {
            guard.field: guard.description
            for guard in guards
            if not self.evaluate(guard, context)
        }


def default_guard_executor() -> GuardExecutor:
    """GuardExecutor with the built-in evaluators registered."""
    executor = GuardExecutor()
    executor.register("comments_present", _comments_present)
    executor.register("reason_present", _reason_present)
    executor.register("paid_amount_positive", _paid_amount_positive)
    executor.register("paid_date_present", _paid_date_present)
    executor.register("paid_amount_within_due", _paid_amount_within_due)
    executor.register("credit_amount_valid", _credit_amount_valid)
    executor.register("credit_note_absent", _credit_note_absent)
    return executor


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class WorkflowEntity(Protocol):
    """Structural shape of an ORM row the executor can transition."""
    id: UUID
    status: str
    version: int
    workflow_history: list[dict[str, Any]]
    client_organization_id: UUID
    vendor_organization_id: UUID
    updated_at: datetime
    updated_by_id: UUID | None


@dataclass(frozen=True)
class TransitionRequest:
    """One caller request to move an entity along an edge."""
    action: str
    actor: ActingUser
    comments: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)
    request_id: str | None = None
    expected_version: int | None = None


@dataclass(frozen=True)
class TransitionOutcome:
    entity_id: UUID
    from_state: str
    to_state: str
    audit_entry: AuditLogRecord
    replayed: bool = False


T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Updated entity DTO plus the audit entry its operation wrote."""
    entity: T
    audit_entry: AuditLogRecord
    replayed: bool = False


EffectFn = Callable[[Any, datetime], None]


class TransitionExecutor:
    """Applies table-driven transitions to workflow entities."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        guard_executor: GuardExecutor | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._guards = guard_executor or default_guard_executor()
        self._audit = AuditLogService(session)
        self._ledger = IdempotencyService(session)

    @property
    def clock(self) -> Clock:
        return self._clock

    # -- checks -----------------------------------------------------------

    def check_version(self, entity_type: EntityType, entity: Any, expected: int | None) -> None:
        if expected is not None and entity.version != expected:
            raise ConcurrencyConflictError(
                entity_type.value, str(entity.id), expected, entity.version
            )

    @staticmethod
    def check_tenancy(entity_type: EntityType, action: str, entity: Any, actor: ActingUser) -> None:
        """Client actors act on their own organization's entities, vendors likewise."""
        if actor.user_type is UserType.CLIENT:
            owner = entity.client_organization_id
        elif actor.user_type is UserType.VENDOR:
            owner = entity.vendor_organization_id
        else:
            return
        if owner != actor.organization_id:
            raise UnauthorizedError(
                entity_type.value,
                action,
                actor.organization_role.value,
                reason=f"organization {actor.organization_id} is not a party to this {entity_type.value}",
            )

    def find_replay(
        self,
        entity_type: EntityType,
        action: str,
        request_id: str | None,
        entity_id: UUID | None = None,
    ) -> AuditLogRecord | None:
        """The original audit entry of an already-processed request id."""
        processed = self._ledger.find_replay(request_id, entity_type.value, action, entity_id)
        if processed is None:
            return None
        return AuditLogSelector(self._session).get(processed.audit_log_id)

    # -- transitions ------------------------------------------------------

    def execute(
        self,
        workflow: Workflow,
        entity: WorkflowEntity,
        request: TransitionRequest,
        *,
        apply_effects: EffectFn | None = None,
        guard_context: Mapping[str, Any] | None = None,
        audit_metadata: Mapping[str, Any] | None = None,
        related_entities: Sequence[dict[str, str]] = (),
    ) -> TransitionOutcome:
        """
        Move ``entity`` along the ``request.action`` edge.

        ``apply_effects(entity, now)`` performs the transition's side effects
        (approvals, vendor response, payment tracking) after every check has
        passed and before the flush.
        """
        t0 = time.monotonic()
        # Read before any flush; a failed flush leaves the row unloadable.
        entity_id = entity.id
        entity_type = workflow.entity_type
        action = request.action
        actor = request.actor
        from_state = entity.status

        def reject(outcome: str, exc: ProcureWorkflowError) -> ProcureWorkflowError:
            _emit_transition_trace(
                workflow.name, action, entity_type.value, entity_id, from_state,
                outcome, str(exc), (time.monotonic() - t0) * 1000,
            )
            return exc

        with LogContext.bind(
            request_id=request.request_id,
            actor_id=actor.user_id,
            entity_type=entity_type.value,
            entity_id=entity_id,
            operation=action,
        ):
            replay = self.find_replay(entity_type, action, request.request_id, entity_id)
            if replay is not None:
                _emit_transition_trace(
                    workflow.name, action, entity_type.value, entity_id,
                    (replay.previous_state or {}).get("status", from_state),
                    OUTCOME_REPLAYED, "request id already processed",
                    (time.monotonic() - t0) * 1000,
                    to_state=(replay.new_state or {}).get("status"),
                )
                return TransitionOutcome(
                    entity_id=entity_id,
                    from_state=(replay.previous_state or {}).get("status", from_state),
                    to_state=(replay.new_state or {}).get("status", entity.status),
                    audit_entry=replay,
                    replayed=True,
                )

            try:
                self.check_version(entity_type, entity, request.expected_version)
            except ConcurrencyConflictError as exc:
                raise reject(OUTCOME_CONFLICT, exc)

            transition = workflow.find_transition(from_state, action)
            if transition is None:
                reason = (
                    "state is terminal"
                    if workflow.is_terminal(from_state)
                    else f"allowed actions: {', '.join(workflow.actions_from(from_state)) or 'none'}"
                )
                raise reject(
                    OUTCOME_NO_TRANSITION,
                    InvalidTransitionError(
                        entity_type.value, str(entity_id), from_state, action, reason
                    ),
                )

            denial = denial_reason(entity_type, from_state, action, actor.organization_role)
            if denial is not None:
                raise reject(
                    OUTCOME_UNAUTHORIZED,
                    UnauthorizedError(
                        entity_type.value, action, actor.organization_role.value, denial
                    ),
                )
            try:
                self.check_tenancy(entity_type, action, entity, actor)
            except UnauthorizedError as exc:
                raise reject(OUTCOME_UNAUTHORIZED, exc)

            context = {**request.payload, **(guard_context or {}), "comments": request.comments}
            errors = self._guards.failures(transition.guards, context)
            if errors:
                raise reject(OUTCOME_GUARD_FAILED, ValidationFailedError(errors))

            now = self._clock.now()
            previous_version = entity.version
            try:
                entity.status = transition.to_state
                if apply_effects is not None:
                    apply_effects(entity, now)
                entity.workflow_history = [
                    *(entity.workflow_history or []),
                    WorkflowHistoryEntry(
                        status=transition.to_state,
                        timestamp=now,
                        performed_by=str(actor.user_id),
                        role=actor.organization_role.value,
                        action=action,
                        comments=request.comments,
                    ).to_dict(),
                ]
                entity.updated_at = now
                entity.updated_by_id = actor.user_id
                self._session.flush()

                label = ENTITY_LABELS.get(entity_type, entity_type.value)
                if transition.from_state == transition.to_state:
                    description = f"{label} {action.replace('_', ' ')}"
                else:
                    description = (
                        f"{label} {action.replace('_', ' ')}: "
                        f"{transition.from_state} -> {transition.to_state}"
                    )
                record = self._audit.append(
                    AuditLogEntry(
                        entity_type=entity_type,
                        entity_id=entity_id,
                        action=description,
                        action_type=transition.audit_action_type,
                        performed_by=actor.to_dict(),
                        performed_at=now,
                        previous_state={"status": from_state, "version": previous_version},
                        new_state={"status": entity.status, "version": entity.version},
                        changes=(FieldChange("status", from_state, entity.status),),
                        comments=request.comments,
                        metadata={"workflow": workflow.name, **(audit_metadata or {})},
                        related_entities=tuple(related_entities),
                        client_organization_id=entity.client_organization_id,
                        vendor_organization_id=entity.vendor_organization_id,
                        version=entity.version,
                        request_id=request.request_id,
                    )
                )
                self._ledger.record(
                    request.request_id, entity_type.value, entity_id, action, record.id, now
                )
                self._session.flush()
            except StaleDataError as exc:
                raise reject(
                    OUTCOME_CONFLICT,
                    ConcurrencyConflictError(entity_type.value, str(entity_id), previous_version),
                ) from exc
            except SQLAlchemyError as exc:
                raise reject(
                    OUTCOME_PERSISTENCE_FAILED,
                    PersistenceFailureError(f"{entity_type.value}.{action}", str(exc)),
                ) from exc

            _emit_transition_trace(
                workflow.name, action, entity_type.value, entity_id, from_state,
                OUTCOME_SUCCESS, "applied", (time.monotonic() - t0) * 1000,
                to_state=transition.to_state,
            )
            return TransitionOutcome(
                entity_id=entity_id,
                from_state=from_state,
                to_state=transition.to_state,
                audit_entry=record,
            )

    # -- non-transition mutations -----------------------------------------

    def record_mutation(
        self,
        entity_type: EntityType,
        entity: Any,
        actor_snapshot: Mapping[str, Any],
        action: str,
        action_type: AuditActionType,
        description: str,
        *,
        request_id: str | None = None,
        previous_state: Mapping[str, Any] | None = None,
        new_state: Mapping[str, Any] | None = None,
        changes: Sequence[FieldChange] = (),
        comments: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        related_entities: Sequence[dict[str, str]] = (),
        system_generated: bool = False,
    ) -> AuditLogRecord:
        """
        Flush a create/update/step mutation already applied to ``entity`` and
        write its single audit entry and ledger row.
        """
        entity_id = entity.id
        now = self._clock.now()
        try:
            self._session.flush()
            if new_state is not None:
                new_state = {**new_state, "version": getattr(entity, "version", None)}
            record = self._audit.append(
                AuditLogEntry(
                    entity_type=entity_type,
                    entity_id=entity.id,
                    action=description,
                    action_type=action_type,
                    performed_by=dict(actor_snapshot),
                    performed_at=now,
                    previous_state=dict(previous_state) if previous_state is not None else None,
                    new_state=dict(new_state) if new_state is not None else None,
                    changes=tuple(changes),
                    comments=comments,
                    metadata=dict(metadata or {}),
                    related_entities=tuple(related_entities),
                    client_organization_id=getattr(entity, "client_organization_id", None),
                    vendor_organization_id=getattr(entity, "vendor_organization_id", None),
                    system_generated=system_generated,
                    version=getattr(entity, "version", None),
                    request_id=request_id,
                )
            )
            self._ledger.record(request_id, entity_type.value, entity.id, action, record.id, now)
            self._session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictError(entity_type.value, str(entity_id)) from exc
        except SQLAlchemyError as exc:
            raise PersistenceFailureError(f"{entity_type.value}.{action}", str(exc)) from exc
        return record

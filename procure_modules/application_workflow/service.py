"""
Application Workflow Service (``procure_modules.application_workflow.service``).

Responsibility
--------------
Configurable, step-ordered approval workflows for applications.
``WorkflowConfigurationService`` manages the named step lists (admin owners
only); ``WorkflowInstanceService`` starts instances, processes steps, cancels
instances and applies the escalations chosen by the sweep.

Architecture position
---------------------
**Modules layer** -- step authority comes from
``procure_engines.step_authority``; audit entries and the request ledger go
through ``TransitionExecutor.record_mutation``.

Invariants enforced
-------------------
* Steps carry unique positive orders and run in ascending order.  Parallel
  configurations open every step at once.
* At most one active default configuration per application-types set
  (``DefaultWorkflowConflictError``).
* A required step's rejection cancels the instance; the instance completes
  once no open required step remains.
* The sweep and a user cannot both change one instance version
  (``version_id_col``).
* Transaction boundary -- commit on success, rollback on any exception.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from procure_engines.escalation import InstanceClock
from procure_engines.step_authority import StepRole, can_process_step
from procure_kernel.domain.audit import FieldChange
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.domain.roles import ActingUser, OrganizationRole, system_actor_snapshot
from procure_kernel.domain.values import AuditActionType, EntityType
from procure_kernel.exceptions import (
    DefaultWorkflowConflictError,
    EntityNotFoundError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationFailedError,
    WorkflowConfigurationInUseError,
)
from procure_kernel.logging_config import get_logger
from procure_modules._transaction import load_or_raise, owned_transaction
from procure_modules.application_workflow.models import (
    ActionTaken,
    ApplicationType,
    ConfigurationDraft,
    InstanceStatus,
    StepStatus,
    WorkflowConfiguration,
    WorkflowInstance,
    WorkflowSettings,
    WorkflowStep,
)
from procure_modules.application_workflow.orm import (
    WorkflowConfigurationModel,
    WorkflowInstanceModel,
)
from procure_services.transition_executor import OperationResult, TransitionExecutor

logger = get_logger("modules.application_workflow.service")

_CONFIG = EntityType.WORKFLOW_CONFIGURATION
_INSTANCE = EntityType.WORKFLOW_INSTANCE

_OPEN = frozenset(s.value for s in (StepStatus.PENDING, StepStatus.IN_PROGRESS, StepStatus.ESCALATED))

_LIVE_INSTANCE = (InstanceStatus.ACTIVE.value, InstanceStatus.ESCALATED.value)

_STEP_AUDIT_TYPES = {
    ActionTaken.APPROVED: AuditActionType.APPROVAL,
    ActionTaken.REJECTED: AuditActionType.REJECTION,
    ActionTaken.ESCALATED: AuditActionType.ESCALATION,
}


def _types_key(application_types: Sequence[ApplicationType]) -> str:
    return ",".join(sorted(ApplicationType(t).value for t in application_types))


def _require_admin_owner(action: str, actor: ActingUser) -> None:
    if actor.organization_role is not OrganizationRole.ADMIN_OWNER:
        raise UnauthorizedError(
            _CONFIG.value, action, actor.organization_role.value,
            reason="requires admin_owner",
        )


def _validate_configuration(
    name: str,
    application_types: Sequence[ApplicationType],
    steps: Sequence[WorkflowStep],
    settings: WorkflowSettings,
) -> None:
    errors: dict[str, str] = {}
    if not name or not name.strip():
        errors["name"] = "Name is required"
    if not application_types:
        errors["application_types"] = "At least one application type is required"
    if not steps:
        errors["steps"] = "At least one step is required"
    else:
        orders = [s.order for s in steps]
        if any(o <= 0 for o in orders):
            errors["steps"] = "Step orders must be positive"
        elif len(set(orders)) != len(orders):
            errors["steps"] = "Step orders must be unique"
        elif any(not s.name or not s.name.strip() for s in steps):
            errors["steps"] = "Every step needs a name"
    if settings.max_processing_time < 0 or settings.auto_escalate_after < 0:
        errors["settings"] = "Processing and escalation times cannot be negative"
    if errors:
        raise ValidationFailedError(errors)


def _step_document(step: WorkflowStep) -> dict[str, Any]:
    return {
        **step.to_dict(),
        "status": StepStatus.PENDING.value,
        "assigned_to": None,
        "started_at": None,
        "completed_at": None,
        "performed_by": None,
        "action_taken": None,
        "comments": None,
    }


def _advance(steps: list[dict[str, Any]], parallel: bool, now: datetime) -> int | None:
    """
    Open the next reachable step(s), completing auto-advance steps on the way.

    Returns the current step order, or None when no open required step
    remains (remaining optional steps are skipped).
    """
    stamp = now.isoformat()
    while True:
        open_steps = [s for s in steps if s["status"] in _OPEN]
        if not any(s["required"] for s in open_steps):
            for s in open_steps:
                s["status"] = StepStatus.SKIPPED.value
                s["completed_at"] = stamp
            return None
        reached = open_steps if parallel else open_steps[:1]
        advanced = False
        for s in reached:
            if s["status"] == StepStatus.PENDING.value:
                s["status"] = StepStatus.IN_PROGRESS.value
                s["started_at"] = stamp
            if s["auto_advance"]:
                s["status"] = StepStatus.COMPLETED.value
                s["completed_at"] = stamp
                advanced = True
        if not advanced:
            return open_steps[0]["order"]


class WorkflowConfigurationService:
    """
    Admin-owner management of workflow configurations.

    Transaction boundary: this service commits on success, rolls back on
    failure.
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

    def get(self, configuration_id: UUID) -> WorkflowConfiguration:
        return self._load(configuration_id).to_dto()

    def list_configurations(
        self,
        *,
        is_active: bool | None = None,
        application_type: ApplicationType | None = None,
    ) -> list[WorkflowConfiguration]:
        stmt = select(WorkflowConfigurationModel).where(
            WorkflowConfigurationModel.deleted_at.is_(None)
        )
        if is_active is not None:
            stmt = stmt.where(WorkflowConfigurationModel.is_active == is_active)
        rows = self._session.scalars(stmt.order_by(WorkflowConfigurationModel.name))
        configs = [row.to_dto() for row in rows]
        if application_type is not None:
            configs = [c for c in configs if application_type in c.application_types]
        return configs

    def get_default(self, application_types: Sequence[ApplicationType]) -> WorkflowConfiguration | None:
        row = self._find_default(_types_key(application_types))
        return row.to_dto() if row is not None else None

    # =========================================================================
    # Mutations
    # =========================================================================

    def create(
        self,
        draft: ConfigurationDraft,
        actor: ActingUser,
        *,
        request_id: str | None = None,
    ) -> OperationResult[WorkflowConfiguration]:
        with owned_transaction(self._session, "workflow_configuration_create"):
            replay = self._executor.find_replay(_CONFIG, "create", request_id)
            if replay is not None:
                return OperationResult(self.get(replay.entity_id), replay, replayed=True)

            _require_admin_owner("create", actor)
            _validate_configuration(draft.name, draft.application_types, draft.steps, draft.settings)
            key = _types_key(draft.application_types)
            if draft.is_default:
                self._check_default_free(key, draft.application_types)

            now = self._clock.now()
            model = WorkflowConfigurationModel(
                name=draft.name.strip(),
                description=draft.description,
                is_active=True,
                is_default=draft.is_default,
                application_types=sorted(t.value for t in draft.application_types),
                application_types_key=key,
                steps=[s.to_dict() for s in sorted(draft.steps, key=lambda s: s.order)],
                settings=draft.settings.to_dict(),
                created_at=now,
                updated_at=now,
                created_by_id=actor.user_id,
            )
            self._session.add(model)
            record = self._executor.record_mutation(
                _CONFIG, model, actor.to_dict(), "create", AuditActionType.CREATE,
                f"Workflow configuration created: {model.name}",
                request_id=request_id,
                new_state=self._state(model),
                metadata={"step_count": len(model.steps)},
            )
            logger.info("workflow_configuration_created", extra={
                "configuration_id": str(model.id),
                "application_types": model.application_types,
                "is_default": model.is_default,
            })
            return OperationResult(model.to_dto(), record)

    def update(
        self,
        configuration_id: UUID,
        actor: ActingUser,
        *,
        name: str | None = None,
        description: str | None = None,
        application_types: Sequence[ApplicationType] | None = None,
        steps: Sequence[WorkflowStep] | None = None,
        settings: WorkflowSettings | None = None,
        is_active: bool | None = None,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> OperationResult[WorkflowConfiguration]:
        """Edit a configuration.  Running instances keep their own step copies."""
        with owned_transaction(
            self._session, "workflow_configuration_update", configuration_id=str(configuration_id)
        ):
            replay = self._executor.find_replay(_CONFIG, "update", request_id, configuration_id)
            if replay is not None:
                return OperationResult(self.get(configuration_id), replay, replayed=True)

            _require_admin_owner("update", actor)
            model = self._load(configuration_id)
            self._executor.check_version(_CONFIG, model, expected_version)

            current = model.to_dto()
            new_types = tuple(application_types) if application_types is not None else current.application_types
            new_steps = tuple(steps) if steps is not None else current.steps
            new_settings = settings if settings is not None else current.settings
            new_name = name if name is not None else current.name
            new_active = is_active if is_active is not None else current.is_active
            _validate_configuration(new_name, new_types, new_steps, new_settings)
            key = _types_key(new_types)
            if model.is_default and new_active:
                self._check_default_free(key, new_types, exclude=model.id)

            previous = self._state(model)
            changes: list[FieldChange] = []

            def assign(field_name: str, old: Any, new: Any) -> None:
                if old != new:
                    changes.append(FieldChange(field_name, old, new))
                    setattr(model, field_name, new)

            assign("name", model.name, new_name.strip())
            assign("description", model.description, description if description is not None else model.description)
            assign("application_types", model.application_types, sorted(t.value for t in new_types))
            model.application_types_key = key
            assign("steps", model.steps, [s.to_dict() for s in sorted(new_steps, key=lambda s: s.order)])
            assign("settings", model.settings, new_settings.to_dict())
            assign("is_active", model.is_active, new_active)
            if not changes:
                raise ValidationFailedError({"configuration": "No changes supplied"})

            model.updated_at = self._clock.now()
            model.updated_by_id = actor.user_id
            record = self._executor.record_mutation(
                _CONFIG, model, actor.to_dict(), "update", AuditActionType.UPDATE,
                f"Workflow configuration updated: {model.name}",
                request_id=request_id,
                previous_state=previous,
                new_state=self._state(model),
                changes=changes,
            )
            return OperationResult(model.to_dto(), record)

    def set_default(
        self,
        configuration_id: UUID,
        actor: ActingUser,
        *,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> OperationResult[WorkflowConfiguration]:
        with owned_transaction(
            self._session, "workflow_configuration_set_default", configuration_id=str(configuration_id)
        ):
            replay = self._executor.find_replay(_CONFIG, "set_default", request_id, configuration_id)
            if replay is not None:
                return OperationResult(self.get(configuration_id), replay, replayed=True)

            _require_admin_owner("set_default", actor)
            model = self._load(configuration_id)
            self._executor.check_version(_CONFIG, model, expected_version)
            if not model.is_active:
                raise ValidationFailedError({"is_active": "An inactive configuration cannot be the default"})
            if model.is_default:
                raise ValidationFailedError({"is_default": "Configuration is already the default"})
            self._check_default_free(
                model.application_types_key,
                [ApplicationType(t) for t in model.application_types],
                exclude=model.id,
            )

            previous = self._state(model)
            model.is_default = True
            model.updated_at = self._clock.now()
            model.updated_by_id = actor.user_id
            record = self._executor.record_mutation(
                _CONFIG, model, actor.to_dict(), "set_default", AuditActionType.UPDATE,
                f"Workflow configuration set as default: {model.name}",
                request_id=request_id,
                previous_state=previous,
                new_state=self._state(model),
                changes=(FieldChange("is_default", False, True),),
            )
            return OperationResult(model.to_dto(), record)

    def delete(
        self,
        configuration_id: UUID,
        actor: ActingUser,
        *,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> OperationResult[WorkflowConfiguration]:
        """
        Retire a configuration.

        The row stays for finished instances and the audit trail; it drops out
        of listings and can no longer start instances.
        """
        with owned_transaction(
            self._session, "workflow_configuration_delete", configuration_id=str(configuration_id)
        ):
            replay = self._executor.find_replay(_CONFIG, "delete", request_id, configuration_id)
            if replay is not None:
                return OperationResult(load_or_raise(
                    self._session, WorkflowConfigurationModel, _CONFIG.value, configuration_id
                ).to_dto(), replay, replayed=True)

            _require_admin_owner("delete", actor)
            model = self._load(configuration_id)
            self._executor.check_version(_CONFIG, model, expected_version)
            if model.is_default:
                raise ValidationFailedError({"is_default": "The default configuration cannot be deleted"})
            active = self._session.scalar(
                select(func.count())
                .select_from(WorkflowInstanceModel)
                .where(WorkflowInstanceModel.configuration_id == model.id)
                .where(WorkflowInstanceModel.status.in_(_LIVE_INSTANCE))
            )
            if active:
                raise WorkflowConfigurationInUseError(str(model.id), active)

            previous = self._state(model)
            now = self._clock.now()
            model.is_active = False
            model.deleted_at = now
            model.updated_at = now
            model.updated_by_id = actor.user_id
            record = self._executor.record_mutation(
                _CONFIG, model, actor.to_dict(), "delete", AuditActionType.DELETE,
                f"Workflow configuration deleted: {model.name}",
                request_id=request_id,
                previous_state=previous,
                new_state={**self._state(model), "deleted": True},
            )
            logger.info("workflow_configuration_deleted", extra={"configuration_id": str(model.id)})
            return OperationResult(model.to_dto(), record)

    # =========================================================================
    # Internal
    # =========================================================================

    def _load(self, configuration_id: UUID) -> WorkflowConfigurationModel:
        model = load_or_raise(
            self._session, WorkflowConfigurationModel, _CONFIG.value, configuration_id
        )
        if model.deleted_at is not None:
            raise EntityNotFoundError(_CONFIG.value, str(configuration_id))
        return model

    def _find_default(self, key: str, exclude: UUID | None = None) -> WorkflowConfigurationModel | None:
        stmt = (
            select(WorkflowConfigurationModel)
            .where(WorkflowConfigurationModel.application_types_key == key)
            .where(WorkflowConfigurationModel.is_default.is_(True))
            .where(WorkflowConfigurationModel.is_active.is_(True))
            .where(WorkflowConfigurationModel.deleted_at.is_(None))
        )
        if exclude is not None:
            stmt = stmt.where(WorkflowConfigurationModel.id != exclude)
        return self._session.scalars(stmt).first()

    def _check_default_free(
        self,
        key: str,
        application_types: Sequence[ApplicationType],
        exclude: UUID | None = None,
    ) -> None:
        existing = self._find_default(key, exclude)
        if existing is not None:
            raise DefaultWorkflowConflictError(
                sorted(ApplicationType(t).value for t in application_types), str(existing.id)
            )

    @staticmethod
    def _state(model: WorkflowConfigurationModel) -> dict[str, Any]:
        return {
            "name": model.name,
            "is_active": model.is_active,
            "is_default": model.is_default,
            "application_types": list(model.application_types),
            "step_count": len(model.steps),
        }


class WorkflowInstanceService:
    """
    Running workflow instances.

    ``escalation_targets`` maps a step role to the user who receives escalated
    instances of that role.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        executor: TransitionExecutor | None = None,
        escalation_targets: Mapping[str, UUID] | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._executor = executor or TransitionExecutor(session, self._clock)
        self._targets = dict(escalation_targets or {})

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, instance_id: UUID) -> WorkflowInstance:
        return load_or_raise(self._session, WorkflowInstanceModel, _INSTANCE.value, instance_id).to_dto()

    def list_instances(
        self,
        *,
        status: InstanceStatus | None = None,
        application_id: UUID | None = None,
    ) -> list[WorkflowInstance]:
        stmt = select(WorkflowInstanceModel)
        if status is not None:
            stmt = stmt.where(WorkflowInstanceModel.status == status.value)
        if application_id is not None:
            stmt = stmt.where(WorkflowInstanceModel.application_id == application_id)
        stmt = stmt.order_by(WorkflowInstanceModel.started_at)
        return [row.to_dto() for row in self._session.scalars(stmt)]

    def active_clocks(self) -> list[InstanceClock]:
        """Deadline inputs for every active instance."""
        stmt = select(WorkflowInstanceModel).where(
            WorkflowInstanceModel.status == InstanceStatus.ACTIVE.value
        )
        clocks = []
        for row in self._session.scalars(stmt):
            settings = WorkflowSettings.from_dict(row.settings)
            clocks.append(InstanceClock(
                instance_id=row.id,
                version=row.version,
                current_step=row.current_step,
                step_started_at=row.step_started_at,
                instance_started_at=row.started_at,
                auto_escalate_after_hours=settings.auto_escalate_after,
                max_processing_time_hours=settings.max_processing_time,
            ))
        return clocks

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start_instance(
        self,
        configuration_id: UUID,
        application_id: UUID,
        actor: ActingUser,
        *,
        request_id: str | None = None,
    ) -> OperationResult[WorkflowInstance]:
        """Copy the configuration's steps and open the first one."""
        with owned_transaction(
            self._session, "workflow_instance_start",
            configuration_id=str(configuration_id), application_id=str(application_id),
        ):
            replay = self._executor.find_replay(_INSTANCE, "start", request_id)
            if replay is not None:
                return OperationResult(self.get(replay.entity_id), replay, replayed=True)

            config = load_or_raise(
                self._session, WorkflowConfigurationModel, _CONFIG.value, configuration_id
            )
            if config.deleted_at is not None or not config.is_active:
                raise ValidationFailedError(
                    {"configuration_id": "Configuration is not active"}
                )

            settings = WorkflowSettings.from_dict(config.settings)
            now = self._clock.now()
            steps = [
                _step_document(WorkflowStep.from_dict(s))
                for s in sorted(config.steps, key=lambda s: s["order"])
            ]
            current = _advance(steps, settings.allow_parallel_processing, now)
            completed = current is None
            model = WorkflowInstanceModel(
                configuration_id=config.id,
                application_id=application_id,
                current_step=current if current is not None else steps[-1]["order"],
                status=(InstanceStatus.COMPLETED if completed else InstanceStatus.ACTIVE).value,
                steps=steps,
                settings=settings.to_dict(),
                started_at=now,
                step_started_at=now,
                completed_at=now if completed else None,
                created_at=now,
                updated_at=now,
                created_by_id=actor.user_id,
            )
            self._session.add(model)
            record = self._executor.record_mutation(
                _INSTANCE, model, actor.to_dict(), "start", AuditActionType.CREATE,
                f"Workflow instance started: {config.name}",
                request_id=request_id,
                new_state={"status": model.status, "current_step": model.current_step},
                related_entities=(
                    {"entity_type": _CONFIG.value, "entity_id": str(config.id)},
                    {"entity_type": "application", "entity_id": str(application_id)},
                ),
            )
            logger.info("workflow_instance_started", extra={
                "instance_id": str(model.id),
                "configuration_id": str(config.id),
                "application_id": str(application_id),
                "current_step": model.current_step,
            })
            return OperationResult(model.to_dto(), record)

    def process_step(
        self,
        instance_id: UUID,
        step_order: int,
        action: ActionTaken | str,
        actor: ActingUser,
        comments: str | None = None,
        *,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> OperationResult[WorkflowInstance]:
        with owned_transaction(
            self._session, "workflow_instance_process_step",
            instance_id=str(instance_id), step_order=step_order,
        ):
            replay = self._executor.find_replay(_INSTANCE, "process_step", request_id, instance_id)
            if replay is not None:
                return OperationResult(self.get(instance_id), replay, replayed=True)

            model = load_or_raise(self._session, WorkflowInstanceModel, _INSTANCE.value, instance_id)
            self._executor.check_version(_INSTANCE, model, expected_version)
            if model.status not in _LIVE_INSTANCE:
                raise InvalidTransitionError(
                    _INSTANCE.value, str(model.id), model.status, "process_step",
                    f"instance is {model.status}",
                )
            try:
                taken = ActionTaken(action)
            except ValueError:
                raise ValidationFailedError(
                    {"action": f"Unknown step action: {action}"}
                ) from None

            settings = WorkflowSettings.from_dict(model.settings)
            steps = copy.deepcopy(model.steps)
            step = next((s for s in steps if s["order"] == step_order), None)
            if step is None:
                raise ValidationFailedError({"step_order": f"No step with order {step_order}"})
            if step["status"] not in _OPEN:
                raise InvalidTransitionError(
                    _INSTANCE.value, str(model.id), model.status, "process_step",
                    f"step {step_order} is already {step['status']}",
                )

            skipped = []
            if not settings.allow_parallel_processing:
                earlier = [s for s in steps if s["status"] in _OPEN and s["order"] < step_order]
                blocking = next((s for s in earlier if s["required"]), None)
                if blocking is not None:
                    raise InvalidTransitionError(
                        _INSTANCE.value, str(model.id), model.status, "process_step",
                        f"step {blocking['order']} must be processed first",
                    )
                skipped = earlier

            self._check_step_authority(model, step, actor)
            if settings.require_comments and (not comments or not comments.strip()):
                raise ValidationFailedError({"comments": "Comments are required"})

            now = self._clock.now()
            stamp = now.isoformat()
            previous = {"status": model.status, "current_step": model.current_step, "version": model.version}
            for s in skipped:
                s["status"] = StepStatus.SKIPPED.value
                s["completed_at"] = stamp
            step["performed_by"] = str(actor.user_id)
            step["action_taken"] = taken.value
            step["comments"] = comments
            if step["started_at"] is None:
                step["started_at"] = stamp

            if taken is ActionTaken.ESCALATED:
                target = self._targets.get(StepRole(step["role"]).value)
                step["status"] = StepStatus.ESCALATED.value
                step["assigned_to"] = str(target) if target else None
                model.status = InstanceStatus.ESCALATED.value
                model.escalated_at = now
                model.escalated_to_id = target
                model.escalation_reason = comments or f"escalated by {actor.display_name}"
            elif taken is ActionTaken.REJECTED and step["required"]:
                step["status"] = StepStatus.COMPLETED.value
                step["completed_at"] = stamp
                for s in steps:
                    if s["status"] in _OPEN:
                        s["status"] = StepStatus.SKIPPED.value
                        s["completed_at"] = stamp
                model.status = InstanceStatus.CANCELLED.value
                model.completed_at = now
            else:
                step["status"] = StepStatus.COMPLETED.value
                step["completed_at"] = stamp
                model.status = InstanceStatus.ACTIVE.value
                current = _advance(steps, settings.allow_parallel_processing, now)
                if current is None:
                    model.status = InstanceStatus.COMPLETED.value
                    model.completed_at = now
                else:
                    if current != model.current_step:
                        model.step_started_at = now
                    model.current_step = current

            model.steps = steps
            model.updated_at = now
            model.updated_by_id = actor.user_id
            record = self._executor.record_mutation(
                _INSTANCE, model, actor.to_dict(), "process_step",
                _STEP_AUDIT_TYPES.get(taken, AuditActionType.STATUS_CHANGE),
                f"Workflow step {step_order} ({step['name']}) {taken.value}",
                request_id=request_id,
                previous_state=previous,
                new_state={"status": model.status, "current_step": model.current_step},
                changes=(FieldChange(f"steps.{step_order}.status", "open", step["status"]),),
                comments=comments,
                metadata={
                    "step_order": step_order,
                    "skipped_steps": [s["order"] for s in skipped],
                },
                related_entities=(
                    {"entity_type": "application", "entity_id": str(model.application_id)},
                ),
            )
            logger.info("workflow_step_processed", extra={
                "instance_id": str(model.id),
                "step_order": step_order,
                "action_taken": taken.value,
                "instance_status": model.status,
            })
            return OperationResult(model.to_dto(), record)

    def cancel_instance(
        self,
        instance_id: UUID,
        actor: ActingUser,
        comments: str | None = None,
        *,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> OperationResult[WorkflowInstance]:
        with owned_transaction(self._session, "workflow_instance_cancel", instance_id=str(instance_id)):
            replay = self._executor.find_replay(_INSTANCE, "cancel", request_id, instance_id)
            if replay is not None:
                return OperationResult(self.get(instance_id), replay, replayed=True)

            if actor.organization_role is not OrganizationRole.ADMIN_OWNER:
                raise UnauthorizedError(
                    _INSTANCE.value, "cancel", actor.organization_role.value,
                    reason="requires admin_owner",
                )
            model = load_or_raise(self._session, WorkflowInstanceModel, _INSTANCE.value, instance_id)
            self._executor.check_version(_INSTANCE, model, expected_version)
            if model.status not in _LIVE_INSTANCE:
                raise InvalidTransitionError(
                    _INSTANCE.value, str(model.id), model.status, "cancel", "state is terminal"
                )

            now = self._clock.now()
            previous = {"status": model.status, "current_step": model.current_step, "version": model.version}
            steps = copy.deepcopy(model.steps)
            for s in steps:
                if s["status"] in _OPEN:
                    s["status"] = StepStatus.SKIPPED.value
                    s["completed_at"] = now.isoformat()
            model.steps = steps
            model.status = InstanceStatus.CANCELLED.value
            model.completed_at = now
            model.updated_at = now
            model.updated_by_id = actor.user_id
            record = self._executor.record_mutation(
                _INSTANCE, model, actor.to_dict(), "cancel", AuditActionType.STATUS_CHANGE,
                f"Workflow instance cancelled: {previous['status']} -> cancelled",
                request_id=request_id,
                previous_state=previous,
                new_state={"status": model.status, "current_step": model.current_step},
                changes=(FieldChange("status", previous["status"], model.status),),
                comments=comments,
            )
            return OperationResult(model.to_dto(), record)

    def escalate(
        self,
        instance_id: UUID,
        *,
        reason: str,
        expected_version: int | None = None,
    ) -> OperationResult[WorkflowInstance]:
        """
        System escalation of an overdue instance, as chosen by the sweep.

        Raises ConcurrencyConflictError when the instance moved past
        ``expected_version`` and InvalidTransitionError when it is no longer
        active.
        """
        with owned_transaction(self._session, "workflow_instance_escalate", instance_id=str(instance_id)):
            model = load_or_raise(self._session, WorkflowInstanceModel, _INSTANCE.value, instance_id)
            self._executor.check_version(_INSTANCE, model, expected_version)
            if model.status != InstanceStatus.ACTIVE.value:
                raise InvalidTransitionError(
                    _INSTANCE.value, str(model.id), model.status, "escalate",
                    f"instance is {model.status}",
                )

            now = self._clock.now()
            previous = {"status": model.status, "current_step": model.current_step, "version": model.version}
            steps = copy.deepcopy(model.steps)
            step = next(s for s in steps if s["order"] == model.current_step)
            target = self._targets.get(StepRole(step["role"]).value)
            step["status"] = StepStatus.ESCALATED.value
            step["assigned_to"] = str(target) if target else None
            model.steps = steps
            model.status = InstanceStatus.ESCALATED.value
            model.escalated_at = now
            model.escalated_to_id = target
            model.escalation_reason = reason
            model.updated_at = now
            record = self._executor.record_mutation(
                _INSTANCE, model, system_actor_snapshot("escalation_sweep"), "escalate",
                AuditActionType.ESCALATION,
                f"Workflow instance escalated at step {model.current_step}",
                previous_state=previous,
                new_state={"status": model.status, "current_step": model.current_step},
                changes=(FieldChange("status", previous["status"], model.status),),
                comments=reason,
                metadata={"escalated_to": str(target) if target else None},
                system_generated=True,
            )
            return OperationResult(model.to_dto(), record)

    # =========================================================================
    # Internal
    # =========================================================================

    def _check_step_authority(
        self,
        model: WorkflowInstanceModel,
        step: dict[str, Any],
        actor: ActingUser,
    ) -> None:
        if model.status == InstanceStatus.ESCALATED.value:
            if actor.organization_role is OrganizationRole.ADMIN_OWNER:
                return
            if model.escalated_to_id is not None and actor.user_id == model.escalated_to_id:
                return
            raise UnauthorizedError(
                _INSTANCE.value, "process_step", actor.organization_role.value,
                reason="escalated instances are processed by the escalation target or an admin_owner",
            )
        if not can_process_step(step["role"], actor.organization_role):
            raise UnauthorizedError(
                _INSTANCE.value, "process_step", actor.organization_role.value,
                reason=f"step {step['order']} requires role {step['role']}",
            )

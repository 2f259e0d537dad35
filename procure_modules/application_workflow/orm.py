"""
SQLAlchemy ORM persistence for workflow configurations and instances.

Responsibility
--------------
Configurations store their ordered steps and settings as JSON.  Instances
copy the steps and settings at start, so editing a configuration never
changes a running instance.

Invariants enforced
-------------------
* ``application_types_key`` is the sorted, comma-joined application types;
  the default-configuration rule is checked against it.
* Both tables carry ``version`` as the mapper's version_id_col, so the
  escalation sweep and a user processing the same instance cannot both
  commit against the same version.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from procure_kernel.db.base import TrackedBase


class WorkflowConfigurationModel(TrackedBase):
    """Maps to ``WorkflowConfiguration``."""

    __tablename__ = "workflow_configurations"

    __table_args__ = (
        Index("idx_workflow_config_types", "application_types_key"),
        Index("idx_workflow_config_default", "is_default"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    application_types: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    application_types_key: Mapped[str] = mapped_column(String(100), nullable=False)
    steps: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    settings: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        from procure_modules.application_workflow.models import (
            ApplicationType,
            WorkflowConfiguration,
            WorkflowSettings,
            WorkflowStep,
        )

        return WorkflowConfiguration(
            id=self.id,
            name=self.name,
            application_types=tuple(ApplicationType(t) for t in self.application_types),
            steps=tuple(WorkflowStep.from_dict(s) for s in self.steps),
            settings=WorkflowSettings.from_dict(self.settings),
            description=self.description,
            is_active=self.is_active,
            is_default=self.is_default,
            version=self.version,
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class WorkflowInstanceModel(TrackedBase):
    """Maps to ``WorkflowInstance``."""

    __tablename__ = "workflow_instances"

    __table_args__ = (
        Index("idx_workflow_instance_status", "status"),
        Index("idx_workflow_instance_application", "application_id"),
        Index("idx_workflow_instance_config", "configuration_id"),
    )

    configuration_id: Mapped[UUID] = mapped_column(nullable=False)
    application_id: Mapped[UUID] = mapped_column(nullable=False)
    current_step: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="active")
    steps: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    settings: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    step_started_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escalated_to_id: Mapped[UUID | None]
    escalation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        from procure_modules.application_workflow.models import (
            InstanceStatus,
            WorkflowInstance,
            WorkflowSettings,
            WorkflowStepInstance,
        )

        return WorkflowInstance(
            id=self.id,
            configuration_id=self.configuration_id,
            application_id=self.application_id,
            current_step=self.current_step,
            status=InstanceStatus(self.status),
            steps=tuple(WorkflowStepInstance.from_dict(s) for s in self.steps),
            settings=WorkflowSettings.from_dict(self.settings),
            started_at=self.started_at,
            step_started_at=self.step_started_at,
            completed_at=self.completed_at,
            escalated_at=self.escalated_at,
            escalated_to=self.escalated_to_id,
            escalation_reason=self.escalation_reason,
            version=self.version,
        )

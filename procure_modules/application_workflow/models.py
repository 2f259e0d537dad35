"""
Application Workflow Domain Models.

The nouns of configurable approval workflows: a named configuration of
ordered steps plus settings, and the running instance binding it to one
application.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from procure_engines.step_authority import StepRole


class StepAction(Enum):
    """What a configured step asks its processor to do."""
    REVIEW = "review"
    APPROVE = "approve"
    REJECT = "reject"
    NOTIFY = "notify"
    ESCALATE = "escalate"
    INTERACT = "interact"
    REVOKE = "revoke"


class ApplicationType(Enum):
    CLIENT_APPLIED = "client_applied"
    VENDOR_APPLIED = "vendor_applied"
    BOTH = "both"


class StepStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    ESCALATED = "escalated"


class ActionTaken(Enum):
    """Outcome recorded when a step is processed."""
    APPROVED = "approved"
    REJECTED = "rejected"
    REVIEWED = "reviewed"
    ESCALATED = "escalated"
    NOTIFIED = "notified"


class InstanceStatus(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ESCALATED = "escalated"


@dataclass(frozen=True)
class WorkflowStep:
    """One configured step."""
    name: str
    order: int
    role: StepRole
    action: StepAction
    required: bool = True
    auto_advance: bool = False
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "order": self.order,
            "role": StepRole(self.role).value,
            "action": self.action.value,
            "required": self.required,
            "auto_advance": self.auto_advance,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowStep":
        return cls(
            name=data["name"],
            order=int(data["order"]),
            role=StepRole(data["role"]),
            action=StepAction(data["action"]),
            required=bool(data.get("required", True)),
            auto_advance=bool(data.get("auto_advance", False)),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class WorkflowSettings:
    """Processing rules; times are in hours, zero disables a limit."""
    allow_parallel_processing: bool = False
    max_processing_time: int = 72
    auto_escalate_after: int = 24
    require_comments: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "allow_parallel_processing": self.allow_parallel_processing,
            "max_processing_time": self.max_processing_time,
            "auto_escalate_after": self.auto_escalate_after,
            "require_comments": self.require_comments,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "WorkflowSettings":
        data = data or {}
        return cls(
            allow_parallel_processing=bool(data.get("allow_parallel_processing", False)),
            max_processing_time=int(data.get("max_processing_time", 72)),
            auto_escalate_after=int(data.get("auto_escalate_after", 24)),
            require_comments=bool(data.get("require_comments", False)),
        )


@dataclass(frozen=True)
class WorkflowConfiguration:
    id: UUID
    name: str
    application_types: tuple[ApplicationType, ...]
    steps: tuple[WorkflowStep, ...]
    settings: WorkflowSettings
    description: str | None = None
    is_active: bool = True
    is_default: bool = False
    version: int = 1
    created_by_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ConfigurationDraft:
    """Fields an admin owner supplies when creating a configuration."""
    name: str
    application_types: tuple[ApplicationType, ...]
    steps: tuple[WorkflowStep, ...]
    settings: WorkflowSettings = field(default_factory=WorkflowSettings)
    description: str | None = None
    is_default: bool = False


@dataclass(frozen=True)
class WorkflowStepInstance:
    """Runtime state of one step inside an instance."""
    order: int
    name: str
    role: str
    action: str
    required: bool
    auto_advance: bool
    status: StepStatus = StepStatus.PENDING
    assigned_to: UUID | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    performed_by: UUID | None = None
    action_taken: ActionTaken | None = None
    comments: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowStepInstance":
        return cls(
            order=int(data["order"]),
            name=data["name"],
            role=data["role"],
            action=data["action"],
            required=bool(data["required"]),
            auto_advance=bool(data["auto_advance"]),
            status=StepStatus(data["status"]),
            assigned_to=UUID(data["assigned_to"]) if data.get("assigned_to") else None,
            started_at=datetime.fromisoformat(data["started_at"]) if data.get("started_at") else None,
            completed_at=(
                datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None
            ),
            performed_by=UUID(data["performed_by"]) if data.get("performed_by") else None,
            action_taken=ActionTaken(data["action_taken"]) if data.get("action_taken") else None,
            comments=data.get("comments"),
        )


@dataclass(frozen=True)
class WorkflowInstance:
    id: UUID
    configuration_id: UUID
    application_id: UUID
    current_step: int
    status: InstanceStatus
    steps: tuple[WorkflowStepInstance, ...]
    settings: WorkflowSettings
    started_at: datetime
    step_started_at: datetime
    completed_at: datetime | None = None
    escalated_at: datetime | None = None
    escalated_to: UUID | None = None
    escalation_reason: str | None = None
    version: int = 1

    def step(self, order: int) -> WorkflowStepInstance | None:
        for s in self.steps:
            if s.order == order:
                return s
        return None

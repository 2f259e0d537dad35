"""
Application Workflow Module (``procure_modules.application_workflow``).

Configurable step-ordered approval workflows bound to applications: admin
owners define configurations, instances walk their steps in order and the
escalation sweep reassigns steps left waiting too long.
"""

from procure_modules.application_workflow.models import (
    ActionTaken,
    ApplicationType,
    ConfigurationDraft,
    InstanceStatus,
    StepAction,
    StepStatus,
    WorkflowConfiguration,
    WorkflowInstance,
    WorkflowSettings,
    WorkflowStep,
    WorkflowStepInstance,
)
from procure_modules.application_workflow.service import (
    WorkflowConfigurationService,
    WorkflowInstanceService,
)

__all__ = [
    "ActionTaken",
    "ApplicationType",
    "ConfigurationDraft",
    "InstanceStatus",
    "StepAction",
    "StepStatus",
    "WorkflowConfiguration",
    "WorkflowConfigurationService",
    "WorkflowInstance",
    "WorkflowInstanceService",
    "WorkflowSettings",
    "WorkflowStep",
    "WorkflowStepInstance",
]

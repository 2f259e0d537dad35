"""
SOW Workflows.

State machine for a Statement of Work: client drafting and internal
approval, then the vendor's accept or reject.
"""

from procure_kernel.domain.values import AuditActionType, EntityType
from procure_kernel.domain.workflow import Guard, Transition, Workflow, cancel_transitions
from procure_kernel.logging_config import get_logger

logger = get_logger("modules.sow.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

COMMENTS_PRESENT = Guard(
    name="comments_present",
    description="Comments are required",
    field="comments",
)


# -----------------------------------------------------------------------------
# SOW Workflow
# -----------------------------------------------------------------------------

SOW_STATES = (
    "draft",
    "submitted",
    "pm_approval_pending",
    "internal_approved",
    "sent_to_vendor",
    "vendor_accepted",
    "vendor_rejected",
    "cancelled",
)

SOW_TERMINAL_STATES = ("vendor_accepted", "vendor_rejected", "cancelled")

SOW_WORKFLOW = Workflow(
    name="sow",
    entity_type=EntityType.SOW,
    description="Statement of Work lifecycle",
    initial_state="draft",
    states=SOW_STATES,
    terminal_states=SOW_TERMINAL_STATES,
    transitions=(
        Transition("draft", "submitted", action="submit"),
        Transition("draft", "pm_approval_pending", action="submit_for_pm_approval", guards=(COMMENTS_PRESENT,)),
        Transition("submitted", "pm_approval_pending", action="submit_for_pm_approval", guards=(COMMENTS_PRESENT,)),
        Transition("pm_approval_pending", "internal_approved", action="approve", audit_action_type=AuditActionType.APPROVAL),
        Transition("submitted", "internal_approved", action="approve", audit_action_type=AuditActionType.APPROVAL),
        Transition("pm_approval_pending", "draft", action="reject", guards=(COMMENTS_PRESENT,), audit_action_type=AuditActionType.REJECTION),
        Transition("submitted", "draft", action="reject", guards=(COMMENTS_PRESENT,), audit_action_type=AuditActionType.REJECTION),
        Transition("internal_approved", "sent_to_vendor", action="send_to_vendor"),
        Transition("sent_to_vendor", "vendor_accepted", action="vendor_accept", audit_action_type=AuditActionType.APPROVAL),
        Transition("sent_to_vendor", "vendor_rejected", action="vendor_reject", guards=(COMMENTS_PRESENT,), audit_action_type=AuditActionType.REJECTION),
        *cancel_transitions(SOW_STATES, SOW_TERMINAL_STATES),
    ),
)

logger.info(
    "sow_workflow_registered",
    extra={
        "workflow_name": SOW_WORKFLOW.name,
        "state_count": len(SOW_WORKFLOW.states),
        "transition_count": len(SOW_WORKFLOW.transitions),
        "initial_state": SOW_WORKFLOW.initial_state,
    },
)

"""
Purchase Order Workflows.

State machine for purchase orders: finance approval on the client side,
acceptance by the vendor's account holder, then execution.
"""

from procure_kernel.domain.values import AuditActionType, EntityType
from procure_kernel.domain.workflow import Guard, Transition, Workflow, cancel_transitions
from procure_kernel.logging_config import get_logger

logger = get_logger("modules.po.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

COMMENTS_PRESENT = Guard(
    name="comments_present",
    description="Comments are required",
    field="comments",
)


# -----------------------------------------------------------------------------
# Purchase Order Workflow
# -----------------------------------------------------------------------------

PO_STATES = (
    "draft",
    "submitted",
    "finance_approved",
    "sent_to_vendor",
    "vendor_accepted",
    "vendor_rejected",
    "active",
    "completed",
    "cancelled",
)

PO_TERMINAL_STATES = ("vendor_rejected", "completed", "cancelled")

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    entity_type=EntityType.PO,
    description="Purchase order lifecycle",
    initial_state="draft",
    states=PO_STATES,
    terminal_states=PO_TERMINAL_STATES,
    transitions=(
        Transition("draft", "submitted", action="submit"),
        Transition("submitted", "finance_approved", action="finance_approve", audit_action_type=AuditActionType.APPROVAL),
        Transition("submitted", "draft", action="finance_reject", guards=(COMMENTS_PRESENT,), audit_action_type=AuditActionType.REJECTION),
        Transition("finance_approved", "sent_to_vendor", action="send_to_vendor"),
        Transition("sent_to_vendor", "vendor_accepted", action="vendor_accept", audit_action_type=AuditActionType.APPROVAL),
        Transition("sent_to_vendor", "vendor_rejected", action="vendor_reject", guards=(COMMENTS_PRESENT,), audit_action_type=AuditActionType.REJECTION),
        Transition("vendor_accepted", "active", action="activate"),
        Transition("active", "completed", action="complete"),
        *cancel_transitions(PO_STATES, PO_TERMINAL_STATES),
    ),
)

logger.info(
    "po_workflow_registered",
    extra={
        "workflow_name": PURCHASE_ORDER_WORKFLOW.name,
        "state_count": len(PURCHASE_ORDER_WORKFLOW.states),
        "transition_count": len(PURCHASE_ORDER_WORKFLOW.transitions),
        "initial_state": PURCHASE_ORDER_WORKFLOW.initial_state,
    },
)

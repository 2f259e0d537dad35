"""
Invoice Workflows.

State machine for vendor invoices: client approval, payment, and the
vendor's resubmission or credit note.
"""

from procure_kernel.domain.values import AuditActionType, EntityType
from procure_kernel.domain.workflow import Guard, Transition, Workflow, cancel_transitions
from procure_kernel.logging_config import get_logger

logger = get_logger("modules.invoice.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

REASON_PRESENT = Guard(
    name="reason_present",
    description="A reason is required",
    field="reason",
)

PAID_AMOUNT_POSITIVE = Guard(
    name="paid_amount_positive",
    description="Paid amount must be greater than zero",
    field="paid_amount",
)

PAID_DATE_PRESENT = Guard(
    name="paid_date_present",
    description="Paid date is required",
    field="paid_date",
)

PAID_AMOUNT_WITHIN_DUE = Guard(
    name="paid_amount_within_due",
    description="Paid amount exceeds the amount due",
    field="paid_amount",
)

CREDIT_AMOUNT_VALID = Guard(
    name="credit_amount_valid",
    description="Credit amount must be positive and not exceed the amount due",
    field="credit_amount",
)

CREDIT_NOTE_ABSENT = Guard(
    name="credit_note_absent",
    description="A credit note was already issued for this invoice",
    field="credit_note",
)

logger.info(
    "invoice_workflow_guards_defined",
    extra={
        "guards": [
            REASON_PRESENT.name,
            PAID_AMOUNT_POSITIVE.name,
            PAID_DATE_PRESENT.name,
            PAID_AMOUNT_WITHIN_DUE.name,
            CREDIT_AMOUNT_VALID.name,
            CREDIT_NOTE_ABSENT.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

INVOICE_STATES = ("pending", "approved", "rejected", "paid", "cancelled")

INVOICE_TERMINAL_STATES = ("paid", "cancelled")

_CREDIT_NOTE_GUARDS = (CREDIT_NOTE_ABSENT, CREDIT_AMOUNT_VALID, REASON_PRESENT)

INVOICE_WORKFLOW = Workflow(
    name="invoice",
    entity_type=EntityType.INVOICE,
    description="Vendor invoice lifecycle",
    initial_state="pending",
    states=INVOICE_STATES,
    terminal_states=INVOICE_TERMINAL_STATES,
    transitions=(
        Transition("pending", "approved", action="approve", audit_action_type=AuditActionType.APPROVAL),
        Transition("pending", "rejected", action="reject", guards=(REASON_PRESENT,), audit_action_type=AuditActionType.REJECTION),
        Transition(
            "approved", "paid", action="mark_paid",
            guards=(PAID_AMOUNT_POSITIVE, PAID_DATE_PRESENT, PAID_AMOUNT_WITHIN_DUE),
            audit_action_type=AuditActionType.PAYMENT,
        ),
        Transition("rejected", "pending", action="resubmit"),
        Transition("pending", "pending", action="issue_credit_note", guards=_CREDIT_NOTE_GUARDS, audit_action_type=AuditActionType.CREDIT_NOTE),
        Transition("approved", "approved", action="issue_credit_note", guards=_CREDIT_NOTE_GUARDS, audit_action_type=AuditActionType.CREDIT_NOTE),
        *cancel_transitions(INVOICE_STATES, INVOICE_TERMINAL_STATES),
    ),
)

logger.info(
    "invoice_workflow_registered",
    extra={
        "workflow_name": INVOICE_WORKFLOW.name,
        "state_count": len(INVOICE_WORKFLOW.states),
        "transition_count": len(INVOICE_WORKFLOW.transitions),
        "initial_state": INVOICE_WORKFLOW.initial_state,
    },
)

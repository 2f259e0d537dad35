"""
Module: procure_engines
Responsibility:
    Pure calculation engines for the approval workflow: the authority
    resolver, PO/SOW amount arithmetic, invoice due dates, generic workflow
    step authority and escalation deadlines.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procure_kernel/domain types (and sibling engine modules).
    MUST NOT import procure_services or procure_modules.

Invariants enforced:
    - Purity: engines never read the clock.  ``as_of`` and dates are passed in.
    - Decimal-only arithmetic for money.
    - Determinism: identical inputs always produce identical outputs.
"""

from procure_engines.amounts import (
    PaymentTracking,
    apply_credit_note,
    apply_invoice,
    apply_payment,
    deviation_percent,
    initial_tracking,
    release_invoice,
    requires_justification,
)
from procure_engines.authority import (
    AUTHORITY_TABLE,
    available_actions,
    can_create,
    can_perform,
    can_update,
    denial_reason,
    holder_of,
)
from procure_engines.due_dates import derive_due_date, is_overdue, pending_alerts
from procure_engines.escalation import (
    EscalationDue,
    InstanceClock,
    due_for_escalation,
    escalation_deadline,
)
from procure_engines.step_authority import StepRole, can_process_step, resolve_step_authority

__all__ = [
    "AUTHORITY_TABLE",
    "EscalationDue",
    "InstanceClock",
    "PaymentTracking",
    "StepRole",
    "apply_credit_note",
    "apply_invoice",
    "apply_payment",
    "available_actions",
    "can_create",
    "can_perform",
    "can_process_step",
    "can_update",
    "denial_reason",
    "derive_due_date",
    "deviation_percent",
    "due_for_escalation",
    "escalation_deadline",
    "holder_of",
    "initial_tracking",
    "is_overdue",
    "pending_alerts",
    "release_invoice",
    "requires_justification",
    "resolve_step_authority",
]

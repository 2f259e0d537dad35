"""
Values -- immutable, self-validating domain value objects.

Responsibility:
    Entity and audit-action vocabularies, the ``MoneyAmount`` pair used for
    SOW estimates, PO totals and invoice amounts, and the workflow history
    entry appended on every transition.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Failure modes:
    - ValueError on construction with a non-positive amount or an
      unsupported currency.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

SUPPORTED_CURRENCIES: frozenset[str] = frozenset({"USD", "EUR", "GBP", "INR"})


class EntityType(str, Enum):
    SOW = "sow"
    PO = "po"
    INVOICE = "invoice"
    PAYMENT = "payment"
    CREDIT_NOTE = "credit_note"
    WORKFLOW_CONFIGURATION = "workflow_configuration"
    WORKFLOW_INSTANCE = "workflow_instance"


class AuditActionType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    STATUS_CHANGE = "status_change"
    APPROVAL = "approval"
    REJECTION = "rejection"
    PAYMENT = "payment"
    CREDIT_NOTE = "credit_note"
    ESCALATION = "escalation"


KEY_ACTION_TYPES: frozenset[AuditActionType] = frozenset({
    AuditActionType.STATUS_CHANGE,
    AuditActionType.APPROVAL,
    AuditActionType.REJECTION,
    AuditActionType.PAYMENT,
    AuditActionType.ESCALATION,
})


@dataclass(frozen=True, slots=True)
class MoneyAmount:
    """
    Positive amount paired with its currency.

    Amounts are always Decimal; floats and strings are converted through
    ``str`` so 0.1 never turns into 0.1000000000000000055.
    """

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            try:
                object.__setattr__(self, "amount", Decimal(str(self.amount)))
            except (InvalidOperation, ValueError) as e:
                raise ValueError(f"Invalid amount: {self.amount}") from e
        if not self.amount.is_finite() or self.amount <= 0:
            raise ValueError(f"Amount must be positive: {self.amount}")
        code = (self.currency or "").upper().strip()
        if code not in SUPPORTED_CURRENCIES:
            raise ValueError(f"Unsupported currency: {self.currency}")
        object.__setattr__(self, "currency", code)

    def to_dict(self) -> dict[str, str]:
        return {"amount": str(self.amount), "currency": self.currency}


@dataclass(frozen=True)
class WorkflowHistoryEntry:
    """One step of an entity's status history."""

    status: str
    timestamp: datetime
    performed_by: str
    role: str
    action: str
    comments: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "performed_by": self.performed_by,
            "role": self.role,
            "action": self.action,
            "comments": self.comments,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowHistoryEntry:
        return cls(
            status=data["status"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            performed_by=data["performed_by"],
            role=data["role"],
            action=data["action"],
            comments=data.get("comments"),
        )

"""
SOW Domain Models.

The nouns of a Statement of Work: the proposal itself, its internal
approvals and the vendor's response.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from procure_kernel.domain.values import MoneyAmount, WorkflowHistoryEntry
from procure_kernel.logging_config import get_logger

logger = get_logger("modules.sow.models")


class SOWStatus(Enum):
    """SOW lifecycle states."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    PM_APPROVAL_PENDING = "pm_approval_pending"
    INTERNAL_APPROVED = "internal_approved"
    SENT_TO_VENDOR = "sent_to_vendor"
    VENDOR_ACCEPTED = "vendor_accepted"
    VENDOR_REJECTED = "vendor_rejected"
    CANCELLED = "cancelled"


class ResponseStatus(Enum):
    """Counterparty decision on an SOW or PO."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SOWApproval:
    """One internal approval decision."""
    user_id: UUID
    role: str
    decision: str  # approved | rejected
    decided_at: datetime
    comments: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": str(self.user_id),
            "role": self.role,
            "decision": self.decision,
            "decided_at": self.decided_at.isoformat(),
            "comments": self.comments,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SOWApproval":
        return cls(
            user_id=UUID(data["user_id"]),
            role=data["role"],
            decision=data["decision"],
            decided_at=datetime.fromisoformat(data["decided_at"]),
            comments=data.get("comments"),
        )


@dataclass(frozen=True)
class VendorResponse:
    """The counterparty's answer once a document has been sent to it."""
    status: ResponseStatus = ResponseStatus.PENDING
    comments: str | None = None
    proposed_changes: str | None = None
    responded_by: UUID | None = None
    responded_by_role: str | None = None
    response_date: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "comments": self.comments,
            "proposed_changes": self.proposed_changes,
            "responded_by": str(self.responded_by) if self.responded_by else None,
            "responded_by_role": self.responded_by_role,
            "response_date": self.response_date.isoformat() if self.response_date else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "VendorResponse":
        if not data:
            return cls()
        return cls(
            status=ResponseStatus(data.get("status", "pending")),
            comments=data.get("comments"),
            proposed_changes=data.get("proposed_changes"),
            responded_by=UUID(data["responded_by"]) if data.get("responded_by") else None,
            responded_by_role=data.get("responded_by_role"),
            response_date=(
                datetime.fromisoformat(data["response_date"])
                if data.get("response_date")
                else None
            ),
        )


@dataclass(frozen=True)
class SOW:
    """A Statement of Work."""
    id: UUID
    title: str
    description: str
    client_id: UUID
    vendor_id: UUID
    client_organization_id: UUID
    vendor_organization_id: UUID
    start_date: date
    end_date: date
    estimated_cost: MoneyAmount
    status: SOWStatus = SOWStatus.DRAFT
    requirement_id: UUID | None = None
    approvals: tuple[SOWApproval, ...] = ()
    vendor_response: VendorResponse = field(default_factory=VendorResponse)
    workflow_history: tuple[WorkflowHistoryEntry, ...] = ()
    version: int = 1
    created_by_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            SOWStatus.VENDOR_ACCEPTED,
            SOWStatus.VENDOR_REJECTED,
            SOWStatus.CANCELLED,
        )


@dataclass(frozen=True)
class SOWDraft:
    """Fields a client supplies when creating an SOW."""
    title: str
    vendor_id: UUID
    start_date: date
    end_date: date
    estimated_cost: MoneyAmount
    description: str = ""
    requirement_id: UUID | None = None
    vendor_organization_id: UUID | None = None  # defaults to vendor_id

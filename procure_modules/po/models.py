"""
Purchase Order Domain Models.

The nouns of a purchase order: the committed order against an accepted SOW,
its finance approval and its payment tracking.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from procure_kernel.domain.values import MoneyAmount, WorkflowHistoryEntry
from procure_kernel.logging_config import get_logger
from procure_modules.sow.models import VendorResponse

logger = get_logger("modules.po.models")


class POStatus(Enum):
    """Purchase order lifecycle states."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    FINANCE_APPROVED = "finance_approved"
    SENT_TO_VENDOR = "sent_to_vendor"
    VENDOR_ACCEPTED = "vendor_accepted"
    VENDOR_REJECTED = "vendor_rejected"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Invoices may be raised against a PO in these states
INVOICEABLE_STATUSES = frozenset({POStatus.VENDOR_ACCEPTED, POStatus.ACTIVE})


class PaymentTerms(Enum):
    NET_15 = "net_15"
    NET_30 = "net_30"
    NET_45 = "net_45"
    NET_60 = "net_60"
    IMMEDIATE = "immediate"
    CUSTOM = "custom"


@dataclass(frozen=True)
class FinanceApproval:
    status: str = "pending"  # pending | approved | rejected
    comments: str | None = None
    decided_at: datetime | None = None
    user_id: UUID | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "FinanceApproval":
        if not data:
            return cls()
        return cls(
            status=data.get("status", "pending"),
            comments=data.get("comments"),
            decided_at=datetime.fromisoformat(data["date"]) if data.get("date") else None,
            user_id=UUID(data["user_id"]) if data.get("user_id") else None,
        )


@dataclass(frozen=True)
class POPaymentTracking:
    """Invoice and payment roll-up against the PO total."""
    total_invoiced: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    remaining_amount: Decimal = Decimal("0")
    last_payment_date: date | None = None


@dataclass(frozen=True)
class PurchaseOrder:
    """A purchase order raised from one accepted SOW."""
    id: UUID
    po_number: str
    sow_id: UUID
    client_id: UUID
    vendor_id: UUID
    client_organization_id: UUID
    vendor_organization_id: UUID
    start_date: date
    end_date: date
    total_amount: MoneyAmount
    payment_terms: PaymentTerms
    status: POStatus = POStatus.DRAFT
    custom_payment_terms: str | None = None
    justification: str | None = None
    notes: str | None = None
    finance_approval: FinanceApproval = field(default_factory=FinanceApproval)
    vendor_response: VendorResponse = field(default_factory=VendorResponse)
    payment_tracking: POPaymentTracking = field(default_factory=POPaymentTracking)
    accepted_at: datetime | None = None
    accepted_by_id: UUID | None = None
    workflow_history: tuple[WorkflowHistoryEntry, ...] = ()
    version: int = 1
    created_by_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_invoiceable(self) -> bool:
        return self.status in INVOICEABLE_STATUSES


@dataclass(frozen=True)
class PODraft:
    """Fields a client owner supplies when raising a PO from an SOW."""
    sow_id: UUID
    start_date: date
    end_date: date
    total_amount: MoneyAmount
    payment_terms: PaymentTerms = PaymentTerms.NET_30
    custom_payment_terms: str | None = None
    justification: str | None = None
    notes: str | None = None
    vendor_id: UUID | None = None  # derived from the SOW; checked when supplied

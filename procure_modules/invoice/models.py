"""
Invoice Domain Models.

The nouns of vendor billing: invoices against a PO, their payment details,
credit notes and reminder alerts.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from procure_engines.amounts import amount_due
from procure_engines.due_dates import is_overdue
from procure_kernel.domain.values import MoneyAmount, WorkflowHistoryEntry
from procure_kernel.logging_config import get_logger

logger = get_logger("modules.invoice.models")


class InvoiceStatus(Enum):
    """Invoice payment states.  ``overdue`` is derived, never stored."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentMethod(Enum):
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    OTHER = "other"


class AlertType(Enum):
    DUE_DATE_APPROACHING = "due_date_approaching"
    OVERDUE = "overdue"
    PAYMENT_RECEIVED = "payment_received"
    CREDIT_NOTE_ISSUED = "credit_note_issued"


@dataclass(frozen=True)
class InvoiceFile:
    """Metadata of an uploaded invoice document; storage is external."""
    original_name: str
    file_size: int
    file_type: str
    file_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_name": self.original_name,
            "file_size": self.file_size,
            "file_type": self.file_type,
            "file_id": self.file_id,
        }


@dataclass(frozen=True)
class PaymentRecord:
    """What the client owner supplies when marking an invoice paid."""
    paid_amount: Decimal
    paid_date: date
    method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    transaction_id: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class PaymentDetails:
    paid_amount: Decimal
    paid_date: date
    method: PaymentMethod
    transaction_id: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class CreditNote:
    amount: Decimal
    reason: str
    created_at: datetime
    created_by: UUID


@dataclass(frozen=True)
class ApprovalDetails:
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    rejected_by: UUID | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None


@dataclass(frozen=True)
class InvoiceAlert:
    date: datetime
    type: AlertType
    message: str
    is_read: bool = False


@dataclass(frozen=True)
class POValidation:
    """Snapshot of the PO at invoice creation."""
    po_status: str
    po_accepted_date: datetime | None = None
    po_accepted_by: UUID | None = None


@dataclass(frozen=True)
class Invoice:
    """A vendor invoice against a PO."""
    id: UUID
    invoice_number: str
    po_id: UUID
    client_id: UUID
    vendor_id: UUID
    client_organization_id: UUID
    vendor_organization_id: UUID
    invoice_date: date
    due_date: date
    invoice_amount: MoneyAmount
    work_summary: str
    po_validation: POValidation
    status: InvoiceStatus = InvoiceStatus.PENDING
    invoice_file: InvoiceFile | None = None
    payment_details: PaymentDetails | None = None
    credit_note: CreditNote | None = None
    approval_details: ApprovalDetails = field(default_factory=ApprovalDetails)
    alerts: tuple[InvoiceAlert, ...] = ()
    workflow_history: tuple[WorkflowHistoryEntry, ...] = ()
    version: int = 1
    created_by_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def amount_due(self) -> Decimal:
        """Invoice amount net of any credit note."""
        credit = self.credit_note.amount if self.credit_note else None
        return amount_due(self.invoice_amount.amount, credit)

    def is_overdue(self, as_of: date) -> bool:
        return is_overdue(self.due_date, self.status.value, as_of)


@dataclass(frozen=True)
class InvoiceDraft:
    """Fields a vendor supplies when raising an invoice."""
    po_id: UUID
    invoice_date: date
    invoice_amount: MoneyAmount
    work_summary: str
    due_date: date | None = None  # required for custom payment terms
    invoice_file: InvoiceFile | None = None
    vendor_id: UUID | None = None  # derived from the PO; checked when supplied

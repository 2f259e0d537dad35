"""
SQLAlchemy ORM persistence for invoices.

Payment details, credit note, approval details, alerts and the PO
validation snapshot are JSON documents replaced wholesale by the services
layer.  ``version`` is the mapper's version_id_col.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Date, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from procure_kernel.db.base import TrackedBase


def _opt_decimal(value):
    return Decimal(value) if value is not None else None


def _opt_datetime(value):
    return datetime.fromisoformat(value) if value else None


def _opt_uuid(value):
    return UUID(value) if value else None


class InvoiceModel(TrackedBase):
    """
    An invoice row.

    Maps to the ``Invoice`` DTO in ``procure_modules.invoice.models``.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoice_number"),
        Index("idx_invoice_po", "po_id"),
        Index("idx_invoice_status", "status"),
        Index("idx_invoice_due_date", "due_date"),
        Index("idx_invoice_client_org", "client_organization_id"),
        Index("idx_invoice_vendor_org", "vendor_organization_id"),
    )

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    po_id: Mapped[UUID] = mapped_column(nullable=False)
    client_id: Mapped[UUID] = mapped_column(nullable=False)
    vendor_id: Mapped[UUID] = mapped_column(nullable=False)
    client_organization_id: Mapped[UUID] = mapped_column(nullable=False)
    vendor_organization_id: Mapped[UUID] = mapped_column(nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    invoice_amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    work_summary: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    invoice_file: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    payment_details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    credit_note: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    approval_details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    alerts: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    po_validation: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    workflow_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def credit_amount(self) -> Decimal | None:
        return _opt_decimal((self.credit_note or {}).get("amount"))

    def to_dto(self):
        from procure_kernel.domain.values import MoneyAmount, WorkflowHistoryEntry
        from procure_modules.invoice.models import (
            AlertType,
            ApprovalDetails,
            CreditNote,
            Invoice,
            InvoiceAlert,
            InvoiceFile,
            InvoiceStatus,
            PaymentDetails,
            PaymentMethod,
            POValidation,
        )

        payment = None
        if self.payment_details:
            p = self.payment_details
            payment = PaymentDetails(
                paid_amount=Decimal(p["paid_amount"]),
                paid_date=date.fromisoformat(p["paid_date"]),
                method=PaymentMethod(p["method"]),
                transaction_id=p.get("transaction_id"),
                notes=p.get("notes"),
            )
        credit = None
        if self.credit_note:
            c = self.credit_note
            credit = CreditNote(
                amount=Decimal(c["amount"]),
                reason=c["reason"],
                created_at=datetime.fromisoformat(c["created_at"]),
                created_by=UUID(c["created_by"]),
            )
        a = self.approval_details or {}
        v = self.po_validation or {}

        return Invoice(
            id=self.id,
            invoice_number=self.invoice_number,
            po_id=self.po_id,
            client_id=self.client_id,
            vendor_id=self.vendor_id,
            client_organization_id=self.client_organization_id,
            vendor_organization_id=self.vendor_organization_id,
            invoice_date=self.invoice_date,
            due_date=self.due_date,
            invoice_amount=MoneyAmount(self.invoice_amount, self.currency),
            work_summary=self.work_summary,
            po_validation=POValidation(
                po_status=v.get("po_status", ""),
                po_accepted_date=_opt_datetime(v.get("po_accepted_date")),
                po_accepted_by=_opt_uuid(v.get("po_accepted_by")),
            ),
            status=InvoiceStatus(self.status),
            invoice_file=InvoiceFile(**self.invoice_file) if self.invoice_file else None,
            payment_details=payment,
            credit_note=credit,
            approval_details=ApprovalDetails(
                approved_by=_opt_uuid(a.get("approved_by")),
                approved_at=_opt_datetime(a.get("approved_at")),
                rejected_by=_opt_uuid(a.get("rejected_by")),
                rejected_at=_opt_datetime(a.get("rejected_at")),
                rejection_reason=a.get("rejection_reason"),
            ),
            alerts=tuple(
                InvoiceAlert(
                    date=datetime.fromisoformat(alert["date"]),
                    type=AlertType(alert["type"]),
                    message=alert["message"],
                    is_read=alert.get("is_read", False),
                )
                for alert in self.alerts or ()
            ),
            workflow_history=tuple(
                WorkflowHistoryEntry.from_dict(h) for h in self.workflow_history or ()
            ),
            version=self.version,
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.invoice_number} [{self.status}] v{self.version}>"

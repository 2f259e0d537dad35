"""
SQLAlchemy ORM persistence for purchase orders.

Responsibility
--------------
Database-backed persistence for POs including the payment tracking
roll-up that invoices update.

Architecture position
---------------------
**Modules layer** -- ORM model consumed by ``PurchaseOrderService`` and,
for payment tracking, ``InvoiceService``.  Inherits from ``TrackedBase``.

Invariants enforced
-------------------
* ``sow_id`` is unique: at most one PO per SOW, backed by the database.
* ``po_number`` is unique.
* All monetary fields use ``Decimal`` (Numeric(38,9)) -- NEVER float.
* ``version`` is the mapper's version_id_col, so an invoice payment and a
  concurrent PO transition cannot both apply against the same version.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Date, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from procure_engines.amounts import PaymentTracking
from procure_kernel.db.base import TrackedBase


class PurchaseOrderModel(TrackedBase):
    """
    A purchase order row.

    Maps to the ``PurchaseOrder`` DTO in ``procure_modules.po.models``.
    """

    __tablename__ = "purchase_orders"

    __table_args__ = (
        UniqueConstraint("sow_id", name="uq_po_sow"),
        UniqueConstraint("po_number", name="uq_po_number"),
        Index("idx_po_status", "status"),
        Index("idx_po_client_org", "client_organization_id"),
        Index("idx_po_vendor_org", "vendor_organization_id"),
    )

    po_number: Mapped[str] = mapped_column(String(50), nullable=False)
    sow_id: Mapped[UUID] = mapped_column(nullable=False)
    client_id: Mapped[UUID] = mapped_column(nullable=False)
    vendor_id: Mapped[UUID] = mapped_column(nullable=False)
    client_organization_id: Mapped[UUID] = mapped_column(nullable=False)
    vendor_organization_id: Mapped[UUID] = mapped_column(nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_terms: Mapped[str] = mapped_column(String(50), nullable=False)
    custom_payment_terms: Mapped[str | None] = mapped_column(Text, nullable=True)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")
    finance_approval: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    vendor_response: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    accepted_by_id: Mapped[UUID | None]

    # Payment tracking
    total_invoiced: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)
    last_payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    workflow_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def tracking(self) -> PaymentTracking:
        return PaymentTracking(
            total_amount=self.total_amount,
            total_invoiced=self.total_invoiced,
            total_paid=self.total_paid,
            remaining_amount=self.remaining_amount,
        )

    def apply_tracking(self, tracking: PaymentTracking) -> None:
        self.total_invoiced = tracking.total_invoiced
        self.total_paid = tracking.total_paid
        self.remaining_amount = tracking.remaining_amount

    def to_dto(self):
        from procure_kernel.domain.values import MoneyAmount, WorkflowHistoryEntry
        from procure_modules.po.models import (
            FinanceApproval,
            PaymentTerms,
            POPaymentTracking,
            POStatus,
            PurchaseOrder,
        )
        from procure_modules.sow.models import VendorResponse

        return PurchaseOrder(
            id=self.id,
            po_number=self.po_number,
            sow_id=self.sow_id,
            client_id=self.client_id,
            vendor_id=self.vendor_id,
            client_organization_id=self.client_organization_id,
            vendor_organization_id=self.vendor_organization_id,
            start_date=self.start_date,
            end_date=self.end_date,
            total_amount=MoneyAmount(self.total_amount, self.currency),
            payment_terms=PaymentTerms(self.payment_terms),
            status=POStatus(self.status),
            custom_payment_terms=self.custom_payment_terms,
            justification=self.justification,
            notes=self.notes,
            finance_approval=FinanceApproval.from_dict(self.finance_approval),
            vendor_response=VendorResponse.from_dict(self.vendor_response),
            payment_tracking=POPaymentTracking(
                total_invoiced=self.total_invoiced,
                total_paid=self.total_paid,
                remaining_amount=self.remaining_amount,
                last_payment_date=self.last_payment_date,
            ),
            accepted_at=self.accepted_at,
            accepted_by_id=self.accepted_by_id,
            workflow_history=tuple(
                WorkflowHistoryEntry.from_dict(h) for h in self.workflow_history or ()
            ),
            version=self.version,
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.po_number} [{self.status}] v{self.version}>"

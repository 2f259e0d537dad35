"""
SQLAlchemy ORM persistence for Statements of Work.

Responsibility
--------------
Database-backed persistence for SOWs.  Approvals, the vendor response and
the workflow history are stored as JSON documents on the row; they are only
ever replaced wholesale by the services layer.

Architecture position
---------------------
**Modules layer** -- ORM model consumed by ``SOWService``.  Inherits from
``TrackedBase`` (kernel db layer).

Invariants enforced
-------------------
* ``estimated_amount`` is ``Decimal`` (Numeric(38,9)) -- NEVER float.
* ``version`` is the mapper's version_id_col; every UPDATE is a
  compare-and-swap on the version read.
* Status stored as String(50).
"""

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Date, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from procure_kernel.db.base import TrackedBase


class SOWModel(TrackedBase):
    """
    A Statement of Work row.

    Maps to the ``SOW`` DTO in ``procure_modules.sow.models``.
    """

    __tablename__ = "sows"

    __table_args__ = (
        Index("idx_sow_status", "status"),
        Index("idx_sow_client_org", "client_organization_id"),
        Index("idx_sow_vendor_org", "vendor_organization_id"),
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    requirement_id: Mapped[UUID | None]
    client_id: Mapped[UUID] = mapped_column(nullable=False)
    vendor_id: Mapped[UUID] = mapped_column(nullable=False)
    client_organization_id: Mapped[UUID] = mapped_column(nullable=False)
    vendor_organization_id: Mapped[UUID] = mapped_column(nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    estimated_amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")
    approvals: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    vendor_response: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    workflow_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        from procure_kernel.domain.values import MoneyAmount, WorkflowHistoryEntry
        from procure_modules.sow.models import SOW, SOWApproval, SOWStatus, VendorResponse

        return SOW(
            id=self.id,
            title=self.title,
            description=self.description,
            client_id=self.client_id,
            vendor_id=self.vendor_id,
            client_organization_id=self.client_organization_id,
            vendor_organization_id=self.vendor_organization_id,
            start_date=self.start_date,
            end_date=self.end_date,
            estimated_cost=MoneyAmount(self.estimated_amount, self.currency),
            status=SOWStatus(self.status),
            requirement_id=self.requirement_id,
            approvals=tuple(SOWApproval.from_dict(a) for a in self.approvals or ()),
            vendor_response=VendorResponse.from_dict(self.vendor_response),
            workflow_history=tuple(
                WorkflowHistoryEntry.from_dict(h) for h in self.workflow_history or ()
            ),
            version=self.version,
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def __repr__(self) -> str:
        return f"<SOWModel {self.title!r} [{self.status}] v{self.version}>"

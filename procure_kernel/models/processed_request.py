"""
Module: procure_kernel.models.processed_request
Responsibility: Ledger of client-supplied request ids that already produced a
    mutation, used to make transition requests safe to retry.
Architecture position: Kernel > Models.

Invariants enforced:
    - request_id is unique; a row is written in the same transaction as the
      mutation and its audit entry, so either all three exist or none do.
    - Rows are append-only (ORM listener + DB trigger).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from procure_kernel.db.base import Base


class ProcessedRequestModel(Base):
    __tablename__ = "processed_requests"
    __table_args__ = (
        UniqueConstraint("request_id", name="uq_processed_request_id"),
    )

    request_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    audit_log_id: Mapped[UUID] = mapped_column(nullable=False)
    processed_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<ProcessedRequest {self.request_id} {self.action} {self.entity_type}:{self.entity_id}>"

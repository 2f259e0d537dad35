"""
Module: procure_kernel.models.audit_log
Responsibility: ORM persistence for the append-only audit log.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Rows are append-only; no UPDATE or DELETE (ORM listener + DB trigger).
    - seq is unique and increasing; entry_hash chains each row to the one
      before it so that edits made outside the engine are detectable.

Audit relevance:
    AuditLogModel IS the audit trail.  Every successful SOW, PO, invoice and
    workflow mutation writes exactly one row in the same transaction as the
    mutation itself.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from procure_kernel.db.base import Base
from procure_kernel.domain.audit import AuditLogRecord


class AuditLogModel(Base):
    """
    One immutable audit entry.

    ``performed_by`` keeps the full actor snapshot; the denormalised
    ``performed_by_*`` and ``*_organization_id`` columns exist for the
    user and organization queries.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_log_entity", "entity_type", "entity_id"),
        Index("idx_audit_log_performed_at", "performed_at"),
        Index("idx_audit_log_action_type", "action_type"),
        Index("idx_audit_log_performer", "performed_by_user_id"),
        Index("idx_audit_log_client_org", "client_organization_id"),
        Index("idx_audit_log_vendor_org", "vendor_organization_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)

    # Human readable, e.g. "SOW status changed: draft -> pm_approval_pending"
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)

    previous_state: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_state: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    changes: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)

    performed_by: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    performed_by_user_id: Mapped[UUID] = mapped_column(nullable=False)
    performed_by_organization_id: Mapped[UUID | None] = mapped_column(nullable=True)
    performed_by_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    client_organization_id: Mapped[UUID | None] = mapped_column(nullable=True)
    vendor_organization_id: Mapped[UUID | None] = mapped_column(nullable=True)

    performed_at: Mapped[datetime] = mapped_column(nullable=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False)
    related_entities: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    system_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Entity version after the mutation
    version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLog {self.seq} {self.action_type} on {self.entity_type}:{self.entity_id}>"

    def hashed_content(self) -> dict[str, Any]:
        """Fields covered by ``payload_hash``."""
        return {
            "seq": self.seq,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id),
            "action": self.action,
            "action_type": self.action_type,
            "previous_state": self.previous_state,
            "new_state": self.new_state,
            "changes": self.changes,
            "performed_by": self.performed_by,
            "performed_at": self.performed_at,
            "comments": self.comments,
            "metadata": self.meta,
            "related_entities": self.related_entities,
            "system_generated": self.system_generated,
            "version": self.version,
        }

    def to_dto(self) -> AuditLogRecord:
        return AuditLogRecord(
            id=self.id,
            seq=self.seq,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            action=self.action,
            action_type=self.action_type,
            previous_state=self.previous_state,
            new_state=self.new_state,
            changes=tuple(self.changes or ()),
            performed_by=self.performed_by,
            performed_at=self.performed_at,
            comments=self.comments,
            metadata=self.meta or {},
            related_entities=tuple(self.related_entities or ()),
            system_generated=self.system_generated,
            version=self.version,
            request_id=self.request_id,
            entry_hash=self.entry_hash,
            prev_hash=self.prev_hash,
        )

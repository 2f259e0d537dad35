"""
AuditLogService -- the audit log recorder's only write path.

Responsibility:
    Appends immutable, hash-chained audit entries.  ``append`` is the single
    mutation the recorder exposes; reading goes through AuditLogSelector.

Architecture position:
    Kernel > Services -- called by the TransitionExecutor, the entity
    services for create/update operations, the workflow configuration
    service and the escalation sweep.

Invariants enforced:
    - Append-only: no update or delete method exists; the model is guarded by
      ORM listeners and database triggers as well.
    - seq comes from the locked "audit_log" counter row (SequenceService),
      never from max(seq) + 1; entry_hash = H(..., payload_hash, prev_hash).
    - The entry is flushed in the caller's transaction, never committed here,
      so the audited mutation and its entry commit or roll back together.

Failure modes:
    - Concurrent appenders wait on the counter row lock; they never share a
      seq or a prev_hash.
"""

from datetime import UTC
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procure_kernel.domain.audit import AuditLogEntry, AuditLogRecord
from procure_kernel.logging_config import get_logger
from procure_kernel.models.audit_log import AuditLogModel
from procure_kernel.services.sequence_service import SequenceService
from procure_kernel.utils.hashing import hash_audit_entry, hash_payload

logger = get_logger("services.audit_log")


class AuditLogService:
    """Append-only recorder for the audit log."""

    def __init__(self, session: Session):
        self._session = session
        self._sequences = SequenceService(session)

    def _allocate(self) -> tuple[int, str | None]:
        """Next seq and the entry_hash of the entry it follows."""
        seq = self._sequences.next_value(SequenceService.AUDIT_LOG)
        prev_hash = self._session.scalar(
            select(AuditLogModel.entry_hash).where(AuditLogModel.seq == seq - 1)
        )
        return seq, prev_hash

    def append(self, entry: AuditLogEntry) -> AuditLogRecord:
        """
        Store ``entry`` and return the stored record.

        Postconditions:
            - One new AuditLogModel row is flushed with the next counter value.
            - ``prev_hash`` equals the previous row's ``entry_hash``.
        """
        seq, prev_hash = self._allocate()
        performer = entry.performed_by

        model = AuditLogModel(
            seq=seq,
            entity_type=entry.entity_type.value,
            entity_id=entry.entity_id,
            action=entry.action,
            action_type=entry.action_type.value,
            previous_state=entry.previous_state,
            new_state=entry.new_state,
            changes=[change.to_dict() for change in entry.changes],
            performed_by=performer,
            performed_by_user_id=UUID(performer["user_id"]),
            performed_by_organization_id=(
                UUID(performer["organization_id"])
                if performer.get("organization_id")
                else None
            ),
            performed_by_role=performer.get("organization_role"),
            client_organization_id=entry.client_organization_id,
            vendor_organization_id=entry.vendor_organization_id,
            performed_at=entry.performed_at.astimezone(UTC),
            comments=entry.comments,
            meta=dict(entry.metadata),
            related_entities=[dict(r) for r in entry.related_entities],
            system_generated=entry.system_generated,
            version=entry.version,
            request_id=entry.request_id,
        )
        model.payload_hash = hash_payload(model.hashed_content())
        model.prev_hash = prev_hash
        model.entry_hash = hash_audit_entry(
            entity_type=model.entity_type,
            entity_id=str(model.entity_id),
            action_type=model.action_type,
            payload_hash=model.payload_hash,
            prev_hash=prev_hash,
        )

        self._session.add(model)
        self._session.flush()

        logger.info(
            "audit_log_appended",
            extra={
                "seq": model.seq,
                "entity_type": model.entity_type,
                "entity_id": str(model.entity_id),
                "action_type": model.action_type,
                "system_generated": model.system_generated,
            },
        )
        return model.to_dto()


"""
IdempotencyService -- processed-request ledger.

Responsibility:
    Makes every mutating operation safe to retry with the same client-supplied
    request id.  A replayed request returns the original outcome instead of
    mutating again, so audit entries and payment tracking counters are never
    applied twice.

Architecture position:
    Kernel > Services.  Used by the TransitionExecutor and by the entity
    services' create operations.

Invariants enforced:
    - A request id maps to exactly one (entity_type, entity_id, action).
    - The ledger row is flushed in the same transaction as the mutation.

Failure modes:
    - IdempotencyKeyReusedError when a request id is replayed against a
      different entity or action.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procure_kernel.exceptions import IdempotencyKeyReusedError
from procure_kernel.logging_config import get_logger
from procure_kernel.models.processed_request import ProcessedRequestModel

logger = get_logger("services.idempotency")


class IdempotencyService:

    def __init__(self, session: Session):
        self._session = session

    def find_replay(
        self,
        request_id: str | None,
        entity_type: str,
        action: str,
        entity_id: UUID | None = None,
    ) -> ProcessedRequestModel | None:
        """
        Return the ledger row when ``request_id`` was already processed for
        this entity type and action, or None for a new request.

        ``entity_id`` is None for create operations, where the entity does
        not exist yet.
        """
        if request_id is None:
            return None
        processed = self._session.execute(
            select(ProcessedRequestModel).where(
                ProcessedRequestModel.request_id == request_id
            )
        ).scalar_one_or_none()
        if processed is None:
            return None

        same_target = (
            processed.entity_type == entity_type
            and processed.action == action
            and (entity_id is None or processed.entity_id == entity_id)
        )
        if not same_target:
            raise IdempotencyKeyReusedError(
                request_id=request_id,
                original_entity_id=str(processed.entity_id),
                original_action=processed.action,
            )

        logger.info(
            "request_replayed",
            extra={
                "request_id": request_id,
                "entity_type": entity_type,
                "entity_id": str(processed.entity_id),
                "action": action,
            },
        )
        return processed

    def record(
        self,
        request_id: str | None,
        entity_type: str,
        entity_id: UUID,
        action: str,
        audit_log_id: UUID,
        processed_at: datetime,
    ) -> None:
        if request_id is None:
            return
        self._session.add(
            ProcessedRequestModel(
                request_id=request_id,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                audit_log_id=audit_log_id,
                processed_at=processed_at,
            )
        )

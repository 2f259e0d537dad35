"""
Shared transaction-boundary helpers for module services.

Every public service operation runs inside ``owned_transaction``: the
entity mutation, its audit entry and its request-ledger row commit together
or not at all.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from procure_kernel.exceptions import EntityNotFoundError
from procure_kernel.logging_config import get_logger

logger = get_logger("modules.transaction")

M = TypeVar("M")


@contextmanager
def owned_transaction(session: Session, operation: str, **fields: Any) -> Iterator[None]:
    """Commit on normal exit; roll back and re-raise on any exception."""
    try:
        yield
        session.commit()
        logger.debug("operation_committed", extra={"operation": operation, **fields})
    except Exception as exc:
        session.rollback()
        logger.warning(
            "operation_rolled_back",
            extra={
                "operation": operation,
                "error_type": type(exc).__name__,
                "error": str(exc),
                **fields,
            },
        )
        raise


def load_or_raise(session: Session, model: type[M], entity_type: str, entity_id: UUID) -> M:
    """Fetch a row by primary key or raise EntityNotFoundError."""
    row = session.get(model, entity_id)
    if row is None:
        raise EntityNotFoundError(entity_type, str(entity_id))
    return row

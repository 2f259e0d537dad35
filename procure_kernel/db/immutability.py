"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

The audit log is the system of record for who moved which SOW, PO, invoice or
workflow instance through which state. Entries are appended once and never
changed. The processed-request ledger is equally append-only: rewriting it
would let a replayed request apply twice.

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications made through SQLAlchemy sessions
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/triggers.py (database triggers)
    - Catches raw SQL and bulk UPDATE/DELETE statements

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                  | When Immutable
------------------------|------------------------
AuditLogModel           | ALWAYS (from creation)
ProcessedRequestModel   | ALWAYS (from creation)
"""

from sqlalchemy import event

from procure_kernel.exceptions import AuditLogImmutableError
from procure_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(target, operation: str) -> None:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise AuditLogImmutableError(entry_id=str(target.id), operation=operation)


def _check_audit_log_update(mapper, connection, target):
    """Prevent any updates to audit log entries."""
    _block(target, "UPDATE")


def _check_audit_log_delete(mapper, connection, target):
    """Prevent deletion of audit log entries."""
    _block(target, "DELETE")


def _check_processed_request_update(mapper, connection, target):
    _block(target, "UPDATE")


def _check_processed_request_delete(mapper, connection, target):
    _block(target, "DELETE")


_LISTENERS = (
    ("AuditLogModel", "before_update", _check_audit_log_update),
    ("AuditLogModel", "before_delete", _check_audit_log_delete),
    ("ProcessedRequestModel", "before_update", _check_processed_request_update),
    ("ProcessedRequestModel", "before_delete", _check_processed_request_delete),
)


def _targets() -> dict:
    from procure_kernel.models.audit_log import AuditLogModel
    from procure_kernel.models.processed_request import ProcessedRequestModel

    return {
        "AuditLogModel": AuditLogModel,
        "ProcessedRequestModel": ProcessedRequestModel,
    }


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    targets = _targets()
    for model_name, event_name, listener in _LISTENERS:
        model = targets[model_name]
        if not event.contains(model, event_name, listener):
            event.listen(model, event_name, listener)


def unregister_immutability_listeners() -> None:
    """Remove immutability listeners. FOR TESTING ONLY."""
    targets = _targets()
    for model_name, event_name, listener in _LISTENERS:
        model = targets[model_name]
        if event.contains(model, event_name, listener):
            event.remove(model, event_name, listener)

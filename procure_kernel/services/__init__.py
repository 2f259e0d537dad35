"""Kernel services: audit log recorder, sequence counters and idempotency ledger."""

from procure_kernel.services.audit_log_service import AuditLogService
from procure_kernel.services.idempotency_service import IdempotencyService
from procure_kernel.services.sequence_service import SequenceService

__all__ = ["AuditLogService", "IdempotencyService", "SequenceService"]

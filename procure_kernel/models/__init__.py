"""Kernel ORM models."""

from procure_kernel.models.audit_log import AuditLogModel
from procure_kernel.models.processed_request import ProcessedRequestModel
from procure_kernel.models.sequence_counter import SequenceCounter

__all__ = ["AuditLogModel", "ProcessedRequestModel", "SequenceCounter"]

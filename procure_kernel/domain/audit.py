"""
Audit DTOs -- shapes crossing the audit log recorder boundary.

Responsibility:
    ``AuditLogEntry`` is what callers hand to ``AuditLogService.append``;
    ``AuditLogRecord`` is what comes back once stored.  Query filters, the
    paginated page, the per-entity summary and the statistics rollup are
    defined here so selectors, exporters and the response envelope share one
    vocabulary.

Architecture position:
    Kernel > Domain -- frozen dataclasses, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID

from procure_kernel.domain.values import AuditActionType, EntityType


@dataclass(frozen=True)
class FieldChange:
    field: str
    old_value: Any
    new_value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "old_value": self.old_value, "new_value": self.new_value}


@dataclass(frozen=True)
class AuditLogEntry:
    """An audit entry waiting to be appended."""

    entity_type: EntityType
    entity_id: UUID
    action: str
    action_type: AuditActionType
    performed_by: dict[str, Any]
    performed_at: datetime
    previous_state: dict[str, Any] | None = None
    new_state: dict[str, Any] | None = None
    changes: tuple[FieldChange, ...] = ()
    comments: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    related_entities: tuple[dict[str, str], ...] = ()
    client_organization_id: UUID | None = None
    vendor_organization_id: UUID | None = None
    system_generated: bool = False
    version: int | None = None
    request_id: str | None = None


@dataclass(frozen=True)
class AuditLogRecord:
    """A stored, immutable audit entry."""

    id: UUID
    seq: int
    entity_type: str
    entity_id: UUID
    action: str
    action_type: str
    previous_state: dict[str, Any] | None
    new_state: dict[str, Any] | None
    changes: tuple[dict[str, Any], ...]
    performed_by: dict[str, Any]
    performed_at: datetime
    comments: str | None
    metadata: dict[str, Any]
    related_entities: tuple[dict[str, str], ...]
    system_generated: bool
    version: int | None
    request_id: str | None
    entry_hash: str
    prev_hash: str | None


@dataclass(frozen=True)
class AuditLogQuery:
    """Filter shared by query, statistics and export."""

    entity_type: str | None = None
    entity_id: UUID | None = None
    action_type: str | None = None
    performed_by: UUID | None = None
    organization_id: UUID | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


@dataclass(frozen=True)
class AuditLogPage:
    docs: tuple[AuditLogRecord, ...]
    total_docs: int
    limit: int
    page: int
    total_pages: int
    paging_counter: int
    has_prev_page: bool
    has_next_page: bool
    prev_page: int | None
    next_page: int | None


@dataclass(frozen=True)
class TimelineDay:
    day: date
    entries: tuple[AuditLogRecord, ...]


@dataclass(frozen=True)
class AuditTrailSummary:
    entity_type: str
    entity_id: UUID
    total_actions: int
    last_action: AuditLogRecord | None
    key_actions: tuple[AuditLogRecord, ...]
    timeline: tuple[TimelineDay, ...]


@dataclass(frozen=True)
class AuditStatistics:
    total: int
    by_action_type: dict[str, int]
    by_entity_type: dict[str, int]
    system_generated: int

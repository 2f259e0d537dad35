"""
Module: procure_kernel.selectors.audit_log_selector
Responsibility: Read side of the audit log recorder -- filtered, paginated
    queries, per-entity trails and summaries, statistics and hash-chain
    verification.
Architecture position: Kernel > Selectors.  Imports models/ and domain/ DTOs.
    NEVER adds, flushes, commits or deletes.

Invariants enforced:
    - Default ordering is performed_at descending (seq breaks ties).
    - Page size is clamped to [1, max_limit]; page numbers start at 1.
    - An organization filter matches entries performed by that organization
      or touching an entity on either side of which it sits.
"""

from collections import Counter
from itertools import groupby
from uuid import UUID

from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session

from procure_kernel.domain.audit import (
    AuditLogPage,
    AuditLogQuery,
    AuditLogRecord,
    AuditStatistics,
    AuditTrailSummary,
    TimelineDay,
)
from procure_kernel.domain.values import KEY_ACTION_TYPES
from procure_kernel.exceptions import EntityNotFoundError
from procure_kernel.models.audit_log import AuditLogModel
from procure_kernel.utils.hashing import hash_audit_entry, hash_payload

_KEY_ACTION_VALUES = frozenset(t.value for t in KEY_ACTION_TYPES)


class AuditLogSelector:
    """Read-only access to the audit log."""

    def __init__(self, session: Session, default_limit: int = 20, max_limit: int = 100):
        self.session = session
        self.default_limit = default_limit
        self.max_limit = max_limit

    def _filtered(self, stmt: Select, query: AuditLogQuery) -> Select:
        if query.entity_type is not None:
            stmt = stmt.where(AuditLogModel.entity_type == query.entity_type)
        if query.entity_id is not None:
            stmt = stmt.where(AuditLogModel.entity_id == query.entity_id)
        if query.action_type is not None:
            stmt = stmt.where(AuditLogModel.action_type == query.action_type)
        if query.performed_by is not None:
            stmt = stmt.where(AuditLogModel.performed_by_user_id == query.performed_by)
        if query.organization_id is not None:
            org = query.organization_id
            stmt = stmt.where(
                or_(
                    AuditLogModel.performed_by_organization_id == org,
                    AuditLogModel.client_organization_id == org,
                    AuditLogModel.vendor_organization_id == org,
                )
            )
        if query.start_date is not None:
            stmt = stmt.where(AuditLogModel.performed_at >= query.start_date)
        if query.end_date is not None:
            stmt = stmt.where(AuditLogModel.performed_at <= query.end_date)
        return stmt

    def get(self, entry_id: UUID) -> AuditLogRecord:
        model = self.session.get(AuditLogModel, entry_id)
        if model is None:
            raise EntityNotFoundError("audit_log", str(entry_id))
        return model.to_dto()

    def query(
        self,
        query: AuditLogQuery | None = None,
        page: int = 1,
        limit: int | None = None,
        sort_order: str = "desc",
    ) -> AuditLogPage:
        """Filtered page of entries, newest first unless ``sort_order='asc'``."""
        query = query or AuditLogQuery()
        limit = min(max(limit or self.default_limit, 1), self.max_limit)
        page = max(page, 1)

        total = self.session.scalar(
            self._filtered(select(func.count()).select_from(AuditLogModel), query)
        ) or 0

        if sort_order == "asc":
            ordering = (AuditLogModel.performed_at.asc(), AuditLogModel.seq.asc())
        elif sort_order == "desc":
            ordering = (AuditLogModel.performed_at.desc(), AuditLogModel.seq.desc())
        else:
            raise ValueError(f"sort_order must be 'asc' or 'desc', got {sort_order!r}")

        rows = self.session.scalars(
            self._filtered(select(AuditLogModel), query)
            .order_by(*ordering)
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()

        total_pages = (total + limit - 1) // limit if total else 0
        return AuditLogPage(
            docs=tuple(row.to_dto() for row in rows),
            total_docs=total,
            limit=limit,
            page=page,
            total_pages=total_pages,
            paging_counter=(page - 1) * limit + 1,
            has_prev_page=page > 1,
            has_next_page=page < total_pages,
            prev_page=page - 1 if page > 1 else None,
            next_page=page + 1 if page < total_pages else None,
        )

    def all_matching(self, query: AuditLogQuery) -> list[AuditLogRecord]:
        """Every matching entry, newest first. Used by exports."""
        rows = self.session.scalars(
            self._filtered(select(AuditLogModel), query).order_by(
                AuditLogModel.performed_at.desc(), AuditLogModel.seq.desc()
            )
        ).all()
        return [row.to_dto() for row in rows]

    def entity_trail(self, entity_type: str, entity_id: UUID) -> list[AuditLogRecord]:
        """Entries for one entity, oldest first."""
        rows = self.session.scalars(
            select(AuditLogModel)
            .where(
                AuditLogModel.entity_type == entity_type,
                AuditLogModel.entity_id == entity_id,
            )
            .order_by(AuditLogModel.seq.asc())
        ).all()
        return [row.to_dto() for row in rows]

    def summarize(self, entity_type: str, entity_id: UUID) -> AuditTrailSummary:
        """
        Timeline grouped by calendar date (newest day first), the latest
        entry and the key entries (status changes, approvals, rejections,
        payments, escalations).
        """
        trail = self.entity_trail(entity_type, entity_id)
        newest_first = list(reversed(trail))
        timeline = tuple(
            TimelineDay(day=day, entries=tuple(entries))
            for day, entries in groupby(newest_first, key=lambda r: r.performed_at.date())
        )
        return AuditTrailSummary(
            entity_type=entity_type,
            entity_id=entity_id,
            total_actions=len(trail),
            last_action=newest_first[0] if newest_first else None,
            key_actions=tuple(r for r in newest_first if r.action_type in _KEY_ACTION_VALUES),
            timeline=timeline,
        )

    def statistics(self, query: AuditLogQuery | None = None) -> AuditStatistics:
        """Counts by action type and entity type for the matching entries."""
        query = query or AuditLogQuery()
        rows = self.session.execute(
            self._filtered(
                select(
                    AuditLogModel.action_type,
                    AuditLogModel.entity_type,
                    AuditLogModel.system_generated,
                ),
                query,
            )
        ).all()
        by_action = Counter(row.action_type for row in rows)
        by_entity = Counter(row.entity_type for row in rows)
        return AuditStatistics(
            total=len(rows),
            by_action_type=dict(by_action),
            by_entity_type=dict(by_entity),
            system_generated=sum(1 for row in rows if row.system_generated),
        )

    def verify_chain(self) -> bool:
        """Recompute every payload and chain hash in seq order."""
        prev_hash = None
        for model in self.session.scalars(
            select(AuditLogModel).order_by(AuditLogModel.seq.asc())
        ):
            payload_hash = hash_payload(model.hashed_content())
            expected = hash_audit_entry(
                entity_type=model.entity_type,
                entity_id=str(model.entity_id),
                action_type=model.action_type,
                payload_hash=payload_hash,
                prev_hash=prev_hash,
            )
            if model.prev_hash != prev_hash or model.entry_hash != expected:
                return False
            prev_hash = model.entry_hash
        return True

"""
procure_engines.escalation -- step deadlines for the escalation sweep.

Responsibility:
    Given snapshots of active workflow instances, compute each one's next
    escalation deadline and select those whose deadline has passed, ordered
    by deadline so the longest-waiting instance escalates first.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The sweep service loads the
    snapshots and applies the escalations; this module only decides.

Invariants enforced:
    - A step escalates once ``auto_escalate_after`` hours have elapsed since
      it started; an instance also escalates once it has been running for
      ``max_processing_time`` hours.  Zero or None disables either limit.
    - The earlier of the two deadlines wins.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from procure_engines.tracer import traced_engine


@dataclass(frozen=True)
class InstanceClock:
    """What the sweep needs to know about one active instance."""
    instance_id: UUID
    version: int
    current_step: int
    step_started_at: datetime
    instance_started_at: datetime
    auto_escalate_after_hours: int | None
    max_processing_time_hours: int | None


@dataclass(frozen=True)
class EscalationDue:
    instance: InstanceClock
    deadline: datetime
    reason: str


def escalation_deadline(clock: InstanceClock) -> tuple[datetime, str] | None:
    candidates: list[tuple[datetime, str]] = []
    if clock.auto_escalate_after_hours:
        candidates.append((
            clock.step_started_at + timedelta(hours=clock.auto_escalate_after_hours),
            f"step {clock.current_step} exceeded the auto-escalate window of "
            f"{clock.auto_escalate_after_hours} hours",
        ))
    if clock.max_processing_time_hours:
        candidates.append((
            clock.instance_started_at + timedelta(hours=clock.max_processing_time_hours),
            f"instance exceeded the maximum processing time of "
            f"{clock.max_processing_time_hours} hours",
        ))
    if not candidates:
        return None
    return min(candidates, key=lambda c: c[0])


@traced_engine("escalation", "1.0", fingerprint_fields=("as_of",))
def due_for_escalation(
    instances: Iterable[InstanceClock],
    *,
    as_of: datetime,
) -> list[EscalationDue]:
    """Instances whose deadline is at or before ``as_of``, earliest first."""
    due: list[EscalationDue] = []
    for clock in instances:
        deadline = escalation_deadline(clock)
        if deadline is not None and deadline[0] <= as_of:
            due.append(EscalationDue(instance=clock, deadline=deadline[0], reason=deadline[1]))
    due.sort(key=lambda d: (d.deadline, str(d.instance.instance_id)))
    return due

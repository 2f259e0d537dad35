"""
Tests for escalation deadlines.

Covers:
- Step window (auto_escalate_after) and instance window (max_processing_time)
- The earlier deadline wins; zero disables a window
- Inclusive boundary and earliest-first ordering
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from procure_engines.escalation import InstanceClock, due_for_escalation, escalation_deadline

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def make_clock(
    step_started_hours_ago: float = 0,
    instance_started_hours_ago: float = 0,
    auto_escalate_after: int | None = 24,
    max_processing_time: int | None = 72,
    current_step: int = 1,
) -> InstanceClock:
    return InstanceClock(
        instance_id=uuid4(),
        version=1,
        current_step=current_step,
        step_started_at=NOW - timedelta(hours=step_started_hours_ago),
        instance_started_at=NOW - timedelta(hours=instance_started_hours_ago),
        auto_escalate_after_hours=auto_escalate_after,
        max_processing_time_hours=max_processing_time,
    )


class TestEscalationDeadline:

    def test_step_window(self):
        deadline, reason = escalation_deadline(make_clock())

        assert deadline == NOW + timedelta(hours=24)
        assert "auto-escalate window of 24 hours" in reason

    def test_instance_window_wins_when_earlier(self):
        clock = make_clock(step_started_hours_ago=1, instance_started_hours_ago=70)

        deadline, reason = escalation_deadline(clock)

        assert deadline == NOW + timedelta(hours=2)
        assert "maximum processing time of 72 hours" in reason

    def test_zero_disables_window(self):
        clock = make_clock(auto_escalate_after=0, max_processing_time=72)

        deadline, _ = escalation_deadline(clock)

        assert deadline == NOW + timedelta(hours=72)

    def test_no_windows(self):
        assert escalation_deadline(make_clock(auto_escalate_after=0, max_processing_time=None)) is None


class TestDueForEscalation:

    def test_deadline_is_inclusive(self):
        clock = make_clock(step_started_hours_ago=24, instance_started_hours_ago=24)

        due = due_for_escalation([clock], as_of=NOW)

        assert [d.instance for d in due] == [clock]
        assert due[0].deadline == NOW

    def test_not_yet_due(self):
        clock = make_clock(step_started_hours_ago=23, instance_started_hours_ago=23)

        assert due_for_escalation([clock], as_of=NOW) == []

    def test_earliest_deadline_first(self):
        recent = make_clock(step_started_hours_ago=25, instance_started_hours_ago=25)
        oldest = make_clock(step_started_hours_ago=40, instance_started_hours_ago=40)
        waiting = make_clock(step_started_hours_ago=2, instance_started_hours_ago=2)

        due = due_for_escalation([recent, waiting, oldest], as_of=NOW)

        assert [d.instance for d in due] == [oldest, recent]

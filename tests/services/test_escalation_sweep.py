"""
Tests for the escalation sweep.

Covers:
- Instances escalate once their window elapses, not before
- Disabled windows never escalate
- A user transition that lands first makes the sweep skip the instance,
  whether it is seen at the version check or at flush time
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from procure_engines.step_authority import StepRole
from procure_modules.application_workflow import (
    ApplicationType,
    ConfigurationDraft,
    InstanceStatus,
    StepAction,
    WorkflowInstanceService,
    WorkflowSettings,
    WorkflowStep,
)
from procure_modules.application_workflow.orm import WorkflowInstanceModel
from procure_services.escalation_sweep import EscalationSweep


@pytest.fixture
def start(config_service, instance_service, admin_owner, admin_employee):
    def _start(settings: WorkflowSettings = WorkflowSettings()):
        config = config_service.create(
            ConfigurationDraft(
                name=f"Onboarding {uuid4().hex[:6]}",
                application_types=(ApplicationType.BOTH,),
                steps=(
                    WorkflowStep("Screening", 1, StepRole.ADMIN, StepAction.REVIEW),
                    WorkflowStep("Sign-off", 2, StepRole.SUPER_ADMIN, StepAction.APPROVE),
                ),
                settings=settings,
            ),
            admin_owner,
        ).entity
        return instance_service.start_instance(config.id, uuid4(), admin_employee).entity

    return _start


@pytest.fixture
def sweep(session_factory, clock, escalation_target):
    return EscalationSweep(
        session_factory, clock, escalation_targets={"admin": escalation_target},
    )


class TestEscalationSweep:

    def test_escalates_after_window(self, start, sweep, clock, session, instance_service, escalation_target):
        instance = start()

        early = sweep.run(clock.now() + timedelta(hours=23))
        assert early.examined == 1
        assert early.escalated == ()

        result = sweep.run(clock.now() + timedelta(hours=24))
        assert result.escalated == (instance.id,)

        session.expire_all()
        escalated = instance_service.get(instance.id)
        assert escalated.status is InstanceStatus.ESCALATED
        assert escalated.escalated_to == escalation_target
        assert escalated.escalation_reason == "step 1 exceeded the auto-escalate window of 24 hours"

    def test_escalated_instances_are_not_examined_again(self, start, sweep, clock):
        start()
        sweep.run(clock.now() + timedelta(hours=30))

        assert sweep.run(clock.now() + timedelta(hours=60)).examined == 0

    def test_disabled_windows(self, start, sweep, clock):
        start(WorkflowSettings(auto_escalate_after=0, max_processing_time=0))

        result = sweep.run(clock.now() + timedelta(days=365))

        assert result.examined == 1
        assert result.escalated == ()

    def test_user_transition_wins(self, start, sweep, clock, instance_service, admin_employee, monkeypatch):
        instance = start()
        stale = instance_service.active_clocks()
        instance_service.process_step(instance.id, 1, "reviewed", admin_employee)
        monkeypatch.setattr(WorkflowInstanceService, "active_clocks", lambda self: stale)

        result = sweep.run(clock.now() + timedelta(hours=48))

        assert result.skipped == (instance.id,)
        assert result.escalated == ()
        assert result.failed == ()

    def test_write_landing_before_flush_is_skipped(
        self, start, session, session_factory, clock, instance_service, admin_employee,
        escalation_target, monkeypatch,
    ):
        instance = start()
        stale = instance_service.active_clocks()
        writer = session_factory()
        held = writer.get(WorkflowInstanceModel, instance.id)
        instance_service.process_step(instance.id, 1, "reviewed", admin_employee)
        monkeypatch.setattr(WorkflowInstanceService, "active_clocks", lambda self: stale)
        sessions = iter([session_factory(), writer])
        racing = EscalationSweep(
            lambda: next(sessions), clock, escalation_targets={"admin": escalation_target},
        )

        assert held.status == "active"
        result = racing.run(clock.now() + timedelta(hours=48))

        assert result.skipped == (instance.id,)
        assert result.failed == ()
        session.expire_all()
        current = instance_service.get(instance.id)
        assert current.status is InstanceStatus.ACTIVE
        assert current.current_step == 2

    def test_sweep_is_logged(self, start, sweep, clock, captured_logs):
        start()

        sweep.run(clock.now() + timedelta(hours=24))

        completed = [r for r in captured_logs() if r["message"] == "escalation_sweep_completed"]
        assert completed[0]["escalated"] == 1

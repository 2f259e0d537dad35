"""
Tests for configurable application workflows.

Covers:
- Configuration management (admin owner only, validation, defaults, soft delete)
- Instance start, auto-advance and parallel processing
- Sequential step processing, skipping optional steps, rejection
- Manual and system escalation, cancellation
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from procure_engines.step_authority import StepRole
from procure_kernel.domain.roles import SYSTEM_USER_ID, OrganizationRole
from procure_kernel.exceptions import (
    ConcurrencyConflictError,
    DefaultWorkflowConflictError,
    EntityNotFoundError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationFailedError,
    WorkflowConfigurationInUseError,
)
from procure_kernel.selectors.audit_log_selector import AuditLogSelector
from procure_modules.application_workflow import (
    ActionTaken,
    ApplicationType,
    ConfigurationDraft,
    InstanceStatus,
    StepAction,
    StepStatus,
    WorkflowSettings,
    WorkflowStep,
)


# =============================================================================
# Helpers
# =============================================================================


def step(order: int, role: str = "admin", **kwargs) -> WorkflowStep:
    return WorkflowStep(
        name=kwargs.pop("name", f"Step {order}"),
        order=order,
        role=StepRole(role),
        action=kwargs.pop("action", StepAction.APPROVE),
        **kwargs,
    )


def draft(*steps: WorkflowStep, **kwargs) -> ConfigurationDraft:
    return ConfigurationDraft(
        name=kwargs.pop("name", "Vendor onboarding"),
        application_types=kwargs.pop("application_types", (ApplicationType.VENDOR_APPLIED,)),
        steps=steps or (step(1, "admin"), step(2, "client"), step(3, "super_admin")),
        **kwargs,
    )


@pytest.fixture
def configuration(config_service, admin_owner):
    def _create(*steps: WorkflowStep, **kwargs):
        return config_service.create(draft(*steps, **kwargs), admin_owner).entity

    return _create


@pytest.fixture
def started(configuration, instance_service, admin_employee):
    def _start(*steps: WorkflowStep, **kwargs):
        config = configuration(*steps, **kwargs)
        return instance_service.start_instance(config.id, uuid4(), admin_employee).entity

    return _start


# =============================================================================
# Configurations
# =============================================================================


class TestConfigurationCreate:

    def test_admin_owner_creates(self, config_service, admin_owner):
        result = config_service.create(draft(step(2), step(1)), admin_owner)

        config = result.entity
        assert [s.order for s in config.steps] == [1, 2]
        assert config.is_active and not config.is_default
        assert result.audit_entry.action == "Workflow configuration created: Vendor onboarding"

    @pytest.mark.parametrize("role", [OrganizationRole.ADMIN_EMPLOYEE, OrganizationRole.CLIENT_OWNER])
    def test_other_roles_refused(self, config_service, make_actor, role):
        with pytest.raises(UnauthorizedError):
            config_service.create(draft(), make_actor(role))

    @pytest.mark.parametrize(
        ("steps", "message"),
        [
            ((), None),
            ((step(0),), "Step orders must be positive"),
            ((step(1), step(1, name="Other")), "Step orders must be unique"),
            ((step(1, name=" "),), "Every step needs a name"),
        ],
    )
    def test_step_validation(self, config_service, admin_owner, steps, message):
        bad = ConfigurationDraft(
            name="Broken", application_types=(ApplicationType.BOTH,), steps=steps,
        )

        with pytest.raises(ValidationFailedError) as exc_info:
            config_service.create(bad, admin_owner)

        assert exc_info.value.errors["steps"] == (message or "At least one step is required")

    def test_name_types_and_settings_validated(self, config_service, admin_owner):
        bad = ConfigurationDraft(
            name="",
            application_types=(),
            steps=(step(1),),
            settings=WorkflowSettings(auto_escalate_after=-1),
        )

        with pytest.raises(ValidationFailedError) as exc_info:
            config_service.create(bad, admin_owner)

        assert set(exc_info.value.errors) == {"name", "application_types", "settings"}


class TestDefaults:

    def test_one_default_per_application_types(self, configuration):
        configuration(is_default=True)

        with pytest.raises(DefaultWorkflowConflictError) as exc_info:
            configuration(name="Second", is_default=True)

        assert exc_info.value.application_types == ["vendor_applied"]

    def test_different_types_can_each_have_a_default(self, configuration, config_service):
        vendor = configuration(is_default=True)
        client = configuration(
            name="Client onboarding",
            application_types=(ApplicationType.CLIENT_APPLIED,),
            is_default=True,
        )

        assert config_service.get_default([ApplicationType.VENDOR_APPLIED]).id == vendor.id
        assert config_service.get_default([ApplicationType.CLIENT_APPLIED]).id == client.id
        assert config_service.get_default([ApplicationType.BOTH]) is None

    def test_set_default(self, configuration, config_service, admin_owner):
        config = configuration()

        updated = config_service.set_default(config.id, admin_owner).entity

        assert updated.is_default

    def test_set_default_conflict(self, configuration, config_service, admin_owner):
        configuration(is_default=True)
        other = configuration(name="Alternative")

        with pytest.raises(DefaultWorkflowConflictError):
            config_service.set_default(other.id, admin_owner)

    def test_set_default_needs_active_and_non_default(self, configuration, config_service, admin_owner):
        current = configuration(is_default=True)
        inactive = configuration(name="Retired")
        config_service.update(inactive.id, admin_owner, is_active=False)

        with pytest.raises(ValidationFailedError) as exc_info:
            config_service.set_default(current.id, admin_owner)
        assert "is_default" in exc_info.value.errors

        with pytest.raises(ValidationFailedError) as exc_info:
            config_service.set_default(inactive.id, admin_owner)
        assert "is_active" in exc_info.value.errors


class TestConfigurationUpdateAndDelete:

    def test_update_records_changes(self, configuration, config_service, admin_owner):
        config = configuration()

        result = config_service.update(config.id, admin_owner, name="Renamed", expected_version=1)

        assert result.entity.name == "Renamed"
        assert result.entity.version == 2
        assert [c["field"] for c in result.audit_entry.changes] == ["name"]

    def test_update_without_changes(self, configuration, config_service, admin_owner):
        config = configuration()

        with pytest.raises(ValidationFailedError) as exc_info:
            config_service.update(config.id, admin_owner, name=config.name)

        assert "configuration" in exc_info.value.errors

    def test_update_with_stale_version(self, configuration, config_service, admin_owner):
        config = configuration()
        config_service.update(config.id, admin_owner, name="First edit")

        with pytest.raises(ConcurrencyConflictError):
            config_service.update(config.id, admin_owner, name="Second edit", expected_version=1)

    def test_soft_delete(self, configuration, config_service, instance_service, admin_owner, admin_employee):
        config = configuration()

        result = config_service.delete(config.id, admin_owner)

        assert result.audit_entry.action_type == "delete"
        with pytest.raises(EntityNotFoundError):
            config_service.get(config.id)
        assert config_service.list_configurations() == []
        with pytest.raises(ValidationFailedError) as exc_info:
            instance_service.start_instance(config.id, uuid4(), admin_employee)
        assert "configuration_id" in exc_info.value.errors

    def test_default_cannot_be_deleted(self, configuration, config_service, admin_owner):
        config = configuration(is_default=True)

        with pytest.raises(ValidationFailedError) as exc_info:
            config_service.delete(config.id, admin_owner)

        assert "is_default" in exc_info.value.errors

    def test_in_use_configuration_cannot_be_deleted(self, configuration, config_service, instance_service, admin_owner, admin_employee):
        config = configuration()
        instance_service.start_instance(config.id, uuid4(), admin_employee)

        with pytest.raises(WorkflowConfigurationInUseError):
            config_service.delete(config.id, admin_owner)

    def test_list_filters(self, configuration, config_service, admin_owner):
        vendor = configuration()
        both = configuration(name="Any applicant", application_types=(ApplicationType.BOTH,))
        config_service.update(both.id, admin_owner, is_active=False)

        assert [c.id for c in config_service.list_configurations(application_type=ApplicationType.VENDOR_APPLIED)] == [vendor.id]
        assert [c.id for c in config_service.list_configurations(is_active=False)] == [both.id]

    def test_instances_keep_their_settings(self, configuration, config_service, instance_service, admin_owner, admin_employee):
        config = configuration()
        instance = instance_service.start_instance(config.id, uuid4(), admin_employee).entity

        config_service.update(config.id, admin_owner, settings=WorkflowSettings(auto_escalate_after=1))

        assert instance_service.get(instance.id).settings.auto_escalate_after == 24


# =============================================================================
# Instances
# =============================================================================


class TestStart:

    def test_first_step_opens(self, started):
        instance = started()

        assert instance.status is InstanceStatus.ACTIVE
        assert instance.current_step == 1
        assert instance.step(1).status is StepStatus.IN_PROGRESS
        assert instance.step(2).status is StepStatus.PENDING

    def test_auto_advance_steps_complete_on_reach(self, started):
        instance = started(step(1, auto_advance=True, action=StepAction.NOTIFY), step(2, "client"))

        assert instance.step(1).status is StepStatus.COMPLETED
        assert instance.current_step == 2
        assert instance.step(2).status is StepStatus.IN_PROGRESS

    def test_no_required_steps_completes_immediately(self, started):
        instance = started(step(1, required=False), step(2, required=False))

        assert instance.status is InstanceStatus.COMPLETED
        assert {s.status for s in instance.steps} == {StepStatus.SKIPPED}

    def test_parallel_opens_every_step(self, started):
        instance = started(
            step(1), step(2, "client"),
            settings=WorkflowSettings(allow_parallel_processing=True),
        )

        assert {s.status for s in instance.steps} == {StepStatus.IN_PROGRESS}


class TestProcessStep:

    def test_sequential_approval_moves_on(self, started, instance_service, admin_employee, clock):
        instance = started()
        clock.advance(hours=2)

        result = instance_service.process_step(instance.id, 1, "approved", admin_employee, "Documents verified")

        updated = result.entity
        assert updated.step(1).status is StepStatus.COMPLETED
        assert updated.step(1).action_taken is ActionTaken.APPROVED
        assert updated.current_step == 2
        assert updated.step_started_at == instance.started_at + timedelta(hours=2)
        assert result.audit_entry.action_type == "approval"
        assert result.audit_entry.action == "Workflow step 1 (Step 1) approved"

    def test_later_step_waits_for_required_step(self, started, instance_service, client_owner):
        instance = started()

        with pytest.raises(InvalidTransitionError) as exc_info:
            instance_service.process_step(instance.id, 2, "approved", client_owner)

        assert exc_info.value.reason == "step 1 must be processed first"

    def test_optional_earlier_step_is_skipped(self, started, instance_service, client_owner):
        instance = started(step(1, required=False), step(2, "client"))

        result = instance_service.process_step(instance.id, 2, "reviewed", client_owner)

        assert result.entity.step(1).status is StepStatus.SKIPPED
        assert result.entity.status is InstanceStatus.COMPLETED
        assert result.audit_entry.metadata["skipped_steps"] == [1]
        assert result.audit_entry.action_type == "status_change"

    def test_step_role_enforced(self, started, instance_service, vendor_owner, admin_account_actor):
        instance = started()

        with pytest.raises(UnauthorizedError):
            instance_service.process_step(instance.id, 1, "approved", vendor_owner)
        with pytest.raises(UnauthorizedError):
            instance_service.process_step(instance.id, 1, "approved", admin_account_actor)

    def test_comments_required_by_settings(self, started, instance_service, admin_employee):
        instance = started(step(1), settings=WorkflowSettings(require_comments=True))

        with pytest.raises(ValidationFailedError) as exc_info:
            instance_service.process_step(instance.id, 1, "approved", admin_employee, " ")

        assert "comments" in exc_info.value.errors

    def test_unknown_action_and_step(self, started, instance_service, admin_employee):
        instance = started()

        with pytest.raises(ValidationFailedError) as exc_info:
            instance_service.process_step(instance.id, 1, "shrugged", admin_employee)
        assert "action" in exc_info.value.errors

        with pytest.raises(ValidationFailedError) as exc_info:
            instance_service.process_step(instance.id, 9, "approved", admin_employee)
        assert "step_order" in exc_info.value.errors

    def test_completed_step_cannot_be_processed_again(self, started, instance_service, admin_employee):
        instance = started()
        instance_service.process_step(instance.id, 1, "approved", admin_employee)

        with pytest.raises(InvalidTransitionError) as exc_info:
            instance_service.process_step(instance.id, 1, "approved", admin_employee)

        assert exc_info.value.reason == "step 1 is already completed"

    def test_required_rejection_cancels_instance(self, started, instance_service, admin_employee):
        instance = started()

        result = instance_service.process_step(instance.id, 1, "rejected", admin_employee, "Incomplete")

        cancelled = result.entity
        assert cancelled.status is InstanceStatus.CANCELLED
        assert cancelled.step(2).status is StepStatus.SKIPPED
        assert result.audit_entry.action_type == "rejection"

    def test_optional_rejection_continues(self, started, instance_service, admin_employee):
        instance = started(step(1, required=False), step(2))

        result = instance_service.process_step(instance.id, 1, "rejected", admin_employee, "Not needed")

        assert result.entity.status is InstanceStatus.ACTIVE
        assert result.entity.current_step == 2

    def test_walk_to_completion(self, started, instance_service, admin_employee, client_owner, admin_owner):
        instance = started()
        instance_service.process_step(instance.id, 1, "approved", admin_employee)
        instance_service.process_step(instance.id, 2, "approved", client_owner)

        done = instance_service.process_step(instance.id, 3, "approved", admin_owner).entity

        assert done.status is InstanceStatus.COMPLETED
        assert done.completed_at is not None
        assert done.version == 4

    def test_parallel_steps_in_any_order(self, started, instance_service, client_owner, admin_employee):
        instance = started(
            step(1), step(2, "client"),
            settings=WorkflowSettings(allow_parallel_processing=True),
        )

        after_second = instance_service.process_step(instance.id, 2, "approved", client_owner).entity
        assert after_second.status is InstanceStatus.ACTIVE

        done = instance_service.process_step(instance.id, 1, "approved", admin_employee).entity
        assert done.status is InstanceStatus.COMPLETED


class TestEscalationAndCancel:

    def test_manual_escalation_assigns_target(self, started, instance_service, admin_employee, escalation_target):
        instance = started()

        result = instance_service.process_step(instance.id, 1, "escalated", admin_employee, "Needs a second opinion")

        escalated = result.entity
        assert escalated.status is InstanceStatus.ESCALATED
        assert escalated.escalated_to == escalation_target
        assert escalated.step(1).status is StepStatus.ESCALATED
        assert escalated.step(1).assigned_to == escalation_target
        assert result.audit_entry.action_type == "escalation"

    def test_escalated_instance_needs_target_or_admin_owner(self, started, instance_service, admin_employee, make_actor, escalation_target):
        instance = started()
        instance_service.process_step(instance.id, 1, "escalated", admin_employee)

        with pytest.raises(UnauthorizedError):
            instance_service.process_step(instance.id, 1, "approved", admin_employee)

        target = make_actor(OrganizationRole.ADMIN_EMPLOYEE, user_id=escalation_target)
        resolved = instance_service.process_step(instance.id, 1, "approved", target).entity
        assert resolved.status is InstanceStatus.ACTIVE
        assert resolved.current_step == 2

    def test_system_escalation(self, started, instance_service, session):
        instance = started()

        result = instance_service.escalate(instance.id, reason="step 1 overdue", expected_version=1)

        assert result.entity.status is InstanceStatus.ESCALATED
        assert result.entity.escalation_reason == "step 1 overdue"
        entry = AuditLogSelector(session).get(result.audit_entry.id)
        assert entry.system_generated
        assert entry.performed_by["user_id"] == str(SYSTEM_USER_ID)

    def test_system_escalation_requires_active_instance(self, started, instance_service):
        instance = started()
        instance_service.escalate(instance.id, reason="overdue")

        with pytest.raises(InvalidTransitionError):
            instance_service.escalate(instance.id, reason="overdue again")

    def test_system_escalation_with_stale_version(self, started, instance_service, admin_employee):
        instance = started()
        instance_service.process_step(instance.id, 1, "approved", admin_employee)

        with pytest.raises(ConcurrencyConflictError):
            instance_service.escalate(instance.id, reason="overdue", expected_version=1)

    def test_cancel_by_admin_owner_only(self, started, instance_service, admin_employee, admin_owner):
        instance = started()

        with pytest.raises(UnauthorizedError):
            instance_service.cancel_instance(instance.id, admin_employee)

        cancelled = instance_service.cancel_instance(instance.id, admin_owner, "Applicant withdrew").entity
        assert cancelled.status is InstanceStatus.CANCELLED
        assert {s.status for s in cancelled.steps} == {StepStatus.SKIPPED}

        with pytest.raises(InvalidTransitionError):
            instance_service.cancel_instance(instance.id, admin_owner)
        with pytest.raises(InvalidTransitionError):
            instance_service.process_step(instance.id, 1, "approved", admin_owner)


class TestQueries:

    def test_active_clocks(self, started, instance_service):
        active = started()
        escalated = started(name="Other")
        instance_service.escalate(escalated.id, reason="overdue")

        clocks = instance_service.active_clocks()

        assert [c.instance_id for c in clocks] == [active.id]
        assert clocks[0].auto_escalate_after_hours == 24
        assert clocks[0].max_processing_time_hours == 72

    def test_list_instances(self, started, instance_service):
        first = started()
        second = started(name="Other")
        instance_service.escalate(second.id, reason="overdue")

        assert [i.id for i in instance_service.list_instances(status=InstanceStatus.ACTIVE)] == [first.id]
        assert [i.id for i in instance_service.list_instances(application_id=second.application_id)] == [second.id]


@pytest.fixture
def admin_account_actor(make_actor):
    return make_actor(OrganizationRole.ADMIN_ACCOUNT)

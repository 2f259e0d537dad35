"""
procure_engines.step_authority -- who may act on a generic workflow step.

Responsibility:
    Resolve a WorkflowStep's declared role (client, vendor, admin, hr_admin,
    super_admin) to the organization roles allowed to process it.  Higher
    admin tiers may process lower admin tiers' steps; client and vendor steps
    stay with their own side.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
"""

from __future__ import annotations

from enum import Enum

from procure_kernel.domain.roles import OrganizationRole

R = OrganizationRole


class StepRole(str, Enum):
    CLIENT = "client"
    VENDOR = "vendor"
    ADMIN = "admin"
    HR_ADMIN = "hr_admin"
    SUPER_ADMIN = "super_admin"


STEP_ROLE_AUTHORITY: dict[StepRole, frozenset[OrganizationRole]] = {
    StepRole.SUPER_ADMIN: frozenset({R.ADMIN_OWNER}),
    StepRole.ADMIN: frozenset({R.ADMIN_OWNER, R.ADMIN_EMPLOYEE}),
    StepRole.HR_ADMIN: frozenset({R.ADMIN_OWNER, R.ADMIN_EMPLOYEE, R.ADMIN_ACCOUNT}),
    StepRole.CLIENT: frozenset({R.CLIENT_OWNER, R.CLIENT_EMPLOYEE}),
    StepRole.VENDOR: frozenset({R.VENDOR_OWNER, R.VENDOR_EMPLOYEE}),
}


def resolve_step_authority(step_role: StepRole | str) -> frozenset[OrganizationRole]:
    return STEP_ROLE_AUTHORITY[StepRole(step_role)]


def can_process_step(step_role: StepRole | str, organization_role: OrganizationRole | str) -> bool:
    return OrganizationRole(organization_role) in resolve_step_authority(step_role)

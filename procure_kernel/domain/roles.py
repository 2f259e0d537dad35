"""
Roles -- who is acting.

Responsibility:
    User types, organization roles and the ``ActingUser`` value passed into
    every workflow operation.  Authorization is always decided on
    (user_type, organization_role); ``ActingUser`` refuses combinations where
    the role belongs to a different organization type.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.  The login/session
    lifecycle that produces an ActingUser lives outside the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class UserType(str, Enum):
    CLIENT = "client"
    VENDOR = "vendor"
    ADMIN = "admin"


class OrganizationRole(str, Enum):
    ADMIN_OWNER = "admin_owner"
    ADMIN_EMPLOYEE = "admin_employee"
    ADMIN_ACCOUNT = "admin_account"
    VENDOR_OWNER = "vendor_owner"
    VENDOR_EMPLOYEE = "vendor_employee"
    VENDOR_ACCOUNT = "vendor_account"
    CLIENT_OWNER = "client_owner"
    CLIENT_EMPLOYEE = "client_employee"
    CLIENT_ACCOUNT = "client_account"

    @property
    def user_type(self) -> UserType:
        return UserType(self.value.split("_", 1)[0])

    @property
    def is_owner(self) -> bool:
        return self.value.endswith("_owner")


class Side(str, Enum):
    """Party that currently holds an entity in its workflow."""

    CLIENT = "client"
    VENDOR = "vendor"
    ANY = "any"


@dataclass(frozen=True)
class ActingUser:
    """
    The authenticated caller of a workflow operation.

    Contract:
        ``organization_role`` must belong to ``user_type`` (a vendor user
        cannot carry a client role).  Raises ValueError otherwise.
    """

    user_id: UUID
    user_type: UserType
    organization_role: OrganizationRole
    organization_id: UUID
    first_name: str = ""
    last_name: str = ""
    email: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "user_type", UserType(self.user_type))
        object.__setattr__(
            self, "organization_role", OrganizationRole(self.organization_role)
        )
        if self.organization_role.user_type is not self.user_type:
            raise ValueError(
                f"Organization role {self.organization_role.value} does not "
                f"belong to user type {self.user_type.value}"
            )

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email or str(self.user_id)

    def to_dict(self) -> dict:
        """Snapshot stored in workflow history and audit entries."""
        return {
            "user_id": str(self.user_id),
            "user_type": self.user_type.value,
            "organization_role": self.organization_role.value,
            "organization_id": str(self.organization_id),
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
        }


SYSTEM_USER_ID = UUID("00000000-0000-0000-0000-000000000000")


def system_actor_snapshot(name: str = "escalation_sweep") -> dict:
    """Performer snapshot for system-generated audit entries."""
    return {
        "user_id": str(SYSTEM_USER_ID),
        "user_type": "system",
        "organization_role": None,
        "organization_id": None,
        "first_name": name,
        "last_name": "",
        "email": "",
    }

"""
procure_engines.authority -- Approval Authority Resolver.

Responsibility:
    Decide whether an organization role may perform an action on an entity in
    its current state.  The same function answers UI visibility questions
    ("should the Approve button be enabled?") and server-side enforcement, so
    the two can never drift apart.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procure_kernel/domain types.

Invariants enforced:
    - Static table keyed by (entity_type, action) -> AuthorityRule.
    - Counterparty filtering: every non-terminal state is held by one side.
      A rule serving the client side is only valid while the client holds
      the entity; a vendor rule only once it has been handed to the vendor.
      ``Side.ANY`` rules (cancel, credit notes) are valid in any held state.
    - Terminal states are held by nobody; nothing is allowed there.
    - No side effects; safe to call any number of times.
"""

from __future__ import annotations

from dataclasses import dataclass

from procure_kernel.domain.roles import OrganizationRole, Side
from procure_kernel.domain.values import EntityType
from procure_kernel.domain.workflow import Workflow

R = OrganizationRole


@dataclass(frozen=True)
class AuthorityRule:
    """Roles allowed to perform an action, and the side it serves."""
    roles: frozenset[OrganizationRole]
    side: Side


def _rule(side: Side, *roles: OrganizationRole) -> AuthorityRule:
    return AuthorityRule(roles=frozenset(roles), side=side)


_CLIENT_AUTHORS = (R.CLIENT_OWNER, R.CLIENT_EMPLOYEE)
_OWNER_OVERRIDE = (R.CLIENT_OWNER, R.ADMIN_OWNER)


AUTHORITY_TABLE: dict[tuple[EntityType, str], AuthorityRule] = {
    # SOW
    (EntityType.SOW, "submit"): _rule(Side.CLIENT, *_CLIENT_AUTHORS),
    (EntityType.SOW, "submit_for_pm_approval"): _rule(Side.CLIENT, *_CLIENT_AUTHORS),
    (EntityType.SOW, "approve"): _rule(Side.CLIENT, R.ADMIN_OWNER, R.CLIENT_OWNER),
    (EntityType.SOW, "reject"): _rule(Side.CLIENT, R.ADMIN_OWNER, R.CLIENT_OWNER),
    (EntityType.SOW, "send_to_vendor"): _rule(Side.CLIENT, *_CLIENT_AUTHORS),
    (EntityType.SOW, "vendor_accept"): _rule(Side.VENDOR, R.VENDOR_OWNER, R.VENDOR_ACCOUNT),
    (EntityType.SOW, "vendor_reject"): _rule(Side.VENDOR, R.VENDOR_OWNER, R.VENDOR_ACCOUNT),
    (EntityType.SOW, "cancel"): _rule(Side.ANY, *_OWNER_OVERRIDE),
    # Purchase order
    (EntityType.PO, "submit"): _rule(Side.CLIENT, *_CLIENT_AUTHORS),
    (EntityType.PO, "finance_approve"): _rule(Side.CLIENT, R.CLIENT_OWNER),
    (EntityType.PO, "finance_reject"): _rule(Side.CLIENT, R.CLIENT_OWNER),
    (EntityType.PO, "send_to_vendor"): _rule(Side.CLIENT, *_CLIENT_AUTHORS),
    (EntityType.PO, "vendor_accept"): _rule(Side.VENDOR, R.VENDOR_ACCOUNT),
    (EntityType.PO, "vendor_reject"): _rule(Side.VENDOR, R.VENDOR_ACCOUNT),
    (EntityType.PO, "activate"): _rule(Side.CLIENT, R.CLIENT_OWNER),
    (EntityType.PO, "complete"): _rule(Side.CLIENT, R.CLIENT_OWNER),
    (EntityType.PO, "cancel"): _rule(Side.ANY, *_OWNER_OVERRIDE),
    # Invoice
    (EntityType.INVOICE, "approve"): _rule(Side.CLIENT, R.CLIENT_OWNER),
    (EntityType.INVOICE, "reject"): _rule(Side.CLIENT, R.CLIENT_OWNER),
    (EntityType.INVOICE, "mark_paid"): _rule(Side.CLIENT, R.CLIENT_OWNER),
    (EntityType.INVOICE, "resubmit"): _rule(Side.VENDOR, R.VENDOR_OWNER, R.VENDOR_ACCOUNT),
    (EntityType.INVOICE, "issue_credit_note"): _rule(Side.ANY, R.VENDOR_OWNER, R.VENDOR_ACCOUNT),
    (EntityType.INVOICE, "cancel"): _rule(Side.ANY, R.VENDOR_OWNER, R.ADMIN_OWNER),
}

# Creation is not a transition; it has no current state to hold.
CREATION_AUTHORITY: dict[EntityType, frozenset[OrganizationRole]] = {
    EntityType.SOW: frozenset(_CLIENT_AUTHORS),
    EntityType.PO: frozenset({R.CLIENT_OWNER}),
    EntityType.INVOICE: frozenset({R.VENDOR_OWNER, R.VENDOR_ACCOUNT}),
    EntityType.WORKFLOW_CONFIGURATION: frozenset({R.ADMIN_OWNER}),
}

# Draft edits follow the authoring roles.
UPDATE_AUTHORITY: dict[EntityType, frozenset[OrganizationRole]] = {
    EntityType.SOW: frozenset(_CLIENT_AUTHORS),
    EntityType.PO: frozenset({R.CLIENT_OWNER}),
    EntityType.WORKFLOW_CONFIGURATION: frozenset({R.ADMIN_OWNER}),
}

STATE_HOLDERS: dict[EntityType, dict[str, Side]] = {
    EntityType.SOW: {
        "draft": Side.CLIENT,
        "submitted": Side.CLIENT,
        "pm_approval_pending": Side.CLIENT,
        "internal_approved": Side.CLIENT,
        "sent_to_vendor": Side.VENDOR,
    },
    EntityType.PO: {
        "draft": Side.CLIENT,
        "submitted": Side.CLIENT,
        "finance_approved": Side.CLIENT,
        "sent_to_vendor": Side.VENDOR,
        "vendor_accepted": Side.CLIENT,
        "active": Side.CLIENT,
    },
    EntityType.INVOICE: {
        "pending": Side.CLIENT,
        "approved": Side.CLIENT,
        "rejected": Side.VENDOR,
    },
}


def holder_of(entity_type: EntityType, state: str) -> Side | None:
    """Side holding an entity in ``state``; None for terminal or unknown states."""
    return STATE_HOLDERS.get(EntityType(entity_type), {}).get(state)


def denial_reason(
    entity_type: EntityType | str,
    current_state: str,
    action: str,
    organization_role: OrganizationRole | str,
) -> str | None:
    """
    Why ``organization_role`` may not perform ``action``, or None if it may.

    The reason text is suitable for UnauthorizedError and UI tooltips.
    """
    entity_type = EntityType(entity_type)
    role = OrganizationRole(organization_role)
    rule = AUTHORITY_TABLE.get((entity_type, action))
    if rule is None:
        return f"no authority rule for {entity_type.value}.{action}"
    holder = holder_of(entity_type, current_state)
    if holder is None:
        return f"{entity_type.value} in '{current_state}' accepts no further actions"
    if rule.side is not Side.ANY and rule.side is not holder:
        return (
            f"{action} is a {rule.side.value}-side action but the "
            f"{entity_type.value} is held by the {holder.value} side"
        )
    if role not in rule.roles:
        allowed = ", ".join(sorted(r.value for r in rule.roles))
        return f"requires one of: {allowed}"
    return None


def can_perform(
    entity_type: EntityType | str,
    current_state: str,
    action: str,
    organization_role: OrganizationRole | str,
) -> bool:
    """True when the role is authorized for (entity_type, current_state, action)."""
    return denial_reason(entity_type, current_state, action, organization_role) is None


def can_create(entity_type: EntityType | str, organization_role: OrganizationRole | str) -> bool:
    roles = CREATION_AUTHORITY.get(EntityType(entity_type), frozenset())
    return OrganizationRole(organization_role) in roles


def can_update(entity_type: EntityType | str, organization_role: OrganizationRole | str) -> bool:
    roles = UPDATE_AUTHORITY.get(EntityType(entity_type), frozenset())
    return OrganizationRole(organization_role) in roles


def available_actions(
    workflow: Workflow,
    current_state: str,
    organization_role: OrganizationRole | str,
) -> tuple[str, ...]:
    """
    Actions that are both legal edges from ``current_state`` and authorized
    for the role -- exactly the set of requests that would not be refused
    with InvalidTransition or Unauthorized.
    """
    return tuple(
        action
        for action in workflow.actions_from(current_state)
        if can_perform(workflow.entity_type, current_state, action, organization_role)
    )

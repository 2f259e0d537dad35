"""
Canonical workflow types (``procure_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for entity state machines.  SOW, PO and invoice modules
declare their state tables with these types so that Guard, Transition and
Workflow are defined once and interpreted by one executor.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
* At most one transition per (from_state, action) pair.
"""

from __future__ import annotations

from dataclasses import dataclass

from procure_kernel.domain.values import AuditActionType, EntityType


@dataclass(frozen=True)
class Guard:
    """A payload condition that must hold before a transition fires.

    ``field`` names the request field reported when the guard fails.
    The executor evaluates guards; this type only describes them.
    """
    name: str
    description: str
    field: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``from_state == to_state`` is allowed for actions that mutate an entity
    without moving it (invoice credit notes).
    """
    from_state: str
    to_state: str
    action: str
    guards: tuple[Guard, ...] = ()
    audit_action_type: AuditActionType = AuditActionType.STATUS_CHANGE


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    entity_type: EntityType
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"{self.name}: initial state {self.initial_state!r} is not a state"
            )
        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            for state in (t.from_state, t.to_state):
                if state not in self.states:
                    raise ValueError(f"{self.name}: unknown state {state!r} in {t}")
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"{self.name}: terminal state {t.from_state!r} has outgoing {t.action!r}"
                )
            key = (t.from_state, t.action)
            if key in seen:
                raise ValueError(f"{self.name}: duplicate transition {key}")
            seen.add(key)

    def find_transition(self, current_state: str, action: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == current_state and t.action == action:
                return t
        return None

    def actions_from(self, state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == state)

    @property
    def actions(self) -> frozenset[str]:
        return frozenset(t.action for t in self.transitions)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states


def cancel_transitions(
    states: tuple[str, ...],
    terminal_states: tuple[str, ...],
    cancelled_state: str = "cancelled",
) -> tuple[Transition, ...]:
    """One ``cancel`` edge from every non-terminal state."""
    return tuple(
        Transition(state, cancelled_state, action="cancel")
        for state in states
        if state not in terminal_states and state != cancelled_state
    )

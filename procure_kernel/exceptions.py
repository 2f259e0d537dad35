"""
Typed Exception Hierarchy for the Procurement Workflow Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every workflow operation either succeeds with an updated entity plus exactly
one audit entry, or fails with a discriminated error kind. Callers (REST
bindings, UI visibility checks, batch sweeps) branch on the kind, never on
message text.

Each exception carries:
  1. A ``kind`` -- one of the six caller-facing categories below
  2. A ``code`` -- machine-readable, stable, API-safe
  3. Structured attributes (entity ids, states, roles, field errors)

Example:
    try:
        sow_service.approve(sow_id, actor, comments="ok")
    except UnauthorizedError as e:
        respond(403, code=e.code, role=e.organization_role)
    except InvalidTransitionError as e:
        respond(409, code=e.code, state=e.current_state)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProcureWorkflowError (base)
    |
    +-- InvalidTransitionError           kind=InvalidTransition
    |
    +-- UnauthorizedError                kind=Unauthorized
    |
    +-- ValidationFailedError            kind=ValidationFailed
    |   +-- JustificationRequiredError
    |   +-- IdempotencyKeyReusedError
    |   +-- DefaultWorkflowConflictError
    |
    +-- ReferentialViolationError        kind=ReferentialViolation
    |   +-- SowNotAcceptedError
    |   +-- SowAlreadyUtilizedError
    |   +-- PoNotAcceptedError
    |   +-- WorkflowConfigurationInUseError
    |
    +-- ConcurrencyConflictError         kind=ConcurrencyConflict
    |
    +-- PersistenceFailureError          kind=PersistenceFailure
    |   +-- AuditLogImmutableError
    |
    +-- EntityNotFoundError              kind=NotFound

===============================================================================
RETRY GUIDANCE
===============================================================================

    ConcurrencyConflictError -> refetch the entity, then retry the request
    PersistenceFailureError  -> retry with the SAME request_id (idempotent)
    everything else          -> do not retry; the request itself is wrong
"""

from typing import Any


class ProcureWorkflowError(Exception):
    """
    Base exception for all workflow engine errors.

    Subclasses set ``code`` (machine-readable) and ``kind`` (caller-facing
    category).
    """

    code: str = "PROCURE_WORKFLOW_ERROR"
    kind: str = "WorkflowError"

    def details(self) -> dict[str, Any]:
        """Structured attributes for response envelopes and logs."""
        return {
            key: value
            for key, value in vars(self).items()
            if not key.startswith("_")
        }


# State machine


class InvalidTransitionError(ProcureWorkflowError):
    """Action is not legal from the entity's current state."""

    code: str = "INVALID_TRANSITION"
    kind: str = "InvalidTransition"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        action: str,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.action = action
        self.reason = reason
        message = (
            f"Cannot {action} {entity_type} {entity_id} from state '{current_state}'"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# Authority


class UnauthorizedError(ProcureWorkflowError):
    """Acting user's organization role may not perform this action."""

    code: str = "UNAUTHORIZED"
    kind: str = "Unauthorized"

    def __init__(
        self,
        entity_type: str,
        action: str,
        organization_role: str,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.action = action
        self.organization_role = organization_role
        self.reason = reason
        message = f"Role '{organization_role}' may not {action} {entity_type}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# Payload validation


class ValidationFailedError(ProcureWorkflowError):
    """Request payload failed validation. ``errors`` maps field -> message."""

    code: str = "VALIDATION_FAILED"
    kind: str = "ValidationFailed"

    def __init__(self, errors: dict[str, str], message: str | None = None):
        self.errors = dict(errors)
        summary = "; ".join(f"{field}: {msg}" for field, msg in self.errors.items())
        super().__init__(message or f"Validation failed: {summary}")


class JustificationRequiredError(ValidationFailedError):
    """PO amount deviates from the SOW estimate beyond the threshold."""

    code: str = "JUSTIFICATION_REQUIRED"

    def __init__(self, deviation_percent: str, threshold_percent: str):
        self.deviation_percent = deviation_percent
        self.threshold_percent = threshold_percent
        super().__init__(
            {
                "justification": (
                    f"required when amount deviates {deviation_percent}% "
                    f"from the SOW estimate (threshold {threshold_percent}%)"
                )
            }
        )


class IdempotencyKeyReusedError(ValidationFailedError):
    """Request id was already used for a different entity or action."""

    code: str = "IDEMPOTENCY_KEY_REUSED"

    def __init__(self, request_id: str, original_entity_id: str, original_action: str):
        self.request_id = request_id
        self.original_entity_id = original_entity_id
        self.original_action = original_action
        super().__init__(
            {
                "request_id": (
                    f"already used for {original_action} on {original_entity_id}"
                )
            }
        )


class DefaultWorkflowConflictError(ValidationFailedError):
    """A default configuration already exists for these application types."""

    code: str = "DEFAULT_WORKFLOW_CONFLICT"

    def __init__(self, application_types: list[str], existing_id: str):
        self.application_types = list(application_types)
        self.existing_id = existing_id
        super().__init__(
            {
                "is_default": (
                    f"configuration {existing_id} is already the default for "
                    f"{', '.join(self.application_types)}"
                )
            }
        )


# Cross-entity preconditions


class ReferentialViolationError(ProcureWorkflowError):
    """Base exception for cross-entity precondition failures."""

    code: str = "REFERENTIAL_VIOLATION"
    kind: str = "ReferentialViolation"


class SowNotAcceptedError(ReferentialViolationError):
    """PO creation requires a vendor_accepted SOW."""

    code: str = "SOW_NOT_ACCEPTED"

    def __init__(self, sow_id: str, sow_status: str):
        self.sow_id = sow_id
        self.sow_status = sow_status
        super().__init__(
            f"SOW {sow_id} is '{sow_status}'; a PO requires a vendor_accepted SOW"
        )


class SowAlreadyUtilizedError(ReferentialViolationError):
    """A PO already references this SOW."""

    code: str = "SOW_ALREADY_UTILIZED"

    def __init__(self, sow_id: str, existing_po_id: str | None = None):
        self.sow_id = sow_id
        self.existing_po_id = existing_po_id
        super().__init__(f"SOW {sow_id} already has purchase order {existing_po_id}")


class PoNotAcceptedError(ReferentialViolationError):
    """Invoice creation requires an accepted or active PO."""

    code: str = "PO_NOT_ACCEPTED"

    def __init__(self, po_id: str, po_status: str):
        self.po_id = po_id
        self.po_status = po_status
        super().__init__(
            f"PO {po_id} is '{po_status}'; invoices require an accepted or active PO"
        )


class WorkflowConfigurationInUseError(ReferentialViolationError):
    """Configuration still drives active workflow instances."""

    code: str = "WORKFLOW_CONFIGURATION_IN_USE"

    def __init__(self, configuration_id: str, active_instances: int):
        self.configuration_id = configuration_id
        self.active_instances = active_instances
        super().__init__(
            f"Workflow configuration {configuration_id} has "
            f"{active_instances} active instance(s)"
        )


# Concurrency


class ConcurrencyConflictError(ProcureWorkflowError):
    """Entity was modified by another transaction since it was read."""

    code: str = "CONCURRENCY_CONFLICT"
    kind: str = "ConcurrencyConflict"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        message = (
            f"Concurrent modification of {entity_type} {entity_id}: "
            "refetch and retry"
        )
        if expected_version is not None:
            message = (
                f"{message} (expected version {expected_version}, "
                f"found {actual_version})"
            )
        super().__init__(message)


# Storage


class PersistenceFailureError(ProcureWorkflowError):
    """Storage error during entity or audit write; the whole request aborts."""

    code: str = "PERSISTENCE_FAILURE"
    kind: str = "PersistenceFailure"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Persistence failure during {operation}: {reason}")


class AuditLogImmutableError(PersistenceFailureError):
    """Attempted to modify or delete a stored audit log entry."""

    code: str = "AUDIT_LOG_IMMUTABLE"

    def __init__(self, entry_id: str, operation: str):
        self.entry_id = entry_id
        super().__init__(
            operation,
            f"audit log entry {entry_id} is append-only",
        )


# Lookup


class EntityNotFoundError(ProcureWorkflowError):
    """Referenced entity does not exist."""

    code: str = "ENTITY_NOT_FOUND"
    kind: str = "NotFound"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")

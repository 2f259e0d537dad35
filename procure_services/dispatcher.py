"""
procure_services.dispatcher -- named operations to service calls.

Responsibility:
    Maps the dotted operation names a REST or RPC binding exposes
    (``sow.create``, ``po.financeApproval``, ``auditLog.export``, ...) to the
    module services, converts the JSON payload into typed arguments and
    returns the ``{success, data, message}`` envelope.  A binding needs no
    business logic of its own.

Architecture position:
    Services -- the outermost layer.  One dispatcher per session; every
    mutating handler delegates to a service operation that owns its
    transaction.

Failure modes:
    - Unknown operation or malformed payload: ``ValidationFailed`` envelope.
    - Any ``ProcureWorkflowError`` raised by a service: its own envelope.
    - A client or vendor reading an entity its organization is not party
      to: ``Unauthorized`` envelope.  Their audit reads are pinned to their
      own organization.
    - Anything else propagates; the binding decides how to report it.

Payload conventions:
    Keys follow the camelCase of the UI (``sowId``, ``proposedChanges``).
    ``requestId`` and ``expectedVersion`` are accepted by every mutating
    operation.
"""

from __future__ import annotations

import base64
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from procure_config.schema import ProcureSettings
from procure_kernel.domain.audit import AuditLogQuery
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.domain.roles import ActingUser, UserType
from procure_kernel.domain.values import EntityType, MoneyAmount
from procure_kernel.exceptions import ProcureWorkflowError, UnauthorizedError, ValidationFailedError
from procure_kernel.logging_config import LogContext, get_logger
from procure_kernel.selectors.audit_log_selector import AuditLogSelector
from procure_modules.application_workflow import (
    ApplicationType,
    ConfigurationDraft,
    WorkflowConfigurationService,
    WorkflowInstanceService,
    WorkflowSettings,
    WorkflowStep,
)
from procure_modules.invoice import InvoiceDraft, InvoiceFile, InvoiceService, PaymentMethod, PaymentRecord
from procure_modules.po import PODraft, PaymentTerms, PurchaseOrderService
from procure_modules.sow import SOWDraft, SOWService
from procure_services.audit_export import AuditLogExporter, ExportFormat
from procure_services.responses import error_response, success_response
from procure_services.transition_executor import TransitionExecutor

logger = get_logger("services.dispatcher")

Handler = Callable[[ActingUser, Mapping[str, Any]], tuple[Any, str]]


class MalformedPayload(ValueError):
    """Raised by payload readers; reported as ValidationFailed on ``field``."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


# ---------------------------------------------------------------------------
# Payload readers
# ---------------------------------------------------------------------------


def _required(payload: Mapping[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value is None:
        raise MalformedPayload(key, f"{key} is required")
    return value


def _uuid(payload: Mapping[str, Any], key: str, required: bool = True) -> UUID | None:
    value = _required(payload, key) if required else payload.get(key)
    if value is None:
        return None
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except ValueError:
        raise MalformedPayload(key, f"{key} is not a valid id") from None


def _date(payload: Mapping[str, Any], key: str, required: bool = True) -> date | None:
    value = _required(payload, key) if required else payload.get(key)
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise MalformedPayload(key, f"{key} is not a valid date") from None


def _datetime(payload: Mapping[str, Any], key: str) -> datetime | None:
    value = payload.get(key)
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise MalformedPayload(key, f"{key} is not a valid timestamp") from None


def _int(payload: Mapping[str, Any], key: str, default: int | None = None) -> int | None:
    value = payload.get(key)
    if value is None:
        if default is None:
            raise MalformedPayload(key, f"{key} is required")
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedPayload(key, f"{key} must be an integer") from None


def _decimal(payload: Mapping[str, Any], key: str) -> Decimal:
    value = _required(payload, key)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise MalformedPayload(key, f"{key} is not a valid amount") from None


def _money(payload: Mapping[str, Any], key: str, required: bool = True) -> MoneyAmount | None:
    value = _required(payload, key) if required else payload.get(key)
    if value is None:
        return None
    try:
        return MoneyAmount(value["amount"], value["currency"])
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedPayload(key, str(e)) from None


def _enum(enum_cls, payload: Mapping[str, Any], key: str, default=None):
    value = payload.get(key)
    if value is None:
        if default is None:
            raise MalformedPayload(key, f"{key} is required")
        return default
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise MalformedPayload(key, f"{key} must be one of: {allowed}") from None


def _steps(payload: Mapping[str, Any], key: str = "steps") -> tuple[WorkflowStep, ...]:
    raw = _required(payload, key)
    try:
        return tuple(
            WorkflowStep.from_dict({
                "name": s["name"],
                "order": s["order"],
                "role": s["role"],
                "action": s["action"],
                "required": s.get("required", True),
                "auto_advance": s.get("autoAdvance", s.get("auto_advance", False)),
                "description": s.get("description"),
            })
            for s in raw
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedPayload(key, f"invalid step: {e}") from None


def _settings(payload: Mapping[str, Any], key: str = "settings") -> WorkflowSettings | None:
    raw = payload.get(key)
    if raw is None:
        return None
    try:
        return WorkflowSettings.from_dict({
            "allow_parallel_processing": raw.get("allowParallelProcessing", False),
            "max_processing_time": raw.get("maxProcessingTime", 72),
            "auto_escalate_after": raw.get("autoEscalateAfter", 24),
            "require_comments": raw.get("requireComments", False),
        })
    except (AttributeError, TypeError, ValueError) as e:
        raise MalformedPayload(key, f"invalid settings: {e}") from None


def _application_types(payload: Mapping[str, Any], key: str = "applicationTypes") -> tuple[ApplicationType, ...]:
    raw = _required(payload, key)
    try:
        return tuple(ApplicationType(t) for t in raw)
    except (TypeError, ValueError):
        allowed = ", ".join(m.value for m in ApplicationType)
        raise MalformedPayload(key, f"{key} entries must be one of: {allowed}") from None


def _audit_query(payload: Mapping[str, Any]) -> AuditLogQuery:
    return AuditLogQuery(
        entity_type=payload.get("entityType"),
        entity_id=_uuid(payload, "entityId", required=False),
        action_type=payload.get("actionType"),
        performed_by=_uuid(payload, "performedBy", required=False),
        organization_id=_uuid(payload, "organizationId", required=False),
        start_date=_datetime(payload, "startDate"),
        end_date=_datetime(payload, "endDate"),
    )


def _write_options(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "request_id": payload.get("requestId"),
        "expected_version": _int(payload, "expectedVersion", 0) or None,
    }


# ---------------------------------------------------------------------------
# Read scoping
# ---------------------------------------------------------------------------


def _visible(entity_type: EntityType, actor: ActingUser, dto):
    """Clients and vendors read only entities their organization is party to."""
    TransitionExecutor.check_tenancy(entity_type, "view", dto, actor)
    return dto


def _scoped_query(actor: ActingUser, query: AuditLogQuery) -> AuditLogQuery:
    """Pin non-admin audit reads to the actor's organization."""
    if actor.user_type is UserType.ADMIN:
        return query
    if query.organization_id is not None and query.organization_id != actor.organization_id:
        raise UnauthorizedError(
            "audit_log",
            "view",
            actor.organization_role.value,
            reason=f"organization {actor.organization_id} may not read another organization's audit log",
        )
    return replace(query, organization_id=actor.organization_id)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Registration:
    name: str
    handler: Handler


class OperationDispatcher:
    """
    Named-operation front door.

    Usage:
        dispatcher = OperationDispatcher(session, settings=get_active_config())
        envelope = dispatcher.dispatch("sow.approve", actor, {"sowId": ...})
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: ProcureSettings | None = None,
    ):
        clock = clock or SystemClock()
        linkage = settings.linkage if settings is not None else None
        targets = settings.escalation.targets if settings is not None else None
        pagination = settings.pagination if settings is not None else None

        self.sow = SOWService(session, clock)
        self.po = PurchaseOrderService(session, clock, linkage=linkage)
        self.invoice = InvoiceService(session, clock, linkage=linkage)
        self.configurations = WorkflowConfigurationService(session, clock)
        self.instances = WorkflowInstanceService(session, clock, escalation_targets=targets)
        self.audit = (
            AuditLogSelector(session, pagination.default_limit, pagination.max_limit)
            if pagination is not None
            else AuditLogSelector(session)
        )
        self.exporter = AuditLogExporter(session, clock)
        self._registry: dict[str, _Registration] = {}
        register_standard_operations(self)

    def register(self, name: str, handler: Handler) -> None:
        self._registry[name] = _Registration(name, handler)

    @property
    def operations(self) -> tuple[str, ...]:
        return tuple(sorted(self._registry))

    def dispatch(
        self,
        name: str,
        actor: ActingUser,
        payload: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload = payload or {}
        registration = self._registry.get(name)
        if registration is None:
            return error_response(
                ValidationFailedError({"operation": f"Unknown operation: {name}"})
            )
        with LogContext.bind(request_id=payload.get("requestId"), actor_id=actor.user_id, operation=name):
            try:
                data, message = registration.handler(actor, payload)
            except MalformedPayload as exc:
                return error_response(ValidationFailedError({exc.field: str(exc)}))
            except ProcureWorkflowError as exc:
                logger.info(
                    "operation_failed",
                    extra={"operation_name": name, "error_code": exc.code, "error": str(exc)},
                )
                return error_response(exc)
            return success_response(data, message)


def _entity(result) -> Any:
    return result.entity


def register_standard_operations(d: OperationDispatcher) -> None:
    """Register every operation the engine exposes."""

    # -- SOW ------------------------------------------------------------------

    def sow_create(actor, p):
        draft = SOWDraft(
            title=_required(p, "title"),
            vendor_id=_uuid(p, "vendorId"),
            start_date=_date(p, "startDate"),
            end_date=_date(p, "endDate"),
            estimated_cost=_money(p, "estimatedCost"),
            description=p.get("description") or "",
            requirement_id=_uuid(p, "requirementId", required=False),
            vendor_organization_id=_uuid(p, "vendorOrganizationId", required=False),
        )
        return _entity(d.sow.create(draft, actor, request_id=p.get("requestId"))), "SOW created"

    def sow_update(actor, p):
        result = d.sow.update(
            _uuid(p, "sowId"), actor,
            title=p.get("title"),
            description=p.get("description"),
            start_date=_date(p, "startDate", required=False),
            end_date=_date(p, "endDate", required=False),
            estimated_cost=_money(p, "estimatedCost", required=False),
            **_write_options(p),
        )
        return _entity(result), "SOW updated"

    d.register("sow.create", sow_create)
    d.register("sow.update", sow_update)
    d.register("sow.get", lambda actor, p: (
        _visible(EntityType.SOW, actor, d.sow.get(_uuid(p, "sowId"))), ""
    ))
    d.register("sow.list", lambda actor, p: (
        d.sow.list_for_organization(actor.organization_id), ""
    ))
    d.register("sow.availableActions", lambda actor, p: (
        d.sow.available_actions(_uuid(p, "sowId"), actor), ""
    ))
    d.register("sow.submit", lambda actor, p: (
        _entity(d.sow.submit(_uuid(p, "sowId"), actor, **_write_options(p))), "SOW submitted"
    ))
    d.register("sow.submitForPMApproval", lambda actor, p: (
        _entity(d.sow.submit_for_pm_approval(
            _uuid(p, "sowId"), actor, p.get("comments"), **_write_options(p)
        )),
        "SOW submitted for PM approval",
    ))
    d.register("sow.approve", lambda actor, p: (
        _entity(d.sow.approve(_uuid(p, "sowId"), actor, p.get("comments"), **_write_options(p))),
        "SOW approved",
    ))
    d.register("sow.reject", lambda actor, p: (
        _entity(d.sow.reject(_uuid(p, "sowId"), actor, p.get("comments"), **_write_options(p))),
        "SOW rejected",
    ))
    d.register("sow.sendToVendor", lambda actor, p: (
        _entity(d.sow.send_to_vendor(_uuid(p, "sowId"), actor, **_write_options(p))),
        "SOW sent to vendor",
    ))
    d.register("sow.vendorResponse", lambda actor, p: (
        _entity(d.sow.vendor_response(
            _uuid(p, "sowId"), actor, _required(p, "status"),
            p.get("comments"), p.get("proposedChanges"), **_write_options(p),
        )),
        "Vendor response recorded",
    ))
    d.register("sow.cancel", lambda actor, p: (
        _entity(d.sow.cancel(_uuid(p, "sowId"), actor, p.get("comments"), **_write_options(p))),
        "SOW cancelled",
    ))

    # -- Purchase orders -------------------------------------------------------

    def po_create(actor, p):
        draft = PODraft(
            sow_id=_uuid(p, "sowId"),
            start_date=_date(p, "startDate"),
            end_date=_date(p, "endDate"),
            total_amount=_money(p, "totalAmount"),
            payment_terms=_enum(PaymentTerms, p, "paymentTerms", PaymentTerms.NET_30),
            custom_payment_terms=p.get("customPaymentTerms"),
            justification=p.get("justification"),
            notes=p.get("notes"),
            vendor_id=_uuid(p, "vendorId", required=False),
        )
        return _entity(d.po.create(draft, actor, request_id=p.get("requestId"))), "Purchase order created"

    def po_update(actor, p):
        terms = p.get("paymentTerms")
        result = d.po.update(
            _uuid(p, "poId"), actor,
            start_date=_date(p, "startDate", required=False),
            end_date=_date(p, "endDate", required=False),
            total_amount=_money(p, "totalAmount", required=False),
            payment_terms=_enum(PaymentTerms, p, "paymentTerms") if terms is not None else None,
            custom_payment_terms=p.get("customPaymentTerms"),
            justification=p.get("justification"),
            notes=p.get("notes"),
            **_write_options(p),
        )
        return _entity(result), "Purchase order updated"

    d.register("po.create", po_create)
    d.register("po.update", po_update)
    d.register("po.get", lambda actor, p: (
        _visible(EntityType.PO, actor, d.po.get(_uuid(p, "poId"))), ""
    ))
    d.register("po.list", lambda actor, p: (d.po.list_for_organization(actor.organization_id), ""))
    d.register("po.availableActions", lambda actor, p: (
        d.po.available_actions(_uuid(p, "poId"), actor), ""
    ))
    d.register("po.submit", lambda actor, p: (
        _entity(d.po.submit(_uuid(p, "poId"), actor, **_write_options(p))), "Purchase order submitted"
    ))
    d.register("po.financeApproval", lambda actor, p: (
        _entity(d.po.finance_approval(
            _uuid(p, "poId"), actor, _required(p, "status"), p.get("comments"), **_write_options(p)
        )),
        "Finance decision recorded",
    ))
    d.register("po.sendToVendor", lambda actor, p: (
        _entity(d.po.send_to_vendor(_uuid(p, "poId"), actor, **_write_options(p))),
        "Purchase order sent to vendor",
    ))
    d.register("po.vendorResponse", lambda actor, p: (
        _entity(d.po.vendor_response(
            _uuid(p, "poId"), actor, _required(p, "status"), p.get("comments"), **_write_options(p)
        )),
        "Vendor response recorded",
    ))
    d.register("po.activate", lambda actor, p: (
        _entity(d.po.activate(_uuid(p, "poId"), actor, **_write_options(p))), "Purchase order activated"
    ))
    d.register("po.complete", lambda actor, p: (
        _entity(d.po.complete(_uuid(p, "poId"), actor, p.get("comments"), **_write_options(p))),
        "Purchase order completed",
    ))
    d.register("po.cancel", lambda actor, p: (
        _entity(d.po.cancel(_uuid(p, "poId"), actor, p.get("comments"), **_write_options(p))),
        "Purchase order cancelled",
    ))

    # -- Invoices --------------------------------------------------------------

    def invoice_create(actor, p):
        raw_file = p.get("invoiceFile")
        invoice_file = None
        if raw_file:
            try:
                invoice_file = InvoiceFile(
                    original_name=raw_file["originalName"],
                    file_size=int(raw_file["fileSize"]),
                    file_type=raw_file["fileType"],
                    file_id=raw_file["fileId"],
                )
            except (KeyError, TypeError, ValueError) as e:
                raise MalformedPayload("invoiceFile", f"invalid file metadata: {e}") from None
        draft = InvoiceDraft(
            po_id=_uuid(p, "poId"),
            invoice_date=_date(p, "invoiceDate"),
            invoice_amount=_money(p, "invoiceAmount"),
            work_summary=p.get("workSummary") or "",
            due_date=_date(p, "dueDate", required=False),
            invoice_file=invoice_file,
            vendor_id=_uuid(p, "vendorId", required=False),
        )
        return _entity(d.invoice.create(draft, actor, request_id=p.get("requestId"))), "Invoice created"

    def invoice_mark_paid(actor, p):
        payment = PaymentRecord(
            paid_amount=_decimal(p, "paidAmount"),
            paid_date=_date(p, "paidDate"),
            method=_enum(PaymentMethod, p, "paymentMethod", PaymentMethod.BANK_TRANSFER),
            transaction_id=p.get("transactionId"),
            notes=p.get("notes"),
        )
        return (
            _entity(d.invoice.mark_paid(_uuid(p, "invoiceId"), actor, payment, **_write_options(p))),
            "Invoice marked as paid",
        )

    def invoice_list(actor, p):
        if not p.get("poId"):
            return d.invoice.list_for_organization(actor.organization_id), ""
        po = _visible(EntityType.PO, actor, d.po.get(_uuid(p, "poId")))
        return d.invoice.list_for_po(po.id), ""

    d.register("invoice.create", invoice_create)
    d.register("invoice.get", lambda actor, p: (
        _visible(EntityType.INVOICE, actor, d.invoice.get(_uuid(p, "invoiceId"))), ""
    ))
    d.register("invoice.list", invoice_list)
    d.register("invoice.availableActions", lambda actor, p: (
        d.invoice.available_actions(_uuid(p, "invoiceId"), actor), ""
    ))
    d.register("invoice.approve", lambda actor, p: (
        _entity(d.invoice.approve(_uuid(p, "invoiceId"), actor, p.get("comments"), **_write_options(p))),
        "Invoice approved",
    ))
    d.register("invoice.reject", lambda actor, p: (
        _entity(d.invoice.reject(_uuid(p, "invoiceId"), actor, p.get("reason"), **_write_options(p))),
        "Invoice rejected",
    ))
    d.register("invoice.markPaid", invoice_mark_paid)
    d.register("invoice.resubmit", lambda actor, p: (
        _entity(d.invoice.resubmit(_uuid(p, "invoiceId"), actor, p.get("comments"), **_write_options(p))),
        "Invoice resubmitted",
    ))
    d.register("invoice.issueCreditNote", lambda actor, p: (
        _entity(d.invoice.issue_credit_note(
            _uuid(p, "invoiceId"), actor, _decimal(p, "amount"), p.get("reason"), **_write_options(p)
        )),
        "Credit note issued",
    ))
    d.register("invoice.cancel", lambda actor, p: (
        _entity(d.invoice.cancel(_uuid(p, "invoiceId"), actor, p.get("comments"), **_write_options(p))),
        "Invoice cancelled",
    ))

    # -- Workflow configurations and instances ---------------------------------

    def configuration_create(actor, p):
        draft = ConfigurationDraft(
            name=p.get("name") or "",
            application_types=_application_types(p),
            steps=_steps(p),
            settings=_settings(p) or WorkflowSettings(),
            description=p.get("description"),
            is_default=bool(p.get("isDefault", False)),
        )
        result = d.configurations.create(draft, actor, request_id=p.get("requestId"))
        return _entity(result), "Workflow configuration created"

    def configuration_update(actor, p):
        result = d.configurations.update(
            _uuid(p, "configurationId"), actor,
            name=p.get("name"),
            description=p.get("description"),
            application_types=(
                _application_types(p) if p.get("applicationTypes") is not None else None
            ),
            steps=_steps(p) if p.get("steps") is not None else None,
            settings=_settings(p),
            is_active=p.get("isActive"),
            **_write_options(p),
        )
        return _entity(result), "Workflow configuration updated"

    d.register("workflow.configuration.create", configuration_create)
    d.register("workflow.configuration.update", configuration_update)
    d.register("workflow.configuration.delete", lambda actor, p: (
        _entity(d.configurations.delete(_uuid(p, "configurationId"), actor, **_write_options(p))),
        "Workflow configuration deleted",
    ))
    d.register("workflow.configuration.setDefault", lambda actor, p: (
        _entity(d.configurations.set_default(_uuid(p, "configurationId"), actor, **_write_options(p))),
        "Workflow configuration set as default",
    ))
    d.register("workflow.configuration.get", lambda actor, p: (
        d.configurations.get(_uuid(p, "configurationId")), ""
    ))
    d.register("workflow.configuration.list", lambda actor, p: (
        d.configurations.list_configurations(is_active=p.get("isActive")), ""
    ))
    d.register("workflow.instance.start", lambda actor, p: (
        _entity(d.instances.start_instance(
            _uuid(p, "configurationId"), _uuid(p, "applicationId"), actor,
            request_id=p.get("requestId"),
        )),
        "Workflow instance started",
    ))
    d.register("workflow.instance.processStep", lambda actor, p: (
        _entity(d.instances.process_step(
            _uuid(p, "instanceId"), _int(p, "stepOrder"), _required(p, "action"),
            actor, p.get("comments"), **_write_options(p),
        )),
        "Workflow step processed",
    ))
    d.register("workflow.instance.cancel", lambda actor, p: (
        _entity(d.instances.cancel_instance(
            _uuid(p, "instanceId"), actor, p.get("comments"), **_write_options(p)
        )),
        "Workflow instance cancelled",
    ))
    d.register("workflow.instance.get", lambda actor, p: (d.instances.get(_uuid(p, "instanceId")), ""))

    # -- Audit log -------------------------------------------------------------

    def audit_entity(actor, p) -> tuple[str, UUID]:
        entity_type, entity_id = _required(p, "entityType"), _uuid(p, "entityId")
        if actor.user_type is not UserType.ADMIN:
            trail = AuditLogQuery(entity_type=entity_type, entity_id=entity_id)
            own = d.audit.query(_scoped_query(actor, trail), limit=1).total_docs
            if not own and d.audit.query(trail, limit=1).total_docs:
                raise UnauthorizedError(
                    entity_type,
                    "view",
                    actor.organization_role.value,
                    reason=f"organization {actor.organization_id} is not a party to this {entity_type}",
                )
        return entity_type, entity_id

    def audit_query(actor, p):
        sort_order = p.get("sortOrder", "desc")
        if sort_order not in ("asc", "desc"):
            raise MalformedPayload("sortOrder", "sortOrder must be asc or desc")
        page = d.audit.query(
            _scoped_query(actor, _audit_query(p)),
            page=_int(p, "page", 1),
            limit=_int(p, "limit", 0) or None,
            sort_order=sort_order,
        )
        return page, ""

    def audit_summary(actor, p):
        return d.audit.summarize(*audit_entity(actor, p)), ""

    def audit_export(actor, p):
        export = d.exporter.export(
            _scoped_query(actor, _audit_query(p)),
            _enum(ExportFormat, p, "format", ExportFormat.CSV),
        )
        return {
            "filename": export.filename,
            "contentType": export.content_type,
            "rowCount": export.row_count,
            "content": base64.b64encode(export.content).decode("ascii"),
        }, f"Exported {export.row_count} audit entries"

    d.register("auditLog.query", audit_query)
    d.register("auditLog.summary", audit_summary)
    d.register("auditLog.statistics", lambda actor, p: (
        d.audit.statistics(_scoped_query(actor, _audit_query(p))), ""
    ))
    d.register("auditLog.entityTrail", lambda actor, p: (
        d.audit.entity_trail(*audit_entity(actor, p)), ""
    ))
    d.register("auditLog.export", audit_export)

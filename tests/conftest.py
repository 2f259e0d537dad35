"""
Pytest fixtures for the approval workflow test suite.

Provides:
- A fresh SQLite file database per test (PROCURE_TEST_DATABASE_URL points the
  suite at PostgreSQL instead)
- A deterministic clock
- Acting-user factories for one client and one vendor organization
- Service fixtures and builders that walk entities to a given state
- Captured structured logs

Environment Variables:
- PROCURE_TEST_DATABASE_URL: optional database URL.  When unset, every test
  gets its own SQLite file under pytest's tmp_path.
"""

import json
import logging
import os
from datetime import UTC, date, datetime
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest

from procure_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from procure_kernel.domain.clock import DeterministicClock
from procure_kernel.domain.roles import ActingUser, OrganizationRole, UserType
from procure_kernel.domain.values import MoneyAmount
from procure_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from procure_modules.application_workflow import (
    WorkflowConfigurationService,
    WorkflowInstanceService,
)
from procure_modules.invoice import InvoiceDraft, InvoiceService
from procure_modules.po import PODraft, PaymentTerms, PurchaseOrderService
from procure_modules.sow import SOWDraft, SOWService

# Escalation target for every step role in tests.
ESCALATION_TARGET_ID = UUID("7d0f1a3e-4c1b-4f57-9a53-2f8e8b1c0a03")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture procure logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, sow_service):
            sow_service.create(...)
            assert any(r["message"] == "sow_created" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("procure")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database_url(tmp_path):
    return os.environ.get("PROCURE_TEST_DATABASE_URL") or f"sqlite:///{tmp_path / 'procure.db'}"


@pytest.fixture
def db_engine(database_url):
    engine = init_engine_from_url(database_url)
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


# =============================================================================
# Clock and actors
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC))


@pytest.fixture
def client_org() -> UUID:
    return uuid4()


@pytest.fixture
def vendor_org() -> UUID:
    return uuid4()


@pytest.fixture
def admin_org() -> UUID:
    return uuid4()


@pytest.fixture
def make_actor(client_org, vendor_org, admin_org):
    """Build an ActingUser for a role; the organization follows the role's side."""

    def _make(role: OrganizationRole | str, organization_id: UUID | None = None, **kwargs) -> ActingUser:
        role = OrganizationRole(role)
        user_type = role.user_type
        default_org = {
            UserType.CLIENT: client_org,
            UserType.VENDOR: vendor_org,
            UserType.ADMIN: admin_org,
        }[user_type]
        return ActingUser(
            user_id=kwargs.pop("user_id", uuid4()),
            user_type=user_type,
            organization_role=role,
            organization_id=organization_id or default_org,
            first_name=kwargs.pop("first_name", role.value.split("_")[0].title()),
            last_name=kwargs.pop("last_name", role.value.split("_")[1].title()),
            email=kwargs.pop("email", f"{role.value}@example.com"),
        )

    return _make


@pytest.fixture
def client_owner(make_actor):
    return make_actor(OrganizationRole.CLIENT_OWNER)


@pytest.fixture
def client_employee(make_actor):
    return make_actor(OrganizationRole.CLIENT_EMPLOYEE)


@pytest.fixture
def vendor_owner(make_actor):
    return make_actor(OrganizationRole.VENDOR_OWNER)


@pytest.fixture
def vendor_account(make_actor):
    return make_actor(OrganizationRole.VENDOR_ACCOUNT)


@pytest.fixture
def vendor_employee(make_actor):
    return make_actor(OrganizationRole.VENDOR_EMPLOYEE)


@pytest.fixture
def admin_owner(make_actor):
    return make_actor(OrganizationRole.ADMIN_OWNER)


@pytest.fixture
def admin_employee(make_actor):
    return make_actor(OrganizationRole.ADMIN_EMPLOYEE)


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def sow_service(session, clock):
    return SOWService(session, clock)


@pytest.fixture
def po_service(session, clock):
    return PurchaseOrderService(session, clock)


@pytest.fixture
def invoice_service(session, clock):
    return InvoiceService(session, clock)


@pytest.fixture
def config_service(session, clock):
    return WorkflowConfigurationService(session, clock)


@pytest.fixture
def escalation_target():
    return ESCALATION_TARGET_ID


@pytest.fixture
def instance_service(session, clock):
    return WorkflowInstanceService(
        session, clock,
        escalation_targets={
            role: ESCALATION_TARGET_ID
            for role in ("client", "vendor", "admin", "hr_admin", "super_admin")
        },
    )


# =============================================================================
# Builders
# =============================================================================


@pytest.fixture
def sow_draft(vendor_org):
    def _draft(amount: str = "100000", **overrides) -> SOWDraft:
        fields = {
            "title": "Data platform migration",
            "vendor_id": vendor_org,
            "start_date": date(2026, 4, 1),
            "end_date": date(2026, 9, 30),
            "estimated_cost": MoneyAmount(Decimal(amount), "USD"),
            "description": "Migrate the reporting warehouse",
        }
        fields.update(overrides)
        return SOWDraft(**fields)

    return _draft


@pytest.fixture
def accepted_sow(sow_service, sow_draft, client_employee, client_owner, vendor_owner):
    """Walk a new SOW to ``vendor_accepted``; returns a factory."""

    def _build(amount: str = "100000"):
        sow = sow_service.create(sow_draft(amount), client_employee).entity
        sow_service.submit_for_pm_approval(sow.id, client_employee, "Ready for PM review")
        sow_service.approve(sow.id, client_owner, "Looks good")
        sow_service.send_to_vendor(sow.id, client_employee)
        return sow_service.vendor_response(sow.id, vendor_owner, "accepted", "Agreed").entity

    return _build


@pytest.fixture
def po_draft():
    def _draft(sow_id: UUID, amount: str = "100000", **overrides) -> PODraft:
        fields = {
            "sow_id": sow_id,
            "start_date": date(2026, 4, 1),
            "end_date": date(2026, 9, 30),
            "total_amount": MoneyAmount(Decimal(amount), "USD"),
            "payment_terms": PaymentTerms.NET_30,
        }
        fields.update(overrides)
        return PODraft(**fields)

    return _draft


@pytest.fixture
def accepted_po(accepted_sow, po_service, po_draft, client_owner, vendor_account):
    """Walk a new PO to ``vendor_accepted``; returns a factory."""

    def _build(amount: str = "100000"):
        sow = accepted_sow(amount)
        po = po_service.create(po_draft(sow.id, amount), client_owner).entity
        po_service.submit(po.id, client_owner)
        po_service.finance_approval(po.id, client_owner, "approved", "Budget confirmed")
        po_service.send_to_vendor(po.id, client_owner)
        return po_service.vendor_response(po.id, vendor_account, "accepted").entity

    return _build


@pytest.fixture
def invoice_draft():
    def _draft(po_id: UUID, amount: str = "25000", **overrides) -> InvoiceDraft:
        fields = {
            "po_id": po_id,
            "invoice_date": date(2026, 3, 2),
            "invoice_amount": MoneyAmount(Decimal(amount), "USD"),
            "work_summary": "Phase 1 delivery",
        }
        fields.update(overrides)
        return InvoiceDraft(**fields)

    return _draft

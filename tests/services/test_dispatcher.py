"""
Tests for the named-operation dispatcher.

Covers:
- Success envelopes with JSON-native data
- Typed failure envelopes (kind, code, details)
- Malformed payloads and unknown operations
- Read scoping to the actor's organization
"""

import base64
from uuid import uuid4

import pytest

from procure_services.dispatcher import OperationDispatcher


@pytest.fixture
def dispatcher(session, clock):
    return OperationDispatcher(session, clock)


@pytest.fixture
def sow_payload(vendor_org):
    return {
        "title": "Data platform migration",
        "vendorId": str(vendor_org),
        "startDate": "2026-04-01",
        "endDate": "2026-09-30",
        "estimatedCost": {"amount": "100000", "currency": "USD"},
    }


class TestEnvelopes:

    def test_success_envelope(self, dispatcher, client_employee, sow_payload):
        envelope = dispatcher.dispatch("sow.create", client_employee, sow_payload)

        assert envelope["success"] is True
        assert envelope["message"] == "SOW created"
        assert envelope["data"]["status"] == "draft"
        assert envelope["data"]["version"] == 1
        assert envelope["data"]["start_date"] == "2026-04-01"

    def test_typed_failure_envelope(self, dispatcher, vendor_owner, sow_payload):
        envelope = dispatcher.dispatch("sow.create", vendor_owner, sow_payload)

        assert envelope["success"] is False
        assert envelope["data"] is None
        assert envelope["error"]["kind"] == "Unauthorized"
        assert envelope["error"]["code"] == "UNAUTHORIZED"
        assert envelope["error"]["details"]["action"] == "create"

    def test_not_found(self, dispatcher, client_employee):
        envelope = dispatcher.dispatch("sow.get", client_employee, {"sowId": str(uuid4())})

        assert envelope["error"]["kind"] == "NotFound"

    def test_stale_expected_version(self, dispatcher, client_employee, sow_payload):
        sow_id = dispatcher.dispatch("sow.create", client_employee, sow_payload)["data"]["id"]
        dispatcher.dispatch("sow.submit", client_employee, {"sowId": sow_id})

        envelope = dispatcher.dispatch(
            "sow.cancel", client_employee, {"sowId": sow_id, "expectedVersion": 1}
        )

        assert envelope["error"]["kind"] == "ConcurrencyConflict"


class TestPayloads:

    def test_unknown_operation(self, dispatcher, client_employee):
        envelope = dispatcher.dispatch("sow.teleport", client_employee, {})

        assert envelope["error"]["kind"] == "ValidationFailed"
        assert "operation" in envelope["error"]["details"]["errors"]

    def test_malformed_id(self, dispatcher, client_employee):
        envelope = dispatcher.dispatch("sow.get", client_employee, {"sowId": "not-a-uuid"})

        assert envelope["error"]["details"]["errors"] == {"sowId": "sowId is not a valid id"}

    def test_missing_field(self, dispatcher, client_employee, sow_payload):
        del sow_payload["title"]

        envelope = dispatcher.dispatch("sow.create", client_employee, sow_payload)

        assert "title" in envelope["error"]["details"]["errors"]

    def test_bad_enum_value(self, dispatcher, client_owner):
        envelope = dispatcher.dispatch(
            "po.create", client_owner, {"sowId": str(uuid4()), "paymentTerms": "net_90",
                                        "startDate": "2026-04-01", "endDate": "2026-09-30",
                                        "totalAmount": {"amount": "1", "currency": "USD"}},
        )

        assert "paymentTerms" in envelope["error"]["details"]["errors"]

    def test_operations_registered(self, dispatcher):
        assert {"sow.create", "po.financeApproval", "invoice.markPaid",
                "workflow.instance.processStep", "auditLog.export"} <= set(dispatcher.operations)


class TestAuditOperations:

    def test_query_and_export(self, dispatcher, client_employee, sow_payload):
        dispatcher.dispatch("sow.create", client_employee, sow_payload)

        page = dispatcher.dispatch("auditLog.query", client_employee, {"entityType": "sow"})
        assert page["data"]["total_docs"] == 1

        export = dispatcher.dispatch("auditLog.export", client_employee, {"format": "csv"})
        assert export["message"] == "Exported 1 audit entries"
        content = base64.b64decode(export["data"]["content"]).decode("utf-8")
        assert content.startswith("Performed At,Entity Type")
        assert export["data"]["filename"] == "audit-log-20260302090000.csv"

    def test_bad_sort_order(self, dispatcher, client_employee):
        envelope = dispatcher.dispatch("auditLog.query", client_employee, {"sortOrder": "sideways"})

        assert "sortOrder" in envelope["error"]["details"]["errors"]


class TestReadScoping:

    @pytest.fixture
    def outsider(self, make_actor):
        return make_actor("client_owner", organization_id=uuid4())

    @pytest.fixture
    def sow_id(self, dispatcher, client_employee, sow_payload):
        return dispatcher.dispatch("sow.create", client_employee, sow_payload)["data"]["id"]

    def test_party_reads_entity(self, dispatcher, vendor_owner, sow_id):
        envelope = dispatcher.dispatch("sow.get", vendor_owner, {"sowId": sow_id})

        assert envelope["data"]["id"] == sow_id

    def test_other_organization_cannot_read_entity(self, dispatcher, outsider, sow_id):
        envelope = dispatcher.dispatch("sow.get", outsider, {"sowId": sow_id})

        assert envelope["error"]["kind"] == "Unauthorized"
        assert envelope["error"]["details"]["action"] == "view"

    def test_admin_reads_any_entity(self, dispatcher, admin_owner, sow_id):
        envelope = dispatcher.dispatch("sow.get", admin_owner, {"sowId": sow_id})

        assert envelope["success"] is True

    def test_invoice_list_by_foreign_po(self, dispatcher, outsider, vendor_owner, accepted_po):
        po = accepted_po()

        foreign = dispatcher.dispatch("invoice.list", outsider, {"poId": str(po.id)})
        own = dispatcher.dispatch("invoice.list", vendor_owner, {"poId": str(po.id)})

        assert foreign["error"]["kind"] == "Unauthorized"
        assert own["data"] == []

    def test_audit_query_pinned_to_own_organization(self, dispatcher, outsider, sow_id):
        envelope = dispatcher.dispatch("auditLog.query", outsider, {"entityType": "sow"})

        assert envelope["data"]["total_docs"] == 0

    def test_audit_query_for_another_organization(self, dispatcher, outsider, client_org, sow_id):
        envelope = dispatcher.dispatch(
            "auditLog.query", outsider, {"organizationId": str(client_org)}
        )

        assert envelope["error"]["kind"] == "Unauthorized"

    def test_audit_export_pinned_to_own_organization(self, dispatcher, outsider, sow_id):
        envelope = dispatcher.dispatch("auditLog.export", outsider, {"format": "csv"})

        assert envelope["data"]["rowCount"] == 0

    def test_entity_trail_of_foreign_entity(self, dispatcher, outsider, sow_id):
        payload = {"entityType": "sow", "entityId": sow_id}

        trail = dispatcher.dispatch("auditLog.entityTrail", outsider, payload)
        summary = dispatcher.dispatch("auditLog.summary", outsider, payload)

        assert trail["error"]["kind"] == "Unauthorized"
        assert summary["error"]["kind"] == "Unauthorized"

    def test_entity_trail_for_party_and_admin(self, dispatcher, vendor_owner, admin_owner, sow_id):
        payload = {"entityType": "sow", "entityId": sow_id}

        assert len(dispatcher.dispatch("auditLog.entityTrail", vendor_owner, payload)["data"]) == 1
        assert len(dispatcher.dispatch("auditLog.entityTrail", admin_owner, payload)["data"]) == 1

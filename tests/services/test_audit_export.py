"""Tests for audit log exports."""

import csv
import io

import pytest
from openpyxl import load_workbook

from procure_kernel.domain.audit import AuditLogQuery
from procure_kernel.selectors.audit_log_selector import AuditLogSelector
from procure_services.audit_export import COLUMNS, AuditLogExporter, ExportFormat


@pytest.fixture
def exporter(session, clock):
    return AuditLogExporter(session, clock)


@pytest.fixture
def trail(sow_service, sow_draft, client_employee):
    sow = sow_service.create(sow_draft(), client_employee).entity
    sow_service.submit(sow.id, client_employee)
    return sow


class TestAuditExport:

    def test_csv(self, exporter, trail):
        export = exporter.export(AuditLogQuery(entity_type="sow"), "csv")

        rows = list(csv.reader(io.StringIO(export.content.decode("utf-8"))))
        assert rows[0] == list(COLUMNS)
        assert len(rows) == 3
        assert rows[1][3] == "SOW submit: draft -> submitted"
        assert rows[1][5] == "Client Employee"
        assert rows[1][8] == "no"
        assert export.content_type == "text/csv"
        assert export.filename == "audit-log-20260302090000.csv"
        assert export.row_count == 2

    def test_excel(self, exporter, trail):
        export = exporter.export(None, ExportFormat.EXCEL)

        sheet = load_workbook(io.BytesIO(export.content)).active
        assert sheet.title == "Audit Log"
        assert [c.value for c in sheet[1]] == list(COLUMNS)
        assert sheet.max_row == 3
        assert sheet["D3"].value == "SOW created: Data platform migration"
        assert export.filename.endswith(".xlsx")

    def test_html_for_pdf(self, session, trail):
        records = AuditLogSelector(session).all_matching(AuditLogQuery())

        html = AuditLogExporter.render_html(records)

        assert "<h1>Audit Log</h1>" in html
        assert "<th>Performed At</th>" in html
        assert html.count("<tr>") == 3
        assert "2026-03-02 09:00:00" in html

    def test_pdf(self, exporter, trail):
        pytest.importorskip("weasyprint")

        export = exporter.export(AuditLogQuery(entity_type="sow"), ExportFormat.PDF)

        assert export.content.startswith(b"%PDF")
        assert export.content_type == "application/pdf"
        assert export.filename == "audit-log-20260302090000.pdf"
        assert export.row_count == 2

    def test_html_escapes_content(self, sow_service, sow_draft, client_employee, session):
        sow_service.create(sow_draft(title="<script>alert(1)</script>"), client_employee)
        records = AuditLogSelector(session).all_matching(AuditLogQuery())

        html = AuditLogExporter.render_html(records)

        assert "<script>" not in html
        assert "&lt;script&gt;" in html

    def test_unknown_format(self, exporter):
        with pytest.raises(ValueError):
            exporter.export(None, "docx")

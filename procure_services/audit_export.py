"""
AuditLogExporter -- audit log downloads in csv, excel and pdf.

Contract:
    ``export(query, fmt)`` returns an ``AuditExport`` (bytes, content type,
    file name) holding every entry matching ``query``, newest first.  The
    three formats share one row layout.

Architecture: procure_services.  Reads through ``AuditLogSelector``; never
    writes.  csv uses the standard library, excel openpyxl and pdf
    weasyprint (imported on first pdf export, it pulls in native libraries).
"""

from __future__ import annotations

import csv
import html
import io
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from openpyxl import Workbook
from openpyxl.styles import Font
from sqlalchemy.orm import Session

from procure_kernel.domain.audit import AuditLogQuery, AuditLogRecord
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.logging_config import get_logger
from procure_kernel.selectors.audit_log_selector import AuditLogSelector

logger = get_logger("services.audit_export")


class ExportFormat(str, Enum):
    CSV = "csv"
    EXCEL = "excel"
    PDF = "pdf"


_CONTENT_TYPES = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.EXCEL: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ExportFormat.PDF: "application/pdf",
}

_EXTENSIONS = {
    ExportFormat.CSV: "csv",
    ExportFormat.EXCEL: "xlsx",
    ExportFormat.PDF: "pdf",
}

COLUMNS = (
    "Performed At",
    "Entity Type",
    "Entity ID",
    "Action",
    "Action Type",
    "Performed By",
    "Role",
    "Comments",
    "System Generated",
)


@dataclass(frozen=True)
class AuditExport:
    content: bytes
    content_type: str
    filename: str
    row_count: int


def _performer_name(record: AuditLogRecord) -> str:
    who = record.performed_by or {}
    name = f"{who.get('first_name') or ''} {who.get('last_name') or ''}".strip()
    return name or who.get("email") or who.get("user_id") or ""


def export_row(record: AuditLogRecord) -> list:
    """One entry as a row of COLUMNS."""
    return [
        record.performed_at,
        record.entity_type,
        str(record.entity_id),
        record.action,
        record.action_type,
        _performer_name(record),
        (record.performed_by or {}).get("organization_role") or "system",
        record.comments or "",
        "yes" if record.system_generated else "no",
    ]


class AuditLogExporter:
    """Renders matching audit entries as downloadable documents."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._selector = AuditLogSelector(session)
        self._clock = clock or SystemClock()

    def export(self, query: AuditLogQuery | None, fmt: ExportFormat | str) -> AuditExport:
        fmt = ExportFormat(fmt)
        records = self._selector.all_matching(query or AuditLogQuery())
        if fmt is ExportFormat.CSV:
            content = self.to_csv(records)
        elif fmt is ExportFormat.EXCEL:
            content = self.to_excel(records)
        else:
            content = self.to_pdf(records)

        stamp = self._clock.now().strftime("%Y%m%d%H%M%S")
        logger.info(
            "audit_log_exported",
            extra={"format": fmt.value, "row_count": len(records), "bytes": len(content)},
        )
        return AuditExport(
            content=content,
            content_type=_CONTENT_TYPES[fmt],
            filename=f"audit-log-{stamp}.{_EXTENSIONS[fmt]}",
            row_count=len(records),
        )

    # -------------------------------------------------------------------------
    # Renderers
    # -------------------------------------------------------------------------

    @staticmethod
    def to_csv(records: list[AuditLogRecord]) -> bytes:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(COLUMNS)
        for record in records:
            row = export_row(record)
            row[0] = row[0].isoformat()
            writer.writerow(row)
        return buffer.getvalue().encode("utf-8")

    @staticmethod
    def to_excel(records: list[AuditLogRecord]) -> bytes:
        wb = Workbook()
        ws = wb.active
        ws.title = "Audit Log"
        ws.append(COLUMNS)
        for cell in ws[1]:
            cell.font = Font(bold=True)

        def excel_safe_date(value: datetime) -> datetime:
            return value.replace(tzinfo=None)

        for record in records:
            row = export_row(record)
            row[0] = excel_safe_date(row[0])
            ws.append(row)

        ws.freeze_panes = "A2"
        buffer = io.BytesIO()
        wb.save(buffer)
        return buffer.getvalue()

    @staticmethod
    def render_html(records: list[AuditLogRecord]) -> str:
        """The HTML table the pdf renderer prints."""
        head = "".join(f"<th>{html.escape(c)}</th>" for c in COLUMNS)
        body = []
        for record in records:
            row = export_row(record)
            row[0] = row[0].strftime("%Y-%m-%d %H:%M:%S")
            cells = "".join(f"<td>{html.escape(str(v))}</td>" for v in row)
            body.append(f"<tr>{cells}</tr>")
        return (
            "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
            "<style>"
            "@page { size: A4 landscape; margin: 1cm; }"
            "body { font-family: sans-serif; font-size: 8pt; }"
            "table { border-collapse: collapse; width: 100%; }"
            "th, td { border: 1px solid #999; padding: 2px 4px; text-align: left; }"
            "th { background: #eee; }"
            "</style></head><body>"
            "<h1>Audit Log</h1>"
            f"<table><thead><tr>{head}</tr></thead><tbody>{''.join(body)}</tbody></table>"
            "</body></html>"
        )

    def to_pdf(self, records: list[AuditLogRecord]) -> bytes:
        from weasyprint import HTML

        return HTML(string=self.render_html(records)).write_pdf()

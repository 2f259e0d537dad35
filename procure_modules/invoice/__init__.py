"""
Invoice Module (``procure_modules.invoice``).

Vendor invoices against accepted or active purchase orders: approval,
payment, resubmission, credit notes and due-date reminders.
"""

from procure_modules.invoice.models import (
    AlertType,
    Invoice,
    InvoiceDraft,
    InvoiceFile,
    InvoiceStatus,
    PaymentMethod,
    PaymentRecord,
)
from procure_modules.invoice.service import InvoiceService
from procure_modules.invoice.workflows import INVOICE_WORKFLOW

__all__ = [
    "INVOICE_WORKFLOW",
    "AlertType",
    "Invoice",
    "InvoiceDraft",
    "InvoiceFile",
    "InvoiceService",
    "InvoiceStatus",
    "PaymentMethod",
    "PaymentRecord",
]

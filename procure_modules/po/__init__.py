"""
Purchase Order Module (``procure_modules.po``).

Purchase orders raised from ``vendor_accepted`` SOWs -- one per SOW -- with
finance approval, vendor acceptance and payment tracking fed by invoices.
"""

from procure_modules.po.models import (
    INVOICEABLE_STATUSES,
    FinanceApproval,
    PaymentTerms,
    PODraft,
    POPaymentTracking,
    POStatus,
    PurchaseOrder,
)
from procure_modules.po.service import PurchaseOrderService
from procure_modules.po.workflows import PURCHASE_ORDER_WORKFLOW

__all__ = [
    "INVOICEABLE_STATUSES",
    "PURCHASE_ORDER_WORKFLOW",
    "FinanceApproval",
    "PODraft",
    "POPaymentTracking",
    "POStatus",
    "PaymentTerms",
    "PurchaseOrder",
    "PurchaseOrderService",
]

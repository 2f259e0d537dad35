"""
SOW Module (``procure_modules.sow``).

Statements of Work: client drafting, internal PM approval, hand-over to the
vendor and the vendor's accept/reject.  A ``vendor_accepted`` SOW is the only
source a purchase order may be raised from.
"""

from procure_modules.sow.models import SOW, ResponseStatus, SOWApproval, SOWDraft, SOWStatus, VendorResponse
from procure_modules.sow.service import SOWService
from procure_modules.sow.workflows import SOW_WORKFLOW

__all__ = [
    "SOW",
    "SOW_WORKFLOW",
    "ResponseStatus",
    "SOWApproval",
    "SOWDraft",
    "SOWService",
    "SOWStatus",
    "VendorResponse",
]

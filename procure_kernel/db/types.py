"""
Module: procure_kernel.db.types
Responsibility: Annotated column type aliases shared by every ORM model, plus
    the single sanctioned rounding helper for money.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and modules.  MUST NOT import from any of those.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric, String, Text

# 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# ISO 4217 code (USD, EUR, GBP, INR)
CurrencyCode = Annotated[str, String(3)]

# Enum values, action names, role names
ShortCode = Annotated[str, String(50)]

# Titles, invoice numbers, human readable actions
Label = Annotated[str, String(255)]

# Descriptions, comments, justifications
LongText = Annotated[str, Text]

MONEY_DECIMAL_PLACES = 2


def round_money(value: Decimal, decimal_places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Round a monetary amount half-up to ``decimal_places``."""
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=ROUND_HALF_UP)

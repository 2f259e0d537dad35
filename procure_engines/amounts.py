"""
procure_engines.amounts -- PO/SOW deviation and payment tracking arithmetic.

Responsibility:
    Pure Decimal arithmetic behind cross-entity linkage: how far a PO total
    deviates from its SOW estimate, whether that deviation needs a written
    justification, and how invoices and payments roll up into a PO's
    payment tracking.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - ``remaining_amount == total_amount - total_paid`` after every payment.
    - ``total_invoiced`` never exceeds ``total_amount``.
    - Decimal only; no floats.

Failure modes:
    - ValueError for non-positive SOW estimates, non-positive invoice or
      payment amounts, or an invoice exceeding the PO's uninvoiced headroom.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal

from procure_engines.tracer import traced_engine

DEFAULT_DEVIATION_THRESHOLD = Decimal("5")


@traced_engine("amounts", "1.0", fingerprint_fields=("po_amount", "sow_amount"))
def deviation_percent(*, po_amount: Decimal, sow_amount: Decimal) -> Decimal:
    """``|po_amount - sow_amount| / sow_amount * 100``."""
    if sow_amount <= 0:
        raise ValueError(f"SOW estimate must be positive, got {sow_amount}")
    return abs(po_amount - sow_amount) / sow_amount * Decimal(100)


def requires_justification(
    *,
    po_amount: Decimal,
    sow_amount: Decimal,
    threshold_percent: Decimal = DEFAULT_DEVIATION_THRESHOLD,
) -> bool:
    """Strictly greater than the threshold; exactly 5% needs no justification."""
    return deviation_percent(po_amount=po_amount, sow_amount=sow_amount) > threshold_percent


@dataclass(frozen=True)
class PaymentTracking:
    total_amount: Decimal
    total_invoiced: Decimal
    total_paid: Decimal
    remaining_amount: Decimal

    @property
    def uninvoiced_amount(self) -> Decimal:
        return self.total_amount - self.total_invoiced

    @property
    def fully_paid(self) -> bool:
        return self.remaining_amount <= 0


def initial_tracking(total_amount: Decimal) -> PaymentTracking:
    return PaymentTracking(
        total_amount=total_amount,
        total_invoiced=Decimal("0"),
        total_paid=Decimal("0"),
        remaining_amount=total_amount,
    )


@traced_engine("amounts", "1.0", fingerprint_fields=("invoice_amount",))
def apply_invoice(tracking: PaymentTracking, *, invoice_amount: Decimal) -> PaymentTracking:
    """Roll a new invoice into ``total_invoiced``."""
    if invoice_amount <= 0:
        raise ValueError(f"Invoice amount must be positive, got {invoice_amount}")
    if invoice_amount > tracking.uninvoiced_amount:
        raise ValueError(
            f"Invoice amount {invoice_amount} exceeds uninvoiced PO balance "
            f"{tracking.uninvoiced_amount}"
        )
    return replace(tracking, total_invoiced=tracking.total_invoiced + invoice_amount)


@traced_engine("amounts", "1.0", fingerprint_fields=("paid_amount",))
def apply_payment(tracking: PaymentTracking, *, paid_amount: Decimal) -> PaymentTracking:
    """Roll a payment into ``total_paid`` and recompute ``remaining_amount``."""
    if paid_amount <= 0:
        raise ValueError(f"Paid amount must be positive, got {paid_amount}")
    total_paid = tracking.total_paid + paid_amount
    return replace(
        tracking,
        total_paid=total_paid,
        remaining_amount=tracking.total_amount - total_paid,
    )


@traced_engine("amounts", "1.0", fingerprint_fields=("credit_amount",))
def apply_credit_note(tracking: PaymentTracking, *, credit_amount: Decimal) -> PaymentTracking:
    """A credit note reduces what has been invoiced against the PO."""
    if credit_amount <= 0:
        raise ValueError(f"Credit amount must be positive, got {credit_amount}")
    if credit_amount > tracking.total_invoiced:
        raise ValueError(
            f"Credit amount {credit_amount} exceeds invoiced total {tracking.total_invoiced}"
        )
    return replace(tracking, total_invoiced=tracking.total_invoiced - credit_amount)


def amount_due(invoice_amount: Decimal, credit_amount: Decimal | None) -> Decimal:
    """Invoice amount net of any credit note."""
    return invoice_amount - (credit_amount or Decimal("0"))


@traced_engine("amounts", "1.0", fingerprint_fields=("invoice_amount",))
def release_invoice(tracking: PaymentTracking, *, invoice_amount: Decimal) -> PaymentTracking:
    """Take a rejected or cancelled invoice back out of ``total_invoiced``."""
    if invoice_amount < 0:
        raise ValueError(f"Released amount must not be negative, got {invoice_amount}")
    released = min(invoice_amount, tracking.total_invoiced)
    return replace(tracking, total_invoiced=tracking.total_invoiced - released)

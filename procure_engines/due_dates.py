"""
procure_engines.due_dates -- invoice due dates and payment alerts.

Responsibility:
    Derive an invoice's due date from its PO payment terms and decide which
    reminder alerts an invoice should carry on a given day.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The caller passes
    ``as_of``; nothing here reads the clock.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, timedelta

DEFAULT_TERM_DAYS: Mapping[str, int] = {
    "immediate": 0,
    "net_15": 15,
    "net_30": 30,
    "net_45": 45,
    "net_60": 60,
}


def derive_due_date(
    invoice_date: date,
    payment_terms: str,
    explicit_due_date: date | None = None,
    term_days: Mapping[str, int] = DEFAULT_TERM_DAYS,
) -> date:
    """
    Due date for an invoice.

    ``custom`` terms have no day count and require ``explicit_due_date``.
    An explicit date always wins but may not precede the invoice date.
    """
    if explicit_due_date is not None:
        if explicit_due_date < invoice_date:
            raise ValueError("Due date cannot precede the invoice date")
        return explicit_due_date
    if payment_terms not in term_days:
        raise ValueError(f"Payment terms {payment_terms!r} need an explicit due date")
    return invoice_date + timedelta(days=term_days[payment_terms])


def is_overdue(due_date: date, status: str, as_of: date) -> bool:
    """Approved but unpaid past its due date."""
    return status == "approved" and due_date < as_of


def pending_alerts(
    due_date: date,
    status: str,
    as_of: date,
    existing_alert_types: frozenset[str],
    warning_days: int = 3,
) -> tuple[str, ...]:
    """
    Alert types to add today. Each type is raised at most once per invoice.
    Paid, rejected and cancelled invoices get no reminders.
    """
    if status not in ("pending", "approved"):
        return ()
    alerts: list[str] = []
    if (
        "due_date_approaching" not in existing_alert_types
        and as_of <= due_date <= as_of + timedelta(days=warning_days)
    ):
        alerts.append("due_date_approaching")
    if "overdue" not in existing_alert_types and is_overdue(due_date, status, as_of):
        alerts.append("overdue")
    return tuple(alerts)

"""
Configuration Schema (``procure_config.schema``).

Frozen dataclasses describing one configuration set.  Parsed from YAML by
``procure_config.loader``; consumed by services through
``procure_config.get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class LinkageSettings:
    """Cross-entity linkage rules."""
    deviation_threshold_percent: Decimal = Decimal("5")
    invoice_due_warning_days: int = 3
    payment_term_days: dict[str, int] = field(default_factory=lambda: {
        "immediate": 0,
        "net_15": 15,
        "net_30": 30,
        "net_45": 45,
        "net_60": 60,
    })
    supported_currencies: tuple[str, ...] = ("USD", "EUR", "GBP", "INR")


@dataclass(frozen=True)
class PaginationSettings:
    default_limit: int = 20
    max_limit: int = 100


@dataclass(frozen=True)
class EscalationSettings:
    """Escalation sweep schedule and per-step-role targets."""
    sweep_interval_minutes: int = 15
    targets: dict[str, UUID] = field(default_factory=dict)


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class ProcureSettings:
    """One complete configuration set."""
    name: str
    version: int
    database_url: str
    linkage: LinkageSettings
    pagination: PaginationSettings
    escalation: EscalationSettings
    logging: LoggingSettings
    checksum: str = ""

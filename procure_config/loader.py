"""
Configuration Loader (``procure_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen dataclasses of
``procure_config.schema``.  Build/test tooling only; runtime callers use
``procure_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from procure_config.schema import (
    EscalationSettings,
    LinkageSettings,
    LoggingSettings,
    PaginationSettings,
    ProcureSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file. Empty files load as an empty dict."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_linkage(data: dict[str, Any]) -> LinkageSettings:
    defaults = LinkageSettings()
    threshold = Decimal(str(data.get("deviation_threshold_percent", defaults.deviation_threshold_percent)))
    if threshold < 0:
        raise ValueError(f"deviation_threshold_percent must be >= 0, got {threshold}")
    term_days = {
        str(name): int(days)
        for name, days in (data.get("payment_term_days") or defaults.payment_term_days).items()
    }
    if "custom" in term_days:
        raise ValueError("custom payment terms cannot carry a fixed day count")
    return LinkageSettings(
        deviation_threshold_percent=threshold,
        invoice_due_warning_days=int(
            data.get("invoice_due_warning_days", defaults.invoice_due_warning_days)
        ),
        payment_term_days=term_days,
        supported_currencies=tuple(
            c.upper() for c in data.get("supported_currencies", defaults.supported_currencies)
        ),
    )


def parse_pagination(data: dict[str, Any]) -> PaginationSettings:
    settings = PaginationSettings(
        default_limit=int(data.get("default_limit", 20)),
        max_limit=int(data.get("max_limit", 100)),
    )
    if not 1 <= settings.default_limit <= settings.max_limit:
        raise ValueError(
            f"default_limit must be between 1 and max_limit ({settings.max_limit})"
        )
    return settings


def parse_escalation(data: dict[str, Any]) -> EscalationSettings:
    return EscalationSettings(
        sweep_interval_minutes=int(data.get("sweep_interval_minutes", 15)),
        targets={
            str(role): UUID(str(user_id))
            for role, user_id in (data.get("targets") or {}).items()
        },
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of the raw YAML data."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_settings(data: dict[str, Any]) -> ProcureSettings:
    return ProcureSettings(
        name=data["name"],
        version=int(data["version"]),
        database_url=data["database_url"],
        linkage=parse_linkage(data.get("linkage") or {}),
        pagination=parse_pagination(data.get("pagination") or {}),
        escalation=parse_escalation(data.get("escalation") or {}),
        logging=LoggingSettings(level=str((data.get("logging") or {}).get("level", "INFO"))),
        checksum=compute_checksum(data),
    )

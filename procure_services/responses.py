"""
Response envelope -- ``{success, data, message}``.

Every operation result leaves the engine through this module, so a REST
binding serializes one shape for successes and one for typed failures.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import fields, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from procure_kernel.exceptions import ProcureWorkflowError


def to_jsonable(value: Any) -> Any:
    """Convert DTOs, enums, Decimals, UUIDs and dates into JSON-native values."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float):
        return value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {str(to_jsonable(k)): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def success_response(data: Any = None, message: str = "") -> dict[str, Any]:
    return {"success": True, "data": to_jsonable(data), "message": message}


def error_response(exc: ProcureWorkflowError) -> dict[str, Any]:
    """Failure envelope carrying the discriminated error kind."""
    return {
        "success": False,
        "data": None,
        "message": str(exc),
        "error": {
            "kind": exc.kind,
            "code": exc.code,
            "details": to_jsonable(exc.details()),
        },
    }

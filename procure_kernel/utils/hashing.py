"""
Deterministic hashing utilities.

Audit log entries are chained: each entry's hash covers its own content and
the hash of the entry before it, so any retroactive edit to the stored log is
detectable by re-walking the chain.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace, stable rendering of Decimal/datetime/UUID."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: Any) -> str:
    """Hex SHA-256 of the canonical JSON form of ``payload``."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def hash_audit_entry(
    entity_type: str,
    entity_id: str,
    action_type: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Chain hash: H(entity_type | entity_id | action_type | payload_hash | prev_hash)."""
    material = "|".join(
        [entity_type, entity_id, action_type, payload_hash, prev_hash or "genesis"]
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()

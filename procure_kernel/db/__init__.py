"""Database layer - engine, base classes, column types, immutability."""

from procure_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from procure_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from procure_kernel.db.types import CurrencyCode, Label, LongText, Money, ShortCode

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
    "Money",
    "CurrencyCode",
    "ShortCode",
    "Label",
    "LongText",
]

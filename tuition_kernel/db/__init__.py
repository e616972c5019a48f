"""Database layer - engine, base classes, and column types."""

from tuition_kernel.db.base import UUID, Base, FixedPoint, TrackedBase, UUIDString
from tuition_kernel.db.engine import create_tables, get_engine, get_session_factory
from tuition_kernel.db.types import (
    code_type,
    enum_type,
    money_type,
    rate_type,
    ref_type,
    text_type,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "FixedPoint",
    "UUID",
    "money_type",
    "rate_type",
    "ref_type",
    "code_type",
    "enum_type",
    "text_type",
]

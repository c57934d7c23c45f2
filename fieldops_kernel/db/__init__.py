"""Database layer - engine, base classes, types."""

from fieldops_kernel.db.base import (
    UUID,
    Base,
    TenantScopedBase,
    TrackedBase,
    UTCDateTime,
    UUIDString,
)
from fieldops_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from fieldops_kernel.db.types import Money, Percent, round_money, to_decimal

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "TenantScopedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
    "Money",
    "Percent",
    "round_money",
    "to_decimal",
]

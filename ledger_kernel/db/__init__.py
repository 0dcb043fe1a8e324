"""Database layer: engine and sessions, declarative base, column types, immutability hooks."""

from ledger_kernel.db.base import Base, TrackedBase
from ledger_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from ledger_kernel.db.types import Label, ShortCode, UUIDString, round_money

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "ShortCode",
    "Label",
    "round_money",
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
]

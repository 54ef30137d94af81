"""Database layer - engine, declarative base, session scope."""

from valuation_kernel.db.base import UUID, Base, UUIDString
from valuation_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "reset_engine",
    "Base",
    "UUIDString",
    "UUID",
]

"""Database layer - engine, declarative base and column types."""

from portal_kernel.db.base import UUID, Base, JSONDocument, UTCDateTime, UUIDString
from portal_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "drop_tables",
    "Base",
    "JSONDocument",
    "UTCDateTime",
    "UUIDString",
    "UUID",
]

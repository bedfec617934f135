"""Database configuration and models."""

from courtscribe.core.database.base import Base, JSONType, TimestampMixin, UUIDMixin
from courtscribe.core.database.session import (
    engine,
    async_session_factory,
    get_db,
)

__all__ = [
    "Base",
    "JSONType",
    "TimestampMixin",
    "UUIDMixin",
    "engine",
    "async_session_factory",
    "get_db",
]

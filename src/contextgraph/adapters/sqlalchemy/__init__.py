"""SQLAlchemy adapter package for the context field store."""

from __future__ import annotations

from .field_store import SqlAlchemyFieldStore
from .mappings import context_field_table, metadata
from .repositories import SqlAlchemyFieldRepository
from .unit_of_work import (
    SqlAlchemyUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyFieldRepository",
    "SqlAlchemyFieldStore",
    "SqlAlchemyUnitOfWork",
    "StartupError",
    "configured_engine",
    "context_field_table",
    "is_started",
    "metadata",
    "shutdown",
    "startup",
]

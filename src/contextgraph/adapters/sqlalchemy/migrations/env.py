"""Alembic environment for the field store schema."""

from __future__ import annotations

from typing import Any

from alembic import context
from sqlalchemy import create_engine, pool

from contextgraph.adapters.sqlalchemy.mappings import metadata
from contextgraph.config import get_database_config

config = context.config


def _configure_and_run(**options: Any) -> None:
    # Batch mode lets ALTER-style operations work on SQLite.
    context.configure(
        target_metadata=metadata,
        render_as_batch=True,
        compare_type=True,
        **options,
    )
    with context.begin_transaction():
        context.run_migrations()


def _database_url() -> str:
    return config.get_main_option("sqlalchemy.url") or get_database_config().uri


def run_migrations_offline() -> None:
    _configure_and_run(url=_database_url(), literal_binds=True)


def run_migrations_online() -> None:
    shared = config.attributes.get("connection")
    if shared is not None:
        _configure_and_run(connection=shared)
        return
    engine = create_engine(_database_url(), poolclass=pool.NullPool, future=True)
    try:
        with engine.connect() as connection:
            _configure_and_run(connection=connection)
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

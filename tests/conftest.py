from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002

from contextgraph.adapters.memory import InMemoryFieldStore
from contextgraph.adapters.sqlalchemy.field_store import SqlAlchemyFieldStore
from contextgraph.adapters.sqlalchemy.migrations import upgrade_head
from contextgraph.adapters.sqlalchemy.unit_of_work import shutdown, startup
from contextgraph.config import load_policy
from contextgraph.domain.workflow import ProposalWorkflow
from tests.helpers.fields import FakeClock

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from contextgraph.domain.policy import SourcePolicy


@pytest.fixture(scope="session")
def policy() -> SourcePolicy:
    return load_policy()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store() -> InMemoryFieldStore:
    return InMemoryFieldStore()


@pytest.fixture
def workflow(
    memory_store: InMemoryFieldStore,
    policy: SourcePolicy,
    clock: FakeClock,
) -> ProposalWorkflow:
    return ProposalWorkflow(store=memory_store, policy=policy, clock=clock, timeout=1.0)


@pytest.fixture
def sqlite_engine(tmp_path: Path) -> Iterator[Engine]:
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'fields.db'}", future=True)
    upgrade_head(engine=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_store(sqlite_engine: Engine) -> Iterator[SqlAlchemyFieldStore]:
    startup(engine=sqlite_engine, force=True)
    try:
        yield SqlAlchemyFieldStore()
    finally:
        shutdown()

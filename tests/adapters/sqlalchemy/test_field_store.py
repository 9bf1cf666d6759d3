from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import IntegrityError, OperationalError

from contextgraph.adapters.sqlalchemy import (
    SqlAlchemyFieldStore,
    SqlAlchemyUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)
from contextgraph.adapters.sqlalchemy.field_store import (
    _translated_errors,  # pyright: ignore[reportPrivateUsage]
)
from contextgraph.domain.errors import (
    ConcurrentWriteError,
    FieldStoreError,
    StoreTimeoutError,
)
from contextgraph.domain.model import Alternative, FieldKey, FieldStatus, HumanKind
from contextgraph.domain.workflow import OutcomeKind, ProposalWorkflow
from tests.helpers.fields import DEFAULT_NOW, make_proposal, make_tag

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.engine import Engine

    from contextgraph.domain.policy import SourcePolicy
    from tests.helpers.fields import FakeClock

KEY = FieldKey("brand", "valueProps")


@pytest.fixture(autouse=True)
def reset_unit_of_work_state() -> Iterator[None]:
    shutdown()
    yield
    shutdown()


def test_unit_of_work_requires_startup() -> None:
    assert not is_started()
    with pytest.raises(StartupError):
        SqlAlchemyUnitOfWork()


def test_startup_requires_force_for_reconfiguration() -> None:
    engine_a = create_engine("sqlite+pysqlite:///:memory:", future=True)
    engine_b = create_engine("sqlite+pysqlite:///:memory:", future=True)

    startup(engine=engine_a, force=True)
    with pytest.raises(StartupError):
        startup(engine=engine_b)

    startup(engine=engine_b, force=True)
    assert configured_engine() is engine_b


def test_startup_runs_migrations(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)

    inspector = inspect(sqlite_engine)
    assert "context_field" in inspector.get_table_names()
    assert "alembic_version" in inspector.get_table_names()


def test_fields_round_trip_through_the_database(sqlite_store: SqlAlchemyFieldStore) -> None:
    tag = make_tag(
        "brand_lab",
        0.85,
        written_at=DEFAULT_NOW - timedelta(days=2),
        valid_for_days=30,
        note="reports/brand.json: value props",
    )
    alternative = Alternative(["Cheap"], make_tag("gap_full", 0.6))
    value = ["Fast onboarding", {"label": "Support", "tier": 1}]

    written = sqlite_store.write_field(
        "e1",
        KEY,
        value,
        tag,
        status=FieldStatus.PROPOSED,
        expected_version=0,
        alternatives=(alternative,),
    )

    stored = sqlite_store.get_field("e1", KEY)
    assert stored == written
    assert stored is not None
    assert stored.value == value
    assert stored.latest == tag
    assert stored.alternatives == (alternative,)
    assert stored.version == 1


def test_human_tags_survive_storage(sqlite_store: SqlAlchemyFieldStore) -> None:
    sqlite_store.write_field(
        "e1",
        KEY,
        ["Edited"],
        make_tag(HumanKind.USER, 1.0, note="checked with sales"),
        status=FieldStatus.CONFIRMED,
        expected_version=0,
    )

    stored = sqlite_store.get_field("e1", KEY)
    assert stored is not None
    assert stored.is_human_pinned
    assert stored.status is FieldStatus.CONFIRMED


def test_missing_fields_read_as_none(sqlite_store: SqlAlchemyFieldStore) -> None:
    assert sqlite_store.get_field("e1", KEY) is None
    assert sqlite_store.list_fields("e1") == []


def test_compare_and_set_rejects_stale_versions(sqlite_store: SqlAlchemyFieldStore) -> None:
    sqlite_store.write_field(
        "e1", KEY, ["a"], make_tag(), status=FieldStatus.PROPOSED, expected_version=0
    )
    sqlite_store.write_field(
        "e1", KEY, ["b"], make_tag(), status=FieldStatus.PROPOSED, expected_version=1
    )

    with pytest.raises(ConcurrentWriteError):
        sqlite_store.write_field(
            "e1", KEY, ["c"], make_tag(), status=FieldStatus.PROPOSED, expected_version=1
        )
    with pytest.raises(ConcurrentWriteError):
        sqlite_store.update_alternatives("e1", KEY, (), expected_version=0)

    stored = sqlite_store.get_field("e1", KEY)
    assert stored is not None
    assert stored.value == ["b"]
    assert stored.version == 2


def test_update_alternatives_persists(sqlite_store: SqlAlchemyFieldStore) -> None:
    sqlite_store.write_field(
        "e1", KEY, ["a"], make_tag(), status=FieldStatus.PROPOSED, expected_version=0
    )
    alternative = Alternative(["b"], make_tag("brain", 0.5))

    updated = sqlite_store.update_alternatives("e1", KEY, (alternative,), expected_version=1)

    assert updated.version == 2
    stored = sqlite_store.get_field("e1", KEY)
    assert stored == updated


def test_provenance_history_is_capped(sqlite_store: SqlAlchemyFieldStore) -> None:
    for version in range(7):
        sqlite_store.write_field(
            "e1",
            KEY,
            [str(version)],
            make_tag(written_at=DEFAULT_NOW + timedelta(minutes=version)),
            status=FieldStatus.PROPOSED,
            expected_version=version,
        )

    stored = sqlite_store.get_field("e1", KEY)
    assert stored is not None
    assert len(stored.provenance) == 5
    assert stored.provenance[-1].written_at == DEFAULT_NOW + timedelta(minutes=6)


def test_workflow_runs_against_the_database(
    sqlite_store: SqlAlchemyFieldStore,
    policy: SourcePolicy,
    clock: FakeClock,
) -> None:
    workflow = ProposalWorkflow(store=sqlite_store, policy=policy, clock=clock, timeout=1.0)

    first = workflow.propose("e1", [make_proposal("brand.positioning", "Lab", "brand_lab")])
    second = workflow.propose("e1", [make_proposal("brand.positioning", "Gap", "gap_full")])
    confirmed = workflow.confirm("e1", "brand.positioning", by=HumanKind.USER)

    assert first.outcomes[0].kind is OutcomeKind.PROPOSED
    assert second.outcomes[0].kind is OutcomeKind.BLOCKED
    assert second.outcomes[0].merged
    assert confirmed.value == "Lab"
    stored = sqlite_store.get_field("e1", FieldKey("brand", "positioning"))
    assert stored is not None
    assert stored.status is FieldStatus.CONFIRMED
    assert stored.alternatives == ()


def test_rejections_survive_storage(
    sqlite_store: SqlAlchemyFieldStore,
    policy: SourcePolicy,
    clock: FakeClock,
) -> None:
    workflow = ProposalWorkflow(store=sqlite_store, policy=policy, clock=clock, timeout=1.0)
    workflow.propose("e1", [make_proposal("brand.positioning", "Meh", "brain")])
    workflow.reject("e1", "brand.positioning", note="Off brand")

    retry = workflow.propose("e1", [make_proposal("brand.positioning", "Meh", "brain")])

    stored = sqlite_store.get_field("e1", FieldKey("brand", "positioning"))
    assert stored is not None
    assert stored.status is FieldStatus.REJECTED
    assert stored.rejected_source is not None
    assert stored.rejected_source.name == "brain"
    assert retry.outcomes[0].kind is OutcomeKind.BLOCKED


@pytest.mark.parametrize(
    ("raised", "expected"),
    [
        (IntegrityError("INSERT", {}, Exception("UNIQUE failed")), ConcurrentWriteError),
        (OperationalError("SELECT", {}, Exception("database is locked")), StoreTimeoutError),
        (OperationalError("SELECT", {}, Exception("disk I/O error")), FieldStoreError),
    ],
)
def test_database_errors_are_translated(raised: Exception, expected: type[Exception]) -> None:
    with pytest.raises(expected) as info, _translated_errors("write_field", "e1"):
        raise raised

    assert type(info.value) is expected
    assert info.value.__cause__ is raised

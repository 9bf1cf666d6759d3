"""Application orchestration entry points."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from contextgraph.adapters.producers import discover_http_importers, load_directory_importers
from contextgraph.adapters.sqlalchemy import SqlAlchemyFieldStore, is_started, startup
from contextgraph.config import (
    get_hydration_config,
    get_producer_config,
    load_policy,
)
from contextgraph.domain.hydration import HydrationOrchestrator
from contextgraph.domain.model import FieldKey, HumanKind
from contextgraph.domain.workflow import ProposalWorkflow

if TYPE_CHECKING:
    import threading
    from collections.abc import Sequence
    from pathlib import Path

    from contextgraph.adapters.producers.client import ClientFactory
    from contextgraph.config import HydrationConfig
    from contextgraph.domain.model import ConfirmedField, Field
    from contextgraph.domain.policy import SourcePolicy
    from contextgraph.domain.ports import FieldStore, Importer
    from contextgraph.domain.telemetry import HydrationTelemetry
    from contextgraph.domain.workflow import PendingProposal

log = getLogger(__name__)


def build_field_store(*, database_uri: str | None = None) -> SqlAlchemyFieldStore:
    """Return the SQL-backed store, starting the adapter on first use."""

    if not is_started():
        startup(database_uri=database_uri)
    return SqlAlchemyFieldStore()


def build_workflow(
    *,
    store: FieldStore | None = None,
    policy: SourcePolicy | None = None,
    hydration: HydrationConfig | None = None,
) -> ProposalWorkflow:
    settings = hydration or get_hydration_config()
    return ProposalWorkflow(
        store=store or build_field_store(),
        policy=policy or load_policy(),
        timeout=settings.store_timeout_seconds,
        max_attempts=settings.max_write_attempts,
    )


def build_importers(
    *,
    payload_dir: Path | str | None = None,
    producer_url: str | None = None,
    client_factory: ClientFactory | None = None,
) -> list[Importer]:
    """Importers from a payload directory and/or a producer service."""

    importers: list[Importer] = []
    if payload_dir is not None:
        importers.extend(load_directory_importers(payload_dir))
    if producer_url is not None:
        config = get_producer_config(base_url=producer_url)
        importers.extend(discover_http_importers(config, client_factory=client_factory))
    if not importers:
        raise ValueError("No importers configured (pass a payload directory or producer URL)")
    return importers


def hydrate_entities(
    entity_ids: Sequence[str],
    *,
    importers: Sequence[Importer],
    workflow: ProposalWorkflow | None = None,
    max_workers: int | None = None,
    cancel: threading.Event | None = None,
) -> dict[str, HydrationTelemetry]:
    """Run every importer against each entity and return per-entity telemetry."""

    if not entity_ids:
        raise ValueError("At least one entity id is required")
    effective_workflow = workflow or build_workflow()
    orchestrator = HydrationOrchestrator(workflow=effective_workflow, importers=importers)
    log.info(
        "Starting hydration: entities=%s, importers=%s",
        len(entity_ids),
        ", ".join(importer.id for importer in orchestrator.ordered_importers()),
    )
    if len(entity_ids) == 1:
        entity_id = entity_ids[0]
        return {entity_id: orchestrator.run_all(entity_id, cancel=cancel)}
    workers = max_workers or get_hydration_config().max_workers
    return orchestrator.run_many(entity_ids, max_workers=workers, cancel=cancel)


def list_pending(
    entity_id: str,
    *,
    domain: str | None = None,
    workflow: ProposalWorkflow | None = None,
) -> list[PendingProposal]:
    return (workflow or build_workflow()).pending(entity_id, domain=domain)


def confirm_field(
    entity_id: str,
    key: str,
    *,
    alternative: int | None = None,
    by: HumanKind = HumanKind.USER,
    note: str | None = None,
    workflow: ProposalWorkflow | None = None,
) -> ConfirmedField:
    effective = workflow or build_workflow()
    field_key = FieldKey.parse(key)
    if alternative is None:
        confirmed = effective.confirm(entity_id, field_key, by=by, note=note)
    else:
        confirmed = effective.confirm_alternative(
            entity_id, field_key, alternative, by=by, note=note
        )
    log.info("Confirmed %s/%s at version %s", entity_id, confirmed.key, confirmed.version)
    return confirmed


def reject_field(
    entity_id: str,
    key: str,
    *,
    by: HumanKind = HumanKind.USER,
    note: str | None = None,
    workflow: ProposalWorkflow | None = None,
) -> Field:
    return (workflow or build_workflow()).reject(entity_id, FieldKey.parse(key), by=by, note=note)


def set_field(
    entity_id: str,
    key: str,
    value: object,
    *,
    by: HumanKind = HumanKind.USER,
    note: str | None = None,
    workflow: ProposalWorkflow | None = None,
) -> ConfirmedField:
    effective = workflow or build_workflow()
    return effective.write_human(entity_id, FieldKey.parse(key), value, by=by, note=note)

"""Importer orchestration.

Importers run in ascending ``priority`` (ties broken by id), so the most
specific, highest-trust producers populate fields first and the broad,
low-trust ones only fill gaps: their later proposals lose the priority or
confidence comparison against what is already there. Version lineages between
producers are expressed entirely through the domain-scoped priority table.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from logging import getLogger
from types import MappingProxyType
from typing import TYPE_CHECKING

from contextgraph.domain.errors import FieldStoreError
from contextgraph.domain.model import FieldKey, is_human_name, source_name
from contextgraph.domain.ports import ImportContext
from contextgraph.domain.telemetry import (
    HydrationError,
    HydrationTelemetry,
    WriteRecord,
    summarize,
    take_snapshot,
)
from contextgraph.domain.workflow import OutcomeKind

if TYPE_CHECKING:
    from contextgraph.domain.model import Field, Proposal
    from contextgraph.domain.ports import Importer
    from contextgraph.domain.telemetry import Snapshot
    from contextgraph.domain.workflow import ProposalWorkflow

log = getLogger(__name__)

_UNRECORDED = {OutcomeKind.SKIPPED, OutcomeKind.CANCELLED, OutcomeKind.ERROR}
# Error labels for failures that belong to no single importer.
STORE_ERROR_SOURCE = "field_store"
RUN_ERROR_SOURCE = "hydration"


def _domain_of(proposal: Proposal) -> str | None:
    if isinstance(proposal.key, FieldKey):
        return proposal.key.domain
    domain, sep, _ = str(proposal.key).partition(".")
    return domain if sep else None


def _refusal(proposal: Proposal, domains: tuple[str, ...]) -> str | None:
    """Why an importer may not submit ``proposal``, or None when it may."""

    domain = _domain_of(proposal)
    if domain is not None and domain not in domains:
        return f"Importer does not support domain {domain!r}"
    claimed = source_name(proposal.source)
    if is_human_name(claimed):
        return f"Importers cannot write as the human source {claimed!r}"
    return None


@dataclass(slots=True)
class HydrationOrchestrator:
    workflow: ProposalWorkflow
    importers: Sequence[Importer]

    def ordered_importers(self) -> list[Importer]:
        return sorted(self.importers, key=lambda importer: (importer.priority, importer.id))

    def run_all(
        self,
        entity_id: str,
        *,
        cancel: threading.Event | None = None,
        run_id: str | None = None,
    ) -> HydrationTelemetry:
        """Hydrate one entity from every registered importer.

        Importer, proposal and store failures end up in ``errors``; the run
        itself always returns telemetry.
        """

        started = time.monotonic()
        run_id = run_id or uuid.uuid4().hex
        policy = self.workflow.policy
        writes: list[WriteRecord] = []
        errors: list[HydrationError] = []
        cancelled = False

        fields = self._reload(entity_id, [], errors)
        before = take_snapshot(fields, expected=policy.expected_fields)
        log.info(
            "Starting hydration of %s with %s importer(s), run_id=%s",
            entity_id,
            len(self.importers),
            run_id,
        )

        for importer in self.ordered_importers():
            if cancel is not None and cancel.is_set():
                log.info("Hydration of %s cancelled before importer %s", entity_id, importer.id)
                cancelled = True
                break

            try:
                domains = tuple(domain for domain in policy.domains if importer.supports(domain))
                if not domains:
                    log.debug("Importer %s supports no configured domain, skipping", importer.id)
                    continue
                context = ImportContext(
                    entity_id=entity_id,
                    run_id=run_id,
                    domains=domains,
                    fields=MappingProxyType({str(current.key): current for current in fields}),
                )
                proposals = list(importer.import_all(context))
            except Exception as exc:  # noqa: BLE001
                log.warning("Importer %s failed for %s: %s", importer.id, entity_id, exc)
                errors.append(HydrationError(importer_id=importer.id, message=str(exc)))
                continue

            accepted: list[Proposal] = []
            for proposal in proposals:
                refusal = _refusal(proposal, domains)
                if refusal is not None:
                    log.warning(
                        "Refused %s from importer %s: %s", proposal.key, importer.id, refusal
                    )
                    errors.append(
                        HydrationError(
                            importer_id=importer.id, key=str(proposal.key), message=refusal
                        )
                    )
                    continue
                accepted.append(proposal)

            result = self.workflow.propose(entity_id, accepted, cancel=cancel)
            writes.extend(
                WriteRecord(
                    importer_id=importer.id,
                    key=outcome.key,
                    outcome=outcome.kind,
                    reason=outcome.reason,
                )
                for outcome in result.outcomes
                if outcome.kind not in _UNRECORDED
            )
            errors.extend(
                HydrationError(importer_id=importer.id, key=error.key, message=error.message)
                for error in result.errors
            )
            log.info(
                "Importer %s: proposed=%s, applied=%s, blocked=%s, errors=%s",
                importer.id,
                result.proposed,
                result.applied,
                result.blocked,
                len(result.errors),
            )
            if any(outcome.wrote_value for outcome in result.outcomes):
                fields = self._reload(entity_id, fields, errors)

        fields = self._reload(entity_id, fields, errors)
        after = take_snapshot(fields, expected=policy.expected_fields)
        telemetry = self._summarize(
            before,
            after,
            writes=writes,
            errors=errors,
            started=started,
            entity_id=entity_id,
            cancelled=cancelled or (cancel is not None and cancel.is_set()),
        )
        log.info("Hydration of %s finished: %s", entity_id, telemetry.summary_line())
        return telemetry

    def run_many(
        self,
        entity_ids: Iterable[str],
        *,
        max_workers: int = 4,
        cancel: threading.Event | None = None,
    ) -> dict[str, HydrationTelemetry]:
        """Hydrate independent entities in parallel.

        An entity whose run crashes gets telemetry carrying that one error; the
        others are unaffected.
        """

        unique_ids = list(dict.fromkeys(entity_ids))
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="hydrate") as pool:
            futures = {
                entity_id: pool.submit(self.run_all, entity_id, cancel=cancel)
                for entity_id in unique_ids
            }
        results: dict[str, HydrationTelemetry] = {}
        for entity_id, future in futures.items():
            try:
                results[entity_id] = future.result()
            except Exception as exc:  # noqa: BLE001
                log.exception("Hydration of %s crashed", entity_id)
                results[entity_id] = self._crashed(entity_id, exc)
        return results

    def _load(self, entity_id: str) -> list[Field]:
        return self.workflow.store.list_fields(entity_id, timeout=self.workflow.timeout)

    def _reload(
        self,
        entity_id: str,
        last_known: list[Field],
        errors: list[HydrationError],
    ) -> list[Field]:
        try:
            return self._load(entity_id)
        except FieldStoreError as exc:
            log.warning("Reading fields of %s failed, keeping last known: %s", entity_id, exc)
            message = f"Reading fields failed: {exc}"
            errors.append(HydrationError(importer_id=STORE_ERROR_SOURCE, message=message))
            return last_known

    def _crashed(self, entity_id: str, exc: Exception) -> HydrationTelemetry:
        empty = take_snapshot((), expected=self.workflow.policy.expected_fields)
        return summarize(
            empty,
            empty,
            errors=[HydrationError(importer_id=RUN_ERROR_SOURCE, message=f"Run crashed: {exc}")],
            entity_id=entity_id,
        )

    @staticmethod
    def _summarize(
        before: Snapshot,
        after: Snapshot,
        *,
        writes: list[WriteRecord],
        errors: list[HydrationError],
        started: float,
        entity_id: str,
        cancelled: bool,
    ) -> HydrationTelemetry:
        return summarize(
            before,
            after,
            writes=writes,
            errors=errors,
            duration_ms=int((time.monotonic() - started) * 1000),
            entity_id=entity_id,
            cancelled=cancelled,
        )

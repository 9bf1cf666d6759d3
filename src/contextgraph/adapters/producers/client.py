"""Importers that fetch proposals from a producer service over HTTP."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from contextgraph.adapters.http_resilience import ResilientClient
from contextgraph.domain.errors import ProducerError

from .schema import ImporterDescriptor, ImporterIndex, ProducerPayload
from .translator import to_proposals

if TYPE_CHECKING:
    from collections.abc import Callable

    from contextgraph.config.http_resilience import ResilienceConfig
    from contextgraph.config.producers import ProducerServiceConfig
    from contextgraph.domain.model import Proposal
    from contextgraph.domain.ports import ImportContext, Importer

log = getLogger(__name__)

type ClientFactory = Callable[[ResilienceConfig], ResilientClient]


async def _get_json(client: ResilientClient, path: str, params: dict[str, str]) -> object:
    try:
        return await client.get_json(path, params=params)
    except httpx.HTTPError as exc:
        raise ProducerError(f"Producer request {path} failed: {exc}") from exc
    except ValueError as exc:
        raise ProducerError(f"Producer response for {path} is not JSON: {exc}") from exc


class HttpProducerImporter:
    """Fetches one producer's proposals for an entity on every run."""

    def __init__(
        self,
        descriptor: ImporterDescriptor,
        *,
        config: ProducerServiceConfig,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.descriptor = descriptor
        self._resilience = config.resilience
        self._client_factory = client_factory or ResilientClient

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def priority(self) -> int:
        return self.descriptor.priority

    def supports(self, domain: str) -> bool:
        return self.descriptor.supports(domain)

    def import_all(self, context: ImportContext) -> list[Proposal]:
        payload = asyncio.run(self._fetch_payload(context))
        if payload.id != self.id:
            raise ProducerError(
                f"Producer service answered for {payload.id!r} instead of {self.id!r}"
            )
        return to_proposals(payload, run_id=context.run_id)

    async def _fetch_payload(self, context: ImportContext) -> ProducerPayload:
        params = {"importer": self.id, "runId": context.run_id}
        async with self._client_factory(self._resilience) as client:
            raw = await _get_json(client, f"entities/{context.entity_id}/proposals", params)
        if not isinstance(raw, dict):
            raise ProducerError(f"Unexpected payload from producer {self.id}")
        raw.setdefault("importer", self.id)
        try:
            return ProducerPayload.model_validate(raw)
        except ValidationError as exc:
            raise ProducerError(f"Invalid payload from producer {self.id}: {exc}") from exc


def discover_http_importers(
    config: ProducerServiceConfig,
    *,
    client_factory: ClientFactory | None = None,
) -> list[HttpProducerImporter]:
    """Ask the producer service which importers it runs."""

    factory = client_factory or ResilientClient

    async def fetch_index() -> ImporterIndex:
        async with factory(config.resilience) as client:
            raw = await _get_json(client, "importers", {})
        try:
            return ImporterIndex.model_validate(raw)
        except ValidationError as exc:
            raise ProducerError(f"Invalid importer index from {config.base_url}: {exc}") from exc

    index = asyncio.run(fetch_index())
    log.info("Discovered %s importer(s) at %s", len(index.importers), config.base_url)
    return [
        HttpProducerImporter(descriptor, config=config, client_factory=factory)
        for descriptor in index.importers
    ]


if TYPE_CHECKING:
    _importer_check: Importer = HttpProducerImporter(
        ImporterDescriptor(importer="x"), config=ProducerServiceConfig("", ResilienceConfig("x"))
    )

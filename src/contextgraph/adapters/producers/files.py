"""Importers backed by payload files on disk (``<importer-id>.json``)."""

from __future__ import annotations

import json
from dataclasses import dataclass
from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from contextgraph.domain.errors import ProducerError

from .schema import ProducerPayload
from .translator import to_proposals

if TYPE_CHECKING:
    from contextgraph.domain.model import Proposal
    from contextgraph.domain.ports import ImportContext, Importer

log = getLogger(__name__)


def read_payload(path: Path) -> ProducerPayload:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ProducerError(f"Cannot read producer payload {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ProducerError(f"Producer payload {path} must be a JSON object")
    raw.setdefault("importer", path.stem)
    try:
        return ProducerPayload.model_validate(raw)
    except ValidationError as exc:
        raise ProducerError(f"Invalid producer payload {path}: {exc}") from exc


@dataclass(frozen=True, slots=True)
class JsonDirectoryImporter:
    """One payload file, read again on every run so producers can refresh it."""

    path: Path
    descriptor: ProducerPayload

    @classmethod
    def from_file(cls, path: Path) -> JsonDirectoryImporter:
        return cls(path=path, descriptor=read_payload(path))

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def priority(self) -> int:
        return self.descriptor.priority

    def supports(self, domain: str) -> bool:
        return self.descriptor.supports(domain)

    def import_all(self, context: ImportContext) -> list[Proposal]:
        payload = read_payload(self.path)
        proposals = to_proposals(payload, run_id=context.run_id)
        log.debug("Read %s proposal(s) from %s", len(proposals), self.path)
        return proposals


def load_directory_importers(directory: Path | str) -> list[JsonDirectoryImporter]:
    """One importer per ``*.json`` file in ``directory``, sorted by file name."""

    root = Path(directory)
    if not root.is_dir():
        raise ProducerError(f"Payload directory {root} does not exist")
    importers = [JsonDirectoryImporter.from_file(path) for path in sorted(root.glob("*.json"))]
    seen: set[str] = set()
    for importer in importers:
        if importer.id in seen:
            raise ProducerError(f"Duplicate importer id {importer.id!r} in {root}")
        seen.add(importer.id)
    log.info("Loaded %s importer(s) from %s", len(importers), root)
    return importers


if TYPE_CHECKING:
    _importer_check: Importer = JsonDirectoryImporter(Path(), ProducerPayload(importer="x"))

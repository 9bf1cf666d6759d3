"""Port for producers that feed proposals into a hydration run."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from contextgraph.domain.model import Field, Proposal


@dataclass(frozen=True, slots=True, kw_only=True)
class ImportContext:
    """What an importer gets to see of the entity it is hydrating."""

    entity_id: str
    run_id: str
    domains: tuple[str, ...]
    fields: Mapping[str, Field] = field(default_factory=lambda: MappingProxyType({}))

    def has_value(self, key: str) -> bool:
        current = self.fields.get(key)
        return current is not None and current.has_value


@runtime_checkable
class Importer(Protocol):
    """A producer of proposals, run in ascending ``priority`` order."""

    @property
    def id(self) -> str: ...

    @property
    def priority(self) -> int: ...

    def supports(self, domain: str) -> bool: ...

    def import_all(self, context: ImportContext) -> Sequence[Proposal]: ...

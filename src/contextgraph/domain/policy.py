"""Per-domain source priority table.

The table ranks automated sources inside each domain. Human sources are never
ranked: the resolution engine handles them before priorities are compared, and
``priority_of`` only reports ``HUMAN_PRIORITY`` for them for display purposes.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Final

from contextgraph.domain.model import HumanKind, SourceKind, is_human_name, source_name

HUMAN_PRIORITY: Final[int] = 1_000_000
UNKNOWN_SOURCE_PRIORITY: Final[int] = 0
UNKNOWN_SOURCE_CONFIDENCE: Final[float] = 0.4


class TieBreak(StrEnum):
    """How incoming confidence is compared at equal priority."""

    STRICT = "strict"
    INCLUSIVE = "inclusive"


@dataclass(frozen=True, slots=True)
class SourcePriorityEntry:
    domain: str
    source: str
    priority: int
    default_confidence: float

    def __post_init__(self) -> None:
        if is_human_name(self.source):
            raise ValueError(f"Human source {self.source!r} cannot be ranked in {self.domain!r}")
        if not UNKNOWN_SOURCE_PRIORITY <= self.priority < HUMAN_PRIORITY:
            raise ValueError(
                f"Priority for {self.domain}/{self.source} must be in "
                f"[{UNKNOWN_SOURCE_PRIORITY}, {HUMAN_PRIORITY}), got {self.priority}"
            )
        if not 0.0 <= self.default_confidence <= 1.0:
            raise ValueError(
                f"Default confidence for {self.source!r} must be in [0, 1], "
                f"got {self.default_confidence}"
            )


def _freeze[K, V](mapping: Mapping[K, V]) -> Mapping[K, V]:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True, slots=True, kw_only=True)
class SourcePolicy:
    """Immutable ranking, confidence and schema configuration.

    Build once at startup (see ``contextgraph.config.policy.load_policy``) and
    pass by reference.
    """

    entries: Mapping[tuple[str, str], SourcePriorityEntry] = field(
        default_factory=lambda: MappingProxyType({})
    )
    source_confidence: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    expected_fields: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    display_names: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    tie_break: TieBreak = TieBreak.STRICT
    confidence_margin: float = 0.0
    unknown_confidence: float = UNKNOWN_SOURCE_CONFIDENCE

    @classmethod
    def build(
        cls,
        entries: Iterable[SourcePriorityEntry],
        *,
        source_confidence: Mapping[str, float] | None = None,
        expected_fields: Mapping[str, Sequence[str]] | None = None,
        display_names: Mapping[str, str] | None = None,
        tie_break: TieBreak = TieBreak.STRICT,
        confidence_margin: float = 0.0,
        unknown_confidence: float = UNKNOWN_SOURCE_CONFIDENCE,
    ) -> SourcePolicy:
        indexed: dict[tuple[str, str], SourcePriorityEntry] = {}
        for entry in entries:
            slot = (entry.domain, entry.source)
            if slot in indexed:
                raise ValueError(f"Duplicate priority entry for {entry.domain}/{entry.source}")
            indexed[slot] = entry
        if confidence_margin < 0:
            raise ValueError(f"confidence_margin must be >= 0, got {confidence_margin}")
        return cls(
            entries=_freeze(indexed),
            source_confidence=_freeze(source_confidence or {}),
            expected_fields=_freeze(
                {domain: tuple(names) for domain, names in (expected_fields or {}).items()}
            ),
            display_names=_freeze(display_names or {}),
            tie_break=tie_break,
            confidence_margin=confidence_margin,
            unknown_confidence=unknown_confidence,
        )

    @property
    def domains(self) -> tuple[str, ...]:
        names = {domain for domain, _ in self.entries} | set(self.expected_fields)
        return tuple(sorted(names))

    def is_human_source(self, source: SourceKind | HumanKind | str) -> bool:
        return is_human_name(source_name(source))

    def priority_of(self, domain: str, source: SourceKind | HumanKind | str) -> int:
        name = source_name(source)
        if is_human_name(name):
            return HUMAN_PRIORITY
        entry = self.entries.get((domain, name))
        return entry.priority if entry is not None else UNKNOWN_SOURCE_PRIORITY

    def default_confidence(
        self,
        source: SourceKind | HumanKind | str,
        domain: str | None = None,
    ) -> float:
        name = source_name(source)
        if domain is not None:
            entry = self.entries.get((domain, name))
            if entry is not None:
                return entry.default_confidence
        return self.source_confidence.get(name, self.unknown_confidence)

    def display_name(self, source: SourceKind | HumanKind | str) -> str:
        name = source_name(source)
        return self.display_names.get(name, name)

    def ranked_sources(self, domain: str) -> list[str]:
        """Automated sources configured for ``domain``, highest priority first."""

        ranked = [
            entry for (entry_domain, _), entry in self.entries.items() if entry_domain == domain
        ]
        ranked.sort(key=lambda entry: (-entry.priority, entry.source))
        return [entry.source for entry in ranked]

    def authoritative_sources(self, domain: str, limit: int = 3) -> list[str]:
        return [self.display_name(name) for name in self.ranked_sources(domain)[:limit]]

    def fields_for(self, domain: str) -> tuple[str, ...]:
        return self.expected_fields.get(domain, ())

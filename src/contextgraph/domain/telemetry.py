"""Completeness snapshots and hydration telemetry.

Purely derived data: counts of non-empty fields before and after a run plus the
per-field write log. No decisions are made here.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from contextgraph.domain.workflow import OutcomeKind

if TYPE_CHECKING:
    from contextgraph.domain.model import DecisionReason, Field


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Which schema fields held a value at one point in time."""

    filled: Mapping[str, frozenset[str]] = field(default_factory=lambda: MappingProxyType({}))
    expected: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))

    def filled_in(self, domain: str) -> frozenset[str]:
        return self.filled.get(domain, frozenset())

    def domain_completeness(self, domain: str) -> float:
        expected = self.expected.get(domain, ())
        if not expected:
            return 0.0
        present = sum(1 for name in expected if name in self.filled_in(domain))
        return round(present / len(expected) * 100, 2)

    def completeness(self) -> float:
        total = sum(len(names) for names in self.expected.values())
        if total == 0:
            return 0.0
        present = sum(
            1
            for domain, names in self.expected.items()
            for name in names
            if name in self.filled_in(domain)
        )
        return round(present / total * 100, 2)


def take_snapshot(
    fields: Iterable[Field],
    *,
    expected: Mapping[str, Sequence[str]],
) -> Snapshot:
    filled: dict[str, set[str]] = {}
    for current in fields:
        if current.has_value:
            filled.setdefault(current.key.domain, set()).add(current.key.name)
    return Snapshot(
        filled=MappingProxyType({domain: frozenset(names) for domain, names in filled.items()}),
        expected=MappingProxyType({domain: tuple(names) for domain, names in expected.items()}),
    )


@dataclass(frozen=True, slots=True)
class WriteRecord:
    importer_id: str
    key: str
    outcome: OutcomeKind
    reason: DecisionReason | None = None

    @property
    def domain(self) -> str:
        return self.key.partition(".")[0]


@dataclass(frozen=True, slots=True)
class HydrationError:
    importer_id: str
    message: str
    key: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class HydrationTelemetry:
    completeness_before: float
    completeness_after: float
    completeness_change: float
    fields_written_by_domain: Mapping[str, int]
    domain_completeness: Mapping[str, float]
    duration_ms: int
    writes: tuple[WriteRecord, ...] = ()
    errors: tuple[HydrationError, ...] = ()
    entity_id: str | None = None
    cancelled: bool = False

    @property
    def fields_written(self) -> int:
        return sum(self.fields_written_by_domain.values())

    def as_dict(self) -> dict[str, object]:
        return {
            "entity_id": self.entity_id,
            "completeness_before": self.completeness_before,
            "completeness_after": self.completeness_after,
            "completeness_change": self.completeness_change,
            "fields_written_by_domain": dict(self.fields_written_by_domain),
            "domain_completeness": dict(self.domain_completeness),
            "duration_ms": self.duration_ms,
            "writes": [
                {
                    "importer_id": write.importer_id,
                    "key": write.key,
                    "outcome": write.outcome.value,
                    "reason": write.reason.value if write.reason else None,
                }
                for write in self.writes
            ],
            "errors": [
                {"importer_id": error.importer_id, "key": error.key, "message": error.message}
                for error in self.errors
            ],
            "cancelled": self.cancelled,
        }

    def summary_line(self) -> str:
        return (
            f"completeness {self.completeness_before:.2f}% -> {self.completeness_after:.2f}% "
            f"({self.completeness_change:+.2f}), written={self.fields_written}, "
            f"errors={len(self.errors)}, duration_ms={self.duration_ms}"
            + (", cancelled" if self.cancelled else "")
        )


def summarize(
    before: Snapshot,
    after: Snapshot,
    *,
    writes: Sequence[WriteRecord] = (),
    errors: Sequence[HydrationError] = (),
    duration_ms: int = 0,
    entity_id: str | None = None,
    cancelled: bool = False,
) -> HydrationTelemetry:
    """Compare two snapshots and fold in the write log of the run."""

    written = Counter(
        write.domain
        for write in writes
        if write.outcome in {OutcomeKind.PROPOSED, OutcomeKind.APPLIED}
    )
    completeness_before = before.completeness()
    completeness_after = after.completeness()
    return HydrationTelemetry(
        completeness_before=completeness_before,
        completeness_after=completeness_after,
        completeness_change=round(completeness_after - completeness_before, 2),
        fields_written_by_domain=MappingProxyType(dict(sorted(written.items()))),
        domain_completeness=MappingProxyType(
            {domain: after.domain_completeness(domain) for domain in sorted(after.expected)}
        ),
        duration_ms=duration_ms,
        writes=tuple(writes),
        errors=tuple(errors),
        entity_id=entity_id,
        cancelled=cancelled,
    )

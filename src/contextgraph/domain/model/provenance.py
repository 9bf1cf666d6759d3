"""Source kinds and provenance tags."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Final

from contextgraph.domain.model.enums import HumanKind

HUMAN_SOURCE_NAMES: Final[frozenset[str]] = frozenset(kind.value for kind in HumanKind)


@dataclass(frozen=True, slots=True)
class HumanSource:
    kind: HumanKind

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def is_human(self) -> bool:
        return True

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class AutomatedSource:
    name: str

    def __post_init__(self) -> None:
        if not self.name or self.name != self.name.strip():
            raise ValueError(f"Invalid automated source name: {self.name!r}")
        if self.name in HUMAN_SOURCE_NAMES:
            raise ValueError(f"{self.name!r} is a human source and cannot be automated")

    @property
    def is_human(self) -> bool:
        return False

    def __str__(self) -> str:
        return self.name


type SourceKind = HumanSource | AutomatedSource


def is_human_name(name: str) -> bool:
    return name in HUMAN_SOURCE_NAMES


def parse_source(value: SourceKind | HumanKind | str) -> SourceKind:
    """Classify a source identifier by exact membership in ``HumanKind``.

    Raises ``ValueError`` for blank identifiers.
    """

    if isinstance(value, HumanSource | AutomatedSource):
        return value
    if isinstance(value, HumanKind):
        return HumanSource(value)
    if value in HUMAN_SOURCE_NAMES:
        return HumanSource(HumanKind(value))
    return AutomatedSource(value)


def source_name(value: SourceKind | HumanKind | str) -> str:
    if isinstance(value, HumanSource | AutomatedSource):
        return value.name
    return str(value)


def clamp_confidence(value: float) -> float:
    """Clamp to [0, 1]; NaN clamps to 0."""

    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, float(value)))


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True, slots=True, kw_only=True)
class ProvenanceTag:
    """Who wrote a value, how sure they were and for how long it stays valid.

    ``valid_for_days=None`` means the value never goes stale.
    """

    source: SourceKind
    confidence: float
    written_at: datetime
    valid_for_days: int | None = None
    note: str | None = None
    source_run_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "source", parse_source(self.source))
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))
        object.__setattr__(self, "written_at", ensure_utc(self.written_at))
        if self.valid_for_days is not None and self.valid_for_days < 0:
            raise ValueError(f"valid_for_days must be >= 0, got {self.valid_for_days}")

    @property
    def is_human(self) -> bool:
        return self.source.is_human

    @property
    def expires_at(self) -> datetime | None:
        if self.valid_for_days is None:
            return None
        try:
            return self.written_at + timedelta(days=self.valid_for_days)
        except OverflowError:
            return None

    def is_expired(self, now: datetime) -> bool:
        expires_at = self.expires_at
        if expires_at is None:
            return False
        return expires_at < ensure_utc(now)

    def freshness(self, now: datetime) -> str:
        """Return ``fresh``, ``stale`` (last quarter of the window) or ``expired``."""

        expires_at = self.expires_at
        if expires_at is None or self.valid_for_days is None:
            return "fresh"
        now = ensure_utc(now)
        if expires_at < now:
            return "expired"
        remaining = expires_at - now
        if remaining <= timedelta(days=self.valid_for_days) / 4:
            return "stale"
        return "fresh"

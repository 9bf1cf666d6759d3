"""Overwrite decisions for provenance-tracked fields.

``decide`` is pure and total. Rules are evaluated in order and the first
match wins:

1. empty target: allowed
2. latest tag human: allowed only for a human writer (``human_override``)
3. incoming human over automated: allowed (``human_override``)
4. latest tag past its validity window: allowed (``stale_expired``)
5. strictly higher or lower priority in the domain
6. equal priority: confidence tie-break (``TieBreak``)
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from contextgraph.domain.model import (
    DecisionReason,
    clamp_confidence,
    ensure_utc,
    is_human_name,
    source_name,
)
from contextgraph.domain.policy import SourcePolicy, TieBreak

if TYPE_CHECKING:
    from contextgraph.domain.model import HumanKind, ProvenanceTag, SourceKind


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class Decision:
    allowed: bool
    reason: DecisionReason
    existing_priority: int | None = None
    incoming_priority: int | None = None

    def explain(self) -> str:
        return self.reason.describe(allowed=self.allowed)


def _safe_confidence(value: float) -> float:
    try:
        return clamp_confidence(float(value))
    except (TypeError, ValueError):
        return 0.0


def _beats(incoming: float, existing: float, *, policy: SourcePolicy) -> bool:
    margin = policy.confidence_margin if math.isfinite(policy.confidence_margin) else 0.0
    threshold = existing + margin
    if policy.tie_break is TieBreak.INCLUSIVE:
        return incoming >= threshold
    return incoming > threshold


def decide(
    domain: str,
    existing: Sequence[ProvenanceTag],
    new_source: SourceKind | HumanKind | str,
    new_confidence: float,
    *,
    policy: SourcePolicy,
    now: datetime | None = None,
) -> Decision:
    """Decide whether ``new_source`` may overwrite a field with provenance ``existing``."""

    incoming_name = source_name(new_source)
    incoming_priority = policy.priority_of(domain, incoming_name)

    if not existing:
        return Decision(True, DecisionReason.EMPTY_TARGET, None, incoming_priority)

    latest = existing[-1]
    existing_name = source_name(latest.source)
    existing_priority = policy.priority_of(domain, existing_name)
    incoming_is_human = is_human_name(incoming_name)

    if is_human_name(existing_name):
        return Decision(
            incoming_is_human,
            DecisionReason.HUMAN_OVERRIDE,
            existing_priority,
            incoming_priority,
        )

    if incoming_is_human:
        return Decision(True, DecisionReason.HUMAN_OVERRIDE, existing_priority, incoming_priority)

    if latest.is_expired(ensure_utc(now) if now is not None else utcnow()):
        return Decision(True, DecisionReason.STALE_EXPIRED, existing_priority, incoming_priority)

    if incoming_priority > existing_priority:
        return Decision(True, DecisionReason.HIGHER_PRIORITY, existing_priority, incoming_priority)
    if incoming_priority < existing_priority:
        return Decision(False, DecisionReason.LOWER_PRIORITY, existing_priority, incoming_priority)

    if _beats(_safe_confidence(new_confidence), latest.confidence, policy=policy):
        return Decision(True, DecisionReason.HIGHER_PRIORITY, existing_priority, incoming_priority)
    return Decision(
        False,
        DecisionReason.CONFIDENCE_INSUFFICIENT,
        existing_priority,
        incoming_priority,
    )


@dataclass(frozen=True, slots=True)
class FieldSourceSummary:
    current_source: str | None
    current_source_name: str | None
    is_human_override: bool
    can_be_overwritten: bool
    authoritative_sources: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ConflictResolver:
    """``decide`` bound to a policy and a clock."""

    policy: SourcePolicy
    clock: Callable[[], datetime] = field(default=utcnow)

    def decide(
        self,
        domain: str,
        existing: Sequence[ProvenanceTag],
        new_source: SourceKind | HumanKind | str,
        new_confidence: float,
    ) -> Decision:
        return decide(
            domain,
            existing,
            new_source,
            new_confidence,
            policy=self.policy,
            now=self.clock(),
        )

    def summarize_field(
        self,
        domain: str,
        existing: Sequence[ProvenanceTag],
    ) -> FieldSourceSummary:
        return field_source_summary(domain, existing, policy=self.policy)


def field_source_summary(
    domain: str,
    existing: Sequence[ProvenanceTag],
    *,
    policy: SourcePolicy,
) -> FieldSourceSummary:
    """Describe who currently owns a field and whether automation may replace it."""

    latest = existing[-1] if existing else None
    current = source_name(latest.source) if latest is not None else None
    is_human = current is not None and is_human_name(current)
    return FieldSourceSummary(
        current_source=current,
        current_source_name=policy.display_name(current) if current else None,
        is_human_override=is_human,
        can_be_overwritten=not is_human,
        authoritative_sources=tuple(policy.authoritative_sources(domain)),
    )

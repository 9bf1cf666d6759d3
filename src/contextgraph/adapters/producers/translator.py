"""Translate producer payloads into domain proposals."""

from __future__ import annotations

from typing import TYPE_CHECKING

from contextgraph.domain.model import Evidence, Proposal

if TYPE_CHECKING:
    from .schema import ProducerPayload, ProposalPayload


def to_proposal(
    item: ProposalPayload,
    *,
    default_source: str,
    run_id: str | None = None,
) -> Proposal:
    evidence = (
        Evidence(raw_path=item.evidence.raw_path, snippet=item.evidence.snippet)
        if item.evidence is not None
        else None
    )
    return Proposal(
        key=item.key,
        value=item.value,
        source=item.source or default_source,
        confidence=item.confidence,
        source_run_id=item.source_run_id or run_id,
        valid_for_days=item.valid_for_days,
        evidence=evidence,
    )


def to_proposals(payload: ProducerPayload, *, run_id: str | None = None) -> list[Proposal]:
    """Proposals carried by ``payload``; the payload's own run id wins over ``run_id``."""

    effective_run = payload.run_id or run_id
    return [
        to_proposal(item, default_source=payload.default_source, run_id=effective_run)
        for item in payload.proposals
    ]

"""Pydantic models describing producer payloads.

A payload is what one producer (a lab, a GAP tier, the AI brain...) emits for
one entity::

    {
      "importer": "brand_lab",
      "priority": 10,
      "domains": ["brand"],
      "source": "brand_lab",
      "runId": "2026-10-01T10:00:00Z",
      "proposals": [
        {"key": "brand.positioning", "value": "...", "confidence": 0.9,
         "evidence": {"rawPath": "summary.positioning"}}
      ]
    }

Confidence and validity are passed through unchecked; the workflow rejects
out-of-range values per proposal.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from contextgraph.domain.model import is_human_name


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _automated_name(value: str | None) -> str | None:
    if value is not None and is_human_name(value):
        raise ValueError(f"{value!r} is reserved for human writers")
    return value


class ProducerBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class EvidencePayload(ProducerBaseModel):
    raw_path: str = Field(alias="rawPath")
    snippet: str | None = None

    _normalize_snippet = field_validator("snippet", mode="before")(_blank_to_none)


class ProposalPayload(ProducerBaseModel):
    key: str
    value: Any = None
    source: str | None = None
    confidence: float | None = None
    source_run_id: str | None = Field(default=None, alias="sourceRunId")
    valid_for_days: int | None = Field(default=None, alias="validForDays")
    evidence: EvidencePayload | None = None

    _normalize_source = field_validator("source", "source_run_id", mode="before")(
        _blank_to_none
    )
    _reject_human_source = field_validator("source")(_automated_name)


class ImporterDescriptor(ProducerBaseModel):
    """Identity and scheduling data of one producer."""

    id: str = Field(alias="importer")
    priority: int = 100
    domains: list[str] = Field(default_factory=list)
    source: str | None = None

    _normalize_source = field_validator("source", mode="before")(_blank_to_none)
    _reject_human_names = field_validator("id", "source")(_automated_name)

    @property
    def default_source(self) -> str:
        return self.source or self.id

    def supports(self, domain: str) -> bool:
        return not self.domains or domain in self.domains


class ProducerPayload(ImporterDescriptor):
    run_id: str | None = Field(default=None, alias="runId")
    proposals: list[ProposalPayload] = Field(default_factory=list)


class ImporterIndex(ProducerBaseModel):
    importers: list[ImporterDescriptor] = Field(default_factory=list)

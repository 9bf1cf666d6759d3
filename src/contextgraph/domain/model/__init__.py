"""Public domain model surface."""

from __future__ import annotations

from contextgraph.domain.model.enums import (
    AutomatedKind,
    DecisionReason,
    FieldStatus,
    HumanKind,
)
from contextgraph.domain.model.field import (
    MAX_PROVENANCE_HISTORY,
    Alternative,
    ConfirmedField,
    Evidence,
    Field,
    FieldKey,
    Proposal,
    is_empty_value,
)
from contextgraph.domain.model.provenance import (
    HUMAN_SOURCE_NAMES,
    AutomatedSource,
    HumanSource,
    ProvenanceTag,
    SourceKind,
    clamp_confidence,
    ensure_utc,
    is_human_name,
    parse_source,
    source_name,
)

__all__ = [
    "HUMAN_SOURCE_NAMES",
    "MAX_PROVENANCE_HISTORY",
    "Alternative",
    "AutomatedKind",
    "AutomatedSource",
    "ConfirmedField",
    "DecisionReason",
    "Evidence",
    "Field",
    "FieldKey",
    "FieldStatus",
    "HumanKind",
    "HumanSource",
    "Proposal",
    "ProvenanceTag",
    "SourceKind",
    "clamp_confidence",
    "ensure_utc",
    "is_empty_value",
    "is_human_name",
    "parse_source",
    "source_name",
]

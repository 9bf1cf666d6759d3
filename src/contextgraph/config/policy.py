"""Loading the source priority policy from TOML."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from importlib import resources
from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING, Final

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from contextgraph.domain.policy import (
    UNKNOWN_SOURCE_CONFIDENCE,
    SourcePolicy,
    SourcePriorityEntry,
    TieBreak,
)

from .env import optional_env_var
from .errors import PolicyConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

log = getLogger(__name__)

DEFAULT_POLICY_RESOURCE: Final[str] = "default_policy.toml"


class PolicyBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ResolutionSection(PolicyBaseModel):
    tie_break: TieBreak = TieBreak.STRICT
    confidence_margin: float = Field(default=0.0, ge=0.0)
    unknown_confidence: float = Field(default=UNKNOWN_SOURCE_CONFIDENCE, ge=0.0, le=1.0)


class DomainSection(PolicyBaseModel):
    expected: list[str] = Field(default_factory=list, alias="fields")
    priority: dict[str, int] = Field(default_factory=dict)

    @field_validator("expected")
    @classmethod
    def _unique_fields(cls, value: list[str]) -> list[str]:
        if len(set(value)) != len(value):
            raise ValueError("expected fields must be unique")
        return value


class PolicyDocument(PolicyBaseModel):
    resolution: ResolutionSection = Field(default_factory=ResolutionSection)
    confidence: dict[str, float] = Field(default_factory=dict)
    display_names: dict[str, str] = Field(default_factory=dict)
    domains: dict[str, DomainSection] = Field(default_factory=dict)

    @field_validator("confidence")
    @classmethod
    def _confidence_in_range(cls, value: dict[str, float]) -> dict[str, float]:
        for source, confidence in value.items():
            if not 0.0 <= confidence <= 1.0:
                raise ValueError(f"confidence for {source!r} must be in [0, 1]")
        return value

    def to_policy(self) -> SourcePolicy:
        entries = [
            SourcePriorityEntry(
                domain=domain,
                source=source,
                priority=priority,
                default_confidence=self.confidence.get(
                    source, self.resolution.unknown_confidence
                ),
            )
            for domain, section in self.domains.items()
            for source, priority in section.priority.items()
        ]
        return SourcePolicy.build(
            entries,
            source_confidence=self.confidence,
            expected_fields={
                domain: section.expected
                for domain, section in self.domains.items()
                if section.expected
            },
            display_names=self.display_names,
            tie_break=self.resolution.tie_break,
            confidence_margin=self.resolution.confidence_margin,
            unknown_confidence=self.resolution.unknown_confidence,
        )


@dataclass(frozen=True, slots=True)
class PolicyConfig:
    """Where the source policy is read from; ``None`` means the packaged default."""

    path: Path | None = None


def get_policy_config() -> PolicyConfig:
    raw = optional_env_var("CONTEXTGRAPH_POLICY_FILE")
    return PolicyConfig(path=Path(raw).expanduser() if raw else None)


def parse_policy(document: Mapping[str, object], *, origin: str = "<memory>") -> SourcePolicy:
    """Validate a decoded policy document and build the immutable policy."""

    try:
        return PolicyDocument.model_validate(document).to_policy()
    except (ValidationError, ValueError) as exc:
        raise PolicyConfigurationError(f"Invalid source policy in {origin}: {exc}") from exc


def _read_document(path: Path | None) -> tuple[dict[str, object], str]:
    if path is None:
        resource = resources.files("contextgraph.config").joinpath(DEFAULT_POLICY_RESOURCE)
        return tomllib.loads(resource.read_text(encoding="utf-8")), DEFAULT_POLICY_RESOURCE
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle), str(path)
    except OSError as exc:
        raise PolicyConfigurationError(f"Cannot read source policy {path}: {exc}") from exc


def load_policy(path: Path | str | None = None) -> SourcePolicy:
    """Load the source policy from ``path``, the environment, or the packaged default."""

    resolved = Path(path) if path is not None else get_policy_config().path
    try:
        document, origin = _read_document(resolved)
    except tomllib.TOMLDecodeError as exc:
        raise PolicyConfigurationError(f"Source policy is not valid TOML: {exc}") from exc
    policy = parse_policy(document, origin=origin)
    log.debug("Loaded source policy from %s (%d domains)", origin, len(policy.domains))
    return policy

"""Fields, proposals and confirmed values."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Final

from contextgraph.domain.errors import MalformedKeyError
from contextgraph.domain.model.enums import FieldStatus

if TYPE_CHECKING:
    from contextgraph.domain.model.enums import HumanKind
    from contextgraph.domain.model.provenance import ProvenanceTag, SourceKind

MAX_PROVENANCE_HISTORY: Final[int] = 5


def is_empty_value(value: object) -> bool:
    """None, blank strings and empty collections count as "no value"."""

    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, list | tuple | set | frozenset | Mapping):
        return len(value) == 0
    return False


@dataclass(frozen=True, slots=True, order=True)
class FieldKey:
    domain: str
    name: str

    def __post_init__(self) -> None:
        for part in (self.domain, self.name):
            if not part or part != part.strip() or any(ch.isspace() for ch in part):
                raise MalformedKeyError(f"Malformed field key: {self.domain!r}.{self.name!r}")
        if "." in self.domain:
            raise MalformedKeyError(f"Domain may not contain '.': {self.domain!r}")

    @classmethod
    def parse(cls, text: str | FieldKey) -> FieldKey:
        if isinstance(text, FieldKey):
            return text
        if not isinstance(text, str):
            raise MalformedKeyError(f"Field key must be a string, got {type(text).__name__}")
        domain, sep, name = text.partition(".")
        if not sep:
            raise MalformedKeyError(f"Field key {text!r} is missing a domain")
        return cls(domain=domain, name=name)

    def __str__(self) -> str:
        return f"{self.domain}.{self.name}"


@dataclass(frozen=True, slots=True)
class Evidence:
    raw_path: str
    snippet: str | None = None

    def describe(self) -> str:
        if self.snippet:
            return f"{self.raw_path}: {self.snippet}"
        return self.raw_path


@dataclass(frozen=True, slots=True, kw_only=True)
class Proposal:
    """A candidate value from a producer. Never canonical on its own.

    ``confidence=None`` falls back to the policy's default for the source.
    """

    key: FieldKey | str
    value: object
    source: SourceKind | HumanKind | str
    confidence: float | None = None
    source_run_id: str | None = None
    valid_for_days: int | None = None
    evidence: Evidence | None = None


@dataclass(frozen=True, slots=True)
class Alternative:
    """A secondary value kept next to a staged proposal for the reviewer."""

    value: object
    tag: ProvenanceTag


@dataclass(frozen=True, slots=True, kw_only=True)
class Field:
    key: FieldKey
    value: object = None
    provenance: tuple[ProvenanceTag, ...] = ()
    status: FieldStatus = FieldStatus.EMPTY
    version: int = 0
    alternatives: tuple[Alternative, ...] = ()

    def __post_init__(self) -> None:
        if self.version < 0:
            raise ValueError(f"Field version must be >= 0, got {self.version}")
        if self.status is FieldStatus.CONFIRMED and not self.provenance:
            raise ValueError(f"Confirmed field {self.key} has no provenance")

    @classmethod
    def empty(cls, key: FieldKey) -> Field:
        return cls(key=key)

    @property
    def latest(self) -> ProvenanceTag | None:
        return self.provenance[-1] if self.provenance else None

    @property
    def has_value(self) -> bool:
        return not is_empty_value(self.value)

    @property
    def is_human_pinned(self) -> bool:
        latest = self.latest
        return (
            latest is not None and latest.is_human and self.status is not FieldStatus.REJECTED
        )

    @property
    def rejected_source(self) -> SourceKind | None:
        """The automated source whose staged value a reviewer turned down.

        A rejection appends the reviewer's tag right after the rejected one.
        """

        if self.status is not FieldStatus.REJECTED or len(self.provenance) < 2:
            return None
        return self.provenance[-2].source

    def with_write(
        self,
        value: object,
        tag: ProvenanceTag,
        *,
        status: FieldStatus,
        alternatives: tuple[Alternative, ...] = (),
    ) -> Field:
        """Return the next version of this field after ``tag`` wrote ``value``."""

        history = (*self.provenance, tag)[-MAX_PROVENANCE_HISTORY:]
        return replace(
            self,
            value=value,
            provenance=history,
            status=status,
            version=self.version + 1,
            alternatives=alternatives,
        )

    def with_alternatives(self, alternatives: tuple[Alternative, ...]) -> Field:
        return replace(self, alternatives=alternatives, version=self.version + 1)


@dataclass(frozen=True, slots=True)
class ConfirmedField:
    """A canonical value whose latest writer is a person.

    Only produced by a human write; see ``ConfirmedField.from_field``.
    """

    key: FieldKey
    value: object
    tag: ProvenanceTag
    version: int

    def __post_init__(self) -> None:
        if not self.tag.is_human:
            raise ValueError(f"Confirmed field {self.key} must be written by a human source")

    @classmethod
    def from_field(cls, field: Field) -> ConfirmedField:
        latest = field.latest
        if field.status is not FieldStatus.CONFIRMED or latest is None:
            raise ValueError(f"Field {field.key} is not confirmed")
        return cls(key=field.key, value=field.value, tag=latest, version=field.version)

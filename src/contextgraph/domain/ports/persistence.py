"""Port for reading and writing provenance-tracked fields."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from contextgraph.domain.model import (
        Alternative,
        Field,
        FieldKey,
        FieldStatus,
        ProvenanceTag,
    )


@runtime_checkable
class FieldStore(Protocol):
    """Persistence contract for fields.

    Writes are compare-and-set on ``Field.version``: a write whose
    ``expected_version`` no longer matches raises ``ConcurrentWriteError``. A
    field that was never written has version 0. Backend failures surface as
    ``FieldStoreError`` subclasses; a call exceeding ``timeout`` seconds raises
    ``StoreTimeoutError``.
    """

    def get_field(
        self,
        entity_id: str,
        key: FieldKey,
        *,
        timeout: float | None = None,
    ) -> Field | None: ...

    def list_fields(self, entity_id: str, *, timeout: float | None = None) -> list[Field]: ...

    def write_field(
        self,
        entity_id: str,
        key: FieldKey,
        value: object,
        tag: ProvenanceTag,
        *,
        status: FieldStatus,
        expected_version: int,
        alternatives: tuple[Alternative, ...] = (),
        timeout: float | None = None,
    ) -> Field: ...

    def update_alternatives(
        self,
        entity_id: str,
        key: FieldKey,
        alternatives: tuple[Alternative, ...],
        *,
        expected_version: int,
        timeout: float | None = None,
    ) -> Field: ...

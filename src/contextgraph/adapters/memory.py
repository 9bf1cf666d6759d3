"""Thread-safe in-memory field store."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from contextgraph.domain.errors import ConcurrentWriteError, StoreTimeoutError
from contextgraph.domain.model import Field

if TYPE_CHECKING:
    from contextgraph.domain.model import Alternative, FieldKey, FieldStatus, ProvenanceTag
    from contextgraph.domain.ports import FieldStore


class InMemoryFieldStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._fields: dict[tuple[str, FieldKey], Field] = {}

    @contextmanager
    def _locked(self, timeout: float | None) -> Iterator[None]:
        if not self._lock.acquire(timeout=-1 if timeout is None else timeout):
            raise StoreTimeoutError("Timed out waiting for the in-memory store")
        try:
            yield
        finally:
            self._lock.release()

    def get_field(
        self,
        entity_id: str,
        key: FieldKey,
        *,
        timeout: float | None = None,
    ) -> Field | None:
        with self._locked(timeout):
            return self._fields.get((entity_id, key))

    def list_fields(self, entity_id: str, *, timeout: float | None = None) -> list[Field]:
        with self._locked(timeout):
            found = [field for (owner, _), field in self._fields.items() if owner == entity_id]
        return sorted(found, key=lambda field: field.key)

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
    ) -> Field:
        with self._locked(timeout):
            current = self._current(entity_id, key, expected_version)
            updated = current.with_write(value, tag, status=status, alternatives=alternatives)
            self._fields[(entity_id, key)] = updated
            return updated

    def update_alternatives(
        self,
        entity_id: str,
        key: FieldKey,
        alternatives: tuple[Alternative, ...],
        *,
        expected_version: int,
        timeout: float | None = None,
    ) -> Field:
        with self._locked(timeout):
            current = self._current(entity_id, key, expected_version)
            updated = current.with_alternatives(alternatives)
            self._fields[(entity_id, key)] = updated
            return updated

    def _current(self, entity_id: str, key: FieldKey, expected_version: int) -> Field:
        current = self._fields.get((entity_id, key)) or Field.empty(key)
        if current.version != expected_version:
            raise ConcurrentWriteError(
                f"{entity_id}/{key} is at version {current.version}, expected {expected_version}"
            )
        return current


if TYPE_CHECKING:
    _store_check: FieldStore = InMemoryFieldStore()

"""Field store port implemented on top of the SQLAlchemy unit of work."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from contextgraph.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork
from contextgraph.domain.errors import (
    ConcurrentWriteError,
    FieldStoreError,
    StoreTimeoutError,
)
from contextgraph.domain.model import Field

if TYPE_CHECKING:
    from contextgraph.domain.model import Alternative, FieldKey, FieldStatus, ProvenanceTag
    from contextgraph.domain.ports import FieldStore

log = getLogger(__name__)

_TIMEOUT_MARKERS = (
    "database is locked",
    "statement timeout",
    "canceling statement",
    "lock timeout",
)


def _is_timeout(exc: OperationalError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _TIMEOUT_MARKERS)


@contextmanager
def _translated_errors(operation: str, entity_id: str) -> Iterator[None]:
    try:
        yield
    except FieldStoreError:
        raise
    except IntegrityError as exc:
        raise ConcurrentWriteError(
            f"{operation} for {entity_id} raced with another writer"
        ) from exc
    except OperationalError as exc:
        if _is_timeout(exc):
            raise StoreTimeoutError(f"{operation} for {entity_id} timed out") from exc
        log.warning("%s for %s failed: %s", operation, entity_id, exc)
        raise FieldStoreError(f"{operation} for {entity_id} failed: {exc}") from exc
    except SQLAlchemyError as exc:
        log.warning("%s for %s failed: %s", operation, entity_id, exc)
        raise FieldStoreError(f"{operation} for {entity_id} failed: {exc}") from exc


@dataclass(slots=True)
class SqlAlchemyFieldStore:
    unit_of_work_factory: Callable[[], SqlAlchemyUnitOfWork] = SqlAlchemyUnitOfWork

    def get_field(
        self,
        entity_id: str,
        key: FieldKey,
        *,
        timeout: float | None = None,
    ) -> Field | None:
        with _translated_errors("get_field", entity_id), self.unit_of_work_factory() as uow:
            uow.apply_timeout(timeout)
            return uow.fields.get(entity_id, key)

    def list_fields(self, entity_id: str, *, timeout: float | None = None) -> list[Field]:
        with _translated_errors("list_fields", entity_id), self.unit_of_work_factory() as uow:
            uow.apply_timeout(timeout)
            return uow.fields.list_for_entity(entity_id)

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
        with _translated_errors("write_field", entity_id), self.unit_of_work_factory() as uow:
            uow.apply_timeout(timeout)
            stored = uow.fields.get(entity_id, key)
            current = stored or Field.empty(key)
            self._check_version(entity_id, current, expected_version)
            updated = current.with_write(value, tag, status=status, alternatives=alternatives)
            self._persist(uow, entity_id, updated, exists=stored is not None)
            uow.commit()
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
        with (
            _translated_errors("update_alternatives", entity_id),
            self.unit_of_work_factory() as uow,
        ):
            uow.apply_timeout(timeout)
            stored = uow.fields.get(entity_id, key)
            current = stored or Field.empty(key)
            self._check_version(entity_id, current, expected_version)
            updated = current.with_alternatives(alternatives)
            self._persist(uow, entity_id, updated, exists=stored is not None)
            uow.commit()
            return updated

    @staticmethod
    def _check_version(entity_id: str, current: Field, expected_version: int) -> None:
        if current.version != expected_version:
            raise ConcurrentWriteError(
                f"{entity_id}/{current.key} is at version {current.version}, "
                f"expected {expected_version}"
            )

    @staticmethod
    def _persist(
        uow: SqlAlchemyUnitOfWork,
        entity_id: str,
        updated: Field,
        *,
        exists: bool,
    ) -> None:
        if not exists:
            uow.fields.insert(entity_id, updated)
            return
        if not uow.fields.update(entity_id, updated, expected_version=updated.version - 1):
            raise ConcurrentWriteError(f"{entity_id}/{updated.key} changed during the write")


if TYPE_CHECKING:
    _store_check: FieldStore = SqlAlchemyFieldStore()

"""SQLAlchemy-backed repository for context fields."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import and_, insert, select, update

from contextgraph.adapters.sqlalchemy.mappings import context_field_table
from contextgraph.domain.model import Field, FieldKey, FieldStatus

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement, CursorResult, Row
    from sqlalchemy.orm import Session


def _row_to_field(row: Row[Any]) -> Field:
    return Field(
        key=FieldKey(domain=row.domain, name=row.name),
        value=row.value,
        provenance=tuple(row.provenance),
        status=FieldStatus(row.status),
        version=row.version,
        alternatives=tuple(row.alternatives),
    )


def _field_values(entity_id: str, field: Field) -> dict[str, object]:
    latest = field.latest
    return {
        "entity_id": entity_id,
        "domain": field.key.domain,
        "name": field.key.name,
        "value": field.value,
        "provenance": field.provenance,
        "alternatives": field.alternatives,
        "status": field.status,
        "version": field.version,
        "updated_at": latest.written_at if latest is not None else None,
    }


class SqlAlchemyFieldRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _matches(self, entity_id: str, key: FieldKey) -> ColumnElement[bool]:
        table = context_field_table
        return and_(
            table.c.entity_id == entity_id,
            table.c.domain == key.domain,
            table.c.name == key.name,
        )

    def get(self, entity_id: str, key: FieldKey) -> Field | None:
        stmt = select(context_field_table).where(self._matches(entity_id, key))
        row = self.session.execute(stmt).one_or_none()
        return _row_to_field(row) if row is not None else None

    def list_for_entity(self, entity_id: str) -> list[Field]:
        table = context_field_table
        stmt = (
            select(table)
            .where(table.c.entity_id == entity_id)
            .order_by(table.c.domain, table.c.name)
        )
        return [_row_to_field(row) for row in self.session.execute(stmt)]

    def insert(self, entity_id: str, field: Field) -> None:
        self.session.execute(insert(context_field_table).values(**_field_values(entity_id, field)))

    def update(self, entity_id: str, field: Field, *, expected_version: int) -> bool:
        """Conditional update; False when the stored version moved on."""

        table = context_field_table
        stmt = (
            update(table)
            .where(self._matches(entity_id, field.key), table.c.version == expected_version)
            .values(**_field_values(entity_id, field))
        )
        result = cast("CursorResult[Any]", self.session.execute(stmt))
        return result.rowcount == 1

"""SQLAlchemy table metadata for context fields."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, cast

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Dialect,
    Enum,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
)

from contextgraph.domain.model import (
    Alternative,
    FieldStatus,
    ProvenanceTag,
    parse_source,
)

metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_label)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


def tag_to_dict(tag: ProvenanceTag) -> dict[str, object]:
    return {
        "source": tag.source.name,
        "confidence": tag.confidence,
        "written_at": tag.written_at.isoformat(),
        "valid_for_days": tag.valid_for_days,
        "note": tag.note,
        "source_run_id": tag.source_run_id,
    }


def tag_from_dict(payload: dict[str, Any]) -> ProvenanceTag:
    return ProvenanceTag(
        source=parse_source(str(payload["source"])),
        confidence=float(payload["confidence"]),
        written_at=datetime.fromisoformat(str(payload["written_at"])),
        valid_for_days=payload.get("valid_for_days"),
        note=payload.get("note"),
        source_run_id=payload.get("source_run_id"),
    )


class ProvenanceType(TypeDecorator[tuple[ProvenanceTag, ...]]):
    """Provenance history stored as a JSON array, oldest first."""

    impl = Text
    cache_ok = True

    def process_bind_param(
        self,
        value: tuple[ProvenanceTag, ...] | None,
        dialect: Dialect,
    ) -> str:
        _ = dialect
        return json.dumps([tag_to_dict(tag) for tag in value or ()])

    def process_result_value(
        self,
        value: str | None,
        dialect: Dialect,
    ) -> tuple[ProvenanceTag, ...]:
        _ = dialect
        if value is None:
            return ()
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return ()
        items = cast(list[dict[str, Any]], loaded)
        return tuple(tag_from_dict(item) for item in items)


class AlternativesType(TypeDecorator[tuple[Alternative, ...]]):
    impl = Text
    cache_ok = True

    def process_bind_param(
        self,
        value: tuple[Alternative, ...] | None,
        dialect: Dialect,
    ) -> str:
        _ = dialect
        payload = [{"value": alt.value, "tag": tag_to_dict(alt.tag)} for alt in value or ()]
        return json.dumps(payload)

    def process_result_value(
        self,
        value: str | None,
        dialect: Dialect,
    ) -> tuple[Alternative, ...]:
        _ = dialect
        if value is None:
            return ()
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return ()
        items = cast(list[dict[str, Any]], loaded)
        return tuple(Alternative(item.get("value"), tag_from_dict(item["tag"])) for item in items)


def _enum_values(enum_cls: type[FieldStatus]) -> list[str]:
    return [member.value for member in enum_cls]


context_field_table = Table(
    "context_field",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("entity_id", String(255), nullable=False),
    Column("domain", String(255), nullable=False),
    Column("name", String(255), nullable=False),
    Column("value", JSON(none_as_null=True), nullable=True),
    Column("provenance", ProvenanceType, nullable=False),
    Column("alternatives", AlternativesType, nullable=False),
    Column(
        "status",
        Enum(
            FieldStatus,
            native_enum=False,
            values_callable=_enum_values,
            length=16,
            name="field_status",
        ),
        nullable=False,
    ),
    Column("version", Integer, nullable=False),
    Column("updated_at", UTCDateTime, nullable=True),
    UniqueConstraint("entity_id", "domain", "name"),
    Index(None, "entity_id"),
)

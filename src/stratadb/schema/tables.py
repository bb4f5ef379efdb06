"""Map schema snapshots onto SQLAlchemy tables.

The same ``MetaData`` drives DDL generation, structural comparison and query
compilation, so constraint and index names are derived deterministically here.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKeyConstraint,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeEngine

from stratadb.core.types import DefaultKind, FieldType, Generator, OnDeleteAction
from stratadb.schema.model import Entity, Field, SchemaSnapshot

# Dialect-aware JSON type: JSONB on PostgreSQL, JSON on SQLite
JSONType = JSONB().with_variant(JSON(), "sqlite")


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware timestamp stored as UTC on every dialect.

    SQLite keeps no offset, so values are written as naive UTC and read back
    with UTC attached. Naive input is taken to be UTC already.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None or value.tzinfo is None:
            return value
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


STRING_LENGTH = 255

FIELD_TYPE_MAP = {
    FieldType.INT: lambda: Integer(),
    FieldType.FLOAT: lambda: Float(),
    FieldType.STRING: lambda: String(STRING_LENGTH),
    FieldType.TEXT: lambda: Text(),
    FieldType.BOOL: lambda: Boolean(),
    FieldType.DATETIME: lambda: UTCDateTime(),
    FieldType.JSON: lambda: JSONType,
    FieldType.UUID: lambda: String(36),
}

# Marks indexes that exist only to support a foreign key
RELATION_INDEX = "relation_index"


def column_type(field_type: FieldType) -> TypeEngine[Any]:
    return FIELD_TYPE_MAP[field_type]()


def primary_key_name(table_name: str) -> str:
    return f"pk_{table_name}"


def unique_name(table_name: str, columns: tuple[str, ...] | list[str]) -> str:
    return f"uq_{table_name}_{'_'.join(columns)}"


def index_name(table_name: str, columns: tuple[str, ...] | list[str]) -> str:
    return f"ix_{table_name}_{'_'.join(columns)}"


def foreign_key_name(table_name: str, column: str) -> str:
    return f"fk_{table_name}_{column}"


def server_default(field: Field) -> Any:
    """Store-side default so existing rows can be filled when a column is added."""
    if field.default.kind == DefaultKind.STATIC:
        value = field.default.value
        if isinstance(value, bool):
            return text("true" if value else "false")
        if isinstance(value, (int, float)):
            return text(repr(value))
        if field.type == FieldType.JSON:
            return json.dumps(value)
        return str(value)
    if field.default.generator == Generator.NOW:
        return func.now()
    return None


def build_column(field: Field) -> Column[Any]:
    return Column(
        field.name,
        column_type(field.type),
        nullable=field.nullable and not field.identity,
        autoincrement=field.is_autoincrement,
        server_default=server_default(field),
    )


def build_table(entity: Entity, snapshot: SchemaSnapshot, metadata: MetaData) -> Table:
    """Build the ``Table`` for one entity inside ``metadata``."""
    table_name = entity.table_name
    items: list[Any] = [build_column(f) for f in entity.fields]
    items.append(PrimaryKeyConstraint(entity.identity.name, name=primary_key_name(table_name)))

    for f in entity.fields:
        if f.unique:
            items.append(UniqueConstraint(f.name, name=unique_name(table_name, [f.name])))
    for columns in entity.unique_together:
        items.append(UniqueConstraint(*columns, name=unique_name(table_name, columns)))

    for f in entity.fields:
        if f.indexed:
            items.append(Index(index_name(table_name, [f.name]), f.name))
    for columns in entity.indexes:
        items.append(Index(index_name(table_name, columns), *columns))

    declared_indexes = {f.name for f in entity.fields if f.indexed}
    for rel in entity.relations:
        target = snapshot.entity(rel.target)
        ondelete = None if rel.on_delete == OnDeleteAction.NO_ACTION else rel.on_delete.sql
        items.append(
            ForeignKeyConstraint(
                [rel.field],
                [f"{target.table_name}.{rel.references}"],
                name=foreign_key_name(table_name, rel.field),
                ondelete=ondelete,
            )
        )
        fk = entity.field(rel.field)
        if not (fk.unique or fk.identity or rel.field in declared_indexes):
            items.append(
                Index(
                    index_name(table_name, [rel.field]),
                    rel.field,
                    info={RELATION_INDEX: True},
                )
            )

    return Table(table_name, metadata, *items)


def build_metadata(snapshot: SchemaSnapshot) -> MetaData:
    """Build SQLAlchemy metadata holding one table per entity."""
    metadata = MetaData()
    for entity in snapshot.entities:
        build_table(entity, snapshot, metadata)
    return metadata

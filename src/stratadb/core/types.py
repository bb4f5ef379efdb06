"""Core types and specifications for StrataDB.

Input specs are pydantic models so schemas can be authored as plain dicts or
JSON as well as in the declaration language. Output models are JSON-serializable.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


class FieldType(StrEnum):
    """Supported scalar field types."""

    INT = "int"
    FLOAT = "float"
    STRING = "string"
    TEXT = "text"
    BOOL = "bool"
    DATETIME = "datetime"
    JSON = "json"
    UUID = "uuid"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid field type values."""
        return [t.value for t in cls]


class DefaultKind(StrEnum):
    """Default-value policies for a field."""

    NONE = "none"
    STATIC = "static"  # Constant written when the caller omits the field
    ON_CREATE = "on_create"  # Generated when the record is created
    ON_UPDATE = "on_update"  # Generated on create and on every update


class Generator(StrEnum):
    """Value generators for generated defaults."""

    NOW = "now"
    UUID = "uuid"
    AUTOINCREMENT = "autoincrement"  # Assigned by the store

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid generator values."""
        return [g.value for g in cls]


class RelationKind(StrEnum):
    """Relation cardinality, seen from the referenced (target) entity."""

    ONE_TO_MANY = "one_to_many"  # e.g., User -> Posts
    ONE_TO_ONE = "one_to_one"  # e.g., User -> Profile

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid relation kinds."""
        return [k.value for k in cls]


class OnDeleteAction(StrEnum):
    """Referential actions when a referenced record is deleted."""

    RESTRICT = "RESTRICT"  # Refuse deletion while references exist
    NO_ACTION = "NO_ACTION"  # Database default, behaves like RESTRICT
    CASCADE = "CASCADE"  # Delete referencing records
    SET_NULL = "SET_NULL"  # Null out the foreign key

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid on_delete action values."""
        return [a.value for a in cls]

    @property
    def sql(self) -> str:
        """SQL spelling of the action."""
        return self.value.replace("_", " ")


# === Schema specs (input format) ===


class DefaultSpec(BaseModel):
    """Default value declaration for a field."""

    kind: DefaultKind = DefaultKind.STATIC
    value: Any = None
    generator: str | None = None


class RelationSpec(BaseModel):
    """Owning-side relation declaration (holds the foreign key)."""

    fields: list[str] = Field(
        default_factory=list, description="Foreign-key field (empty on a back-reference)"
    )
    references: list[str] = Field(
        default_factory=list, description="Referenced field on the target (its identity)"
    )
    on_delete: str = Field(default=OnDeleteAction.RESTRICT.value)
    name: str | None = Field(default=None, description="Disambiguates multiple relations")


class FieldSpec(BaseModel):
    """Specification for one field of an entity.

    ``type`` is either a scalar type name or, for relation fields, the name of
    another entity. ``many`` marks a collection back-reference.
    """

    name: str
    type: str = FieldType.STRING.value
    optional: bool = False
    many: bool = False
    identity: bool = False
    unique: bool = False
    indexed: bool = False
    default: DefaultSpec | None = None
    relation: RelationSpec | None = None
    line: int | None = Field(default=None, exclude=True)


class EntitySpec(BaseModel):
    """Specification for an entity."""

    name: str
    fields: list[FieldSpec] = Field(default_factory=list)
    unique_together: list[list[str]] = Field(default_factory=list)
    indexes: list[list[str]] = Field(default_factory=list)
    line: int | None = Field(default=None, exclude=True)


class SchemaSpec(BaseModel):
    """A whole schema definition."""

    entities: list[EntitySpec] = Field(default_factory=list)


# === Query descriptions ===


class QueryDescription(BaseModel):
    """Declarative CRUD intent against one entity."""

    entity: str
    operation: Literal["create", "read", "update", "delete"]
    where: dict[str, Any] = Field(default_factory=dict)
    data: dict[str, Any] = Field(default_factory=dict)
    include: dict[str, Any] = Field(default_factory=dict)
    order_by: list[str] = Field(default_factory=list)
    limit: int | None = None
    offset: int | None = None


# === Output formats ===


class MigrationRecord(BaseModel):
    """A migration that has been applied to a store."""

    id: int
    name: str
    version: int
    checksum: str
    operations: list[dict[str, Any]] = Field(default_factory=list)
    statement_count: int = 0
    applied_at: datetime


class FieldInfo(BaseModel):
    """Information about a field (output format)."""

    name: str
    type: str
    nullable: bool
    unique: bool
    identity: bool
    indexed: bool
    default: str | None = None


class RelationInfo(BaseModel):
    """Information about a relation (output format)."""

    name: str
    entity: str
    field: str
    target: str
    references: str
    kind: str
    on_delete: str
    inverse_name: str | None = None


class EntityInfo(BaseModel):
    """Information about an entity (output format)."""

    name: str
    table_name: str
    fields: list[FieldInfo]
    relations: list[RelationInfo] = Field(default_factory=list)

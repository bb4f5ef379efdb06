"""Core components for StrataDB."""

from stratadb.core.connection import DatabaseConnection
from stratadb.core.types import (
    DefaultKind,
    EntityInfo,
    EntitySpec,
    FieldInfo,
    FieldSpec,
    FieldType,
    Generator,
    MigrationRecord,
    OnDeleteAction,
    QueryDescription,
    RelationInfo,
    RelationKind,
    RelationSpec,
    SchemaSpec,
)

__all__ = [
    "DatabaseConnection",
    "DefaultKind",
    "EntityInfo",
    "EntitySpec",
    "FieldInfo",
    "FieldSpec",
    "FieldType",
    "Generator",
    "MigrationRecord",
    "OnDeleteAction",
    "QueryDescription",
    "RelationInfo",
    "RelationKind",
    "RelationSpec",
    "SchemaSpec",
]

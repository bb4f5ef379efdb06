"""Schema model for StrataDB."""

from stratadb.schema.builder import build_snapshot, load_schema, parse
from stratadb.schema.model import (
    DefaultValue,
    Entity,
    Field,
    Relation,
    RelationView,
    SchemaSnapshot,
    to_table_name,
)
from stratadb.schema.parser import parse_declarations
from stratadb.schema.tables import build_metadata

__all__ = [
    "DefaultValue",
    "Entity",
    "Field",
    "Relation",
    "RelationView",
    "SchemaSnapshot",
    "build_metadata",
    "build_snapshot",
    "load_schema",
    "parse",
    "parse_declarations",
    "to_table_name",
]

"""Compare the structure a snapshot implies with what a store actually holds.

A shape is a plain dict keyed by table name, listing nullability per column,
the primary key, unique constraints, non-unique indexes and foreign keys.
Column types are not compared: SQLite reports declared type names only.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import MetaData, UniqueConstraint, inspect
from sqlalchemy.engine import Connection, Engine

from stratadb.migrations.ledger import LEDGER_TABLE
from stratadb.schema.model import SchemaSnapshot
from stratadb.schema.tables import build_metadata

Shape = dict[str, dict[str, Any]]


def _on_delete(value: str | None) -> str:
    return (value or "NO ACTION").upper()


def shape_of_metadata(metadata: MetaData) -> Shape:
    shape: Shape = {}
    for table in metadata.sorted_tables:
        shape[table.name] = {
            "columns": {c.name: {"nullable": bool(c.nullable)} for c in table.columns},
            "primary_key": [c.name for c in table.primary_key.columns],
            "unique": sorted(
                [c.name for c in constraint.columns]
                for constraint in table.constraints
                if isinstance(constraint, UniqueConstraint)
            ),
            "indexes": sorted(
                [c.name for c in index.columns] for index in table.indexes if not index.unique
            ),
            "foreign_keys": sorted(
                [
                    list(fk.column_keys),
                    fk.referred_table.name,
                    [element.column.name for element in fk.elements],
                    _on_delete(fk.ondelete),
                ]
                for fk in table.foreign_key_constraints
            ),
        }
    return shape


def expected_shape(snapshot: SchemaSnapshot) -> Shape:
    """Shape a store should have once ``snapshot`` is applied."""
    return shape_of_metadata(build_metadata(snapshot))


def introspect_shape(bind: Engine | Connection) -> Shape:
    """Reflect the shape of every user table in the store."""
    inspector = inspect(bind)
    shape: Shape = {}
    for table in sorted(inspector.get_table_names()):
        if table == LEDGER_TABLE:
            continue
        indexes = [
            idx
            for idx in inspector.get_indexes(table)
            if not idx.get("unique") and not idx.get("duplicates_constraint")
        ]
        shape[table] = {
            "columns": {
                c["name"]: {"nullable": bool(c["nullable"])} for c in inspector.get_columns(table)
            },
            "primary_key": list(inspector.get_pk_constraint(table)["constrained_columns"]),
            "unique": sorted(
                list(uq["column_names"]) for uq in inspector.get_unique_constraints(table)
            ),
            "indexes": sorted(list(idx["column_names"]) for idx in indexes),
            "foreign_keys": sorted(
                [
                    list(fk["constrained_columns"]),
                    fk["referred_table"],
                    list(fk["referred_columns"]),
                    _on_delete(fk.get("options", {}).get("ondelete")),
                ]
                for fk in inspector.get_foreign_keys(table)
            ),
        }
    return shape


def compare_shapes(expected: Shape, actual: Shape) -> list[str]:
    """Describe every difference between two shapes (empty when equal)."""
    differences = []
    for table in sorted(set(expected) | set(actual)):
        if table not in actual:
            differences.append(f"table '{table}' is missing")
            continue
        if table not in expected:
            differences.append(f"table '{table}' is not part of the schema")
            continue
        for key in ("columns", "primary_key", "unique", "indexes", "foreign_keys"):
            if expected[table][key] != actual[table][key]:
                differences.append(
                    f"table '{table}' {key.replace('_', ' ')} differ: "
                    f"expected {expected[table][key]}, found {actual[table][key]}"
                )
    return differences

"""Schema migrations for StrataDB."""

from stratadb.migrations.ddl import (
    DDLGenerator,
    PostgreSQLDDLGenerator,
    SQLiteDDLGenerator,
    render_migration,
)
from stratadb.migrations.diff import DestructiveChange, destructive_changes, diff
from stratadb.migrations.introspect import compare_shapes, expected_shape, introspect_shape
from stratadb.migrations.ledger import LEDGER_TABLE, MigrationEntry, MigrationLedger
from stratadb.migrations.migrator import MigrationPlan, Migrator
from stratadb.migrations.operations import (
    AddField,
    AddRelationConstraint,
    AddTableConstraint,
    AlterField,
    ChangeOperation,
    CreateEntity,
    DropEntity,
    DropField,
    DropRelationConstraint,
    DropTableConstraint,
)

__all__ = [
    "LEDGER_TABLE",
    "AddField",
    "AddRelationConstraint",
    "AddTableConstraint",
    "AlterField",
    "ChangeOperation",
    "CreateEntity",
    "DDLGenerator",
    "DestructiveChange",
    "DropEntity",
    "DropField",
    "DropRelationConstraint",
    "DropTableConstraint",
    "MigrationEntry",
    "MigrationLedger",
    "MigrationPlan",
    "Migrator",
    "PostgreSQLDDLGenerator",
    "SQLiteDDLGenerator",
    "compare_shapes",
    "destructive_changes",
    "diff",
    "expected_shape",
    "introspect_shape",
    "render_migration",
]

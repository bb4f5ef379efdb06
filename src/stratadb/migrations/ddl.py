"""Lower change operations to dialect-specific DDL.

Table definitions come from ``build_metadata`` on the snapshots the operations
were diffed between, so statements are compiled by SQLAlchemy for the target
dialect wherever it has a construct for them.

PostgreSQL supports every change in place with ``ALTER TABLE``. SQLite cannot
alter columns or constraints, so an affected table is rebuilt once per
migration: a new table is created under a scratch name, rows are copied, the
old table is dropped and the new one renamed into place.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import Index, Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Dialect
from sqlalchemy.schema import (
    AddConstraint,
    CreateColumn,
    CreateIndex,
    CreateTable,
    DropConstraint,
    DropIndex,
)

from stratadb.core.types import DefaultKind, Generator
from stratadb.exceptions import ApplyError, ApplyErrorKind
from stratadb.migrations.diff import diff
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
from stratadb.schema.model import Field, SchemaSnapshot, to_table_name
from stratadb.schema.tables import (
    RELATION_INDEX,
    build_metadata,
    foreign_key_name,
    index_name,
    primary_key_name,
    unique_name,
)

logger = logging.getLogger(__name__)

DIALECTS = {
    "postgresql": postgresql.dialect,
    "sqlite": sqlite.dialect,
}

# Scratch-name prefix for SQLite table rebuilds
REBUILD_PREFIX = "_strata_new_"


class DDLGenerator:
    """Base class for dialect-specific DDL generation.

    Use ``DDLGenerator.for_dialect()`` to get the generator for a store.
    """

    dialect_name = ""

    def __init__(
        self,
        dialect: Dialect,
        previous: SchemaSnapshot | None,
        current: SchemaSnapshot,
    ) -> None:
        """Initialize the generator.

        Args:
            dialect: SQLAlchemy dialect used to compile statements
            previous: Snapshot the operations start from (None for an empty store)
            current: Snapshot the operations lead to
        """
        self._dialect = dialect
        self._previous = previous or SchemaSnapshot.empty()
        self._current = current
        self._old = build_metadata(self._previous)
        self._new = build_metadata(current)

    @classmethod
    def for_dialect(
        cls,
        dialect: str | Dialect,
        previous: SchemaSnapshot | None,
        current: SchemaSnapshot,
    ) -> DDLGenerator:
        """Create the generator for a dialect name or SQLAlchemy dialect.

        Raises:
            ApplyError: DIALECT_UNSUPPORTED if the dialect has no generator
        """
        name = dialect if isinstance(dialect, str) else dialect.name
        generators: dict[str, type[DDLGenerator]] = {
            "postgresql": PostgreSQLDDLGenerator,
            "sqlite": SQLiteDDLGenerator,
        }
        if name not in generators:
            raise ApplyError(
                ApplyErrorKind.DIALECT_UNSUPPORTED,
                f"No DDL generator for dialect '{name}'. Supported: {', '.join(DIALECTS)}",
            )
        resolved = DIALECTS[name]() if isinstance(dialect, str) else dialect
        return generators[name](resolved, previous, current)

    def plan(self, operations: Iterable[ChangeOperation]) -> list[str]:
        """Lower operations to an ordered list of DDL statements."""
        return [stmt for _, stmts in self.plan_grouped(operations) for stmt in stmts]

    def plan_grouped(
        self, operations: Iterable[ChangeOperation]
    ) -> list[tuple[ChangeOperation, list[str]]]:
        """Lower operations, keeping each operation's statements together.

        An operation may lower to no statements when an earlier one already
        covered it (e.g., a SQLite table rebuild).
        """
        operations = list(operations)
        self._reset(operations)
        grouped = [(op, self._lower(op)) for op in operations]
        logger.debug(
            f"Planned {sum(len(s) for _, s in grouped)} {self.dialect_name} statement(s) "
            f"for {len(operations)} operation(s)"
        )
        return grouped

    # --- dialect hooks ---

    def _reset(self, operations: list[ChangeOperation]) -> None:
        pass

    def _lower(self, op: ChangeOperation) -> list[str]:
        raise NotImplementedError

    # --- helpers ---

    def _q(self, name: str) -> str:
        return self._dialect.identifier_preparer.quote(name)

    def _compile(self, element: Any) -> str:
        return str(element.compile(dialect=self._dialect)).strip()

    def _old_table(self, entity: str) -> Table:
        return self._old.tables[self._previous.entity(entity).table_name]

    def _new_table(self, entity: str) -> Table:
        return self._new.tables[self._current.entity(entity).table_name]

    def _find_index(self, old: bool, entity: str, name: str) -> Index | None:
        snapshot = self._previous if old else self._current
        if not snapshot.has_entity(entity):
            return None
        table = self._old_table(entity) if old else self._new_table(entity)
        return next((i for i in table.indexes if i.name == name), None)

    def _find_constraint(self, table: Table, name: str) -> Any:
        return next(c for c in table.constraints if c.name == name)

    @staticmethod
    def _sorted_indexes(table: Table) -> list[Index]:
        return sorted(table.indexes, key=lambda i: str(i.name))


class PostgreSQLDDLGenerator(DDLGenerator):
    """In-place ``ALTER TABLE`` DDL for PostgreSQL."""

    dialect_name = "postgresql"

    def _reset(self, operations: list[ChangeOperation]) -> None:
        self._indexes_done: set[str] = set()
        self._keys_replaced: set[str] = set()

    def _lower(self, op: ChangeOperation) -> list[str]:
        if isinstance(op, CreateEntity):
            table = self._new_table(op.entity)
            # Foreign keys are added once every table exists
            stmts = [self._compile(CreateTable(table, include_foreign_key_constraints=[]))]
            for index in self._sorted_indexes(table):
                if not index.info.get(RELATION_INDEX):
                    stmts.append(self._compile(CreateIndex(index)))
                    self._indexes_done.add(str(index.name))
            return stmts
        if isinstance(op, DropEntity):
            return [f"DROP TABLE {self._q(self._old_table(op.entity).name)}"]
        if isinstance(op, AddField):
            return self._add_field(op)
        if isinstance(op, DropField):
            table = self._q(self._old_table(op.entity).name)
            return [f"ALTER TABLE {table} DROP COLUMN {self._q(op.field.name)}"]
        if isinstance(op, AlterField):
            return self._alter_field(op)
        if isinstance(op, AddRelationConstraint):
            table = self._new_table(op.entity)
            fk = self._find_constraint(table, foreign_key_name(table.name, op.relation.field))
            stmts = [self._compile(AddConstraint(fk))]
            return stmts + self._index_transition(op.entity, op.relation.field)
        if isinstance(op, DropRelationConstraint):
            table = self._old_table(op.entity)
            fk = self._find_constraint(table, foreign_key_name(table.name, op.relation.field))
            stmts = [self._compile(DropConstraint(fk))]
            return stmts + self._index_transition(op.entity, op.relation.field)
        if isinstance(op, AddTableConstraint):
            table = self._new_table(op.entity)
            if op.unique:
                uq = self._find_constraint(table, unique_name(table.name, op.columns))
                return [self._compile(AddConstraint(uq))]
            index = self._find_index(False, op.entity, index_name(table.name, op.columns))
            return [self._compile(CreateIndex(index))]
        if isinstance(op, DropTableConstraint):
            table = self._old_table(op.entity)
            if op.unique:
                uq = self._find_constraint(table, unique_name(table.name, op.columns))
                return [self._compile(DropConstraint(uq))]
            index = self._find_index(True, op.entity, index_name(table.name, op.columns))
            return [self._compile(DropIndex(index))]
        raise ApplyError(
            ApplyErrorKind.DIALECT_UNSUPPORTED, f"Cannot lower '{op.kind}' for postgresql"
        )

    def _add_field(self, op: AddField) -> list[str]:
        table = self._new_table(op.entity)
        column = self._compile(CreateColumn(table.c[op.field.name]))
        stmts = [f"ALTER TABLE {self._q(table.name)} ADD COLUMN {column}"]
        if op.field.identity:
            stmts += self._replace_primary_key(op.entity, op.field.name)
        if op.field.unique:
            uq = self._find_constraint(table, unique_name(table.name, [op.field.name]))
            stmts.append(self._compile(AddConstraint(uq)))
        return stmts + self._index_transition(op.entity, op.field.name)

    def _alter_field(self, op: AlterField) -> list[str]:
        old, new = op.old, op.new
        if old.is_autoincrement != new.is_autoincrement:
            raise ApplyError(
                ApplyErrorKind.DIALECT_UNSUPPORTED,
                f"Changing autoincrement on '{op.entity}.{new.name}' is not supported "
                "on postgresql; add a new identity field instead",
            )
        old_table, new_table = self._old_table(op.entity), self._new_table(op.entity)
        table, column = self._q(new_table.name), self._q(new.name)
        alter = f"ALTER TABLE {table} ALTER COLUMN {column}"
        old_default = self._default_sql(old_table, old)
        new_default = self._default_sql(new_table, new)
        stmts: list[str] = []

        if old.identity and not new.identity and op.entity not in self._keys_replaced:
            self._keys_replaced.add(op.entity)
            stmts.append(
                f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS "
                f"{self._q(primary_key_name(new_table.name))}"
            )

        if old.type != new.type:
            type_sql = new_table.c[new.name].type.compile(dialect=self._dialect)
            if old_default is not None:
                stmts.append(f"{alter} DROP DEFAULT")
            stmts.append(f"{alter} TYPE {type_sql} USING {column}::{type_sql}")
            if new_default is not None:
                stmts.append(f"{alter} SET DEFAULT {new_default}")
        elif old_default != new_default:
            if new_default is None:
                stmts.append(f"{alter} DROP DEFAULT")
            else:
                stmts.append(f"{alter} SET DEFAULT {new_default}")

        if old.nullable != new.nullable:
            stmts.append(f"{alter} {'DROP' if new.nullable else 'SET'} NOT NULL")

        if new.identity and not old.identity:
            stmts += self._replace_primary_key(op.entity, new.name)

        if old.unique != new.unique:
            name = unique_name(new_table.name, [new.name])
            if new.unique:
                stmts.append(self._compile(AddConstraint(self._find_constraint(new_table, name))))
            else:
                stmts.append(self._compile(DropConstraint(self._find_constraint(old_table, name))))

        return stmts + self._index_transition(op.entity, new.name)

    def _replace_primary_key(self, entity: str, column: str) -> list[str]:
        self._keys_replaced.add(entity)
        table = self._new_table(entity)
        name = self._q(primary_key_name(table.name))
        return [
            f"ALTER TABLE {self._q(table.name)} DROP CONSTRAINT IF EXISTS {name}",
            f"ALTER TABLE {self._q(table.name)} ADD CONSTRAINT {name} "
            f"PRIMARY KEY ({self._q(column)})",
        ]

    def _index_transition(self, entity: str, column: str) -> list[str]:
        """Create or drop the single-column index on ``column`` once per plan.

        The index may be declared (``@index``) or support a foreign key; several
        operations can touch it, the first one visiting handles the transition.
        """
        name = index_name(to_table_name(entity), [column])
        if name in self._indexes_done:
            return []
        self._indexes_done.add(name)
        before = self._find_index(True, entity, name)
        after = self._find_index(False, entity, name)
        if before is None and after is not None:
            return [self._compile(CreateIndex(after))]
        if before is not None and after is None:
            return [self._compile(DropIndex(before))]
        return []

    def _default_sql(self, table: Table, field: Field) -> str | None:
        compiler = self._dialect.ddl_compiler(self._dialect, None)
        return compiler.get_column_default_string(table.c[field.name])


class SQLiteDDLGenerator(DDLGenerator):
    """DDL for SQLite, rebuilding tables for changes it cannot alter in place."""

    dialect_name = "sqlite"

    def _reset(self, operations: list[ChangeOperation]) -> None:
        self._created = {op.entity for op in operations if isinstance(op, CreateEntity)}
        self._dropped = {op.entity for op in operations if isinstance(op, DropEntity)}
        self._rebuild = {op.entity for op in operations if self._needs_rebuild(op)}
        self._rebuilt: set[str] = set()

    def _needs_rebuild(self, op: ChangeOperation) -> bool:
        if op.entity in self._created or op.entity in self._dropped:
            return False
        if isinstance(op, (DropField, AlterField, AddRelationConstraint, DropRelationConstraint)):
            return True
        if isinstance(op, (AddTableConstraint, DropTableConstraint)):
            return op.unique
        if isinstance(op, AddField):
            return not self._can_add_column(op.field)
        return False

    @staticmethod
    def _can_add_column(field: Field) -> bool:
        """Whether ``ALTER TABLE ADD COLUMN`` can add the field.

        SQLite rejects added columns that are keys, unique, or NOT NULL without
        a constant default.
        """
        if field.identity or field.unique:
            return False
        if field.default.generator == Generator.NOW:
            return False
        return field.nullable or field.default.kind == DefaultKind.STATIC

    def _lower(self, op: ChangeOperation) -> list[str]:
        if op.entity in self._rebuild:
            if op.entity in self._rebuilt:
                return []
            self._rebuilt.add(op.entity)
            return self._rebuild_table(op.entity)
        if isinstance(op, CreateEntity):
            table = self._new_table(op.entity)
            stmts = [self._compile(CreateTable(table))]
            return stmts + [self._compile(CreateIndex(i)) for i in self._sorted_indexes(table)]
        if isinstance(op, DropEntity):
            return [f"DROP TABLE {self._q(self._old_table(op.entity).name)}"]
        if isinstance(op, AddField):
            table = self._new_table(op.entity)
            column = self._compile(CreateColumn(table.c[op.field.name]))
            stmts = [f"ALTER TABLE {self._q(table.name)} ADD COLUMN {column}"]
            index = self._find_index(False, op.entity, index_name(table.name, [op.field.name]))
            if index is not None:
                stmts.append(self._compile(CreateIndex(index)))
            return stmts
        if isinstance(op, (AddRelationConstraint, DropRelationConstraint)):
            # Created tables carry their foreign keys inline; dropped tables take theirs along
            return []
        if isinstance(op, AddTableConstraint):
            table = self._new_table(op.entity)
            index = self._find_index(False, op.entity, index_name(table.name, op.columns))
            return [self._compile(CreateIndex(index))]
        if isinstance(op, DropTableConstraint):
            table = self._old_table(op.entity)
            index = self._find_index(True, op.entity, index_name(table.name, op.columns))
            return [self._compile(DropIndex(index))]
        raise ApplyError(ApplyErrorKind.DIALECT_UNSUPPORTED, f"Cannot lower '{op.kind}' for sqlite")

    def _rebuild_table(self, entity: str) -> list[str]:
        table = self._new_table(entity)
        old_table = self._old_table(entity)
        scratch = build_metadata(self._current)
        scratch_name = f"{REBUILD_PREFIX}{table.name}"
        scratch_table = scratch.tables[table.name].to_metadata(scratch, name=scratch_name)

        shared = [self._q(c.name) for c in table.columns if c.name in old_table.c]
        stmts = [self._compile(CreateTable(scratch_table))]
        if shared:
            columns = ", ".join(shared)
            stmts.append(
                f"INSERT INTO {self._q(scratch_name)} ({columns}) "
                f"SELECT {columns} FROM {self._q(old_table.name)}"
            )
        stmts += [
            f"DROP TABLE {self._q(old_table.name)}",
            f"ALTER TABLE {self._q(scratch_name)} RENAME TO {self._q(table.name)}",
        ]
        stmts += [self._compile(CreateIndex(i)) for i in self._sorted_indexes(table)]
        logger.debug(f"Rebuilding table '{table.name}' ({len(shared)} column(s) copied)")
        return stmts


def render_migration(
    previous: SchemaSnapshot | None, current: SchemaSnapshot, dialect: str
) -> list[str]:
    """Diff two snapshots and render the DDL for ``dialect`` without a store."""
    return DDLGenerator.for_dialect(dialect, previous, current).plan(diff(previous, current))


__all__ = [
    "DDLGenerator",
    "PostgreSQLDDLGenerator",
    "SQLiteDDLGenerator",
    "render_migration",
]

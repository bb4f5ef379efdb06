"""Plan and apply schema migrations.

Applying a migration runs all of its DDL and the ledger entry recording it in
one transaction: either the store ends up at the target schema with the entry
written, or nothing changes. Migrations are identified by name; applying a name
that is already recorded is a no-op.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError, IntegrityError

from stratadb.core.connection import IMMEDIATE_TRANSACTION, DatabaseConnection
from stratadb.core.types import MigrationRecord
from stratadb.exceptions import (
    ApplyError,
    ApplyErrorKind,
    DestructiveChangeError,
    LedgerCorruptionError,
)
from stratadb.migrations.ddl import DDLGenerator
from stratadb.migrations.diff import DestructiveChange, destructive_changes, diff
from stratadb.migrations.introspect import compare_shapes, expected_shape, introspect_shape
from stratadb.migrations.ledger import MigrationEntry, MigrationLedger
from stratadb.migrations.operations import ChangeOperation
from stratadb.schema.model import SchemaSnapshot

logger = logging.getLogger(__name__)

# Transaction-scoped advisory lock serializing migrations on PostgreSQL
ADVISORY_LOCK_KEY = 0x5354524154


@dataclass
class MigrationPlan:
    """What applying a target schema would do, computed without changing the store."""

    previous: SchemaSnapshot | None
    target: SchemaSnapshot
    operations: list[ChangeOperation] = field(default_factory=list)
    statements: list[str] = field(default_factory=list)
    warnings: list[DestructiveChange] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.operations

    @property
    def up_to_date(self) -> bool:
        """No operations and no logical change (e.g., renamed relations)."""
        return (
            self.is_empty
            and self.previous is not None
            and self.previous.checksum == self.target.checksum
        )

    def default_name(self) -> str:
        version = (self.previous.version if self.previous else 0) + 1
        return f"{version:04d}_{self.target.checksum[:12]}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_version": self.previous.version if self.previous else 0,
            "up_to_date": self.up_to_date,
            "operations": [op.describe() for op in self.operations],
            "statements": self.statements,
            "warnings": [str(w) for w in self.warnings],
        }


class Migrator:
    """Plans and applies migrations against one store."""

    def __init__(self, connection: DatabaseConnection) -> None:
        """Initialize the migrator.

        Args:
            connection: Open store connection
        """
        self._connection = connection
        self._ledger = MigrationLedger()

    def history(self) -> list[MigrationRecord]:
        """Applied migrations, oldest first."""
        with self._connection.engine.connect() as conn:
            return [entry.to_record() for entry in self._ledger.entries(conn)]

    def current_snapshot(self) -> SchemaSnapshot | None:
        """Snapshot recorded by the latest migration, or None if none was applied."""
        with self._connection.engine.connect() as conn:
            return self._ledger.latest_snapshot(conn)

    def plan(self, target: SchemaSnapshot) -> MigrationPlan:
        """Diff the applied schema against ``target`` and render the DDL.

        Raises:
            ApplyError: DIALECT_UNSUPPORTED if a change cannot be expressed
        """
        previous = self.current_snapshot()
        operations = diff(previous, target)
        generator = DDLGenerator.for_dialect(self._connection.engine.dialect, previous, target)
        return MigrationPlan(
            previous=previous,
            target=target,
            operations=operations,
            statements=generator.plan(operations),
            warnings=destructive_changes(operations),
        )

    def apply(
        self,
        operations: Iterable[ChangeOperation],
        migration_name: str,
        target: SchemaSnapshot,
        *,
        allow_destructive: bool = False,
    ) -> MigrationRecord:
        """Apply operations atomically and record them under ``migration_name``.

        Args:
            operations: Operations diffed from the applied schema to ``target``
            migration_name: Unique name; re-applying a recorded name is a no-op
            target: Schema the operations lead to
            allow_destructive: Confirm operations flagged as destructive

        Returns:
            The ledger record (the existing one when the name was already applied)

        Raises:
            DestructiveChangeError: If destructive changes were not confirmed
            ApplyError: If a statement failed; the store is left unchanged
            LedgerCorruptionError: If the ledger is inconsistent
        """
        operations = list(operations)
        warnings = destructive_changes(operations)
        attempted: list[str] = []
        executed: list[str] = []

        with self._connection.engine.connect() as conn, self._foreign_keys_deferred(conn):
            # Migrations on SQLite take the write lock up front so that a
            # concurrent application of the same name waits, then finds it recorded
            conn.execution_options(**{IMMEDIATE_TRANSACTION: True})
            try:
                with conn.begin():
                    record = self._apply_in_transaction(
                        conn,
                        operations,
                        migration_name,
                        target,
                        warnings,
                        allow_destructive,
                        attempted,
                        executed,
                    )
            except DBAPIError as e:
                existing = self._recorded_after_failure(conn, migration_name, e)
                if existing is not None:
                    logger.info(f"Migration '{migration_name}' was applied concurrently")
                    return existing
                logger.error(
                    f"Migration '{migration_name}' failed and was rolled back: {e.orig}"
                )
                raise self._apply_error(e, migration_name, attempted, executed) from e

        logger.info(
            f"Applied migration '{migration_name}' (version {record.version}, "
            f"{record.statement_count} statement(s))"
        )
        return record

    def migrate(
        self,
        target: SchemaSnapshot,
        migration_name: str | None = None,
        *,
        allow_destructive: bool = False,
    ) -> MigrationRecord | None:
        """Plan and apply in one step.

        Returns:
            The ledger record, or None when the store already matches ``target``
        """
        plan = self.plan(target)
        if plan.up_to_date:
            logger.info("Schema is up to date")
            return None
        return self.apply(
            plan.operations,
            migration_name or plan.default_name(),
            target,
            allow_destructive=allow_destructive,
        )

    def verify(self, check_store: bool = True) -> list[MigrationRecord]:
        """Check the ledger and, optionally, that the store matches its latest snapshot.

        Raises:
            LedgerCorruptionError: If the ledger is inconsistent or the store drifted
        """
        with self._connection.engine.connect() as conn:
            entries = self._ledger.verify(conn)
            if entries and check_store:
                differences = compare_shapes(
                    expected_shape(entries[-1].to_snapshot()), introspect_shape(conn)
                )
                if differences:
                    raise LedgerCorruptionError(
                        f"Store structure does not match migration '{entries[-1].name}': "
                        f"{'; '.join(differences)}",
                        {"migration": entries[-1].name, "differences": differences},
                    )
        return [entry.to_record() for entry in entries]

    # --- internals ---

    def _apply_in_transaction(
        self,
        conn: Connection,
        operations: list[ChangeOperation],
        name: str,
        target: SchemaSnapshot,
        warnings: list[DestructiveChange],
        allow_destructive: bool,
        attempted: list[str],
        executed: list[str],
    ) -> MigrationRecord:
        if conn.dialect.name == "postgresql":
            conn.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": ADVISORY_LOCK_KEY})

        self._ledger.ensure(conn)
        entries = self._ledger.verify(conn)
        existing = next((e for e in entries if e.name == name), None)
        if existing is not None:
            logger.info(f"Migration '{name}' is already applied, skipping")
            return existing.to_record()

        if warnings and not allow_destructive:
            raise DestructiveChangeError(name, [str(w) for w in warnings])
        for warning in warnings:
            logger.warning(f"Applying destructive change in '{name}': {warning}")

        previous = entries[-1].to_snapshot() if entries else None
        generator = DDLGenerator.for_dialect(conn.dialect, previous, target)
        for op, statements in generator.plan_grouped(operations):
            attempted.append(op.describe())
            for statement in statements:
                logger.debug(f"Executing: {statement}")
                conn.exec_driver_sql(statement)
                executed.append(statement)

        if conn.dialect.name == "sqlite":
            violations = conn.exec_driver_sql("PRAGMA foreign_key_check").fetchall()
            if violations:
                raise ApplyError(
                    ApplyErrorKind.CONSTRAINT_VIOLATION,
                    f"Migration '{name}' leaves {len(violations)} row(s) with dangling "
                    f"foreign keys (first in table '{violations[0][0]}')",
                    name,
                    attempted,
                    executed,
                )

        snapshot = target.with_version(len(entries) + 1)
        return self._ledger.append(conn, name, snapshot, operations, len(executed))

    @contextmanager
    def _foreign_keys_deferred(self, conn: Connection) -> Iterator[None]:
        """Disable SQLite foreign-key enforcement around a migration.

        Table rebuilds drop and recreate referenced tables; integrity is checked
        with ``PRAGMA foreign_key_check`` before commit instead. The pragma is a
        no-op inside a transaction, so it is set on the raw driver connection.
        """
        if conn.dialect.name != "sqlite":
            yield
            return
        raw = conn.connection.driver_connection
        raw.execute("PRAGMA foreign_keys = OFF")
        try:
            yield
        finally:
            raw.execute("PRAGMA foreign_keys = ON")

    def _recorded_after_failure(
        self, conn: Connection, name: str, error: DBAPIError
    ) -> MigrationRecord | None:
        """Look for a concurrent application of the same migration."""
        if error.connection_invalidated:
            return None
        try:
            with conn.begin():
                entry: MigrationEntry | None = self._ledger.find(conn, name)
        except DBAPIError as e:
            logger.debug(f"Could not re-read the ledger after a failed migration: {e}")
            return None
        return entry.to_record() if entry is not None else None

    @staticmethod
    def _apply_error(
        error: DBAPIError, name: str, attempted: list[str], executed: list[str]
    ) -> ApplyError:
        if error.connection_invalidated:
            kind = ApplyErrorKind.CONNECTION_LOST
        elif isinstance(error, IntegrityError):
            kind = ApplyErrorKind.CONSTRAINT_VIOLATION
        else:
            kind = ApplyErrorKind.STATEMENT_FAILED
        failed_at = attempted[-1] if attempted else "opening the migration"
        return ApplyError(
            kind,
            f"Migration '{name}' failed at '{failed_at}' and was rolled back: {error.orig}",
            name,
            attempted,
            executed,
        )

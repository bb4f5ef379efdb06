"""High-level facade tying the schema, migrations and client together."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from stratadb.client import Client, EntityClient
from stratadb.core.connection import DatabaseConnection
from stratadb.core.types import EntityInfo, MigrationRecord, SchemaSpec
from stratadb.exceptions import SchemaNotAppliedError, StrataDBError
from stratadb.migrations import MigrationPlan, Migrator
from stratadb.schema import SchemaSnapshot, load_schema, parse

logger = logging.getLogger(__name__)

SchemaSource = SchemaSnapshot | SchemaSpec | Mapping[str, Any] | str | Path


class StrataDB:
    """Schema-driven data layer over one relational store.

    Example:
        db = StrataDB("sqlite:///app.db", schema=Path("schema.strata"))
        db.migrate("0001_init")
        user = db.entity("User").create({"email": "ada@example.com"})
        db.entity("Post").create({"title": "Hello", "authorId": user["id"]})
        print(db.entity("User").read(include={"posts": True}))
    """

    def __init__(
        self,
        url: str,
        schema: SchemaSource | None = None,
        echo: bool = False,
    ) -> None:
        """Initialize StrataDB.

        Args:
            url: Database connection URL
            schema: Declared schema: a snapshot, a spec, a mapping, declaration
                text, or a path to a schema file. When omitted, the schema
                recorded by the latest migration is used.
            echo: Whether to echo SQL statements (for debugging)
        """
        self._connection = DatabaseConnection(url, echo=echo)
        self._migrator = Migrator(self._connection)
        self._declared: SchemaSnapshot | None = None
        self._client: Client | None = None
        if schema is not None:
            self.load_schema(schema)

    @property
    def connection(self) -> DatabaseConnection:
        return self._connection

    @property
    def migrator(self) -> Migrator:
        return self._migrator

    def load_schema(self, schema: SchemaSource) -> SchemaSnapshot:
        """Declare the schema the store should follow.

        Raises:
            SchemaError: If the schema is invalid
        """
        if isinstance(schema, SchemaSnapshot):
            self._declared = schema
        elif isinstance(schema, Path):
            self._declared = load_schema(schema)
        else:
            self._declared = parse(schema)
        self._client = None
        return self._declared

    @property
    def schema(self) -> SchemaSnapshot:
        """The declared schema, or the latest applied one when none was declared.

        Raises:
            StrataDBError: If there is neither
        """
        if self._declared is not None:
            return self._declared
        applied = self._migrator.current_snapshot()
        if applied is None:
            raise StrataDBError(
                "No schema declared and no migration applied. "
                "Pass schema= or call load_schema() first."
            )
        return applied

    # === Migrations ===

    def plan(self) -> MigrationPlan:
        """Preview the migration to the declared schema."""
        return self._migrator.plan(self.schema)

    def migrate(
        self, name: str | None = None, allow_destructive: bool = False
    ) -> MigrationRecord | None:
        """Migrate the store to the declared schema.

        Returns:
            The ledger record, or None when already up to date
        """
        record = self._migrator.migrate(self.schema, name, allow_destructive=allow_destructive)
        self._client = None
        return record

    def history(self) -> list[MigrationRecord]:
        return self._migrator.history()

    def verify(self) -> list[MigrationRecord]:
        return self._migrator.verify()

    # === Data access ===

    @property
    def client(self) -> Client:
        """CRUD client for the declared schema.

        Raises:
            LedgerCorruptionError: If the recorded migrations are inconsistent
            SchemaNotAppliedError: If the store is not migrated to the declared schema
        """
        if self._client is None:
            schema = self.schema
            self._check_applied(schema)
            self._client = Client(self._connection, schema)
        return self._client

    def _check_applied(self, schema: SchemaSnapshot) -> None:
        records = self._migrator.verify(check_store=False)
        applied = records[-1].checksum if records else None
        if applied != schema.checksum:
            raise SchemaNotAppliedError(schema.checksum, applied)

    def entity(self, name: str) -> EntityClient:
        """Get the CRUD client for one entity.

        Raises:
            EntityNotFoundError: If the schema has no such entity
        """
        return self.client.entity(name)

    # === Schema discovery ===

    def describe(self) -> dict[str, Any]:
        """Describe every entity as a JSON-serializable dict."""
        schema = self.schema
        return {
            "version": schema.version,
            "checksum": schema.checksum,
            "entities": {
                name: schema.describe_entity(name).model_dump() for name in schema.entity_names
            },
        }

    def describe_entity(self, name: str) -> EntityInfo:
        return self.schema.describe_entity(name)

    def close(self) -> None:
        """Close the database connection."""
        self._connection.close()

    def __enter__(self) -> StrataDB:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()

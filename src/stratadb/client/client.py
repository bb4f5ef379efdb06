"""Schema-aware CRUD client.

The client is built from a ``SchemaSnapshot`` and an explicitly owned
``DatabaseConnection``. Every request is validated against the snapshot before
any statement is sent, and every write runs in a single transaction.

Example:
    client = Client(connection, schema)
    user = client["User"].create({"email": "ada@example.com"})
    users = client["User"].read(include={"posts": True})
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import pydantic
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError, IntegrityError

from stratadb.client.compiler import QueryCompiler
from stratadb.client.loader import RelationLoader
from stratadb.client.validation import PayloadValidator
from stratadb.core.connection import DatabaseConnection
from stratadb.core.types import OnDeleteAction, QueryDescription
from stratadb.exceptions import ConstraintError, NotFoundError, StoreError, ValidationError
from stratadb.schema.model import Entity, SchemaSnapshot
from stratadb.schema.tables import build_metadata

logger = logging.getLogger(__name__)

Record = dict[str, Any]


class EntityClient:
    """CRUD operations for one entity.

    Obtained from ``Client.entity()`` or ``client["Name"]``.
    """

    def __init__(self, client: Client, entity: Entity) -> None:
        self._client = client
        self._entity = entity
        self._compiler = client._compiler
        self._table = client._compiler.table(entity)
        self._validator = PayloadValidator(entity)

    @property
    def name(self) -> str:
        return self._entity.name

    @property
    def _identity(self) -> Any:
        return self._table.c[self._entity.identity.name]

    def create(self, data: Record) -> Record:
        """Insert one record and return it with generated values filled in.

        Args:
            data: Field values; omitted optional fields become null

        Returns:
            The stored record

        Raises:
            ValidationError: If the payload is invalid
            ConstraintError: On a uniqueness or foreign-key violation
            StoreError: If the store fails the request
        """
        values = self._validator.for_create(data)
        with self._transaction("create") as conn:
            self._check_references(conn, values)
            try:
                if values:
                    result = conn.execute(insert(self._table).values(**values))
                else:
                    result = conn.execute(insert(self._table))
            except IntegrityError as e:
                raise self._constraint_error(e, values) from e
            key = result.inserted_primary_key[0]
            record = self._fetch(conn, key)
        logger.debug(f"Created '{self.name}' record {key!r}")
        return record

    def read(
        self,
        where: Record | None = None,
        include: Any = None,
        order_by: list[str] | str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Record]:
        """Read records matching ``where``, with related records attached.

        Args:
            where: Filter, e.g. ``{"age": {"gte": 18}}``; None reads all records
            include: Relations to attach, e.g. ``{"posts": True}``
            order_by: Field names, prefixed with ``-`` for descending
            limit: Maximum number of records
            offset: Records to skip

        Returns:
            Records as dicts, ordered by ``order_by`` then identity

        Raises:
            ValidationError: If the filter, include or paging is invalid
            StoreError: If the store fails the request
        """
        stmt = self._compiler.select(self._entity, where, order_by, limit, offset)
        plan = self._client._loader.plan(self.name, include)
        with self._transaction("read") as conn:
            records = [dict(row) for row in conn.execute(stmt).mappings()]
            self._client._loader.load(conn, records, plan)
        return records

    def find_unique(self, where: Record, include: Any = None) -> Record | None:
        """Read the single record matching ``where``, or None.

        Raises:
            ValidationError: If more than one record matches
        """
        records = self.read(where, include=include, limit=2)
        if len(records) > 1:
            raise ValidationError(f"Filter {where!r} matches more than one '{self.name}' record")
        return records[0] if records else None

    def count(self, where: Record | None = None) -> int:
        """Count records matching ``where``."""
        stmt = select(func.count()).select_from(self._table)
        clause = self._compiler.where_clause(self._entity, where)
        if clause is not None:
            stmt = stmt.where(clause)
        with self._transaction("count") as conn:
            return int(conn.execute(stmt).scalar_one())

    def update(self, where: Record, data: Record) -> Record:
        """Update the one record matching ``where``.

        Returns:
            The record after the update

        Raises:
            ValidationError: If the payload is invalid, tries to change the identity,
                or the filter matches more than one record
            NotFoundError: If no record matches
            ConstraintError: On a uniqueness or foreign-key violation
        """
        values = self._validator.for_update(data)
        stmt = self._target(where)
        with self._transaction("update") as conn:
            key = self._resolve_one(conn, stmt, where)
            self._check_references(conn, values)
            try:
                conn.execute(update(self._table).where(self._identity == key).values(**values))
            except IntegrityError as e:
                raise self._constraint_error(e, values) from e
            record = self._fetch(conn, key)
        logger.debug(f"Updated '{self.name}' record {key!r}")
        return record

    def delete(self, where: Record) -> Record:
        """Delete the one record matching ``where``.

        Records still referenced through a RESTRICT or NO_ACTION relation are
        not deleted. CASCADE and SET_NULL references are handled by the store.

        Returns:
            The deleted record

        Raises:
            NotFoundError: If no record matches
            ValidationError: If the filter matches more than one record
            ConstraintError: If the record is still referenced
        """
        stmt = self._target(where)
        with self._transaction("delete") as conn:
            key = self._resolve_one(conn, stmt, where)
            record = self._fetch(conn, key)
            self._check_restricted(conn, record)
            try:
                conn.execute(delete(self._table).where(self._identity == key))
            except IntegrityError as e:
                raise self._constraint_error(e, {}) from e
        logger.debug(f"Deleted '{self.name}' record {key!r}")
        return record

    # --- internals ---

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Connection]:
        """Run one request in a transaction, mapping store failures to typed errors."""
        try:
            with self._client._begin() as conn:
                yield conn
        except IntegrityError as e:
            raise self._constraint_error(e, {}) from e
        except DBAPIError as e:
            logger.error(f"'{operation}' on '{self.name}' failed in the store: {e.orig}")
            raise StoreError(
                self.name,
                operation,
                str(e.orig).strip(),
                connection_lost=e.connection_invalidated,
            ) from e

    def _target(self, where: Record) -> Any:
        if not where:
            raise ValidationError(f"A filter is required to address a '{self.name}' record")
        return self._compiler.select(self._entity, where, limit=2)

    def _resolve_one(self, conn: Connection, stmt: Any, where: Record) -> Any:
        identity = self._entity.identity.name
        rows = conn.execute(stmt).mappings().all()
        if not rows:
            raise NotFoundError(self.name, where)
        if len(rows) > 1:
            raise ValidationError(
                f"Filter {where!r} matches more than one '{self.name}' record; "
                f"address a single record, e.g. by '{identity}'"
            )
        return rows[0][identity]

    def _fetch(self, conn: Connection, key: Any) -> Record:
        row = conn.execute(select(self._table).where(self._identity == key)).mappings().one()
        return dict(row)

    def _check_references(self, conn: Connection, values: Record) -> None:
        """Reject foreign keys pointing at records that do not exist."""
        schema = self._client.schema
        for rel in self._entity.relations:
            value = values.get(rel.field)
            if value is None:
                continue
            target = schema.entity(rel.target)
            table = self._client._compiler.table(target)
            stmt = select(table.c[rel.references]).where(table.c[rel.references] == value)
            if conn.execute(stmt.limit(1)).first() is None:
                raise ConstraintError(
                    self.name,
                    f"'{rel.field}' references a '{rel.target}' record that does not exist",
                    field_name=rel.field,
                    value=value,
                    related_entity=rel.target,
                )

    def _check_restricted(self, conn: Connection, record: Record) -> None:
        schema = self._client.schema
        for rel in schema.incoming_relations(self.name):
            if rel.on_delete not in (OnDeleteAction.RESTRICT, OnDeleteAction.NO_ACTION):
                continue
            source = self._client._compiler.table(schema.entity(rel.entity))
            value = record[rel.references]
            stmt = (
                select(func.count())
                .select_from(source)
                .where(source.c[rel.field] == value)
            )
            referencing = int(conn.execute(stmt).scalar_one())
            if referencing:
                raise ConstraintError(
                    self.name,
                    f"{referencing} '{rel.entity}' record(s) still reference it through "
                    f"'{rel.entity}.{rel.field}'",
                    field_name=rel.field,
                    value=value,
                    related_entity=rel.entity,
                )

    def _constraint_error(self, error: IntegrityError, values: Record) -> ConstraintError:
        message = str(error.orig)
        field_name = next(
            (
                name
                for name in self._entity.field_names
                if re.search(rf"\b{re.escape(name)}\b", message)
            ),
            None,
        )
        lowered = message.lower()
        if "unique" in lowered or "duplicate" in lowered:
            reason = "a record with this value already exists"
        elif "foreign key" in lowered:
            reason = "the operation violates a foreign-key constraint"
        elif "not null" in lowered or "null value" in lowered:
            reason = "a required value is missing"
        else:
            reason = message.splitlines()[0]
        if field_name:
            reason = f"{reason} ('{field_name}')"
        return ConstraintError(
            self.name,
            reason,
            field_name=field_name,
            value=values.get(field_name) if field_name else None,
        )


class Client:
    """Entry point for CRUD access to a migrated store."""

    def __init__(self, connection: DatabaseConnection, schema: SchemaSnapshot) -> None:
        """Initialize the client.

        Args:
            connection: Open store connection, owned by the caller
            schema: Snapshot the store has been migrated to
        """
        self._connection = connection
        self._schema = schema
        metadata = build_metadata(schema)
        self._compiler = QueryCompiler(schema, metadata)
        self._loader = RelationLoader(schema, metadata)
        self._entities: dict[str, EntityClient] = {}

    @property
    def schema(self) -> SchemaSnapshot:
        return self._schema

    def entity(self, name: str) -> EntityClient:
        """Get the client for one entity.

        Raises:
            EntityNotFoundError: If the schema has no such entity
        """
        if name not in self._entities:
            self._entities[name] = EntityClient(self, self._schema.entity(name))
        return self._entities[name]

    def __getitem__(self, name: str) -> EntityClient:
        return self.entity(name)

    def execute(self, query: QueryDescription | dict[str, Any]) -> Record | list[Record]:
        """Run a declarative query description.

        Raises:
            ValidationError: If the description itself is malformed
        """
        if not isinstance(query, QueryDescription):
            try:
                query = QueryDescription.model_validate(query)
            except pydantic.ValidationError as e:
                raise ValidationError(f"Invalid query description: {e}") from e

        target = self.entity(query.entity)
        if query.operation == "create":
            return target.create(query.data)
        if query.operation == "read":
            return target.read(
                query.where or None,
                include=query.include or None,
                order_by=query.order_by or None,
                limit=query.limit,
                offset=query.offset,
            )
        if query.operation == "update":
            return target.update(query.where, query.data)
        return target.delete(query.where)

    def _begin(self) -> Any:
        return self._connection.begin()

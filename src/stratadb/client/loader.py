"""Batched loading of related records.

For each requested relation, related records for *all* parent records are
fetched with one ``IN`` query, then attached to their parents in memory. A
read with includes therefore costs one query per relation per nesting level,
however many parents there are.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import MetaData, select
from sqlalchemy.engine import Connection

from stratadb.exceptions import ValidationError
from stratadb.schema.model import RelationView, SchemaSnapshot

logger = logging.getLogger(__name__)

IncludePlan = list[tuple[RelationView, "IncludePlan"]]


class RelationLoader:
    """Resolves include specs and loads related records in batches."""

    def __init__(self, schema: SchemaSnapshot, metadata: MetaData) -> None:
        self._schema = schema
        self._metadata = metadata

    def plan(self, entity_name: str, include: Any) -> IncludePlan:
        """Validate an include spec against the schema.

        Accepted forms: ``["posts"]``, ``{"posts": True}`` and
        ``{"posts": {"include": {"comments": True}}}``.

        Raises:
            RelationNotFoundError: If a name is not a relation of the entity
            ValidationError: If the include argument is malformed
        """
        if not include:
            return []
        if isinstance(include, (list, tuple, set)):
            include = {name: True for name in include}
        if not isinstance(include, dict):
            raise ValidationError(f"include must be a dict or list, got {type(include).__name__}")

        plan: IncludePlan = []
        for name in sorted(include):
            spec = include[name]
            if spec is False or spec is None:
                continue
            view = self._schema.relation_view(entity_name, name)
            if spec is True:
                nested: Any = None
            elif isinstance(spec, dict) and set(spec) <= {"include"}:
                nested = spec.get("include")
            else:
                raise ValidationError(
                    f"Invalid include for '{entity_name}.{name}': expected true or "
                    '{"include": {...}}',
                    {name: "invalid include"},
                )
            plan.append((view, self.plan(view.remote_entity, nested)))
        return plan

    def load(self, conn: Connection, records: list[dict[str, Any]], plan: IncludePlan) -> None:
        """Attach related records to ``records`` in place."""
        for view, nested in plan:
            remote = self._schema.entity(view.remote_entity)
            table = self._metadata.tables[remote.table_name]
            keys = {r[view.local_field] for r in records if r[view.local_field] is not None}

            related: list[dict[str, Any]] = []
            if keys:
                stmt = (
                    select(table)
                    .where(table.c[view.remote_field].in_(list(keys)))
                    .order_by(table.c[remote.identity.name])
                )
                related = [dict(row) for row in conn.execute(stmt).mappings()]
                logger.debug(
                    f"Loaded {len(related)} '{remote.name}' record(s) for "
                    f"'{view.name}' ({len(keys)} key(s))"
                )
            if nested:
                self.load(conn, related, nested)

            if view.many:
                grouped: dict[Any, list[dict[str, Any]]] = {}
                for record in related:
                    grouped.setdefault(record[view.remote_field], []).append(record)
                for record in records:
                    record[view.name] = list(grouped.get(record[view.local_field], []))
            else:
                by_key = {record[view.remote_field]: record for record in related}
                for record in records:
                    match = by_key.get(record[view.local_field])
                    record[view.name] = dict(match) if match is not None else None

"""Compile filter, ordering and paging descriptions into SQLAlchemy selects.

Filters are dicts mapping field names to a value (equality) or to an operator
dict, e.g. ``{"age": {"gte": 18}, "name": {"starts_with": "A"}}``. Conditions on
different fields are combined with AND.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import ColumnElement, MetaData, Select, Table, and_, select

from stratadb.client.validation import coerce_value
from stratadb.core.types import FieldType
from stratadb.exceptions import ValidationError
from stratadb.schema.model import Entity, Field, SchemaSnapshot

OPERATORS = (
    "eq",
    "ne",
    "gt",
    "gte",
    "lt",
    "lte",
    "in",
    "not_in",
    "like",
    "contains",
    "starts_with",
    "ends_with",
    "is_null",
)

ORDERED_TYPES = {
    FieldType.INT,
    FieldType.FLOAT,
    FieldType.STRING,
    FieldType.TEXT,
    FieldType.DATETIME,
    FieldType.UUID,
}
TEXT_TYPES = {FieldType.STRING, FieldType.TEXT, FieldType.UUID}


class QueryCompiler:
    """Builds statements for entities of one schema snapshot."""

    def __init__(self, schema: SchemaSnapshot, metadata: MetaData) -> None:
        self._schema = schema
        self._metadata = metadata

    def table(self, entity: Entity) -> Table:
        return self._metadata.tables[entity.table_name]

    def where_clause(
        self, entity: Entity, where: dict[str, Any] | None
    ) -> ColumnElement[bool] | None:
        """Compile a filter dict, or return None for "all records".

        Raises:
            ValidationError: On unknown fields or operators, or ill-typed values
        """
        if where is None:
            return None
        if not isinstance(where, dict):
            raise ValidationError(f"Filter must be a dict, got {type(where).__name__}")
        table = self.table(entity)
        clauses = []
        for name, spec in where.items():
            field = entity.field(name)
            column = table.c[name]
            if isinstance(spec, dict) and (field.type != FieldType.JSON or _is_operator_dict(spec)):
                if not spec:
                    raise ValidationError(f"Empty condition for '{name}'", {name: "empty condition"})
                clauses.extend(self._condition(field, column, op, value) for op, value in spec.items())
            else:
                clauses.append(self._condition(field, column, "eq", spec))
        if not clauses:
            return None
        return and_(*clauses)

    def _condition(self, field: Field, column: Any, op: str, value: Any) -> ColumnElement[bool]:
        def invalid(message: str) -> ValidationError:
            return ValidationError(
                f"Invalid filter on '{field.name}': {message}", {field.name: message}
            )

        if op not in OPERATORS:
            raise invalid(f"unknown operator '{op}'. Supported: {', '.join(OPERATORS)}")

        if op == "is_null":
            if not isinstance(value, bool):
                raise invalid("is_null expects true or false")
            return column.is_(None) if value else column.is_not(None)

        if op in ("eq", "ne"):
            if value is None:
                coerce_value(field, None)
                return column.is_(None) if op == "eq" else column.is_not(None)
            coerced = coerce_value(field, value)
            return column == coerced if op == "eq" else column != coerced

        if op in ("in", "not_in"):
            if not isinstance(value, (list, tuple, set)):
                raise invalid(f"{op} expects a list of values")
            if any(v is None for v in value):
                raise invalid(f"{op} does not accept null; use is_null")
            values = [coerce_value(field, v) for v in value]
            return column.in_(values) if op == "in" else column.not_in(values)

        if value is None:
            raise invalid(f"{op} does not accept null")

        if op in ("gt", "gte", "lt", "lte"):
            if field.type not in ORDERED_TYPES:
                raise invalid(f"{op} is not supported for {field.type} fields")
            coerced = coerce_value(field, value)
            return {
                "gt": column > coerced,
                "gte": column >= coerced,
                "lt": column < coerced,
                "lte": column <= coerced,
            }[op]

        if field.type not in TEXT_TYPES:
            raise invalid(f"{op} is only supported for string, text and uuid fields")
        if not isinstance(value, str):
            raise invalid(f"{op} expects a string")
        if op == "like":
            return column.like(value)
        if op == "contains":
            return column.contains(value, autoescape=True)
        if op == "starts_with":
            return column.startswith(value, autoescape=True)
        return column.endswith(value, autoescape=True)

    def order_clauses(self, entity: Entity, order_by: list[str] | str | None) -> list[Any]:
        """Compile ``["name", "-createdAt"]`` style ordering.

        The identity is appended as a tiebreaker so results are deterministic.
        """
        table = self.table(entity)
        if order_by is None:
            order_by = []
        elif isinstance(order_by, str):
            order_by = [order_by]

        clauses = []
        seen = set()
        for item in order_by:
            descending = False
            name = item.strip()
            if name.startswith("-"):
                descending, name = True, name[1:]
            elif " " in name:
                name, direction = name.split(None, 1)
                if direction.lower() not in ("asc", "desc"):
                    raise ValidationError(f"Invalid sort direction '{direction}' for '{name}'")
                descending = direction.lower() == "desc"
            entity.field(name)
            seen.add(name)
            column = table.c[name]
            clauses.append(column.desc() if descending else column.asc())

        identity = entity.identity.name
        if identity not in seen:
            clauses.append(table.c[identity].asc())
        return clauses

    def select(
        self,
        entity: Entity,
        where: dict[str, Any] | None = None,
        order_by: list[str] | str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Select[Any]:
        """Build the SELECT for a read.

        Raises:
            ValidationError: On an invalid filter, ordering or paging value
        """
        table = self.table(entity)
        stmt = select(table)
        clause = self.where_clause(entity, where)
        if clause is not None:
            stmt = stmt.where(clause)
        stmt = stmt.order_by(*self.order_clauses(entity, order_by))

        for label, value in (("limit", limit), ("offset", offset)):
            if value is not None and (
                isinstance(value, bool) or not isinstance(value, int) or value < 0
            ):
                raise ValidationError(f"{label} must be a non-negative integer, got {value!r}")
        if self.identity_lookup(entity, where) is not None:
            limit = 1 if limit is None else min(limit, 1)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        return stmt

    def identity_lookup(self, entity: Entity, where: dict[str, Any] | None) -> Any | None:
        """The identity value when ``where`` is a pure identity-equality filter."""
        if not where or list(where) != [entity.identity.name]:
            return None
        spec = where[entity.identity.name]
        if isinstance(spec, dict):
            if list(spec) != ["eq"]:
                return None
            spec = spec["eq"]
        return spec


def _is_operator_dict(spec: dict[str, Any]) -> bool:
    return bool(spec) and all(key in OPERATORS for key in spec)

"""Payload and value validation for the query client.

Every value is checked against its field's type and nullability before any
statement reaches the store, and generated defaults are filled in here.
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any

from stratadb.core.types import DefaultKind, FieldType, Generator
from stratadb.exceptions import ValidationError
from stratadb.schema.model import Entity, Field
from stratadb.schema.tables import STRING_LENGTH


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def generate_uuid() -> str:
    """Generate a new UUID as string."""
    return str(uuid.uuid4())


class _Invalid(Exception):
    """Internal signal carrying a per-field error message."""


def coerce_value(field: Field, value: Any) -> Any:
    """Check ``value`` against ``field`` and return it in storage form.

    Raises:
        ValidationError: If the value has the wrong type or is null for a required field
    """
    try:
        return _coerce(field, value)
    except _Invalid as e:
        raise ValidationError(f"Invalid value for '{field.name}': {e}", {field.name: str(e)}) from None


def _coerce(field: Field, value: Any) -> Any:
    if value is None:
        if not field.nullable:
            raise _Invalid("null is not allowed for a required field")
        return None

    field_type = field.type
    if field_type == FieldType.INT:
        if isinstance(value, bool) or not isinstance(value, int):
            raise _Invalid(f"expected int, got {type(value).__name__}")
        return value
    if field_type == FieldType.FLOAT:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _Invalid(f"expected float, got {type(value).__name__}")
        return float(value)
    if field_type in (FieldType.STRING, FieldType.TEXT):
        if not isinstance(value, str):
            raise _Invalid(f"expected {field_type}, got {type(value).__name__}")
        if field_type == FieldType.STRING and len(value) > STRING_LENGTH:
            raise _Invalid(f"longer than {STRING_LENGTH} characters")
        return value
    if field_type == FieldType.BOOL:
        if not isinstance(value, bool):
            raise _Invalid(f"expected bool, got {type(value).__name__}")
        return value
    if field_type == FieldType.DATETIME:
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value)
            except ValueError:
                raise _Invalid(f"not an ISO 8601 datetime: {value!r}") from None
        raise _Invalid(f"expected datetime, got {type(value).__name__}")
    if field_type == FieldType.UUID:
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, str):
            try:
                return str(uuid.UUID(value))
            except ValueError:
                raise _Invalid(f"not a UUID: {value!r}") from None
        raise _Invalid(f"expected uuid, got {type(value).__name__}")
    if field_type == FieldType.JSON:
        try:
            json.dumps(value)
        except (TypeError, ValueError) as e:
            raise _Invalid(f"not JSON-serializable: {e}") from None
        return value
    raise _Invalid(f"unsupported type {field_type}")


def _generate(field: Field) -> Any:
    if field.default.generator == Generator.NOW:
        return utc_now()
    if field.default.generator == Generator.UUID:
        return generate_uuid()
    return None


class PayloadValidator:
    """Validates create and update payloads for one entity."""

    def __init__(self, entity: Entity) -> None:
        self._entity = entity

    def _check_unknown(self, data: dict[str, Any]) -> None:
        unknown = sorted(k for k in data if not self._entity.has_field(k))
        if unknown:
            available = ", ".join(self._entity.field_names)
            raise ValidationError(
                f"Unknown field(s) on '{self._entity.name}': {', '.join(unknown)}. "
                f"Available fields: {available}",
                {name: "unknown field" for name in unknown},
            )

    def for_create(self, data: dict[str, Any]) -> dict[str, Any]:
        """Validate a create payload and fill defaults.

        Returns:
            Column values to insert (autoincrement identities are left out)

        Raises:
            ValidationError: On unknown fields, wrong types or missing required fields
        """
        self._check_unknown(data)
        values: dict[str, Any] = {}
        errors: dict[str, str] = {}
        for field in self._entity.fields:
            if field.name in data:
                try:
                    values[field.name] = _coerce(field, data[field.name])
                except _Invalid as e:
                    errors[field.name] = str(e)
            elif field.default.kind == DefaultKind.STATIC:
                values[field.name] = _coerce_default(field)
            elif field.default.is_generated:
                if not field.is_autoincrement:
                    values[field.name] = _generate(field)
            elif not field.nullable:
                errors[field.name] = "required field is missing"

        if errors:
            raise ValidationError(self._summary("create", errors), errors)
        return values

    def for_update(self, data: dict[str, Any]) -> dict[str, Any]:
        """Validate an update payload and stamp ``@updatedAt`` fields.

        Raises:
            ValidationError: On unknown fields, wrong types, or an identity change
        """
        self._check_unknown(data)
        if not data:
            raise ValidationError(f"Update of '{self._entity.name}' has no data")
        values: dict[str, Any] = {}
        errors: dict[str, str] = {}
        for name, value in data.items():
            field = self._entity.field(name)
            if field.identity:
                errors[name] = "the identity of a record cannot be changed"
                continue
            try:
                values[name] = _coerce(field, value)
            except _Invalid as e:
                errors[name] = str(e)

        if errors:
            raise ValidationError(self._summary("update", errors), errors)

        for field in self._entity.fields:
            if field.default.kind == DefaultKind.ON_UPDATE and field.name not in values:
                values[field.name] = _generate(field)
        return values

    def _summary(self, operation: str, errors: dict[str, str]) -> str:
        details = "; ".join(f"{name}: {message}" for name, message in errors.items())
        return f"Invalid {operation} payload for '{self._entity.name}': {details}"


def _coerce_default(field: Field) -> Any:
    return _coerce(field, field.default.value)

"""Custom exceptions for StrataDB.

Error messages are actionable: they say what went wrong and, where it helps,
list the options that are available. Every error carries a JSON-serializable
context for programmatic callers.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class StrataDBError(Exception):
    """Base exception for all StrataDB errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Return error as JSON-serializable dict."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class ConnectionError(StrataDBError):
    """Failed to connect to the database."""

    pass


# === Authoring-time errors ===


class SchemaErrorKind(StrEnum):
    """Reasons a schema definition is rejected."""

    DUPLICATE_NAME = "duplicate_name"
    UNKNOWN_TYPE = "unknown_type"
    BAD_RELATION_TARGET = "bad_relation_target"
    MISSING_IDENTITY = "missing_identity"
    DUPLICATE_IDENTITY = "duplicate_identity"
    INVALID_ATTRIBUTE = "invalid_attribute"
    INVALID_DEFAULT = "invalid_default"
    INVALID_SYNTAX = "invalid_syntax"


class SchemaError(StrataDBError):
    """Schema definition is invalid."""

    def __init__(self, kind: SchemaErrorKind, location: str, detail: str) -> None:
        message = f"{detail} (at {location})"
        super().__init__(message, {"kind": kind.value, "location": location, "detail": detail})
        self.kind = kind
        self.location = location
        self.detail = detail


# === Migration-time errors ===


class ApplyErrorKind(StrEnum):
    """Reasons a migration failed to apply."""

    DIALECT_UNSUPPORTED = "dialect_unsupported"
    CONSTRAINT_VIOLATION = "constraint_violation"
    CONNECTION_LOST = "connection_lost"
    STATEMENT_FAILED = "statement_failed"


class ApplyError(StrataDBError):
    """A migration could not be applied; the store was left unchanged."""

    def __init__(
        self,
        kind: ApplyErrorKind,
        message: str,
        migration_name: str | None = None,
        attempted: list[str] | None = None,
        statements: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            {
                "kind": kind.value,
                "migration_name": migration_name,
                "attempted": attempted or [],
                "statements": statements or [],
            },
        )
        self.kind = kind
        self.migration_name = migration_name
        self.attempted = attempted or []
        self.statements = statements or []


class DestructiveChangeError(StrataDBError):
    """A migration contains changes that may lose data and was not confirmed."""

    def __init__(self, migration_name: str | None, warnings: list[str]) -> None:
        listed = "; ".join(warnings)
        message = (
            f"Migration '{migration_name}' contains destructive changes: {listed}. "
            "Review them and pass allow_destructive=True (--accept-data-loss) to apply."
        )
        super().__init__(message, {"migration_name": migration_name, "warnings": warnings})
        self.migration_name = migration_name
        self.warnings = warnings


class LedgerCorruptionError(StrataDBError):
    """Recorded migrations do not form a valid, ordered history.

    This is not recoverable by the library; the store must be repaired by hand.
    """

    pass


# === Query-time errors ===


class ValidationError(StrataDBError):
    """Query or payload validation failed before touching the store."""

    def __init__(self, message: str, field_errors: dict[str, str] | None = None) -> None:
        super().__init__(message, {"field_errors": field_errors or {}})
        self.field_errors = field_errors or {}


class EntityNotFoundError(ValidationError):
    """Entity does not exist in the schema."""

    def __init__(self, entity_name: str, available_entities: list[str] | None = None) -> None:
        available = available_entities or []
        if available:
            message = (
                f"Entity '{entity_name}' not found. Available entities: {', '.join(available)}"
            )
        else:
            message = f"Entity '{entity_name}' not found. No entities are defined."
        super().__init__(message)
        self.context.update({"entity_name": entity_name, "available_entities": available})
        self.entity_name = entity_name
        self.available_entities = available


class FieldNotFoundError(ValidationError):
    """Field does not exist on entity."""

    def __init__(
        self, field_name: str, entity_name: str, available_fields: list[str] | None = None
    ) -> None:
        available = available_fields or []
        if available:
            message = (
                f"Field '{field_name}' not found on '{entity_name}'. "
                f"Available fields: {', '.join(available)}"
            )
        else:
            message = f"Field '{field_name}' not found on '{entity_name}'. No fields defined."
        super().__init__(message, {field_name: "unknown field"})
        self.context.update(
            {
                "field_name": field_name,
                "entity_name": entity_name,
                "available_fields": available,
            }
        )
        self.field_name = field_name
        self.entity_name = entity_name
        self.available_fields = available


class RelationNotFoundError(ValidationError):
    """Relation does not exist on entity."""

    def __init__(
        self,
        relation_name: str,
        entity_name: str,
        available_relations: list[str] | None = None,
    ) -> None:
        available = available_relations or []
        if available:
            message = (
                f"Relation '{relation_name}' not found on '{entity_name}'. "
                f"Available relations: {', '.join(available)}"
            )
        else:
            message = (
                f"Relation '{relation_name}' not found on '{entity_name}'. "
                "No relations defined."
            )
        super().__init__(message)
        self.context.update(
            {
                "relation_name": relation_name,
                "entity_name": entity_name,
                "available_relations": available,
            }
        )
        self.relation_name = relation_name
        self.entity_name = entity_name
        self.available_relations = available


# === Store-time errors ===


class ConstraintError(StrataDBError):
    """The store rejected a write because of a uniqueness or foreign-key constraint."""

    def __init__(
        self,
        entity_name: str,
        reason: str,
        field_name: str | None = None,
        value: Any = None,
        related_entity: str | None = None,
    ) -> None:
        message = f"Constraint violated on '{entity_name}': {reason}"
        super().__init__(
            message,
            {
                "entity_name": entity_name,
                "field_name": field_name,
                "value": value,
                "related_entity": related_entity,
            },
        )
        self.entity_name = entity_name
        self.reason = reason
        self.field_name = field_name
        self.value = value
        self.related_entity = related_entity


class NotFoundError(StrataDBError):
    """Update or delete addressed no matching record."""

    def __init__(self, entity_name: str, where: dict[str, Any]) -> None:
        message = f"No '{entity_name}' record matches {where!r}."
        super().__init__(message, {"entity_name": entity_name, "where": where})
        self.entity_name = entity_name
        self.where = where


class StoreError(StrataDBError):
    """The store failed a request for a reason other than a constraint violation."""

    def __init__(
        self, entity_name: str, operation: str, detail: str, connection_lost: bool = False
    ) -> None:
        if connection_lost:
            message = f"Connection lost during '{operation}' on '{entity_name}': {detail}"
        else:
            message = (
                f"Store failed '{operation}' on '{entity_name}': {detail}. "
                "Check that the store is migrated to the declared schema."
            )
        super().__init__(
            message,
            {
                "entity_name": entity_name,
                "operation": operation,
                "detail": detail,
                "connection_lost": connection_lost,
            },
        )
        self.entity_name = entity_name
        self.operation = operation
        self.detail = detail
        self.connection_lost = connection_lost


class SchemaNotAppliedError(StrataDBError):
    """The declared schema is not the one the store was last migrated to."""

    def __init__(self, declared_checksum: str, applied_checksum: str | None) -> None:
        if applied_checksum is None:
            message = "No migration has been applied to the store. Run migrate() first."
        else:
            message = (
                f"Declared schema ({declared_checksum[:12]}) differs from the latest "
                f"applied migration ({applied_checksum[:12]}). Run migrate() first."
            )
        super().__init__(
            message,
            {"declared_checksum": declared_checksum, "applied_checksum": applied_checksum},
        )
        self.declared_checksum = declared_checksum
        self.applied_checksum = applied_checksum

"""Change operations produced by the diff engine.

Each operation is a small frozen value describing one structural change. The
DDL generator lowers operations to dialect-specific statements; the ledger
stores their ``to_dict()`` form alongside each applied migration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from stratadb.schema.model import Entity, Field, Relation


@dataclass(frozen=True)
class ChangeOperation:
    """Base class for all change operations."""

    kind: ClassVar[str] = "change"

    entity: str

    def describe(self) -> str:
        return f"{self.kind} {self.entity}"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "entity": self.entity}


@dataclass(frozen=True)
class CreateEntity(ChangeOperation):
    kind: ClassVar[str] = "create_entity"

    definition: Entity

    def describe(self) -> str:
        return f"create entity {self.entity} ({len(self.definition.fields)} fields)"

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "definition": self.definition.to_dict()}


@dataclass(frozen=True)
class DropEntity(ChangeOperation):
    kind: ClassVar[str] = "drop_entity"

    definition: Entity

    def describe(self) -> str:
        return f"drop entity {self.entity}"

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "definition": self.definition.to_dict()}


@dataclass(frozen=True)
class AddField(ChangeOperation):
    kind: ClassVar[str] = "add_field"

    field: Field

    def describe(self) -> str:
        return f"add field {self.entity}.{self.field.name} ({self.field.type})"

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "field": self.field.to_dict()}


@dataclass(frozen=True)
class DropField(ChangeOperation):
    kind: ClassVar[str] = "drop_field"

    field: Field

    def describe(self) -> str:
        return f"drop field {self.entity}.{self.field.name}"

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "field": self.field.to_dict()}


@dataclass(frozen=True)
class AlterField(ChangeOperation):
    kind: ClassVar[str] = "alter_field"

    old: Field
    new: Field

    @property
    def changes(self) -> list[str]:
        """Names of the field attributes that differ."""
        return [
            attr
            for attr in ("type", "nullable", "unique", "identity", "indexed", "default")
            if getattr(self.old, attr) != getattr(self.new, attr)
        ]

    def describe(self) -> str:
        details = []
        for attr in self.changes:
            if attr == "default":
                before, after = self.old.default.describe(), self.new.default.describe()
            else:
                before, after = getattr(self.old, attr), getattr(self.new, attr)
            details.append(f"{attr}: {before} -> {after}")
        return f"alter field {self.entity}.{self.new.name} ({'; '.join(details)})"

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "old": self.old.to_dict(), "new": self.new.to_dict()}


@dataclass(frozen=True)
class AddRelationConstraint(ChangeOperation):
    kind: ClassVar[str] = "add_relation_constraint"

    relation: Relation

    def describe(self) -> str:
        rel = self.relation
        return (
            f"add foreign key {rel.entity}.{rel.field} -> {rel.target}.{rel.references} "
            f"(on delete {rel.on_delete.sql})"
        )

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "relation": self.relation.to_dict()}


@dataclass(frozen=True)
class DropRelationConstraint(ChangeOperation):
    kind: ClassVar[str] = "drop_relation_constraint"

    relation: Relation

    def describe(self) -> str:
        rel = self.relation
        return f"drop foreign key {rel.entity}.{rel.field} -> {rel.target}.{rel.references}"

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "relation": self.relation.to_dict()}


@dataclass(frozen=True)
class AddTableConstraint(ChangeOperation):
    """A composite unique constraint or index."""

    kind: ClassVar[str] = "add_table_constraint"

    columns: tuple[str, ...]
    unique: bool

    def describe(self) -> str:
        label = "unique constraint" if self.unique else "index"
        return f"add {label} on {self.entity} ({', '.join(self.columns)})"

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "columns": list(self.columns), "unique": self.unique}


@dataclass(frozen=True)
class DropTableConstraint(ChangeOperation):
    kind: ClassVar[str] = "drop_table_constraint"

    columns: tuple[str, ...]
    unique: bool

    def describe(self) -> str:
        label = "unique constraint" if self.unique else "index"
        return f"drop {label} on {self.entity} ({', '.join(self.columns)})"

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "columns": list(self.columns), "unique": self.unique}

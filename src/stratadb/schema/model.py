"""Immutable in-memory schema model.

A ``SchemaSnapshot`` captures every entity, field and relation at one point in
time. Snapshots are plain frozen data: the diff engine compares two of them,
the ledger stores them as JSON, and the client reads relation metadata from
the current one.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from functools import cached_property
from typing import Any

from stratadb.core.types import (
    DefaultKind,
    EntityInfo,
    FieldInfo,
    FieldType,
    Generator,
    OnDeleteAction,
    RelationInfo,
    RelationKind,
)
from stratadb.exceptions import EntityNotFoundError, FieldNotFoundError, RelationNotFoundError


def to_table_name(entity_name: str) -> str:
    """Convert an entity name to its table name (e.g., CustomerOrder -> customer_order)."""
    result = []
    for i, char in enumerate(entity_name):
        if char.isupper() and i > 0 and not entity_name[i - 1].isupper():
            result.append("_")
        result.append(char.lower())
    safe_name = "".join(result).replace(" ", "_").replace("-", "_")
    while "__" in safe_name:
        safe_name = safe_name.replace("__", "_")
    return safe_name


@dataclass(frozen=True)
class DefaultValue:
    """Default-value policy of a field."""

    kind: DefaultKind = DefaultKind.NONE
    value: Any = None
    generator: Generator | None = None

    @property
    def is_generated(self) -> bool:
        return self.kind in (DefaultKind.ON_CREATE, DefaultKind.ON_UPDATE)

    def describe(self) -> str | None:
        """Human-readable form, as written in the declaration language."""
        if self.kind == DefaultKind.NONE:
            return None
        if self.kind == DefaultKind.ON_UPDATE:
            return "@updatedAt"
        if self.kind == DefaultKind.ON_CREATE:
            return f"{self.generator}()"
        return json.dumps(self.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "value": self.value,
            "generator": self.generator.value if self.generator else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DefaultValue:
        generator = data.get("generator")
        return cls(
            kind=DefaultKind(data.get("kind", DefaultKind.NONE)),
            value=data.get("value"),
            generator=Generator(generator) if generator else None,
        )


@dataclass(frozen=True)
class Field:
    """A typed, named attribute of an entity (one column)."""

    name: str
    type: FieldType
    nullable: bool = False
    unique: bool = False
    identity: bool = False
    indexed: bool = False
    default: DefaultValue = field(default_factory=DefaultValue)

    @property
    def has_default(self) -> bool:
        return self.default.kind != DefaultKind.NONE

    @property
    def is_autoincrement(self) -> bool:
        return self.default.generator == Generator.AUTOINCREMENT

    @property
    def required(self) -> bool:
        """Whether a create payload must supply this field."""
        return not self.nullable and not self.has_default

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "nullable": self.nullable,
            "unique": self.unique,
            "identity": self.identity,
            "indexed": self.indexed,
            "default": self.default.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Field:
        return cls(
            name=data["name"],
            type=FieldType(data["type"]),
            nullable=data.get("nullable", False),
            unique=data.get("unique", False),
            identity=data.get("identity", False),
            indexed=data.get("indexed", False),
            default=DefaultValue.from_dict(data.get("default") or {}),
        )

    def to_info(self) -> FieldInfo:
        return FieldInfo(
            name=self.name,
            type=self.type.value,
            nullable=self.nullable,
            unique=self.unique,
            identity=self.identity,
            indexed=self.indexed,
            default=self.default.describe(),
        )


@dataclass(frozen=True)
class Relation:
    """Foreign-key-backed association, owned by the entity holding the key.

    ``name`` is the forward navigation name on the owning entity (Post.author),
    ``inverse_name`` the back-reference on the target (User.posts).
    """

    name: str
    entity: str
    field: str
    target: str
    references: str
    kind: RelationKind = RelationKind.ONE_TO_MANY
    on_delete: OnDeleteAction = OnDeleteAction.RESTRICT
    inverse_name: str | None = None

    @property
    def constraint_key(self) -> tuple[str, ...]:
        """The physical identity of the foreign-key constraint."""
        return (self.entity, self.field, self.target, self.references, self.on_delete.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "entity": self.entity,
            "field": self.field,
            "target": self.target,
            "references": self.references,
            "kind": self.kind.value,
            "on_delete": self.on_delete.value,
            "inverse_name": self.inverse_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Relation:
        return cls(
            name=data["name"],
            entity=data["entity"],
            field=data["field"],
            target=data["target"],
            references=data["references"],
            kind=RelationKind(data.get("kind", RelationKind.ONE_TO_MANY)),
            on_delete=OnDeleteAction(data.get("on_delete", OnDeleteAction.RESTRICT)),
            inverse_name=data.get("inverse_name"),
        )

    def to_info(self) -> RelationInfo:
        return RelationInfo(**self.to_dict())


@dataclass(frozen=True)
class RelationView:
    """A relation as navigated from one side.

    Forward views start at the owning entity and yield a singleton; inverse
    views start at the target and yield a collection (one-to-many) or an
    optional singleton (one-to-one).
    """

    name: str
    relation: Relation
    forward: bool

    @property
    def local_field(self) -> str:
        """Key on the entity being read."""
        return self.relation.field if self.forward else self.relation.references

    @property
    def remote_entity(self) -> str:
        return self.relation.target if self.forward else self.relation.entity

    @property
    def remote_field(self) -> str:
        """Key on the related entity matched against ``local_field``."""
        return self.relation.references if self.forward else self.relation.field

    @property
    def many(self) -> bool:
        return not self.forward and self.relation.kind == RelationKind.ONE_TO_MANY


@dataclass(frozen=True)
class Entity:
    """A named logical record type."""

    name: str
    fields: tuple[Field, ...]
    relations: tuple[Relation, ...] = ()
    unique_together: tuple[tuple[str, ...], ...] = ()
    indexes: tuple[tuple[str, ...], ...] = ()

    @property
    def table_name(self) -> str:
        return to_table_name(self.name)

    @cached_property
    def _fields_by_name(self) -> dict[str, Field]:
        return {f.name: f for f in self.fields}

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @property
    def identity(self) -> Field:
        for f in self.fields:
            if f.identity:
                return f
        raise FieldNotFoundError("<identity>", self.name, self.field_names)

    def has_field(self, name: str) -> bool:
        return name in self._fields_by_name

    def field(self, name: str) -> Field:
        """Look up a field by name.

        Raises:
            FieldNotFoundError: If the entity has no such field
        """
        try:
            return self._fields_by_name[name]
        except KeyError:
            raise FieldNotFoundError(name, self.name, self.field_names) from None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "fields": [f.to_dict() for f in self.fields],
            "relations": [r.to_dict() for r in self.relations],
            "unique_together": [list(c) for c in self.unique_together],
            "indexes": [list(c) for c in self.indexes],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entity:
        return cls(
            name=data["name"],
            fields=tuple(Field.from_dict(f) for f in data.get("fields", [])),
            relations=tuple(Relation.from_dict(r) for r in data.get("relations", [])),
            unique_together=tuple(tuple(c) for c in data.get("unique_together", [])),
            indexes=tuple(tuple(c) for c in data.get("indexes", [])),
        )


@dataclass(frozen=True)
class SchemaSnapshot:
    """Immutable, versioned capture of a whole schema.

    Entities are kept sorted by name so equal schemas serialize identically.
    """

    entities: tuple[Entity, ...] = ()
    version: int = 1

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.entities, key=lambda e: e.name))
        object.__setattr__(self, "entities", ordered)

    @classmethod
    def empty(cls) -> SchemaSnapshot:
        return cls(entities=(), version=0)

    @cached_property
    def _entities_by_name(self) -> dict[str, Entity]:
        return {e.name: e for e in self.entities}

    @property
    def entity_names(self) -> list[str]:
        return [e.name for e in self.entities]

    def has_entity(self, name: str) -> bool:
        return name in self._entities_by_name

    def entity(self, name: str) -> Entity:
        """Look up an entity by name.

        Raises:
            EntityNotFoundError: If the schema has no such entity
        """
        try:
            return self._entities_by_name[name]
        except KeyError:
            raise EntityNotFoundError(name, self.entity_names) from None

    @property
    def relations(self) -> list[Relation]:
        """All relations, ordered by owning entity then foreign-key field."""
        return sorted(
            (r for e in self.entities for r in e.relations), key=lambda r: (r.entity, r.field)
        )

    def incoming_relations(self, entity_name: str) -> list[Relation]:
        """Relations whose foreign key references ``entity_name``."""
        return [r for r in self.relations if r.target == entity_name]

    @cached_property
    def _views(self) -> dict[str, dict[str, RelationView]]:
        views: dict[str, dict[str, RelationView]] = {name: {} for name in self.entity_names}
        for rel in self.relations:
            views[rel.entity][rel.name] = RelationView(rel.name, rel, forward=True)
            if rel.inverse_name:
                views[rel.target][rel.inverse_name] = RelationView(
                    rel.inverse_name, rel, forward=False
                )
        return views

    def relation_names(self, entity_name: str) -> list[str]:
        self.entity(entity_name)
        return sorted(self._views[entity_name])

    def relation_view(self, entity_name: str, name: str) -> RelationView:
        """Resolve a navigation name on an entity, forward or inverse.

        Raises:
            EntityNotFoundError: If the entity does not exist
            RelationNotFoundError: If the entity has no relation with that name
        """
        self.entity(entity_name)
        try:
            return self._views[entity_name][name]
        except KeyError:
            raise RelationNotFoundError(
                name, entity_name, self.relation_names(entity_name)
            ) from None

    def describe_entity(self, name: str) -> EntityInfo:
        entity = self.entity(name)
        related = [r for r in self.relations if name in (r.entity, r.target)]
        return EntityInfo(
            name=entity.name,
            table_name=entity.table_name,
            fields=[f.to_info() for f in entity.fields],
            relations=[r.to_info() for r in related],
        )

    def with_version(self, version: int) -> SchemaSnapshot:
        return replace(self, version=version)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "entities": [e.to_dict() for e in self.entities],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SchemaSnapshot:
        return cls(
            entities=tuple(Entity.from_dict(e) for e in data.get("entities", [])),
            version=data.get("version", 1),
        )

    def canonical_json(self) -> str:
        """Stable JSON of the structure, independent of the version number."""
        return json.dumps(
            [e.to_dict() for e in self.entities], sort_keys=True, separators=(",", ":")
        )

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.canonical_json().encode("utf-8")).hexdigest()

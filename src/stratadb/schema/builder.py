"""Validate schema specs and build immutable snapshots.

All schema validation happens here, at parse time. A snapshot that leaves this
module is internally consistent: every type is known, every entity has one
identity, and every relation points at an existing, type-compatible identity.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

import pydantic

from stratadb.core.types import (
    DefaultKind,
    DefaultSpec,
    EntitySpec,
    FieldSpec,
    FieldType,
    Generator,
    OnDeleteAction,
    RelationKind,
    RelationSpec,
    SchemaSpec,
)
from stratadb.exceptions import SchemaError, SchemaErrorKind
from stratadb.schema.model import DefaultValue, Entity, Field, Relation, SchemaSnapshot
from stratadb.schema.parser import parse_declarations

logger = logging.getLogger(__name__)

# Foreign keys may reference an identity of the same storage family
TYPE_FAMILIES: dict[FieldType, str] = {
    FieldType.INT: "integer",
    FieldType.FLOAT: "float",
    FieldType.STRING: "string",
    FieldType.TEXT: "string",
    FieldType.UUID: "string",
    FieldType.BOOL: "bool",
    FieldType.DATETIME: "datetime",
    FieldType.JSON: "json",
}


def _location(entity: str, field: str | None = None) -> str:
    return f"{entity}.{field}" if field else entity


def _static_default_ok(field_type: FieldType, value: Any) -> bool:
    if field_type == FieldType.INT:
        return isinstance(value, int) and not isinstance(value, bool)
    if field_type == FieldType.FLOAT:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if field_type in (FieldType.STRING, FieldType.TEXT, FieldType.UUID):
        return isinstance(value, str)
    if field_type == FieldType.BOOL:
        return isinstance(value, bool)
    if field_type == FieldType.DATETIME:
        if not isinstance(value, str):
            return False
        try:
            datetime.fromisoformat(value)
        except ValueError:
            return False
        return True
    return True  # json accepts any literal


class _SchemaBuilder:
    """Turns a ``SchemaSpec`` into a validated ``SchemaSnapshot``."""

    def __init__(self, spec: SchemaSpec) -> None:
        self._spec = spec
        self._entity_specs: dict[str, EntitySpec] = {}

    def build(self, version: int) -> SchemaSnapshot:
        self._index_entities()
        fields = {name: self._build_fields(spec) for name, spec in self._entity_specs.items()}
        relations = self._build_relations(fields)

        entities = []
        for name, spec in self._entity_specs.items():
            scalar_names = {f.name for f in fields[name]}
            entities.append(
                Entity(
                    name=name,
                    fields=tuple(fields[name]),
                    relations=tuple(sorted(relations.get(name, []), key=lambda r: r.field)),
                    unique_together=self._column_groups(spec, "unique_together", scalar_names),
                    indexes=self._column_groups(spec, "indexes", scalar_names),
                )
            )
        snapshot = SchemaSnapshot(entities=tuple(entities), version=version)
        logger.debug(f"Built schema snapshot with {len(entities)} entities ({snapshot.checksum})")
        return snapshot

    def _index_entities(self) -> None:
        tables: dict[str, str] = {}
        for spec in self._spec.entities:
            if spec.name in self._entity_specs:
                raise SchemaError(
                    SchemaErrorKind.DUPLICATE_NAME,
                    _location(spec.name),
                    f"Entity '{spec.name}' is declared more than once",
                )
            if spec.name in FieldType.values():
                raise SchemaError(
                    SchemaErrorKind.DUPLICATE_NAME,
                    _location(spec.name),
                    f"Entity name '{spec.name}' collides with a scalar type",
                )
            table = Entity(name=spec.name, fields=()).table_name
            if table in tables:
                raise SchemaError(
                    SchemaErrorKind.DUPLICATE_NAME,
                    _location(spec.name),
                    f"Entities '{tables[table]}' and '{spec.name}' map to the same table '{table}'",
                )
            tables[table] = spec.name
            self._entity_specs[spec.name] = spec

    def _is_relation_field(self, spec: FieldSpec) -> bool:
        return spec.type in self._entity_specs

    def _build_fields(self, entity: EntitySpec) -> list[Field]:
        seen: set[str] = set()
        fields: list[Field] = []
        for spec in entity.fields:
            location = _location(entity.name, spec.name)
            if spec.name in seen:
                raise SchemaError(
                    SchemaErrorKind.DUPLICATE_NAME,
                    location,
                    f"Field '{spec.name}' is declared more than once on '{entity.name}'",
                )
            seen.add(spec.name)

            if self._is_relation_field(spec):
                continue
            if spec.relation is not None and spec.type not in FieldType.values():
                raise SchemaError(
                    SchemaErrorKind.BAD_RELATION_TARGET,
                    location,
                    f"Relation target '{spec.type}' is not a declared entity. "
                    f"Declared entities: {', '.join(sorted(self._entity_specs))}",
                )
            if spec.type not in FieldType.values():
                raise SchemaError(
                    SchemaErrorKind.UNKNOWN_TYPE,
                    location,
                    f"Unknown type '{spec.type}'. Valid types: {', '.join(FieldType.values())} "
                    f"or an entity name ({', '.join(sorted(self._entity_specs)) or 'none'})",
                )
            if spec.many:
                raise SchemaError(
                    SchemaErrorKind.UNKNOWN_TYPE,
                    location,
                    "Scalar lists are not supported; use a json field or a related entity",
                )
            if spec.relation is not None:
                raise SchemaError(
                    SchemaErrorKind.INVALID_ATTRIBUTE,
                    location,
                    "@relation is only valid on fields whose type is an entity",
                )
            fields.append(self._build_field(spec, location))

        identities = [f for f in fields if f.identity]
        if not identities:
            raise SchemaError(
                SchemaErrorKind.MISSING_IDENTITY,
                _location(entity.name),
                f"Entity '{entity.name}' has no identity field. Mark one field with @id",
            )
        if len(identities) > 1:
            raise SchemaError(
                SchemaErrorKind.DUPLICATE_IDENTITY,
                _location(entity.name),
                f"Entity '{entity.name}' has more than one identity field: "
                f"{', '.join(f.name for f in identities)}",
            )
        return fields

    def _build_field(self, spec: FieldSpec, location: str) -> Field:
        field_type = FieldType(spec.type)
        if spec.identity and spec.optional:
            raise SchemaError(
                SchemaErrorKind.INVALID_ATTRIBUTE, location, "An identity field cannot be optional"
            )
        default = DefaultValue()
        if spec.default is not None:
            default = self._build_default(spec.default, field_type, spec.identity, location)
        return Field(
            name=spec.name,
            type=field_type,
            nullable=spec.optional,
            unique=spec.unique and not spec.identity,
            identity=spec.identity,
            indexed=spec.indexed and not (spec.identity or spec.unique),
            default=default,
        )

    def _build_default(
        self, default: DefaultSpec, field_type: FieldType, identity: bool, location: str
    ) -> DefaultValue:
        kind = DefaultKind(default.kind)
        if kind == DefaultKind.NONE:
            return DefaultValue()
        if kind == DefaultKind.STATIC:
            if default.value is None or not _static_default_ok(field_type, default.value):
                raise SchemaError(
                    SchemaErrorKind.INVALID_DEFAULT,
                    location,
                    f"Default {default.value!r} is not a valid {field_type} value",
                )
            return DefaultValue(kind=kind, value=default.value)

        try:
            generator = Generator(default.generator)
        except ValueError:
            raise SchemaError(
                SchemaErrorKind.INVALID_DEFAULT,
                location,
                f"Unknown generator {default.generator!r}. "
                f"Valid generators: {', '.join(Generator.values())}",
            ) from None

        allowed = {
            Generator.NOW: {FieldType.DATETIME},
            Generator.UUID: {FieldType.UUID, FieldType.STRING},
            Generator.AUTOINCREMENT: {FieldType.INT},
        }[generator]
        if field_type not in allowed:
            raise SchemaError(
                SchemaErrorKind.INVALID_DEFAULT,
                location,
                f"{generator}() cannot generate {field_type} values",
            )
        if generator == Generator.AUTOINCREMENT and not identity:
            raise SchemaError(
                SchemaErrorKind.INVALID_DEFAULT,
                location,
                "autoincrement() is only supported on the identity field",
            )
        if kind == DefaultKind.ON_UPDATE and generator != Generator.NOW:
            raise SchemaError(
                SchemaErrorKind.INVALID_DEFAULT, location, "@updatedAt requires a datetime field"
            )
        return DefaultValue(kind=kind, generator=generator)

    def _column_groups(
        self, spec: EntitySpec, attribute: str, scalar_names: set[str]
    ) -> tuple[tuple[str, ...], ...]:
        groups = []
        for columns in getattr(spec, attribute):
            unknown = [c for c in columns if c not in scalar_names]
            if unknown or not columns:
                raise SchemaError(
                    SchemaErrorKind.INVALID_ATTRIBUTE,
                    _location(spec.name),
                    f"{attribute} references unknown field(s): {', '.join(unknown) or '(none)'}",
                )
            groups.append(tuple(columns))
        return tuple(sorted(set(groups)))

    def _build_relations(self, fields: dict[str, list[Field]]) -> dict[str, list[Relation]]:
        owning: list[tuple[EntitySpec, FieldSpec, RelationSpec]] = []
        back_refs: list[tuple[EntitySpec, FieldSpec]] = []
        for entity in self._entity_specs.values():
            for spec in entity.fields:
                if not self._is_relation_field(spec):
                    continue
                if spec.relation is not None and spec.relation.fields:
                    owning.append((entity, spec, spec.relation))
                else:
                    back_refs.append((entity, spec))

        def find_field(entity_name: str, name: str) -> Field | None:
            return next((f for f in fields[entity_name] if f.name == name), None)

        relations: dict[str, list[Relation]] = {}
        matched: set[tuple[str, str]] = set()
        fk_fields: set[tuple[str, str]] = set()
        for entity, spec, relation in owning:
            location = _location(entity.name, spec.name)
            target = self._entity_specs[spec.type]

            def bad(detail: str, location: str = location) -> SchemaError:
                return SchemaError(SchemaErrorKind.BAD_RELATION_TARGET, location, detail)

            if spec.many:
                raise bad("The side holding the foreign key must be singular (drop the [])")
            if len(relation.fields) != 1:
                raise bad("A relation needs exactly one foreign-key field")
            fk = find_field(entity.name, relation.fields[0])
            if fk is None:
                raise bad(
                    f"Foreign-key field '{relation.fields[0]}' does not exist "
                    f"on '{entity.name}'"
                )
            if (entity.name, fk.name) in fk_fields:
                raise bad(f"Field '{fk.name}' already backs another relation")
            fk_fields.add((entity.name, fk.name))

            target_identity = next(f for f in fields[target.name] if f.identity)
            references = relation.references or [target_identity.name]
            if references != [target_identity.name]:
                raise bad(
                    f"Relations must reference the identity of '{target.name}' "
                    f"('{target_identity.name}'), not {', '.join(references)}"
                )
            if TYPE_FAMILIES[fk.type] != TYPE_FAMILIES[target_identity.type]:
                raise bad(
                    f"Foreign key '{fk.name}' ({fk.type}) is not compatible with "
                    f"'{target.name}.{target_identity.name}' ({target_identity.type})"
                )

            try:
                on_delete = OnDeleteAction(relation.on_delete)
            except ValueError:
                raise SchemaError(
                    SchemaErrorKind.INVALID_ATTRIBUTE,
                    location,
                    f"Invalid on_delete '{relation.on_delete}'. "
                    f"Valid actions: {', '.join(OnDeleteAction.values())}",
                ) from None
            if on_delete == OnDeleteAction.SET_NULL and not fk.nullable:
                raise bad(f"onDelete: SetNull needs an optional foreign key ('{fk.name}?')")

            kind = (
                RelationKind.ONE_TO_ONE if (fk.unique or fk.identity) else RelationKind.ONE_TO_MANY
            )

            candidates = [
                (e, f)
                for e, f in back_refs
                if e.name == target.name
                and f.type == entity.name
                and (f.relation.name if f.relation else None) == relation.name
            ]
            if len(candidates) > 1:
                raise bad(
                    f"Ambiguous back-reference on '{target.name}': "
                    f"{', '.join(f.name for _, f in candidates)}. Name the relation with "
                    '@relation("name", ...)'
                )
            inverse_name = None
            if candidates:
                back_entity, back = candidates[0]
                matched.add((back_entity.name, back.name))
                inverse_name = back.name
                if back.many and kind == RelationKind.ONE_TO_ONE:
                    raise bad(
                        f"'{target.name}.{back.name}' is a list but '{fk.name}' is unique; "
                        "a one-to-one back-reference must be singular and optional"
                    )
                if not back.many and kind == RelationKind.ONE_TO_MANY:
                    raise bad(
                        f"'{target.name}.{back.name}' is singular; mark '{fk.name}' @unique "
                        "for a one-to-one relation or declare the back-reference as a list"
                    )

            relations.setdefault(entity.name, []).append(
                Relation(
                    name=spec.name,
                    entity=entity.name,
                    field=fk.name,
                    target=target.name,
                    references=target_identity.name,
                    kind=kind,
                    on_delete=on_delete,
                    inverse_name=inverse_name,
                )
            )

        for entity, spec in back_refs:
            if (entity.name, spec.name) not in matched:
                raise SchemaError(
                    SchemaErrorKind.BAD_RELATION_TARGET,
                    _location(entity.name, spec.name),
                    f"No relation on '{spec.type}' references '{entity.name}' for "
                    f"back-reference '{spec.name}'. Add @relation(fields: [...], "
                    f"references: [...]) on the '{spec.type}' side",
                )
        return relations


def build_snapshot(spec: SchemaSpec, version: int = 1) -> SchemaSnapshot:
    """Validate a ``SchemaSpec`` and build a snapshot.

    Raises:
        SchemaError: If the declared entities are inconsistent
    """
    return _SchemaBuilder(spec).build(version)


def parse(source: str | Mapping[str, Any] | SchemaSpec, version: int = 1) -> SchemaSnapshot:
    """Parse a schema definition into an immutable snapshot.

    Args:
        source: Declaration-language text, a JSON-style mapping, or a SchemaSpec
        version: Version number to stamp on the snapshot

    Raises:
        SchemaError: If the definition is malformed or invalid
    """
    if isinstance(source, SchemaSpec):
        spec = source
    elif isinstance(source, str):
        spec = parse_declarations(source)
    else:
        try:
            spec = SchemaSpec.model_validate(dict(source))
        except pydantic.ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise SchemaError(SchemaErrorKind.INVALID_SYNTAX, location, first["msg"]) from e
    return build_snapshot(spec, version)


def load_schema(path: str | Path, version: int = 1) -> SchemaSnapshot:
    """Load and parse a schema file (``.json`` or declaration text).

    Raises:
        FileNotFoundError: If the file doesn't exist
        SchemaError: If the definition is invalid
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Schema file not found: {path}")

    content = file_path.read_text(encoding="utf-8")
    if file_path.suffix == ".json":
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise SchemaError(
                SchemaErrorKind.INVALID_SYNTAX, f"line {e.lineno}", f"Invalid JSON: {e.msg}"
            ) from e
        return parse(data, version)
    return parse(content, version)

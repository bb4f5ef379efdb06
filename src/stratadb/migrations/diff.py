"""Compute ordered change operations between two schema snapshots.

Operations are emitted in dependency order:

1. drops of relation constraints, then of composite constraints and indexes
2. drops of entities
3. creations of entities
4. per surviving entity: field additions, alterations and drops
5. additions of composite constraints and indexes, then of relation constraints

Within each phase operations are sorted by entity name, then field name, so
the same pair of snapshots always yields the same list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from stratadb.core.types import DefaultKind, FieldType, Generator
from stratadb.migrations.operations import (
    AddField,
    AddRelationConstraint,
    AddTableConstraint,
    AlterField,
    ChangeOperation,
    CreateEntity,
    DropEntity,
    DropField,
    DropRelationConstraint,
    DropTableConstraint,
)
from stratadb.schema.model import Relation, SchemaSnapshot

logger = logging.getLogger(__name__)

# Type changes that never lose information
SAFE_TYPE_CHANGES: set[tuple[FieldType, FieldType]] = {
    (FieldType.INT, FieldType.FLOAT),
    (FieldType.INT, FieldType.TEXT),
    (FieldType.FLOAT, FieldType.TEXT),
    (FieldType.STRING, FieldType.TEXT),
    (FieldType.UUID, FieldType.STRING),
    (FieldType.UUID, FieldType.TEXT),
}


@dataclass(frozen=True)
class DestructiveChange:
    """A warning attached to an operation that may lose or reject existing data."""

    operation: ChangeOperation
    reason: str

    def __str__(self) -> str:
        return f"{self.operation.describe()}: {self.reason}"


def diff(previous: SchemaSnapshot | None, current: SchemaSnapshot) -> list[ChangeOperation]:
    """Compute the operations that transform ``previous`` into ``current``.

    Args:
        previous: Snapshot currently applied, or None for an empty store
        current: Target snapshot

    Returns:
        Ordered list of change operations (empty when the schemas match)
    """
    previous = previous or SchemaSnapshot.empty()
    before = set(previous.entity_names)
    after = set(current.entity_names)
    created = sorted(after - before)
    dropped = sorted(before - after)
    kept = sorted(before & after)

    altered: set[tuple[str, str]] = set()
    # Foreign keys on retyped columns are dropped and recreated around the change
    retyped: set[tuple[str, str]] = set()
    for name in kept:
        old_entity, new_entity = previous.entity(name), current.entity(name)
        for f in new_entity.fields:
            if old_entity.has_field(f.name) and old_entity.field(f.name) != f:
                altered.add((name, f.name))
                if old_entity.field(f.name).type != f.type:
                    retyped.add((name, f.name))

    def touches_retyped(rel: Relation) -> bool:
        return (rel.entity, rel.field) in retyped or (rel.target, rel.references) in retyped

    old_relations = {(r.entity, r.field): r for r in previous.relations}
    new_relations = {(r.entity, r.field): r for r in current.relations}

    drop_relations = [
        rel
        for key, rel in old_relations.items()
        if key not in new_relations
        or new_relations[key].constraint_key != rel.constraint_key
        or touches_retyped(rel)
    ]
    add_relations = [
        rel
        for key, rel in new_relations.items()
        if key not in old_relations
        or old_relations[key].constraint_key != rel.constraint_key
        or touches_retyped(rel)
    ]

    drop_groups: list[DropTableConstraint] = []
    add_groups: list[AddTableConstraint] = []
    for name in kept:
        old_entity, new_entity = previous.entity(name), current.entity(name)
        for unique, old_groups, new_groups in (
            (True, old_entity.unique_together, new_entity.unique_together),
            (False, old_entity.indexes, new_entity.indexes),
        ):
            for columns in sorted(set(old_groups) - set(new_groups)):
                drop_groups.append(DropTableConstraint(name, columns, unique))
            for columns in sorted(set(new_groups) - set(old_groups)):
                add_groups.append(AddTableConstraint(name, columns, unique))

    operations: list[ChangeOperation] = []
    operations.extend(
        DropRelationConstraint(rel.entity, rel)
        for rel in sorted(drop_relations, key=lambda r: (r.entity, r.field))
    )
    operations.extend(sorted(drop_groups, key=lambda op: (op.entity, not op.unique, op.columns)))
    operations.extend(DropEntity(name, previous.entity(name)) for name in dropped)
    operations.extend(CreateEntity(name, current.entity(name)) for name in created)

    for name in kept:
        old_entity, new_entity = previous.entity(name), current.entity(name)
        for field_name in sorted(set(old_entity.field_names) | set(new_entity.field_names)):
            if not old_entity.has_field(field_name):
                operations.append(AddField(name, new_entity.field(field_name)))
            elif not new_entity.has_field(field_name):
                operations.append(DropField(name, old_entity.field(field_name)))
            elif (name, field_name) in altered:
                operations.append(
                    AlterField(name, old_entity.field(field_name), new_entity.field(field_name))
                )

    operations.extend(sorted(add_groups, key=lambda op: (op.entity, not op.unique, op.columns)))
    operations.extend(
        AddRelationConstraint(rel.entity, rel)
        for rel in sorted(add_relations, key=lambda r: (r.entity, r.field))
    )

    logger.debug(
        f"Diff v{previous.version} -> v{current.version}: {len(operations)} operation(s)"
    )
    return operations


def destructive_changes(operations: list[ChangeOperation]) -> list[DestructiveChange]:
    """Flag operations that may lose data or fail against existing rows."""
    warnings: list[DestructiveChange] = []
    for op in operations:
        if isinstance(op, DropEntity):
            warnings.append(DestructiveChange(op, "all records of the entity are deleted"))
        elif isinstance(op, DropField):
            warnings.append(DestructiveChange(op, "the field's values are deleted"))
        elif isinstance(op, AddField):
            fills_existing = op.field.default.kind == DefaultKind.STATIC or (
                op.field.default.generator == Generator.NOW
            )
            if not op.field.nullable and not fills_existing:
                warnings.append(
                    DestructiveChange(
                        op, "required field without a default fails if records already exist"
                    )
                )
            if op.field.unique or op.field.identity:
                warnings.append(
                    DestructiveChange(op, "unique field fails if existing records share a value")
                )
        elif isinstance(op, AlterField):
            old, new = op.old, op.new
            if old.type != new.type and (old.type, new.type) not in SAFE_TYPE_CHANGES:
                warnings.append(
                    DestructiveChange(
                        op,
                        f"narrowing type change {old.type} -> {new.type} may fail or "
                        "truncate existing values",
                    )
                )
            if old.nullable and not new.nullable:
                warnings.append(
                    DestructiveChange(op, "making the field required fails if nulls exist")
                )
            if (new.unique and not old.unique) or (new.identity and not old.identity):
                warnings.append(
                    DestructiveChange(op, "uniqueness fails if existing records share a value")
                )
        elif isinstance(op, AddTableConstraint) and op.unique:
            warnings.append(
                DestructiveChange(op, "uniqueness fails if existing records share values")
            )
    return warnings

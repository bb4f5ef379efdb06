"""Generate typed record definitions from a schema snapshot.

The output is a self-contained Python module with one ``TypedDict`` per entity
for records as returned by the client, one for create payloads (generated and
optional fields are ``NotRequired``) and ``Literal`` aliases of the relation
names that can be included.
"""

from __future__ import annotations

from stratadb.core.types import FieldType
from stratadb.schema.model import Entity, Field, SchemaSnapshot

PYTHON_TYPES = {
    FieldType.INT: "int",
    FieldType.FLOAT: "float",
    FieldType.STRING: "str",
    FieldType.TEXT: "str",
    FieldType.BOOL: "bool",
    FieldType.DATETIME: "datetime",
    FieldType.JSON: "Any",
    FieldType.UUID: "str",
}


def _annotation(field: Field) -> str:
    python_type = PYTHON_TYPES[field.type]
    if field.nullable and python_type != "Any":
        return f"{python_type} | None"
    return python_type


def _render_entity(schema: SchemaSnapshot, entity: Entity) -> list[str]:
    lines = [f"class {entity.name}(TypedDict):", f'    """A stored \'{entity.name}\' record."""', ""]
    for field in entity.fields:
        lines.append(f"    {field.name}: {_annotation(field)}")
    for name in schema.relation_names(entity.name):
        view = schema.relation_view(entity.name, name)
        remote = view.remote_entity
        if view.many:
            annotation = f"list[{remote}]"
        else:
            annotation = f"{remote} | None"
        lines.append(f"    {name}: NotRequired[{annotation}]")

    lines += ["", "", f"class {entity.name}Create(TypedDict):"]
    lines.append(f'    """Payload for creating a \'{entity.name}\' record."""')
    lines.append("")
    for field in entity.fields:
        annotation = _annotation(field)
        if field.required:
            lines.append(f"    {field.name}: {annotation}")
        else:
            lines.append(f"    {field.name}: NotRequired[{annotation}]")

    relation_names = schema.relation_names(entity.name)
    if relation_names:
        literals = ", ".join(f'"{name}"' for name in relation_names)
        lines += ["", "", f"{entity.name}Include = Literal[{literals}]"]
    return lines


def render_typed_client(schema: SchemaSnapshot) -> str:
    """Render the typed definitions module for ``schema``."""
    lines = [
        f'"""Typed records for schema version {schema.version} ({schema.checksum[:12]}).',
        "",
        "Generated by `stratadb generate`. Do not edit by hand.",
        '"""',
        "",
        "from __future__ import annotations",
        "",
        "from datetime import datetime",
        "from typing import Any, Literal, NotRequired, TypedDict",
        "",
        f"SCHEMA_CHECKSUM = \"{schema.checksum}\"",
    ]
    for entity in schema.entities:
        lines += ["", ""]
        lines += _render_entity(schema, entity)
    lines += ["", "", "__all__ = ["]
    for entity in schema.entities:
        lines.append(f'    "{entity.name}",')
        lines.append(f'    "{entity.name}Create",')
        if schema.relation_names(entity.name):
            lines.append(f'    "{entity.name}Include",')
    lines.append("]")
    return "\n".join(lines) + "\n"

"""Tests for core types and specs."""

from __future__ import annotations

import pydantic
import pytest

from stratadb.core.types import (
    DefaultKind,
    FieldSpec,
    FieldType,
    OnDeleteAction,
    QueryDescription,
    RelationKind,
    SchemaSpec,
)
from stratadb.schema import parse


class TestEnums:
    """Test enum values."""

    def test_field_types(self):
        """Test all scalar types are listed."""
        assert FieldType.values() == [
            "int",
            "float",
            "string",
            "text",
            "bool",
            "datetime",
            "json",
            "uuid",
        ]

    def test_on_delete_sql(self):
        """Test SQL spelling of referential actions."""
        assert OnDeleteAction.SET_NULL.sql == "SET NULL"
        assert OnDeleteAction.NO_ACTION.sql == "NO ACTION"
        assert OnDeleteAction.RESTRICT.sql == "RESTRICT"

    def test_relation_kinds(self):
        """Test relation kinds."""
        assert set(RelationKind.values()) == {"one_to_many", "one_to_one"}

    def test_default_kinds(self):
        """Test default kinds compare as strings."""
        assert DefaultKind.ON_UPDATE == "on_update"


class TestSpecs:
    """Test pydantic spec models."""

    def test_field_spec_defaults(self):
        """Test a bare field spec is a required string."""
        spec = FieldSpec(name="title")
        assert spec.type == "string"
        assert not spec.optional
        assert spec.relation is None

    def test_schema_spec_from_dict(self):
        """Test a schema spec validates nested dicts."""
        spec = SchemaSpec.model_validate(
            {"entities": [{"name": "Tag", "fields": [{"name": "id", "type": "int", "identity": True}]}]}
        )
        assert spec.entities[0].fields[0].identity

    def test_query_description_operation(self):
        """Test only CRUD operations are accepted."""
        query = QueryDescription(entity="User", operation="read")
        assert query.where == {}
        with pytest.raises(pydantic.ValidationError):
            QueryDescription(entity="User", operation="upsert")


class TestSnapshotChecksum:
    """Test snapshot checksums."""

    def test_stable_across_formatting(self):
        """Test whitespace and comments do not change the checksum."""
        first = parse("entity Tag {\n  id int @id\n}\n")
        second = parse("// tags\nentity   Tag {\n\n  id    int   @id  // key\n}")
        assert first.checksum == second.checksum

    def test_changes_with_structure(self):
        """Test a structural change changes the checksum."""
        first = parse("entity Tag {\n  id int @id\n}\n")
        second = parse("entity Tag {\n  id int @id\n  label string?\n}\n")
        assert first.checksum != second.checksum

    def test_round_trip(self, blog_schema):
        """Test to_dict/from_dict preserves the checksum."""
        restored = type(blog_schema).from_dict(blog_schema.to_dict())
        assert restored.checksum == blog_schema.checksum

"""Tests for the schema declaration language and schema validation."""

from __future__ import annotations

import json

import pytest

from stratadb.core.types import (
    DefaultKind,
    FieldType,
    Generator,
    OnDeleteAction,
    RelationKind,
)
from stratadb.exceptions import SchemaError, SchemaErrorKind
from stratadb.schema import load_schema, parse, parse_declarations


class TestDeclarationParsing:
    """Test tokenizing and parsing declaration text."""

    def test_blog_schema(self, blog_schema):
        """Test the User/Post schema parses into two entities and one relation."""
        assert blog_schema.entity_names == ["Post", "User"]
        user = blog_schema.entity("User")
        assert user.field_names == ["id", "email", "name"]
        assert user.identity.name == "id"
        assert user.field("email").unique
        assert user.field("name").nullable
        assert user.field("id").is_autoincrement

        (relation,) = blog_schema.relations
        assert relation.entity == "Post"
        assert relation.field == "authorId"
        assert relation.target == "User"
        assert relation.references == "id"
        assert relation.name == "author"
        assert relation.inverse_name == "posts"
        assert relation.kind == RelationKind.ONE_TO_MANY
        assert relation.on_delete == OnDeleteAction.RESTRICT

    def test_relation_fields_are_not_columns(self, blog_schema):
        """Test navigation fields do not become stored fields."""
        assert not blog_schema.entity("User").has_field("posts")
        assert not blog_schema.entity("Post").has_field("author")
        assert blog_schema.relation_names("User") == ["posts"]
        assert blog_schema.relation_names("Post") == ["author"]

    def test_comments_and_blank_lines(self):
        """Test comments and blank lines are ignored."""
        snapshot = parse(
            """
            // accounts
            entity Account {

              id  uuid @id @default(uuid())  // generated
            }
            """
        )
        field = snapshot.entity("Account").field("id")
        assert field.type == FieldType.UUID
        assert field.default.generator == Generator.UUID

    def test_defaults(self):
        """Test static, generated and @updatedAt defaults."""
        snapshot = parse(
            """
            entity Task {
              id        int      @id
              title     string   @default("untitled")
              priority  int      @default(3)
              score     float    @default(0.5)
              done      bool     @default(false)
              createdAt datetime @default(now())
              updatedAt datetime @updatedAt
            }
            """
        )
        task = snapshot.entity("Task")
        assert task.field("title").default.value == "untitled"
        assert task.field("priority").default.value == 3
        assert task.field("score").default.value == 0.5
        assert task.field("done").default.value is False
        assert task.field("createdAt").default.kind == DefaultKind.ON_CREATE
        assert task.field("updatedAt").default.kind == DefaultKind.ON_UPDATE
        assert not task.field("title").required
        assert not task.field("createdAt").required

    def test_entity_attributes(self):
        """Test @@unique and @@index groups."""
        snapshot = parse(
            """
            entity Member {
              id      int    @id
              orgId   int
              email   string
              joined  datetime
              @@unique([orgId, email])
              @@index([joined])
            }
            """
        )
        member = snapshot.entity("Member")
        assert member.unique_together == (("orgId", "email"),)
        assert member.indexes == (("joined",),)

    def test_on_delete_and_one_to_one(self):
        """Test onDelete actions and one-to-one relations from a unique foreign key."""
        snapshot = parse(
            """
            entity User {
              id      int      @id
              profile Profile?
            }

            entity Profile {
              id     int  @id
              userId int  @unique
              user   User @relation(fields: [userId], references: [id], onDelete: Cascade)
            }
            """
        )
        (relation,) = snapshot.relations
        assert relation.kind == RelationKind.ONE_TO_ONE
        assert relation.on_delete == OnDeleteAction.CASCADE
        view = snapshot.relation_view("User", "profile")
        assert not view.many
        assert view.remote_entity == "Profile"
        assert view.remote_field == "userId"

    def test_named_relations(self):
        """Test two relations between the same entities disambiguated by name."""
        snapshot = parse(
            """
            entity User {
              id       int       @id
              sent     Message[] @relation("sent")
              received Message[] @relation("received")
            }

            entity Message {
              id          int  @id
              senderId    int
              recipientId int
              sender      User @relation("sent", fields: [senderId], references: [id])
              recipient   User @relation("received", fields: [recipientId], references: [id])
            }
            """
        )
        assert snapshot.relation_names("User") == ["received", "sent"]
        assert snapshot.relation_view("User", "sent").remote_field == "senderId"

    def test_unexpected_character(self):
        """Test an invalid character is a syntax error with its line."""
        with pytest.raises(SchemaError) as exc_info:
            parse_declarations("entity A {\n  id int @id $\n}")
        assert exc_info.value.kind == SchemaErrorKind.INVALID_SYNTAX
        assert exc_info.value.location == "line 2"

    def test_unknown_attribute(self):
        """Test unknown field attributes are rejected."""
        with pytest.raises(SchemaError) as exc_info:
            parse("entity A {\n  id int @id @primary\n}")
        assert exc_info.value.kind == SchemaErrorKind.INVALID_ATTRIBUTE
        assert "@primary" in str(exc_info.value)

    def test_unterminated_entity(self):
        """Test a missing closing brace is reported."""
        with pytest.raises(SchemaError) as exc_info:
            parse("entity A {\n  id int @id\n")
        assert exc_info.value.kind == SchemaErrorKind.INVALID_SYNTAX


class TestSchemaValidation:
    """Test semantic schema errors."""

    def test_duplicate_entity(self):
        """Test an entity declared twice."""
        with pytest.raises(SchemaError) as exc_info:
            parse("entity A {\n id int @id\n}\nentity A {\n id int @id\n}")
        assert exc_info.value.kind == SchemaErrorKind.DUPLICATE_NAME
        assert exc_info.value.location == "A"

    def test_duplicate_field(self):
        """Test a field declared twice on one entity."""
        with pytest.raises(SchemaError) as exc_info:
            parse("entity A {\n id int @id\n id string\n}")
        assert exc_info.value.kind == SchemaErrorKind.DUPLICATE_NAME
        assert exc_info.value.location == "A.id"

    def test_unknown_type(self):
        """Test an unknown field type lists the valid ones."""
        with pytest.raises(SchemaError) as exc_info:
            parse("entity A {\n id int @id\n size bigint\n}")
        assert exc_info.value.kind == SchemaErrorKind.UNKNOWN_TYPE
        assert exc_info.value.location == "A.size"
        assert "string" in exc_info.value.detail

    def test_missing_identity(self):
        """Test an entity without @id."""
        with pytest.raises(SchemaError) as exc_info:
            parse("entity A {\n name string\n}")
        assert exc_info.value.kind == SchemaErrorKind.MISSING_IDENTITY
        assert exc_info.value.location == "A"

    def test_duplicate_identity(self):
        """Test an entity with two identity fields."""
        with pytest.raises(SchemaError) as exc_info:
            parse("entity A {\n id int @id\n other int @id\n}")
        assert exc_info.value.kind == SchemaErrorKind.DUPLICATE_IDENTITY

    def test_relation_to_missing_entity(self):
        """Test a relation-looking field whose entity does not exist."""
        with pytest.raises(SchemaError) as exc_info:
            parse(
                "entity Post {\n id int @id\n authorId int\n"
                " author Writer @relation(fields: [authorId], references: [id])\n}"
            )
        assert exc_info.value.kind == SchemaErrorKind.BAD_RELATION_TARGET
        assert exc_info.value.location == "Post.author"

    def test_relation_to_non_identity(self, blog_schema):
        """Test relations must reference the target's identity."""
        with pytest.raises(SchemaError) as exc_info:
            parse(
                """
                entity User {
                  id    int    @id
                  email string @unique
                }
                entity Post {
                  id          int    @id
                  authorEmail string
                  author      User   @relation(fields: [authorEmail], references: [email])
                }
                """
            )
        assert exc_info.value.kind == SchemaErrorKind.BAD_RELATION_TARGET
        assert exc_info.value.location == "Post.author"

    def test_relation_type_mismatch(self):
        """Test the foreign key must be compatible with the referenced identity."""
        with pytest.raises(SchemaError) as exc_info:
            parse(
                """
                entity User {
                  id int @id
                }
                entity Post {
                  id       int    @id
                  authorId string
                  author   User   @relation(fields: [authorId], references: [id])
                }
                """
            )
        assert exc_info.value.kind == SchemaErrorKind.BAD_RELATION_TARGET
        assert "not compatible" in exc_info.value.detail

    def test_relation_with_missing_foreign_key(self):
        """Test @relation naming a field that does not exist."""
        with pytest.raises(SchemaError) as exc_info:
            parse(
                """
                entity User {
                  id int @id
                }
                entity Post {
                  id     int  @id
                  author User @relation(fields: [authorId], references: [id])
                }
                """
            )
        assert exc_info.value.kind == SchemaErrorKind.BAD_RELATION_TARGET

    def test_unmatched_back_reference(self):
        """Test a list back-reference without an owning relation."""
        with pytest.raises(SchemaError) as exc_info:
            parse(
                """
                entity User {
                  id    int    @id
                  posts Post[]
                }
                entity Post {
                  id int @id
                }
                """
            )
        assert exc_info.value.kind == SchemaErrorKind.BAD_RELATION_TARGET
        assert exc_info.value.location == "User.posts"

    def test_set_null_requires_optional_key(self):
        """Test onDelete: SetNull on a required foreign key."""
        with pytest.raises(SchemaError) as exc_info:
            parse(
                """
                entity User {
                  id int @id
                }
                entity Post {
                  id       int  @id
                  authorId int
                  author   User @relation(fields: [authorId], references: [id], onDelete: SetNull)
                }
                """
            )
        assert exc_info.value.kind == SchemaErrorKind.BAD_RELATION_TARGET

    def test_invalid_static_default(self):
        """Test a default that does not match the field type."""
        with pytest.raises(SchemaError) as exc_info:
            parse('entity A {\n id int @id\n count int @default("many")\n}')
        assert exc_info.value.kind == SchemaErrorKind.INVALID_DEFAULT

    def test_generator_type_mismatch(self):
        """Test now() on a non-datetime field."""
        with pytest.raises(SchemaError) as exc_info:
            parse("entity A {\n id int @id\n at string @default(now())\n}")
        assert exc_info.value.kind == SchemaErrorKind.INVALID_DEFAULT

    def test_autoincrement_only_on_identity(self):
        """Test autoincrement() on a regular field."""
        with pytest.raises(SchemaError) as exc_info:
            parse("entity A {\n id int @id\n seq int @default(autoincrement())\n}")
        assert exc_info.value.kind == SchemaErrorKind.INVALID_DEFAULT

    def test_optional_identity(self):
        """Test an identity field cannot be optional."""
        with pytest.raises(SchemaError) as exc_info:
            parse("entity A {\n id int? @id\n}")
        assert exc_info.value.kind == SchemaErrorKind.INVALID_ATTRIBUTE

    def test_unique_together_unknown_field(self):
        """Test @@unique referencing a missing field."""
        with pytest.raises(SchemaError) as exc_info:
            parse("entity A {\n id int @id\n @@unique([id, missing])\n}")
        assert exc_info.value.kind == SchemaErrorKind.INVALID_ATTRIBUTE
        assert "missing" in exc_info.value.detail

    def test_error_to_dict(self):
        """Test schema errors serialize with kind and location."""
        with pytest.raises(SchemaError) as exc_info:
            parse("entity A {\n name string\n}")
        data = exc_info.value.to_dict()
        assert data["error"] == "SchemaError"
        assert data["context"]["kind"] == "missing_identity"
        assert data["context"]["location"] == "A"


class TestOtherSources:
    """Test schemas given as mappings and files."""

    def test_parse_mapping(self):
        """Test a JSON-style mapping builds the same snapshot as declaration text."""
        snapshot = parse(
            {
                "entities": [
                    {
                        "name": "Tag",
                        "fields": [
                            {"name": "id", "type": "int", "identity": True},
                            {"name": "label", "type": "string", "unique": True},
                        ],
                    }
                ]
            }
        )
        text_snapshot = parse("entity Tag {\n id int @id\n label string @unique\n}")
        assert snapshot.checksum == text_snapshot.checksum

    def test_parse_mapping_invalid(self):
        """Test a malformed mapping is a syntax error."""
        with pytest.raises(SchemaError) as exc_info:
            parse({"entities": [{"fields": []}]})
        assert exc_info.value.kind == SchemaErrorKind.INVALID_SYNTAX

    def test_load_schema_file(self, tmp_path, blog_schema):
        """Test loading declaration text from a file."""
        from conftest import BLOG_SCHEMA

        path = tmp_path / "schema.strata"
        path.write_text(BLOG_SCHEMA)
        assert load_schema(path).checksum == blog_schema.checksum

    def test_load_schema_json_file(self, tmp_path, blog_schema):
        """Test loading a JSON schema file."""
        path = tmp_path / "schema.json"
        path.write_text(json.dumps({"entities": []}))
        assert load_schema(path).entities == ()

    def test_load_schema_missing_file(self, tmp_path):
        """Test a missing schema file."""
        with pytest.raises(FileNotFoundError):
            load_schema(tmp_path / "missing.strata")

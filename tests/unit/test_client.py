"""Tests for the schema-aware CRUD client."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest
from conftest import BLOG_SCHEMA
from sqlalchemy.engine import Connection
from sqlalchemy.exc import OperationalError

from stratadb import StrataDB
from stratadb.client import Client
from stratadb.core.types import QueryDescription
from stratadb.exceptions import (
    ConstraintError,
    EntityNotFoundError,
    FieldNotFoundError,
    NotFoundError,
    RelationNotFoundError,
    SchemaNotAppliedError,
    StoreError,
    ValidationError,
)

CASCADE_SCHEMA = """
entity User {
  id    int     @id @default(autoincrement())
  email string  @unique
  posts Post[]
  notes Note[]
}

entity Post {
  id       int   @id @default(autoincrement())
  title    string
  authorId int
  author   User  @relation(fields: [authorId], references: [id], onDelete: Cascade)
}

entity Note {
  id      int   @id @default(autoincrement())
  body    text
  ownerId int?
  owner   User? @relation(fields: [ownerId], references: [id], onDelete: SetNull)
}
"""

TASK_SCHEMA = """
entity Task {
  id        uuid     @id @default(uuid())
  title     string
  done      bool     @default(false)
  priority  float?
  meta      json?
  createdAt datetime @default(now())
  updatedAt datetime @updatedAt
}
"""


@pytest.fixture
def cascade_db():
    database = StrataDB("sqlite:///:memory:", schema=CASCADE_SCHEMA)
    database.migrate("0001_init")
    yield database
    database.close()


@pytest.fixture
def task_db():
    database = StrataDB("sqlite:///:memory:", schema=TASK_SCHEMA)
    database.migrate("0001_init")
    yield database
    database.close()


class TestBlogScenario:
    """Test the User/Post walkthrough end to end."""

    def test_walkthrough(self, blog_db):
        """Test create, include, restricted delete and ordered deletes."""
        users = blog_db.entity("User")
        posts = blog_db.entity("Post")

        user = users.create({"email": "ada@example.com"})
        assert user == {"id": 1, "email": "ada@example.com", "name": None}

        post = posts.create({"title": "Hello", "authorId": 1})
        assert post["id"] == 1

        (loaded,) = users.read({"id": 1}, include={"posts": True})
        assert loaded["posts"] == [{"id": 1, "title": "Hello", "authorId": 1}]

        with pytest.raises(ConstraintError) as exc_info:
            users.delete({"id": 1})
        assert exc_info.value.related_entity == "Post"
        assert users.count() == 1

        assert posts.delete({"id": 1}) == post
        assert users.delete({"id": 1}) == user
        assert users.read() == []


class TestCreate:
    """Test record creation."""

    def test_autoincrement(self, blog_db):
        """Test generated identities increase."""
        users = blog_db.entity("User")
        first = users.create({"email": "a@example.com"})
        second = users.create({"email": "b@example.com", "name": "Bea"})
        assert (first["id"], second["id"]) == (1, 2)
        assert second["name"] == "Bea"

    def test_unknown_field(self, blog_db):
        """Test unknown fields are rejected before any write."""
        with pytest.raises(ValidationError) as exc_info:
            blog_db.entity("User").create({"email": "a@example.com", "nickname": "x"})
        assert exc_info.value.field_errors == {"nickname": "unknown field"}
        assert blog_db.entity("User").count() == 0

    def test_missing_required_field(self, blog_db):
        """Test a missing required field is reported per field."""
        with pytest.raises(ValidationError) as exc_info:
            blog_db.entity("User").create({"name": "Ada"})
        assert "email" in exc_info.value.field_errors

    def test_wrong_type(self, blog_db):
        """Test values are checked against field types."""
        with pytest.raises(ValidationError) as exc_info:
            blog_db.entity("Post").create({"title": 42, "authorId": "one"})
        assert set(exc_info.value.field_errors) == {"title", "authorId"}

    def test_bool_is_not_int(self, blog_db):
        """Test booleans are not accepted for int fields."""
        with pytest.raises(ValidationError):
            blog_db.entity("Post").create({"title": "x", "authorId": True})

    def test_null_for_required(self, blog_db):
        """Test null is rejected for required fields."""
        with pytest.raises(ValidationError):
            blog_db.entity("User").create({"email": None})

    def test_unique_violation(self, blog_db):
        """Test a duplicate unique value raises ConstraintError."""
        users = blog_db.entity("User")
        users.create({"email": "ada@example.com"})
        with pytest.raises(ConstraintError) as exc_info:
            users.create({"email": "ada@example.com"})
        assert exc_info.value.field_name == "email"
        assert users.count() == 1

    def test_missing_reference(self, blog_db):
        """Test a foreign key to a missing record raises ConstraintError."""
        with pytest.raises(ConstraintError) as exc_info:
            blog_db.entity("Post").create({"title": "Orphan", "authorId": 99})
        assert exc_info.value.field_name == "authorId"
        assert exc_info.value.related_entity == "User"

    def test_unknown_entity(self, blog_db):
        """Test an unknown entity is a validation error."""
        with pytest.raises(EntityNotFoundError) as exc_info:
            blog_db.entity("Comment")
        assert exc_info.value.available_entities == ["Post", "User"]


class TestDefaults:
    """Test generated and static defaults."""

    def test_generated_values(self, task_db):
        """Test uuid, now() and static defaults are filled in."""
        task = task_db.entity("Task").create({"title": "Write tests"})
        assert len(task["id"]) == 36
        assert task["done"] is False
        assert task["priority"] is None
        assert isinstance(task["createdAt"], datetime)
        assert isinstance(task["updatedAt"], datetime)

    def test_updated_at_is_stamped(self, task_db):
        """Test @updatedAt changes on update."""
        tasks = task_db.entity("Task")
        task = tasks.create({"title": "Write tests"})
        updated = tasks.update({"id": task["id"]}, {"done": True})
        assert updated["done"] is True
        assert updated["updatedAt"] >= task["updatedAt"]
        assert updated["createdAt"] == task["createdAt"]

    def test_json_and_float(self, task_db):
        """Test json and float values round trip."""
        tasks = task_db.entity("Task")
        task = tasks.create({"title": "x", "priority": 2, "meta": {"tags": ["a", "b"]}})
        assert task["priority"] == 2.0
        assert task["meta"] == {"tags": ["a", "b"]}

    def test_datetime_round_trip(self, task_db):
        """Test aware datetimes read back equal, in UTC."""
        tasks = task_db.entity("Task")
        at = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        task = tasks.create({"title": "x", "createdAt": at})
        assert task["createdAt"] == at

        (loaded,) = tasks.read({"createdAt": at})
        assert loaded["createdAt"] == at
        assert loaded["createdAt"].tzinfo is not None
        assert loaded["updatedAt"].tzinfo is not None

    def test_datetime_offset_normalized(self, task_db):
        """Test a non-UTC offset is stored as the same instant."""
        local = datetime(2024, 1, 2, 5, 4, 5, tzinfo=timezone(timedelta(hours=2)))
        task = task_db.entity("Task").create({"title": "x", "createdAt": local})
        assert task["createdAt"] == local
        assert task["createdAt"].hour == 3

    def test_invalid_uuid(self, task_db):
        """Test a malformed uuid is rejected."""
        with pytest.raises(ValidationError):
            task_db.entity("Task").create({"id": "not-a-uuid", "title": "x"})


class TestRead:
    """Test filtering, ordering and paging."""

    @pytest.fixture
    def users(self, blog_db):
        users = blog_db.entity("User")
        for email, name in [
            ("carol@example.com", "Carol"),
            ("ada@example.com", "Ada"),
            ("bob@example.com", None),
        ]:
            users.create({"email": email, "name": name})
        return users

    def test_read_all_ordered_by_identity(self, users):
        """Test records come back in identity order by default."""
        assert [u["id"] for u in users.read()] == [1, 2, 3]

    def test_equality(self, users):
        """Test a plain value filters by equality."""
        (user,) = users.read({"email": "ada@example.com"})
        assert user["name"] == "Ada"

    def test_operators(self, users):
        """Test comparison and text operators."""
        assert [u["id"] for u in users.read({"id": {"gte": 2}})] == [2, 3]
        assert [u["id"] for u in users.read({"id": {"in": [1, 3]}})] == [1, 3]
        assert [u["id"] for u in users.read({"name": {"starts_with": "C"}})] == [1]
        assert [u["id"] for u in users.read({"email": {"contains": "bob"}})] == [3]
        assert [u["id"] for u in users.read({"name": {"is_null": True}})] == [3]
        assert [u["id"] for u in users.read({"name": None})] == [3]
        assert [u["id"] for u in users.read({"id": {"gt": 1, "lt": 3}})] == [2]

    def test_order_and_paging(self, users):
        """Test order_by, limit and offset."""
        assert [u["email"] for u in users.read(order_by="email")] == [
            "ada@example.com",
            "bob@example.com",
            "carol@example.com",
        ]
        assert [u["id"] for u in users.read(order_by=["-id"], limit=2)] == [3, 2]
        assert [u["id"] for u in users.read(limit=1, offset=1)] == [2]

    def test_unknown_filter_field(self, users):
        """Test filtering on an unknown field."""
        with pytest.raises(FieldNotFoundError):
            users.read({"age": 3})

    def test_invalid_filter_value(self, users):
        """Test filter values are type-checked."""
        with pytest.raises(ValidationError):
            users.read({"id": "one"})
        with pytest.raises(ValidationError):
            users.read({"id": {"between": [1, 2]}})
        with pytest.raises(ValidationError):
            users.read({"id": {"starts_with": "1"}})

    def test_invalid_paging(self, users):
        """Test negative limits are rejected."""
        with pytest.raises(ValidationError):
            users.read(limit=-1)

    def test_find_unique(self, users):
        """Test single-record lookups."""
        assert users.find_unique({"id": 2})["email"] == "ada@example.com"
        assert users.find_unique({"id": 99}) is None
        with pytest.raises(ValidationError):
            users.find_unique({"id": {"gte": 1}})

    def test_count(self, users):
        """Test counting with and without a filter."""
        assert users.count() == 3
        assert users.count({"name": {"is_null": False}}) == 2


class TestInclude:
    """Test loading related records."""

    def test_include_both_directions(self, blog_db):
        """Test to-many and to-one includes."""
        users = blog_db.entity("User")
        posts = blog_db.entity("Post")
        ada = users.create({"email": "ada@example.com"})
        bob = users.create({"email": "bob@example.com"})
        posts.create({"title": "One", "authorId": ada["id"]})
        posts.create({"title": "Two", "authorId": ada["id"]})

        loaded = users.read(include=["posts"])
        assert [p["title"] for p in loaded[0]["posts"]] == ["One", "Two"]
        assert loaded[1]["posts"] == []

        (post,) = posts.read({"title": "Two"}, include={"author": True})
        assert post["author"] == ada
        assert bob["id"] == 2

    def test_nested_include(self, blog_db):
        """Test includes nest through relations."""
        ada = blog_db.entity("User").create({"email": "ada@example.com"})
        blog_db.entity("Post").create({"title": "One", "authorId": ada["id"]})
        (post,) = blog_db.entity("Post").read(
            include={"author": {"include": {"posts": True}}}
        )
        assert [p["title"] for p in post["author"]["posts"]] == ["One"]

    def test_singular_include_is_copied(self, blog_db):
        """Test posts sharing an author get independent author dicts."""
        ada = blog_db.entity("User").create({"email": "ada@example.com"})
        posts = blog_db.entity("Post")
        posts.create({"title": "One", "authorId": ada["id"]})
        posts.create({"title": "Two", "authorId": ada["id"]})

        first, second = posts.read(include={"author": True})
        first["author"]["name"] = "Changed"
        assert second["author"] == ada

    def test_unknown_relation(self, blog_db):
        """Test including an unknown relation."""
        with pytest.raises(RelationNotFoundError):
            blog_db.entity("User").read(include={"comments": True})

    def test_malformed_include(self, blog_db):
        """Test a malformed include spec."""
        with pytest.raises(ValidationError):
            blog_db.entity("User").read(include={"posts": {"where": {}}})


class TestUpdate:
    """Test record updates."""

    def test_update(self, blog_db):
        """Test updating one record by identity."""
        users = blog_db.entity("User")
        users.create({"email": "ada@example.com"})
        updated = users.update({"id": 1}, {"name": "Ada"})
        assert updated == {"id": 1, "email": "ada@example.com", "name": "Ada"}

    def test_identity_cannot_change(self, blog_db):
        """Test the identity field is immutable."""
        users = blog_db.entity("User")
        users.create({"email": "ada@example.com"})
        with pytest.raises(ValidationError) as exc_info:
            users.update({"id": 1}, {"id": 2})
        assert "id" in exc_info.value.field_errors

    def test_not_found(self, blog_db):
        """Test updating a missing record."""
        with pytest.raises(NotFoundError) as exc_info:
            blog_db.entity("User").update({"id": 1}, {"name": "Ada"})
        assert exc_info.value.where == {"id": 1}

    def test_ambiguous_filter(self, blog_db):
        """Test an update must address a single record."""
        users = blog_db.entity("User")
        users.create({"email": "a@example.com"})
        users.create({"email": "b@example.com"})
        with pytest.raises(ValidationError):
            users.update({"name": None}, {"name": "Same"})

    def test_empty_payload(self, blog_db):
        """Test an update without data."""
        blog_db.entity("User").create({"email": "a@example.com"})
        with pytest.raises(ValidationError):
            blog_db.entity("User").update({"id": 1}, {})

    def test_unique_violation(self, blog_db):
        """Test an update colliding with a unique value."""
        users = blog_db.entity("User")
        users.create({"email": "a@example.com"})
        users.create({"email": "b@example.com"})
        with pytest.raises(ConstraintError):
            users.update({"id": 2}, {"email": "a@example.com"})

    def test_missing_reference(self, blog_db):
        """Test an update pointing a foreign key at a missing record."""
        blog_db.entity("User").create({"email": "a@example.com"})
        blog_db.entity("Post").create({"title": "x", "authorId": 1})
        with pytest.raises(ConstraintError):
            blog_db.entity("Post").update({"id": 1}, {"authorId": 5})


class TestDelete:
    """Test record deletion and referential actions."""

    def test_not_found(self, blog_db):
        """Test deleting a missing record."""
        with pytest.raises(NotFoundError):
            blog_db.entity("User").delete({"id": 1})

    def test_filter_required(self, blog_db):
        """Test delete refuses an empty filter."""
        with pytest.raises(ValidationError):
            blog_db.entity("User").delete({})

    def test_cascade_and_set_null(self, cascade_db):
        """Test CASCADE removes and SET_NULL detaches referencing records."""
        user = cascade_db.entity("User").create({"email": "ada@example.com"})
        cascade_db.entity("Post").create({"title": "x", "authorId": user["id"]})
        cascade_db.entity("Note").create({"body": "y", "ownerId": user["id"]})

        cascade_db.entity("User").delete({"id": user["id"]})

        assert cascade_db.entity("Post").count() == 0
        (note,) = cascade_db.entity("Note").read()
        assert note["ownerId"] is None


class TestExecute:
    """Test declarative query descriptions."""

    def test_execute_operations(self, blog_db):
        """Test each operation through execute()."""
        client = blog_db.client
        created = client.execute(
            QueryDescription(entity="User", operation="create", data={"email": "a@example.com"})
        )
        assert created["id"] == 1

        records = client.execute(
            {"entity": "User", "operation": "read", "where": {"id": 1}, "include": {"posts": True}}
        )
        assert records[0]["posts"] == []

        updated = client.execute(
            {"entity": "User", "operation": "update", "where": {"id": 1}, "data": {"name": "A"}}
        )
        assert updated["name"] == "A"

        deleted = client.execute({"entity": "User", "operation": "delete", "where": {"id": 1}})
        assert deleted["id"] == 1

    def test_malformed_description(self, blog_db):
        """Test an invalid description is a validation error."""
        with pytest.raises(ValidationError):
            blog_db.client.execute({"entity": "User", "operation": "upsert"})

    def test_getitem(self, blog_db):
        """Test client["Entity"] access."""
        assert blog_db.client["User"].name == "User"


class TestStoreFailures:
    """Test failures reported by the store surface as typed errors."""

    def test_unmigrated_store(self, memory_db):
        """Test the client refuses a store with no applied migration."""
        with pytest.raises(SchemaNotAppliedError) as exc_info:
            memory_db.entity("User")
        assert exc_info.value.applied_checksum is None
        assert "migrate()" in str(exc_info.value)

    def test_declared_schema_not_applied(self, blog_db):
        """Test the client refuses a declared schema that was never migrated."""
        applied = blog_db.history()[-1].checksum
        blog_db.load_schema(BLOG_SCHEMA.replace("  name  string?\n", "  name  string?\n  bio   text?\n"))
        with pytest.raises(SchemaNotAppliedError) as exc_info:
            blog_db.entity("User")
        assert exc_info.value.applied_checksum == applied
        assert exc_info.value.declared_checksum == blog_db.schema.checksum

    def test_missing_table(self, memory_db):
        """Test a query against a missing table is a store error."""
        users = Client(memory_db.connection, memory_db.schema)["User"]
        with pytest.raises(StoreError) as exc_info:
            users.read()
        error = exc_info.value
        assert error.entity_name == "User"
        assert error.operation == "read"
        assert not error.connection_lost
        assert error.to_dict()["error"] == "StoreError"

    def test_lost_connection(self, blog_db, monkeypatch):
        """Test a dropped connection is reported as such."""
        users = blog_db.entity("User")

        def drop(conn, statement, *args, **kwargs):
            raise OperationalError(
                str(statement),
                None,
                Exception("server closed the connection"),
                connection_invalidated=True,
            )

        monkeypatch.setattr(Connection, "execute", drop)
        with pytest.raises(StoreError) as exc_info:
            users.count()
        assert exc_info.value.connection_lost
        assert exc_info.value.operation == "count"

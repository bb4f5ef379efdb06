"""Integration tests for full StrataDB workflow."""

import pytest
from conftest import BLOG_SCHEMA, requires_postgresql

from stratadb import ApplyError, ApplyErrorKind, ConstraintError, StrataDB


class TestFullWorkflow:
    """End-to-end tests for StrataDB."""

    def test_complete_workflow(self, memory_db: StrataDB):
        """Test declaring, migrating, evolving and querying a schema."""
        # 1. Preview the first migration
        plan = memory_db.plan()
        assert [op.kind for op in plan.operations] == [
            "create_entity",
            "create_entity",
            "add_relation_constraint",
        ]

        # 2. Apply it
        record = memory_db.migrate("0001_init")
        assert record.version == 1

        # 3. Discover the schema
        schema = memory_db.describe()
        assert sorted(schema["entities"]) == ["Post", "User"]
        assert memory_db.describe_entity("Post").relations[0].target == "User"

        # 4. Write related records
        users = memory_db.entity("User")
        posts = memory_db.entity("Post")
        ada = users.create({"email": "ada@example.com", "name": "Ada"})
        for title in ("First", "Second"):
            posts.create({"title": title, "authorId": ada["id"]})

        # 5. Evolve the schema without losing data
        memory_db.load_schema(
            BLOG_SCHEMA.replace("  title    string\n", "  title    string\n  views    int @default(0)\n")
        )
        second = memory_db.migrate("0002_views")
        assert second.version == 2
        posts = memory_db.entity("Post")
        assert [p["views"] for p in posts.read()] == [0, 0]

        # 6. Read with includes
        (loaded,) = memory_db.entity("User").read(include={"posts": True})
        assert [p["title"] for p in loaded["posts"]] == ["First", "Second"]

        # 7. The ledger is consistent with the store
        assert [r.name for r in memory_db.verify()] == ["0001_init", "0002_views"]

    def test_reopen_uses_applied_schema(self, tmp_path):
        """Test a database opened without a schema uses the latest migration."""
        url = f"sqlite:///{tmp_path / 'blog.db'}"
        with StrataDB(url, schema=BLOG_SCHEMA) as db:
            db.migrate("0001_init")
            db.entity("User").create({"email": "ada@example.com"})

        with StrataDB(url) as db:
            assert db.schema.entity_names == ["Post", "User"]
            assert db.schema.version == 1
            assert db.entity("User").count() == 1
            assert db.plan().up_to_date


@requires_postgresql
class TestPostgreSQLWorkflow:
    """End-to-end tests against PostgreSQL."""

    def test_blog_scenario(self, pg_db: StrataDB):
        """Test the User/Post walkthrough on PostgreSQL."""
        pg_db.migrate("0001_init")
        users = pg_db.entity("User")
        posts = pg_db.entity("Post")

        user = users.create({"email": "ada@example.com"})
        assert user["id"] == 1
        posts.create({"title": "Hello", "authorId": 1})

        (loaded,) = users.read({"id": 1}, include={"posts": True})
        assert len(loaded["posts"]) == 1

        with pytest.raises(ConstraintError):
            users.delete({"id": 1})

        posts.delete({"id": 1})
        users.delete({"id": 1})
        assert users.count() == 0

    def test_alter_in_place(self, pg_db: StrataDB):
        """Test PostgreSQL alters columns without rebuilding tables."""
        pg_db.migrate("0001_init")
        pg_db.entity("User").create({"email": "ada@example.com"})

        pg_db.load_schema(BLOG_SCHEMA.replace("name  string?", "name  text?"))
        assert pg_db.migrate("0002_name_text", allow_destructive=True) is not None
        assert pg_db.entity("User").count() == 1
        pg_db.verify()

    def test_failed_migration_rolls_back(self, pg_db: StrataDB):
        """Test a failing migration leaves no trace."""
        pg_db.migrate("0001_init")
        users = pg_db.entity("User")
        users.create({"email": "a@example.com", "name": "Ada"})
        users.create({"email": "b@example.com", "name": "Ada"})

        pg_db.load_schema(BLOG_SCHEMA.replace("name  string?", "name  string? @unique"))
        with pytest.raises(ApplyError) as exc_info:
            pg_db.migrate("0002_unique_name", allow_destructive=True)
        assert exc_info.value.kind == ApplyErrorKind.CONSTRAINT_VIOLATION

        assert len(pg_db.history()) == 1
        pg_db.verify()

"""Tests that related records are loaded in batches, not per parent."""

from __future__ import annotations

from contextlib import contextmanager

import pytest
from sqlalchemy import event

from stratadb.exceptions import RelationNotFoundError


@contextmanager
def captured_selects(db):
    """Collect the SELECT statements sent to the store inside the block."""
    statements: list[str] = []

    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("SELECT"):
            statements.append(statement)

    engine = db.connection.engine
    event.listen(engine, "before_cursor_execute", before_cursor_execute)
    try:
        yield statements
    finally:
        event.remove(engine, "before_cursor_execute", before_cursor_execute)


@pytest.fixture
def populated(blog_db):
    users = blog_db.entity("User")
    posts = blog_db.entity("Post")
    for i in range(5):
        user = users.create({"email": f"user{i}@example.com"})
        for j in range(3):
            posts.create({"title": f"Post {i}.{j}", "authorId": user["id"]})
    return blog_db


class TestIncludeBatching:
    """Test the number of queries issued by includes."""

    def test_one_query_per_relation(self, populated):
        """Test five users and their fifteen posts take two queries."""
        with captured_selects(populated) as statements:
            users = populated.entity("User").read(include={"posts": True})
        assert len(users) == 5
        assert all(len(u["posts"]) == 3 for u in users)
        assert len(statements) == 2
        assert " IN " in statements[1]

    def test_nested_levels(self, populated):
        """Test each nesting level adds one query."""
        with captured_selects(populated) as statements:
            posts = populated.entity("Post").read(
                include={"author": {"include": {"posts": True}}}
            )
        assert len(posts) == 15
        assert all(len(p["author"]["posts"]) == 3 for p in posts)
        assert len(statements) == 3

    def test_no_parents_no_query(self, blog_db):
        """Test an empty result does not query the related entity."""
        user_client = blog_db.entity("User")
        with captured_selects(blog_db) as statements:
            users = user_client.read(include={"posts": True})
        assert users == []
        assert len(statements) == 1

    def test_identity_lookup_limit(self, populated):
        """Test identity lookups are limited to a single row."""
        with captured_selects(populated) as statements:
            populated.entity("User").read({"id": 2})
        assert "LIMIT" in statements[0].upper()

    def test_invalid_include_sends_nothing(self, populated):
        """Test validation happens before any query."""
        with captured_selects(populated) as statements:
            with pytest.raises(RelationNotFoundError):
                populated.entity("User").read(include={"comments": True})
        assert statements == []

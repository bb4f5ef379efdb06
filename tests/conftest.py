"""Shared test fixtures for StrataDB."""

import os
from collections.abc import Generator

import pytest

from stratadb import StrataDB
from stratadb.schema import SchemaSnapshot, parse

BLOG_SCHEMA = """
entity User {
  id    int     @id @default(autoincrement())
  email string  @unique
  name  string?
  posts Post[]
}

entity Post {
  id       int    @id @default(autoincrement())
  title    string
  authorId int
  author   User   @relation(fields: [authorId], references: [id])
}
"""


def _psycopg_available() -> bool:
    """Check if psycopg is installed."""
    try:
        import psycopg  # noqa: F401

        return True
    except ImportError:
        return False


def _postgresql_connectable(url: str) -> bool:
    """Check if we can connect to PostgreSQL."""
    if not _psycopg_available():
        return False
    try:
        from stratadb.core.connection import DatabaseConnection

        conn = DatabaseConnection(url)
        result = conn.test_connection()
        conn.close()
        return result
    except Exception:
        return False


# Skip marker for tests requiring PostgreSQL
requires_postgresql = pytest.mark.skipif(
    not _psycopg_available(),
    reason="psycopg not installed (install with: pip install stratadb[postgresql])",
)


@pytest.fixture
def postgresql_url() -> str:
    """Get PostgreSQL URL from environment or use default.

    Tests using this fixture should also use @requires_postgresql marker.
    """
    url = os.environ.get("TEST_DATABASE_URL")
    if not url:
        # Default to local PostgreSQL
        url = "postgresql://localhost/stratadb_test"

    if not _psycopg_available():
        pytest.skip("psycopg not installed")

    if not _postgresql_connectable(url):
        pytest.skip(f"Cannot connect to PostgreSQL at {url}")

    return url


@pytest.fixture
def blog_schema() -> SchemaSnapshot:
    """The User/Post schema used across tests."""
    return parse(BLOG_SCHEMA)


@pytest.fixture
def memory_db(blog_schema: SchemaSnapshot) -> Generator[StrataDB, None, None]:
    """Create a StrataDB instance with SQLite in-memory, declared but not migrated.

    This is faster for unit tests that don't need PostgreSQL-specific features.
    """
    database = StrataDB("sqlite:///:memory:", schema=blog_schema)
    yield database
    database.close()


@pytest.fixture
def blog_db(memory_db: StrataDB) -> StrataDB:
    """In-memory database migrated to the blog schema."""
    memory_db.migrate("0001_init")
    return memory_db


@pytest.fixture
def pg_db(postgresql_url: str, blog_schema: SchemaSnapshot) -> Generator[StrataDB, None, None]:
    """Create a StrataDB instance with PostgreSQL.

    Use this for integration tests that need PostgreSQL-specific features.
    The postgresql_url fixture handles skipping when PostgreSQL isn't available.
    """
    database = StrataDB(postgresql_url, schema=blog_schema)
    _drop_public_tables(database)
    yield database
    _drop_public_tables(database)
    database.close()


def _drop_public_tables(database: StrataDB) -> None:
    from sqlalchemy import text

    with database.connection.engine.begin() as conn:
        result = conn.execute(text("SELECT tablename FROM pg_tables WHERE schemaname = 'public'"))
        for (name,) in result.fetchall():
            conn.execute(text(f'DROP TABLE IF EXISTS "{name}" CASCADE'))


# Re-export for use in test files
__all__ = ["BLOG_SCHEMA", "requires_postgresql"]

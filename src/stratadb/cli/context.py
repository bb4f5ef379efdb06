"""CLI context management for database connections and shared state."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from stratadb import StrataDB

DEFAULT_DATABASE_URL = "sqlite:///./stratadb.db"
DEFAULT_SCHEMA_FILE = "schema.strata"


def get_database_url(url: str | None) -> str:
    """Resolve database URL from CLI arg, environment variable, or default.

    Priority:
    1. Explicit URL argument
    2. STRATADB_URL environment variable
    3. Default: sqlite:///./stratadb.db
    """
    if url:
        return url
    if env_url := os.getenv("STRATADB_URL"):
        return env_url
    return DEFAULT_DATABASE_URL


def get_schema_path(path: str | None) -> Path | None:
    """Resolve the schema file from CLI arg, environment variable, or default.

    The default ``./schema.strata`` is only used when it exists, so commands
    that work from the applied schema still run without one.
    """
    if path:
        return Path(path)
    if env_path := os.getenv("STRATADB_SCHEMA"):
        return Path(env_path)
    default = Path(DEFAULT_SCHEMA_FILE)
    return default if default.exists() else None


@dataclass
class CLIContext:
    """Shared context for CLI commands.

    Manages database connection lifecycle and output preferences.
    """

    database_url: str
    schema_path: Path | None
    echo: bool
    json_output: bool
    _db: StrataDB | None = field(default=None, init=False, repr=False)

    def get_db(self) -> StrataDB:
        """Get or create database connection (lazy initialization).

        The declared schema file, when there is one, is loaded and validated.

        Returns:
            StrataDB instance
        """
        if self._db is None:
            self._db = StrataDB(self.database_url, schema=self.schema_path, echo=self.echo)
        return self._db

    def close(self) -> None:
        """Close database connection if open."""
        if self._db is not None:
            self._db.close()
            self._db = None

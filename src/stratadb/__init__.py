"""StrataDB - Schema-Driven Relational Data Layer.

Declare entities and relations once; StrataDB validates the schema, migrates
the store to it transactionally, and gives you a typed CRUD client that loads
related records in batches.

Example:
    from stratadb import StrataDB

    schema = '''
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
    '''

    db = StrataDB("sqlite:///./app.db", schema=schema)
    db.migrate("0001_init")

    user = db.entity("User").create({"email": "ada@example.com"})
    db.entity("Post").create({"title": "Hello", "authorId": user["id"]})

    # One query for users, one for all their posts
    users = db.entity("User").read(include={"posts": True})
"""

from stratadb.client import Client, EntityClient, render_typed_client
from stratadb.core.connection import DatabaseConnection
from stratadb.core.types import (
    EntityInfo,
    EntitySpec,
    FieldInfo,
    FieldSpec,
    FieldType,
    MigrationRecord,
    OnDeleteAction,
    QueryDescription,
    RelationInfo,
    RelationKind,
    RelationSpec,
    SchemaSpec,
)
from stratadb.engine import StrataDB
from stratadb.exceptions import (
    ApplyError,
    ApplyErrorKind,
    ConstraintError,
    DestructiveChangeError,
    EntityNotFoundError,
    FieldNotFoundError,
    LedgerCorruptionError,
    NotFoundError,
    RelationNotFoundError,
    SchemaError,
    SchemaErrorKind,
    SchemaNotAppliedError,
    StoreError,
    StrataDBError,
    ValidationError,
)
from stratadb.migrations import (
    DDLGenerator,
    DestructiveChange,
    MigrationPlan,
    Migrator,
    destructive_changes,
    diff,
)
from stratadb.schema import SchemaSnapshot, load_schema, parse

__version__ = "0.1.0"

__all__ = [
    # Main classes
    "StrataDB",
    "DatabaseConnection",
    "Client",
    "EntityClient",
    "Migrator",
    "MigrationPlan",
    "DDLGenerator",
    # Schema
    "SchemaSnapshot",
    "parse",
    "load_schema",
    "diff",
    "destructive_changes",
    "DestructiveChange",
    "render_typed_client",
    # Types
    "FieldType",
    "FieldSpec",
    "EntitySpec",
    "RelationSpec",
    "SchemaSpec",
    "RelationKind",
    "OnDeleteAction",
    "QueryDescription",
    "FieldInfo",
    "EntityInfo",
    "RelationInfo",
    "MigrationRecord",
    # Exceptions
    "StrataDBError",
    "SchemaError",
    "SchemaErrorKind",
    "ApplyError",
    "ApplyErrorKind",
    "DestructiveChangeError",
    "LedgerCorruptionError",
    "ValidationError",
    "EntityNotFoundError",
    "FieldNotFoundError",
    "RelationNotFoundError",
    "ConstraintError",
    "NotFoundError",
    "StoreError",
    "SchemaNotAppliedError",
]

"""Query client for StrataDB."""

from stratadb.client.client import Client, EntityClient
from stratadb.client.codegen import render_typed_client
from stratadb.client.compiler import OPERATORS, QueryCompiler
from stratadb.client.loader import RelationLoader
from stratadb.client.validation import PayloadValidator, coerce_value

__all__ = [
    "OPERATORS",
    "Client",
    "EntityClient",
    "PayloadValidator",
    "QueryCompiler",
    "RelationLoader",
    "coerce_value",
    "render_typed_client",
]

"""Parser for the StrataDB schema declaration language.

The language declares entities, their fields and relations::

    entity User {
      id     int     @id @default(autoincrement())
      email  string  @unique
      name   string?
      posts  Post[]
    }

    entity Post {
      id       int    @id @default(autoincrement())
      authorId int
      author   User   @relation(fields: [authorId], references: [id])
    }

Parsing produces a ``SchemaSpec``; semantic validation happens in
``stratadb.schema.builder``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, NamedTuple

from stratadb.core.types import (
    DefaultKind,
    DefaultSpec,
    EntitySpec,
    FieldSpec,
    Generator,
    RelationSpec,
    SchemaSpec,
)
from stratadb.exceptions import SchemaError, SchemaErrorKind

TOKEN_SPEC = [
    ("COMMENT", r"//[^\n]*"),
    ("NEWLINE", r"\n"),
    ("SKIP", r"[ \t\r]+"),
    ("ATAT", r"@@"),
    ("AT", r"@"),
    ("STRING", r'"(?:[^"\\\n]|\\.)*"'),
    ("NUMBER", r"-?\d+(?:\.\d+)?"),
    ("IDENT", r"[A-Za-z_][A-Za-z0-9_]*"),
    ("PUNCT", r"[{}()\[\],:?]"),
    ("MISMATCH", r"."),
]
TOKEN_RE = re.compile("|".join(f"(?P<{name}>{pattern})" for name, pattern in TOKEN_SPEC))

ON_DELETE_NAMES = {
    "Cascade": "CASCADE",
    "Restrict": "RESTRICT",
    "NoAction": "NO_ACTION",
    "SetNull": "SET_NULL",
}


class Token(NamedTuple):
    kind: str
    value: str
    line: int


@dataclass(frozen=True)
class Call:
    """A function-style value such as ``now()``."""

    name: str


@dataclass(frozen=True)
class Ident:
    """A bare identifier value such as ``Cascade`` or a field reference."""

    name: str


def tokenize(source: str) -> list[Token]:
    """Split declaration text into tokens, dropping whitespace and comments."""
    tokens: list[Token] = []
    line = 1
    for match in TOKEN_RE.finditer(source):
        kind = match.lastgroup or "MISMATCH"
        value = match.group()
        if kind == "NEWLINE":
            tokens.append(Token(kind, value, line))
            line += 1
        elif kind in ("SKIP", "COMMENT"):
            continue
        elif kind == "MISMATCH":
            raise SchemaError(
                SchemaErrorKind.INVALID_SYNTAX, f"line {line}", f"Unexpected character {value!r}"
            )
        else:
            tokens.append(Token(kind, value, line))
    tokens.append(Token("EOF", "", line))
    return tokens


class _Parser:
    """Recursive-descent parser over the token stream."""

    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._pos = 0

    # --- token helpers ---

    @property
    def _current(self) -> Token:
        return self._tokens[self._pos]

    def _advance(self) -> Token:
        token = self._tokens[self._pos]
        if token.kind != "EOF":
            self._pos += 1
        return token

    def _error(self, detail: str, token: Token | None = None) -> SchemaError:
        token = token or self._current
        return SchemaError(SchemaErrorKind.INVALID_SYNTAX, f"line {token.line}", detail)

    def _at(self, kind: str, value: str | None = None) -> bool:
        token = self._current
        return token.kind == kind and (value is None or token.value == value)

    def _expect(self, kind: str, value: str | None = None) -> Token:
        if not self._at(kind, value):
            wanted = value or kind.lower()
            found = self._current.value or self._current.kind.lower()
            raise self._error(f"Expected {wanted!r}, found {found!r}")
        return self._advance()

    def _skip_newlines(self) -> None:
        while self._at("NEWLINE"):
            self._advance()

    # --- grammar ---

    def parse_schema(self) -> SchemaSpec:
        entities = []
        self._skip_newlines()
        while not self._at("EOF"):
            entities.append(self._parse_entity())
            self._skip_newlines()
        return SchemaSpec(entities=entities)

    def _parse_entity(self) -> EntitySpec:
        keyword = self._expect("IDENT")
        if keyword.value != "entity":
            raise self._error(f"Expected 'entity', found {keyword.value!r}", keyword)
        name = self._expect("IDENT")
        self._expect("PUNCT", "{")

        spec = EntitySpec(name=name.value, line=name.line)
        while True:
            self._skip_newlines()
            if self._at("PUNCT", "}"):
                self._advance()
                break
            if self._at("EOF"):
                raise self._error(f"Unterminated entity '{name.value}'")
            if self._at("ATAT"):
                self._parse_entity_attribute(spec)
            else:
                spec.fields.append(self._parse_field())
            if not (self._at("NEWLINE") or self._at("PUNCT", "}")):
                raise self._error("Expected end of line")
        return spec

    def _parse_entity_attribute(self, spec: EntitySpec) -> None:
        self._expect("ATAT")
        name = self._expect("IDENT")
        positional, _ = self._parse_arguments()
        columns = positional[0] if positional else None
        if not isinstance(columns, list) or not all(isinstance(c, Ident) for c in columns):
            raise self._error(f"@@{name.value} expects a list of field names", name)
        names = [c.name for c in columns]
        if name.value == "unique":
            spec.unique_together.append(names)
        elif name.value == "index":
            spec.indexes.append(names)
        else:
            raise SchemaError(
                SchemaErrorKind.INVALID_ATTRIBUTE,
                f"line {name.line}",
                f"Unknown entity attribute '@@{name.value}'. Supported: @@unique, @@index",
            )

    def _parse_field(self) -> FieldSpec:
        name = self._expect("IDENT")
        type_token = self._expect("IDENT")
        spec = FieldSpec(name=name.value, type=type_token.value, line=name.line)

        if self._at("PUNCT", "?"):
            self._advance()
            spec.optional = True
        elif self._at("PUNCT", "["):
            self._advance()
            self._expect("PUNCT", "]")
            spec.many = True

        while self._at("AT"):
            self._parse_field_attribute(spec)
        return spec

    def _parse_field_attribute(self, spec: FieldSpec) -> None:
        self._expect("AT")
        attr = self._expect("IDENT")
        positional: list[Any] = []
        named: dict[str, Any] = {}
        if self._at("PUNCT", "("):
            positional, named = self._parse_arguments()

        if attr.value == "id":
            spec.identity = True
        elif attr.value == "unique":
            spec.unique = True
        elif attr.value == "index":
            spec.indexed = True
        elif attr.value == "updatedAt":
            spec.default = DefaultSpec(kind=DefaultKind.ON_UPDATE, generator=Generator.NOW.value)
        elif attr.value == "default":
            if len(positional) != 1:
                raise self._error("@default expects exactly one value", attr)
            spec.default = self._default_spec(positional[0], attr)
        elif attr.value == "relation":
            spec.relation = self._relation_spec(positional, named, attr)
        else:
            raise SchemaError(
                SchemaErrorKind.INVALID_ATTRIBUTE,
                f"line {attr.line}",
                f"Unknown field attribute '@{attr.value}'. "
                "Supported: @id, @unique, @index, @default, @updatedAt, @relation",
            )

    def _default_spec(self, value: Any, token: Token) -> DefaultSpec:
        if isinstance(value, Call):
            if value.name not in Generator.values():
                raise SchemaError(
                    SchemaErrorKind.INVALID_DEFAULT,
                    f"line {token.line}",
                    f"Unknown default generator '{value.name}()'. "
                    f"Supported: {', '.join(g + '()' for g in Generator.values())}",
                )
            return DefaultSpec(kind=DefaultKind.ON_CREATE, generator=value.name)
        if isinstance(value, (Ident, list)):
            raise SchemaError(
                SchemaErrorKind.INVALID_DEFAULT,
                f"line {token.line}",
                "@default expects a literal or a generator call",
            )
        return DefaultSpec(kind=DefaultKind.STATIC, value=value)

    def _relation_spec(
        self, positional: list[Any], named: dict[str, Any], token: Token
    ) -> RelationSpec:
        def names(key: str) -> list[str]:
            value = named.get(key, [])
            if not isinstance(value, list) or not all(isinstance(v, Ident) for v in value):
                raise self._error(f"@relation {key} expects a list of field names", token)
            return [v.name for v in value]

        relation_name = named.get("name")
        if positional:
            relation_name = positional[0]
        if relation_name is not None and not isinstance(relation_name, str):
            raise self._error("@relation name must be a string", token)

        on_delete = named.get("onDelete", Ident("Restrict"))
        if not isinstance(on_delete, Ident) or on_delete.name not in ON_DELETE_NAMES:
            raise SchemaError(
                SchemaErrorKind.INVALID_ATTRIBUTE,
                f"line {token.line}",
                f"Invalid onDelete action. Supported: {', '.join(ON_DELETE_NAMES)}",
            )

        unknown = set(named) - {"fields", "references", "onDelete", "name"}
        if unknown:
            raise SchemaError(
                SchemaErrorKind.INVALID_ATTRIBUTE,
                f"line {token.line}",
                f"Unknown @relation argument(s): {', '.join(sorted(unknown))}",
            )

        return RelationSpec(
            fields=names("fields"),
            references=names("references"),
            on_delete=ON_DELETE_NAMES[on_delete.name],
            name=relation_name,
        )

    def _parse_arguments(self) -> tuple[list[Any], dict[str, Any]]:
        positional: list[Any] = []
        named: dict[str, Any] = {}
        self._expect("PUNCT", "(")
        while not self._at("PUNCT", ")"):
            lookahead = self._tokens[min(self._pos + 1, len(self._tokens) - 1)]
            if self._at("IDENT") and (lookahead.kind, lookahead.value) == ("PUNCT", ":"):
                key = self._advance().value
                self._advance()
                named[key] = self._parse_value()
            else:
                if named:
                    raise self._error("Positional argument after named argument")
                positional.append(self._parse_value())
            if not self._at("PUNCT", ","):
                break
            self._advance()
        self._expect("PUNCT", ")")
        return positional, named

    def _parse_value(self) -> Any:
        token = self._current
        if token.kind == "STRING":
            self._advance()
            return json.loads(token.value)
        if token.kind == "NUMBER":
            self._advance()
            return float(token.value) if "." in token.value else int(token.value)
        if token.kind == "IDENT":
            self._advance()
            if token.value in ("true", "false"):
                return token.value == "true"
            if self._at("PUNCT", "("):
                self._advance()
                self._expect("PUNCT", ")")
                return Call(token.value)
            return Ident(token.value)
        if token.kind == "PUNCT" and token.value == "[":
            self._advance()
            items = []
            while not self._at("PUNCT", "]"):
                items.append(self._parse_value())
                if not self._at("PUNCT", ","):
                    break
                self._advance()
            self._expect("PUNCT", "]")
            return items
        raise self._error(f"Unexpected {token.value or token.kind.lower()!r}")


def parse_declarations(source: str) -> SchemaSpec:
    """Parse declaration-language text into a ``SchemaSpec``.

    Raises:
        SchemaError: On malformed text or unknown attributes
    """
    return _Parser(tokenize(source)).parse_schema()

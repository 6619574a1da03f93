"""Concrete SQL dialect implementations for DB-API adapters."""

from __future__ import annotations

import re

from ...core.errors import TypeMismatchError

_ARRAY_TYPE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?( [A-Za-z_]+)*$")


class Dialect:
    """Base dialect that defines SQL quoting and placeholder behavior."""

    name: str = "generic"
    paramstyle: str = "named"
    quote_char: str = '"'

    def q(self, ident: str) -> str:
        """Quote one SQL identifier, qualified names included.

        `alias.col` is quoted per part and `*` (or `alias.*`) is kept as is.
        Embedded quote characters are doubled.
        """

        parts = ident.split(".")
        return ".".join(self._quote_part(part) for part in parts)

    def _quote_part(self, part: str) -> str:
        if part == "*":
            return part
        if not part:
            raise ValueError("SQL identifier must not be empty.")
        escaped = part.replace(self.quote_char, self.quote_char * 2)
        return f"{self.quote_char}{escaped}{self.quote_char}"

    def placeholder(self, key: str, position: int) -> str:
        """Return parameter placeholder for current param style.

        Args:
            key: Name hint used by the `named` style.
            position: 1-based position of the parameter in the statement.
        """

        if self.paramstyle == "named":
            return f":{key}"
        if self.paramstyle == "numeric":
            return f"${position}"
        if self.paramstyle == "qmark":
            return "?"
        if self.paramstyle == "format":
            return "%s"
        raise ValueError(f"Unsupported paramstyle: {self.paramstyle}")

    def array_cast(self, placeholder: str, array_type: str) -> str:
        """Return placeholder cast to an array of `array_type`."""

        if not _ARRAY_TYPE_RE.match(array_type):
            raise TypeMismatchError(f"Invalid array element type name: {array_type!r}")
        return f"{placeholder}::{array_type}[]"


class PostgresDialect(Dialect):
    """PostgreSQL dialect (native `$n` positional parameters).

    Use with psycopg raw cursors, which send `$n` to the server unchanged.
    """

    name = "postgres"
    paramstyle = "numeric"
    quote_char = '"'


class PostgresFormatDialect(PostgresDialect):
    """PostgreSQL dialect for psycopg client cursors (`%s` parameters)."""

    paramstyle = "format"

"""Database connection settings loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

DEFAULT_ENV_PREFIX = "PGBIND_PG_"


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection and pool settings for one PostgreSQL database."""

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = "password"
    dbname: str = "postgres"
    schema: str = "public"
    max_connections: int = 5
    acquire_timeout: float = 30.0
    sslmode: str = "prefer"

    def __post_init__(self) -> None:
        if self.max_connections < 1:
            raise ValueError("max_connections must be >= 1.")
        if self.acquire_timeout <= 0:
            raise ValueError("acquire_timeout must be > 0.")

    @classmethod
    def from_env(
        cls,
        prefix: str = DEFAULT_ENV_PREFIX,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "DatabaseSettings":
        """Read settings from `<prefix>*` variables, then libpq `PG*` ones.

        Args:
            prefix: Prefix of the library-specific variables.
            environ: Mapping to read instead of `os.environ`.
        """

        env = os.environ if environ is None else environ

        def get(name: str, libpq_name: Optional[str], default: str) -> str:
            value = env.get(f"{prefix}{name}")
            if value is None and libpq_name is not None:
                value = env.get(libpq_name)
            return default if value is None else value

        return cls(
            host=get("HOST", "PGHOST", cls.host),
            port=_parse_int("port", get("PORT", "PGPORT", str(cls.port))),
            user=get("USER", "PGUSER", cls.user),
            password=get("PASSWORD", "PGPASSWORD", cls.password),
            dbname=get("DATABASE", "PGDATABASE", cls.dbname),
            schema=get("SCHEMA", None, cls.schema),
            max_connections=_parse_int(
                "max_connections",
                get("MAX_CONNECTIONS", None, str(cls.max_connections)),
            ),
            acquire_timeout=_parse_float(
                "acquire_timeout",
                get("ACQUIRE_TIMEOUT", None, str(cls.acquire_timeout)),
            ),
            sslmode=get("SSLMODE", "PGSSLMODE", cls.sslmode),
        )

    def connect_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for `psycopg.connect`."""

        kwargs: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "dbname": self.dbname,
            "sslmode": self.sslmode,
        }
        if self.schema != "public":
            kwargs["options"] = f"-c search_path={self.schema}"
        return kwargs

    def describe(self) -> str:
        """Return `host:port/dbname` for log and error messages."""

        return f"{self.host}:{self.port}/{self.dbname}"


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from None


def _parse_float(name: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}.") from None

"""Public port exports for concrete adapter implementations."""

from .db_api import (
    AsyncDatabase,
    Database,
    Dialect,
    PoolConnector,
    PostgresDialect,
    PostgresFormatDialect,
    connect,
    connect_async,
)

__all__ = [
    "Database",
    "AsyncDatabase",
    "Dialect",
    "PostgresDialect",
    "PostgresFormatDialect",
    "PoolConnector",
    "connect",
    "connect_async",
]

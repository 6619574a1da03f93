"""DB-API adapter and dialect exports."""

from .async_database import AsyncDatabase
from .connect import connect, connect_async
from .database import Database
from .dialects import Dialect, PostgresDialect, PostgresFormatDialect
from .pool_connector import PoolConnector

__all__ = [
    "AsyncDatabase",
    "Database",
    "Dialect",
    "PoolConnector",
    "PostgresDialect",
    "PostgresFormatDialect",
    "connect",
    "connect_async",
]

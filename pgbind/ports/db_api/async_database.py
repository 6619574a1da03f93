"""Async DB adapter implementation for the core async database port."""

from __future__ import annotations

import contextlib
import inspect
import logging
from typing import Any

from ...core._async_utils import _close_cursor, _maybe_await
from ...core.errors import ConnectionError, PgBindError
from ...core.types import MaybeRow, QueryParams, Rows
from .database import _param_count, _raise_translated, row_to_mapping
from .dialects import Dialect
from .pool_connector import PoolConnector

logger = logging.getLogger(__name__)


class AsyncDatabase:
    """Async database wrapper that normalizes execute, errors, and row mapping."""

    def __init__(self, conn: Any | PoolConnector, dialect: Dialect):
        """Create async database adapter.

        Args:
            conn: Async (or sync) DB connection object or `PoolConnector`.
            dialect: Concrete SQL dialect instance.
        """

        self._pool: PoolConnector | None = None
        self._closed = False
        if isinstance(conn, PoolConnector):
            self._pool = conn
            self.conn = conn.acquire()
        else:
            self.conn = conn
        self.dialect = dialect

    def _require_open_connection(self) -> Any:
        if self._closed:
            raise ConnectionError("connection is closed")
        return self.conn

    @contextlib.asynccontextmanager
    async def transaction(self):
        """Provide async commit/rollback transaction scope."""

        conn = self._require_open_connection()
        try:
            yield
        except BaseException:
            await _maybe_await(conn.rollback())
            raise
        else:
            await _maybe_await(conn.commit())

    async def execute(self, sql: str, params: QueryParams = None) -> Any:
        """Execute SQL with optional parameters and return cursor."""

        conn = self._require_open_connection()
        logger.debug("Executing with %d bound parameters: %s", _param_count(params), sql)
        try:
            cur = await _maybe_await(conn.cursor())
        except PgBindError:
            raise
        except Exception as exc:
            _raise_translated(exc, sql)
        try:
            if params is None:
                await _maybe_await(cur.execute(sql))
            else:
                await _maybe_await(cur.execute(sql, params))
        except BaseException as exc:
            await _close_cursor(cur)
            if isinstance(exc, Exception) and not isinstance(exc, PgBindError):
                _raise_translated(exc, sql)
            raise
        return cur

    async def fetchone(self, sql: str, params: QueryParams = None) -> MaybeRow:
        """Execute query and return one normalized row mapping."""

        cur = await self.execute(sql, params)
        try:
            row = await self._fetch(cur, "fetchone", sql)
            if row is None:
                return None
            return row_to_mapping(cur, row)
        finally:
            await _close_cursor(cur)

    async def fetchall(self, sql: str, params: QueryParams = None) -> Rows:
        """Execute query and return all rows as normalized mappings."""

        cur = await self.execute(sql, params)
        try:
            rows = await self._fetch(cur, "fetchall", sql)
            return [row_to_mapping(cur, r) for r in rows]
        finally:
            await _close_cursor(cur)

    async def _fetch(self, cur: Any, method: str, sql: str) -> Any:
        try:
            return await _maybe_await(getattr(cur, method)())
        except PgBindError:
            raise
        except Exception as exc:
            _raise_translated(exc, sql)

    def close(self, *, close_pool: bool = False) -> None:
        """Release/close underlying connection.

        Args:
            close_pool: Also close pooled connector when this adapter uses `PoolConnector`.
        """

        if self._closed:
            if close_pool and self._pool is not None:
                self._pool.close()
            return
        self._closed = True
        if self._pool is not None:
            self._pool.release(self.conn)
            if close_pool:
                self._pool.close()
            return
        close = getattr(self.conn, "close", None)
        if callable(close):
            close_method = getattr(type(self.conn), "close", None)
            if inspect.iscoroutinefunction(close_method):
                return
            close()

    async def aclose(self, *, close_pool: bool = False) -> None:
        """Async release/close underlying connection.

        Args:
            close_pool: Also close pooled connector when this adapter uses `PoolConnector`.
        """

        if self._closed:
            if close_pool and self._pool is not None:
                self._pool.close()
            return
        self._closed = True
        if self._pool is not None:
            self._pool.release(self.conn)
            if close_pool:
                self._pool.close()
            return
        close = getattr(self.conn, "close", None)
        if callable(close):
            await _maybe_await(close())

    async def __aenter__(self) -> AsyncDatabase:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.aclose()

"""DB-API adapter implementation for the core database port."""

from __future__ import annotations

import contextlib
import logging
from typing import Any, Mapping, NoReturn

from ...core.errors import ConnectionError, PgBindError, translate_driver_error
from ...core.types import MaybeRow, QueryParams, RowMapping, Rows
from .dialects import Dialect
from .pool_connector import PoolConnector

logger = logging.getLogger(__name__)


def _param_count(params: QueryParams) -> int:
    return 0 if params is None else len(params)


def _raise_translated(exc: Exception, sql: str) -> NoReturn:
    error = translate_driver_error(exc)
    logger.warning(
        "Query failed with %s (sqlstate=%s): %s",
        type(error).__name__,
        getattr(error, "sqlstate", None),
        sql,
    )
    raise error from exc


def _close_cursor(cursor: Any) -> None:
    close = getattr(cursor, "close", None)
    if callable(close):
        close()


def row_to_mapping(cursor: Any, row: Any) -> RowMapping:
    """Normalize row object to mapping.

    Supports mapping rows directly and tuple/list rows via
    `cursor.description`.
    """

    if isinstance(row, Mapping):
        return row

    if isinstance(row, (tuple, list)):
        desc = getattr(cursor, "description", None)
        if not desc:
            raise TypeError(
                "Cursor has no description; cannot map tuple rows to dict."
            )
        cols = [d[0] for d in desc]
        return dict(zip(cols, row, strict=True))

    try:
        return dict(row)
    except (TypeError, ValueError):
        pass

    raise TypeError(f"Unsupported row type: {type(row)}")


class Database:
    """Thin DB-API wrapper that normalizes execute, errors, and row mapping."""

    def __init__(self, conn: Any | PoolConnector, dialect: Dialect):
        """Create database adapter.

        Args:
            conn: DB-API connection object or `PoolConnector`.
            dialect: Concrete SQL dialect instance.
        """

        self._pool: PoolConnector | None = None
        self._closed = False
        self.conn: Any | None
        if isinstance(conn, PoolConnector):
            self._pool = conn
            self.conn = conn.acquire()
        else:
            self.conn = conn
        self.dialect = dialect

    def _require_open_connection(self) -> Any:
        if self._closed or self.conn is None:
            raise ConnectionError("connection is closed")
        return self.conn

    @contextlib.contextmanager
    def transaction(self):
        """Provide commit/rollback transaction scope."""

        conn = self._require_open_connection()
        try:
            yield
            conn.commit()
        except BaseException:
            conn.rollback()
            raise

    def execute(self, sql: str, params: QueryParams = None) -> Any:
        """Execute SQL with optional parameters and return cursor.

        Driver failures are raised as `ConnectionError`, `TypeMismatchError`
        or `QueryExecutionError`, chained to the driver exception.
        """

        conn = self._require_open_connection()
        logger.debug("Executing with %d bound parameters: %s", _param_count(params), sql)
        try:
            cur = conn.cursor()
        except PgBindError:
            raise
        except Exception as exc:
            _raise_translated(exc, sql)
        try:
            if params is None:
                cur.execute(sql)
            else:
                cur.execute(sql, params)
        except BaseException as exc:
            _close_cursor(cur)
            if isinstance(exc, Exception) and not isinstance(exc, PgBindError):
                _raise_translated(exc, sql)
            raise
        return cur

    def fetchone(self, sql: str, params: QueryParams = None) -> MaybeRow:
        """Execute query and return one normalized row mapping."""

        cur = self.execute(sql, params)
        try:
            row = self._fetch(cur, "fetchone", sql)
            if row is None:
                return None
            return row_to_mapping(cur, row)
        finally:
            _close_cursor(cur)

    def fetchall(self, sql: str, params: QueryParams = None) -> Rows:
        """Execute query and return all rows as normalized mappings."""

        cur = self.execute(sql, params)
        try:
            rows = self._fetch(cur, "fetchall", sql)
            return [row_to_mapping(cur, r) for r in rows]
        finally:
            _close_cursor(cur)

    def _fetch(self, cur: Any, method: str, sql: str) -> Any:
        try:
            return getattr(cur, method)()
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
        conn = self.conn
        self._closed = True
        self.conn = None
        if conn is None:
            if close_pool and self._pool is not None:
                self._pool.close()
            return
        if self._pool is not None:
            self._pool.release(conn)
            if close_pool:
                self._pool.close()
            return
        close = getattr(conn, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

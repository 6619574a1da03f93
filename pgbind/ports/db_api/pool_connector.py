"""Simple thread-safe DB-API connection pool."""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from collections.abc import Callable, Iterator
from typing import Any, Optional

from ...core.errors import ConnectionError, translate_driver_error
from ...core.settings import DatabaseSettings

logger = logging.getLogger(__name__)

_TRANSACTION_GUARDS = ("rollback", "raise", "ignore", "discard")
_PSYCOPG_RESET_STATEMENTS = ("RESET ALL", "UNLISTEN *", "DEALLOCATE ALL")


class PoolConnector:
    """Small fixed-size pool for DB-API connection objects.

    Connections are created lazily up to `max_size`. A borrowed connection
    left inside a transaction is handled on release according to
    `transaction_guard`:

    - `rollback`: roll back and keep the connection.
    - `raise`: refuse the release with `RuntimeError`.
    - `ignore`: keep the connection as is.
    - `discard`: roll back and close the connection.
    """

    def __init__(
        self,
        connect: Callable[..., Any],
        *connect_args: Any,
        max_size: int = 5,
        acquire_timeout: Optional[float] = None,
        transaction_guard: str = "rollback",
        reset_session: bool = True,
        session_reset_hook: Callable[[Any], None] | None = None,
        **connect_kwargs: Any,
    ):
        if max_size < 1:
            raise ValueError("max_size must be >= 1.")
        if transaction_guard not in _TRANSACTION_GUARDS:
            raise ValueError(
                "transaction_guard must be one of: "
                "'rollback', 'raise', 'ignore', 'discard'."
            )

        self._connect = connect
        self._connect_args = connect_args
        self._connect_kwargs = connect_kwargs
        self._max_size = max_size
        self._acquire_timeout = acquire_timeout
        self._transaction_guard = transaction_guard
        self._reset_session = reset_session
        self._session_reset_hook = session_reset_hook

        self._idle: list[Any] = []
        self._borrowed_ids: set[int] = set()
        self._known_ids: set[int] = set()
        self._creating = 0
        self._closed = False
        self._condition = threading.Condition()

    @classmethod
    def from_settings(
        cls,
        settings: DatabaseSettings,
        connect: Callable[..., Any],
        **options: Any,
    ) -> PoolConnector:
        """Build a pool sized and timed from `DatabaseSettings`.

        Args:
            settings: Connection and pool settings.
            connect: Callable taking `settings` and returning one connection,
                for example `pgbind.ports.db_api.connect`.
            **options: Extra `PoolConnector` options.
        """

        return cls(
            connect,
            settings,
            max_size=settings.max_connections,
            acquire_timeout=settings.acquire_timeout,
            **options,
        )

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def size(self) -> int:
        """Number of open connections owned by the pool."""

        with self._condition:
            return len(self._known_ids)

    def acquire(self, timeout: float | None = None) -> Any:
        """Borrow one connection from the pool.

        Raises:
            ConnectionError: The pool is closed, no connection became free
                before the timeout, or a new connection could not be opened.
        """

        if timeout is None:
            timeout = self._acquire_timeout

        with self._condition:
            deadline = None if timeout is None else (time.monotonic() + timeout)
            while True:
                self._ensure_open()
                if self._idle:
                    conn = self._idle.pop()
                    self._borrowed_ids.add(id(conn))
                    return conn

                if len(self._known_ids) + self._creating < self._max_size:
                    self._creating += 1
                    break

                if deadline is None:
                    self._condition.wait()
                    continue

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ConnectionError("Timed out waiting for a pooled DB connection.")
                self._condition.wait(remaining)

        return self._open_connection()

    def _open_connection(self) -> Any:
        try:
            conn = self._connect(*self._connect_args, **self._connect_kwargs)
        except Exception as exc:
            with self._condition:
                self._creating -= 1
                self._condition.notify()
            raise translate_driver_error(exc) from exc
        except BaseException:
            with self._condition:
                self._creating -= 1
                self._condition.notify()
            raise

        with self._condition:
            self._creating -= 1
            closed = self._closed
            if not closed:
                self._known_ids.add(id(conn))
                self._borrowed_ids.add(id(conn))
            else:
                self._condition.notify()
        if closed:
            self._close_connection(conn)
            raise ConnectionError("PoolConnector is closed.")
        logger.debug("Opened pooled connection (%d/%d)", self.size, self._max_size)
        return conn

    def release(self, conn: Any) -> None:
        """Return one borrowed connection to the pool."""

        conn_id = id(conn)
        with self._condition:
            if conn_id not in self._borrowed_ids:
                raise ValueError("Connection was not acquired from this pool or already released.")
            self._borrowed_ids.remove(conn_id)

        cleanup_error: Exception | None = None
        should_close = False
        try:
            in_transaction = self._connection_in_transaction(conn)
            if in_transaction:
                self._apply_transaction_guard(conn)
                should_close = self._transaction_guard == "discard"
            skip_reset = should_close or (in_transaction and self._transaction_guard == "ignore")
            if self._reset_session and not skip_reset:
                self._reset_connection_session(conn)
        except Exception as exc:
            cleanup_error = exc
            should_close = True

        with self._condition:
            if self._closed or should_close:
                self._known_ids.discard(conn_id)
                should_close = True
            else:
                self._idle.append(conn)
            self._condition.notify()

        if should_close:
            self._close_connection(conn)
        if cleanup_error is not None:
            raise RuntimeError(
                "Failed to clean pooled DB connection before returning it."
            ) from cleanup_error

    @contextlib.contextmanager
    def connection(self, timeout: float | None = None) -> Iterator[Any]:
        """Borrow and auto-release one connection with a context manager."""

        conn = self.acquire(timeout=timeout)
        try:
            yield conn
        finally:
            self.release(conn)

    def close(self) -> None:
        """Close all idle pooled connections and prevent future acquire."""

        with self._condition:
            if self._closed:
                return
            self._closed = True
            idle = list(self._idle)
            self._idle.clear()
            for conn in idle:
                self._known_ids.discard(id(conn))
            self._condition.notify_all()

        for conn in idle:
            self._close_connection(conn)

    def _ensure_open(self) -> None:
        if self._closed:
            raise ConnectionError("PoolConnector is closed.")

    def _close_connection(self, conn: Any) -> None:
        close = getattr(conn, "close", None)
        if callable(close):
            close()

    def _connection_in_transaction(self, conn: Any) -> bool:
        in_tx = getattr(conn, "in_transaction", None)
        if isinstance(in_tx, bool):
            return in_tx

        info = getattr(conn, "info", None)
        tx_status = getattr(info, "transaction_status", None)
        if tx_status is not None:
            # psycopg: TransactionStatus.IDLE == 0.
            return tx_status != 0

        return False

    def _apply_transaction_guard(self, conn: Any) -> None:
        if self._transaction_guard == "ignore":
            return
        if self._transaction_guard == "raise":
            raise RuntimeError(
                "Connection has an active transaction during release(). "
                "Commit/rollback before returning it to pool."
            )
        rollback = getattr(conn, "rollback", None)
        if not callable(rollback):
            raise RuntimeError("Connection has no rollback() for transaction cleanup.")
        rollback()

    def _reset_connection_session(self, conn: Any) -> None:
        if self._session_reset_hook is not None:
            self._session_reset_hook(conn)
            return

        if "psycopg" not in type(conn).__module__.lower():
            return

        cur = conn.cursor()
        try:
            for sql in _PSYCOPG_RESET_STATEMENTS:
                cur.execute(sql)
        finally:
            close = getattr(cur, "close", None)
            if callable(close):
                close()

        commit = getattr(conn, "commit", None)
        if callable(commit):
            commit()

from __future__ import annotations

import builtins
import sqlite3
import threading
import time
import unittest

from pgbind.core.errors import (
    ConnectionError,
    QueryExecutionError,
    TypeMismatchError,
)
from pgbind.core.settings import DatabaseSettings
from pgbind.ports.db_api.async_database import AsyncDatabase
from pgbind.ports.db_api.database import Database, row_to_mapping
from pgbind.ports.db_api.dialects import Dialect, PostgresDialect, PostgresFormatDialect
from pgbind.ports.db_api.pool_connector import PoolConnector
from tests.db_test_helpers import (
    AsyncRecordingConnection,
    DataError,
    OperationalError,
    ProgrammingError,
    RecordingConnection,
)


class _DummyCursor:
    def __init__(self, description=None):
        self.description = description


class _QmarkDialect(Dialect):
    paramstyle = "qmark"


class _InvalidDialect(Dialect):
    paramstyle = "invalid"


class _FakeCleanupCursor:
    def __init__(self, conn):
        self._conn = conn
        self.closed = False

    def execute(self, sql, _params=None):  # noqa: ANN001,ANN201
        self._conn.executed_sql.append(sql)
        return None

    def close(self) -> None:
        self.closed = True


class _FakeBaseConn:
    def __init__(self, *, in_transaction: bool = False):
        self.in_transaction = in_transaction
        self.executed_sql: list[str] = []
        self.rollback_calls = 0
        self.commit_calls = 0
        self.close_calls = 0

    def cursor(self) -> _FakeCleanupCursor:
        return _FakeCleanupCursor(self)

    def rollback(self) -> None:
        self.rollback_calls += 1
        self.in_transaction = False

    def commit(self) -> None:
        self.commit_calls += 1
        self.in_transaction = False

    def close(self) -> None:
        self.close_calls += 1


class _FakePgConn(_FakeBaseConn):
    __module__ = "psycopg"


class _FakePsycopgInfo:
    def __init__(self, transaction_status: int):
        self.transaction_status = transaction_status


class _FakePsycopgInfoConn(_FakeBaseConn):
    __module__ = "psycopg"

    def __init__(self, *, transaction_status: int):
        super().__init__(in_transaction=False)
        self.in_transaction = None
        self.info = _FakePsycopgInfo(transaction_status)


class DialectTests(unittest.TestCase):
    def test_placeholder_per_paramstyle(self) -> None:
        self.assertEqual(Dialect().placeholder("id_1", 1), ":id_1")
        self.assertEqual(PostgresDialect().placeholder("id", 3), "$3")
        self.assertEqual(PostgresFormatDialect().placeholder("id", 3), "%s")
        self.assertEqual(_QmarkDialect().placeholder("id", 3), "?")

    def test_invalid_paramstyle_raises(self) -> None:
        with self.assertRaises(ValueError):
            _InvalidDialect().placeholder("x", 1)

    def test_postgres_dialect_properties(self) -> None:
        dialect = PostgresDialect()
        self.assertEqual(dialect.name, "postgres")
        self.assertEqual(dialect.paramstyle, "numeric")
        self.assertEqual(PostgresFormatDialect().name, "postgres")

    def test_identifier_quoting(self) -> None:
        dialect = PostgresDialect()
        self.assertEqual(dialect.q("users"), '"users"')
        self.assertEqual(dialect.q("u.id"), '"u"."id"')
        self.assertEqual(dialect.q("*"), "*")
        self.assertEqual(dialect.q("u.*"), '"u".*')
        self.assertEqual(dialect.q('a"b'), '"a""b"')
        with self.assertRaises(ValueError):
            dialect.q("u.")

    def test_array_cast(self) -> None:
        dialect = PostgresDialect()
        self.assertEqual(dialect.array_cast("$1", "int8"), "$1::int8[]")
        self.assertEqual(dialect.array_cast("$1", "public.mood"), "$1::public.mood[]")
        with self.assertRaises(TypeMismatchError):
            dialect.array_cast("$1", "int8[]")
        with self.assertRaises(TypeMismatchError):
            dialect.array_cast("$1", "int8); DELETE FROM users; --")


class RowMappingTests(unittest.TestCase):
    def test_tuple_rows_use_cursor_description(self) -> None:
        cursor = _DummyCursor(description=[("id",), ("name",)])
        self.assertEqual(row_to_mapping(cursor, (1, "a")), {"id": 1, "name": "a"})

    def test_tuple_without_description_raises(self) -> None:
        with self.assertRaises(TypeError):
            row_to_mapping(_DummyCursor(description=None), (1,))

    def test_mapping_rows_and_unsupported_type(self) -> None:
        row = {"id": 1}
        self.assertIs(row_to_mapping(_DummyCursor(), row), row)
        self.assertEqual(row_to_mapping(_DummyCursor(), {("id", 1)})["id"], 1)
        with self.assertRaises(TypeError):
            row_to_mapping(_DummyCursor(), 12345)


class DatabaseAdapterTests(unittest.TestCase):
    def test_execute_fetchone_fetchall(self) -> None:
        conn = sqlite3.connect(":memory:")
        db = Database(conn, Dialect())
        db.execute('CREATE TABLE "t" ("id" INTEGER, "name" TEXT);')
        db.execute('INSERT INTO "t" ("id", "name") VALUES (:id, :name);', {"id": 1, "name": "a"})
        db.execute('INSERT INTO "t" ("id", "name") VALUES (:id, :name);', {"id": 2, "name": "b"})

        row = db.fetchone('SELECT * FROM "t" WHERE "id" = :id;', {"id": 1})
        rows = db.fetchall('SELECT * FROM "t" ORDER BY "id" ASC;')

        self.assertEqual(row["name"], "a")
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[1]["name"], "b")
        conn.close()

    def test_row_factory_mapping_is_supported(self) -> None:
        conn = sqlite3.connect(":memory:")
        conn.row_factory = sqlite3.Row
        db = Database(conn, Dialect())
        db.execute('CREATE TABLE "t" ("id" INTEGER);')
        db.execute('INSERT INTO "t" ("id") VALUES (1);')
        row = db.fetchone('SELECT * FROM "t";')
        self.assertEqual(row["id"], 1)
        conn.close()

    def test_transaction_rolls_back_on_error(self) -> None:
        conn = sqlite3.connect(":memory:")
        db = Database(conn, Dialect())
        db.execute('CREATE TABLE "t" ("id" INTEGER);')

        with self.assertRaises(RuntimeError):
            with db.transaction():
                db.execute('INSERT INTO "t" ("id") VALUES (1);')
                raise RuntimeError("boom")

        count = db.fetchone('SELECT COUNT(*) AS "count" FROM "t";')
        self.assertEqual(count["count"], 0)
        conn.close()

    def test_transaction_commits_on_success(self) -> None:
        conn = RecordingConnection()
        db = Database(conn, PostgresDialect())
        with db.transaction():
            db.execute("SELECT 1")
        self.assertEqual(conn.commit_calls, 1)
        self.assertEqual(conn.rollback_calls, 0)

    def test_execute_logs_statement_and_parameter_count(self) -> None:
        conn = RecordingConnection()
        db = Database(conn, PostgresDialect())
        with self.assertLogs("pgbind.ports.db_api.database", level="DEBUG") as logs:
            db.fetchall('SELECT * FROM "users" WHERE "id" = ANY($1)', [[1, 2, 3]])
        self.assertIn("1 bound parameters", logs.output[0])
        self.assertEqual(conn.executed, [('SELECT * FROM "users" WHERE "id" = ANY($1)', [[1, 2, 3]])])

    def test_driver_errors_are_translated_by_sqlstate(self) -> None:
        cases = [
            (OperationalError("server closed the connection", sqlstate="08006"), ConnectionError),
            (DataError("invalid input syntax for type bigint", sqlstate="22P02"), TypeMismatchError),
            (ProgrammingError("operator does not exist", sqlstate="42883"), TypeMismatchError),
            (ProgrammingError("relation does not exist", sqlstate="42P01"), QueryExecutionError),
            (OperationalError("canceling statement", sqlstate="57014"), ConnectionError),
        ]
        for driver_error, expected in cases:
            with self.subTest(sqlstate=driver_error.sqlstate):
                conn = RecordingConnection(error=driver_error)
                db = Database(conn, PostgresDialect())
                with self.assertLogs("pgbind.ports.db_api.database", level="WARNING"):
                    with self.assertRaises(expected) as ctx:
                        db.fetchall("SELECT 1")
                self.assertIs(ctx.exception.__cause__, driver_error)
                self.assertEqual(ctx.exception.sqlstate, driver_error.sqlstate)
                self.assertTrue(conn.cursors[0].closed)

    def test_driver_errors_without_sqlstate_use_exception_class(self) -> None:
        cases = [
            (OperationalError("connection refused"), ConnectionError),
            (DataError("value out of range"), TypeMismatchError),
            (ProgrammingError("syntax error"), QueryExecutionError),
            (builtins.ConnectionResetError("reset by peer"), ConnectionError),
        ]
        for driver_error, expected in cases:
            with self.subTest(error=type(driver_error).__name__):
                db = Database(RecordingConnection(error=driver_error), PostgresDialect())
                with self.assertLogs("pgbind.ports.db_api.database", level="WARNING"):
                    with self.assertRaises(expected) as ctx:
                        db.execute("SELECT 1")
                self.assertIs(ctx.exception.__cause__, driver_error)

    def test_fetch_methods_close_their_cursors(self) -> None:
        conn = RecordingConnection(rows=[(1, "a")])
        db = Database(conn, PostgresDialect())

        db.fetchone("SELECT 1")
        db.fetchall("SELECT 1")

        self.assertEqual(len(conn.cursors), 2)
        self.assertTrue(all(cur.closed for cur in conn.cursors))

    def test_failed_fetch_is_translated_and_closes_cursor(self) -> None:
        driver_error = DataError("numeric field overflow", sqlstate="22003")
        conn = RecordingConnection(fetch_error=driver_error)
        db = Database(conn, PostgresDialect())

        for method in (db.fetchone, db.fetchall):
            with self.subTest(method=method.__name__):
                with self.assertLogs("pgbind.ports.db_api.database", level="WARNING"):
                    with self.assertRaises(TypeMismatchError) as ctx:
                        method("SELECT 1")
                self.assertIs(ctx.exception.__cause__, driver_error)
        self.assertTrue(all(cur.closed for cur in conn.cursors))

    def test_row_mapping_error_closes_cursor(self) -> None:
        conn = RecordingConnection(rows=[(1, "a", "extra")])
        db = Database(conn, PostgresDialect())
        with self.assertRaises(ValueError):
            db.fetchall("SELECT 1")
        self.assertTrue(conn.cursors[0].closed)

    def test_closed_database_raises_connection_error(self) -> None:
        conn = RecordingConnection()
        db = Database(conn, PostgresDialect())
        db.close()
        self.assertEqual(conn.close_calls, 1)
        with self.assertRaises(ConnectionError):
            db.execute("SELECT 1")
        with self.assertRaises(builtins.ConnectionError):
            db.fetchall("SELECT 1")
        self.assertEqual(conn.executed, [])

    def test_context_manager_closes_connection(self) -> None:
        conn = RecordingConnection()
        with Database(conn, PostgresDialect()) as db:
            db.execute("SELECT 1")
        self.assertEqual(conn.close_calls, 1)

    def test_database_can_use_pool_connector(self) -> None:
        pool = PoolConnector(sqlite3.connect, ":memory:", max_size=1)
        db = Database(pool, Dialect())
        try:
            db.execute('CREATE TABLE "t" ("id" INTEGER, "name" TEXT);')
            db.execute(
                'INSERT INTO "t" ("id", "name") VALUES (:id, :name);',
                {"id": 1, "name": "pool"},
            )
            row = db.fetchone('SELECT * FROM "t" WHERE "id" = :id;', {"id": 1})
            self.assertEqual(row["name"], "pool")
        finally:
            db.close()
            pool.close()

    def test_database_close_returns_connection_to_pool(self) -> None:
        pool = PoolConnector(sqlite3.connect, ":memory:", max_size=1)
        db1 = Database(pool, Dialect())
        conn1 = db1.conn
        db1.close()
        with self.assertRaises(ConnectionError):
            db1.execute("SELECT 1;")

        db2 = Database(pool, Dialect())
        try:
            self.assertIs(db2.conn, conn1)
        finally:
            db2.close()
            pool.close()

    def test_database_close_with_close_pool_true_closes_pool(self) -> None:
        pool = PoolConnector(sqlite3.connect, ":memory:", max_size=1)
        db = Database(pool, Dialect())
        db.close(close_pool=True)
        with self.assertRaises(ConnectionError):
            db.execute("SELECT 1;")
        with self.assertRaises(ConnectionError):
            pool.acquire()


class AsyncDatabaseAdapterTests(unittest.IsolatedAsyncioTestCase):
    async def test_fetchall_maps_rows_and_closes_cursor(self) -> None:
        conn = AsyncRecordingConnection(rows=[(3, "c"), (7, "g")])
        db = AsyncDatabase(conn, PostgresDialect())

        rows = await db.fetchall('SELECT "id", "name" FROM "users" WHERE "id" = ANY($1)', [[3, 7]])

        self.assertEqual(rows, [{"id": 3, "name": "c"}, {"id": 7, "name": "g"}])
        self.assertTrue(conn.cursors[0].closed)

    async def test_fetchone_returns_none_without_rows(self) -> None:
        db = AsyncDatabase(AsyncRecordingConnection(), PostgresDialect())
        self.assertIsNone(await db.fetchone("SELECT 1"))

    async def test_driver_errors_are_translated(self) -> None:
        driver_error = DataError("invalid input syntax for type uuid", sqlstate="22P02")
        conn = AsyncRecordingConnection(error=driver_error)
        db = AsyncDatabase(conn, PostgresDialect())

        with self.assertLogs("pgbind.ports.db_api.database", level="WARNING"):
            with self.assertRaises(TypeMismatchError) as ctx:
                await db.fetchall("SELECT 1")
        self.assertIs(ctx.exception.__cause__, driver_error)
        self.assertTrue(conn.cursors[0].closed)

    async def test_transaction_commits_and_rolls_back(self) -> None:
        conn = AsyncRecordingConnection()
        db = AsyncDatabase(conn, PostgresDialect())

        async with db.transaction():
            await db.execute("SELECT 1")
        with self.assertRaises(RuntimeError):
            async with db.transaction():
                raise RuntimeError("boom")

        self.assertEqual(conn.commit_calls, 1)
        self.assertEqual(conn.rollback_calls, 1)

    async def test_aclose_then_execute_raises_connection_error(self) -> None:
        conn = AsyncRecordingConnection()
        async with AsyncDatabase(conn, PostgresDialect()) as db:
            await db.execute("SELECT 1")
        self.assertEqual(conn.close_calls, 1)
        with self.assertRaises(ConnectionError):
            await db.execute("SELECT 1")


class PoolConnectorTests(unittest.TestCase):
    def test_acquire_release_reuses_connection(self) -> None:
        created = 0

        def _factory() -> sqlite3.Connection:
            nonlocal created
            created += 1
            return sqlite3.connect(":memory:")

        pool = PoolConnector(_factory, max_size=1)
        first = pool.acquire()
        pool.release(first)
        second = pool.acquire()
        self.assertIs(first, second)
        self.assertEqual(pool.size, 1)
        pool.release(second)
        pool.close()
        self.assertEqual(created, 1)

    def test_max_size_zero_raises(self) -> None:
        with self.assertRaises(ValueError):
            PoolConnector(sqlite3.connect, ":memory:", max_size=0)

    def test_invalid_transaction_guard_raises(self) -> None:
        with self.assertRaises(ValueError):
            PoolConnector(sqlite3.connect, ":memory:", transaction_guard="invalid")

    def test_acquire_timeout_raises_connection_error_when_exhausted(self) -> None:
        pool = PoolConnector(sqlite3.connect, ":memory:", max_size=1)
        conn = pool.acquire()
        try:
            with self.assertRaises(ConnectionError):
                pool.acquire(timeout=0.01)
        finally:
            pool.release(conn)
            pool.close()

    def test_default_acquire_timeout_is_used(self) -> None:
        pool = PoolConnector(_FakeBaseConn, max_size=1, acquire_timeout=0.01, reset_session=False)
        conn = pool.acquire()
        with self.assertRaises(ConnectionError):
            pool.acquire()
        pool.release(conn)
        pool.close()

    def test_connect_failure_is_translated_and_does_not_poison_pool(self) -> None:
        calls = 0

        def _factory() -> _FakeBaseConn:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise OperationalError("could not connect to server", sqlstate="08001")
            return _FakeBaseConn(in_transaction=False)

        pool = PoolConnector(_factory, max_size=1, reset_session=False)
        with self.assertRaises(ConnectionError) as ctx:
            pool.acquire()
        self.assertEqual(ctx.exception.sqlstate, "08001")

        conn = pool.acquire()
        pool.release(conn)
        pool.close()
        self.assertEqual(calls, 2)

    def test_acquire_respects_max_size_under_concurrent_creators(self) -> None:
        create_gate = threading.Event()
        first_started = threading.Event()
        created = 0

        def _factory() -> _FakeBaseConn:
            nonlocal created
            created += 1
            if created == 1:
                first_started.set()
            create_gate.wait(0.5)
            return _FakeBaseConn(in_transaction=False)

        pool = PoolConnector(_factory, max_size=1, reset_session=False)
        acquired: list[_FakeBaseConn] = []
        second_error: list[type[BaseException]] = []

        def _first_worker() -> None:
            conn = pool.acquire(timeout=1)
            acquired.append(conn)

        def _second_worker() -> None:
            try:
                pool.acquire(timeout=0.05)
            except BaseException as exc:  # noqa: BLE001
                second_error.append(type(exc))

        t1 = threading.Thread(target=_first_worker)
        t1.start()
        self.assertTrue(first_started.wait(0.2))

        t2 = threading.Thread(target=_second_worker)
        t2.start()
        t2.join(timeout=1)
        self.assertFalse(t2.is_alive())

        create_gate.set()
        t1.join(timeout=1)
        self.assertFalse(t1.is_alive())
        self.assertEqual(created, 1)
        self.assertEqual(second_error, [ConnectionError])

        if acquired:
            pool.release(acquired[0])
        pool.close()

    def test_acquire_after_close_raises(self) -> None:
        pool = PoolConnector(sqlite3.connect, ":memory:", max_size=1)
        pool.close()
        with self.assertRaises(ConnectionError):
            pool.acquire()

    def test_waiting_acquire_is_unblocked_when_pool_closes(self) -> None:
        pool = PoolConnector(_FakeBaseConn, max_size=1, reset_session=False)
        conn = pool.acquire()
        errors: list[type[BaseException]] = []

        def _waiter() -> None:
            try:
                pool.acquire()
            except BaseException as exc:  # noqa: BLE001
                errors.append(type(exc))

        waiter = threading.Thread(target=_waiter)
        waiter.start()
        time.sleep(0.05)
        pool.close()
        waiter.join(timeout=1)
        self.assertFalse(waiter.is_alive())
        self.assertEqual(errors, [ConnectionError])
        pool.release(conn)

    def test_connection_context_manager_releases_connection(self) -> None:
        pool = PoolConnector(sqlite3.connect, ":memory:", max_size=1)
        with pool.connection() as borrowed:
            self.assertIsNotNone(borrowed)
        reacquired = pool.acquire()
        self.assertIs(reacquired, borrowed)
        pool.release(reacquired)
        pool.close()

    def test_release_unknown_connection_raises(self) -> None:
        pool = PoolConnector(sqlite3.connect, ":memory:", max_size=1)
        outside_conn = sqlite3.connect(":memory:")
        try:
            with self.assertRaises(ValueError):
                pool.release(outside_conn)
        finally:
            outside_conn.close()
            pool.close()

    def test_from_settings_uses_pool_settings(self) -> None:
        seen: list[DatabaseSettings] = []

        def _connect(settings: DatabaseSettings) -> _FakeBaseConn:
            seen.append(settings)
            return _FakeBaseConn()

        settings = DatabaseSettings(max_connections=2, acquire_timeout=0.01)
        pool = PoolConnector.from_settings(settings, _connect, reset_session=False)
        self.assertEqual(pool.max_size, 2)

        first = pool.acquire()
        second = pool.acquire()
        with self.assertRaises(ConnectionError):
            pool.acquire()
        self.assertEqual(seen, [settings, settings])

        pool.release(second)
        pool.release(first)
        pool.close()
        self.assertEqual(first.close_calls, 1)

    def test_dirty_transaction_is_rolled_back_by_default(self) -> None:
        pool = PoolConnector(_FakeBaseConn, max_size=1, reset_session=False)
        conn = pool.acquire()
        conn.in_transaction = True
        pool.release(conn)

        self.assertEqual(conn.rollback_calls, 1)
        reused = pool.acquire()
        self.assertIs(reused, conn)
        pool.release(reused)
        pool.close()

    def test_transaction_guard_raise_discards_dirty_connection(self) -> None:
        created = 0

        def _factory() -> _FakeBaseConn:
            nonlocal created
            created += 1
            return _FakeBaseConn(in_transaction=False)

        pool = PoolConnector(
            _factory,
            max_size=1,
            transaction_guard="raise",
            reset_session=False,
        )
        conn = pool.acquire()
        conn.in_transaction = True

        with self.assertRaises(RuntimeError):
            pool.release(conn)
        self.assertEqual(conn.close_calls, 1)

        conn2 = pool.acquire()
        self.assertIsNot(conn2, conn)
        pool.release(conn2)
        pool.close()
        self.assertEqual(created, 2)

    def test_transaction_guard_discard_discards_dirty_connection(self) -> None:
        pool = PoolConnector(
            _FakeBaseConn,
            max_size=1,
            transaction_guard="discard",
            reset_session=False,
        )
        conn = pool.acquire()
        conn.in_transaction = True
        pool.release(conn)

        self.assertEqual(conn.rollback_calls, 1)
        self.assertEqual(conn.close_calls, 1)
        conn2 = pool.acquire()
        self.assertIsNot(conn2, conn)
        pool.release(conn2)
        pool.close()

    def test_transaction_guard_ignore_skips_rollback_and_session_reset(self) -> None:
        pool = PoolConnector(_FakePgConn, max_size=1, transaction_guard="ignore")
        conn = pool.acquire()
        conn.in_transaction = True
        pool.release(conn)

        self.assertEqual(conn.rollback_calls, 0)
        self.assertEqual(conn.executed_sql, [])
        reused = pool.acquire()
        self.assertTrue(reused.in_transaction)
        pool.release(reused)
        pool.close()

    def test_session_reset_hook_error_discards_connection(self) -> None:
        reset_calls = 0

        def _reset(_conn) -> None:  # noqa: ANN001,ANN202
            nonlocal reset_calls
            reset_calls += 1
            if reset_calls == 1:
                raise ValueError("reset failed")

        pool = PoolConnector(_FakeBaseConn, max_size=1, session_reset_hook=_reset)
        conn = pool.acquire()
        with self.assertRaises(RuntimeError):
            pool.release(conn)
        self.assertEqual(conn.close_calls, 1)

        fresh = pool.acquire()
        self.assertIsNot(fresh, conn)
        pool.release(fresh)
        pool.close()

    def test_release_after_pool_close_closes_borrowed_connection(self) -> None:
        pool = PoolConnector(_FakeBaseConn, max_size=1, reset_session=False)
        conn = pool.acquire()
        pool.close()
        pool.release(conn)
        self.assertEqual(conn.close_calls, 1)

    def test_dirty_detection_uses_psycopg_info_transaction_status(self) -> None:
        pool = PoolConnector(
            lambda: _FakePsycopgInfoConn(transaction_status=2),
            max_size=1,
            reset_session=False,
        )
        conn = pool.acquire()
        pool.release(conn)
        self.assertEqual(conn.rollback_calls, 1)
        pool.close()

    def test_default_postgres_session_reset_runs_statements(self) -> None:
        pool = PoolConnector(_FakePgConn, max_size=1)
        conn = pool.acquire()
        pool.release(conn)
        self.assertEqual(
            conn.executed_sql,
            ["RESET ALL", "UNLISTEN *", "DEALLOCATE ALL"],
        )
        self.assertEqual(conn.commit_calls, 1)
        pool.close()


if __name__ == "__main__":
    unittest.main()

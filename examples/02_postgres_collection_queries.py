"""Postgres example for both collection procedures (needs a running server)."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Allow running this script directly from repository root.
PROJECT_ROOT = next(
    (parent for parent in Path(__file__).resolve().parents if (parent / "pgbind").exists()),
    None,
)
if PROJECT_ROOT and str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pgbind import (
    ArrayParameterQuery,
    Database,
    DatabaseSettings,
    ExpandedInClauseQuery,
    OrderBy,
    PgBindError,
    PostgresDialect,
    TypeMismatchError,
    connect,
)


def main() -> None:
    logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    settings = DatabaseSettings.from_env()
    try:
        conn = connect(settings, autocommit=True)
    except (ModuleNotFoundError, PgBindError) as exc:
        print("Postgres example skipped:", exc)
        print("Install dependency: pip install 'psycopg[binary]'")
        return

    with Database(conn, PostgresDialect()) as db:
        db.execute('DROP TABLE IF EXISTS "account";')
        db.execute('CREATE TABLE "account" ("id" BIGINT PRIMARY KEY, "email" TEXT NOT NULL);')
        for account_id, email in [(3, "c@example.com"), (7, "g@example.com"), (11, "k@example.com")]:
            db.execute('INSERT INTO "account" ("id", "email") VALUES ($1, $2);', [account_id, email])

        by_array = ArrayParameterQuery(
            "account", "id", [3, 7, 99], order_by=(OrderBy("id"),)
        ).fetch(db)
        print("ANY($1):", by_array)

        by_in = ExpandedInClauseQuery(
            "account", "id", [11, 3], order_by=(OrderBy("id"),)
        ).fetch(db)
        print("IN ($1, $2):", by_in)

        print("Empty IN, no round trip:", ExpandedInClauseQuery("account", "id", []).fetch(db))
        print("Empty ANY:", ArrayParameterQuery("account", "id", [], array_type="int8").fetch(db))

        try:
            ExpandedInClauseQuery("account", "id", ["not-a-number"]).fetch(db)
        except TypeMismatchError as exc:
            print("Type mismatch reported:", exc.sqlstate, exc)

        db.execute('DROP TABLE "account";')


if __name__ == "__main__":
    main()

"""Show the statements both collection procedures build, per dialect."""

from __future__ import annotations

import sys
from pathlib import Path

# Allow running this script directly from repository root.
PROJECT_ROOT = next(
    (parent for parent in Path(__file__).resolve().parents if (parent / "pgbind").exists()),
    None,
)
if PROJECT_ROOT and str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pgbind import ArrayParameterQuery, ExpandedInClauseQuery, OrderBy
from pgbind.ports.db_api.dialects import PostgresDialect, PostgresFormatDialect


def show_for_dialect(name: str, dialect) -> None:  # noqa: ANN001
    print(f"\n===== {name} =====")

    for values in ([3, 7, 11], [42], []):
        array_query = ArrayParameterQuery(
            "users", "id", values, columns=("id", "name"), order_by=(OrderBy("id"),)
        )
        in_query = ExpandedInClauseQuery(
            "users", "id", values, columns=("id", "name"), order_by=(OrderBy("id"),)
        )

        compiled = array_query.compile(dialect)
        print(f"ANY  {values!r:>12}: {compiled.sql}  params={compiled.params}")

        compiled = in_query.compile(dialect)
        if compiled.short_circuit:
            print(f"IN   {values!r:>12}: <no statement, empty result>")
        else:
            print(f"IN   {values!r:>12}: {compiled.sql}  params={compiled.params}")

    typed = ArrayParameterQuery("users", "id", [], array_type="int8").compile(dialect)
    print("Typed empty array:", typed.sql, typed.params)


def main() -> None:
    show_for_dialect("PostgresDialect ($n, raw cursors)", PostgresDialect())
    show_for_dialect("PostgresFormatDialect (%s, client cursors)", PostgresFormatDialect())


if __name__ == "__main__":
    main()

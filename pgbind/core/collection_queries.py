"""Query procedures that pass a collection of values as query parameters.

Two ways are supported:

- `ArrayParameterQuery` binds the whole collection as one array parameter:
  `SELECT ... WHERE "id" = ANY($1)`. The statement text never changes with
  the collection size, and an empty collection is a valid argument.
- `ExpandedInClauseQuery` writes one placeholder per element:
  `SELECT ... WHERE "id" IN ($1, $2, $3)`. An empty collection never reaches
  the database, because `IN ()` is not valid SQL.

In both cases the statement is built from identifiers and placeholders only.
Values travel as bound parameters.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .conditions import C, Condition, OrderBy, scalar_values
from .contracts import AsyncDatabasePort, DatabasePort, DialectPort
from .query_builder import CompiledQuery, SelectQuery
from .types import RowMapping, Rows

logger = logging.getLogger(__name__)

GroupedRows = Dict[Any, List[RowMapping]]


@dataclass(frozen=True)
class _CollectionQuery(ABC):
    table: str
    column: str
    values: Iterable[Any]
    columns: Sequence[str] = ("*",)
    order_by: Sequence[OrderBy] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", self._validate(self.values))
        object.__setattr__(self, "columns", _as_tuple(self.columns))
        object.__setattr__(self, "order_by", _as_tuple(self.order_by))

    def _validate(self, values: Iterable[Any]) -> tuple[Any, ...]:
        return scalar_values(values)

    @abstractmethod
    def _condition(self) -> Condition: ...

    def statement(self) -> SelectQuery:
        """Return the `SelectQuery` this procedure executes."""

        return (
            SelectQuery(self.table, tuple(self.columns))
            .where(self._condition())
            .order_by(*self.order_by)
        )

    def compile(self, dialect: DialectPort) -> CompiledQuery:
        """Compile the statement and its parameters for `dialect`."""

        return self.statement().compile(dialect)

    def fetch(self, db: DatabasePort) -> Rows:
        """Run the query and return all matching rows.

        Raises:
            ConnectionError: The connection is invalid or dropped.
            TypeMismatchError: Values do not fit the column type.
            QueryExecutionError: Any other database-reported fault.
        """

        compiled = self.compile(db.dialect)
        if compiled.short_circuit:
            logger.debug("Skipped query on %s.%s: empty collection", self.table, self.column)
            return []
        return db.fetchall(compiled.sql, compiled.params)

    async def afetch(self, db: AsyncDatabasePort) -> Rows:
        """Async twin of `fetch`."""

        compiled = self.compile(db.dialect)
        if compiled.short_circuit:
            logger.debug("Skipped query on %s.%s: empty collection", self.table, self.column)
            return []
        return await db.fetchall(compiled.sql, compiled.params)

    def fetch_grouped(self, db: DatabasePort, key: Optional[str] = None) -> GroupedRows:
        """Run the query once and group rows by the value of column `key`.

        Every input value is a key of the result, mapped to `[]` when no row
        matched it. `key` defaults to the filtered column.

        Raises:
            ValueError: `key` is not one of the selected columns.
        """

        key = self._group_key(key)
        return self._group(self.fetch(db), key)

    async def afetch_grouped(
        self, db: AsyncDatabasePort, key: Optional[str] = None
    ) -> GroupedRows:
        """Async twin of `fetch_grouped`."""

        key = self._group_key(key)
        return self._group(await self.afetch(db), key)

    def _group_key(self, key: Optional[str]) -> str:
        key = key or self.column.rsplit(".", 1)[-1]
        if any(col.endswith("*") for col in self.columns):
            return key
        if key not in {col.rsplit(".", 1)[-1] for col in self.columns}:
            raise ValueError(f"Cannot group by {key!r}: it is not a selected column.")
        return key

    def _group(self, rows: Rows, key: str) -> GroupedRows:
        grouped: GroupedRows = {value: [] for value in self.values}
        for row in rows:
            try:
                owner = row[key]
            except KeyError:
                raise ValueError(f"Result rows have no column {key!r} to group by.") from None
            grouped.setdefault(owner, []).append(row)
        return grouped


@dataclass(frozen=True)
class ArrayParameterQuery(_CollectionQuery):
    """`SELECT <columns> FROM <table> WHERE <column> = ANY($1)`.

    Exactly one parameter is bound whatever the collection size. The driver
    sends it as the PostgreSQL array type of the elements; `array_type`
    (for example `"int8"` or `"uuid"`) adds an explicit `$1::<type>[]` cast.

    Example:
        ArrayParameterQuery("users", "id", [3, 7, 11], columns=("id", "name"))
    """

    array_type: Optional[str] = None

    def _validate(self, values: Iterable[Any]) -> tuple[Any, ...]:
        return scalar_values(values, homogeneous=True)

    def _condition(self) -> Condition:
        return C.any_(self.column, self.values, array_type=self.array_type)


@dataclass(frozen=True)
class ExpandedInClauseQuery(_CollectionQuery):
    """`SELECT <columns> FROM <table> WHERE <column> IN ($1, ..., $n)`.

    Element *i* of the collection is bound to placeholder *i*. For an empty
    collection `compile` returns a short-circuited query and `fetch` returns
    `[]` without a round trip.
    """

    def _condition(self) -> Condition:
        return C.in_(self.column, self.values)


def _as_tuple(items: Sequence[Any] | str) -> tuple[Any, ...]:
    if isinstance(items, str):
        return (items,)
    return tuple(items)

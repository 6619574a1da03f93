"""SQL statement builders for filtering, joining, sorting, and paging.

This module centralizes SQL string compilation from query inputs. Values only
ever reach the statement as placeholders produced by `ParameterBinder`, which
records the bound value in the same step, so placeholder order and parameter
order cannot drift apart. `CompiledQuery` re-checks the finished statement
text against its parameters before anything is executed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Any, Optional, Sequence, Tuple

from .conditions import Condition, ConditionGroup, Join, NotCondition, OrderBy, WhereExpression
from .contracts import DialectPort
from .errors import PlaceholderMismatchError
from .types import NamedParams, PositionalParams, QueryParams


WhereInput = Optional[Sequence[WhereExpression] | WhereExpression]

_QUOTED_RE = re.compile(r'"(?:[^"]|"")*"|\'(?:[^\']|\'\')*\'|`(?:[^`]|``)*`')
_NUMERIC_RE = re.compile(r"\$(\d+)")
_NAMED_RE = re.compile(r"(?<![:\w]):([A-Za-z_]\w*)")


@dataclass(frozen=True)
class CompiledFragment:
    """Represents a compiled SQL fragment with its bound parameters."""

    sql: str
    params: QueryParams


@dataclass(frozen=True)
class CompiledQuery:
    """A finished statement ready to be sent to the database.

    Attributes:
        sql: Statement text; empty when `short_circuit` is set.
        params: Bound parameters in placeholder order (or by name).
        placeholder_count: Number of placeholders in `sql`.
        paramstyle: Placeholder style used in `sql`.
        short_circuit: The statement can match no rows and must not be sent.

    Raises:
        PlaceholderMismatchError: If the statement text and the parameters
            disagree on the number or numbering of placeholders.
    """

    sql: str
    params: QueryParams
    placeholder_count: int
    paramstyle: str = "numeric"
    short_circuit: bool = False

    def __post_init__(self) -> None:
        bound = 0 if self.params is None else len(self.params)
        if bound != self.placeholder_count:
            raise PlaceholderMismatchError(
                f"Statement declares {self.placeholder_count} placeholders "
                f"but {bound} values are bound."
            )
        if self.short_circuit:
            if self.sql or bound:
                raise PlaceholderMismatchError(
                    "Short-circuited query must carry no statement and no values."
                )
            return
        _verify_placeholders(self.sql, self.params, self.paramstyle, bound)

    @classmethod
    def empty(cls, paramstyle: str = "numeric") -> "CompiledQuery":
        """Return a query that matches no rows without a round trip."""

        return cls("", [], 0, paramstyle=paramstyle, short_circuit=True)


class ParameterBinder:
    """Issues placeholders and records their values in one step."""

    def __init__(self, dialect: DialectPort, params: QueryParams = None) -> None:
        self._dialect = dialect
        self._named = dialect.paramstyle == "named"
        self.params: NamedParams | PositionalParams = {} if self._named else []
        if isinstance(params, dict) and self._named:
            self.params.update(params)
        elif isinstance(params, list) and not self._named:
            self.params.extend(params)
        self._counter = len(self.params)

    @property
    def count(self) -> int:
        return len(self.params)

    def bind(self, value: Any, hint: str = "p") -> str:
        """Record `value` and return the placeholder that refers to it."""

        self._counter += 1
        if self._named:
            safe = "".join(ch if ch.isalnum() or ch == "_" else "_" for ch in hint)
            key = f"{safe}_{self._counter}"
            self.params[key] = value
            return self._dialect.placeholder(key, self._counter)

        self.params.append(value)
        return self._dialect.placeholder(hint, len(self.params))


def compile_where(where: WhereInput, dialect: DialectPort) -> CompiledFragment:
    """Compile one or many conditions into a SQL `WHERE` fragment.

    Multiple conditions are combined using `AND`.

    Args:
        where: A single expression, a list of expressions, or `None`.
        dialect: SQL dialect used for identifier quoting and placeholders.

    Returns:
        A compiled SQL fragment and parameters. Empty fragment if no condition.
    """

    expressions = _where_items(where)
    if not expressions:
        return CompiledFragment("", None)

    binder = ParameterBinder(dialect)
    sql = _compile_where_items(expressions, dialect, binder)
    return CompiledFragment(sql, binder.params)


def compile_order_by(
    order_by: Optional[Sequence[OrderBy]], dialect: DialectPort
) -> str:
    """Compile `ORDER BY` clause from ordering inputs.

    Args:
        order_by: Ordering expressions or `None`.
        dialect: SQL dialect used for identifier quoting.

    Returns:
        SQL `ORDER BY` fragment or an empty string.
    """

    if not order_by:
        return ""

    ordered_cols = ", ".join(
        f"{dialect.q(item.col)} {'DESC' if item.desc else 'ASC'}" for item in order_by
    )
    return f" ORDER BY {ordered_cols}"


def append_limit_offset(
    sql: str,
    params: QueryParams,
    *,
    limit: Optional[int],
    offset: Optional[int],
    dialect: DialectPort,
) -> Tuple[str, QueryParams]:
    """Append pagination clauses and merge parameters.

    Args:
        sql: Base SQL string.
        params: Existing parameters from previous fragment compilation.
        limit: Optional row limit.
        offset: Optional row offset.
        dialect: SQL dialect used for placeholder style.

    Returns:
        Updated SQL and merged parameters.
    """

    _validate_limit_offset(limit, offset)
    binder = ParameterBinder(dialect, params)
    if limit is not None:
        sql += f" LIMIT {binder.bind(limit, '__limit')}"
    if offset is not None:
        sql += f" OFFSET {binder.bind(offset, '__offset')}"
    return sql, binder.params if binder.params else None


def is_statically_empty(expr: WhereExpression) -> bool:
    """Return whether `expr` can never match, judged without the database.

    Only an empty `IN` list is treated as unsatisfiable. `NOT` is never
    considered empty.
    """

    if isinstance(expr, Condition):
        return expr.op == "IN" and not expr.values
    if isinstance(expr, ConditionGroup):
        if expr.operator == "AND":
            return any(is_statically_empty(item) for item in expr.items)
        return all(is_statically_empty(item) for item in expr.items)
    return False


@dataclass(frozen=True)
class SelectQuery:
    """Immutable `SELECT` statement builder.

    Every builder method returns a new instance.

    Example:
        SelectQuery("users", ("id", "name")).where(C.any_("id", [3, 7]))
    """

    table: str
    columns: tuple[str, ...] = ("*",)
    alias: Optional[str] = None
    conditions: tuple[WhereExpression, ...] = ()
    joins: tuple[Join, ...] = ()
    ordering: tuple[OrderBy, ...] = ()
    row_limit: Optional[int] = None
    row_offset: Optional[int] = None

    def __post_init__(self) -> None:
        if isinstance(self.columns, str):
            object.__setattr__(self, "columns", (self.columns,))
        else:
            object.__setattr__(self, "columns", tuple(self.columns))
        if not self.columns:
            raise ValueError("SelectQuery requires at least one column.")

    def select(self, *columns: str) -> "SelectQuery":
        return replace(self, columns=tuple(columns))

    def where(self, *expressions: WhereExpression) -> "SelectQuery":
        """Add conditions, combined with the existing ones using `AND`."""

        return replace(self, conditions=self.conditions + _where_items(list(expressions)))

    def join(self, join: Join) -> "SelectQuery":
        return replace(self, joins=self.joins + (join,))

    def order_by(self, *ordering: OrderBy | str) -> "SelectQuery":
        items = tuple(OrderBy(item) if isinstance(item, str) else item for item in ordering)
        return replace(self, ordering=self.ordering + items)

    def limit(self, limit: Optional[int]) -> "SelectQuery":
        _validate_limit_offset(limit, None)
        return replace(self, row_limit=limit)

    def offset(self, offset: Optional[int]) -> "SelectQuery":
        _validate_limit_offset(None, offset)
        return replace(self, row_offset=offset)

    def compile(self, dialect: DialectPort) -> CompiledQuery:
        """Compile into a `CompiledQuery` for `dialect`.

        When a top-level condition can never match, no statement is built and
        the result is marked `short_circuit`.
        """

        if any(is_statically_empty(expr) for expr in self.conditions):
            return CompiledQuery.empty(dialect.paramstyle)

        binder = ParameterBinder(dialect)
        cols = ", ".join(dialect.q(col) for col in self.columns)
        sql = f"SELECT {cols} FROM {_table_sql(self.table, self.alias, dialect)}"

        for join in self.joins:
            sql += (
                f" {join.kind} JOIN {_table_sql(join.table, join.alias, dialect)}"
                f" ON {dialect.q(join.left_col)} = {dialect.q(join.right_col)}"
            )

        if self.conditions:
            sql += _compile_where_items(self.conditions, dialect, binder)

        sql += compile_order_by(self.ordering, dialect)

        if self.row_limit is not None:
            sql += f" LIMIT {binder.bind(self.row_limit, '__limit')}"
        if self.row_offset is not None:
            sql += f" OFFSET {binder.bind(self.row_offset, '__offset')}"

        return CompiledQuery(
            sql,
            binder.params,
            binder.count,
            paramstyle=dialect.paramstyle,
        )


def _where_items(where: WhereInput) -> tuple[WhereExpression, ...]:
    if where is None:
        return ()
    if isinstance(where, (Condition, ConditionGroup, NotCondition)):
        return (where,)
    return tuple(where)


def _compile_where_items(
    expressions: Sequence[WhereExpression],
    dialect: DialectPort,
    binder: ParameterBinder,
) -> str:
    clauses = [_compile_expr(item, dialect, binder) for item in expressions]
    return f" WHERE {' AND '.join(clauses)}"


def _compile_expr(
    expr: WhereExpression,
    dialect: DialectPort,
    binder: ParameterBinder,
) -> str:
    if isinstance(expr, ConditionGroup):
        inner = f" {expr.operator} ".join(
            f"({_compile_expr(item, dialect, binder)})" for item in expr.items
        )
        return f"({inner})"
    if isinstance(expr, NotCondition):
        return f"NOT ({_compile_expr(expr.item, dialect, binder)})"
    return _compile_condition(expr, dialect, binder)


def _compile_condition(
    condition: Condition,
    dialect: DialectPort,
    binder: ParameterBinder,
) -> str:
    """Compile one condition into SQL, binding its values."""

    col_sql = dialect.q(condition.col)

    if condition.is_unary:
        return f"{col_sql} {condition.op}"

    if condition.op == "IN":
        values = list(condition.values or [])
        if not values:
            return "1=0"
        placeholders = ", ".join(binder.bind(value, condition.col) for value in values)
        return f"{col_sql} IN ({placeholders})"

    if condition.op == "ANY":
        placeholder = binder.bind(list(condition.values or []), condition.col)
        if condition.array_type:
            placeholder = dialect.array_cast(placeholder, condition.array_type)
        return f"{col_sql} = ANY({placeholder})"

    return f"{col_sql} {condition.op} {binder.bind(condition.value, condition.col)}"


def _table_sql(table: str, alias: Optional[str], dialect: DialectPort) -> str:
    if alias:
        return f"{dialect.q(table)} AS {dialect.q(alias)}"
    return dialect.q(table)


def _validate_limit_offset(limit: Optional[int], offset: Optional[int]) -> None:
    if limit is not None and limit < 1:
        raise ValueError("limit must be >= 1.")
    if offset is not None and offset < 0:
        raise ValueError("offset must be >= 0.")


def _verify_placeholders(
    sql: str, params: QueryParams, paramstyle: str, bound: int
) -> None:
    """Check placeholders in statement text against the bound parameters."""

    text = _QUOTED_RE.sub("", sql)

    if paramstyle == "numeric":
        positions = [int(n) for n in _NUMERIC_RE.findall(text)]
        if positions != list(range(1, bound + 1)):
            raise PlaceholderMismatchError(
                f"Placeholders {positions} do not number 1..{bound} in order."
            )
        return

    if paramstyle == "named":
        names = set(_NAMED_RE.findall(text))
        keys = set(params or {})
        if names != keys:
            raise PlaceholderMismatchError(
                f"Placeholders {sorted(names)} do not match bound names {sorted(keys)}."
            )
        return

    token = "?" if paramstyle == "qmark" else "%s"
    found = text.count(token)
    if found != bound:
        raise PlaceholderMismatchError(
            f"Statement has {found} placeholders but {bound} values are bound."
        )

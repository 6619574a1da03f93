"""Public core API for query building and collection parameter queries."""

from .collection_queries import ArrayParameterQuery, ExpandedInClauseQuery, GroupedRows
from .conditions import (
    C,
    Condition,
    ConditionGroup,
    Join,
    NotCondition,
    OrderBy,
    WhereExpression,
    scalar_values,
)
from .errors import (
    ConnectionError,
    PgBindError,
    PlaceholderMismatchError,
    QueryExecutionError,
    TypeMismatchError,
    translate_driver_error,
)
from .query_builder import (
    CompiledFragment,
    CompiledQuery,
    ParameterBinder,
    SelectQuery,
    WhereInput,
    append_limit_offset,
    compile_order_by,
    compile_where,
)
from .settings import DatabaseSettings

__all__ = [
    "ArrayParameterQuery",
    "ExpandedInClauseQuery",
    "GroupedRows",
    "C",
    "Condition",
    "ConditionGroup",
    "Join",
    "NotCondition",
    "OrderBy",
    "WhereExpression",
    "WhereInput",
    "scalar_values",
    "CompiledFragment",
    "CompiledQuery",
    "ParameterBinder",
    "SelectQuery",
    "append_limit_offset",
    "compile_order_by",
    "compile_where",
    "PgBindError",
    "ConnectionError",
    "TypeMismatchError",
    "QueryExecutionError",
    "PlaceholderMismatchError",
    "translate_driver_error",
    "DatabaseSettings",
]

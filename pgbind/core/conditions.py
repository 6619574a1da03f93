"""Query condition primitives for filtering, joining, and sorting."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Set
from collections.abc import Sequence as SequenceABC
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Optional, Sequence
from uuid import UUID

from .errors import TypeMismatchError

# Order matters: subclasses (bool, datetime) must precede their bases.
SCALAR_TYPES: tuple[type, ...] = (
    bool,
    int,
    float,
    Decimal,
    str,
    bytes,
    UUID,
    datetime,
    date,
    time,
    timedelta,
)


@dataclass(frozen=True)
class Condition:
    """Represents one SQL condition expression.

    Attributes:
        col: Raw column name, optionally qualified (`alias.col`).
        op: SQL operator (for example `=`, `IN`, `ANY`, `IS NULL`).
        value: Scalar value for binary operators.
        values: Collection value for `IN` and `ANY`.
        is_unary: Whether the operator is unary (`IS NULL`, `IS NOT NULL`).
        array_type: Optional element type cast for `ANY` (for example `int8`).
    """

    col: str
    op: str
    value: Any = None
    values: Optional[Sequence[Any]] = None
    is_unary: bool = False
    array_type: Optional[str] = None


@dataclass(frozen=True)
class ConditionGroup:
    """Represents a grouped logical expression (`AND`/`OR`)."""

    operator: str
    items: tuple["WhereExpression", ...]


@dataclass(frozen=True)
class NotCondition:
    """Represents a negated expression."""

    item: "WhereExpression"


WhereExpression = Condition | ConditionGroup | NotCondition


class C:
    """Fluent condition factory methods."""

    @staticmethod
    def eq(col: str, val: Any) -> Condition:
        """Build `col = value` condition."""

        return Condition(col=col, op="=", value=val)

    @staticmethod
    def ne(col: str, val: Any) -> Condition:
        """Build `col <> value` condition."""

        return Condition(col=col, op="<>", value=val)

    @staticmethod
    def lt(col: str, val: Any) -> Condition:
        """Build `col < value` condition."""

        return Condition(col=col, op="<", value=val)

    @staticmethod
    def le(col: str, val: Any) -> Condition:
        """Build `col <= value` condition."""

        return Condition(col=col, op="<=", value=val)

    @staticmethod
    def gt(col: str, val: Any) -> Condition:
        """Build `col > value` condition."""

        return Condition(col=col, op=">", value=val)

    @staticmethod
    def ge(col: str, val: Any) -> Condition:
        """Build `col >= value` condition."""

        return Condition(col=col, op=">=", value=val)

    @staticmethod
    def like(col: str, pattern: str) -> Condition:
        """Build `col LIKE pattern` condition."""

        return Condition(col=col, op="LIKE", value=pattern)

    @staticmethod
    def contains(col: str, text: str) -> Condition:
        """Build case-insensitive substring match (`col ILIKE '%text%'`).

        The wildcard pattern travels in the bound value, never in SQL text.
        """

        return Condition(col=col, op="ILIKE", value=f"%{text}%")

    @staticmethod
    def is_null(col: str) -> Condition:
        """Build `col IS NULL` condition."""

        return Condition(col=col, op="IS NULL", is_unary=True)

    @staticmethod
    def is_not_null(col: str) -> Condition:
        """Build `col IS NOT NULL` condition."""

        return Condition(col=col, op="IS NOT NULL", is_unary=True)

    @staticmethod
    def in_(col: str, values: Iterable[Any]) -> Condition:
        """Build `col IN ($1, ..., $n)` condition, one parameter per value."""

        return Condition(col=col, op="IN", values=scalar_values(values))

    @staticmethod
    def any_(
        col: str, values: Iterable[Any], *, array_type: Optional[str] = None
    ) -> Condition:
        """Build `col = ANY($1)` condition, the values bound as one array."""

        return Condition(
            col=col,
            op="ANY",
            values=scalar_values(values, homogeneous=True),
            array_type=array_type,
        )

    @staticmethod
    def and_(*items: WhereExpression | Sequence[WhereExpression]) -> ConditionGroup:
        """Build a grouped `AND` expression."""

        normalized = C._normalize_group_items(items)
        return ConditionGroup(operator="AND", items=normalized)

    @staticmethod
    def or_(*items: WhereExpression | Sequence[WhereExpression]) -> ConditionGroup:
        """Build a grouped `OR` expression."""

        normalized = C._normalize_group_items(items)
        return ConditionGroup(operator="OR", items=normalized)

    @staticmethod
    def not_(item: WhereExpression) -> NotCondition:
        """Build a negated expression (`NOT (...)`)."""

        C._ensure_expr(item)
        return NotCondition(item=item)

    @staticmethod
    def _normalize_group_items(
        items: Sequence[WhereExpression | Sequence[WhereExpression]],
    ) -> tuple[WhereExpression, ...]:
        normalized_input: Sequence[WhereExpression | Sequence[WhereExpression]]
        if (
            len(items) == 1
            and isinstance(items[0], SequenceABC)
            and not isinstance(
                items[0], (str, bytes, Condition, ConditionGroup, NotCondition)
            )
        ):
            normalized_input = items[0]
        else:
            normalized_input = items

        normalized: list[WhereExpression] = []
        for item in normalized_input:
            C._ensure_expr(item)
            normalized.append(item)

        if not normalized:
            raise ValueError("Grouped condition must contain at least one expression.")
        return tuple(normalized)

    @staticmethod
    def _ensure_expr(item: Any) -> None:
        if not isinstance(item, (Condition, ConditionGroup, NotCondition)):
            raise TypeError(
                "Expression must be Condition, ConditionGroup, or NotCondition."
            )


@dataclass(frozen=True)
class OrderBy:
    """Represents one ordering expression."""

    col: str
    desc: bool = False


@dataclass(frozen=True)
class Join:
    """Represents one `JOIN <table> ON <left_col> = <right_col>` clause."""

    table: str
    left_col: str
    right_col: str
    kind: str = "INNER"
    alias: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind not in {"INNER", "LEFT", "RIGHT"}:
            raise ValueError("Join kind must be one of: 'INNER', 'LEFT', 'RIGHT'.")


def scalar_type_of(value: Any) -> Optional[type]:
    """Return the scalar family of `value`, or `None` for SQL NULL.

    Raises:
        TypeMismatchError: If `value` is not a supported scalar.
    """

    if value is None:
        return None
    for scalar_type in SCALAR_TYPES:
        if isinstance(value, scalar_type):
            return scalar_type
    raise TypeMismatchError(
        f"Unsupported collection element of type {type(value).__name__}; "
        "only scalar values can be bound."
    )


def scalar_values(values: Iterable[Any], *, homogeneous: bool = False) -> tuple[Any, ...]:
    """Materialize a parameter collection once and validate its elements.

    Args:
        values: Any ordered iterable of scalar values. Strings, bytes,
            mappings and sets are rejected.
        homogeneous: Require all non-NULL elements to share one scalar type,
            as PostgreSQL arrays do.

    Returns:
        The values as a tuple, in input order.
    """

    if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
        raise TypeMismatchError(
            f"Expected a collection of values, got {type(values).__name__}."
        )
    if isinstance(values, (Mapping, Set)):
        raise TypeMismatchError(
            f"Expected an ordered collection of values, got {type(values).__name__}."
        )

    materialized = tuple(values)
    seen: Optional[type] = None
    for value in materialized:
        value_type = scalar_type_of(value)
        if not homogeneous or value_type is None:
            continue
        if seen is None:
            seen = value_type
        elif value_type is not seen:
            raise TypeMismatchError(
                "Array parameter elements must share one type, got "
                f"{seen.__name__} and {value_type.__name__}."
            )
    return materialized

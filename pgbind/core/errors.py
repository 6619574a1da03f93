"""Error taxonomy raised by query procedures and database adapters.

Drivers report failures with their own exception classes. The adapters map
them once, at the execute seam, onto three caller-facing categories:

- `ConnectionError`: the transport or the session is unusable.
- `TypeMismatchError`: a bound value does not fit the target column type.
- `QueryExecutionError`: any other fault reported by the database.

The original driver exception is always chained as `__cause__`.
"""

from __future__ import annotations

import builtins
from typing import Optional

_CONNECTION_SQLSTATE_CLASSES = frozenset({"08", "28", "57"})
_TYPE_MISMATCH_SQLSTATES = frozenset({"42804", "42883", "42846"})
_TYPE_MISMATCH_SQLSTATE_CLASSES = frozenset({"22"})

_CONNECTION_EXC_NAMES = frozenset({"OperationalError", "InterfaceError"})
_TYPE_MISMATCH_EXC_NAMES = frozenset({"DataError"})


class PgBindError(Exception):
    """Base class for all errors raised by pgbind."""


class ConnectionError(PgBindError, builtins.ConnectionError):
    """Database connection is invalid, closed, or dropped."""

    def __init__(self, message: str, *, sqlstate: Optional[str] = None):
        super().__init__(message)
        self.sqlstate = sqlstate


class TypeMismatchError(PgBindError, TypeError):
    """Collection elements do not map cleanly to the target scalar type."""

    def __init__(self, message: str, *, sqlstate: Optional[str] = None):
        super().__init__(message)
        self.sqlstate = sqlstate


class QueryExecutionError(PgBindError):
    """Database reported a fault while executing a statement."""

    def __init__(self, message: str, *, sqlstate: Optional[str] = None):
        super().__init__(message)
        self.sqlstate = sqlstate


class PlaceholderMismatchError(AssertionError):
    """Generated placeholders and bound values diverged.

    This is an internal invariant violation and is never recoverable.
    """


def driver_sqlstate(exc: BaseException) -> Optional[str]:
    """Return the SQLSTATE code attached to a driver exception, if any."""

    for attr in ("sqlstate", "pgcode"):
        code = getattr(exc, attr, None)
        if isinstance(code, str) and code:
            return code
    diag = getattr(exc, "diag", None)
    code = getattr(diag, "sqlstate", None)
    if isinstance(code, str) and code:
        return code
    return None


def _exception_names(exc: BaseException) -> set[str]:
    return {cls.__name__ for cls in type(exc).__mro__}


def translate_driver_error(exc: BaseException) -> PgBindError:
    """Map one driver exception onto the pgbind error taxonomy.

    SQLSTATE wins over the DB-API class because psycopg reports several
    server errors as `OperationalError` subclasses.
    """

    if isinstance(exc, PgBindError):
        return exc

    message = str(exc) or type(exc).__name__
    sqlstate = driver_sqlstate(exc)
    if sqlstate is not None:
        sqlstate_class = sqlstate[:2]
        if sqlstate_class in _CONNECTION_SQLSTATE_CLASSES:
            return ConnectionError(message, sqlstate=sqlstate)
        if (
            sqlstate in _TYPE_MISMATCH_SQLSTATES
            or sqlstate_class in _TYPE_MISMATCH_SQLSTATE_CLASSES
        ):
            return TypeMismatchError(message, sqlstate=sqlstate)
        return QueryExecutionError(message, sqlstate=sqlstate)

    names = _exception_names(exc)
    if names & _TYPE_MISMATCH_EXC_NAMES:
        return TypeMismatchError(message)
    if names & _CONNECTION_EXC_NAMES or isinstance(exc, builtins.ConnectionError):
        return ConnectionError(message)
    return QueryExecutionError(message)

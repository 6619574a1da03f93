"""psycopg connection helpers for the PostgreSQL dialect.

Connections opened here use psycopg raw cursors, which hand `$n`
placeholders to the server unchanged and bind parameters server side.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any, Optional

from ...core.errors import translate_driver_error
from ...core.settings import DatabaseSettings

logger = logging.getLogger(__name__)


def _psycopg() -> Any:
    return importlib.import_module("psycopg")


def connect(settings: Optional[DatabaseSettings] = None, **overrides: Any) -> Any:
    """Open a psycopg connection that accepts `$n` placeholders.

    Args:
        settings: Connection settings; read from the environment when omitted.
        **overrides: Extra keyword arguments for `psycopg.connect`.

    Raises:
        ConnectionError: The server is unreachable or rejected the login.
    """

    settings = settings or DatabaseSettings.from_env()
    psycopg = _psycopg()
    kwargs = settings.connect_kwargs()
    kwargs.update(overrides)
    kwargs.setdefault("cursor_factory", psycopg.RawCursor)
    try:
        conn = psycopg.connect(**kwargs)
    except Exception as exc:
        raise translate_driver_error(exc) from exc
    logger.debug("Connected to %s", settings.describe())
    return conn


async def connect_async(
    settings: Optional[DatabaseSettings] = None, **overrides: Any
) -> Any:
    """Open a psycopg async connection that accepts `$n` placeholders."""

    settings = settings or DatabaseSettings.from_env()
    psycopg = _psycopg()
    kwargs = settings.connect_kwargs()
    kwargs.update(overrides)
    kwargs.setdefault("cursor_factory", psycopg.AsyncRawCursor)
    try:
        conn = await psycopg.AsyncConnection.connect(**kwargs)
    except Exception as exc:
        raise translate_driver_error(exc) from exc
    logger.debug("Connected to %s", settings.describe())
    return conn

"""Persistence layer for engine execution state."""

from __future__ import annotations

import os
from typing import Optional

from ..config import PlayEngineConfig, load_config
from ..constants import DATABASE_URL_ENV_VARS
from .inmemory import InMemoryExecutionStateStore
from .repository import ExecutionStateStore
from .sqlite import SQLiteExecutionStateStore

_store_instance: ExecutionStateStore | None = None


def get_store(
    database_url: Optional[str] = None, config: Optional[PlayEngineConfig] = None
) -> ExecutionStateStore:
    """Factory function to obtain an execution state store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``PLAYENGINE_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or next((os.getenv(v) for v in DATABASE_URL_ENV_VARS if os.getenv(v)), None)
        or config.database_url
    )

    if not database_url:
        _store_instance = InMemoryExecutionStateStore()
        return _store_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _store_instance = SQLiteExecutionStateStore(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresExecutionStateStore

        _store_instance = PostgresExecutionStateStore(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _store_instance


__all__ = [
    "ExecutionStateStore",
    "InMemoryExecutionStateStore",
    "SQLiteExecutionStateStore",
    "get_store",
]

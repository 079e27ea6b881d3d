from __future__ import annotations

import asyncio
import errno
import threading
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import duckdb

from ..core.config import ConfigurationError
from ..observability.logging import get_logger

logger = get_logger("db.session")

_CONNECTION_HINT = (
    "Database connection failed. Check DATABASE_URL "
    "(expected duckdb:///path/to/file.duckdb, a plain file path, or :memory:) "
    "and that the file is writable and not locked by another process."
)


class StoreConnectionError(Exception):
    """Raised when the similarity store database cannot be opened."""

    def __init__(self, details: str) -> None:
        super().__init__(_CONNECTION_HINT)
        self.details = details


def _resolve_duckdb_path(raw_dsn: str) -> str:
    """
    Resolve DuckDB DSN/path into a concrete filesystem path understood by duckdb.connect.

    Supported inputs:
      - "duckdb:///absolute/or/relative/path.duckdb"
      - "/absolute/path.duckdb"
      - "relative/path.duckdb"
      - ":memory:"
    """
    dsn = raw_dsn.strip()
    if dsn in (":memory:", "duckdb:///:memory:"):
        return ":memory:"

    if dsn.startswith("duckdb:///"):
        dsn = dsn[len("duckdb:///") :]
        if not dsn.startswith("/"):
            dsn = "/" + dsn
    elif "://" in dsn:
        scheme = dsn.split("://", 1)[0]
        raise ConfigurationError(
            f"Unsupported DATABASE_URL scheme '{scheme}'; expected duckdb:///<path>"
        )

    path = Path(dsn)
    if not path.is_absolute():
        path = Path.cwd() / path

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        if path.as_posix().startswith("/app_storage/") and exc.errno in (
            errno.EPERM,
            errno.EACCES,
            errno.EROFS,
        ):
            path = Path.cwd() / path.as_posix().lstrip("/")
            path.parent.mkdir(parents=True, exist_ok=True)
        else:
            raise StoreConnectionError(str(exc)) from exc
    return path.as_posix()


class DuckDBPool:
    """
    Process-wide DuckDB handle with bounded per-request checkout.

    One root connection is opened lazily on first checkout; each checkout
    gets its own cursor (a DuckDB connection sharing the same database) and
    the number of concurrent checkouts is capped at `pool_size`.
    """

    def __init__(self, dsn: Optional[str], pool_size: int = 8) -> None:
        self.dsn = dsn
        self.pool_size = pool_size
        self._root: Optional[duckdb.DuckDBPyConnection] = None
        self._root_lock = threading.Lock()
        self._slots = asyncio.Semaphore(pool_size)

    def _connect_root(self) -> duckdb.DuckDBPyConnection:
        with self._root_lock:
            if self._root is not None:
                return self._root
            if not self.dsn:
                raise ConfigurationError("Missing DATABASE_URL")

            db_path = _resolve_duckdb_path(self.dsn)
            try:
                self._root = duckdb.connect(db_path)
            except duckdb.Error as exc:
                logger.error(
                    "Failed to open DuckDB database",
                    extra={"path": db_path, "error": str(exc)},
                )
                raise StoreConnectionError(str(exc)) from exc

            logger.info("Opened DuckDB database", extra={"path": db_path})
            return self._root

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[duckdb.DuckDBPyConnection]:
        """
        Check out a cursor for the duration of the `async with` block.

        The cursor is closed and the slot returned on every exit path.
        """
        async with self._slots:
            root = await asyncio.to_thread(self._connect_root)
            try:
                cursor = root.cursor()
            except duckdb.Error as exc:
                raise StoreConnectionError(str(exc)) from exc
            try:
                yield cursor
            finally:
                cursor.close()

    def close(self) -> None:
        with self._root_lock:
            if self._root is not None:
                self._root.close()
                self._root = None

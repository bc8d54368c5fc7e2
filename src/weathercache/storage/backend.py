"""Persistent tier backed by SQLite.

One table per :class:`~weathercache.storage.categories.StoreKind`, each with an
index on ``expires_at`` so expiry sweeps are range queries. Blocking SQLite
calls run in worker threads; a single connection is shared and every
operation holds the connection lock for exactly one transaction.

Examples:
    >>> backend = PersistentBackend(Path("~/.weathercache/weather_history.db"))
    >>> await backend.open()
    >>> await backend.put("historical_weather", key, payload_json, created, expires)
    >>> row = await backend.get("historical_weather", key)
"""

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Callable, Dict, NamedTuple, Optional, TypeVar

from filelock import FileLock, Timeout

from weathercache.errors import (
    CacheClosedError,
    CacheError,
    CacheLockError,
    CachePermissionError,
)
from weathercache.storage.categories import KIND_TO_TABLE

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_VERSION = 1
TABLES = frozenset(KIND_TO_TABLE.values())


class StoredRow(NamedTuple):
    """A row of a cache table, with timestamps as epoch seconds."""

    key: str
    payload: str
    created_at: float
    expires_at: float


def _create_tables(conn: sqlite3.Connection) -> None:
    for table in sorted(TABLES):
        conn.execute(
            f"CREATE TABLE IF NOT EXISTS {table} ("
            "key TEXT PRIMARY KEY, "
            "payload TEXT NOT NULL, "
            "created_at REAL NOT NULL, "
            "expires_at REAL NOT NULL)"
        )
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{table}_expires_at ON {table} (expires_at)"
        )


# Migration N upgrades a database at user_version N to N + 1
MIGRATIONS: Dict[int, Callable[[sqlite3.Connection], None]] = {
    0: _create_tables,
}


class PersistentBackend:
    """Durable key-value tables with expiry-indexed range scans.

    The backend is exclusively owned by one
    :class:`~weathercache.cache.manager.CacheManager`. After :meth:`close`,
    every operation raises :class:`CacheClosedError`.
    """

    def __init__(self, db_path: Path, lock_timeout: float = 30):
        """Initialize backend (does not touch the filesystem).

        Args:
            db_path: Database file path
            lock_timeout: Seconds to wait for the schema lock
        """
        self.db_path = Path(db_path)
        self.lock_path = self.db_path.with_name(self.db_path.name + ".lock")
        self.lock_timeout = lock_timeout
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        """Open the database and upgrade its schema to SCHEMA_VERSION.

        Raises:
            CachePermissionError: If the cache directory cannot be created
            CacheLockError: If another process holds the schema lock too long
            CacheError: For any other database failure
        """
        await asyncio.to_thread(self._open_sync)

    def _open_sync(self) -> None:
        with self._lock:
            if self._conn is not None:
                return

            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError as e:
                raise CachePermissionError(
                    f"Cannot create cache directory at {self.db_path.parent}: {e}"
                ) from e
            except OSError as e:
                raise CacheError(
                    f"Cannot access cache directory at {self.db_path.parent}: {e}"
                ) from e

            try:
                with FileLock(self.lock_path, timeout=self.lock_timeout):
                    conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
                    try:
                        self._migrate(conn)
                    except Exception:
                        conn.close()
                        raise
            except Timeout as e:
                raise CacheLockError(
                    f"Timeout acquiring schema lock {self.lock_path} "
                    f"after {self.lock_timeout} seconds"
                ) from e
            except sqlite3.Error as e:
                raise CacheError(f"Cannot open cache database {self.db_path}: {e}") from e

            self._conn = conn
            logger.debug(f"Opened cache database {self.db_path}")

    @staticmethod
    def _migrate(conn: sqlite3.Connection) -> None:
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        if version > SCHEMA_VERSION:
            raise CacheError(
                f"Cache database schema version {version} is newer than "
                f"supported version {SCHEMA_VERSION}"
            )
        while version < SCHEMA_VERSION:
            with conn:
                MIGRATIONS[version](conn)
                version += 1
                conn.execute(f"PRAGMA user_version = {version}")
            logger.info(f"Upgraded cache schema to version {version}")

    def close(self) -> None:
        """Close the connection. Safe to call more than once.

        Waits for an in-flight operation to finish its transaction.
        """
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug(f"Closed cache database {self.db_path}")

    async def _run(self, op: Callable[[sqlite3.Connection], T]) -> T:
        return await asyncio.to_thread(self._run_locked, op)

    def _run_locked(self, op: Callable[[sqlite3.Connection], T]) -> T:
        with self._lock:
            if self._conn is None:
                raise CacheClosedError(f"Cache database {self.db_path} is closed")
            try:
                with self._conn:
                    return op(self._conn)
            except sqlite3.Error as e:
                raise CacheError(f"Cache database operation failed: {e}") from e

    @staticmethod
    def _check_table(table: str) -> str:
        if table not in TABLES:
            raise ValueError(f"Unknown cache table: {table}")
        return table

    async def get(self, table: str, key: str) -> Optional[StoredRow]:
        """Fetch one row by key, or None."""
        table = self._check_table(table)

        def op(conn: sqlite3.Connection) -> Optional[StoredRow]:
            row = conn.execute(
                f"SELECT key, payload, created_at, expires_at FROM {table} WHERE key = ?",
                (key,),
            ).fetchone()
            return StoredRow(*row) if row else None

        return await self._run(op)

    async def put(
        self,
        table: str,
        key: str,
        payload: str,
        created_at: float,
        expires_at: float,
    ) -> None:
        """Insert or wholesale-replace a row."""
        table = self._check_table(table)

        def op(conn: sqlite3.Connection) -> None:
            conn.execute(
                f"INSERT OR REPLACE INTO {table} (key, payload, created_at, expires_at) "
                "VALUES (?, ?, ?, ?)",
                (key, payload, created_at, expires_at),
            )

        await self._run(op)

    async def delete(self, table: str, key: str) -> None:
        """Delete a row; no-op if absent."""
        table = self._check_table(table)
        await self._run(lambda conn: conn.execute(f"DELETE FROM {table} WHERE key = ?", (key,)))

    async def delete_expired(self, table: str, now: float, limit: int) -> int:
        """Delete up to ``limit`` rows with ``expires_at <= now``.

        Returns:
            Number of rows removed; less than ``limit`` once the table is clean
        """
        table = self._check_table(table)

        def op(conn: sqlite3.Connection) -> int:
            keys = [
                row[0]
                for row in conn.execute(
                    f"SELECT key FROM {table} WHERE expires_at <= ? "
                    "ORDER BY expires_at LIMIT ?",
                    (now, limit),
                )
            ]
            if not keys:
                return 0
            conn.executemany(f"DELETE FROM {table} WHERE key = ?", [(k,) for k in keys])
            return len(keys)

        return await self._run(op)

    async def clear(self, table: str) -> None:
        """Remove every row from a table."""
        table = self._check_table(table)
        await self._run(lambda conn: conn.execute(f"DELETE FROM {table}"))

    async def count(self, table: str, now: Optional[float] = None) -> int:
        """Number of rows in a table.

        Args:
            table: Cache table
            now: If given, only rows with ``expires_at > now`` are counted
        """
        table = self._check_table(table)
        if now is None:
            return await self._run(
                lambda conn: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            )
        return await self._run(
            lambda conn: conn.execute(
                f"SELECT COUNT(*) FROM {table} WHERE expires_at > ?", (now,)
            ).fetchone()[0]
        )

    async def schema_version(self) -> int:
        return await self._run(
            lambda conn: conn.execute("PRAGMA user_version").fetchone()[0]
        )


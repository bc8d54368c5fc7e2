"""Generic two-tier TTL store.

A :class:`CacheStore` keeps opaque payloads in a process-local dict (fast
tier) and, when a backend is available, writes them through to a table of
the persistent tier. It knows nothing about weather; key construction and
lifetimes belong to :class:`~weathercache.cache.manager.CacheManager`.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, NamedTuple, Optional

from weathercache.cache.validation import (
    compute_expiry,
    ensure_utc,
    from_epoch,
    is_expired,
    to_epoch,
    utcnow,
)
from weathercache.errors import CacheClosedError, CacheError
from weathercache.storage.backend import PersistentBackend, StoredRow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class CacheEntry:
    """A cached record. Replaced wholesale on every set, never mutated."""

    key: str
    payload: Any
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return is_expired(self.expires_at, now)

    @classmethod
    def from_row(cls, row: StoredRow) -> "CacheEntry":
        return cls(
            key=row.key,
            payload=json.loads(row.payload),
            created_at=from_epoch(row.created_at),
            expires_at=from_epoch(row.expires_at),
        )


class StoreStats(NamedTuple):
    """Size report for one store.

    ``persistent_bytes`` is an estimate (entry count times a constant), not a
    measurement.
    """

    count: int
    memory_bytes: int
    persistent_bytes: int


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def serialize_payload(payload: Any) -> str:
    """Compact JSON used for the persistent tier and size estimates."""
    return json.dumps(payload, separators=(",", ":"), default=_json_default)


class CacheStore:
    """Two-tier key-value store with per-entry expiration.

    Args:
        table: Persistent table backing this store
        backend: Opened persistent backend, or None for memory-only
        clock: Returns the current time as an aware datetime
        batch_size: Entries handled per step of :meth:`sweep_expired`
        estimated_entry_bytes: Per-entry constant for the on-disk estimate
    """

    def __init__(
        self,
        table: str,
        backend: Optional[PersistentBackend] = None,
        clock: Clock = utcnow,
        batch_size: int = 200,
        estimated_entry_bytes: int = 1000,
    ):
        self.table = table
        self.backend = backend
        self.clock = clock
        self.batch_size = batch_size
        self.estimated_entry_bytes = estimated_entry_bytes
        self._memory: Dict[str, CacheEntry] = {}

    @property
    def persistent(self) -> bool:
        return self.backend is not None

    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Look up a live entry, memory first.

        A persistent hit is copied into memory; an expired persistent row is
        deleted. Persistent read failures are logged and count as a miss.
        """
        now = self._now()
        entry = self._memory.get(key)
        if entry is not None:
            if not entry.is_expired(now):
                return entry
            self._memory.pop(key, None)

        if self.backend is None:
            return None

        try:
            row = await self.backend.get(self.table, key)
        except CacheClosedError:
            logger.debug(f"Persistent tier closed while reading {self.table}/{key}")
            return None
        except CacheError as e:
            logger.error(f"Failed to read cached {self.table}/{key}: {e}")
            return None

        if row is None:
            return None

        try:
            entry = CacheEntry.from_row(row)
        except ValueError as e:
            logger.error(f"Discarding unreadable cached {self.table}/{key}: {e}")
            await self._delete_persistent(key)
            return None

        if entry.is_expired(now):
            await self._delete_persistent(key)
            return None

        self._memory[key] = entry
        return entry

    async def set(self, key: str, payload: Any, ttl: float) -> CacheEntry:
        """Store a payload for ``ttl`` seconds in both tiers.

        The memory write happens first and is kept even if the persistent
        write fails.

        Raises:
            CacheError: If the persistent write fails (including payloads that
                cannot be serialized)
            ValueError: If ``ttl`` is not positive
        """
        now = self._now()
        entry = CacheEntry(
            key=key,
            payload=payload,
            created_at=now,
            expires_at=compute_expiry(now, ttl),
        )
        self._memory[key] = entry

        if self.backend is None:
            return entry

        try:
            serialized = serialize_payload(payload)
        except (TypeError, ValueError) as e:
            raise CacheError(f"Cannot serialize payload for {self.table}/{key}: {e}") from e

        try:
            await self.backend.put(
                self.table,
                key,
                serialized,
                to_epoch(entry.created_at),
                to_epoch(entry.expires_at),
            )
        except CacheError as e:
            logger.error(f"Failed to persist {self.table}/{key}: {e}")
            raise
        return entry

    async def delete(self, key: str) -> None:
        """Remove a key from both tiers; no-op if absent."""
        self._memory.pop(key, None)
        await self._delete_persistent(key)

    async def _delete_persistent(self, key: str) -> None:
        if self.backend is None:
            return
        try:
            await self.backend.delete(self.table, key)
        except CacheError as e:
            logger.error(f"Failed to remove cached {self.table}/{key}: {e}")

    async def sweep_expired(self) -> int:
        """Remove every entry whose expiry has passed from both tiers.

        Works in batches and yields to the event loop between them so that
        ordinary traffic is not starved.

        Returns:
            Number of entries removed (memory and persistent counted separately)
        """
        now = self._now()
        removed = 0

        keys = list(self._memory.keys())
        for start in range(0, len(keys), self.batch_size):
            for key in keys[start : start + self.batch_size]:
                entry = self._memory.get(key)
                if entry is not None and entry.is_expired(now):
                    del self._memory[key]
                    removed += 1
            await asyncio.sleep(0)

        if self.backend is not None:
            cutoff = to_epoch(now)
            while True:
                deleted = await self.backend.delete_expired(
                    self.table, cutoff, self.batch_size
                )
                removed += deleted
                if deleted < self.batch_size:
                    break

        if removed:
            logger.info(f"Swept {removed} expired entries from {self.table}")
        return removed

    async def clear(self) -> None:
        """Remove every entry from both tiers."""
        self._memory.clear()
        if self.backend is not None:
            await self.backend.clear(self.table)

    def memory_size(self, now: Optional[datetime] = None) -> int:
        """Exact size in bytes of the live JSON-serialized memory entries.

        Entries that expired but were not swept yet are left out. Returns 0
        when nothing live is held.
        """
        now = ensure_utc(now) if now is not None else self._now()
        return sum(
            len(
                json.dumps(
                    {
                        "key": entry.key,
                        "payload": entry.payload,
                        "created_at": entry.created_at,
                        "expires_at": entry.expires_at,
                    },
                    separators=(",", ":"),
                    default=str,
                ).encode("utf-8")
            )
            for entry in list(self._memory.values())
            if not entry.is_expired(now)
        )

    async def stats(self) -> StoreStats:
        """Live entry count and size estimates.

        The count is the number of unexpired persistent rows when a backend
        is present, else the number of unexpired memory entries.
        """
        now = self._now()
        if self.backend is not None:
            count = await self.backend.count(self.table, to_epoch(now))
        else:
            count = sum(1 for e in self._memory.values() if not e.is_expired(now))
        return StoreStats(
            count=count,
            memory_bytes=self.memory_size(now),
            persistent_bytes=count * self.estimated_entry_bytes if self.persistent else 0,
        )

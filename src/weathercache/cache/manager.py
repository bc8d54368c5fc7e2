"""Cache manager for historical weather and analytics records."""

import asyncio
import logging
import math
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from weathercache.cache.config import CacheConfig, get_global_config
from weathercache.cache.metadata import CacheStatistics
from weathercache.cache.store import CacheStore
from weathercache.cache.validation import utcnow
from weathercache.dates import DateLike, to_calendar_date
from weathercache.errors import CacheClosedError, CacheError
from weathercache.storage.backend import PersistentBackend
from weathercache.storage.categories import AnalysisType, StoreKind, TimeRange

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheStats:
    """Merged statistics for both stores.

    ``estimated_storage_size`` is a rough per-entry estimate of the persistent
    tier, not a measurement. ``memory_size`` is the exact JSON size of the
    memory tier.
    """

    historical_count: int
    analytics_count: int
    memory_size: int
    estimated_storage_size: int
    hits: int
    misses: int
    hit_rate: float
    persistent: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def create_backend(config: CacheConfig) -> Optional[PersistentBackend]:
    """Build the persistent tier for a configuration.

    Returns:
        An unopened backend, or None when the configuration is memory-only
    """
    if not config.persistent:
        return None
    return PersistentBackend(config.db_path, lock_timeout=config.lock_timeout)


class CacheManager:
    """Two-tier cache for historical weather and derived analytics.

    Historical records are keyed by rounded coordinates and calendar day and
    live for ``config.historical_ttl`` seconds; analytics records are keyed
    by location, analysis type and time range and live for
    ``config.analytics_ttl`` seconds.

    The persistent tier is opened by :meth:`initialize`. If it cannot be
    opened, or the configuration disables it, the manager runs memory-only
    for its whole lifetime.

    Examples:
        >>> manager = CacheManager(CacheConfig(cache_dir="/tmp/weather"))
        >>> await manager.initialize()
        >>> await manager.set_historical(40.7128, -74.006, date(2023, 1, 1), data)
        >>> await manager.get_historical(40.7128, -74.006, date(2023, 1, 1))
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        backend: Optional[PersistentBackend] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize cache manager (no I/O until :meth:`initialize`).

        Args:
            config: Cache configuration (uses global if None)
            backend: Persistent tier to use instead of the one built from
                ``config``
            clock: Source of the current time
        """
        self.config = config or get_global_config()
        self.clock = clock
        self._backend = backend if backend is not None else create_backend(self.config)
        self._historical: Optional[CacheStore] = None
        self._analytics: Optional[CacheStore] = None
        self._init_task: Optional[asyncio.Future] = None
        self._initialized = False
        self._closed = False
        self.statistics = CacheStatistics()

    @property
    def is_initialized(self) -> bool:
        return self._initialized and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def persistent(self) -> bool:
        """Whether entries are written through to the persistent tier."""
        return self._backend is not None and self._initialized

    async def initialize(self) -> None:
        """Open the persistent tier and build both stores.

        Idempotent; concurrent callers await the same initialization.

        Raises:
            CacheClosedError: If the manager was already closed
        """
        if self._closed:
            raise CacheClosedError("Cache manager is closed")
        if self._initialized:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        try:
            await asyncio.shield(self._init_task)
        except CacheClosedError:
            raise
        except Exception:
            # Allow a later call to retry
            self._init_task = None
            raise

    async def _initialize(self) -> None:
        backend = self._backend
        if backend is not None:
            try:
                await backend.open()
            except CacheError as e:
                logger.warning(
                    f"Persistent cache unavailable, continuing memory-only: {e}"
                )
                backend = None

        if self._closed:
            if backend is not None:
                backend.close()
            raise CacheClosedError("Cache manager closed during initialization")

        self._backend = backend
        store_options = dict(
            backend=backend,
            clock=self.clock,
            batch_size=self.config.sweep_batch_size,
            estimated_entry_bytes=self.config.estimated_entry_bytes,
        )
        self._historical = CacheStore(StoreKind.HISTORICAL.table, **store_options)
        self._analytics = CacheStore(StoreKind.ANALYTICS.table, **store_options)
        self._initialized = True
        mode = f"persistent at {backend.db_path}" if backend else "memory-only"
        logger.info(f"Historical weather cache initialized ({mode})")

    def _store(self, kind: StoreKind) -> CacheStore:
        if self._closed:
            raise CacheClosedError("Cache manager is closed")
        if not self._initialized:
            raise CacheError("Cache manager not initialized")
        return self._historical if kind is StoreKind.HISTORICAL else self._analytics

    @staticmethod
    def _normalize_coordinate(value: float) -> str:
        """Round a coordinate to 4 decimals for use in a key.

        Examples:
            >>> CacheManager._normalize_coordinate(40.71280001)
            '40.7128'
            >>> CacheManager._normalize_coordinate(-0.00001)
            '0.0000'
        """
        value = float(value)
        if not math.isfinite(value):
            raise ValueError(f"Coordinate must be finite, got {value}")
        # + 0.0 turns -0.0 into 0.0
        return f"{round(value, 4) + 0.0:.4f}"

    @classmethod
    def historical_key(cls, lat: float, lon: float, day: DateLike) -> str:
        """Key for a historical record: ``{lat}_{lon}_{YYYY-MM-DD}``.

        Examples:
            >>> CacheManager.historical_key(40.7128, -74.006, date(2023, 1, 1))
            '40.7128_-74.0060_2023-01-01'
        """
        return (
            f"{cls._normalize_coordinate(lat)}_{cls._normalize_coordinate(lon)}_"
            f"{to_calendar_date(day).isoformat()}"
        )

    @staticmethod
    def analytics_key(
        location_id: str,
        analysis_type: Union[AnalysisType, str],
        time_range: Union[TimeRange, str],
    ) -> str:
        """Key for an analytics record: ``{location}_{type}_{range}``.

        Raises:
            ValueError: For an empty location or an unknown type or range
        """
        if not location_id:
            raise ValueError("location_id must be a non-empty string")
        return (
            f"{location_id}_{AnalysisType(analysis_type).value}_"
            f"{TimeRange(time_range).value}"
        )

    async def _get(self, kind: StoreKind, key: str) -> Optional[Any]:
        entry = await self._store(kind).get(key)
        if entry is None:
            self.statistics.record_miss(kind)
            return None
        self.statistics.record_hit(kind)
        return entry.payload

    async def _set(self, kind: StoreKind, key: str, data: Any, ttl: int) -> None:
        store = self._store(kind)
        self.statistics.record_write(kind)
        await store.set(key, data, ttl)

    async def get_historical(self, lat: float, lon: float, day: DateLike) -> Optional[Any]:
        """Cached historical weather for a location and day, or None."""
        return await self._get(StoreKind.HISTORICAL, self.historical_key(lat, lon, day))

    async def set_historical(self, lat: float, lon: float, day: DateLike, data: Any) -> None:
        """Cache historical weather for ``config.historical_ttl`` seconds.

        Raises:
            CacheError: If the persistent write fails; the value stays in the
                memory tier regardless
        """
        await self._set(
            StoreKind.HISTORICAL,
            self.historical_key(lat, lon, day),
            data,
            self.config.historical_ttl,
        )

    async def remove_historical(self, lat: float, lon: float, day: DateLike) -> None:
        await self._store(StoreKind.HISTORICAL).delete(self.historical_key(lat, lon, day))

    async def get_analytics(
        self,
        location_id: str,
        analysis_type: Union[AnalysisType, str],
        time_range: Union[TimeRange, str],
    ) -> Optional[Any]:
        """Cached analytics result, or None."""
        key = self.analytics_key(location_id, analysis_type, time_range)
        return await self._get(StoreKind.ANALYTICS, key)

    async def set_analytics(
        self,
        location_id: str,
        analysis_type: Union[AnalysisType, str],
        time_range: Union[TimeRange, str],
        data: Any,
    ) -> None:
        """Cache an analytics result for ``config.analytics_ttl`` seconds.

        Raises:
            CacheError: If the persistent write fails; the value stays in the
                memory tier regardless
        """
        key = self.analytics_key(location_id, analysis_type, time_range)
        await self._set(StoreKind.ANALYTICS, key, data, self.config.analytics_ttl)

    async def remove_analytics(
        self,
        location_id: str,
        analysis_type: Union[AnalysisType, str],
        time_range: Union[TimeRange, str],
    ) -> None:
        key = self.analytics_key(location_id, analysis_type, time_range)
        await self._store(StoreKind.ANALYTICS).delete(key)

    async def clear_expired(self) -> int:
        """Sweep expired entries out of both stores.

        Returns:
            Number of entries removed
        """
        removed = await self._store(StoreKind.HISTORICAL).sweep_expired()
        removed += await self._store(StoreKind.ANALYTICS).sweep_expired()
        return removed

    async def clear_all(self) -> None:
        """Empty both stores and reset hit/miss statistics."""
        await self._store(StoreKind.HISTORICAL).clear()
        await self._store(StoreKind.ANALYTICS).clear()
        self.statistics.reset()

    async def stats(self) -> CacheStats:
        """Merged entry counts, sizes and hit/miss counters."""
        historical = await self._store(StoreKind.HISTORICAL).stats()
        analytics = await self._store(StoreKind.ANALYTICS).stats()
        counters = self.statistics.get_stats()
        return CacheStats(
            historical_count=historical.count,
            analytics_count=analytics.count,
            memory_size=historical.memory_bytes + analytics.memory_bytes,
            estimated_storage_size=historical.persistent_bytes
            + analytics.persistent_bytes,
            hits=counters["hits"],
            misses=counters["misses"],
            hit_rate=counters["hit_rate"],
            persistent=self.persistent,
        )

    def close(self) -> None:
        """Release the persistent tier. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._backend is not None:
            self._backend.close()


# Process-wide instance
_manager: Optional[CacheManager] = None
_manager_lock = threading.Lock()


async def get_cache_manager(config: Optional[CacheConfig] = None) -> CacheManager:
    """Get the process-wide cache manager, creating and initializing it once.

    Concurrent first callers share one instance and one initialization. A
    closed instance is replaced on the next call.

    Args:
        config: Configuration used only when a new instance is created
    """
    global _manager
    with _manager_lock:
        if _manager is None or _manager.is_closed:
            _manager = CacheManager(config)
        manager = _manager
    await manager.initialize()
    return manager


def reset_cache_manager() -> None:
    """Close and forget the process-wide cache manager."""
    global _manager
    with _manager_lock:
        if _manager is not None:
            _manager.close()
        _manager = None

"""Read-through access to the cache with graceful degradation.

The fetcher never lets the cache stand between a caller and its data: an
uninitialized or failing cache falls back to calling the fetch function
directly, and a failed write-back is logged, not raised.

Examples:
    >>> fetcher = CachedFetcher(manager)
    >>> data = await fetcher.fetch_with_cache(
    ...     40.7128, -74.006, date(2023, 1, 1),
    ...     lambda: with_retry(lambda: client.history(40.7128, -74.006, day)),
    ... )
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from weathercache.cache.manager import CacheManager
from weathercache.dates import DateLike
from weathercache.storage.categories import AnalysisType, TimeRange

logger = logging.getLogger(__name__)

T = TypeVar("T")

FetchFn = Callable[[], Union[T, Awaitable[T]]]


async def _call(fn: FetchFn) -> Any:
    result = fn()
    if inspect.isawaitable(result):
        result = await result
    return result


class CachedFetcher:
    """Read-through, write-back access to a :class:`CacheManager`.

    Args:
        manager: Cache manager; may be None or not yet initialized, in which
            case every call goes straight to the fetch function
    """

    def __init__(self, manager: Optional[CacheManager] = None):
        self.manager = manager
        self._init_task: Optional[asyncio.Task] = None

    @property
    def cache_ready(self) -> bool:
        return self.manager is not None and self.manager.is_initialized

    def start(self) -> None:
        """Initialize the manager in the background without blocking reads."""
        if self.manager is None or self.cache_ready or self._init_task is not None:
            return
        self._init_task = asyncio.get_running_loop().create_task(self.manager.initialize())
        self._init_task.add_done_callback(self._log_init_failure)

    @staticmethod
    def _log_init_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Failed to initialize historical weather cache: {error}")

    async def fetch_with_cache(
        self, lat: float, lon: float, day: DateLike, fetch_fn: FetchFn
    ) -> Any:
        """Historical weather for a location and day, cached for 24 hours.

        Args:
            lat: Latitude
            lon: Longitude
            day: Date (time of day is ignored)
            fetch_fn: Zero-argument function producing the data on a miss

        Returns:
            Cached or freshly fetched data

        Raises:
            Whatever ``fetch_fn`` raises; cache failures never propagate
        """
        manager = self.manager
        return await self._read_through(
            lambda: manager.get_historical(lat, lon, day),
            lambda data: manager.set_historical(lat, lon, day, data),
            fetch_fn,
            f"historical weather {lat},{lon} on {day}",
        )

    async def fetch_analytics_with_cache(
        self,
        location_id: str,
        analysis_type: Union[AnalysisType, str],
        time_range: Union[TimeRange, str],
        compute_fn: FetchFn,
    ) -> Any:
        """Analytics for a location, cached for 6 hours.

        Same contract as :meth:`fetch_with_cache`.
        """
        manager = self.manager
        return await self._read_through(
            lambda: manager.get_analytics(location_id, analysis_type, time_range),
            lambda data: manager.set_analytics(location_id, analysis_type, time_range, data),
            compute_fn,
            f"{analysis_type} analytics for {location_id} ({time_range})",
        )

    async def _read_through(
        self,
        read: Callable[[], Awaitable[Any]],
        write: Callable[[Any], Awaitable[None]],
        fetch_fn: FetchFn,
        label: str,
    ) -> Any:
        if not self.cache_ready:
            return await _call(fetch_fn)

        try:
            cached = await read()
        except Exception as e:
            logger.warning(f"Cache error for {label}, falling back to fetch: {e}")
            return await _call(fetch_fn)

        if cached is not None:
            return cached

        data = await _call(fetch_fn)
        # A write already under way completes even if the caller is cancelled
        await asyncio.shield(self._write_back(write, data, label))
        return data

    @staticmethod
    async def _write_back(
        write: Callable[[Any], Awaitable[None]], data: Any, label: str
    ) -> None:
        try:
            await write(data)
        except Exception as e:
            logger.warning(f"Failed to cache {label}, returning fetched data: {e}")

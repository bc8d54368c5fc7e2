"""Periodic removal of expired cache entries."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from weathercache.cache.manager import CacheManager

logger = logging.getLogger(__name__)


class CacheSweeper:
    """Runs :meth:`CacheManager.clear_expired` once at start, then on a timer.

    A failed sweep is logged and the next one still runs.

    Examples:
        >>> sweeper = CacheSweeper(manager, interval=3600)
        >>> sweeper.start()
        >>> ...
        >>> await sweeper.stop()
    """

    def __init__(
        self,
        manager: CacheManager,
        interval: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.manager = manager
        self.interval = interval if interval is not None else manager.config.sweep_interval
        if self.interval <= 0:
            raise ValueError(f"interval must be positive, got {self.interval}")
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.sweeps = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the sweep loop on the running event loop (no-op if running)."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def sweep_once(self) -> int:
        """Run a single sweep; failures are logged and reported as 0 removals."""
        try:
            removed = await self.manager.clear_expired()
        except Exception as e:
            logger.error(f"Cache cleanup failed: {e}")
            return 0
        finally:
            self.sweeps += 1
        return removed

    async def _run(self) -> None:
        while True:
            await self.sweep_once()
            await self._sleep(self.interval)

"""Tests for read-through fetching."""

import asyncio
import logging
from datetime import date

import pytest

from weathercache.cache.manager import CacheManager
from weathercache.errors import CacheError, HistoricalWeatherError, network_error
from weathercache.fetch import CachedFetcher
from weathercache.retry import RetryConfig, with_retry
from weathercache.storage.backend import PersistentBackend

DAY = date(2023, 1, 1)


class CountingFetch:
    """Fetch function that counts calls."""

    def __init__(self, result=None, error=None):
        self.result = result if result is not None else {"temp": 12.5}
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


class FailingPutBackend(PersistentBackend):
    async def put(self, table, key, payload, created_at, expires_at):
        raise CacheError("disk full")


class FailingGetBackend(PersistentBackend):
    async def get(self, table, key):
        raise RuntimeError("driver crashed")


class SlowPutBackend(PersistentBackend):
    """Backend whose writes signal when they start and when they finish."""

    put_started = None
    put_finished = None

    async def put(self, table, key, payload, created_at, expires_at):
        self.put_started.set()
        await asyncio.sleep(0.05)
        await super().put(table, key, payload, created_at, expires_at)
        self.put_finished.set()


@pytest.fixture
def manager(cache_config, clock):
    manager = CacheManager(cache_config, clock=clock)
    asyncio.run(manager.initialize())
    yield manager
    manager.close()


@pytest.fixture
def fetcher(manager):
    return CachedFetcher(manager)


class TestReadThrough:
    """Test cache hits and misses."""

    def test_single_fetch_within_ttl(self, fetcher):
        fetch = CountingFetch()

        async def scenario():
            first = await fetcher.fetch_with_cache(40.7128, -74.006, DAY, fetch)
            second = await fetcher.fetch_with_cache(40.71280001, -74.006, DAY, fetch)
            return first, second

        assert asyncio.run(scenario()) == ({"temp": 12.5}, {"temp": 12.5})
        assert fetch.calls == 1

    def test_refetch_after_expiry(self, fetcher, clock):
        fetch = CountingFetch()
        asyncio.run(fetcher.fetch_with_cache(1, 2, DAY, fetch))
        clock.advance(24 * 3600)
        asyncio.run(fetcher.fetch_with_cache(1, 2, DAY, fetch))
        assert fetch.calls == 2

    def test_sync_fetch_function(self, fetcher):
        result = asyncio.run(fetcher.fetch_with_cache(1, 2, DAY, lambda: {"temp": 1}))
        assert result == {"temp": 1}

    def test_analytics(self, fetcher):
        compute = CountingFetch(result={"trend": "warming"})

        async def scenario():
            await fetcher.fetch_analytics_with_cache("nyc", "trends", "30d", compute)
            return await fetcher.fetch_analytics_with_cache("nyc", "trends", "30d", compute)

        assert asyncio.run(scenario()) == {"trend": "warming"}
        assert compute.calls == 1

    def test_fetch_error_propagates_and_is_not_cached(self, fetcher, manager):
        fetch = CountingFetch(error=network_error())
        with pytest.raises(HistoricalWeatherError):
            asyncio.run(fetcher.fetch_with_cache(1, 2, DAY, fetch))
        assert asyncio.run(manager.get_historical(1, 2, DAY)) is None

    def test_with_retry_inside_fetch(self, fetcher, recording_sleep):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 2:
                raise ConnectionError("reset")
            return {"temp": 3}

        config = RetryConfig(sleep=recording_sleep)
        result = asyncio.run(
            fetcher.fetch_with_cache(
                1, 2, DAY, lambda: with_retry(flaky, context="history", config=config)
            )
        )
        assert result == {"temp": 3}
        assert len(attempts) == 2


class TestCancellation:
    """Test caller cancellation during write-back."""

    def test_started_write_completes_after_cancel(self, cache_config, clock):
        backend = SlowPutBackend(cache_config.db_path)
        manager = CacheManager(cache_config, backend=backend, clock=clock)
        fetcher = CachedFetcher(manager)

        async def scenario():
            await manager.initialize()
            backend.put_started = asyncio.Event()
            backend.put_finished = asyncio.Event()

            task = asyncio.ensure_future(
                fetcher.fetch_with_cache(1, 2, DAY, CountingFetch(result={"t": 2}))
            )
            await backend.put_started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            await asyncio.wait_for(backend.put_finished.wait(), timeout=5)
            return await backend.get(
                "historical_weather", CacheManager.historical_key(1, 2, DAY)
            )

        try:
            row = asyncio.run(scenario())
        finally:
            manager.close()
        assert row is not None
        assert row.payload == '{"t":2}'


class TestDegradation:
    """Test behaviour when the cache is unusable."""

    def test_no_manager(self):
        fetch = CountingFetch()
        fetcher = CachedFetcher()
        asyncio.run(fetcher.fetch_with_cache(1, 2, DAY, fetch))
        asyncio.run(fetcher.fetch_with_cache(1, 2, DAY, fetch))
        assert fetch.calls == 2
        assert not fetcher.cache_ready

    def test_uninitialized_manager_fetches_directly(self, cache_config):
        fetch = CountingFetch()
        fetcher = CachedFetcher(CacheManager(cache_config))
        assert asyncio.run(fetcher.fetch_with_cache(1, 2, DAY, fetch)) == {"temp": 12.5}
        assert fetch.calls == 1

    def test_write_failure_returns_data(self, cache_config, clock, caplog):
        backend = FailingPutBackend(cache_config.db_path)
        manager = CacheManager(cache_config, backend=backend, clock=clock)
        fetcher = CachedFetcher(manager)
        fetch = CountingFetch()

        async def scenario():
            await manager.initialize()
            first = await fetcher.fetch_with_cache(1, 2, DAY, fetch)
            # memory tier still holds the value
            second = await fetcher.fetch_with_cache(1, 2, DAY, fetch)
            return first, second

        try:
            with caplog.at_level(logging.WARNING):
                assert asyncio.run(scenario()) == ({"temp": 12.5}, {"temp": 12.5})
        finally:
            manager.close()
        assert fetch.calls == 1
        assert "Failed to cache" in caplog.text

    def test_read_failure_falls_back_to_fetch(self, cache_config, clock, caplog):
        backend = FailingGetBackend(cache_config.db_path)
        manager = CacheManager(cache_config, backend=backend, clock=clock)
        fetcher = CachedFetcher(manager)
        fetch = CountingFetch()

        async def scenario():
            await manager.initialize()
            return await fetcher.fetch_with_cache(1, 2, DAY, fetch)

        try:
            with caplog.at_level(logging.WARNING):
                assert asyncio.run(scenario()) == {"temp": 12.5}
        finally:
            manager.close()
        assert fetch.calls == 1
        assert "falling back to fetch" in caplog.text

    def test_closed_manager_fetches_directly(self, fetcher, manager):
        manager.close()
        fetch = CountingFetch()
        assert asyncio.run(fetcher.fetch_with_cache(1, 2, DAY, fetch)) == {"temp": 12.5}
        assert fetch.calls == 1


class TestBackgroundStart:
    """Test non-blocking initialization."""

    def test_start_initializes_in_background(self, cache_config):
        manager = CacheManager(cache_config)
        fetcher = CachedFetcher(manager)

        async def scenario():
            fetcher.start()
            fetcher.start()
            await fetcher._init_task
            return fetcher.cache_ready

        try:
            assert asyncio.run(scenario()) is True
        finally:
            manager.close()

"""Tests for the periodic expiry sweeper."""

import asyncio

import pytest

from weathercache.cache.cleanup import CacheSweeper
from weathercache.cache.manager import CacheManager


class StopAfter:
    """Sleep replacement that records delays and cancels after ``limit`` calls."""

    def __init__(self, limit):
        self.limit = limit
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        if len(self.delays) >= self.limit:
            raise asyncio.CancelledError()
        await asyncio.sleep(0)


class BrokenManager:
    """Manager stand-in whose sweeps always fail."""

    class config:
        sweep_interval = 60

    def __init__(self):
        self.calls = 0

    async def clear_expired(self):
        self.calls += 1
        raise RuntimeError("database is locked")


@pytest.fixture
def manager(memory_config, clock):
    manager = CacheManager(memory_config, clock=clock)
    asyncio.run(manager.initialize())
    yield manager
    manager.close()


class TestCacheSweeper:
    """Test sweep scheduling."""

    def test_interval_from_config(self, manager):
        assert CacheSweeper(manager).interval == 3600

    def test_invalid_interval(self, manager):
        with pytest.raises(ValueError):
            CacheSweeper(manager, interval=0)

    def test_sweep_once_removes_expired(self, manager, clock):
        sweeper = CacheSweeper(manager)

        async def scenario():
            await manager.set_analytics("nyc", "trends", "7d", {"a": 1})
            clock.advance(6 * 3600)
            return await sweeper.sweep_once()

        assert asyncio.run(scenario()) == 1
        assert sweeper.sweeps == 1

    def test_failed_sweep_is_logged(self, caplog):
        sweeper = CacheSweeper(BrokenManager())
        assert asyncio.run(sweeper.sweep_once()) == 0
        assert sweeper.sweeps == 1
        assert "Cache cleanup failed" in caplog.text

    def test_loop_sweeps_then_sleeps(self):
        broken = BrokenManager()
        sleep = StopAfter(3)
        sweeper = CacheSweeper(broken, interval=5, sleep=sleep)

        async def scenario():
            sweeper.start()
            assert sweeper.running
            with pytest.raises(asyncio.CancelledError):
                await sweeper._task

        asyncio.run(scenario())
        # sweeping continues after failures
        assert broken.calls == 3
        assert sleep.delays == [5, 5, 5]
        assert not sweeper.running

    def test_start_twice_and_stop(self, manager):
        sweeper = CacheSweeper(manager, interval=1000)

        async def scenario():
            sweeper.start()
            task = sweeper._task
            sweeper.start()
            assert sweeper._task is task
            await asyncio.sleep(0)
            await sweeper.stop()
            await sweeper.stop()

        asyncio.run(scenario())
        assert not sweeper.running
        assert sweeper.sweeps == 1

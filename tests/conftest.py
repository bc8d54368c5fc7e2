"""Shared fixtures for weathercache tests."""

from datetime import datetime, timedelta, timezone

import pytest

from weathercache.cache.config import CacheConfig
from weathercache.cache.manager import reset_cache_manager


class FakeClock:
    """Controllable clock returning aware UTC datetimes."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def clock():
    """Clock starting at 2024-06-01 12:00 UTC."""
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def cache_config(tmp_path):
    """Persistent configuration rooted in a temporary directory."""
    return CacheConfig(cache_dir=tmp_path / "cache", lock_timeout=5)


@pytest.fixture
def memory_config(tmp_path):
    """Memory-only configuration."""
    return CacheConfig(persistent=False, cache_dir=tmp_path / "unused")


@pytest.fixture(autouse=True)
def _reset_process_manager():
    yield
    reset_cache_manager()

"""Tests for the two-tier TTL store."""

import asyncio
from datetime import date

import pytest

from weathercache.cache.store import CacheEntry, CacheStore, serialize_payload
from weathercache.errors import CacheError
from weathercache.storage.backend import PersistentBackend

TABLE = "historical_weather"


class FailingPutBackend(PersistentBackend):
    """Backend whose writes always fail."""

    async def put(self, table, key, payload, created_at, expires_at):
        raise CacheError("disk full")


@pytest.fixture
def backend(tmp_path):
    backend = PersistentBackend(tmp_path / "weather_history.db", lock_timeout=5)
    asyncio.run(backend.open())
    yield backend
    backend.close()


@pytest.fixture
def store(backend, clock):
    return CacheStore(TABLE, backend=backend, clock=clock, batch_size=2)


@pytest.fixture
def memory_store(clock):
    return CacheStore(TABLE, clock=clock, batch_size=2)


class TestGetSet:
    """Test basic reads and writes."""

    def test_set_then_get(self, store, clock):
        async def scenario():
            written = await store.set("k", {"temp": 21.5}, ttl=60)
            return written, await store.get("k")

        written, entry = asyncio.run(scenario())
        assert isinstance(entry, CacheEntry)
        assert entry.payload == {"temp": 21.5}
        assert entry.created_at == clock.now
        assert written.expires_at == entry.expires_at

    def test_get_missing(self, store):
        assert asyncio.run(store.get("missing")) is None

    def test_set_replaces_entry(self, store):
        async def scenario():
            await store.set("k", 1, ttl=60)
            await store.set("k", 2, ttl=60)
            return await store.get("k")

        assert asyncio.run(scenario()).payload == 2

    def test_non_positive_ttl(self, store):
        with pytest.raises(ValueError):
            asyncio.run(store.set("k", 1, ttl=0))

    def test_persistent_hit_fills_memory(self, backend, clock):
        async def scenario():
            writer = CacheStore(TABLE, backend=backend, clock=clock)
            await writer.set("k", [1, 2, 3], ttl=60)

            reader = CacheStore(TABLE, backend=backend, clock=clock)
            entry = await reader.get("k")
            return entry, reader.memory_size()

        entry, memory = asyncio.run(scenario())
        assert entry.payload == [1, 2, 3]
        assert memory > 0

    def test_dates_stored_as_iso_strings(self, backend, clock):
        async def scenario():
            writer = CacheStore(TABLE, backend=backend, clock=clock)
            await writer.set("k", {"day": date(2023, 1, 1)}, ttl=60)
            reader = CacheStore(TABLE, backend=backend, clock=clock)
            return await reader.get("k")

        assert asyncio.run(scenario()).payload == {"day": "2023-01-01"}

    def test_unserializable_payload(self, store):
        with pytest.raises(CacheError):
            asyncio.run(store.set("k", object(), ttl=60))


class TestExpiry:
    """Test lazy expiry and sweeping."""

    def test_expired_entry_is_miss(self, store, clock):
        asyncio.run(store.set("k", 1, ttl=60))
        clock.advance(59)
        assert asyncio.run(store.get("k")) is not None
        clock.advance(1)
        assert asyncio.run(store.get("k")) is None

    def test_expired_read_deletes_persistent_row(self, store, backend, clock):
        asyncio.run(store.set("k", 1, ttl=60))
        clock.advance(61)
        assert asyncio.run(store.get("k")) is None
        assert asyncio.run(backend.count(TABLE)) == 0

    def test_sweep_removes_only_expired(self, store, backend, clock):
        async def scenario():
            for i in range(5):
                await store.set(f"old{i}", i, ttl=10)
            await store.set("fresh", "x", ttl=1000)
            clock.advance(10)
            removed = await store.sweep_expired()
            return removed, await backend.count(TABLE), await store.get("fresh")

        removed, remaining, fresh = asyncio.run(scenario())
        # 5 memory entries + 5 rows
        assert removed == 10
        assert remaining == 1
        assert fresh.payload == "x"

    def test_sweep_nothing_expired(self, store):
        asyncio.run(store.set("k", 1, ttl=60))
        assert asyncio.run(store.sweep_expired()) == 0


class TestFailures:
    """Test tier failures."""

    def test_failed_persist_keeps_memory(self, tmp_path, clock):
        backend = FailingPutBackend(tmp_path / "weather_history.db")

        async def scenario():
            await backend.open()
            store = CacheStore(TABLE, backend=backend, clock=clock)
            with pytest.raises(CacheError):
                await store.set("k", {"temp": 1}, ttl=60)
            return await store.get("k")

        try:
            entry = asyncio.run(scenario())
        finally:
            backend.close()
        assert entry.payload == {"temp": 1}

    def test_closed_backend_read_is_miss(self, store, backend):
        backend.close()
        assert asyncio.run(store.get("k")) is None

    def test_corrupt_row_discarded(self, store, backend, clock):
        async def scenario():
            await backend.put(TABLE, "k", "{not json", 0.0, 4102444800.0)
            entry = await store.get("k")
            return entry, await backend.count(TABLE)

        assert asyncio.run(scenario()) == (None, 0)


class TestMemoryOnly:
    """Test a store without a persistent tier."""

    def test_round_trip(self, memory_store):
        async def scenario():
            await memory_store.set("k", {"a": 1}, ttl=60)
            return await memory_store.get("k")

        assert asyncio.run(scenario()).payload == {"a": 1}
        assert not memory_store.persistent

    def test_stats(self, memory_store, clock):
        async def scenario():
            await memory_store.set("a", 1, ttl=60)
            await memory_store.set("b", 2, ttl=10)
            clock.advance(10)
            return await memory_store.stats()

        stats = asyncio.run(scenario())
        assert stats.count == 1
        assert stats.memory_bytes > 0
        assert stats.persistent_bytes == 0

    def test_clear(self, memory_store):
        async def scenario():
            await memory_store.set("a", 1, ttl=60)
            await memory_store.clear()
            return await memory_store.get("a"), memory_store.memory_size()

        assert asyncio.run(scenario()) == (None, 0)


class TestStats:
    """Test size reporting with a persistent tier."""

    def test_estimated_persistent_bytes(self, store):
        async def scenario():
            await store.set("a", 1, ttl=60)
            await store.set("b", 2, ttl=60)
            return await store.stats()

        stats = asyncio.run(scenario())
        assert stats.count == 2
        assert stats.persistent_bytes == 2000

    def test_expired_entries_not_reported(self, store, clock):
        async def scenario():
            await store.set("old", {"temp": 1}, ttl=60)
            await store.set("fresh", {"temp": 2}, ttl=600)
            before = store.memory_size()
            clock.advance(60)
            return before, await store.stats()

        before, stats = asyncio.run(scenario())
        assert stats.count == 1
        assert stats.persistent_bytes == 1000
        assert 0 < stats.memory_bytes < before

    def test_serialize_payload_is_compact(self):
        assert serialize_payload({"a": [1, 2]}) == '{"a":[1,2]}'

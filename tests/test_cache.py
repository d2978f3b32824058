"""Tests for the result cache."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from novelscout.cache import MemoryBackend, ResultCache
from novelscout.models import NovelRecord, SearchQuery


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


RECORDS = [
    NovelRecord(title="Dragon King", author="Li", link="https://a.example/1", source="A"),
    NovelRecord(title="Dragon Slayer", link="https://a.example/2", source="A"),
]


class TestResultCache:
    @pytest.mark.asyncio
    async def test_put_then_get_returns_identical_records(self):
        cache = ResultCache(MemoryBackend())

        await cache.put("search:dragon|*", RECORDS)
        cached = await cache.get("search:dragon|*")

        assert cached == RECORDS
        assert cache.hits == 1

    @pytest.mark.asyncio
    async def test_missing_key_is_a_miss(self):
        cache = ResultCache(MemoryBackend())

        assert await cache.get("search:nothing|*") is None
        assert cache.misses == 1

    @pytest.mark.asyncio
    async def test_entries_expire_lazily(self):
        clock = FakeClock()
        backend = MemoryBackend(clock=clock)
        cache = ResultCache(backend, ttl=3600)
        await cache.put("k", RECORDS)

        clock.now += 3599
        assert await cache.get("k") == RECORDS

        clock.now += 1
        assert await cache.get("k") is None
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_keeps_the_backend_it_was_given(self):
        backend = MemoryBackend()
        cache = ResultCache(backend)

        await cache.put("k", RECORDS)

        assert cache.backend is backend
        assert len(backend) == 1

    @pytest.mark.asyncio
    async def test_explicit_ttl_overrides_default(self):
        clock = FakeClock()
        cache = ResultCache(MemoryBackend(clock=clock), ttl=3600)
        await cache.put("k", RECORDS, ttl=10)

        clock.now += 11

        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_backend_errors_are_absorbed(self):
        backend = MagicMock()
        backend.get = AsyncMock(side_effect=ConnectionError("redis down"))
        backend.set = AsyncMock(side_effect=ConnectionError("redis down"))
        cache = ResultCache(backend)

        await cache.put("k", RECORDS)
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_corrupt_payload_is_a_miss(self):
        backend = MemoryBackend()
        await backend.set("k", "{not json", 60)

        assert await ResultCache(backend).get("k") is None


class TestMemoryBackend:
    @pytest.mark.asyncio
    async def test_full_store_sweeps_expired_entries(self):
        clock = FakeClock(now=0.0)
        backend = MemoryBackend(clock=clock, max_entries=1000)
        for i in range(1000):
            await backend.set(f"search:{i}|*", "[]", 10)

        clock.now = 10000.0
        await backend.set("search:new|*", "[]", 10)

        assert len(backend) == 1
        assert await backend.get("search:new|*") == "[]"

    @pytest.mark.asyncio
    async def test_full_store_evicts_oldest_live_entry(self):
        backend = MemoryBackend(clock=FakeClock(), max_entries=3)
        for key in ("a", "b", "c"):
            await backend.set(key, key, 60)

        await backend.set("d", "d", 60)

        assert len(backend) == 3
        assert await backend.get("a") is None
        assert await backend.get("d") == "d"

    @pytest.mark.asyncio
    async def test_rewriting_a_key_does_not_evict(self):
        backend = MemoryBackend(clock=FakeClock(), max_entries=2)
        await backend.set("a", "1", 60)
        await backend.set("b", "1", 60)

        await backend.set("a", "2", 60)

        assert await backend.get("a") == "2"
        assert await backend.get("b") == "1"


class TestSignature:
    def test_normalises_case_and_whitespace(self):
        a = SearchQuery.parse("  Dragon   King ")
        b = SearchQuery.parse("dragon king")

        assert a.signature() == b.signature()

    def test_source_filter_is_part_of_the_key(self):
        assert SearchQuery.parse("dragon", "A").signature() != SearchQuery.parse("dragon").signature()

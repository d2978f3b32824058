"""Time-bounded memoisation of search results.

The cache is advisory: a backend failure is logged and treated as a miss
(or a skipped write), never surfaced to the caller. Payloads are stored as
JSON text, so a hit returns exactly what was written.

Two backends are provided. ``MemoryBackend`` keeps entries in a dict and
expires them lazily on read. ``RedisBackend`` lets several processes share
one cache through Redis' own key expiry; entries are immutable, so
concurrent writers simply last-write-win.
"""

from __future__ import annotations

import json
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import redis.asyncio as redis
from loguru import logger

from . import config
from .models import NovelRecord


class CacheBackend(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: float) -> None: ...

    async def close(self) -> None: ...


class MemoryBackend:
    """In-process store holding at most ``max_entries`` keys.

    Expired entries are dropped when read. Once the store is full, a write
    first sweeps every expired entry and then, if still full, evicts the
    oldest writes.
    """

    def __init__(self, clock: Callable[[], float] = time.time, max_entries: int = config.CACHE_MAX_ENTRIES) -> None:
        self.clock = clock
        self.max_entries = max(max_entries, 1)
        self._entries: Dict[str, Tuple[float, str]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expiry, value = entry
        if self.clock() >= expiry:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: float) -> None:
        now = self.clock()
        self._entries.pop(key, None)
        if len(self._entries) >= self.max_entries:
            self._purge(now)
            while len(self._entries) >= self.max_entries:
                del self._entries[next(iter(self._entries))]
        self._entries[key] = (now + ttl, value)

    def _purge(self, now: float) -> None:
        expired = [key for key, (expiry, _) in self._entries.items() if now >= expiry]
        for key in expired:
            del self._entries[key]

    async def close(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisBackend:
    def __init__(self, url: str, prefix: str = "novelscout:") -> None:
        self.prefix = prefix
        self._client = redis.Redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(self.prefix + key)

    async def set(self, key: str, value: str, ttl: float) -> None:
        await self._client.set(self.prefix + key, value, ex=max(int(ttl), 1))

    async def close(self) -> None:
        await self._client.aclose()


class ResultCache:
    def __init__(self, backend: Optional[CacheBackend] = None, ttl: float = config.CACHE_TTL) -> None:
        self.backend = backend if backend is not None else MemoryBackend()
        self.ttl = ttl
        self.hits = 0
        self.misses = 0

    @classmethod
    def from_config(cls) -> "ResultCache":
        if config.REDIS_URL:
            logger.info("Using Redis result cache")
            return cls(RedisBackend(config.REDIS_URL))
        return cls(MemoryBackend())

    async def get(self, signature: str) -> Optional[List[NovelRecord]]:
        try:
            raw = await self.backend.get(signature)
            if raw is None:
                self.misses += 1
                return None
            records = [NovelRecord.model_validate(item) for item in json.loads(raw)]
        except Exception as e:
            logger.warning(f"Cache read for {signature} failed, falling back to live fetch: {e}")
            self.misses += 1
            return None
        self.hits += 1
        return records

    async def put(self, signature: str, records: List[NovelRecord], ttl: Optional[float] = None) -> None:
        payload = json.dumps([r.model_dump() for r in records], ensure_ascii=False)
        try:
            await self.backend.set(signature, payload, ttl if ttl is not None else self.ttl)
        except Exception as e:
            logger.warning(f"Cache write for {signature} failed: {e}")

    async def close(self) -> None:
        try:
            await self.backend.close()
        except Exception as e:
            logger.warning(f"Cache close failed: {e}")

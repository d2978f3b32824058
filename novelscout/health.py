"""Periodic source health probing.

Each cycle sends a HEAD request to every registered source at once and
waits for all of them to settle, so one slow site only costs its own
timeout. Results flow into ``SourceRegistry.update_health``: a failed probe
disables the source, a later successful one re-enables it and refreshes its
latency.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Optional, Tuple

import httpx
from loguru import logger

from . import config
from .models import SourceDefinition
from .registry import SourceRegistry


class HealthMonitor:
    def __init__(
        self,
        registry: SourceRegistry,
        interval: float = config.HEALTH_INTERVAL,
        timeout: float = config.PROBE_TIMEOUT,
        client_factory: Callable[..., httpx.AsyncClient] = httpx.AsyncClient,
    ) -> None:
        self.registry = registry
        self.interval = interval
        self.timeout = min(timeout, 5.0)
        self.client_factory = client_factory
        self._task: Optional[asyncio.Task] = None

    async def probe(self, source: SourceDefinition, client: httpx.AsyncClient) -> Tuple[bool, Optional[float]]:
        """HEAD the source's base URL; return (ok, latency in milliseconds)."""
        started = time.perf_counter()
        try:
            # Hard ceiling for the whole probe, redirects included.
            response = await asyncio.wait_for(
                client.head(source.url, headers=source.headers or config.DEFAULT_HEADERS),
                timeout=self.timeout,
            )
        except (httpx.HTTPError, httpx.InvalidURL, asyncio.TimeoutError) as e:
            logger.warning(f"Probe of {source.name} failed: {type(e).__name__}: {e}")
            return False, None
        elapsed = (time.perf_counter() - started) * 1000.0
        if response.status_code >= 400:
            logger.warning(f"Probe of {source.name} returned HTTP {response.status_code}")
            return False, None
        return True, round(elapsed, 1)

    async def run_cycle(self) -> Dict[str, bool]:
        """Probe every registered source concurrently and record the results."""
        sources = self.registry.list(enabled_only=False)
        if not sources:
            return {}
        async with self.client_factory(timeout=self.timeout, follow_redirects=True) as client:
            results = await asyncio.gather(*(self.probe(s, client) for s in sources), return_exceptions=True)
        outcome: Dict[str, bool] = {}
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                logger.opt(exception=result).error(f"Probe of {source.name} raised unexpectedly")
                result = (False, None)
            ok, latency = result
            self.registry.update_health(source.name, ok, latency)
            outcome[source.name] = ok
        healthy = sum(outcome.values())
        logger.info(f"Health check finished: {healthy}/{len(outcome)} sources reachable")
        return outcome

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Health check cycle failed")
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        """Run one cycle now and then one every ``interval`` seconds."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

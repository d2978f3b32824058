"""Page retrieval through the shared browser with bounded timeout and retry."""

from __future__ import annotations

import asyncio
from typing import Dict, Optional

from loguru import logger
from playwright.async_api import Page

from . import config
from .browser import AutomationPool
from .errors import FetchFailed


class NavigationError(Exception):
    """The page answered with an HTTP error status."""


class ResilientFetcher:
    """Fetch rendered HTML, retrying the whole attempt on any failure.

    Every attempt leases a fresh page from the pool. With the defaults a
    URL is tried three times (two retries) back to back; ``backoff`` adds a
    capped exponential pause between attempts without changing the total
    attempt count.
    """

    def __init__(
        self,
        pool: AutomationPool,
        retries: int = config.FETCH_RETRIES,
        timeout: float = config.FETCH_TIMEOUT,
        wait_until: str = config.FETCH_WAIT_UNTIL,
        backoff: float = config.FETCH_BACKOFF,
        max_backoff: float = 8.0,
        grace: float = 1.0,
    ) -> None:
        self.pool = pool
        self.retries = max(retries, 0)
        self.timeout = timeout
        self.wait_until = wait_until
        self.backoff = backoff
        self.max_backoff = max_backoff
        # Extra time Playwright gets to raise its own timeout before the attempt is cancelled.
        self.grace = grace

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    async def fetch(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        delay: float = 0.0,
        timeout: Optional[float] = None,
    ) -> str:
        timeout = timeout or self.timeout
        merged = dict(config.DEFAULT_HEADERS)
        merged.update(headers or {})
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                # Hard ceiling for the whole attempt; cancellation releases the page.
                return await asyncio.wait_for(
                    self._attempt(url, merged, delay, timeout),
                    timeout=timeout + delay + self.grace,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                logger.warning(f"Fetch attempt {attempt}/{self.max_attempts} for {url} failed: {type(e).__name__}: {e}")
            if attempt < self.max_attempts and self.backoff > 0:
                await asyncio.sleep(min(self.backoff * (2 ** (attempt - 1)), self.max_backoff))
        raise FetchFailed(url, self.max_attempts, last_error)

    async def _attempt(self, url: str, headers: Dict[str, str], delay: float, timeout: float) -> str:
        async def load(page: Page) -> str:
            response = await page.goto(url, timeout=timeout * 1000, wait_until=self.wait_until)
            if response is not None and response.status >= 400:
                raise NavigationError(f"HTTP {response.status} from {url}")
            if delay > 0:
                await asyncio.sleep(delay)
            return await page.content()

        return await self.pool.with_page(load, headers=headers)

"""Shared headless browser and short-lived page leases.

``AutomationPool`` owns at most one Chromium process. It is launched on the
first lease, and concurrent first callers share a single in-flight launch
rather than each starting their own browser. Every lease is a fresh page
that is closed on every exit path; once the pool is closed no new leases
are handed out.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, TypeVar

from loguru import logger
from playwright.async_api import Browser, Page, Playwright, async_playwright

from . import config
from .errors import PoolUnavailable

T = TypeVar("T")

DEFAULT_VIEWPORT = {"width": 1280, "height": 800}

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]


class AutomationPool:
    def __init__(
        self,
        headless: bool = config.BROWSER_HEADLESS,
        launch_retries: int = config.BROWSER_LAUNCH_RETRIES,
        playwright_factory: Callable[[], Any] = async_playwright,
    ) -> None:
        self.headless = headless
        self.launch_retries = launch_retries
        self.playwright_factory = playwright_factory

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._launching: Optional[asyncio.Future] = None
        self._lock = asyncio.Lock()
        self._closed = False
        self.active_sessions = 0
        self.launches = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _live(self) -> Optional[Browser]:
        browser = self._browser
        if browser is not None and browser.is_connected():
            return browser
        return None

    async def _acquire_browser(self) -> Browser:
        if self._closed:
            raise PoolUnavailable("Browser pool has been shut down")
        browser = self._live()
        if browser is not None:
            return browser
        async with self._lock:
            if self._closed:
                raise PoolUnavailable("Browser pool has been shut down")
            browser = self._live()
            if browser is not None:
                return browser
            if self._launching is None:
                self._launching = asyncio.ensure_future(self._launch())
            launching = self._launching
        try:
            # Shielded so a cancelled waiter does not abort the launch others share.
            browser = await asyncio.shield(launching)
        finally:
            if launching.done() and self._launching is launching:
                self._launching = None
        if self._closed:
            raise PoolUnavailable("Browser pool has been shut down")
        return browser

    async def _launch(self) -> Browser:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.launch_retries + 2):
            try:
                if self._playwright is None:
                    self._playwright = await self.playwright_factory().start()
                browser = await self._playwright.chromium.launch(headless=self.headless, args=LAUNCH_ARGS)
                self._browser = browser
                self.launches += 1
                logger.info(f"Chromium started (headless={self.headless}, attempt {attempt})")
                return browser
            except Exception as e:
                last_error = e
                logger.warning(f"Browser launch attempt {attempt} failed: {e}")
        await self._stop_driver()
        raise PoolUnavailable("Headless browser could not be started") from last_error

    @asynccontextmanager
    async def session(
        self,
        headers: Optional[Dict[str, str]] = None,
        viewport: Optional[Dict[str, int]] = None,
    ) -> AsyncIterator[Page]:
        """Lease a new page; it is closed when the block exits, however it exits."""
        browser = await self._acquire_browser()
        try:
            page = await browser.new_page(viewport=viewport or DEFAULT_VIEWPORT)
        except Exception as e:
            if self._closed:
                raise PoolUnavailable("Browser pool has been shut down") from e
            raise
        self.active_sessions += 1
        try:
            if headers:
                await page.set_extra_http_headers(headers)
            yield page
        finally:
            self.active_sessions -= 1
            try:
                await page.close()
            except Exception as e:
                logger.debug(f"Page close failed: {e}")

    async def with_page(
        self,
        fn: Callable[[Page], Awaitable[T]],
        headers: Optional[Dict[str, str]] = None,
        viewport: Optional[Dict[str, int]] = None,
    ) -> T:
        async with self.session(headers=headers, viewport=viewport) as page:
            return await fn(page)

    async def close(self) -> None:
        """Close the browser and driver. Safe to call more than once."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            launching = self._launching
        if launching is not None and not launching.done():
            try:
                await launching
            except PoolUnavailable:
                pass
        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                logger.warning(f"Browser close failed: {e}")
        await self._stop_driver()
        logger.info("Browser pool closed")

    async def _stop_driver(self) -> None:
        playwright, self._playwright = self._playwright, None
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                logger.warning(f"Playwright stop failed: {e}")

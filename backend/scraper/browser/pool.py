"""
Pooled Chromium pages for the browser-driven adapters.

A bounded number of browser contexts is shared by all jobs. Each ``page()`` checkout
opens a fresh page in an idle context and closes it on exit, whatever happened inside.
Contexts are thrown away once they get old, have served too many pages or have seen
too many failures, so fingerprints and cookies do not accumulate.
"""
from __future__ import annotations

import asyncio
import random
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import BROWSER_PAGES_IN_USE

from scraper.sources.base import BotBlockedError, NetworkOrTimeoutError, ParseError

logger = get_logger(__name__)

# Errors that count against the context that served the page.
CONTEXT_FAILURES = (BotBlockedError, NetworkOrTimeoutError, ParseError, PlaywrightError)

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--window-size=1920,1080",
]

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
]

VIEWPORTS = [
    {"width": 1920, "height": 1080},
    {"width": 1536, "height": 864},
    {"width": 1366, "height": 768},
    {"width": 1440, "height": 900},
]

# Hide the most obvious automation markers before any page script runs.
STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['en-GB', 'en'] });
window.chrome = window.chrome || { runtime: {} };
"""


@dataclass
class ContextSlot:
    id: str
    context: BrowserContext
    created_at: float
    request_count: int = 0
    failure_count: int = 0


class PagePool:
    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        s = settings or get_settings()
        self._settings = s
        self._clock = clock
        self._max_age_s = s.browser_context_max_age_s
        self._max_requests = s.browser_context_max_requests
        self._max_failures = s.browser_context_max_failures
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._idle: list[ContextSlot] = []
        self._contexts: dict[str, ContextSlot] = {}
        self._slots = asyncio.Semaphore(s.browser_max_contexts)
        self._lock = asyncio.Lock()

    # ── Lifecycle ───────────────────────────────────────────────────────
    async def start(self) -> None:
        async with self._lock:
            await self._ensure_browser()

    async def _ensure_browser(self) -> Browser:
        if self._browser is None or not self._browser.is_connected():
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._settings.browser_headless, args=LAUNCH_ARGS
            )
            self._idle.clear()
            self._contexts.clear()
            logger.info("browser_launched", max_contexts=self._settings.browser_max_contexts)
        return self._browser

    async def close(self) -> None:
        async with self._lock:
            for slot in list(self._contexts.values()):
                await self._close_context(slot, "shutdown")
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        logger.info("browser_pool_closed")

    # ── Contexts ────────────────────────────────────────────────────────
    def should_recycle(self, slot: ContextSlot) -> Optional[str]:
        if self._clock() - slot.created_at > self._max_age_s:
            return "age"
        if slot.request_count >= self._max_requests:
            return "requests"
        if slot.failure_count >= self._max_failures:
            return "failures"
        return None

    async def _new_context(self) -> ContextSlot:
        browser = await self._ensure_browser()
        context = await browser.new_context(
            user_agent=random.choice(USER_AGENTS),
            viewport=random.choice(VIEWPORTS),
            locale="en-GB",
            timezone_id="Europe/London",
            extra_http_headers={"Accept-Language": "en-GB,en;q=0.9", "DNT": "1"},
        )
        await context.add_init_script(STEALTH_SCRIPT)
        context.set_default_navigation_timeout(self._settings.browser_navigation_timeout_s * 1000)
        slot = ContextSlot(id=uuid.uuid4().hex[:8], context=context, created_at=self._clock())
        self._contexts[slot.id] = slot
        logger.debug("browser_context_created", context_id=slot.id, total=len(self._contexts))
        return slot

    async def _close_context(self, slot: ContextSlot, reason: str) -> None:
        self._contexts.pop(slot.id, None)
        if slot in self._idle:
            self._idle.remove(slot)
        logger.info(
            "browser_context_recycled",
            context_id=slot.id,
            reason=reason,
            age_s=round(self._clock() - slot.created_at),
            requests=slot.request_count,
            failures=slot.failure_count,
        )
        try:
            await slot.context.close()
        except PlaywrightError as exc:
            logger.warning("browser_context_close_failed", context_id=slot.id, error=str(exc))

    async def _checkout(self) -> ContextSlot:
        async with self._lock:
            while self._idle:
                slot = self._idle.pop(0)
                reason = self.should_recycle(slot)
                if reason is None:
                    return slot
                await self._close_context(slot, reason)
            return await self._new_context()

    async def _checkin(self, slot: ContextSlot) -> None:
        async with self._lock:
            if slot.id in self._contexts:
                self._idle.append(slot)

    async def recycle_all(self, reason: str = "scheduled") -> int:
        """Close idle contexts now; busy ones are replaced when they come back over limits."""
        async with self._lock:
            idle = list(self._idle)
            for slot in idle:
                await self._close_context(slot, reason)
        logger.info("browser_contexts_recycled", reason=reason, count=len(idle))
        return len(idle)

    # ── Pages ───────────────────────────────────────────────────────────
    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        """Check out a page; it is closed and its context returned on every exit path."""
        async with self._slots:
            slot = await self._checkout()
            slot.request_count += 1
            page = await slot.context.new_page()
            BROWSER_PAGES_IN_USE.inc()
            try:
                yield page
            except CONTEXT_FAILURES:
                slot.failure_count += 1
                raise
            finally:
                BROWSER_PAGES_IN_USE.dec()
                try:
                    await page.close()
                except PlaywrightError as exc:
                    logger.warning("browser_page_close_failed", context_id=slot.id, error=str(exc))
                await self._checkin(slot)

    def stats(self) -> dict[str, object]:
        now = self._clock()
        return {
            "browser_connected": self._browser is not None and self._browser.is_connected(),
            "contexts": len(self._contexts),
            "idle": len(self._idle),
            "max_contexts": self._settings.browser_max_contexts,
            "details": [
                {
                    "id": s.id,
                    "age_s": round(now - s.created_at),
                    "requests": s.request_count,
                    "failures": s.failure_count,
                }
                for s in self._contexts.values()
            ],
        }

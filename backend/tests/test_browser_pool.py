"""Tests for the browser page pool, with a fake Playwright browser injected."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.config import Settings

from scraper.browser.pool import PagePool
from scraper.sources.base import NoDataAvailableError, ParseError


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def fake_browser() -> MagicMock:
    browser = MagicMock()
    browser.is_connected.return_value = True
    browser.contexts = []

    async def new_context(**kwargs):
        context = MagicMock()
        context.add_init_script = AsyncMock()
        context.close = AsyncMock()
        context.new_page = AsyncMock(side_effect=lambda: MagicMock(close=AsyncMock()))
        browser.contexts.append(context)
        return context

    browser.new_context = AsyncMock(side_effect=new_context)
    return browser


def make_pool(clock: FakeClock | None = None, **overrides) -> tuple[PagePool, MagicMock]:
    pool = PagePool(Settings(**overrides), clock=clock or FakeClock())
    browser = fake_browser()
    pool._browser = browser
    return pool, browser


@pytest.mark.asyncio
async def test_context_is_reused_and_pages_closed() -> None:
    pool, browser = make_pool()

    async with pool.page() as first:
        pass
    async with pool.page() as second:
        pass

    assert len(browser.contexts) == 1
    first.close.assert_awaited_once()
    second.close.assert_awaited_once()
    assert pool.stats()["details"][0]["requests"] == 2


@pytest.mark.asyncio
async def test_failure_is_counted_and_page_still_closed() -> None:
    pool, _ = make_pool()

    with pytest.raises(ParseError):
        async with pool.page() as page:
            raise ParseError("selector exploded", source="oddsportal")

    page.close.assert_awaited_once()
    assert pool.stats()["details"][0]["failures"] == 1
    assert pool.stats()["idle"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [NoDataAvailableError("off season", source="oddsportal"), RuntimeError("adapter bug")],
)
async def test_errors_unrelated_to_the_context_are_not_counted(error: Exception) -> None:
    pool, _ = make_pool()

    with pytest.raises(type(error)):
        async with pool.page() as page:
            raise error

    page.close.assert_awaited_once()
    assert pool.stats()["details"][0]["failures"] == 0


@pytest.mark.asyncio
async def test_context_recycled_after_request_limit() -> None:
    pool, browser = make_pool(browser_context_max_requests=1)

    async with pool.page():
        pass
    async with pool.page():
        pass

    assert len(browser.contexts) == 2
    browser.contexts[0].close.assert_awaited_once()
    assert pool.stats()["contexts"] == 1


@pytest.mark.asyncio
async def test_context_recycled_when_old() -> None:
    clock = FakeClock()
    pool, browser = make_pool(clock, browser_context_max_age_s=60)

    async with pool.page():
        pass
    clock.now += 61
    async with pool.page():
        pass

    assert len(browser.contexts) == 2
    assert pool.should_recycle(pool._idle[0]) is None


@pytest.mark.asyncio
async def test_recycle_all_closes_idle_contexts() -> None:
    pool, browser = make_pool()
    async with pool.page():
        pass

    assert await pool.recycle_all("test") == 1
    browser.contexts[0].close.assert_awaited_once()
    stats = pool.stats()
    assert (stats["contexts"], stats["idle"]) == (0, 0)
    assert stats["browser_connected"] is True

"""
Abstract base class for all scrape adapters.
Defines the failure taxonomy and the contract every source implementation must meet.
"""
from __future__ import annotations

import abc
import asyncio
import random
import time
from typing import Any, Generic, Optional, Protocol, TypeVar

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from shared.config import Settings, get_settings
from shared.models.domain import NormalizedOdds
from shared.utils.logging import get_logger
from shared.utils.metrics import SCRAPE_ATTEMPTS, SCRAPE_LATENCY, SCRAPED_RECORDS

from scraper.rate_limiter import RateLimitDetector
from scraper.sources.detection import detect_blocking, detect_no_data, save_snapshot
from scraper.sources.registry import Source

logger = get_logger(__name__)

T = TypeVar("T")

PAGE_TEXT_SCRIPT = "() => document.body ? document.body.innerText : ''"


# ── Failure taxonomy ────────────────────────────────────────────────────
class ScrapeError(Exception):
    """Base class for every failure an adapter may raise."""

    def __init__(
        self, message: str, source: str = "", sport: str = "", url: Optional[str] = None
    ) -> None:
        super().__init__(message)
        self.source = source
        self.sport = sport
        self.url = url


class BotBlockedError(ScrapeError):
    """Source actively blocked us (CAPTCHA, challenge page, 403/429/503)."""

    def __init__(
        self,
        message: str,
        source: str = "",
        sport: str = "",
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        indicator: Optional[str] = None,
    ) -> None:
        super().__init__(message, source, sport, url)
        self.status_code = status_code
        self.indicator = indicator


class NoDataAvailableError(ScrapeError):
    """Page loaded fine but legitimately lists nothing (off-season, empty schedule)."""


class NetworkOrTimeoutError(ScrapeError):
    """Connection or navigation failed or timed out."""


class ParseError(ScrapeError):
    """Page structure did not match the expected selectors."""

    def __init__(
        self,
        message: str,
        source: str = "",
        sport: str = "",
        url: Optional[str] = None,
        snapshot_path: Optional[str] = None,
    ) -> None:
        super().__init__(message, source, sport, url)
        self.snapshot_path = snapshot_path


# ── Page capability ─────────────────────────────────────────────────────
class PageResponse(Protocol):
    @property
    def status(self) -> int: ...


class Page(Protocol):
    """The subset of a browser page the adapters rely on (playwright-compatible)."""

    async def goto(self, url: str, *, timeout: float | None = None, wait_until: str | None = None) -> Optional[PageResponse]: ...

    async def wait_for_selector(self, selector: str, *, timeout: float | None = None) -> Any: ...

    async def evaluate(self, expression: str, arg: Any = None) -> Any: ...

    async def content(self) -> str: ...

    async def screenshot(self, *, full_page: bool = False) -> bytes: ...

    async def title(self) -> str: ...


async def jitter_sleep(base_ms: float, spread: float = 0.3) -> None:
    """Sleep around ``base_ms`` with +-spread jitter to avoid regular request patterns."""
    factor = random.uniform(1 - spread, 1 + spread)
    await asyncio.sleep(max(base_ms * factor, 0) / 1000)


class ScrapeAdapter(abc.ABC, Generic[T]):
    """
    One implementation per source.

    Subclasses implement ``_scrape``; ``scrape`` wraps it with a hard timeout,
    latency/outcome metrics and translation of low-level errors into the
    ScrapeError taxonomy. Adapters never record rotation state themselves.
    """

    def __init__(
        self,
        source: Source,
        rate_limiter: RateLimitDetector | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._source = source
        self._rate_limiter = rate_limiter
        self._settings = settings or get_settings()

    @property
    def source(self) -> Source:
        return self._source

    @property
    def name(self) -> str:
        return self._source.name

    @property
    def requires_browser(self) -> bool:
        return self._source.requires_browser

    async def scrape(self, page: Optional[Page], sport: str) -> list[T]:
        """
        Fetch and parse records for ``sport``.

        Raises:
            BotBlockedError, NoDataAvailableError, NetworkOrTimeoutError, ParseError
        """
        start = time.perf_counter()
        outcome = "success"
        try:
            records = await asyncio.wait_for(
                self._scrape(page, sport), timeout=self._settings.scrape_timeout_s
            )
            SCRAPED_RECORDS.labels(source=self.name, sport=sport).inc(len(records))
            return records
        except asyncio.TimeoutError as exc:
            outcome = "timeout"
            raise NetworkOrTimeoutError(
                f"{self.name} scrape exceeded {self._settings.scrape_timeout_s}s",
                source=self.name,
                sport=sport,
            ) from exc
        except BotBlockedError:
            outcome = "blocked"
            raise
        except NoDataAvailableError:
            outcome = "no_data"
            raise
        except ScrapeError:
            outcome = "error"
            raise
        except PlaywrightError as exc:
            # page crashed or navigated away mid-evaluate
            outcome = "error"
            raise NetworkOrTimeoutError(
                f"{self.name} page error: {exc}", source=self.name, sport=sport
            ) from exc
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            # payload shape the parser did not expect
            outcome = "error"
            logger.warning("source_payload_unparsable", source=self.name, sport=sport, error=repr(exc))
            raise ParseError(
                f"{self.name} payload could not be parsed: {type(exc).__name__}: {exc}",
                source=self.name,
                sport=sport,
            ) from exc
        finally:
            SCRAPE_LATENCY.labels(source=self.name).observe(time.perf_counter() - start)
            SCRAPE_ATTEMPTS.labels(source=self.name, sport=sport, outcome=outcome).inc()

    @abc.abstractmethod
    async def _scrape(self, page: Optional[Page], sport: str) -> list[T]:
        """Source-specific fetch + parse."""
        ...

    # ── Helpers for browser-based adapters ──────────────────────────────
    async def _navigate(self, page: Page, url: str, sport: str) -> None:
        """Load ``url`` with pacing and a navigation timeout; classify HTTP-level blocking."""
        domain = self._source.domain
        if self._rate_limiter is not None:
            await self._rate_limiter.wait_for_rate_limit(domain)

        try:
            response = await page.goto(
                url,
                timeout=self._settings.browser_navigation_timeout_s * 1000,
                wait_until="domcontentloaded",
            )
        except PlaywrightTimeoutError as exc:
            raise NetworkOrTimeoutError(
                f"navigation timed out: {url}", source=self.name, sport=sport, url=url
            ) from exc
        except PlaywrightError as exc:
            raise NetworkOrTimeoutError(
                f"navigation failed: {exc}", source=self.name, sport=sport, url=url
            ) from exc

        status = response.status if response is not None else None
        if self._rate_limiter is not None and status is not None:
            await self._rate_limiter.check_rate_limit(domain, status)

        verdict = detect_blocking("", status)
        if verdict.is_blocked:
            raise BotBlockedError(
                f"{self.name} returned HTTP {status}",
                source=self.name,
                sport=sport,
                url=url,
                status_code=status,
                indicator=verdict.reason,
            )

    async def _classify_empty_page(self, page: Page, url: str, sport: str) -> None:
        """Raise BotBlocked / NoData when an empty result can be explained by page text."""
        text = await page.evaluate(PAGE_TEXT_SCRIPT) or ""
        verdict = detect_blocking(text)
        if verdict.is_blocked:
            logger.warning("bot_block_detected", source=self.name, url=url, reason=verdict.reason)
            raise BotBlockedError(
                f"blocked by bot protection on {self.name}",
                source=self.name,
                sport=sport,
                url=url,
                indicator=verdict.reason,
            )
        matched = detect_no_data(text)
        if matched:
            logger.info("no_data_detected", source=self.name, url=url, pattern=matched)
            raise NoDataAvailableError(
                f"no matches available for {sport} on {self.name}",
                source=self.name,
                sport=sport,
                url=url,
            )

    async def _snapshot(self, page: Page, sport: str) -> Optional[str]:
        try:
            html = await page.content()
            shot = await page.screenshot(full_page=True)
        except PlaywrightError as exc:
            logger.warning("debug_snapshot_capture_failed", source=self.name, error=str(exc))
            return None
        return save_snapshot(self._settings.debug_snapshot_dir, self.name, sport, html, shot)


# ── DOM odds adapter ────────────────────────────────────────────────────
def parse_price(raw: Any) -> Optional[float]:
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return None
    return value if value > 1 else None


class DomOddsAdapter(ScrapeAdapter[NormalizedOdds]):
    """
    Odds adapter for sites that list one match per DOM row.

    Subclasses set ``ROW_SELECTOR`` and ``EXTRACT_SCRIPT``. The script runs in the page
    and returns ``[{"home": str, "away": str, "odds": [str, ...]}]``; two prices mean
    home/away, three or more mean home/draw/away.
    """

    ROW_SELECTOR: str = ""
    EXTRACT_SCRIPT: str = ""
    ROW_WAIT_TIMEOUT_MS: float = 15000
    URL_PAUSE_MS: float = 1000
    ENOUGH_RECORDS: int = 20

    async def _scrape(self, page: Optional[Page], sport: str) -> list[NormalizedOdds]:
        if page is None:
            raise NetworkOrTimeoutError(f"{self.name} needs a browser page", source=self.name, sport=sport)

        urls = self._source.urls_for(sport)
        collected: list[NormalizedOdds] = []
        seen: set[tuple[str, str]] = set()
        last_error: Optional[ScrapeError] = None
        empty = 0

        for url in urls:
            try:
                rows = await self._scrape_url(page, url, sport)
            except BotBlockedError:
                raise
            except NoDataAvailableError:
                empty += 1
                continue
            except ScrapeError as exc:
                last_error = exc
                logger.warning("source_url_failed", source=self.name, url=url, error=str(exc))
                continue

            for odds in rows:
                key = (odds.home_team.lower(), odds.away_team.lower())
                if key not in seen:
                    seen.add(key)
                    collected.append(odds)

            if len(collected) >= self.ENOUGH_RECORDS:
                break
            await jitter_sleep(self.URL_PAUSE_MS)

        if not collected:
            if last_error is not None:
                raise last_error
            if urls and empty == len(urls):
                raise NoDataAvailableError(
                    f"no {sport} matches listed on {self.name}", source=self.name, sport=sport
                )

        logger.info("source_odds_scraped", source=self.name, sport=sport, count=len(collected))
        return collected

    async def _scrape_url(self, page: Page, url: str, sport: str) -> list[NormalizedOdds]:
        await self._navigate(page, url, sport)
        await jitter_sleep(2000)

        try:
            await page.wait_for_selector(self.ROW_SELECTOR, timeout=self.ROW_WAIT_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            logger.warning("source_rows_not_found", source=self.name, url=url)

        raw_rows = await page.evaluate(self.EXTRACT_SCRIPT) or []
        if not raw_rows:
            await self._classify_empty_page(page, url, sport)
            # Loaded, not blocked, nothing listed: keep a snapshot in case selectors drifted.
            await self._snapshot(page, sport)
            return []

        odds = self._rows_to_odds(raw_rows)
        if not odds:
            snapshot = await self._snapshot(page, sport)
            raise ParseError(
                f"{len(raw_rows)} rows on {url} but no parsable prices",
                source=self.name,
                sport=sport,
                url=url,
                snapshot_path=snapshot,
            )
        return odds

    def _rows_to_odds(self, rows: list[dict[str, Any]]) -> list[NormalizedOdds]:
        out: list[NormalizedOdds] = []
        for row in rows:
            home = str(row.get("home") or "").strip()
            away = str(row.get("away") or "").strip()
            prices = [parse_price(p) for p in row.get("odds") or []]
            if len(home) < 2 or len(away) < 2 or len(prices) < 2:
                continue

            if len(prices) == 2:
                home_win, draw, away_win = prices[0], None, prices[1]
            else:
                home_win, draw, away_win = prices[0], prices[1], prices[2]
            if home_win is None or away_win is None:
                continue

            out.append(
                NormalizedOdds(
                    home_team=home,
                    away_team=away,
                    home_win=home_win,
                    draw=draw,
                    away_win=away_win,
                    source=self.name,
                    bookmaker_count=int(row.get("bookmakers") or 1),
                )
            )
        return out

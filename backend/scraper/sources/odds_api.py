"""
The Odds API (v4) adapter: JSON fallback used when browser sources are exhausted.

Free tier quota is small, so every response's x-requests-remaining header is logged.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx

from shared.config import Settings
from shared.models.domain import NormalizedOdds
from shared.utils.http_client import SourceHTTPClient
from shared.utils.logging import get_logger

from scraper.rate_limiter import RateLimitDetector
from scraper.sources.base import (
    BotBlockedError,
    NetworkOrTimeoutError,
    Page,
    ParseError,
    ScrapeAdapter,
    ScrapeError,
)
from scraper.sources.registry import Source

logger = get_logger(__name__)

ODDS_API_BASE = "https://api.the-odds-api.com/v4"


def parse_odds_events(events: list[dict[str, Any]], source: str) -> list[NormalizedOdds]:
    """Best price per outcome across all bookmakers' h2h markets."""
    results: list[NormalizedOdds] = []
    for event in events:
        home = event.get("home_team") or ""
        away = event.get("away_team") or ""
        if not home or not away:
            continue

        best_home = best_draw = best_away = 0.0
        bookmaker_count = 0
        for bookmaker in event.get("bookmakers") or []:
            for market in bookmaker.get("markets") or []:
                if market.get("key") != "h2h":
                    continue
                bookmaker_count += 1
                for outcome in market.get("outcomes") or []:
                    price = float(outcome.get("price") or 0)
                    name = outcome.get("name")
                    if name == home:
                        best_home = max(best_home, price)
                    elif name == away:
                        best_away = max(best_away, price)
                    elif name == "Draw":
                        best_draw = max(best_draw, price)

        if best_home > 1 and best_away > 1:
            results.append(
                NormalizedOdds(
                    home_team=home,
                    away_team=away,
                    home_win=best_home,
                    draw=best_draw if best_draw > 1 else None,
                    away_win=best_away,
                    source=source,
                    bookmaker_count=max(bookmaker_count, 1),
                )
            )
    return results


class OddsApiAdapter(ScrapeAdapter[NormalizedOdds]):
    """Sport keys per sport come from the Source's ``sport_urls`` mapping."""

    def __init__(
        self,
        source: Source,
        rate_limiter: RateLimitDetector | None = None,
        settings: Settings | None = None,
        http_client: Optional[SourceHTTPClient] = None,
    ) -> None:
        super().__init__(source, rate_limiter, settings)
        self._http = http_client or SourceHTTPClient(source.name, ODDS_API_BASE, settings=self._settings)

    async def close(self) -> None:
        await self._http.close()

    async def _scrape(self, page: Optional[Page], sport: str) -> list[NormalizedOdds]:
        sport_keys = self._source.urls_for(sport)
        if not sport_keys:
            logger.info("odds_api_no_sport_keys", sport=sport)
            return []

        results: list[NormalizedOdds] = []
        last_error: Optional[ScrapeError] = None
        for key in sport_keys:
            try:
                results.extend(await self._fetch_key(key, sport))
            except BotBlockedError:
                raise
            except ScrapeError as exc:
                last_error = exc
                logger.warning("odds_api_key_failed", sport_key=key, error=str(exc))

        if not results and last_error is not None:
            raise last_error
        return results

    async def _fetch_key(self, sport_key: str, sport: str) -> list[NormalizedOdds]:
        path = f"/sports/{sport_key}/odds/"
        params = {
            "apiKey": self._settings.odds_api_key,
            "regions": self._settings.odds_api_regions,
            "markets": "h2h",
            "oddsFormat": "decimal",
        }
        if self._rate_limiter is not None:
            await self._rate_limiter.wait_for_rate_limit(self._source.domain)

        try:
            resp = await self._http.get(path, params=params)
        except httpx.HTTPError as exc:
            raise NetworkOrTimeoutError(
                f"odds api request failed: {exc}", source=self.name, sport=sport, url=path
            ) from exc

        remaining = resp.headers.get("x-requests-remaining")
        if self._rate_limiter is not None:
            await self._rate_limiter.check_rate_limit(self._source.domain, resp.status_code, resp.headers)

        if resp.status_code == 429:
            raise BotBlockedError(
                "odds api quota exhausted",
                source=self.name,
                sport=sport,
                url=path,
                status_code=429,
                indicator=f"remaining={remaining}",
            )
        if resp.status_code >= 400:
            raise ScrapeError(
                f"odds api HTTP {resp.status_code} for {sport_key}", source=self.name, sport=sport, url=path
            )

        logger.info(
            "odds_api_quota",
            sport_key=sport_key,
            used=resp.headers.get("x-requests-used"),
            remaining=remaining,
        )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ParseError(f"odds api returned non-JSON for {sport_key}", source=self.name, sport=sport) from exc
        if not isinstance(payload, list):
            raise ParseError(f"odds api returned {type(payload).__name__} for {sport_key}", source=self.name, sport=sport)

        odds = parse_odds_events(payload, self.name)
        logger.info("odds_api_events_parsed", sport_key=sport_key, count=len(odds))
        return odds

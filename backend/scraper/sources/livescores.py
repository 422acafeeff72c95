"""
365Scores public JSON feed adapter for live scores.

Endpoint: /web/games/allscores/?appTypeId=5&langId=1&sportId=X
sportId: 1=football, 2=basketball, 3=tennis. statusGroup: 2=in progress, 4=finished.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx

from shared.config import Settings
from shared.models.domain import LiveScore
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
from scraper.sources.detection import BLOCKED_STATUS_CODES
from scraper.sources.registry import Source

logger = get_logger(__name__)

SCORES365_BASE = "https://webws.365scores.com"
STATUS_IN_PROGRESS = 2
STATUS_FINISHED = 4


def parse_period(game: dict[str, Any]) -> str:
    if game.get("statusGroup") == STATUS_FINISHED:
        return "FT"

    text = (game.get("shortStatusText") or game.get("statusText") or "").lower()
    if text:
        if "half time" in text or text == "ht":
            return "HT"
        if "1st" in text or "first" in text:
            return "1H"
        if "2nd" in text or "second" in text:
            return "2H"
        if "extra" in text or text == "et":
            return "ET"
        if "penal" in text or text == "pen":
            return "PEN"

    minute = parse_minute(game)
    if minute is not None:
        return f"{minute}'"
    return "LIVE"


def parse_minute(game: dict[str, Any]) -> Optional[int]:
    game_time = game.get("gameTime")
    if isinstance(game_time, (int, float)) and game_time > 0:
        return int(game_time)
    return None


def parse_games(payload: dict[str, Any], source: str) -> list[LiveScore]:
    """Keep only in-progress and finished games."""
    scores: list[LiveScore] = []
    for game in payload.get("games") or []:
        home = game.get("homeCompetitor")
        away = game.get("awayCompetitor")
        if not home or not away:
            continue
        status_group = game.get("statusGroup") or 0
        if status_group not in (STATUS_IN_PROGRESS, STATUS_FINISHED):
            continue

        home_name = home.get("name") or home.get("shortName") or ""
        away_name = away.get("name") or away.get("shortName") or ""
        if not home_name or not away_name:
            continue

        scores.append(
            LiveScore(
                home_team=home_name,
                away_team=away_name,
                home_score=_score(home.get("score")),
                away_score=_score(away.get("score")),
                period=parse_period(game),
                minute=parse_minute(game),
                is_finished=status_group == STATUS_FINISHED,
                source=source,
                external_id=str(game["id"]) if game.get("id") is not None else None,
            )
        )
    return scores


def _score(raw: Any) -> Optional[int]:
    # 365Scores reports -1 for "not started"
    if isinstance(raw, (int, float)) and raw >= 0:
        return int(raw)
    return None


class LiveScoresAdapter(ScrapeAdapter[LiveScore]):
    def __init__(
        self,
        source: Source,
        rate_limiter: RateLimitDetector | None = None,
        settings: Settings | None = None,
        http_client: Optional[SourceHTTPClient] = None,
    ) -> None:
        super().__init__(source, rate_limiter, settings)
        self._http = http_client or SourceHTTPClient(source.name, SCORES365_BASE, settings=self._settings)

    async def close(self) -> None:
        await self._http.close()

    async def _scrape(self, page: Optional[Page], sport: str) -> list[LiveScore]:
        sport_ids = self._source.urls_for(sport)
        if not sport_ids:
            return []

        params = {"appTypeId": 5, "langId": 1, "sportId": sport_ids[0]}
        if self._rate_limiter is not None:
            await self._rate_limiter.wait_for_rate_limit(self._source.domain)
        try:
            resp = await self._http.get("/web/games/allscores/", params=params)
        except httpx.HTTPError as exc:
            raise NetworkOrTimeoutError(f"365scores request failed: {exc}", source=self.name, sport=sport) from exc

        if self._rate_limiter is not None:
            await self._rate_limiter.check_rate_limit(self._source.domain, resp.status_code, resp.headers)
        if resp.status_code in BLOCKED_STATUS_CODES:
            raise BotBlockedError(
                f"365scores returned HTTP {resp.status_code}",
                source=self.name,
                sport=sport,
                status_code=resp.status_code,
            )
        if resp.status_code >= 400:
            raise ScrapeError(f"365scores HTTP {resp.status_code}", source=self.name, sport=sport)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise ParseError("365scores returned non-JSON", source=self.name, sport=sport) from exc
        if not isinstance(payload, dict):
            raise ParseError("365scores payload is not an object", source=self.name, sport=sport)

        scores = parse_games(payload, self.name)
        logger.info("live_scores_fetched", source=self.name, sport=sport, count=len(scores))
        return scores

"""
Odds job: best current match-winner prices for upcoming events.

Everything the rotation gathered for a sport is merged first (one entry per match,
higher-priority source wins), then matched against open events in one pass.
"""
from __future__ import annotations

from typing import Optional

from shared.models.domain import NormalizedOdds
from shared.models.enums import JobType, Sport
from shared.utils.logging import get_logger

from scraper.jobs.base import ScrapeJob, parse_sports
from scraper.jobs.tracker import RunTracker
from scraper.normalization.odds import merge_odds
from scraper.reconciliation.reconciler import OddsOutcome
from scraper.rotation.manager import SourceResult

logger = get_logger(__name__)


class OddsJob(ScrapeJob):
    job_type = JobType.SYNC_ODDS

    def sports(self) -> list[Sport]:
        return parse_sports(self._settings.odds_sports)

    async def process_sport(self, sport: Sport, results: list[SourceResult], tracker: RunTracker) -> None:
        scraped: list[NormalizedOdds] = [o for r in results for o in r.records]
        merged = merge_odds(
            scraped,
            sport.value,
            self._rotation.registry.priorities(),
            self._settings.odds_match_threshold,
        )
        candidates = await self._reconciler.odds_candidates(sport)
        if merged and not candidates:
            logger.info("odds_without_open_events", sport=sport.value, odds=len(merged))

        unmatched = 0

        async def handle(odds: NormalizedOdds) -> Optional[str]:
            nonlocal unmatched
            result = await self._reconciler.reconcile_odds(odds, candidates)
            if result.outcome is OddsOutcome.UNMATCHED:
                unmatched += 1
            return "updated" if result.outcome is OddsOutcome.UPDATED else None

        await self._each(sport, merged, handle, tracker)
        if unmatched:
            logger.info("odds_unmatched_summary", sport=sport.value, unmatched=unmatched, total=len(merged))

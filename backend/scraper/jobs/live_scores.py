"""
Live-score job.

Kicked-off events are moved to live first, then each scraped score is matched to a
live event and applied; a finished score closes the event and triggers settlement.
"""
from __future__ import annotations

from typing import Optional

from shared.models.domain import LiveScore
from shared.models.enums import JobType, Sport
from shared.utils.logging import get_logger

from scraper.jobs.base import ScrapeJob, parse_sports
from scraper.jobs.tracker import RunTracker
from scraper.reconciliation.reconciler import ScoreOutcome
from scraper.rotation.manager import SourceResult

logger = get_logger(__name__)

_CHANGED = {ScoreOutcome.UPDATED, ScoreOutcome.FINISHED}


class LiveScoresJob(ScrapeJob):
    job_type = JobType.SYNC_LIVE_SCORES

    def sports(self) -> list[Sport]:
        return parse_sports(self._settings.live_score_sports)

    async def run_sport(self, sport: Sport, tracker: RunTracker) -> None:
        await self._reconciler.transition_started_events(sport)
        if not await self._reconciler.live_candidates(sport):
            logger.debug("no_live_events", sport=sport.value)
            tracker.record(sport.value)
            return
        await super().run_sport(sport, tracker)

    async def process_sport(self, sport: Sport, results: list[SourceResult], tracker: RunTracker) -> None:
        scores: list[LiveScore] = [s for r in results for s in r.records]
        candidates = await self._reconciler.live_candidates(sport)
        matched = [m for m in (self._reconciler.match_live_score(s, candidates) for s in scores) if m]

        async def handle(match: tuple) -> Optional[str]:
            event, score = match
            outcome = await self._reconciler.reconcile_live_score(event.id, score)
            return "updated" if outcome in _CHANGED else None

        await self._each(sport, matched, handle, tracker)

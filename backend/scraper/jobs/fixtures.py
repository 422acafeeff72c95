"""Fixtures job: upcoming events per sport into the catalog."""
from __future__ import annotations

from typing import Optional

from shared.models.domain import Fixture
from shared.models.enums import JobType, Sport

from scraper.jobs.base import ScrapeJob, parse_sports
from scraper.jobs.tracker import RunTracker
from scraper.rotation.manager import SourceResult


class FixturesJob(ScrapeJob):
    job_type = JobType.SYNC_FIXTURES

    def sports(self) -> list[Sport]:
        return parse_sports(self._settings.fixture_sports)

    async def process_sport(self, sport: Sport, results: list[SourceResult], tracker: RunTracker) -> None:
        fixtures: list[Fixture] = [f for r in results for f in r.records]

        async def handle(fixture: Fixture) -> Optional[str]:
            _, created = await self._reconciler.reconcile_fixture(fixture)
            return "created" if created else None

        await self._each(sport, fixtures, handle, tracker)

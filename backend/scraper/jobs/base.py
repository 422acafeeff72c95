"""
Shared skeleton of the three sync jobs.

A job walks its sports one after another: rotate through sources for the sport,
reconcile whatever came back, add the counters to the run, pause, next sport.
Source failures are absorbed by the rotation manager and a bad record only counts
as a failed item; anything else (database or Redis down, a bug) fails the run.
"""
from __future__ import annotations

import abc
from typing import Any, Awaitable, Callable, ClassVar, Iterable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import ScraperRunRecord
from shared.models.enums import JobType, RunStatus, Sport
from shared.utils.logging import get_logger

from scraper.alerts import AlertManager
from scraper.browser.pool import PagePool
from scraper.jobs.tracker import RunTracker
from scraper.reconciliation.reconciler import EventReconciler, ReconciliationError
from scraper.reconciliation.store import CatalogStore
from scraper.request_metrics import MetricsCollector
from scraper.rotation.manager import PageProvider, SourceResult, SourceRotationManager
from scraper.sources.base import jitter_sleep
from scraper.status import SourceStatusService

logger = get_logger(__name__)

# Errors that condemn one scraped record, not the run.
ITEM_ERRORS = (ReconciliationError, ValueError, LookupError)


class ScrapeJob(abc.ABC):
    job_type: ClassVar[JobType]

    def __init__(
        self,
        rotation: SourceRotationManager,
        reconciler: EventReconciler,
        store: CatalogStore,
        alerts: AlertManager,
        metrics: MetricsCollector,
        pages: PagePool | None = None,
        status: SourceStatusService | None = None,
        settings: Settings | None = None,
        pause: Callable[[float], Awaitable[None]] = jitter_sleep,
    ) -> None:
        self._rotation = rotation
        self._reconciler = reconciler
        self._store = store
        self._alerts = alerts
        self._metrics = metrics
        self._pages = pages
        self._status = status
        self._settings = settings or get_settings()
        self._pause = pause

    @property
    def name(self) -> str:
        return self.job_type.value

    @abc.abstractmethod
    def sports(self) -> list[Sport]:
        """Sports this job covers, in processing order."""

    @abc.abstractmethod
    async def process_sport(self, sport: Sport, results: list[SourceResult], tracker: RunTracker) -> None:
        """Reconcile what the rotation returned for ``sport`` and record counters on ``tracker``."""

    def _page_provider(self) -> Optional[PageProvider]:
        return self._pages.page if self._pages is not None else None

    async def run(self) -> ScraperRunRecord:
        tracker = RunTracker(self._store, self._alerts, self.job_type)
        await tracker.start()
        self._metrics.record_job_start(self.name)
        try:
            for i, sport in enumerate(self.sports()):
                if i:
                    await self._pause(self._settings.inter_sport_delay_ms)
                await self.run_sport(sport, tracker)
        except Exception as exc:
            self._metrics.record_job_failed(self.name, exc)
            await tracker.fail(exc)
            raise

        run = await tracker.complete()
        self._metrics.record_job_complete(
            self.name, float(run.duration_ms or 0), success=run.status is RunStatus.SUCCESS
        )
        if self._status is not None:
            await self._status.raise_health_alerts(run.id)
        return run

    async def run_sport(self, sport: Sport, tracker: RunTracker) -> None:
        results = await self._rotation.scrape_with_rotation(sport.value, self._page_provider())
        if not any(r.success for r in results):
            logger.warning(
                "sport_scrape_exhausted",
                job=self.name,
                sport=sport.value,
                tried=[r.source for r in results],
            )
        await self.process_sport(sport, results, tracker)

    async def _each(
        self,
        sport: Sport,
        items: Iterable[Any],
        handle: Callable[[Any], Awaitable[Optional[str]]],
        tracker: RunTracker,
    ) -> None:
        """
        Feed ``items`` to ``handle`` and count the results on ``tracker``.

        ``handle`` returns "created", "updated" or None (seen, nothing changed).
        """
        processed = created = updated = failed = 0
        for item in items:
            processed += 1
            try:
                outcome = await handle(item)
            except ITEM_ERRORS as exc:
                failed += 1
                logger.warning("item_reconcile_failed", job=self.name, sport=sport.value, error=str(exc))
                continue
            if outcome == "created":
                created += 1
            elif outcome == "updated":
                updated += 1
        tracker.record(sport.value, processed=processed, created=created, updated=updated, failed=failed)
        logger.info(
            "sport_processed",
            job=self.name,
            sport=sport.value,
            processed=processed,
            created=created,
            updated=updated,
            failed=failed,
        )


def parse_sports(names: Iterable[str]) -> list[Sport]:
    sports: list[Sport] = []
    for name in names:
        try:
            sports.append(Sport(name))
        except ValueError:
            logger.warning("unknown_sport_skipped", sport=name)
    return sports

"""
Stale live-event cleanup.

An event that stays live long past any plausible match length (the live-score source
lost it, or the final whistle was never scraped) is closed here. A last known score
finishes it normally; without one it is marked finished and flagged for manual
settlement.
"""
from __future__ import annotations

from shared.models.domain import ScraperRunRecord
from shared.models.enums import JobType, RunStatus, Sport
from shared.utils.logging import get_logger

from scraper.alerts import AlertManager
from scraper.jobs.base import ITEM_ERRORS
from scraper.jobs.tracker import RunTracker
from scraper.reconciliation.reconciler import EventReconciler, ScoreOutcome
from scraper.reconciliation.store import CatalogStore
from scraper.request_metrics import MetricsCollector

logger = get_logger(__name__)


class StaleEventsJob:
    job_type = JobType.CLEANUP_STALE_EVENTS

    def __init__(
        self,
        reconciler: EventReconciler,
        store: CatalogStore,
        alerts: AlertManager,
        metrics: MetricsCollector,
    ) -> None:
        self._reconciler = reconciler
        self._store = store
        self._alerts = alerts
        self._metrics = metrics

    @property
    def name(self) -> str:
        return self.job_type.value

    async def run(self) -> ScraperRunRecord:
        tracker = RunTracker(self._store, self._alerts, self.job_type)
        await tracker.start()
        self._metrics.record_job_start(self.name)
        try:
            for sport in Sport:
                await self.close_sport(sport, tracker)
        except Exception as exc:
            self._metrics.record_job_failed(self.name, exc)
            await tracker.fail(exc)
            raise

        run = await tracker.complete()
        self._metrics.record_job_complete(
            self.name, float(run.duration_ms or 0), success=run.status is RunStatus.SUCCESS
        )
        return run

    async def close_sport(self, sport: Sport, tracker: RunTracker) -> int:
        stale = await self._reconciler.stale_live_events(sport)
        closed = failed = 0
        for event in stale:
            try:
                outcome = await self._reconciler.close_stale_event(event)
            except ITEM_ERRORS as exc:
                failed += 1
                logger.warning("stale_event_close_failed", event_id=str(event.id), error=str(exc))
                continue
            if outcome is ScoreOutcome.FINISHED:
                closed += 1
        tracker.record(sport.value, processed=len(stale), updated=closed, failed=failed)
        if stale:
            logger.info("stale_events_closed", sport=sport.value, found=len(stale), closed=closed)
        return closed

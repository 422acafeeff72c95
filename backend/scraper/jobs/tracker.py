"""
ScraperRun bookkeeping for one job execution.

A run starts as ``running``, accumulates per-sport counters and ends as ``success``,
``partial`` (some items failed) or ``failed`` (the job itself blew up). Low fixture
counts and high item error rates are raised as alerts when the run completes.
"""
from __future__ import annotations

import time
import uuid
from datetime import datetime
from typing import Callable, Optional

from shared.models.domain import ScraperRunRecord, SportRunStats, utcnow
from shared.models.enums import AlertSeverity, AlertType, JobType, RunStatus
from shared.utils.logging import bind_run_context, get_logger, unbind_run_context
from shared.utils.metrics import JOB_DURATION, JOB_RUNS, JOBS_RUNNING

from scraper.alerts import AlertManager
from scraper.reconciliation.store import CatalogStore

logger = get_logger(__name__)

# Minimum fixtures expected per sport from one fixtures run.
LOW_FIXTURE_THRESHOLDS: dict[str, int] = {
    "football": 50,
    "basketball": 20,
    "tennis": 5,
    "darts": 2,
    "cricket": 1,
}

HIGH_ERROR_RATE = 0.1


class RunTracker:
    def __init__(
        self,
        store: CatalogStore,
        alerts: AlertManager,
        job_type: JobType,
        source: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._alerts = alerts
        self._clock = clock
        self._run = ScraperRunRecord(job_type=job_type, source=source)
        self._started: Optional[float] = None

    @property
    def run(self) -> ScraperRunRecord:
        return self._run

    @property
    def run_id(self) -> uuid.UUID:
        return self._run.id

    async def start(self) -> ScraperRunRecord:
        self._run.started_at = self._clock()
        self._started = time.perf_counter()
        await self._store.create_run(self._run)
        bind_run_context(run_id=str(self._run.id), job_type=self._run.job_type.value)
        JOBS_RUNNING.labels(job_type=self._run.job_type.value).inc()
        logger.info("run_started")
        return self._run

    def record(
        self, sport: str, processed: int = 0, created: int = 0, updated: int = 0, failed: int = 0
    ) -> SportRunStats:
        stats = self._run.sport_stats.setdefault(sport, SportRunStats())
        stats.processed += processed
        stats.created += created
        stats.updated += updated
        stats.failed += failed
        self._run.items_processed += processed
        self._run.items_created += created
        self._run.items_updated += updated
        self._run.items_failed += failed
        return stats

    async def complete(self) -> ScraperRunRecord:
        run = self._run
        run.status = RunStatus.PARTIAL if run.items_failed else RunStatus.SUCCESS
        self._close()
        try:
            await self._store.save_run(run)
            await self._check_error_rate()
            if run.job_type is JobType.SYNC_FIXTURES:
                await self._check_fixture_counts()
        finally:
            self._finish_metrics()
        logger.info(
            "run_completed",
            status=run.status.value,
            duration_ms=run.duration_ms,
            processed=run.items_processed,
            created=run.items_created,
            updated=run.items_updated,
            failed=run.items_failed,
        )
        unbind_run_context("run_id", "job_type")
        return run

    async def fail(self, error: BaseException) -> ScraperRunRecord:
        """
        Mark the run failed and raise a ``job_failure`` alert.

        A store error while recording the failure is logged, not raised, so the caller
        can re-raise the original exception.
        """
        run = self._run
        run.status = RunStatus.FAILED
        run.error_message = f"{type(error).__name__}: {error}"
        self._close()
        self._finish_metrics()
        logger.error("run_failed", error=run.error_message, duration_ms=run.duration_ms)
        try:
            await self._store.save_run(run)
            await self._alerts.raise_alert(
                AlertType.JOB_FAILURE,
                AlertSeverity.ERROR,
                f"{run.job_type.value} failed: {run.error_message}",
                {"job_type": run.job_type.value},
                run_id=run.id,
            )
        except Exception as exc:
            logger.error("run_failure_not_recorded", error=str(exc), exc_info=True)
        unbind_run_context("run_id", "job_type")
        return run

    # ── Helpers ─────────────────────────────────────────────────────────
    def _close(self) -> None:
        self._run.completed_at = self._clock()
        if self._started is not None:
            self._run.duration_ms = int((time.perf_counter() - self._started) * 1000)

    def _finish_metrics(self) -> None:
        job = self._run.job_type.value
        JOB_RUNS.labels(job_type=job, status=self._run.status.value).inc()
        JOB_DURATION.labels(job_type=job).observe((self._run.duration_ms or 0) / 1000)
        JOBS_RUNNING.labels(job_type=job).dec()

    async def _check_error_rate(self) -> None:
        run = self._run
        if not run.items_processed:
            return
        rate = run.items_failed / run.items_processed
        if rate > HIGH_ERROR_RATE:
            await self._alerts.raise_alert(
                AlertType.HIGH_ERROR_RATE,
                AlertSeverity.WARNING,
                f"{run.job_type.value}: {run.items_failed}/{run.items_processed} items failed ({rate:.0%})",
                {"job_type": run.job_type.value, "error_rate": round(rate, 3)},
                run_id=run.id,
            )

    async def _check_fixture_counts(self) -> None:
        for sport, stats in self._run.sport_stats.items():
            threshold = LOW_FIXTURE_THRESHOLDS.get(sport)
            if threshold is None or stats.processed >= threshold:
                continue
            await self._alerts.raise_alert(
                AlertType.LOW_FIXTURE_COUNT,
                AlertSeverity.WARNING,
                f"Only {stats.processed} {sport} fixtures scraped (expected at least {threshold})",
                {"sport": sport, "count": stats.processed, "threshold": threshold},
                run_id=self._run.id,
            )

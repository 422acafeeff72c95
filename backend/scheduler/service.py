"""
Job scheduler for the scraper worker.

Each job type gets its own asyncio loop: fixtures once a day, odds on an adaptive
cadence driven by upcoming kick-offs, live scores every minute, plus periodic
stale-event cleanup and browser-context recycle. A job that is still running when
its next turn (or a manual trigger) comes round is skipped rather than stacked.
"""
from __future__ import annotations

import asyncio
import signal
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from shared.config import Settings, get_settings
from shared.models.domain import utcnow
from shared.models.enums import JobType
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import SERVICE_INFO, start_metrics_server

from scheduler.engine.polling import OddsCadence, Urgency
from scraper.runtime import ScraperRuntime, start_runtime, stop_runtime

logger = get_logger(__name__)

BROWSER_RECYCLE = "browser_recycle"
LOOP_ERROR_BACKOFF_S = 5.0


class JobState(BaseModel):
    name: str
    running: bool = False
    last_run_at: Optional[datetime] = None
    last_duration_ms: Optional[int] = None
    last_status: Optional[str] = None
    last_error: Optional[str] = None
    run_count: int = 0
    fail_count: int = 0
    skipped_count: int = 0
    next_run_at: Optional[datetime] = None


@dataclass
class ScheduledJob:
    """
    ``action`` does the work; ``next_delay`` returns seconds until the next turn;
    ``should_run`` (optional) can veto a turn once it comes due.
    """

    name: str
    action: Callable[[], Awaitable[Any]]
    next_delay: Callable[[], Awaitable[float]]
    initial_delay_s: float = 0.0
    should_run: Optional[Callable[[], Awaitable[bool]]] = None


def fixed_interval(seconds: float) -> Callable[[], Awaitable[float]]:
    async def delay() -> float:
        return seconds

    return delay


class JobScheduler:
    def __init__(
        self,
        jobs: list[ScheduledJob],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._jobs = {job.name: job for job in jobs}
        self._states = {job.name: JobState(name=job.name) for job in jobs}
        self._clock = clock
        self._loops: list[asyncio.Task[None]] = []
        self._triggered: set[asyncio.Task[bool]] = set()
        self._shutdown = asyncio.Event()

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    def status(self) -> list[JobState]:
        return [state.model_copy() for state in self._states.values()]

    def get_status(self, name: str) -> JobState:
        return self._states[name].model_copy()

    # ── Execution ───────────────────────────────────────────────────────
    async def execute(self, name: str) -> bool:
        """Run ``name`` once now. Returns False if it was already running."""
        job = self._jobs[name]
        state = self._states[name]
        if state.running:
            state.skipped_count += 1
            logger.info("job_skipped_already_running", job=name)
            return False

        state.running = True
        state.last_run_at = self._clock()
        started = time.perf_counter()
        logger.info("job_started", job=name)
        try:
            result = await job.action()
        except asyncio.CancelledError:
            state.last_status = "cancelled"
            raise
        except Exception as exc:
            state.fail_count += 1
            state.last_status = "failed"
            state.last_error = f"{type(exc).__name__}: {exc}"
            logger.error("job_failed", job=name, error=str(exc), exc_info=True)
        else:
            state.last_status = getattr(getattr(result, "status", None), "value", "success")
            state.last_error = None
            logger.info("job_finished", job=name, status=state.last_status)
        finally:
            state.running = False
            state.run_count += 1
            state.last_duration_ms = int((time.perf_counter() - started) * 1000)
        return True

    def trigger(self, name: str) -> bool:
        """
        Start ``name`` in the background.

        Raises KeyError for an unknown job; returns False when it is already running.
        """
        if name not in self._jobs:
            raise KeyError(name)
        if self._states[name].running:
            self._states[name].skipped_count += 1
            logger.info("job_trigger_ignored_running", job=name)
            return False
        task = asyncio.create_task(self.execute(name), name=f"trigger:{name}")
        self._triggered.add(task)
        task.add_done_callback(self._triggered.discard)
        logger.info("job_triggered", job=name)
        return True

    # ── Loops ───────────────────────────────────────────────────────────
    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=max(seconds, 0.0))
            return True
        except asyncio.TimeoutError:
            return False

    async def _loop(self, job: ScheduledJob) -> None:
        state = self._states[job.name]
        delay = job.initial_delay_s
        while not self._shutdown.is_set():
            try:
                state.next_run_at = self._clock() + timedelta(seconds=delay)
                if await self._wait(delay):
                    break
                if job.should_run is None or await job.should_run():
                    await self.execute(job.name)
                else:
                    logger.info("job_turn_skipped", job=job.name)
                delay = await job.next_delay()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("scheduler_loop_error", job=job.name, error=str(exc), exc_info=True)
                delay = LOOP_ERROR_BACKOFF_S

    def start(self) -> None:
        for job in self._jobs.values():
            self._loops.append(asyncio.create_task(self._loop(job), name=f"loop:{job.name}"))
        logger.info("scheduler_started", jobs=self.job_names)

    async def stop(self) -> None:
        self._shutdown.set()
        tasks = [*self._loops, *self._triggered]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops.clear()
        logger.info("scheduler_stopped")

    async def run(self) -> None:
        self.start()
        await self._shutdown.wait()
        await self.stop()

    def request_shutdown(self) -> None:
        self._shutdown.set()


def build_scheduler(runtime: ScraperRuntime, settings: Settings | None = None) -> JobScheduler:
    settings = settings or runtime.settings
    cadence = OddsCadence(runtime.store, settings)
    jobs = runtime.jobs

    async def odds_delay() -> float:
        delay, _ = await cadence.next_delay()
        return delay

    async def odds_due() -> bool:
        return await cadence.urgency() is not Urgency.NONE

    return JobScheduler(
        [
            ScheduledJob(
                JobType.SYNC_FIXTURES.value,
                jobs[JobType.SYNC_FIXTURES].run,
                fixed_interval(settings.fixtures_interval_s),
            ),
            ScheduledJob(
                JobType.SYNC_ODDS.value,
                jobs[JobType.SYNC_ODDS].run,
                odds_delay,
                initial_delay_s=settings.live_scores_interval_s,
                should_run=odds_due,
            ),
            ScheduledJob(
                JobType.SYNC_LIVE_SCORES.value,
                jobs[JobType.SYNC_LIVE_SCORES].run,
                fixed_interval(settings.live_scores_interval_s),
                initial_delay_s=settings.live_scores_interval_s,
            ),
            ScheduledJob(
                JobType.CLEANUP_STALE_EVENTS.value,
                jobs[JobType.CLEANUP_STALE_EVENTS].run,
                fixed_interval(settings.stale_cleanup_interval_s),
                initial_delay_s=settings.stale_cleanup_interval_s,
            ),
            ScheduledJob(
                BROWSER_RECYCLE,
                lambda: runtime.pages.recycle_all("scheduled"),
                fixed_interval(settings.browser_recycle_interval_s),
                initial_delay_s=settings.browser_recycle_interval_s,
            ),
        ]
    )


async def main() -> None:
    """Scraper worker entrypoint."""
    settings = get_settings()
    setup_logging("scraper-worker")
    start_metrics_server()
    SERVICE_INFO.info({"service": "scraper-worker", "environment": settings.environment.value})

    runtime = await start_runtime(settings)
    scheduler = build_scheduler(runtime, settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.request_shutdown)
        except (ValueError, OSError, RuntimeError) as exc:
            logger.warning("signal_handler_unavailable", signal=sig, error=str(exc))

    logger.info("scraper_worker_started", instance_id=settings.instance_id)

    try:
        await scheduler.run()
    finally:
        await stop_runtime(runtime)
        logger.info("scraper_worker_stopped")


if __name__ == "__main__":
    asyncio.run(main())

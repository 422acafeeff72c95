"""Tests for the job scheduler and the adaptive odds cadence."""
from __future__ import annotations

import asyncio
import random
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.config import Settings
from shared.models.enums import JobType, RunStatus

from scheduler.engine.polling import OddsCadence, Urgency, off_peak_multiplier, urgency_for
from scheduler.service import (
    BROWSER_RECYCLE,
    JobScheduler,
    ScheduledJob,
    build_scheduler,
    fixed_interval,
)
from tests.fakes import NOW, FakeCatalogStore, ManualClock


# ── Cadence ─────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "lead,expected",
    [
        (timedelta(minutes=30), Urgency.IMMINENT),
        (timedelta(hours=2), Urgency.IMMINENT),
        (timedelta(hours=5), Urgency.SOON),
        (timedelta(hours=12), Urgency.LATER),
        (timedelta(hours=30), Urgency.NONE),
    ],
)
def test_urgency_for(lead: timedelta, expected: Urgency) -> None:
    assert urgency_for(NOW + lead, NOW) is expected


def test_urgency_without_events() -> None:
    assert urgency_for(None, NOW) is Urgency.NONE


def test_off_peak_multiplier() -> None:
    assert off_peak_multiplier(3) == 1.5
    assert off_peak_multiplier(7) == 1.2
    assert off_peak_multiplier(15) == 1.0
    assert off_peak_multiplier(23) == 1.3


class TestOddsCadence:

    def test_imminent_daytime_bounds(self, store: FakeCatalogStore) -> None:
        for seed in range(50):
            cadence = OddsCadence(store, Settings(), rng=random.Random(seed))
            delay = cadence.delay_for(Urgency.IMMINENT, hour=14)
            assert 2100 <= delay <= 5100

    def test_quiet_night_bounds(self, store: FakeCatalogStore) -> None:
        for seed in range(50):
            cadence = OddsCadence(store, Settings(), rng=random.Random(seed))
            delay = cadence.delay_for(Urgency.NONE, hour=3)
            assert 21000 <= delay <= 33000

    def test_minimum_interval_is_enforced(self, store: FakeCatalogStore) -> None:
        cadence = OddsCadence(store, Settings(odds_min_interval_s=4 * 3600), rng=random.Random(1))
        assert cadence.delay_for(Urgency.IMMINENT, hour=14) == 4 * 3600

    @pytest.mark.asyncio
    async def test_urgency_follows_next_kickoff(self, store: FakeCatalogStore, clock: ManualClock) -> None:
        cadence = OddsCadence(store, Settings(), clock=clock, rng=random.Random(0))
        assert await cadence.urgency() is Urgency.NONE

        store.add_event("Arsenal", "Chelsea", NOW + timedelta(hours=1))
        delay, urgency = await cadence.next_delay()
        assert urgency is Urgency.IMMINENT
        assert delay >= 1800


# ── JobScheduler ────────────────────────────────────────────────────────

def job(name: str = "sync_odds", action=None, **kwargs) -> ScheduledJob:
    return ScheduledJob(name, action or AsyncMock(return_value=None), fixed_interval(3600), **kwargs)


class TestJobScheduler:

    @pytest.mark.asyncio
    async def test_execute_records_result_status(self) -> None:
        action = AsyncMock(return_value=MagicMock(status=RunStatus.PARTIAL))
        scheduler = JobScheduler([job(action=action)])

        assert await scheduler.execute("sync_odds") is True
        state = scheduler.get_status("sync_odds")
        assert state.last_status == "partial"
        assert state.run_count == 1
        assert state.running is False
        assert state.last_run_at is not None

    @pytest.mark.asyncio
    async def test_execute_absorbs_job_failure(self) -> None:
        scheduler = JobScheduler([job(action=AsyncMock(side_effect=RuntimeError("db down")))])

        assert await scheduler.execute("sync_odds") is True
        state = scheduler.get_status("sync_odds")
        assert state.fail_count == 1
        assert state.last_status == "failed"
        assert state.last_error == "RuntimeError: db down"

    @pytest.mark.asyncio
    async def test_running_job_is_not_stacked(self) -> None:
        release = asyncio.Event()

        async def slow() -> None:
            await release.wait()

        scheduler = JobScheduler([job(action=slow)])
        first = asyncio.create_task(scheduler.execute("sync_odds"))
        await asyncio.sleep(0)

        assert await scheduler.execute("sync_odds") is False
        assert scheduler.trigger("sync_odds") is False
        release.set()
        assert await first is True

        state = scheduler.get_status("sync_odds")
        assert state.run_count == 1
        assert state.skipped_count == 2

    @pytest.mark.asyncio
    async def test_trigger_runs_in_background(self) -> None:
        action = AsyncMock(return_value=None)
        scheduler = JobScheduler([job(action=action)])

        assert scheduler.trigger("sync_odds") is True
        await asyncio.sleep(0.01)
        action.assert_awaited_once()
        with pytest.raises(KeyError):
            scheduler.trigger("nope")

    @pytest.mark.asyncio
    async def test_loop_honours_should_run(self) -> None:
        due = AsyncMock(return_value=None)
        vetoed = AsyncMock(return_value=None)
        scheduler = JobScheduler(
            [
                job("due", action=due),
                job("vetoed", action=vetoed, should_run=AsyncMock(return_value=False)),
            ]
        )

        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        due.assert_awaited_once()
        vetoed.assert_not_awaited()
        assert scheduler.get_status("due").next_run_at is not None

    @pytest.mark.asyncio
    async def test_request_shutdown_ends_run(self) -> None:
        scheduler = JobScheduler([job(initial_delay_s=3600)])
        runner = asyncio.create_task(scheduler.run())
        await asyncio.sleep(0)
        scheduler.request_shutdown()
        await asyncio.wait_for(runner, timeout=1)
        assert scheduler.get_status("sync_odds").run_count == 0


def test_build_scheduler_wires_all_jobs(store: FakeCatalogStore) -> None:
    runtime = MagicMock()
    runtime.store = store
    runtime.jobs = {t: MagicMock() for t in JobType}
    scheduler = build_scheduler(runtime, Settings())
    assert scheduler.job_names == [
        JobType.SYNC_FIXTURES.value,
        JobType.SYNC_ODDS.value,
        JobType.SYNC_LIVE_SCORES.value,
        JobType.CLEANUP_STALE_EVENTS.value,
        BROWSER_RECYCLE,
    ]

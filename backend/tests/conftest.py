"""
Shared fixtures: in-memory catalog and Redis, a manual clock, and settings tuned for
fast tests (no pacing delays).
"""
from __future__ import annotations

import pytest

from shared.config import Settings

from scraper.alerts import AlertManager
from scraper.normalization.teams import TeamIdentityResolver
from scraper.reconciliation.reconciler import EventReconciler
from scraper.settlement import SettlementDispatcher
from tests.fakes import FakeCatalogStore, FakeRedis, ManualClock


@pytest.fixture
def settings() -> Settings:
    return Settings(
        inter_sport_delay_ms=0,
        rate_limit_default_delay_ms=0,
        rate_limit_min_delay_ms=0,
        odds_api_key="",
        disabled_sources=[],
        rotation_state_backend="memory",
        fixture_sports=["football", "tennis"],
        odds_sports=["football"],
        live_score_sports=["football"],
    )


@pytest.fixture
def store(clock: ManualClock) -> FakeCatalogStore:
    return FakeCatalogStore(clock)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def alerts(store: FakeCatalogStore, settings: Settings, clock: ManualClock) -> AlertManager:
    return AlertManager(store, settings, clock)


@pytest.fixture
def reconciler(
    store: FakeCatalogStore,
    fake_redis: FakeRedis,
    alerts: AlertManager,
    settings: Settings,
    clock: ManualClock,
) -> EventReconciler:
    return EventReconciler(
        store,
        TeamIdentityResolver(store, settings),
        SettlementDispatcher(fake_redis, settings),  # type: ignore[arg-type]
        alerts,
        settings,
        clock,
    )

"""
Wiring for the scraper worker.

Builds one object graph per process: connections, the shared rotation state, rate
limiter and request log, one source registry and rotation manager per job kind, the
reconciler, the three sync jobs and stale-event cleanup. Nothing in here is a
module-level singleton.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from shared.config import Environment, Settings, StateBackend, get_settings
from shared.models.enums import JobType
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger
from shared.utils.redis_manager import RedisManager

from scraper.alerts import AlertManager
from scraper.browser.pool import PagePool
from scraper.jobs.base import ScrapeJob
from scraper.jobs.cleanup import StaleEventsJob
from scraper.jobs.fixtures import FixturesJob
from scraper.jobs.live_scores import LiveScoresJob
from scraper.jobs.odds import OddsJob
from scraper.normalization.teams import TeamIdentityResolver
from scraper.rate_limiter import RateLimitDetector
from scraper.reconciliation.reconciler import EventReconciler
from scraper.reconciliation.store import CatalogStore, SqlCatalogStore
from scraper.request_metrics import MetricsCollector
from scraper.rotation.manager import SourceRotationManager
from scraper.rotation.state import InMemorySourceStateStore, RedisSourceStateStore, SourceStateStore
from scraper.settlement import SettlementDispatcher
from scraper.sources.base import ScrapeAdapter
from scraper.sources.betexplorer import BetExplorerAdapter
from scraper.sources.bmbets import BMBetsAdapter
from scraper.sources.covers import CoversAdapter
from scraper.sources.flashscore import FlashscoreFixturesAdapter
from scraper.sources.livescores import LiveScoresAdapter
from scraper.sources.nicerodds import NicerOddsAdapter
from scraper.sources.odds_api import OddsApiAdapter
from scraper.sources.oddsportal import OddsPortalAdapter
from scraper.sources.registry import (
    BETEXPLORER,
    BMBETS,
    COVERS,
    FLASHSCORE,
    NICERODDS,
    ODDS_SOURCES,
    ODDSPORTAL,
    SCORES365,
    THE_ODDS_API,
    SourceRegistry,
)
from scraper.status import SourceStatusService

logger = get_logger(__name__)

# Retry connection on startup (e.g. Redis/DB not ready yet in Docker)
CONNECT_RETRY_ATTEMPTS = 10
CONNECT_RETRY_BASE_DELAY_S = 2.0

ODDS, FIXTURES, LIVE_SCORES = "odds", "fixtures", "live_scores"

_DOM_ODDS_ADAPTERS = {
    ODDSPORTAL.name: OddsPortalAdapter,
    BETEXPLORER.name: BetExplorerAdapter,
    BMBETS.name: BMBetsAdapter,
    COVERS.name: CoversAdapter,
    NICERODDS.name: NicerOddsAdapter,
}


async def _connect_with_retry(connect_fn: Callable[[], Awaitable[Any]], name: str) -> None:
    """Call async connect_fn(); retry with exponential backoff on failure."""
    for attempt in range(1, CONNECT_RETRY_ATTEMPTS + 1):
        try:
            await connect_fn()
            return
        except Exception as exc:
            if attempt == CONNECT_RETRY_ATTEMPTS:
                raise
            delay = CONNECT_RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
            logger.warning(
                "connect_retry",
                name=name,
                attempt=attempt,
                max_attempts=CONNECT_RETRY_ATTEMPTS,
                delay_s=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)


def build_registries(rate_limiter: RateLimitDetector, settings: Settings) -> dict[str, SourceRegistry]:
    """One registry per job kind, with an adapter registered for every usable source."""
    odds_sources = [
        src for src in ODDS_SOURCES if src.name != THE_ODDS_API.name or settings.odds_api_key
    ]
    if not settings.odds_api_key:
        logger.info("odds_api_disabled", reason="no api key")

    odds = SourceRegistry(odds_sources, settings=settings)
    for src in odds_sources:
        if src.name == THE_ODDS_API.name:
            odds.register_adapter(OddsApiAdapter(src, rate_limiter, settings))
        else:
            odds.register_adapter(_DOM_ODDS_ADAPTERS[src.name](src, rate_limiter, settings))

    fixtures = SourceRegistry([FLASHSCORE], settings=settings)
    fixtures.register_adapter(FlashscoreFixturesAdapter(FLASHSCORE, rate_limiter, settings))

    live = SourceRegistry([SCORES365], settings=settings)
    live.register_adapter(LiveScoresAdapter(SCORES365, rate_limiter, settings))

    return {ODDS: odds, FIXTURES: fixtures, LIVE_SCORES: live}


def build_state_store(redis: RedisManager, settings: Settings) -> SourceStateStore:
    if settings.rotation_state_backend is StateBackend.REDIS:
        return RedisSourceStateStore(redis)
    return InMemorySourceStateStore()


@dataclass
class ScraperRuntime:
    settings: Settings
    redis: RedisManager
    db: DatabaseManager
    store: CatalogStore
    state: SourceStateStore
    rate_limiter: RateLimitDetector
    metrics: MetricsCollector
    alerts: AlertManager
    pages: PagePool
    reconciler: EventReconciler
    managers: dict[str, SourceRotationManager]
    status: SourceStatusService
    jobs: dict[JobType, ScrapeJob | StaleEventsJob] = field(default_factory=dict)

    def adapters(self) -> list[ScrapeAdapter]:
        found: list[ScrapeAdapter] = []
        for manager in self.managers.values():
            registry = manager.registry
            found.extend(registry.adapter_for(s.name) for s in registry.sources if registry.has_adapter(s.name))
        return found

    async def close(self) -> None:
        for adapter in self.adapters():
            close = getattr(adapter, "close", None)
            if close is not None:
                await close()
        await self.pages.close()


def build_runtime(
    redis: RedisManager,
    db: DatabaseManager,
    settings: Settings | None = None,
    store: CatalogStore | None = None,
) -> ScraperRuntime:
    """Assemble the object graph on top of already connected Redis and Postgres."""
    settings = settings or get_settings()
    store = store or SqlCatalogStore(db)
    state = build_state_store(redis, settings)
    rate_limiter = RateLimitDetector(settings)
    metrics = MetricsCollector(settings)
    alerts = AlertManager(store, settings)
    pages = PagePool(settings)

    managers = {
        kind: SourceRotationManager(registry, state, rate_limiter, metrics, kind=kind, settings=settings)
        for kind, registry in build_registries(rate_limiter, settings).items()
    }
    reconciler = EventReconciler(
        store,
        TeamIdentityResolver(store, settings),
        SettlementDispatcher(redis, settings),
        alerts,
        settings,
    )
    status = SourceStatusService(list(managers.values()), metrics, store, alerts, settings)

    runtime = ScraperRuntime(
        settings=settings,
        redis=redis,
        db=db,
        store=store,
        state=state,
        rate_limiter=rate_limiter,
        metrics=metrics,
        alerts=alerts,
        pages=pages,
        reconciler=reconciler,
        managers=managers,
        status=status,
    )
    common = dict(store=store, alerts=alerts, metrics=metrics, pages=pages, status=status, settings=settings)
    runtime.jobs = {
        JobType.SYNC_FIXTURES: FixturesJob(managers[FIXTURES], reconciler, **common),
        JobType.SYNC_ODDS: OddsJob(managers[ODDS], reconciler, **common),
        JobType.SYNC_LIVE_SCORES: LiveScoresJob(managers[LIVE_SCORES], reconciler, **common),
        JobType.CLEANUP_STALE_EVENTS: StaleEventsJob(reconciler, store, alerts, metrics),
    }
    return runtime


async def start_runtime(settings: Settings | None = None) -> ScraperRuntime:
    """Connect Redis and Postgres (with retry) and build the runtime."""
    settings = settings or get_settings()
    redis = RedisManager(settings)
    db = DatabaseManager(settings)
    await _connect_with_retry(redis.connect, "Redis")
    await _connect_with_retry(db.connect, "Database")
    if settings.environment is Environment.DEV:
        await db.create_schema()
    runtime = build_runtime(redis, db, settings)
    logger.info(
        "scraper_runtime_ready",
        odds_sources=[s.name for s in runtime.managers[ODDS].registry.enabled()],
        state_backend=settings.rotation_state_backend.value,
    )
    return runtime


async def stop_runtime(runtime: ScraperRuntime) -> None:
    await runtime.close()
    await runtime.db.disconnect()
    await runtime.redis.disconnect()

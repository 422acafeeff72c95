"""
Dependency injection for the monitoring API.
Provides the scraper runtime, its scheduler and their collaborators to route handlers.
"""
from __future__ import annotations

from shared.utils.database import DatabaseManager
from shared.utils.redis_manager import RedisManager

from scheduler.service import JobScheduler
from scraper.reconciliation.store import CatalogStore
from scraper.request_metrics import MetricsCollector
from scraper.runtime import ScraperRuntime
from scraper.status import SourceStatusService

# Module-level singletons, initialized at startup
_runtime: ScraperRuntime | None = None
_scheduler: JobScheduler | None = None


def init_dependencies(runtime: ScraperRuntime, scheduler: JobScheduler | None) -> None:
    """Initialize module-level singletons. Called once at startup."""
    global _runtime, _scheduler
    _runtime = runtime
    _scheduler = scheduler


def reset_dependencies() -> None:
    global _runtime, _scheduler
    _runtime = None
    _scheduler = None


def get_runtime() -> ScraperRuntime:
    if _runtime is None:
        raise RuntimeError("Scraper runtime not initialized; call init_dependencies first")
    return _runtime


def get_scheduler() -> JobScheduler:
    if _scheduler is None:
        raise RuntimeError("Scheduler not initialized (scheduler disabled?)")
    return _scheduler


def get_redis() -> RedisManager:
    return get_runtime().redis


def get_db() -> DatabaseManager:
    return get_runtime().db


def get_store() -> CatalogStore:
    return get_runtime().store


def get_metrics() -> MetricsCollector:
    return get_runtime().metrics


def get_status_service() -> SourceStatusService:
    return get_runtime().status

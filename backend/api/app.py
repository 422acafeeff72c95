"""
FastAPI application factory for the scraper monitoring API.

Creates the app with:
- Monitoring routes (sources, metrics, jobs, runs, alerts)
- Middleware stack
- Health check endpoints
- Lifespan management: connects Redis/Postgres, builds the scraper runtime and,
  when enabled, runs the job scheduler in-process
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Union

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from shared.config import get_settings
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import SERVICE_INFO, start_metrics_server

from api.dependencies import get_db, get_redis, init_dependencies, reset_dependencies
from api.middleware import setup_middleware
from api.routes.monitoring import router as monitoring_router
from scheduler.service import JobScheduler, build_scheduler
from scraper.runtime import start_runtime, stop_runtime

logger = get_logger(__name__)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without DB/Redis."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    setup_logging("api")
    start_metrics_server()
    SERVICE_INFO.info({"service": "api", "environment": settings.environment.value})

    runtime = await start_runtime(settings)
    scheduler: JobScheduler | None = None
    if settings.scheduler_enabled:
        scheduler = build_scheduler(runtime, settings)
        scheduler.start()
    init_dependencies(runtime, scheduler)

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        scheduler=scheduler is not None,
    )

    try:
        yield
    finally:
        if scheduler is not None:
            await scheduler.stop()
        await stop_runtime(runtime)
        reset_dependencies()
        logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing without DB/Redis."""
    app = FastAPI(
        title="Sport Sage Scraper",
        description="Monitoring API for the odds, fixtures and live-score scraper",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url=None,
    )

    setup_middleware(app)
    app.include_router(monitoring_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "scraper"}

    @app.get("/ready", tags=["system"])
    async def readiness() -> JSONResponse:
        """Readiness probe: checks Redis and Postgres."""
        checks: Dict[str, Union[str, bool]] = {"redis": False, "database": False}
        try:
            await get_redis().client.ping()
            checks["redis"] = True
        except (RedisError, OSError, RuntimeError) as exc:
            logger.warning("readiness_redis_failed", error=str(exc))
        try:
            await get_db().ping()
            checks["database"] = True
        except (SQLAlchemyError, OSError, RuntimeError) as exc:
            logger.warning("readiness_database_failed", error=str(exc))

        ready = bool(checks["redis"] and checks["database"])
        checks["status"] = "ok" if ready else "degraded"
        return JSONResponse(status_code=200 if ready else 503, content=checks)

    return app


app = create_app()

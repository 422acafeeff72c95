"""
Monitoring endpoints for the scraper.

GET  /v1/sources/status              — Per-source health, success rate, cooldown and recent alerts.
GET  /v1/metrics                     — Rolling request-log snapshot, pacing and browser pool state.
GET  /v1/jobs                        — Scheduler job status.
POST /v1/jobs/{name}/trigger         — Start a job now (ignored if it is already running).
GET  /v1/runs                        — Recent ScraperRun records.
GET  /v1/alerts                      — Recent alerts.
POST /v1/alerts/{id}/acknowledge     — Acknowledge an alert.
"""
from __future__ import annotations

import uuid
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from shared.models.domain import AlertRecord, ScraperRunRecord, SourceStatusReport
from shared.models.enums import JobType
from shared.utils.logging import get_logger

from api.dependencies import get_runtime, get_scheduler, get_status_service, get_store
from scheduler.service import JobScheduler, JobState
from scraper.reconciliation.store import CatalogStore
from scraper.runtime import ScraperRuntime
from scraper.status import SourceStatusService

logger = get_logger(__name__)
router = APIRouter(prefix="/v1", tags=["monitoring"])


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str = "dashboard"


@router.get("/sources/status")
async def sources_status(
    status: SourceStatusService = Depends(get_status_service),
) -> list[SourceStatusReport]:
    return await status.get_status()


@router.get("/metrics")
async def metrics(runtime: ScraperRuntime = Depends(get_runtime)) -> dict[str, Any]:
    return {
        "requests": runtime.metrics.snapshot(),
        "rate_limits": runtime.rate_limiter.get_stats(),
        "browser_pool": runtime.pages.stats(),
    }


@router.get("/jobs")
async def list_jobs(scheduler: JobScheduler = Depends(get_scheduler)) -> list[JobState]:
    return scheduler.status()


@router.post("/jobs/{name}/trigger", status_code=202)
async def trigger_job(name: str, scheduler: JobScheduler = Depends(get_scheduler)) -> dict[str, Any]:
    try:
        started = scheduler.trigger(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown job {name!r}")
    return {"job": name, "started": started, "status": scheduler.get_status(name)}


@router.get("/runs")
async def list_runs(
    limit: int = Query(50, ge=1, le=500),
    job_type: Optional[JobType] = None,
    store: CatalogStore = Depends(get_store),
) -> list[ScraperRunRecord]:
    return await store.list_runs(limit=limit, job_type=job_type)


@router.get("/alerts")
async def list_alerts(
    limit: int = Query(50, ge=1, le=500),
    unacknowledged_only: bool = False,
    source: Optional[str] = None,
    store: CatalogStore = Depends(get_store),
) -> list[AlertRecord]:
    return await store.list_alerts(limit=limit, unacknowledged_only=unacknowledged_only, source=source)


@router.post("/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: uuid.UUID,
    body: Optional[AcknowledgeRequest] = None,
    store: CatalogStore = Depends(get_store),
) -> AlertRecord:
    by = (body or AcknowledgeRequest()).acknowledged_by
    alert = await store.acknowledge_alert(alert_id, by)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    logger.info("alert_acknowledged", alert_id=str(alert_id), by=by)
    return alert

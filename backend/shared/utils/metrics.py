"""
Prometheus metrics for the scraper services.
Metric definitions and the exporter endpoint.
"""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Info, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
SCRAPE_ATTEMPTS = Counter(
    "ss_scrape_attempts_total",
    "Scrape attempts per source and sport",
    ["source", "sport", "outcome"],
)
SCRAPED_RECORDS = Counter(
    "ss_scraped_records_total",
    "Records returned by scrape adapters",
    ["source", "sport"],
)
SOURCE_SELECTIONS = Counter(
    "ss_source_selections_total",
    "Rotation selections, split by normal vs fallback",
    ["source", "sport", "mode"],
)
RECONCILE_OUTCOMES = Counter(
    "ss_reconcile_outcomes_total",
    "Reconciliation results",
    ["kind", "outcome"],
)
SETTLEMENT_MESSAGES = Counter(
    "ss_settlement_messages_total",
    "Settlement notifications published",
)
JOB_RUNS = Counter(
    "ss_job_runs_total",
    "Completed job runs by type and final status",
    ["job_type", "status"],
)
ALERTS_RAISED = Counter(
    "ss_alerts_raised_total",
    "Alerts written to the audit trail",
    ["alert_type", "severity"],
)
HTTP_REQUESTS = Counter(
    "ss_http_requests_total",
    "HTTP source requests",
    ["source", "status"],
)

# ── Histograms ──────────────────────────────────────────────────────────
SCRAPE_LATENCY = Histogram(
    "ss_scrape_latency_seconds",
    "Time spent in one adapter scrape",
    ["source"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0, 60.0, 120.0),
)
JOB_DURATION = Histogram(
    "ss_job_duration_seconds",
    "Wall time of a job run",
    ["job_type"],
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1200),
)
HTTP_LATENCY = Histogram(
    "ss_http_latency_seconds",
    "HTTP source request latency in seconds",
    ["source"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
SOURCE_CONSECUTIVE_FAILURES = Gauge(
    "ss_source_consecutive_failures",
    "Current global consecutive failures per source",
    ["source"],
)
DOMAIN_DELAY_MS = Gauge(
    "ss_domain_delay_ms",
    "Current inter-request delay per domain",
    ["domain"],
)
BROWSER_PAGES_IN_USE = Gauge(
    "ss_browser_pages_in_use",
    "Browser pages currently checked out of the pool",
)
JOBS_RUNNING = Gauge(
    "ss_jobs_running",
    "Jobs currently executing",
    ["job_type"],
)

# ── Info ────────────────────────────────────────────────────────────────
SERVICE_INFO = Info("ss_service", "Service build information")


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)

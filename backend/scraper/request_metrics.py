"""
Rolling in-process request log.

Complements the Prometheus counters: Prometheus answers "how many ever", this
answers "what fraction of the last hour", which is what alert thresholds need.
All methods are synchronous and never await, so they are atomic under asyncio.
"""
from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from shared.config import Settings, get_settings
from shared.models.enums import AlertSeverity, AlertType
from shared.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RequestSample:
    source: str
    success: bool
    response_time_ms: float
    timestamp: float
    blocked: bool = False
    status_code: Optional[int] = None


@dataclass
class JobSample:
    name: str
    start_time: float
    end_time: Optional[float] = None
    duration_ms: Optional[float] = None
    success: Optional[bool] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ThresholdAlert:
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    value: float


class MetricsCollector:
    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        s = settings or get_settings()
        self._window_s = float(s.request_log_window_s)
        self._blocked_threshold = s.alert_blocked_rate
        self._success_threshold = s.alert_success_rate
        self._clock = clock
        self._requests: deque[RequestSample] = deque(maxlen=s.request_log_capacity)
        self._jobs: dict[str, JobSample] = {}
        self._last_block: Optional[float] = None

    # ── Recording ───────────────────────────────────────────────────────
    def record_request(
        self,
        source: str,
        success: bool,
        response_time_ms: float,
        *,
        blocked: bool = False,
        status_code: int | None = None,
    ) -> None:
        now = self._clock()
        self._requests.append(
            RequestSample(source, success, response_time_ms, now, blocked, status_code)
        )
        if blocked:
            self._last_block = now

    def record_job_start(self, job_name: str) -> None:
        self._jobs[job_name] = JobSample(name=job_name, start_time=self._clock())

    def record_job_complete(self, job_name: str, duration_ms: float, success: bool) -> None:
        job = self._jobs.get(job_name)
        if job:
            job.end_time = self._clock()
            job.duration_ms = duration_ms
            job.success = success

    def record_job_failed(self, job_name: str, error: BaseException | str) -> None:
        job = self._jobs.get(job_name)
        if job:
            job.end_time = self._clock()
            job.duration_ms = (job.end_time - job.start_time) * 1000
            job.success = False
            job.error = str(error)

    # ── Queries ─────────────────────────────────────────────────────────
    def _recent(self, window_s: float | None, source: str | None = None) -> list[RequestSample]:
        cutoff = self._clock() - (window_s or self._window_s)
        return [
            r for r in self._requests
            if r.timestamp > cutoff and (source is None or r.source == source)
        ]

    def get_success_rate(self, window_s: float | None = None) -> float:
        return _success_rate(self._recent(window_s))

    def get_blocked_rate(self, window_s: float | None = None) -> float:
        return _blocked_rate(self._recent(window_s))

    def get_average_response_time(self, window_s: float | None = None) -> int:
        """Mean response time of successful requests only, rounded to whole ms."""
        return _avg_response(self._recent(window_s))

    def get_source_stats(self, source: str, window_s: float | None = None) -> dict[str, Any]:
        recent = self._recent(window_s, source)
        return {
            "success_rate": _success_rate(recent),
            "blocked_rate": _blocked_rate(recent),
            "avg_response_time_ms": _avg_response(recent),
            "request_count": len(recent),
        }

    @property
    def last_block(self) -> Optional[datetime]:
        if self._last_block is None:
            return None
        return datetime.fromtimestamp(self._last_block, tz=timezone.utc)

    def health(self) -> dict[str, Any]:
        return {
            "success_rate": f"{self.get_success_rate() * 100:.1f}%",
            "blocked_rate": f"{self.get_blocked_rate() * 100:.1f}%",
            "avg_response_time": f"{self.get_average_response_time()}ms",
            "last_block": self.last_block.isoformat() if self.last_block else None,
        }

    def check_alerts(self) -> list[ThresholdAlert]:
        """Threshold alerts over the default window. Read-only; safe to poll."""
        alerts: list[ThresholdAlert] = []

        blocked_rate = self.get_blocked_rate()
        if blocked_rate > self._blocked_threshold:
            alerts.append(
                ThresholdAlert(
                    AlertType.HIGH_BLOCK_RATE,
                    AlertSeverity.ERROR,
                    f"High block rate detected: {blocked_rate * 100:.1f}%",
                    blocked_rate,
                )
            )

        success_rate = self.get_success_rate()
        if success_rate < self._success_threshold:
            alerts.append(
                ThresholdAlert(
                    AlertType.LOW_SUCCESS_RATE,
                    AlertSeverity.WARNING,
                    f"Low success rate: {success_rate * 100:.1f}%",
                    success_rate,
                )
            )

        if alerts:
            logger.debug("request_threshold_alerts", count=len(alerts), blocked_rate=blocked_rate, success_rate=success_rate)
        return alerts

    def snapshot(self) -> dict[str, Any]:
        sources = sorted({r.source for r in self._requests})
        return {
            **self.health(),
            "request_count": len(self._requests),
            "source_stats": {s: self.get_source_stats(s) for s in sources},
            "jobs": {
                name: {
                    "duration_ms": job.duration_ms,
                    "success": job.success,
                    "error": job.error,
                }
                for name, job in self._jobs.items()
            },
            "alerts": [
                {"alert_type": a.alert_type.value, "severity": a.severity.value, "message": a.message}
                for a in self.check_alerts()
            ],
        }

    def reset(self) -> None:
        self._requests.clear()
        self._jobs.clear()
        self._last_block = None
        logger.info("metrics_collector_reset")


def _success_rate(samples: Iterable[RequestSample]) -> float:
    samples = list(samples)
    if not samples:
        return 1.0
    return sum(1 for r in samples if r.success) / len(samples)


def _blocked_rate(samples: Iterable[RequestSample]) -> float:
    samples = list(samples)
    if not samples:
        return 0.0
    return sum(1 for r in samples if r.blocked) / len(samples)


def _avg_response(samples: Iterable[RequestSample]) -> int:
    times = [r.response_time_ms for r in samples if r.success]
    if not times:
        return 0
    return round(sum(times) / len(times))

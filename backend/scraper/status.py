"""
Source health summary for the monitoring API, and the alerts derived from it.
"""
from __future__ import annotations

import uuid
from typing import Sequence

from shared.config import Settings, get_settings
from shared.models.domain import SourceStatusReport
from shared.models.enums import AlertSeverity, AlertType, SourceHealth
from shared.utils.logging import get_logger

from scraper.alerts import AlertManager
from scraper.reconciliation.store import CatalogStore
from scraper.request_metrics import MetricsCollector
from scraper.rotation.manager import SourceRotationManager
from scraper.rotation.state import SourceUsage

logger = get_logger(__name__)

RECENT_ALERTS = 5


def classify_health(
    usage: SourceUsage, cooldown_remaining_s: float, degraded_after: int, down_after: int
) -> SourceHealth:
    if usage.last_used_at is None and not (usage.success_count or usage.failure_count):
        return SourceHealth.UNKNOWN
    if usage.consecutive_failures >= down_after:
        return SourceHealth.DOWN
    if usage.consecutive_failures >= degraded_after:
        return SourceHealth.DEGRADED
    if cooldown_remaining_s > 0:
        return SourceHealth.COOLDOWN
    return SourceHealth.HEALTHY


class SourceStatusService:
    def __init__(
        self,
        managers: Sequence[SourceRotationManager],
        metrics: MetricsCollector,
        store: CatalogStore,
        alerts: AlertManager,
        settings: Settings | None = None,
    ) -> None:
        self._managers = list(managers)
        self._metrics = metrics
        self._store = store
        self._alerts = alerts
        s = settings or get_settings()
        self._degraded_after = s.source_degraded_after
        self._down_after = s.source_down_after

    async def get_status(self, include_alerts: bool = True) -> list[SourceStatusReport]:
        reports: list[SourceStatusReport] = []
        for manager in self._managers:
            for name, entry in (await manager.get_sources_status()).items():
                usage: SourceUsage = entry["usage"]
                total = usage.success_count + usage.failure_count
                reports.append(
                    SourceStatusReport(
                        source=name,
                        status=classify_health(
                            usage, entry["cooldown_remaining_s"], self._degraded_after, self._down_after
                        ),
                        enabled=entry["enabled"],
                        priority=entry["source"].priority,
                        success_rate=round(usage.success_count / total, 3) if total else None,
                        success_count=usage.success_count,
                        failure_count=usage.failure_count,
                        consecutive_failures=usage.consecutive_failures,
                        cooldown_remaining_s=round(entry["cooldown_remaining_s"], 1),
                        last_run=usage.last_used_at,
                        last_error=usage.last_error,
                        avoided_sports=entry["avoided_sports"],
                        recent_alerts=(
                            await self._store.list_alerts(limit=RECENT_ALERTS, source=name)
                            if include_alerts
                            else []
                        ),
                    )
                )
        return reports

    async def raise_health_alerts(self, run_id: uuid.UUID | None = None) -> int:
        """Write source-health and request-rate alerts, at most once per type and source per dedup window."""
        raised = 0
        for report in await self.get_status(include_alerts=False):
            if report.status is SourceHealth.DOWN:
                alert_type, severity = AlertType.SOURCE_DOWN, AlertSeverity.ERROR
            elif report.status is SourceHealth.DEGRADED:
                alert_type, severity = AlertType.SOURCE_DEGRADED, AlertSeverity.WARNING
            else:
                continue
            alert = await self._alerts.raise_alert(
                alert_type,
                severity,
                f"Source {report.source} is {report.status.value}: "
                f"{report.consecutive_failures} consecutive failures ({report.last_error})",
                {"source": report.source, "consecutive_failures": report.consecutive_failures},
                run_id=run_id,
                dedup=True,
            )
            raised += alert is not None

        for threshold in self._metrics.check_alerts():
            alert = await self._alerts.raise_alert(
                threshold.alert_type,
                threshold.severity,
                threshold.message,
                {"value": round(threshold.value, 3)},
                run_id=run_id,
                dedup=True,
            )
            raised += alert is not None
        return raised

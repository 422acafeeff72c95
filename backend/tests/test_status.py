"""Tests for source health classification and the alerts derived from it."""
from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.config import Settings
from shared.models.enums import AlertSeverity, AlertType, SourceHealth

from scraper.alerts import AlertManager
from scraper.request_metrics import MetricsCollector
from scraper.rotation.state import SourceUsage
from scraper.status import SourceStatusService, classify_health
from tests.fakes import NOW, FakeCatalogStore


@pytest.mark.parametrize(
    "usage,cooldown,expected",
    [
        (SourceUsage(), 0.0, SourceHealth.UNKNOWN),
        (SourceUsage(last_used_at=NOW, success_count=3), 0.0, SourceHealth.HEALTHY),
        (SourceUsage(last_used_at=NOW, success_count=3), 59.0, SourceHealth.COOLDOWN),
        (SourceUsage(last_used_at=NOW, failure_count=2, consecutive_failures=2), 120.0, SourceHealth.DEGRADED),
        (SourceUsage(last_used_at=NOW, failure_count=9, consecutive_failures=5), 900.0, SourceHealth.DOWN),
    ],
)
def test_classify_health(usage: SourceUsage, cooldown: float, expected: SourceHealth) -> None:
    assert classify_health(usage, cooldown, degraded_after=2, down_after=5) is expected


def entry(usage: SourceUsage, cooldown: float = 0.0, priority: int = 1, avoided: list[str] | None = None) -> dict[str, Any]:
    return {
        "source": MagicMock(priority=priority),
        "usage": usage,
        "enabled": True,
        "cooldown_remaining_s": cooldown,
        "avoided_sports": avoided or [],
    }


def manager_with(entries: dict[str, dict[str, Any]]) -> MagicMock:
    manager = MagicMock()
    manager.get_sources_status = AsyncMock(return_value=entries)
    return manager


@pytest.fixture
def service_factory(store: FakeCatalogStore, alerts: AlertManager, settings: Settings):
    def build(entries: dict[str, dict[str, Any]]) -> SourceStatusService:
        return SourceStatusService([manager_with(entries)], MetricsCollector(settings), store, alerts, settings)

    return build


@pytest.mark.asyncio
async def test_get_status_reports_each_source(service_factory, alerts: AlertManager) -> None:
    await alerts.raise_alert(AlertType.SOURCE_DOWN, AlertSeverity.ERROR, "old", {"source": "oddsportal"})
    service = service_factory(
        {
            "oddsportal": entry(
                SourceUsage(last_used_at=NOW, success_count=1, failure_count=6, consecutive_failures=6,
                            last_error="blocked"),
                cooldown=960.0,
                avoided=["tennis"],
            ),
            "betexplorer": entry(SourceUsage(last_used_at=NOW, success_count=4), priority=2),
        }
    )

    down, healthy = await service.get_status()

    assert down.source == "oddsportal"
    assert down.status is SourceHealth.DOWN
    assert down.success_rate == pytest.approx(0.143)
    assert down.avoided_sports == ["tennis"]
    assert len(down.recent_alerts) == 1
    assert healthy.status is SourceHealth.HEALTHY
    assert healthy.success_rate == 1.0
    assert healthy.priority == 2
    assert healthy.recent_alerts == []


@pytest.mark.asyncio
async def test_health_alerts_are_deduplicated(service_factory, store: FakeCatalogStore) -> None:
    service = service_factory(
        {
            "oddsportal": entry(SourceUsage(last_used_at=NOW, failure_count=5, consecutive_failures=5)),
            "flashscore": entry(SourceUsage(last_used_at=NOW, failure_count=3, consecutive_failures=3)),
            "betexplorer": entry(SourceUsage()),
        }
    )

    assert await service.raise_health_alerts() == 2
    assert await service.raise_health_alerts() == 0

    [down] = store.alerts_of(AlertType.SOURCE_DOWN)
    assert down.metadata["source"] == "oddsportal"
    assert down.severity is AlertSeverity.ERROR
    [degraded] = store.alerts_of(AlertType.SOURCE_DEGRADED)
    assert degraded.metadata["source"] == "flashscore"
    assert degraded.severity is AlertSeverity.WARNING

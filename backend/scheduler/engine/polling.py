"""
Adaptive cadence for the odds job.
Computes the delay until the next odds sync from how soon the next event kicks off.
"""
from __future__ import annotations

import random
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import utcnow
from shared.utils.logging import get_logger

from scraper.reconciliation.store import CatalogStore

logger = get_logger(__name__)


class Urgency(str, Enum):
    IMMINENT = "imminent"  # next kick-off within 2 h
    SOON = "soon"          # 2-6 h
    LATER = "later"        # 6-24 h
    NONE = "none"          # nothing in the next 24 h


# ── Delay profiles (seconds) ────────────────────────────────────────────
URGENCY_RANGES: dict[Urgency, tuple[float, float]] = {
    Urgency.IMMINENT: (45 * 60, 75 * 60),
    Urgency.SOON: (60 * 60, 90 * 60),
    Urgency.LATER: (90 * 60, 150 * 60),
    Urgency.NONE: (240 * 60, 360 * 60),
}

URGENCY_FLOORS: dict[Urgency, float] = {
    Urgency.IMMINENT: 30 * 60,
    Urgency.SOON: 45 * 60,
    Urgency.LATER: 60 * 60,
    Urgency.NONE: 180 * 60,
}

MAX_JITTER_S = 10 * 60


def off_peak_multiplier(hour: int) -> float:
    if 0 <= hour < 6:
        return 1.5
    if hour >= 22:
        return 1.3
    if 6 <= hour < 9:
        return 1.2
    return 1.0


def urgency_for(next_start: Optional[datetime], now: datetime) -> Urgency:
    if next_start is None:
        return Urgency.NONE
    lead = next_start - now
    if lead <= timedelta(hours=2):
        return Urgency.IMMINENT
    if lead <= timedelta(hours=6):
        return Urgency.SOON
    if lead <= timedelta(hours=24):
        return Urgency.LATER
    return Urgency.NONE


class OddsCadence:
    """
    The delay formula:

        base     = uniform(range[urgency]) * off_peak_multiplier(hour)
        delay    = max(floor[urgency], base + uniform(-10 min, +10 min))
        delay    = max(delay, odds_min_interval_s)
    """

    def __init__(
        self,
        store: CatalogStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._clock = clock
        self._rng = rng or random.Random()

    async def urgency(self) -> Urgency:
        now = self._clock()
        next_start = await self._store.earliest_scheduled_start(now)
        return urgency_for(next_start, now)

    def delay_for(self, urgency: Urgency, hour: int | None = None) -> float:
        low, high = URGENCY_RANGES[urgency]
        hour = self._clock().hour if hour is None else hour
        base = self._rng.uniform(low, high) * off_peak_multiplier(hour)
        jitter = self._rng.uniform(-MAX_JITTER_S, MAX_JITTER_S)
        delay = max(URGENCY_FLOORS[urgency], base + jitter)
        return max(delay, self._settings.odds_min_interval_s)

    async def next_delay(self) -> tuple[float, Urgency]:
        urgency = await self.urgency()
        delay = self.delay_for(urgency)
        logger.info("odds_sync_scheduled", urgency=urgency.value, delay_min=round(delay / 60))
        return delay, urgency

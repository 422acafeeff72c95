"""
Sanity checks applied to odds and score updates before they reach the catalog.

Both checks are pure: they compare a new value with the previously stored one and
report what looks wrong. The reconciler decides whether to apply, flag or drop.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from shared.models.domain import utcnow

# ── Odds ────────────────────────────────────────────────────────────────
ANOMALY_MIN_ODDS = 1.01
ANOMALY_MAX_ODDS = 50.0
MIN_TOTAL_IMPLIED = 0.5
MAX_CHANGE_RATIO = 0.5
CHANGE_WINDOW = timedelta(minutes=5)
SIMILAR_SPREAD = 0.15
INVERSION_FACTOR = 0.5


class AnomalySeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_RANK = {
    AnomalySeverity.LOW: 0,
    AnomalySeverity.MEDIUM: 1,
    AnomalySeverity.HIGH: 2,
    AnomalySeverity.CRITICAL: 3,
}


@dataclass(frozen=True)
class PriceSet:
    home_win: Optional[float] = None
    draw: Optional[float] = None
    away_win: Optional[float] = None
    updated_at: Optional[datetime] = None

    def values(self) -> list[float]:
        return [v for v in (self.home_win, self.draw, self.away_win) if v is not None]


@dataclass
class OddsAnomalyResult:
    reasons: list[str] = field(default_factory=list)
    severity: AnomalySeverity = AnomalySeverity.LOW

    @property
    def is_anomalous(self) -> bool:
        return bool(self.reasons)

    @property
    def blocks_update(self) -> bool:
        """Critical anomalies are never written to the catalog."""
        return self.severity is AnomalySeverity.CRITICAL

    def flag(self, reason: str, severity: AnomalySeverity) -> None:
        self.reasons.append(reason)
        if _RANK[severity] > _RANK[self.severity]:
            self.severity = severity


def _change_ratio(old: float, new: float) -> float:
    if old == 0:
        return 1.0 if new > 0 else 0.0
    return abs(new - old) / old


def _similar(prices: PriceSet) -> bool:
    values = [v for v in prices.values() if v > 0]
    if len(values) < 2:
        return False
    low, high = min(values), max(values)
    return (high - low) / low < SIMILAR_SPREAD


def _inverted(new: PriceSet, previous: Optional[PriceSet]) -> bool:
    if previous is None or not previous.home_win or not previous.away_win:
        return False
    if not new.home_win or not new.away_win:
        return False
    home_was_favourite = previous.home_win < previous.away_win
    away_was_favourite = previous.away_win < previous.home_win
    return (
        (home_was_favourite and new.away_win < new.home_win * INVERSION_FACTOR)
        or (away_was_favourite and new.home_win < new.away_win * INVERSION_FACTOR)
    )


def detect_odds_anomalies(
    new: PriceSet, previous: Optional[PriceSet] = None, now: Optional[datetime] = None
) -> OddsAnomalyResult:
    result = OddsAnomalyResult()
    values = new.values()

    for price in values:
        if price < ANOMALY_MIN_ODDS:
            result.flag(f"odds below minimum ({price} < {ANOMALY_MIN_ODDS})", AnomalySeverity.CRITICAL)
        if price > ANOMALY_MAX_ODDS:
            result.flag(f"extreme odds ({price} > {ANOMALY_MAX_ODDS})", AnomalySeverity.HIGH)

    total = sum(1 / v for v in values if v > 0)
    if values and total < MIN_TOTAL_IMPLIED:
        result.flag(
            f"implied probability {total * 100:.1f}% allows arbitrage", AnomalySeverity.CRITICAL
        )

    if previous is not None and previous.updated_at is not None:
        elapsed = (now or utcnow()) - previous.updated_at
        if elapsed < CHANGE_WINDOW:
            moved = [
                f"{label} {_change_ratio(old, cur) * 100:.0f}%"
                for label, old, cur in (
                    ("home", previous.home_win, new.home_win),
                    ("draw", previous.draw, new.draw),
                    ("away", previous.away_win, new.away_win),
                )
                if old and cur and _change_ratio(old, cur) > MAX_CHANGE_RATIO
            ]
            if moved:
                result.flag(
                    f"rapid odds change in {int(elapsed.total_seconds())}s: {', '.join(moved)}",
                    AnomalySeverity.HIGH,
                )

    if _similar(new):
        result.flag(
            f"all outcomes priced within {SIMILAR_SPREAD * 100:.0f}% of each other", AnomalySeverity.HIGH
        )

    if _inverted(new, previous):
        result.flag("favourite inverted from previous prices", AnomalySeverity.HIGH)

    return result


# ── Scores ──────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class ScoreLimits:
    max_score: int
    max_difference: int
    allow_decrease: bool = False


DEFAULT_SCORE_LIMITS = ScoreLimits(100, 50)

SPORT_SCORE_LIMITS: dict[str, ScoreLimits] = {
    "football": ScoreLimits(15, 10),
    "soccer": ScoreLimits(15, 10),
    "basketball": ScoreLimits(200, 100),
    # per-set scores reset when a new set starts
    "tennis": ScoreLimits(7, 7, allow_decrease=True),
    "volleyball": ScoreLimits(35, 20, allow_decrease=True),
    "ice_hockey": ScoreLimits(15, 12),
    "hockey": ScoreLimits(15, 12),
    "american_football": ScoreLimits(70, 60),
    "baseball": ScoreLimits(30, 25),
    "rugby": ScoreLimits(80, 60),
    "handball": ScoreLimits(50, 30),
    "cricket": ScoreLimits(500, 400),
}

MAX_JUMP = 5
MAX_JUMP_BY_SPORT = {"basketball": 20}


def score_limits(sport: str) -> ScoreLimits:
    return SPORT_SCORE_LIMITS.get(re.sub(r"[^a-z]", "_", sport.lower()), DEFAULT_SCORE_LIMITS)


@dataclass
class ScoreValidationResult:
    """``errors`` reject the update; ``warnings`` are logged and the update is applied."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    regressed: bool = False

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def reasons(self) -> list[str]:
        return [*self.errors, *self.warnings]


def validate_score_update(
    sport: str,
    home: Optional[int],
    away: Optional[int],
    previous_home: Optional[int] = None,
    previous_away: Optional[int] = None,
) -> ScoreValidationResult:
    result = ScoreValidationResult()
    if home is None or away is None:
        return result

    limits = score_limits(sport)
    for side, value in (("home", home), ("away", away)):
        if value < 0:
            result.errors.append(f"negative {side} score: {value}")
        elif value > limits.max_score:
            result.errors.append(f"{side} score {value} exceeds {limits.max_score} for {sport}")

    diff = abs(home - away)
    if diff > limits.max_difference:
        result.errors.append(f"score difference {diff} exceeds {limits.max_difference} for {sport}")

    if previous_home is None or previous_away is None:
        return result

    if not limits.allow_decrease:
        for side, old, new in (("home", previous_home, home), ("away", previous_away, away)):
            if new < old:
                result.regressed = True
                result.warnings.append(f"{side} score decreased {old} -> {new}")

    max_jump = MAX_JUMP_BY_SPORT.get(sport, MAX_JUMP)
    for side, old, new in (("home", previous_home, home), ("away", previous_away, away)):
        if new - old > max_jump:
            result.warnings.append(f"large {side} score jump +{new - old} in one update")

    return result

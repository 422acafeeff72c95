"""
Pydantic v2 domain models shared across the scraper services.
These are the canonical wire/internal representations, not ORM models.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import (
    AlertSeverity,
    AlertType,
    EventStatus,
    JobType,
    MarketType,
    RunStatus,
    SourceHealth,
    Sport,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Scraped (ephemeral) records ─────────────────────────────────────────
class NormalizedOdds(DomainModel):
    """One match-winner price set as scraped from a single source."""
    home_team: str
    away_team: str
    home_win: float
    draw: Optional[float] = None
    away_win: float
    source: str
    bookmaker_count: int = 1
    scraped_at: datetime = Field(default_factory=utcnow)


class Fixture(DomainModel):
    external_id: str
    sport: Sport
    competition: str
    home_team: str
    away_team: str
    start_time: datetime
    source: str


class LiveScore(DomainModel):
    home_team: str
    away_team: str
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    period: Optional[str] = None
    minute: Optional[int] = None
    is_finished: bool = False
    source: str = ""
    external_id: Optional[str] = None


# ── Canonical catalog records ──────────────────────────────────────────
class TeamRecord(DomainModel):
    id: uuid.UUID
    sport: Sport
    name: str
    aliases: list[str] = Field(default_factory=list)


class EventRecord(DomainModel):
    id: uuid.UUID
    sport: Sport
    competition: str
    home_team_id: uuid.UUID
    away_team_id: uuid.UUID
    home_team_name: str
    away_team_name: str
    start_time: datetime
    status: EventStatus = EventStatus.SCHEDULED
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    period: Optional[str] = None
    minute: Optional[int] = None
    updated_at: Optional[datetime] = None


class OutcomeRecord(DomainModel):
    id: uuid.UUID
    market_id: uuid.UUID
    name: str
    odds: Optional[float] = None
    previous_odds: Optional[float] = None
    # None until settlement decides it, then set exactly once
    is_winner: Optional[bool] = None
    updated_at: Optional[datetime] = None


class MarketRecord(DomainModel):
    id: uuid.UUID
    event_id: uuid.UUID
    market_type: MarketType = MarketType.MATCH_WINNER
    suspended: bool = False
    outcomes: list[OutcomeRecord] = Field(default_factory=list)

    def outcome(self, name: str) -> Optional[OutcomeRecord]:
        for o in self.outcomes:
            if o.name == name:
                return o
        return None


class ScoreHistoryRecord(DomainModel):
    event_id: uuid.UUID
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    period: Optional[str] = None
    minute: Optional[int] = None
    source: str
    recorded_at: datetime = Field(default_factory=utcnow)


# ── Audit trail ─────────────────────────────────────────────────────────
class SportRunStats(DomainModel):
    processed: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0


class ScraperRunRecord(DomainModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    job_type: JobType
    source: Optional[str] = None
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    items_processed: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_failed: int = 0
    error_message: Optional[str] = None
    sport_stats: dict[str, SportRunStats] = Field(default_factory=dict)


class AlertRecord(DomainModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    run_id: Optional[uuid.UUID] = None
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None


# ── Settlement hand-off ─────────────────────────────────────────────────
class SettlementResult(DomainModel):
    home_score: int = Field(alias="homeScore")
    away_score: int = Field(alias="awayScore")


class SettlementMessage(DomainModel):
    """Wire body: {"type": "event_finished", "eventId": ..., "result": {...}}."""
    type: Literal["event_finished"] = "event_finished"
    event_id: uuid.UUID = Field(alias="eventId")
    result: SettlementResult

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True)


# ── Monitoring ──────────────────────────────────────────────────────────
class SourceStatusReport(DomainModel):
    source: str
    status: SourceHealth
    enabled: bool = True
    priority: int = 0
    success_rate: Optional[float] = None
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    cooldown_remaining_s: float = 0.0
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None
    avoided_sports: list[str] = Field(default_factory=list)
    recent_alerts: list[AlertRecord] = Field(default_factory=list)

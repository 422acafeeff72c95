"""Domain enumerations for the scraper platform."""
from __future__ import annotations

from enum import Enum


class Sport(str, Enum):
    FOOTBALL = "football"
    BASKETBALL = "basketball"
    TENNIS = "tennis"
    DARTS = "darts"
    CRICKET = "cricket"
    BASEBALL = "baseball"
    HOCKEY = "hockey"
    AMERICAN_FOOTBALL = "american_football"

    @property
    def is_individual(self) -> bool:
        """Participants are players (player1/player2) rather than teams."""
        return self in (Sport.TENNIS, Sport.DARTS)


class MarketFormat(str, Enum):
    TWO_WAY = "2way"
    THREE_WAY = "3way"


class EventStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    POSTPONED = "postponed"

    @property
    def is_terminal(self) -> bool:
        return self in (EventStatus.CANCELLED, EventStatus.POSTPONED)

    @property
    def is_open(self) -> bool:
        return self in (EventStatus.SCHEDULED, EventStatus.LIVE)


class MarketType(str, Enum):
    MATCH_WINNER = "match_winner"


class OutcomeName(str, Enum):
    HOME_WIN = "Home Win"
    DRAW = "Draw"
    AWAY_WIN = "Away Win"


class JobType(str, Enum):
    SYNC_FIXTURES = "sync_fixtures"
    SYNC_ODDS = "sync_odds"
    SYNC_LIVE_SCORES = "sync_live_scores"
    CLEANUP_STALE_EVENTS = "cleanup_stale_events"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AlertType(str, Enum):
    JOB_FAILURE = "job_failure"
    LOW_FIXTURE_COUNT = "low_fixture_count"
    HIGH_ERROR_RATE = "high_error_rate"
    HIGH_BLOCK_RATE = "high_block_rate"
    LOW_SUCCESS_RATE = "low_success_rate"
    SOURCE_DEGRADED = "source_degraded"
    SOURCE_DOWN = "source_down"
    ODDS_ANOMALY = "odds_anomaly"
    SCORE_REGRESSION = "score_regression"
    STALE_EVENT_CLOSED = "stale_event_closed"


class FailureKind(str, Enum):
    """Classification of a failed scrape attempt, as recorded by the rotation manager."""
    BOT_BLOCKED = "bot_blocked"
    NETWORK = "network"
    PARSE = "parse"
    UNKNOWN = "unknown"


class SourceHealth(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"
    COOLDOWN = "cooldown"
    UNKNOWN = "unknown"

"""
Event reconciler: merges scraped fixtures, odds and live scores into the catalog.

- Fixtures are keyed by (source, external id). An unseen id is first matched against
  events of the same sport around the same kick-off from other sources, and only
  then does a new event (with its match-winner market) get created.
- Odds carry no id, so they are matched to open events by team-pair similarity.
- Live scores move events through scheduled -> live -> finished; the transition into
  finished writes score history and hands the event to settlement exactly once.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Sequence

from shared.config import Settings, get_settings
from shared.models.domain import (
    EventRecord,
    Fixture,
    LiveScore,
    MarketRecord,
    NormalizedOdds,
    ScoreHistoryRecord,
    utcnow,
)
from shared.models.enums import (
    AlertSeverity,
    AlertType,
    EventStatus,
    MarketFormat,
    OutcomeName,
    Sport,
)
from shared.utils.logging import get_logger
from shared.utils.metrics import RECONCILE_OUTCOMES

from scraper.alerts import AlertManager
from scraper.normalization.anomaly import (
    AnomalySeverity,
    PriceSet,
    detect_odds_anomalies,
    validate_score_update,
)
from scraper.normalization.odds import market_format
from scraper.normalization.teams import TeamIdentityResolver, pair_similarity, similarity
from scraper.reconciliation.store import CatalogStore
from scraper.settlement import SettlementDispatcher

logger = get_logger(__name__)

OPEN_STATUSES = (EventStatus.SCHEDULED, EventStatus.LIVE)
IN_PLAY_LOOKBACK = timedelta(hours=3)
LIVE_LOOKBACK = timedelta(hours=12)

# Longest an event may stay live before it is closed as stale.
MAX_LIVE_HOURS: dict[str, int] = {
    "football": 3,
    "basketball": 3,
    "tennis": 6,
    "hockey": 4,
    "baseball": 5,
    "american_football": 5,
}
DEFAULT_MAX_LIVE_HOURS = 4
STALE_SOURCE = "stale_cleanup"

_ANOMALY_ALERT_SEVERITY = {
    AnomalySeverity.LOW: AlertSeverity.INFO,
    AnomalySeverity.MEDIUM: AlertSeverity.WARNING,
    AnomalySeverity.HIGH: AlertSeverity.ERROR,
    AnomalySeverity.CRITICAL: AlertSeverity.CRITICAL,
}


class ReconciliationError(Exception):
    """A scraped record cannot be turned into a consistent catalog entry."""


class OddsOutcome(str, Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    UNMATCHED = "unmatched"
    REJECTED = "rejected"


class ScoreOutcome(str, Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FINISHED = "finished"
    ALREADY_FINISHED = "already_finished"
    REJECTED = "rejected"
    MISSING = "missing"


@dataclass
class OddsResult:
    outcome: OddsOutcome
    event_id: Optional[uuid.UUID] = None
    outcomes_updated: int = 0
    anomalies: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class EventMatch:
    event: EventRecord
    score: float
    swapped: bool = False


def outcome_names(fmt: MarketFormat) -> tuple[str, ...]:
    if fmt is MarketFormat.TWO_WAY:
        return (OutcomeName.HOME_WIN.value, OutcomeName.AWAY_WIN.value)
    return (OutcomeName.HOME_WIN.value, OutcomeName.DRAW.value, OutcomeName.AWAY_WIN.value)


def match_event(
    home: str, away: str, candidates: Sequence[EventRecord], threshold: float
) -> Optional[EventMatch]:
    """Best candidate whose team pair clears ``threshold`` in either orientation."""
    best: Optional[EventMatch] = None
    for event in candidates:
        score = pair_similarity(home, away, event.home_team_name, event.away_team_name)
        if score < threshold or (best is not None and score <= best.score):
            continue
        direct = min(similarity(home, event.home_team_name), similarity(away, event.away_team_name))
        best = EventMatch(event=event, score=score, swapped=direct < score)
    return best


class EventReconciler:
    def __init__(
        self,
        store: CatalogStore,
        teams: TeamIdentityResolver,
        settlement: SettlementDispatcher,
        alerts: AlertManager | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._teams = teams
        self._settlement = settlement
        self._alerts = alerts
        self._settings = settings or get_settings()
        self._clock = clock

    # ── Fixtures ────────────────────────────────────────────────────────
    async def reconcile_fixture(self, fixture: Fixture) -> tuple[EventRecord, bool]:
        """
        Returns ``(event, is_new)``. Calling it again with the same (source, external id)
        returns the same event with ``is_new = False``.
        """
        existing = await self._store.find_event_by_external_id(fixture.source, fixture.external_id)
        if existing is not None:
            RECONCILE_OUTCOMES.labels(kind="fixture", outcome="existing").inc()
            return existing, False

        sport = fixture.sport
        home = await self._teams.resolve(fixture.home_team, sport, fixture.source)
        away = await self._teams.resolve(fixture.away_team, sport, fixture.source)
        if home.id == away.id:
            RECONCILE_OUTCOMES.labels(kind="fixture", outcome="rejected").inc()
            raise ReconciliationError(
                f"{fixture.home_team!r} and {fixture.away_team!r} resolve to the same team {home.name!r}"
            )

        duplicate = await self._cross_source_duplicate(fixture, home.id, away.id)
        if duplicate is not None:
            owner_id = await self._store.attach_external_id(duplicate.id, fixture.source, fixture.external_id)
            event = await self._store.get_event(owner_id) or duplicate
            RECONCILE_OUTCOMES.labels(kind="fixture", outcome="deduplicated").inc()
            logger.info(
                "fixture_linked_to_existing_event",
                event_id=str(event.id),
                source=fixture.source,
                external_id=fixture.external_id,
            )
            return event, False

        event, created = await self._store.create_event(
            sport,
            fixture.competition,
            home,
            away,
            fixture.start_time,
            fixture.source,
            fixture.external_id,
            outcome_names(market_format(sport.value)),
        )
        RECONCILE_OUTCOMES.labels(kind="fixture", outcome="created" if created else "existing").inc()
        if created:
            logger.info(
                "event_created",
                event_id=str(event.id),
                sport=sport.value,
                home=home.name,
                away=away.name,
                start_time=event.start_time.isoformat(),
            )
        return event, created

    async def _cross_source_duplicate(
        self, fixture: Fixture, home_id: uuid.UUID, away_id: uuid.UUID
    ) -> Optional[EventRecord]:
        window = timedelta(seconds=self._settings.fixture_dedup_window_s)
        candidates = await self._store.list_events(
            fixture.sport, OPEN_STATUSES, fixture.start_time - window, fixture.start_time + window
        )
        for event in candidates:
            if {event.home_team_id, event.away_team_id} == {home_id, away_id}:
                return event
        found = match_event(
            fixture.home_team, fixture.away_team, candidates, self._settings.fixture_dedup_threshold
        )
        return found.event if found else None

    # ── Odds ────────────────────────────────────────────────────────────
    async def odds_candidates(self, sport: Sport) -> list[EventRecord]:
        """Open events from recent kick-offs up to the odds lookahead."""
        now = self._clock()
        return await self._store.list_events(
            sport,
            OPEN_STATUSES,
            now - IN_PLAY_LOOKBACK,
            now + timedelta(hours=self._settings.odds_lookahead_hours),
        )

    async def reconcile_odds(
        self, odds: NormalizedOdds, candidates: Sequence[EventRecord]
    ) -> OddsResult:
        found = match_event(odds.home_team, odds.away_team, candidates, self._settings.odds_match_threshold)
        if found is None:
            RECONCILE_OUTCOMES.labels(kind="odds", outcome="unmatched").inc()
            logger.debug("odds_unmatched", home=odds.home_team, away=odds.away_team, source=odds.source)
            return OddsResult(OddsOutcome.UNMATCHED)

        event = found.event
        home_win, away_win = (odds.away_win, odds.home_win) if found.swapped else (odds.home_win, odds.away_win)
        fmt = market_format(event.sport.value)
        draw = odds.draw if fmt is MarketFormat.THREE_WAY else None
        prices = {
            OutcomeName.HOME_WIN.value: home_win,
            OutcomeName.DRAW.value: draw,
            OutcomeName.AWAY_WIN.value: away_win,
        }

        market = await self._store.get_market(event.id)
        if market is None or any(market.outcome(n) is None for n, p in prices.items() if p is not None):
            market = await self._store.ensure_market(event.id, outcome_names(fmt))

        anomaly = detect_odds_anomalies(
            PriceSet(home_win=home_win, draw=draw, away_win=away_win),
            _previous_prices(market),
            now=self._clock(),
        )
        if anomaly.is_anomalous:
            await self._raise(
                AlertType.ODDS_ANOMALY,
                _ANOMALY_ALERT_SEVERITY[anomaly.severity],
                f"Odds anomaly on {event.home_team_name} vs {event.away_team_name}: {'; '.join(anomaly.reasons)}",
                {"event_id": str(event.id), "source": odds.source, "severity": anomaly.severity.value},
            )
            if anomaly.blocks_update:
                RECONCILE_OUTCOMES.labels(kind="odds", outcome="rejected").inc()
                return OddsResult(OddsOutcome.REJECTED, event.id, anomalies=anomaly.reasons)

        updated = 0
        for name, price in prices.items():
            outcome = market.outcome(name)
            if price is None or outcome is None or outcome.odds == price:
                continue
            await self._store.update_outcome_odds(outcome.id, price)
            updated += 1

        result = OddsResult(
            OddsOutcome.UPDATED if updated else OddsOutcome.UNCHANGED,
            event.id,
            outcomes_updated=updated,
            anomalies=anomaly.reasons,
        )
        RECONCILE_OUTCOMES.labels(kind="odds", outcome=result.outcome.value).inc()
        return result

    # ── Live scores ─────────────────────────────────────────────────────
    async def transition_started_events(self, sport: Sport) -> int:
        moved = await self._store.transition_started_events(sport, self._clock())
        if moved:
            logger.info("events_transitioned_live", sport=sport.value, count=moved)
        return moved

    async def live_candidates(self, sport: Sport) -> list[EventRecord]:
        now = self._clock()
        return await self._store.list_events(sport, (EventStatus.LIVE,), now - LIVE_LOOKBACK, now)

    def match_live_score(
        self, score: LiveScore, candidates: Sequence[EventRecord]
    ) -> Optional[tuple[EventRecord, LiveScore]]:
        """Match a scraped score to an event, flipping the score if the source lists teams reversed."""
        found = match_event(
            score.home_team, score.away_team, candidates, self._settings.live_score_match_threshold
        )
        if found is None:
            return None
        if found.swapped:
            score = score.model_copy(
                update={
                    "home_team": score.away_team,
                    "away_team": score.home_team,
                    "home_score": score.away_score,
                    "away_score": score.home_score,
                }
            )
        return found.event, score

    async def reconcile_live_score(self, event_id: uuid.UUID, score: LiveScore) -> ScoreOutcome:
        event = await self._store.get_event(event_id)
        if event is None:
            return self._score_outcome(ScoreOutcome.MISSING)
        if event.status is EventStatus.FINISHED:
            return self._score_outcome(ScoreOutcome.ALREADY_FINISHED)
        if event.status.is_terminal:
            logger.info("score_for_closed_event_ignored", event_id=str(event.id), status=event.status.value)
            return self._score_outcome(ScoreOutcome.REJECTED)

        check = validate_score_update(
            event.sport.value, score.home_score, score.away_score, event.home_score, event.away_score
        )
        if not check.is_valid:
            logger.warning(
                "score_rejected", event_id=str(event.id), source=score.source, reasons=check.errors
            )
            return self._score_outcome(ScoreOutcome.REJECTED)

        if check.regressed and event.status is EventStatus.LIVE:
            logger.warning(
                "score_regression_suspicious",
                event_id=str(event.id),
                source=score.source,
                previous=f"{event.home_score}-{event.away_score}",
                current=f"{score.home_score}-{score.away_score}",
            )
            await self._raise(
                AlertType.SCORE_REGRESSION,
                AlertSeverity.WARNING,
                f"Score went backwards on {event.home_team_name} vs {event.away_team_name}: "
                f"{event.home_score}-{event.away_score} -> {score.home_score}-{score.away_score}",
                {"event_id": str(event.id), "source": score.source},
            )
        elif check.warnings:
            logger.info("score_update_unusual", event_id=str(event.id), reasons=check.warnings)

        if score.is_finished:
            return await self._finish(event, score)

        unchanged = (
            event.status is EventStatus.LIVE
            and event.home_score == score.home_score
            and event.away_score == score.away_score
            and event.period == score.period
            and event.minute == score.minute
        )
        if unchanged:
            return self._score_outcome(ScoreOutcome.UNCHANGED)

        updated = await self._store.update_event_state(
            event.id,
            home_score=score.home_score,
            away_score=score.away_score,
            period=score.period,
            minute=score.minute,
            status=EventStatus.LIVE,
        )
        if updated is None:
            return self._score_outcome(ScoreOutcome.ALREADY_FINISHED)
        logger.debug(
            "score_updated", event_id=str(event.id), score=f"{score.home_score}-{score.away_score}", period=score.period
        )
        return self._score_outcome(ScoreOutcome.UPDATED)

    async def _finish(self, event: EventRecord, score: LiveScore) -> ScoreOutcome:
        if score.home_score is None or score.away_score is None:
            logger.warning("finished_without_score", event_id=str(event.id), source=score.source)
            return self._score_outcome(ScoreOutcome.REJECTED)

        home, away = score.home_score, score.away_score
        history = ScoreHistoryRecord(
            event_id=event.id,
            home_score=home,
            away_score=away,
            period=score.period,
            minute=score.minute,
            source=score.source,
            recorded_at=self._clock(),
        )

        async def settle() -> None:
            await self._settlement.dispatch(event.id, home, away)

        if not await self._store.finish_event(event.id, history, on_finished=settle):
            return self._score_outcome(ScoreOutcome.ALREADY_FINISHED)
        logger.info(
            "event_finished",
            event_id=str(event.id),
            home=event.home_team_name,
            away=event.away_team_name,
            score=f"{home}-{away}",
        )
        return self._score_outcome(ScoreOutcome.FINISHED)

    # ── Stale live events ───────────────────────────────────────────────
    async def stale_live_events(self, sport: Sport) -> list[EventRecord]:
        """Live events that kicked off longer ago than the sport's maximum duration."""
        max_live = timedelta(hours=MAX_LIVE_HOURS.get(sport.value, DEFAULT_MAX_LIVE_HOURS))
        return await self._store.list_events(sport, (EventStatus.LIVE,), start_to=self._clock() - max_live)

    async def close_stale_event(self, event: EventRecord) -> ScoreOutcome:
        """
        Force a stale live event to finished.

        With a last known score this is a normal finish (history plus settlement);
        without one the event is only closed and left for manual settlement.
        """
        logger.warning(
            "stale_event_closing",
            event_id=str(event.id),
            home=event.home_team_name,
            away=event.away_team_name,
            start_time=event.start_time.isoformat(),
            score=f"{event.home_score}-{event.away_score}",
        )
        if event.home_score is not None and event.away_score is not None:
            final = LiveScore(
                home_team=event.home_team_name,
                away_team=event.away_team_name,
                home_score=event.home_score,
                away_score=event.away_score,
                period=event.period or "FT",
                minute=event.minute,
                is_finished=True,
                source=STALE_SOURCE,
            )
            return await self._finish(event, final)

        if not await self._store.close_stale_event(event.id, "FT"):
            return self._score_outcome(ScoreOutcome.ALREADY_FINISHED)
        await self._raise(
            AlertType.STALE_EVENT_CLOSED,
            AlertSeverity.WARNING,
            f"{event.home_team_name} vs {event.away_team_name} closed without a final score; settle manually",
            {"event_id": str(event.id), "sport": event.sport.value},
        )
        return self._score_outcome(ScoreOutcome.FINISHED)

    # ── Helpers ─────────────────────────────────────────────────────────
    def _score_outcome(self, outcome: ScoreOutcome) -> ScoreOutcome:
        RECONCILE_OUTCOMES.labels(kind="live_score", outcome=outcome.value).inc()
        return outcome

    async def _raise(self, alert_type: AlertType, severity: AlertSeverity, message: str, metadata: dict) -> None:
        if self._alerts is not None:
            await self._alerts.raise_alert(alert_type, severity, message, metadata)


def _previous_prices(market: MarketRecord) -> Optional[PriceSet]:
    priced = [o for o in market.outcomes if o.odds is not None]
    if not priced:
        return None

    def price(name: OutcomeName) -> Optional[float]:
        outcome = market.outcome(name.value)
        return outcome.odds if outcome else None

    stamps = [o.updated_at for o in priced if o.updated_at is not None]
    return PriceSet(
        home_win=price(OutcomeName.HOME_WIN),
        draw=price(OutcomeName.DRAW),
        away_win=price(OutcomeName.AWAY_WIN),
        updated_at=max(stamps) if stamps else None,
    )

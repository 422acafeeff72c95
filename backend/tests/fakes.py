"""
In-memory stand-ins for the catalog database and Redis, and a manual clock.
"""
from __future__ import annotations

import fnmatch
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence

from shared.models.domain import (
    AlertRecord,
    EventRecord,
    MarketRecord,
    OutcomeRecord,
    ScoreHistoryRecord,
    ScraperRunRecord,
    TeamRecord,
    utcnow,
)
from shared.models.enums import AlertType, EventStatus, JobType, Sport

from scraper.reconciliation.store import CatalogStore

NOW = datetime(2026, 3, 14, 15, 0, tzinfo=timezone.utc)


class FakeCatalogStore(CatalogStore):
    """Dict-backed CatalogStore with the same conflict semantics as the SQL one."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self.teams: dict[uuid.UUID, TeamRecord] = {}
        self.aliases: dict[tuple[Sport, str], tuple[uuid.UUID, str]] = {}
        self.events: dict[uuid.UUID, EventRecord] = {}
        self.external_ids: dict[tuple[str, str], uuid.UUID] = {}
        self.markets: dict[uuid.UUID, MarketRecord] = {}
        self.history: list[ScoreHistoryRecord] = []
        self.runs: dict[uuid.UUID, ScraperRunRecord] = {}
        self.alerts: list[AlertRecord] = []

    # ── Teams ───────────────────────────────────────────────────────────
    async def list_team_aliases(self, sport: Sport) -> list[tuple[uuid.UUID, str, str]]:
        return [(tid, alias, norm) for (s, norm), (tid, alias) in self.aliases.items() if s == sport]

    async def get_team(self, team_id: uuid.UUID) -> Optional[TeamRecord]:
        team = self.teams.get(team_id)
        return team.model_copy() if team else None

    async def create_team(self, sport: Sport, name: str, alias: str, normalized: str, source: str) -> TeamRecord:
        owner = self.aliases.get((sport, normalized))
        if owner is not None:
            return self.teams[owner[0]].model_copy()
        team = TeamRecord(id=uuid.uuid4(), sport=sport, name=name, aliases=[alias])
        self.teams[team.id] = team
        self.aliases[(sport, normalized)] = (team.id, alias)
        return team.model_copy()

    async def add_team_alias(
        self, team_id: uuid.UUID, sport: Sport, alias: str, normalized: str, source: str
    ) -> uuid.UUID:
        if (sport, normalized) not in self.aliases:
            self.aliases[(sport, normalized)] = (team_id, alias)
            self.teams[team_id].aliases.append(alias)
        return self.aliases[(sport, normalized)][0]

    # ── Events ──────────────────────────────────────────────────────────
    def add_event(
        self,
        home: str,
        away: str,
        start_time: datetime,
        sport: Sport = Sport.FOOTBALL,
        status: EventStatus = EventStatus.SCHEDULED,
        **fields: Any,
    ) -> EventRecord:
        """Seed an event (with teams and a match-winner market) directly."""
        home_team = TeamRecord(id=uuid.uuid4(), sport=sport, name=home)
        away_team = TeamRecord(id=uuid.uuid4(), sport=sport, name=away)
        self.teams[home_team.id] = home_team
        self.teams[away_team.id] = away_team
        event = EventRecord(
            id=uuid.uuid4(),
            sport=sport,
            competition="Test League",
            home_team_id=home_team.id,
            away_team_id=away_team.id,
            home_team_name=home,
            away_team_name=away,
            start_time=start_time,
            status=status,
            **fields,
        )
        self.events[event.id] = event
        names = ["Home Win", "Away Win"] if sport is not Sport.FOOTBALL else ["Home Win", "Draw", "Away Win"]
        self._new_market(event.id, names)
        return event.model_copy()

    async def get_event(self, event_id: uuid.UUID) -> Optional[EventRecord]:
        event = self.events.get(event_id)
        return event.model_copy() if event else None

    async def find_event_by_external_id(self, source: str, external_id: str) -> Optional[EventRecord]:
        event_id = self.external_ids.get((source, external_id))
        return await self.get_event(event_id) if event_id else None

    async def list_events(
        self,
        sport: Sport,
        statuses: Iterable[EventStatus],
        start_from: datetime | None = None,
        start_to: datetime | None = None,
    ) -> list[EventRecord]:
        wanted = set(statuses)
        found = [
            e.model_copy()
            for e in self.events.values()
            if e.sport == sport
            and e.status in wanted
            and (start_from is None or e.start_time >= start_from)
            and (start_to is None or e.start_time <= start_to)
        ]
        return sorted(found, key=lambda e: e.start_time)

    async def create_event(
        self,
        sport: Sport,
        competition: str,
        home: TeamRecord,
        away: TeamRecord,
        start_time: datetime,
        source: str,
        external_id: str,
        outcome_names: Sequence[str],
    ) -> tuple[EventRecord, bool]:
        owner = self.external_ids.get((source, external_id))
        if owner is not None:
            return self.events[owner].model_copy(), False
        event = EventRecord(
            id=uuid.uuid4(),
            sport=sport,
            competition=competition,
            home_team_id=home.id,
            away_team_id=away.id,
            home_team_name=home.name,
            away_team_name=away.name,
            start_time=start_time,
        )
        self.events[event.id] = event
        self.external_ids[(source, external_id)] = event.id
        self._new_market(event.id, outcome_names)
        return event.model_copy(), True

    async def attach_external_id(self, event_id: uuid.UUID, source: str, external_id: str) -> uuid.UUID:
        return self.external_ids.setdefault((source, external_id), event_id)

    async def update_event_state(
        self,
        event_id: uuid.UUID,
        *,
        home_score: Optional[int],
        away_score: Optional[int],
        period: Optional[str],
        minute: Optional[int],
        status: EventStatus,
    ) -> Optional[EventRecord]:
        event = self.events[event_id]
        if event.status is EventStatus.FINISHED:
            return None
        event.home_score, event.away_score = home_score, away_score
        event.period, event.minute, event.status = period, minute, status
        event.updated_at = self._clock()
        return event.model_copy()

    async def finish_event(
        self,
        event_id: uuid.UUID,
        history: ScoreHistoryRecord,
        on_finished: Callable[[], Awaitable[None]] | None = None,
    ) -> bool:
        event = self.events[event_id]
        if event.status is EventStatus.FINISHED:
            return False
        if on_finished is not None:
            await on_finished()
        event.status = EventStatus.FINISHED
        event.home_score, event.away_score = history.home_score, history.away_score
        event.period, event.minute = history.period, history.minute
        self.history.append(history)
        return True

    async def close_stale_event(self, event_id: uuid.UUID, period: str) -> bool:
        event = self.events[event_id]
        if event.status is not EventStatus.LIVE:
            return False
        event.status = EventStatus.FINISHED
        event.period = event.period or period
        return True

    async def transition_started_events(self, sport: Sport, now: datetime) -> int:
        moved = 0
        for event in self.events.values():
            if event.sport == sport and event.status is EventStatus.SCHEDULED and event.start_time <= now:
                event.status = EventStatus.LIVE
                moved += 1
        return moved

    async def earliest_scheduled_start(self, after: datetime) -> Optional[datetime]:
        starts = [
            e.start_time for e in self.events.values()
            if e.status is EventStatus.SCHEDULED and e.start_time >= after
        ]
        return min(starts) if starts else None

    # ── Markets ─────────────────────────────────────────────────────────
    def _new_market(self, event_id: uuid.UUID, names: Sequence[str]) -> MarketRecord:
        market_id = uuid.uuid4()
        market = MarketRecord(
            id=market_id,
            event_id=event_id,
            outcomes=[OutcomeRecord(id=uuid.uuid4(), market_id=market_id, name=n) for n in names],
        )
        self.markets[event_id] = market
        return market

    async def ensure_market(self, event_id: uuid.UUID, outcome_names: Sequence[str]) -> MarketRecord:
        market = self.markets.get(event_id) or self._new_market(event_id, [])
        for name in outcome_names:
            if market.outcome(name) is None:
                market.outcomes.append(OutcomeRecord(id=uuid.uuid4(), market_id=market.id, name=name))
        return market.model_copy(deep=True)

    async def get_market(self, event_id: uuid.UUID) -> Optional[MarketRecord]:
        market = self.markets.get(event_id)
        return market.model_copy(deep=True) if market else None

    async def update_outcome_odds(self, outcome_id: uuid.UUID, odds: float) -> OutcomeRecord:
        for market in self.markets.values():
            for outcome in market.outcomes:
                if outcome.id == outcome_id:
                    outcome.previous_odds = outcome.odds
                    outcome.odds = odds
                    outcome.updated_at = self._clock()
                    return outcome.model_copy()
        raise LookupError(f"outcome {outcome_id} not found")

    def outcome_odds(self, event_id: uuid.UUID) -> dict[str, Optional[float]]:
        return {o.name: o.odds for o in self.markets[event_id].outcomes}

    # ── Audit trail ─────────────────────────────────────────────────────
    async def create_run(self, run: ScraperRunRecord) -> None:
        self.runs[run.id] = run.model_copy(deep=True)

    async def save_run(self, run: ScraperRunRecord) -> None:
        self.runs[run.id] = run.model_copy(deep=True)

    async def list_runs(self, limit: int = 50, job_type: JobType | None = None) -> list[ScraperRunRecord]:
        runs = [r for r in self.runs.values() if job_type is None or r.job_type == job_type]
        return sorted(runs, key=lambda r: r.started_at, reverse=True)[:limit]

    async def create_alert(self, alert: AlertRecord) -> None:
        self.alerts.append(alert.model_copy(deep=True))

    async def list_alerts(
        self, limit: int = 50, unacknowledged_only: bool = False, source: str | None = None
    ) -> list[AlertRecord]:
        found = [
            a for a in self.alerts
            if (not unacknowledged_only or a.acknowledged_at is None)
            and (source is None or a.metadata.get("source") == source)
        ]
        return sorted(found, key=lambda a: a.created_at, reverse=True)[:limit]

    async def acknowledge_alert(self, alert_id: uuid.UUID, by: str) -> Optional[AlertRecord]:
        for alert in self.alerts:
            if alert.id == alert_id:
                alert.acknowledged_at = self._clock()
                alert.acknowledged_by = by
                return alert.model_copy()
        return None

    async def recent_alert_exists(self, alert_type: AlertType, since: datetime, source: str | None = None) -> bool:
        return any(
            a.alert_type == alert_type
            and a.created_at >= since
            and (source is None or a.metadata.get("source") == source)
            for a in self.alerts
        )

    def alerts_of(self, alert_type: AlertType) -> list[AlertRecord]:
        return [a for a in self.alerts if a.alert_type == alert_type]


class FakeRedis:
    """The subset of RedisManager the scraper uses, kept in dicts."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.streams: dict[str, list[tuple[str, dict[str, str]]]] = defaultdict(list)
        self.fail_streams = False

    async def get_value(self, key: str) -> Optional[str]:
        return self.values.get(key)

    async def scan_keys(self, pattern: str) -> list[str]:
        return [k for k in self.values if fnmatch.fnmatchcase(k, pattern)]

    async def atomic_update(self, key: str, mutate: Callable[[Optional[str]], str]) -> str:
        self.values[key] = mutate(self.values.get(key))
        return self.values[key]

    async def incr(self, key: str) -> int:
        value = int(self.values.get(key, "0")) + 1
        self.values[key] = str(value)
        return value

    async def append_stream(self, stream: str, payload: str, max_len: int) -> str:
        if self.fail_streams:
            raise ConnectionError("stream unavailable")
        entries = self.streams[stream]
        entry_id = f"{len(entries) + 1}-0"
        entries.append((entry_id, {"data": payload}))
        del entries[:-max_len]
        return entry_id


class ManualClock:
    """Callable clock for datetime-based components; advance it explicitly."""

    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)

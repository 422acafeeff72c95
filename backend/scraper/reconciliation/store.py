"""
Persistence boundary of the reconciler.

CatalogStore is what the reconciler, team resolver and run tracker talk to. The SQL
implementation leans on unique constraints (external ids, aliases, markets, outcomes)
and conditional updates, so two workers reconciling the same fixture or finishing the
same event converge without any in-process locking.
"""
from __future__ import annotations

import abc
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, Sequence, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shared.models.domain import (
    AlertRecord,
    EventRecord,
    MarketRecord,
    OutcomeRecord,
    ScoreHistoryRecord,
    ScraperRunRecord,
    SportRunStats,
    TeamRecord,
)
from shared.models.enums import (
    AlertSeverity,
    AlertType,
    EventStatus,
    JobType,
    MarketType,
    RunStatus,
    Sport,
)
from shared.models.orm import (
    AlertORM,
    EventExternalIdORM,
    EventORM,
    MarketORM,
    OutcomeORM,
    ScoreHistoryORM,
    ScraperRunORM,
    TeamAliasORM,
    TeamORM,
)
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CatalogStore(abc.ABC):
    # ── Teams ───────────────────────────────────────────────────────────
    @abc.abstractmethod
    async def list_team_aliases(self, sport: Sport) -> list[tuple[uuid.UUID, str, str]]:
        """(team_id, alias, normalized) for every alias known for ``sport``."""

    @abc.abstractmethod
    async def get_team(self, team_id: uuid.UUID) -> Optional[TeamRecord]: ...

    @abc.abstractmethod
    async def create_team(
        self, sport: Sport, name: str, alias: str, normalized: str, source: str
    ) -> TeamRecord:
        """Create a team with its first alias; returns the existing owner if the alias was taken meanwhile."""

    @abc.abstractmethod
    async def add_team_alias(
        self, team_id: uuid.UUID, sport: Sport, alias: str, normalized: str, source: str
    ) -> uuid.UUID:
        """Insert an alias unless the normalized key is taken; returns the team owning the key."""

    # ── Events ──────────────────────────────────────────────────────────
    @abc.abstractmethod
    async def get_event(self, event_id: uuid.UUID) -> Optional[EventRecord]: ...

    @abc.abstractmethod
    async def find_event_by_external_id(self, source: str, external_id: str) -> Optional[EventRecord]: ...

    @abc.abstractmethod
    async def list_events(
        self,
        sport: Sport,
        statuses: Iterable[EventStatus],
        start_from: datetime | None = None,
        start_to: datetime | None = None,
    ) -> list[EventRecord]: ...

    @abc.abstractmethod
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
        """
        Insert an event, its external id and a match-winner market.

        Returns ``(event, created)``; when another writer claimed ``(source, external_id)``
        first, the existing event is returned with ``created = False``.
        """

    @abc.abstractmethod
    async def attach_external_id(self, event_id: uuid.UUID, source: str, external_id: str) -> uuid.UUID:
        """Map ``(source, external_id)`` to ``event_id``; returns the event that owns the mapping."""

    @abc.abstractmethod
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
        """Update an unfinished event. Returns None if it is already finished."""

    @abc.abstractmethod
    async def finish_event(
        self,
        event_id: uuid.UUID,
        history: ScoreHistoryRecord,
        on_finished: Callable[[], Awaitable[None]] | None = None,
    ) -> bool:
        """
        Move an event to finished with the final score and append ``history``.

        Returns True only for the call that performed the transition. ``on_finished``
        runs before the transition commits; if it raises, the event stays unfinished.
        """

    @abc.abstractmethod
    async def close_stale_event(self, event_id: uuid.UUID, period: str) -> bool:
        """live -> finished without a final score. False if the event is no longer live."""

    @abc.abstractmethod
    async def transition_started_events(self, sport: Sport, now: datetime) -> int:
        """scheduled -> live for events whose start time has passed."""

    @abc.abstractmethod
    async def earliest_scheduled_start(self, after: datetime) -> Optional[datetime]: ...

    # ── Markets ─────────────────────────────────────────────────────────
    @abc.abstractmethod
    async def ensure_market(self, event_id: uuid.UUID, outcome_names: Sequence[str]) -> MarketRecord: ...

    @abc.abstractmethod
    async def get_market(self, event_id: uuid.UUID) -> Optional[MarketRecord]: ...

    @abc.abstractmethod
    async def update_outcome_odds(self, outcome_id: uuid.UUID, odds: float) -> OutcomeRecord:
        """Set new odds, keeping the current value as ``previous_odds``."""

    # ── Audit trail ─────────────────────────────────────────────────────
    @abc.abstractmethod
    async def create_run(self, run: ScraperRunRecord) -> None: ...

    @abc.abstractmethod
    async def save_run(self, run: ScraperRunRecord) -> None: ...

    @abc.abstractmethod
    async def list_runs(self, limit: int = 50, job_type: JobType | None = None) -> list[ScraperRunRecord]: ...

    @abc.abstractmethod
    async def create_alert(self, alert: AlertRecord) -> None: ...

    @abc.abstractmethod
    async def list_alerts(
        self, limit: int = 50, unacknowledged_only: bool = False, source: str | None = None
    ) -> list[AlertRecord]: ...

    @abc.abstractmethod
    async def acknowledge_alert(self, alert_id: uuid.UUID, by: str) -> Optional[AlertRecord]: ...

    @abc.abstractmethod
    async def recent_alert_exists(
        self, alert_type: AlertType, since: datetime, source: str | None = None
    ) -> bool: ...


# ── Row conversion ──────────────────────────────────────────────────────
def _required(value: Optional[T], what: str) -> T:
    if value is None:
        raise LookupError(f"{what} not found")
    return value


def _event(row: EventORM) -> EventRecord:
    return EventRecord(
        id=row.id,
        sport=Sport(row.sport),
        competition=row.competition,
        home_team_id=row.home_team_id,
        away_team_id=row.away_team_id,
        home_team_name=row.home_team.name,
        away_team_name=row.away_team.name,
        start_time=row.start_time,
        status=EventStatus(row.status),
        home_score=row.home_score,
        away_score=row.away_score,
        period=row.period,
        minute=row.minute,
        updated_at=row.updated_at,
    )


def _outcome(row: OutcomeORM) -> OutcomeRecord:
    return OutcomeRecord(
        id=row.id,
        market_id=row.market_id,
        name=row.name,
        odds=row.odds,
        previous_odds=row.previous_odds,
        is_winner=row.is_winner,
        updated_at=row.updated_at,
    )


def _market(row: MarketORM) -> MarketRecord:
    return MarketRecord(
        id=row.id,
        event_id=row.event_id,
        market_type=MarketType(row.market_type),
        suspended=row.suspended,
        outcomes=[_outcome(o) for o in row.outcomes],
    )


def _run(row: ScraperRunORM) -> ScraperRunRecord:
    return ScraperRunRecord(
        id=row.id,
        job_type=JobType(row.job_type),
        source=row.source,
        status=RunStatus(row.status),
        started_at=row.started_at,
        completed_at=row.completed_at,
        duration_ms=row.duration_ms,
        items_processed=row.items_processed,
        items_created=row.items_created,
        items_updated=row.items_updated,
        items_failed=row.items_failed,
        error_message=row.error_message,
        sport_stats={k: SportRunStats.model_validate(v) for k, v in (row.sport_stats or {}).items()},
    )


def _run_values(run: ScraperRunRecord) -> dict:
    return {
        "job_type": run.job_type.value,
        "source": run.source,
        "status": run.status.value,
        "started_at": run.started_at,
        "completed_at": run.completed_at,
        "duration_ms": run.duration_ms,
        "items_processed": run.items_processed,
        "items_created": run.items_created,
        "items_updated": run.items_updated,
        "items_failed": run.items_failed,
        "error_message": run.error_message,
        "sport_stats": {k: v.model_dump() for k, v in run.sport_stats.items()},
    }


def _alert(row: AlertORM) -> AlertRecord:
    return AlertRecord(
        id=row.id,
        run_id=row.run_id,
        alert_type=AlertType(row.alert_type),
        severity=AlertSeverity(row.severity),
        message=row.message,
        metadata=dict(row.extra_data or {}),
        created_at=row.created_at,
        acknowledged_at=row.acknowledged_at,
        acknowledged_by=row.acknowledged_by,
    )


class SqlCatalogStore(CatalogStore):
    """CatalogStore over the SQLAlchemy async engine."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    # ── Teams ───────────────────────────────────────────────────────────
    async def list_team_aliases(self, sport: Sport) -> list[tuple[uuid.UUID, str, str]]:
        async with self._db.read_session() as session:
            stmt = select(TeamAliasORM.team_id, TeamAliasORM.alias, TeamAliasORM.normalized).where(
                TeamAliasORM.sport == sport.value
            )
            result = await session.execute(stmt)
            return [(r.team_id, r.alias, r.normalized) for r in result]

    async def _load_team(self, session: AsyncSession, team_id: uuid.UUID) -> Optional[TeamRecord]:
        team = await session.get(TeamORM, team_id)
        if team is None:
            return None
        aliases = await session.execute(select(TeamAliasORM.alias).where(TeamAliasORM.team_id == team_id))
        return TeamRecord(id=team.id, sport=Sport(team.sport), name=team.name, aliases=list(aliases.scalars()))

    async def get_team(self, team_id: uuid.UUID) -> Optional[TeamRecord]:
        async with self._db.read_session() as session:
            return await self._load_team(session, team_id)

    async def create_team(
        self, sport: Sport, name: str, alias: str, normalized: str, source: str
    ) -> TeamRecord:
        async with self._db.write_session() as session:
            team_id = uuid.uuid4()
            await session.execute(pg_insert(TeamORM).values(id=team_id, sport=sport.value, name=name))
            stmt = (
                pg_insert(TeamAliasORM)
                .values(team_id=team_id, sport=sport.value, alias=alias, normalized=normalized, source=source)
                .on_conflict_do_nothing(constraint="uq_team_alias_normalized")
                .returning(TeamAliasORM.team_id)
            )
            claimed = (await session.execute(stmt)).scalar_one_or_none()
            if claimed is None:
                await session.execute(delete(TeamORM).where(TeamORM.id == team_id))
                owner = await session.execute(
                    select(TeamAliasORM.team_id).where(
                        TeamAliasORM.sport == sport.value, TeamAliasORM.normalized == normalized
                    )
                )
                team_id = owner.scalar_one()
                logger.debug("team_create_raced", sport=sport.value, normalized=normalized)
            return _required(await self._load_team(session, team_id), f"team {team_id}")

    async def add_team_alias(
        self, team_id: uuid.UUID, sport: Sport, alias: str, normalized: str, source: str
    ) -> uuid.UUID:
        async with self._db.write_session() as session:
            await session.execute(
                pg_insert(TeamAliasORM)
                .values(team_id=team_id, sport=sport.value, alias=alias, normalized=normalized, source=source)
                .on_conflict_do_nothing(constraint="uq_team_alias_normalized")
            )
            owner = await session.execute(
                select(TeamAliasORM.team_id).where(
                    TeamAliasORM.sport == sport.value, TeamAliasORM.normalized == normalized
                )
            )
            return owner.scalar_one()

    # ── Events ──────────────────────────────────────────────────────────
    async def _load_event(self, session: AsyncSession, event_id: uuid.UUID) -> Optional[EventRecord]:
        row = (await session.execute(select(EventORM).where(EventORM.id == event_id))).scalar_one_or_none()
        return _event(row) if row is not None else None

    async def get_event(self, event_id: uuid.UUID) -> Optional[EventRecord]:
        async with self._db.read_session() as session:
            return await self._load_event(session, event_id)

    async def find_event_by_external_id(self, source: str, external_id: str) -> Optional[EventRecord]:
        async with self._db.read_session() as session:
            stmt = (
                select(EventORM)
                .join(EventExternalIdORM, EventExternalIdORM.event_id == EventORM.id)
                .where(EventExternalIdORM.source == source, EventExternalIdORM.external_id == external_id)
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _event(row) if row is not None else None

    async def list_events(
        self,
        sport: Sport,
        statuses: Iterable[EventStatus],
        start_from: datetime | None = None,
        start_to: datetime | None = None,
    ) -> list[EventRecord]:
        async with self._db.read_session() as session:
            stmt = select(EventORM).where(
                EventORM.sport == sport.value,
                EventORM.status.in_([s.value for s in statuses]),
            )
            if start_from is not None:
                stmt = stmt.where(EventORM.start_time >= start_from)
            if start_to is not None:
                stmt = stmt.where(EventORM.start_time <= start_to)
            result = await session.execute(stmt.order_by(EventORM.start_time))
            return [_event(r) for r in result.scalars()]

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
        async with self._db.write_session() as session:
            event_id = uuid.uuid4()
            await session.execute(
                pg_insert(EventORM).values(
                    id=event_id,
                    sport=sport.value,
                    competition=competition,
                    home_team_id=home.id,
                    away_team_id=away.id,
                    start_time=start_time,
                    status=EventStatus.SCHEDULED.value,
                )
            )
            claim = (
                pg_insert(EventExternalIdORM)
                .values(event_id=event_id, source=source, external_id=external_id)
                .on_conflict_do_nothing(constraint="uq_event_external_id")
                .returning(EventExternalIdORM.event_id)
            )
            if (await session.execute(claim)).scalar_one_or_none() is None:
                await session.execute(delete(EventORM).where(EventORM.id == event_id))
                owner = await session.execute(
                    select(EventExternalIdORM.event_id).where(
                        EventExternalIdORM.source == source, EventExternalIdORM.external_id == external_id
                    )
                )
                existing_id = owner.scalar_one()
                return _required(await self._load_event(session, existing_id), f"event {existing_id}"), False

            await self._insert_market(session, event_id, outcome_names)
            return _required(await self._load_event(session, event_id), f"event {event_id}"), True

    async def attach_external_id(self, event_id: uuid.UUID, source: str, external_id: str) -> uuid.UUID:
        async with self._db.write_session() as session:
            await session.execute(
                pg_insert(EventExternalIdORM)
                .values(event_id=event_id, source=source, external_id=external_id)
                .on_conflict_do_nothing(constraint="uq_event_external_id")
            )
            owner = await session.execute(
                select(EventExternalIdORM.event_id).where(
                    EventExternalIdORM.source == source, EventExternalIdORM.external_id == external_id
                )
            )
            return owner.scalar_one()

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
        async with self._db.write_session() as session:
            stmt = (
                update(EventORM)
                .where(EventORM.id == event_id, EventORM.status != EventStatus.FINISHED.value)
                .values(
                    home_score=home_score,
                    away_score=away_score,
                    period=period,
                    minute=minute,
                    status=status.value,
                    updated_at=func.now(),
                )
                .returning(EventORM.id)
            )
            if (await session.execute(stmt)).scalar_one_or_none() is None:
                return None
            return await self._load_event(session, event_id)

    async def finish_event(
        self,
        event_id: uuid.UUID,
        history: ScoreHistoryRecord,
        on_finished: Callable[[], Awaitable[None]] | None = None,
    ) -> bool:
        async with self._db.write_session() as session:
            stmt = (
                update(EventORM)
                .where(EventORM.id == event_id, EventORM.status != EventStatus.FINISHED.value)
                .values(
                    status=EventStatus.FINISHED.value,
                    home_score=history.home_score,
                    away_score=history.away_score,
                    period=history.period,
                    minute=history.minute,
                    updated_at=func.now(),
                )
                .returning(EventORM.id)
            )
            if (await session.execute(stmt)).scalar_one_or_none() is None:
                return False
            session.add(
                ScoreHistoryORM(
                    event_id=event_id,
                    home_score=history.home_score,
                    away_score=history.away_score,
                    period=history.period,
                    minute=history.minute,
                    source=history.source,
                    recorded_at=history.recorded_at,
                )
            )
            await session.flush()
            if on_finished is not None:
                await on_finished()
            return True

    async def close_stale_event(self, event_id: uuid.UUID, period: str) -> bool:
        async with self._db.write_session() as session:
            stmt = (
                update(EventORM)
                .where(EventORM.id == event_id, EventORM.status == EventStatus.LIVE.value)
                .values(
                    status=EventStatus.FINISHED.value,
                    period=func.coalesce(EventORM.period, period),
                    updated_at=func.now(),
                )
                .returning(EventORM.id)
            )
            return (await session.execute(stmt)).scalar_one_or_none() is not None

    async def transition_started_events(self, sport: Sport, now: datetime) -> int:
        async with self._db.write_session() as session:
            stmt = (
                update(EventORM)
                .where(
                    EventORM.sport == sport.value,
                    EventORM.status == EventStatus.SCHEDULED.value,
                    EventORM.start_time <= now,
                )
                .values(status=EventStatus.LIVE.value, updated_at=func.now())
                .returning(EventORM.id)
            )
            return len((await session.execute(stmt)).scalars().all())

    async def earliest_scheduled_start(self, after: datetime) -> Optional[datetime]:
        async with self._db.read_session() as session:
            stmt = select(func.min(EventORM.start_time)).where(
                EventORM.status == EventStatus.SCHEDULED.value, EventORM.start_time >= after
            )
            return (await session.execute(stmt)).scalar_one_or_none()

    # ── Markets ─────────────────────────────────────────────────────────
    async def _insert_market(self, session: AsyncSession, event_id: uuid.UUID, outcome_names: Sequence[str]) -> uuid.UUID:
        await session.execute(
            pg_insert(MarketORM)
            .values(event_id=event_id, market_type=MarketType.MATCH_WINNER.value)
            .on_conflict_do_nothing(constraint="uq_market_event_type")
        )
        market_id = (
            await session.execute(
                select(MarketORM.id).where(
                    MarketORM.event_id == event_id, MarketORM.market_type == MarketType.MATCH_WINNER.value
                )
            )
        ).scalar_one()
        for name in outcome_names:
            await session.execute(
                pg_insert(OutcomeORM)
                .values(market_id=market_id, name=name)
                .on_conflict_do_nothing(constraint="uq_outcome_market_name")
            )
        return market_id

    async def _load_market(self, session: AsyncSession, event_id: uuid.UUID) -> Optional[MarketRecord]:
        stmt = (
            select(MarketORM)
            .options(selectinload(MarketORM.outcomes))
            .where(MarketORM.event_id == event_id, MarketORM.market_type == MarketType.MATCH_WINNER.value)
        )
        row = (await session.execute(stmt)).scalar_one_or_none()
        return _market(row) if row is not None else None

    async def ensure_market(self, event_id: uuid.UUID, outcome_names: Sequence[str]) -> MarketRecord:
        async with self._db.write_session() as session:
            await self._insert_market(session, event_id, outcome_names)
            return _required(await self._load_market(session, event_id), f"market of event {event_id}")

    async def get_market(self, event_id: uuid.UUID) -> Optional[MarketRecord]:
        async with self._db.read_session() as session:
            return await self._load_market(session, event_id)

    async def update_outcome_odds(self, outcome_id: uuid.UUID, odds: float) -> OutcomeRecord:
        async with self._db.write_session() as session:
            stmt = (
                update(OutcomeORM)
                .where(OutcomeORM.id == outcome_id)
                .values(previous_odds=OutcomeORM.odds, odds=odds, updated_at=func.now())
                .returning(OutcomeORM)
            )
            return _outcome((await session.execute(stmt)).scalar_one())

    # ── Audit trail ─────────────────────────────────────────────────────
    async def create_run(self, run: ScraperRunRecord) -> None:
        async with self._db.write_session() as session:
            session.add(ScraperRunORM(id=run.id, **_run_values(run)))

    async def save_run(self, run: ScraperRunRecord) -> None:
        async with self._db.write_session() as session:
            await session.execute(update(ScraperRunORM).where(ScraperRunORM.id == run.id).values(**_run_values(run)))

    async def list_runs(self, limit: int = 50, job_type: JobType | None = None) -> list[ScraperRunRecord]:
        async with self._db.read_session() as session:
            stmt = select(ScraperRunORM).order_by(ScraperRunORM.started_at.desc()).limit(limit)
            if job_type is not None:
                stmt = stmt.where(ScraperRunORM.job_type == job_type.value)
            return [_run(r) for r in (await session.execute(stmt)).scalars()]

    async def create_alert(self, alert: AlertRecord) -> None:
        async with self._db.write_session() as session:
            session.add(
                AlertORM(
                    id=alert.id,
                    run_id=alert.run_id,
                    alert_type=alert.alert_type.value,
                    severity=alert.severity.value,
                    message=alert.message,
                    extra_data=alert.metadata,
                    created_at=alert.created_at,
                )
            )

    async def list_alerts(
        self, limit: int = 50, unacknowledged_only: bool = False, source: str | None = None
    ) -> list[AlertRecord]:
        async with self._db.read_session() as session:
            stmt = select(AlertORM).order_by(AlertORM.created_at.desc()).limit(limit)
            if unacknowledged_only:
                stmt = stmt.where(AlertORM.acknowledged_at.is_(None))
            if source is not None:
                stmt = stmt.where(AlertORM.extra_data["source"].astext == source)
            return [_alert(r) for r in (await session.execute(stmt)).scalars()]

    async def acknowledge_alert(self, alert_id: uuid.UUID, by: str) -> Optional[AlertRecord]:
        async with self._db.write_session() as session:
            await session.execute(
                update(AlertORM)
                .where(AlertORM.id == alert_id, AlertORM.acknowledged_at.is_(None))
                .values(acknowledged_at=func.now(), acknowledged_by=by)
            )
            row = (await session.execute(select(AlertORM).where(AlertORM.id == alert_id))).scalar_one_or_none()
            return _alert(row) if row is not None else None

    async def recent_alert_exists(
        self, alert_type: AlertType, since: datetime, source: str | None = None
    ) -> bool:
        async with self._db.read_session() as session:
            stmt = select(AlertORM.id).where(
                AlertORM.alert_type == alert_type.value, AlertORM.created_at >= since
            )
            if source is not None:
                stmt = stmt.where(AlertORM.extra_data["source"].astext == source)
            return (await session.execute(stmt.limit(1))).first() is not None

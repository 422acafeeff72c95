"""SqlCatalogStore against a mocked AsyncSession: conflict handling and row conversion."""
from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any, AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.models.domain import ScoreHistoryRecord, TeamRecord
from shared.models.enums import EventStatus, Sport

from scraper.reconciliation.store import SqlCatalogStore
from tests.fakes import NOW


def result(scalar: Any = None, scalars: list[Any] | None = None) -> MagicMock:
    res = MagicMock()
    res.scalar_one_or_none.return_value = scalar
    res.scalar_one.return_value = scalar
    res.scalars.return_value = scalars or []
    return res


def make_store(session: AsyncMock) -> SqlCatalogStore:
    @asynccontextmanager
    async def scoped() -> AsyncIterator[AsyncMock]:
        yield session

    db = MagicMock()
    db.write_session = scoped
    db.read_session = scoped
    return SqlCatalogStore(db)


@pytest.fixture
def session() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    return session


def team_row(team_id: uuid.UUID, name: str) -> SimpleNamespace:
    return SimpleNamespace(id=team_id, sport="football", name=name)


def event_row(event_id: uuid.UUID, status: str = "scheduled") -> SimpleNamespace:
    return SimpleNamespace(
        id=event_id,
        sport="football",
        competition="Premier League",
        home_team_id=uuid.uuid4(),
        away_team_id=uuid.uuid4(),
        home_team=SimpleNamespace(name="Arsenal"),
        away_team=SimpleNamespace(name="Chelsea"),
        start_time=NOW,
        status=status,
        home_score=None,
        away_score=None,
        period=None,
        minute=None,
        updated_at=NOW,
    )


class TestTeams:

    @pytest.mark.asyncio
    async def test_create_team_returns_record_with_alias(self, session: AsyncMock) -> None:
        team_id = uuid.uuid4()
        session.execute.side_effect = [result(), result(team_id), result(scalars=["Arsenal FC"])]
        session.get.return_value = team_row(team_id, "Arsenal")

        team = await make_store(session).create_team(Sport.FOOTBALL, "Arsenal", "Arsenal FC", "arsenal", "oddsportal")

        assert team == TeamRecord(id=team_id, sport=Sport.FOOTBALL, name="Arsenal", aliases=["Arsenal FC"])

    @pytest.mark.asyncio
    async def test_create_team_race_returns_alias_owner(self, session: AsyncMock) -> None:
        owner_id = uuid.uuid4()
        session.execute.side_effect = [result(), result(None), result(), result(owner_id), result(scalars=["Arsenal"])]
        session.get.return_value = team_row(owner_id, "Arsenal")

        team = await make_store(session).create_team(Sport.FOOTBALL, "Arsenal", "Arsenal", "arsenal", "flashscore")

        assert team.id == owner_id
        assert session.execute.await_count == 5

    @pytest.mark.asyncio
    async def test_create_team_missing_row_raises_lookup_error(self, session: AsyncMock) -> None:
        session.execute.side_effect = [result(), result(uuid.uuid4())]
        session.get.return_value = None

        with pytest.raises(LookupError, match="not found"):
            await make_store(session).create_team(Sport.FOOTBALL, "Arsenal", "Arsenal", "arsenal", "x")

    @pytest.mark.asyncio
    async def test_add_team_alias_returns_owner(self, session: AsyncMock) -> None:
        owner_id = uuid.uuid4()
        session.execute.side_effect = [result(), result(owner_id)]

        found = await make_store(session).add_team_alias(uuid.uuid4(), Sport.FOOTBALL, "Gunners", "gunners", "x")

        assert found == owner_id


class TestEventsAndMarkets:

    @pytest.mark.asyncio
    async def test_create_event_claimed_elsewhere_returns_existing(self, session: AsyncMock) -> None:
        existing_id = uuid.uuid4()
        session.execute.side_effect = [
            result(),
            result(None),
            result(),
            result(existing_id),
            result(event_row(existing_id)),
        ]
        home = TeamRecord(id=uuid.uuid4(), sport=Sport.FOOTBALL, name="Arsenal")
        away = TeamRecord(id=uuid.uuid4(), sport=Sport.FOOTBALL, name="Chelsea")

        event, created = await make_store(session).create_event(
            Sport.FOOTBALL, "Premier League", home, away, NOW, "oddsportal", "op-1", ("Home Win", "Away Win")
        )

        assert created is False
        assert event.id == existing_id
        assert event.home_team_name == "Arsenal"

    @pytest.mark.asyncio
    async def test_ensure_market_returns_outcomes(self, session: AsyncMock) -> None:
        event_id, market_id = uuid.uuid4(), uuid.uuid4()
        outcomes = [
            SimpleNamespace(
                id=uuid.uuid4(), market_id=market_id, name=name, odds=None,
                previous_odds=None, is_winner=None, updated_at=None,
            )
            for name in ("Home Win", "Away Win")
        ]
        market = SimpleNamespace(
            id=market_id, event_id=event_id, market_type="match_winner", suspended=False, outcomes=outcomes
        )
        session.execute.side_effect = [result(), result(market_id), result(), result(), result(market)]

        record = await make_store(session).ensure_market(event_id, ("Home Win", "Away Win"))

        assert record.id == market_id
        assert [o.name for o in record.outcomes] == ["Home Win", "Away Win"]

    @pytest.mark.asyncio
    async def test_ensure_market_missing_raises_lookup_error(self, session: AsyncMock) -> None:
        session.execute.side_effect = [result(), result(uuid.uuid4()), result(None)]

        with pytest.raises(LookupError):
            await make_store(session).ensure_market(uuid.uuid4(), ())

    @pytest.mark.asyncio
    async def test_finish_event_already_finished_skips_hook(self, session: AsyncMock) -> None:
        session.execute.side_effect = [result(None)]
        hook = AsyncMock()
        history = ScoreHistoryRecord(event_id=uuid.uuid4(), home_score=2, away_score=1, source="flashscore")

        assert await make_store(session).finish_event(history.event_id, history, on_finished=hook) is False
        hook.assert_not_awaited()
        session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_finish_event_runs_hook_after_history(self, session: AsyncMock) -> None:
        event_id = uuid.uuid4()
        session.execute.side_effect = [result(event_id)]
        hook = AsyncMock()
        history = ScoreHistoryRecord(event_id=event_id, home_score=2, away_score=1, source="flashscore")

        assert await make_store(session).finish_event(event_id, history, on_finished=hook) is True
        session.add.assert_called_once()
        session.flush.assert_awaited_once()
        hook.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_stale_event_only_when_still_live(self, session: AsyncMock) -> None:
        store = make_store(session)
        session.execute.side_effect = [result(uuid.uuid4()), result(None)]

        assert await store.close_stale_event(uuid.uuid4(), "FT") is True
        assert await store.close_stale_event(uuid.uuid4(), "FT") is False

    @pytest.mark.asyncio
    async def test_get_event_converts_row(self, session: AsyncMock) -> None:
        event_id = uuid.uuid4()
        session.execute.side_effect = [result(event_row(event_id, status="live"))]

        event = await make_store(session).get_event(event_id)

        assert event is not None
        assert event.status is EventStatus.LIVE
        assert event.away_team_name == "Chelsea"

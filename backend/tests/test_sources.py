"""Tests for page classification and the source parsers."""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from shared.config import Settings
from shared.models.enums import Sport

from scraper.sources.base import (
    PAGE_TEXT_SCRIPT,
    BotBlockedError,
    NetworkOrTimeoutError,
    NoDataAvailableError,
    ParseError,
    parse_price,
)
from scraper.sources.detection import detect_blocking, detect_no_data, save_snapshot
from scraper.sources.flashscore import parse_kickoff, rows_to_fixtures
from scraper.sources.livescores import LiveScoresAdapter, parse_games, parse_period
from scraper.sources.odds_api import OddsApiAdapter, parse_odds_events
from scraper.sources.oddsportal import OddsPortalAdapter
from scraper.sources.registry import SCORES365, THE_ODDS_API, Source, SourceRegistry
from tests.fakes import NOW


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# ── Detection ───────────────────────────────────────────────────────────

@pytest.mark.parametrize("status", [403, 429, 503])
def test_blocking_status_codes(status: int) -> None:
    verdict = detect_blocking("", status)
    assert verdict.is_blocked
    assert verdict.reason == f"HTTP {status}"


def test_blocking_page_text() -> None:
    assert detect_blocking("Please complete the CAPTCHA to continue").is_blocked
    assert detect_blocking("Checking your browser - Cloudflare").is_blocked
    assert not detect_blocking("Arsenal 2.10 3.40 3.50", 200).is_blocked


def test_no_data_text() -> None:
    assert detect_no_data("No matches found for today") is not None
    assert detect_no_data("There are no upcoming events") is not None
    assert detect_no_data("Arsenal v Chelsea") is None


def test_save_snapshot(tmp_path: Path) -> None:
    path = save_snapshot(str(tmp_path), "oddsportal", "football", "<html></html>", b"png")
    assert path is not None
    assert Path(path).read_text(encoding="utf-8") == "<html></html>"
    assert len(list(tmp_path.glob("*.png"))) == 1


@pytest.mark.parametrize("raw,expected", [("2.10", 2.1), (" 3.5 ", 3.5), ("1.00", None), ("-", None), (None, None)])
def test_parse_price(raw: Any, expected: float | None) -> None:
    assert parse_price(raw) == expected


# ── Flashscore ──────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "label,expected",
    [
        ("18:30", utc(2026, 3, 14, 17, 30)),
        ("10:00", utc(2026, 3, 15, 9, 0)),
        ("21.03. 20:00", utc(2026, 3, 21, 19, 0)),
        ("01.02. 12:00", utc(2027, 2, 1, 11, 0)),
        ("05.04.2026 15:00", utc(2026, 4, 5, 13, 0)),
        ("25:00", None),
        ("31.02. 12:00", None),
        ("Postponed", None),
    ],
)
def test_parse_kickoff(label: str, expected: datetime | None) -> None:
    assert parse_kickoff(label, NOW) == expected


def test_rows_to_fixtures() -> None:
    rows = [
        {"id": "g_1_AbC123", "home": "Arsenal", "away": "Chelsea", "time": "18:30", "competition": "ENGLAND: Premier League"},
        {"id": "g_1_AbC123", "home": "Arsenal", "away": "Chelsea", "time": "18:30"},
        {"id": "g_1_Def456", "home": "Leeds", "away": "", "time": "18:30"},
        {"id": "g_1_Ghi789", "home": "Luton", "away": "Watford", "time": "30.03. 12:00"},
        {"id": "", "home": "Spurs", "away": "Fulham", "time": "18:30"},
    ]
    [fixture] = rows_to_fixtures(rows, "football", "flashscore", days_ahead=7, now=NOW)
    assert fixture.external_id == "AbC123"
    assert fixture.sport is Sport.FOOTBALL
    assert fixture.competition == "ENGLAND: Premier League"
    assert fixture.start_time == utc(2026, 3, 14, 17, 30)


# ── 365Scores ───────────────────────────────────────────────────────────

def test_parse_games_keeps_live_and_finished() -> None:
    payload = {
        "games": [
            {
                "id": 11, "statusGroup": 2, "gameTime": 67, "shortStatusText": "",
                "homeCompetitor": {"name": "Arsenal", "score": 1},
                "awayCompetitor": {"name": "Chelsea", "score": 0},
            },
            {
                "id": 12, "statusGroup": 4,
                "homeCompetitor": {"name": "Leeds", "score": 2},
                "awayCompetitor": {"name": "Burnley", "score": 2},
            },
            {
                "id": 13, "statusGroup": 1,
                "homeCompetitor": {"name": "Spurs", "score": -1},
                "awayCompetitor": {"name": "Fulham", "score": -1},
            },
            {"id": 14, "statusGroup": 2, "homeCompetitor": {"name": "Luton"}},
        ]
    }
    live, finished = parse_games(payload, "365scores")

    assert (live.home_team, live.home_score, live.away_score) == ("Arsenal", 1, 0)
    assert live.minute == 67
    assert live.period == "67'"
    assert not live.is_finished
    assert live.external_id == "11"
    assert finished.is_finished
    assert finished.period == "FT"


def test_parse_period_labels() -> None:
    assert parse_period({"statusGroup": 2, "shortStatusText": "HT"}) == "HT"
    assert parse_period({"statusGroup": 2, "statusText": "2nd Half"}) == "2H"
    assert parse_period({"statusGroup": 2}) == "LIVE"


# ── The Odds API ────────────────────────────────────────────────────────

ODDS_API_EVENTS = [
    {
        "home_team": "Arsenal",
        "away_team": "Chelsea",
        "bookmakers": [
            {"markets": [{"key": "h2h", "outcomes": [
                {"name": "Arsenal", "price": 2.1}, {"name": "Draw", "price": 3.4}, {"name": "Chelsea", "price": 3.5},
            ]}]},
            {"markets": [
                {"key": "spreads", "outcomes": [{"name": "Arsenal", "price": 9.0}]},
                {"key": "h2h", "outcomes": [
                    {"name": "Arsenal", "price": 2.2}, {"name": "Draw", "price": 3.3}, {"name": "Chelsea", "price": 3.6},
                ]},
            ]},
        ],
    },
    {"home_team": "Leeds", "away_team": "Burnley", "bookmakers": []},
]


def test_parse_odds_events_takes_best_price() -> None:
    [odds] = parse_odds_events(ODDS_API_EVENTS, "the-odds-api")
    assert (odds.home_win, odds.draw, odds.away_win) == (2.2, 3.4, 3.6)
    assert odds.bookmaker_count == 2


class TestOddsApiAdapter:

    def adapter(self, response: httpx.Response, settings: Settings) -> OddsApiAdapter:
        http = MagicMock()
        http.get = AsyncMock(return_value=response)
        source = Source(
            name=THE_ODDS_API.name,
            domain=THE_ODDS_API.domain,
            priority=THE_ODDS_API.priority,
            cooldown_minutes=THE_ODDS_API.cooldown_minutes,
            requires_browser=False,
            sport_urls={"football": ("soccer_epl",)},
        )
        return OddsApiAdapter(source, settings=settings, http_client=http)

    @pytest.mark.asyncio
    async def test_parses_response(self, settings: Settings) -> None:
        adapter = self.adapter(httpx.Response(200, json=ODDS_API_EVENTS, headers={"x-requests-remaining": "42"}), settings)
        odds = await adapter.scrape(None, "football")
        assert [o.home_team for o in odds] == ["Arsenal"]

    @pytest.mark.asyncio
    async def test_quota_exhausted_is_a_block(self, settings: Settings) -> None:
        adapter = self.adapter(httpx.Response(429, json={"message": "quota"}), settings)
        with pytest.raises(BotBlockedError):
            await adapter.scrape(None, "football")

    @pytest.mark.asyncio
    async def test_unexpected_payload_is_a_parse_error(self, settings: Settings) -> None:
        adapter = self.adapter(httpx.Response(200, json={"oops": True}), settings)
        with pytest.raises(ParseError):
            await adapter.scrape(None, "football")

    @pytest.mark.asyncio
    async def test_unsupported_sport_returns_nothing(self, settings: Settings) -> None:
        adapter = self.adapter(httpx.Response(200, json=[]), settings)
        assert await adapter.scrape(None, "darts") == []


# ── DOM odds adapters ───────────────────────────────────────────────────

def fake_page(rows: list[dict[str, Any]], text: str = "", status: int = 200) -> MagicMock:
    page = MagicMock()
    page.goto = AsyncMock(return_value=MagicMock(status=status))
    page.wait_for_selector = AsyncMock()

    async def evaluate(expression: str, arg: Any = None) -> Any:
        return text if expression == PAGE_TEXT_SCRIPT else rows

    page.evaluate = AsyncMock(side_effect=evaluate)
    page.content = AsyncMock(return_value="<html></html>")
    page.screenshot = AsyncMock(return_value=b"png")
    return page


class TestDomOddsAdapter:

    @pytest.fixture(autouse=True)
    def no_pauses(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("scraper.sources.base.jitter_sleep", AsyncMock())

    @pytest.fixture
    def adapter(self, tmp_path: Path) -> OddsPortalAdapter:
        source = Source(
            name="oddsportal",
            domain="oddsportal.com",
            priority=1,
            cooldown_minutes=90,
            sport_urls={"football": ("https://www.oddsportal.com/matches/football/",)},
        )
        return OddsPortalAdapter(source, settings=Settings(debug_snapshot_dir=str(tmp_path)))

    @pytest.mark.asyncio
    async def test_rows_become_odds(self, adapter: OddsPortalAdapter) -> None:
        page = fake_page(
            [
                {"home": "Arsenal", "away": "Chelsea", "odds": ["2.10", "3.40", "3.50"]},
                {"home": "A", "away": "Chelsea", "odds": ["2.10", "3.40", "3.50"]},
                {"home": "Sinner", "away": "Alcaraz", "odds": ["1.80", "2.05"]},
                {"home": "Leeds", "away": "Burnley", "odds": ["-", "3.1", "2.9"]},
            ]
        )
        odds = await adapter.scrape(page, "football")

        assert [(o.home_team, o.draw) for o in odds] == [("Arsenal", 3.4), ("Sinner", None)]
        assert all(o.source == "oddsportal" for o in odds)

    @pytest.mark.asyncio
    async def test_blocked_status(self, adapter: OddsPortalAdapter) -> None:
        with pytest.raises(BotBlockedError) as err:
            await adapter.scrape(fake_page([], status=403), "football")
        assert err.value.status_code == 403

    @pytest.mark.asyncio
    async def test_empty_page_with_challenge_text(self, adapter: OddsPortalAdapter) -> None:
        with pytest.raises(BotBlockedError):
            await adapter.scrape(fake_page([], text="Verify you are human: captcha"), "football")

    @pytest.mark.asyncio
    async def test_empty_page_saying_nothing_scheduled(self, adapter: OddsPortalAdapter) -> None:
        with pytest.raises(NoDataAvailableError):
            await adapter.scrape(fake_page([], text="No matches found"), "football")

    @pytest.mark.asyncio
    async def test_unparsable_rows(self, adapter: OddsPortalAdapter, tmp_path: Path) -> None:
        with pytest.raises(ParseError):
            await adapter.scrape(fake_page([{"home": "Arsenal", "away": "Chelsea", "odds": ["n/a", "n/a"]}]), "football")
        assert list(tmp_path.glob("oddsportal-football-*.html"))

    @pytest.mark.asyncio
    async def test_needs_a_page(self, adapter: OddsPortalAdapter) -> None:
        with pytest.raises(NetworkOrTimeoutError):
            await adapter.scrape(None, "football")

    @pytest.mark.asyncio
    async def test_empty_first_url_does_not_hide_later_rows(self, tmp_path: Path) -> None:
        source = Source(
            name="oddsportal",
            domain="oddsportal.com",
            priority=1,
            cooldown_minutes=90,
            sport_urls={"football": ("https://op.test/today/", "https://op.test/epl/")},
        )
        adapter = OddsPortalAdapter(source, settings=Settings(debug_snapshot_dir=str(tmp_path)))
        page = fake_page([], text="No matches found")
        epl = [{"home": "Arsenal", "away": "Chelsea", "odds": ["2.10", "3.40", "3.50"]}]

        async def evaluate(expression: str, arg: Any = None) -> Any:
            if expression == PAGE_TEXT_SCRIPT:
                return "No matches found"
            return epl if page.goto.await_args.args[0].endswith("/epl/") else []

        page.evaluate = AsyncMock(side_effect=evaluate)

        odds = await adapter.scrape(page, "football")

        assert [o.home_team for o in odds] == ["Arsenal"]
        assert page.goto.await_count == 2


def test_registry_orders_and_disables(settings: Settings) -> None:
    low = Source(name="low", domain="low.test", priority=5, cooldown_minutes=1, sport_urls={"football": ("u",)})
    high = Source(name="high", domain="high.test", priority=1, cooldown_minutes=1, sport_urls={"football": ("u",)})
    registry = SourceRegistry([low, high], settings=Settings(disabled_sources=["LOW"]))

    assert [s.name for s in registry.sources] == ["high", "low"]
    assert registry.get("low").enabled is False
    assert registry.priorities() == {"high": 1, "low": 5}
    assert registry.enabled("football") == []
    with pytest.raises(KeyError):
        registry.adapter_for("high")


class TestLiveScoresAdapter:

    def adapter(self, payload: Any, settings: Settings) -> LiveScoresAdapter:
        http = MagicMock()
        http.get = AsyncMock(return_value=httpx.Response(200, json=payload))
        return LiveScoresAdapter(SCORES365, settings=settings, http_client=http)

    @pytest.mark.asyncio
    async def test_parses_feed(self, settings: Settings) -> None:
        payload = {
            "games": [
                {
                    "id": 7,
                    "statusGroup": 4,
                    "homeCompetitor": {"name": "Arsenal", "score": 2},
                    "awayCompetitor": {"name": "Chelsea", "score": 1},
                }
            ]
        }
        [score] = await self.adapter(payload, settings).scrape(None, "football")
        assert (score.home_score, score.away_score, score.is_finished) == (2, 1, True)

    @pytest.mark.asyncio
    async def test_competitor_of_unexpected_shape_is_a_parse_error(self, settings: Settings) -> None:
        payload = {"games": [{"homeCompetitor": "A", "awayCompetitor": "B", "statusGroup": 2}]}
        with pytest.raises(ParseError) as err:
            await self.adapter(payload, settings).scrape(None, "football")
        assert isinstance(err.value.__cause__, AttributeError)

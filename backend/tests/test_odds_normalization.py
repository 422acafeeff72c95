"""Tests for odds validation and cross-source merging."""
from __future__ import annotations

import pytest

from shared.models.domain import NormalizedOdds
from shared.models.enums import MarketFormat

from scraper.normalization.odds import market_format, merge_odds, rejection_reason, validate_odds


def make_odds(
    home: str = "Arsenal",
    away: str = "Chelsea",
    home_win: float = 2.1,
    draw: float | None = 3.4,
    away_win: float = 3.5,
    source: str = "oddsportal",
    bookmakers: int = 1,
) -> NormalizedOdds:
    return NormalizedOdds(
        home_team=home,
        away_team=away,
        home_win=home_win,
        draw=draw,
        away_win=away_win,
        source=source,
        bookmaker_count=bookmakers,
    )


# ── Validation ──────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "odds,reason",
    [
        (make_odds(home_win=1.0), "home_odds_out_of_range"),
        (make_odds(away_win=0.95), "away_odds_out_of_range"),
        (make_odds(draw=1.0), "draw_odds_out_of_range"),
        (make_odds(home="A"), "team_names_too_short"),
        (make_odds(away="   "), "missing_team_names"),
        (make_odds(home_win=1.1, draw=1.2, away_win=1.3), "implied_probability_too_high"),
        (make_odds(home_win=5.0, draw=6.0, away_win=7.0), "implied_probability_too_low"),
    ],
)
def test_rejection_reasons(odds: NormalizedOdds, reason: str) -> None:
    assert rejection_reason(odds, "football") == reason
    assert validate_odds(odds, "football") is None


def test_valid_three_way_passes_unchanged() -> None:
    odds = make_odds()
    assert rejection_reason(odds, "football") is None
    assert validate_odds(odds, "football") == odds


def test_two_way_market_drops_draw() -> None:
    odds = make_odds("Sinner", "Alcaraz", home_win=1.8, draw=15.0, away_win=2.05)
    validated = validate_odds(odds, "tennis")
    assert validated is not None
    assert validated.draw is None
    assert validated.home_win == 1.8


def test_market_format_defaults_to_three_way() -> None:
    assert market_format("tennis") is MarketFormat.TWO_WAY
    assert market_format("football") is MarketFormat.THREE_WAY
    assert market_format("darts") is MarketFormat.THREE_WAY


# ── Merge ───────────────────────────────────────────────────────────────

PRIORITIES = {"oddsportal": 1, "betexplorer": 2, "oddschecker": 2}


def test_higher_priority_source_wins() -> None:
    merged = merge_odds(
        [
            make_odds(home_win=2.3, source="betexplorer"),
            make_odds("Arsenal FC", "Chelsea FC", home_win=2.0, source="oddsportal"),
        ],
        "football",
        PRIORITIES,
    )
    assert len(merged) == 1
    assert merged[0].source == "oddsportal"
    assert merged[0].home_win == 2.0


def test_equal_priority_keeps_best_price_per_outcome() -> None:
    merged = merge_odds(
        [
            make_odds(home_win=2.1, draw=3.3, away_win=3.6, source="betexplorer", bookmakers=4),
            make_odds(home_win=2.2, draw=3.4, away_win=3.5, source="oddschecker", bookmakers=6),
        ],
        "football",
        PRIORITIES,
    )
    assert len(merged) == 1
    best = merged[0]
    assert (best.home_win, best.draw, best.away_win) == (2.2, 3.4, 3.6)
    assert best.bookmaker_count == 10


def test_swapped_listing_is_reoriented_before_merging() -> None:
    merged = merge_odds(
        [
            make_odds(home_win=2.1, away_win=3.5, source="betexplorer"),
            make_odds("Chelsea", "Arsenal", home_win=3.7, away_win=2.0, source="oddschecker"),
        ],
        "football",
        PRIORITIES,
    )
    assert len(merged) == 1
    assert merged[0].home_team == "Arsenal"
    assert merged[0].home_win == 2.1
    assert merged[0].away_win == 3.7


def test_distinct_matches_and_invalid_entries() -> None:
    merged = merge_odds(
        [
            make_odds(),
            make_odds("Liverpool", "Everton", home_win=1.6, draw=4.0, away_win=5.5),
            make_odds("Spurs", "Fulham", home_win=1.0),
        ],
        "football",
        PRIORITIES,
    )
    assert {(o.home_team, o.away_team) for o in merged} == {("Arsenal", "Chelsea"), ("Liverpool", "Everton")}


def test_unknown_sources_use_default_priority() -> None:
    merged = merge_odds([make_odds(source="mystery"), make_odds(source="oddsportal", home_win=1.9)], "football", PRIORITIES)
    assert merged[0].source == "oddsportal"

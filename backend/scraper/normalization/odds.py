"""
Odds validation and cross-source merging.

Validation runs before anything reaches the reconciler: odds that cannot be a real
match-winner market (price <= 1, absurd overround) are dropped here.
"""
from __future__ import annotations

from typing import Mapping, Optional

from shared.models.domain import NormalizedOdds
from shared.models.enums import MarketFormat
from shared.utils.logging import get_logger

from scraper.normalization.teams import is_same_match, similarity
from scraper.sources.registry import DEFAULT_PRIORITY

logger = get_logger(__name__)

MIN_ODDS = 1.01
MAX_ODDS = 1000.0
MIN_IMPLIED_PROBABILITY = 0.9
MAX_IMPLIED_PROBABILITY = 1.5
MIN_NAME_LEN = 2
MAX_NAME_LEN = 100

SPORT_MARKET_FORMATS: dict[str, MarketFormat] = {
    "football": MarketFormat.THREE_WAY,
    "soccer": MarketFormat.THREE_WAY,
    "basketball": MarketFormat.TWO_WAY,
    "tennis": MarketFormat.TWO_WAY,
    "baseball": MarketFormat.TWO_WAY,
    "hockey": MarketFormat.TWO_WAY,
    "american_football": MarketFormat.TWO_WAY,
}


def market_format(sport: str) -> MarketFormat:
    return SPORT_MARKET_FORMATS.get(sport, MarketFormat.THREE_WAY)


def implied_probability(odds: NormalizedOdds) -> float:
    total = 1 / odds.home_win + 1 / odds.away_win
    if odds.draw:
        total += 1 / odds.draw
    return total


def _in_range(value: float) -> bool:
    return MIN_ODDS <= value <= MAX_ODDS


def rejection_reason(odds: NormalizedOdds, sport: str) -> Optional[str]:
    """Why ``odds`` is unusable, or None if it passes."""
    home, away = odds.home_team.strip(), odds.away_team.strip()
    if not home or not away:
        return "missing_team_names"
    if len(home) < MIN_NAME_LEN or len(away) < MIN_NAME_LEN:
        return "team_names_too_short"
    if len(home) > MAX_NAME_LEN or len(away) > MAX_NAME_LEN:
        return "team_names_too_long"
    if not _in_range(odds.home_win):
        return "home_odds_out_of_range"
    if not _in_range(odds.away_win):
        return "away_odds_out_of_range"
    if market_format(sport) is MarketFormat.THREE_WAY and odds.draw is not None and not _in_range(odds.draw):
        return "draw_odds_out_of_range"

    implied = implied_probability(odds)
    if implied > MAX_IMPLIED_PROBABILITY:
        return "implied_probability_too_high"
    if implied < MIN_IMPLIED_PROBABILITY:
        return "implied_probability_too_low"
    return None


def validate_odds(odds: NormalizedOdds, sport: str) -> Optional[NormalizedOdds]:
    """Return ``odds`` if it is a plausible match-winner market for ``sport``, else None."""
    reason = rejection_reason(odds, sport)
    if reason:
        logger.debug(
            "odds_rejected",
            reason=reason,
            home=odds.home_team,
            away=odds.away_team,
            source=odds.source,
        )
        return None
    # A draw price on a two-way market is noise from the page, not a third outcome.
    if market_format(sport) is MarketFormat.TWO_WAY and odds.draw is not None:
        return odds.model_copy(update={"draw": None})
    return odds


def merge_odds(
    all_odds: list[NormalizedOdds],
    sport: str,
    priorities: Mapping[str, int] | None = None,
    threshold: float = 0.75,
) -> list[NormalizedOdds]:
    """
    Validate and dedupe odds gathered from several sources.

    The same match from a higher-priority source (lower number) replaces a lower one;
    at equal priority the best price per outcome is kept and bookmaker counts add up.
    """
    priorities = priorities or {}

    def prio(o: NormalizedOdds) -> int:
        return priorities.get(o.source, DEFAULT_PRIORITY)

    merged: list[NormalizedOdds] = []
    for candidate in sorted(all_odds, key=prio):
        odds = validate_odds(candidate, sport)
        if odds is None:
            continue

        idx = next(
            (
                i for i, existing in enumerate(merged)
                if is_same_match(existing.home_team, existing.away_team, odds.home_team, odds.away_team, threshold)
            ),
            None,
        )
        if idx is None:
            merged.append(odds)
            continue

        existing = merged[idx]
        odds = _orient_like(existing, odds, threshold)
        if prio(odds) < prio(existing):
            merged[idx] = odds
        elif prio(odds) == prio(existing):
            draws = [d for d in (existing.draw, odds.draw) if d is not None]
            merged[idx] = existing.model_copy(
                update={
                    "home_win": max(existing.home_win, odds.home_win),
                    "draw": max(draws) if draws else None,
                    "away_win": max(existing.away_win, odds.away_win),
                    "bookmaker_count": existing.bookmaker_count + odds.bookmaker_count,
                }
            )

    logger.info("odds_merged", sport=sport, input=len(all_odds), unique=len(merged))
    return merged


def _orient_like(reference: NormalizedOdds, odds: NormalizedOdds, threshold: float) -> NormalizedOdds:
    """Swap home/away of ``odds`` when the source listed the fixture the other way round."""
    direct = (
        similarity(reference.home_team, odds.home_team) >= threshold
        and similarity(reference.away_team, odds.away_team) >= threshold
    )
    if direct:
        return odds
    return odds.model_copy(
        update={
            "home_team": odds.away_team,
            "away_team": odds.home_team,
            "home_win": odds.away_win,
            "away_win": odds.home_win,
        }
    )

"""
Static catalog of configured sources.

A Source is immutable configuration: name, domain, priority (lower = preferred),
cooldown, enabled flag, and the URLs to scrape per sport. Adapters are registered
alongside so the rotation manager can look up the implementation by name.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

if TYPE_CHECKING:
    from scraper.sources.base import ScrapeAdapter

logger = get_logger(__name__)

DEFAULT_PRIORITY = 10


@dataclass(frozen=True)
class Source:
    name: str
    domain: str
    priority: int
    cooldown_minutes: float
    enabled: bool = True
    sport_urls: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    requires_browser: bool = True

    def urls_for(self, sport: str) -> tuple[str, ...]:
        return tuple(self.sport_urls.get(sport, ()))

    def supports(self, sport: str) -> bool:
        return bool(self.sport_urls.get(sport))


def _urls(mapping: dict[str, list[str]]) -> Mapping[str, tuple[str, ...]]:
    return MappingProxyType({k: tuple(v) for k, v in mapping.items()})


# ── Odds sources ────────────────────────────────────────────────────────
ODDSPORTAL = Source(
    name="oddsportal",
    domain="oddsportal.com",
    priority=1,
    cooldown_minutes=90,
    sport_urls=_urls({
        "football": [
            "https://www.oddsportal.com/matches/football/",
            "https://www.oddsportal.com/football/england/premier-league/",
            "https://www.oddsportal.com/football/spain/laliga/",
        ],
        "basketball": [
            "https://www.oddsportal.com/basketball/usa/nba/",
            "https://www.oddsportal.com/matches/basketball/",
        ],
        "tennis": ["https://www.oddsportal.com/matches/tennis/"],
    }),
)

BETEXPLORER = Source(
    name="betexplorer",
    domain="betexplorer.com",
    priority=1,
    cooldown_minutes=60,
    sport_urls=_urls({
        "football": [
            "https://www.betexplorer.com/football/",
            "https://www.betexplorer.com/football/england/premier-league/",
        ],
        "basketball": [
            "https://www.betexplorer.com/basketball/usa/nba/",
            "https://www.betexplorer.com/basketball/",
        ],
        "tennis": ["https://www.betexplorer.com/tennis/"],
    }),
)

BMBETS = Source(
    name="bmbets",
    domain="bmbets.com",
    priority=2,
    cooldown_minutes=120,
    sport_urls=_urls({
        "football": [
            "https://bmbets.com/football/",
            "https://bmbets.com/football/england/premier-league/",
            "https://bmbets.com/football/spain/la-liga/",
        ],
        "basketball": [
            "https://bmbets.com/basketball/usa/nba/",
            "https://bmbets.com/basketball/",
        ],
        "tennis": ["https://bmbets.com/tennis/"],
    }),
)

COVERS = Source(
    name="covers",
    domain="covers.com",
    priority=2,
    cooldown_minutes=60,
    sport_urls=_urls({
        "basketball": ["https://www.covers.com/sport/basketball/nba/odds"],
    }),
)

NICERODDS = Source(
    name="nicerodds",
    domain="nicerodds.co.uk",
    priority=3,
    cooldown_minutes=120,
    sport_urls=_urls({
        "football": [
            "https://nicerodds.co.uk/premier-league-betting-odds",
            "https://nicerodds.co.uk/la-liga-betting-odds",
            "https://nicerodds.co.uk/football",
        ],
        "basketball": [
            "https://nicerodds.co.uk/nba-betting-odds",
            "https://nicerodds.co.uk/basketball",
        ],
        "tennis": ["https://nicerodds.co.uk/tennis"],
    }),
)

THE_ODDS_API = Source(
    name="the-odds-api",
    domain="api.the-odds-api.com",
    priority=4,
    cooldown_minutes=30,
    requires_browser=False,
    sport_urls=_urls({
        "football": [
            "soccer_epl",
            "soccer_spain_la_liga",
            "soccer_italy_serie_a",
            "soccer_germany_bundesliga",
        ],
        "basketball": ["basketball_nba", "basketball_euroleague"],
    }),
)

ODDS_SOURCES: tuple[Source, ...] = (ODDSPORTAL, BETEXPLORER, BMBETS, COVERS, NICERODDS, THE_ODDS_API)

# ── Fixture / live-score sources ────────────────────────────────────────
FLASHSCORE = Source(
    name="flashscore",
    domain="flashscore.com",
    priority=1,
    cooldown_minutes=30,
    sport_urls=_urls({
        "football": [
            "https://www.flashscore.com/football/england/premier-league/fixtures/",
            "https://www.flashscore.com/football/england/championship/fixtures/",
            "https://www.flashscore.com/football/spain/laliga/fixtures/",
            "https://www.flashscore.com/football/germany/bundesliga/fixtures/",
            "https://www.flashscore.com/football/italy/serie-a/fixtures/",
            "https://www.flashscore.com/football/france/ligue-1/fixtures/",
            "https://www.flashscore.com/football/europe/champions-league/fixtures/",
            "https://www.flashscore.com/football/europe/europa-league/fixtures/",
        ],
        "tennis": [
            "https://www.flashscore.com/tennis/atp-singles/fixtures/",
            "https://www.flashscore.com/tennis/wta-singles/fixtures/",
        ],
        "basketball": [
            "https://www.flashscore.com/basketball/usa/nba/fixtures/",
            "https://www.flashscore.com/basketball/europe/euroleague/fixtures/",
        ],
        "darts": ["https://www.flashscore.com/darts/world/world-championship/fixtures/"],
        "cricket": ["https://www.flashscore.com/cricket/world/icc-world-test-championship/fixtures/"],
    }),
)

SCORES365 = Source(
    name="365scores",
    domain="webws.365scores.com",
    priority=1,
    cooldown_minutes=1,
    requires_browser=False,
    sport_urls=_urls({
        "football": ["1"],
        "basketball": ["2"],
        "tennis": ["3"],
    }),
)


class SourceRegistry:
    """
    Holds the sources for one job kind (odds, fixtures, live scores) and their adapters.

    Order of ``sources`` is priority order; ties keep registration order.
    """

    def __init__(
        self,
        sources: Iterable[Source],
        adapters: Mapping[str, "ScrapeAdapter"] | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        disabled = {name.lower() for name in settings.disabled_sources}
        resolved: list[Source] = []
        for src in sources:
            if src.name.lower() in disabled and src.enabled:
                src = replace(src, enabled=False)
                logger.info("source_disabled_by_config", source=src.name)
            resolved.append(src)
        self._sources = sorted(resolved, key=lambda s: s.priority)
        self._by_name = {s.name: s for s in self._sources}
        self._adapters: dict[str, ScrapeAdapter] = dict(adapters or {})

    @property
    def sources(self) -> list[Source]:
        return list(self._sources)

    def get(self, name: str) -> Optional[Source]:
        return self._by_name.get(name)

    def enabled(self, sport: str | None = None) -> list[Source]:
        """Enabled sources in priority order, optionally restricted to those covering ``sport``."""
        return [
            s for s in self._sources
            if s.enabled and s.name in self._adapters and (sport is None or s.supports(sport))
        ]

    def register_adapter(self, adapter: "ScrapeAdapter") -> None:
        if adapter.source.name not in self._by_name:
            raise KeyError(f"Unknown source {adapter.source.name!r}")
        self._adapters[adapter.source.name] = adapter

    def has_adapter(self, name: str) -> bool:
        return name in self._adapters

    def adapter_for(self, name: str) -> "ScrapeAdapter":
        adapter = self._adapters.get(name)
        if adapter is None:
            raise KeyError(f"No adapter registered for source {name!r}")
        return adapter

    def priorities(self) -> dict[str, int]:
        return {s.name: s.priority for s in self._sources}

    def domain_of(self, name: str) -> str:
        src = self._by_name.get(name)
        return src.domain if src else name

"""
Team identity: name normalization, fuzzy similarity, and alias-learning resolution.

The pure functions (normalize_team_name, similarity, is_same_match) have no store
or network dependency. TeamIdentityResolver layers an alias cache and the catalog
store on top of them.
"""
from __future__ import annotations

import asyncio
import re
import unicodedata
import uuid
from typing import Optional, Protocol

from shared.config import Settings, get_settings
from shared.models.domain import TeamRecord
from shared.models.enums import Sport
from shared.utils.logging import get_logger
from shared.utils.metrics import RECONCILE_OUTCOMES

logger = get_logger(__name__)

# Legal-form tokens that never distinguish one club from another.
_CLUB_FORM_RE = re.compile(r"\b(fc|sc|cf|afc|rfc|ac|as|ss|us|cd|ud|sd|rc|the)\b")
# Nicknames that are dropped when they trail a place name.
_TRAILING_WORDS_RE = re.compile(r"\b(wanderers|rovers|albion|argyle|forest|hotspur)\b")
_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")

# Display-name cleanup for new canonical teams: "FC Bayern Munich (GER)" -> "Bayern Munich"
_DISPLAY_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^(FC|AC|AS|SS|SC|SK|FK|NK|CD|CF|RC|CA|AD|UD|SD|US|SV|TSV|VfB|VfL|FSV)\s+", re.I), ""),
    (re.compile(r"\s+(FC|CF|SC|AFC|BC|HC|KC|CC|RFC|SFC)$", re.I), ""),
    (re.compile(r"\s*\([^)]+\)\s*$"), ""),
    (re.compile(r"\s*\[[^\]]+\]\s*$"), ""),
    (re.compile(r"^The\s+", re.I), ""),
    (re.compile(r"\s+\d{4}$"), ""),
    (re.compile(r"\s+"), " "),
)

# Normalized short forms -> normalized full forms
KNOWN_ABBREVIATIONS: dict[str, str] = {
    "man utd": "manchester utd",
    "man city": "manchester city",
    "spurs": "tottenham",
    "wolves": "wolverhampton",
    "nottm": "nottingham",
    "notts": "nottingham",
    "qpr": "queens park rangers",
    "west brom": "west bromwich",
    "wba": "west bromwich",
    "psg": "paris saint germain",
    "paris sg": "paris saint germain",
    "bvb": "borussia dortmund",
    "gladbach": "borussia monchengladbach",
    "internazionale": "inter milan",
    "inter": "inter milan",
    "atl madrid": "atletico madrid",
}

PREFIX_MATCH_SCORE = 0.85
_MIN_PREFIX_LEN = 3
# Keys sharing a place name but differing in a whole distinguishing word
# ("manchester city" / "manchester utd") score no higher than this.
DISTINCT_TOKEN_CAP = 0.5
_TOKEN_SPELLING_MIN = 0.5


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalize_team_name(name: str) -> str:
    """
    Comparison key for a participant name.

    >>> normalize_team_name("Manchester United FC") == normalize_team_name("manchester united")
    True
    """
    if not name:
        return ""
    text = strip_accents(name).lower()
    text = text.replace("'", "").replace("’", "").replace("&", " and ")
    text = _PUNCT_RE.sub(" ", text)
    text = _CLUB_FORM_RE.sub(" ", text)
    text = re.sub(r"\bunited\b", "utd", text)
    text = _TRAILING_WORDS_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", text).strip()


def canonical_key(name: str) -> str:
    key = normalize_team_name(name)
    return KNOWN_ABBREVIATIONS.get(key, key)


def display_name(name: str) -> str:
    """Human-facing canonical name for a newly created team."""
    out = name.strip()
    for pattern, repl in _DISPLAY_RULES:
        out = pattern.sub(repl, out)
    return out.strip() or name.strip()


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def _prefix_tokens_match(a: str, b: str) -> bool:
    """Same token count and every token pair equal or one an abbreviation prefix of the other."""
    ta, tb = a.split(), b.split()
    if len(ta) != len(tb) or ta == tb:
        return False
    for x, y in zip(ta, tb):
        if x == y:
            continue
        short, long_ = (x, y) if len(x) < len(y) else (y, x)
        if len(short) < _MIN_PREFIX_LEN or not long_.startswith(short):
            return False
    return True


def _ratio(a: str, b: str) -> float:
    longer = max(len(a), len(b))
    return (longer - levenshtein(a, b)) / longer if longer else 1.0


def _tokens_compatible(x: str, y: str) -> bool:
    """Spelling variant, or one token an abbreviation prefix of the other."""
    short, long_ = (x, y) if len(x) < len(y) else (y, x)
    if len(short) >= _MIN_PREFIX_LEN and long_.startswith(short):
        return True
    return _ratio(x, y) >= _TOKEN_SPELLING_MIN


def _has_distinct_token(a: str, b: str) -> bool:
    """
    True when the keys share a word but each has a word the other lacks and those
    words cannot be spellings of one another: city/utd, real/atletico.
    """
    ta, tb = set(a.split()), set(b.split())
    only_a, only_b = ta - tb, tb - ta
    if not (ta & tb) or not only_a or not only_b:
        return False
    return any(not any(_tokens_compatible(x, y) for y in only_b) for x in only_a)


def key_similarity(a: str, b: str) -> float:
    """Similarity of two already-normalized keys, in [0, 1]."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    score = _ratio(a, b)
    if _prefix_tokens_match(a, b):
        score = max(score, PREFIX_MATCH_SCORE)
    elif _has_distinct_token(a, b):
        score = min(score, DISTINCT_TOKEN_CAP)
    return score


def similarity(a: str, b: str) -> float:
    """Edit-distance similarity of two raw names after normalization."""
    return key_similarity(canonical_key(a), canonical_key(b))


def is_same_match(
    home_a: str, away_a: str, home_b: str, away_b: str, threshold: float = 0.75
) -> bool:
    """Both sides must clear the threshold; home/away swapped between sources also counts."""
    if similarity(home_a, home_b) >= threshold and similarity(away_a, away_b) >= threshold:
        return True
    return similarity(home_a, away_b) >= threshold and similarity(away_a, home_b) >= threshold


def pair_similarity(home_a: str, away_a: str, home_b: str, away_b: str) -> float:
    """Weakest side of the best orientation, used to rank candidate events."""
    direct = min(similarity(home_a, home_b), similarity(away_a, away_b))
    swapped = min(similarity(home_a, away_b), similarity(away_a, home_b))
    return max(direct, swapped)


# ── Resolver ────────────────────────────────────────────────────────────
class TeamStore(Protocol):
    async def list_team_aliases(self, sport: Sport) -> list[tuple[uuid.UUID, str, str]]: ...

    async def get_team(self, team_id: uuid.UUID) -> Optional[TeamRecord]: ...

    async def create_team(
        self, sport: Sport, name: str, alias: str, normalized: str, source: str
    ) -> TeamRecord: ...

    async def add_team_alias(
        self, team_id: uuid.UUID, sport: Sport, alias: str, normalized: str, source: str
    ) -> uuid.UUID:
        """Record an alias for ``team_id``; returns the team that owns the alias afterwards."""


class TeamIdentityResolver:
    """
    Maps free-text participant names to canonical teams, per sport.

    Aliases are cached by normalized key; the cache is loaded from the store on
    first use of a sport. A new spelling above the threshold is learned as an alias
    of the best match, otherwise a new team is created.
    """

    def __init__(self, store: TeamStore, settings: Settings | None = None) -> None:
        self._store = store
        self._threshold = (settings or get_settings()).team_match_threshold
        self._aliases: dict[Sport, dict[str, uuid.UUID]] = {}
        self._teams: dict[uuid.UUID, TeamRecord] = {}
        self._lock = asyncio.Lock()

    async def _load(self, sport: Sport) -> dict[str, uuid.UUID]:
        cache = self._aliases.get(sport)
        if cache is None:
            cache = {}
            for team_id, _, normalized in await self._store.list_team_aliases(sport):
                cache.setdefault(normalized, team_id)
            self._aliases[sport] = cache
            logger.debug("team_alias_cache_loaded", sport=sport.value, aliases=len(cache))
        return cache

    async def _team(self, team_id: uuid.UUID) -> TeamRecord:
        team = self._teams.get(team_id)
        if team is None:
            team = await self._store.get_team(team_id)
            if team is None:
                raise LookupError(f"team {team_id} vanished from the catalog")
            self._teams[team_id] = team
        return team

    def best_match(self, sport: Sport, key: str) -> tuple[Optional[uuid.UUID], float]:
        best_id: Optional[uuid.UUID] = None
        best_score = 0.0
        for alias_key, team_id in self._aliases.get(sport, {}).items():
            score = key_similarity(key, alias_key)
            if score > best_score:
                best_id, best_score = team_id, score
        return best_id, best_score

    async def resolve(self, raw_name: str, sport: Sport, source: str = "") -> TeamRecord:
        key = canonical_key(raw_name)
        if not key:
            raise ValueError(f"cannot resolve empty team name {raw_name!r}")

        async with self._lock:
            cache = await self._load(sport)

            team_id = cache.get(key)
            if team_id is not None:
                return await self._team(team_id)

            best_id, score = self.best_match(sport, key)
            if best_id is not None and score >= self._threshold:
                owner_id = await self._store.add_team_alias(best_id, sport, raw_name, key, source)
                cache[key] = owner_id
                self._teams.pop(owner_id, None)
                team = await self._team(owner_id)
                if owner_id != best_id:
                    RECONCILE_OUTCOMES.labels(kind="team", outcome="alias_owned_elsewhere").inc()
                    logger.info("team_alias_already_owned", sport=sport.value, alias=raw_name, team=team.name)
                    return team
                RECONCILE_OUTCOMES.labels(kind="team", outcome="alias_learned").inc()
                logger.info(
                    "team_alias_learned",
                    sport=sport.value,
                    alias=raw_name,
                    team=team.name,
                    similarity=round(score, 3),
                )
                return team

            team = await self._store.create_team(sport, display_name(raw_name), raw_name, key, source)
            cache[key] = team.id
            self._teams[team.id] = team
            RECONCILE_OUTCOMES.labels(kind="team", outcome="created").inc()
            logger.info("team_created", sport=sport.value, name=team.name, alias=raw_name)
            return team

"""
Flashscore fixtures adapter.

Flashscore renders kick-off times in Central European time, either as "HH:MM"
for today or "DD.MM. HH:MM" / "DD.MM.YYYY HH:MM" for later dates.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from shared.models.domain import Fixture, utcnow
from shared.models.enums import Sport
from shared.utils.logging import get_logger

from scraper.sources.base import (
    NetworkOrTimeoutError,
    NoDataAvailableError,
    Page,
    ParseError,
    ScrapeAdapter,
    ScrapeError,
    jitter_sleep,
)

logger = get_logger(__name__)

SITE_TZ = ZoneInfo("Europe/Berlin")
ROW_SELECTOR = '.event__match, [class*="event__match"]'

_DATE_TIME_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})?\s+(\d{1,2}):(\d{2})")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_ID_PREFIX_RE = re.compile(r"^g_\d+_")

_EXTRACT = r"""
() => {
  const out = [];
  const pick = (row, sels) => {
    for (const s of sels) {
      const el = row.querySelector(s);
      if (el && (el.textContent || '').trim()) return el.textContent.trim();
    }
    return '';
  };
  let competition = '';
  document.querySelectorAll('.event__header, [class*="event__match"]').forEach((row) => {
    if (row.classList.contains('event__header')) {
      const name = pick(row, ['.event__title--name', '.event__title']);
      const country = pick(row, ['.event__title--type']);
      competition = country ? `${country}: ${name}` : name;
      return;
    }
    out.push({
      id: row.id || '',
      home: pick(row, ['.event__participant--home', '.event__homeParticipant', '.event__participant:first-of-type']),
      away: pick(row, ['.event__participant--away', '.event__awayParticipant', '.event__participant:last-of-type']),
      time: pick(row, ['.event__time', '.event__stage', '.event__stage--block']),
      competition,
    });
  });
  return out;
}
"""


def parse_kickoff(text: str, now: datetime | None = None) -> Optional[datetime]:
    """Convert a Flashscore time label to an aware UTC datetime, rolling past dates forward."""
    now = now or utcnow()
    text = (text or "").strip()
    local_now = now.astimezone(SITE_TZ)

    m = _DATE_TIME_RE.match(text)
    if m:
        day, month, year, hour, minute = m.groups()
        try:
            local = datetime(
                int(year) if year else local_now.year,
                int(month),
                int(day),
                int(hour),
                int(minute),
                tzinfo=SITE_TZ,
            )
        except ValueError:
            return None
        if not year and local < local_now:
            local = local.replace(year=local.year + 1)
        return local.astimezone(timezone.utc)

    m = _TIME_RE.match(text)
    if m:
        hour, minute = int(m.group(1)), int(m.group(2))
        if hour > 23 or minute > 59:
            return None
        local = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if local < local_now:
            local += timedelta(days=1)
        return local.astimezone(timezone.utc)

    return None


def rows_to_fixtures(
    rows: list[dict[str, Any]], sport: str, source: str, days_ahead: int, now: datetime | None = None
) -> list[Fixture]:
    now = now or utcnow()
    horizon = now + timedelta(days=days_ahead)
    fixtures: list[Fixture] = []
    seen: set[str] = set()
    for row in rows:
        external_id = _ID_PREFIX_RE.sub("", str(row.get("id") or ""))
        home = str(row.get("home") or "").strip()
        away = str(row.get("away") or "").strip()
        if not external_id or not home or not away or external_id in seen:
            continue
        start = parse_kickoff(str(row.get("time") or ""), now)
        if start is None or not (now <= start <= horizon):
            continue
        seen.add(external_id)
        fixtures.append(
            Fixture(
                external_id=external_id,
                sport=Sport(sport),
                competition=str(row.get("competition") or "Unknown"),
                home_team=home,
                away_team=away,
                start_time=start,
                source=source,
            )
        )
    return fixtures


class FlashscoreFixturesAdapter(ScrapeAdapter[Fixture]):
    async def _scrape(self, page: Optional[Page], sport: str) -> list[Fixture]:
        if page is None:
            raise NetworkOrTimeoutError("flashscore needs a browser page", source=self.name, sport=sport)

        fixtures: list[Fixture] = []
        seen: set[str] = set()
        last_error: Optional[ScrapeError] = None
        failed = empty = 0
        urls = self._source.urls_for(sport)

        for url in urls:
            try:
                batch = await self._scrape_competition(page, url, sport)
            except NoDataAvailableError:
                empty += 1
                continue
            except ParseError as exc:
                failed += 1
                last_error = exc
                logger.warning("fixture_page_parse_failed", url=url, snapshot=exc.snapshot_path)
                continue
            except NetworkOrTimeoutError as exc:
                failed += 1
                last_error = exc
                logger.warning("fixture_page_unreachable", url=url, error=str(exc))
                continue

            for fx in batch:
                if fx.external_id not in seen:
                    seen.add(fx.external_id)
                    fixtures.append(fx)
            await jitter_sleep(1500)

        if not fixtures:
            if last_error is not None and failed + empty == len(urls) and failed:
                raise last_error
            if urls and empty == len(urls):
                raise NoDataAvailableError(
                    f"no {sport} fixtures listed on {self.name}", source=self.name, sport=sport
                )
        logger.info("fixtures_scraped", source=self.name, sport=sport, count=len(fixtures))
        return fixtures

    async def _scrape_competition(self, page: Page, url: str, sport: str) -> list[Fixture]:
        await self._navigate(page, url, sport)
        try:
            await page.wait_for_selector(ROW_SELECTOR, timeout=15000)
        except PlaywrightTimeoutError:
            logger.debug("fixture_rows_not_found", url=url)

        rows = await page.evaluate(_EXTRACT) or []
        if not rows:
            await self._classify_empty_page(page, url, sport)
            return []

        fixtures = rows_to_fixtures(rows, sport, self.name, self._settings.fixture_days_ahead)
        if not fixtures and not any(r.get("home") for r in rows):
            snapshot = await self._snapshot(page, sport)
            raise ParseError(
                f"{len(rows)} rows on {url} without participants",
                source=self.name,
                sport=sport,
                url=url,
                snapshot_path=snapshot,
            )
        return fixtures

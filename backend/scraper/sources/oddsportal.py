"""
OddsPortal adapter: primary odds source, aggregates 80+ bookmakers per match.
"""
from __future__ import annotations

from scraper.sources.base import DomOddsAdapter

_EXTRACT = r"""
() => {
  const out = [];
  const priceRe = /^\d+\.\d+$/;
  document.querySelectorAll('.eventRow, [class*="eventRow"]').forEach((row) => {
    const names = row.querySelectorAll('.participant-name');
    if (names.length < 2) return;
    const odds = [];
    row.querySelectorAll('p[data-testid*="odd-container"]').forEach((el) => {
      const t = (el.textContent || '').trim();
      if (priceRe.test(t)) odds.push(t);
    });
    out.push({
      home: (names[0].textContent || '').trim(),
      away: (names[1].textContent || '').trim(),
      odds,
    });
  });
  return out;
}
"""


class OddsPortalAdapter(DomOddsAdapter):
    ROW_SELECTOR = '[class*="eventRow"], [class*="event-row"], table tbody tr'
    EXTRACT_SCRIPT = _EXTRACT

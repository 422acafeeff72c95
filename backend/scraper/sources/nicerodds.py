"""NicerOdds adapter (UK comparison site, lowest-priority browser source)."""
from __future__ import annotations

from scraper.sources.base import DomOddsAdapter

_EXTRACT = r"""
() => {
  const out = [];
  const priceRe = /^\d+\.\d{1,3}$/;
  const fracRe = /^(\d+)\/(\d+)$/;
  const toDecimal = (t) => {
    const m = fracRe.exec(t);
    return m ? String((Number(m[1]) / Number(m[2]) + 1).toFixed(2)) : t;
  };
  document.querySelectorAll('table tbody tr, .match, .fixture, [class*="event-row"]').forEach((row) => {
    const teams = Array.from(row.querySelectorAll('.team, .team-name, a[href*="team"]'))
      .map((el) => (el.textContent || '').trim())
      .filter((t) => t.length >= 2);
    if (teams.length < 2) return;
    const odds = Array.from(row.querySelectorAll('.odds, .odd, [class*="odds"]'))
      .map((el) => toDecimal((el.textContent || '').trim()))
      .filter((t) => priceRe.test(t));
    out.push({ home: teams[0], away: teams[1], odds: odds.slice(0, 3) });
  });
  return out;
}
"""


class NicerOddsAdapter(DomOddsAdapter):
    ROW_SELECTOR = '.match, .fixture, .event, table tr, [class*="match"]'
    EXTRACT_SCRIPT = _EXTRACT
    ROW_WAIT_TIMEOUT_MS = 20000

"""BMBets adapter."""
from __future__ import annotations

from scraper.sources.base import DomOddsAdapter

_EXTRACT = r"""
() => {
  const out = [];
  const priceRe = /^\d+\.\d{1,3}$/;
  document.querySelectorAll('table tbody tr, .match-row, .event-row, [class*="match-item"]').forEach((row) => {
    const teams = Array.from(row.querySelectorAll('.team-name, .team, td:first-child a, .participant'))
      .map((el) => (el.textContent || '').trim())
      .filter((t) => t.length >= 2);
    if (teams.length < 2) return;
    const odds = Array.from(row.querySelectorAll('.odds, .odd, [class*="odds"]'))
      .map((el) => (el.textContent || '').trim())
      .filter((t) => priceRe.test(t));
    const bookies = row.getAttribute('data-bookmakers');
    out.push({ home: teams[0], away: teams[1], odds: odds.slice(0, 3), bookmakers: bookies ? Number(bookies) : 1 });
  });
  return out;
}
"""


class BMBetsAdapter(DomOddsAdapter):
    ROW_SELECTOR = '.match-row, .event-row, [class*="match"], table tr'
    EXTRACT_SCRIPT = _EXTRACT
    ROW_WAIT_TIMEOUT_MS = 20000

"""
Covers.com adapter. US-focused; prices are American moneylines and are converted
to decimal inside the page script.
"""
from __future__ import annotations

from scraper.sources.base import DomOddsAdapter

_EXTRACT = r"""
() => {
  const out = [];
  const toDecimal = (t) => {
    const n = Number((t || '').replace(/[^0-9+\-]/g, ''));
    if (!n) return null;
    return (n > 0 ? n / 100 + 1 : 100 / Math.abs(n) + 1).toFixed(2);
  };
  document.querySelectorAll('.oddsGameRow, [class*=oddsGameRow]').forEach((row) => {
    const teamsDiv = row.querySelector('.teams-div, [class*=teams-div]');
    if (!teamsDiv) return;
    const teams = Array.from(teamsDiv.querySelectorAll('a, span'))
      .map((el) => (el.textContent || '').trim())
      .filter((t) => t.length >= 2);
    if (teams.length < 2) return;
    const cells = Array.from(row.querySelectorAll('[class*=oddsTd], [class*=liveOddsCell]'));
    const odds = cells.slice(0, 2).map((c) => toDecimal(c.textContent)).filter((v) => v);
    // Covers lists the away side first.
    out.push({ home: teams[1], away: teams[0], odds: odds.length === 2 ? [odds[1], odds[0]] : [] });
  });
  return out;
}
"""


class CoversAdapter(DomOddsAdapter):
    ROW_SELECTOR = ".oddsGameRow, [class*=oddsGameRow]"
    EXTRACT_SCRIPT = _EXTRACT

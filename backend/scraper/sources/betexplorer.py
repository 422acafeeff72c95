"""
BetExplorer adapter. Clean server-rendered tables:

    <tr data-dt="24,12,2025,21,00">
      <td><a href="...">Team A - Team B</a></td>
      <td class="table-main__odds" data-odd="2.12">  (home)
      <td class="table-main__odds" data-odd="3.00">  (draw)
      <td class="table-main__odds" data-odd="3.73">  (away)
    </tr>
"""
from __future__ import annotations

from scraper.sources.base import DomOddsAdapter

_EXTRACT = r"""
() => {
  const out = [];
  document.querySelectorAll('table.table-main tr[data-dt]').forEach((row) => {
    const link = row.querySelector('td a[href*="/"]');
    if (!link) return;
    const teams = (link.textContent || '').split(' - ').map((t) => t.trim());
    if (teams.length !== 2) return;
    const odds = Array.from(row.querySelectorAll('td[data-odd]'))
      .map((td) => td.getAttribute('data-odd'))
      .filter((v) => v);
    out.push({ home: teams[0], away: teams[1], odds });
  });
  return out;
}
"""


class BetExplorerAdapter(DomOddsAdapter):
    ROW_SELECTOR = "table.table-main tr[data-dt]"
    EXTRACT_SCRIPT = _EXTRACT

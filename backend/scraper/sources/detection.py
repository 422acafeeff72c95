"""
Page classification helpers: bot-block detection, "no data" detection, and
debug snapshots for diagnosing selector drift.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from shared.utils.logging import get_logger

logger = get_logger(__name__)

BLOCKED_STATUS_CODES = frozenset({403, 429, 503})

BLOCKED_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"access denied",
        r"blocked",
        r"captcha",
        r"cloudflare",
        r"please verify",
        r"rate limit",
        r"too many requests",
        r"robot check",
        r"403 forbidden",
        r"429 too many",
        r"unusual traffic",
        r"automated access",
        r"bot detection",
    )
)

NO_DATA_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"no (upcoming )?(matches|events|fixtures) (found|available|scheduled)",
        r"there are no (upcoming )?(matches|events|fixtures)",
        r"no odds available",
        r"no data available",
    )
)


@dataclass(frozen=True)
class BlockDetection:
    is_blocked: bool
    reason: Optional[str] = None
    status_code: Optional[int] = None


def detect_blocking(content: str, status_code: int | None = None) -> BlockDetection:
    """Classify a response as bot-blocked by status code first, then by page text."""
    if status_code in BLOCKED_STATUS_CODES:
        return BlockDetection(True, f"HTTP {status_code}", status_code)

    for pattern in BLOCKED_PATTERNS:
        if pattern.search(content or ""):
            return BlockDetection(True, f"content matched: {pattern.pattern}", status_code)

    return BlockDetection(False, status_code=status_code)


def detect_no_data(text: str) -> Optional[str]:
    """Return the matched pattern when the page explicitly says it has nothing to show."""
    for pattern in NO_DATA_PATTERNS:
        if pattern.search(text or ""):
            return pattern.pattern
    return None


def save_snapshot(
    directory: str, source: str, sport: str, html: str, screenshot: bytes | None = None
) -> Optional[str]:
    """
    Write the page HTML (and optional screenshot) for post-mortem selector debugging.

    Returns the HTML path, or None if the directory is not writable.
    """
    stamp = int(time.time() * 1000)
    base = Path(directory)
    try:
        base.mkdir(parents=True, exist_ok=True)
        html_path = base / f"{source}-{sport}-{stamp}.html"
        html_path.write_text(html, encoding="utf-8")
        if screenshot:
            (base / f"{source}-{sport}-{stamp}.png").write_bytes(screenshot)
    except OSError as exc:
        logger.warning("debug_snapshot_failed", source=source, sport=sport, error=str(exc))
        return None

    logger.info("debug_snapshot_saved", source=source, sport=sport, path=str(html_path))
    return str(html_path)

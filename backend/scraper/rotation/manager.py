"""
Source rotation: which source to try next for a sport, and what happened when we did.

Selection skips sources that are cooling down after recent use and sources that keep
failing for this particular sport. Among the rest, a per-sport pointer walks the
priority-ordered list so consecutive jobs spread load instead of hammering the
top-priority source. Every adapter failure ends up as bookkeeping here; none of them
escape ``scrape_with_rotation``.
"""
from __future__ import annotations

import time
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import utcnow
from shared.models.enums import FailureKind
from shared.utils.logging import get_logger
from shared.utils.metrics import SOURCE_CONSECUTIVE_FAILURES, SOURCE_SELECTIONS

from scraper.rate_limiter import RateLimitDetector
from scraper.request_metrics import MetricsCollector
from scraper.rotation.state import SourceStateStore, SourceUsage, SportSourceStats
from scraper.sources.base import (
    BotBlockedError,
    NetworkOrTimeoutError,
    NoDataAvailableError,
    Page,
    ParseError,
    ScrapeAdapter,
    ScrapeError,
)
from scraper.sources.registry import Source, SourceRegistry

logger = get_logger(__name__)

PageProvider = Callable[[], AbstractAsyncContextManager[Page]]


@dataclass
class SourceResult:
    source: str
    sport: str
    records: list[Any] = field(default_factory=list)
    success: bool = False
    duration_ms: float = 0.0
    error: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    no_data: bool = False


def failure_kind_of(exc: ScrapeError) -> FailureKind:
    if isinstance(exc, BotBlockedError):
        return FailureKind.BOT_BLOCKED
    if isinstance(exc, NetworkOrTimeoutError):
        return FailureKind.NETWORK
    if isinstance(exc, ParseError):
        return FailureKind.PARSE
    return FailureKind.UNKNOWN


class SourceRotationManager:
    """
    Rotation over the sources of one registry (odds, fixtures or live scores).

    State lives in the injected SourceStateStore; ``kind`` namespaces the rotation
    pointer so managers for different job kinds sharing a store do not interfere.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        state: SourceStateStore,
        rate_limiter: RateLimitDetector,
        metrics: MetricsCollector,
        kind: str = "odds",
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._state = state
        self._rate_limiter = rate_limiter
        self._metrics = metrics
        self._kind = kind
        self._settings = settings or get_settings()
        self._clock = clock

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    @property
    def kind(self) -> str:
        return self._kind

    # ── Cooldown & avoidance ────────────────────────────────────────────
    def cooldown_for(self, source: Source, usage: SourceUsage) -> timedelta:
        """``cooldown_minutes x 2^min(failures, cap)``, stretched further after a bot block."""
        exponent = min(usage.consecutive_failures, self._settings.cooldown_max_exponent)
        minutes = source.cooldown_minutes * (2 ** exponent)
        if usage.consecutive_failures and usage.last_failure_kind is FailureKind.BOT_BLOCKED:
            minutes *= self._settings.bot_block_cooldown_multiplier
        return timedelta(minutes=minutes)

    def _remaining(self, source: Source, usage: SourceUsage) -> timedelta:
        if usage.last_used_at is None:
            return timedelta(0)
        elapsed = self._clock() - usage.last_used_at
        return max(self.cooldown_for(source, usage) - elapsed, timedelta(0))

    async def cooldown_remaining(self, name: str) -> float:
        """Seconds until ``name`` may be selected again (0 when available)."""
        source = self._registry.get(name)
        if source is None:
            raise KeyError(f"Unknown source {name!r}")
        usage = await self._state.get_usage(name)
        return self._remaining(source, usage).total_seconds()

    async def is_on_cooldown(self, name: str) -> bool:
        return await self.cooldown_remaining(name) > 0

    async def is_avoided(self, name: str, sport: str) -> bool:
        stats = await self._state.get_sport_stats(name, sport)
        return stats.consecutive_failures >= self._settings.sport_avoid_threshold

    # ── Selection ───────────────────────────────────────────────────────
    async def select_source(self, sport: str, exclude: Iterable[str] = ()) -> Optional[Source]:
        skip = set(exclude)
        preferred: list[Source] = []
        fallback: list[Source] = []
        for source in self._registry.enabled(sport):
            if source.name in skip:
                continue
            avoided = await self.is_avoided(source.name, sport)
            if await self.is_on_cooldown(source.name):
                continue
            (fallback if avoided else preferred).append(source)

        if preferred:
            position = await self._state.advance_pointer(f"{self._kind}:{sport}")
            chosen = preferred[position % len(preferred)]
            SOURCE_SELECTIONS.labels(source=chosen.name, sport=sport, mode="normal").inc()
            logger.debug("source_selected", source=chosen.name, sport=sport, candidates=len(preferred))
            return chosen

        if fallback:
            chosen = fallback[0]
            SOURCE_SELECTIONS.labels(source=chosen.name, sport=sport, mode="fallback").inc()
            logger.warning("source_fallback_selected", source=chosen.name, sport=sport, kind=self._kind)
            return chosen

        logger.warning("no_source_available", sport=sport, kind=self._kind, excluded=sorted(skip))
        return None

    # ── Bookkeeping ─────────────────────────────────────────────────────
    async def record_success(self, name: str, sport: str, response_time_ms: float = 0.0) -> None:
        now = self._clock()

        def usage_ok(u: SourceUsage) -> None:
            u.last_used_at = now
            u.success_count += 1
            u.consecutive_failures = 0
            u.last_error = None
            u.last_failure_kind = None

        def sport_ok(s: SportSourceStats) -> None:
            s.success_count += 1
            s.consecutive_failures = 0
            s.last_success_at = now

        usage = await self._state.update_usage(name, usage_ok)
        await self._state.update_sport_stats(name, sport, sport_ok)
        SOURCE_CONSECUTIVE_FAILURES.labels(source=name).set(0)
        await self._rate_limiter.record_success(self._registry.domain_of(name))
        self._metrics.record_request(name, True, response_time_ms)
        logger.info("source_succeeded", source=name, sport=sport, total_successes=usage.success_count)

    async def record_failure(
        self,
        name: str,
        sport: str,
        kind: FailureKind,
        error: str = "",
        response_time_ms: float = 0.0,
        status_code: int | None = None,
    ) -> None:
        now = self._clock()

        def usage_failed(u: SourceUsage) -> None:
            u.last_used_at = now
            u.failure_count += 1
            u.consecutive_failures += 1
            u.last_error = error or kind.value
            u.last_failure_kind = kind

        def sport_failed(s: SportSourceStats) -> None:
            s.failure_count += 1
            s.consecutive_failures += 1
            s.last_failure_at = now

        usage = await self._state.update_usage(name, usage_failed)
        stats = await self._state.update_sport_stats(name, sport, sport_failed)
        SOURCE_CONSECUTIVE_FAILURES.labels(source=name).set(usage.consecutive_failures)
        await self._rate_limiter.record_failure(self._registry.domain_of(name), kind.value)
        self._metrics.record_request(
            name,
            False,
            response_time_ms,
            blocked=kind is FailureKind.BOT_BLOCKED,
            status_code=status_code,
        )
        logger.warning(
            "source_failed",
            source=name,
            sport=sport,
            kind=kind.value,
            error=error,
            consecutive_failures=usage.consecutive_failures,
            sport_consecutive_failures=stats.consecutive_failures,
        )
        if stats.consecutive_failures == self._settings.sport_avoid_threshold:
            logger.warning("source_avoided_for_sport", source=name, sport=sport)

    # ── Rotation ────────────────────────────────────────────────────────
    async def scrape_with_rotation(
        self,
        sport: str,
        page_provider: PageProvider | None = None,
        max_attempts: int | None = None,
    ) -> list[SourceResult]:
        """
        Try up to ``max_attempts`` distinct sources for ``sport``.

        Stops early once one source returns enough records. A page is acquired per
        attempt, and only for adapters that drive a browser; it is released before
        the next source is tried whatever the outcome.
        """
        attempts = max_attempts or self._settings.rotation_max_attempts
        good_enough = self._settings.rotation_good_enough_records
        results: list[SourceResult] = []
        tried: set[str] = set()

        for _ in range(attempts):
            source = await self.select_source(sport, exclude=tried)
            if source is None:
                break
            tried.add(source.name)

            adapter = self._registry.adapter_for(source.name)
            result = await self._attempt(adapter, sport, page_provider)
            results.append(result)
            if result.success and len(result.records) >= good_enough:
                break

        total = sum(len(r.records) for r in results)
        logger.info(
            "rotation_complete",
            sport=sport,
            kind=self._kind,
            tried=[r.source for r in results],
            records=total,
        )
        return results

    async def _attempt(
        self, adapter: ScrapeAdapter, sport: str, page_provider: PageProvider | None
    ) -> SourceResult:
        name = adapter.name
        result = SourceResult(source=name, sport=sport)
        start = time.perf_counter()
        logger.info("source_attempt", source=name, sport=sport)
        try:
            if adapter.requires_browser:
                if page_provider is None:
                    raise NetworkOrTimeoutError(
                        f"{name} needs a browser page and none was provided", source=name, sport=sport
                    )
                async with page_provider() as page:
                    records = await adapter.scrape(page, sport)
            else:
                records = await adapter.scrape(None, sport)
        except NoDataAvailableError as exc:
            result.duration_ms = (time.perf_counter() - start) * 1000
            result.success = True
            result.no_data = True
            logger.info("source_no_data", source=name, sport=sport, reason=str(exc))
            await self.record_success(name, sport, result.duration_ms)
            return result
        except ScrapeError as exc:
            result.duration_ms = (time.perf_counter() - start) * 1000
            result.error = str(exc)
            result.failure_kind = failure_kind_of(exc)
            status = exc.status_code if isinstance(exc, BotBlockedError) else None
            await self.record_failure(
                name, sport, result.failure_kind, str(exc), result.duration_ms, status
            )
            return result

        result.duration_ms = (time.perf_counter() - start) * 1000
        result.records = list(records)
        result.success = True
        await self.record_success(name, sport, result.duration_ms)
        return result

    # ── Status ──────────────────────────────────────────────────────────
    async def get_sources_status(self) -> dict[str, dict[str, Any]]:
        status: dict[str, dict[str, Any]] = {}
        for source in self._registry.sources:
            usage = await self._state.get_usage(source.name)
            sport_stats = await self._state.sport_stats_for(source.name)
            status[source.name] = {
                "source": source,
                "usage": usage,
                "enabled": source.enabled and self._registry.has_adapter(source.name),
                "cooldown_remaining_s": self._remaining(source, usage).total_seconds(),
                "avoided_sports": sorted(
                    sport for sport, s in sport_stats.items()
                    if s.consecutive_failures >= self._settings.sport_avoid_threshold
                ),
            }
        return status

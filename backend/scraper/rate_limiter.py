"""
Per-domain request pacing with adaptive delay.

Widens the inter-request interval on 429/403/503 and recorded failures, shrinks it
back on success, and honours Retry-After. This governs pacing within a scrape;
whether a source is used at all is the rotation manager's cooldown.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, Optional

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import DOMAIN_DELAY_MS

logger = get_logger(__name__)


@dataclass
class DomainRateInfo:
    suggested_delay_ms: float
    last_request: float = 0.0
    consecutive_failures: int = 0
    cooldown_until: Optional[float] = None


@dataclass(frozen=True)
class RateLimitCheck:
    is_rate_limited: bool
    retry_after_s: Optional[int] = None


class RateLimitDetector:
    """
    asyncio-safe: one lock guards the domain map. ``wait_for_rate_limit`` reserves its
    slot under the lock and sleeps outside it, so concurrent callers on the same domain
    queue up one interval apart instead of firing together.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        s = settings or get_settings()
        self._default_delay = float(s.rate_limit_default_delay_ms)
        self._min_delay = float(s.rate_limit_min_delay_ms)
        self._max_delay = float(s.rate_limit_max_delay_ms)
        self._recovery = s.rate_limit_recovery_factor
        self._backoff = s.rate_limit_backoff_factor
        self._block_after = s.rate_limit_block_after_failures
        self._clock = clock
        self._sleep = sleep
        self._domains: dict[str, DomainRateInfo] = {}
        self._lock = asyncio.Lock()

    def _info(self, domain: str) -> DomainRateInfo:
        info = self._domains.get(domain)
        if info is None:
            info = DomainRateInfo(suggested_delay_ms=self._default_delay)
            self._domains[domain] = info
        return info

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _set_delay(self, domain: str, info: DomainRateInfo, delay_ms: float) -> None:
        info.suggested_delay_ms = max(self._min_delay, min(delay_ms, self._max_delay))
        DOMAIN_DELAY_MS.labels(domain=domain).set(info.suggested_delay_ms)

    def suggested_delay_ms(self, domain: str) -> float:
        """Milliseconds the caller should still wait before hitting ``domain``."""
        info = self._info(domain)
        now = self._now_ms()
        if info.cooldown_until is not None and now < info.cooldown_until:
            return info.cooldown_until - now
        elapsed = now - info.last_request
        if elapsed < info.suggested_delay_ms:
            return info.suggested_delay_ms - elapsed
        return 0.0

    async def wait_for_rate_limit(self, domain: str) -> None:
        async with self._lock:
            delay = self.suggested_delay_ms(domain)
            self._info(domain).last_request = self._now_ms() + delay
        if delay > 0:
            logger.debug("rate_limit_wait", domain=domain, delay_ms=round(delay))
            await self._sleep(delay / 1000)

    async def check_rate_limit(
        self, domain: str, status: int, headers: Mapping[str, str] | None = None
    ) -> RateLimitCheck:
        """Inspect a response status and adjust the domain's pacing."""
        async with self._lock:
            info = self._info(domain)

            if status == 429:
                info.consecutive_failures += 1
                retry_after = _retry_after_seconds(headers)
                if retry_after is not None:
                    self._set_delay(domain, info, retry_after * 1000)
                    info.cooldown_until = self._now_ms() + info.suggested_delay_ms
                    logger.warning(
                        "rate_limited_retry_after",
                        domain=domain,
                        retry_after_s=retry_after,
                        delay_ms=info.suggested_delay_ms,
                    )
                    return RateLimitCheck(True, retry_after)

                self._set_delay(domain, info, info.suggested_delay_ms * self._backoff)
                if info.consecutive_failures >= self._block_after:
                    info.cooldown_until = self._now_ms() + info.suggested_delay_ms * 2
                    logger.warning(
                        "rate_limited_cooldown",
                        domain=domain,
                        consecutive_failures=info.consecutive_failures,
                        cooldown_ms=info.suggested_delay_ms * 2,
                    )
                return RateLimitCheck(True)

            if status in (403, 503):
                info.consecutive_failures += 1
                self._set_delay(domain, info, info.suggested_delay_ms * self._backoff)
                logger.warning("rate_limit_backoff", domain=domain, status=status, delay_ms=info.suggested_delay_ms)
                return RateLimitCheck(True)

            if 200 <= status < 300:
                info.consecutive_failures = 0
                info.cooldown_until = None
                self._set_delay(domain, info, info.suggested_delay_ms * self._recovery)

            return RateLimitCheck(False)

    async def record_success(self, domain: str) -> None:
        async with self._lock:
            info = self._info(domain)
            info.consecutive_failures = 0
            info.cooldown_until = None
            self._set_delay(domain, info, info.suggested_delay_ms * self._recovery)

    async def record_failure(self, domain: str, reason: str | None = None) -> None:
        async with self._lock:
            info = self._info(domain)
            info.consecutive_failures += 1
            self._set_delay(domain, info, info.suggested_delay_ms * self._backoff)
        logger.debug(
            "rate_limit_failure_recorded",
            domain=domain,
            reason=reason,
            consecutive_failures=info.consecutive_failures,
            delay_ms=info.suggested_delay_ms,
        )

    def get_stats(self) -> dict[str, dict[str, object]]:
        now = self._now_ms()
        return {
            domain: {
                "suggested_delay_ms": round(info.suggested_delay_ms),
                "consecutive_failures": info.consecutive_failures,
                "in_cooldown": info.cooldown_until is not None and now < info.cooldown_until,
            }
            for domain, info in self._domains.items()
        }

    def reset(self) -> None:
        self._domains.clear()
        logger.info("rate_limit_detector_reset")


def _retry_after_seconds(headers: Mapping[str, str] | None) -> Optional[int]:
    if not headers:
        return None
    raw = None
    for key, value in headers.items():
        if key.lower() == "retry-after":
            raw = value
            break
    if raw is None:
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None

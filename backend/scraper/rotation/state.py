"""
Rotation bookkeeping: per-source usage and per-(source, sport) stats.

The manager never touches these maps directly; it goes through a SourceStateStore so a
single worker can keep them in memory and several workers can share them in Redis.
"""
from __future__ import annotations

import abc
import asyncio
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel

from shared.models.enums import FailureKind
from shared.utils.logging import get_logger
from shared.utils.redis_manager import (
    ROTATION_POINTER_KEY,
    SOURCE_USAGE_KEY,
    SPORT_STATS_KEY,
    RedisManager,
)

logger = get_logger(__name__)


class SourceUsage(BaseModel):
    last_used_at: Optional[datetime] = None
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    last_failure_kind: Optional[FailureKind] = None


class SportSourceStats(BaseModel):
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None


UsageMutation = Callable[[SourceUsage], None]
StatsMutation = Callable[[SportSourceStats], None]


class SourceStateStore(abc.ABC):
    """Storage for rotation state. ``update_*`` applies a mutation atomically."""

    @abc.abstractmethod
    async def get_usage(self, source: str) -> SourceUsage: ...

    @abc.abstractmethod
    async def update_usage(self, source: str, mutate: UsageMutation) -> SourceUsage: ...

    @abc.abstractmethod
    async def get_sport_stats(self, source: str, sport: str) -> SportSourceStats: ...

    @abc.abstractmethod
    async def update_sport_stats(self, source: str, sport: str, mutate: StatsMutation) -> SportSourceStats: ...

    @abc.abstractmethod
    async def sport_stats_for(self, source: str) -> dict[str, SportSourceStats]:
        """Every sport with recorded stats for ``source``."""

    @abc.abstractmethod
    async def advance_pointer(self, sport: str) -> int:
        """Return the current rotation position for ``sport`` and move it forward by one."""

    @abc.abstractmethod
    async def reset(self) -> None: ...


class InMemorySourceStateStore(SourceStateStore):
    def __init__(self) -> None:
        self._usage: dict[str, SourceUsage] = {}
        self._sport: dict[tuple[str, str], SportSourceStats] = {}
        self._pointers: dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def get_usage(self, source: str) -> SourceUsage:
        async with self._lock:
            return self._usage.get(source, SourceUsage()).model_copy()

    async def update_usage(self, source: str, mutate: UsageMutation) -> SourceUsage:
        async with self._lock:
            usage = self._usage.setdefault(source, SourceUsage())
            mutate(usage)
            return usage.model_copy()

    async def get_sport_stats(self, source: str, sport: str) -> SportSourceStats:
        async with self._lock:
            return self._sport.get((source, sport), SportSourceStats()).model_copy()

    async def update_sport_stats(self, source: str, sport: str, mutate: StatsMutation) -> SportSourceStats:
        async with self._lock:
            stats = self._sport.setdefault((source, sport), SportSourceStats())
            mutate(stats)
            return stats.model_copy()

    async def sport_stats_for(self, source: str) -> dict[str, SportSourceStats]:
        async with self._lock:
            return {sport: s.model_copy() for (src, sport), s in self._sport.items() if src == source}

    async def advance_pointer(self, sport: str) -> int:
        async with self._lock:
            current = self._pointers.get(sport, 0)
            self._pointers[sport] = current + 1
            return current

    async def reset(self) -> None:
        async with self._lock:
            self._usage.clear()
            self._sport.clear()
            self._pointers.clear()


class RedisSourceStateStore(SourceStateStore):
    """JSON document per key; read-modify-write goes through WATCH/MULTI."""

    def __init__(self, redis: RedisManager) -> None:
        self._redis = redis

    async def get_usage(self, source: str) -> SourceUsage:
        raw = await self._redis.get_value(SOURCE_USAGE_KEY.format(source=source))
        return SourceUsage.model_validate_json(raw) if raw else SourceUsage()

    async def update_usage(self, source: str, mutate: UsageMutation) -> SourceUsage:
        def apply(raw: Optional[str]) -> str:
            usage = SourceUsage.model_validate_json(raw) if raw else SourceUsage()
            mutate(usage)
            return usage.model_dump_json()

        stored = await self._redis.atomic_update(SOURCE_USAGE_KEY.format(source=source), apply)
        return SourceUsage.model_validate_json(stored)

    async def get_sport_stats(self, source: str, sport: str) -> SportSourceStats:
        raw = await self._redis.get_value(SPORT_STATS_KEY.format(source=source, sport=sport))
        return SportSourceStats.model_validate_json(raw) if raw else SportSourceStats()

    async def update_sport_stats(self, source: str, sport: str, mutate: StatsMutation) -> SportSourceStats:
        def apply(raw: Optional[str]) -> str:
            stats = SportSourceStats.model_validate_json(raw) if raw else SportSourceStats()
            mutate(stats)
            return stats.model_dump_json()

        stored = await self._redis.atomic_update(SPORT_STATS_KEY.format(source=source, sport=sport), apply)
        return SportSourceStats.model_validate_json(stored)

    async def sport_stats_for(self, source: str) -> dict[str, SportSourceStats]:
        prefix = SPORT_STATS_KEY.format(source=source, sport="")
        out: dict[str, SportSourceStats] = {}
        for key in await self._redis.scan_keys(prefix + "*"):
            raw = await self._redis.get_value(key)
            if raw:
                out[key[len(prefix):]] = SportSourceStats.model_validate_json(raw)
        return out

    async def advance_pointer(self, sport: str) -> int:
        return await self._redis.incr(ROTATION_POINTER_KEY.format(sport=sport)) - 1

    async def reset(self) -> None:
        keys = await self._redis.scan_keys("rotation:*")
        if keys:
            await self._redis.client.delete(*keys)
        logger.info("rotation_state_reset", keys=len(keys))

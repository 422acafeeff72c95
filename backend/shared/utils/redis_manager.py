"""
Redis connection manager for the scraper services.
Provides the async connection pool, the settlement stream, and atomic JSON state helpers.
"""
from __future__ import annotations

from typing import Callable, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.exceptions import WatchError

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
SOURCE_USAGE_KEY = "rotation:usage:{source}"
SPORT_STATS_KEY = "rotation:sport:{source}:{sport}"
ROTATION_POINTER_KEY = "rotation:pointer:{sport}"

ATOMIC_UPDATE_RETRIES = 8


class RedisManager:
    """Manages async Redis connection pool and provides typed helpers."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = None

    async def connect(self) -> None:
        """Initialize the connection pool."""
        self._pool = aioredis.from_url(
            self._settings.redis_url_str,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        await self._pool.ping()
        logger.info("redis_connected", url=self._settings.redis_url_str)

    async def disconnect(self) -> None:
        """Graceful shutdown."""
        if self._pool:
            await self._pool.aclose()
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    # ── JSON state ──────────────────────────────────────────────────────
    async def get_value(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def scan_keys(self, pattern: str) -> list[str]:
        return [k async for k in self.client.scan_iter(match=pattern, count=200)]

    async def atomic_update(
        self, key: str, mutate: Callable[[Optional[str]], str]
    ) -> str:
        """
        Read-modify-write a string key under WATCH/MULTI.

        ``mutate`` receives the current value (or None) and returns the new one.
        Retries when another writer touches the key between read and commit.
        """
        async with self.client.pipeline(transaction=True) as pipe:
            for attempt in range(1, ATOMIC_UPDATE_RETRIES + 1):
                try:
                    await pipe.watch(key)
                    current = await pipe.get(key)
                    new_value = mutate(current)
                    pipe.multi()
                    pipe.set(key, new_value)
                    await pipe.execute()
                    return new_value
                except WatchError:
                    logger.debug("redis_watch_conflict", key=key, attempt=attempt)
                    continue
        raise RuntimeError(f"atomic_update on {key} lost {ATOMIC_UPDATE_RETRIES} races")

    async def incr(self, key: str) -> int:
        return int(await self.client.incr(key))

    # ── Settlement stream ───────────────────────────────────────────────
    async def append_stream(self, stream: str, payload: str, max_len: int) -> str:
        """Append a message to a stream. Returns the stream entry ID."""
        return await self.client.xadd(stream, {"data": payload}, maxlen=max_len, approximate=True)

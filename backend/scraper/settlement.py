"""
Settlement hand-off.

Publishes ``{"type": "event_finished", "eventId": ..., "result": {...}}`` to a Redis
stream. Delivery is at-least-once; consumers dedupe by eventId.
"""
from __future__ import annotations

import uuid

from shared.config import Settings, get_settings
from shared.models.domain import SettlementMessage, SettlementResult
from shared.utils.logging import get_logger
from shared.utils.metrics import SETTLEMENT_MESSAGES
from shared.utils.redis_manager import RedisManager

logger = get_logger(__name__)


class SettlementDispatcher:
    def __init__(self, redis: RedisManager, settings: Settings | None = None) -> None:
        self._redis = redis
        s = settings or get_settings()
        self._stream = s.settlement_stream
        self._max_len = s.settlement_stream_maxlen

    @property
    def stream(self) -> str:
        return self._stream

    async def dispatch(self, event_id: uuid.UUID, home_score: int, away_score: int) -> str:
        """Append one settlement message; returns the stream entry id."""
        message = SettlementMessage(
            event_id=event_id,
            result=SettlementResult(home_score=home_score, away_score=away_score),
        )
        entry_id = await self._redis.append_stream(self._stream, message.to_wire(), self._max_len)
        SETTLEMENT_MESSAGES.inc()
        logger.info(
            "settlement_dispatched",
            event_id=str(event_id),
            score=f"{home_score}-{away_score}",
            entry_id=entry_id,
        )
        return entry_id

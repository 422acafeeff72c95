"""Alert writer shared by the run tracker, the reconciler and the health checks."""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import AlertRecord, utcnow
from shared.models.enums import AlertSeverity, AlertType
from shared.utils.logging import get_logger
from shared.utils.metrics import ALERTS_RAISED

from scraper.reconciliation.store import CatalogStore

logger = get_logger(__name__)

_LOG_LEVEL = {
    AlertSeverity.INFO: "info",
    AlertSeverity.WARNING: "warning",
    AlertSeverity.ERROR: "error",
    AlertSeverity.CRITICAL: "critical",
}


class AlertManager:
    def __init__(
        self,
        store: CatalogStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._dedup_window = timedelta(seconds=(settings or get_settings()).alert_dedup_window_s)
        self._clock = clock

    async def raise_alert(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        metadata: dict[str, Any] | None = None,
        run_id: uuid.UUID | None = None,
        dedup: bool = False,
    ) -> Optional[AlertRecord]:
        """
        Append an alert to the audit trail.

        With ``dedup`` set, nothing is written when an alert of the same type (and the
        same ``metadata["source"]``, if given) was raised within the dedup window.
        """
        metadata = dict(metadata or {})
        now = self._clock()
        if dedup and await self._store.recent_alert_exists(
            alert_type, now - self._dedup_window, metadata.get("source")
        ):
            logger.debug("alert_deduplicated", alert_type=alert_type.value, source=metadata.get("source"))
            return None

        alert = AlertRecord(
            run_id=run_id,
            alert_type=alert_type,
            severity=severity,
            message=message,
            metadata=metadata,
            created_at=now,
        )
        await self._store.create_alert(alert)
        ALERTS_RAISED.labels(alert_type=alert_type.value, severity=severity.value).inc()
        getattr(logger, _LOG_LEVEL[severity])(
            "alert_raised", alert_type=alert_type.value, message=message, **metadata
        )
        return alert

"""
In-memory alert store.

Suitable for tests and single-process deployments. Writes are serialized by
an asyncio lock and guarded by a compare-and-swap on ``FraudAlert.version``.
"""

import asyncio
from typing import Optional

import structlog

from attendance_integrity.repositories.provider import AlertNotFoundError, AlertVersionConflictError
from attendance_integrity.schemas.fraud import FraudAlert

logger = structlog.get_logger(__name__)


class InMemoryAlertRepository:
    """Alert store keyed by alert id."""

    def __init__(self) -> None:
        self._alerts: dict[str, FraudAlert] = {}
        self._lock = asyncio.Lock()

    async def get(self, alert_id: str) -> Optional[FraudAlert]:
        return self._alerts.get(alert_id)

    async def add(self, alert: FraudAlert) -> FraudAlert:
        async with self._lock:
            existing = self._alerts.get(alert.id)
            if existing is not None:
                raise AlertVersionConflictError(alert.id, 0, existing.version)
            self._alerts[alert.id] = alert
        return alert

    async def replace(self, alert: FraudAlert, expected_version: int) -> FraudAlert:
        """Store ``alert`` only if the stored version still equals ``expected_version``."""
        async with self._lock:
            current = self._alerts.get(alert.id)
            if current is None:
                raise AlertNotFoundError(alert.id)
            if current.version != expected_version:
                logger.warning(
                    "alert_version_conflict",
                    alert_id=alert.id,
                    expected_version=expected_version,
                    actual_version=current.version,
                )
                raise AlertVersionConflictError(alert.id, expected_version, current.version)
            self._alerts[alert.id] = alert
        return alert

    async def list_by_session(self, session_id: str) -> list[FraudAlert]:
        return sorted(
            (a for a in self._alerts.values() if a.session_id == session_id),
            key=lambda a: a.created_at,
        )

    async def clear(self) -> None:
        async with self._lock:
            self._alerts.clear()

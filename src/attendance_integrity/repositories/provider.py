"""
Repository provider for dependency injection.

The engine never reads or writes storage itself. Alerts are persisted by the
caller through a store that serializes concurrent transitions on the same
alert by comparing versions.

Usage:
    from attendance_integrity.repositories.provider import get_alert_repository

    # In FastAPI dependencies:
    async def some_endpoint(
        alert_repo: AlertRepositoryProtocol = Depends(get_alert_repository),
    ):
        alert = await alert_repo.get(alert_id)
"""

from functools import lru_cache
from typing import Optional, Protocol, runtime_checkable

from attendance_integrity.schemas.fraud import FraudAlert
from attendance_integrity.services.alert_lifecycle import IntegrityError


class AlertNotFoundError(IntegrityError):
    """Raised when an alert id is unknown to the store."""

    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Alert {alert_id} not found")


class AlertVersionConflictError(IntegrityError):
    """Raised when a write is based on a stale alert version."""

    def __init__(self, alert_id: str, expected_version: int, actual_version: int):
        self.alert_id = alert_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Alert {alert_id} is at version {actual_version}, expected {expected_version}"
        )


# =============================================================================
# Repository Protocols (Interfaces)
# =============================================================================


@runtime_checkable
class AlertRepositoryProtocol(Protocol):
    """Protocol defining alert repository operations."""

    async def get(self, alert_id: str) -> Optional[FraudAlert]: ...
    async def add(self, alert: FraudAlert) -> FraudAlert: ...
    async def replace(self, alert: FraudAlert, expected_version: int) -> FraudAlert: ...
    async def list_by_session(self, session_id: str) -> list[FraudAlert]: ...


# =============================================================================
# Repository Factory Functions
# =============================================================================


@lru_cache
def get_alert_repository() -> AlertRepositoryProtocol:
    """Get the process-wide alert repository."""
    from attendance_integrity.repositories.memory import InMemoryAlertRepository

    return InMemoryAlertRepository()

"""
Repository layer for alert persistence.
"""

from attendance_integrity.repositories.memory import InMemoryAlertRepository
from attendance_integrity.repositories.provider import (
    AlertNotFoundError,
    AlertRepositoryProtocol,
    AlertVersionConflictError,
    get_alert_repository,
)

__all__ = [
    "AlertRepositoryProtocol",
    "AlertNotFoundError",
    "AlertVersionConflictError",
    "InMemoryAlertRepository",
    "get_alert_repository",
]

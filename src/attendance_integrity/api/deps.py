"""
Shared dependencies for API endpoints.
"""

from functools import lru_cache

from attendance_integrity.repositories.provider import get_alert_repository
from attendance_integrity.services.integrity_engine import IntegrityEngine

__all__ = ["get_alert_repository", "get_integrity_engine"]


@lru_cache
def get_integrity_engine() -> IntegrityEngine:
    """Get the process-wide engine. It holds configuration only."""
    return IntegrityEngine()

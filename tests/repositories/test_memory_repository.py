"""
Tests for the in-memory alert repository.
"""

import asyncio
import os

import pytest

os.environ.setdefault("APP_ENV", "test")

from attendance_integrity.repositories import AlertRepositoryProtocol
from attendance_integrity.repositories.memory import InMemoryAlertRepository
from attendance_integrity.repositories.provider import AlertNotFoundError, AlertVersionConflictError
from attendance_integrity.schemas.fraud import AlertSeverity, AlertType, FraudAlert, LocationEvidence
from attendance_integrity.services.alert_lifecycle import assign_investigator, create_alert, dismiss
from factories import shifted


def new_alert(session_id: str = "session-1", minutes: float = 0) -> FraudAlert:
    return create_alert(
        AlertType.LOCATION_SPOOFING,
        AlertSeverity.MEDIUM,
        "Suspicious location pattern detected",
        LocationEvidence(),
        "student-1",
        session_id,
        now=shifted(minutes=minutes),
    )


@pytest.mark.unit
class TestInMemoryAlertRepository:
    """Tests for storage and compare-and-swap."""

    def test_satisfies_protocol(self, alert_repo: InMemoryAlertRepository):
        assert isinstance(alert_repo, AlertRepositoryProtocol)

    async def test_add_and_get(self, alert_repo: InMemoryAlertRepository):
        alert = new_alert()
        await alert_repo.add(alert)

        assert await alert_repo.get(alert.id) == alert
        assert await alert_repo.get("missing") is None

    async def test_add_twice_conflicts(self, alert_repo: InMemoryAlertRepository):
        alert = new_alert()
        await alert_repo.add(alert)

        with pytest.raises(AlertVersionConflictError):
            await alert_repo.add(alert)

    async def test_replace_with_current_version(self, alert_repo: InMemoryAlertRepository):
        alert = new_alert()
        await alert_repo.add(alert)

        updated = await alert_repo.replace(assign_investigator(alert, "reviewer-a"), expected_version=1)

        assert (await alert_repo.get(alert.id)).version == 2
        assert updated.version == 2

    async def test_stale_replace_is_rejected(self, alert_repo: InMemoryAlertRepository):
        """Test that two writers starting from the same version cannot both succeed."""
        alert = new_alert()
        await alert_repo.add(alert)

        await alert_repo.replace(assign_investigator(alert, "reviewer-a"), expected_version=1)
        with pytest.raises(AlertVersionConflictError) as exc_info:
            await alert_repo.replace(dismiss(alert), expected_version=1)

        assert exc_info.value.actual_version == 2
        assert (await alert_repo.get(alert.id)).investigation.assignee == "reviewer-a"

    async def test_concurrent_writers(self, alert_repo: InMemoryAlertRepository):
        alert = new_alert()
        await alert_repo.add(alert)

        results = await asyncio.gather(
            alert_repo.replace(assign_investigator(alert, "reviewer-a"), expected_version=1),
            alert_repo.replace(dismiss(alert), expected_version=1),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, FraudAlert)) == 1
        assert sum(1 for r in results if isinstance(r, AlertVersionConflictError)) == 1

    async def test_replace_unknown_alert(self, alert_repo: InMemoryAlertRepository):
        with pytest.raises(AlertNotFoundError):
            await alert_repo.replace(new_alert(), expected_version=1)

    async def test_list_by_session(self, alert_repo: InMemoryAlertRepository):
        later = new_alert(minutes=5)
        earlier = new_alert(minutes=1)
        other = new_alert(session_id="session-2")
        for alert in (later, earlier, other):
            await alert_repo.add(alert)

        listed = await alert_repo.list_by_session("session-1")

        assert [a.id for a in listed] == [earlier.id, later.id]

    async def test_clear(self, alert_repo: InMemoryAlertRepository):
        await alert_repo.add(new_alert())
        await alert_repo.clear()

        assert await alert_repo.list_by_session("session-1") == []

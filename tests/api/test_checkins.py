"""
Tests for check-in validation endpoints.
"""

import base64
import os
from typing import Any, Callable, Optional

import pytest
from httpx import AsyncClient

os.environ.setdefault("APP_ENV", "test")

from attendance_integrity.repositories.memory import InMemoryAlertRepository
from attendance_integrity.schemas.context import CheckInContext, SessionConfig
from factories import make_sample

ContextFactory = Callable[..., CheckInContext]
URL = "/api/v1/checkins/validate"


def request_body(context: CheckInContext, session: Optional[SessionConfig]) -> dict[str, Any]:
    return {
        "context": context.model_dump(mode="json"),
        "session": session.model_dump(mode="json") if session is not None else None,
    }


@pytest.mark.unit
class TestValidateCheckIn:
    """Tests for POST /checkins/validate."""

    async def test_clean_checkin(
        self,
        client: AsyncClient,
        make_context: ContextFactory,
        session_config: SessionConfig,
        alert_repo: InMemoryAlertRepository,
    ) -> None:
        """Test that a clean attempt is valid and stores nothing."""
        response = await client.post(URL, json=request_body(make_context(), session_config))

        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is True
        assert data["fraud_score"]["risk_level"] == "low"
        assert data["alerts"] == []
        assert data["device_record"]["user_id"] == "student-1"
        assert await alert_repo.list_by_session("session-1") == []

    async def test_alerts_are_stored(
        self,
        client: AsyncClient,
        make_context: ContextFactory,
        session_config: SessionConfig,
        alert_repo: InMemoryAlertRepository,
    ) -> None:
        """Test that raised alerts can be fetched afterwards."""
        context = make_context(location=make_sample(40.7200, -74.0000))
        response = await client.post(URL, json=request_body(context, session_config))

        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is False
        assert [a["type"] for a in data["alerts"]] == ["location_spoofing"]

        stored = await alert_repo.list_by_session("session-1")
        assert [a.id for a in stored] == [data["alerts"][0]["id"]]

    async def test_missing_session_config(
        self, client: AsyncClient, make_context: ContextFactory
    ) -> None:
        response = await client.post(URL, json=request_body(make_context(), None))

        assert response.status_code == 422
        assert "No session configuration" in response.json()["detail"]

    async def test_malformed_context(self, client: AsyncClient, session_config: SessionConfig) -> None:
        response = await client.post(
            URL, json={"context": {"student_id": "student-1"}, "session": session_config.model_dump(mode="json")}
        )

        assert response.status_code == 422

    async def test_photo_as_base64(
        self,
        client: AsyncClient,
        make_context: ContextFactory,
        session_config: SessionConfig,
        jpeg_bytes: bytes,
    ) -> None:
        body = request_body(make_context(), session_config)
        body["context"]["photo"] = {
            "data": base64.b64encode(jpeg_bytes).decode(),
            "declared_format": "jpeg",
        }

        response = await client.post(URL, json=body)

        assert response.status_code == 200
        data = response.json()
        assert data["photo"]["is_valid"] is True
        assert len(data["photo_hash"]) == 16

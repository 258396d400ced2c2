"""
Pytest fixtures for attendance integrity tests.
"""

import os
from collections.abc import AsyncGenerator
from typing import Any, Callable

import pytest
from httpx import ASGITransport, AsyncClient

# Set test environment variables before importing app
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("FINGERPRINT_SALT", "test-fingerprint-salt")

from attendance_integrity.repositories.memory import InMemoryAlertRepository  # noqa: E402
from attendance_integrity.schemas.context import CheckInContext, SessionConfig  # noqa: E402
from attendance_integrity.schemas.location import GeofenceConfig  # noqa: E402
from attendance_integrity.schemas.photo import PhotoSubmission  # noqa: E402
from attendance_integrity.schemas.time_window import TimeWindow  # noqa: E402
from factories import (  # noqa: E402
    BASE_TIME,
    CENTER_LAT,
    CENTER_LON,
    WINDOW_END,
    WINDOW_START,
    encode_image,
    make_sample,
    make_signals,
    noise_image,
)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest.fixture
def geofence() -> GeofenceConfig:
    return GeofenceConfig(center_latitude=CENTER_LAT, center_longitude=CENTER_LON, radius=50, name="Room 101")


@pytest.fixture
def time_window() -> TimeWindow:
    return TimeWindow(valid_from=WINDOW_START, valid_to=WINDOW_END, grace_period_minutes=5)


@pytest.fixture
def session_config(geofence: GeofenceConfig, time_window: TimeWindow) -> SessionConfig:
    return SessionConfig(session_id="session-1", geofence=geofence, time_window=time_window)


@pytest.fixture
def jpeg_bytes() -> bytes:
    return encode_image(noise_image(), "JPEG", quality=90)


@pytest.fixture
def photo(jpeg_bytes: bytes) -> PhotoSubmission:
    return PhotoSubmission(data=jpeg_bytes, declared_format="jpeg", width=640, height=480)


@pytest.fixture
def make_context() -> Callable[..., CheckInContext]:
    """Factory for a clean, valid check-in context."""

    def _make(**overrides: Any) -> CheckInContext:
        data: dict[str, Any] = {
            "student_id": "student-1",
            "session_id": "session-1",
            "client_timestamp": BASE_TIME,
            "location": make_sample(),
            "device": make_signals(),
        }
        data.update(overrides)
        return CheckInContext(**data)

    return _make


@pytest.fixture
def alert_repo() -> InMemoryAlertRepository:
    return InMemoryAlertRepository()


@pytest.fixture
async def app(alert_repo: InMemoryAlertRepository) -> AsyncGenerator[Any, None]:
    """FastAPI application with a fresh alert store per test."""
    from attendance_integrity.api.deps import get_alert_repository
    from attendance_integrity.main import app as fastapi_app

    fastapi_app.dependency_overrides[get_alert_repository] = lambda: alert_repo
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: Any) -> AsyncGenerator[AsyncClient, None]:
    """Async test client over the ASGI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

"""
Fraud alert investigation endpoints.

Every transition is computed by the lifecycle functions and written back
with a version check, so two reviewers acting on the same alert cannot
both succeed.
"""

from typing import Annotated, Callable, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from attendance_integrity.api.deps import get_alert_repository
from attendance_integrity.repositories.provider import (
    AlertNotFoundError,
    AlertRepositoryProtocol,
    AlertVersionConflictError,
)
from attendance_integrity.schemas.fraud import FraudAlert
from attendance_integrity.services import alert_lifecycle
from attendance_integrity.services.alert_lifecycle import AlertTransitionError

logger = structlog.get_logger(__name__)

router = APIRouter()

AlertRepo = Annotated[AlertRepositoryProtocol, Depends(get_alert_repository)]


# =============================================================================
# Schemas
# =============================================================================


class VersionedRequest(BaseModel):
    """Optional optimistic-concurrency guard supplied by the client."""

    expected_version: Optional[int] = Field(None, ge=1)


class AssignRequest(VersionedRequest):
    assignee: str = Field(..., min_length=1)


class NoteRequest(VersionedRequest):
    author: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)


class ResolveRequest(VersionedRequest):
    resolution: str = Field(..., min_length=1)


class DismissRequest(VersionedRequest):
    reason: Optional[str] = None


# =============================================================================
# Helper Functions
# =============================================================================


async def _load(alert_repo: AlertRepositoryProtocol, alert_id: str) -> FraudAlert:
    alert = await alert_repo.get(alert_id)
    if alert is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Alert {alert_id} not found")
    return alert


async def _transition(
    alert_repo: AlertRepositoryProtocol,
    alert_id: str,
    expected_version: Optional[int],
    operation: Callable[[FraudAlert], FraudAlert],
) -> FraudAlert:
    alert = await _load(alert_repo, alert_id)
    base_version = expected_version if expected_version is not None else alert.version
    if base_version != alert.version:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Alert {alert_id} is at version {alert.version}, expected {base_version}",
        )

    try:
        updated = operation(alert)
    except AlertTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    if updated is alert:
        return alert

    try:
        return await alert_repo.replace(updated, expected_version=base_version)
    except AlertVersionConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except AlertNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


# =============================================================================
# Endpoints
# =============================================================================


@router.get("", response_model=list[FraudAlert])
async def list_alerts(
    alert_repo: AlertRepo,
    session_id: Annotated[str, Query(min_length=1)],
) -> list[FraudAlert]:
    """List alerts raised for a session, oldest first."""
    return await alert_repo.list_by_session(session_id)


@router.get("/{alert_id}", response_model=FraudAlert)
async def get_alert(alert_id: str, alert_repo: AlertRepo) -> FraudAlert:
    return await _load(alert_repo, alert_id)


@router.post("/{alert_id}/assign", response_model=FraudAlert)
async def assign_alert(alert_id: str, request: AssignRequest, alert_repo: AlertRepo) -> FraudAlert:
    """Assign an investigator. Moves a pending alert into investigation."""
    return await _transition(
        alert_repo,
        alert_id,
        request.expected_version,
        lambda alert: alert_lifecycle.assign_investigator(alert, request.assignee),
    )


@router.post("/{alert_id}/notes", response_model=FraudAlert)
async def add_alert_note(alert_id: str, request: NoteRequest, alert_repo: AlertRepo) -> FraudAlert:
    return await _transition(
        alert_repo,
        alert_id,
        request.expected_version,
        lambda alert: alert_lifecycle.add_note(alert, request.author, request.text),
    )


@router.post("/{alert_id}/resolve", response_model=FraudAlert)
async def resolve_alert(alert_id: str, request: ResolveRequest, alert_repo: AlertRepo) -> FraudAlert:
    return await _transition(
        alert_repo,
        alert_id,
        request.expected_version,
        lambda alert: alert_lifecycle.resolve(alert, request.resolution),
    )


@router.post("/{alert_id}/dismiss", response_model=FraudAlert)
async def dismiss_alert(alert_id: str, request: DismissRequest, alert_repo: AlertRepo) -> FraudAlert:
    return await _transition(
        alert_repo,
        alert_id,
        request.expected_version,
        lambda alert: alert_lifecycle.dismiss(alert, request.reason),
    )

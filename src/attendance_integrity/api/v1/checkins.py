"""
Check-in validation endpoints.
"""

from typing import Annotated, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from attendance_integrity.api.deps import get_alert_repository, get_integrity_engine
from attendance_integrity.repositories.provider import AlertRepositoryProtocol
from attendance_integrity.schemas.context import CheckInContext, SecurityValidationResult, SessionConfig
from attendance_integrity.services.integrity_engine import IntegrityEngine, MissingSessionConfigError

logger = structlog.get_logger(__name__)

router = APIRouter()


class CheckInValidationRequest(BaseModel):
    """A check-in attempt together with its session configuration."""

    context: CheckInContext
    session: Optional[SessionConfig] = None


@router.post("/validate", response_model=SecurityValidationResult)
async def validate_checkin(
    request: CheckInValidationRequest,
    engine: Annotated[IntegrityEngine, Depends(get_integrity_engine)],
    alert_repo: Annotated[AlertRepositoryProtocol, Depends(get_alert_repository)],
) -> SecurityValidationResult:
    """
    Validate a check-in attempt.

    Alerts raised for the attempt are stored so they can be investigated
    through the alert endpoints. Persisting the device record and scored
    attempt is left to the caller.
    """
    try:
        result = engine.validate(request.context, request.session)
    except MissingSessionConfigError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e

    for alert in result.alerts:
        await alert_repo.add(alert)

    return result

"""
API v1 router aggregating all endpoints.
"""

from fastapi import APIRouter

from attendance_integrity.api.v1.alerts import router as alerts_router
from attendance_integrity.api.v1.checkins import router as checkins_router

router = APIRouter()

router.include_router(checkins_router, prefix="/checkins", tags=["Check-ins"])
router.include_router(alerts_router, prefix="/alerts", tags=["Fraud Alerts"])

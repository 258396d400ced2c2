"""
Security analytics schemas.
"""

from enum import Enum

from pydantic import BaseModel, Field

from attendance_integrity.schemas.common import UTCDateTime
from attendance_integrity.schemas.fraud import AlertType


class Trend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class AlertTypeCount(BaseModel):
    type: AlertType
    count: int


class SecurityMetrics(BaseModel):
    """Counters over a reporting period."""

    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    fraud_detected: int = 0
    average_fraud_score: float = 0.0
    top_alert_types: list[AlertTypeCount] = Field(default_factory=list)
    device_changes: int = 0
    location_violations: int = 0
    time_violations: int = 0
    photo_violations: int = 0


class SecurityTrends(BaseModel):
    """First half of the period compared with the second half."""

    fraud_trend: Trend = Trend.STABLE
    risk_trend: Trend = Trend.STABLE


class SecurityReport(BaseModel):
    """Period report with trends and recommendations."""

    period_start: UTCDateTime
    period_end: UTCDateTime
    metrics: SecurityMetrics
    trends: SecurityTrends
    recommendations: list[str] = Field(default_factory=list)

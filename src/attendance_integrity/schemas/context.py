"""
Check-in context and aggregate result schemas.

The caller assembles a CheckInContext per attempt, including any history it
wants considered; the engine reads nothing else.
"""

from typing import Optional

from pydantic import BaseModel, Field

from attendance_integrity.schemas.common import UTCDateTime
from attendance_integrity.schemas.device import DeviceRecord, DeviceValidationResult, RawDeviceSignals
from attendance_integrity.schemas.fraud import FraudAlert, FraudScore, RiskFactor, ScoredAttempt
from attendance_integrity.schemas.location import GeofenceConfig, LocationSample, LocationValidationResult
from attendance_integrity.schemas.photo import PhotoSubmission, PhotoVerificationResult
from attendance_integrity.schemas.time_window import TimeValidationResult, TimeWindow


class SecurityPolicy(BaseModel):
    """Per-session policy. Unset overrides fall back to settings."""

    require_location: bool = True
    require_photo: bool = False
    require_device_check: bool = True
    max_devices_per_user: Optional[int] = Field(None, ge=1)
    grace_period_minutes: Optional[int] = Field(None, ge=0)
    risk_weights: Optional[dict[RiskFactor, float]] = None
    alert_score_threshold: Optional[float] = Field(None, ge=0, le=100)


class SessionConfig(BaseModel):
    """Session configuration supplied alongside every attempt."""

    session_id: str
    geofence: Optional[GeofenceConfig] = None
    time_window: TimeWindow
    policy: SecurityPolicy = Field(default_factory=SecurityPolicy)


class CheckInContext(BaseModel):
    """Everything known about one check-in attempt."""

    student_id: str
    session_id: str
    client_timestamp: UTCDateTime
    received_at: Optional[UTCDateTime] = Field(
        None, description="Server receipt time, used for drift checks when present"
    )
    client_timezone: Optional[str] = None
    ip_address: Optional[str] = None

    location: Optional[LocationSample] = None
    device: Optional[RawDeviceSignals] = None
    photo: Optional[PhotoSubmission] = None

    recent_attempts: list[ScoredAttempt] = Field(default_factory=list)
    device_history: list[DeviceRecord] = Field(default_factory=list)
    location_history: list[LocationSample] = Field(default_factory=list)
    prior_photo_hashes: list[str] = Field(default_factory=list)


class SecurityValidationResult(BaseModel):
    """Aggregate verdict for one attempt."""

    is_valid: bool
    fraud_score: FraudScore
    location: Optional[LocationValidationResult] = None
    device: Optional[DeviceValidationResult] = None
    time: TimeValidationResult
    photo: Optional[PhotoVerificationResult] = None
    alerts: list[FraudAlert] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    # Records for the caller to persist
    device_record: Optional[DeviceRecord] = None
    scored_attempt: ScoredAttempt
    photo_hash: Optional[str] = None

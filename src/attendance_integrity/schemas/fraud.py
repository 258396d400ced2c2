"""
Fraud scoring and alert schemas.

Alert evidence is a closed union discriminated by ``kind`` so every alert
type carries a payload of a known shape.
"""

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from attendance_integrity.schemas.common import UTCDateTime


class RiskFactor(str, Enum):
    """Factors fused into the overall fraud score."""

    LOCATION = "location"
    DEVICE = "device"
    TIME = "time"
    BEHAVIOR = "behavior"
    PHOTO = "photo"


class RiskLevel(str, Enum):
    """Risk level classification."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(str, Enum):
    LOCATION_SPOOFING = "location_spoofing"
    TIME_MANIPULATION = "time_manipulation"
    DEVICE_SHARING = "device_sharing"
    MULTIPLE_DEVICES = "multiple_devices"
    SUSPICIOUS_PATTERN = "suspicious_pattern"
    QR_SHARING = "qr_sharing"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    """Investigation lifecycle states."""

    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class PatternType(str, Enum):
    """Cross-attempt patterns."""

    RAPID_ATTEMPTS = "rapid_attempts"
    COORDINATED_DEVICE = "coordinated_device"
    COORDINATED_IP = "coordinated_ip"


# =============================================================================
# Scoring
# =============================================================================


class FraudSignal(BaseModel):
    """One validator's partial verdict on a [0, 1] riskiness scale."""

    factor: RiskFactor
    score: float = 0.0
    available: bool = Field(True, description="False when the input for this factor was absent")
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @field_validator("score")
    @classmethod
    def clamp_score(cls, v: float) -> float:
        if v != v:  # NaN
            return 1.0
        return max(0.0, min(1.0, v))

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


class FraudScore(BaseModel):
    """Aggregate of all fraud signals."""

    overall: float = Field(..., ge=0, le=100)
    factor_scores: dict[RiskFactor, float] = Field(default_factory=dict)
    risk_level: RiskLevel
    contributing_factors: list[RiskFactor] = Field(default_factory=list)
    confidence: float = Field(1.0, ge=0, le=1)


class ScoredAttempt(BaseModel):
    """A past check-in attempt as seen by the cross-attempt detectors."""

    student_id: str
    session_id: str
    timestamp: UTCDateTime
    overall_score: float = Field(..., ge=0, le=100)
    device_id: Optional[str] = None
    ip_address: Optional[str] = None


class PatternDetection(BaseModel):
    """A detected cross-attempt pattern."""

    pattern: PatternType
    confidence: float = Field(..., ge=0, le=1)
    description: str
    attempt_count: int = 0
    student_ids: list[str] = Field(default_factory=list)
    shared_key: Optional[str] = Field(None, description="Device id or IP address shared across students")


class BehaviorDeviation(BaseModel):
    """How far an attempt departs from the student's own attempt history."""

    score: float = Field(..., ge=0, le=1)
    hour_deviation: float = Field(0.0, ge=0, le=1)
    frequency_deviation: float = Field(0.0, ge=0, le=1)
    baseline_attempts: int = 0
    reasons: list[str] = Field(default_factory=list)


# =============================================================================
# Alert evidence
# =============================================================================


class LocationEvidence(BaseModel):
    kind: Literal["location"] = "location"
    distance: float = 0.0
    accuracy: float = 0.0
    spoofing_score: float = 0.0
    reasons: list[str] = Field(default_factory=list)


class TimeEvidence(BaseModel):
    kind: Literal["time"] = "time"
    time_difference_ms: float = 0.0
    manipulation_confidence: float = 0.0
    reasons: list[str] = Field(default_factory=list)


class DeviceEvidence(BaseModel):
    kind: Literal["device"] = "device"
    fingerprint_id: Optional[str] = None
    is_new_device: bool = False
    limit_reached: bool = False
    similarity: float = 0.0
    switches: int = 0
    unique_devices: int = 0
    reasons: list[str] = Field(default_factory=list)


class PhotoEvidence(BaseModel):
    kind: Literal["photo"] = "photo"
    quality: float = 0.0
    manipulation_score: float = 0.0
    reasons: list[str] = Field(default_factory=list)


class PatternEvidence(BaseModel):
    kind: Literal["pattern"] = "pattern"
    pattern: PatternType
    attempt_count: int = 0
    student_ids: list[str] = Field(default_factory=list)
    shared_key: Optional[str] = None


AlertEvidence = Annotated[
    Union[LocationEvidence, TimeEvidence, DeviceEvidence, PhotoEvidence, PatternEvidence],
    Field(discriminator="kind"),
]


# =============================================================================
# Alerts
# =============================================================================


class InvestigationNote(BaseModel):
    model_config = ConfigDict(frozen=True)

    author: str
    text: str
    created_at: UTCDateTime


class Investigation(BaseModel):
    """Review metadata attached once an alert leaves PENDING."""

    model_config = ConfigDict(frozen=True)

    assignee: Optional[str] = None
    notes: tuple[InvestigationNote, ...] = ()
    resolution: Optional[str] = None
    dismissal_reason: Optional[str] = None
    assigned_at: Optional[UTCDateTime] = None
    resolved_at: Optional[UTCDateTime] = None
    dismissed_at: Optional[UTCDateTime] = None


class FraudAlert(BaseModel):
    """
    A flag for human review.

    Instances are immutable; lifecycle functions in
    ``services.alert_lifecycle`` return the next version.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    type: AlertType
    severity: AlertSeverity
    description: str
    evidence: AlertEvidence
    status: AlertStatus = AlertStatus.PENDING
    student_id: str
    session_id: str
    risk_score: float = Field(0.0, ge=0, le=100)
    created_at: UTCDateTime
    updated_at: UTCDateTime
    version: int = Field(1, ge=1)
    investigation: Optional[Investigation] = None

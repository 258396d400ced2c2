"""
Pydantic schemas for request/response validation.
"""

from attendance_integrity.schemas.analytics import SecurityMetrics, SecurityReport, SecurityTrends, Trend
from attendance_integrity.schemas.context import (
    CheckInContext,
    SecurityPolicy,
    SecurityValidationResult,
    SessionConfig,
)
from attendance_integrity.schemas.device import (
    DeviceFingerprint,
    DeviceRecord,
    DeviceSharingResult,
    DeviceValidationResult,
    HardwareInfo,
    RawDeviceSignals,
    ScreenInfo,
)
from attendance_integrity.schemas.fraud import (
    AlertSeverity,
    AlertStatus,
    AlertType,
    FraudAlert,
    FraudScore,
    FraudSignal,
    Investigation,
    InvestigationNote,
    PatternDetection,
    PatternType,
    RiskFactor,
    RiskLevel,
    ScoredAttempt,
)
from attendance_integrity.schemas.location import (
    GeofenceConfig,
    LocationHistoryResult,
    LocationSample,
    LocationValidationResult,
)
from attendance_integrity.schemas.photo import (
    PhotoSubmission,
    PhotoVerificationResult,
    PhotoVerificationSummary,
)
from attendance_integrity.schemas.time_window import (
    GracePeriodResult,
    TimeManipulationResult,
    TimeValidationResult,
    TimeValidationSummary,
    TimeWindow,
    TimeWindowState,
    TimeWindowStatus,
)

__all__ = [
    # Location
    "LocationSample",
    "GeofenceConfig",
    "LocationValidationResult",
    "LocationHistoryResult",
    # Device
    "ScreenInfo",
    "HardwareInfo",
    "RawDeviceSignals",
    "DeviceFingerprint",
    "DeviceRecord",
    "DeviceValidationResult",
    "DeviceSharingResult",
    # Time
    "TimeWindow",
    "TimeWindowStatus",
    "TimeWindowState",
    "TimeValidationResult",
    "TimeManipulationResult",
    "GracePeriodResult",
    "TimeValidationSummary",
    # Photo
    "PhotoSubmission",
    "PhotoVerificationResult",
    "PhotoVerificationSummary",
    # Fraud
    "RiskFactor",
    "RiskLevel",
    "AlertType",
    "AlertSeverity",
    "AlertStatus",
    "PatternType",
    "FraudSignal",
    "FraudScore",
    "ScoredAttempt",
    "PatternDetection",
    "Investigation",
    "InvestigationNote",
    "FraudAlert",
    # Context
    "SecurityPolicy",
    "SessionConfig",
    "CheckInContext",
    "SecurityValidationResult",
    # Analytics
    "Trend",
    "SecurityMetrics",
    "SecurityTrends",
    "SecurityReport",
]

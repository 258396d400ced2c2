"""
Time window schemas.
"""

from datetime import timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from attendance_integrity.schemas.common import UTCDateTime


class TimeWindowStatus(str, Enum):
    """Position of an instant relative to a session window."""

    BEFORE = "before"
    DURING = "during"
    AFTER = "after"  # Past valid_to but within grace
    EXPIRED = "expired"


class TimeWindow(BaseModel):
    """A session's valid check-in interval."""

    valid_from: UTCDateTime
    valid_to: UTCDateTime
    grace_period_minutes: int = Field(5, ge=0)
    timezone: str = "UTC"

    @model_validator(mode="after")
    def validate_ordering(self) -> "TimeWindow":
        if self.valid_from > self.valid_to:
            raise ValueError("valid_from must not be after valid_to")
        return self


class TimeValidationResult(BaseModel):
    """Outcome of validating a client timestamp against a window."""

    is_valid: bool
    is_within_window: bool
    is_within_grace_period: bool
    server_time: UTCDateTime
    client_time: UTCDateTime
    time_difference_ms: float = 0.0
    timezone: str = "UTC"
    status: TimeWindowStatus
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class TimeManipulationResult(BaseModel):
    """Clock manipulation heuristics outcome."""

    is_manipulated: bool
    confidence: float = Field(0.0, ge=0, le=1)
    reasons: list[str] = Field(default_factory=list)


class GracePeriodResult(BaseModel):
    """Lateness of an attempt relative to the session end."""

    is_valid: bool
    is_late: bool
    minutes_late: int = 0
    within_grace_period: bool


class TimeWindowState(BaseModel):
    """Four-state classification with remaining/elapsed durations."""

    status: TimeWindowStatus
    time_until_start: Optional[timedelta] = None
    time_until_end: Optional[timedelta] = None
    time_since_end: Optional[timedelta] = None


class TimeValidationSummary(BaseModel):
    """Aggregate statistics over many time validations."""

    total_attempts: int = 0
    valid_attempts: int = 0
    invalid_attempts: int = 0
    grace_period_attempts: int = 0
    average_time_difference_ms: float = 0.0
    timezone_issues: int = 0
    manipulation_attempts: int = 0

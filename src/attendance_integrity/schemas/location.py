"""
Location-related Pydantic schemas.

Coordinates are deliberately not range-checked at construction: an
out-of-range sample is a validation *error* reported by the GeoValidator,
not an exception.
"""

from typing import Optional

from pydantic import BaseModel, Field

from attendance_integrity.schemas.common import UTCDateTime


class LocationSample(BaseModel):
    """One GPS reading captured by the client."""

    latitude: float
    longitude: float
    accuracy: float = Field(..., description="Horizontal accuracy radius in meters")
    altitude: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    timestamp: UTCDateTime


class GeofenceConfig(BaseModel):
    """Circular area a check-in location must fall into."""

    center_latitude: float = Field(..., ge=-90, le=90)
    center_longitude: float = Field(..., ge=-180, le=180)
    radius: float = Field(..., ge=0, description="Radius in meters")
    name: Optional[str] = None


class LocationValidationResult(BaseModel):
    """Outcome of validating one sample against a geofence."""

    is_valid: bool
    distance: float = Field(0.0, description="Distance from geofence center in meters")
    is_within_radius: bool = False
    accuracy: float = 0.0
    confidence: float = Field(0.0, ge=0, le=1)
    spoofing_score: float = 0.0
    spoofing_reasons: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class SpoofingAssessment(BaseModel):
    """Spoofing heuristics outcome for a single sample."""

    is_spoofed: bool
    score: float
    reasons: list[str] = Field(default_factory=list)


class LocationHistoryResult(BaseModel):
    """Consistency of a sequence of samples."""

    is_valid: bool
    average_accuracy: float = 0.0
    consistency_score: float = 0.0
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

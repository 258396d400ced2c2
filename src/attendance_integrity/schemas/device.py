"""
Device fingerprint schemas.

Raw signals are captured and serialized by the client; the engine never
touches a browser or device API itself.
"""

from typing import Optional

from pydantic import BaseModel, Field

from attendance_integrity.schemas.common import UTCDateTime


class ScreenInfo(BaseModel):
    """Screen characteristics."""

    width: int = Field(0, ge=0)
    height: int = Field(0, ge=0)
    color_depth: int = Field(0, ge=0)


class HardwareInfo(BaseModel):
    """Hardware characteristics."""

    cores: int = Field(0, ge=0)
    memory: float = Field(0, ge=0, description="Device memory in GB")
    device_pixel_ratio: float = Field(1.0, ge=0)


class RawDeviceSignals(BaseModel):
    """Device signals as collected by the capture component."""

    user_agent: str
    screen: ScreenInfo = Field(default_factory=ScreenInfo)
    timezone: str = "UTC"
    language: str = ""
    platform: str = ""
    hardware: HardwareInfo = Field(default_factory=HardwareInfo)

    # Per-channel signals used for similarity, not for the id
    canvas: str = ""
    webgl: str = ""
    audio: str = ""
    fonts: list[str] = Field(default_factory=list)
    plugins: list[str] = Field(default_factory=list)

    ip_address: Optional[str] = None
    timestamp: UTCDateTime


class DeviceFingerprint(RawDeviceSignals):
    """Raw signals plus the derived, deterministic fingerprint id."""

    id: str


class DeviceRecord(BaseModel):
    """A fingerprint bound to a user, persisted across sessions by the caller."""

    user_id: str
    fingerprint: DeviceFingerprint
    first_seen: UTCDateTime
    last_seen: UTCDateTime


class DeviceValidationResult(BaseModel):
    """Outcome of comparing a fingerprint against a user's known devices."""

    is_valid: bool
    is_new_device: bool
    confidence: float = Field(..., ge=0, le=1)
    risk_score: float = Field(..., ge=0, le=1)
    similarity: float = 0.0
    matched_fingerprint_id: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class DeviceSharingResult(BaseModel):
    """Device switching analysis over a time-ordered set of fingerprints."""

    is_sharing: bool
    confidence: float
    switches: int = 0
    unique_devices: int = 0
    patterns: list[str] = Field(default_factory=list)

"""
Engine configuration using Pydantic Settings.

All thresholds, weights and limits are loaded from environment variables
(or a local .env file) so they can be tuned per deployment without code changes.
"""

from functools import lru_cache
from typing import Any

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Integrity engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Attendance Integrity"
    APP_ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Location validation
    LOCATION_MAX_ACCURACY_M: float = 100.0  # Worse than this is rejected
    LOCATION_MIN_ACCURACY_M: float = 10.0  # Better than this is "too good to be true"
    LOCATION_MAX_SPEED_MPS: float = 100.0  # ~360 km/h
    LOCATION_CONSISTENT_SPEED_MPS: float = 50.0  # ~180 km/h
    LOCATION_SPOOFING_THRESHOLD: float = 0.8
    LOCATION_MAX_ALTITUDE_JUMP_M: float = 1000.0

    # Device fingerprinting
    FINGERPRINT_SALT: str = "attendance-integrity-fingerprint"
    DEVICE_MATCH_THRESHOLD: float = 0.85
    DEVICE_CHANGE_THRESHOLD: float = 0.3
    DEVICE_MAX_PER_USER: int = 3
    DEVICE_ACTIVE_WINDOW_DAYS: int = 90
    DEVICE_SHARING_WINDOW_HOURS: int = 24
    DEVICE_MAX_UA_LENGTH: int = 512
    DEVICE_MAX_LIST_ITEMS: int = 256

    # Time validation
    SESSION_TIMEZONE: str = "UTC"
    GRACE_PERIOD_MINUTES: int = 5
    SERVER_TIME_OFFSET_MS: int = 0  # Calibrated out-of-band
    MAX_TIME_DRIFT_MS: int = 300_000  # 5 minutes
    UNUSUAL_HOUR_START: int = 6
    UNUSUAL_HOUR_END: int = 22

    # Photo verification
    PHOTO_MIN_QUALITY: float = 0.6
    PHOTO_MAX_FILE_SIZE: int = 5 * 1024 * 1024  # 5MB
    PHOTO_ALLOWED_FORMATS: str = "jpeg,jpg,png,webp"
    PHOTO_REQUIRE_FACE_DETECTION: bool = False
    PHOTO_MIN_WIDTH: int = 320
    PHOTO_MIN_HEIGHT: int = 240
    PHOTO_MAX_WIDTH: int = 4096
    PHOTO_MAX_HEIGHT: int = 4096
    PHOTO_MAX_PIXELS: int = 4096 * 4096  # Checked from the header before decoding
    PHOTO_ANALYSIS_MAX_SIDE: int = 512
    PHOTO_PATTERN_SAMPLE_BYTES: int = 65_536

    # Risk aggregation (weights must sum to 1.0)
    RISK_WEIGHT_LOCATION: float = 0.25
    RISK_WEIGHT_DEVICE: float = 0.25
    RISK_WEIGHT_TIME: float = 0.20
    RISK_WEIGHT_BEHAVIOR: float = 0.15
    RISK_WEIGHT_PHOTO: float = 0.15

    # Risk level thresholds (0-100)
    RISK_THRESHOLD_MEDIUM: float = 30.0
    RISK_THRESHOLD_HIGH: float = 50.0
    RISK_THRESHOLD_CRITICAL: float = 70.0
    ALERT_SCORE_THRESHOLD: float = 50.0

    # Cross-attempt pattern detection
    RAPID_ATTEMPT_WINDOW_SECONDS: int = 60
    RAPID_ATTEMPT_MIN_COUNT: int = 3
    COORDINATION_WINDOW_MINUTES: int = 90
    COORDINATED_DEVICE_MIN_STUDENTS: int = 2
    COORDINATED_IP_MIN_STUDENTS: int = 5
    BEHAVIOR_MIN_HISTORY: int = 5  # Prior attempts needed before deviation is scored

    @field_validator(
        "DEVICE_MATCH_THRESHOLD",
        "DEVICE_CHANGE_THRESHOLD",
        "LOCATION_SPOOFING_THRESHOLD",
        "PHOTO_MIN_QUALITY",
    )
    @classmethod
    def validate_unit_interval(cls, v: float, info: Any) -> float:
        """Validate that ratio settings stay within [0, 1]."""
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"{info.field_name} must be between 0 and 1")
        return v

    @model_validator(mode="after")
    def validate_risk_configuration(self) -> "Settings":
        """Validate weights and threshold ordering."""
        total = sum(self.risk_weights.values())
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Risk weights must sum to 1.0 (got {total:.3f})")
        if not self.RISK_THRESHOLD_MEDIUM < self.RISK_THRESHOLD_HIGH < self.RISK_THRESHOLD_CRITICAL:
            raise ValueError("Risk thresholds must be strictly increasing")
        return self

    @property
    def risk_weights(self) -> dict[str, float]:
        """Get risk weights keyed by factor name."""
        return {
            "location": self.RISK_WEIGHT_LOCATION,
            "device": self.RISK_WEIGHT_DEVICE,
            "time": self.RISK_WEIGHT_TIME,
            "behavior": self.RISK_WEIGHT_BEHAVIOR,
            "photo": self.RISK_WEIGHT_PHOTO,
        }

    @property
    def photo_allowed_formats_list(self) -> list[str]:
        """Get allowed photo formats as a list."""
        return [fmt.strip().lower() for fmt in self.PHOTO_ALLOWED_FORMATS.split(",") if fmt.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()

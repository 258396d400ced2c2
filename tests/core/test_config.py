"""
Tests for engine settings.
"""

import os

import pytest
from pydantic import ValidationError

os.environ.setdefault("APP_ENV", "test")

from attendance_integrity.core.config import Settings, get_settings


@pytest.mark.unit
class TestSettings:
    """Tests for defaults and validation."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.GRACE_PERIOD_MINUTES == 5
        assert settings.MAX_TIME_DRIFT_MS == 300_000
        assert settings.DEVICE_MAX_PER_USER == 3
        assert settings.ALERT_SCORE_THRESHOLD == 50.0

    def test_risk_weights_sum_to_one(self):
        weights = Settings(_env_file=None).risk_weights

        assert set(weights) == {"location", "device", "time", "behavior", "photo"}
        assert sum(weights.values()) == pytest.approx(1.0)

    def test_unbalanced_weights_are_rejected(self):
        with pytest.raises(ValidationError, match="Risk weights must sum to 1.0"):
            Settings(_env_file=None, RISK_WEIGHT_LOCATION=0.5)

    def test_rebalanced_weights_are_accepted(self):
        settings = Settings(_env_file=None, RISK_WEIGHT_LOCATION=0.5, RISK_WEIGHT_DEVICE=0.0)

        assert settings.risk_weights["location"] == 0.5

    def test_threshold_ordering(self):
        with pytest.raises(ValidationError, match="strictly increasing"):
            Settings(_env_file=None, RISK_THRESHOLD_HIGH=80.0)

    @pytest.mark.parametrize("field", ["DEVICE_MATCH_THRESHOLD", "PHOTO_MIN_QUALITY"])
    def test_unit_interval(self, field: str):
        with pytest.raises(ValidationError, match="between 0 and 1"):
            Settings(_env_file=None, **{field: 1.5})

    def test_photo_allowed_formats_list(self):
        settings = Settings(_env_file=None, PHOTO_ALLOWED_FORMATS=" JPEG, png,,webp ")

        assert settings.photo_allowed_formats_list == ["jpeg", "png", "webp"]

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

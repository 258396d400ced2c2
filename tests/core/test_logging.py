"""
Tests for logging setup.
"""

import os

import pytest
import structlog

os.environ.setdefault("APP_ENV", "test")

from attendance_integrity.core.logging import setup_logging


@pytest.mark.unit
class TestSetupLogging:
    def test_configures_structlog(self):
        setup_logging("DEBUG")

        assert structlog.is_configured()
        structlog.get_logger("tests").info("logging_configured", check=True)

    def test_unknown_level_falls_back(self):
        """Test that an unrecognized level name does not raise."""
        setup_logging("NOT_A_LEVEL")

        assert structlog.is_configured()

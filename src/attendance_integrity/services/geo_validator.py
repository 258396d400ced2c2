"""
Location / Geofence Validation Service.

Validates a GPS sample against a session geofence and the student's recent
samples:
1. Coordinate sanity - Range and NaN checks
2. Accuracy bounds - Too coarse is rejected, too precise is suspicious
3. Geofence membership - Haversine distance from the fence center
4. Spoofing heuristics - Impossible travel, replayed coordinates, altitude jumps
"""

import math
from typing import Optional, Sequence

import structlog

from attendance_integrity.core.config import settings
from attendance_integrity.schemas.location import (
    GeofenceConfig,
    LocationHistoryResult,
    LocationSample,
    LocationValidationResult,
    SpoofingAssessment,
)

logger = structlog.get_logger(__name__)

EARTH_RADIUS_M = 6_371_000.0

# Spoofing heuristic weights
SPEED_SPOOF_WEIGHT = 0.3
PRECISION_SPOOF_WEIGHT = 0.2
REPEAT_SPOOF_WEIGHT = 0.3
ALTITUDE_SPOOF_WEIGHT = 0.2

SUSPICIOUS_ACCURACY_M = 1.0
IDENTICAL_COORDINATE_EPSILON = 1e-6
IDENTICAL_COORDINATE_MIN_COUNT = 3
MIN_CONSISTENCY_SCORE = 0.7


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points in meters.

    Symmetric, and zero for identical points.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # Rounding can push a marginally above 1 for antipodal points
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def sample_distance(a: LocationSample, b: LocationSample) -> float:
    return haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def timezone_from_coordinates(latitude: float, longitude: float) -> str:
    """
    Approximate a UTC offset label from longitude bands of 15 degrees.

    This is not a timezone database lookup; political boundaries are ignored.
    """
    offset = int(round(longitude / 15.0))
    offset = max(-12, min(14, offset))
    sign = "+" if offset >= 0 else "-"
    return f"UTC{sign}{abs(offset):02d}:00"


def _coordinates_valid(latitude: float, longitude: float) -> bool:
    if math.isnan(latitude) or math.isnan(longitude):
        return False
    return -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0


class GeoValidator:
    """
    Validates location samples against geofences.

    Stateless: every call depends only on its arguments and the
    thresholds captured at construction.
    """

    def __init__(
        self,
        max_accuracy: Optional[float] = None,
        min_accuracy: Optional[float] = None,
        max_speed: Optional[float] = None,
        consistent_speed: Optional[float] = None,
        spoofing_threshold: Optional[float] = None,
        max_altitude_jump: Optional[float] = None,
    ):
        self.max_accuracy = max_accuracy if max_accuracy is not None else settings.LOCATION_MAX_ACCURACY_M
        self.min_accuracy = min_accuracy if min_accuracy is not None else settings.LOCATION_MIN_ACCURACY_M
        self.max_speed = max_speed if max_speed is not None else settings.LOCATION_MAX_SPEED_MPS
        self.consistent_speed = (
            consistent_speed if consistent_speed is not None else settings.LOCATION_CONSISTENT_SPEED_MPS
        )
        self.spoofing_threshold = (
            spoofing_threshold if spoofing_threshold is not None else settings.LOCATION_SPOOFING_THRESHOLD
        )
        self.max_altitude_jump = (
            max_altitude_jump if max_altitude_jump is not None else settings.LOCATION_MAX_ALTITUDE_JUMP_M
        )

    # =========================================================================
    # Single sample
    # =========================================================================

    def validate_location(
        self,
        sample: LocationSample,
        geofence: GeofenceConfig,
        history: Sequence[LocationSample] = (),
    ) -> LocationValidationResult:
        """
        Validate a sample against a geofence.

        Args:
            sample: Current GPS reading
            geofence: Session geofence
            history: Prior samples for the same student, oldest first

        Returns:
            LocationValidationResult; is_valid is True only when no errors were recorded
        """
        warnings: list[str] = []
        errors: list[str] = []

        if not _coordinates_valid(sample.latitude, sample.longitude):
            errors.append("Invalid coordinates")
            logger.warning(
                "location_invalid_coordinates",
                latitude=sample.latitude,
                longitude=sample.longitude,
            )
            return LocationValidationResult(
                is_valid=False,
                distance=0.0,
                is_within_radius=False,
                accuracy=sample.accuracy,
                confidence=0.0,
                errors=errors,
            )

        if math.isnan(sample.accuracy) or sample.accuracy < 0:
            errors.append("Invalid location accuracy")
        elif sample.accuracy > self.max_accuracy:
            errors.append(
                f"Location accuracy too low: {sample.accuracy:.0f}m (max {self.max_accuracy:.0f}m)"
            )
        elif sample.accuracy < self.min_accuracy:
            warnings.append("Location accuracy suspiciously high (too good to be true)")

        distance = haversine_distance(
            sample.latitude,
            sample.longitude,
            geofence.center_latitude,
            geofence.center_longitude,
        )
        is_within_radius = distance <= geofence.radius
        if not is_within_radius:
            errors.append(
                f"Outside geofence: {distance:.0f}m from center (radius {geofence.radius:.0f}m)"
            )

        spoofing = self.detect_spoofing(sample, history)
        if spoofing.reasons:
            warnings.append(f"Possible location spoofing: {', '.join(spoofing.reasons)}")
        if spoofing.is_spoofed:
            errors.append("Location spoofing detected")

        confidence = self._confidence(sample.accuracy, distance, geofence.radius, spoofing.score)

        result = LocationValidationResult(
            is_valid=not errors,
            distance=distance,
            is_within_radius=is_within_radius,
            accuracy=sample.accuracy,
            confidence=confidence,
            spoofing_score=spoofing.score,
            spoofing_reasons=spoofing.reasons,
            warnings=warnings,
            errors=errors,
        )

        log = logger.warning if errors else logger.info
        log(
            "location_validated",
            is_valid=result.is_valid,
            distance_m=round(distance, 1),
            radius_m=geofence.radius,
            confidence=round(confidence, 3),
            spoofing_score=spoofing.score,
            spoofing_reasons=spoofing.reasons,
        )
        return result

    def is_within_geofence(self, sample: LocationSample, geofence: GeofenceConfig) -> bool:
        """Pure membership check using the same distance computation."""
        if not _coordinates_valid(sample.latitude, sample.longitude):
            return False
        distance = haversine_distance(
            sample.latitude,
            sample.longitude,
            geofence.center_latitude,
            geofence.center_longitude,
        )
        return distance <= geofence.radius

    def detect_spoofing(
        self, sample: LocationSample, history: Sequence[LocationSample] = ()
    ) -> SpoofingAssessment:
        """
        Score spoofing indicators for a sample.

        Each indicator adds a fixed weight and a reason. The total is
        compared against the configured spoofing threshold.
        """
        score = 0.0
        reasons: list[str] = []

        previous = history[-1] if history else None

        if previous is not None and _coordinates_valid(previous.latitude, previous.longitude):
            elapsed = (sample.timestamp - previous.timestamp).total_seconds()
            distance = sample_distance(sample, previous)
            if elapsed > 0:
                speed = distance / elapsed
                if speed > self.max_speed:
                    score += SPEED_SPOOF_WEIGHT
                    reasons.append(f"Impossible travel speed: {speed:.0f} m/s")
            elif distance > 0:
                # Moved with no elapsed time
                score += SPEED_SPOOF_WEIGHT
                reasons.append("Location changed with no elapsed time")

        if 0 <= sample.accuracy < SUSPICIOUS_ACCURACY_M:
            score += PRECISION_SPOOF_WEIGHT
            reasons.append("Suspiciously precise accuracy")

        identical = sum(
            1
            for prior in history
            if abs(prior.latitude - sample.latitude) < IDENTICAL_COORDINATE_EPSILON
            and abs(prior.longitude - sample.longitude) < IDENTICAL_COORDINATE_EPSILON
        )
        if identical >= IDENTICAL_COORDINATE_MIN_COUNT:
            score += REPEAT_SPOOF_WEIGHT
            reasons.append("Repeated identical coordinates")

        if (
            previous is not None
            and previous.altitude is not None
            and sample.altitude is not None
            and abs(sample.altitude - previous.altitude) > self.max_altitude_jump
        ):
            score += ALTITUDE_SPOOF_WEIGHT
            reasons.append("Sudden altitude change")

        score = round(min(score, 1.0), 6)
        return SpoofingAssessment(
            is_spoofed=score >= self.spoofing_threshold,
            score=score,
            reasons=reasons,
        )

    def _confidence(self, accuracy: float, distance: float, radius: float, spoofing_score: float) -> float:
        if math.isnan(accuracy) or accuracy < 0:
            accuracy_penalty = 0.5
        else:
            accuracy_penalty = min(accuracy / self.max_accuracy, 0.5)

        if radius > 0:
            distance_penalty = min(distance / radius, 0.3)
        else:
            distance_penalty = 0.3 if distance > 0 else 0.0

        confidence = 1.0 - accuracy_penalty - distance_penalty - spoofing_score * 0.5
        return max(0.0, min(1.0, confidence))

    # =========================================================================
    # History
    # =========================================================================

    def validate_location_history(
        self, samples: Sequence[LocationSample], geofence: GeofenceConfig
    ) -> LocationHistoryResult:
        """
        Check a sequence of samples for plausible movement.

        Consistency is the share of consecutive transitions whose implied
        speed stays within the consistent-speed limit.
        """
        if not samples:
            return LocationHistoryResult(is_valid=False, errors=["No location history provided"])

        warnings: list[str] = []
        errors: list[str] = []

        average_accuracy = sum(s.accuracy for s in samples) / len(samples)

        ordered = sorted(samples, key=lambda s: s.timestamp)
        transitions = 0
        consistent = 0
        for prev, curr in zip(ordered, ordered[1:]):
            transitions += 1
            distance = sample_distance(prev, curr)
            elapsed = (curr.timestamp - prev.timestamp).total_seconds()
            if elapsed > 0:
                if distance / elapsed <= self.consistent_speed:
                    consistent += 1
            elif distance == 0:
                consistent += 1

        consistency_score = consistent / transitions if transitions else 1.0

        if consistency_score < MIN_CONSISTENCY_SCORE:
            warnings.append(f"Inconsistent location history (score {consistency_score:.2f})")
        if average_accuracy > self.max_accuracy:
            errors.append(f"Average location accuracy too low: {average_accuracy:.0f}m")

        outside = sum(1 for s in samples if not self.is_within_geofence(s, geofence))
        if outside:
            warnings.append(f"{outside} of {len(samples)} samples outside geofence")

        return LocationHistoryResult(
            is_valid=not errors,
            average_accuracy=average_accuracy,
            consistency_score=consistency_score,
            warnings=warnings,
            errors=errors,
        )

"""
Attendance Integrity Engine.

Validates one check-in attempt end to end: the four validators run
independently over the caller-supplied context, and the risk aggregator
fuses their results into a score and alerts before returning.

The engine performs no I/O. History comes in on the context; records to
persist (device record, scored attempt, photo hash, alerts) go out on the
result.
"""

from typing import Optional

import structlog

from attendance_integrity.schemas.context import (
    CheckInContext,
    SecurityValidationResult,
    SessionConfig,
)
from attendance_integrity.schemas.device import DeviceRecord, DeviceSharingResult, DeviceValidationResult
from attendance_integrity.schemas.fraud import (
    AlertEvidence,
    DeviceEvidence,
    FraudSignal,
    LocationEvidence,
    PatternDetection,
    PhotoEvidence,
    RiskFactor,
    ScoredAttempt,
    TimeEvidence,
)
from attendance_integrity.schemas.location import LocationValidationResult
from attendance_integrity.schemas.photo import PhotoVerificationResult
from attendance_integrity.schemas.time_window import TimeManipulationResult, TimeValidationResult
from attendance_integrity.services.alert_lifecycle import IntegrityError
from attendance_integrity.services.device_trust import DeviceTrustTracker
from attendance_integrity.services.geo_validator import GeoValidator
from attendance_integrity.services.photo_integrity import PhotoIntegrityChecker
from attendance_integrity.services.risk_aggregator import (
    RiskAggregator,
    behavior_signal,
    device_signal,
    location_signal,
    photo_signal,
    time_signal,
)
from attendance_integrity.services.time_window import TimeWindowValidator

logger = structlog.get_logger(__name__)


class MissingSessionConfigError(IntegrityError):
    """Raised when an attempt is validated without a session configuration."""

    pass


def _missing_signal(factor: RiskFactor, message: str) -> FraudSignal:
    return FraudSignal(factor=factor, score=1.0, available=False, errors=[message])


class IntegrityEngine:
    """
    Orchestrates validators and risk aggregation for check-in attempts.

    Holds validators and configuration only; safe to share across
    concurrent calls.
    """

    def __init__(
        self,
        geo_validator: Optional[GeoValidator] = None,
        device_tracker: Optional[DeviceTrustTracker] = None,
        time_validator: Optional[TimeWindowValidator] = None,
        photo_checker: Optional[PhotoIntegrityChecker] = None,
        aggregator: Optional[RiskAggregator] = None,
    ):
        self.geo_validator = geo_validator or GeoValidator()
        self.device_tracker = device_tracker or DeviceTrustTracker()
        self.time_validator = time_validator or TimeWindowValidator()
        self.photo_checker = photo_checker or PhotoIntegrityChecker()
        self.aggregator = aggregator or RiskAggregator()

    def _aggregator_for(self, session: SessionConfig) -> RiskAggregator:
        policy = session.policy
        if policy.risk_weights is None and policy.alert_score_threshold is None:
            return self.aggregator
        return RiskAggregator(
            weights=policy.risk_weights or self.aggregator.weights,
            medium_threshold=self.aggregator.medium_threshold,
            high_threshold=self.aggregator.high_threshold,
            critical_threshold=self.aggregator.critical_threshold,
            alert_threshold=(
                policy.alert_score_threshold
                if policy.alert_score_threshold is not None
                else self.aggregator.alert_threshold
            ),
        )

    def validate(
        self, context: CheckInContext, session: Optional[SessionConfig]
    ) -> SecurityValidationResult:
        """
        Validate one check-in attempt.

        Raises:
            MissingSessionConfigError: if no session configuration is supplied
        """
        if session is None:
            raise MissingSessionConfigError(f"No session configuration for session {context.session_id}")

        policy = session.policy
        aggregator = self._aggregator_for(session)
        signals: list[FraudSignal] = []
        evidence: dict[RiskFactor, AlertEvidence] = {}
        extra_errors: list[str] = []

        if context.session_id != session.session_id:
            extra_errors.append("Check-in session does not match session configuration")

        # Location
        location_result: Optional[LocationValidationResult] = None
        if context.location is not None and session.geofence is not None:
            location_result = self.geo_validator.validate_location(
                context.location, session.geofence, context.location_history
            )
            signals.append(location_signal(location_result))
            evidence[RiskFactor.LOCATION] = LocationEvidence(
                distance=location_result.distance,
                accuracy=location_result.accuracy,
                spoofing_score=location_result.spoofing_score,
                reasons=location_result.spoofing_reasons or location_result.errors,
            )
        elif policy.require_location:
            if context.location is None:
                message = "Location is required"
            else:
                message = "Session has no geofence configured"
            signals.append(_missing_signal(RiskFactor.LOCATION, message))
        else:
            signals.append(location_signal(None))

        # Device
        device_result: Optional[DeviceValidationResult] = None
        device_record: Optional[DeviceRecord] = None
        sharing: Optional[DeviceSharingResult] = None
        device_id: Optional[str] = None
        if context.device is not None:
            fingerprint = self.device_tracker.generate_fingerprint(context.device)
            device_id = fingerprint.id
            device_result = self.device_tracker.validate_device(
                fingerprint, context.device_history, policy.max_devices_per_user
            )
            matched = next(
                (
                    r
                    for r in context.device_history
                    if r.fingerprint.id == device_result.matched_fingerprint_id
                ),
                None,
            )
            device_record = self.device_tracker.update_device_record(fingerprint, matched, context.student_id)
            sharing = self.device_tracker.detect_device_sharing(
                [r.fingerprint for r in context.device_history] + [fingerprint]
            )
            signals.append(device_signal(device_result))
            evidence[RiskFactor.DEVICE] = DeviceEvidence(
                fingerprint_id=device_id,
                is_new_device=device_result.is_new_device,
                limit_reached=bool(device_result.errors),
                similarity=device_result.similarity,
                switches=sharing.switches,
                unique_devices=sharing.unique_devices,
                reasons=device_result.errors + device_result.warnings + sharing.patterns,
            )
        elif policy.require_device_check:
            signals.append(_missing_signal(RiskFactor.DEVICE, "Device information is required"))
        else:
            signals.append(device_signal(None))

        # Time
        window = session.time_window
        grace = (
            policy.grace_period_minutes
            if policy.grace_period_minutes is not None
            else window.grace_period_minutes
        )
        time_result: TimeValidationResult = self.time_validator.validate_time_window(
            context.client_timestamp,
            window.valid_from,
            window.valid_to,
            grace_period_minutes=grace,
            client_timezone=context.client_timezone,
            session_timezone=window.timezone,
        )
        prior_times = sorted(
            a.timestamp for a in context.recent_attempts if a.student_id == context.student_id
        )
        manipulation: TimeManipulationResult = self.time_validator.detect_time_manipulation(
            context.client_timestamp,
            context.received_at or time_result.server_time,
            prior_times,
        )
        max_drift_ms = self.time_validator.max_drift.total_seconds() * 1000
        signals.append(time_signal(time_result, manipulation, max_drift_ms))
        evidence[RiskFactor.TIME] = TimeEvidence(
            time_difference_ms=time_result.time_difference_ms,
            manipulation_confidence=manipulation.confidence,
            reasons=manipulation.reasons or time_result.errors,
        )

        # Photo
        photo_result: Optional[PhotoVerificationResult] = None
        photo_hash: Optional[str] = None
        if context.photo is not None:
            photo_result = self.photo_checker.validate_photo(context.photo)
            photo_hash = self.photo_checker.generate_photo_hash(context.photo)
            if photo_hash in set(context.prior_photo_hashes):
                photo_result = photo_result.model_copy(
                    update={
                        "is_valid": False,
                        "errors": [*photo_result.errors, "Duplicate photo submission"],
                    }
                )
            signals.append(photo_signal(photo_result))
            evidence[RiskFactor.PHOTO] = PhotoEvidence(
                quality=photo_result.quality,
                manipulation_score=photo_result.manipulation_score,
                reasons=photo_result.errors + photo_result.warnings,
            )
        elif policy.require_photo:
            signals.append(_missing_signal(RiskFactor.PHOTO, "Photo is required"))
        else:
            signals.append(photo_signal(None))

        ip_address = context.ip_address or (context.device.ip_address if context.device else None)

        current = ScoredAttempt(
            student_id=context.student_id,
            session_id=context.session_id,
            timestamp=time_result.server_time,
            overall_score=0.0,
            device_id=device_id,
            ip_address=ip_address,
        )
        deviation = aggregator.detect_behavior_deviation(current, context.recent_attempts)

        # Score without cross-attempt patterns, then again with them
        preliminary = aggregator.aggregate([*signals, behavior_signal((), sharing, deviation)])
        current = current.model_copy(update={"overall_score": preliminary.overall})
        patterns: list[PatternDetection] = []
        rapid = aggregator.detect_rapid_attempts(current, context.recent_attempts)
        if rapid is not None:
            patterns.append(rapid)
        patterns.extend(aggregator.detect_coordinated_use(current, context.recent_attempts))

        signals.append(behavior_signal(patterns, sharing, deviation))
        score = aggregator.aggregate(signals)
        scored_attempt = current.model_copy(update={"overall_score": score.overall})

        alerts = aggregator.generate_alerts(
            score,
            signals,
            student_id=context.student_id,
            session_id=context.session_id,
            patterns=patterns,
            evidence=evidence,
        )

        errors = [*extra_errors, *(e for s in signals for e in s.errors)]
        warnings = [w for s in signals for w in s.warnings]

        result = SecurityValidationResult(
            is_valid=not errors,
            fraud_score=score,
            location=location_result,
            device=device_result,
            time=time_result,
            photo=photo_result,
            alerts=alerts,
            warnings=warnings,
            errors=errors,
            device_record=device_record,
            scored_attempt=scored_attempt,
            photo_hash=photo_hash,
        )

        log = logger.warning if errors or alerts else logger.info
        log(
            "checkin_validated",
            student_id=context.student_id,
            session_id=context.session_id,
            is_valid=result.is_valid,
            overall_score=score.overall,
            risk_level=score.risk_level.value,
            alerts=[a.type.value for a in alerts],
            error_count=len(errors),
        )
        return result

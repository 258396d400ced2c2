"""
Risk Aggregation and Alert Service.

Fuses per-factor signals into one fraud score:
1. Signal building - Each validator result mapped to a [0, 1] riskiness
2. Weighted scoring - Configurable weights, clamped to 0-100
3. Risk classification - LOW/MEDIUM/HIGH/CRITICAL via configured thresholds
4. Cross-attempt patterns - Rapid repeats and coordinated device/IP use
5. Behaviour deviation - Attempt hour and frequency against the student's history
6. Alert generation - Typed by the dominant factor, severity from risk level

Pattern detectors operate on history supplied by the caller; nothing is
stored between calls.
"""

from datetime import timedelta
from typing import Mapping, Optional, Sequence

import structlog

from attendance_integrity.core.config import settings
from attendance_integrity.schemas.device import DeviceSharingResult, DeviceValidationResult
from attendance_integrity.schemas.fraud import (
    AlertEvidence,
    AlertSeverity,
    AlertType,
    BehaviorDeviation,
    DeviceEvidence,
    FraudAlert,
    FraudScore,
    FraudSignal,
    LocationEvidence,
    PatternDetection,
    PatternEvidence,
    PatternType,
    PhotoEvidence,
    RiskFactor,
    RiskLevel,
    ScoredAttempt,
    TimeEvidence,
)
from attendance_integrity.schemas.location import LocationValidationResult
from attendance_integrity.schemas.photo import PhotoVerificationResult
from attendance_integrity.schemas.time_window import TimeManipulationResult, TimeValidationResult
from attendance_integrity.services.alert_lifecycle import create_alert

logger = structlog.get_logger(__name__)

CONTRIBUTING_FACTOR_THRESHOLD = 0.3
GRACE_PERIOD_TIME_RISK = 0.3

# Behaviour deviation weights
BURST_RISK = 0.3
UNUSUAL_HOUR_RISK = 0.2
DEVIATION_WEIGHT = 0.4
DEVIATION_WARNING_THRESHOLD = 0.3

# Factors whose presence drives the score confidence
OPTIONAL_FACTORS = (RiskFactor.LOCATION, RiskFactor.DEVICE, RiskFactor.PHOTO)

SEVERITY_BY_LEVEL = {
    RiskLevel.LOW: AlertSeverity.LOW,
    RiskLevel.MEDIUM: AlertSeverity.MEDIUM,
    RiskLevel.HIGH: AlertSeverity.HIGH,
    RiskLevel.CRITICAL: AlertSeverity.CRITICAL,
}

ALERT_TYPE_BY_PATTERN = {
    PatternType.RAPID_ATTEMPTS: AlertType.SUSPICIOUS_PATTERN,
    PatternType.COORDINATED_DEVICE: AlertType.DEVICE_SHARING,
    PatternType.COORDINATED_IP: AlertType.QR_SHARING,
}

ALERT_DESCRIPTIONS = {
    AlertType.LOCATION_SPOOFING: "Suspicious location pattern detected",
    AlertType.TIME_MANIPULATION: "Clock manipulation or check-in outside the allowed window",
    AlertType.DEVICE_SHARING: "Device sharing detected",
    AlertType.MULTIPLE_DEVICES: "Check-in from an unrecognized device beyond the allowed limit",
    AlertType.SUSPICIOUS_PATTERN: "Suspicious check-in pattern detected",
    AlertType.QR_SHARING: "Multiple students checked in from the same network",
}


# =============================================================================
# Signal builders
# =============================================================================


def location_signal(result: Optional[LocationValidationResult]) -> FraudSignal:
    if result is None:
        return FraudSignal(factor=RiskFactor.LOCATION, score=0.0, available=False)
    return FraudSignal(
        factor=RiskFactor.LOCATION,
        score=1.0 - result.confidence,
        warnings=result.warnings,
        errors=result.errors,
    )


def device_signal(result: Optional[DeviceValidationResult]) -> FraudSignal:
    if result is None:
        return FraudSignal(factor=RiskFactor.DEVICE, score=0.0, available=False)
    return FraudSignal(
        factor=RiskFactor.DEVICE,
        score=1.0 - result.confidence,
        warnings=result.warnings,
        errors=result.errors,
    )


def time_signal(
    result: TimeValidationResult,
    manipulation: Optional[TimeManipulationResult] = None,
    max_drift_ms: Optional[float] = None,
) -> FraudSignal:
    """
    Time riskiness from drift, manipulation heuristics and lateness.

    Hard errors pin the risk to 1.0; grace-period check-ins carry at least
    a fixed lateness risk.
    """
    max_drift_ms = max_drift_ms or settings.MAX_TIME_DRIFT_MS
    drift_risk = min(1.0, result.time_difference_ms / max_drift_ms) if max_drift_ms > 0 else 0.0
    manipulation_risk = manipulation.confidence if manipulation is not None else 0.0
    score = max(drift_risk, manipulation_risk)

    if result.is_within_grace_period and not result.is_within_window:
        score = max(score, GRACE_PERIOD_TIME_RISK)

    warnings = list(result.warnings)
    errors = list(result.errors)
    if manipulation is not None and manipulation.is_manipulated:
        errors.append(f"Time manipulation suspected: {', '.join(manipulation.reasons)}")
    elif manipulation is not None and manipulation.reasons:
        warnings.append(f"Time anomalies: {', '.join(manipulation.reasons)}")

    if errors:
        score = 1.0

    return FraudSignal(factor=RiskFactor.TIME, score=score, warnings=warnings, errors=errors)


def photo_signal(result: Optional[PhotoVerificationResult]) -> FraudSignal:
    if result is None:
        return FraudSignal(factor=RiskFactor.PHOTO, score=0.0, available=False)
    return FraudSignal(
        factor=RiskFactor.PHOTO,
        score=0.5 * (1.0 - result.quality) + 0.5 * result.manipulation_score,
        warnings=result.warnings,
        errors=result.errors,
    )


def behavior_signal(
    patterns: Sequence[PatternDetection] = (),
    sharing: Optional[DeviceSharingResult] = None,
    deviation: Optional[BehaviorDeviation] = None,
) -> FraudSignal:
    """Highest confidence among detected patterns, device sharing and history deviation."""
    scores = [p.confidence for p in patterns]
    warnings = [p.description for p in patterns]
    if sharing is not None:
        scores.append(sharing.confidence)
        if sharing.is_sharing:
            warnings.extend(sharing.patterns)
    if deviation is not None:
        scores.append(deviation.score)
        if deviation.score > DEVIATION_WARNING_THRESHOLD:
            warnings.extend(deviation.reasons)
    return FraudSignal(
        factor=RiskFactor.BEHAVIOR,
        score=max(scores, default=0.0),
        warnings=warnings,
    )


# =============================================================================
# Aggregator
# =============================================================================


class RiskAggregator:
    """Combines fraud signals into a score and raises alerts."""

    def __init__(
        self,
        weights: Optional[Mapping[RiskFactor, float]] = None,
        medium_threshold: Optional[float] = None,
        high_threshold: Optional[float] = None,
        critical_threshold: Optional[float] = None,
        alert_threshold: Optional[float] = None,
    ):
        if weights is None:
            weights = {RiskFactor(name): w for name, w in settings.risk_weights.items()}
        self.weights = {factor: float(weights.get(factor, 0.0)) for factor in RiskFactor}

        self.medium_threshold = (
            medium_threshold if medium_threshold is not None else settings.RISK_THRESHOLD_MEDIUM
        )
        self.high_threshold = high_threshold if high_threshold is not None else settings.RISK_THRESHOLD_HIGH
        self.critical_threshold = (
            critical_threshold if critical_threshold is not None else settings.RISK_THRESHOLD_CRITICAL
        )
        self.alert_threshold = (
            alert_threshold if alert_threshold is not None else settings.ALERT_SCORE_THRESHOLD
        )

        self.rapid_window = timedelta(seconds=settings.RAPID_ATTEMPT_WINDOW_SECONDS)
        self.rapid_min_count = settings.RAPID_ATTEMPT_MIN_COUNT
        self.coordination_window = timedelta(minutes=settings.COORDINATION_WINDOW_MINUTES)
        self.coordinated_device_min = settings.COORDINATED_DEVICE_MIN_STUDENTS
        self.coordinated_ip_min = settings.COORDINATED_IP_MIN_STUDENTS
        self.behavior_min_history = settings.BEHAVIOR_MIN_HISTORY

    def classify(self, overall: float) -> RiskLevel:
        """Risk level derived only from the overall score."""
        if overall >= self.critical_threshold:
            return RiskLevel.CRITICAL
        if overall >= self.high_threshold:
            return RiskLevel.HIGH
        if overall >= self.medium_threshold:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def aggregate(self, signals: Sequence[FraudSignal]) -> FraudScore:
        """Weighted sum of factor risks, on a 0-100 scale."""
        factor_scores = {factor: 0.0 for factor in RiskFactor}
        for signal in signals:
            factor_scores[signal.factor] = max(factor_scores[signal.factor], signal.score)

        weighted = sum(self.weights[factor] * score for factor, score in factor_scores.items())
        overall = max(0.0, min(100.0, round(weighted * 100.0, 6)))

        contributing = [
            factor for factor, score in factor_scores.items() if score > CONTRIBUTING_FACTOR_THRESHOLD
        ]

        available = {s.factor for s in signals if s.available}
        confidence = sum(1 for f in OPTIONAL_FACTORS if f in available) / len(OPTIONAL_FACTORS)

        score = FraudScore(
            overall=overall,
            factor_scores=factor_scores,
            risk_level=self.classify(overall),
            contributing_factors=contributing,
            confidence=confidence,
        )
        logger.info(
            "fraud_score_calculated",
            overall=overall,
            risk_level=score.risk_level.value,
            contributing=[f.value for f in contributing],
        )
        return score

    # =========================================================================
    # Cross-attempt patterns
    # =========================================================================

    def detect_rapid_attempts(
        self, current: ScoredAttempt, recent: Sequence[ScoredAttempt]
    ) -> Optional[PatternDetection]:
        """
        Several attempts by the same student inside a short window whose
        scores strictly rise or are high on average.

        Attempts are keyed by (student_id, timestamp), so a copy of the
        current attempt inside ``recent`` is not counted twice.
        """
        window_start = current.timestamp - self.rapid_window
        by_time = {
            a.timestamp: a
            for a in recent
            if a.student_id == current.student_id and window_start <= a.timestamp <= current.timestamp
        }
        by_time[current.timestamp] = current
        if len(by_time) < self.rapid_min_count:
            return None

        attempts = [by_time[ts] for ts in sorted(by_time)]
        scores = [a.overall_score for a in attempts]
        increasing = all(b > a for a, b in zip(scores, scores[1:]))
        average = sum(scores) / len(scores)
        high = average >= self.high_threshold
        if not (increasing or high):
            return None

        confidence = 0.5 + 0.1 * (len(attempts) - self.rapid_min_count)
        if high:
            confidence += 0.2
        return PatternDetection(
            pattern=PatternType.RAPID_ATTEMPTS,
            confidence=min(1.0, confidence),
            description=f"{len(attempts)} attempts within {int(self.rapid_window.total_seconds())}s",
            attempt_count=len(attempts),
            student_ids=[current.student_id],
        )

    def detect_coordinated_use(
        self, current: ScoredAttempt, recent: Sequence[ScoredAttempt]
    ) -> list[PatternDetection]:
        """Distinct students sharing one device id or IP within a session window."""
        window_start = current.timestamp - self.coordination_window
        in_window = [
            a
            for a in recent
            if a.session_id == current.session_id
            and window_start <= a.timestamp <= current.timestamp
            and (a.student_id, a.timestamp) != (current.student_id, current.timestamp)
        ]

        detections: list[PatternDetection] = []

        if current.device_id:
            students = {a.student_id for a in in_window if a.device_id == current.device_id}
            students.add(current.student_id)
            if len(students) >= self.coordinated_device_min:
                detections.append(
                    PatternDetection(
                        pattern=PatternType.COORDINATED_DEVICE,
                        confidence=min(1.0, 0.6 + 0.2 * (len(students) - self.coordinated_device_min)),
                        description=f"{len(students)} students checked in from one device",
                        attempt_count=sum(1 for a in in_window if a.device_id == current.device_id) + 1,
                        student_ids=sorted(students),
                        shared_key=current.device_id,
                    )
                )

        if current.ip_address:
            students = {a.student_id for a in in_window if a.ip_address == current.ip_address}
            students.add(current.student_id)
            if len(students) >= self.coordinated_ip_min:
                detections.append(
                    PatternDetection(
                        pattern=PatternType.COORDINATED_IP,
                        confidence=min(1.0, 0.5 + 0.1 * (len(students) - self.coordinated_ip_min)),
                        description=f"{len(students)} students checked in from one IP address",
                        attempt_count=sum(1 for a in in_window if a.ip_address == current.ip_address) + 1,
                        student_ids=sorted(students),
                        shared_key=current.ip_address,
                    )
                )

        if detections:
            logger.warning(
                "coordinated_use_detected",
                session_id=current.session_id,
                patterns=[d.pattern.value for d in detections],
            )
        return detections

    def detect_behavior_deviation(
        self, current: ScoredAttempt, recent: Sequence[ScoredAttempt]
    ) -> Optional[BehaviorDeviation]:
        """
        Compare an attempt against the student's earlier attempts.

        Two things are measured: how far the attempt's UTC hour sits from the
        student's average hour, and how the number of attempts in the last
        24 hours compares with the student's average per active day. Returns
        None until the student has ``behavior_min_history`` earlier attempts.
        """
        by_time = {
            a.timestamp: a
            for a in recent
            if a.student_id == current.student_id and a.timestamp < current.timestamp
        }
        history = [by_time[ts] for ts in sorted(by_time)]
        if len(history) < self.behavior_min_history:
            return None

        hours = [a.timestamp.hour for a in history]
        average_hour = sum(hours) / len(hours)
        hour_gap = abs(current.timestamp.hour - average_hour)
        hour_deviation = min(hour_gap, 24 - hour_gap) / 12

        active_days = len({a.timestamp.date() for a in history})
        average_per_day = len(history) / active_days
        day_start = current.timestamp - timedelta(hours=24)
        last_day = sum(1 for a in history if a.timestamp > day_start) + 1
        frequency_deviation = min(1.0, abs(last_day - average_per_day) / average_per_day)

        reasons: list[str] = []
        score = DEVIATION_WEIGHT * (0.5 * hour_deviation + 0.5 * frequency_deviation)
        if last_day > 2 * average_per_day:
            score += BURST_RISK
            reasons.append(
                f"{last_day} attempts in 24 hours against an average of {average_per_day:.1f} per day"
            )
        if current.timestamp.hour not in hours:
            score += UNUSUAL_HOUR_RISK
            reasons.append(f"Attempt at an hour not seen before ({current.timestamp.hour:02d}:00 UTC)")

        deviation = BehaviorDeviation(
            score=round(min(1.0, score), 6),
            hour_deviation=round(hour_deviation, 6),
            frequency_deviation=round(frequency_deviation, 6),
            baseline_attempts=len(history),
            reasons=reasons,
        )
        if reasons:
            logger.info(
                "behavior_deviation_detected",
                student_id=current.student_id,
                score=deviation.score,
                baseline_attempts=len(history),
            )
        return deviation

    # =========================================================================
    # Alerts
    # =========================================================================

    def dominant_factor(
        self, score: FraudScore, signals: Sequence[FraudSignal]
    ) -> Optional[RiskFactor]:
        """
        Factor with the highest weighted risk.

        When the score is below the alert threshold, only factors that
        reported hard errors are considered.
        """
        candidates = list(RiskFactor)
        if score.overall < self.alert_threshold:
            candidates = [s.factor for s in signals if s.has_errors]
        if not candidates:
            return None
        return max(
            candidates,
            key=lambda f: (self.weights[f] * score.factor_scores.get(f, 0.0), -list(RiskFactor).index(f)),
        )

    def generate_alerts(
        self,
        score: FraudScore,
        signals: Sequence[FraudSignal],
        student_id: str,
        session_id: str,
        patterns: Sequence[PatternDetection] = (),
        evidence: Optional[Mapping[RiskFactor, AlertEvidence]] = None,
    ) -> list[FraudAlert]:
        """
        Raise alerts for one attempt.

        A primary alert is raised when the score reaches the alert threshold or
        any signal reported a hard error. Each detected pattern adds its own
        alert unless an alert of that type is already present.
        """
        evidence = evidence or {}
        alerts: list[FraudAlert] = []
        has_errors = any(s.has_errors for s in signals)

        if score.overall >= self.alert_threshold or has_errors:
            factor = self.dominant_factor(score, signals)
            if factor is not None:
                alert_type = self._alert_type(factor, patterns, evidence.get(factor))
                alerts.append(
                    create_alert(
                        alert_type=alert_type,
                        severity=SEVERITY_BY_LEVEL[score.risk_level],
                        description=ALERT_DESCRIPTIONS[alert_type],
                        evidence=evidence.get(factor) or self._default_evidence(factor, patterns),
                        student_id=student_id,
                        session_id=session_id,
                        risk_score=score.overall,
                    )
                )

        for pattern in patterns:
            alert_type = ALERT_TYPE_BY_PATTERN[pattern.pattern]
            if any(a.type == alert_type for a in alerts):
                continue
            level = self.classify(max(score.overall, pattern.confidence * 100.0))
            alerts.append(
                create_alert(
                    alert_type=alert_type,
                    severity=SEVERITY_BY_LEVEL[level],
                    description=pattern.description,
                    evidence=PatternEvidence(
                        pattern=pattern.pattern,
                        attempt_count=pattern.attempt_count,
                        student_ids=pattern.student_ids,
                        shared_key=pattern.shared_key,
                    ),
                    student_id=student_id,
                    session_id=session_id,
                    risk_score=score.overall,
                )
            )

        return alerts

    @staticmethod
    def _alert_type(
        factor: RiskFactor,
        patterns: Sequence[PatternDetection],
        evidence: Optional[AlertEvidence],
    ) -> AlertType:
        if factor == RiskFactor.LOCATION:
            return AlertType.LOCATION_SPOOFING
        if factor == RiskFactor.TIME:
            return AlertType.TIME_MANIPULATION
        if factor == RiskFactor.DEVICE:
            if isinstance(evidence, DeviceEvidence) and (evidence.is_new_device or evidence.limit_reached):
                return AlertType.MULTIPLE_DEVICES
            return AlertType.DEVICE_SHARING
        if factor == RiskFactor.BEHAVIOR:
            if patterns:
                strongest = max(patterns, key=lambda p: p.confidence)
                return ALERT_TYPE_BY_PATTERN[strongest.pattern]
            return AlertType.DEVICE_SHARING
        return AlertType.SUSPICIOUS_PATTERN

    @staticmethod
    def _default_evidence(factor: RiskFactor, patterns: Sequence[PatternDetection]) -> AlertEvidence:
        if factor == RiskFactor.LOCATION:
            return LocationEvidence()
        if factor == RiskFactor.TIME:
            return TimeEvidence()
        if factor == RiskFactor.DEVICE:
            return DeviceEvidence()
        if factor == RiskFactor.PHOTO:
            return PhotoEvidence()
        if patterns:
            strongest = max(patterns, key=lambda p: p.confidence)
            return PatternEvidence(
                pattern=strongest.pattern,
                attempt_count=strongest.attempt_count,
                student_ids=strongest.student_ids,
                shared_key=strongest.shared_key,
            )
        return DeviceEvidence()

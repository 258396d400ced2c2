"""
Tests for Security Analytics.
"""

import os
from datetime import timedelta
from typing import Callable

import pytest

os.environ.setdefault("APP_ENV", "test")

from attendance_integrity.schemas.analytics import SecurityMetrics, SecurityTrends, Trend
from attendance_integrity.schemas.context import CheckInContext, SecurityValidationResult, SessionConfig
from attendance_integrity.schemas.fraud import (
    AlertSeverity,
    AlertType,
    LocationEvidence,
    TimeEvidence,
)
from attendance_integrity.services.alert_lifecycle import create_alert
from attendance_integrity.services.integrity_engine import IntegrityEngine
from attendance_integrity.services.security_analytics import (
    aggregate_metrics,
    build_security_report,
    calculate_trend,
    generate_recommendations,
)
from factories import BASE_TIME, make_sample, shifted

ContextFactory = Callable[..., CheckInContext]


def with_score(result: SecurityValidationResult, overall: float) -> SecurityValidationResult:
    return result.model_copy(update={"fraud_score": result.fraud_score.model_copy(update={"overall": overall})})


@pytest.fixture
def results(session_config: SessionConfig, make_context: ContextFactory) -> dict[str, SecurityValidationResult]:
    engine = IntegrityEngine()
    late = BASE_TIME.replace(hour=10, minute=36, second=12)
    return {
        "clean": engine.validate(make_context(), session_config),
        "late": engine.validate(make_context(client_timestamp=late), session_config),
        "far": engine.validate(make_context(location=make_sample(40.7200, -74.0000)), session_config),
    }


@pytest.mark.unit
class TestCalculateTrend:
    """Tests for half-over-half trend classification."""

    @pytest.mark.parametrize(
        "first,second,expected",
        [
            (0, 5, Trend.INCREASING),
            (10, 10.5, Trend.STABLE),
            (10, 5, Trend.DECREASING),
            (0, 0, Trend.STABLE),
            (0.2, 0.25, Trend.STABLE),
        ],
    )
    def test_trend(self, first: float, second: float, expected: Trend):
        assert calculate_trend(first, second) == expected


@pytest.mark.unit
class TestAggregateMetrics:
    """Tests for metric counters."""

    def test_empty_results(self):
        assert aggregate_metrics([]) == SecurityMetrics()

    def test_counts(self, results: dict[str, SecurityValidationResult]):
        metrics = aggregate_metrics(list(results.values()))

        assert metrics.total_attempts == 3
        assert metrics.successful_attempts == 1
        assert metrics.failed_attempts == 2
        assert metrics.device_changes == 3
        assert metrics.location_violations == 1
        assert metrics.time_violations == 1
        assert metrics.photo_violations == 0
        assert metrics.fraud_detected == 0

    def test_fraud_detected_and_average(self, results: dict[str, SecurityValidationResult]):
        scored = [with_score(results["clean"], 80.0), with_score(results["clean"], 20.0)]
        metrics = aggregate_metrics(scored)

        assert metrics.fraud_detected == 1
        assert metrics.average_fraud_score == pytest.approx(50.0)

    def test_top_alert_types(self, results: dict[str, SecurityValidationResult]):
        alerts = [*results["late"].alerts, *results["far"].alerts, *results["far"].alerts]
        metrics = aggregate_metrics(list(results.values()), alerts)

        assert [(c.type, c.count) for c in metrics.top_alert_types] == [
            (AlertType.LOCATION_SPOOFING, 2),
            (AlertType.TIME_MANIPULATION, 1),
        ]


@pytest.mark.unit
class TestRecommendations:
    """Tests for recommendation rules."""

    def test_violation_rates(self, results: dict[str, SecurityValidationResult]):
        metrics = aggregate_metrics(list(results.values()))
        recommendations = generate_recommendations(metrics, SecurityTrends())

        assert "Frequent device changes detected. Review device management policies." in recommendations
        assert "High location violation rate. Review geofencing settings." in recommendations
        assert "Time violations detected. Review time window settings." in recommendations
        assert not any("photo" in r for r in recommendations)

    def test_quiet_period_has_no_recommendations(self):
        assert generate_recommendations(SecurityMetrics(), SecurityTrends()) == []

    def test_critical_alerts(self):
        alerts = [
            create_alert(
                AlertType.LOCATION_SPOOFING,
                AlertSeverity.CRITICAL,
                "Suspicious location pattern detected",
                LocationEvidence(distance=900.0),
                student_id="student-1",
                session_id="session-1",
                risk_score=85.0,
            ),
            create_alert(
                AlertType.TIME_MANIPULATION,
                AlertSeverity.LOW,
                "Clock manipulation",
                TimeEvidence(),
                student_id="student-2",
                session_id="session-1",
            ),
        ]
        recommendations = generate_recommendations(SecurityMetrics(), SecurityTrends(), alerts)

        assert recommendations == ["1 critical alerts require immediate attention."]

    def test_increasing_trends(self):
        trends = SecurityTrends(fraud_trend=Trend.INCREASING, risk_trend=Trend.INCREASING)

        assert len(generate_recommendations(SecurityMetrics(), trends)) == 2


@pytest.mark.unit
class TestBuildSecurityReport:
    """Tests for period reports."""

    def test_inverted_period_raises(self):
        with pytest.raises(ValueError):
            build_security_report([], [], BASE_TIME, BASE_TIME - timedelta(hours=1))

    def test_report_over_period(self, results: dict[str, SecurityValidationResult]):
        """Test that records outside the period are ignored and trends compare the halves."""
        start, end = shifted(minutes=-120), shifted(minutes=120)
        records = [
            (shifted(minutes=-60), results["clean"]),
            (shifted(minutes=30), with_score(results["clean"], 80.0)),
            (shifted(minutes=60), with_score(results["clean"], 90.0)),
            (shifted(minutes=180), with_score(results["clean"], 95.0)),
        ]
        in_period = create_alert(
            AlertType.LOCATION_SPOOFING,
            AlertSeverity.HIGH,
            "Suspicious location pattern detected",
            LocationEvidence(),
            student_id="student-1",
            session_id="session-1",
            now=BASE_TIME,
        )
        out_of_period = in_period.model_copy(update={"id": "old", "created_at": shifted(minutes=-600)})

        report = build_security_report(records, [in_period, out_of_period], start, end)

        assert report.metrics.total_attempts == 3
        assert report.metrics.fraud_detected == 2
        assert [(c.type, c.count) for c in report.metrics.top_alert_types] == [
            (AlertType.LOCATION_SPOOFING, 1)
        ]
        assert report.trends.fraud_trend == Trend.INCREASING
        assert report.trends.risk_trend == Trend.INCREASING
        assert "Fraud trend is increasing. Consider tightening security measures." in report.recommendations
        assert report.period_start == start

    def test_empty_report(self):
        report = build_security_report([], [], shifted(minutes=-60), BASE_TIME)

        assert report.metrics.total_attempts == 0
        assert report.trends == SecurityTrends()
        assert report.recommendations == []

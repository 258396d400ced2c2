"""
Security analytics over stored validation results.

Reports are computed from records the caller loads from its own store;
nothing is accumulated in memory between calls.
"""

from collections import Counter
from datetime import datetime
from typing import Sequence

import structlog

from attendance_integrity.schemas.analytics import (
    AlertTypeCount,
    SecurityMetrics,
    SecurityReport,
    SecurityTrends,
    Trend,
)
from attendance_integrity.schemas.common import as_utc
from attendance_integrity.schemas.context import SecurityValidationResult
from attendance_integrity.schemas.fraud import AlertSeverity, FraudAlert

logger = structlog.get_logger(__name__)

FRAUD_SCORE_THRESHOLD = 50.0
TREND_CHANGE_PERCENT = 10.0
TOP_ALERT_TYPES = 5

# Recommendation thresholds as a share of all attempts
FRAUD_RATE_LIMIT = 0.10
DEVICE_CHANGE_RATE_LIMIT = 0.20
LOCATION_VIOLATION_RATE_LIMIT = 0.15
TIME_VIOLATION_RATE_LIMIT = 0.10
PHOTO_VIOLATION_RATE_LIMIT = 0.20

ValidationRecord = tuple[datetime, SecurityValidationResult]


def calculate_trend(first: float, second: float) -> Trend:
    """Percent change from ``first`` to ``second``, with a floor of 1 on the base."""
    change = (second - first) / max(first, 1.0) * 100.0
    if change > TREND_CHANGE_PERCENT:
        return Trend.INCREASING
    if change < -TREND_CHANGE_PERCENT:
        return Trend.DECREASING
    return Trend.STABLE


def aggregate_metrics(
    results: Sequence[SecurityValidationResult], alerts: Sequence[FraudAlert] = ()
) -> SecurityMetrics:
    total = len(results)
    if total == 0:
        return SecurityMetrics()

    successful = sum(1 for r in results if r.is_valid)
    type_counts = Counter(a.type for a in alerts)

    return SecurityMetrics(
        total_attempts=total,
        successful_attempts=successful,
        failed_attempts=total - successful,
        fraud_detected=sum(1 for r in results if r.fraud_score.overall > FRAUD_SCORE_THRESHOLD),
        average_fraud_score=sum(r.fraud_score.overall for r in results) / total,
        top_alert_types=[
            AlertTypeCount(type=alert_type, count=count)
            for alert_type, count in type_counts.most_common(TOP_ALERT_TYPES)
        ],
        device_changes=sum(1 for r in results if r.device is not None and r.device.is_new_device),
        location_violations=sum(1 for r in results if r.location is not None and not r.location.is_valid),
        time_violations=sum(1 for r in results if not r.time.is_valid),
        photo_violations=sum(1 for r in results if r.photo is not None and not r.photo.is_valid),
    )


def generate_recommendations(
    metrics: SecurityMetrics, trends: SecurityTrends, alerts: Sequence[FraudAlert] = ()
) -> list[str]:
    recommendations: list[str] = []
    total = metrics.total_attempts

    if total:
        if metrics.fraud_detected / total > FRAUD_RATE_LIMIT:
            recommendations.append(
                "High fraud rate detected. Consider implementing additional security measures."
            )
        if metrics.device_changes > total * DEVICE_CHANGE_RATE_LIMIT:
            recommendations.append("Frequent device changes detected. Review device management policies.")
        if metrics.location_violations > total * LOCATION_VIOLATION_RATE_LIMIT:
            recommendations.append("High location violation rate. Review geofencing settings.")
        if metrics.time_violations > total * TIME_VIOLATION_RATE_LIMIT:
            recommendations.append("Time violations detected. Review time window settings.")
        if metrics.photo_violations > total * PHOTO_VIOLATION_RATE_LIMIT:
            recommendations.append("High photo verification failure rate. Review photo requirements.")

    if trends.fraud_trend == Trend.INCREASING:
        recommendations.append("Fraud trend is increasing. Consider tightening security measures.")
    if trends.risk_trend == Trend.INCREASING:
        recommendations.append("Risk trend is increasing. Review fraud detection thresholds.")

    critical = sum(1 for a in alerts if a.severity == AlertSeverity.CRITICAL)
    if critical:
        recommendations.append(f"{critical} critical alerts require immediate attention.")

    return recommendations


def build_security_report(
    records: Sequence[ValidationRecord],
    alerts: Sequence[FraudAlert],
    start: datetime,
    end: datetime,
) -> SecurityReport:
    """
    Build a report for ``[start, end]``.

    Args:
        records: (timestamp, result) pairs; those outside the period are ignored
        alerts: Alerts raised by the caller's engine; filtered by created_at
        start: Period start
        end: Period end
    """
    start, end = as_utc(start), as_utc(end)
    if end < start:
        raise ValueError("Report period end must not be before its start")

    in_period = [(as_utc(ts), r) for ts, r in records if start <= as_utc(ts) <= end]
    period_alerts = [a for a in alerts if start <= a.created_at <= end]

    metrics = aggregate_metrics([r for _, r in in_period], period_alerts)

    midpoint = start + (end - start) / 2
    first = aggregate_metrics([r for ts, r in in_period if ts < midpoint])
    second = aggregate_metrics([r for ts, r in in_period if ts >= midpoint])
    trends = SecurityTrends(
        fraud_trend=calculate_trend(first.fraud_detected, second.fraud_detected),
        risk_trend=calculate_trend(first.average_fraud_score, second.average_fraud_score),
    )

    report = SecurityReport(
        period_start=start,
        period_end=end,
        metrics=metrics,
        trends=trends,
        recommendations=generate_recommendations(metrics, trends, period_alerts),
    )
    logger.info(
        "security_report_built",
        total_attempts=metrics.total_attempts,
        fraud_detected=metrics.fraud_detected,
        fraud_trend=trends.fraud_trend.value,
        recommendations=len(report.recommendations),
    )
    return report

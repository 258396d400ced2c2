"""
Time Window Validation Service.

Validates client-reported check-in times against a session window:
1. Window membership - Inclusive [valid_from, valid_to] with a grace period
2. Clock drift - Client vs calibrated server time
3. Manipulation heuristics - Backwards time, jumps, replays, round timestamps

The server time offset is calibrated out-of-band and injected at
construction; recalibration produces a new validator via ``with_offset``.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from attendance_integrity.core.config import settings
from attendance_integrity.schemas.time_window import (
    GracePeriodResult,
    TimeManipulationResult,
    TimeValidationResult,
    TimeValidationSummary,
    TimeWindowState,
    TimeWindowStatus,
)

logger = structlog.get_logger(__name__)

# Manipulation heuristic weights
BACKWARDS_WEIGHT = 0.4
JUMP_WEIGHT = 0.3
DRIFT_WEIGHT = 0.5
ROUND_TIME_WEIGHT = 0.2
REPLAY_WEIGHT = 0.3
MANIPULATION_THRESHOLD = 0.6

MAX_JUMP = timedelta(hours=24)
REPLAY_TOLERANCE = timedelta(seconds=1)
REPLAY_MIN_COUNT = 2


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _zone(name: Optional[str]) -> Optional[ZoneInfo]:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def convert_timezone(value: datetime, to_timezone: str) -> datetime:
    """
    Express an instant in another IANA timezone.

    Raises:
        ValueError: if the timezone name is unknown
    """
    zone = _zone(to_timezone)
    if zone is None:
        raise ValueError(f"Unknown timezone: {to_timezone}")
    return _utc(value).astimezone(zone)


def is_within_business_hours(
    value: datetime, tz_name: str, start_hour: int = 8, end_hour: int = 18
) -> bool:
    """Whether the local hour falls within [start_hour, end_hour]."""
    local = convert_timezone(value, tz_name)
    return start_hour <= local.hour <= end_hour


class TimeWindowValidator:
    """Validates attempt timestamps against session windows."""

    def __init__(
        self,
        server_time_offset: Optional[timedelta] = None,
        max_drift: Optional[timedelta] = None,
        default_timezone: Optional[str] = None,
        grace_period_minutes: Optional[int] = None,
    ):
        self.server_time_offset = (
            server_time_offset
            if server_time_offset is not None
            else timedelta(milliseconds=settings.SERVER_TIME_OFFSET_MS)
        )
        self.max_drift = (
            max_drift if max_drift is not None else timedelta(milliseconds=settings.MAX_TIME_DRIFT_MS)
        )
        self.default_timezone = default_timezone or settings.SESSION_TIMEZONE
        self.grace_period_minutes = (
            grace_period_minutes if grace_period_minutes is not None else settings.GRACE_PERIOD_MINUTES
        )

    def with_offset(self, server_time_offset: timedelta) -> "TimeWindowValidator":
        """Return a validator recalibrated to a new server time offset."""
        return TimeWindowValidator(
            server_time_offset=server_time_offset,
            max_drift=self.max_drift,
            default_timezone=self.default_timezone,
            grace_period_minutes=self.grace_period_minutes,
        )

    def server_time(self, client_time: datetime) -> datetime:
        return _utc(client_time) + self.server_time_offset

    # =========================================================================
    # Window validation
    # =========================================================================

    def validate_time_window(
        self,
        client_time: datetime,
        valid_from: datetime,
        valid_to: datetime,
        grace_period_minutes: Optional[int] = None,
        client_timezone: Optional[str] = None,
        session_timezone: Optional[str] = None,
    ) -> TimeValidationResult:
        """
        Validate a client timestamp against a session window.

        The grace period extends the window end inclusively: an attempt at
        exactly ``valid_to + grace`` is still accepted.
        """
        warnings: list[str] = []
        errors: list[str] = []

        client_time = _utc(client_time)
        valid_from = _utc(valid_from)
        valid_to = _utc(valid_to)
        grace_minutes = (
            grace_period_minutes if grace_period_minutes is not None else self.grace_period_minutes
        )
        grace = timedelta(minutes=grace_minutes)

        server_time = self.server_time(client_time)
        is_within_window = valid_from <= server_time <= valid_to
        is_within_grace_period = valid_from <= server_time <= valid_to + grace

        difference = abs(server_time - client_time)
        difference_ms = difference.total_seconds() * 1000
        if difference > self.max_drift:
            errors.append(f"Time manipulation detected: {difference_ms:.0f}ms difference")
        elif difference > self.max_drift / 2:
            warnings.append(f"Large time difference: {difference_ms:.0f}ms")

        tz_name = session_timezone or self.default_timezone
        zone = _zone(tz_name)
        if zone is None:
            warnings.append(f"Unknown session timezone: {tz_name}")
            zone = ZoneInfo("UTC")
            tz_name = "UTC"
        local_hour = server_time.astimezone(zone).hour
        if local_hour < settings.UNUSUAL_HOUR_START or local_hour > settings.UNUSUAL_HOUR_END:
            warnings.append(f"Unusual attendance time: {local_hour:02d}:00")

        if client_timezone and client_timezone != tz_name:
            warnings.append(f"Timezone mismatch: client={client_timezone}, expected={tz_name}")

        if server_time < valid_from:
            errors.append("Check-in window is not open yet")
        elif not is_within_grace_period:
            errors.append("Check-in window expired")
        elif not is_within_window:
            warnings.append("Check-in accepted within grace period")

        state = self.get_time_window_status(server_time, valid_from, valid_to, grace_minutes)

        result = TimeValidationResult(
            is_valid=not errors and (is_within_window or is_within_grace_period),
            is_within_window=is_within_window,
            is_within_grace_period=is_within_grace_period,
            server_time=server_time,
            client_time=client_time,
            time_difference_ms=difference_ms,
            timezone=tz_name,
            status=state.status,
            warnings=warnings,
            errors=errors,
        )

        log = logger.warning if errors else logger.info
        log(
            "time_window_validated",
            is_valid=result.is_valid,
            status=state.status.value,
            within_window=is_within_window,
            within_grace=is_within_grace_period,
            time_difference_ms=difference_ms,
        )
        return result

    # =========================================================================
    # Manipulation detection
    # =========================================================================

    def detect_time_manipulation(
        self,
        client_time: datetime,
        server_time: datetime,
        prior_attempts: Sequence[datetime] = (),
    ) -> TimeManipulationResult:
        """
        Score clock manipulation indicators.

        Args:
            client_time: Timestamp reported by the client
            server_time: Server's view of the same instant
            prior_attempts: Earlier attempt timestamps for the student, oldest first
        """
        client_time = _utc(client_time)
        server_time = _utc(server_time)
        priors = [_utc(p) for p in prior_attempts]

        reasons: list[str] = []
        confidence = 0.0

        if priors:
            delta = client_time - priors[-1]
            if delta < timedelta(0):
                reasons.append("Time went backwards")
                confidence += BACKWARDS_WEIGHT
            if delta > MAX_JUMP:
                reasons.append("Impossible time jump detected")
                confidence += JUMP_WEIGHT

        drift = abs(client_time - server_time)
        if drift > self.max_drift:
            reasons.append(f"Large time difference: {drift.total_seconds() * 1000:.0f}ms")
            confidence += DRIFT_WEIGHT

        if client_time.minute == 0 and client_time.second == 0 and client_time.microsecond == 0:
            reasons.append("Suspicious exact time")
            confidence += ROUND_TIME_WEIGHT

        replays = sum(1 for p in priors if abs(p - client_time) < REPLAY_TOLERANCE)
        if replays >= REPLAY_MIN_COUNT:
            reasons.append("Repeated identical timestamps")
            confidence += REPLAY_WEIGHT

        confidence = round(min(confidence, 1.0), 6)
        is_manipulated = confidence > MANIPULATION_THRESHOLD
        if is_manipulated:
            logger.warning("time_manipulation_detected", confidence=confidence, reasons=reasons)

        return TimeManipulationResult(
            is_manipulated=is_manipulated,
            confidence=confidence,
            reasons=reasons,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def validate_grace_period(
        attempt_time: datetime, session_end: datetime, grace_period_minutes: int
    ) -> GracePeriodResult:
        """Lateness in whole minutes past the session end."""
        late_by = _utc(attempt_time) - _utc(session_end)
        is_late = late_by > timedelta(0)
        minutes_late = int(late_by.total_seconds() // 60) if is_late else 0
        within_grace = is_late and minutes_late <= grace_period_minutes
        return GracePeriodResult(
            is_valid=not is_late or within_grace,
            is_late=is_late,
            minutes_late=minutes_late,
            within_grace_period=within_grace,
        )

    @staticmethod
    def get_time_window_status(
        now: datetime,
        valid_from: datetime,
        valid_to: datetime,
        grace_period_minutes: int = 0,
    ) -> TimeWindowState:
        """Classify ``now`` as BEFORE, DURING, AFTER (within grace) or EXPIRED."""
        now, valid_from, valid_to = _utc(now), _utc(valid_from), _utc(valid_to)
        grace_end = valid_to + timedelta(minutes=grace_period_minutes)

        if now < valid_from:
            return TimeWindowState(
                status=TimeWindowStatus.BEFORE,
                time_until_start=valid_from - now,
                time_until_end=valid_to - now,
            )
        if now <= valid_to:
            return TimeWindowState(
                status=TimeWindowStatus.DURING,
                time_until_start=timedelta(0),
                time_until_end=valid_to - now,
            )
        status = TimeWindowStatus.AFTER if now <= grace_end else TimeWindowStatus.EXPIRED
        return TimeWindowState(
            status=status,
            time_until_start=timedelta(0),
            time_until_end=timedelta(0),
            time_since_end=now - valid_to,
        )

    @staticmethod
    def summarize(results: Sequence[TimeValidationResult]) -> TimeValidationSummary:
        if not results:
            return TimeValidationSummary()
        total = len(results)
        valid = sum(1 for r in results if r.is_valid)
        return TimeValidationSummary(
            total_attempts=total,
            valid_attempts=valid,
            invalid_attempts=total - valid,
            grace_period_attempts=sum(
                1 for r in results if r.is_within_grace_period and not r.is_within_window
            ),
            average_time_difference_ms=sum(r.time_difference_ms for r in results) / total,
            timezone_issues=sum(1 for r in results if any("Timezone" in w for w in r.warnings)),
            manipulation_attempts=sum(1 for r in results if any("manipulation" in e for e in r.errors)),
        )

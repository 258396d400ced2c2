"""
Fraud alert lifecycle.

Alerts move through an explicit state machine:

    PENDING ──assign──▶ INVESTIGATING ──resolve──▶ RESOLVED
       │                     │
       └──────dismiss────────┴──────dismiss──────▶ DISMISSED

RESOLVED and DISMISSED are terminal. Every transition returns a new alert
with ``version + 1``; nothing here mutates or persists an alert. Callers
persist through a store that compares versions (see repositories).
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import structlog

from attendance_integrity.schemas.fraud import (
    AlertEvidence,
    AlertSeverity,
    AlertStatus,
    AlertType,
    FraudAlert,
    Investigation,
    InvestigationNote,
)

logger = structlog.get_logger(__name__)


class IntegrityError(Exception):
    """Base class for integrity engine errors."""

    pass


class AlertTransitionError(IntegrityError):
    """Raised when a lifecycle operation is not allowed in the alert's current state."""

    def __init__(self, alert_id: str, status: AlertStatus, operation: str):
        self.alert_id = alert_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} alert {alert_id} in state {status.value}")


TRANSITIONS: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.PENDING: frozenset({AlertStatus.INVESTIGATING, AlertStatus.DISMISSED}),
    AlertStatus.INVESTIGATING: frozenset(
        {AlertStatus.INVESTIGATING, AlertStatus.RESOLVED, AlertStatus.DISMISSED}
    ),
    AlertStatus.RESOLVED: frozenset(),
    AlertStatus.DISMISSED: frozenset(),
}

TERMINAL_STATES = frozenset({AlertStatus.RESOLVED, AlertStatus.DISMISSED})


def can_transition(status: AlertStatus, target: AlertStatus) -> bool:
    """Whether the state machine allows ``status`` to move to ``target``."""
    return target in TRANSITIONS[status]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _require(alert: FraudAlert, target: AlertStatus, operation: str) -> None:
    if not can_transition(alert.status, target):
        raise AlertTransitionError(alert.id, alert.status, operation)


def _advance(alert: FraudAlert, now: datetime, **changes) -> FraudAlert:
    return alert.model_copy(update={**changes, "updated_at": now, "version": alert.version + 1})


def create_alert(
    alert_type: AlertType,
    severity: AlertSeverity,
    description: str,
    evidence: AlertEvidence,
    student_id: str,
    session_id: str,
    risk_score: float = 0.0,
    now: Optional[datetime] = None,
) -> FraudAlert:
    """Create a new PENDING alert at version 1."""
    now = now or _now()
    alert = FraudAlert(
        id=str(uuid4()),
        type=alert_type,
        severity=severity,
        description=description,
        evidence=evidence,
        status=AlertStatus.PENDING,
        student_id=student_id,
        session_id=session_id,
        risk_score=risk_score,
        created_at=now,
        updated_at=now,
        version=1,
    )
    logger.info(
        "alert_created",
        alert_id=alert.id,
        type=alert_type.value,
        severity=severity.value,
        session_id=session_id,
    )
    return alert


def assign_investigator(
    alert: FraudAlert, assignee: str, now: Optional[datetime] = None
) -> FraudAlert:
    """
    Assign an investigator, moving PENDING to INVESTIGATING.

    Re-assigning an alert already under investigation changes the assignee;
    assigning the same person again returns the alert unchanged.
    """
    _require(alert, AlertStatus.INVESTIGATING, "assign")
    if not assignee.strip():
        raise ValueError("Assignee must not be empty")

    investigation = alert.investigation
    if alert.status == AlertStatus.INVESTIGATING and investigation and investigation.assignee == assignee:
        return alert

    now = now or _now()
    if investigation is None:
        investigation = Investigation(assignee=assignee, assigned_at=now)
    else:
        investigation = investigation.model_copy(update={"assignee": assignee, "assigned_at": now})

    logger.info("alert_assigned", alert_id=alert.id, assignee=assignee)
    return _advance(alert, now, status=AlertStatus.INVESTIGATING, investigation=investigation)


def add_note(
    alert: FraudAlert, author: str, text: str, now: Optional[datetime] = None
) -> FraudAlert:
    """Append an investigation note. Only allowed while INVESTIGATING."""
    if alert.status != AlertStatus.INVESTIGATING:
        raise AlertTransitionError(alert.id, alert.status, "add a note to")
    if not text.strip():
        raise ValueError("Note text must not be empty")

    now = now or _now()
    investigation = alert.investigation or Investigation()
    note = InvestigationNote(author=author, text=text, created_at=now)
    investigation = investigation.model_copy(update={"notes": (*investigation.notes, note)})
    return _advance(alert, now, investigation=investigation)


def resolve(alert: FraudAlert, resolution: str, now: Optional[datetime] = None) -> FraudAlert:
    """Resolve an alert under investigation. The resolution must be non-empty."""
    if alert.status != AlertStatus.INVESTIGATING:
        raise AlertTransitionError(alert.id, alert.status, "resolve")
    if not resolution or not resolution.strip():
        raise ValueError("Resolution must not be empty")

    now = now or _now()
    investigation = (alert.investigation or Investigation()).model_copy(
        update={"resolution": resolution, "resolved_at": now}
    )
    logger.info("alert_resolved", alert_id=alert.id)
    return _advance(alert, now, status=AlertStatus.RESOLVED, investigation=investigation)


def dismiss(
    alert: FraudAlert, reason: Optional[str] = None, now: Optional[datetime] = None
) -> FraudAlert:
    """Dismiss a PENDING or INVESTIGATING alert."""
    _require(alert, AlertStatus.DISMISSED, "dismiss")

    now = now or _now()
    investigation = (alert.investigation or Investigation()).model_copy(
        update={"dismissal_reason": reason, "dismissed_at": now}
    )
    logger.info("alert_dismissed", alert_id=alert.id, reason=reason)
    return _advance(alert, now, status=AlertStatus.DISMISSED, investigation=investigation)

"""
Tests for the fraud alert lifecycle state machine.
"""

import os

import pytest
from pydantic import ValidationError

os.environ.setdefault("APP_ENV", "test")

from attendance_integrity.schemas.fraud import (
    AlertSeverity,
    AlertStatus,
    AlertType,
    FraudAlert,
    LocationEvidence,
)
from attendance_integrity.services.alert_lifecycle import (
    TERMINAL_STATES,
    AlertTransitionError,
    add_note,
    assign_investigator,
    can_transition,
    create_alert,
    dismiss,
    resolve,
)
from factories import BASE_TIME, shifted


@pytest.fixture
def alert() -> FraudAlert:
    return create_alert(
        alert_type=AlertType.LOCATION_SPOOFING,
        severity=AlertSeverity.HIGH,
        description="Suspicious location pattern detected",
        evidence=LocationEvidence(distance=950.0, accuracy=15.0),
        student_id="student-1",
        session_id="session-1",
        risk_score=62.5,
        now=BASE_TIME,
    )


@pytest.mark.unit
class TestCreateAlert:
    """Tests for alert creation."""

    def test_new_alert_is_pending(self, alert: FraudAlert):
        assert alert.status == AlertStatus.PENDING
        assert alert.version == 1
        assert alert.investigation is None
        assert alert.created_at == alert.updated_at == BASE_TIME

    def test_ids_are_unique(self, alert: FraudAlert):
        other = create_alert(
            AlertType.LOCATION_SPOOFING,
            AlertSeverity.LOW,
            "x",
            LocationEvidence(),
            "student-1",
            "session-1",
        )
        assert other.id != alert.id

    def test_alerts_are_immutable(self, alert: FraudAlert):
        with pytest.raises(ValidationError):
            alert.status = AlertStatus.RESOLVED


@pytest.mark.unit
class TestTransitions:
    """Tests for the happy paths."""

    def test_assign_moves_to_investigating(self, alert: FraudAlert):
        assigned = assign_investigator(alert, "reviewer-a", now=shifted(minutes=1))

        assert assigned.status == AlertStatus.INVESTIGATING
        assert assigned.version == 2
        assert assigned.investigation.assignee == "reviewer-a"
        assert assigned.updated_at == shifted(minutes=1)
        # Original untouched
        assert alert.status == AlertStatus.PENDING
        assert alert.version == 1

    def test_reassigning_same_investigator_is_idempotent(self, alert: FraudAlert):
        assigned = assign_investigator(alert, "reviewer-a")

        assert assign_investigator(assigned, "reviewer-a") is assigned

    def test_reassigning_other_investigator(self, alert: FraudAlert):
        assigned = assign_investigator(alert, "reviewer-a")
        reassigned = assign_investigator(assigned, "reviewer-b")

        assert reassigned.investigation.assignee == "reviewer-b"
        assert reassigned.version == 3

    def test_notes_accumulate(self, alert: FraudAlert):
        investigating = assign_investigator(alert, "reviewer-a")
        noted = add_note(investigating, "reviewer-a", "Checked CCTV")
        noted = add_note(noted, "reviewer-b", "Student was in the room")

        assert [n.text for n in noted.investigation.notes] == ["Checked CCTV", "Student was in the room"]
        assert noted.status == AlertStatus.INVESTIGATING
        assert noted.version == 4

    def test_resolve(self, alert: FraudAlert):
        resolved = resolve(assign_investigator(alert, "reviewer-a"), "Confirmed proxy attendance", now=shifted(minutes=9))

        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.investigation.resolution == "Confirmed proxy attendance"
        assert resolved.investigation.resolved_at == shifted(minutes=9)

    def test_dismiss_pending(self, alert: FraudAlert):
        dismissed = dismiss(alert, "GPS glitch")

        assert dismissed.status == AlertStatus.DISMISSED
        assert dismissed.investigation.dismissal_reason == "GPS glitch"
        assert dismissed.version == 2

    def test_dismiss_investigating_without_reason(self, alert: FraudAlert):
        dismissed = dismiss(assign_investigator(alert, "reviewer-a"))

        assert dismissed.status == AlertStatus.DISMISSED
        assert dismissed.investigation.assignee == "reviewer-a"


@pytest.mark.unit
class TestIllegalTransitions:
    """Tests for rejected operations."""

    def test_resolve_pending_is_rejected(self, alert: FraudAlert):
        with pytest.raises(AlertTransitionError):
            resolve(alert, "done")

    def test_note_on_pending_is_rejected(self, alert: FraudAlert):
        with pytest.raises(AlertTransitionError):
            add_note(alert, "reviewer-a", "too early")

    def test_empty_resolution_is_rejected(self, alert: FraudAlert):
        with pytest.raises(ValueError):
            resolve(assign_investigator(alert, "reviewer-a"), "   ")

    def test_empty_assignee_is_rejected(self, alert: FraudAlert):
        with pytest.raises(ValueError):
            assign_investigator(alert, "")

    @pytest.mark.parametrize("terminal", ["resolved", "dismissed"])
    def test_terminal_states_reject_everything(self, alert: FraudAlert, terminal: str):
        investigating = assign_investigator(alert, "reviewer-a")
        final = resolve(investigating, "done") if terminal == "resolved" else dismiss(investigating)

        with pytest.raises(AlertTransitionError):
            assign_investigator(final, "reviewer-b")
        with pytest.raises(AlertTransitionError):
            add_note(final, "reviewer-b", "late note")
        with pytest.raises(AlertTransitionError):
            resolve(final, "again")
        with pytest.raises(AlertTransitionError):
            dismiss(final)

    def test_transition_table(self):
        assert can_transition(AlertStatus.PENDING, AlertStatus.INVESTIGATING)
        assert can_transition(AlertStatus.PENDING, AlertStatus.DISMISSED)
        assert not can_transition(AlertStatus.PENDING, AlertStatus.RESOLVED)
        for state in TERMINAL_STATES:
            assert not any(can_transition(state, target) for target in AlertStatus)

    def test_error_message_names_state(self, alert: FraudAlert):
        with pytest.raises(AlertTransitionError, match="pending"):
            resolve(alert, "done")

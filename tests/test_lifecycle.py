"""
Tests for the room lifecycle state machine and severity bands.

Covers:
- Allowed and rejected transitions
- Resolved is terminal, resolved_at stamped
- Severity band boundaries and custom thresholds
"""

import pytest

from crisiscomm.exceptions import InvalidTransitionError, ValidationError
from crisiscomm.rooms.lifecycle import (
    SeverityThresholds,
    can_transition,
    determine_severity,
    transition,
)
from crisiscomm.schemas.room import Room, RoomStatus, Severity


def _make_room(status: RoomStatus = RoomStatus.ACTIVE) -> Room:
    return Room(event_id="evt-1", title="Test room", severity=Severity.HIGH, status=status)


# ── Transitions ────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "current,target",
    [
        (RoomStatus.ACTIVE, RoomStatus.MONITORING),
        (RoomStatus.MONITORING, RoomStatus.ACTIVE),
        (RoomStatus.ACTIVE, RoomStatus.ESCALATED),
        (RoomStatus.MONITORING, RoomStatus.ESCALATED),
        (RoomStatus.ACTIVE, RoomStatus.RESOLVED),
        (RoomStatus.MONITORING, RoomStatus.RESOLVED),
        (RoomStatus.ESCALATED, RoomStatus.RESOLVED),
    ],
)
def test_allowed_transitions(current, target):
    room = _make_room(current)
    previous = transition(room, target)
    assert previous == current
    assert room.status == target


@pytest.mark.parametrize(
    "current,target",
    [
        (RoomStatus.ESCALATED, RoomStatus.ACTIVE),
        (RoomStatus.ESCALATED, RoomStatus.MONITORING),
        (RoomStatus.RESOLVED, RoomStatus.ACTIVE),
        (RoomStatus.RESOLVED, RoomStatus.ESCALATED),
        (RoomStatus.ACTIVE, RoomStatus.ACTIVE),
        (RoomStatus.RESOLVED, RoomStatus.RESOLVED),
    ],
)
def test_rejected_transitions_leave_room_untouched(current, target):
    room = _make_room(current)
    with pytest.raises(InvalidTransitionError) as exc_info:
        transition(room, target)
    assert room.status == current
    assert room.resolved_at is None
    assert exc_info.value.current == current.value
    assert exc_info.value.target == target.value


def test_invalid_transition_is_a_validation_error():
    assert issubclass(InvalidTransitionError, ValidationError)
    assert InvalidTransitionError.status_code == 409


def test_resolving_sets_resolved_at():
    room = _make_room()
    transition(room, RoomStatus.RESOLVED)
    assert room.resolved_at is not None
    assert room.resolved_at >= room.created_at


def test_resolved_is_terminal():
    assert not any(can_transition(RoomStatus.RESOLVED, s) for s in RoomStatus)


# ── Severity ───────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "score,expected",
    [
        (1.0, Severity.CRITICAL),
        (0.8, Severity.CRITICAL),
        (0.79, Severity.HIGH),
        (0.6, Severity.HIGH),
        (0.59, Severity.MEDIUM),
        (0.4, Severity.MEDIUM),
        (0.39, Severity.LOW),
        (0.0, Severity.LOW),
    ],
)
def test_severity_bands(score, expected):
    assert determine_severity(score) == expected


def test_custom_thresholds():
    thresholds = SeverityThresholds(critical=0.9, high=0.7, medium=0.5)
    assert determine_severity(0.85, thresholds) == Severity.HIGH
    assert determine_severity(0.45, thresholds) == Severity.LOW

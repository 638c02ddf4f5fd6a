"""
Room Lifecycle — status state machine and severity bands.

    active ⇄ monitoring
    active | monitoring → escalated
    active | monitoring | escalated → resolved   (terminal)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from crisiscomm.exceptions import InvalidTransitionError
from crisiscomm.schemas.room import Room, RoomStatus, Severity, utcnow

ALLOWED_TRANSITIONS: dict[RoomStatus, frozenset[RoomStatus]] = {
    RoomStatus.ACTIVE: frozenset({RoomStatus.MONITORING, RoomStatus.ESCALATED, RoomStatus.RESOLVED}),
    RoomStatus.MONITORING: frozenset({RoomStatus.ACTIVE, RoomStatus.ESCALATED, RoomStatus.RESOLVED}),
    RoomStatus.ESCALATED: frozenset({RoomStatus.RESOLVED}),
    RoomStatus.RESOLVED: frozenset(),
}


def can_transition(current: RoomStatus, target: RoomStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(room: Room, target: RoomStatus, now: Optional[datetime] = None) -> RoomStatus:
    """
    Move the room to `target`. Returns the previous status.

    Raises:
        InvalidTransitionError: transition not allowed (room untouched)
    """
    previous = room.status
    if not can_transition(previous, target):
        raise InvalidTransitionError(previous.value, target.value)
    room.status = target
    if target == RoomStatus.RESOLVED:
        room.resolved_at = now or utcnow()
    return previous


@dataclass(frozen=True)
class SeverityThresholds:
    critical: float = 0.8
    high: float = 0.6
    medium: float = 0.4


def determine_severity(
    score: float, thresholds: SeverityThresholds = SeverityThresholds()
) -> Severity:
    """Map a max relevance score (0-1) to a severity band."""
    if score >= thresholds.critical:
        return Severity.CRITICAL
    if score >= thresholds.high:
        return Severity.HIGH
    if score >= thresholds.medium:
        return Severity.MEDIUM
    return Severity.LOW

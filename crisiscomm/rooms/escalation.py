"""
Escalation Engine — computes escalation level and recipients.

Policy is fixed:
- level = min(max(previous levels, default 0) + 1, 5)
- recipients = active stakeholders whose escalation_level >= level

The engine mutates the room aggregate only; the service owns locking,
persistence and dispatch of the notifications it builds.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog

from crisiscomm.exceptions import InvalidTransitionError
from crisiscomm.rooms import lifecycle
from crisiscomm.schemas.room import (
    Channel,
    Communication,
    CommunicationType,
    DeliveryStatus,
    Escalation,
    EscalationTarget,
    Recipient,
    Room,
    RoomStatus,
    Stakeholder,
)

logger = structlog.get_logger(__name__)

MAX_ESCALATION_LEVEL = 5

# Communication types that expect an acknowledgement
ACKNOWLEDGEABLE_TYPES = frozenset({
    CommunicationType.ALERT,
    CommunicationType.UPDATE,
    CommunicationType.ESCALATION,
})


class EscalationEngine:
    """Open escalations on a room and build their notifications."""

    def __init__(self, max_level: int = MAX_ESCALATION_LEVEL):
        self.max_level = max_level

    def compute_level(self, room: Room) -> int:
        return min(room.current_escalation_level + 1, self.max_level)

    @staticmethod
    def select_recipients(room: Room, level: int) -> list[Stakeholder]:
        return [
            s for s in room.stakeholders
            if s.escalation_level >= level and s.is_active
        ]

    def find_unacknowledged(self, room: Room, now: datetime) -> Optional[Communication]:
        """
        Oldest delivered communication still waiting for a response past the
        room's no-response threshold, and not already escalated.

        None when the room is resolved, opted out of auto-escalation, or
        already at the top level.
        """
        if room.status == RoomStatus.RESOLVED:
            return None
        if not (room.settings.auto_escalation_enabled and room.settings.require_acknowledgement):
            return None
        if room.current_escalation_level >= self.max_level:
            return None

        cutoff = now - timedelta(minutes=room.settings.no_response_threshold_min)
        escalated = {e.source_communication_id for e in room.escalations}
        overdue = [
            c for c in room.communications
            if c.type in ACKNOWLEDGEABLE_TYPES
            and c.delivery_status == DeliveryStatus.SENT
            and not c.response_received
            and c.sent_at <= cutoff
            and c.id not in escalated
        ]
        return min(overdue, key=lambda c: c.sent_at, default=None)

    def open(
        self,
        room: Room,
        reason: str,
        triggered_by: str = "System",
        source_communication_id: Optional[str] = None,
    ) -> Escalation:
        """
        Append an escalation record and move the room to `escalated`.

        A room already escalated stays escalated.

        Raises:
            InvalidTransitionError: room is resolved (room untouched)
        """
        if room.status != RoomStatus.ESCALATED and not lifecycle.can_transition(
            room.status, RoomStatus.ESCALATED
        ):
            raise InvalidTransitionError(room.status.value, RoomStatus.ESCALATED.value)

        level = self.compute_level(room)
        targets = self.select_recipients(room, level)
        escalation = Escalation(
            level=level,
            reason=reason,
            triggered_by=triggered_by,
            escalated_to=[
                EscalationTarget(stakeholder_id=s.id, name=s.name, role=s.role.value)
                for s in targets
            ],
            source_communication_id=source_communication_id,
        )
        room.escalations.append(escalation)
        if room.status != RoomStatus.ESCALATED:
            lifecycle.transition(room, RoomStatus.ESCALATED)

        room.add_timeline(
            "escalation_triggered",
            f"Escalated to level {level}",
            triggered_by,
            level=level,
            reason=reason,
            recipients=len(targets),
        )
        logger.info(
            "room_escalated",
            room_id=room.id,
            level=level,
            recipients=len(targets),
            reason=reason,
        )
        return escalation

    @staticmethod
    def build_notifications(room: Room, escalation: Escalation) -> list[Communication]:
        """One escalation email per escalated stakeholder."""
        notifications = []
        for target in escalation.escalated_to:
            stakeholder = room.find_stakeholder(target.stakeholder_id)
            notifications.append(
                Communication(
                    type=CommunicationType.ESCALATION,
                    channel=Channel.EMAIL.value,
                    recipients=[
                        Recipient(
                            stakeholder_id=target.stakeholder_id,
                            name=target.name,
                            email=stakeholder.email if stakeholder else "",
                            phone=stakeholder.phone if stakeholder else None,
                            role=target.role,
                        )
                    ],
                    subject=f"ESCALATION: {room.title}",
                    content=(
                        f"This crisis has been escalated to level {escalation.level}. "
                        f"Reason: {escalation.reason}"
                    ),
                    sent_by=escalation.triggered_by,
                )
            )
        return notifications

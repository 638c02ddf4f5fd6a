"""
Analytics Aggregator.

Pure functions over a room's append-only logs. `compute_metrics` runs after
every mutation; the stored RoomMetrics are never edited directly.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from crisiscomm.schemas.room import (
    DeliveryStatus,
    Escalation,
    Room,
    RoomMetrics,
    RoomStatus,
    TimelineEntry,
)


class ChannelStats(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0


class StakeholderEngagement(BaseModel):
    name: str
    total_communications: int = 0
    responses: int = 0
    last_response_at: Optional[datetime] = None


class RoomAnalytics(BaseModel):
    basic: RoomMetrics
    stakeholder_engagement: dict[str, StakeholderEngagement] = Field(default_factory=dict)
    communication_channels: dict[str, ChannelStats] = Field(default_factory=dict)
    timeline: list[TimelineEntry] = Field(default_factory=list)
    escalations: list[Escalation] = Field(default_factory=list)


def _average_response_minutes(room: Room) -> float:
    deltas = []
    for response in room.responses:
        index = response.communication_index
        if index is None or not 0 <= index < len(room.communications):
            continue
        sent_at = room.communications[index].sent_at
        minutes = (response.received_at - sent_at).total_seconds() / 60
        if minutes > 0:
            deltas.append(minutes)
    return sum(deltas) / len(deltas) if deltas else 0.0


def compute_metrics(room: Room) -> RoomMetrics:
    total_recipients = sum(len(c.recipients) for c in room.communications)
    response_rate = (
        len(room.responses) / total_recipients * 100 if total_recipients > 0 else 0.0
    )
    resolution_time = 0.0
    if room.status == RoomStatus.RESOLVED and room.resolved_at is not None:
        resolution_time = (room.resolved_at - room.created_at).total_seconds() / 60

    return RoomMetrics(
        total_communications=len(room.communications),
        total_recipients=total_recipients,
        response_rate=response_rate,
        average_response_time=_average_response_minutes(room),
        escalation_count=len(room.escalations),
        resolution_time=resolution_time,
    )


def channel_breakdown(room: Room) -> dict[str, ChannelStats]:
    channels: dict[str, ChannelStats] = {}
    for comm in room.communications:
        stats = channels.setdefault(comm.channel, ChannelStats())
        stats.total += 1
        if comm.delivery_status == DeliveryStatus.SENT:
            stats.successful += 1
        elif comm.delivery_status == DeliveryStatus.FAILED:
            stats.failed += 1
    return channels


def stakeholder_engagement(room: Room) -> dict[str, StakeholderEngagement]:
    """Keyed by stakeholder id."""
    engagement = {}
    for stakeholder in room.stakeholders:
        responses = [r for r in room.responses if r.stakeholder_id == stakeholder.id]
        engagement[stakeholder.id] = StakeholderEngagement(
            name=stakeholder.name,
            total_communications=sum(
                1 for c in room.communications if c.is_addressed_to(stakeholder)
            ),
            responses=len(responses),
            last_response_at=max((r.received_at for r in responses), default=None),
        )
    return engagement


def build_analytics(room: Room) -> RoomAnalytics:
    return RoomAnalytics(
        basic=compute_metrics(room),
        stakeholder_engagement=stakeholder_engagement(room),
        communication_channels=channel_breakdown(room),
        timeline=list(room.timeline),
        escalations=list(room.escalations),
    )

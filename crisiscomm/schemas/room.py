"""
Crisis Room Domain Schemas.

The Room is the aggregate root. Its communications, responses, escalations
and timeline are append-only logs of value records, linked by index
(Response.communication_index) and by stakeholder id, never by reference.
"""

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


# ── Enums ──────────────────────────────────────────────────────────────


class RoomStatus(StrEnum):
    ACTIVE = "active"
    MONITORING = "monitoring"
    ESCALATED = "escalated"
    RESOLVED = "resolved"           # Terminal


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Channel(StrEnum):
    EMAIL = "email"
    SMS = "sms"
    SLACK = "slack"
    TEAMS = "teams"
    WEBHOOK = "webhook"
    INTERNAL = "internal"


class CommunicationType(StrEnum):
    ALERT = "alert"
    UPDATE = "update"
    ESCALATION = "escalation"
    RESOLUTION = "resolution"
    INTERNAL_NOTE = "internal_note"


class DeliveryStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class ResponseType(StrEnum):
    ACKNOWLEDGEMENT = "acknowledgement"
    ACTION_REQUIRED = "action_required"
    NO_ACTION_NEEDED = "no_action_needed"
    ESCALATION_REQUEST = "escalation_request"
    INFORMATION_REQUEST = "information_request"


class ActionItemStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StakeholderRole(StrEnum):
    EXECUTIVE = "executive"
    MANAGER = "manager"
    TECHNICAL = "technical"
    EXTERNAL = "external"
    REGULATORY = "regulatory"


class TeamRole(StrEnum):
    INCIDENT_COMMANDER = "incident_commander"
    COMMUNICATIONS_LEAD = "communications_lead"
    TECHNICAL_LEAD = "technical_lead"
    STAKEHOLDER_LIAISON = "stakeholder_liaison"
    OBSERVER = "observer"


class TemplateType(StrEnum):
    INITIAL_ALERT = "initial_alert"
    STATUS_UPDATE = "status_update"
    RESOLUTION = "resolution"
    ESCALATION = "escalation"
    CUSTOM = "custom"


class NotificationFrequency(StrEnum):
    IMMEDIATE = "immediate"
    HOURLY = "hourly"
    DAILY = "daily"


# ── People ─────────────────────────────────────────────────────────────


class TeamMember(BaseModel):
    user_id: str
    role: TeamRole = TeamRole.OBSERVER
    assigned_at: datetime = Field(default_factory=utcnow)


class Stakeholder(BaseModel):
    """A tracked recipient with channel preferences and an escalation level."""
    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    phone: Optional[str] = None
    role: StakeholderRole
    organization: Optional[str] = None
    notification_channels: list[Channel] = Field(default_factory=lambda: [Channel.EMAIL])
    escalation_level: int = Field(default=1, ge=1, le=5)
    is_active: bool = True

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("notification_channels")
    @classmethod
    def _dedupe_channels(cls, v: list[Channel]) -> list[Channel]:
        return list(dict.fromkeys(v))


# ── Templates ──────────────────────────────────────────────────────────


class TemplateVariable(BaseModel):
    name: str
    description: str = ""
    default_value: str = ""


class Template(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    type: TemplateType
    subject: str = Field(min_length=1)
    content: str = Field(min_length=1)
    variables: list[TemplateVariable] = Field(default_factory=list)
    is_default: bool = False
    created_by: Optional[str] = None


# ── Communications ─────────────────────────────────────────────────────


class Recipient(BaseModel):
    stakeholder_id: Optional[str] = None
    name: str = ""
    email: str = ""
    phone: Optional[str] = None
    role: str = ""


class Attachment(BaseModel):
    filename: str
    url: str = ""
    size: int = 0
    mime_type: str = "application/octet-stream"


class Communication(BaseModel):
    """
    One outbound, possibly multi-recipient message sent through one channel.

    delivery_status moves pending → sent|failed exactly once.
    """
    id: str = Field(default_factory=new_id)
    type: CommunicationType
    channel: str                    # Free string: unknown channels are recorded as failed
    recipients: list[Recipient]
    subject: str
    content: str
    template_id: Optional[str] = None
    attachments: list[Attachment] = Field(default_factory=list)
    sent_at: datetime = Field(default_factory=utcnow)
    sent_by: str = "System"
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    provider_ref: Optional[str] = None
    delivery_error: Optional[str] = None
    response_received: bool = False
    response_content: Optional[str] = None
    response_at: Optional[datetime] = None

    def mark_delivery(
        self,
        status: DeliveryStatus,
        provider_ref: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if self.delivery_status != DeliveryStatus.PENDING:
            raise ValueError(
                f"Delivery status already set to '{self.delivery_status}' "
                f"for communication {self.id}"
            )
        if status == DeliveryStatus.PENDING:
            raise ValueError("Delivery status can only move to sent or failed")
        self.delivery_status = status
        self.provider_ref = provider_ref
        self.delivery_error = error

    def is_addressed_to(self, stakeholder: "Stakeholder") -> bool:
        """Match by stakeholder id; email only for recipients without an id."""
        for r in self.recipients:
            if r.stakeholder_id:
                if r.stakeholder_id == stakeholder.id:
                    return True
            elif r.email and r.email.lower() == stakeholder.email:
                return True
        return False


# ── Responses ──────────────────────────────────────────────────────────


class ActionItem(BaseModel):
    description: str
    assigned_to: str = ""
    due_date: Optional[datetime] = None
    status: ActionItemStatus = ActionItemStatus.PENDING


class Response(BaseModel):
    id: str = Field(default_factory=new_id)
    stakeholder_id: str
    stakeholder_name: str = ""
    response_type: ResponseType
    content: str = ""
    received_at: datetime = Field(default_factory=utcnow)
    action_items: list[ActionItem] = Field(default_factory=list)
    follow_up_required: bool = False
    follow_up_date: Optional[datetime] = None
    communication_index: Optional[int] = None   # Index into Room.communications

    @field_validator("received_at")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)


# ── Escalations ────────────────────────────────────────────────────────


class EscalationTarget(BaseModel):
    stakeholder_id: str
    name: str
    role: str


class Escalation(BaseModel):
    level: int = Field(ge=1, le=5)
    reason: str
    triggered_by: str = "System"
    triggered_at: datetime = Field(default_factory=utcnow)
    escalated_to: list[EscalationTarget] = Field(default_factory=list)
    source_communication_id: Optional[str] = None


# ── Timeline ───────────────────────────────────────────────────────────


class TimelineEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    event: str
    description: str = ""
    actor_name: str = "System"
    metadata: dict = Field(default_factory=dict)


# ── Settings & Metrics ─────────────────────────────────────────────────


class RoomSettings(BaseModel):
    auto_escalation_enabled: bool = True
    time_threshold_min: int = Field(default=30, ge=1)
    no_response_threshold_min: int = Field(default=60, ge=1)
    require_acknowledgement: bool = True
    notification_frequency: NotificationFrequency = NotificationFrequency.IMMEDIATE


class RoomMetrics(BaseModel):
    """Derived from the room's logs. Never written independently."""
    total_communications: int = 0
    total_recipients: int = 0
    response_rate: float = 0.0          # Percent
    average_response_time: float = 0.0  # Minutes
    escalation_count: int = 0
    resolution_time: float = 0.0        # Minutes, 0 until resolved


# ── Aggregate Root ─────────────────────────────────────────────────────


class Room(BaseModel):
    """The crisis-room aggregate for one event."""
    id: str = Field(default_factory=new_id)
    event_id: str
    title: str
    description: str = ""
    status: RoomStatus = RoomStatus.ACTIVE
    severity: Severity
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    assigned_team: list[TeamMember] = Field(default_factory=list)
    stakeholders: list[Stakeholder] = Field(default_factory=list)
    templates: list[Template] = Field(default_factory=list)
    communications: list[Communication] = Field(default_factory=list)
    responses: list[Response] = Field(default_factory=list)
    escalations: list[Escalation] = Field(default_factory=list)
    timeline: list[TimelineEntry] = Field(default_factory=list)
    settings: RoomSettings = Field(default_factory=RoomSettings)
    metrics: RoomMetrics = Field(default_factory=RoomMetrics)
    version: int = 0

    def find_stakeholder(self, stakeholder_id: str) -> Optional[Stakeholder]:
        for s in self.stakeholders:
            if s.id == stakeholder_id:
                return s
        return None

    def find_template(self, template_id: str) -> Optional[Template]:
        for t in self.templates:
            if t.id == template_id:
                return t
        return None

    def add_timeline(
        self,
        event: str,
        description: str = "",
        actor_name: Optional[str] = None,
        **metadata,
    ) -> TimelineEntry:
        entry = TimelineEntry(
            event=event,
            description=description,
            actor_name=actor_name or "System",
            metadata=metadata,
        )
        self.timeline.append(entry)
        return entry

    @property
    def current_escalation_level(self) -> int:
        return max((e.level for e in self.escalations), default=0)


# ── Event Source ───────────────────────────────────────────────────────


class GeopoliticalEvent(BaseModel):
    """Read-only event the room is opened against."""
    id: str
    title: str
    description: str = ""
    severity: Optional[str] = None
    regions: list[str] = Field(default_factory=list)

"""Pydantic request/response models for the crisis room API and service."""

from datetime import datetime
from math import ceil
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from crisiscomm.schemas.room import (
    ActionItem,
    Attachment,
    Channel,
    CommunicationType,
    Recipient,
    ResponseType,
    RoomSettings,
    RoomStatus,
    Stakeholder,
    StakeholderRole,
    TeamMember,
    Template,
    TemplateType,
    TemplateVariable,
)

T = TypeVar("T")


class RoomCreate(BaseModel):
    event_id: str = Field(min_length=1)
    title: Optional[str] = None
    description: Optional[str] = None
    assigned_team: list[TeamMember] = Field(default_factory=list)
    stakeholders: list[Stakeholder] = Field(default_factory=list)
    templates: Optional[list[Template]] = None     # None = default templates
    settings: Optional[RoomSettings] = None
    created_by: str = "System"


class RoomUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    assigned_team: Optional[list[TeamMember]] = None
    settings: Optional[RoomSettings] = None
    updated_by: str = "System"


class StatusUpdate(BaseModel):
    status: RoomStatus
    reason: str = ""
    updated_by: str = "System"


class ResolveRequest(BaseModel):
    notes: str = ""
    resolved_by: str = "System"


class CommunicationCreate(BaseModel):
    """
    Outbound communication request.

    subject/content may be omitted when template_id is given; they are
    rendered from the template with `variables`.
    """
    type: CommunicationType
    channel: str = Field(min_length=1)
    recipients: list[Recipient]
    subject: Optional[str] = None
    content: Optional[str] = None
    template_id: Optional[str] = None
    variables: dict[str, str] = Field(default_factory=dict)
    attachments: list[Attachment] = Field(default_factory=list)
    sent_by: str = "System"


class ResponseCreate(BaseModel):
    stakeholder_id: str = Field(min_length=1)
    stakeholder_name: str = ""
    response_type: ResponseType
    content: str = ""
    received_at: Optional[datetime] = None
    action_items: list[ActionItem] = Field(default_factory=list)
    follow_up_required: bool = False
    follow_up_date: Optional[datetime] = None
    reason: Optional[str] = None     # Used as escalation reason for escalation_request


class EscalationCreate(BaseModel):
    reason: str = "Manual escalation"
    triggered_by: str = "System"


class StakeholdersAdd(BaseModel):
    stakeholders: list[Stakeholder] = Field(min_length=1)
    added_by: str = "System"


class StakeholderUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[StakeholderRole] = None
    organization: Optional[str] = None
    notification_channels: Optional[list[Channel]] = None
    escalation_level: Optional[int] = Field(default=None, ge=1, le=5)
    is_active: Optional[bool] = None
    updated_by: str = "System"


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1)
    type: TemplateType
    subject: str = Field(min_length=1)
    content: str = Field(min_length=1)
    variables: list[TemplateVariable] = Field(default_factory=list)
    created_by: Optional[str] = None


# ── Pagination ─────────────────────────────────────────────────────────


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class Page(BaseModel, Generic[T]):
    data: list[T]
    pagination: Pagination

    @classmethod
    def from_items(cls, items: list[Any], page: int, limit: int, total: int) -> "Page":
        return cls(
            data=items,
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                pages=ceil(total / limit) if limit > 0 else 0,
            ),
        )


def paginate(items: list[T], page: int, limit: int) -> Page[T]:
    """Slice an in-memory list (room logs are embedded in the aggregate)."""
    start = (page - 1) * limit
    return Page.from_items(items[start:start + limit], page, limit, len(items))

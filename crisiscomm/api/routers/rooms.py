"""
Crisis Room API Endpoints.

POST /api/v1/crisis-rooms                                  — open a room for an event
GET  /api/v1/crisis-rooms                                  — list rooms (status, severity)
GET  /api/v1/crisis-rooms/{room_id}                        — fetch a room
PUT  /api/v1/crisis-rooms/{room_id}                        — update descriptive fields
PUT  /api/v1/crisis-rooms/{room_id}/status                 — change status
POST /api/v1/crisis-rooms/{room_id}/resolve                — resolve and notify

POST /api/v1/crisis-rooms/{room_id}/stakeholders           — add stakeholders
PUT  /api/v1/crisis-rooms/{room_id}/stakeholders/{sid}     — update a stakeholder

POST /api/v1/crisis-rooms/{room_id}/communications         — dispatch a communication
GET  /api/v1/crisis-rooms/{room_id}/communications         — list communications
POST /api/v1/crisis-rooms/{room_id}/responses              — record a stakeholder response
GET  /api/v1/crisis-rooms/{room_id}/responses              — list responses
POST /api/v1/crisis-rooms/{room_id}/escalations            — escalate manually
GET  /api/v1/crisis-rooms/{room_id}/escalations            — list escalations

GET  /api/v1/crisis-rooms/{room_id}/templates              — list templates
POST /api/v1/crisis-rooms/{room_id}/templates              — add a template
GET  /api/v1/crisis-rooms/{room_id}/timeline               — audit timeline
GET  /api/v1/crisis-rooms/{room_id}/analytics              — derived analytics
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from crisiscomm.api.deps import get_service
from crisiscomm.rooms.analytics import RoomAnalytics
from crisiscomm.rooms.service import CrisisRoomService
from crisiscomm.schemas.requests import (
    CommunicationCreate,
    EscalationCreate,
    Page,
    ResolveRequest,
    ResponseCreate,
    RoomCreate,
    RoomUpdate,
    StakeholdersAdd,
    StakeholderUpdate,
    StatusUpdate,
    TemplateCreate,
)
from crisiscomm.schemas.room import (
    Communication,
    CommunicationType,
    Escalation,
    Response,
    ResponseType,
    Room,
    RoomStatus,
    Severity,
    Stakeholder,
    Template,
    TimelineEntry,
)

router = APIRouter(prefix="/api/v1/crisis-rooms", tags=["crisis-rooms"])


# ── Rooms ──────────────────────────────────────────────────────────────


@router.post("", response_model=Room, status_code=201)
async def create_room(
    body: RoomCreate,
    service: CrisisRoomService = Depends(get_service),
):
    """Open a crisis room for an event."""
    return await service.create_room(body)


@router.get("", response_model=Page[Room])
async def list_rooms(
    status: Optional[RoomStatus] = None,
    severity: Optional[Severity] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    service: CrisisRoomService = Depends(get_service),
):
    """List rooms, newest first."""
    return await service.list_rooms(status, severity, page, limit)


@router.get("/{room_id}", response_model=Room)
async def get_room(room_id: str, service: CrisisRoomService = Depends(get_service)):
    return await service.get_room(room_id)


@router.put("/{room_id}", response_model=Room)
async def update_room(
    room_id: str,
    body: RoomUpdate,
    service: CrisisRoomService = Depends(get_service),
):
    """Update title, description, team or settings. Status has its own endpoint."""
    return await service.update_room(room_id, body)


@router.put("/{room_id}/status", response_model=Room)
async def update_status(
    room_id: str,
    body: StatusUpdate,
    service: CrisisRoomService = Depends(get_service),
):
    return await service.update_status(room_id, body.status, body.updated_by, body.reason)


@router.post("/{room_id}/resolve", response_model=Room)
async def resolve_room(
    room_id: str,
    body: ResolveRequest,
    service: CrisisRoomService = Depends(get_service),
):
    """Resolve the room and notify every stakeholder."""
    return await service.resolve(room_id, body)


# ── Stakeholders ───────────────────────────────────────────────────────


@router.post("/{room_id}/stakeholders", response_model=list[Stakeholder], status_code=201)
async def add_stakeholders(
    room_id: str,
    body: StakeholdersAdd,
    service: CrisisRoomService = Depends(get_service),
):
    return await service.add_stakeholders(room_id, body)


@router.put("/{room_id}/stakeholders/{stakeholder_id}", response_model=Stakeholder)
async def update_stakeholder(
    room_id: str,
    stakeholder_id: str,
    body: StakeholderUpdate,
    service: CrisisRoomService = Depends(get_service),
):
    return await service.update_stakeholder(room_id, stakeholder_id, body)


# ── Communications ─────────────────────────────────────────────────────


@router.post("/{room_id}/communications", response_model=Communication, status_code=201)
async def send_communication(
    room_id: str,
    body: CommunicationCreate,
    service: CrisisRoomService = Depends(get_service),
):
    """
    Dispatch a communication.

    Delivery failures still return 201; check delivery_status.
    """
    return await service.send_communication(room_id, body)


@router.get("/{room_id}/communications", response_model=Page[Communication])
async def list_communications(
    room_id: str,
    type: Optional[CommunicationType] = None,
    channel: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    service: CrisisRoomService = Depends(get_service),
):
    return await service.list_communications(room_id, type, channel, page, limit)


# ── Responses ──────────────────────────────────────────────────────────


@router.post("/{room_id}/responses", response_model=Response, status_code=201)
async def record_response(
    room_id: str,
    body: ResponseCreate,
    service: CrisisRoomService = Depends(get_service),
):
    return await service.record_response(room_id, body)


@router.get("/{room_id}/responses", response_model=Page[Response])
async def list_responses(
    room_id: str,
    response_type: Optional[ResponseType] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    service: CrisisRoomService = Depends(get_service),
):
    return await service.list_responses(room_id, response_type, page, limit)


# ── Escalations ────────────────────────────────────────────────────────


@router.post("/{room_id}/escalations", response_model=Escalation, status_code=201)
async def trigger_escalation(
    room_id: str,
    body: EscalationCreate,
    service: CrisisRoomService = Depends(get_service),
):
    return await service.trigger_escalation(room_id, body.reason, body.triggered_by)


@router.get("/{room_id}/escalations", response_model=Page[Escalation])
async def list_escalations(
    room_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    service: CrisisRoomService = Depends(get_service),
):
    return await service.list_escalations(room_id, page, limit)


# ── Templates, timeline, analytics ─────────────────────────────────────


@router.get("/{room_id}/templates", response_model=list[Template])
async def list_templates(room_id: str, service: CrisisRoomService = Depends(get_service)):
    return await service.list_templates(room_id)


@router.post("/{room_id}/templates", response_model=Template, status_code=201)
async def add_template(
    room_id: str,
    body: TemplateCreate,
    service: CrisisRoomService = Depends(get_service),
):
    return await service.add_template(room_id, body)


@router.get("/{room_id}/timeline", response_model=Page[TimelineEntry])
async def get_timeline(
    room_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    service: CrisisRoomService = Depends(get_service),
):
    return await service.get_timeline(room_id, page, limit)


@router.get("/{room_id}/analytics", response_model=RoomAnalytics)
async def get_analytics(room_id: str, service: CrisisRoomService = Depends(get_service)):
    return await service.get_analytics(room_id)

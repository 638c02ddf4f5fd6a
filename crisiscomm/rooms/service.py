"""
Crisis Room Service — the single entry point for room operations.

Every mutation follows the same shape:
1. take the per-room lock
2. load a private copy of the aggregate
3. mutate it, recompute metrics, save (version-checked)

Channel sends never run under the lock. The communication is dispatched
first and the lock is taken only to append the resulting record. A failure
before save leaves the stored room untouched.
"""

import asyncio
import weakref
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crisiscomm.channels.dispatcher import ChannelDispatcher, build_default_senders
from crisiscomm.config import Settings
from crisiscomm.db.repositories import (
    RoomRepository,
    SqlEventSource,
    SqlProfileSource,
    SqlRoomRepository,
)
from crisiscomm.exceptions import ConcurrencyError, NotFoundError, ValidationError
from crisiscomm.external import (
    EventSource,
    HttpSeverityScorer,
    ProfileSource,
    SeverityScorer,
    StaticSeverityScorer,
)
from crisiscomm.rooms import lifecycle, responses
from crisiscomm.rooms.analytics import RoomAnalytics, build_analytics, compute_metrics
from crisiscomm.rooms.escalation import EscalationEngine
from crisiscomm.rooms.lifecycle import SeverityThresholds, determine_severity
from crisiscomm.rooms.templates import default_templates, render
from crisiscomm.schemas.requests import (
    CommunicationCreate,
    Page,
    ResolveRequest,
    ResponseCreate,
    RoomCreate,
    RoomUpdate,
    StakeholdersAdd,
    StakeholderUpdate,
    TemplateCreate,
    paginate,
)
from crisiscomm.schemas.room import (
    Channel,
    Communication,
    CommunicationType,
    Escalation,
    Recipient,
    Response,
    ResponseType,
    Room,
    RoomStatus,
    Severity,
    Stakeholder,
    Template,
    TimelineEntry,
    utcnow,
)

logger = structlog.get_logger(__name__)

# Stale-write attempts when appending an already-dispatched communication
APPEND_ATTEMPTS = 2


class CrisisRoomService:
    """Orchestrates lifecycle, dispatch, responses and escalation for rooms."""

    def __init__(
        self,
        repository: RoomRepository,
        dispatcher: ChannelDispatcher,
        events: EventSource,
        profiles: ProfileSource,
        scorer: SeverityScorer,
        escalation: Optional[EscalationEngine] = None,
        thresholds: SeverityThresholds = SeverityThresholds(),
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.events = events
        self.profiles = profiles
        self.scorer = scorer
        self.escalation = escalation or EscalationEngine()
        self.thresholds = thresholds
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # ── Internals ──────────────────────────────────────────────────────

    def _lock(self, room_id: str) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[room_id] = lock
        return lock

    @asynccontextmanager
    async def _mutate(self, room_id: str) -> AsyncIterator[Room]:
        """Load-mutate-save under the room lock. Nothing is saved on error."""
        lock = self._lock(room_id)
        async with lock:
            room = await self.get_room(room_id)
            yield room
            room.metrics = compute_metrics(room)
            await self.repository.save(room)

    async def _deliver(self, room_id: str, communication: Communication) -> Communication:
        """
        Dispatch, then append the record. A stale write on the append is
        retried on a freshly loaded room; the send itself is never repeated.
        """
        await self.dispatcher.dispatch(communication)
        for attempt in range(1, APPEND_ATTEMPTS + 1):
            try:
                await self._append_communication(room_id, communication)
                break
            except ConcurrencyError:
                if attempt == APPEND_ATTEMPTS:
                    logger.error(
                        "communication_append_failed",
                        room_id=room_id,
                        communication_id=communication.id,
                        attempts=attempt,
                    )
                    raise
                logger.warning(
                    "communication_append_retry",
                    room_id=room_id,
                    communication_id=communication.id,
                )
        return communication

    async def _append_communication(self, room_id: str, communication: Communication) -> None:
        async with self._mutate(room_id) as room:
            room.communications.append(communication)
            room.add_timeline(
                "communication_sent",
                f"{communication.type.value} sent via {communication.channel}",
                communication.sent_by,
                communication_id=communication.id,
                channel=communication.channel,
                recipients=len(communication.recipients),
                status=communication.delivery_status.value,
            )

    async def _deliver_all(
        self, room_id: str, communications: list[Communication]
    ) -> list[Communication]:
        if not communications:
            return []
        return list(
            await asyncio.gather(*(self._deliver(room_id, c) for c in communications))
        )

    async def _score(self, event) -> float:
        profiles = await self.profiles.list_profiles()
        if not profiles:
            return 0.0
        scores = await asyncio.gather(*(self.scorer.score(p, event) for p in profiles))
        return max(scores)

    # ── Queries ────────────────────────────────────────────────────────

    async def get_room(self, room_id: str) -> Room:
        room = await self.repository.get(room_id)
        if room is None:
            raise NotFoundError("Crisis room", room_id)
        return room

    async def list_rooms(
        self,
        status: Optional[RoomStatus] = None,
        severity: Optional[Severity] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page[Room]:
        offset = (page - 1) * limit
        rooms = await self.repository.list_rooms(status, severity, offset, limit)
        total = await self.repository.count(status, severity)
        return Page.from_items(rooms, page, limit, total)

    async def list_active_room_ids(self) -> list[str]:
        return await self.repository.list_active_ids()

    async def list_communications(
        self,
        room_id: str,
        type: Optional[CommunicationType] = None,
        channel: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page[Communication]:
        room = await self.get_room(room_id)
        items = [
            c for c in reversed(room.communications)
            if (type is None or c.type == type) and (channel is None or c.channel == channel)
        ]
        return paginate(items, page, limit)

    async def list_responses(
        self,
        room_id: str,
        response_type: Optional[ResponseType] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page[Response]:
        room = await self.get_room(room_id)
        items = [
            r for r in reversed(room.responses)
            if response_type is None or r.response_type == response_type
        ]
        return paginate(items, page, limit)

    async def list_escalations(self, room_id: str, page: int = 1, limit: int = 20) -> Page[Escalation]:
        room = await self.get_room(room_id)
        return paginate(list(reversed(room.escalations)), page, limit)

    async def get_timeline(self, room_id: str, page: int = 1, limit: int = 50) -> Page[TimelineEntry]:
        room = await self.get_room(room_id)
        return paginate(list(reversed(room.timeline)), page, limit)

    async def list_templates(self, room_id: str) -> list[Template]:
        room = await self.get_room(room_id)
        return room.templates

    async def get_analytics(self, room_id: str) -> RoomAnalytics:
        room = await self.get_room(room_id)
        return build_analytics(room)

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def create_room(self, data: RoomCreate) -> Room:
        """
        Open a room for an event. Severity is the highest relevance score
        across all known profiles, mapped to a band.

        Raises:
            NotFoundError: event does not exist (no room created)
        """
        event = await self.events.get_event(data.event_id)
        if event is None:
            raise NotFoundError("Event", data.event_id)

        score = await self._score(event)
        severity = determine_severity(score, self.thresholds)

        room = Room(
            event_id=event.id,
            title=data.title or f"Crisis Room: {event.title}",
            description=data.description if data.description is not None else event.description,
            severity=severity,
            assigned_team=data.assigned_team,
            stakeholders=data.stakeholders,
            templates=data.templates if data.templates is not None else default_templates(),
        )
        if data.settings is not None:
            room.settings = data.settings
        room.add_timeline(
            "room_created",
            f"Crisis room created for event: {event.title}",
            data.created_by,
            event_id=event.id,
            severity=severity.value,
            relevance_score=score,
        )
        room.metrics = compute_metrics(room)
        await self.repository.add(room)

        logger.info(
            "crisis_room_created",
            room_id=room.id,
            event_id=event.id,
            severity=severity.value,
            stakeholders=len(room.stakeholders),
        )
        return room

    async def update_room(self, room_id: str, data: RoomUpdate) -> Room:
        fields = data.model_dump(exclude_unset=True, exclude={"updated_by"})
        async with self._mutate(room_id) as room:
            if data.title is not None:
                room.title = data.title
            if data.description is not None:
                room.description = data.description
            if data.assigned_team is not None:
                room.assigned_team = data.assigned_team
            if data.settings is not None:
                room.settings = data.settings
            room.add_timeline(
                "room_updated",
                "Crisis room details updated",
                data.updated_by,
                fields=sorted(fields),
            )
        logger.info("crisis_room_updated", room_id=room_id, fields=sorted(fields))
        return room

    async def update_status(
        self,
        room_id: str,
        status: RoomStatus,
        updated_by: str = "System",
        reason: str = "",
    ) -> Room:
        """
        Raises:
            InvalidTransitionError: transition not allowed (nothing saved)
        """
        async with self._mutate(room_id) as room:
            previous = lifecycle.transition(room, status)
            room.add_timeline(
                "status_changed",
                f"Status changed from {previous.value} to {status.value}",
                updated_by,
                old_status=previous.value,
                new_status=status.value,
                reason=reason,
            )
        logger.info(
            "crisis_room_status_changed",
            room_id=room_id,
            old_status=previous.value,
            new_status=status.value,
        )
        return room

    async def resolve(self, room_id: str, data: ResolveRequest) -> Room:
        """Resolve the room and send one resolution email per stakeholder."""
        async with self._mutate(room_id) as room:
            lifecycle.transition(room, RoomStatus.RESOLVED)
            room.add_timeline(
                "room_resolved",
                "Crisis room resolved",
                data.resolved_by,
                notes=data.notes,
            )
            notifications = [
                Communication(
                    type=CommunicationType.RESOLUTION,
                    channel=Channel.EMAIL.value,
                    recipients=[
                        Recipient(
                            stakeholder_id=s.id,
                            name=s.name,
                            email=s.email,
                            phone=s.phone,
                            role=s.role.value,
                        )
                    ],
                    subject=f"RESOLVED: {room.title}",
                    content=f"This crisis has been resolved. {data.notes}".strip(),
                    sent_by=data.resolved_by,
                )
                for s in room.stakeholders
            ]

        await self._deliver_all(room_id, notifications)
        logger.info(
            "crisis_room_resolved",
            room_id=room_id,
            notifications=len(notifications),
        )
        return await self.get_room(room_id)

    # ── Stakeholders & templates ───────────────────────────────────────

    async def add_stakeholders(self, room_id: str, data: StakeholdersAdd) -> list[Stakeholder]:
        async with self._mutate(room_id) as room:
            existing = {s.id for s in room.stakeholders}
            duplicates = [s.id for s in data.stakeholders if s.id in existing]
            if duplicates:
                raise ValidationError(
                    "Stakeholder already in room", {"stakeholder_ids": duplicates}
                )
            room.stakeholders.extend(data.stakeholders)
            room.add_timeline(
                "stakeholders_added",
                f"{len(data.stakeholders)} stakeholder(s) added",
                data.added_by,
                stakeholder_ids=[s.id for s in data.stakeholders],
            )
        return data.stakeholders

    async def update_stakeholder(
        self, room_id: str, stakeholder_id: str, data: StakeholderUpdate
    ) -> Stakeholder:
        fields = data.model_dump(exclude_unset=True, exclude_none=True, exclude={"updated_by"})
        async with self._mutate(room_id) as room:
            stakeholder = room.find_stakeholder(stakeholder_id)
            if stakeholder is None:
                raise NotFoundError("Stakeholder", stakeholder_id)
            updated = Stakeholder.model_validate({**stakeholder.model_dump(), **fields})
            room.stakeholders[room.stakeholders.index(stakeholder)] = updated
            room.add_timeline(
                "stakeholder_updated",
                f"Stakeholder {updated.name} updated",
                data.updated_by,
                stakeholder_id=stakeholder_id,
                fields=sorted(fields),
            )
        return updated

    async def add_template(self, room_id: str, data: TemplateCreate) -> Template:
        template = Template(**data.model_dump())
        async with self._mutate(room_id) as room:
            room.templates.append(template)
            room.add_timeline(
                "template_added",
                f"Template '{template.name}' added",
                data.created_by,
                template_id=template.id,
            )
        return template

    # ── Communications ─────────────────────────────────────────────────

    async def send_communication(self, room_id: str, data: CommunicationCreate) -> Communication:
        """
        Dispatch a communication and append it to the room.

        Delivery failures do not raise; they are recorded as failed.

        Raises:
            ValidationError: no recipients, or subject/content missing
            NotFoundError: room or template missing
        """
        if not data.recipients:
            raise ValidationError("At least one recipient is required")

        room = await self.get_room(room_id)
        subject, content = data.subject, data.content
        if data.template_id:
            template = room.find_template(data.template_id)
            if template is None:
                raise NotFoundError("Template", data.template_id)
            rendered_subject, rendered_content = render(template, data.variables)
            subject = subject or rendered_subject
            content = content or rendered_content
        if not subject or not content:
            raise ValidationError(
                "Communication requires subject and content",
                {"subject": bool(subject), "content": bool(content)},
            )

        communication = Communication(
            type=data.type,
            channel=data.channel,
            recipients=data.recipients,
            subject=subject,
            content=content,
            template_id=data.template_id,
            attachments=data.attachments,
            sent_by=data.sent_by,
        )
        return await self._deliver(room_id, communication)

    # ── Responses & escalation ─────────────────────────────────────────

    async def record_response(self, room_id: str, data: ResponseCreate) -> Response:
        """
        Record a stakeholder response and correlate it.

        An escalation_request opens an escalation; on a resolved room the
        escalation is skipped and noted on the timeline.
        """
        response = Response(
            stakeholder_id=data.stakeholder_id,
            stakeholder_name=data.stakeholder_name,
            response_type=data.response_type,
            content=data.content,
            received_at=data.received_at or utcnow(),
            action_items=data.action_items,
            follow_up_required=data.follow_up_required,
            follow_up_date=data.follow_up_date,
        )
        notifications: list[Communication] = []

        async with self._mutate(room_id) as room:
            if not response.stakeholder_name:
                stakeholder = room.find_stakeholder(response.stakeholder_id)
                if stakeholder is not None:
                    response.stakeholder_name = stakeholder.name
            index = responses.record_response(room, response)
            room.add_timeline(
                "stakeholder_response",
                f"Response received from {response.stakeholder_name or response.stakeholder_id}",
                response.stakeholder_name or None,
                response_id=response.id,
                response_type=response.response_type.value,
                communication_index=index,
            )

            if response.response_type == ResponseType.ESCALATION_REQUEST:
                reason = data.reason or data.content or "Escalation requested by stakeholder"
                if room.status == RoomStatus.RESOLVED:
                    room.add_timeline(
                        "escalation_skipped",
                        "Escalation request ignored: room is resolved",
                        response.stakeholder_name or None,
                        reason=reason,
                    )
                    logger.info("escalation_skipped", room_id=room_id, reason="room_resolved")
                else:
                    escalation = self.escalation.open(
                        room, reason, response.stakeholder_name or "Stakeholder"
                    )
                    notifications = self.escalation.build_notifications(room, escalation)

        await self._deliver_all(room_id, notifications)
        logger.info(
            "stakeholder_response_recorded",
            room_id=room_id,
            response_type=response.response_type.value,
            correlated=response.communication_index is not None,
        )
        return response

    async def trigger_escalation(
        self,
        room_id: str,
        reason: str,
        triggered_by: str = "System",
        source_communication_id: Optional[str] = None,
    ) -> Escalation:
        """
        Raises:
            InvalidTransitionError: room is resolved (nothing saved)
        """
        async with self._mutate(room_id) as room:
            escalation = self.escalation.open(room, reason, triggered_by, source_communication_id)
            notifications = self.escalation.build_notifications(room, escalation)
        await self._deliver_all(room_id, notifications)
        return escalation

    async def escalate_unacknowledged(
        self, room_id: str, now: Optional[datetime] = None
    ) -> Optional[Escalation]:
        """
        Escalate the room if a communication went unanswered past its
        no-response threshold. Returns the escalation, or None.
        """
        now = now or utcnow()
        if self.escalation.find_unacknowledged(await self.get_room(room_id), now) is None:
            return None
        async with self._mutate(room_id) as room:
            # Re-check under the lock; another writer may have answered or escalated
            overdue = self.escalation.find_unacknowledged(room, now)
            if overdue is None:
                return None
            escalation = self.escalation.open(
                room,
                f"No response within {room.settings.no_response_threshold_min} minutes",
                "escalation-monitor",
                source_communication_id=overdue.id,
            )
            notifications = self.escalation.build_notifications(room, escalation)
        await self._deliver_all(room_id, notifications)
        return escalation


def build_service(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> CrisisRoomService:
    """Wire the SQL-backed service from configuration."""
    if settings.scoring_service_url:
        scorer: SeverityScorer = HttpSeverityScorer(
            settings.scoring_service_url,
            api_key=settings.scoring_api_key,
            timeout=settings.scoring_timeout_seconds,
        )
    else:
        logger.warning("scoring_service_not_configured", default_score=0.0)
        scorer = StaticSeverityScorer(0.0)

    return CrisisRoomService(
        repository=SqlRoomRepository(session_factory),
        dispatcher=ChannelDispatcher(
            build_default_senders(settings),
            timeout=settings.dispatch_timeout_seconds,
        ),
        events=SqlEventSource(session_factory),
        profiles=SqlProfileSource(session_factory),
        scorer=scorer,
        thresholds=SeverityThresholds(
            critical=settings.severity_critical_threshold,
            high=settings.severity_high_threshold,
            medium=settings.severity_medium_threshold,
        ),
    )

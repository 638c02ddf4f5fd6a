"""
Tests for CrisisRoomService.

Covers:
- Room creation (missing event, severity from max score, defaults)
- Status changes and resolution notifications
- Communication dispatch, validation and templates
- Response recording with escalation requests
- Manual escalation and level progression
- Stakeholder/template management
- All-or-nothing mutations and optimistic concurrency
"""

import asyncio

import pytest

from conftest import FakeSender, make_stakeholder, recipient_for
from crisiscomm.channels.dispatcher import ChannelDispatcher
from crisiscomm.db.repositories import InMemoryRoomRepository
from crisiscomm.exceptions import (
    ConcurrencyError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from crisiscomm.external import InMemoryEventSource, InMemoryProfileSource
from crisiscomm.rooms.service import CrisisRoomService
from crisiscomm.schemas.requests import (
    CommunicationCreate,
    ResolveRequest,
    ResponseCreate,
    RoomCreate,
    RoomUpdate,
    StakeholdersAdd,
    StakeholderUpdate,
    TemplateCreate,
)
from crisiscomm.schemas.room import (
    Channel,
    CommunicationType,
    DeliveryStatus,
    Recipient,
    ResponseType,
    RoomSettings,
    RoomStatus,
    Severity,
    TemplateType,
)


def _alert(room, channel: str = "email", **kwargs) -> CommunicationCreate:
    return CommunicationCreate(
        type=kwargs.pop("type", CommunicationType.ALERT),
        channel=channel,
        recipients=kwargs.pop("recipients", [recipient_for(s) for s in room.stakeholders[:2]]),
        subject=kwargs.pop("subject", "Crisis alert"),
        content=kwargs.pop("content", "Please acknowledge"),
        sent_by="ops",
        **kwargs,
    )


# ── Create ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_room_missing_event_persists_nothing(service, repository):
    with pytest.raises(NotFoundError):
        await service.create_room(RoomCreate(event_id="missing-event-id"))
    assert await repository.count() == 0


@pytest.mark.asyncio
async def test_create_room_severity_from_max_score(room):
    # Profile scores 0.45 and 0.65 → max 0.65 → high
    assert room.severity == Severity.HIGH
    assert room.status == RoomStatus.ACTIVE


@pytest.mark.asyncio
async def test_create_room_defaults(room, event):
    assert room.title == f"Crisis Room: {event.title}"
    assert room.description == event.description
    assert [t.name for t in room.templates] == ["Initial Alert", "Status Update"]
    assert room.timeline[0].event == "room_created"
    assert room.timeline[0].actor_name == "ops"
    assert room.metrics.total_communications == 0


@pytest.mark.asyncio
async def test_create_room_without_profiles_is_low(repository, dispatcher, event, scorer):
    service = CrisisRoomService(
        repository=repository,
        dispatcher=dispatcher,
        events=InMemoryEventSource([event]),
        profiles=InMemoryProfileSource([]),
        scorer=scorer,
    )
    room = await service.create_room(RoomCreate(event_id=event.id, templates=[]))
    assert room.severity == Severity.LOW
    assert room.templates == []


@pytest.mark.asyncio
async def test_create_room_custom_settings(service, event):
    room = await service.create_room(
        RoomCreate(event_id=event.id, title="Custom", settings=RoomSettings(no_response_threshold_min=15))
    )
    assert room.title == "Custom"
    assert room.settings.no_response_threshold_min == 15


# ── Status & resolve ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_update_status(service, room):
    updated = await service.update_status(room.id, RoomStatus.MONITORING, "ops", "Stabilising")

    assert updated.status == RoomStatus.MONITORING
    entry = updated.timeline[-1]
    assert entry.event == "status_changed"
    assert entry.metadata == {"old_status": "active", "new_status": "monitoring", "reason": "Stabilising"}


@pytest.mark.asyncio
async def test_invalid_status_change_saves_nothing(service, room):
    await service.update_status(room.id, RoomStatus.RESOLVED)
    stored = await service.get_room(room.id)

    with pytest.raises(InvalidTransitionError):
        await service.update_status(room.id, RoomStatus.ACTIVE)

    after = await service.get_room(room.id)
    assert after.status == RoomStatus.RESOLVED
    assert after.version == stored.version
    assert len(after.timeline) == len(stored.timeline)


@pytest.mark.asyncio
async def test_unknown_room_raises_not_found(service):
    with pytest.raises(NotFoundError):
        await service.update_status("nope", RoomStatus.MONITORING)


@pytest.mark.asyncio
async def test_resolve_notifies_every_stakeholder(service, room, email_sender):
    resolved = await service.resolve(room.id, ResolveRequest(notes="Port reopened", resolved_by="ops"))

    assert resolved.status == RoomStatus.RESOLVED
    assert resolved.resolved_at is not None
    resolutions = [c for c in resolved.communications if c.type == CommunicationType.RESOLUTION]
    assert len(resolutions) == len(room.stakeholders)
    assert {c.recipients[0].stakeholder_id for c in resolutions} == {s.id for s in room.stakeholders}
    assert all(c.channel == "email" for c in resolutions)
    assert len(email_sender.sent) == len(room.stakeholders)
    assert any(e.event == "room_resolved" and e.metadata["notes"] == "Port reopened" for e in resolved.timeline)
    assert resolved.metrics.resolution_time > 0


@pytest.mark.asyncio
async def test_resolve_twice_fails(service, room):
    await service.resolve(room.id, ResolveRequest())
    with pytest.raises(InvalidTransitionError):
        await service.resolve(room.id, ResolveRequest())


# ── Communications ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_send_communication_appends_record_and_timeline(service, room, email_sender):
    comm = await service.send_communication(room.id, _alert(room))

    assert comm.delivery_status == DeliveryStatus.SENT
    assert email_sender.sent[0].id == comm.id

    stored = await service.get_room(room.id)
    assert [c.id for c in stored.communications] == [comm.id]
    entry = stored.timeline[-1]
    assert entry.event == "communication_sent"
    assert entry.metadata["recipients"] == 2
    assert entry.metadata["channel"] == "email"
    assert entry.metadata["status"] == "sent"
    assert stored.metrics.total_recipients == 2


@pytest.mark.asyncio
async def test_unsupported_channel_recorded_as_failed(service, room):
    comm = await service.send_communication(room.id, _alert(room, channel="fax"))

    assert comm.delivery_status == DeliveryStatus.FAILED
    stored = await service.get_room(room.id)
    assert stored.communications[-1].delivery_status == DeliveryStatus.FAILED


@pytest.mark.asyncio
async def test_failed_sender_still_appends_record(repository, event, scorer, room):
    failing = CrisisRoomService(
        repository=repository,
        dispatcher=ChannelDispatcher({Channel.EMAIL: FakeSender(error="SMTP down")}),
        events=InMemoryEventSource([event]),
        profiles=InMemoryProfileSource([]),
        scorer=scorer,
    )
    comm = await failing.send_communication(room.id, _alert(room))

    assert comm.delivery_status == DeliveryStatus.FAILED
    assert "SMTP down" in comm.delivery_error
    assert len((await failing.get_room(room.id)).communications) == 1


@pytest.mark.asyncio
async def test_communications_are_append_only(service, room):
    counts = []
    for _ in range(3):
        await service.send_communication(room.id, _alert(room))
        counts.append(len((await service.get_room(room.id)).communications))
    assert counts == [1, 2, 3]


@pytest.mark.asyncio
async def test_concurrent_sends_are_all_recorded(service, room):
    await asyncio.gather(*(service.send_communication(room.id, _alert(room)) for _ in range(5)))

    stored = await service.get_room(room.id)
    assert len(stored.communications) == 5
    assert stored.metrics.total_communications == 5


@pytest.mark.asyncio
async def test_send_communication_requires_recipients(service, room):
    with pytest.raises(ValidationError):
        await service.send_communication(room.id, _alert(room, recipients=[]))
    assert (await service.get_room(room.id)).communications == []


@pytest.mark.asyncio
async def test_send_communication_requires_subject_and_content(service, room):
    with pytest.raises(ValidationError):
        await service.send_communication(room.id, _alert(room, subject=None, content=None))


@pytest.mark.asyncio
async def test_send_communication_from_template(service, room):
    template = room.templates[0]

    comm = await service.send_communication(
        room.id,
        _alert(
            room,
            subject=None,
            content=None,
            template_id=template.id,
            variables={"event_title": "Strike", "severity": "high"},
        ),
    )

    assert comm.subject == "CRISIS ALERT: Strike"
    assert "<strong>Severity:</strong> high" in comm.content
    assert comm.template_id == template.id


@pytest.mark.asyncio
async def test_send_communication_unknown_template(service, room):
    with pytest.raises(NotFoundError):
        await service.send_communication(room.id, _alert(room, template_id="missing"))


@pytest.mark.asyncio
async def test_list_communications_newest_first_and_filtered(service, room):
    first = await service.send_communication(room.id, _alert(room))
    second = await service.send_communication(room.id, _alert(room, channel="sms", type=CommunicationType.UPDATE))

    page = await service.list_communications(room.id)
    assert [c.id for c in page.data] == [second.id, first.id]
    assert page.pagination.total == 2

    sms_only = await service.list_communications(room.id, channel="sms")
    assert [c.id for c in sms_only.data] == [second.id]

    updates = await service.list_communications(room.id, type=CommunicationType.UPDATE)
    assert [c.id for c in updates.data] == [second.id]


# ── Responses ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_record_response_correlates(service, room):
    alice = room.stakeholders[0]
    comm = await service.send_communication(room.id, _alert(room))

    response = await service.record_response(
        room.id,
        ResponseCreate(stakeholder_id=alice.id, response_type=ResponseType.ACKNOWLEDGEMENT, content="On it"),
    )

    assert response.stakeholder_name == "Alice"
    assert response.communication_index == 0
    stored = await service.get_room(room.id)
    assert stored.communications[0].id == comm.id
    assert stored.communications[0].response_received is True
    assert stored.communications[0].response_content == "On it"
    assert stored.timeline[-1].event == "stakeholder_response"
    assert stored.metrics.response_rate == pytest.approx(50.0)


@pytest.mark.asyncio
async def test_escalation_request_triggers_escalation(service, room, email_sender):
    bob = room.stakeholders[1]

    await service.record_response(
        room.id,
        ResponseCreate(
            stakeholder_id=bob.id,
            response_type=ResponseType.ESCALATION_REQUEST,
            reason="Board must be informed",
        ),
    )

    stored = await service.get_room(room.id)
    assert stored.status == RoomStatus.ESCALATED
    assert len(stored.escalations) == 1
    escalation = stored.escalations[0]
    assert escalation.level == 1
    assert escalation.reason == "Board must be informed"
    assert escalation.triggered_by == "Bob"
    # Carol is inactive
    assert {t.name for t in escalation.escalated_to} == {"Alice", "Bob"}
    notifications = [c for c in stored.communications if c.type == CommunicationType.ESCALATION]
    assert len(notifications) == 2
    assert len(email_sender.sent) == 2


@pytest.mark.asyncio
async def test_escalation_request_on_resolved_room_is_skipped(service, room):
    await service.resolve(room.id, ResolveRequest())
    alice = room.stakeholders[0]

    response = await service.record_response(
        room.id,
        ResponseCreate(stakeholder_id=alice.id, response_type=ResponseType.ESCALATION_REQUEST),
    )

    stored = await service.get_room(room.id)
    assert stored.responses[-1].id == response.id
    assert stored.escalations == []
    assert stored.status == RoomStatus.RESOLVED
    assert stored.timeline[-1].event == "escalation_skipped"


# ── Escalations ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_first_manual_escalation(service, room):
    escalation = await service.trigger_escalation(room.id, "Manual", "ops")

    assert escalation.level == 1
    assert {t.name for t in escalation.escalated_to} == {"Alice", "Bob"}
    stored = await service.get_room(room.id)
    assert stored.status == RoomStatus.ESCALATED
    assert stored.metrics.escalation_count == 1


@pytest.mark.asyncio
async def test_escalation_levels_increase_to_cap(service, room):
    levels = [(await service.trigger_escalation(room.id, f"#{i}")).level for i in range(7)]
    assert levels == [1, 2, 3, 4, 5, 5, 5]


@pytest.mark.asyncio
async def test_higher_levels_reach_fewer_stakeholders(service, room):
    await service.trigger_escalation(room.id, "one")
    second = await service.trigger_escalation(room.id, "two")
    assert [t.name for t in second.escalated_to] == ["Bob"]


@pytest.mark.asyncio
async def test_escalating_resolved_room_fails(service, room):
    await service.resolve(room.id, ResolveRequest())
    with pytest.raises(InvalidTransitionError):
        await service.trigger_escalation(room.id, "late")
    assert (await service.get_room(room.id)).escalations == []


# ── Room, stakeholders, templates ──────────────────────────────────────


@pytest.mark.asyncio
async def test_update_room_descriptive_fields(service, room):
    updated = await service.update_room(room.id, RoomUpdate(title="Renamed", updated_by="ops"))

    assert updated.title == "Renamed"
    assert updated.status == RoomStatus.ACTIVE
    assert updated.timeline[-1].event == "room_updated"
    assert updated.timeline[-1].metadata["fields"] == ["title"]


@pytest.mark.asyncio
async def test_add_stakeholders(service, room):
    dave = make_stakeholder("Dave", escalation_level=4)

    added = await service.add_stakeholders(room.id, StakeholdersAdd(stakeholders=[dave]))

    assert added[0].id == dave.id
    stored = await service.get_room(room.id)
    assert stored.find_stakeholder(dave.id) is not None
    assert stored.timeline[-1].event == "stakeholders_added"


@pytest.mark.asyncio
async def test_add_duplicate_stakeholder_rejected(service, room):
    with pytest.raises(ValidationError):
        await service.add_stakeholders(room.id, StakeholdersAdd(stakeholders=[room.stakeholders[0]]))


@pytest.mark.asyncio
async def test_update_stakeholder(service, room):
    carol = room.stakeholders[2]

    updated = await service.update_stakeholder(
        room.id, carol.id, StakeholderUpdate(is_active=True, escalation_level=2)
    )

    assert updated.is_active is True
    assert updated.escalation_level == 2
    assert updated.id == carol.id
    stored = await service.get_room(room.id)
    assert stored.find_stakeholder(carol.id).is_active is True


@pytest.mark.asyncio
async def test_update_unknown_stakeholder(service, room):
    with pytest.raises(NotFoundError):
        await service.update_stakeholder(room.id, "ghost", StakeholderUpdate(name="Ghost"))


@pytest.mark.asyncio
async def test_add_template(service, room):
    template = await service.add_template(
        room.id,
        TemplateCreate(name="Regulator notice", type=TemplateType.CUSTOM, subject="Notice", content="Body"),
    )

    templates = await service.list_templates(room.id)
    assert templates[-1].id == template.id
    assert len(templates) == 3


# ── Queries & concurrency ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_rooms_filters_and_paginates(service, event):
    rooms = [await service.create_room(RoomCreate(event_id=event.id)) for _ in range(3)]
    await service.update_status(rooms[0].id, RoomStatus.MONITORING)

    page = await service.list_rooms(page=1, limit=2)
    assert len(page.data) == 2
    assert page.pagination.total == 3
    assert page.pagination.pages == 2

    monitoring = await service.list_rooms(status=RoomStatus.MONITORING)
    assert [r.id for r in monitoring.data] == [rooms[0].id]


@pytest.mark.asyncio
async def test_timeline_newest_first(service, room):
    await service.update_status(room.id, RoomStatus.MONITORING)
    page = await service.get_timeline(room.id)
    assert [e.event for e in page.data] == ["status_changed", "room_created"]


@pytest.mark.asyncio
async def test_stale_write_raises_concurrency_error(repository, room):
    first = await repository.get(room.id)
    second = await repository.get(room.id)
    await repository.save(first)

    with pytest.raises(ConcurrencyError):
        await repository.save(second)


class _InterleavedRepository(InMemoryRoomRepository):
    """Another writer saves the room right before each of the next N saves."""

    def __init__(self):
        super().__init__()
        self.interleaved_saves = 0

    async def save(self, room):
        if self.interleaved_saves > 0:
            self.interleaved_saves -= 1
            other = await self.get(room.id)
            other.add_timeline("external_write", "Written by another process")
            await super().save(other)
        await super().save(room)


def _service_over(repository, dispatcher, event, scorer) -> CrisisRoomService:
    return CrisisRoomService(
        repository=repository,
        dispatcher=dispatcher,
        events=InMemoryEventSource([event]),
        profiles=InMemoryProfileSource([]),
        scorer=scorer,
    )


@pytest.mark.asyncio
async def test_stale_append_after_dispatch_is_retried(dispatcher, event, scorer, stakeholders, email_sender):
    repository = _InterleavedRepository()
    service = _service_over(repository, dispatcher, event, scorer)
    room = await service.create_room(RoomCreate(event_id=event.id, stakeholders=stakeholders))
    repository.interleaved_saves = 1

    comm = await service.send_communication(room.id, _alert(room))

    stored = await service.get_room(room.id)
    assert [c.id for c in stored.communications] == [comm.id]
    assert [e.event for e in stored.timeline] == ["room_created", "external_write", "communication_sent"]
    assert len(email_sender.sent) == 1


@pytest.mark.asyncio
async def test_repeated_stale_append_raises_without_resending(dispatcher, event, scorer, stakeholders, email_sender):
    repository = _InterleavedRepository()
    service = _service_over(repository, dispatcher, event, scorer)
    room = await service.create_room(RoomCreate(event_id=event.id, stakeholders=stakeholders))
    repository.interleaved_saves = 2

    with pytest.raises(ConcurrencyError):
        await service.send_communication(room.id, _alert(room))

    assert len(email_sender.sent) == 1
    assert (await service.get_room(room.id)).communications == []


@pytest.mark.asyncio
async def test_repository_hands_out_copies(repository, room):
    loaded = await repository.get(room.id)
    loaded.title = "Mutated"
    assert (await repository.get(room.id)).title != "Mutated"


@pytest.mark.asyncio
async def test_get_analytics(service, room):
    await service.send_communication(room.id, _alert(room))
    await service.send_communication(
        room.id, _alert(room, recipients=[Recipient(name="Ext", email="ext@example.com")], channel="fax")
    )

    analytics = await service.get_analytics(room.id)

    assert analytics.basic.total_recipients == 3
    assert analytics.communication_channels["email"].successful == 1
    assert analytics.communication_channels["fax"].failed == 1
    assert analytics.stakeholder_engagement[room.stakeholders[0].id].total_communications == 1

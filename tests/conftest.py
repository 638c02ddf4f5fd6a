"""
Test fixtures for Crisis Communication tests.

Provides:
- Fake channel senders injected into the dispatcher registry
- In-memory event/profile sources and a fixed-score scorer
- A fully wired CrisisRoomService over the in-memory repository
- Room/stakeholder factories
"""

from typing import Optional

import pytest
import pytest_asyncio

from crisiscomm.channels.base import DeliveryResult
from crisiscomm.channels.dispatcher import ChannelDispatcher, InternalSender
from crisiscomm.db.repositories import InMemoryRoomRepository
from crisiscomm.exceptions import ChannelDeliveryError
from crisiscomm.external import InMemoryEventSource, InMemoryProfileSource
from crisiscomm.rooms.service import CrisisRoomService
from crisiscomm.schemas.requests import RoomCreate
from crisiscomm.schemas.room import (
    Channel,
    Communication,
    GeopoliticalEvent,
    Recipient,
    Stakeholder,
    StakeholderRole,
)


class FakeSender:
    """Records every communication; optionally fails."""

    def __init__(self, error: Optional[str] = None):
        self.error = error
        self.sent: list[Communication] = []

    async def send(self, communication: Communication) -> DeliveryResult:
        self.sent.append(communication)
        if self.error:
            raise ChannelDeliveryError(communication.channel, self.error)
        return DeliveryResult.sent(provider_ref=f"fake-{len(self.sent)}")


class FixedScorer:
    """Scores by profile id; unknown profiles score 0."""

    def __init__(self, scores: Optional[dict[str, float]] = None):
        self.scores = scores or {}

    async def score(self, profile, event) -> float:
        return self.scores.get(profile.get("id"), 0.0)


def make_stakeholder(
    name: str = "Alice",
    escalation_level: int = 1,
    is_active: bool = True,
    role: StakeholderRole = StakeholderRole.MANAGER,
    phone: Optional[str] = None,
) -> Stakeholder:
    return Stakeholder(
        name=name,
        email=f"{name.lower()}@example.com",
        phone=phone,
        role=role,
        escalation_level=escalation_level,
        is_active=is_active,
    )


def recipient_for(stakeholder: Stakeholder) -> Recipient:
    return Recipient(
        stakeholder_id=stakeholder.id,
        name=stakeholder.name,
        email=stakeholder.email,
        phone=stakeholder.phone,
        role=stakeholder.role.value,
    )


@pytest.fixture
def event() -> GeopoliticalEvent:
    return GeopoliticalEvent(
        id="evt-001",
        title="Port closure in Rotterdam",
        description="Strike action halts container traffic",
        severity="high",
        regions=["EU"],
    )


@pytest.fixture
def email_sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def sms_sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def dispatcher(email_sender, sms_sender) -> ChannelDispatcher:
    return ChannelDispatcher(
        {
            Channel.EMAIL: email_sender,
            Channel.SMS: sms_sender,
            Channel.INTERNAL: InternalSender(),
        },
        timeout=1.0,
    )


@pytest.fixture
def repository() -> InMemoryRoomRepository:
    return InMemoryRoomRepository()


@pytest.fixture
def scorer() -> FixedScorer:
    return FixedScorer({"p-1": 0.45, "p-2": 0.65})


@pytest.fixture
def service(repository, dispatcher, event, scorer) -> CrisisRoomService:
    return CrisisRoomService(
        repository=repository,
        dispatcher=dispatcher,
        events=InMemoryEventSource([event]),
        profiles=InMemoryProfileSource([{"id": "p-1"}, {"id": "p-2"}]),
        scorer=scorer,
    )


@pytest.fixture
def stakeholders() -> list[Stakeholder]:
    return [
        make_stakeholder("Alice", escalation_level=1),
        make_stakeholder("Bob", escalation_level=3, role=StakeholderRole.EXECUTIVE),
        make_stakeholder("Carol", escalation_level=5, is_active=False),
    ]


@pytest_asyncio.fixture
async def room(service, event, stakeholders):
    """An active room with three stakeholders (one inactive)."""
    return await service.create_room(
        RoomCreate(event_id=event.id, stakeholders=stakeholders, created_by="ops")
    )

"""
Room persistence.

Rooms are loaded and saved as whole aggregates. Every save bumps
`Room.version`; a save whose version no longer matches the stored one
raises ConcurrencyError. There is no delete: rooms end in `resolved`.
"""

from typing import Optional, Protocol

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crisiscomm.db.engine import session_scope
from crisiscomm.db.models import CrisisRoomRecord, GeopoliticalEventRecord, UserProfileRecord
from crisiscomm.exceptions import ConcurrencyError
from crisiscomm.external import Profile
from crisiscomm.schemas.room import GeopoliticalEvent, Room, RoomStatus, Severity

logger = structlog.get_logger(__name__)


class RoomRepository(Protocol):
    async def get(self, room_id: str) -> Optional[Room]:
        """Return a private copy of the room, or None."""
        ...

    async def add(self, room: Room) -> None: ...

    async def save(self, room: Room) -> None:
        """Persist a loaded room; bumps room.version or raises ConcurrencyError."""
        ...

    async def list_rooms(
        self,
        status: Optional[RoomStatus] = None,
        severity: Optional[Severity] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> list[Room]:
        """Newest first."""
        ...

    async def count(
        self, status: Optional[RoomStatus] = None, severity: Optional[Severity] = None
    ) -> int: ...

    async def list_active_ids(self) -> list[str]:
        """Ids of every room not yet resolved."""
        ...


# ── In-memory ──────────────────────────────────────────────────────────


class InMemoryRoomRepository:
    """Dict-backed repository. Stores and hands out deep copies."""

    def __init__(self):
        self._rooms: dict[str, Room] = {}

    async def get(self, room_id: str) -> Optional[Room]:
        room = self._rooms.get(room_id)
        return room.model_copy(deep=True) if room else None

    async def add(self, room: Room) -> None:
        if room.id in self._rooms:
            raise ConcurrencyError(f"Room already exists: {room.id}")
        self._rooms[room.id] = room.model_copy(deep=True)

    async def save(self, room: Room) -> None:
        stored = self._rooms.get(room.id)
        if stored is None or stored.version != room.version:
            raise ConcurrencyError(
                f"Room {room.id} was modified concurrently",
                {"expected_version": room.version},
            )
        room.version += 1
        self._rooms[room.id] = room.model_copy(deep=True)

    def _filtered(self, status, severity) -> list[Room]:
        rooms = [
            r for r in self._rooms.values()
            if (status is None or r.status == status)
            and (severity is None or r.severity == severity)
        ]
        return sorted(rooms, key=lambda r: r.created_at, reverse=True)

    async def list_rooms(self, status=None, severity=None, offset=0, limit=20) -> list[Room]:
        return [
            r.model_copy(deep=True)
            for r in self._filtered(status, severity)[offset:offset + limit]
        ]

    async def count(self, status=None, severity=None) -> int:
        return len(self._filtered(status, severity))

    async def list_active_ids(self) -> list[str]:
        return [r.id for r in self._rooms.values() if r.status != RoomStatus.RESOLVED]


# ── SQL ────────────────────────────────────────────────────────────────


def _to_columns(room: Room) -> dict:
    return {
        "event_id": room.event_id,
        "status": room.status.value,
        "severity": room.severity.value,
        "version": room.version,
        "document": room.model_dump(mode="json"),
    }


class SqlRoomRepository:
    """Async SQLAlchemy repository over the crisis_rooms table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, room_id: str) -> Optional[Room]:
        async with session_scope(self._session_factory) as db:
            record = await db.get(CrisisRoomRecord, room_id)
            return Room.model_validate(record.document) if record else None

    async def add(self, room: Room) -> None:
        async with session_scope(self._session_factory) as db:
            db.add(CrisisRoomRecord(id=room.id, created_at=room.created_at, **_to_columns(room)))
        logger.debug("room_inserted", room_id=room.id)

    async def save(self, room: Room) -> None:
        expected = room.version
        room.version = expected + 1
        async with session_scope(self._session_factory) as db:
            result = await db.execute(
                update(CrisisRoomRecord)
                .where(
                    CrisisRoomRecord.id == room.id,
                    CrisisRoomRecord.version == expected,
                )
                .values(**_to_columns(room))
            )
            if result.rowcount == 0:
                room.version = expected
                raise ConcurrencyError(
                    f"Room {room.id} was modified concurrently",
                    {"expected_version": expected},
                )

    @staticmethod
    def _filter(stmt, status, severity):
        if status is not None:
            stmt = stmt.where(CrisisRoomRecord.status == status.value)
        if severity is not None:
            stmt = stmt.where(CrisisRoomRecord.severity == severity.value)
        return stmt

    async def list_rooms(self, status=None, severity=None, offset=0, limit=20) -> list[Room]:
        stmt = self._filter(select(CrisisRoomRecord), status, severity)
        stmt = stmt.order_by(CrisisRoomRecord.created_at.desc()).offset(offset).limit(limit)
        async with session_scope(self._session_factory) as db:
            result = await db.execute(stmt)
            return [Room.model_validate(r.document) for r in result.scalars().all()]

    async def count(self, status=None, severity=None) -> int:
        stmt = self._filter(select(func.count(CrisisRoomRecord.id)), status, severity)
        async with session_scope(self._session_factory) as db:
            result = await db.execute(stmt)
            return result.scalar_one()

    async def list_active_ids(self) -> list[str]:
        stmt = select(CrisisRoomRecord.id).where(
            CrisisRoomRecord.status != RoomStatus.RESOLVED.value
        )
        async with session_scope(self._session_factory) as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())


class SqlEventSource:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_event(self, event_id: str) -> Optional[GeopoliticalEvent]:
        async with session_scope(self._session_factory) as db:
            record = await db.get(GeopoliticalEventRecord, event_id)
            if record is None:
                return None
            return GeopoliticalEvent(
                id=record.id,
                title=record.title,
                description=record.description or "",
                severity=record.severity,
                regions=list(record.regions or []),
            )


class SqlProfileSource:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_profiles(self) -> list[Profile]:
        async with session_scope(self._session_factory) as db:
            result = await db.execute(select(UserProfileRecord))
            return [{"id": r.id, **(r.profile or {})} for r in result.scalars().all()]

"""
Crisis Communication SQLAlchemy Models.

A crisis room is stored as one JSON document (the aggregate) with its
queryable fields lifted into columns. Events and profiles are read-only
inputs owned by other systems.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from crisiscomm.db.compat import JSONType
from crisiscomm.db.engine import Base


class CrisisRoomRecord(Base):
    """One crisis room aggregate."""

    __tablename__ = "crisis_rooms"
    __table_args__ = (
        Index("ix_crisis_rooms_status", "status"),
        Index("ix_crisis_rooms_severity", "severity"),
        Index("ix_crisis_rooms_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    event_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    document: Mapped[dict] = mapped_column(JSONType(), nullable=False)


class GeopoliticalEventRecord(Base):
    """Read-only event feed the rooms are opened against."""

    __tablename__ = "geopolitical_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    severity: Mapped[Optional[str]] = mapped_column(String(20))
    regions: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class UserProfileRecord(Base):
    """Read-only stakeholder profile used for severity scoring."""

    __tablename__ = "user_profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    profile: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

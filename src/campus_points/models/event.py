"""Campus events and their registrations."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from campus_points.db.base import Base


class Event(Base):
    """Scheduled campus event. Check-ins are accepted around its start/end times."""

    __tablename__ = "events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    title = Column(String, nullable=False)
    host_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    participants = relationship("EventParticipant", back_populates="event", cascade="all, delete-orphan")


class EventParticipantStatus(str, Enum):
    """Registration lifecycle for event participants."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    ATTENDED = "attended"
    DECLINED = "declined"


class EventParticipant(Base):
    """Registration of an account for an event."""

    __tablename__ = "event_participants"
    __table_args__ = (
        UniqueConstraint("event_id", "account_id", name="uq_event_participants_event_account"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    status = Column(
        String(length=16),
        nullable=False,
        default=EventParticipantStatus.CONFIRMED.value,
        server_default=EventParticipantStatus.CONFIRMED.value,
    )
    registered_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    event = relationship("Event", back_populates="participants")

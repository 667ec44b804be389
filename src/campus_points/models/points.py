"""Points ledger, check-in and redemption models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    JSON,
    func,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from campus_points.db.base import Base


class LedgerEntry(Base):
    """Immutable signed point transaction. Rows are only ever inserted."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_ledger_entries_amount_nonzero"),
        Index("ix_ledger_entries_account_created", "account_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    reference_type = Column(String(length=32), nullable=True)
    reference_id = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class LedgerLock(Base):
    """Per-account serialization row; its version moves with every ledger write."""

    __tablename__ = "ledger_locks"

    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), primary_key=True)
    version = Column(Integer, nullable=False, default=0, server_default="0")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class CheckInRewardStatus(str, Enum):
    """Outcome of the reward step for a recorded check-in."""

    AWARDED = "awarded"
    DAILY_LIMIT = "daily_limit"
    RESTRICTED = "restricted"


class CheckIn(Base):
    """Attendance fact for one account at one event."""

    __tablename__ = "checkins"
    __table_args__ = (
        UniqueConstraint("event_id", "account_id", name="uq_checkins_event_account"),
        Index("ix_checkins_account_checked_in_at", "account_id", "checked_in_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False)
    checked_in_at = Column(DateTime(timezone=True), nullable=False)
    points_awarded = Column(Integer, nullable=False, default=0, server_default="0")
    reward_status = Column(
        SqlEnum(
            CheckInRewardStatus,
            name="checkin_reward_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    ledger_entry_id = Column(UUID(as_uuid=True), ForeignKey("ledger_entries.id"), nullable=True)

    ledger_entry = relationship("LedgerEntry")


class RedemptionStatus(str, Enum):
    """Lifecycle for issued redemptions; only fulfillment moves it past ACTIVE."""

    ACTIVE = "active"
    CONSUMED = "consumed"
    VOID = "void"


class Redemption(Base):
    """Coupon issued in exchange for points, identified by a unique code."""

    __tablename__ = "redemptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False, index=True)
    coupon_id = Column(UUID(as_uuid=True), ForeignKey("coupons.id"), nullable=False)
    code = Column(String(length=64), nullable=False, unique=True)
    points_spent = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(
            RedemptionStatus,
            name="redemption_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=RedemptionStatus.ACTIVE,
        server_default=RedemptionStatus.ACTIVE.value,
    )
    ledger_entry_id = Column(UUID(as_uuid=True), ForeignKey("ledger_entries.id"), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    ledger_entry = relationship("LedgerEntry")
    coupon = relationship("Coupon")

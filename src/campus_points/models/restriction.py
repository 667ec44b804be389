from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from campus_points.db.base import Base


class RestrictionTypeEnum(str, Enum):
    MESSAGING_BLOCKED = "messaging_blocked"
    MESSAGING_LIMITED = "messaging_limited"
    ACCOUNT_SUSPENDED = "account_suspended"
    ACCOUNT_BANNED = "account_banned"


class UserRestriction(Base):
    """Restriction applied by the reporting/moderation workflow."""

    __tablename__ = "user_restrictions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(
        UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    restriction_type = Column(String(length=32), nullable=False)
    reason = Column(Text, nullable=True)
    # NULL means permanent.
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

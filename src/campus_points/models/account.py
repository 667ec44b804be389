from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID

from campus_points.db.base import Base


class AccountRoleEnum(str, Enum):
    STUDENT = "student"
    FACULTY = "faculty"
    ADMIN = "admin"


class Account(Base):
    """Campus member account. Owned by the identity layer and soft-deactivated only."""

    __tablename__ = "accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, nullable=False, unique=True, index=True)
    display_name = Column(String, nullable=True)
    role = Column(
        String(length=16),
        nullable=False,
        default=AccountRoleEnum.STUDENT.value,
        server_default=AccountRoleEnum.STUDENT.value,
    )
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

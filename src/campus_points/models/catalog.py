from uuid import uuid4

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from campus_points.db.base import Base


class Coupon(Base):
    """Redeemable catalog entry managed by the partner/catalog admin surface."""

    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("points_required > 0", name="ck_coupons_points_required_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(length=32), nullable=True)
    vendor = Column(String, nullable=True)
    points_required = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

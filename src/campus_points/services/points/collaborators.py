"""Read interfaces the points core consumes from the catalog and moderation layers."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.core.settings import settings
from campus_points.models.catalog import Coupon
from campus_points.models.restriction import UserRestriction

from .ledger import as_utc, utcnow


class CouponCatalog(Protocol):
    async def get_coupon(self, coupon_id: UUID) -> Coupon | None: ...


class RestrictionGate(Protocol):
    async def is_restricted(self, account_id: UUID, *, now: datetime | None = None) -> bool: ...


def coupon_is_redeemable(coupon: Coupon | None, now: datetime) -> bool:
    if coupon is None or not coupon.is_active:
        return False
    if coupon.points_required is None or int(coupon.points_required) <= 0:
        return False
    if coupon.expires_at is not None and as_utc(coupon.expires_at) <= as_utc(now):
        return False
    return True


class SqlCouponCatalog:
    """Reads catalog rows through the caller's session, so reads join its transaction."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_coupon(self, coupon_id: UUID) -> Coupon | None:
        stmt = select(Coupon).where(Coupon.id == coupon_id).execution_options(populate_existing=True)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_redeemable(self, *, now: datetime | None = None, max_cost: int | None = None) -> list[Coupon]:
        moment = as_utc(now or utcnow())
        stmt = (
            select(Coupon)
            .where(
                Coupon.is_active.is_(True),
                Coupon.points_required > 0,
                or_(Coupon.expires_at.is_(None), Coupon.expires_at > moment),
            )
            .order_by(Coupon.points_required.asc(), Coupon.title.asc())
        )
        if max_cost is not None:
            stmt = stmt.where(Coupon.points_required <= max_cost)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())


class SqlRestrictionGate:
    """Answers "may this account earn or spend points right now".

    Decisions are memoized per instance. Gates are built per unit of work and
    never shared across requests, so a cached answer lives no longer than the
    transaction that acts on it.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        blocking_types: Sequence[str] | None = None,
    ) -> None:
        self._db = db_session
        self._blocking_types = [
            value.lower()
            for value in (
                blocking_types if blocking_types is not None else settings.points_blocking_restriction_types
            )
        ]
        self._decisions: dict[UUID, bool] = {}

    async def is_restricted(self, account_id: UUID, *, now: datetime | None = None) -> bool:
        if account_id in self._decisions:
            return self._decisions[account_id]
        if not self._blocking_types:
            self._decisions[account_id] = False
            return False

        moment = as_utc(now or utcnow())
        stmt = (
            select(UserRestriction.id)
            .where(
                UserRestriction.account_id == account_id,
                UserRestriction.is_active.is_(True),
                UserRestriction.restriction_type.in_(self._blocking_types),
                or_(UserRestriction.expires_at.is_(None), UserRestriction.expires_at > moment),
            )
            .limit(1)
        )
        restricted = (await self._db.scalar(stmt)) is not None
        self._decisions[account_id] = restricted
        if restricted:
            logger.info("Account restricted from points activity", account_id=str(account_id))
        return restricted

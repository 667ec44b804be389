"""Read-side views over the ledger, check-ins and redemptions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.core.settings import settings
from campus_points.models.account import Account, AccountRoleEnum
from campus_points.models.catalog import Coupon
from campus_points.models.event import Event, EventParticipant, EventParticipantStatus
from campus_points.models.points import CheckIn, LedgerEntry, Redemption, RedemptionStatus

from .balance import BalanceCalculator
from .collaborators import SqlCouponCatalog
from .errors import AccountNotFoundError, EventNotFoundError, PermissionDeniedError
from .ledger import as_utc, utcnow


@dataclass(slots=True)
class TransactionView:
    id: UUID
    kind: str
    points: int
    reason: str
    created_at: datetime


@dataclass(slots=True)
class LeaderboardRow:
    rank: int
    account_id: UUID
    display_name: str | None
    points: int
    activities_completed: int


@dataclass(slots=True)
class AttendanceRow:
    account_id: UUID
    display_name: str | None
    registration_status: str | None
    checked_in_at: datetime | None
    points_awarded: int


@dataclass(slots=True)
class EventAttendance:
    event_id: UUID
    title: str
    registered: int
    checked_in: int
    attendance_rate: float
    participants: list[AttendanceRow] = field(default_factory=list)


class PointsReporting:
    """Dashboard queries for members, hosts and admins."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def recent_transactions(self, account_id: UUID, *, limit: int | None = None) -> list[TransactionView]:
        bounded = max(1, min(limit or settings.recent_transactions_limit, 100))
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.account_id == account_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .limit(bounded)
        )
        rows = (await self._db.execute(stmt)).scalars().all()
        return [
            TransactionView(
                id=row.id,
                kind="earned" if row.amount > 0 else "spent",
                points=abs(row.amount),
                reason=row.reason,
                created_at=as_utc(row.created_at),
            )
            for row in rows
        ]

    async def leaderboard(self, *, limit: int | None = None) -> list[LeaderboardRow]:
        bounded = max(1, min(limit or settings.leaderboard_default_limit, 100))
        total = func.sum(LedgerEntry.amount)
        credits = func.sum(case((LedgerEntry.amount > 0, 1), else_=0))
        stmt = (
            select(Account.id, Account.display_name, total.label("points"), credits.label("activities"))
            .join(LedgerEntry, LedgerEntry.account_id == Account.id)
            .where(Account.is_active.is_(True))
            .group_by(Account.id, Account.display_name)
            .having(total > 0)
            .order_by(total.desc(), Account.display_name.asc())
            .limit(bounded)
        )
        rows = (await self._db.execute(stmt)).all()
        return [
            LeaderboardRow(
                rank=position,
                account_id=row.id,
                display_name=row.display_name,
                points=int(row.points),
                activities_completed=int(row.activities or 0),
            )
            for position, row in enumerate(rows, start=1)
        ]

    async def active_redemptions(self, account_id: UUID, *, now: datetime | None = None) -> list[Redemption]:
        moment = as_utc(now or utcnow())
        stmt = (
            select(Redemption)
            .where(
                Redemption.account_id == account_id,
                Redemption.status == RedemptionStatus.ACTIVE,
                Redemption.expires_at > moment,
            )
            .order_by(Redemption.created_at.desc())
        )
        return list((await self._db.execute(stmt)).scalars().all())

    async def affordable_coupons(self, account_id: UUID, *, now: datetime | None = None) -> list[Coupon]:
        balance = await BalanceCalculator(self._db).balance_of(account_id)
        if balance.current <= 0:
            return []
        return await SqlCouponCatalog(self._db).list_redeemable(now=now, max_cost=balance.current)

    async def event_attendance(self, event_id: UUID, viewer_id: UUID) -> EventAttendance:
        """Attendance stats for an event; visible to its host and to admins."""

        event = await self._db.get(Event, event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        viewer = await self._db.get(Account, viewer_id)
        if viewer is None or not viewer.is_active:
            raise AccountNotFoundError(viewer_id)
        if event.host_id != viewer.id and (viewer.role or "").lower() != AccountRoleEnum.ADMIN.value:
            raise PermissionDeniedError("Only the event host or an admin may view attendance")

        registrations = (
            await self._db.execute(
                select(EventParticipant, Account.display_name)
                .join(Account, Account.id == EventParticipant.account_id)
                .where(EventParticipant.event_id == event_id)
            )
        ).all()
        checkins = (
            await self._db.execute(
                select(CheckIn, Account.display_name)
                .join(Account, Account.id == CheckIn.account_id)
                .where(CheckIn.event_id == event_id)
            )
        ).all()

        by_account = {checkin.account_id: (checkin, name) for checkin, name in checkins}
        rows: list[AttendanceRow] = []
        registered = 0
        for participant, name in registrations:
            if participant.status in (EventParticipantStatus.CONFIRMED.value, EventParticipantStatus.ATTENDED.value):
                registered += 1
            checkin, _ = by_account.pop(participant.account_id, (None, None))
            rows.append(
                AttendanceRow(
                    account_id=participant.account_id,
                    display_name=name,
                    registration_status=participant.status,
                    checked_in_at=as_utc(checkin.checked_in_at) if checkin else None,
                    points_awarded=checkin.points_awarded if checkin else 0,
                )
            )
        # Hosts and admins may check in without a registration row.
        for checkin, name in by_account.values():
            rows.append(
                AttendanceRow(
                    account_id=checkin.account_id,
                    display_name=name,
                    registration_status=None,
                    checked_in_at=as_utc(checkin.checked_in_at),
                    points_awarded=checkin.points_awarded,
                )
            )

        rows.sort(key=lambda row: (row.checked_in_at is None, row.display_name or ""))
        checked_in = len(checkins)
        rate = round(checked_in / registered, 4) if registered else 0.0
        return EventAttendance(
            event_id=event.id,
            title=event.title,
            registered=registered,
            checked_in=checked_in,
            attendance_rate=rate,
            participants=rows,
        )

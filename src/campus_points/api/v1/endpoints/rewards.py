"""Member rewards: balances, ledger history, leaderboard and coupon redemptions."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_points.api.dependencies.session import ensure_self_or_admin, require_account_session
from campus_points.core.settings import settings
from campus_points.db.session import get_session, get_session_factory
from campus_points.models.account import Account
from campus_points.models.catalog import Coupon
from campus_points.models.points import LedgerEntry, Redemption
from campus_points.services.points import (
    BalanceCalculator,
    LedgerStore,
    PointsReporting,
    RedemptionCoordinator,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
    run_in_transaction,
)
from campus_points.services.points.ledger import as_utc


router = APIRouter(prefix="/rewards", tags=["rewards"])


class BalanceResponse(BaseModel):
    current: int
    earned: int
    spent: int


class TransactionResponse(BaseModel):
    id: UUID
    type: str
    points: int
    reason: str
    createdAt: datetime


class CouponResponse(BaseModel):
    id: UUID
    title: str
    description: Optional[str]
    category: Optional[str]
    vendor: Optional[str]
    pointsRequired: int
    expiresAt: Optional[datetime]


class RewardsSummaryResponse(BaseModel):
    accountId: UUID
    balance: BalanceResponse
    recentTransactions: List[TransactionResponse]
    affordableCoupons: List[CouponResponse]


class LedgerEntryResponse(BaseModel):
    id: UUID
    amount: int
    reason: str
    referenceType: Optional[str]
    referenceId: Optional[str]
    metadata: dict[str, Any] = Field(default_factory=dict)
    createdAt: datetime


class LedgerWindowResponse(BaseModel):
    entries: List[LedgerEntryResponse]
    nextCursor: Optional[str]


class LeaderboardEntryResponse(BaseModel):
    rank: int
    accountId: UUID
    displayName: Optional[str]
    points: int
    activitiesCompleted: int


class RedemptionCreateRequest(BaseModel):
    couponId: UUID


class RedemptionResponse(BaseModel):
    id: UUID
    couponId: UUID
    code: str
    status: str
    pointsSpent: int
    createdAt: datetime
    expiresAt: datetime


class RedemptionIssuedResponse(BaseModel):
    redemption: RedemptionResponse
    code: str
    expiresAt: datetime
    pointsSpent: int
    balance: BalanceResponse


def _serialize_coupon(coupon: Coupon) -> CouponResponse:
    return CouponResponse(
        id=coupon.id,
        title=coupon.title,
        description=coupon.description,
        category=coupon.category,
        vendor=coupon.vendor,
        pointsRequired=coupon.points_required,
        expiresAt=as_utc(coupon.expires_at) if coupon.expires_at else None,
    )


def _serialize_ledger_entry(entry: LedgerEntry) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=entry.id,
        amount=entry.amount,
        reason=entry.reason,
        referenceType=entry.reference_type,
        referenceId=entry.reference_id,
        metadata=dict(entry.metadata_json or {}),
        createdAt=as_utc(entry.created_at),
    )


def _serialize_redemption(redemption: Redemption) -> RedemptionResponse:
    status_value = getattr(redemption.status, "value", redemption.status)
    return RedemptionResponse(
        id=redemption.id,
        couponId=redemption.coupon_id,
        code=redemption.code,
        status=str(status_value),
        pointsSpent=redemption.points_spent,
        createdAt=as_utc(redemption.created_at),
        expiresAt=as_utc(redemption.expires_at),
    )


@router.get("/leaderboard", response_model=List[LeaderboardEntryResponse])
async def get_leaderboard(
    limit: int = Query(settings.leaderboard_default_limit, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
) -> List[LeaderboardEntryResponse]:
    rows = await PointsReporting(db).leaderboard(limit=limit)
    return [
        LeaderboardEntryResponse(
            rank=row.rank,
            accountId=row.account_id,
            displayName=row.display_name,
            points=row.points,
            activitiesCompleted=row.activities_completed,
        )
        for row in rows
    ]


@router.get("/{account_id}", response_model=RewardsSummaryResponse)
async def get_rewards_summary(
    account_id: UUID,
    actor: Account = Depends(require_account_session),
    db: AsyncSession = Depends(get_session),
) -> RewardsSummaryResponse:
    """Balance, recent activity and the coupons the member can afford right now."""

    ensure_self_or_admin(account_id, actor)
    balance = await BalanceCalculator(db).balance_of(account_id, require_account=True)
    reporting = PointsReporting(db)
    transactions = await reporting.recent_transactions(account_id)
    coupons = await reporting.affordable_coupons(account_id)
    return RewardsSummaryResponse(
        accountId=account_id,
        balance=BalanceResponse(**balance.as_dict()),
        recentTransactions=[
            TransactionResponse(
                id=item.id,
                type=item.kind,
                points=item.points,
                reason=item.reason,
                createdAt=item.created_at,
            )
            for item in transactions
        ],
        affordableCoupons=[_serialize_coupon(coupon) for coupon in coupons],
    )


@router.get("/{account_id}/ledger", response_model=LedgerWindowResponse)
async def list_ledger_history(
    account_id: UUID,
    limit: int = Query(25, ge=1, le=100),
    cursor: str | None = Query(None, description="Opaque cursor for pagination"),
    actor: Account = Depends(require_account_session),
    db: AsyncSession = Depends(get_session),
) -> LedgerWindowResponse:
    ensure_self_or_admin(account_id, actor)

    decoded_cursor = None
    if cursor:
        try:
            decoded_cursor = decode_time_uuid_cursor(cursor)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid ledger cursor") from exc

    entries, next_cursor = await LedgerStore(db).list_entries(account_id, limit=limit, cursor=decoded_cursor)
    return LedgerWindowResponse(
        entries=[_serialize_ledger_entry(entry) for entry in entries],
        nextCursor=encode_time_uuid_cursor(*next_cursor) if next_cursor else None,
    )


@router.post(
    "/{account_id}/redemptions",
    response_model=RedemptionIssuedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_redemption(
    account_id: UUID,
    request: RedemptionCreateRequest,
    actor: Account = Depends(require_account_session),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> RedemptionIssuedResponse:
    """Spend points on a coupon and return the issued code."""

    actor_id = actor.id

    async def _operation(session: AsyncSession):
        return await RedemptionCoordinator(session).redeem(account_id, request.couponId, actor_id=actor_id)

    receipt = await run_in_transaction(session_factory, _operation)
    return RedemptionIssuedResponse(
        redemption=_serialize_redemption(receipt.redemption),
        code=receipt.code,
        expiresAt=receipt.expires_at,
        pointsSpent=receipt.points_spent,
        balance=BalanceResponse(**receipt.balance.as_dict()),
    )


@router.get("/{account_id}/redemptions", response_model=List[RedemptionResponse])
async def list_active_redemptions(
    account_id: UUID,
    actor: Account = Depends(require_account_session),
    db: AsyncSession = Depends(get_session),
) -> List[RedemptionResponse]:
    ensure_self_or_admin(account_id, actor)
    redemptions = await PointsReporting(db).active_redemptions(account_id)
    return [_serialize_redemption(redemption) for redemption in redemptions]

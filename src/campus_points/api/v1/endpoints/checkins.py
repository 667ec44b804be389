"""Event check-in and attendance endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_points.api.dependencies.session import require_account_session
from campus_points.db.session import get_session, get_session_factory
from campus_points.models.account import Account
from campus_points.services.points import CheckInGate, PointsReporting, run_in_transaction


router = APIRouter(prefix="/checkins", tags=["checkins"])


class CheckInRequest(BaseModel):
    eventId: UUID
    accountId: UUID
    proof: str = Field(..., description="QR payload scanned at the event")


class CheckInResponse(BaseModel):
    checkInId: UUID
    eventId: UUID
    accountId: UUID
    checkedInAt: datetime
    pointsAwarded: int
    dailyCheckinCount: int
    rewardStatus: str
    ledgerEntryId: Optional[UUID]


class AttendanceParticipantResponse(BaseModel):
    accountId: UUID
    displayName: Optional[str]
    registrationStatus: Optional[str]
    checkedInAt: Optional[datetime]
    pointsAwarded: int


class EventAttendanceResponse(BaseModel):
    eventId: UUID
    title: str
    registered: int
    checkedIn: int
    attendanceRate: float
    participants: List[AttendanceParticipantResponse]


@router.post("", response_model=CheckInResponse, status_code=status.HTTP_201_CREATED)
async def create_checkin(
    request: CheckInRequest,
    actor: Account = Depends(require_account_session),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CheckInResponse:
    """Record attendance for an event and credit the daily reward."""

    actor_id = actor.id

    async def _operation(session: AsyncSession):
        return await CheckInGate(session).check_in(
            request.eventId,
            request.accountId,
            request.proof,
            actor_id=actor_id,
        )

    result = await run_in_transaction(session_factory, _operation)
    return CheckInResponse(
        checkInId=result.check_in_id,
        eventId=result.event_id,
        accountId=result.account_id,
        checkedInAt=result.checked_in_at,
        pointsAwarded=result.points_awarded,
        dailyCheckinCount=result.daily_checkin_count,
        rewardStatus=result.reward_status.value,
        ledgerEntryId=result.ledger_entry_id,
    )


@router.get("/events/{event_id}", response_model=EventAttendanceResponse)
async def get_event_attendance(
    event_id: UUID,
    actor: Account = Depends(require_account_session),
    db: AsyncSession = Depends(get_session),
) -> EventAttendanceResponse:
    attendance = await PointsReporting(db).event_attendance(event_id, actor.id)
    return EventAttendanceResponse(
        eventId=attendance.event_id,
        title=attendance.title,
        registered=attendance.registered,
        checkedIn=attendance.checked_in,
        attendanceRate=attendance.attendance_rate,
        participants=[
            AttendanceParticipantResponse(
                accountId=row.account_id,
                displayName=row.display_name,
                registrationStatus=row.registration_status,
                checkedInAt=row.checked_in_at,
                pointsAwarded=row.points_awarded,
            )
            for row in attendance.participants
        ],
    )

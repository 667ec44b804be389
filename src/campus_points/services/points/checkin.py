"""Event check-in gate: eligibility, at-most-once attendance and the reward credit."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Callable
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.core.settings import settings
from campus_points.models.account import Account
from campus_points.models.event import Event, EventParticipant, EventParticipantStatus
from campus_points.models.points import CheckIn, CheckInRewardStatus
from campus_points.observability.points import PointsObservabilityStore, get_points_store
from campus_points.observability.tracing import get_points_tracer

from .collaborators import RestrictionGate, SqlRestrictionGate
from .errors import (
    AccountNotFoundError,
    AlreadyCheckedInError,
    EventNotFoundError,
    InvalidProofError,
    NotRegisteredError,
    OutsideWindowError,
    PermissionDeniedError,
    PointsError,
)
from .ledger import LedgerStore, as_utc, utcnow
from .schedule import daily_checkin_index, reward_for_index


_REGISTERED_STATUSES = {
    EventParticipantStatus.CONFIRMED.value,
    EventParticipantStatus.ATTENDED.value,
}


@dataclass(slots=True)
class CheckInResult:
    """Outcome returned to the API layer after a successful check-in."""

    check_in_id: UUID
    event_id: UUID
    account_id: UUID
    checked_in_at: datetime
    points_awarded: int
    daily_checkin_count: int
    reward_status: CheckInRewardStatus
    ledger_entry_id: UUID | None


def build_checkin_proof(event: Event) -> str:
    """Payload encoded into an event's QR code."""

    return f"event:{event.id}:{as_utc(event.starts_at).isoformat()}"


def checkin_window(event: Event) -> tuple[datetime, datetime]:
    """Return the inclusive ``(opens_at, closes_at)`` interval for check-ins."""

    opens_at = as_utc(event.starts_at) - timedelta(minutes=settings.checkin_early_window_minutes)
    return opens_at, as_utc(event.ends_at)


class CheckInGate:
    """Records attendance once per (event, account) and credits the daily reward.

    The check-in row, the registration update and the ledger credit commit
    together or not at all.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        restriction_gate_factory: Callable[[AsyncSession], RestrictionGate] = SqlRestrictionGate,
        observability: PointsObservabilityStore | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        self._db = db_session
        self._ledger = LedgerStore(db_session)
        self._restriction_gate_factory = restriction_gate_factory
        self._observability = observability or get_points_store()
        self._tz = tz

    async def check_in(
        self,
        event_id: UUID,
        account_id: UUID,
        proof: str,
        *,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> CheckInResult:
        moment = as_utc(now or utcnow())
        with get_points_tracer().start_as_current_span("points.check_in") as span:
            span.set_attribute("points.event_id", str(event_id))
            span.set_attribute("points.account_id", str(account_id))
            try:
                result = await self._check_in(event_id, account_id, proof, actor_id=actor_id, now=moment)
                await self._db.commit()
            except PointsError as exc:
                await self._db.rollback()
                span.set_attribute("points.rejected", exc.code)
                self._observability.record_checkin_rejected(exc.code)
                logger.info(
                    "Check-in rejected",
                    event_id=str(event_id),
                    account_id=str(account_id),
                    reason=exc.code,
                )
                raise
            except Exception:
                await self._db.rollback()
                raise
            span.set_attribute("points.reward_status", result.reward_status.value)

        self._observability.record_checkin(result.reward_status.value, result.points_awarded)
        logger.info(
            "Recorded event check-in",
            event_id=str(event_id),
            account_id=str(account_id),
            points_awarded=result.points_awarded,
            daily_checkin_count=result.daily_checkin_count,
            reward_status=result.reward_status.value,
        )
        return result

    async def _check_in(
        self,
        event_id: UUID,
        account_id: UUID,
        proof: str,
        *,
        actor_id: UUID | None,
        now: datetime,
    ) -> CheckInResult:
        if actor_id is not None and actor_id != account_id:
            await self._ensure_staff_actor(actor_id)
        account = await self._load_account(account_id)

        event = await self._db.get(Event, event_id)
        if event is None or not event.is_active:
            raise EventNotFoundError(event_id)

        self._verify_proof(event, proof)

        opens_at, closes_at = checkin_window(event)
        if now < opens_at or now > closes_at:
            raise OutsideWindowError(event_id, opens_at, closes_at)

        if await self._find_checkin(event_id, account_id) is not None:
            raise AlreadyCheckedInError(event_id, account_id)

        registration = await self._find_registration(event_id, account_id)
        registered = registration is not None and registration.status in _REGISTERED_STATUSES
        if not registered and not self._registration_exempt(event, account):
            raise NotRegisteredError(event_id, account_id)

        await self._ledger.lock_account(account_id, now=now)

        # One gate per call, read under the lock: the decision never outlives this transaction.
        restriction_gate = self._restriction_gate_factory(self._db)
        restricted = await restriction_gate.is_restricted(account_id, now=now)
        daily_index = await daily_checkin_index(self._db, account_id, now, tz=self._tz)

        check_in_id = uuid4()
        if restricted:
            points = 0
            reward_status = CheckInRewardStatus.RESTRICTED
        else:
            points = reward_for_index(daily_index)
            reward_status = CheckInRewardStatus.AWARDED if points > 0 else CheckInRewardStatus.DAILY_LIMIT

        ledger_entry_id: UUID | None = None
        if points > 0:
            entry = await self._ledger.append(
                account_id,
                points,
                f"event_checkin:{event_id}",
                reference_type="event_checkin",
                reference_id=str(check_in_id),
                metadata={"event_id": str(event_id), "daily_index": daily_index},
                now=now,
            )
            ledger_entry_id = entry.id

        self._db.add(
            CheckIn(
                id=check_in_id,
                event_id=event_id,
                account_id=account_id,
                checked_in_at=now,
                points_awarded=points,
                reward_status=reward_status,
                ledger_entry_id=ledger_entry_id,
            )
        )
        if registration is not None and registration.status != EventParticipantStatus.ATTENDED.value:
            registration.status = EventParticipantStatus.ATTENDED.value

        try:
            await self._db.flush()
        except IntegrityError as exc:
            await self._db.rollback()
            if await self._find_checkin(event_id, account_id) is not None:
                logger.warning(
                    "Detected race on event check-in",
                    event_id=str(event_id),
                    account_id=str(account_id),
                )
                raise AlreadyCheckedInError(event_id, account_id) from exc
            raise

        return CheckInResult(
            check_in_id=check_in_id,
            event_id=event_id,
            account_id=account_id,
            checked_in_at=now,
            points_awarded=points,
            daily_checkin_count=daily_index,
            reward_status=reward_status,
            ledger_entry_id=ledger_entry_id,
        )

    async def _load_account(self, account_id: UUID) -> Account:
        account = await self._db.get(Account, account_id)
        if account is None or not account.is_active:
            raise AccountNotFoundError(account_id)
        return account

    async def _ensure_staff_actor(self, actor_id: UUID) -> None:
        actor = await self._db.get(Account, actor_id)
        if actor is None or not actor.is_active or (actor.role or "").lower() not in settings.checkin_staff_roles:
            raise PermissionDeniedError("Only staff may check in other members")

    @staticmethod
    def _verify_proof(event: Event, proof: str | None) -> None:
        token = (proof or "").strip()
        if not token:
            raise InvalidProofError("Check-in proof is required")
        if settings.checkin_require_proof_match and not token.startswith(f"event:{event.id}:"):
            raise InvalidProofError("Check-in proof does not belong to this event")

    @staticmethod
    def _registration_exempt(event: Event, account: Account) -> bool:
        if event.host_id is not None and event.host_id == account.id:
            return True
        return (account.role or "").lower() in settings.checkin_registration_exempt_roles

    async def _find_checkin(self, event_id: UUID, account_id: UUID) -> CheckIn | None:
        stmt = select(CheckIn).where(CheckIn.event_id == event_id, CheckIn.account_id == account_id)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_registration(self, event_id: UUID, account_id: UUID) -> EventParticipant | None:
        stmt = select(EventParticipant).where(
            EventParticipant.event_id == event_id,
            EventParticipant.account_id == account_id,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

"""Coupon redemption: balance check, debit and code issuance in one transaction."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.core.settings import settings
from campus_points.models.catalog import Coupon
from campus_points.models.points import Redemption, RedemptionStatus
from campus_points.observability.points import PointsObservabilityStore, get_points_store
from campus_points.observability.tracing import get_points_tracer

from .balance import Balance, BalanceCalculator
from .collaborators import CouponCatalog, RestrictionGate, SqlCouponCatalog, SqlRestrictionGate, coupon_is_redeemable
from .errors import (
    AccountRestrictedError,
    CodeGenerationFailedError,
    CouponUnavailableError,
    InsufficientBalanceError,
    PermissionDeniedError,
    PointsError,
)
from .ledger import LedgerStore, as_utc, utcnow


_BASE36_ALPHABET = string.digits + string.ascii_uppercase
_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def code_prefix_for(coupon: Coupon) -> str:
    """First three letters of the coupon category, upper-cased."""

    category = "".join(ch for ch in (coupon.category or "") if ch.isalnum())
    return category[:3].upper() or settings.redemption_code_default_prefix


def build_redemption_code(prefix: str, now: datetime) -> str:
    """Compose ``<PREFIX>-<base36 ms timestamp>-<random suffix>``."""

    millis = int(as_utc(now).timestamp() * 1000)
    suffix = "".join(
        secrets.choice(_SUFFIX_ALPHABET) for _ in range(settings.redemption_code_suffix_length)
    )
    return f"{prefix}-{_to_base36(millis)}-{suffix}"


@dataclass(slots=True)
class RedemptionReceipt:
    redemption: Redemption
    code: str
    expires_at: datetime
    points_spent: int
    balance: Balance


class RedemptionCoordinator:
    """Exchanges points for a coupon without ever overdrawing the account.

    The balance check and the debit run under the account's ledger lock, so
    concurrent redemptions for one account are serialized and each sees the
    previous one's debit.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        catalog: CouponCatalog | None = None,
        restriction_gate_factory: Callable[[AsyncSession], RestrictionGate] = SqlRestrictionGate,
        code_factory: Callable[[str, datetime], str] = build_redemption_code,
        observability: PointsObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._ledger = LedgerStore(db_session)
        self._balances = BalanceCalculator(db_session)
        self._catalog = catalog or SqlCouponCatalog(db_session)
        self._restriction_gate_factory = restriction_gate_factory
        self._code_factory = code_factory
        self._observability = observability or get_points_store()

    async def redeem(
        self,
        account_id: UUID,
        coupon_id: UUID,
        *,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> RedemptionReceipt:
        moment = as_utc(now or utcnow())
        with get_points_tracer().start_as_current_span("points.redeem") as span:
            span.set_attribute("points.account_id", str(account_id))
            span.set_attribute("points.coupon_id", str(coupon_id))
            try:
                receipt = await self._redeem(account_id, coupon_id, actor_id=actor_id, now=moment)
                await self._db.commit()
            except PointsError as exc:
                await self._db.rollback()
                span.set_attribute("points.rejected", exc.code)
                self._observability.record_redemption_rejected(exc.code)
                logger.info(
                    "Redemption rejected",
                    account_id=str(account_id),
                    coupon_id=str(coupon_id),
                    reason=exc.code,
                )
                raise
            except Exception:
                await self._db.rollback()
                raise

        self._observability.record_redemption(receipt.points_spent)
        logger.info(
            "Issued coupon redemption",
            account_id=str(account_id),
            coupon_id=str(coupon_id),
            redemption_id=str(receipt.redemption.id),
            points_spent=receipt.points_spent,
            balance=receipt.balance.current,
        )
        return receipt

    async def _redeem(
        self,
        account_id: UUID,
        coupon_id: UUID,
        *,
        actor_id: UUID | None,
        now: datetime,
    ) -> RedemptionReceipt:
        if actor_id is not None and actor_id != account_id:
            raise PermissionDeniedError("Members may only redeem coupons for themselves")

        await self._ledger.lock_account(account_id, now=now)

        # Read under the lock so the decision belongs to the transaction that spends.
        restriction_gate = self._restriction_gate_factory(self._db)
        if await restriction_gate.is_restricted(account_id, now=now):
            raise AccountRestrictedError(account_id)

        coupon = await self._catalog.get_coupon(coupon_id)
        if not coupon_is_redeemable(coupon, now):
            raise CouponUnavailableError(coupon_id)

        cost = int(coupon.points_required)
        balance = await self._balances.balance_of(account_id)
        if balance.current < cost:
            raise InsufficientBalanceError(balance.current, cost)

        redemption = await self._issue(account_id, coupon, cost, now)
        remaining = await self._balances.balance_of(account_id)
        return RedemptionReceipt(
            redemption=redemption,
            code=redemption.code,
            expires_at=redemption.expires_at,
            points_spent=cost,
            balance=remaining,
        )

    async def _issue(self, account_id: UUID, coupon: Coupon, cost: int, now: datetime) -> Redemption:
        """Debit and insert the redemption under a fresh code, within the attempt budget.

        Each attempt runs in a savepoint: a code taken by a concurrent writer
        between the lookup and the insert undoes that attempt's debit only.
        """

        prefix = code_prefix_for(coupon)
        max_attempts = settings.redemption_code_max_attempts
        for attempt in range(1, max_attempts + 1):
            code = self._code_factory(prefix, now)
            if await self._code_taken(code):
                self._record_collision(attempt, code)
                continue
            try:
                async with self._db.begin_nested():
                    redemption = await self._insert_redemption(account_id, coupon, cost, code, now)
            except IntegrityError:
                if not await self._code_taken(code):
                    raise
                self._record_collision(attempt, code, at_insert=True)
                continue
            return redemption

        raise CodeGenerationFailedError(f"No unique redemption code after {max_attempts} attempts")

    async def _insert_redemption(
        self,
        account_id: UUID,
        coupon: Coupon,
        cost: int,
        code: str,
        now: datetime,
    ) -> Redemption:
        redemption_id = uuid4()
        entry = await self._ledger.append(
            account_id,
            -cost,
            f"coupon_redemption:{coupon.id}:{code}",
            reference_type="redemption",
            reference_id=str(redemption_id),
            metadata={"coupon_id": str(coupon.id), "code": code},
            now=now,
        )
        redemption = Redemption(
            id=redemption_id,
            account_id=account_id,
            coupon_id=coupon.id,
            code=code,
            points_spent=cost,
            status=RedemptionStatus.ACTIVE,
            ledger_entry_id=entry.id,
            created_at=now,
            expires_at=now + timedelta(days=settings.redemption_validity_days),
        )
        self._db.add(redemption)
        await self._db.flush()
        return redemption

    async def _code_taken(self, code: str) -> bool:
        taken = await self._db.scalar(select(Redemption.id).where(Redemption.code == code))
        return taken is not None

    def _record_collision(self, attempt: int, code: str, *, at_insert: bool = False) -> None:
        self._observability.record_code_collision()
        logger.warning("Redemption code collision", attempt=attempt, code=code, at_insert=at_insert)

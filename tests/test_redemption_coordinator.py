import re
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from campus_points.models.catalog import Coupon
from campus_points.models.points import LedgerEntry, LedgerLock, Redemption, RedemptionStatus
from campus_points.observability.points import get_points_store
from campus_points.services.points import (
    AccountNotFoundError,
    AccountRestrictedError,
    BalanceCalculator,
    CodeGenerationFailedError,
    CouponUnavailableError,
    InsufficientBalanceError,
    PermissionDeniedError,
    RedemptionCoordinator,
    build_redemption_code,
)

from conftest import NOW


def _scripted_codes(*codes: str):
    remaining = list(codes)

    def factory(prefix: str, now) -> str:
        return remaining.pop(0) if len(remaining) > 1 else remaining[0]

    return factory


async def _redemption_count(session) -> int:
    return int(await session.scalar(select(func.count()).select_from(Redemption)))


async def _ledger_count(session, account_id) -> int:
    stmt = select(func.count()).select_from(LedgerEntry).where(LedgerEntry.account_id == account_id)
    return int(await session.scalar(stmt))


class _FixedCatalog:
    def __init__(self, coupon: Coupon) -> None:
        self._coupon = coupon

    async def get_coupon(self, coupon_id):
        return self._coupon


class _RacingCoordinator(RedemptionCoordinator):
    """Misses every pre-insert code lookup, as if another writer took the code in between."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._blind_lookup = True

    async def _code_taken(self, code: str) -> bool:
        blind, self._blind_lookup = self._blind_lookup, not self._blind_lookup
        if blind:
            return False
        return await super()._code_taken(code)


@pytest.mark.asyncio
async def test_insufficient_balance_leaves_no_trace(session_factory, seeder) -> None:
    student = await seeder.account()
    coupon = await seeder.coupon(points_required=50)
    await seeder.grant(student, 40)

    async with session_factory() as session:
        with pytest.raises(InsufficientBalanceError) as excinfo:
            await RedemptionCoordinator(session).redeem(student.id, coupon.id, now=NOW)

    assert excinfo.value.current == 40
    assert excinfo.value.required == 50
    assert excinfo.value.details() == {"current": 40, "required": 50}

    async with session_factory() as session:
        assert await _redemption_count(session) == 0
        assert (await BalanceCalculator(session).balance_of(student.id)).current == 40
    assert get_points_store().snapshot().redemptions["rejected:insufficient_balance"] == 1


@pytest.mark.asyncio
async def test_exact_balance_redemption_issues_code_and_debits(session_factory, seeder) -> None:
    student = await seeder.account()
    coupon = await seeder.coupon(points_required=50, category="food")
    await seeder.grant(student, 50)

    async with session_factory() as session:
        receipt = await RedemptionCoordinator(session).redeem(student.id, coupon.id, actor_id=student.id, now=NOW)

    assert receipt.balance.current == 0
    assert receipt.points_spent == 50
    assert receipt.expires_at == NOW + timedelta(days=30)
    assert re.fullmatch(r"FOO-[0-9A-Z]+-[A-Z0-9]{4}", receipt.code)

    async with session_factory() as session:
        redemption = await session.scalar(select(Redemption))
        debit = await session.get(LedgerEntry, redemption.ledger_entry_id)
        balance = await BalanceCalculator(session).balance_of(student.id)

    assert redemption.code == receipt.code
    assert redemption.status is RedemptionStatus.ACTIVE
    assert redemption.points_spent == 50
    assert debit.amount == -50
    assert debit.reason == f"coupon_redemption:{coupon.id}:{receipt.code}"
    assert balance.as_dict() == {"current": 0, "earned": 50, "spent": 50}

    snapshot = get_points_store().snapshot()
    assert snapshot.redemptions["issued"] == 1
    assert snapshot.points["spent"] == 50


@pytest.mark.asyncio
async def test_each_redemption_issues_a_new_code(session_factory, seeder) -> None:
    student = await seeder.account()
    coupon = await seeder.coupon(points_required=30, category=None)
    await seeder.grant(student, 100)

    codes = []
    for _ in range(2):
        async with session_factory() as session:
            receipt = await RedemptionCoordinator(session).redeem(student.id, coupon.id, now=NOW)
            codes.append(receipt.code)

    assert len(set(codes)) == 2
    assert all(code.startswith("CPN-") for code in codes)
    assert receipt.balance.current == 40


@pytest.mark.asyncio
async def test_unavailable_coupons_are_rejected(session_factory, seeder) -> None:
    student = await seeder.account()
    await seeder.grant(student, 500)
    inactive = await seeder.coupon(points_required=10, is_active=False)
    expired = await seeder.coupon(points_required=10, expires_at=NOW - timedelta(minutes=1))

    for coupon_id in (inactive.id, expired.id, uuid4()):
        async with session_factory() as session:
            with pytest.raises(CouponUnavailableError):
                await RedemptionCoordinator(session).redeem(student.id, coupon_id, now=NOW)

    async with session_factory() as session:
        assert (await BalanceCalculator(session).balance_of(student.id)).current == 500


@pytest.mark.asyncio
async def test_code_collision_is_retried(session_factory, seeder) -> None:
    student = await seeder.account()
    coupon = await seeder.coupon(points_required=10)
    await seeder.grant(student, 100)

    async with session_factory() as session:
        first = await RedemptionCoordinator(session, code_factory=_scripted_codes("FOO-1-AAAA")).redeem(
            student.id, coupon.id, now=NOW
        )

    async with session_factory() as session:
        second = await RedemptionCoordinator(
            session, code_factory=_scripted_codes("FOO-1-AAAA", "FOO-1-BBBB")
        ).redeem(student.id, coupon.id, now=NOW)

    assert first.code == "FOO-1-AAAA"
    assert second.code == "FOO-1-BBBB"
    assert get_points_store().snapshot().redemptions["code_collisions"] == 1


@pytest.mark.asyncio
async def test_code_generation_gives_up_after_bounded_attempts(session_factory, seeder) -> None:
    student = await seeder.account()
    coupon = await seeder.coupon(points_required=10)
    await seeder.grant(student, 100)

    async with session_factory() as session:
        await RedemptionCoordinator(session, code_factory=_scripted_codes("FOO-1-AAAA")).redeem(
            student.id, coupon.id, now=NOW
        )

    async with session_factory() as session:
        with pytest.raises(CodeGenerationFailedError):
            await RedemptionCoordinator(session, code_factory=_scripted_codes("FOO-1-AAAA")).redeem(
                student.id, coupon.id, now=NOW
            )

    async with session_factory() as session:
        assert await _redemption_count(session) == 1
        assert (await BalanceCalculator(session).balance_of(student.id)).current == 90
    assert get_points_store().snapshot().redemptions["code_collisions"] == 5


@pytest.mark.asyncio
async def test_restricted_accounts_cannot_spend(session_factory, seeder) -> None:
    student = await seeder.account()
    coupon = await seeder.coupon(points_required=10)
    await seeder.grant(student, 100)
    await seeder.restrict(student, restriction_type="account_banned")

    async with session_factory() as session:
        with pytest.raises(AccountRestrictedError):
            await RedemptionCoordinator(session).redeem(student.id, coupon.id, now=NOW)

        assert await _redemption_count(session) == 0


@pytest.mark.asyncio
async def test_members_only_redeem_for_themselves(session_factory, seeder) -> None:
    student = await seeder.account()
    admin = await seeder.account(role="admin")
    coupon = await seeder.coupon(points_required=10)
    await seeder.grant(student, 100)

    async with session_factory() as session:
        coordinator = RedemptionCoordinator(session)
        with pytest.raises(PermissionDeniedError):
            await coordinator.redeem(student.id, coupon.id, actor_id=admin.id, now=NOW)
        with pytest.raises(AccountNotFoundError):
            await coordinator.redeem(uuid4(), coupon.id, now=NOW)


def test_build_redemption_code_shape() -> None:
    code = build_redemption_code("BOO", NOW)
    prefix, stamp, suffix = code.split("-")

    assert prefix == "BOO"
    assert int(stamp, 36) == int(NOW.timestamp() * 1000)
    assert re.fullmatch(r"[A-Z0-9]{4}", suffix)


@pytest.mark.asyncio
@pytest.mark.parametrize("points_required", [-25, 0])
async def test_coupons_without_a_positive_cost_are_unavailable(session_factory, seeder, points_required) -> None:
    student = await seeder.account()
    await seeder.grant(student, 10)
    broken = Coupon(id=uuid4(), title="Misconfigured", category="food", points_required=points_required, is_active=True)

    async with session_factory() as session:
        with pytest.raises(CouponUnavailableError):
            await RedemptionCoordinator(session, catalog=_FixedCatalog(broken)).redeem(
                student.id, broken.id, now=NOW
            )

    async with session_factory() as session:
        assert await _redemption_count(session) == 0
        assert await _ledger_count(session, student.id) == 1
        assert (await BalanceCalculator(session).balance_of(student.id)).as_dict() == {
            "current": 10,
            "earned": 10,
            "spent": 0,
        }


@pytest.mark.asyncio
async def test_catalog_rejects_non_positive_costs(seeder) -> None:
    with pytest.raises(IntegrityError):
        await seeder.coupon(points_required=0)


@pytest.mark.asyncio
async def test_insert_collision_undoes_the_debit(session_factory, seeder) -> None:
    student = await seeder.account()
    coupon = await seeder.coupon(points_required=10)
    await seeder.grant(student, 100)

    async with session_factory() as session:
        await RedemptionCoordinator(session, code_factory=_scripted_codes("FOO-1-AAAA")).redeem(
            student.id, coupon.id, now=NOW
        )

    async with session_factory() as session:
        with pytest.raises(CodeGenerationFailedError):
            await _RacingCoordinator(session, code_factory=_scripted_codes("FOO-1-AAAA")).redeem(
                student.id, coupon.id, now=NOW
            )

    async with session_factory() as session:
        assert await _ledger_count(session, student.id) == 2
        assert await _redemption_count(session) == 1
        assert (await BalanceCalculator(session).balance_of(student.id)).current == 90
    assert get_points_store().snapshot().redemptions["code_collisions"] == 5


@pytest.mark.asyncio
async def test_insert_collision_retries_with_a_fresh_code(session_factory, seeder) -> None:
    student = await seeder.account()
    coupon = await seeder.coupon(points_required=10)
    await seeder.grant(student, 100)

    async with session_factory() as session:
        await RedemptionCoordinator(session, code_factory=_scripted_codes("FOO-1-AAAA")).redeem(
            student.id, coupon.id, now=NOW
        )

    async with session_factory() as session:
        receipt = await _RacingCoordinator(
            session, code_factory=_scripted_codes("FOO-1-AAAA", "FOO-1-BBBB")
        ).redeem(student.id, coupon.id, now=NOW)

    assert receipt.code == "FOO-1-BBBB"
    assert receipt.balance.current == 80

    async with session_factory() as session:
        reasons = (
            await session.scalars(
                select(LedgerEntry.reason).where(LedgerEntry.account_id == student.id, LedgerEntry.amount < 0)
            )
        ).all()
        assert await _redemption_count(session) == 2

    assert sorted(reasons) == [
        f"coupon_redemption:{coupon.id}:FOO-1-AAAA",
        f"coupon_redemption:{coupon.id}:FOO-1-BBBB",
    ]
    assert get_points_store().snapshot().redemptions["code_collisions"] == 1


@pytest.mark.asyncio
async def test_restriction_is_read_while_holding_the_account_lock(session_factory, seeder) -> None:
    student = await seeder.account()
    coupon = await seeder.coupon(points_required=10)
    await seeder.grant(student, 100)
    lock_versions = []

    class LockAwareGate:
        def __init__(self, session) -> None:
            self._session = session

        async def is_restricted(self, account_id, *, now=None) -> bool:
            version = await self._session.scalar(
                select(LedgerLock.version).where(LedgerLock.account_id == account_id)
            )
            lock_versions.append(version)
            return False

    async with session_factory() as session:
        await RedemptionCoordinator(session, restriction_gate_factory=LockAwareGate).redeem(
            student.id, coupon.id, now=NOW
        )

    assert lock_versions == [2]

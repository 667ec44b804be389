from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from campus_points.core.settings import settings
from campus_points.models.event import EventParticipant
from campus_points.models.points import CheckIn, CheckInRewardStatus, LedgerEntry, LedgerLock
from campus_points.observability.points import get_points_store
from campus_points.services.points import (
    AccountNotFoundError,
    AlreadyCheckedInError,
    BalanceCalculator,
    CheckInGate,
    EventNotFoundError,
    InvalidProofError,
    NotRegisteredError,
    OutsideWindowError,
    PermissionDeniedError,
    build_checkin_proof,
)

from conftest import NOW


async def _registered_event(seeder, account, **event_kwargs):
    host = await seeder.account(role="faculty")
    event = await seeder.event(host=host, **event_kwargs)
    await seeder.register(event, account)
    return event


async def _count(session, model, **filters) -> int:
    stmt = select(func.count()).select_from(model)
    for column, value in filters.items():
        stmt = stmt.where(getattr(model, column) == value)
    return int(await session.scalar(stmt))


@pytest.mark.asyncio
async def test_first_checkin_of_the_day_awards_full_reward(session_factory, seeder) -> None:
    student = await seeder.account()
    event = await _registered_event(seeder, student)

    async with session_factory() as session:
        result = await CheckInGate(session).check_in(
            event.id, student.id, build_checkin_proof(event), now=NOW + timedelta(minutes=5)
        )

    assert result.points_awarded == 20
    assert result.daily_checkin_count == 1
    assert result.reward_status is CheckInRewardStatus.AWARDED
    assert result.ledger_entry_id is not None

    async with session_factory() as session:
        balance = await BalanceCalculator(session).balance_of(student.id)
        checkin = await session.get(CheckIn, result.check_in_id)
        entry = await session.get(LedgerEntry, result.ledger_entry_id)
        registration = await session.scalar(
            select(EventParticipant).where(EventParticipant.event_id == event.id)
        )

    assert balance.current == 20
    assert checkin.event_id == event.id
    assert checkin.ledger_entry_id == entry.id
    assert entry.reason == f"event_checkin:{event.id}"
    assert entry.reference_type == "event_checkin"
    assert registration.status == "attended"

    snapshot = get_points_store().snapshot()
    assert snapshot.checkins["recorded"] == 1
    assert snapshot.points["awarded"] == 20


@pytest.mark.asyncio
async def test_repeat_checkin_is_rejected_without_extra_points(session_factory, seeder) -> None:
    student = await seeder.account()
    event = await _registered_event(seeder, student)
    proof = build_checkin_proof(event)

    async with session_factory() as session:
        await CheckInGate(session).check_in(event.id, student.id, proof, now=NOW)

    async with session_factory() as session:
        with pytest.raises(AlreadyCheckedInError):
            await CheckInGate(session).check_in(event.id, student.id, proof, now=NOW + timedelta(minutes=10))

    async with session_factory() as session:
        balance = await BalanceCalculator(session).balance_of(student.id)
        checkins = await _count(session, CheckIn, account_id=student.id)

    assert balance.current == 20
    assert checkins == 1
    assert get_points_store().snapshot().checkins["rejected:already_checked_in"] == 1


@pytest.mark.asyncio
async def test_rewards_decay_across_events_on_the_same_day(session_factory, seeder) -> None:
    student = await seeder.account()
    events = [await _registered_event(seeder, student, title=f"Talk {index}") for index in range(5)]

    results = []
    for offset, event in enumerate(events):
        async with session_factory() as session:
            results.append(
                await CheckInGate(session).check_in(
                    event.id,
                    student.id,
                    build_checkin_proof(event),
                    now=NOW + timedelta(minutes=offset),
                )
            )

    assert [result.points_awarded for result in results] == [20, 15, 10, 0, 0]
    assert [result.daily_checkin_count for result in results] == [1, 2, 3, 4, 5]
    assert [result.reward_status for result in results[3:]] == [CheckInRewardStatus.DAILY_LIMIT] * 2
    assert results[4].ledger_entry_id is None

    async with session_factory() as session:
        assert (await BalanceCalculator(session).balance_of(student.id)).current == 45
        assert await _count(session, CheckIn, account_id=student.id) == 5
        assert await _count(session, LedgerEntry, account_id=student.id) == 3


@pytest.mark.asyncio
async def test_daily_schedule_resets_on_the_next_day(session_factory, seeder) -> None:
    student = await seeder.account()
    today = await _registered_event(seeder, student)
    tomorrow = await _registered_event(seeder, student, starts_at=NOW + timedelta(days=1))

    async with session_factory() as session:
        await CheckInGate(session).check_in(today.id, student.id, build_checkin_proof(today), now=NOW)
    async with session_factory() as session:
        result = await CheckInGate(session).check_in(
            tomorrow.id, student.id, build_checkin_proof(tomorrow), now=NOW + timedelta(days=1)
        )

    assert result.daily_checkin_count == 1
    assert result.points_awarded == 20


@pytest.mark.asyncio
async def test_checkin_window_bounds_are_inclusive(session_factory, seeder) -> None:
    student = await seeder.account()
    early = await _registered_event(seeder, student)
    late = await _registered_event(seeder, student)

    async with session_factory() as session:
        with pytest.raises(OutsideWindowError) as excinfo:
            await CheckInGate(session).check_in(
                early.id, student.id, build_checkin_proof(early), now=NOW - timedelta(minutes=16)
            )
    assert excinfo.value.opens_at == NOW - timedelta(minutes=15)
    assert excinfo.value.closes_at == NOW + timedelta(hours=2)

    async with session_factory() as session:
        opened = await CheckInGate(session).check_in(
            early.id, student.id, build_checkin_proof(early), now=NOW - timedelta(minutes=15)
        )
    assert opened.points_awarded == 20

    async with session_factory() as session:
        with pytest.raises(OutsideWindowError):
            await CheckInGate(session).check_in(
                late.id, student.id, build_checkin_proof(late), now=NOW + timedelta(hours=2, seconds=1)
            )

    async with session_factory() as session:
        closing = await CheckInGate(session).check_in(
            late.id, student.id, build_checkin_proof(late), now=NOW + timedelta(hours=2)
        )
    assert closing.points_awarded == 15


@pytest.mark.asyncio
async def test_registration_is_required(session_factory, seeder) -> None:
    student = await seeder.account()
    pending = await seeder.account()
    host = await seeder.account(role="faculty")
    event = await seeder.event(host=host)
    await seeder.register(event, pending, status="pending")

    async with session_factory() as session:
        with pytest.raises(NotRegisteredError):
            await CheckInGate(session).check_in(event.id, student.id, build_checkin_proof(event), now=NOW)
        with pytest.raises(NotRegisteredError):
            await CheckInGate(session).check_in(event.id, pending.id, build_checkin_proof(event), now=NOW)

        assert await _count(session, CheckIn) == 0


@pytest.mark.asyncio
async def test_host_and_admin_skip_registration(session_factory, seeder) -> None:
    host = await seeder.account(role="faculty")
    admin = await seeder.account(role="admin")
    event = await seeder.event(host=host)
    proof = build_checkin_proof(event)

    async with session_factory() as session:
        hosted = await CheckInGate(session).check_in(event.id, host.id, proof, now=NOW)
    async with session_factory() as session:
        admin_result = await CheckInGate(session).check_in(event.id, admin.id, proof, now=NOW)

    assert hosted.points_awarded == 20
    assert admin_result.points_awarded == 20


@pytest.mark.asyncio
async def test_proof_must_belong_to_the_event(session_factory, seeder) -> None:
    student = await seeder.account()
    event = await _registered_event(seeder, student)
    other = await seeder.event(title="Other event")

    async with session_factory() as session:
        gate = CheckInGate(session)
        with pytest.raises(InvalidProofError):
            await gate.check_in(event.id, student.id, "   ", now=NOW)
        with pytest.raises(InvalidProofError):
            await gate.check_in(event.id, student.id, build_checkin_proof(other), now=NOW)


@pytest.mark.asyncio
async def test_proof_binding_can_be_disabled(session_factory, seeder, monkeypatch) -> None:
    student = await seeder.account()
    event = await _registered_event(seeder, student)
    monkeypatch.setattr(settings, "checkin_require_proof_match", False)

    async with session_factory() as session:
        result = await CheckInGate(session).check_in(event.id, student.id, "printed-badge-1234", now=NOW)

    assert result.points_awarded == 20


@pytest.mark.asyncio
async def test_inactive_or_unknown_events_are_not_found(session_factory, seeder) -> None:
    student = await seeder.account()
    cancelled = await _registered_event(seeder, student, is_active=False)

    async with session_factory() as session:
        gate = CheckInGate(session)
        with pytest.raises(EventNotFoundError):
            await gate.check_in(cancelled.id, student.id, build_checkin_proof(cancelled), now=NOW)
        missing = uuid4()
        with pytest.raises(EventNotFoundError):
            await gate.check_in(missing, student.id, f"event:{missing}:x", now=NOW)
        with pytest.raises(AccountNotFoundError):
            await gate.check_in(cancelled.id, uuid4(), build_checkin_proof(cancelled), now=NOW)


@pytest.mark.asyncio
async def test_restricted_account_records_attendance_without_points(session_factory, seeder) -> None:
    student = await seeder.account()
    event = await _registered_event(seeder, student)
    await seeder.restrict(student)

    async with session_factory() as session:
        result = await CheckInGate(session).check_in(event.id, student.id, build_checkin_proof(event), now=NOW)

    assert result.reward_status is CheckInRewardStatus.RESTRICTED
    assert result.points_awarded == 0
    assert result.ledger_entry_id is None

    async with session_factory() as session:
        assert await _count(session, CheckIn, account_id=student.id) == 1
        assert await _count(session, LedgerEntry, account_id=student.id) == 0


@pytest.mark.asyncio
async def test_expired_or_unrelated_restrictions_do_not_block_rewards(session_factory, seeder) -> None:
    student = await seeder.account()
    first = await _registered_event(seeder, student)
    second = await _registered_event(seeder, student)
    await seeder.restrict(student, expires_at=NOW - timedelta(days=1))
    await seeder.restrict(student, restriction_type="messaging_blocked")
    await seeder.restrict(student, is_active=False)

    async with session_factory() as session:
        result = await CheckInGate(session).check_in(first.id, student.id, build_checkin_proof(first), now=NOW)
    assert result.reward_status is CheckInRewardStatus.AWARDED

    await seeder.restrict(student, expires_at=NOW + timedelta(days=3))
    async with session_factory() as session:
        result = await CheckInGate(session).check_in(second.id, student.id, build_checkin_proof(second), now=NOW)
    assert result.reward_status is CheckInRewardStatus.RESTRICTED


@pytest.mark.asyncio
async def test_restriction_is_read_while_holding_the_account_lock(session_factory, seeder) -> None:
    student = await seeder.account()
    event = await _registered_event(seeder, student)
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
        result = await CheckInGate(session, restriction_gate_factory=LockAwareGate).check_in(
            event.id, student.id, build_checkin_proof(event), now=NOW
        )

    assert result.reward_status is CheckInRewardStatus.AWARDED
    assert lock_versions == [1]


@pytest.mark.asyncio
async def test_only_staff_may_check_in_other_members(session_factory, seeder) -> None:
    student = await seeder.account()
    classmate = await seeder.account()
    event = await _registered_event(seeder, student)
    faculty = await seeder.account(role="faculty")
    proof = build_checkin_proof(event)

    async with session_factory() as session:
        with pytest.raises(PermissionDeniedError):
            await CheckInGate(session).check_in(event.id, student.id, proof, actor_id=classmate.id, now=NOW)

    async with session_factory() as session:
        result = await CheckInGate(session).check_in(event.id, student.id, proof, actor_id=faculty.id, now=NOW)

    assert result.account_id == student.id
    assert result.points_awarded == 20

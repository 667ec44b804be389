import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()
os.environ.setdefault("TRACING_ENABLED", "false")

from campus_points.app import create_app  # noqa: E402
from campus_points.db.base import Base  # noqa: E402
from campus_points.db.session import get_session, get_session_factory  # noqa: E402
from campus_points.models import (  # noqa: E402
    Account,
    Coupon,
    Event,
    EventParticipant,
    UserRestriction,
)
from campus_points.observability.points import get_points_store  # noqa: E402
from campus_points.services.points import LedgerStore  # noqa: E402


NOW = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


class PointsSeeder:
    """Creates committed fixture rows; each helper runs in its own session."""

    def __init__(self, factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = factory
        self._counter = 0

    async def _persist(self, *rows):
        async with self._factory() as session:
            session.add_all(rows)
            await session.commit()
        return rows[0] if len(rows) == 1 else rows

    async def account(self, *, role: str = "student", display_name: str | None = None, is_active: bool = True) -> Account:
        self._counter += 1
        return await self._persist(
            Account(
                email=f"member{self._counter}@campus.test",
                display_name=display_name or f"Member {self._counter}",
                role=role,
                is_active=is_active,
            )
        )

    async def event(
        self,
        *,
        host: Account | None = None,
        starts_at: datetime = NOW,
        ends_at: datetime | None = None,
        is_active: bool = True,
        title: str = "Career fair",
    ) -> Event:
        return await self._persist(
            Event(
                title=title,
                host_id=host.id if host else None,
                starts_at=starts_at,
                ends_at=ends_at or starts_at + timedelta(hours=2),
                is_active=is_active,
            )
        )

    async def register(self, event: Event, account: Account, *, status: str = "confirmed") -> EventParticipant:
        return await self._persist(EventParticipant(event_id=event.id, account_id=account.id, status=status))

    async def coupon(
        self,
        *,
        points_required: int,
        category: str | None = "food",
        is_active: bool = True,
        expires_at: datetime | None = None,
        title: str = "Free coffee",
    ) -> Coupon:
        return await self._persist(
            Coupon(
                title=title,
                category=category,
                vendor="North Hall Cafe",
                points_required=points_required,
                is_active=is_active,
                expires_at=expires_at,
            )
        )

    async def grant(self, account: Account, amount: int, *, now: datetime = NOW, reason: str = "manual_grant") -> None:
        async with self._factory() as session:
            await LedgerStore(session).append(account.id, amount, reason, now=now)
            await session.commit()

    async def restrict(
        self,
        account: Account,
        *,
        restriction_type: str = "account_suspended",
        expires_at: datetime | None = None,
        is_active: bool = True,
    ) -> UserRestriction:
        return await self._persist(
            UserRestriction(
                account_id=account.id,
                restriction_type=restriction_type,
                reason="Reported for spam",
                expires_at=expires_at,
                is_active=is_active,
            )
        )


@pytest.fixture(autouse=True)
def reset_points_store():
    get_points_store().reset()
    yield
    get_points_store().reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed database so concurrent sessions get their own connections."""

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'points.db'}",
        future=True,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def seeder(session_factory) -> PointsSeeder:
    return PointsSeeder(session_factory)


@pytest.fixture
def file_seeder(file_session_factory) -> PointsSeeder:
    return PointsSeeder(file_session_factory)


@pytest_asyncio.fixture
async def app_with_db(file_session_factory):
    app = create_app()

    async def override_get_session():
        async with file_session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: file_session_factory

    try:
        yield app, file_session_factory
    finally:
        app.dependency_overrides.clear()

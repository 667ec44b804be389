"""Seed development accounts, a live event and a coupon catalog into the points database."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from campus_points.core.settings import settings
from campus_points.db.base import Base
from campus_points.models import Account, Coupon, Event, EventParticipant, EventParticipantStatus
from campus_points.services.points import build_checkin_proof


class SeedAccount(TypedDict):
    email: str
    display_name: str
    role: str


class SeedCoupon(TypedDict):
    title: str
    category: str
    vendor: str
    points_required: int


DEV_ACCOUNTS: list[SeedAccount] = [
    {
        "email": os.getenv("DEV_STUDENT_EMAIL", "student@campus.dev").lower(),
        "display_name": "Student QA",
        "role": "student",
    },
    {
        "email": os.getenv("DEV_FACULTY_EMAIL", "faculty@campus.dev").lower(),
        "display_name": "Faculty QA",
        "role": "faculty",
    },
    {
        "email": os.getenv("DEV_ADMIN_EMAIL", "admin@campus.dev").lower(),
        "display_name": "Admin QA",
        "role": "admin",
    },
]

DEV_COUPONS: list[SeedCoupon] = [
    {"title": "Free drip coffee", "category": "food", "vendor": "North Hall Cafe", "points_required": 30},
    {"title": "Bookstore 10% off", "category": "books", "vendor": "Campus Bookstore", "points_required": 50},
    {"title": "Gym day pass", "category": "fitness", "vendor": "Rec Center", "points_required": 80},
]


async def seed_accounts(session: AsyncSession) -> dict[str, Account]:
    accounts: dict[str, Account] = {}
    for seed in DEV_ACCOUNTS:
        with session.no_autoflush:
            existing = await session.execute(select(Account).where(Account.email == seed["email"]))
        record = existing.scalar_one_or_none()

        if record:
            record.display_name = seed["display_name"]
            record.role = seed["role"]
            record.is_active = True
        else:
            record = Account(email=seed["email"], display_name=seed["display_name"], role=seed["role"])
            session.add(record)
        accounts[seed["role"]] = record
    await session.flush()
    return accounts


async def seed_coupons(session: AsyncSession) -> None:
    for seed in DEV_COUPONS:
        existing = await session.execute(select(Coupon).where(Coupon.title == seed["title"]))
        record = existing.scalar_one_or_none()
        if record:
            record.points_required = seed["points_required"]
            record.is_active = True
        else:
            session.add(Coupon(**seed))


async def seed_event(session: AsyncSession, accounts: dict[str, Account]) -> Event:
    now = datetime.now(timezone.utc)
    event = Event(
        title="Dev orientation mixer",
        host_id=accounts["faculty"].id,
        starts_at=now,
        ends_at=now + timedelta(hours=3),
    )
    session.add(event)
    await session.flush()
    session.add(
        EventParticipant(
            event_id=event.id,
            account_id=accounts["student"].id,
            status=EventParticipantStatus.CONFIRMED.value,
        )
    )
    return event


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with session_factory() as session:
            accounts = await seed_accounts(session)
            await seed_coupons(session)
            event = await seed_event(session, accounts)
            await session.commit()
        print(f"Development catalog ready; check-in proof: {build_checkin_proof(event)}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())

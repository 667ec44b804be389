"""Async engine and session factories shared by the API and the points services."""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from campus_points.core.settings import settings


engine = create_async_engine(settings.database_url, future=True, pool_pre_ping=True)
# Rows stay readable after commit; handlers serialize them once the transaction is closed.
async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Expose the factory so write paths can open one session per transaction attempt."""

    return async_session

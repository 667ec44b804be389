"""Retry a unit of work on transient storage faults."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from loguru import logger
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_points.core.settings import settings

from .errors import PointsError

T = TypeVar("T")

_TRANSIENT_SQLSTATES = {"40001", "40P01"}


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = getattr(exc, "orig", None)
    for attr in ("sqlstate", "pgcode"):
        value = getattr(orig, attr, None)
        if value:
            return str(value)
    return None


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, (PointsError, IntegrityError)):
        return False
    if not isinstance(exc, DBAPIError):
        return False
    if exc.connection_invalidated:
        return True
    if _sqlstate(exc) in _TRANSIENT_SQLSTATES:
        return True
    return isinstance(exc, OperationalError)


async def run_in_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    operation: Callable[[AsyncSession], Awaitable[T]],
    *,
    attempts: int | None = None,
    backoff_seconds: float | None = None,
) -> T:
    """Run ``operation`` with a fresh session, retrying serialization and connection faults.

    Each attempt gets its own session and fully rolls back on failure, so a
    retried operation never observes partial state from an earlier try.
    """

    max_attempts = max(1, attempts if attempts is not None else settings.transaction_retry_attempts)
    backoff = settings.transaction_retry_backoff_seconds if backoff_seconds is None else backoff_seconds

    for attempt in range(1, max_attempts + 1):
        async with session_factory() as session:
            try:
                return await operation(session)
            except Exception as exc:
                await session.rollback()
                if attempt >= max_attempts or not is_transient_error(exc):
                    raise
                logger.warning(
                    "Retrying transaction after transient storage error",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(exc),
                )
        if backoff > 0:
            await asyncio.sleep(backoff * attempt)

    raise RuntimeError("unreachable")  # pragma: no cover

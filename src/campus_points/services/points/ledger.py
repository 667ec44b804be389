"""Append-only points ledger and the per-account write lock."""

from __future__ import annotations

import base64
from datetime import datetime, timezone
from typing import Any, Tuple
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.models.account import Account
from campus_points.models.points import LedgerEntry, LedgerLock

from .errors import AccountNotFoundError, InvalidAmountError


def as_utc(value: datetime) -> datetime:
    """Normalize a timestamp to aware UTC; naive values are stored UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerStore:
    """Writes ledger rows inside a transaction owned by the caller.

    Nothing here commits. The check-in gate and redemption coordinator decide
    when the unit of work (ledger row plus check-in or redemption row) lands.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def lock_account(self, account_id: UUID, *, now: datetime | None = None) -> int:
        """Take the account's write lock for the rest of the transaction.

        Returns the new ledger version. The UPDATE holds a row lock on
        PostgreSQL and the database write lock on SQLite until commit or
        rollback, so balance reads made afterwards cannot be invalidated by a
        concurrent writer for the same account.
        """

        moment = as_utc(now or utcnow())
        version = await self._bump_version(account_id, moment)
        if version is not None:
            return version

        account = await self._db.get(Account, account_id)
        if account is None or not account.is_active:
            raise AccountNotFoundError(account_id)

        await self._db.execute(self._insert_lock_stmt(account_id, moment))
        version = await self._bump_version(account_id, moment)
        if version is None:  # pragma: no cover - row inserted above
            raise AccountNotFoundError(account_id)
        logger.debug("Created ledger lock row", account_id=str(account_id))
        return version

    async def append(
        self,
        account_id: UUID,
        amount: int,
        reason: str,
        *,
        reference_type: str | None = None,
        reference_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> LedgerEntry:
        """Insert one immutable ledger row and flush it into the open transaction."""

        if int(amount) == 0:
            raise InvalidAmountError("Ledger entries require a non-zero amount")

        moment = as_utc(now or utcnow())
        await self.lock_account(account_id, now=moment)
        entry = LedgerEntry(
            account_id=account_id,
            amount=int(amount),
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            metadata_json=metadata or {},
            created_at=moment,
        )
        self._db.add(entry)
        await self._db.flush()
        logger.info(
            "Recorded ledger entry",
            account_id=str(account_id),
            amount=int(amount),
            reason=reason,
        )
        return entry

    async def list_entries(
        self,
        account_id: UUID,
        *,
        limit: int = 25,
        cursor: Tuple[datetime, UUID] | None = None,
    ) -> tuple[list[LedgerEntry], Tuple[datetime, UUID] | None]:
        """Return a newest-first slice of an account's ledger plus the next cursor."""

        bounded_limit = max(1, min(limit, 100))
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.account_id == account_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        )
        if cursor:
            cursor_time, cursor_id = cursor
            cursor_time = as_utc(cursor_time)
            stmt = stmt.where(
                or_(
                    LedgerEntry.created_at < cursor_time,
                    and_(
                        LedgerEntry.created_at == cursor_time,
                        LedgerEntry.id < cursor_id,
                    ),
                )
            )

        stmt = stmt.limit(bounded_limit + 1)
        result = await self._db.execute(stmt)
        rows = list(result.scalars().all())
        has_more = len(rows) > bounded_limit
        entries = rows[:bounded_limit]
        next_cursor: Tuple[datetime, UUID] | None = None
        if has_more and entries:
            tail = entries[-1]
            next_cursor = (as_utc(tail.created_at), tail.id)

        return entries, next_cursor

    async def _bump_version(self, account_id: UUID, moment: datetime) -> int | None:
        stmt = (
            update(LedgerLock)
            .where(LedgerLock.account_id == account_id)
            .values(version=LedgerLock.version + 1, updated_at=moment)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if not result.rowcount:
            return None
        version = await self._db.scalar(
            select(LedgerLock.version).where(LedgerLock.account_id == account_id)
        )
        return int(version)

    def _insert_lock_stmt(self, account_id: UUID, moment: datetime):
        dialect = self._db.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        return (
            insert(LedgerLock)
            .values(account_id=account_id, version=0, updated_at=moment)
            .on_conflict_do_nothing(index_elements=[LedgerLock.account_id])
        )


def encode_time_uuid_cursor(timestamp: datetime, identifier: UUID) -> str:
    """Encode pagination cursor for chronological queries."""

    payload = f"{timestamp.isoformat()}|{identifier}".encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("utf-8")


def decode_time_uuid_cursor(cursor: str) -> Tuple[datetime, UUID]:
    """Decode pagination cursor into datetime and UUID parts."""

    raw = base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8")
    timestamp_str, identifier_str = raw.split("|", 1)
    return datetime.fromisoformat(timestamp_str), UUID(identifier_str)

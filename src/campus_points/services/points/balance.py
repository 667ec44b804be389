"""Derived point balances computed from the ledger."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.models.account import Account
from campus_points.models.points import LedgerEntry

from .errors import AccountNotFoundError


@dataclass(frozen=True, slots=True)
class Balance:
    """Point totals for one account at read time."""

    current: int
    earned: int
    spent: int

    def as_dict(self) -> dict[str, int]:
        return {"current": self.current, "earned": self.earned, "spent": self.spent}


class BalanceCalculator:
    """Aggregates ledger rows on every call; nothing is cached between reads."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def balance_of(self, account_id: UUID, *, require_account: bool = False) -> Balance:
        if require_account:
            account = await self._db.get(Account, account_id)
            if account is None:
                raise AccountNotFoundError(account_id)

        # Pending ORM rows are flushed first so the caller reads its own writes.
        await self._db.flush()
        stmt = select(
            func.coalesce(func.sum(LedgerEntry.amount), 0),
            func.coalesce(
                func.sum(case((LedgerEntry.amount > 0, LedgerEntry.amount), else_=0)), 0
            ),
            func.coalesce(
                func.sum(case((LedgerEntry.amount < 0, -LedgerEntry.amount), else_=0)), 0
            ),
        ).where(LedgerEntry.account_id == account_id)
        current, earned, spent = (await self._db.execute(stmt)).one()
        return Balance(current=int(current), earned=int(earned), spent=int(spent))

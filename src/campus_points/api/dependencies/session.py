"""Session-aware dependencies for member-facing points APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.db.session import get_session
from campus_points.models.account import Account, AccountRoleEnum


async def require_account_session(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> Account:
    """Resolve the calling account from the forwarded session header."""

    if not session_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session user context",
        )

    try:
        account_id = UUID(session_user)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session user identifier",
        ) from error

    account = await db.get(Account, account_id)
    if account is None or not account.is_active:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session user not found",
        )

    return account


def ensure_self_or_admin(account_id: UUID, actor: Account) -> None:
    if actor.id == account_id:
        return
    if (actor.role or "").lower() == AccountRoleEnum.ADMIN.value:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not allowed to view another member's points",
    )

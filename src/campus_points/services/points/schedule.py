"""Calendar-day bookkeeping and the decaying check-in reward schedule."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone, tzinfo
from functools import lru_cache
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.core.settings import settings
from campus_points.models.points import CheckIn

from .ledger import as_utc


@lru_cache(maxsize=8)
def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def checkin_day_window(now: datetime, tz: tzinfo | None = None) -> tuple[datetime, datetime]:
    """Return the UTC ``[start, end)`` bounds of the calendar day containing ``now``."""

    zone = tz or resolve_timezone(settings.points_timezone)
    local_day = as_utc(now).astimezone(zone).date()
    start = datetime.combine(local_day, time.min, tzinfo=zone)
    end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def reward_for_index(
    index: int,
    *,
    base: int | None = None,
    step: int | None = None,
    floor: int | None = None,
    daily_limit: int | None = None,
) -> int:
    """Points for the ``index``-th check-in of the day (1-based): 20, 15, 10, then 0."""

    if index < 1:
        raise ValueError("Check-in index is 1-based")

    base = settings.checkin_base_reward_points if base is None else base
    step = settings.checkin_reward_step_points if step is None else step
    floor = settings.checkin_reward_floor_points if floor is None else floor
    daily_limit = settings.checkin_daily_reward_limit if daily_limit is None else daily_limit

    if index > daily_limit:
        return 0
    return max(base - (index - 1) * step, floor)


async def daily_checkin_index(
    db: AsyncSession,
    account_id: UUID,
    now: datetime,
    *,
    tz: tzinfo | None = None,
) -> int:
    """Return the 1-based position a check-in at ``now`` takes within its calendar day.

    Counts the account's check-ins across all events for that day. Callers must
    hold the account's ledger lock so two check-ins cannot claim the same slot.
    """

    start, end = checkin_day_window(now, tz)
    stmt = select(func.count(CheckIn.id)).where(
        CheckIn.account_id == account_id,
        CheckIn.checked_in_at >= start,
        CheckIn.checked_in_at < end,
    )
    return int(await db.scalar(stmt) or 0) + 1

"""Observability endpoints for points activity counters."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from campus_points.api.dependencies.security import require_internal_api_key
from campus_points.observability.points import get_points_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/points",
    dependencies=[Depends(require_internal_api_key)],
    summary="Points observability snapshot",
)
async def get_points_snapshot() -> dict[str, object]:
    """Check-in, redemption and point-flow counters since process start."""
    return get_points_store().snapshot().as_dict()

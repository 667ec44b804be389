"""Translate points domain failures into HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from loguru import logger

from campus_points.services.points.errors import PointsError


STATUS_BY_CODE: dict[str, int] = {
    "invalid_amount": status.HTTP_400_BAD_REQUEST,
    "account_not_found": status.HTTP_404_NOT_FOUND,
    "event_not_found": status.HTTP_404_NOT_FOUND,
    "invalid_proof": status.HTTP_400_BAD_REQUEST,
    "permission_denied": status.HTTP_403_FORBIDDEN,
    "outside_window": status.HTTP_400_BAD_REQUEST,
    "not_registered": status.HTTP_400_BAD_REQUEST,
    "already_checked_in": status.HTTP_409_CONFLICT,
    "coupon_unavailable": status.HTTP_409_CONFLICT,
    "insufficient_balance": status.HTTP_400_BAD_REQUEST,
    "code_generation_failed": status.HTTP_503_SERVICE_UNAVAILABLE,
    "account_restricted": status.HTTP_403_FORBIDDEN,
}


async def points_error_handler(request: Request, exc: PointsError) -> JSONResponse:
    status_code = STATUS_BY_CODE.get(exc.code, status.HTTP_400_BAD_REQUEST)
    logger.info(
        "Points request failed",
        path=request.url.path,
        error=exc.code,
        status_code=status_code,
    )
    body = {"error": exc.code, "detail": str(exc), **exc.details()}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PointsError, points_error_handler)


__all__ = ["STATUS_BY_CODE", "points_error_handler", "register_error_handlers"]

"""Business-rule failures raised by the points ledger, check-in gate and redemptions."""

from __future__ import annotations

from typing import Any
from uuid import UUID


class PointsError(RuntimeError):
    """Base exception for points domain failures.

    Every subclass carries a stable ``code`` so outer layers can map it to a
    response without inspecting messages. None of these are retried.
    """

    code = "points_error"

    def details(self) -> dict[str, Any]:
        return {}


class InvalidAmountError(PointsError):
    """Raised when a ledger entry would carry a zero amount."""

    code = "invalid_amount"


class AccountNotFoundError(PointsError):
    """Raised when the account is missing or soft-deactivated."""

    code = "account_not_found"

    def __init__(self, account_id: UUID) -> None:
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class EventNotFoundError(PointsError):
    code = "event_not_found"

    def __init__(self, event_id: UUID) -> None:
        super().__init__(f"Event {event_id} not found")
        self.event_id = event_id


class InvalidProofError(PointsError):
    """Raised when the check-in proof does not belong to the target event."""

    code = "invalid_proof"


class PermissionDeniedError(PointsError):
    code = "permission_denied"


class OutsideWindowError(PointsError):
    """Raised when a check-in is attempted outside the event's check-in window."""

    code = "outside_window"

    def __init__(self, event_id: UUID, opens_at: Any, closes_at: Any) -> None:
        super().__init__(f"Check-in for event {event_id} is only open between {opens_at} and {closes_at}")
        self.event_id = event_id
        self.opens_at = opens_at
        self.closes_at = closes_at

    def details(self) -> dict[str, Any]:
        return {"opensAt": self.opens_at, "closesAt": self.closes_at}


class NotRegisteredError(PointsError):
    code = "not_registered"

    def __init__(self, event_id: UUID, account_id: UUID) -> None:
        super().__init__(f"Account {account_id} is not registered for event {event_id}")
        self.event_id = event_id
        self.account_id = account_id


class AlreadyCheckedInError(PointsError):
    code = "already_checked_in"

    def __init__(self, event_id: UUID, account_id: UUID) -> None:
        super().__init__(f"Account {account_id} already checked in to event {event_id}")
        self.event_id = event_id
        self.account_id = account_id


class CouponUnavailableError(PointsError):
    """Raised when the coupon is missing, inactive or past its expiry."""

    code = "coupon_unavailable"

    def __init__(self, coupon_id: UUID) -> None:
        super().__init__(f"Coupon {coupon_id} is not available")
        self.coupon_id = coupon_id


class InsufficientBalanceError(PointsError):
    code = "insufficient_balance"

    def __init__(self, current: int, required: int) -> None:
        super().__init__(f"Insufficient points: balance {current}, required {required}")
        self.current = current
        self.required = required

    def details(self) -> dict[str, Any]:
        return {"current": self.current, "required": self.required}


class CodeGenerationFailedError(PointsError):
    code = "code_generation_failed"


class AccountRestrictedError(PointsError):
    """Raised when a restricted account attempts to spend points."""

    code = "account_restricted"

    def __init__(self, account_id: UUID) -> None:
        super().__init__(f"Account {account_id} is restricted from spending points")
        self.account_id = account_id


__all__ = [
    "AccountNotFoundError",
    "AccountRestrictedError",
    "AlreadyCheckedInError",
    "CodeGenerationFailedError",
    "CouponUnavailableError",
    "EventNotFoundError",
    "InsufficientBalanceError",
    "InvalidAmountError",
    "InvalidProofError",
    "NotRegisteredError",
    "OutsideWindowError",
    "PermissionDeniedError",
    "PointsError",
]

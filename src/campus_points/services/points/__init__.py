"""Points ledger, event check-in and coupon redemption services."""

from .balance import Balance, BalanceCalculator
from .checkin import CheckInGate, CheckInResult, build_checkin_proof, checkin_window
from .collaborators import CouponCatalog, RestrictionGate, SqlCouponCatalog, SqlRestrictionGate
from .errors import *  # noqa: F401,F403
from .errors import __all__ as _error_exports
from .ledger import LedgerStore, decode_time_uuid_cursor, encode_time_uuid_cursor
from .redemption import RedemptionCoordinator, RedemptionReceipt, build_redemption_code
from .reporting import PointsReporting
from .retry import is_transient_error, run_in_transaction
from .schedule import checkin_day_window, daily_checkin_index, reward_for_index

__all__ = [
    "Balance",
    "BalanceCalculator",
    "CheckInGate",
    "CheckInResult",
    "CouponCatalog",
    "LedgerStore",
    "PointsReporting",
    "RedemptionCoordinator",
    "RedemptionReceipt",
    "RestrictionGate",
    "SqlCouponCatalog",
    "SqlRestrictionGate",
    "build_checkin_proof",
    "build_redemption_code",
    "checkin_day_window",
    "checkin_window",
    "daily_checkin_index",
    "decode_time_uuid_cursor",
    "encode_time_uuid_cursor",
    "is_transient_error",
    "reward_for_index",
    "run_in_transaction",
    *_error_exports,
]

"""SQLAlchemy models package."""

# Import all models
from .account import Account, AccountRoleEnum  # noqa: F401
from .catalog import Coupon  # noqa: F401
from .event import Event, EventParticipant, EventParticipantStatus  # noqa: F401
from .points import (  # noqa: F401
    CheckIn,
    CheckInRewardStatus,
    LedgerEntry,
    LedgerLock,
    Redemption,
    RedemptionStatus,
)
from .restriction import RestrictionTypeEnum, UserRestriction  # noqa: F401

"""SQLAlchemy models package."""

from .coupon import Coupon, CouponRedemption, CouponType, RedemptionStatus  # noqa: F401
from .loyalty import LoyaltyAccount, LoyaltyProgram, LoyaltyProgramType  # noqa: F401
from .shop import AppUser, Shop, ShopStatus  # noqa: F401
from .transaction import (  # noqa: F401
    Transaction,
    TransactionLog,
    TransactionLogAction,
    TransactionStatus,
)

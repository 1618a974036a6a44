"""Coupon definitions and the redemptions minted from them."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from zvest_api.db.base import Base, enum_values


class CouponType(str, Enum):
    """Discount semantics for the values in ``articles_data``."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Coupon(Base):
    """Shop-defined discount a customer buys with loyalty points.

    ``articles_data`` holds ``{"article_id", "article_name", "discount_value"}`` entries;
    a null ``article_id`` applies the discount to the whole invoice.
    """

    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("points_required >= 0", name="ck_coupons_points_required"),
        CheckConstraint("used_count >= 0", name="ck_coupons_used_count"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    shop_id = Column(UUID(as_uuid=True), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    coupon_type = Column(
        "type",
        SqlEnum(CouponType, name="coupon_type", values_callable=enum_values),
        nullable=False,
    )
    articles_data = Column(JSON, nullable=False, default=list)
    points_required = Column(Integer, nullable=False, default=0, server_default="0")
    expires_at = Column(DateTime(timezone=True), nullable=True)
    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0, server_default="0")
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    shop = relationship("Shop", back_populates="coupons")
    redemptions = relationship("CouponRedemption", back_populates="coupon")


class RedemptionStatus(str, Enum):
    """Redemption lifecycle: ``active`` moves once to ``used`` or ``expired``."""

    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class CouponRedemption(Base):
    """One activated coupon instance identified by a short numeric code."""

    __tablename__ = "coupon_redemptions"
    __table_args__ = (
        Index(
            "uq_coupon_redemptions_active_code",
            "redemption_code",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_coupon_redemptions_code_redeemed_at", "redemption_code", "redeemed_at"),
        CheckConstraint("points_deducted >= 0", name="ck_coupon_redemptions_points_deducted"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    redemption_code = Column(String(6), nullable=False)
    coupon_id = Column(UUID(as_uuid=True), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True)
    app_user_id = Column(
        UUID(as_uuid=True), ForeignKey("app_users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    loyalty_account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("customer_loyalty_accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    points_deducted = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(RedemptionStatus, name="coupon_redemption_status", values_callable=enum_values),
        nullable=False,
        default=RedemptionStatus.ACTIVE,
        server_default=RedemptionStatus.ACTIVE.value,
    )
    redeemed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    reversed_at = Column(DateTime(timezone=True), nullable=True)
    transaction_id = Column(
        UUID(as_uuid=True), ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    coupon = relationship("Coupon", back_populates="redemptions")
    app_user = relationship("AppUser")
    loyalty_account = relationship("LoyaltyAccount")

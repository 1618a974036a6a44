"""Loyalty programs and per-customer-per-shop points accounts."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from zvest_api.db.base import Base, enum_values


class LoyaltyProgramType(str, Enum):
    POINTS = "points"
    STAMPS = "stamps"
    VISITS = "visits"


class LoyaltyProgram(Base):
    """Earning rules configured by a shop owner."""

    __tablename__ = "loyalty_programs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    shop_id = Column(UUID(as_uuid=True), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    program_type = Column(
        "type",
        SqlEnum(LoyaltyProgramType, name="loyalty_program_type", values_callable=enum_values),
        nullable=False,
        default=LoyaltyProgramType.POINTS,
    )
    points_per_euro = Column(Numeric(5, 2), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    shop = relationship("Shop", back_populates="loyalty_programs")


class LoyaltyAccount(Base):
    """Points balance a customer holds at one shop.

    ``points_balance`` equals ``total_points_earned - total_points_redeemed`` adjusted
    by storno reversals, and only moves through ``PointsAccountService``.
    """

    __tablename__ = "customer_loyalty_accounts"
    __table_args__ = (
        UniqueConstraint("app_user_id", "shop_id", name="uq_customer_loyalty_accounts_user_shop"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    app_user_id = Column(
        UUID(as_uuid=True), ForeignKey("app_users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    shop_id = Column(UUID(as_uuid=True), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    loyalty_program_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_programs.id"), nullable=True)
    points_balance = Column(Integer, nullable=False, default=0, server_default="0")
    total_points_earned = Column(Integer, nullable=False, default=0, server_default="0")
    total_points_redeemed = Column(Integer, nullable=False, default=0, server_default="0")
    total_spent = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    visits_count = Column(Integer, nullable=False, default=0, server_default="0")
    last_visit_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    app_user = relationship("AppUser", back_populates="loyalty_accounts")
    shop = relationship("Shop")
    loyalty_program = relationship("LoyaltyProgram")

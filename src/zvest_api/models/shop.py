"""Shops and the app users who collect points at them."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Enum as SqlEnum, JSON, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from zvest_api.db.base import Base, enum_values


class ShopStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Shop(Base):
    """A merchant location connected to a POS provider."""

    __tablename__ = "shops"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    status = Column(
        SqlEnum(ShopStatus, name="shop_status", values_callable=enum_values),
        nullable=False,
        default=ShopStatus.ACTIVE,
        server_default=ShopStatus.ACTIVE.value,
    )
    settings_json = Column("settings", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    coupons = relationship("Coupon", back_populates="shop")
    loyalty_programs = relationship("LoyaltyProgram", back_populates="shop")


class AppUser(Base):
    """Customer identity resolved from an email address or phone number."""

    __tablename__ = "app_users"
    __table_args__ = (
        CheckConstraint(
            "email IS NOT NULL OR phone_number IS NOT NULL",
            name="ck_app_users_contact_method",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, nullable=True, unique=True, index=True)
    phone_number = Column(String, nullable=True, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    loyalty_accounts = relationship(
        "LoyaltyAccount", back_populates="app_user", cascade="all, delete-orphan"
    )

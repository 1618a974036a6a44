"""POS-originated sales and their append-only audit log."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from zvest_api.db.base import Base, enum_values


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class Transaction(Base):
    """A sale pushed by a POS terminal; customers scan its QR code to earn points."""

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("shop_id", "pos_invoice_id", name="uq_transactions_shop_invoice"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    shop_id = Column(UUID(as_uuid=True), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    pos_invoice_id = Column(String, nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    tax_amount = Column(Numeric(10, 2), nullable=False, default=0, server_default="0")
    items = Column(JSON, nullable=False, default=list)
    app_user_id = Column(UUID(as_uuid=True), ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True)
    loyalty_account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("customer_loyalty_accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    loyalty_points_awarded = Column(Integer, nullable=False, default=0, server_default="0")
    coupon_redemption_id = Column(UUID(as_uuid=True), nullable=True)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0, server_default="0")
    qr_code_data = Column(String, nullable=True)
    qr_scanned_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        SqlEnum(TransactionStatus, name="transaction_status", values_callable=enum_values),
        nullable=False,
        default=TransactionStatus.PENDING,
        server_default=TransactionStatus.PENDING.value,
    )
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    shop = relationship("Shop")
    logs = relationship("TransactionLog", back_populates="transaction")


class TransactionLogAction(str, Enum):
    COUPON_REDEMPTION = "coupon_redemption"
    COUPON_CONSUMED = "coupon_consumed"
    REDEMPTION_REVERSAL = "redemption_reversal"
    QR_SCANNED = "qr_scanned"
    STORNO = "storno"


class TransactionLog(Base):
    """Audit entry; redemption entries gain a transaction link once consumed at the POS."""

    __tablename__ = "transaction_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    transaction_id = Column(
        UUID(as_uuid=True), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=True, index=True
    )
    redemption_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    action = Column(
        SqlEnum(TransactionLogAction, name="transaction_log_action", values_callable=enum_values),
        nullable=False,
    )
    details = Column(JSON, nullable=False, default=dict)
    performed_by = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    transaction = relationship("Transaction", back_populates="logs")

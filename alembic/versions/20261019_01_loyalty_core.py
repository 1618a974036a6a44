"""Loyalty core: shops, accounts, coupons, redemptions and POS transactions.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


shop_status = sa.Enum("active", "inactive", name="shop_status")
loyalty_program_type = sa.Enum("points", "stamps", "visits", name="loyalty_program_type")
coupon_type = sa.Enum("percentage", "fixed", name="coupon_type")
coupon_redemption_status = sa.Enum("active", "used", "expired", name="coupon_redemption_status")
transaction_status = sa.Enum("pending", "completed", "cancelled", "refunded", name="transaction_status")
transaction_log_action = sa.Enum(
    "coupon_redemption",
    "coupon_consumed",
    "redemption_reversal",
    "qr_scanned",
    "storno",
    name="transaction_log_action",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "shops",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", shop_status, nullable=False, server_default="active"),
        sa.Column("settings", sa.JSON(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "app_users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone_number", sa.String(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "email IS NOT NULL OR phone_number IS NOT NULL",
            name="ck_app_users_contact_method",
        ),
    )
    op.create_index("ix_app_users_email", "app_users", ["email"], unique=True)
    op.create_index("ix_app_users_phone_number", "app_users", ["phone_number"], unique=True)

    op.create_table(
        "loyalty_programs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "shop_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("shops.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", loyalty_program_type, nullable=False),
        sa.Column("points_per_euro", sa.Numeric(5, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_loyalty_programs_shop_id", "loyalty_programs", ["shop_id"])

    op.create_table(
        "customer_loyalty_accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "app_user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("app_users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "shop_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("shops.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "loyalty_program_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_programs.id"),
            nullable=True,
        ),
        sa.Column("points_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points_redeemed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_spent", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("visits_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_visit_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("app_user_id", "shop_id", name="uq_customer_loyalty_accounts_user_shop"),
    )
    op.create_index("ix_customer_loyalty_accounts_app_user_id", "customer_loyalty_accounts", ["app_user_id"])
    op.create_index("ix_customer_loyalty_accounts_shop_id", "customer_loyalty_accounts", ["shop_id"])

    op.create_table(
        "coupons",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "shop_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("shops.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", coupon_type, nullable=False),
        sa.Column("articles_data", sa.JSON(), nullable=False),
        sa.Column("points_required", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("points_required >= 0", name="ck_coupons_points_required"),
        sa.CheckConstraint("used_count >= 0", name="ck_coupons_used_count"),
    )
    op.create_index("ix_coupons_shop_id", "coupons", ["shop_id"])

    op.create_table(
        "transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "shop_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("shops.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("pos_invoice_id", sa.String(), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column(
            "app_user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("app_users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "loyalty_account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("customer_loyalty_accounts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("loyalty_points_awarded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("coupon_redemption_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("discount_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("qr_code_data", sa.String(), nullable=True),
        sa.Column("qr_scanned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", transaction_status, nullable=False, server_default="pending"),
        sa.Column("metadata", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("shop_id", "pos_invoice_id", name="uq_transactions_shop_invoice"),
    )
    op.create_index("ix_transactions_shop_id", "transactions", ["shop_id"])

    op.create_table(
        "coupon_redemptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("redemption_code", sa.String(length=6), nullable=False),
        sa.Column(
            "coupon_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("coupons.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "app_user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("app_users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "loyalty_account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("customer_loyalty_accounts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("points_deducted", sa.Integer(), nullable=False),
        sa.Column("status", coupon_redemption_status, nullable=False, server_default="active"),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reversed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "transaction_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
        sa.CheckConstraint("points_deducted >= 0", name="ck_coupon_redemptions_points_deducted"),
    )
    op.create_index("ix_coupon_redemptions_coupon_id", "coupon_redemptions", ["coupon_id"])
    op.create_index("ix_coupon_redemptions_app_user_id", "coupon_redemptions", ["app_user_id"])
    op.create_index(
        "ix_coupon_redemptions_code_redeemed_at",
        "coupon_redemptions",
        ["redemption_code", "redeemed_at"],
    )
    op.create_index(
        "uq_coupon_redemptions_active_code",
        "coupon_redemptions",
        ["redemption_code"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "transaction_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "transaction_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("redemption_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", transaction_log_action, nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("performed_by", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_transaction_logs_transaction_id", "transaction_logs", ["transaction_id"])
    op.create_index("ix_transaction_logs_redemption_id", "transaction_logs", ["redemption_id"])


def downgrade() -> None:
    op.drop_index("ix_transaction_logs_redemption_id", table_name="transaction_logs")
    op.drop_index("ix_transaction_logs_transaction_id", table_name="transaction_logs")
    op.drop_table("transaction_logs")
    op.drop_index("uq_coupon_redemptions_active_code", table_name="coupon_redemptions")
    op.drop_index("ix_coupon_redemptions_code_redeemed_at", table_name="coupon_redemptions")
    op.drop_index("ix_coupon_redemptions_app_user_id", table_name="coupon_redemptions")
    op.drop_index("ix_coupon_redemptions_coupon_id", table_name="coupon_redemptions")
    op.drop_table("coupon_redemptions")
    op.drop_index("ix_transactions_shop_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_coupons_shop_id", table_name="coupons")
    op.drop_table("coupons")
    op.drop_index("ix_customer_loyalty_accounts_shop_id", table_name="customer_loyalty_accounts")
    op.drop_index("ix_customer_loyalty_accounts_app_user_id", table_name="customer_loyalty_accounts")
    op.drop_table("customer_loyalty_accounts")
    op.drop_index("ix_loyalty_programs_shop_id", table_name="loyalty_programs")
    op.drop_table("loyalty_programs")
    op.drop_index("ix_app_users_phone_number", table_name="app_users")
    op.drop_index("ix_app_users_email", table_name="app_users")
    op.drop_table("app_users")
    op.drop_table("shops")

    bind = op.get_bind()
    for enum_type in (
        transaction_log_action,
        transaction_status,
        coupon_redemption_status,
        coupon_type,
        loyalty_program_type,
        shop_status,
    ):
        enum_type.drop(bind, checkfirst=True)

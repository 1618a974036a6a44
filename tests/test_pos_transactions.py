from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from zvest_api.core.exceptions import (
    DuplicateInvoice,
    QrCodeAlreadyScanned,
    ShopMismatch,
    TransactionAlreadyProcessed,
    TransactionNotFound,
    ValidationError,
)
from zvest_api.models.coupon import CouponRedemption, RedemptionStatus
from zvest_api.models.loyalty import LoyaltyAccount
from zvest_api.models.transaction import Transaction, TransactionLog, TransactionLogAction, TransactionStatus
from zvest_api.services.redemptions import CodeGenerator, RedemptionLedger
from zvest_api.services.transactions import (
    PosTransactionService,
    build_qr_code,
    parse_qr_code,
    points_for_amount,
)

NOW = datetime(2026, 5, 14, 17, 45, tzinfo=timezone.utc)


def test_qr_codes_round_trip_and_reject_foreign_payloads():
    transaction_id = uuid4()
    assert parse_qr_code(build_qr_code(transaction_id)) == transaction_id
    with pytest.raises(ValidationError):
        parse_qr_code("https://example.com/receipt")
    with pytest.raises(ValidationError):
        parse_qr_code("PLT_not-a-uuid")


def test_points_are_floored_per_euro():
    assert points_for_amount(Decimal("17.80"), Decimal("1.50")) == 26
    assert points_for_amount(Decimal("9.99"), None) == 9
    assert points_for_amount(Decimal("0"), Decimal("2")) == 0


@pytest.mark.asyncio
async def test_record_transaction_issues_qr_and_rejects_duplicates(session_factory, seeded):
    async with session_factory() as session:
        service = PosTransactionService(session)
        transaction = await service.record_transaction(
            shop_id=seeded.shop_id,
            pos_invoice_id="INV-1001",
            total_amount=Decimal("17.80"),
            items=[{"posArticleId": "COF-1", "name": "Espresso", "quantity": 2}],
        )
        assert transaction.qr_code_data == build_qr_code(transaction.id)
        assert transaction.status == TransactionStatus.PENDING

        with pytest.raises(DuplicateInvoice):
            await service.record_transaction(
                shop_id=seeded.shop_id,
                pos_invoice_id="INV-1001",
                total_amount=Decimal("3.00"),
            )


@pytest.mark.asyncio
async def test_scan_credits_floored_points_once(session_factory, seeded):
    async with session_factory() as session:
        transaction = await PosTransactionService(session).record_transaction(
            shop_id=seeded.shop_id,
            pos_invoice_id="INV-2001",
            total_amount=Decimal("17.80"),
        )

    async with session_factory() as session:
        result = await PosTransactionService(session).scan_qr(
            transaction.qr_code_data, email=seeded.email, now=NOW
        )
    assert result.points_earned == 26
    assert result.points_balance == 1026
    assert result.account_id == seeded.account_id

    async with session_factory() as session:
        with pytest.raises(QrCodeAlreadyScanned):
            await PosTransactionService(session).scan_qr(transaction.qr_code_data, email="someone@example.si")
        stored = await session.get(Transaction, transaction.id)
        account = await session.get(LoyaltyAccount, seeded.account_id)
        actions = (await session.execute(select(TransactionLog.action))).scalars().all()

    assert stored.status == TransactionStatus.COMPLETED
    assert stored.loyalty_points_awarded == 26
    assert account.visits_count == 1
    assert actions == [TransactionLogAction.QR_SCANNED]


@pytest.mark.asyncio
async def test_scan_creates_customer_and_account_on_first_visit(session_factory, seeded):
    async with session_factory() as session:
        transaction = await PosTransactionService(session).record_transaction(
            shop_id=seeded.shop_id, pos_invoice_id="INV-2002", total_amount=Decimal("4.00")
        )

    async with session_factory() as session:
        result = await PosTransactionService(session).scan_qr(
            transaction.qr_code_data, phone_number="+386 40 123 456", now=NOW
        )

    assert result.app_user_id != seeded.app_user_id
    assert result.points_balance == 6


@pytest.mark.asyncio
async def test_scan_unknown_transaction(session_factory, seeded):
    async with session_factory() as session:
        with pytest.raises(TransactionNotFound):
            await PosTransactionService(session).scan_qr(build_qr_code(uuid4()), email=seeded.email)


@pytest.mark.asyncio
async def test_storno_reverses_points_and_refunds_linked_coupon(session_factory, seeded):
    async with session_factory() as session:
        ledger = RedemptionLedger(session, code_generator=CodeGenerator(randbelow=lambda _upper: 612345))
        activation = await ledger.activate(seeded.app_user_id, seeded.coupon_id, now=NOW)
        await ledger.validate_and_consume(seeded.shop_id, "612-345", now=NOW + timedelta(minutes=1))

    async with session_factory() as session:
        transaction = await PosTransactionService(session).record_transaction(
            shop_id=seeded.shop_id,
            pos_invoice_id="INV-3001",
            total_amount=Decimal("10.00"),
            coupon_redemption_id=activation.redemption_id,
            discount_amount=Decimal("1.80"),
        )
    async with session_factory() as session:
        await PosTransactionService(session).scan_qr(transaction.qr_code_data, email=seeded.email, now=NOW)

    async with session_factory() as session:
        result = await PosTransactionService(session).storno(
            shop_id=seeded.shop_id, pos_invoice_id="INV-3001", reason="wrong table", now=NOW
        )

    assert result.previous_status == TransactionStatus.COMPLETED
    assert result.points_reversed == 15
    assert result.points_restored == 600
    assert result.points_balance == 1000

    async with session_factory() as session:
        stored = await session.get(Transaction, transaction.id)
        redemption = await session.get(CouponRedemption, activation.redemption_id)
        account = await session.get(LoyaltyAccount, seeded.account_id)
        linked = (
            await session.execute(
                select(TransactionLog).where(TransactionLog.action == TransactionLogAction.COUPON_REDEMPTION)
            )
        ).scalar_one()

    assert stored.status == TransactionStatus.CANCELLED
    assert stored.metadata_json["storno_reason"] == "wrong table"
    assert redemption.status == RedemptionStatus.USED
    assert redemption.reversed_at is not None
    assert redemption.transaction_id == transaction.id
    assert account.points_balance == 1000
    assert account.total_points_redeemed == 0
    assert linked.transaction_id == transaction.id

    async with session_factory() as session:
        with pytest.raises(TransactionAlreadyProcessed):
            await PosTransactionService(session).storno(shop_id=seeded.shop_id, pos_invoice_id="INV-3001")


@pytest.mark.asyncio
async def test_storno_of_unscanned_receipt_only_cancels(session_factory, seeded):
    async with session_factory() as session:
        service = PosTransactionService(session)
        await service.record_transaction(shop_id=seeded.shop_id, pos_invoice_id="INV-3002", total_amount=Decimal("5"))
        result = await service.storno(shop_id=seeded.shop_id, pos_invoice_id="INV-3002")

    assert result.previous_status == TransactionStatus.PENDING
    assert result.points_reversed == 0
    assert result.points_restored == 0
    assert result.points_balance is None


@pytest.mark.asyncio
async def test_transaction_cannot_claim_redemption_from_another_shop(session_factory, seed):
    home = await seed(session_factory, email="home@example.si")
    other = await seed(session_factory, email="other@example.si")

    async with session_factory() as session:
        ledger = RedemptionLedger(session, code_generator=CodeGenerator(randbelow=lambda _upper: 700700))
        activation = await ledger.activate(home.app_user_id, home.coupon_id, now=NOW)
        await ledger.validate_and_consume(home.shop_id, "700700", now=NOW)

    async with session_factory() as session:
        with pytest.raises(ShopMismatch):
            await PosTransactionService(session).record_transaction(
                shop_id=other.shop_id,
                pos_invoice_id="INV-4001",
                total_amount=Decimal("8"),
                coupon_redemption_id=activation.redemption_id,
            )

"""POS transactions: receipts pushed by terminals, QR-scan earning and storno."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from zvest_api.core.clock import utcnow
from zvest_api.core.exceptions import (
    AlreadyUsed,
    DuplicateInvoice,
    LedgerError,
    NotFoundError,
    QrCodeAlreadyScanned,
    RedemptionNotFound,
    ShopMismatch,
    ShopNotFound,
    StorageError,
    TransactionAlreadyProcessed,
    TransactionNotFound,
    ValidationError,
)
from zvest_api.models.coupon import Coupon, CouponRedemption, RedemptionStatus
from zvest_api.models.loyalty import LoyaltyAccount, LoyaltyProgram
from zvest_api.models.shop import Shop, ShopStatus
from zvest_api.models.transaction import Transaction, TransactionLogAction, TransactionStatus
from zvest_api.services.audit import AuditLogWriter
from zvest_api.services.loyalty.accounts import PointsAccountService
from zvest_api.services.loyalty.customers import ensure_app_user
from zvest_api.services.redemptions.ledger import RedemptionLedger

QR_CODE_PREFIX = "PLT_"


def build_qr_code(transaction_id: UUID) -> str:
    return f"{QR_CODE_PREFIX}{transaction_id}"


def parse_qr_code(qr_code: str) -> UUID:
    """Extract the transaction id from ``PLT_<uuid>``."""

    value = (qr_code or "").strip()
    if not value.startswith(QR_CODE_PREFIX):
        raise ValidationError("Invalid QR code format", details={"qr_code": value})
    try:
        return UUID(value[len(QR_CODE_PREFIX):])
    except ValueError:
        raise ValidationError("Invalid QR code format", details={"qr_code": value}) from None


def points_for_amount(total_amount: Decimal, points_per_euro: Decimal | None) -> int:
    rate = Decimal(points_per_euro) if points_per_euro is not None else Decimal("1")
    return max(math.floor(Decimal(total_amount) * rate), 0)


@dataclass(frozen=True)
class ScanResult:
    transaction_id: UUID
    shop_id: UUID
    app_user_id: UUID
    account_id: UUID
    points_earned: int
    points_balance: int
    total_amount: Decimal
    scanned_at: datetime


@dataclass(frozen=True)
class StornoResult:
    transaction_id: UUID
    pos_invoice_id: str
    previous_status: TransactionStatus
    points_reversed: int
    points_restored: int
    points_balance: Optional[int]


class PosTransactionService:
    """Transaction flows driven by POS terminals and the customer app's QR scanner."""

    def __init__(self, db_session: AsyncSession, *, ledger: RedemptionLedger | None = None) -> None:
        self._db = db_session
        self._accounts = PointsAccountService(db_session)
        self._ledger = ledger or RedemptionLedger(db_session)
        self._audit = AuditLogWriter(db_session)

    async def require_active_shop(self, shop_id: UUID) -> Shop:
        shop = await self._db.get(Shop, shop_id)
        if shop is None or ShopStatus(shop.status) is not ShopStatus.ACTIVE:
            raise ShopNotFound()
        return shop

    async def record_transaction(
        self,
        *,
        shop_id: UUID,
        pos_invoice_id: str,
        total_amount: Decimal,
        tax_amount: Decimal = Decimal("0"),
        items: Sequence[dict[str, Any]] = (),
        metadata: dict[str, Any] | None = None,
        coupon_redemption_id: UUID | None = None,
        discount_amount: Decimal = Decimal("0"),
    ) -> Transaction:
        """Persist a sale pushed by a POS terminal and issue its receipt QR code."""

        await self.require_active_shop(shop_id)
        redemption: CouponRedemption | None = None
        if coupon_redemption_id is not None:
            redemption = await self._consumed_redemption_for_shop(coupon_redemption_id, shop_id)

        transaction = Transaction(
            shop_id=shop_id,
            pos_invoice_id=pos_invoice_id,
            total_amount=Decimal(total_amount),
            tax_amount=Decimal(tax_amount),
            items=list(items),
            metadata_json=dict(metadata or {}),
            coupon_redemption_id=coupon_redemption_id,
            discount_amount=Decimal(discount_amount),
            status=TransactionStatus.PENDING,
        )
        self._db.add(transaction)
        try:
            await self._db.flush()
            transaction.qr_code_data = build_qr_code(transaction.id)
            if redemption is not None:
                redemption.transaction_id = transaction.id
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            logger.info("Rejected duplicate POS invoice", shop_id=str(shop_id), pos_invoice_id=pos_invoice_id)
            raise DuplicateInvoice(details={"pos_invoice_id": pos_invoice_id}) from exc
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.exception("Failed to record POS transaction", shop_id=str(shop_id))
            raise StorageError() from exc

        if redemption is not None:
            await self._audit.link_redemption(redemption.id, transaction.id)
        logger.info(
            "Recorded POS transaction",
            transaction_id=str(transaction.id),
            shop_id=str(shop_id),
            coupon_redemption_id=str(coupon_redemption_id) if coupon_redemption_id else None,
        )
        return transaction

    async def scan_qr(
        self,
        qr_code: str,
        *,
        email: str | None = None,
        phone_number: str | None = None,
        now: datetime | None = None,
    ) -> ScanResult:
        """Credit the scanning customer with points for a pending receipt."""

        transaction_id = parse_qr_code(qr_code)
        now = now or utcnow()
        try:
            transaction = await self._db.get(Transaction, transaction_id)
            if transaction is None:
                raise TransactionNotFound()
            if transaction.qr_scanned_at is not None:
                raise QrCodeAlreadyScanned()
            if TransactionStatus(transaction.status) is not TransactionStatus.PENDING:
                raise TransactionAlreadyProcessed()

            program = await self._active_program(transaction.shop_id)
            user = await ensure_app_user(self._db, email=email, phone_number=phone_number)
            account = await self._accounts.ensure_account(
                user.id, transaction.shop_id, loyalty_program_id=program.id
            )
            points = points_for_amount(transaction.total_amount, program.points_per_euro)

            claimed = await self._claim_pending(transaction, now)
            if not claimed:
                raise QrCodeAlreadyScanned()
            transaction.app_user_id = user.id
            transaction.loyalty_account_id = account.id
            transaction.loyalty_points_awarded = points
            balance = await self._accounts.credit(
                account,
                points,
                spent=Decimal(transaction.total_amount),
                visited_at=now,
            )
            await self._db.commit()
        except LedgerError:
            await self._db.rollback()
            raise
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.exception("QR scan failed in storage", transaction_id=str(transaction_id))
            raise StorageError() from exc

        await self._audit.record(
            TransactionLogAction.QR_SCANNED,
            transaction_id=transaction.id,
            details={"points_awarded": points, "points_balance": balance},
            performed_by=str(user.id),
        )
        logger.info(
            "Credited points for QR scan",
            transaction_id=str(transaction.id),
            account_id=str(account.id),
            points=points,
        )
        return ScanResult(
            transaction_id=transaction.id,
            shop_id=transaction.shop_id,
            app_user_id=user.id,
            account_id=account.id,
            points_earned=points,
            points_balance=balance,
            total_amount=Decimal(transaction.total_amount),
            scanned_at=now,
        )

    async def storno(
        self,
        *,
        shop_id: UUID,
        pos_invoice_id: str,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> StornoResult:
        """Cancel a sale, take back the points it earned and refund a coupon it consumed."""

        now = now or utcnow()
        try:
            stmt = select(Transaction).where(
                Transaction.shop_id == shop_id,
                Transaction.pos_invoice_id == pos_invoice_id,
            )
            transaction = (await self._db.execute(stmt)).scalar_one_or_none()
            if transaction is None:
                raise TransactionNotFound()
            previous_status = TransactionStatus(transaction.status)
            if previous_status in (TransactionStatus.CANCELLED, TransactionStatus.REFUNDED):
                raise TransactionAlreadyProcessed()

            points_reversed = 0
            balance: int | None = None
            if transaction.qr_scanned_at is not None and transaction.loyalty_account_id is not None:
                account = await self._accounts_by_id(transaction.loyalty_account_id)
                if account is not None:
                    points_reversed = int(transaction.loyalty_points_awarded or 0)
                    balance = await self._accounts.reverse_earned(
                        account, points_reversed, spent=Decimal(transaction.total_amount)
                    )

            points_restored = 0
            redemption = await self._redemption_for_transaction(transaction)
            if redemption is not None and redemption.reversed_at is None:
                reversal = await self._ledger.apply_reversal(redemption, now=now)
                points_restored = reversal.points_restored
                balance = reversal.points_balance

            transaction.status = TransactionStatus.CANCELLED
            transaction.metadata_json = {
                **(transaction.metadata_json or {}),
                "storno_reason": reason,
                "storno_at": now.isoformat(),
            }
            await self._db.commit()
        except LedgerError:
            await self._db.rollback()
            raise
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.exception("Storno failed in storage", shop_id=str(shop_id), pos_invoice_id=pos_invoice_id)
            raise StorageError() from exc

        await self._audit.record(
            TransactionLogAction.STORNO,
            transaction_id=transaction.id,
            redemption_id=redemption.id if redemption is not None else None,
            details={
                "reason": reason,
                "previous_status": previous_status.value,
                "points_reversed": points_reversed,
                "points_restored": points_restored,
            },
            performed_by=f"pos:{shop_id}",
        )
        logger.info(
            "Transaction storno completed",
            transaction_id=str(transaction.id),
            pos_invoice_id=pos_invoice_id,
            points_reversed=points_reversed,
            points_restored=points_restored,
        )
        return StornoResult(
            transaction_id=transaction.id,
            pos_invoice_id=pos_invoice_id,
            previous_status=previous_status,
            points_reversed=points_reversed,
            points_restored=points_restored,
            points_balance=balance,
        )

    async def _active_program(self, shop_id: UUID) -> LoyaltyProgram:
        stmt = (
            select(LoyaltyProgram)
            .where(LoyaltyProgram.shop_id == shop_id, LoyaltyProgram.is_active.is_(True))
            .order_by(LoyaltyProgram.created_at.asc())
            .limit(1)
        )
        program = (await self._db.execute(stmt)).scalar_one_or_none()
        if program is None:
            raise NotFoundError("No active loyalty program for this shop")
        return program

    async def _claim_pending(self, transaction: Transaction, now: datetime) -> bool:
        stmt = (
            update(Transaction)
            .where(
                Transaction.id == transaction.id,
                Transaction.status == TransactionStatus.PENDING,
                Transaction.qr_scanned_at.is_(None),
            )
            .values(status=TransactionStatus.COMPLETED, qr_scanned_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.rowcount != 1:
            return False
        await self._db.refresh(transaction)
        return True

    async def _accounts_by_id(self, account_id: UUID) -> LoyaltyAccount | None:
        return await self._db.get(LoyaltyAccount, account_id)

    async def _consumed_redemption_for_shop(self, redemption_id: UUID, shop_id: UUID) -> CouponRedemption:
        redemption = await self._db.get(CouponRedemption, redemption_id)
        if redemption is None:
            raise RedemptionNotFound()
        coupon = await self._db.get(Coupon, redemption.coupon_id)
        if coupon is None or coupon.shop_id != shop_id:
            raise ShopMismatch()
        if RedemptionStatus(redemption.status) is not RedemptionStatus.USED:
            raise ValidationError("Redemption has not been validated at the POS yet")
        if redemption.transaction_id is not None:
            raise AlreadyUsed("Redemption is already linked to another transaction")
        return redemption

    async def _redemption_for_transaction(self, transaction: Transaction) -> CouponRedemption | None:
        stmt = select(CouponRedemption).where(CouponRedemption.transaction_id == transaction.id)
        redemption = (await self._db.execute(stmt)).scalar_one_or_none()
        if redemption is None and transaction.coupon_redemption_id is not None:
            redemption = await self._db.get(CouponRedemption, transaction.coupon_redemption_id)
        return redemption


__all__ = [
    "PosTransactionService",
    "QR_CODE_PREFIX",
    "ScanResult",
    "StornoResult",
    "build_qr_code",
    "parse_qr_code",
    "points_for_amount",
]

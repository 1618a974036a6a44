"""Points account mutations.

Every balance change is a single conditional ``UPDATE`` executed inside the caller's
transaction, so two concurrent requests can never both spend the same points. Callers
own the commit.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from zvest_api.core.exceptions import InsufficientPoints, InvariantViolation, NotFoundError
from zvest_api.models.coupon import CouponRedemption
from zvest_api.models.loyalty import LoyaltyAccount
from zvest_api.models.transaction import Transaction


class PointsAccountService:
    """Owns the balance invariant of customer loyalty accounts."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_account(self, app_user_id: UUID, shop_id: UUID) -> LoyaltyAccount | None:
        stmt = select(LoyaltyAccount).where(
            LoyaltyAccount.app_user_id == app_user_id,
            LoyaltyAccount.shop_id == shop_id,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_account(
        self,
        app_user_id: UUID,
        shop_id: UUID,
        *,
        loyalty_program_id: UUID | None = None,
    ) -> LoyaltyAccount:
        """Fetch or lazily create the zero-balance account for a (customer, shop) pair."""

        account = await self.get_account(app_user_id, shop_id)
        if account is not None:
            return account

        account = LoyaltyAccount(
            app_user_id=app_user_id,
            shop_id=shop_id,
            loyalty_program_id=loyalty_program_id,
            points_balance=0,
            total_points_earned=0,
            total_points_redeemed=0,
            total_spent=Decimal("0"),
            visits_count=0,
        )
        self._db.add(account)
        try:
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            logger.warning(
                "Detected race when creating loyalty account",
                app_user_id=str(app_user_id),
                shop_id=str(shop_id),
            )
            account = await self.get_account(app_user_id, shop_id)
            if account is None:
                raise
            return account

        logger.info(
            "Created loyalty account",
            account_id=str(account.id),
            app_user_id=str(app_user_id),
            shop_id=str(shop_id),
        )
        return account

    async def debit(self, account: LoyaltyAccount, amount: int) -> int:
        """Spend ``amount`` points; the balance check and the write are one statement."""

        if amount < 0:
            raise ValueError("Debit amount must not be negative")

        stmt = (
            update(LoyaltyAccount)
            .where(
                LoyaltyAccount.id == account.id,
                LoyaltyAccount.points_balance >= amount,
            )
            .values(
                points_balance=LoyaltyAccount.points_balance - amount,
                total_points_redeemed=LoyaltyAccount.total_points_redeemed + amount,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        await self._db.refresh(account)
        if result.rowcount != 1:
            raise InsufficientPoints(required=amount, current=int(account.points_balance or 0))

        logger.debug("Debited loyalty points", account_id=str(account.id), amount=amount)
        return int(account.points_balance)

    async def credit(
        self,
        account: LoyaltyAccount,
        amount: int,
        *,
        spent: Decimal = Decimal("0"),
        visited_at: datetime | None = None,
    ) -> int:
        """Award earned points (QR-scan flow) and accumulate spend and visit stats."""

        if amount < 0:
            raise ValueError("Credit amount must not be negative")

        values: dict[str, object] = {
            "points_balance": LoyaltyAccount.points_balance + amount,
            "total_points_earned": LoyaltyAccount.total_points_earned + amount,
            "total_spent": LoyaltyAccount.total_spent + Decimal(spent),
        }
        if visited_at is not None:
            values["visits_count"] = LoyaltyAccount.visits_count + 1
            values["last_visit_at"] = visited_at

        await self._execute_account_update(account, values)
        logger.debug("Credited loyalty points", account_id=str(account.id), amount=amount)
        return int(account.points_balance)

    async def reverse_earned(
        self,
        account: LoyaltyAccount,
        amount: int,
        *,
        spent: Decimal = Decimal("0"),
    ) -> int:
        """Storno of earned points; the balance may go negative, stats clamp at zero."""

        remaining_spent = LoyaltyAccount.total_spent - Decimal(spent)
        remaining_visits = LoyaltyAccount.visits_count - 1
        values: dict[str, object] = {
            "points_balance": LoyaltyAccount.points_balance - amount,
            "total_points_earned": LoyaltyAccount.total_points_earned - amount,
            "total_spent": case((remaining_spent < 0, Decimal("0")), else_=remaining_spent),
            "visits_count": case((remaining_visits < 0, 0), else_=remaining_visits),
        }
        await self._execute_account_update(account, values)
        if account.points_balance < 0:
            logger.warning(
                "Storno left loyalty account with negative balance",
                account_id=str(account.id),
                balance=account.points_balance,
            )
        return int(account.points_balance)

    async def restore_redeemed(self, account: LoyaltyAccount, amount: int) -> int:
        """Give back points spent on a redemption, verbatim."""

        stmt = (
            update(LoyaltyAccount)
            .where(
                LoyaltyAccount.id == account.id,
                LoyaltyAccount.total_points_redeemed >= amount,
            )
            .values(
                points_balance=LoyaltyAccount.points_balance + amount,
                total_points_redeemed=LoyaltyAccount.total_points_redeemed - amount,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        await self._db.refresh(account)
        if result.rowcount != 1:
            raise InvariantViolation(
                "Reversal exceeds the points recorded as redeemed on the account",
                details={
                    "account_id": str(account.id),
                    "amount": amount,
                    "total_points_redeemed": int(account.total_points_redeemed or 0),
                },
            )
        return int(account.points_balance)

    async def delete_account(self, app_user_id: UUID, shop_id: UUID) -> bool:
        """Account deletion: anonymize linked transactions and redemptions, then drop the row."""

        account = await self.get_account(app_user_id, shop_id)
        if account is None:
            return False

        await self._db.execute(
            update(Transaction)
            .where(Transaction.loyalty_account_id == account.id)
            .values(app_user_id=None, loyalty_account_id=None)
            .execution_options(synchronize_session=False)
        )
        await self._db.execute(
            update(CouponRedemption)
            .where(CouponRedemption.loyalty_account_id == account.id)
            .values(loyalty_account_id=None)
            .execution_options(synchronize_session=False)
        )
        await self._db.execute(
            delete(LoyaltyAccount)
            .where(LoyaltyAccount.id == account.id)
            .execution_options(synchronize_session=False)
        )
        self._db.expunge(account)
        await self._db.commit()
        logger.info("Deleted loyalty account", account_id=str(account.id), shop_id=str(shop_id))
        return True

    async def _execute_account_update(self, account: LoyaltyAccount, values: dict[str, object]) -> None:
        stmt = (
            update(LoyaltyAccount)
            .where(LoyaltyAccount.id == account.id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.rowcount != 1:
            raise NotFoundError("Loyalty account not found")
        await self._db.refresh(account)


__all__ = ["PointsAccountService"]

"""Coupon redemption lifecycle.

A redemption is minted by :meth:`RedemptionLedger.activate`, which spends the customer's
points, and is finished by :meth:`RedemptionLedger.validate_and_consume` when a POS
terminal presents its code. Status moves ``active -> used`` or ``active -> expired``
exactly once; both transitions are conditional updates on ``status = 'active'``. Only
used or expired redemptions can be reversed, which stamps ``reversed_at`` and leaves the
status alone.
Expiry is computed from ``redeemed_at`` on every validation, so the optional sweep in
:meth:`RedemptionLedger.expire_stale` is housekeeping only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from zvest_api.core.clock import as_utc, utcnow
from zvest_api.core.exceptions import (
    AlreadyReversed,
    AlreadyUsed,
    CollisionExhausted,
    CouponExpired,
    CouponNotFound,
    CouponUnavailable,
    CustomerNotFound,
    InvalidCodeFormat,
    InvariantViolation,
    LedgerError,
    RedemptionExpired,
    RedemptionNotFound,
    RedemptionStillActive,
    ShopMismatch,
    StorageError,
)
from zvest_api.core.settings import settings
from zvest_api.models.coupon import Coupon, CouponRedemption, RedemptionStatus
from zvest_api.models.loyalty import LoyaltyAccount
from zvest_api.models.shop import AppUser
from zvest_api.models.transaction import TransactionLogAction
from zvest_api.observability.redemptions import RedemptionObservabilityStore, get_redemption_store
from zvest_api.observability.tracing import mark_outcome, redemption_span
from zvest_api.services.audit import AuditLogWriter
from zvest_api.services.coupons.catalog import CouponTerms
from zvest_api.services.loyalty.accounts import PointsAccountService
from zvest_api.services.redemptions.codes import (
    CodeGenerator,
    format_code_for_display,
    is_valid_code_format,
    normalize_code,
)


@dataclass(frozen=True)
class ActivationResult:
    redemption_id: UUID
    redemption_code: str
    terms: CouponTerms
    redeemed_at: datetime
    expires_at: datetime
    points_before: int
    points_after: int

    @property
    def display_code(self) -> str:
        return format_code_for_display(self.redemption_code)


@dataclass(frozen=True)
class ConsumptionResult:
    redemption_id: UUID
    redemption_code: str
    terms: CouponTerms
    app_user_id: UUID
    points_deducted: int
    consumed_at: datetime


@dataclass(frozen=True)
class ReversalResult:
    redemption_id: UUID
    points_restored: int
    points_balance: int
    reversed_at: datetime


@dataclass(frozen=True)
class RedemptionView:
    """Customer-facing row for the redemption history screen."""

    redemption_id: UUID
    redemption_code: str
    coupon_id: UUID
    coupon_name: str
    shop_id: UUID
    status: RedemptionStatus
    points_deducted: int
    redeemed_at: datetime
    expires_at: datetime
    consumed_at: Optional[datetime]
    reversed_at: Optional[datetime]


class RedemptionLedger:
    """Authoritative state machine for coupon redemptions."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        code_generator: CodeGenerator | None = None,
        validity: timedelta | None = None,
        store: RedemptionObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._store = store or get_redemption_store()
        self._codes = code_generator or CodeGenerator(
            max_attempts=settings.redemption_code_max_attempts,
            store=self._store,
        )
        self.validity = validity or timedelta(seconds=settings.redemption_validity_seconds)
        self._accounts = PointsAccountService(db_session)
        self._audit = AuditLogWriter(db_session)

    def expires_at(self, redemption: CouponRedemption) -> datetime:
        return as_utc(redemption.redeemed_at) + self.validity

    async def activate(
        self,
        app_user_id: UUID,
        coupon_id: UUID,
        *,
        now: datetime | None = None,
    ) -> ActivationResult:
        """Spend points on a coupon and mint an active redemption code.

        The debit, the usage-limit claim and the redemption insert share one database
        transaction. A code that loses the race for the active-code index rolls the
        whole attempt back and is redrawn.
        """

        with redemption_span("activate", coupon_id=coupon_id, app_user_id=app_user_id) as span:
            try:
                result = await self._activate(app_user_id, coupon_id, now=now or utcnow())
            except LedgerError as exc:
                self._store.record_activation(exc.error_code.value)
                raise
            except SQLAlchemyError as exc:
                await self._db.rollback()
                self._store.record_activation("storage_error")
                logger.exception("Coupon activation failed in storage", coupon_id=str(coupon_id))
                raise StorageError() from exc
            mark_outcome(span, "success")
            span.set_attribute("zvest.redemption.id", str(result.redemption_id))

        self._store.record_activation("success")
        await self._audit.record(
            TransactionLogAction.COUPON_REDEMPTION,
            redemption_id=result.redemption_id,
            details={
                "coupon_id": str(result.terms.coupon_id),
                "coupon_name": result.terms.name,
                "points_deducted": result.terms.points_required,
                "points_before": result.points_before,
                "points_after": result.points_after,
                "app_user_id": str(app_user_id),
            },
            performed_by=str(app_user_id),
        )
        return result

    async def _activate(self, app_user_id: UUID, coupon_id: UUID, *, now: datetime) -> ActivationResult:
        coupon = await self._db.get(Coupon, coupon_id)
        if coupon is None:
            raise CouponNotFound()
        self._ensure_redeemable(coupon, now)
        if await self._db.get(AppUser, app_user_id) is None:
            raise CustomerNotFound()

        account = await self._accounts.ensure_account(app_user_id, coupon.shop_id)
        terms = CouponTerms.from_coupon(coupon)
        cost = terms.points_required

        for attempt in range(1, self._codes.max_attempts + 1):
            code = await self._codes.generate_unique(self._is_code_active)
            try:
                points_after = await self._accounts.debit(account, cost)
                await self._claim_usage(coupon)
                redemption = CouponRedemption(
                    redemption_code=code,
                    coupon_id=coupon.id,
                    app_user_id=app_user_id,
                    loyalty_account_id=account.id,
                    points_deducted=cost,
                    status=RedemptionStatus.ACTIVE,
                    redeemed_at=now,
                )
                self._db.add(redemption)
                await self._db.commit()
            except IntegrityError:
                await self._db.rollback()
                await self._db.refresh(account)
                await self._db.refresh(coupon)
                self._store.record_code_attempt(collided=True)
                logger.warning(
                    "Redemption code lost the race for the active-code index",
                    coupon_id=str(coupon_id),
                    attempt=attempt,
                )
                continue
            except LedgerError:
                await self._db.rollback()
                raise

            logger.info(
                "Activated coupon redemption",
                redemption_id=str(redemption.id),
                coupon_id=str(coupon.id),
                account_id=str(account.id),
                points_deducted=cost,
                points_after=points_after,
            )
            return ActivationResult(
                redemption_id=redemption.id,
                redemption_code=code,
                terms=terms,
                redeemed_at=now,
                expires_at=now + self.validity,
                points_before=points_after + cost,
                points_after=points_after,
            )

        self._store.record_code_exhausted()
        logger.error("Redemption insert retries exhausted", coupon_id=str(coupon_id))
        raise CollisionExhausted(details={"max_attempts": self._codes.max_attempts})

    async def validate_and_consume(
        self,
        shop_id: UUID,
        code: str,
        *,
        now: datetime | None = None,
    ) -> ConsumptionResult:
        """Check a presented code and consume it for ``shop_id``."""

        with redemption_span("validate", shop_id=shop_id) as span:
            normalized = normalize_code(code)
            if not is_valid_code_format(normalized):
                self._store.record_validation(InvalidCodeFormat.error_code.value)
                raise InvalidCodeFormat()

            try:
                result = await self._validate_and_consume(shop_id, normalized, now=now or utcnow())
            except LedgerError as exc:
                self._store.record_validation(exc.error_code.value)
                raise
            except SQLAlchemyError as exc:
                await self._db.rollback()
                self._store.record_validation("storage_error")
                logger.exception("Redemption validation failed in storage", shop_id=str(shop_id))
                raise StorageError() from exc
            mark_outcome(span, "success")
            span.set_attribute("zvest.redemption.id", str(result.redemption_id))

        self._store.record_validation("success")
        await self._audit.record(
            TransactionLogAction.COUPON_CONSUMED,
            redemption_id=result.redemption_id,
            details={
                "coupon_id": str(result.terms.coupon_id),
                "shop_id": str(shop_id),
                "points_deducted": result.points_deducted,
            },
            performed_by=f"pos:{shop_id}",
        )
        return result

    async def _validate_and_consume(self, shop_id: UUID, code: str, *, now: datetime) -> ConsumptionResult:
        redemption = await self._find_active(code)
        if redemption is None:
            latest = await self._find_latest(code)
            if latest is None:
                raise RedemptionNotFound()
            if latest.status == RedemptionStatus.USED:
                raise AlreadyUsed()
            raise RedemptionExpired()

        expires_at = self.expires_at(redemption)
        if now > expires_at:
            await self._transition_to_expired([redemption.id], now)
            await self._db.commit()
            logger.info("Redemption expired at validation", redemption_id=str(redemption.id))
            raise RedemptionExpired(details={"expires_at": expires_at.isoformat()})

        coupon = await self._db.get(Coupon, redemption.coupon_id)
        if coupon is None:
            raise CouponNotFound()
        if coupon.shop_id != shop_id:
            logger.warning(
                "Redemption presented at the wrong shop",
                redemption_id=str(redemption.id),
                shop_id=str(shop_id),
            )
            raise ShopMismatch()
        coupon_expiry = as_utc(coupon.expires_at)
        if coupon_expiry is not None and now > coupon_expiry:
            raise CouponExpired()

        stmt = (
            update(CouponRedemption)
            .where(
                CouponRedemption.id == redemption.id,
                CouponRedemption.status == RedemptionStatus.ACTIVE,
            )
            .values(status=RedemptionStatus.USED, consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.rowcount != 1:
            # Lost the row between the read and the update: report where it actually went.
            status = await self._current_status(redemption.id)
            await self._db.rollback()
            logger.info(
                "Redemption left active state before consumption",
                redemption_id=str(redemption.id),
                status=status.value if status else None,
            )
            if status is RedemptionStatus.EXPIRED:
                raise RedemptionExpired(details={"expires_at": expires_at.isoformat()})
            raise AlreadyUsed()
        await self._db.commit()

        logger.info("Consumed coupon redemption", redemption_id=str(redemption.id), shop_id=str(shop_id))
        return ConsumptionResult(
            redemption_id=redemption.id,
            redemption_code=code,
            terms=CouponTerms.from_coupon(coupon),
            app_user_id=redemption.app_user_id,
            points_deducted=int(redemption.points_deducted),
            consumed_at=now,
        )

    async def reverse(
        self,
        redemption_id: UUID,
        reason: str,
        *,
        performed_by: str | None = None,
        now: datetime | None = None,
    ) -> ReversalResult:
        """Restore a redemption's recorded ``points_deducted`` to the customer's account."""

        with redemption_span("reverse", redemption_id=redemption_id) as span:
            try:
                redemption = await self._db.get(CouponRedemption, redemption_id)
                if redemption is None:
                    raise RedemptionNotFound()
                result = await self.apply_reversal(redemption, now=now or utcnow())
                await self._db.commit()
            except LedgerError:
                await self._db.rollback()
                raise
            except SQLAlchemyError as exc:
                await self._db.rollback()
                logger.exception("Redemption reversal failed in storage", redemption_id=str(redemption_id))
                raise StorageError() from exc
            mark_outcome(span, "success")

        await self._audit.record(
            TransactionLogAction.REDEMPTION_REVERSAL,
            transaction_id=redemption.transaction_id,
            redemption_id=redemption_id,
            details={"reason": reason, "points_restored": result.points_restored},
            performed_by=performed_by,
        )
        return result

    async def apply_reversal(self, redemption: CouponRedemption, *, now: datetime) -> ReversalResult:
        """Reverse inside the caller's transaction; the caller commits or rolls back.

        Only ``used`` or ``expired`` redemptions qualify. An active code is still spendable
        at the till, so it is rejected with :class:`RedemptionStillActive`.
        """

        stamp = (
            update(CouponRedemption)
            .where(
                CouponRedemption.id == redemption.id,
                CouponRedemption.reversed_at.is_(None),
                CouponRedemption.status != RedemptionStatus.ACTIVE,
            )
            .values(reversed_at=now)
            .execution_options(synchronize_session=False)
        )
        stamped = await self._db.execute(stamp)
        if stamped.rowcount != 1:
            await self._db.refresh(redemption)
            if redemption.reversed_at is not None:
                raise AlreadyReversed()
            raise RedemptionStillActive(details={"redemption_id": str(redemption.id)})

        account = None
        if redemption.loyalty_account_id is not None:
            account = await self._db.get(LoyaltyAccount, redemption.loyalty_account_id)
        if account is None:
            logger.error("Cannot reverse redemption without a loyalty account", redemption_id=str(redemption.id))
            raise InvariantViolation(
                "Redemption has no loyalty account to restore points to",
                details={"redemption_id": str(redemption.id)},
            )

        points = int(redemption.points_deducted)
        try:
            balance = await self._accounts.restore_redeemed(account, points)
        except InvariantViolation as exc:
            logger.error(
                "Redemption reversal would break account accounting",
                redemption_id=str(redemption.id),
                details=exc.details,
            )
            raise

        await self._db.refresh(redemption)
        self._store.record_reversal()
        logger.info(
            "Reversed coupon redemption",
            redemption_id=str(redemption.id),
            points_restored=points,
            balance=balance,
        )
        return ReversalResult(
            redemption_id=redemption.id,
            points_restored=points,
            points_balance=balance,
            reversed_at=now,
        )

    async def expire_stale(self, *, now: datetime | None = None, limit: int | None = None) -> int:
        """Sweep overdue active redemptions to ``expired``; returns the number transitioned."""

        now = now or utcnow()
        limit = limit or settings.redemption_expiry_batch_size
        cutoff = now - self.validity
        try:
            stmt = (
                select(CouponRedemption.id)
                .where(
                    CouponRedemption.status == RedemptionStatus.ACTIVE,
                    CouponRedemption.redeemed_at < cutoff,
                )
                .order_by(CouponRedemption.redeemed_at.asc())
                .limit(limit)
            )
            ids = list((await self._db.execute(stmt)).scalars().all())
            if not ids:
                await self._db.rollback()
                return 0
            expired = await self._transition_to_expired(ids, now)
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.exception("Redemption expiry sweep failed")
            raise StorageError() from exc

        self._store.record_swept(expired)
        if expired:
            logger.info("Expired stale redemptions", count=expired)
        return expired

    async def list_for_customer(
        self,
        app_user_id: UUID,
        *,
        status: RedemptionStatus | None = None,
        limit: int = 50,
    ) -> list[RedemptionView]:
        stmt = (
            select(CouponRedemption)
            .options(selectinload(CouponRedemption.coupon))
            .where(CouponRedemption.app_user_id == app_user_id)
            .order_by(CouponRedemption.redeemed_at.desc())
            .limit(limit)
        )
        if status is not None:
            stmt = stmt.where(CouponRedemption.status == status)
        rows = (await self._db.execute(stmt)).scalars().all()
        return [
            RedemptionView(
                redemption_id=row.id,
                redemption_code=row.redemption_code,
                coupon_id=row.coupon_id,
                coupon_name=row.coupon.name,
                shop_id=row.coupon.shop_id,
                status=RedemptionStatus(row.status),
                points_deducted=int(row.points_deducted),
                redeemed_at=as_utc(row.redeemed_at),
                expires_at=self.expires_at(row),
                consumed_at=as_utc(row.consumed_at),
                reversed_at=as_utc(row.reversed_at),
            )
            for row in rows
        ]

    async def _is_code_active(self, code: str) -> bool:
        stmt = (
            select(CouponRedemption.id)
            .where(
                CouponRedemption.redemption_code == code,
                CouponRedemption.status == RedemptionStatus.ACTIVE,
            )
            .limit(1)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none() is not None

    async def _find_active(self, code: str) -> CouponRedemption | None:
        stmt = select(CouponRedemption).where(
            CouponRedemption.redemption_code == code,
            CouponRedemption.status == RedemptionStatus.ACTIVE,
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def _find_latest(self, code: str) -> CouponRedemption | None:
        stmt = (
            select(CouponRedemption)
            .where(CouponRedemption.redemption_code == code)
            .order_by(CouponRedemption.redeemed_at.desc())
            .limit(1)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def _current_status(self, redemption_id: UUID) -> RedemptionStatus | None:
        stmt = select(CouponRedemption.status).where(CouponRedemption.id == redemption_id)
        status = (await self._db.execute(stmt)).scalar_one_or_none()
        return RedemptionStatus(status) if status is not None else None

    async def _transition_to_expired(self, redemption_ids: Sequence[UUID], now: datetime) -> int:
        stmt = (
            update(CouponRedemption)
            .where(
                CouponRedemption.id.in_(list(redemption_ids)),
                CouponRedemption.status == RedemptionStatus.ACTIVE,
            )
            .values(status=RedemptionStatus.EXPIRED, expired_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        return result.rowcount or 0

    async def _claim_usage(self, coupon: Coupon) -> None:
        stmt = (
            update(Coupon)
            .where(
                Coupon.id == coupon.id,
                Coupon.is_active.is_(True),
                or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
            )
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.rowcount != 1:
            raise CouponUnavailable("Coupon has reached its usage limit")
        await self._db.refresh(coupon)

    @staticmethod
    def _ensure_redeemable(coupon: Coupon, now: datetime) -> None:
        if not coupon.is_active:
            raise CouponUnavailable("Coupon is not active")
        expiry = as_utc(coupon.expires_at)
        if expiry is not None and now > expiry:
            raise CouponUnavailable("Coupon has expired")
        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            raise CouponUnavailable("Coupon has reached its usage limit")


__all__ = [
    "ActivationResult",
    "ConsumptionResult",
    "RedemptionLedger",
    "RedemptionView",
    "ReversalResult",
]

"""Customer app endpoints: redeemable coupons, activation, history and QR scans."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from zvest_api.api.timeouts import with_ledger_timeout
from zvest_api.db.session import get_session
from zvest_api.models.coupon import Coupon, RedemptionStatus
from zvest_api.services.coupons import CouponCatalog, CouponTerms
from zvest_api.services.loyalty import require_app_user
from zvest_api.services.redemptions import RedemptionLedger
from zvest_api.services.transactions import PosTransactionService

router = APIRouter(prefix="/app", tags=["Customer App"])


class CustomerIdentity(BaseModel):
    email: Optional[str] = Field(None, description="Customer email address")
    phoneNumber: Optional[str] = Field(None, description="Customer phone number")

    @model_validator(mode="after")
    def _require_contact(self) -> "CustomerIdentity":
        if not (self.email or self.phoneNumber):
            raise ValueError("email or phoneNumber must be provided")
        return self


class ArticleDiscountResponse(BaseModel):
    articleId: Optional[str]
    articleName: Optional[str]
    discountValue: float


class CouponResponse(BaseModel):
    id: UUID
    shopId: UUID
    name: str
    description: Optional[str]
    type: Literal["percentage", "fixed"]
    articles: List[ArticleDiscountResponse]
    pointsRequired: int
    expiresAt: Optional[datetime]


class ActivationResponse(BaseModel):
    redemptionId: UUID
    redemptionCode: str
    displayCode: str
    coupon: CouponResponse
    redeemedAt: datetime
    expiresAt: datetime
    pointsBefore: int
    pointsAfter: int


class RedemptionHistoryItem(BaseModel):
    redemptionId: UUID
    redemptionCode: str
    couponId: UUID
    couponName: str
    shopId: UUID
    status: Literal["active", "used", "expired"]
    pointsDeducted: int
    redeemedAt: datetime
    expiresAt: datetime
    consumedAt: Optional[datetime]
    reversedAt: Optional[datetime]


class QrScanRequest(CustomerIdentity):
    qrCode: str = Field(..., min_length=1, description="Receipt QR payload (PLT_<transaction id>)")


class QrScanResponse(BaseModel):
    transactionId: UUID
    shopId: UUID
    pointsEarned: int
    pointsBalance: int
    totalAmount: float
    scannedAt: datetime


def serialize_terms(terms: CouponTerms) -> CouponResponse:
    return CouponResponse(
        id=terms.coupon_id,
        shopId=terms.shop_id,
        name=terms.name,
        description=terms.description,
        type=terms.coupon_type.value,
        articles=[
            ArticleDiscountResponse(
                articleId=article.article_id,
                articleName=article.article_name,
                discountValue=float(article.discount_value),
            )
            for article in terms.articles
        ],
        pointsRequired=terms.points_required,
        expiresAt=terms.expires_at,
    )


def serialize_coupon(coupon: Coupon) -> CouponResponse:
    return serialize_terms(CouponTerms.from_coupon(coupon))


@router.get("/shops/{shop_id}/coupons", response_model=List[CouponResponse])
async def list_redeemable_coupons(
    shop_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> List[CouponResponse]:
    catalog = CouponCatalog(db)
    coupons = await with_ledger_timeout(catalog.list_redeemable(shop_id), operation="list_redeemable")
    return [serialize_coupon(coupon) for coupon in coupons]


@router.post(
    "/coupons/{coupon_id}/activate",
    response_model=ActivationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def activate_coupon(
    coupon_id: UUID,
    payload: CustomerIdentity,
    db: AsyncSession = Depends(get_session),
) -> ActivationResponse:
    """Spend points on a coupon; the returned code is valid for five minutes."""

    async def _activate():
        user = await require_app_user(db, email=payload.email, phone_number=payload.phoneNumber)
        return await RedemptionLedger(db).activate(user.id, coupon_id)

    result = await with_ledger_timeout(_activate(), operation="activate")
    return ActivationResponse(
        redemptionId=result.redemption_id,
        redemptionCode=result.redemption_code,
        displayCode=result.display_code,
        coupon=serialize_terms(result.terms),
        redeemedAt=result.redeemed_at,
        expiresAt=result.expires_at,
        pointsBefore=result.points_before,
        pointsAfter=result.points_after,
    )


@router.get("/redemptions", response_model=List[RedemptionHistoryItem])
async def list_redemptions(
    email: Optional[str] = Query(None),
    phone_number: Optional[str] = Query(None, alias="phoneNumber"),
    status_filter: Optional[RedemptionStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
) -> List[RedemptionHistoryItem]:
    async def _list():
        user = await require_app_user(db, email=email, phone_number=phone_number)
        return await RedemptionLedger(db).list_for_customer(user.id, status=status_filter, limit=limit)

    views = await with_ledger_timeout(_list(), operation="list_redemptions")
    return [
        RedemptionHistoryItem(
            redemptionId=view.redemption_id,
            redemptionCode=view.redemption_code,
            couponId=view.coupon_id,
            couponName=view.coupon_name,
            shopId=view.shop_id,
            status=view.status.value,
            pointsDeducted=view.points_deducted,
            redeemedAt=view.redeemed_at,
            expiresAt=view.expires_at,
            consumedAt=view.consumed_at,
            reversedAt=view.reversed_at,
        )
        for view in views
    ]


@router.post("/transactions/scan", response_model=QrScanResponse)
async def scan_receipt(
    payload: QrScanRequest,
    db: AsyncSession = Depends(get_session),
) -> QrScanResponse:
    service = PosTransactionService(db)
    result = await with_ledger_timeout(
        service.scan_qr(payload.qrCode, email=payload.email, phone_number=payload.phoneNumber),
        operation="scan_qr",
    )
    return QrScanResponse(
        transactionId=result.transaction_id,
        shopId=result.shop_id,
        pointsEarned=result.points_earned,
        pointsBalance=result.points_balance,
        totalAmount=float(result.total_amount),
        scannedAt=result.scanned_at,
    )


__all__ = ["router", "serialize_coupon", "serialize_terms"]

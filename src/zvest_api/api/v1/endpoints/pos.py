"""POS terminal endpoints.

Business rejections on the terminal-facing routes answer HTTP 200 with
``{"valid": false, "error_code", "error_message"}`` in the shop's staff language so
terminals can show the message verbatim. Retryable and fatal errors still go through
the regular exception handlers.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from zvest_api.api.dependencies.security import require_pos_api_key
from zvest_api.api.timeouts import with_ledger_timeout
from zvest_api.api.v1.endpoints.customer_app import (
    ArticleDiscountResponse,
    CouponResponse,
    serialize_coupon,
)
from zvest_api.core.exceptions import (
    DuplicateInvoice,
    InvariantViolation,
    LedgerError,
    ShopNotFound,
    TransactionAlreadyProcessed,
)
from zvest_api.core.localization import localized_error, resolve_shop_locale
from zvest_api.db.session import get_session
from zvest_api.models.shop import Shop, ShopStatus
from zvest_api.services.coupons import CouponCatalog
from zvest_api.services.redemptions import RedemptionLedger
from zvest_api.services.transactions import PosTransactionService

router = APIRouter(prefix="/pos", tags=["POS"], dependencies=[Depends(require_pos_api_key)])


class ValidateCodeRequest(BaseModel):
    shopId: UUID
    code: str = Field(..., description="Redemption code, with or without the display separator")


class ValidateCodeResponse(BaseModel):
    valid: Literal[True] = True
    redemptionId: UUID
    couponId: UUID
    couponName: str
    couponDescription: Optional[str]
    type: Literal["percentage", "fixed"]
    articles: List[ArticleDiscountResponse]
    pointsDeducted: int
    consumedAt: datetime


class TransactionItem(BaseModel):
    posArticleId: str
    name: str
    quantity: float = Field(..., ge=0)
    unitPrice: float = Field(..., ge=0)
    totalPrice: float = Field(..., ge=0)
    taxRate: Optional[float] = None


class TransactionCreateRequest(BaseModel):
    shopId: UUID
    posInvoiceId: str = Field(..., min_length=1)
    totalAmount: Decimal = Field(..., ge=0)
    taxAmount: Decimal = Field(Decimal("0"), ge=0)
    items: List[TransactionItem] = Field(default_factory=list)
    metadata: Optional[dict[str, Any]] = None
    couponRedemptionId: Optional[UUID] = Field(
        None, description="Redemption consumed for this sale via the validate endpoint"
    )
    discountAmount: Decimal = Field(Decimal("0"), ge=0)


class TransactionResponse(BaseModel):
    valid: Literal[True] = True
    id: UUID
    shopId: UUID
    posInvoiceId: str
    totalAmount: float
    status: str
    qrCodeData: str
    displayText: str


class StornoRequest(BaseModel):
    shopId: UUID
    posInvoiceId: str = Field(..., min_length=1)
    reason: Optional[str] = None


class StornoResponse(BaseModel):
    valid: Literal[True] = True
    transactionId: UUID
    posInvoiceId: str
    previousStatus: str
    pointsReversed: int
    pointsRestored: int
    pointsBalance: Optional[int]


class ReverseRedemptionRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    performedBy: Optional[str] = None


class ReverseRedemptionResponse(BaseModel):
    redemptionId: UUID
    pointsRestored: int
    pointsBalance: int
    reversedAt: datetime


def _is_terminal_rejection(exc: LedgerError) -> bool:
    return not exc.retryable and not isinstance(exc, InvariantViolation)


async def _shop_locale(db: AsyncSession, shop_id: UUID) -> tuple[Shop | None, str]:
    shop = await db.get(Shop, shop_id)
    return shop, resolve_shop_locale(shop.settings_json if shop is not None else None)


@router.get("/shops/{shop_id}/coupons", response_model=List[CouponResponse])
async def list_active_coupons(
    shop_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> List[CouponResponse]:
    coupons = await with_ledger_timeout(CouponCatalog(db).list_active(shop_id), operation="list_active")
    return [serialize_coupon(coupon) for coupon in coupons]


@router.post("/coupons/validate", response_model=ValidateCodeResponse)
async def validate_coupon_code(
    payload: ValidateCodeRequest,
    db: AsyncSession = Depends(get_session),
) -> ValidateCodeResponse | JSONResponse:
    """Validate and consume a customer's redemption code at the till."""

    shop, locale = await _shop_locale(db, payload.shopId)
    try:
        if shop is None or ShopStatus(shop.status) is not ShopStatus.ACTIVE:
            raise ShopNotFound()
        result = await with_ledger_timeout(
            RedemptionLedger(db).validate_and_consume(payload.shopId, payload.code),
            operation="validate_and_consume",
        )
    except LedgerError as exc:
        if not _is_terminal_rejection(exc):
            raise
        logger.info(
            "Rejected redemption code at POS",
            shop_id=str(payload.shopId),
            error_code=exc.error_code.value,
        )
        return JSONResponse(status_code=status.HTTP_200_OK, content=localized_error(exc.error_code, locale))

    terms = result.terms
    return ValidateCodeResponse(
        redemptionId=result.redemption_id,
        couponId=terms.coupon_id,
        couponName=terms.name,
        couponDescription=terms.description,
        type=terms.coupon_type.value,
        articles=[
            ArticleDiscountResponse(
                articleId=article.article_id,
                articleName=article.article_name,
                discountValue=float(article.discount_value),
            )
            for article in terms.articles
        ],
        pointsDeducted=result.points_deducted,
        consumedAt=result.consumed_at,
    )


@router.post("/transactions", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    payload: TransactionCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> TransactionResponse | JSONResponse:
    service = PosTransactionService(db)
    try:
        transaction = await with_ledger_timeout(
            service.record_transaction(
                shop_id=payload.shopId,
                pos_invoice_id=payload.posInvoiceId,
                total_amount=payload.totalAmount,
                tax_amount=payload.taxAmount,
                items=[item.model_dump() for item in payload.items],
                metadata=payload.metadata,
                coupon_redemption_id=payload.couponRedemptionId,
                discount_amount=payload.discountAmount,
            ),
            operation="record_transaction",
        )
    except DuplicateInvoice as exc:
        _, locale = await _shop_locale(db, payload.shopId)
        return JSONResponse(status_code=status.HTTP_200_OK, content=localized_error(exc.error_code, locale))

    return TransactionResponse(
        id=transaction.id,
        shopId=transaction.shop_id,
        posInvoiceId=transaction.pos_invoice_id,
        totalAmount=float(transaction.total_amount),
        status=transaction.status.value,
        qrCodeData=transaction.qr_code_data,
        displayText=f"Scan for loyalty points\nInvoice: {transaction.pos_invoice_id}",
    )


@router.post("/transactions/storno", response_model=StornoResponse)
async def storno_transaction(
    payload: StornoRequest,
    db: AsyncSession = Depends(get_session),
) -> StornoResponse | JSONResponse:
    """Cancel a sale: earned points are taken back and a consumed coupon is refunded."""

    service = PosTransactionService(db)
    try:
        result = await with_ledger_timeout(
            service.storno(shop_id=payload.shopId, pos_invoice_id=payload.posInvoiceId, reason=payload.reason),
            operation="storno",
        )
    except TransactionAlreadyProcessed as exc:
        _, locale = await _shop_locale(db, payload.shopId)
        return JSONResponse(status_code=status.HTTP_200_OK, content=localized_error(exc.error_code, locale))

    return StornoResponse(
        transactionId=result.transaction_id,
        posInvoiceId=result.pos_invoice_id,
        previousStatus=result.previous_status.value,
        pointsReversed=result.points_reversed,
        pointsRestored=result.points_restored,
        pointsBalance=result.points_balance,
    )


@router.post("/redemptions/{redemption_id}/reverse", response_model=ReverseRedemptionResponse)
async def reverse_redemption(
    redemption_id: UUID,
    payload: ReverseRedemptionRequest,
    db: AsyncSession = Depends(get_session),
) -> ReverseRedemptionResponse:
    result = await with_ledger_timeout(
        RedemptionLedger(db).reverse(redemption_id, payload.reason, performed_by=payload.performedBy),
        operation="reverse",
    )
    return ReverseRedemptionResponse(
        redemptionId=result.redemption_id,
        pointsRestored=result.points_restored,
        pointsBalance=result.points_balance,
        reversedAt=result.reversed_at,
    )

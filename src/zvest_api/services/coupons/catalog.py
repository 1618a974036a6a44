"""Coupon definitions exposed to the customer app and POS terminals."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from zvest_api.core.clock import as_utc, utcnow
from zvest_api.core.exceptions import CouponNotFound, CouponTermsInvalid, ShopNotFound
from zvest_api.models.coupon import Coupon, CouponType
from zvest_api.models.shop import Shop


@dataclass(frozen=True)
class ArticleDiscount:
    """One discount line; ``article_id`` of ``None`` covers the whole invoice."""

    article_id: Optional[str]
    article_name: Optional[str]
    discount_value: Decimal

    def as_dict(self) -> dict[str, Any]:
        return {
            "article_id": self.article_id,
            "article_name": self.article_name,
            "discount_value": float(self.discount_value),
        }


@dataclass(frozen=True)
class CouponTerms:
    """Discount terms snapshot handed to the customer app and the POS terminal."""

    coupon_id: UUID
    shop_id: UUID
    name: str
    description: Optional[str]
    coupon_type: CouponType
    articles: tuple[ArticleDiscount, ...]
    points_required: int
    expires_at: Optional[datetime]

    @classmethod
    def from_coupon(cls, coupon: Coupon) -> "CouponTerms":
        return cls(
            coupon_id=coupon.id,
            shop_id=coupon.shop_id,
            name=coupon.name,
            description=coupon.description,
            coupon_type=CouponType(coupon.coupon_type),
            articles=tuple(parse_articles(coupon.coupon_type, coupon.articles_data)),
            points_required=int(coupon.points_required),
            expires_at=as_utc(coupon.expires_at),
        )


def parse_articles(coupon_type: CouponType | str, raw: Sequence[Any] | None) -> list[ArticleDiscount]:
    """Validate ``articles_data`` entries against the coupon type."""

    coupon_type = CouponType(coupon_type)
    if not raw:
        raise CouponTermsInvalid("Coupon must define at least one discount entry")

    articles: list[ArticleDiscount] = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise CouponTermsInvalid(details={"index": index, "reason": "entry must be an object"})
        try:
            value = Decimal(str(entry.get("discount_value")))
        except (InvalidOperation, ValueError):
            raise CouponTermsInvalid(details={"index": index, "reason": "discount_value is not numeric"}) from None
        if not value.is_finite() or value < 0:
            raise CouponTermsInvalid(details={"index": index, "reason": "discount_value must be non-negative"})
        if coupon_type is CouponType.PERCENTAGE and value > 100:
            raise CouponTermsInvalid(details={"index": index, "reason": "percentage must be within 0-100"})

        article_id = entry.get("article_id")
        articles.append(
            ArticleDiscount(
                article_id=str(article_id) if article_id not in (None, "") else None,
                article_name=entry.get("article_name"),
                discount_value=value,
            )
        )
    return articles


class CouponCatalog:
    """Read path over coupons plus the small write surface used by shop management."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_coupon(self, coupon_id: UUID) -> Coupon:
        coupon = await self._db.get(Coupon, coupon_id)
        if coupon is None:
            raise CouponNotFound()
        return coupon

    async def list_active(self, shop_id: UUID) -> list[Coupon]:
        """Coupons a POS terminal may display: active and not past their own expiry."""

        now = utcnow()
        stmt = (
            select(Coupon)
            .where(
                Coupon.shop_id == shop_id,
                Coupon.is_active.is_(True),
                or_(Coupon.expires_at.is_(None), Coupon.expires_at > now),
            )
            .order_by(Coupon.points_required.asc(), Coupon.name.asc())
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def list_redeemable(self, shop_id: UUID) -> list[Coupon]:
        """Coupons the customer app may offer for activation."""

        stmt = (
            select(Coupon)
            .where(
                Coupon.shop_id == shop_id,
                Coupon.is_active.is_(True),
                or_(Coupon.expires_at.is_(None), Coupon.expires_at > utcnow()),
                or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
            )
            .order_by(Coupon.points_required.asc(), Coupon.name.asc())
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def create_coupon(
        self,
        *,
        shop_id: UUID,
        name: str,
        coupon_type: CouponType | str,
        articles: Sequence[dict[str, Any]],
        points_required: int,
        description: str | None = None,
        expires_at: datetime | None = None,
        usage_limit: int | None = None,
    ) -> Coupon:
        shop = await self._db.get(Shop, shop_id)
        if shop is None:
            raise ShopNotFound()
        if points_required < 0:
            raise CouponTermsInvalid("points_required must not be negative")
        if usage_limit is not None and usage_limit <= 0:
            raise CouponTermsInvalid("usage_limit must be positive")

        parsed = parse_articles(coupon_type, articles)
        coupon = Coupon(
            shop_id=shop_id,
            name=name,
            description=description,
            coupon_type=CouponType(coupon_type),
            articles_data=[article.as_dict() for article in parsed],
            points_required=points_required,
            expires_at=expires_at,
            usage_limit=usage_limit,
            used_count=0,
            is_active=True,
        )
        self._db.add(coupon)
        await self._db.commit()
        logger.info("Created coupon", coupon_id=str(coupon.id), shop_id=str(shop_id))
        return coupon

    async def deactivate_coupon(self, coupon_id: UUID) -> Coupon:
        # In-flight redemptions keep their points_deducted snapshot.
        coupon = await self.get_coupon(coupon_id)
        coupon.is_active = False
        await self._db.commit()
        logger.info("Deactivated coupon", coupon_id=str(coupon_id))
        return coupon


__all__ = ["ArticleDiscount", "CouponCatalog", "CouponTerms", "parse_articles"]

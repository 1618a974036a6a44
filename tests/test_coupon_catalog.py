from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from zvest_api.core.clock import utcnow
from zvest_api.core.exceptions import CouponNotFound, CouponTermsInvalid, ShopNotFound
from zvest_api.models.coupon import CouponType
from zvest_api.services.coupons import CouponCatalog, CouponTerms, parse_articles


def test_parse_articles_accepts_whole_invoice_discounts():
    articles = parse_articles("fixed", [{"article_id": None, "article_name": None, "discount_value": "2.5"}])

    assert len(articles) == 1
    assert articles[0].article_id is None
    assert articles[0].discount_value == Decimal("2.5")


@pytest.mark.parametrize(
    "coupon_type, raw",
    [
        (CouponType.PERCENTAGE, []),
        (CouponType.PERCENTAGE, [{"article_id": "A", "discount_value": 120}]),
        (CouponType.FIXED, [{"article_id": "A", "discount_value": -1}]),
        (CouponType.FIXED, [{"article_id": "A", "discount_value": "free"}]),
        (CouponType.FIXED, ["not-an-object"]),
    ],
)
def test_parse_articles_rejects_invalid_terms(coupon_type, raw):
    with pytest.raises(CouponTermsInvalid):
        parse_articles(coupon_type, raw)


@pytest.mark.asyncio
async def test_create_coupon_stores_normalised_terms(session_factory, seeded):
    async with session_factory() as session:
        catalog = CouponCatalog(session)
        coupon = await catalog.create_coupon(
            shop_id=seeded.shop_id,
            name="Rogljic -1 EUR",
            coupon_type="fixed",
            articles=[{"article_id": 42, "article_name": "Rogljic", "discount_value": 1}],
            points_required=150,
            usage_limit=20,
        )
        terms = CouponTerms.from_coupon(await catalog.get_coupon(coupon.id))

    assert terms.coupon_type is CouponType.FIXED
    assert terms.articles[0].article_id == "42"
    assert terms.articles[0].discount_value == Decimal("1")
    assert terms.points_required == 150


@pytest.mark.asyncio
async def test_create_coupon_validates_shop_and_limits(session_factory, seeded):
    async with session_factory() as session:
        catalog = CouponCatalog(session)
        with pytest.raises(ShopNotFound):
            await catalog.create_coupon(
                shop_id=uuid4(),
                name="Ghost",
                coupon_type="fixed",
                articles=[{"discount_value": 1}],
                points_required=10,
            )
        with pytest.raises(CouponTermsInvalid):
            await catalog.create_coupon(
                shop_id=seeded.shop_id,
                name="Broken",
                coupon_type="fixed",
                articles=[{"discount_value": 1}],
                points_required=-1,
            )
        with pytest.raises(CouponNotFound):
            await catalog.get_coupon(uuid4())


@pytest.mark.asyncio
async def test_listing_filters_inactive_expired_and_exhausted(session_factory, seeded):
    async with session_factory() as session:
        catalog = CouponCatalog(session)
        common = {
            "shop_id": seeded.shop_id,
            "coupon_type": "percentage",
            "articles": [{"article_id": "TEA", "article_name": "Caj", "discount_value": 50}],
            "points_required": 100,
        }
        expired = await catalog.create_coupon(name="Stari", expires_at=utcnow() - timedelta(days=1), **common)
        exhausted = await catalog.create_coupon(name="Razprodan", usage_limit=1, **common)
        exhausted.used_count = 1
        await session.commit()
        retired = await catalog.create_coupon(name="Umaknjen", **common)
        await catalog.deactivate_coupon(retired.id)

        active_ids = {coupon.id for coupon in await catalog.list_active(seeded.shop_id)}
        redeemable_ids = {coupon.id for coupon in await catalog.list_redeemable(seeded.shop_id)}

    assert active_ids == {seeded.coupon_id, exhausted.id}
    assert redeemable_ids == {seeded.coupon_id}
    assert expired.id not in active_ids

"""Seed a demo shop with a loyalty program, a customer and two coupons.

Intended usage: local development and POS integration smoke tests.

Example::
    python tooling/scripts/seed_demo_shop.py --email demo@example.si --balance 1500
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from decimal import Decimal
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed a demo loyalty shop")
    parser.add_argument("--shop-name", default="Demo Kavarna", help="Name of the seeded shop")
    parser.add_argument("--email", default="demo@example.si", help="Customer email to seed")
    parser.add_argument("--balance", type=int, default=1000, help="Starting points balance")
    parser.add_argument(
        "--locale",
        default="sl",
        choices=["sl", "en"],
        help="Staff language used for POS error messages.",
    )
    return parser.parse_args()


async def _run(shop_name: str, email: str, balance: int, locale: str) -> dict[str, str]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from zvest_api.db.session import async_session  # type: ignore import-position
    from zvest_api.models import LoyaltyProgram, Shop  # type: ignore import-position
    from zvest_api.models.loyalty import LoyaltyProgramType  # type: ignore import-position
    from zvest_api.services.coupons import CouponCatalog  # type: ignore import-position
    from zvest_api.services.loyalty import (  # type: ignore import-position
        PointsAccountService,
        ensure_app_user,
    )

    async with async_session() as session:
        shop = Shop(name=shop_name, settings_json={"locale": locale})
        session.add(shop)
        await session.flush()
        program = LoyaltyProgram(
            shop_id=shop.id,
            name="Zvestobne tocke",
            program_type=LoyaltyProgramType.POINTS,
            points_per_euro=Decimal("1.00"),
            is_active=True,
        )
        session.add(program)
        await session.commit()

        catalog = CouponCatalog(session)
        coffee = await catalog.create_coupon(
            shop_id=shop.id,
            name="Brezplacna kava",
            coupon_type="percentage",
            articles=[{"article_id": "COF-1", "article_name": "Espresso", "discount_value": 100}],
            points_required=600,
        )
        await catalog.create_coupon(
            shop_id=shop.id,
            name="2 EUR popusta",
            coupon_type="fixed",
            articles=[{"article_id": None, "article_name": None, "discount_value": 2}],
            points_required=250,
            usage_limit=100,
        )

        user = await ensure_app_user(session, email=email)
        accounts = PointsAccountService(session)
        account = await accounts.ensure_account(user.id, shop.id, loyalty_program_id=program.id)
        if balance:
            await accounts.credit(account, balance)
            await session.commit()

        return {
            "shop_id": str(shop.id),
            "app_user_id": str(user.id),
            "coupon_id": str(coffee.id),
        }


def main() -> int:
    args = parse_args()
    seeded = asyncio.run(_run(args.shop_name, args.email, args.balance, args.locale))
    logger.success("Demo shop seeded", **seeded)
    return 0


if __name__ == "__main__":
    sys.exit(main())

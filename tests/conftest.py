import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

os.environ.setdefault("TRACING_ENABLED", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from zvest_api import models  # noqa: F401
from zvest_api.app import create_app
from zvest_api.db.base import Base
from zvest_api.db.session import get_session
from zvest_api.models.coupon import Coupon, CouponType
from zvest_api.models.loyalty import LoyaltyAccount, LoyaltyProgram, LoyaltyProgramType
from zvest_api.models.shop import AppUser, Shop
from zvest_api.observability.redemptions import get_redemption_store


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """SQLite file database; every session gets its own connection so writers really race."""

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        future=True,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_redemption_store():
    store = get_redemption_store()
    store.reset()
    yield
    store.reset()


@dataclass
class LoyaltySeed:
    shop_id: UUID
    program_id: UUID
    app_user_id: UUID
    account_id: UUID
    coupon_id: UUID
    email: str


async def seed_loyalty(
    factory,
    *,
    balance: int = 1000,
    points_required: int = 600,
    coupon_kwargs: dict[str, Any] | None = None,
    shop_settings: dict[str, Any] | None = None,
    email: str = "ana@example.si",
) -> LoyaltySeed:
    async with factory() as session:
        shop = Shop(name="Kavarna Center", settings_json=shop_settings or {})
        session.add(shop)
        await session.flush()

        program = LoyaltyProgram(
            shop_id=shop.id,
            name="Tocke",
            program_type=LoyaltyProgramType.POINTS,
            points_per_euro=Decimal("1.50"),
            is_active=True,
        )
        user = AppUser(email=email)
        session.add_all([program, user])
        await session.flush()

        account = LoyaltyAccount(
            app_user_id=user.id,
            shop_id=shop.id,
            loyalty_program_id=program.id,
            points_balance=balance,
            total_points_earned=balance,
            total_points_redeemed=0,
            total_spent=Decimal("0"),
            visits_count=0,
        )
        coupon_fields: dict[str, Any] = {
            "shop_id": shop.id,
            "name": "Brezplacna kava",
            "description": "Ena kava po izbiri",
            "coupon_type": CouponType.PERCENTAGE,
            "articles_data": [{"article_id": "COF-1", "article_name": "Espresso", "discount_value": 100}],
            "points_required": points_required,
            "used_count": 0,
            "is_active": True,
        }
        coupon_fields.update(coupon_kwargs or {})
        coupon = Coupon(**coupon_fields)
        session.add_all([account, coupon])
        await session.commit()

        return LoyaltySeed(
            shop_id=shop.id,
            program_id=program.id,
            app_user_id=user.id,
            account_id=account.id,
            coupon_id=coupon.id,
            email=email,
        )


@pytest.fixture
def seed():
    return seed_loyalty


@pytest_asyncio.fixture
async def seeded(session_factory) -> LoyaltySeed:
    return await seed_loyalty(session_factory)

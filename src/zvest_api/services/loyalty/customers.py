"""Resolve app users from the identity the customer app sends."""

from __future__ import annotations

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from zvest_api.core.exceptions import CustomerNotFound, ValidationError
from zvest_api.models.shop import AppUser


def _normalize_identity(email: str | None, phone_number: str | None) -> tuple[str | None, str | None]:
    normalized_email = email.strip().lower() if email and email.strip() else None
    normalized_phone = phone_number.replace(" ", "").strip() if phone_number and phone_number.strip() else None
    if not normalized_email and not normalized_phone:
        raise ValidationError("Either email or phone_number must be provided")
    return normalized_email, normalized_phone


async def find_app_user(
    db: AsyncSession,
    *,
    email: str | None = None,
    phone_number: str | None = None,
) -> AppUser | None:
    normalized_email, normalized_phone = _normalize_identity(email, phone_number)
    if normalized_phone:
        stmt = select(AppUser).where(AppUser.phone_number == normalized_phone)
    else:
        stmt = select(AppUser).where(AppUser.email == normalized_email)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def require_app_user(
    db: AsyncSession,
    *,
    email: str | None = None,
    phone_number: str | None = None,
) -> AppUser:
    user = await find_app_user(db, email=email, phone_number=phone_number)
    if user is None:
        raise CustomerNotFound()
    return user


async def ensure_app_user(
    db: AsyncSession,
    *,
    email: str | None = None,
    phone_number: str | None = None,
) -> AppUser:
    """Fetch or create the app user; commits the insert so later steps see it."""

    existing = await find_app_user(db, email=email, phone_number=phone_number)
    if existing is not None:
        return existing

    normalized_email, normalized_phone = _normalize_identity(email, phone_number)
    user = AppUser(email=normalized_email, phone_number=normalized_phone)
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning("Detected race when creating app user")
        return await require_app_user(db, email=email, phone_number=phone_number)

    logger.info("Created app user", app_user_id=str(user.id))
    return user


__all__ = ["ensure_app_user", "find_app_user", "require_app_user"]

from fastapi import Header, HTTPException, status

from zvest_api.core.settings import settings


async def require_pos_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    """Gate POS terminal routes; an empty ``pos_api_key`` setting leaves them open."""

    if not settings.pos_api_key:
        return

    if x_api_key != settings.pos_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )

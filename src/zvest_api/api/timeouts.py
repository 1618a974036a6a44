"""Request timeout applied around loyalty store round-trips."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from loguru import logger

from zvest_api.core.exceptions import StorageError
from zvest_api.core.settings import settings

T = TypeVar("T")


async def with_ledger_timeout(awaitable: Awaitable[T], *, operation: str) -> T:
    """Await ``awaitable`` under the ledger timeout; a timeout is a retryable storage error."""

    try:
        return await asyncio.wait_for(awaitable, timeout=settings.ledger_request_timeout_seconds)
    except asyncio.TimeoutError as exc:
        logger.warning(
            "Ledger operation timed out",
            operation=operation,
            timeout_seconds=settings.ledger_request_timeout_seconds,
        )
        raise StorageError("Loyalty store did not respond in time") from exc


__all__ = ["with_ledger_timeout"]

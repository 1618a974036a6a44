"""Worker wiring for the optional redemption expiry sweep."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from zvest_api.core.settings import settings
from zvest_api.services.redemptions.ledger import RedemptionLedger

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


class RedemptionExpiryWorker:
    """Periodically moves overdue active redemptions to ``expired``.

    Validation computes expiry on its own; the sweep only keeps the active-code index
    small and the customer's redemption history accurate.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.redemption_expiry_interval_seconds
        self._batch_size = batch_size or settings.redemption_expiry_batch_size
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Redemption expiry worker started",
            interval_seconds=self.interval_seconds,
            batch_size=self._batch_size,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Redemption expiry worker stopped")

    async def run_once(self) -> Dict[str, int]:
        """Sweep batches until a short batch signals nothing overdue is left."""

        summary: Dict[str, int] = {"expired": 0, "batches": 0}
        session = await self._ensure_session()
        async with session as managed_session:
            ledger = RedemptionLedger(managed_session)
            while True:
                expired = await ledger.expire_stale(limit=self._batch_size)
                summary["batches"] += 1
                summary["expired"] += expired
                if expired < self._batch_size:
                    break
        logger.info("Redemption expiry sweep completed", **summary)
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - logged and retried next interval
                logger.exception("Redemption expiry iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["RedemptionExpiryWorker", "SessionFactory"]

"""Append-only audit trail over ``transaction_logs``.

Writes happen after the primary operation has committed. A failed audit write is
logged and dropped; it never undoes the ledger change it describes.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from zvest_api.models.transaction import TransactionLog, TransactionLogAction


class AuditLogWriter:
    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def record(
        self,
        action: TransactionLogAction,
        *,
        transaction_id: UUID | None = None,
        redemption_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        performed_by: str | None = None,
    ) -> TransactionLog | None:
        entry = TransactionLog(
            action=action,
            transaction_id=transaction_id,
            redemption_id=redemption_id,
            details=details or {},
            performed_by=performed_by,
        )
        self._db.add(entry)
        try:
            await self._db.commit()
        except SQLAlchemyError:
            await self._db.rollback()
            logger.exception(
                "Failed to write audit log entry",
                action=action.value,
                transaction_id=str(transaction_id) if transaction_id else None,
                redemption_id=str(redemption_id) if redemption_id else None,
            )
            return None
        return entry

    async def link_redemption(self, redemption_id: UUID, transaction_id: UUID) -> int:
        """Attach earlier redemption entries to the transaction that consumed the code."""

        stmt = (
            update(TransactionLog)
            .where(
                TransactionLog.redemption_id == redemption_id,
                TransactionLog.transaction_id.is_(None),
            )
            .values(transaction_id=transaction_id)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._db.execute(stmt)
            await self._db.commit()
        except SQLAlchemyError:
            await self._db.rollback()
            logger.exception(
                "Failed to link audit entries to transaction",
                redemption_id=str(redemption_id),
                transaction_id=str(transaction_id),
            )
            return 0
        return result.rowcount or 0


__all__ = ["AuditLogWriter"]

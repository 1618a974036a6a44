from datetime import timedelta

import pytest
from sqlalchemy import select

from zvest_api.core.clock import utcnow
from zvest_api.models.coupon import CouponRedemption, RedemptionStatus
from zvest_api.services.redemptions import CodeGenerator, RedemptionLedger
from zvest_api.workers import RedemptionExpiryWorker


@pytest.mark.asyncio
async def test_run_once_sweeps_in_batches(session_factory, seed):
    data = await seed(session_factory, balance=1000, points_required=100)
    draws = iter([100100, 200200, 300300, 400400])
    stale = utcnow() - timedelta(minutes=15)

    async with session_factory() as session:
        ledger = RedemptionLedger(session, code_generator=CodeGenerator(randbelow=lambda _upper: next(draws)))
        for _ in range(3):
            await ledger.activate(data.app_user_id, data.coupon_id, now=stale)
        await ledger.activate(data.app_user_id, data.coupon_id)

    worker = RedemptionExpiryWorker(session_factory, interval_seconds=60, batch_size=2)
    summary = await worker.run_once()

    assert summary == {"expired": 3, "batches": 2}
    async with session_factory() as session:
        statuses = (await session.execute(select(CouponRedemption.status))).scalars().all()
    assert sorted(status.value for status in statuses) == ["active", "expired", "expired", "expired"]


@pytest.mark.asyncio
async def test_worker_start_and_stop(session_factory):
    worker = RedemptionExpiryWorker(session_factory, interval_seconds=3600, batch_size=10)
    worker.start()
    assert worker.is_running is True

    await worker.stop()
    assert worker.is_running is False

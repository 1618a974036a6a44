"""Run the redemption expiry sweep once.

Intended usage: schedule via cron when the in-process worker is disabled.

Example:
    python tooling/scripts/run_redemption_expiry.py --batch-size 500
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Expire overdue coupon redemptions once")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Override the number of redemptions transitioned per batch.",
    )
    return parser.parse_args()


async def _run(batch_size: int | None) -> dict[str, int]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from zvest_api.core.settings import settings  # type: ignore import-position
    from zvest_api.db.session import async_session  # type: ignore import-position
    from zvest_api.workers import RedemptionExpiryWorker  # type: ignore import-position

    worker = RedemptionExpiryWorker(
        async_session,  # type: ignore[arg-type]
        interval_seconds=settings.redemption_expiry_interval_seconds,
        batch_size=batch_size or settings.redemption_expiry_batch_size,
    )
    return await worker.run_once()


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.batch_size))
    logger.success(
        "Redemption expiry sweep completed",
        expired=summary.get("expired", 0),
        batches=summary.get("batches", 0),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Background workers supporting async processing."""

from .redemption_expiry import RedemptionExpiryWorker

__all__ = ["RedemptionExpiryWorker"]

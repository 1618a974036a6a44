"""Error taxonomy for the coupon redemption lifecycle and its collaborators."""

from __future__ import annotations

from enum import Enum
from typing import Any


class RedemptionErrorCode(str, Enum):
    """Discriminated failure reasons surfaced to the customer app and POS terminals."""

    INVALID_FORMAT = "invalid_format"
    INVALID_COUPON_TERMS = "invalid_coupon_terms"
    NOT_FOUND = "not_found"
    COUPON_NOT_FOUND = "coupon_not_found"
    CUSTOMER_NOT_FOUND = "customer_not_found"
    SHOP_NOT_FOUND = "shop_not_found"
    TRANSACTION_NOT_FOUND = "transaction_not_found"
    INSUFFICIENT_POINTS = "insufficient_points"
    COUPON_UNAVAILABLE = "coupon_unavailable"
    ALREADY_USED = "already_used"
    SHOP_MISMATCH = "shop_mismatch"
    ALREADY_REVERSED = "already_reversed"
    REDEMPTION_ACTIVE = "redemption_active"
    ALREADY_PROCESSED = "already_processed"
    QR_ALREADY_SCANNED = "qr_already_scanned"
    DUPLICATE_INVOICE = "duplicate_invoice"
    EXPIRED = "expired"
    COUPON_EXPIRED = "coupon_expired"
    COLLISION_EXHAUSTED = "collision_exhausted"
    STORAGE_ERROR = "storage_error"
    INVARIANT_VIOLATION = "invariant_violation"
    VALIDATION_ERROR = "validation_error"
    INTERNAL_ERROR = "internal_error"


class LedgerError(Exception):
    """Base class for every failure the loyalty core reports to callers."""

    status_code: int = 500
    error_code: RedemptionErrorCode = RedemptionErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.__class__.__doc__ or self.error_code.value
        self.details = details
        super().__init__(self.message)

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "message": self.message,
            "error_code": self.error_code.value,
            "details": self.details,
        }


class ValidationError(LedgerError):
    """Malformed input rejected before any store access."""

    status_code = 400
    error_code = RedemptionErrorCode.VALIDATION_ERROR


class InvalidCodeFormat(ValidationError):
    """Redemption code must be exactly 6 digits."""

    error_code = RedemptionErrorCode.INVALID_FORMAT


class CouponTermsInvalid(ValidationError):
    """Coupon discount terms are invalid."""

    error_code = RedemptionErrorCode.INVALID_COUPON_TERMS


class NotFoundError(LedgerError):
    """Requested record does not exist."""

    status_code = 404
    error_code = RedemptionErrorCode.NOT_FOUND


class CouponNotFound(NotFoundError):
    """Coupon not found."""

    error_code = RedemptionErrorCode.COUPON_NOT_FOUND


class CustomerNotFound(NotFoundError):
    """Customer not found."""

    error_code = RedemptionErrorCode.CUSTOMER_NOT_FOUND


class ShopNotFound(NotFoundError):
    """Shop not found or not active."""

    error_code = RedemptionErrorCode.SHOP_NOT_FOUND


class TransactionNotFound(NotFoundError):
    """Transaction not found."""

    error_code = RedemptionErrorCode.TRANSACTION_NOT_FOUND


class RedemptionNotFound(NotFoundError):
    """Redemption code not found."""

    error_code = RedemptionErrorCode.NOT_FOUND


class ConflictError(LedgerError):
    """Request conflicts with the current state of the ledger."""

    status_code = 409


class InsufficientPoints(ConflictError):
    """Customer does not have enough points for this coupon."""

    error_code = RedemptionErrorCode.INSUFFICIENT_POINTS

    def __init__(self, *, required: int, current: int) -> None:
        self.required = int(required)
        self.current = int(current)
        self.deficit = max(self.required - self.current, 0)
        super().__init__(
            f"Insufficient points: {self.required} required, {self.current} available",
            details={"required": self.required, "current": self.current, "deficit": self.deficit},
        )


class CouponUnavailable(ConflictError):
    """Coupon is inactive, expired or has reached its usage limit."""

    error_code = RedemptionErrorCode.COUPON_UNAVAILABLE


class AlreadyUsed(ConflictError):
    """Redemption code has already been used."""

    error_code = RedemptionErrorCode.ALREADY_USED


class ShopMismatch(ConflictError):
    """Coupon cannot be used at this shop."""

    error_code = RedemptionErrorCode.SHOP_MISMATCH


class AlreadyReversed(ConflictError):
    """Redemption has already been reversed."""

    error_code = RedemptionErrorCode.ALREADY_REVERSED


class RedemptionStillActive(ConflictError):
    """Redemption is still active; only used or expired redemptions can be reversed."""

    error_code = RedemptionErrorCode.REDEMPTION_ACTIVE


class TransactionAlreadyProcessed(ConflictError):
    """Transaction is already cancelled or refunded."""

    error_code = RedemptionErrorCode.ALREADY_PROCESSED


class QrCodeAlreadyScanned(ConflictError):
    """QR code has already been used."""

    error_code = RedemptionErrorCode.QR_ALREADY_SCANNED


class DuplicateInvoice(ConflictError):
    """Transaction with this invoice ID already exists for this shop."""

    error_code = RedemptionErrorCode.DUPLICATE_INVOICE


class ExpiredError(LedgerError):
    """A redemption or coupon time window has passed."""

    status_code = 410
    error_code = RedemptionErrorCode.EXPIRED


class RedemptionExpired(ExpiredError):
    """Redemption window expired (valid for 5 minutes only)."""

    error_code = RedemptionErrorCode.EXPIRED


class CouponExpired(ExpiredError):
    """Coupon has expired."""

    error_code = RedemptionErrorCode.COUPON_EXPIRED


class CollisionExhausted(LedgerError):
    """Could not mint a unique redemption code; retry the request."""

    status_code = 503
    error_code = RedemptionErrorCode.COLLISION_EXHAUSTED
    retryable = True


class StorageError(LedgerError):
    """Loyalty store unavailable; retry the request."""

    status_code = 503
    error_code = RedemptionErrorCode.STORAGE_ERROR
    retryable = True


class InvariantViolation(LedgerError):
    """Ledger accounting would become inconsistent."""

    status_code = 500
    error_code = RedemptionErrorCode.INVARIANT_VIOLATION


__all__ = [
    "AlreadyReversed",
    "AlreadyUsed",
    "CollisionExhausted",
    "ConflictError",
    "CouponExpired",
    "CouponNotFound",
    "CouponTermsInvalid",
    "CouponUnavailable",
    "CustomerNotFound",
    "DuplicateInvoice",
    "ExpiredError",
    "InsufficientPoints",
    "InvalidCodeFormat",
    "InvariantViolation",
    "LedgerError",
    "NotFoundError",
    "QrCodeAlreadyScanned",
    "RedemptionErrorCode",
    "RedemptionExpired",
    "RedemptionNotFound",
    "RedemptionStillActive",
    "ShopMismatch",
    "ShopNotFound",
    "StorageError",
    "TransactionAlreadyProcessed",
    "TransactionNotFound",
    "ValidationError",
]

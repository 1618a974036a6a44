"""Coupon redemption lifecycle services."""

from .codes import CodeGenerator, format_code_for_display, is_valid_code_format, normalize_code
from .ledger import ActivationResult, ConsumptionResult, RedemptionLedger, RedemptionView, ReversalResult

__all__ = [
    "ActivationResult",
    "CodeGenerator",
    "ConsumptionResult",
    "RedemptionLedger",
    "RedemptionView",
    "ReversalResult",
    "format_code_for_display",
    "is_valid_code_format",
    "normalize_code",
]

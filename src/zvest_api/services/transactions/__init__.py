"""POS transaction flows: receipts, QR-scan earning and storno."""

from .pos import (
    QR_CODE_PREFIX,
    PosTransactionService,
    ScanResult,
    StornoResult,
    build_qr_code,
    parse_qr_code,
    points_for_amount,
)

__all__ = [
    "PosTransactionService",
    "QR_CODE_PREFIX",
    "ScanResult",
    "StornoResult",
    "build_qr_code",
    "parse_qr_code",
    "points_for_amount",
]

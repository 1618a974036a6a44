"""Staff-facing error strings for POS terminals, keyed by error code."""

from __future__ import annotations

from typing import Any, Literal, Mapping

from zvest_api.core.exceptions import RedemptionErrorCode
from zvest_api.core.settings import settings

StaffLocale = Literal["sl", "en"]

_SLOVENIAN: dict[str, str] = {
    RedemptionErrorCode.INVALID_FORMAT.value: "Neveljavna oblika kode kupona.",
    RedemptionErrorCode.NOT_FOUND.value: "Koda za unovčitev ne obstaja.",
    RedemptionErrorCode.COUPON_NOT_FOUND.value: "Kupon ne obstaja.",
    RedemptionErrorCode.ALREADY_USED.value: "Kupon je že bil uporabljen.",
    RedemptionErrorCode.EXPIRED.value: "Koda je potekla (veljavna samo 5 minut).",
    RedemptionErrorCode.COUPON_EXPIRED.value: "Kupon je potekel.",
    RedemptionErrorCode.SHOP_MISMATCH.value: "Kupona ni mogoče uporabiti v tej trgovini.",
    RedemptionErrorCode.INSUFFICIENT_POINTS.value: "Stranka nima dovolj točk za ta kupon.",
    RedemptionErrorCode.COUPON_UNAVAILABLE.value: "Kupon ni aktiven.",
    RedemptionErrorCode.SHOP_NOT_FOUND.value: "Trgovina ni najdena.",
    RedemptionErrorCode.TRANSACTION_NOT_FOUND.value: "Transakcija ni najdena.",
    RedemptionErrorCode.ALREADY_PROCESSED.value: "Transakcija je že bila obdelana.",
    RedemptionErrorCode.ALREADY_REVERSED.value: "Unovčitev je že bila stornirana.",
    RedemptionErrorCode.REDEMPTION_ACTIVE.value: "Koda je še aktivna in je ni mogoče stornirati.",
    RedemptionErrorCode.QR_ALREADY_SCANNED.value: "QR koda je že bila uporabljena.",
    RedemptionErrorCode.DUPLICATE_INVOICE.value: "Transakcija s to številko računa že obstaja.",
    RedemptionErrorCode.INTERNAL_ERROR.value: "Napaka v sistemu. Kontaktirajte podporo.",
}

_ENGLISH: dict[str, str] = {
    RedemptionErrorCode.INVALID_FORMAT.value: "Invalid coupon code format.",
    RedemptionErrorCode.NOT_FOUND.value: "Redemption code not found.",
    RedemptionErrorCode.COUPON_NOT_FOUND.value: "Coupon not found.",
    RedemptionErrorCode.ALREADY_USED.value: "Coupon has already been used.",
    RedemptionErrorCode.EXPIRED.value: "Redemption window expired (valid for 5 minutes only).",
    RedemptionErrorCode.COUPON_EXPIRED.value: "Coupon has expired.",
    RedemptionErrorCode.SHOP_MISMATCH.value: "This coupon cannot be used at this location.",
    RedemptionErrorCode.INSUFFICIENT_POINTS.value: "Customer doesn't have enough points for this coupon.",
    RedemptionErrorCode.COUPON_UNAVAILABLE.value: "Coupon is not active.",
    RedemptionErrorCode.SHOP_NOT_FOUND.value: "Shop not found.",
    RedemptionErrorCode.TRANSACTION_NOT_FOUND.value: "Transaction not found.",
    RedemptionErrorCode.ALREADY_PROCESSED.value: "Transaction has already been processed.",
    RedemptionErrorCode.ALREADY_REVERSED.value: "Redemption has already been reversed.",
    RedemptionErrorCode.REDEMPTION_ACTIVE.value: "Redemption code is still active and cannot be reversed.",
    RedemptionErrorCode.QR_ALREADY_SCANNED.value: "QR code has already been used.",
    RedemptionErrorCode.DUPLICATE_INVOICE.value: "A transaction with this invoice ID already exists for this shop.",
    RedemptionErrorCode.INTERNAL_ERROR.value: "Internal server error. Please contact support.",
}

_MESSAGES: dict[str, dict[str, str]] = {"sl": _SLOVENIAN, "en": _ENGLISH}

_LOCALE_ALIASES = {
    "sl": "sl",
    "slovenian": "sl",
    "slovene": "sl",
    "en": "en",
    "english": "en",
}


def get_localized_message(code: RedemptionErrorCode | str, locale: str | None = None) -> str:
    """Return the staff-facing string for ``code``; unknown codes map to the internal error."""

    key = code.value if isinstance(code, RedemptionErrorCode) else str(code)
    messages = _MESSAGES.get(locale or settings.default_staff_locale, _SLOVENIAN)
    return messages.get(key) or messages[RedemptionErrorCode.INTERNAL_ERROR.value]


def resolve_shop_locale(shop_settings: Mapping[str, Any] | None) -> StaffLocale:
    """Pick the staff locale from a shop's settings payload."""

    if isinstance(shop_settings, Mapping):
        preference = shop_settings.get("locale") or shop_settings.get("staff_language")
        resolved = _LOCALE_ALIASES.get(str(preference or "").strip().lower())
        if resolved and resolved in settings.supported_staff_locales:
            return resolved  # type: ignore[return-value]
    return settings.default_staff_locale


def localized_error(code: RedemptionErrorCode | str, locale: str | None = None) -> dict[str, Any]:
    key = code.value if isinstance(code, RedemptionErrorCode) else str(code)
    return {
        "valid": False,
        "error_code": key,
        "error_message": get_localized_message(key, locale),
    }


__all__ = ["StaffLocale", "get_localized_message", "localized_error", "resolve_shop_locale"]

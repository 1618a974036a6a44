import pytest

from zvest_api.core.exceptions import RedemptionErrorCode
from zvest_api.core.localization import get_localized_message, localized_error, resolve_shop_locale


@pytest.mark.parametrize(
    "shop_settings, expected",
    [
        (None, "sl"),
        ({}, "sl"),
        ({"locale": "en"}, "en"),
        ({"staff_language": "English"}, "en"),
        ({"locale": "de"}, "sl"),
    ],
)
def test_resolve_shop_locale(shop_settings, expected):
    assert resolve_shop_locale(shop_settings) == expected


def test_every_terminal_error_has_both_translations():
    terminal_codes = [
        RedemptionErrorCode.INVALID_FORMAT,
        RedemptionErrorCode.NOT_FOUND,
        RedemptionErrorCode.ALREADY_USED,
        RedemptionErrorCode.EXPIRED,
        RedemptionErrorCode.COUPON_EXPIRED,
        RedemptionErrorCode.SHOP_MISMATCH,
        RedemptionErrorCode.INSUFFICIENT_POINTS,
        RedemptionErrorCode.COUPON_UNAVAILABLE,
        RedemptionErrorCode.SHOP_NOT_FOUND,
        RedemptionErrorCode.ALREADY_REVERSED,
        RedemptionErrorCode.REDEMPTION_ACTIVE,
    ]
    fallback_sl = get_localized_message(RedemptionErrorCode.INTERNAL_ERROR, "sl")
    fallback_en = get_localized_message(RedemptionErrorCode.INTERNAL_ERROR, "en")
    for code in terminal_codes:
        assert get_localized_message(code, "sl") != fallback_sl
        assert get_localized_message(code, "en") != fallback_en


def test_unknown_codes_fall_back_to_internal_error():
    assert get_localized_message("no_such_code", "en") == "Internal server error. Please contact support."


def test_localized_error_payload_shape():
    assert localized_error(RedemptionErrorCode.SHOP_MISMATCH, "en") == {
        "valid": False,
        "error_code": "shop_mismatch",
        "error_message": "This coupon cannot be used at this location.",
    }

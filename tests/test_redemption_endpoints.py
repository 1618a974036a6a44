from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from zvest_api.core.clock import utcnow
from zvest_api.core.settings import settings
from zvest_api.services.redemptions import CodeGenerator, RedemptionLedger


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _activate_with_code(session_factory, seed_data, code: int, *, now=None):
    async with session_factory() as session:
        ledger = RedemptionLedger(session, code_generator=CodeGenerator(randbelow=lambda _upper: code))
        return await ledger.activate(seed_data.app_user_id, seed_data.coupon_id, now=now)


@pytest.mark.asyncio
async def test_customer_activation_returns_code_and_balance(app_with_db, seed):
    app, session_factory = app_with_db
    seeded = await seed(session_factory)

    async with _client(app) as client:
        listing = await client.get(f"/api/v1/app/shops/{seeded.shop_id}/coupons")
        response = await client.post(
            f"/api/v1/app/coupons/{seeded.coupon_id}/activate",
            json={"email": seeded.email},
        )
        history = await client.get("/api/v1/app/redemptions", params={"email": seeded.email})

    assert listing.status_code == 200
    assert [item["id"] for item in listing.json()] == [str(seeded.coupon_id)]

    assert response.status_code == 201
    body = response.json()
    assert body["pointsBefore"] == 1000
    assert body["pointsAfter"] == 400
    assert len(body["redemptionCode"]) == 6
    assert body["displayCode"] == f"{body['redemptionCode'][:3]}-{body['redemptionCode'][3:]}"
    assert body["coupon"]["type"] == "percentage"
    assert body["coupon"]["articles"][0]["articleId"] == "COF-1"

    assert history.status_code == 200
    assert [item["status"] for item in history.json()] == ["active"]


@pytest.mark.asyncio
async def test_activation_with_insufficient_points_is_a_conflict(app_with_db, seed):
    app, session_factory = app_with_db
    seeded = await seed(session_factory, balance=100)

    async with _client(app) as client:
        response = await client.post(
            f"/api/v1/app/coupons/{seeded.coupon_id}/activate",
            json={"email": seeded.email},
        )

    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["error_code"] == "insufficient_points"
    assert body["details"] == {"required": 600, "current": 100, "deficit": 500}


@pytest.mark.asyncio
async def test_activation_requires_known_customer(app_with_db, seed):
    app, session_factory = app_with_db
    seeded = await seed(session_factory)

    async with _client(app) as client:
        unknown = await client.post(
            f"/api/v1/app/coupons/{seeded.coupon_id}/activate",
            json={"email": "nobody@example.si"},
        )
        anonymous = await client.post(f"/api/v1/app/coupons/{seeded.coupon_id}/activate", json={})

    assert unknown.status_code == 404
    assert unknown.json()["error_code"] == "customer_not_found"
    assert anonymous.status_code == 422
    assert anonymous.json()["error_code"] == "validation_error"


@pytest.mark.asyncio
async def test_pos_validation_consumes_code_and_localizes_rejections(app_with_db, seed):
    app, session_factory = app_with_db
    seeded = await seed(session_factory)
    activation = await _activate_with_code(session_factory, seeded, 394750)

    async with _client(app) as client:
        first = await client.post(
            "/api/v1/pos/coupons/validate",
            json={"shopId": str(seeded.shop_id), "code": "394-750"},
        )
        second = await client.post(
            "/api/v1/pos/coupons/validate",
            json={"shopId": str(seeded.shop_id), "code": "394750"},
        )
        malformed = await client.post(
            "/api/v1/pos/coupons/validate",
            json={"shopId": str(seeded.shop_id), "code": "39475"},
        )

    assert first.status_code == 200
    body = first.json()
    assert body["valid"] is True
    assert body["redemptionId"] == str(activation.redemption_id)
    assert body["couponName"] == "Brezplacna kava"
    assert body["pointsDeducted"] == 600
    assert body["articles"] == [{"articleId": "COF-1", "articleName": "Espresso", "discountValue": 100.0}]

    assert second.status_code == 200
    assert second.json() == {
        "valid": False,
        "error_code": "already_used",
        "error_message": "Kupon je že bil uporabljen.",
    }
    assert malformed.json()["error_code"] == "invalid_format"


@pytest.mark.asyncio
async def test_pos_rejections_follow_shop_locale(app_with_db, seed):
    app, session_factory = app_with_db
    seeded = await seed(session_factory, shop_settings={"locale": "en"})
    await _activate_with_code(session_factory, seeded, 121212, now=utcnow() - timedelta(minutes=6))

    async with _client(app) as client:
        expired = await client.post(
            "/api/v1/pos/coupons/validate",
            json={"shopId": str(seeded.shop_id), "code": "121212"},
        )
        missing = await client.post(
            "/api/v1/pos/coupons/validate",
            json={"shopId": str(seeded.shop_id), "code": "000001"},
        )

    assert expired.json() == {
        "valid": False,
        "error_code": "expired",
        "error_message": "Redemption window expired (valid for 5 minutes only).",
    }
    assert missing.json()["error_message"] == "Redemption code not found."


@pytest.mark.asyncio
async def test_pos_validation_at_other_shop_is_rejected(app_with_db, seed):
    app, session_factory = app_with_db
    home = await seed(session_factory, email="home@example.si")
    other = await seed(session_factory, email="other@example.si")
    await _activate_with_code(session_factory, home, 454545)

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/pos/coupons/validate",
            json={"shopId": str(other.shop_id), "code": "454545"},
        )

    assert response.status_code == 200
    assert response.json()["error_code"] == "shop_mismatch"


@pytest.mark.asyncio
async def test_pos_routes_require_api_key_when_configured(app_with_db, seed):
    app, session_factory = app_with_db
    seeded = await seed(session_factory)
    previous = settings.pos_api_key
    settings.pos_api_key = "till-secret"
    try:
        async with _client(app) as client:
            rejected = await client.get(f"/api/v1/pos/shops/{seeded.shop_id}/coupons")
            accepted = await client.get(
                f"/api/v1/pos/shops/{seeded.shop_id}/coupons",
                headers={"X-API-Key": "till-secret"},
            )
    finally:
        settings.pos_api_key = previous

    assert rejected.status_code == 401
    assert accepted.status_code == 200
    assert accepted.json()[0]["pointsRequired"] == 600


@pytest.mark.asyncio
async def test_transaction_scan_and_storno_flow(app_with_db, seed):
    app, session_factory = app_with_db
    seeded = await seed(session_factory)
    sale = {"shopId": str(seeded.shop_id), "posInvoiceId": "INV-9001", "totalAmount": 17.8}

    async with _client(app) as client:
        created = await client.post("/api/v1/pos/transactions", json=sale)
        duplicate = await client.post("/api/v1/pos/transactions", json=sale)
        scanned = await client.post(
            "/api/v1/app/transactions/scan",
            json={"qrCode": created.json()["qrCodeData"], "email": seeded.email},
        )
        storno = await client.post(
            "/api/v1/pos/transactions/storno",
            json={"shopId": str(seeded.shop_id), "posInvoiceId": "INV-9001", "reason": "void"},
        )
        repeated = await client.post(
            "/api/v1/pos/transactions/storno",
            json={"shopId": str(seeded.shop_id), "posInvoiceId": "INV-9001"},
        )

    assert created.status_code == 201
    assert created.json()["qrCodeData"].startswith("PLT_")
    assert created.json()["status"] == "pending"
    assert duplicate.status_code == 200
    assert duplicate.json()["error_code"] == "duplicate_invoice"

    assert scanned.status_code == 200
    assert scanned.json()["pointsEarned"] == 26
    assert scanned.json()["pointsBalance"] == 1026

    assert storno.status_code == 200
    assert storno.json()["pointsReversed"] == 26
    assert storno.json()["pointsBalance"] == 1000
    assert storno.json()["previousStatus"] == "completed"
    assert repeated.json()["error_code"] == "already_processed"


@pytest.mark.asyncio
async def test_reverse_endpoint_rejects_active_code_then_restores_once(app_with_db, seed):
    app, session_factory = app_with_db
    seeded = await seed(session_factory)
    activation = await _activate_with_code(session_factory, seeded, 828282)

    async with _client(app) as client:
        premature = await client.post(
            f"/api/v1/pos/redemptions/{activation.redemption_id}/reverse",
            json={"reason": "changed mind"},
        )
        consumed = await client.post(
            "/api/v1/pos/coupons/validate",
            json={"shopId": str(seeded.shop_id), "code": "828282"},
        )
        first = await client.post(
            f"/api/v1/pos/redemptions/{activation.redemption_id}/reverse",
            json={"reason": "customer complaint", "performedBy": "manager"},
        )
        second = await client.post(
            f"/api/v1/pos/redemptions/{activation.redemption_id}/reverse",
            json={"reason": "again"},
        )

    assert premature.status_code == 409
    assert premature.json()["error_code"] == "redemption_active"
    assert consumed.json()["valid"] is True

    assert first.status_code == 200
    assert first.json()["pointsRestored"] == 600
    assert first.json()["pointsBalance"] == 1000
    assert second.status_code == 409
    assert second.json()["error_code"] == "already_reversed"

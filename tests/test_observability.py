import pytest
from httpx import ASGITransport, AsyncClient

from zvest_api.observability.redemptions import RedemptionObservabilityStore, get_redemption_store


def test_store_snapshot_tracks_outcomes_and_collision_rate():
    store = RedemptionObservabilityStore()
    store.record_code_attempt(collided=True)
    store.record_code_attempt(collided=False)
    store.record_code_attempt(collided=False)
    store.record_code_attempt(collided=False)
    store.record_activation("success")
    store.record_activation("insufficient_points")
    store.record_validation("success")
    store.record_reversal()
    store.record_swept(3)

    snapshot = store.snapshot().as_dict()

    assert snapshot["codes"] == {"total_attempts": 4, "collisions": 1, "exhausted": 0, "collision_rate": 0.25}
    assert snapshot["activations"] == {"success": 1, "insufficient_points": 1}
    assert snapshot["validations"] == {"success": 1}
    assert snapshot["reversals"] == 1
    assert snapshot["swept"] == 3

    store.reset()
    assert store.code_snapshot().collision_rate == 0.0


@pytest.mark.asyncio
async def test_observability_endpoints_expose_counters(app_with_db):
    app, _ = app_with_db
    store = get_redemption_store()
    store.record_code_attempt(collided=False)
    store.record_activation("success")
    store.record_validation("already_used")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        snapshot = await client.get("/api/v1/observability/redemptions")
        metrics = await client.get("/api/v1/observability/prometheus")

    assert snapshot.status_code == 200
    assert snapshot.json()["activations"] == {"success": 1}

    assert metrics.status_code == 200
    assert metrics.headers["content-type"].startswith("text/plain")
    body = metrics.text
    assert "zvest_redemption_code_attempts_total 1" in body
    assert 'zvest_redemption_activations_total{outcome="success"} 1' in body
    assert 'zvest_redemption_validations_total{outcome="already_used"} 1' in body
    assert "zvest_redemption_swept_total 0" in body

from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from loyalty_helpers import configure_loyalty, create_user


async def _seed(session_factory):
    async with session_factory() as session:
        user = await create_user(session)
        await configure_loyalty(session)
        await session.commit()
    return user


@pytest.mark.asyncio
async def test_create_order_awards_pending_points(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await _seed(session_factory)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/orders/",
            json={"user_id": str(user.id), "subtotal": "64.90", "shipping_amount": "4.95"},
        )
        fetched = await client.get(f"/api/v1/orders/{response.json()['id']}")

    assert response.status_code == 201
    payload = response.json()
    assert payload["status"] == "pending"
    assert payload["total"] == pytest.approx(69.85)
    assert payload["loyalty"]["points_awarded"] == 64
    assert payload["loyalty"]["award_status"] == "pending"
    assert fetched.status_code == 200
    assert fetched.json()["loyalty"] is None


@pytest.mark.asyncio
async def test_status_update_activates_points(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await _seed(session_factory)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        created = await client.post("/api/v1/orders/", json={"user_id": str(user.id), "subtotal": 100})
        order_id = created.json()["id"]
        completed = await client.patch(f"/api/v1/orders/{order_id}/status", json={"status": "completed"})
        summary = await client.get("/api/v1/loyalty/points", params={"userId": str(user.id)})

    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"
    assert completed.json()["loyalty"]["points_activated"] == 100
    assert summary.json()["points"]["availablePoints"] == 100
    assert summary.json()["points"]["pendingPoints"] == 0


@pytest.mark.asyncio
async def test_status_update_validation(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await _seed(session_factory)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        created = await client.post("/api/v1/orders/", json={"user_id": str(user.id), "subtotal": 10})
        invalid = await client.patch(
            f"/api/v1/orders/{created.json()['id']}/status",
            json={"status": "teleported"},
        )
        missing = await client.patch(f"/api/v1/orders/{uuid4()}/status", json={"status": "shipped"})
        not_found = await client.get(f"/api/v1/orders/{uuid4()}")

    assert invalid.status_code == 400
    assert missing.status_code == 404
    assert not_found.status_code == 404


@pytest.mark.asyncio
async def test_failed_redemption_reported_without_failing_order(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await _seed(session_factory)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/orders/",
            json={"user_id": str(user.id), "subtotal": 50, "points_to_redeem": 1000},
        )
        points = await client.patch(
            f"/api/v1/orders/{response.json()['id']}/points",
            json={"points_to_redeem": 0},
        )

    assert response.status_code == 201
    payload = response.json()
    assert payload["points_to_redeem"] == 0
    assert payload["total"] == 50
    assert payload["loyalty"]["points_redeemed"] == 0
    assert payload["loyalty"]["errors"][0].startswith("redeem:")
    assert points.status_code == 200
    assert points.json()["points_to_redeem"] == 0


@pytest.mark.asyncio
async def test_order_payload_validation(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/v1/orders/", json={"subtotal": -1})

    assert response.status_code == 422

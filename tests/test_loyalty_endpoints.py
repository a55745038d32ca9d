from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from backoffice_api.services.loyalty import LoyaltyLedgerService

from loyalty_helpers import configure_loyalty, create_user


async def _seed_user(session_factory, *, points: int = 0):
    async with session_factory() as session:
        user = await create_user(session)
        await configure_loyalty(session)
        if points:
            await LoyaltyLedgerService(session).manual_adjustment(user.id, points, "Seed balance", "admin-1")
        await session.commit()
    return user


@pytest.mark.asyncio
async def test_points_summary_for_new_user(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await _seed_user(session_factory)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/loyalty/points", params={"userId": str(user.id)})

    assert response.status_code == 200
    payload = response.json()
    assert payload["points"]["availablePoints"] == 0
    assert payload["points"]["pendingPoints"] == 0
    assert payload["history"] == []
    assert payload["totalMoneySaved"] == 0


@pytest.mark.asyncio
async def test_award_activate_and_summary_flow(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await _seed_user(session_factory)
    order_id = str(uuid4())

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        award = await client.post(
            "/api/v1/loyalty/points",
            json={
                "action": "award_points",
                "userId": str(user.id),
                "orderId": order_id,
                "orderAmount": "100.00",
                "subtotal": "100.00",
                "orderStatus": "pending",
            },
        )
        activate = await client.post(
            "/api/v1/loyalty/points",
            json={
                "action": "activate_pending_points",
                "userId": str(user.id),
                "orderId": order_id,
                "previousStatus": "pending",
                "newStatus": "completed",
            },
        )
        summary = await client.get("/api/v1/loyalty/points", params={"userId": str(user.id)})

    assert award.status_code == 200
    assert award.json()["points"] == 100
    assert award.json()["status"] == "pending"
    assert activate.status_code == 200
    assert activate.json()["newAvailableBalance"] == 100

    payload = summary.json()
    assert payload["points"]["availablePoints"] == 100
    assert payload["points"]["pendingPoints"] == 0
    assert payload["points"]["totalPointsEarned"] == 100
    assert len(payload["history"]) == 1
    entry = payload["history"][0]
    assert entry["transactionType"] == "earned"
    assert entry["status"] == "available"
    assert entry["orderId"] == order_id
    assert payload["expiringSoon"] == []


@pytest.mark.asyncio
async def test_repeat_award_reports_already_applied(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await _seed_user(session_factory)
    body = {
        "action": "award_points",
        "userId": str(user.id),
        "orderId": str(uuid4()),
        "orderAmount": 30,
        "orderStatus": "completed",
    }

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        first = await client.post("/api/v1/loyalty/points", json=body)
        second = await client.post("/api/v1/loyalty/points", json=body)

    assert first.json()["applied"] is True
    assert second.json()["applied"] is False
    assert second.json()["alreadyApplied"] is True
    assert second.json()["historyId"] == first.json()["historyId"]


@pytest.mark.asyncio
async def test_action_requires_its_fields(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/loyalty/points",
            json={"action": "redeem_points", "userId": str(uuid4())},
        )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_redeem_errors_map_to_http_statuses(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await _seed_user(session_factory, points=150)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        too_small = await client.post(
            "/api/v1/loyalty/points",
            json={"action": "redeem_points", "userId": str(user.id), "points": 50},
        )
        too_many = await client.post(
            "/api/v1/loyalty/points",
            json={"action": "redeem_points", "userId": str(user.id), "points": 500},
        )
        redeemed = await client.post(
            "/api/v1/loyalty/points",
            json={"action": "redeem_points", "userId": str(user.id), "points": 120},
        )
        summary = await client.get("/api/v1/loyalty/points", params={"userId": str(user.id)})

    assert too_small.status_code == 400
    assert too_many.status_code == 409
    assert redeemed.status_code == 200
    assert redeemed.json()["discountAmount"] == 1.2
    assert redeemed.json()["newAvailableBalance"] == 30
    assert summary.json()["points"]["availablePoints"] == 30
    assert summary.json()["totalMoneySaved"] == 1.2


@pytest.mark.asyncio
async def test_manual_adjustment_and_reconcile(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await _seed_user(session_factory, points=25)
    debit_payload = {
        "action": "manual_adjustment",
        "userId": str(user.id),
        "points": -40,
        "reason": "Correction",
        "adminUserId": "admin-7",
    }

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        debit = await client.post("/api/v1/loyalty/points", json=debit_payload)
        empty_debit = await client.post("/api/v1/loyalty/points", json=debit_payload)
        reconcile = await client.post("/api/v1/loyalty/points/reconcile", params={"userId": str(user.id)})

    assert debit.status_code == 200
    assert debit.json()["status"] == "debit"
    assert debit.json()["points"] == 25
    assert debit.json()["newAvailableBalance"] == 0
    assert empty_debit.status_code == 400
    assert "debit" in empty_debit.json()["detail"]
    assert reconcile.status_code == 200
    assert reconcile.json()["corrected"] is False
    assert reconcile.json()["after"]["totalPointsRedeemed"] == 25


@pytest.mark.asyncio
async def test_delete_selected_and_all_history(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await _seed_user(session_factory)
    async with session_factory() as session:
        ledger = LoyaltyLedgerService(session)
        first = await ledger.award_points(user.id, uuid4(), Decimal("50"), Decimal("50"), "completed")
        await ledger.award_points(user.id, uuid4(), Decimal("20"), Decimal("20"), "completed")
        await session.commit()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        selected = await client.request(
            "DELETE",
            "/api/v1/loyalty/points/history/selected",
            json={"userId": str(user.id), "historyIds": [str(first.history_id)]},
        )
        after_selected = await client.get("/api/v1/loyalty/points", params={"userId": str(user.id)})
        missing = await client.request(
            "DELETE",
            "/api/v1/loyalty/points/history/selected",
            json={"userId": str(user.id), "historyIds": [str(uuid4())]},
        )
        wiped = await client.delete("/api/v1/loyalty/points/history", params={"userId": str(user.id)})
        after_wipe = await client.get("/api/v1/loyalty/points", params={"userId": str(user.id)})

    assert selected.status_code == 200
    assert selected.json() == {"deletedCount": 1}
    assert after_selected.json()["points"]["availablePoints"] == 20
    assert missing.status_code == 404
    assert wiped.json() == {"deletedCount": 1}
    assert after_wipe.json()["points"]["availablePoints"] == 0
    assert after_wipe.json()["history"] == []


@pytest.mark.asyncio
async def test_redemption_quote(app_with_db) -> None:
    app, session_factory = app_with_db
    await _seed_user(session_factory)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get(
            "/api/v1/loyalty/points/redemption-quote",
            params={"orderAmount": "80", "points": 250},
        )

    assert response.status_code == 200
    assert response.json() == {
        "enabled": True,
        "maxRedeemablePoints": 4000,
        "redemptionMinimum": 100,
        "discountAmount": 2.5,
    }


@pytest.mark.asyncio
async def test_expire_action_reports_counts(app_with_db) -> None:
    app, session_factory = app_with_db
    await _seed_user(session_factory)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/v1/loyalty/points", json={"action": "expire_points"})

    assert response.status_code == 200
    assert response.json()["rowsExpired"] == 0
    assert response.json()["applied"] is False

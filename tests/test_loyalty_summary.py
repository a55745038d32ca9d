from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from backoffice_api.services.loyalty import LoyaltyLedgerService, LoyaltySummaryService

from loyalty_helpers import configure_loyalty, create_user


@pytest.mark.asyncio
async def test_summary_for_user_without_account_is_zeroed(session_factory) -> None:
    async with session_factory() as session:
        summary = await LoyaltySummaryService(session).summarize(uuid4())

    assert summary.balance.available_points == 0
    assert summary.balance.pending_points == 0
    assert summary.history == []
    assert summary.expiring_soon_total == 0
    assert summary.total_money_saved == Decimal("0.00")


@pytest.mark.asyncio
async def test_summary_reports_expiring_points_and_money_saved(session_factory) -> None:
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        user = await create_user(session)
        await configure_loyalty(session, points_expiry_months=1)
        ledger = LoyaltyLedgerService(session)
        await ledger.award_points(
            user.id, uuid4(), Decimal("300"), Decimal("300"), "completed", now=now - timedelta(days=20)
        )
        await ledger.award_points(user.id, uuid4(), Decimal("80"), Decimal("80"), "pending", now=now)
        await ledger.redeem_points(user.id, None, 150, now=now + timedelta(seconds=1))
        await ledger.redeem_points(user.id, None, 100, Decimal("1.25"), now=now + timedelta(seconds=2))
        await session.commit()

        summary = await LoyaltySummaryService(session, expiring_soon_days=20).summarize(user.id, now=now)
        await session.commit()

        assert summary.balance.available_points == 50
        assert summary.balance.pending_points == 80
        assert summary.balance.total_points_redeemed == 250
        assert summary.expiring_soon_total == 300
        assert [entry.points for entry in summary.expiring_soon] == [300]
        assert summary.balance.points_expiring_soon == 300
        assert summary.total_money_saved == Decimal("2.75")
        assert [entry.points for entry in summary.history] == [100, 150, 80, 300]

        limited = await LoyaltySummaryService(session, history_limit=2).summarize(user.id, now=now)
        assert [entry.points for entry in limited.history] == [100, 150]

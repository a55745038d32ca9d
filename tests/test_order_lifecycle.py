from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from backoffice_api.models.loyalty import LoyaltyPointsHistory, UserLoyaltyPoints
from backoffice_api.models.order import Order, OrderStatusEnum
from backoffice_api.observability.loyalty import get_loyalty_store
from backoffice_api.services.loyalty import LoyaltyLedgerService
from backoffice_api.services.orders import (
    OrderDraft,
    OrderNotFoundError,
    OrderService,
    compute_order_total,
    generate_order_number,
)
from backoffice_api.services.settings import SettingsStore

from loyalty_helpers import configure_loyalty, create_user


async def _account(session, user_id):
    result = await session.execute(select(UserLoyaltyPoints).where(UserLoyaltyPoints.user_id == user_id))
    return result.scalar_one_or_none()


@pytest.mark.asyncio
async def test_order_placement_and_completion_flow(session_factory) -> None:
    async with session_factory() as session:
        user = await create_user(session)
        await configure_loyalty(session)
        await session.commit()

        service = OrderService(session)
        created = await service.create_order(
            OrderDraft(subtotal=Decimal("100"), user_id=user.id, tax_amount=Decimal("8.50"))
        )

        order = created.order
        assert order.total_amount == Decimal("108.50")
        assert order.order_number.startswith("ORD-")
        assert created.award.points_awarded == 100
        assert created.loyalty_errors == []
        account = await _account(session, user.id)
        assert (account.pending_points, account.available_points) == (100, 0)

        completed = await service.update_status(order.id, OrderStatusEnum.COMPLETED)

        assert completed.order.status is OrderStatusEnum.COMPLETED
        assert completed.activation.points_activated == 100
        await session.refresh(account)
        assert (account.pending_points, account.available_points) == (0, 100)

        unchanged = await service.update_status(order.id, OrderStatusEnum.COMPLETED)
        assert unchanged.activation is None


@pytest.mark.asyncio
async def test_guest_order_skips_loyalty(session_factory) -> None:
    async with session_factory() as session:
        await configure_loyalty(session)
        outcome = await OrderService(session).create_order(OrderDraft(subtotal=Decimal("50")))

        assert outcome.award is None
        history = await session.execute(select(LoyaltyPointsHistory))
        assert history.scalars().all() == []


@pytest.mark.asyncio
async def test_checkout_redemption_is_capped_and_discounts_total(session_factory) -> None:
    async with session_factory() as session:
        user = await create_user(session)
        await configure_loyalty(session)
        await LoyaltyLedgerService(session).manual_adjustment(user.id, 10000, "Welcome bonus", "admin-1")
        await session.commit()

        outcome = await OrderService(session).create_order(
            OrderDraft(subtotal=Decimal("40"), user_id=user.id, points_to_redeem=5000)
        )

        order = outcome.order
        assert outcome.redemption.points_redeemed == 2000
        assert order.points_to_redeem == 2000
        assert order.points_discount_amount == Decimal("20.00")
        assert order.total_amount == Decimal("20.00")
        assert outcome.award.points_awarded == 40
        account = await _account(session, user.id)
        assert account.available_points == 8000
        assert account.pending_points == 40


@pytest.mark.asyncio
async def test_failed_redemption_keeps_order_and_records_failure(session_factory) -> None:
    async with session_factory() as session:
        user = await create_user(session)
        await configure_loyalty(session)
        await session.commit()

        outcome = await OrderService(session).create_order(
            OrderDraft(subtotal=Decimal("60"), user_id=user.id, points_to_redeem=500)
        )

        order = await session.get(Order, outcome.order.id)
        assert order is not None
        assert order.points_to_redeem == 0
        assert order.total_amount == Decimal("60.00")
        assert outcome.redemption is None
        assert len(outcome.loyalty_errors) == 1
        assert outcome.loyalty_errors[0].startswith("redeem:")
        assert outcome.award.points_awarded == 60
        assert get_loyalty_store().snapshot().failures == {"redeem": 1}


@pytest.mark.asyncio
async def test_broken_loyalty_settings_do_not_block_orders(session_factory) -> None:
    async with session_factory() as session:
        user = await create_user(session)
        store = SettingsStore(session)
        await store.set_setting("loyalty_enabled", "true")
        await store.set_setting("points_max_redemption_percent", "250", type="number")
        await session.commit()

        outcome = await OrderService(session).create_order(OrderDraft(subtotal=Decimal("35"), user_id=user.id))

        assert outcome.award is None
        assert outcome.loyalty_errors and outcome.loyalty_errors[0].startswith("award:")
        persisted = await session.execute(select(Order).where(Order.id == outcome.order.id))
        assert persisted.scalar_one().subtotal == Decimal("35.00")
        assert await _account(session, user.id) is None


@pytest.mark.asyncio
async def test_points_redemption_edits_redeem_and_refund(session_factory) -> None:
    async with session_factory() as session:
        user = await create_user(session)
        await configure_loyalty(session)
        await LoyaltyLedgerService(session).manual_adjustment(user.id, 3000, "Seed", "admin-1")
        await session.commit()

        service = OrderService(session)
        created = await service.create_order(
            OrderDraft(subtotal=Decimal("100"), user_id=user.id, points_to_redeem=1000)
        )
        order_id = created.order.id

        more = await service.update_points_redemption(order_id, 1500)
        assert more.redemption.points_redeemed == 500
        assert more.order.points_to_redeem == 1500
        assert more.order.points_discount_amount == Decimal("15.00")
        assert more.order.total_amount == Decimal("85.00")

        fewer = await service.update_points_redemption(order_id, 200)
        assert fewer.refund.points == 1300
        assert fewer.order.points_to_redeem == 200
        assert fewer.order.points_discount_amount == Decimal("2.00")
        assert fewer.order.total_amount == Decimal("98.00")

        account = await _account(session, user.id)
        await session.refresh(account)
        assert account.available_points == 2800
        assert account.total_points_redeemed == 200


@pytest.mark.asyncio
async def test_missing_order_raises(session_factory) -> None:
    async with session_factory() as session:
        with pytest.raises(OrderNotFoundError):
            await OrderService(session).update_status(uuid4(), OrderStatusEnum.SHIPPED)


def test_order_total_and_number_helpers() -> None:
    assert compute_order_total("10", "1.005", "2", "0", "20") == Decimal("0.00")
    assert compute_order_total(Decimal("99.99"), Decimal("5"), Decimal("4.99"), Decimal("10")) == Decimal("99.98")
    number = generate_order_number()
    assert number.startswith("ORD-") and len(number) == len("ORD-20260101-ABCDEF12")

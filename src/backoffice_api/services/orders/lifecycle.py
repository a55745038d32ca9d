"""Order creation and status changes, with the loyalty ledger hooked in."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Awaitable, Callable, TypeVar
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_api.models.order import Order, OrderStatusEnum
from backoffice_api.observability.loyalty import get_loyalty_store
from backoffice_api.services.loyalty import (
    ActivationResult,
    AdjustmentResult,
    AwardResult,
    LoyaltyError,
    LoyaltyLedgerService,
    RedemptionResult,
)
from backoffice_api.services.settings import SettingsError

T = TypeVar("T")
_CENT = Decimal("0.01")


class OrderStateError(RuntimeError):
    """Base exception for order lifecycle failures."""


class OrderNotFoundError(OrderStateError):
    """Raised when attempting to mutate a missing order."""


@dataclass
class OrderDraft:
    subtotal: Decimal
    user_id: UUID | None = None
    status: OrderStatusEnum = OrderStatusEnum.PENDING
    tax_amount: Decimal = Decimal("0")
    shipping_amount: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    points_to_redeem: int = 0
    points_discount_amount: Decimal | None = None
    order_number: str | None = None
    notes: str | None = None


@dataclass
class OrderOutcome:
    """Order plus whatever the loyalty hook did with it."""

    order: Order
    award: AwardResult | None = None
    activation: ActivationResult | None = None
    redemption: RedemptionResult | None = None
    refund: AdjustmentResult | None = None
    loyalty_errors: list[str] = field(default_factory=list)


def compute_order_total(
    subtotal: Any,
    tax_amount: Any = 0,
    shipping_amount: Any = 0,
    discount_amount: Any = 0,
    points_discount_amount: Any = 0,
) -> Decimal:
    """Subtotal less discounts plus tax and shipping, never below zero."""

    total = (
        Decimal(str(subtotal or 0))
        - Decimal(str(discount_amount or 0))
        - Decimal(str(points_discount_amount or 0))
        + Decimal(str(tax_amount or 0))
        + Decimal(str(shipping_amount or 0))
    )
    return max(total, Decimal("0")).quantize(_CENT, rounding=ROUND_HALF_UP)


def generate_order_number(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return f"ORD-{moment:%Y%m%d}-{uuid4().hex[:8].upper()}"


class OrderService:
    """Persists orders and forwards amounts and status changes to the ledger.

    Loyalty work runs inside a savepoint. When it fails the savepoint is
    rolled back, the failure is logged, and the order write still commits.
    """

    def __init__(self, session: AsyncSession, *, ledger: LoyaltyLedgerService | None = None) -> None:
        self._session = session
        self._ledger = ledger or LoyaltyLedgerService(session)

    async def get_order(self, order_id: UUID) -> Order:
        stmt = select(Order).where(Order.id == order_id)
        result = await self._session.execute(stmt)
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    async def _run_loyalty_step(
        self,
        step: str,
        order: Order,
        outcome: OrderOutcome,
        action: Callable[[], Awaitable[T]],
    ) -> T | None:
        try:
            async with self._session.begin_nested():
                return await action()
        except (LoyaltyError, SettingsError) as exc:
            error = str(exc)
            logger.warning(
                "Loyalty step rejected; order unaffected",
                step=step,
                order_id=str(order.id),
                error=error,
            )
        except SQLAlchemyError as exc:
            error = str(exc)
            logger.exception(
                "Loyalty step failed; order unaffected",
                step=step,
                order_id=str(order.id),
                error=error,
            )
        get_loyalty_store().record_failure(step)
        outcome.loyalty_errors.append(f"{step}: {error}")
        return None

    def _apply_total(self, order: Order) -> None:
        order.total_amount = compute_order_total(
            order.subtotal,
            order.tax_amount,
            order.shipping_amount,
            order.discount_amount,
            order.points_discount_amount,
        )

    async def create_order(self, draft: OrderDraft) -> OrderOutcome:
        """Persist a new order, redeem requested points, then award earned points."""

        order = Order(
            order_number=draft.order_number or generate_order_number(),
            user_id=draft.user_id,
            status=draft.status,
            subtotal=Decimal(str(draft.subtotal)),
            tax_amount=Decimal(str(draft.tax_amount)),
            shipping_amount=Decimal(str(draft.shipping_amount)),
            discount_amount=Decimal(str(draft.discount_amount)),
            points_to_redeem=0,
            points_discount_amount=Decimal("0"),
            notes=draft.notes,
        )
        self._apply_total(order)
        self._session.add(order)
        await self._session.flush()

        outcome = OrderOutcome(order=order)

        if order.user_id and draft.points_to_redeem > 0:
            outcome.redemption = await self._run_loyalty_step(
                "redeem",
                order,
                outcome,
                lambda: self._redeem_for_order(order, draft.points_to_redeem, draft.points_discount_amount),
            )
            if outcome.redemption is not None:
                order.points_to_redeem = outcome.redemption.points_redeemed
                order.points_discount_amount = outcome.redemption.discount_amount
                self._apply_total(order)
                await self._session.flush()

        if order.user_id:
            outcome.award = await self._run_loyalty_step(
                "award",
                order,
                outcome,
                lambda: self._ledger.award_points(
                    order.user_id,
                    order.id,
                    order.total_amount,
                    order.subtotal,
                    order.status,
                ),
            )

        await self._session.commit()
        await self._session.refresh(order)
        logger.info(
            "Order created",
            order_id=str(order.id),
            order_number=order.order_number,
            total_amount=str(order.total_amount),
            points_awarded=outcome.award.points_awarded if outcome.award else 0,
            points_redeemed=order.points_to_redeem,
        )
        return outcome

    async def _redeem_for_order(
        self,
        order: Order,
        points: int,
        discount_amount: Decimal | None,
    ) -> RedemptionResult:
        config = await self._ledger.load_settings()
        cap = await self._ledger.max_redeemable_points(order.subtotal, config=config)
        if points > cap:
            logger.info(
                "Capping points redemption to order maximum",
                order_id=str(order.id),
                requested=points,
                cap=cap,
            )
            points = cap
            discount_amount = None
        return await self._ledger.redeem_points(
            order.user_id,
            order.id,
            points,
            discount_amount,
            f"Redeemed at checkout for order #{order.order_number}",
        )

    async def update_status(self, order_id: UUID, new_status: OrderStatusEnum) -> OrderOutcome:
        """Change the order status and activate pending points on completion."""

        order = await self.get_order(order_id)
        previous_status = order.status
        outcome = OrderOutcome(order=order)
        if previous_status == new_status:
            return outcome

        order.status = new_status
        await self._session.flush()

        if order.user_id:
            outcome.activation = await self._run_loyalty_step(
                "activate",
                order,
                outcome,
                lambda: self._ledger.activate_pending_points(
                    order.user_id,
                    order.id,
                    previous_status,
                    new_status,
                ),
            )

        await self._session.commit()
        await self._session.refresh(order)
        logger.info(
            "Order status updated",
            order_id=str(order.id),
            from_status=previous_status.value,
            to_status=new_status.value,
            points_activated=outcome.activation.points_activated if outcome.activation else 0,
        )
        return outcome

    async def update_points_redemption(
        self,
        order_id: UUID,
        points_to_redeem: int,
        points_discount_amount: Decimal | None = None,
    ) -> OrderOutcome:
        """Redeem additional points or refund released ones when an order is edited."""

        order = await self.get_order(order_id)
        outcome = OrderOutcome(order=order)
        current = int(order.points_to_redeem or 0)
        difference = int(points_to_redeem) - current
        if difference == 0 or not order.user_id:
            return outcome

        if difference > 0:
            extra_discount = None
            if points_discount_amount is not None:
                extra_discount = Decimal(str(points_discount_amount)) - Decimal(str(order.points_discount_amount or 0))
            outcome.redemption = await self._run_loyalty_step(
                "redeem",
                order,
                outcome,
                lambda: self._ledger.redeem_points(
                    order.user_id,
                    order.id,
                    difference,
                    extra_discount,
                    f"Additional redemption for order #{order.order_number}",
                ),
            )
            if outcome.redemption is not None:
                order.points_to_redeem = current + outcome.redemption.points_redeemed
                order.points_discount_amount = (
                    Decimal(str(order.points_discount_amount or 0)) + outcome.redemption.discount_amount
                )
        else:
            outcome.refund = await self._run_loyalty_step(
                "refund",
                order,
                outcome,
                lambda: self._ledger.refund_points(
                    order.user_id,
                    abs(difference),
                    f"Points refund for order #{order.order_number} adjustment",
                    order.id,
                ),
            )
            if outcome.refund is not None:
                config = await self._ledger.load_settings()
                order.points_to_redeem = int(points_to_redeem)
                order.points_discount_amount = (
                    Decimal(str(points_discount_amount))
                    if points_discount_amount is not None
                    else await self._ledger.points_discount_for(order.points_to_redeem, config=config)
                )

        self._apply_total(order)
        await self._session.commit()
        await self._session.refresh(order)
        logger.info(
            "Order points redemption updated",
            order_id=str(order.id),
            points_to_redeem=order.points_to_redeem,
            points_discount_amount=str(order.points_discount_amount),
        )
        return outcome


__all__ = [
    "OrderDraft",
    "OrderNotFoundError",
    "OrderOutcome",
    "OrderService",
    "OrderStateError",
    "compute_order_total",
    "generate_order_number",
]

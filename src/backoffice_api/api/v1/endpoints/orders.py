"""Order management API endpoints."""

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_api.api.dependencies.security import require_admin_api_key
from backoffice_api.db.session import get_session
from backoffice_api.models.order import Order, OrderStatusEnum
from backoffice_api.services.orders import (
    OrderDraft,
    OrderNotFoundError,
    OrderOutcome,
    OrderService,
)


router = APIRouter(prefix="/orders", tags=["orders"])


class OrderCreate(BaseModel):
    """Request model for creating orders."""
    user_id: Optional[UUID] = Field(None, description="User ID (optional for guest checkout)")
    subtotal: Decimal = Field(..., ge=0, description="Order subtotal before discounts")
    tax_amount: Decimal = Field(Decimal("0"), ge=0)
    shipping_amount: Decimal = Field(Decimal("0"), ge=0)
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    status: OrderStatusEnum = Field(OrderStatusEnum.PENDING, description="Initial order status")
    points_to_redeem: int = Field(0, ge=0, description="Loyalty points to redeem at checkout")
    points_discount_amount: Optional[Decimal] = Field(
        None,
        ge=0,
        description="Discount the redeemed points are worth; derived from settings when omitted",
    )
    order_number: Optional[str] = None
    notes: Optional[str] = Field(None, description="Order notes")


class OrderStatusUpdate(BaseModel):
    """Request model for updating order status."""
    status: str = Field(..., description="New order status")


class OrderPointsUpdate(BaseModel):
    points_to_redeem: int = Field(..., ge=0)
    points_discount_amount: Optional[Decimal] = Field(None, ge=0)


class OrderLoyaltyResponse(BaseModel):
    """What the loyalty ledger did while the order was written."""
    points_awarded: int = 0
    award_status: Optional[str] = None
    award_skipped_reason: Optional[str] = None
    points_activated: int = 0
    points_redeemed: int = 0
    points_refunded: int = 0
    errors: List[str] = Field(default_factory=list)


class OrderResponse(BaseModel):
    """Response model for orders."""
    id: str
    order_number: str
    user_id: Optional[str]
    status: str
    subtotal: float
    tax_amount: float
    shipping_amount: float
    discount_amount: float
    points_to_redeem: int
    points_discount_amount: float
    total: float
    notes: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]
    loyalty: Optional[OrderLoyaltyResponse] = None


def _serialize_order(order: Order, outcome: OrderOutcome | None = None) -> OrderResponse:
    loyalty = None
    if outcome is not None:
        award = outcome.award
        loyalty = OrderLoyaltyResponse(
            points_awarded=award.points_awarded if award else 0,
            award_status=award.status.value if award and award.status else None,
            award_skipped_reason=award.skipped_reason if award else None,
            points_activated=outcome.activation.points_activated if outcome.activation else 0,
            points_redeemed=outcome.redemption.points_redeemed if outcome.redemption else 0,
            points_refunded=outcome.refund.points if outcome.refund else 0,
            errors=list(outcome.loyalty_errors),
        )

    return OrderResponse(
        id=str(order.id),
        order_number=order.order_number,
        user_id=str(order.user_id) if order.user_id else None,
        status=order.status.value,
        subtotal=float(order.subtotal or 0),
        tax_amount=float(order.tax_amount or 0),
        shipping_amount=float(order.shipping_amount or 0),
        discount_amount=float(order.discount_amount or 0),
        points_to_redeem=int(order.points_to_redeem or 0),
        points_discount_amount=float(order.points_discount_amount or 0),
        total=float(order.total_amount or 0),
        notes=order.notes,
        created_at=order.created_at.isoformat() if order.created_at else None,
        updated_at=order.updated_at.isoformat() if order.updated_at else None,
        loyalty=loyalty,
    )


@router.post(
    "/",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_api_key)],
)
async def create_order(
    order_data: OrderCreate,
    db: AsyncSession = Depends(get_session),
) -> OrderResponse:
    """Create an order and run the loyalty hook for it."""

    draft = OrderDraft(
        subtotal=order_data.subtotal,
        user_id=order_data.user_id,
        status=order_data.status,
        tax_amount=order_data.tax_amount,
        shipping_amount=order_data.shipping_amount,
        discount_amount=order_data.discount_amount,
        points_to_redeem=order_data.points_to_redeem,
        points_discount_amount=order_data.points_discount_amount,
        order_number=order_data.order_number,
        notes=order_data.notes,
    )
    outcome = await OrderService(db).create_order(draft)
    return _serialize_order(outcome.order, outcome)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> OrderResponse:
    try:
        order = await OrderService(db).get_order(order_id)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found") from exc
    return _serialize_order(order)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def update_order_status(
    order_id: UUID,
    status_update: OrderStatusUpdate,
    db: AsyncSession = Depends(get_session),
) -> OrderResponse:
    """Change an order status; completing an order activates its pending points."""

    try:
        new_status = OrderStatusEnum(status_update.status)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid status: {status_update.status}",
        ) from exc

    try:
        outcome = await OrderService(db).update_status(order_id, new_status)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found") from exc
    return _serialize_order(outcome.order, outcome)


@router.patch(
    "/{order_id}/points",
    response_model=OrderResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def update_order_points(
    order_id: UUID,
    payload: OrderPointsUpdate,
    db: AsyncSession = Depends(get_session),
) -> OrderResponse:
    """Redeem more points against an order or refund points released from it."""

    try:
        outcome = await OrderService(db).update_points_redemption(
            order_id,
            payload.points_to_redeem,
            payload.points_discount_amount,
        )
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found") from exc
    return _serialize_order(outcome.order, outcome)

"""API endpoints for the loyalty points ledger."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Literal, NoReturn, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_api.api.dependencies.security import require_admin_api_key
from backoffice_api.db.session import get_session
from backoffice_api.models.loyalty import LoyaltyPointsHistory
from backoffice_api.services.loyalty import (
    AccountTotals,
    HistoryNotFoundError,
    InsufficientPointsError,
    LoyaltyError,
    LoyaltyLedgerService,
    LoyaltySummaryService,
    calculate_max_redeemable_points,
    calculate_points_discount,
)


router = APIRouter(prefix="/loyalty", tags=["loyalty"])

LedgerAction = Literal[
    "award_points",
    "activate_pending_points",
    "redeem_points",
    "manual_adjustment",
    "expire_points",
]

_REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "award_points": ("userId", "orderId", "orderAmount"),
    "activate_pending_points": ("userId", "orderId", "newStatus"),
    "redeem_points": ("userId", "points"),
    "manual_adjustment": ("userId", "points", "adminUserId"),
    "expire_points": (),
}


class LoyaltyHistoryResponse(BaseModel):
    id: UUID
    orderId: Optional[UUID]
    transactionType: str
    status: str
    points: int
    pointsBalance: int
    description: Optional[str]
    orderAmount: Optional[float]
    discountAmount: Optional[float]
    expiresAt: Optional[datetime]
    isExpired: bool
    processedBy: Optional[str]
    metadata: dict[str, Any]
    createdAt: Optional[datetime]


class LoyaltyBalanceResponse(BaseModel):
    totalPointsEarned: int
    totalPointsRedeemed: int
    availablePoints: int
    pendingPoints: int
    pointsExpiringSoon: int
    lastEarnedAt: Optional[datetime]
    lastRedeemedAt: Optional[datetime]


class LoyaltySummaryResponse(BaseModel):
    userId: UUID
    points: LoyaltyBalanceResponse
    totalMoneySaved: float
    history: List[LoyaltyHistoryResponse]
    expiringSoon: List[LoyaltyHistoryResponse]
    expiringSoonTotal: int


class LedgerActionRequest(BaseModel):
    action: LedgerAction
    userId: Optional[UUID] = None
    orderId: Optional[UUID] = None
    orderAmount: Optional[Decimal] = Field(None, ge=0)
    subtotal: Optional[Decimal] = Field(None, ge=0)
    orderStatus: Optional[str] = Field(None, description="Status of the order when points are awarded")
    previousStatus: Optional[str] = None
    newStatus: Optional[str] = None
    points: Optional[int] = Field(None, description="Points to redeem or signed manual adjustment")
    discountAmount: Optional[Decimal] = Field(None, ge=0)
    description: Optional[str] = None
    reason: Optional[str] = None
    adminUserId: Optional[str] = None

    @model_validator(mode="after")
    def validate_action_fields(self) -> "LedgerActionRequest":
        missing = [name for name in _REQUIRED_FIELDS[self.action] if getattr(self, name) in (None, "")]
        if missing:
            raise ValueError(f"{self.action} requires: {', '.join(missing)}")
        return self


class LedgerActionResponse(BaseModel):
    action: LedgerAction
    applied: bool
    skippedReason: Optional[str] = None
    alreadyApplied: bool = False
    points: int = 0
    status: Optional[str] = None
    historyId: Optional[UUID] = None
    newAvailableBalance: Optional[int] = None
    discountAmount: Optional[float] = None
    rowsExpired: Optional[int] = None
    usersAffected: Optional[int] = None


class DeleteSelectedRequest(BaseModel):
    userId: UUID
    historyIds: List[UUID] = Field(..., min_length=1)


class DeletionResponse(BaseModel):
    deletedCount: int


class AccountTotalsResponse(BaseModel):
    totalPointsEarned: int
    totalPointsRedeemed: int
    availablePoints: int
    pendingPoints: int


class ReconciliationResponse(BaseModel):
    userId: UUID
    corrected: bool
    before: AccountTotalsResponse
    after: AccountTotalsResponse


class RedemptionQuoteResponse(BaseModel):
    enabled: bool
    maxRedeemablePoints: int
    redemptionMinimum: int
    discountAmount: Optional[float] = None


def _raise_ledger_error(exc: LoyaltyError) -> NoReturn:
    if isinstance(exc, HistoryNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, InsufficientPointsError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _serialize_history(entry: LoyaltyPointsHistory) -> LoyaltyHistoryResponse:
    return LoyaltyHistoryResponse(
        id=entry.id,
        orderId=entry.order_id,
        transactionType=getattr(entry.transaction_type, "value", entry.transaction_type),
        status=getattr(entry.status, "value", entry.status),
        points=int(entry.points or 0),
        pointsBalance=int(entry.points_balance or 0),
        description=entry.description,
        orderAmount=float(entry.order_amount) if entry.order_amount is not None else None,
        discountAmount=float(entry.discount_amount) if entry.discount_amount is not None else None,
        expiresAt=entry.expires_at,
        isExpired=bool(entry.is_expired),
        processedBy=entry.processed_by,
        metadata=dict(entry.metadata_json or {}),
        createdAt=entry.created_at,
    )


def _serialize_totals(totals: AccountTotals) -> AccountTotalsResponse:
    return AccountTotalsResponse(
        totalPointsEarned=totals.total_points_earned,
        totalPointsRedeemed=totals.total_points_redeemed,
        availablePoints=totals.available_points,
        pendingPoints=totals.pending_points,
    )


@router.get("/points", response_model=LoyaltySummaryResponse)
async def get_loyalty_points(
    user_id: UUID = Query(..., alias="userId"),
    db: AsyncSession = Depends(get_session),
) -> LoyaltySummaryResponse:
    """Balances, the latest history rows and points expiring soon for a user."""

    summary = await LoyaltySummaryService(db).summarize(user_id)
    await db.commit()

    balance = summary.balance
    return LoyaltySummaryResponse(
        userId=summary.user_id,
        points=LoyaltyBalanceResponse(
            totalPointsEarned=balance.total_points_earned,
            totalPointsRedeemed=balance.total_points_redeemed,
            availablePoints=balance.available_points,
            pendingPoints=balance.pending_points,
            pointsExpiringSoon=balance.points_expiring_soon,
            lastEarnedAt=balance.last_earned_at,
            lastRedeemedAt=balance.last_redeemed_at,
        ),
        totalMoneySaved=float(summary.total_money_saved),
        history=[_serialize_history(entry) for entry in summary.history],
        expiringSoon=[_serialize_history(entry) for entry in summary.expiring_soon],
        expiringSoonTotal=summary.expiring_soon_total,
    )


@router.post(
    "/points",
    response_model=LedgerActionResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def apply_ledger_action(
    payload: LedgerActionRequest,
    db: AsyncSession = Depends(get_session),
) -> LedgerActionResponse:
    ledger = LoyaltyLedgerService(db)
    try:
        response = await _dispatch_action(ledger, payload)
    except LoyaltyError as exc:
        await db.rollback()
        _raise_ledger_error(exc)
    await db.commit()
    return response


async def _dispatch_action(ledger: LoyaltyLedgerService, payload: LedgerActionRequest) -> LedgerActionResponse:
    if payload.action == "award_points":
        award = await ledger.award_points(
            payload.userId,
            payload.orderId,
            payload.orderAmount,
            payload.subtotal,
            payload.orderStatus or "pending",
        )
        return LedgerActionResponse(
            action=payload.action,
            applied=award.applied,
            skippedReason=award.skipped_reason,
            alreadyApplied=award.already_applied,
            points=award.points_awarded,
            status=award.status.value if award.status else None,
            historyId=award.history_id,
        )

    if payload.action == "activate_pending_points":
        activation = await ledger.activate_pending_points(
            payload.userId,
            payload.orderId,
            payload.previousStatus,
            payload.newStatus,
        )
        return LedgerActionResponse(
            action=payload.action,
            applied=activation.points_activated > 0,
            skippedReason=activation.skipped_reason,
            points=activation.points_activated,
            newAvailableBalance=activation.new_available_balance,
        )

    if payload.action == "redeem_points":
        redemption = await ledger.redeem_points(
            payload.userId,
            payload.orderId,
            payload.points,
            payload.discountAmount,
            payload.description,
        )
        return LedgerActionResponse(
            action=payload.action,
            applied=True,
            points=redemption.points_redeemed,
            historyId=redemption.history_id,
            newAvailableBalance=redemption.new_available_balance,
            discountAmount=float(redemption.discount_amount),
        )

    if payload.action == "manual_adjustment":
        adjustment = await ledger.manual_adjustment(
            payload.userId,
            payload.points,
            payload.reason or payload.description or "",
            payload.adminUserId,
        )
        return LedgerActionResponse(
            action=payload.action,
            applied=True,
            points=adjustment.points,
            status=adjustment.direction.value,
            historyId=adjustment.history_id,
            newAvailableBalance=adjustment.new_available_balance,
        )

    expiration = await ledger.expire_points()
    return LedgerActionResponse(
        action=payload.action,
        applied=expiration.rows_expired > 0,
        points=expiration.points_expired,
        rowsExpired=expiration.rows_expired,
        usersAffected=len(expiration.users_affected),
    )


@router.get("/points/redemption-quote", response_model=RedemptionQuoteResponse)
async def get_redemption_quote(
    order_amount: Decimal = Query(..., alias="orderAmount", ge=0),
    points: Optional[int] = Query(None, ge=0),
    db: AsyncSession = Depends(get_session),
) -> RedemptionQuoteResponse:
    """How many points an order of this size may redeem, and what they are worth."""

    config = await LoyaltyLedgerService(db).load_settings()
    return RedemptionQuoteResponse(
        enabled=config.enabled,
        maxRedeemablePoints=calculate_max_redeemable_points(order_amount, config),
        redemptionMinimum=config.redemption_minimum,
        discountAmount=float(calculate_points_discount(points, config)) if points is not None else None,
    )


@router.delete(
    "/points/history",
    response_model=DeletionResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def delete_all_history(
    user_id: UUID = Query(..., alias="userId"),
    db: AsyncSession = Depends(get_session),
) -> DeletionResponse:
    deleted = await LoyaltyLedgerService(db).delete_all_history(user_id)
    await db.commit()
    return DeletionResponse(deletedCount=deleted)


@router.delete(
    "/points/history/selected",
    response_model=DeletionResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def delete_selected_history(
    payload: DeleteSelectedRequest,
    db: AsyncSession = Depends(get_session),
) -> DeletionResponse:
    try:
        result = await LoyaltyLedgerService(db).delete_selected_history(payload.userId, payload.historyIds)
    except LoyaltyError as exc:
        await db.rollback()
        _raise_ledger_error(exc)
    await db.commit()
    return DeletionResponse(deletedCount=result.deleted_count)


@router.post(
    "/points/reconcile",
    response_model=ReconciliationResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def reconcile_points(
    user_id: UUID = Query(..., alias="userId"),
    db: AsyncSession = Depends(get_session),
) -> ReconciliationResponse:
    result = await LoyaltyLedgerService(db).reconcile(user_id)
    await db.commit()
    return ReconciliationResponse(
        userId=result.user_id,
        corrected=result.corrected,
        before=_serialize_totals(result.before),
        after=_serialize_totals(result.after),
    )

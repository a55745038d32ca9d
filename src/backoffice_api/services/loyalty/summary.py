"""Read model for a user's loyalty balances and recent activity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_api.core.settings import settings
from backoffice_api.models.loyalty import (
    LoyaltyPointsHistory,
    LoyaltyTransactionType,
    UserLoyaltyPoints,
)


@dataclass
class LoyaltyBalance:
    total_points_earned: int = 0
    total_points_redeemed: int = 0
    available_points: int = 0
    pending_points: int = 0
    points_expiring_soon: int = 0
    last_earned_at: datetime | None = None
    last_redeemed_at: datetime | None = None


@dataclass
class LoyaltySummary:
    """Balances, recent history and expiry outlook for one user."""

    user_id: UUID
    balance: LoyaltyBalance
    history: list[LoyaltyPointsHistory]
    expiring_soon: list[LoyaltyPointsHistory]
    expiring_soon_total: int
    total_money_saved: Decimal


class LoyaltySummaryService:
    def __init__(
        self,
        db_session: AsyncSession,
        *,
        expiring_soon_days: int | None = None,
        history_limit: int | None = None,
    ) -> None:
        self._db = db_session
        self._expiring_window = timedelta(days=expiring_soon_days or settings.loyalty_expiring_soon_days)
        self._history_limit = history_limit or settings.loyalty_history_page_size

    async def summarize(self, user_id: UUID, *, now: datetime | None = None) -> LoyaltySummary:
        """Build the summary and refresh the cached `points_expiring_soon` counter."""

        now = now or datetime.now(timezone.utc)

        account_result = await self._db.execute(
            select(UserLoyaltyPoints).where(UserLoyaltyPoints.user_id == user_id)
        )
        account = account_result.scalar_one_or_none()

        history_stmt = (
            select(LoyaltyPointsHistory)
            .where(LoyaltyPointsHistory.user_id == user_id)
            .order_by(LoyaltyPointsHistory.created_at.desc())
            .limit(self._history_limit)
        )
        history = list((await self._db.execute(history_stmt)).scalars().all())

        expiring_stmt = (
            select(LoyaltyPointsHistory)
            .where(
                LoyaltyPointsHistory.user_id == user_id,
                LoyaltyPointsHistory.transaction_type == LoyaltyTransactionType.EARNED,
                LoyaltyPointsHistory.is_expired.is_(False),
                LoyaltyPointsHistory.expires_at >= now,
                LoyaltyPointsHistory.expires_at <= now + self._expiring_window,
            )
            .order_by(LoyaltyPointsHistory.expires_at.asc())
        )
        expiring = list((await self._db.execute(expiring_stmt)).scalars().all())
        expiring_total = sum(int(entry.points or 0) for entry in expiring)

        saved_stmt = select(func.coalesce(func.sum(LoyaltyPointsHistory.discount_amount), 0)).where(
            LoyaltyPointsHistory.user_id == user_id,
            LoyaltyPointsHistory.transaction_type == LoyaltyTransactionType.REDEEMED,
            LoyaltyPointsHistory.discount_amount > 0,
        )
        total_saved = Decimal(str((await self._db.execute(saved_stmt)).scalar_one() or 0))

        if account is not None and int(account.points_expiring_soon or 0) != expiring_total:
            account.points_expiring_soon = expiring_total
            await self._db.flush()
            logger.debug(
                "Refreshed points expiring soon",
                user_id=str(user_id),
                points_expiring_soon=expiring_total,
            )

        if account is None:
            balance = LoyaltyBalance(points_expiring_soon=expiring_total)
        else:
            balance = LoyaltyBalance(
                total_points_earned=int(account.total_points_earned or 0),
                total_points_redeemed=int(account.total_points_redeemed or 0),
                available_points=int(account.available_points or 0),
                pending_points=int(account.pending_points or 0),
                points_expiring_soon=expiring_total,
                last_earned_at=account.last_earned_at,
                last_redeemed_at=account.last_redeemed_at,
            )

        return LoyaltySummary(
            user_id=user_id,
            balance=balance,
            history=history,
            expiring_soon=expiring,
            expiring_soon_total=expiring_total,
            total_money_saved=total_saved.quantize(Decimal("0.01")),
        )


__all__ = ["LoyaltyBalance", "LoyaltySummary", "LoyaltySummaryService"]

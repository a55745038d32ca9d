"""Loyalty points ledger: earning, activation, redemption, expiry and deletion."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_api.models.loyalty import (
    AdjustmentDirection,
    LoyaltyPointsHistory,
    LoyaltyPointsStatus,
    LoyaltyTransactionType,
    UserLoyaltyPoints,
)
from backoffice_api.observability.loyalty import get_loyalty_store
from backoffice_api.services.settings import (
    EarningBasis,
    LoyaltySettings,
    SettingsStore,
    load_loyalty_settings,
)

COMPLETED_STATUS = "completed"
SYSTEM_PROCESSOR = "system"
_CENT = Decimal("0.01")


class LoyaltyError(RuntimeError):
    """Base exception for loyalty ledger failures."""


class LoyaltyDisabledError(LoyaltyError):
    """Raised when an explicit loyalty action is attempted while the program is off."""


class RedemptionBelowMinimumError(LoyaltyError):
    def __init__(self, requested: int, minimum: int) -> None:
        super().__init__(f"Minimum {minimum} points required for redemption (requested {requested})")
        self.requested = requested
        self.minimum = minimum


class InsufficientPointsError(LoyaltyError):
    def __init__(self, requested: int, available: int) -> None:
        super().__init__(f"Insufficient points: requested {requested}, available {available}")
        self.requested = requested
        self.available = available


class HistoryNotFoundError(LoyaltyError):
    """Raised when none of the targeted history rows exist for the user."""


class InvalidAdjustmentError(LoyaltyError):
    """Raised when a manual adjustment cannot be applied."""


@dataclass
class AwardResult:
    points_awarded: int = 0
    status: LoyaltyPointsStatus | None = None
    skipped_reason: str | None = None
    already_applied: bool = False
    history_id: UUID | None = None

    @property
    def applied(self) -> bool:
        return self.points_awarded > 0


@dataclass
class ActivationResult:
    points_activated: int = 0
    new_available_balance: int | None = None
    skipped_reason: str | None = None


@dataclass
class DeletionResult:
    deleted_count: int


@dataclass
class RedemptionResult:
    points_redeemed: int
    discount_amount: Decimal
    new_available_balance: int
    history_id: UUID


@dataclass
class AdjustmentResult:
    points: int
    direction: AdjustmentDirection
    new_available_balance: int
    history_id: UUID


@dataclass
class ExpirationResult:
    rows_expired: int = 0
    points_expired: int = 0
    users_affected: set[UUID] = field(default_factory=set)


@dataclass
class AccountTotals:
    total_points_earned: int = 0
    total_points_redeemed: int = 0
    available_points: int = 0
    pending_points: int = 0

    @classmethod
    def from_account(cls, account: UserLoyaltyPoints | None) -> "AccountTotals":
        if account is None:
            return cls()
        return cls(
            total_points_earned=int(account.total_points_earned or 0),
            total_points_redeemed=int(account.total_points_redeemed or 0),
            available_points=int(account.available_points or 0),
            pending_points=int(account.pending_points or 0),
        )


@dataclass
class ReconciliationResult:
    user_id: UUID
    corrected: bool
    before: AccountTotals
    after: AccountTotals


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _status_value(status: Any) -> str | None:
    if status is None:
        return None
    return str(getattr(status, "value", status))


def add_months(moment: datetime, months: int) -> datetime:
    """Shift a datetime by whole calendar months, clamping the day of month."""

    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def calculate_award_points(order_amount: Any, subtotal: Any, config: LoyaltySettings) -> tuple[int, Decimal]:
    """Return `(points, base_amount)` for an order under the given configuration."""

    amount = _to_decimal(order_amount)
    if config.earning_basis == EarningBasis.TOTAL:
        base = amount
    else:
        base = _to_decimal(subtotal) or amount
    if base < config.minimum_order:
        return 0, base
    points = int((base * config.earning_rate).to_integral_value(rounding=ROUND_FLOOR))
    return max(points, 0), base


def calculate_max_redeemable_points(order_amount: Any, config: LoyaltySettings) -> int:
    if not config.enabled:
        return 0
    cap = _to_decimal(order_amount) * config.max_redemption_percent / Decimal("100")
    points = (cap / config.redemption_value).to_integral_value(rounding=ROUND_FLOOR)
    return max(int(points), 0)


def calculate_points_discount(points: int, config: LoyaltySettings) -> Decimal:
    return (Decimal(int(points)) * config.redemption_value).quantize(_CENT, rounding=ROUND_HALF_UP)


def _adjustment_effect(entry: LoyaltyPointsHistory) -> tuple[AdjustmentDirection, str]:
    """Return the direction and the lifetime counter an adjusted row touched."""

    metadata = entry.metadata_json or {}
    try:
        direction = AdjustmentDirection(metadata.get("direction", AdjustmentDirection.CREDIT.value))
    except ValueError:
        direction = AdjustmentDirection.CREDIT
    default_counter = "earned" if direction is AdjustmentDirection.CREDIT else "redeemed"
    counter = metadata.get("counter", default_counter)
    if counter not in {"earned", "redeemed"}:
        counter = default_counter
    return direction, counter


class LoyaltyLedgerService:
    """Maintains the per-user points aggregate alongside its history rows.

    Every method works inside the caller's transaction and flushes, but never
    commits. The aggregate row is read with `SELECT ... FOR UPDATE` so two
    writers for the same user serialise on the database row lock.
    """

    def __init__(self, db_session: AsyncSession, *, settings_store: SettingsStore | None = None) -> None:
        self._db = db_session
        self._settings_store = settings_store or SettingsStore(db_session)
        self._telemetry = get_loyalty_store()

    async def load_settings(self) -> LoyaltySettings:
        return await load_loyalty_settings(self._settings_store)

    async def get_account(self, user_id: UUID) -> UserLoyaltyPoints | None:
        stmt = select(UserLoyaltyPoints).where(UserLoyaltyPoints.user_id == user_id)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_account(self, user_id: UUID, *, create: bool = True) -> UserLoyaltyPoints | None:
        stmt = (
            select(UserLoyaltyPoints)
            .where(UserLoyaltyPoints.user_id == user_id)
            .with_for_update()
        )
        result = await self._db.execute(stmt)
        account = result.scalar_one_or_none()
        if account is not None or not create:
            return account

        account = UserLoyaltyPoints(
            user_id=user_id,
            total_points_earned=0,
            total_points_redeemed=0,
            available_points=0,
            pending_points=0,
            points_expiring_soon=0,
        )
        self._db.add(account)
        await self._db.flush()
        logger.info("Created loyalty points account", user_id=str(user_id))
        return account

    def _skip_award(self, reason: str, **context: Any) -> AwardResult:
        self._telemetry.record_skip("award", reason)
        logger.debug("Skipped loyalty award", reason=reason, **context)
        return AwardResult(skipped_reason=reason)

    async def _find_award(self, dedupe_key: str) -> LoyaltyPointsHistory | None:
        result = await self._db.execute(
            select(LoyaltyPointsHistory).where(LoyaltyPointsHistory.dedupe_key == dedupe_key)
        )
        return result.scalar_one_or_none()

    def _already_applied(self, prior: LoyaltyPointsHistory, **context: Any) -> AwardResult:
        self._telemetry.record_skip("award", "already_applied")
        logger.info("Loyalty award already applied", history_id=str(prior.id), **context)
        return AwardResult(
            status=prior.status,
            skipped_reason="already_applied",
            already_applied=True,
            history_id=prior.id,
        )

    async def award_points(
        self,
        user_id: UUID,
        order_id: UUID | None,
        order_amount: Any,
        subtotal: Any,
        order_status: Any,
        *,
        now: datetime | None = None,
    ) -> AwardResult:
        """Credit points for an order as pending, or available when already completed.

        Disabled programs, orders under the minimum and zero-point orders are
        no-ops. A second call for the same order reports `already_applied`.
        """

        config = await self.load_settings()
        context = {"user_id": str(user_id), "order_id": str(order_id) if order_id else None}
        if not config.enabled:
            return self._skip_award("disabled", **context)

        points, base_amount = calculate_award_points(order_amount, subtotal, config)
        if base_amount < config.minimum_order:
            return self._skip_award("below_minimum", base_amount=str(base_amount), **context)
        if points <= 0:
            return self._skip_award("no_points", base_amount=str(base_amount), **context)

        # The dedupe lookup must follow the row lock.
        account = await self._lock_account(user_id)
        dedupe_key = f"earned:{order_id}" if order_id else None
        if dedupe_key:
            prior = await self._find_award(dedupe_key)
            if prior is not None:
                return self._already_applied(prior, **context)

        now = now or _utcnow()
        status = (
            LoyaltyPointsStatus.AVAILABLE
            if _status_value(order_status) == COMPLETED_STATUS
            else LoyaltyPointsStatus.PENDING
        )
        expires_at = add_months(now, config.expiry_months) if config.expiry_months > 0 else None

        try:
            async with self._db.begin_nested():
                account.total_points_earned = int(account.total_points_earned or 0) + points
                if status == LoyaltyPointsStatus.AVAILABLE:
                    account.available_points = int(account.available_points or 0) + points
                else:
                    account.pending_points = int(account.pending_points or 0) + points
                account.last_earned_at = now

                entry = LoyaltyPointsHistory(
                    user_id=user_id,
                    order_id=order_id,
                    transaction_type=LoyaltyTransactionType.EARNED,
                    status=status,
                    points=points,
                    points_balance=account.available_points,
                    description="Points earned from order",
                    order_amount=_to_decimal(order_amount),
                    expires_at=expires_at,
                    is_expired=False,
                    processed_by=SYSTEM_PROCESSOR,
                    metadata_json={
                        "earning_rate": str(config.earning_rate),
                        "earning_basis": config.earning_basis.value,
                        "base_amount": str(base_amount),
                    },
                    dedupe_key=dedupe_key,
                    created_at=now,
                )
                self._db.add(entry)
                await self._db.flush()
        except IntegrityError:
            if not dedupe_key:
                raise
            prior = await self._find_award(dedupe_key)
            if prior is None:
                raise
            return self._already_applied(prior, **context)

        self._telemetry.record_operation("award", points)
        logger.info(
            "Awarded loyalty points",
            points=points,
            status=status.value,
            available_points=account.available_points,
            pending_points=account.pending_points,
            **context,
        )
        return AwardResult(points_awarded=points, status=status, history_id=entry.id)

    async def activate_pending_points(
        self,
        user_id: UUID,
        order_id: UUID,
        previous_status: Any,
        new_status: Any,
    ) -> ActivationResult:
        """Move an order's pending earned points to available on completion."""

        config = await self.load_settings()
        if not config.enabled:
            self._telemetry.record_skip("activate", "disabled")
            return ActivationResult(skipped_reason="disabled")

        previous = _status_value(previous_status)
        new = _status_value(new_status)
        if new != COMPLETED_STATUS or previous == COMPLETED_STATUS:
            return ActivationResult(skipped_reason="not_a_completion")

        account = await self._lock_account(user_id, create=False)
        stmt = (
            select(LoyaltyPointsHistory)
            .where(
                LoyaltyPointsHistory.user_id == user_id,
                LoyaltyPointsHistory.order_id == order_id,
                LoyaltyPointsHistory.transaction_type == LoyaltyTransactionType.EARNED,
                LoyaltyPointsHistory.status == LoyaltyPointsStatus.PENDING,
            )
            .with_for_update()
        )
        result = await self._db.execute(stmt)
        entries = list(result.scalars().all())
        if not entries:
            self._telemetry.record_skip("activate", "nothing_pending")
            return ActivationResult(skipped_reason="nothing_pending")

        if account is None:
            account = await self._lock_account(user_id)

        points_to_activate = sum(int(entry.points or 0) for entry in entries)
        account.available_points = int(account.available_points or 0) + points_to_activate
        account.pending_points = max(0, int(account.pending_points or 0) - points_to_activate)

        for entry in entries:
            entry.status = LoyaltyPointsStatus.AVAILABLE
            entry.points_balance = account.available_points

        await self._db.flush()
        self._telemetry.record_operation("activate", points_to_activate)
        logger.info(
            "Activated pending loyalty points",
            user_id=str(user_id),
            order_id=str(order_id),
            points=points_to_activate,
            available_points=account.available_points,
        )
        return ActivationResult(
            points_activated=points_to_activate,
            new_available_balance=account.available_points,
        )

    async def delete_all_history(self, user_id: UUID) -> int:
        """Remove every history row and the aggregate; returns rows deleted."""

        account = await self._lock_account(user_id, create=False)
        result = await self._db.execute(
            delete(LoyaltyPointsHistory)
            .where(LoyaltyPointsHistory.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        deleted = int(result.rowcount or 0)
        if account is not None:
            await self._db.delete(account)
        await self._db.flush()

        self._telemetry.record_operation("delete_all")
        logger.info("Deleted all loyalty history", user_id=str(user_id), deleted=deleted)
        return deleted

    async def delete_selected_history(self, user_id: UUID, history_ids: Sequence[UUID]) -> DeletionResult:
        """Delete chosen history rows and subtract their contribution from the aggregate.

        Each counter is clamped at zero on its own, so an aggregate that had
        already drifted below the rows' contribution ends at zero. An expired
        earned row only leaves the lifetime earned total; its points already
        left available or pending when it expired. `expired` marker rows carry
        no balance.
        """

        ids = list(dict.fromkeys(history_ids))
        if not ids:
            raise HistoryNotFoundError("No history ids supplied")

        stmt = select(LoyaltyPointsHistory).where(
            LoyaltyPointsHistory.user_id == user_id,
            LoyaltyPointsHistory.id.in_(ids),
        )
        result = await self._db.execute(stmt)
        entries = list(result.scalars().all())
        if not entries:
            raise HistoryNotFoundError(f"No loyalty history found for user {user_id}")

        earned_delta = redeemed_delta = available_delta = pending_delta = 0
        for entry in entries:
            points = abs(int(entry.points or 0))
            if entry.transaction_type == LoyaltyTransactionType.EARNED:
                earned_delta += points
                if entry.is_expired:
                    continue
                if entry.status == LoyaltyPointsStatus.AVAILABLE:
                    available_delta += points
                elif entry.status == LoyaltyPointsStatus.PENDING:
                    pending_delta += points
            elif entry.transaction_type == LoyaltyTransactionType.REDEEMED:
                redeemed_delta += points
                available_delta -= points
            elif entry.transaction_type == LoyaltyTransactionType.ADJUSTED:
                direction, counter = _adjustment_effect(entry)
                sign = 1 if direction is AdjustmentDirection.CREDIT else -1
                available_delta += sign * points
                if counter == "earned":
                    earned_delta += sign * points
                else:
                    redeemed_delta -= sign * points

        for entry in entries:
            await self._db.delete(entry)

        account = await self._lock_account(user_id, create=False)
        if account is not None:
            account.total_points_earned = max(0, int(account.total_points_earned or 0) - earned_delta)
            account.total_points_redeemed = max(0, int(account.total_points_redeemed or 0) - redeemed_delta)
            account.available_points = max(0, int(account.available_points or 0) - available_delta)
            account.pending_points = max(0, int(account.pending_points or 0) - pending_delta)
        await self._db.flush()

        self._telemetry.record_operation("delete_selected")
        logger.info(
            "Deleted selected loyalty history",
            user_id=str(user_id),
            requested=len(ids),
            deleted=len(entries),
        )
        return DeletionResult(deleted_count=len(entries))

    async def max_redeemable_points(self, order_amount: Any, *, config: LoyaltySettings | None = None) -> int:
        config = config or await self.load_settings()
        return calculate_max_redeemable_points(order_amount, config)

    async def points_discount_for(self, points: int, *, config: LoyaltySettings | None = None) -> Decimal:
        config = config or await self.load_settings()
        return calculate_points_discount(points, config)

    async def redeem_points(
        self,
        user_id: UUID,
        order_id: UUID | None,
        points: int,
        discount_amount: Any = None,
        description: str | None = None,
        *,
        now: datetime | None = None,
    ) -> RedemptionResult:
        config = await self.load_settings()
        if not config.enabled:
            raise LoyaltyDisabledError("Loyalty program is disabled")

        points = int(points)
        if points <= 0 or points < config.redemption_minimum:
            raise RedemptionBelowMinimumError(points, config.redemption_minimum)

        account = await self._lock_account(user_id, create=False)
        available = int(account.available_points or 0) if account is not None else 0
        if account is None or points > available:
            raise InsufficientPointsError(points, available)

        now = now or _utcnow()
        discount = (
            _to_decimal(discount_amount).quantize(_CENT, rounding=ROUND_HALF_UP)
            if discount_amount is not None
            else calculate_points_discount(points, config)
        )
        account.available_points = available - points
        account.total_points_redeemed = int(account.total_points_redeemed or 0) + points
        account.last_redeemed_at = now

        entry = LoyaltyPointsHistory(
            user_id=user_id,
            order_id=order_id,
            transaction_type=LoyaltyTransactionType.REDEEMED,
            status=LoyaltyPointsStatus.AVAILABLE,
            points=points,
            points_balance=account.available_points,
            description=description or "Points redeemed",
            discount_amount=discount,
            processed_by=SYSTEM_PROCESSOR,
            metadata_json={"redemption_value": str(config.redemption_value)},
            created_at=now,
        )
        self._db.add(entry)
        await self._db.flush()

        self._telemetry.record_operation("redeem", points)
        logger.info(
            "Redeemed loyalty points",
            user_id=str(user_id),
            order_id=str(order_id) if order_id else None,
            points=points,
            discount=str(discount),
            available_points=account.available_points,
        )
        return RedemptionResult(
            points_redeemed=points,
            discount_amount=discount,
            new_available_balance=account.available_points,
            history_id=entry.id,
        )

    async def refund_points(
        self,
        user_id: UUID,
        points: int,
        reason: str,
        order_id: UUID | None = None,
        *,
        now: datetime | None = None,
    ) -> AdjustmentResult:
        """Give previously redeemed points back, e.g. when an order is cancelled."""

        points = int(points)
        if points <= 0:
            raise InvalidAdjustmentError("Refunded points must be positive")

        account = await self._lock_account(user_id)
        account.available_points = int(account.available_points or 0) + points
        account.total_points_redeemed = max(0, int(account.total_points_redeemed or 0) - points)

        entry = LoyaltyPointsHistory(
            user_id=user_id,
            order_id=order_id,
            transaction_type=LoyaltyTransactionType.ADJUSTED,
            status=LoyaltyPointsStatus.AVAILABLE,
            points=points,
            points_balance=account.available_points,
            description=f"Points refunded: {reason}",
            processed_by=SYSTEM_PROCESSOR,
            metadata_json={
                "direction": AdjustmentDirection.CREDIT.value,
                "counter": "redeemed",
                "reason": reason,
            },
            created_at=now or _utcnow(),
        )
        self._db.add(entry)
        await self._db.flush()

        self._telemetry.record_operation("refund", points)
        logger.info("Refunded loyalty points", user_id=str(user_id), points=points, reason=reason)
        return AdjustmentResult(
            points=points,
            direction=AdjustmentDirection.CREDIT,
            new_available_balance=account.available_points,
            history_id=entry.id,
        )

    async def manual_adjustment(
        self,
        user_id: UUID,
        points: int,
        reason: str,
        admin_user_id: str | UUID | None,
        *,
        now: datetime | None = None,
    ) -> AdjustmentResult:
        """Apply an operator credit (positive) or debit (negative)."""

        if not admin_user_id:
            raise InvalidAdjustmentError("Admin user ID required for manual adjustments")
        points = int(points)
        if points == 0:
            raise InvalidAdjustmentError("Adjustment must be non-zero")

        account = await self._lock_account(user_id)
        available = int(account.available_points or 0)
        if points > 0:
            direction = AdjustmentDirection.CREDIT
            applied = points
            account.available_points = available + applied
            account.total_points_earned = int(account.total_points_earned or 0) + applied
            counter = "earned"
        else:
            direction = AdjustmentDirection.DEBIT
            applied = min(abs(points), available)
            if applied == 0:
                raise InvalidAdjustmentError("No available points to debit")
            account.available_points = available - applied
            account.total_points_redeemed = int(account.total_points_redeemed or 0) + applied
            counter = "redeemed"

        entry = LoyaltyPointsHistory(
            user_id=user_id,
            transaction_type=LoyaltyTransactionType.ADJUSTED,
            status=LoyaltyPointsStatus.AVAILABLE,
            points=applied,
            points_balance=account.available_points,
            description=reason or f"Manual adjustment of {points} points",
            processed_by=str(admin_user_id),
            metadata_json={
                "direction": direction.value,
                "counter": counter,
                "requested_points": points,
            },
            created_at=now or _utcnow(),
        )
        self._db.add(entry)
        await self._db.flush()

        self._telemetry.record_operation("adjust", applied)
        logger.info(
            "Applied manual loyalty adjustment",
            user_id=str(user_id),
            requested=points,
            applied=applied,
            direction=direction.value,
            admin_user_id=str(admin_user_id),
        )
        return AdjustmentResult(
            points=applied,
            direction=direction,
            new_available_balance=account.available_points,
            history_id=entry.id,
        )

    async def expire_points(self, now: datetime | None = None, *, limit: int | None = None) -> ExpirationResult:
        """Expire earned rows whose `expires_at` has passed."""

        now = now or _utcnow()
        stmt = (
            select(LoyaltyPointsHistory)
            .where(
                LoyaltyPointsHistory.transaction_type == LoyaltyTransactionType.EARNED,
                LoyaltyPointsHistory.is_expired.is_(False),
                LoyaltyPointsHistory.expires_at.is_not(None),
                LoyaltyPointsHistory.expires_at <= now,
            )
            .order_by(LoyaltyPointsHistory.expires_at.asc())
        )
        if limit:
            stmt = stmt.limit(limit)
        result = await self._db.execute(stmt)
        entries = list(result.scalars().all())

        outcome = ExpirationResult()
        accounts: dict[UUID, UserLoyaltyPoints | None] = {}
        for entry in entries:
            if entry.user_id not in accounts:
                accounts[entry.user_id] = await self._lock_account(entry.user_id, create=False)
            account = accounts[entry.user_id]
            points = int(entry.points or 0)
            from_status = entry.status
            if account is not None:
                if from_status == LoyaltyPointsStatus.PENDING:
                    account.pending_points = max(0, int(account.pending_points or 0) - points)
                else:
                    account.available_points = max(0, int(account.available_points or 0) - points)

            entry.is_expired = True
            entry.status = LoyaltyPointsStatus.EXPIRED
            self._db.add(
                LoyaltyPointsHistory(
                    user_id=entry.user_id,
                    order_id=entry.order_id,
                    transaction_type=LoyaltyTransactionType.EXPIRED,
                    status=LoyaltyPointsStatus.EXPIRED,
                    points=points,
                    points_balance=int(account.available_points or 0) if account is not None else 0,
                    description="Points expired",
                    processed_by=SYSTEM_PROCESSOR,
                    metadata_json={
                        "history_id": str(entry.id),
                        "from_status": _status_value(from_status),
                    },
                    created_at=now,
                )
            )
            outcome.rows_expired += 1
            outcome.points_expired += points
            outcome.users_affected.add(entry.user_id)

        await self._db.flush()
        if outcome.rows_expired:
            self._telemetry.record_operation("expire", outcome.points_expired)
            logger.info(
                "Expired loyalty points",
                rows=outcome.rows_expired,
                points=outcome.points_expired,
                users=len(outcome.users_affected),
            )
        return outcome

    async def compute_totals(self, user_id: UUID) -> AccountTotals:
        """Derive the aggregate counters from history alone."""

        result = await self._db.execute(
            select(LoyaltyPointsHistory).where(LoyaltyPointsHistory.user_id == user_id)
        )
        return self._totals_from_entries(result.scalars().all())

    @staticmethod
    def _totals_from_entries(entries: Iterable[LoyaltyPointsHistory]) -> AccountTotals:
        earned = redeemed = available = pending = 0
        for entry in entries:
            points = abs(int(entry.points or 0))
            if entry.transaction_type == LoyaltyTransactionType.EARNED:
                earned += points
                if entry.is_expired:
                    continue
                if entry.status == LoyaltyPointsStatus.PENDING:
                    pending += points
                elif entry.status == LoyaltyPointsStatus.AVAILABLE:
                    available += points
            elif entry.transaction_type == LoyaltyTransactionType.REDEEMED:
                redeemed += points
                available -= points
            elif entry.transaction_type == LoyaltyTransactionType.ADJUSTED:
                direction, counter = _adjustment_effect(entry)
                sign = 1 if direction is AdjustmentDirection.CREDIT else -1
                available += sign * points
                if counter == "earned":
                    earned += sign * points
                else:
                    redeemed -= sign * points
        return AccountTotals(
            total_points_earned=max(0, earned),
            total_points_redeemed=max(0, redeemed),
            available_points=max(0, available),
            pending_points=max(0, pending),
        )

    async def reconcile(self, user_id: UUID) -> ReconciliationResult:
        """Rewrite the aggregate from history when the two have drifted apart."""

        account = await self._lock_account(user_id, create=False)
        before = AccountTotals.from_account(account)
        after = await self.compute_totals(user_id)
        if before == after:
            return ReconciliationResult(user_id=user_id, corrected=False, before=before, after=after)

        if account is None:
            account = await self._lock_account(user_id)
        account.total_points_earned = after.total_points_earned
        account.total_points_redeemed = after.total_points_redeemed
        account.available_points = after.available_points
        account.pending_points = after.pending_points
        await self._db.flush()

        self._telemetry.record_operation("reconcile")
        logger.warning(
            "Corrected loyalty aggregate drift",
            user_id=str(user_id),
            before=before.__dict__,
            after=after.__dict__,
        )
        return ReconciliationResult(user_id=user_id, corrected=True, before=before, after=after)

    async def list_account_user_ids(self) -> list[UUID]:
        """User ids with an aggregate row or any history."""

        accounts = await self._db.execute(select(UserLoyaltyPoints.user_id))
        history = await self._db.execute(select(LoyaltyPointsHistory.user_id).distinct())
        seen = dict.fromkeys([*accounts.scalars().all(), *history.scalars().all()])
        return list(seen)


__all__ = [
    "AccountTotals",
    "ActivationResult",
    "AdjustmentResult",
    "AwardResult",
    "DeletionResult",
    "ExpirationResult",
    "HistoryNotFoundError",
    "InsufficientPointsError",
    "InvalidAdjustmentError",
    "LoyaltyDisabledError",
    "LoyaltyError",
    "LoyaltyLedgerService",
    "ReconciliationResult",
    "RedemptionBelowMinimumError",
    "RedemptionResult",
    "add_months",
    "calculate_award_points",
    "calculate_max_redeemable_points",
    "calculate_points_discount",
]

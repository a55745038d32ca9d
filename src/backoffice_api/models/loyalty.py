"""Loyalty points ledger models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from backoffice_api.db.base import Base


def _enum_values(enum: type[Enum]) -> list[str]:
    return [member.value for member in enum]


class LoyaltyTransactionType(str, Enum):
    """Direction of a ledger entry; `points` is always a magnitude."""

    EARNED = "earned"
    REDEEMED = "redeemed"
    ADJUSTED = "adjusted"
    EXPIRED = "expired"


class LoyaltyPointsStatus(str, Enum):
    """Lifecycle of earned points."""

    PENDING = "pending"
    AVAILABLE = "available"
    EXPIRED = "expired"


class AdjustmentDirection(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class UserLoyaltyPoints(Base):
    """Cached per-user aggregate of the loyalty history."""

    __tablename__ = "user_loyalty_points"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_user_loyalty_points_user_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    total_points_earned = Column(Integer, nullable=False, default=0, server_default="0")
    total_points_redeemed = Column(Integer, nullable=False, default=0, server_default="0")
    available_points = Column(Integer, nullable=False, default=0, server_default="0")
    pending_points = Column(Integer, nullable=False, default=0, server_default="0")
    points_expiring_soon = Column(Integer, nullable=False, default=0, server_default="0")
    last_earned_at = Column(DateTime(timezone=True), nullable=True)
    last_redeemed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User")


class LoyaltyPointsHistory(Base):
    """Append-mostly ledger entry; the source of truth for balances."""

    __tablename__ = "loyalty_points_history"
    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_loyalty_points_history_dedupe_key"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    transaction_type = Column(
        SqlEnum(LoyaltyTransactionType, name="loyalty_transaction_type", values_callable=_enum_values),
        nullable=False,
    )
    status = Column(
        SqlEnum(LoyaltyPointsStatus, name="loyalty_points_status", values_callable=_enum_values),
        nullable=False,
        default=LoyaltyPointsStatus.AVAILABLE,
        server_default=LoyaltyPointsStatus.AVAILABLE.value,
    )
    points = Column(Integer, nullable=False)
    points_balance = Column(Integer, nullable=False, default=0, server_default="0")
    description = Column(Text, nullable=True)
    order_amount = Column(Numeric(12, 2), nullable=True)
    discount_amount = Column(Numeric(12, 2), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_expired = Column(Boolean, nullable=False, default=False, server_default="false")
    processed_by = Column(String(255), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    dedupe_key = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User")

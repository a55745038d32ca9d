"""SQLAlchemy models package."""

# Import all models
from .user import User, UserRoleEnum, UserStatusEnum  # noqa: F401
from .order import Order, OrderStatusEnum  # noqa: F401
from .setting import Setting, SettingTypeEnum  # noqa: F401
from .loyalty import (  # noqa: F401
    AdjustmentDirection,
    LoyaltyPointsHistory,
    LoyaltyPointsStatus,
    LoyaltyTransactionType,
    UserLoyaltyPoints,
)

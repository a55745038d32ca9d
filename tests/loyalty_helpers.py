from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_api.models.user import User
from backoffice_api.services.settings import LoyaltySettingUpdate, LoyaltySettingsService


async def configure_loyalty(session: AsyncSession, **overrides: Any) -> None:
    """Enable the program with predictable values; keyword overrides use setting keys."""

    values: dict[str, Any] = {
        "loyalty_enabled": True,
        "points_earning_rate": 1,
        "points_earning_basis": "subtotal",
        "points_redemption_value": "0.01",
        "points_expiry_months": 12,
        "points_minimum_order": 0,
        "points_max_redemption_percent": 50,
        "points_redemption_minimum": 100,
    }
    values.update(overrides)
    await LoyaltySettingsService(session).update(
        {key: LoyaltySettingUpdate(value=value) for key, value in values.items()}
    )
    await session.flush()


async def create_user(session: AsyncSession, email: str = "shopper@example.com") -> User:
    user = User(email=email, display_name="Shopper")
    session.add(user)
    await session.flush()
    return user

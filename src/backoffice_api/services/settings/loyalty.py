"""Typed loyalty configuration backed by the settings store."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_api.models.setting import SettingTypeEnum
from backoffice_api.services.settings.store import (
    InvalidSettingError,
    SettingsError,
    SettingsStore,
    coerce_setting_type,
    normalize_setting_value,
)


class LoyaltyConfigurationError(SettingsError):
    """Raised when stored loyalty settings cannot be interpreted."""


class EarningBasis(str, Enum):
    SUBTOTAL = "subtotal"
    TOTAL = "total"


@dataclass(frozen=True)
class SettingDefault:
    value: Any
    type: SettingTypeEnum
    description: str


LOYALTY_SETTING_DEFAULTS: dict[str, SettingDefault] = {
    "loyalty_enabled": SettingDefault(
        False,
        SettingTypeEnum.BOOLEAN,
        "Enable or disable the loyalty points system",
    ),
    "points_earning_rate": SettingDefault(
        1,
        SettingTypeEnum.NUMBER,
        "Points earned per dollar spent",
    ),
    "points_earning_basis": SettingDefault(
        EarningBasis.SUBTOTAL.value,
        SettingTypeEnum.STRING,
        "Calculate points based on subtotal or total amount",
    ),
    "points_redemption_value": SettingDefault(
        0.01,
        SettingTypeEnum.NUMBER,
        "Dollar value per point when redeeming",
    ),
    "points_expiry_months": SettingDefault(
        12,
        SettingTypeEnum.NUMBER,
        "Number of months before points expire (0 = never expire)",
    ),
    "points_minimum_order": SettingDefault(
        0,
        SettingTypeEnum.NUMBER,
        "Minimum order amount to earn points",
    ),
    "points_max_redemption_percent": SettingDefault(
        50,
        SettingTypeEnum.NUMBER,
        "Maximum percentage of order that can be paid with points",
    ),
    "points_redemption_minimum": SettingDefault(
        100,
        SettingTypeEnum.NUMBER,
        "Minimum points required to redeem",
    ),
}

_FIELD_BY_KEY: dict[str, str] = {
    "loyalty_enabled": "enabled",
    "points_earning_rate": "earning_rate",
    "points_earning_basis": "earning_basis",
    "points_redemption_value": "redemption_value",
    "points_expiry_months": "expiry_months",
    "points_minimum_order": "minimum_order",
    "points_max_redemption_percent": "max_redemption_percent",
    "points_redemption_minimum": "redemption_minimum",
}

LOYALTY_SETTING_PREFIXES = ("loyalty_", "points_")


class LoyaltySettings(BaseModel):
    """Validated loyalty program configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    earning_rate: Decimal = Field(default=Decimal("1"), ge=0)
    earning_basis: EarningBasis = EarningBasis.SUBTOTAL
    redemption_value: Decimal = Field(default=Decimal("0.01"), gt=0)
    expiry_months: int = Field(default=12, ge=0)
    minimum_order: Decimal = Field(default=Decimal("0"), ge=0)
    max_redemption_percent: Decimal = Field(default=Decimal("50"), ge=0, le=100)
    redemption_minimum: int = Field(default=100, ge=0)


def _raw_values_to_fields(raw_values: Mapping[str, str | None]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for key, raw in raw_values.items():
        field_name = _FIELD_BY_KEY.get(key)
        if field_name is None or raw is None:
            continue
        if field_name == "enabled":
            fields[field_name] = raw == "true"
        else:
            fields[field_name] = raw.strip()
    return fields


def _first_error(exc: ValidationError) -> tuple[str, str]:
    error = exc.errors()[0]
    location = error.get("loc") or ("settings",)
    field_name = str(location[0])
    key = next((k for k, f in _FIELD_BY_KEY.items() if f == field_name), field_name)
    return key, str(error.get("msg", "invalid value"))


async def load_loyalty_settings(store: SettingsStore) -> LoyaltySettings:
    """Read every loyalty key and return the validated configuration.

    Missing rows fall back to the defaults, so an unconfigured program is
    simply disabled. Rows that exist but fail validation raise
    `LoyaltyConfigurationError`.
    """

    rows = await store.get_many(_FIELD_BY_KEY)
    raw_values = {key: setting.value for key, setting in rows.items()}
    try:
        return LoyaltySettings(**_raw_values_to_fields(raw_values))
    except ValidationError as exc:
        key, message = _first_error(exc)
        logger.error("Stored loyalty settings are invalid", key=key, error=message)
        raise LoyaltyConfigurationError(f"Stored value for {key} is invalid: {message}") from exc


@dataclass
class LoyaltySettingUpdate:
    value: Any
    type: SettingTypeEnum | str | None = None
    description: str | None = None


class LoyaltySettingsService:
    """Admin-facing view over the loyalty keys of the settings table."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session
        self._store = SettingsStore(db_session)

    async def load(self) -> LoyaltySettings:
        return await load_loyalty_settings(self._store)

    async def describe(self) -> dict[str, dict[str, Any]]:
        """Return every loyalty setting with value, type and description.

        Keys that have never been written report their default.
        """

        stored = await self._store.list_settings(LOYALTY_SETTING_PREFIXES)
        described: dict[str, dict[str, Any]] = {}
        for key, typed in stored.items():
            described[key] = {
                "value": typed.value,
                "type": typed.type.value,
                "description": typed.description,
            }
        for key, default in LOYALTY_SETTING_DEFAULTS.items():
            if key in described:
                continue
            described[key] = {
                "value": default.value,
                "type": default.type.value,
                "description": default.description,
            }
        return described

    async def update(self, updates: Mapping[str, LoyaltySettingUpdate]) -> list[str]:
        """Validate and persist loyalty settings; unknown keys are skipped.

        The merged configuration is validated as a whole before any row is
        written, so a rejected request leaves the table unchanged.
        """

        accepted: dict[str, tuple[str, SettingTypeEnum, str | None]] = {}
        for key, update in updates.items():
            default = LOYALTY_SETTING_DEFAULTS.get(key)
            if default is None:
                logger.warning("Skipping unknown loyalty setting", key=key)
                continue
            setting_type = coerce_setting_type(update.type) if update.type else default.type
            if setting_type is not default.type:
                raise InvalidSettingError(key, f"expected type {default.type.value}")
            stored_value = normalize_setting_value(key, update.value, setting_type)
            accepted[key] = (stored_value, setting_type, update.description)

        if not accepted:
            return []

        rows = await self._store.get_many(_FIELD_BY_KEY)
        merged = {key: setting.value for key, setting in rows.items()}
        merged.update({key: stored for key, (stored, _, _) in accepted.items()})
        try:
            LoyaltySettings(**_raw_values_to_fields(merged))
        except ValidationError as exc:
            key, message = _first_error(exc)
            raise InvalidSettingError(key, message) from exc

        for key, (stored_value, setting_type, description) in accepted.items():
            await self._store.set_setting(
                key,
                stored_value,
                type=setting_type,
                description=description or LOYALTY_SETTING_DEFAULTS[key].description,
            )

        logger.info("Updated loyalty settings", keys=sorted(accepted))
        return list(accepted)


__all__ = [
    "EarningBasis",
    "LOYALTY_SETTING_DEFAULTS",
    "LOYALTY_SETTING_PREFIXES",
    "LoyaltyConfigurationError",
    "LoyaltySettingUpdate",
    "LoyaltySettings",
    "LoyaltySettingsService",
    "SettingDefault",
    "load_loyalty_settings",
]

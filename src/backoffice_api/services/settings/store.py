"""Key/value settings persistence with typed parsing."""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Sequence

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_api.models.setting import Setting, SettingTypeEnum


class SettingsError(RuntimeError):
    """Base exception for settings failures."""


class InvalidSettingError(SettingsError):
    """Raised when a value cannot be stored under the requested type."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(f"Invalid value for {key}: {message}")
        self.key = key


@dataclass
class TypedSetting:
    """Parsed view of a settings row."""

    key: str
    value: Any
    type: SettingTypeEnum
    description: str | None


def coerce_setting_type(value: str | SettingTypeEnum | None) -> SettingTypeEnum:
    if isinstance(value, SettingTypeEnum):
        return value
    try:
        return SettingTypeEnum(value or SettingTypeEnum.STRING.value)
    except ValueError:
        return SettingTypeEnum.STRING


def parse_setting_value(raw: str | None, setting_type: SettingTypeEnum) -> Any:
    """Interpret a stored text value; malformed numbers and json fall back to empty values."""

    if setting_type is SettingTypeEnum.BOOLEAN:
        return raw == "true"
    if setting_type is SettingTypeEnum.NUMBER:
        try:
            number = Decimal(str(raw).strip())
        except (InvalidOperation, ValueError):
            return 0.0
        return float(number) if number.is_finite() else 0.0
    if setting_type is SettingTypeEnum.JSON:
        try:
            return json.loads(raw or "")
        except ValueError:
            return {}
    return raw


def normalize_setting_value(key: str, value: Any, setting_type: SettingTypeEnum) -> str:
    """Render a value into the canonical text stored in the settings table."""

    if setting_type is SettingTypeEnum.BOOLEAN:
        if isinstance(value, str):
            return "false" if value.strip().lower() in {"", "false", "0", "no", "off"} else "true"
        return "true" if bool(value) else "false"
    if setting_type is SettingTypeEnum.NUMBER:
        if isinstance(value, bool):
            raise InvalidSettingError(key, "expected a number")
        try:
            number = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise InvalidSettingError(key, "expected a number") from exc
        if not number.is_finite():
            raise InvalidSettingError(key, "expected a finite number")
        return format(number.normalize(), "f")
    if setting_type is SettingTypeEnum.JSON:
        try:
            return json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise InvalidSettingError(key, "value is not JSON serializable") from exc
    return str(value)


class SettingsStore:
    """Reads and upserts rows of the global settings table."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get(self, key: str) -> Setting | None:
        stmt = select(Setting).where(Setting.key == key, Setting.is_active.is_(True))
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_setting(self, key: str, default: str | None = None) -> str | None:
        """Return the raw stored value, or `default` when no active row exists."""

        setting = await self.get(key)
        if setting is None:
            return default
        return setting.value

    async def get_many(self, keys: Iterable[str]) -> dict[str, Setting]:
        wanted = list(keys)
        if not wanted:
            return {}
        stmt = select(Setting).where(Setting.key.in_(wanted), Setting.is_active.is_(True))
        result = await self._db.execute(stmt)
        return {setting.key: setting for setting in result.scalars().all()}

    async def list_settings(self, prefixes: Sequence[str] = ()) -> dict[str, TypedSetting]:
        """Return active settings parsed by type, optionally filtered by key prefix."""

        stmt = select(Setting).where(Setting.is_active.is_(True)).order_by(Setting.key.asc())
        result = await self._db.execute(stmt)
        typed: dict[str, TypedSetting] = {}
        for setting in result.scalars().all():
            if prefixes and not setting.key.startswith(tuple(prefixes)):
                continue
            setting_type = coerce_setting_type(setting.type)
            typed[setting.key] = TypedSetting(
                key=setting.key,
                value=parse_setting_value(setting.value, setting_type),
                type=setting_type,
                description=setting.description,
            )
        return typed

    async def set_setting(
        self,
        key: str,
        value: Any,
        *,
        type: SettingTypeEnum | str = SettingTypeEnum.STRING,
        description: str | None = None,
    ) -> Setting:
        """Insert or update a setting; the caller owns the commit."""

        setting_type = coerce_setting_type(type)
        stored_value = normalize_setting_value(key, value, setting_type)

        stmt = select(Setting).where(Setting.key == key)
        result = await self._db.execute(stmt)
        setting = result.scalar_one_or_none()
        if setting is None:
            setting = Setting(
                key=key,
                value=stored_value,
                type=setting_type.value,
                description=description,
                is_active=True,
            )
            self._db.add(setting)
            logger.info("Created setting", key=key, type=setting_type.value)
        else:
            setting.value = stored_value
            setting.type = setting_type.value
            if description is not None:
                setting.description = description
            setting.is_active = True
            logger.info("Updated setting", key=key, type=setting_type.value)

        await self._db.flush()
        return setting


__all__ = [
    "InvalidSettingError",
    "SettingsError",
    "SettingsStore",
    "TypedSetting",
    "coerce_setting_type",
    "normalize_setting_value",
    "parse_setting_value",
]

from decimal import Decimal

import pytest

from backoffice_api.models.setting import SettingTypeEnum
from backoffice_api.services.settings import InvalidSettingError, SettingsStore
from backoffice_api.services.settings.store import normalize_setting_value, parse_setting_value


@pytest.mark.asyncio
async def test_get_setting_returns_default_when_missing(session_factory) -> None:
    async with session_factory() as session:
        store = SettingsStore(session)
        assert await store.get_setting("site_name") is None
        assert await store.get_setting("site_name", "fallback") == "fallback"


@pytest.mark.asyncio
async def test_set_setting_upserts_existing_row(session_factory) -> None:
    async with session_factory() as session:
        store = SettingsStore(session)
        created = await store.set_setting("site_name", "Corner Shop", description="Store display name")
        updated = await store.set_setting("site_name", "Corner Shop & Co")
        await session.commit()

        assert created.id == updated.id
        assert await store.get_setting("site_name") == "Corner Shop & Co"
        assert updated.description == "Store display name"


@pytest.mark.asyncio
async def test_list_settings_parses_types_and_filters_prefixes(session_factory) -> None:
    async with session_factory() as session:
        store = SettingsStore(session)
        await store.set_setting("loyalty_enabled", True, type=SettingTypeEnum.BOOLEAN)
        await store.set_setting("points_earning_rate", Decimal("1.50"), type="number")
        await store.set_setting("theme", {"color": "teal"}, type=SettingTypeEnum.JSON)
        await session.commit()

        loyalty = await store.list_settings(("loyalty_", "points_"))
        everything = await store.list_settings()

    assert set(loyalty) == {"loyalty_enabled", "points_earning_rate"}
    assert loyalty["loyalty_enabled"].value is True
    assert loyalty["points_earning_rate"].value == 1.5
    assert everything["theme"].value == {"color": "teal"}


def test_normalize_setting_value_canonical_text() -> None:
    assert normalize_setting_value("flag", "off", SettingTypeEnum.BOOLEAN) == "false"
    assert normalize_setting_value("flag", 1, SettingTypeEnum.BOOLEAN) == "true"
    assert normalize_setting_value("rate", "2.500", SettingTypeEnum.NUMBER) == "2.5"
    assert normalize_setting_value("rate", 100, SettingTypeEnum.NUMBER) == "100"
    assert normalize_setting_value("blob", [1, 2], SettingTypeEnum.JSON) == "[1, 2]"


@pytest.mark.parametrize("value", ["abc", True, "NaN", "Infinity"])
def test_normalize_rejects_non_numbers(value) -> None:
    with pytest.raises(InvalidSettingError):
        normalize_setting_value("rate", value, SettingTypeEnum.NUMBER)


def test_parse_setting_value_falls_back_on_malformed_rows() -> None:
    assert parse_setting_value("yes", SettingTypeEnum.BOOLEAN) is False
    assert parse_setting_value("not-a-number", SettingTypeEnum.NUMBER) == 0.0
    assert parse_setting_value("{broken", SettingTypeEnum.JSON) == {}
    assert parse_setting_value("plain", SettingTypeEnum.STRING) == "plain"

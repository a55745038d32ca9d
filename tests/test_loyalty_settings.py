from decimal import Decimal

import pytest

from backoffice_api.services.settings import (
    EarningBasis,
    InvalidSettingError,
    LoyaltyConfigurationError,
    LoyaltySettingUpdate,
    LoyaltySettingsService,
    SettingsStore,
    load_loyalty_settings,
)


@pytest.mark.asyncio
async def test_unconfigured_program_loads_disabled_defaults(session_factory) -> None:
    async with session_factory() as session:
        config = await load_loyalty_settings(SettingsStore(session))

    assert config.enabled is False
    assert config.earning_rate == Decimal("1")
    assert config.earning_basis is EarningBasis.SUBTOTAL
    assert config.expiry_months == 12
    assert config.redemption_minimum == 100


@pytest.mark.asyncio
async def test_only_exact_true_enables_program(session_factory) -> None:
    async with session_factory() as session:
        store = SettingsStore(session)
        await store.set_setting("loyalty_enabled", "TRUE")
        config = await load_loyalty_settings(store)
        assert config.enabled is False

        await store.set_setting("loyalty_enabled", "true")
        config = await load_loyalty_settings(store)
        assert config.enabled is True


@pytest.mark.asyncio
async def test_update_persists_and_describe_fills_defaults(session_factory) -> None:
    async with session_factory() as session:
        service = LoyaltySettingsService(session)
        updated = await service.update(
            {
                "loyalty_enabled": LoyaltySettingUpdate(True),
                "points_earning_rate": LoyaltySettingUpdate("2"),
                "unrelated_key": LoyaltySettingUpdate("ignored"),
            }
        )
        await session.commit()

        described = await service.describe()
        config = await service.load()

    assert sorted(updated) == ["loyalty_enabled", "points_earning_rate"]
    assert described["loyalty_enabled"]["value"] is True
    assert described["points_earning_rate"]["value"] == 2.0
    assert described["points_redemption_minimum"] == {
        "value": 100,
        "type": "number",
        "description": "Minimum points required to redeem",
    }
    assert "unrelated_key" not in described
    assert config.enabled is True
    assert config.earning_rate == Decimal("2")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "key,value",
    [
        ("points_max_redemption_percent", 150),
        ("points_minimum_order", -5),
        ("points_redemption_value", 0),
        ("points_earning_basis", "shipping"),
    ],
)
async def test_update_rejects_out_of_range_values(session_factory, key, value) -> None:
    async with session_factory() as session:
        service = LoyaltySettingsService(session)
        with pytest.raises(InvalidSettingError) as excinfo:
            await service.update({key: LoyaltySettingUpdate(value)})
        assert excinfo.value.key == key
        assert await SettingsStore(session).get(key) is None


@pytest.mark.asyncio
async def test_update_rejects_type_mismatch(session_factory) -> None:
    async with session_factory() as session:
        with pytest.raises(InvalidSettingError):
            await LoyaltySettingsService(session).update(
                {"points_earning_rate": LoyaltySettingUpdate("1", type="string")}
            )


@pytest.mark.asyncio
async def test_corrupt_stored_row_raises_configuration_error(session_factory) -> None:
    async with session_factory() as session:
        store = SettingsStore(session)
        await store.set_setting("points_earning_rate", "lots", type="string")
        with pytest.raises(LoyaltyConfigurationError):
            await load_loyalty_settings(store)

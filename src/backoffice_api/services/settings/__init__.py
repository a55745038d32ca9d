"""Settings service exports."""

from .loyalty import (  # noqa: F401
    LOYALTY_SETTING_DEFAULTS,
    EarningBasis,
    LoyaltyConfigurationError,
    LoyaltySettingUpdate,
    LoyaltySettings,
    LoyaltySettingsService,
    load_loyalty_settings,
)
from .store import (  # noqa: F401
    InvalidSettingError,
    SettingsError,
    SettingsStore,
    TypedSetting,
)

"""Configuration subsystem.

Public API::

    from acmerenew.config import get_config, RenewConfig

    # At startup:
    RenewConfig(config_file="config.yaml")

    # Everywhere else:
    cfg = get_config()
    days = cfg.settings.schedule.renewal_days   # typed access
    custom = cfg.get("validation.dns.resolvers")  # dynamic dot-path
"""

from acmerenew.config.renew_config import (
    ConfigValidationError,
    RenewConfig,
    get_config,
    load_settings,
)
from acmerenew.config.settings import (
    CacheSettings,
    CsrSettings,
    DnsValidationSettings,
    HistorySettings,
    HttpValidationSettings,
    InstallationSettings,
    KeyStoreSettings,
    LoggingSettings,
    OrderSettings,
    PemFilesSettings,
    PfxFileSettings,
    RenewSettings,
    ScheduleSettings,
    SecretsSettings,
    SelfHostingSettings,
    StoreSettings,
    ValidationSettings,
)

__all__ = [
    "CacheSettings",
    "ConfigValidationError",
    "CsrSettings",
    "DnsValidationSettings",
    "HistorySettings",
    "HttpValidationSettings",
    "InstallationSettings",
    "KeyStoreSettings",
    "LoggingSettings",
    "OrderSettings",
    "PemFilesSettings",
    "PfxFileSettings",
    # Core
    "RenewConfig",
    # Root
    "RenewSettings",
    "ScheduleSettings",
    "SecretsSettings",
    "SelfHostingSettings",
    # Sections
    "StoreSettings",
    "ValidationSettings",
    "get_config",
    "load_settings",
]

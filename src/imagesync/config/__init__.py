"""Configuration package for imagesync."""

from .settings import (
    NodeImageSettings,
    WebDAVSettings,
    SyncSettings,
    LoggingSettings,
    ServerSettings,
    AppSettings,
    get_settings,
    reload_settings
)

from .schema import SyncConfig, SyncMode

from .loader import (
    ConfigLoader,
    ConfigurationError,
    load_sync_config
)

from .manager import ConfigManager

__all__ = [
    "NodeImageSettings",
    "WebDAVSettings",
    "SyncSettings",
    "LoggingSettings",
    "ServerSettings",
    "AppSettings",
    "get_settings",
    "reload_settings",

    "SyncConfig",
    "SyncMode",

    "ConfigLoader",
    "ConfigurationError",
    "load_sync_config",

    "ConfigManager"
]

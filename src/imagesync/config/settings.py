"""Application configuration settings."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NodeImageSettings(BaseSettings):
    """NodeImage account configuration."""

    cookie: str = Field(default="", description="Session cookie, required for full sync")
    api_key: str = Field(default="", description="API key, required for incremental sync")
    api_url: str = Field(default="https://api.nodeimage.com/api/images")
    api_key_url: str = Field(default="https://api.nodeimage.com/api/v1/list")

    model_config = SettingsConfigDict(env_prefix="NODEIMAGE_", extra="ignore")


class WebDAVSettings(BaseSettings):
    """WebDAV destination configuration."""

    url: str = Field(default="https://dav.jianguoyun.com/dav")
    username: str = Field(default="")
    password: str = Field(default="")
    folder: str = Field(default="", description="Sync root on the WebDAV server")

    model_config = SettingsConfigDict(env_prefix="WEBDAV_", extra="ignore")


class SyncSettings(BaseSettings):
    """Reconciliation engine configuration."""

    concurrency: int = Field(default=5, ge=1)
    interval: int = Field(default=0, ge=0, description="Minutes between scheduled incremental syncs, 0 disables")
    request_timeout: float = Field(default=60.0, gt=0)
    run_timeout: Optional[float] = Field(default=None, gt=0)

    model_config = SettingsConfigDict(env_prefix="SYNC_", extra="ignore")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    format: str = Field(default="console")
    file_path: Optional[str] = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")


class ServerSettings(BaseSettings):
    """Web front end configuration."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=37373)
    static_dir: str = Field(default="./public")

    model_config = SettingsConfigDict(extra="ignore")


class AppSettings(BaseSettings):
    """Main application settings."""

    name: str = Field(default="imagesync")
    version: str = Field(default="1.0.0")

    # Sub-settings
    nodeimage: NodeImageSettings = Field(default_factory=NodeImageSettings)
    webdav: WebDAVSettings = Field(default_factory=WebDAVSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    model_config = SettingsConfigDict(env_prefix="APP_", case_sensitive=False, extra="ignore")


_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Get application settings."""
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def reload_settings() -> AppSettings:
    """Re-read settings from the environment."""
    global _settings
    _settings = AppSettings()
    return _settings

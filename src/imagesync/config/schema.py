"""Configuration schema for a reconciliation run."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .settings import AppSettings


class SyncMode(str, Enum):
    """Reconciliation modes."""
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncConfig(BaseModel):
    """Everything a single reconciliation run needs to know."""

    nodeimage_cookie: str = ""
    nodeimage_api_key: str = ""
    nodeimage_api_url: str = "https://api.nodeimage.com/api/images"
    nodeimage_api_key_url: str = "https://api.nodeimage.com/api/v1/list"

    webdav_url: str = "https://dav.jianguoyun.com/dav"
    webdav_username: str = ""
    webdav_password: str = ""
    webdav_folder: str = ""

    concurrency: int = Field(default=5, ge=1, le=64)
    request_timeout: float = Field(default=60.0, gt=0)
    run_timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("webdav_folder")
    @classmethod
    def normalize_folder(cls, v: str) -> str:
        """Store the sync root as '/name' without a trailing slash."""
        v = v.strip()
        if not v:
            return v
        v = "/" + v.strip("/")
        return v

    @field_validator("nodeimage_api_url", "nodeimage_api_key_url", "webdav_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://: {v}")
        return v.rstrip("/")

    def missing_for_mode(self, mode: SyncMode) -> List[str]:
        """Return the names of required settings that are empty for ``mode``."""
        missing = []
        if mode == SyncMode.FULL and not self.nodeimage_cookie:
            missing.append("NODEIMAGE_COOKIE")
        if mode == SyncMode.INCREMENTAL and not self.nodeimage_api_key:
            missing.append("NODEIMAGE_API_KEY")
        if not self.webdav_username:
            missing.append("WEBDAV_USERNAME")
        if not self.webdav_password:
            missing.append("WEBDAV_PASSWORD")
        if not self.webdav_folder:
            missing.append("WEBDAV_FOLDER")
        return missing

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "SyncConfig":
        """Build a run configuration from application settings."""
        return cls(
            nodeimage_cookie=settings.nodeimage.cookie,
            nodeimage_api_key=settings.nodeimage.api_key,
            nodeimage_api_url=settings.nodeimage.api_url,
            nodeimage_api_key_url=settings.nodeimage.api_key_url,
            webdav_url=settings.webdav.url,
            webdav_username=settings.webdav.username,
            webdav_password=settings.webdav.password,
            webdav_folder=settings.webdav.folder,
            concurrency=settings.sync.concurrency,
            request_timeout=settings.sync.request_timeout,
            run_timeout=settings.sync.run_timeout,
        )

"""Configuration manager holding the runtime sync configuration."""

import threading
from datetime import datetime
from typing import Optional

from .schema import SyncConfig
from .loader import ConfigurationError, load_sync_config
from ..utils.logging import get_logger


class ConfigManager:
    """Owns the active SyncConfig and the runtime overrides applied to it.

    The cookie can be replaced at runtime from the web front end; every run
    works on its own snapshot so an update never changes a run in flight.
    """

    def __init__(self, config: Optional[SyncConfig] = None):
        """Initialize configuration manager.

        Args:
            config: Initial configuration; loaded from the environment when None
        """
        self.logger = get_logger(self.__class__.__name__)
        self._lock = threading.RLock()
        self._config: Optional[SyncConfig] = config
        self._config_loaded_at: Optional[datetime] = datetime.now() if config else None

    def load_config(self, force_reload: bool = False) -> SyncConfig:
        """Load configuration from file or environment.

        Args:
            force_reload: Force reload even if config is already loaded

        Returns:
            Loaded configuration
        """
        with self._lock:
            if self._config and not force_reload:
                return self._config

            try:
                self._config = load_sync_config()
            except ConfigurationError:
                raise
            except Exception as e:
                self.logger.error("Failed to load configuration", error=str(e))
                raise ConfigurationError(f"Failed to load configuration: {e}")

            self._config_loaded_at = datetime.now()
            self.logger.info(
                "Configuration loaded successfully",
                webdav_folder=self._config.webdav_folder,
                cookie_set=bool(self._config.nodeimage_cookie),
                api_key_set=bool(self._config.nodeimage_api_key)
            )
            return self._config

    def snapshot(self) -> SyncConfig:
        """Return a read-only copy of the current configuration."""
        with self._lock:
            return self.load_config().model_copy()

    def update_cookie(self, cookie: str) -> None:
        """Replace the NodeImage cookie used by subsequent full runs."""
        with self._lock:
            config = self.load_config()
            self._config = config.model_copy(update={"nodeimage_cookie": cookie.strip()})
        self.logger.info("NodeImage cookie updated", cookie_set=bool(cookie.strip()))

    def is_cookie_set(self) -> bool:
        with self._lock:
            return bool(self.load_config().nodeimage_cookie)

    @property
    def loaded_at(self) -> Optional[datetime]:
        return self._config_loaded_at

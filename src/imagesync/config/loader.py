"""Configuration loader for JSON/YAML files and environment variables."""

import os
import json
from pathlib import Path
from typing import Dict, Any, Optional, Union

import yaml
from pydantic import ValidationError

from .schema import SyncConfig
from .settings import AppSettings, get_settings
from ..utils.logging import get_logger


class ConfigurationError(Exception):
    """Raised when configuration is missing or cannot be loaded."""
    pass


# SyncConfig field -> environment variable that overrides it
ENV_OVERRIDES = {
    "nodeimage_cookie": "NODEIMAGE_COOKIE",
    "nodeimage_api_key": "NODEIMAGE_API_KEY",
    "nodeimage_api_url": "NODEIMAGE_API_URL",
    "nodeimage_api_key_url": "NODEIMAGE_API_KEY_URL",
    "webdav_url": "WEBDAV_URL",
    "webdav_username": "WEBDAV_USERNAME",
    "webdav_password": "WEBDAV_PASSWORD",
    "webdav_folder": "WEBDAV_FOLDER",
    "concurrency": "SYNC_CONCURRENCY",
    "request_timeout": "SYNC_REQUEST_TIMEOUT",
    "run_timeout": "SYNC_RUN_TIMEOUT",
}


class ConfigLoader:
    """Loads and validates run configuration from various sources."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def load_from_file(self, file_path: Union[str, Path]) -> SyncConfig:
        """Load configuration from a JSON or YAML file.

        Args:
            file_path: Path to configuration file

        Returns:
            Validated SyncConfig object

        Raises:
            ConfigurationError: If file cannot be loaded or validated
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise ConfigurationError(f"Configuration file not found: {file_path}")

        self.logger.info("Loading configuration from file", file_path=str(file_path))

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                if file_path.suffix.lower() in ['.yaml', '.yml']:
                    data = yaml.safe_load(f) or {}
                elif file_path.suffix.lower() == '.json':
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unsupported file format: {file_path.suffix}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML format: {e}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {file_path}")

        return self.load_from_dict(data)

    def load_from_dict(self, data: Dict[str, Any]) -> SyncConfig:
        """Load configuration from a dictionary, applying environment overrides."""
        data = self._apply_env_overrides(data)

        try:
            config = SyncConfig(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

        self.logger.info(
            "Configuration loaded",
            webdav_url=config.webdav_url,
            webdav_folder=config.webdav_folder,
            concurrency=config.concurrency
        )
        return config

    def _apply_env_overrides(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration data."""
        env_overrides = {}

        for field_name, env_name in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                env_overrides[field_name] = value

        if env_overrides:
            self.logger.debug("Applied environment variable overrides", overrides=list(env_overrides.keys()))
            data = {**data, **env_overrides}

        return data


def load_sync_config(settings: Optional[AppSettings] = None) -> SyncConfig:
    """Build the run configuration.

    Uses the file named by IMAGESYNC_CONFIG_FILE when set, otherwise the
    environment-backed application settings.
    """
    config_file = os.getenv("IMAGESYNC_CONFIG_FILE")
    if config_file:
        return ConfigLoader().load_from_file(config_file)

    try:
        return SyncConfig.from_settings(settings or get_settings())
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}")

"""Shared fixtures for the reconciliation tests."""

import logging
from typing import Optional

import pytest
import structlog

from imagesync.config import ConfigManager, SyncConfig
from imagesync.core import ReconciliationService, EventHub, DestinationCache
from imagesync.performance import TransferStats

from fakes import FakeSource, FakeDestination, FakeFactory


@pytest.fixture
def sync_config():
    return SyncConfig(
        nodeimage_cookie="session=abc",
        nodeimage_api_key="key-123",
        webdav_url="https://dav.example.com/dav",
        webdav_username="user",
        webdav_password="secret",
        webdav_folder="images",
        concurrency=2
    )


@pytest.fixture
def make_service(sync_config):
    """Build a service around fake adapters: ``make_service(source, destination)``."""

    def _make(source: FakeSource, destination: FakeDestination, config: Optional[SyncConfig] = None):
        factory = FakeFactory(source, destination)
        return ReconciliationService(
            config_manager=ConfigManager(config or sync_config),
            factory=factory,
            hub=EventHub(),
            stats=TransferStats(),
            cache=DestinationCache()
        )

    return _make


@pytest.fixture
def restore_logging():
    """Undo ``setup_logging`` so later tests see the default configuration."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    structlog.reset_defaults()

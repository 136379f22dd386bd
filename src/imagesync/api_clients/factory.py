"""API client factory for creating the source and destination adapters."""

from typing import Type

from ..config.schema import SyncConfig, SyncMode
from ..performance import TransferStats
from .base import SourceClient, DestinationClient
from .nodeimage import NodeImageClient
from .webdav import WebDAVClient


class APIClientFactory:
    """Factory for creating adapter instances for one run."""

    source_class: Type[SourceClient] = NodeImageClient
    destination_class: Type[DestinationClient] = WebDAVClient

    def create_source(self, config: SyncConfig, mode: SyncMode, stats: TransferStats) -> SourceClient:
        """Create the source adapter.

        Full runs list with the cookie; incremental runs with the API key.
        """
        return self.source_class(
            cookie=config.nodeimage_cookie,
            api_url=config.nodeimage_api_url,
            api_key=config.nodeimage_api_key,
            api_key_url=config.nodeimage_api_key_url,
            use_api_key=(mode == SyncMode.INCREMENTAL),
            stats=stats,
            timeout=config.request_timeout
        )

    def create_destination(self, config: SyncConfig, stats: TransferStats) -> DestinationClient:
        """Create the destination adapter."""
        return self.destination_class(
            base_url=config.webdav_url,
            username=config.webdav_username,
            password=config.webdav_password,
            stats=stats,
            timeout=config.request_timeout
        )

"""API clients package for the source and destination remotes."""

from .base import (
    BaseAPIClient,
    SourceClient,
    DestinationClient,
    SourceEntry,
    DestinationEntry,
    derive_filename,
    RemoteError,
    RateLimitError,
    AuthenticationError,
    APIConnectionError
)

from .nodeimage import NodeImageClient
from .webdav import WebDAVClient
from .factory import APIClientFactory

__all__ = [
    # Base classes and exceptions
    "BaseAPIClient",
    "SourceClient",
    "DestinationClient",
    "SourceEntry",
    "DestinationEntry",
    "derive_filename",
    "RemoteError",
    "RateLimitError",
    "AuthenticationError",
    "APIConnectionError",

    # Client implementations
    "NodeImageClient",
    "WebDAVClient",

    # Factory
    "APIClientFactory"
]

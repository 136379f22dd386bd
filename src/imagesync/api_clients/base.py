"""Base API client interface and common functionality."""

import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Dict, Any, Optional
from urllib.parse import urlparse, unquote

import aiohttp

from ..performance import TransferStats
from ..utils.logging import get_logger


@dataclass(frozen=True)
class SourceEntry:
    """One image available at the source."""

    id: str
    name: str
    size: int
    fetch_ref: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "size": self.size, "fetch_ref": self.fetch_ref}


@dataclass(frozen=True)
class DestinationEntry:
    """One file already present at the destination.

    ``ref`` is the full remote path used for deletes; ``name`` is the
    basename used for matching.
    """

    ref: str
    name: str
    size: int

    @classmethod
    def from_ref(cls, ref: str, size: int) -> "DestinationEntry":
        return cls(ref=ref, name=posixpath.basename(ref.rstrip("/")), size=size)


def derive_filename(name: Optional[str], ref: str) -> str:
    """Return the matching key for a source item.

    The reported filename wins; otherwise the last path segment of the
    download URL is used.
    """
    if name:
        return posixpath.basename(name)
    path = unquote(urlparse(ref).path)
    return posixpath.basename(path.rstrip("/"))


class RemoteError(Exception):
    """Base class for errors raised by remote adapters."""
    pass


class RateLimitError(RemoteError):
    """Raised when API rate limit is exceeded."""

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class AuthenticationError(RemoteError):
    """Raised when the remote rejects the credentials."""
    pass


class APIConnectionError(RemoteError):
    """Raised when the remote is unreachable or answers with an unexpected status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class BaseAPIClient(ABC):
    """Shared aiohttp session handling for the remote adapters."""

    def __init__(
        self,
        stats: Optional[TransferStats] = None,
        timeout: float = 60.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """Initialize the API client.

        Args:
            stats: Traffic counters shared with the reconciliation service
            timeout: Total timeout per request in seconds
            session: Optional externally owned session
        """
        self.stats = stats or TransferStats()
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.logger = get_logger(self.__class__.__name__)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        """Async context manager entry."""
        self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()

    def _raise_for_status(self, status: int, context: str, body: str = ""):
        """Map an HTTP status to the adapter exception hierarchy."""
        detail = f"{context}: status {status}"
        if body:
            detail = f"{detail}, response: {body[:200]}"

        self.stats.add_failure()
        if status in (401, 403):
            raise AuthenticationError(detail)
        if status == 429:
            raise RateLimitError(detail)
        raise APIConnectionError(detail, status=status)


class SourceClient(BaseAPIClient):
    """Where images come from."""

    @abstractmethod
    async def verify(self) -> None:
        """Check that the source is reachable and the credential is accepted."""
        pass

    @abstractmethod
    async def list_entries(self) -> List[SourceEntry]:
        """Return every image at the source, pagination fully resolved."""
        pass

    @abstractmethod
    async def fetch(self, entry: SourceEntry) -> bytes:
        """Download the content of one image."""
        pass


class DestinationClient(BaseAPIClient):
    """Where images are mirrored to."""

    @abstractmethod
    async def connect_or_verify(self, root: str) -> None:
        """Check the sync root exists, creating it when absent."""
        pass

    @abstractmethod
    async def list_entries(self, root: str) -> List[DestinationEntry]:
        """Return the files directly under ``root`` (directories excluded)."""
        pass

    @abstractmethod
    async def put(self, path: str, data: bytes, size: int) -> None:
        """Write ``data`` to ``path``, overwriting any existing file."""
        pass

    @abstractmethod
    async def delete(self, ref: str) -> None:
        """Remove the file at ``ref``."""
        pass

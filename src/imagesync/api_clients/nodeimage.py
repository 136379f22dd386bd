"""NodeImage API client implementation."""

import asyncio
import json
from typing import List, Dict, Any, Optional

import aiohttp

from .base import (
    SourceClient,
    SourceEntry,
    APIConnectionError,
    AuthenticationError,
    derive_filename
)
from ..performance import TransferStats
from ..utils.logging import log_async_execution_time


REFERER = "https://nodeimage.com/"
USER_AGENT = "nodeimage-webdav-sync"


class NodeImageClient(SourceClient):
    """NodeImage client supporting both of its credentials.

    Cookie authentication lists the whole account (full sync); API key
    authentication lists the recent uploads only (incremental sync).
    """

    def __init__(
        self,
        cookie: str = "",
        api_url: str = "https://api.nodeimage.com/api/images",
        api_key: str = "",
        api_key_url: str = "https://api.nodeimage.com/api/v1/list",
        use_api_key: bool = False,
        stats: Optional[TransferStats] = None,
        timeout: float = 60.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """Initialize NodeImage client.

        Args:
            cookie: Session cookie for the paginated image listing
            api_url: Base URL of the cookie-authenticated listing
            api_key: API key for the recent-images listing
            api_key_url: URL of the API key listing
            use_api_key: List with the API key instead of the cookie
            stats: Traffic counters
            timeout: Total timeout per request in seconds
            session: Optional externally owned session
        """
        super().__init__(stats=stats, timeout=timeout, session=session)
        self.cookie = cookie
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.api_key_url = api_key_url
        self.use_api_key = use_api_key

        self.logger.debug(
            "NodeImage client initialized",
            api_url=self.api_url,
            use_api_key=use_api_key
        )

    @log_async_execution_time
    async def verify(self) -> None:
        """Check the credential for the selected listing mode.

        The cookie is verified with a one-item listing request. The API key
        listing is a single request, so it is only checked for presence here
        and verified by the listing itself.
        """
        if self.use_api_key:
            if not self.api_key:
                raise AuthenticationError("NodeImage API key is not set")
            return

        try:
            await self._get_cookie_page(page=1, limit=1)
        except AuthenticationError as e:
            raise AuthenticationError(f"NodeImage connection test failed: {e}. Check the cookie and API URL")
        except APIConnectionError as e:
            raise APIConnectionError(
                f"NodeImage connection test failed: {e}. Check the cookie and API URL",
                status=e.status
            )

    @log_async_execution_time
    async def list_entries(self) -> List[SourceEntry]:
        """List every image using the configured credential."""
        if self.use_api_key:
            entries = await self._list_with_api_key()
        else:
            entries = await self._list_with_cookie()

        self.logger.info(
            "Completed NodeImage listing",
            images=len(entries),
            use_api_key=self.use_api_key
        )
        return entries

    async def _list_with_cookie(self) -> List[SourceEntry]:
        """Read the total count from a one-item page, then fetch everything in one page."""
        initial = await self._get_cookie_page(page=1, limit=1)
        total = int(initial.get("pagination", {}).get("totalCount", 0) or 0)
        if total == 0:
            return []

        response = await self._get_cookie_page(page=1, limit=total)
        return [self._convert_cookie_image(image) for image in response.get("images") or []]

    async def _list_with_api_key(self) -> List[SourceEntry]:
        headers = {
            "X-API-Key": self.api_key,
            "Accept": "application/json",
        }
        data = await self._get_json(self.api_key_url, headers=headers, context="NodeImage API key listing")

        if not data.get("success"):
            raise APIConnectionError("NodeImage API key listing reported failure (success: false)")

        return [self._convert_api_key_image(image) for image in data.get("images") or []]

    async def _get_cookie_page(self, page: int, limit: int) -> Dict[str, Any]:
        headers = {
            "Cookie": self.cookie,
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
            "Referer": REFERER,
        }
        params = {"page": str(page), "limit": str(limit)}
        return await self._get_json(self.api_url, headers=headers, params=params, context="NodeImage image listing")

    async def _get_json(
        self,
        url: str,
        headers: Dict[str, str],
        context: str,
        params: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """GET ``url`` and decode the JSON body; compressed bodies are decoded by aiohttp."""
        session = self._get_session()
        try:
            async with session.get(url, headers=headers, params=params) as response:
                body = await response.read()
                self.stats.add_download(len(body))
                if response.status != 200:
                    self._raise_for_status(response.status, context, body.decode("utf-8", "replace"))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.stats.add_failure()
            raise APIConnectionError(f"{context} request failed: {e}")

        try:
            data = json.loads(body)
        except ValueError as e:
            preview = body[:100].decode("utf-8", "replace")
            raise APIConnectionError(f"{context} returned invalid JSON: {e}. Body starts with: '{preview}'")

        if not isinstance(data, dict):
            raise APIConnectionError(f"{context} returned an unexpected payload")
        return data

    @log_async_execution_time
    async def fetch(self, entry: SourceEntry) -> bytes:
        """Download one image from its direct link."""
        session = self._get_session()
        try:
            async with session.get(entry.fetch_ref, headers={"Referer": REFERER}) as response:
                if response.status != 200:
                    self._raise_for_status(response.status, f"Download of {entry.name}")
                data = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.stats.add_failure()
            raise APIConnectionError(f"Download of {entry.name} failed: {e}")

        self.stats.add_download(len(data))
        return data

    @staticmethod
    def _convert_cookie_image(image: Dict[str, Any]) -> SourceEntry:
        url = image.get("url") or ""
        return SourceEntry(
            id=str(image.get("imageId") or ""),
            name=derive_filename(image.get("filename"), url),
            size=int(image.get("size") or 0),
            fetch_ref=url
        )

    @staticmethod
    def _convert_api_key_image(image: Dict[str, Any]) -> SourceEntry:
        url = (image.get("links") or {}).get("direct") or ""
        return SourceEntry(
            id=str(image.get("image_id") or ""),
            name=derive_filename(image.get("filename"), url),
            size=int(image.get("size") or 0),
            fetch_ref=url
        )

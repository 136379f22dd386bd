"""WebDAV client implementation.

Speaks the handful of WebDAV verbs the sync needs (PROPFIND, MKCOL, PUT,
DELETE) directly over aiohttp.
"""

import asyncio
import posixpath
import re
import xml.etree.ElementTree as ET
from typing import List, Optional, Tuple, Union
from urllib.parse import unquote

import aiohttp
from yarl import URL

from .base import DestinationClient, DestinationEntry, APIConnectionError
from ..performance import TransferStats
from ..utils.logging import log_async_execution_time


DAV_NS = "{DAV:}"

PROPFIND_BODY = """<?xml version="1.0"?>
<d:propfind xmlns:d="DAV:">
  <d:prop>
    <d:displayname/>
    <d:getcontentlength/>
    <d:resourcetype/>
  </d:prop>
</d:propfind>"""

LINK_NEXT_RE = re.compile(r'<(.+?)>;\s*rel="next"')


class WebDAVClient(DestinationClient):
    """WebDAV client using HTTP Basic authentication."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        stats: Optional[TransferStats] = None,
        timeout: float = 60.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """Initialize WebDAV client.

        Args:
            base_url: Server root, e.g. "https://dav.jianguoyun.com/dav"
            username: Login name
            password: Password or application password
            stats: Traffic counters
            timeout: Total timeout per request in seconds
            session: Optional externally owned session
        """
        super().__init__(stats=stats, timeout=timeout, session=session)
        self.base_url = URL(base_url.rstrip("/"))
        self.auth = aiohttp.BasicAuth(username, password)

    def _url_for(self, path: Union[str, URL]) -> URL:
        """Resolve a server path relative to the base URL; URLs pass through unchanged."""
        if isinstance(path, URL):
            return path
        if path.startswith(("http://", "https://")):
            return URL(path)
        joined = posixpath.join(self.base_url.path or "/", path.lstrip("/"))
        return self.base_url.with_path(joined)

    async def _request(
        self,
        method: str,
        path: Union[str, URL],
        data: Optional[bytes] = None,
        headers: Optional[dict] = None
    ) -> Tuple[int, bytes, str, URL]:
        """Perform one request, returning (status, body, Link header, URL)."""
        url = self._url_for(path)
        session = self._get_session()
        try:
            async with session.request(method, url, data=data, headers=headers, auth=self.auth) as response:
                body = await response.read()
                return response.status, body, response.headers.get("Link", ""), url
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.stats.add_failure()
            raise APIConnectionError(f"WebDAV {method} {path} failed: {e}")

    @log_async_execution_time
    async def connect_or_verify(self, root: str) -> None:
        """Check that ``root`` exists, creating it with MKCOL when it does not."""
        status, _, _, _ = await self._request("PROPFIND", root, headers={"Depth": "0"})

        if status == 404:
            self.logger.info("WebDAV sync folder missing, creating it", root=root)
            mkcol_status, body, _, _ = await self._request("MKCOL", root)
            if mkcol_status != 201:
                self._raise_for_status(
                    mkcol_status,
                    f"Creating WebDAV folder '{root}'",
                    body.decode("utf-8", "replace")
                )
            return

        if status not in (200, 207):
            self._raise_for_status(status, f"Checking WebDAV path '{root}'")

    @log_async_execution_time
    async def list_entries(self, root: str) -> List[DestinationEntry]:
        """List files directly under ``root``, following Link pagination."""
        entries: List[DestinationEntry] = []
        next_path: Optional[Union[str, URL]] = root

        while next_path is not None:
            status, body, link_header, url = await self._request(
                "PROPFIND",
                next_path,
                data=PROPFIND_BODY.encode("utf-8"),
                headers={"Depth": "1", "Content-Type": "application/xml"}
            )
            if status != 207:
                self._raise_for_status(
                    status,
                    f"Listing WebDAV folder '{next_path}'",
                    body.decode("utf-8", "replace")
                )
            self.stats.add_download(len(body))

            entries.extend(self._parse_multistatus(body, root, url.path))

            match = LINK_NEXT_RE.search(link_header)
            # the next link may be absolute or relative to the page just read
            next_path = url.join(URL(match.group(1))) if match else None

        self.logger.info("Completed WebDAV listing", root=root, files=len(entries))
        return entries

    def _parse_multistatus(self, body: bytes, root: str, request_path: str) -> List[DestinationEntry]:
        try:
            tree = ET.fromstring(body)
        except ET.ParseError as e:
            raise APIConnectionError(f"Could not parse WebDAV listing of '{root}': {e}")

        entries = []
        own_path = request_path.rstrip("/")
        for response in tree.iter(f"{DAV_NS}response"):
            href = unquote((response.findtext(f"{DAV_NS}href") or "").strip())
            if not href:
                continue
            # The collection itself is part of a Depth: 1 answer
            if own_path and href.rstrip("/").endswith(own_path):
                continue

            size_text = None
            is_collection = False
            for prop in response.iter(f"{DAV_NS}prop"):
                length = prop.findtext(f"{DAV_NS}getcontentlength")
                if length and length.strip():
                    size_text = length.strip()
                if prop.find(f"{DAV_NS}resourcetype/{DAV_NS}collection") is not None:
                    is_collection = True

            # Directories carry no content length
            if is_collection or size_text is None:
                continue

            try:
                size = int(size_text)
            except ValueError:
                size = 0

            name = posixpath.basename(href.rstrip("/"))
            entries.append(DestinationEntry(ref=posixpath.join(root, name), name=name, size=size))

        return entries

    @log_async_execution_time
    async def put(self, path: str, data: bytes, size: int) -> None:
        """Upload ``data`` to ``path``."""
        status, body, _, _ = await self._request("PUT", path, data=data)
        if status not in (200, 201, 204):
            self._raise_for_status(status, f"Uploading '{path}'", body.decode("utf-8", "replace"))
        self.stats.add_upload(size)

    @log_async_execution_time
    async def delete(self, ref: str) -> None:
        """Delete the file at ``ref``; a file that is already gone counts as deleted."""
        status, body, _, _ = await self._request("DELETE", ref)
        if status == 404:
            self.logger.debug("WebDAV file already gone", ref=ref)
        elif status not in (200, 204):
            self._raise_for_status(status, f"Deleting '{ref}'", body.decode("utf-8", "replace"))
        self.stats.add_delete()

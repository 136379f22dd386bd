"""Tests for the NodeImage client against a local aiohttp server."""

from typing import Any, Dict, List

import pytest
from aiohttp import web
from aiohttp import test_utils

from imagesync.api_clients import (
    NodeImageClient,
    SourceEntry,
    APIConnectionError,
    AuthenticationError,
    RateLimitError,
    derive_filename
)
from imagesync.performance import TransferStats


COOKIE = "session=abc"
API_KEY = "key-123"


class FakeNodeImage:
    """Cookie listing, API key listing and direct image links."""

    def __init__(self, images: List[Dict[str, Any]]):
        self.images = images
        self.api_key_success = True
        self.listing_status = 200
        self.listing_body = None
        self.requests: List[Dict[str, Any]] = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/images", self.cookie_listing)
        app.router.add_get("/api/v1/list", self.api_key_listing)
        app.router.add_get("/i/{name}", self.image)
        return app

    def record(self, request: web.Request):
        self.requests.append({"path": request.path, "query": dict(request.query), "headers": dict(request.headers)})

    async def cookie_listing(self, request: web.Request) -> web.Response:
        self.record(request)
        if request.headers.get("Cookie") != COOKIE:
            return web.Response(status=401, text="login required")
        if self.listing_status != 200:
            return web.Response(status=self.listing_status)
        if self.listing_body is not None:
            return web.Response(text=self.listing_body, content_type="text/html")

        limit = int(request.query["limit"])
        return web.json_response({
            "images": [
                {"imageId": img["id"], "filename": img["filename"], "size": img["size"], "url": img["url"]}
                for img in self.images[:limit]
            ],
            "pagination": {"totalCount": len(self.images), "page": 1, "limit": limit}
        })

    async def api_key_listing(self, request: web.Request) -> web.Response:
        self.record(request)
        if request.headers.get("X-API-Key") != API_KEY:
            return web.Response(status=403)
        if not self.api_key_success:
            return web.json_response({"success": False, "images": []})
        return web.json_response({
            "success": True,
            "images": [
                {
                    "image_id": img["id"],
                    "filename": img["filename"],
                    "size": img["size"],
                    "uploaded_at": "2024-05-01T10:00:00Z",
                    "links": {"direct": img["url"]}
                }
                for img in self.images
            ]
        })

    async def image(self, request: web.Request) -> web.Response:
        self.record(request)
        name = request.match_info["name"]
        if name == "throttled.jpg":
            return web.Response(status=429)
        for img in self.images:
            if img["url"].endswith(f"/i/{name}"):
                return web.Response(body=b"x" * img["size"], content_type="image/jpeg")
        return web.Response(status=404)


@pytest.fixture
def catalog():
    return [
        {"id": "1", "filename": "a.jpg", "size": 100, "url": ""},
        {"id": "2", "filename": "b.png", "size": 200, "url": ""},
        {"id": "3", "filename": "", "size": 300, "url": ""},
    ]


@pytest.mark.integration
class TestNodeImageClient:
    """Listing in both credential modes, verification and downloads."""

    @staticmethod
    def serve(catalog, server_url: str):
        for img in catalog:
            img["url"] = f"{server_url}/i/{img['filename'] or 'c%20d.webp'}"

    @staticmethod
    def client_for(server: test_utils.TestServer, use_api_key: bool = False, **kwargs) -> NodeImageClient:
        options = {
            "cookie": COOKIE,
            "api_key": API_KEY,
            "api_url": str(server.make_url("/api/images")),
            "api_key_url": str(server.make_url("/api/v1/list")),
            "use_api_key": use_api_key,
        }
        options.update(kwargs)
        return NodeImageClient(**options)

    @pytest.mark.asyncio
    async def test_cookie_listing_fetches_everything_in_one_page(self, catalog):
        nodeimage = FakeNodeImage(catalog)

        async with test_utils.TestServer(nodeimage.app()) as server:
            self.serve(catalog, str(server.make_url("/")).rstrip("/"))
            async with self.client_for(server) as client:
                entries = await client.list_entries()

        assert [entry.name for entry in entries] == ["a.jpg", "b.png", "c d.webp"]
        assert [entry.size for entry in entries] == [100, 200, 300]
        assert [r["query"]["limit"] for r in nodeimage.requests] == ["1", "3"]

        headers = nodeimage.requests[0]["headers"]
        assert headers["User-Agent"] == "nodeimage-webdav-sync"
        assert headers["Referer"] == "https://nodeimage.com/"
        assert headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_empty_account(self):
        nodeimage = FakeNodeImage([])

        async with test_utils.TestServer(nodeimage.app()) as server:
            async with self.client_for(server) as client:
                entries = await client.list_entries()

        assert entries == []
        assert len(nodeimage.requests) == 1

    @pytest.mark.asyncio
    async def test_api_key_listing(self, catalog):
        nodeimage = FakeNodeImage(catalog)

        async with test_utils.TestServer(nodeimage.app()) as server:
            self.serve(catalog, str(server.make_url("/")).rstrip("/"))
            async with self.client_for(server, use_api_key=True) as client:
                entries = await client.list_entries()

        assert entries[0] == SourceEntry(id="1", name="a.jpg", size=100, fetch_ref=catalog[0]["url"])
        assert entries[2].name == "c d.webp"
        assert nodeimage.requests[0]["path"] == "/api/v1/list"
        assert "Cookie" not in nodeimage.requests[0]["headers"]

    @pytest.mark.asyncio
    async def test_api_key_listing_reports_failure(self, catalog):
        nodeimage = FakeNodeImage(catalog)
        nodeimage.api_key_success = False

        async with test_utils.TestServer(nodeimage.app()) as server:
            async with self.client_for(server, use_api_key=True) as client:
                with pytest.raises(APIConnectionError, match="success: false"):
                    await client.list_entries()

    @pytest.mark.asyncio
    async def test_verify_with_valid_cookie(self, catalog):
        nodeimage = FakeNodeImage(catalog)

        async with test_utils.TestServer(nodeimage.app()) as server:
            async with self.client_for(server) as client:
                await client.verify()

        assert nodeimage.requests[0]["query"] == {"page": "1", "limit": "1"}

    @pytest.mark.asyncio
    async def test_verify_with_expired_cookie(self, catalog):
        nodeimage = FakeNodeImage(catalog)

        async with test_utils.TestServer(nodeimage.app()) as server:
            async with self.client_for(server, cookie="session=expired") as client:
                with pytest.raises(AuthenticationError, match="connection test failed"):
                    await client.verify()

    @pytest.mark.asyncio
    async def test_verify_api_key_mode_makes_no_request(self, catalog):
        nodeimage = FakeNodeImage(catalog)

        async with test_utils.TestServer(nodeimage.app()) as server:
            async with self.client_for(server, use_api_key=True) as client:
                await client.verify()
            async with self.client_for(server, use_api_key=True, api_key="") as client:
                with pytest.raises(AuthenticationError):
                    await client.verify()

        assert nodeimage.requests == []

    @pytest.mark.asyncio
    async def test_non_json_listing(self, catalog):
        nodeimage = FakeNodeImage(catalog)
        nodeimage.listing_body = "<html>Cloudflare</html>"

        async with test_utils.TestServer(nodeimage.app()) as server:
            async with self.client_for(server) as client:
                with pytest.raises(APIConnectionError, match="invalid JSON"):
                    await client.list_entries()

    @pytest.mark.asyncio
    async def test_server_error_status(self, catalog):
        nodeimage = FakeNodeImage(catalog)
        nodeimage.listing_status = 502

        async with test_utils.TestServer(nodeimage.app()) as server:
            async with self.client_for(server) as client:
                with pytest.raises(APIConnectionError) as exc_info:
                    await client.list_entries()

        assert exc_info.value.status == 502

    @pytest.mark.asyncio
    async def test_fetch_downloads_with_referer(self, catalog):
        nodeimage = FakeNodeImage(catalog)
        stats = TransferStats()

        async with test_utils.TestServer(nodeimage.app()) as server:
            self.serve(catalog, str(server.make_url("/")).rstrip("/"))
            async with self.client_for(server, stats=stats) as client:
                entry = SourceEntry(id="2", name="b.png", size=200, fetch_ref=catalog[1]["url"])
                data = await client.fetch(entry)

        assert data == b"x" * 200
        assert nodeimage.requests[-1]["headers"]["Referer"] == "https://nodeimage.com/"
        assert stats.snapshot().download_bytes == 200

    @pytest.mark.asyncio
    async def test_fetch_missing_image(self, catalog):
        nodeimage = FakeNodeImage(catalog)

        async with test_utils.TestServer(nodeimage.app()) as server:
            async with self.client_for(server) as client:
                entry = SourceEntry(id="9", name="gone.jpg", size=1, fetch_ref=str(server.make_url("/i/gone.jpg")))
                with pytest.raises(APIConnectionError):
                    await client.fetch(entry)

    @pytest.mark.asyncio
    async def test_fetch_rate_limited(self, catalog):
        nodeimage = FakeNodeImage(catalog)

        async with test_utils.TestServer(nodeimage.app()) as server:
            async with self.client_for(server) as client:
                entry = SourceEntry(id="9", name="throttled.jpg", size=1, fetch_ref=str(server.make_url("/i/throttled.jpg")))
                with pytest.raises(RateLimitError):
                    await client.fetch(entry)


class TestFilenameDerivation:

    def test_reported_filename_wins(self):
        assert derive_filename("photo.jpg", "https://cdn.example.com/i/abc.jpg") == "photo.jpg"

    def test_url_basename_is_the_fallback(self):
        assert derive_filename("", "https://cdn.example.com/i/2024/c%20d.webp?x=1") == "c d.webp"

    def test_directory_part_of_filename_is_dropped(self):
        assert derive_filename("2024/05/a.jpg", "") == "a.jpg"

"""Tests for the web front end."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from aiohttp import test_utils

from imagesync.core import Message, MESSAGE_LOG, MESSAGE_RESULT, MESSAGE_STATUS
from imagesync.main import ImageSyncApp

from fakes import FakeSource, FakeDestination, image


@pytest.fixture
def make_app(make_service):
    def _make(source: FakeSource, destination: FakeDestination) -> ImageSyncApp:
        return ImageSyncApp(service=make_service(source, destination))
    return _make


def client_for(app: ImageSyncApp) -> test_utils.TestClient:
    return test_utils.TestClient(test_utils.TestServer(app.create_web_app()))


class TestSyncEndpoint:

    @pytest.mark.asyncio
    async def test_sync_is_accepted(self, make_app):
        destination = FakeDestination()
        app = make_app(FakeSource([image("a.jpg")]), destination)

        async with client_for(app) as client:
            response = await client.post("/api/sync?mode=full")
            body = await response.json()
            await app.service.wait_background()

        assert response.status == 202
        assert body == {"status": "accepted", "mode": "full"}
        assert destination.puts == ["/images/a.jpg"]

    @pytest.mark.asyncio
    async def test_default_mode_is_incremental(self, make_app):
        app = make_app(FakeSource(), FakeDestination())

        async with client_for(app) as client:
            response = await client.post("/api/sync")
            body = await response.json()
            await app.service.wait_background()

        assert body["mode"] == "incremental"

    @pytest.mark.asyncio
    async def test_sync_while_running_conflicts(self, make_app):
        app = make_app(FakeSource([image("a.jpg")], delay=0.2), FakeDestination())

        async with client_for(app) as client:
            first = await client.post("/api/sync?mode=full")
            second = await client.post("/api/sync?mode=incremental")
            body = await second.json()
            await app.service.wait_background()

        assert first.status == 202
        assert second.status == 409
        assert body == {"status": "rejected", "reason": "already_running"}

    @pytest.mark.asyncio
    async def test_unknown_mode(self, make_app):
        app = make_app(FakeSource(), FakeDestination())

        async with client_for(app) as client:
            response = await client.post("/api/sync?mode=everything")

        assert response.status == 400
        assert not app.service.is_running


class TestConfigEndpoint:

    @pytest.mark.asyncio
    async def test_cookie_state_round_trip(self, make_app):
        app = make_app(FakeSource(), FakeDestination())

        async with client_for(app) as client:
            before = await (await client.get("/api/config")).json()
            update = await client.post("/api/config", json={"cookie": ""})
            after = await (await client.get("/api/config")).json()

        assert before == {"isCookieSet": True}
        assert update.status == 200
        assert after == {"isCookieSet": False}

    @pytest.mark.asyncio
    async def test_cookie_value_is_used_by_next_run(self, make_app):
        app = make_app(FakeSource(), FakeDestination())

        async with client_for(app) as client:
            await client.post("/api/config", json={"cookie": "session=new"})

        assert app.service.config_manager.snapshot().nodeimage_cookie == "session=new"

    @pytest.mark.asyncio
    async def test_invalid_body(self, make_app):
        app = make_app(FakeSource(), FakeDestination())

        async with client_for(app) as client:
            not_json = await client.post("/api/config", data="{cookie", headers={"Content-Type": "application/json"})
            wrong_type = await client.post("/api/config", json={"cookie": 42})

        assert not_json.status == 400
        assert wrong_type.status == 400
        assert app.service.config_manager.is_cookie_set()


class TestStatusEndpoints:

    @pytest.mark.asyncio
    async def test_status_before_any_run(self, make_app):
        app = make_app(FakeSource(), FakeDestination())

        async with client_for(app) as client:
            body = await (await client.get("/api/status")).json()

        assert body["state"] == "idle"
        assert body["running"] is False
        assert body["last_result"] is None
        assert body["stats"]["uploads"] == 0
        assert body["next_scheduled_run"] is None

    @pytest.mark.asyncio
    async def test_status_after_run(self, make_app):
        app = make_app(FakeSource([image("a.jpg")]), FakeDestination())
        await app.service.run("full")

        async with client_for(app) as client:
            body = await (await client.get("/api/status")).json()

        assert body["last_result"]["uploaded"] == 1
        assert body["last_result"]["success"] is True

    @pytest.mark.asyncio
    async def test_health(self, make_app):
        app = make_app(FakeSource(), FakeDestination())

        async with client_for(app) as client:
            response = await client.get("/health")
            body = await response.json()

        assert response.status == 200
        assert body["status"] == "healthy"


class TestWebSocket:

    @pytest.mark.asyncio
    async def test_progress_is_streamed(self, make_app):
        app = make_app(FakeSource([image("a.jpg")]), FakeDestination())

        async with client_for(app) as client:
            ws = await client.ws_connect("/ws")
            greeting = await asyncio.wait_for(ws.receive_json(), 2)

            await client.post("/api/sync?mode=full")
            received = []
            while not received or received[-1]["type"] != MESSAGE_RESULT:
                received.append(await asyncio.wait_for(ws.receive_json(), 2))

            await ws.close()
            await app.service.wait_background()

        assert greeting == {"type": MESSAGE_STATUS, "content": "idle"}
        assert {"type": MESSAGE_STATUS, "content": "syncing"} in received
        assert any(m["type"] == "log" and "a.jpg" in m["content"] for m in received)

    @pytest.mark.asyncio
    async def test_forwarding_stops_when_socket_resets(self, make_app):
        app = make_app(FakeSource(), FakeDestination())
        queue = asyncio.Queue()
        queue.put_nowait(Message(type=MESSAGE_LOG, content="first"))
        queue.put_nowait(Message(type=MESSAGE_LOG, content="second"))
        ws = Mock(closed=False)
        ws.send_str = AsyncMock(side_effect=ConnectionResetError("Cannot write to closing transport"))

        await asyncio.wait_for(app._forward_messages(queue, ws), 1)

        ws.send_str.assert_awaited_once()
        assert queue.qsize() == 1

    @pytest.mark.asyncio
    async def test_subscription_ends_with_the_socket(self, make_app):
        app = make_app(FakeSource(), FakeDestination())

        async with client_for(app) as client:
            ws = await client.ws_connect("/ws")
            await asyncio.wait_for(ws.receive_json(), 2)
            await ws.close()
            for _ in range(40):
                if app.service.hub.subscriber_count == 0:
                    break
                await asyncio.sleep(0.05)

        assert app.service.hub.subscriber_count == 0

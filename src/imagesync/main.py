"""Main application entry point."""

import asyncio
import json
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from aiohttp import web, web_runner, WSMsgType
from dotenv import load_dotenv

from .config import ConfigManager, ConfigurationError, SyncMode, get_settings
from .core import EventHub, Message, ReconciliationService, MESSAGE_STATUS
from .scheduler import SyncScheduler
from .utils.logging import setup_logging, get_logger


class ImageSyncApp:
    """Web front end around the reconciliation service."""

    def __init__(self, service: Optional[ReconciliationService] = None):
        """Initialize the application.

        Args:
            service: Service to expose; built from settings when None
        """
        self.settings = get_settings()
        self.logger = get_logger("ImageSync")
        self.running = False
        self.started_at: Optional[datetime] = None
        self.web_app: Optional[web.Application] = None
        self.web_runner: Optional[web_runner.AppRunner] = None

        if service is None:
            service = ReconciliationService(config_manager=ConfigManager(), hub=EventHub())
        self.service = service
        self.scheduler = SyncScheduler(self.service, self.settings.sync.interval)

    async def startup(self):
        """Application startup."""
        self.logger.info("Starting imagesync", version=self.settings.version)

        # fail fast on a malformed config file; missing credentials are reported per run
        self.service.config_manager.load_config()

        await self._setup_web_server()
        self.scheduler.start()

        self.running = True
        self.started_at = datetime.now(timezone.utc)
        self.logger.info("imagesync started successfully")

    async def shutdown(self):
        """Application shutdown."""
        self.logger.info("Shutting down imagesync")
        self.running = False

        self.scheduler.stop()
        if self.service.cancel():
            await self.service.wait_background()

        await self._stop_web_server()
        self.logger.info("imagesync stopped")

    async def run(self):
        """Run until a shutdown signal arrives."""
        await self.startup()

        try:
            while self.running:
                await asyncio.sleep(1)
        except KeyboardInterrupt:
            self.logger.info("Received shutdown signal")
        finally:
            await self.shutdown()

    def create_web_app(self) -> web.Application:
        """Build the aiohttp application with all routes registered."""
        app = web.Application()
        app.router.add_post('/api/sync', self._sync_handler)
        app.router.add_get('/api/config', self._get_config_handler)
        app.router.add_post('/api/config', self._update_config_handler)
        app.router.add_get('/api/status', self._status_handler)
        app.router.add_get('/health', self._health_handler)
        app.router.add_get('/ws', self._websocket_handler)

        static_dir = Path(self.settings.server.static_dir)
        if static_dir.is_dir():
            index = static_dir / "index.html"
            if index.is_file():
                app.router.add_get('/', lambda request: web.FileResponse(index))
            app.router.add_static('/', static_dir)
        else:
            self.logger.debug("Static directory not found, serving API only", static_dir=str(static_dir))

        return app

    async def _setup_web_server(self):
        self.web_app = self.create_web_app()
        self.web_runner = web_runner.AppRunner(self.web_app)
        await self.web_runner.setup()

        host = self.settings.server.host
        port = self.settings.server.port
        site = web_runner.TCPSite(self.web_runner, host, port)
        await site.start()

        self.logger.info(f"Web server started on http://{host}:{port}")

    async def _stop_web_server(self):
        if self.web_runner:
            await self.web_runner.cleanup()
            self.logger.info("Web server stopped")

    async def _sync_handler(self, request: web.Request) -> web.Response:
        """Start a sync in the background.

        ``mode`` is ``full`` or ``incremental`` (default).
        """
        raw_mode = request.query.get("mode", SyncMode.INCREMENTAL.value)
        try:
            mode = SyncMode(raw_mode)
        except ValueError:
            return web.json_response({"error": f"Unknown sync mode: {raw_mode}"}, status=400)

        response = await self.service.trigger_run(mode)
        if not response.accepted:
            return web.json_response(
                {"status": response.status, "reason": response.reason},
                status=409
            )
        return web.json_response({"status": response.status, "mode": mode.value}, status=202)

    async def _get_config_handler(self, request: web.Request) -> web.Response:
        # only whether the cookie is set, never its value
        return web.json_response({"isCookieSet": self.service.config_manager.is_cookie_set()})

    async def _update_config_handler(self, request: web.Request) -> web.Response:
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid request body"}, status=400)

        if not isinstance(payload, dict) or not isinstance(payload.get("cookie"), str):
            return web.json_response({"error": "Field 'cookie' must be a string"}, status=400)

        self.service.config_manager.update_cookie(payload["cookie"])
        return web.json_response({"isCookieSet": self.service.config_manager.is_cookie_set()})

    async def _status_handler(self, request: web.Request) -> web.Response:
        last_result = self.service.last_result
        next_run = self.scheduler.next_run_time()
        return web.json_response({
            "state": self.service.state.value,
            "running": self.service.is_running,
            "last_result": last_result.to_dict() if last_result else None,
            "stats": self.service.stats_snapshot().to_dict(),
            "next_scheduled_run": next_run.isoformat() if next_run else None,
        })

    async def _health_handler(self, request: web.Request) -> web.Response:
        uptime = 0.0
        if self.started_at:
            uptime = (datetime.now(timezone.utc) - self.started_at).total_seconds()
        return web.json_response({
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": self.settings.version,
            "uptime_seconds": uptime
        })

    async def _websocket_handler(self, request: web.Request) -> web.WebSocketResponse:
        """Stream hub messages to one browser until it disconnects."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        hub = self.service.hub
        queue = hub.subscribe()
        await ws.send_str(Message(type=MESSAGE_STATUS, content=self._status_word()).to_json())
        forwarder = asyncio.create_task(self._forward_messages(queue, ws))

        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    self.logger.warning("WebSocket closed with error", error=str(ws.exception()))
                    break
        finally:
            forwarder.cancel()
            await asyncio.gather(forwarder, return_exceptions=True)
            hub.unsubscribe(queue)

        return ws

    async def _forward_messages(self, queue: asyncio.Queue, ws: web.WebSocketResponse):
        while not ws.closed:
            message = await queue.get()
            try:
                await ws.send_str(message.to_json())
            except ConnectionResetError as e:
                self.logger.debug("WebSocket went away while sending", error=str(e))
                return

    def _status_word(self) -> str:
        return "syncing" if self.service.is_running else "idle"


def setup_signal_handlers(app: ImageSyncApp):
    """Set up signal handlers for graceful shutdown."""
    def signal_handler(signum, frame):
        app.logger.info(f"Received signal {signum}")
        app.running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def main():
    """Main entry point."""
    load_dotenv()
    setup_logging()

    logger = get_logger("main")
    logger.info("Initializing imagesync application")

    app = ImageSyncApp()
    setup_signal_handlers(app)
    await app.run()


def run():
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()

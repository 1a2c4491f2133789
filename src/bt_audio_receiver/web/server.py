"""aiohttp web server for the local control API."""

import logging
from typing import TYPE_CHECKING

from aiohttp import web

from .api import create_api_routes

if TYPE_CHECKING:
    from ..manager import ReceiverManager
    from .log_handler import LogStreamHandler

logger = logging.getLogger(__name__)

HOST = "127.0.0.1"


@web.middleware
async def _no_cache(request: web.Request, handler):
    """API responses reflect live state; never cache them."""
    response = await handler(request)
    response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    return response


class WebServer:
    """Local HTTP server exposing the REST API and event WebSocket."""

    def __init__(
        self,
        manager: "ReceiverManager",
        log_handler: "LogStreamHandler | None" = None,
        host: str = HOST,
        port: int | None = None,
    ):
        self._manager = manager
        self._host = host
        self._port = port if port is not None else manager.config.api_port
        self._app = web.Application(middlewares=[_no_cache])
        self._runner: web.AppRunner | None = None

        self._app.router.add_routes(create_api_routes(manager, log_handler))

    @property
    def app(self) -> web.Application:
        return self._app

    async def start(self) -> None:
        """Start the web server."""
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        logger.info("Web server listening on %s:%d", self._host, self._port)

    async def stop(self) -> None:
        """Stop the web server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        logger.info("Web server stopped")

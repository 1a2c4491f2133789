"""REST API endpoints for the Bluetooth Audio Receiver."""

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web
from aiohttp.web import WebSocketResponse

from .. import events
from ..models import Device

if TYPE_CHECKING:
    from ..manager import ReceiverManager
    from .log_handler import LogStreamHandler

logger = logging.getLogger(__name__)


# Field name used for scalar payloads, per event kind
_SCALAR_FIELDS = {
    events.DEVICE_REMOVED: "device_id",
    events.CONNECTION_STATE_CHANGED: "connected",
    events.STREAMING_STATE_CHANGED: "state",
    events.ERROR: "message",
}


def _event_fields(event: str, data: Any) -> dict:
    """Flatten an EventBus payload into JSON message fields."""
    if data is None:
        return {}
    if isinstance(data, Device):
        return {"device": data.to_dict()}
    if isinstance(data, dict):
        return data
    return {_SCALAR_FIELDS.get(event, "value"): data}


async def _ws_sender(
    ws: WebSocketResponse, queue: asyncio.Queue,
) -> None:
    """Forward EventBus events to a WebSocket client."""
    try:
        while not ws.closed:
            msg = await queue.get()
            await ws.send_json({"type": msg["event"], **_event_fields(msg["event"], msg["data"])})
    except (ConnectionResetError, ConnectionError, asyncio.CancelledError):
        pass


async def _read_json(request: web.Request) -> tuple[dict | None, web.Response | None]:
    """Parse a JSON object body.

    Returns (body, None) on success or (None, error_response) on failure.
    """
    try:
        body = await request.json() if request.body_exists else {}
    except ValueError:
        return None, web.json_response({"error": "Invalid JSON"}, status=400)
    if not isinstance(body, dict):
        return None, web.json_response({"error": "Expected a JSON object"}, status=400)
    return body, None


def create_api_routes(
    manager: "ReceiverManager",
    log_handler: "LogStreamHandler | None" = None,
) -> list[web.RouteDef]:
    """Create all API route definitions."""
    routes = web.RouteTableDef()

    @routes.get("/api/health")
    async def health(request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    @routes.get("/api/devices")
    async def list_devices(request: web.Request) -> web.Response:
        """List audio source devices currently known to the watcher."""
        devices = [d.to_dict() for d in manager.list_devices()]
        return web.json_response({"devices": devices})

    @routes.post("/api/watch/start")
    async def watch_start(request: web.Request) -> web.Response:
        watching = await manager.start_watching()
        return web.json_response({"watching": watching})

    @routes.post("/api/watch/stop")
    async def watch_stop(request: web.Request) -> web.Response:
        await manager.stop_watching()
        return web.json_response({"watching": False})

    @routes.post("/api/refresh")
    async def refresh(request: web.Request) -> web.Response:
        """Restart discovery; devices reappear via WebSocket events."""
        watching = await manager.refresh_devices()
        return web.json_response({"watching": watching})

    @routes.post("/api/connect")
    async def connect(request: web.Request) -> web.Response:
        """Open the audio connection to a device.

        Blocks until the attempts finish; 409 carries the error message.
        """
        body, err = await _read_json(request)
        if err:
            return err
        device_id = body.get("device_id")
        if not device_id or not isinstance(device_id, str):
            return web.json_response({"error": "device_id is required"}, status=400)
        if device_id not in manager.registry:
            return web.json_response({"error": f"Device {device_id} not found"}, status=404)

        connected = await manager.open_connection(device_id)
        if not connected:
            return web.json_response(
                {"connected": False, "device_id": device_id,
                 "error": manager.status["error"]},
                status=409,
            )
        return web.json_response({"connected": True, "device_id": device_id})

    @routes.post("/api/disconnect")
    async def disconnect(request: web.Request) -> web.Response:
        await manager.close_connection()
        return web.json_response({"connected": False})

    @routes.get("/api/status")
    async def status(request: web.Request) -> web.Response:
        return web.json_response(manager.status)

    @routes.get("/api/settings")
    async def get_settings(request: web.Request) -> web.Response:
        return web.json_response(manager.config.settings)

    @routes.post("/api/settings")
    async def update_settings(request: web.Request) -> web.Response:
        """Apply and persist user settings; unknown or invalid keys are ignored."""
        body, err = await _read_json(request)
        if err:
            return err
        settings = manager.update_settings(body)
        logger.info("Settings updated: %s", sorted(body))
        return web.json_response(settings)

    @routes.get("/api/volume")
    async def get_volume(request: web.Request) -> web.Response:
        return web.json_response({
            "volume": await manager.get_volume(),
            "muted": await manager.is_muted(),
        })

    @routes.post("/api/volume")
    async def set_volume(request: web.Request) -> web.Response:
        body, err = await _read_json(request)
        if err:
            return err
        volume = body.get("volume")
        muted = body.get("muted")
        if volume is not None and (isinstance(volume, bool) or not isinstance(volume, (int, float))):
            return web.json_response({"error": "volume must be a number"}, status=400)
        if muted is not None and not isinstance(muted, bool):
            return web.json_response({"error": "muted must be a boolean"}, status=400)

        if volume is not None:
            await manager.set_volume(volume)
        if muted is not None:
            await manager.set_muted(muted)
        return web.json_response({
            "volume": await manager.get_volume(),
            "muted": await manager.is_muted(),
        })

    @routes.get("/api/logs")
    async def get_logs(request: web.Request) -> web.Response:
        """Return recent application log entries, optionally ``?level=WARNING``."""
        min_level = logging.getLevelName(request.query.get("level", "NOTSET").upper())
        if not isinstance(min_level, int):
            return web.json_response({"error": "Unknown log level"}, status=400)
        if log_handler is None:
            return web.json_response({"logs": []})
        return web.json_response({"logs": log_handler.recent(min_level)})

    @routes.get("/api/ws")
    async def websocket_handler(request: web.Request) -> WebSocketResponse:
        """WebSocket endpoint for real-time updates."""
        ws = WebSocketResponse(heartbeat=30)
        await ws.prepare(request)
        logger.info("WS client connected from %s", request.remote)

        bus = manager.event_bus
        sender: asyncio.Task | None = None
        queue: asyncio.Queue | None = None
        try:
            # Initial state first, then history, then live events
            await ws.send_json({
                "type": "devices",
                "devices": [d.to_dict() for d in manager.list_devices()],
            })
            await ws.send_json({"type": events.STATUS, **manager.status})

            if log_handler:
                for entry in log_handler.recent():
                    await ws.send_json({"type": events.LOG_ENTRY, **entry})

            queue = bus.subscribe()
            sender = asyncio.create_task(_ws_sender(ws, queue))

            # Block until client disconnects
            async for _msg in ws:
                pass
        except (ConnectionResetError, ConnectionError) as e:
            logger.info("WS stream closed: %s", type(e).__name__)
        except Exception as e:
            logger.warning("WS unexpected error: %s: %s", type(e).__name__, e)
        finally:
            if sender is not None:
                sender.cancel()
                try:
                    await sender
                except asyncio.CancelledError:
                    pass
            if queue is not None:
                bus.unsubscribe(queue)
            logger.info("WS client disconnected")
        return ws

    return routes

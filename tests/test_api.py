"""Tests for the REST API routes using aiohttp's test client."""

import asyncio
import logging

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from bt_audio_receiver import events
from bt_audio_receiver.config import AppConfig
from bt_audio_receiver.manager import ReceiverManager
from bt_audio_receiver.orchestrator import ConnectionOrchestrator
from bt_audio_receiver.platform import CONNECTED_PROPERTY, DeviceInfo
from bt_audio_receiver.web.log_handler import LogStreamHandler
from bt_audio_receiver.web.server import WebServer

from conftest import FakeFeed, FakePlatform, FakeVolume

PHONE = DeviceInfo(id="/org/bluez/hci0/dev_AA", name="Phone", properties={CONNECTED_PROPERTY: True})


@pytest.fixture
def platform():
    return FakePlatform()


@pytest_asyncio.fixture
async def manager(tmp_path, platform):
    config = AppConfig(settings_path=str(tmp_path / "settings.json"))
    manager = ReceiverManager(
        config, feed=FakeFeed(initial=[PHONE]), platform=platform, volume=FakeVolume(),
    )
    manager.orchestrator = ConnectionOrchestrator(
        platform, manager.event_bus, manager.localizer, retry_delay=0.01, state_timeout=0.05,
    )
    await manager.start()
    yield manager
    await manager.shutdown()


@pytest.fixture
def log_handler(manager):
    return LogStreamHandler(manager.event_bus)


@pytest_asyncio.fixture
async def client(manager, log_handler):
    server = WebServer(manager, log_handler=log_handler)
    async with TestClient(TestServer(server.app)) as client:
        yield client


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.status == 200
    assert await resp.json() == {"status": "ok"}
    assert "no-store" in resp.headers["Cache-Control"]


@pytest.mark.asyncio
async def test_list_devices(client):
    resp = await client.get("/api/devices")
    data = await resp.json()
    assert data["devices"] == [{
        "id": PHONE.id,
        "name": "Phone",
        "is_connected": True,
        "is_audio_streaming": False,
        "display_status": "Connected",
    }]


@pytest.mark.asyncio
async def test_connect_and_disconnect(client, manager):
    resp = await client.post("/api/connect", json={"device_id": PHONE.id})
    assert resp.status == 200
    assert await resp.json() == {"connected": True, "device_id": PHONE.id}
    assert manager.is_connected

    status = await (await client.get("/api/status")).json()
    assert status["status"] == "Streaming"

    resp = await client.post("/api/disconnect")
    assert (await resp.json()) == {"connected": False}
    assert not manager.is_connected


@pytest.mark.asyncio
async def test_connect_validation(client):
    resp = await client.post("/api/connect", json={})
    assert resp.status == 400

    resp = await client.post("/api/connect", data="{broken", headers={"Content-Type": "application/json"})
    assert resp.status == 400

    resp = await client.post("/api/connect", json={"device_id": "/org/bluez/hci0/dev_FF"})
    assert resp.status == 404


@pytest.mark.asyncio
async def test_connect_failure_is_conflict(client, platform):
    platform.factory = lambda device_id: None
    resp = await client.post("/api/connect", json={"device_id": PHONE.id})
    assert resp.status == 409
    data = await resp.json()
    assert data["connected"] is False
    assert "A2DP" in data["error"]


@pytest.mark.asyncio
async def test_watch_stop_and_start(client):
    resp = await client.post("/api/watch/stop")
    assert (await resp.json()) == {"watching": False}
    assert (await (await client.get("/api/devices")).json())["devices"] == []

    resp = await client.post("/api/watch/start")
    assert (await resp.json()) == {"watching": True}
    assert len((await (await client.get("/api/devices")).json())["devices"]) == 1


@pytest.mark.asyncio
async def test_refresh(client):
    resp = await client.post("/api/refresh")
    assert (await resp.json()) == {"watching": True}


@pytest.mark.asyncio
async def test_settings_roundtrip(client, manager):
    resp = await client.post("/api/settings", json={"language": "fr", "volume": "loud"})
    data = await resp.json()
    assert data["language"] == "fr"
    assert data["volume"] == 100
    assert manager.localizer.language == "fr"

    data = await (await client.get("/api/settings")).json()
    assert data["language"] == "fr"

    resp = await client.post("/api/settings", json=[1, 2])
    assert resp.status == 400


@pytest.mark.asyncio
async def test_volume(client):
    resp = await client.post("/api/volume", json={"volume": 35, "muted": True})
    assert await resp.json() == {"volume": 35, "muted": True}
    assert await (await client.get("/api/volume")).json() == {"volume": 35, "muted": True}

    resp = await client.post("/api/volume", json={"volume": "up"})
    assert resp.status == 400
    resp = await client.post("/api/volume", json={"muted": "yes"})
    assert resp.status == 400


@pytest.mark.asyncio
async def test_logs_endpoint(client, log_handler):
    log_handler.setFormatter(logging.Formatter("%(message)s"))
    log_handler.handle(logging.LogRecord("test", logging.INFO, __file__, 1, "hello", None, None))
    data = await (await client.get("/api/logs")).json()
    assert data["logs"][-1]["message"] == "hello"


@pytest.mark.asyncio
async def test_logs_endpoint_level_filter(client, log_handler):
    log_handler.setFormatter(logging.Formatter("%(message)s"))
    log_handler.handle(logging.LogRecord("test", logging.INFO, __file__, 1, "fine", None, None))
    log_handler.handle(logging.LogRecord("test", logging.ERROR, __file__, 1, "broken", None, None))

    data = await (await client.get("/api/logs", params={"level": "error"})).json()
    assert [e["message"] for e in data["logs"]] == ["broken"]

    resp = await client.get("/api/logs", params={"level": "loud"})
    assert resp.status == 400


@pytest.mark.asyncio
async def test_websocket_replays_then_streams(client, manager, log_handler):
    log_handler.handle(logging.LogRecord("test", logging.INFO, __file__, 1, "earlier", None, None))

    async with client.ws_connect("/api/ws") as ws:
        first = await ws.receive_json(timeout=1)
        assert first["type"] == "devices"
        assert first["devices"][0]["id"] == PHONE.id
        status = await ws.receive_json(timeout=1)
        assert status["type"] == events.STATUS
        replay = await ws.receive_json(timeout=1)
        assert replay["type"] == events.LOG_ENTRY
        assert replay["message"].endswith("earlier")

        # Live events flow once the handler has subscribed
        while manager.event_bus.client_count == 0:
            await asyncio.sleep(0.01)
        manager.event_bus.emit(events.DEVICE_REMOVED, PHONE.id)
        msg = await ws.receive_json(timeout=1)
        while msg["type"] != events.DEVICE_REMOVED:
            msg = await ws.receive_json(timeout=1)
        assert msg["device_id"] == PHONE.id

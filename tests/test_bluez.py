"""Tests for the BlueZ device feed and sink handle against a mocked bus."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from dbus_next import MessageType, Variant
from dbus_next.errors import DBusError

from bt_audio_receiver.bluez.constants import (
    A2DP_SOURCE_UUID,
    DEVICE_INTERFACE,
    MEDIA_TRANSPORT_INTERFACE,
)
from bt_audio_receiver.bluez.feed import AdapterNotPoweredError, BluezDeviceFeed, is_audio_source
from bt_audio_receiver.bluez.sink import BluezSinkHandle, BluezSinkPlatform, open_status_for
from bt_audio_receiver.platform import CONNECTED_PROPERTY, HandleState, OpenStatus

ADAPTER = "/org/bluez/hci0"
# Headphones and speakers advertise the sink role, not the source role
A2DP_SINK_UUID = "0000110b-0000-1000-8000-00805f9b34fb"
PHONE_PATH = f"{ADAPTER}/dev_AA_BB_CC_DD_EE_FF"


def signal(member, body, path="/"):
    return SimpleNamespace(message_type=MessageType.SIGNAL, member=member, path=path, body=body)


def device_props(paired=True, uuids=(A2DP_SOURCE_UUID,), alias="Phone", connected=False):
    return {
        "Paired": Variant("b", paired),
        "UUIDs": Variant("as", list(uuids)),
        "Alias": Variant("s", alias),
        "Connected": Variant("b", connected),
    }


def make_bus(powered=True, objects=None, uuids=(A2DP_SOURCE_UUID,)):
    iface = MagicMock()
    iface.call_get = AsyncMock(side_effect=lambda interface, prop: (
        Variant("b", powered) if prop == "Powered" else Variant("as", list(uuids))
    ))
    iface.call_get_managed_objects = AsyncMock(return_value=objects or {})
    proxy = MagicMock()
    proxy.get_interface.return_value = iface

    bus = MagicMock()
    bus.introspect = AsyncMock(return_value=MagicMock())
    bus.get_proxy_object.return_value = proxy
    bus.call = AsyncMock()
    return bus


class FeedRecorder:
    def __init__(self, feed):
        self.added, self.updated, self.removed, self.completed = [], [], [], 0
        feed.on_added(self.added.append)
        feed.on_updated(self.updated.append)
        feed.on_removed(self.removed.append)
        feed.on_enumeration_completed(self._complete)

    def _complete(self):
        self.completed += 1


class TestIsAudioSource:

    def test_requires_pairing_and_source_profile(self):
        assert is_audio_source({"Paired": True, "UUIDs": [A2DP_SOURCE_UUID]})
        assert not is_audio_source({"Paired": False, "UUIDs": [A2DP_SOURCE_UUID]})
        assert not is_audio_source({"Paired": True, "UUIDs": [A2DP_SINK_UUID]})
        assert not is_audio_source({})


class TestBluezDeviceFeed:

    @pytest.mark.asyncio
    async def test_start_replays_managed_objects(self):
        objects = {
            PHONE_PATH: {DEVICE_INTERFACE: device_props(connected=True)},
            f"{ADAPTER}/dev_11_22_33_44_55_66": {DEVICE_INTERFACE: device_props(uuids=[A2DP_SINK_UUID])},
            "/org/bluez/hci1/dev_99_99_99_99_99_99": {DEVICE_INTERFACE: device_props()},
        }
        bus = make_bus(objects=objects)
        feed = BluezDeviceFeed(bus, ADAPTER)
        rec = FeedRecorder(feed)

        await feed.start()

        assert [(i.id, i.name, i.properties) for i in rec.added] == [
            (PHONE_PATH, "Phone", {CONNECTED_PROPERTY: True}),
        ]
        assert rec.completed == 1
        bus.add_message_handler.assert_called_once()
        bus.call.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_fails_when_adapter_off(self):
        bus = make_bus(powered=False)
        feed = BluezDeviceFeed(bus, ADAPTER)
        with pytest.raises(AdapterNotPoweredError):
            await feed.start()
        bus.add_message_handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_signals_drive_notifications(self):
        feed = BluezDeviceFeed(make_bus(), ADAPTER)
        rec = FeedRecorder(feed)
        await feed.start()

        feed._on_message(signal("InterfacesAdded", [PHONE_PATH, {DEVICE_INTERFACE: device_props(paired=False)}]))
        assert rec.added == []

        # Pairing completes later
        feed._on_message(signal("PropertiesChanged",
                                [DEVICE_INTERFACE, {"Paired": Variant("b", True)}, []], PHONE_PATH))
        assert [i.id for i in rec.added] == [PHONE_PATH]

        feed._on_message(signal("PropertiesChanged",
                                [DEVICE_INTERFACE, {"Connected": Variant("b", True)}, []], PHONE_PATH))
        assert rec.updated[-1].properties == {CONNECTED_PROPERTY: True}

        # RSSI changes are not connectivity changes
        feed._on_message(signal("PropertiesChanged",
                                [DEVICE_INTERFACE, {"RSSI": Variant("n", -40)}, []], PHONE_PATH))
        assert len(rec.updated) == 1

        feed._on_message(signal("InterfacesRemoved", [PHONE_PATH, [DEVICE_INTERFACE]]))
        assert [u.id for u in rec.removed] == [PHONE_PATH]

    @pytest.mark.asyncio
    async def test_unpairing_removes_device(self):
        feed = BluezDeviceFeed(make_bus(objects={PHONE_PATH: {DEVICE_INTERFACE: device_props()}}), ADAPTER)
        rec = FeedRecorder(feed)
        await feed.start()

        feed._on_message(signal("PropertiesChanged",
                                [DEVICE_INTERFACE, {"Paired": Variant("b", False)}, []], PHONE_PATH))
        assert [u.id for u in rec.removed] == [PHONE_PATH]

    @pytest.mark.asyncio
    async def test_ignores_foreign_paths_and_after_stop(self):
        bus = make_bus()
        feed = BluezDeviceFeed(bus, ADAPTER)
        rec = FeedRecorder(feed)
        await feed.start()

        feed._on_message(signal("InterfacesAdded", [f"{PHONE_PATH}/sep1", {DEVICE_INTERFACE: device_props()}]))
        feed._on_message(signal("InterfacesAdded", [f"{ADAPTER}0/dev_AA", {DEVICE_INTERFACE: device_props()}]))
        assert rec.added == []

        await feed.stop()
        bus.remove_message_handler.assert_called_once()
        feed._on_message(signal("InterfacesAdded", [PHONE_PATH, {DEVICE_INTERFACE: device_props()}]))
        assert rec.added == []

    @pytest.mark.asyncio
    async def test_malformed_signal_is_contained(self):
        feed = BluezDeviceFeed(make_bus(), ADAPTER)
        await feed.start()
        assert feed._on_message(signal("InterfacesAdded", [PHONE_PATH])) is False


class TestOpenStatus:

    @pytest.mark.parametrize(
        "error_type, text, expected",
        [
            ("org.bluez.Error.AlreadyConnected", "", OpenStatus.SUCCESS),
            ("org.bluez.Error.NotAvailable", "", OpenStatus.UNAVAILABLE),
            ("org.bluez.Error.NotAuthorized", "", OpenStatus.DENIED_BY_SYSTEM),
            ("org.bluez.Error.Failed", "Page Timeout", OpenStatus.REQUEST_TIMED_OUT),
            ("org.bluez.Error.Failed", "Protocol not available", OpenStatus.UNKNOWN_FAILURE),
        ],
    )
    def test_classification(self, error_type, text, expected):
        assert open_status_for(DBusError(error_type, text)) is expected


class TestBluezSinkHandle:

    def make_handle(self, bus=None, connect_side_effect=None):
        device_iface = MagicMock()
        device_iface.call_connect_profile = AsyncMock(side_effect=connect_side_effect)
        return BluezSinkHandle(bus or make_bus(), PHONE_PATH, device_iface), device_iface

    @pytest.mark.asyncio
    async def test_open_success(self):
        handle, iface = self.make_handle()
        result = await handle.open()
        assert result.ok
        iface.call_connect_profile.assert_awaited_once_with(A2DP_SOURCE_UUID)

    @pytest.mark.asyncio
    async def test_open_already_connected_is_success(self):
        handle, _ = self.make_handle(
            connect_side_effect=DBusError("org.bluez.Error.AlreadyConnected", "Already Connected"))
        assert (await handle.open()).ok

    @pytest.mark.asyncio
    async def test_open_failure_carries_details(self):
        handle, _ = self.make_handle(
            connect_side_effect=DBusError("org.bluez.Error.NotAvailable", "Operation currently not available"))
        result = await handle.open()
        assert result.status is OpenStatus.UNAVAILABLE
        assert "not available" in result.extended_error

    @pytest.mark.asyncio
    async def test_start_reads_existing_transport(self):
        transport = f"{PHONE_PATH}/sep1/fd0"
        bus = make_bus(objects={transport: {MEDIA_TRANSPORT_INTERFACE: {"State": Variant("s", "active")}}})
        handle, _ = self.make_handle(bus)
        await handle.start()
        assert handle.state is HandleState.OPENED

    @pytest.mark.asyncio
    async def test_transport_signals_change_state(self):
        handle, _ = self.make_handle()
        await handle.start()
        changes = []
        handle.add_state_listener(lambda h: changes.append(h.state))
        transport = f"{PHONE_PATH}/sep1/fd0"

        handle._on_message(signal("InterfacesAdded",
                                  [transport, {MEDIA_TRANSPORT_INTERFACE: {"State": Variant("s", "pending")}}]))
        handle._on_message(signal("PropertiesChanged",
                                  [MEDIA_TRANSPORT_INTERFACE, {"State": Variant("s", "active")}, []], transport))
        handle._on_message(signal("PropertiesChanged",
                                  [MEDIA_TRANSPORT_INTERFACE, {"State": Variant("s", "active")}, []], transport))
        handle._on_message(signal("PropertiesChanged",
                                  [MEDIA_TRANSPORT_INTERFACE, {"State": Variant("s", "idle")}, []], transport))

        assert changes == [HandleState.OPENED, HandleState.CLOSED]

    @pytest.mark.asyncio
    async def test_device_disconnect_closes(self):
        transport = f"{PHONE_PATH}/sep1/fd0"
        bus = make_bus(objects={transport: {MEDIA_TRANSPORT_INTERFACE: {"State": Variant("s", "active")}}})
        handle, _ = self.make_handle(bus)
        await handle.start()

        handle._on_message(signal("PropertiesChanged",
                                  [DEVICE_INTERFACE, {"Connected": Variant("b", False)}, []], PHONE_PATH))
        assert handle.state is HandleState.CLOSED

    @pytest.mark.asyncio
    async def test_dispose_is_idempotent(self):
        bus = make_bus()
        handle, _ = self.make_handle(bus)
        await handle.start()

        handle.dispose()
        handle.dispose()
        bus.remove_message_handler.assert_called_once()
        members = [c.args[0].member for c in bus.send.call_args_list]
        assert members == ["RemoveMatch", "DisconnectProfile"]


class TestBluezSinkPlatform:

    @pytest.mark.asyncio
    async def test_creates_handle_for_audio_source(self):
        platform = BluezSinkPlatform(make_bus())
        handle = await platform.try_create_handle(PHONE_PATH)
        assert isinstance(handle, BluezSinkHandle)
        assert handle.device_id == PHONE_PATH

    @pytest.mark.asyncio
    async def test_none_without_source_profile(self):
        platform = BluezSinkPlatform(make_bus(uuids=[A2DP_SINK_UUID]))
        assert await platform.try_create_handle(PHONE_PATH) is None

    @pytest.mark.asyncio
    async def test_none_for_missing_device(self):
        bus = make_bus()
        bus.introspect = AsyncMock(side_effect=DBusError("org.freedesktop.DBus.Error.UnknownObject", "gone"))
        assert await BluezSinkPlatform(bus).try_create_handle(PHONE_PATH) is None

"""Device feed backed by the BlueZ ObjectManager.

Surfaces paired devices that can act as an A2DP audio source (phones,
tablets, laptops) so this host can receive their audio.
"""

import logging

from dbus_next import Message, MessageType
from dbus_next.aio import MessageBus

from ..platform import CONNECTED_PROPERTY, DeviceFeed, DeviceInfo, DeviceInfoUpdate
from .constants import (
    A2DP_SOURCE_UUID,
    ADAPTER_INTERFACE,
    BLUEZ_SERVICE,
    BLUEZ_SIGNAL_MATCH,
    DEFAULT_ADAPTER_PATH,
    DEVICE_INTERFACE,
    PROPERTIES_INTERFACE,
)
from .util import add_match, get_managed_objects, remove_match_nowait, unwrap_props

logger = logging.getLogger(__name__)


class AdapterNotPoweredError(Exception):
    """Raised when the Bluetooth adapter is not powered on."""


def is_audio_source(props: dict) -> bool:
    """True for paired devices advertising the A2DP Source profile."""
    uuids = props.get("UUIDs") or []
    return bool(props.get("Paired")) and A2DP_SOURCE_UUID in uuids


def display_name(props: dict) -> str | None:
    return props.get("Alias") or props.get("Name")


class BluezDeviceFeed(DeviceFeed):
    """Delivers add/update/remove notifications for audio-source devices.

    Device ids are BlueZ object paths.  Property changes are merged into a
    per-path cache so a device that only later reports ``Paired`` or its
    UUIDs is surfaced as soon as it qualifies.
    """

    def __init__(self, bus: MessageBus, adapter_path: str = DEFAULT_ADAPTER_PATH):
        super().__init__()
        self._bus = bus
        self._adapter_path = adapter_path
        self._started = False
        self._props: dict[str, dict] = {}
        self._surfaced: set[str] = set()

    async def start(self) -> None:
        if self._started:
            return
        await self._check_powered()

        self._bus.add_message_handler(self._on_message)
        self._started = True
        await add_match(self._bus, BLUEZ_SIGNAL_MATCH)

        objects = await get_managed_objects(self._bus)
        for path, interfaces in objects.items():
            if DEVICE_INTERFACE in interfaces:
                self._merge(path, unwrap_props(interfaces[DEVICE_INTERFACE]))
        logger.info(
            "Device enumeration: %d audio source device(s) on %s",
            len(self._surfaced), self._adapter_path,
        )
        self._notify_enumeration_completed()

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self._bus.remove_message_handler(self._on_message)
        remove_match_nowait(self._bus, BLUEZ_SIGNAL_MATCH)
        self._props.clear()
        self._surfaced.clear()
        logger.debug("BlueZ device feed stopped")

    async def _check_powered(self) -> None:
        introspection = await self._bus.introspect(BLUEZ_SERVICE, self._adapter_path)
        proxy = self._bus.get_proxy_object(BLUEZ_SERVICE, self._adapter_path, introspection)
        properties = proxy.get_interface(PROPERTIES_INTERFACE)
        powered = await properties.call_get(ADAPTER_INTERFACE, "Powered")
        if not powered.value:
            raise AdapterNotPoweredError(
                f"Bluetooth adapter {self._adapter_path} is not powered"
            )

    def _owns(self, path: str | None) -> bool:
        """True for device objects directly under our adapter."""
        if not path:
            return False
        prefix = self._adapter_path + "/"
        return path.startswith(prefix + "dev_") and "/" not in path[len(prefix):]

    def _on_message(self, msg: Message) -> bool:
        if not self._started or msg.message_type != MessageType.SIGNAL or not msg.body:
            return False
        try:
            if msg.member == "InterfacesAdded":
                path, interfaces = msg.body[0], msg.body[1]
                if self._owns(path) and DEVICE_INTERFACE in interfaces:
                    self._merge(path, unwrap_props(interfaces[DEVICE_INTERFACE]))
            elif msg.member == "InterfacesRemoved":
                path, interfaces = msg.body[0], msg.body[1]
                if self._owns(path) and DEVICE_INTERFACE in interfaces:
                    self._forget(path)
            elif msg.member == "PropertiesChanged" and msg.body[0] == DEVICE_INTERFACE:
                if self._owns(msg.path):
                    self._merge(msg.path, unwrap_props(msg.body[1]))
        except Exception:
            logger.exception("Failed to process BlueZ signal %s on %s", msg.member, msg.path)
        return False  # don't consume

    def _merge(self, path: str, changed: dict) -> None:
        if not self._owns(path):
            return
        props = self._props.setdefault(path, {})
        props.update(changed)

        qualifies = is_audio_source(props)
        if qualifies and path not in self._surfaced:
            self._surfaced.add(path)
            self._notify_added(DeviceInfo(
                id=path,
                name=display_name(props),
                properties={CONNECTED_PROPERTY: bool(props.get("Connected", False))},
            ))
        elif not qualifies and path in self._surfaced:
            self._surfaced.discard(path)
            self._notify_removed(DeviceInfoUpdate(id=path))
        elif qualifies and "Connected" in changed:
            self._notify_updated(DeviceInfoUpdate(
                id=path,
                properties={CONNECTED_PROPERTY: bool(changed["Connected"])},
            ))

    def _forget(self, path: str) -> None:
        self._props.pop(path, None)
        if path in self._surfaced:
            self._surfaced.discard(path)
            self._notify_removed(DeviceInfoUpdate(id=path))

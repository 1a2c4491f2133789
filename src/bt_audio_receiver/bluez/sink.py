"""A2DP sink handles backed by BlueZ.

Opening a handle asks BlueZ to connect the device's A2DP Source profile,
which makes this host the audio sink.  The handle reports ``OPENED`` while
a MediaTransport1 for the device is ``active`` (audio flowing).
"""

import asyncio
import logging

from dbus_next import Message, MessageType
from dbus_next.aio import MessageBus
from dbus_next.errors import DBusError, InterfaceNotFoundError, InvalidObjectPathError

from ..platform import AudioSinkPlatform, HandleState, OpenResult, OpenStatus, SinkHandle
from .constants import (
    A2DP_SOURCE_UUID,
    BLUEZ_SERVICE,
    BLUEZ_SIGNAL_MATCH,
    DEVICE_INTERFACE,
    MEDIA_TRANSPORT_INTERFACE,
    PROPERTIES_INTERFACE,
    TRANSPORT_STATE_ACTIVE,
)
from .util import add_match, get_managed_objects, remove_match_nowait, unwrap

logger = logging.getLogger(__name__)

# BlueZ error names (org.bluez.Error.*) mapped to open statuses
_OPEN_ERROR_STATUS = {
    "AlreadyConnected": OpenStatus.SUCCESS,
    "NotAvailable": OpenStatus.UNAVAILABLE,
    "NotSupported": OpenStatus.UNAVAILABLE,
    "DoesNotExist": OpenStatus.UNAVAILABLE,
    "NotReady": OpenStatus.UNAVAILABLE,
    "NotAuthorized": OpenStatus.DENIED_BY_SYSTEM,
    "AuthenticationRejected": OpenStatus.DENIED_BY_SYSTEM,
    "NotPermitted": OpenStatus.DENIED_BY_SYSTEM,
    "Timeout": OpenStatus.REQUEST_TIMED_OUT,
    "NoReply": OpenStatus.REQUEST_TIMED_OUT,
}


def open_status_for(error: DBusError) -> OpenStatus:
    """Classify a ConnectProfile failure."""
    name = (error.type or "").rsplit(".", 1)[-1]
    status = _OPEN_ERROR_STATUS.get(name)
    if status is not None:
        return status
    text = error.text or ""
    if "Page Timeout" in text or "timed out" in text.lower():
        return OpenStatus.REQUEST_TIMED_OUT
    return OpenStatus.UNKNOWN_FAILURE


class BluezSinkHandle(SinkHandle):
    """One A2DP sink connection attempt to a device object path."""

    OPEN_TIMEOUT = 30  # seconds; BlueZ page timeouts can take a while

    def __init__(self, bus: MessageBus, device_path: str, device_iface):
        super().__init__(device_path)
        self._bus = bus
        self._path = device_path
        self._device_iface = device_iface
        self._transports: dict[str, str] = {}
        self._state = HandleState.CLOSED
        self._started = False
        self._disposed = False

    @property
    def state(self) -> HandleState:
        return self._state

    async def start(self) -> None:
        """Watch this device's media transports and read their current state."""
        if self._started:
            return
        self._bus.add_message_handler(self._on_message)
        self._started = True
        await add_match(self._bus, BLUEZ_SIGNAL_MATCH)

        objects = await get_managed_objects(self._bus)
        for path, interfaces in objects.items():
            if self._is_transport_path(path) and MEDIA_TRANSPORT_INTERFACE in interfaces:
                state = unwrap(interfaces[MEDIA_TRANSPORT_INTERFACE].get("State"))
                self._transports[path] = state or ""
        self._recompute()
        logger.debug("Sink handle for %s started (%d transport(s))", self._path, len(self._transports))

    async def open(self) -> OpenResult:
        logger.info("ConnectProfile A2DP source on %s...", self._path)
        try:
            await asyncio.wait_for(
                self._device_iface.call_connect_profile(A2DP_SOURCE_UUID),
                self.OPEN_TIMEOUT,
            )
        except asyncio.TimeoutError:
            return OpenResult(OpenStatus.REQUEST_TIMED_OUT, "ConnectProfile did not complete")
        except DBusError as e:
            status = open_status_for(e)
            if status is OpenStatus.SUCCESS:
                logger.debug("A2DP source on %s already connected", self._path)
                return OpenResult(OpenStatus.SUCCESS)
            return OpenResult(status, f"{e.type}: {e.text}")
        logger.info("ConnectProfile A2DP source on %s succeeded", self._path)
        return OpenResult(OpenStatus.SUCCESS)

    def dispose(self) -> None:
        """Stop watching and disconnect the profile without waiting."""
        if self._disposed:
            return
        self._disposed = True
        self._state_listeners.clear()
        if self._started:
            self._bus.remove_message_handler(self._on_message)
            remove_match_nowait(self._bus, BLUEZ_SIGNAL_MATCH)
        self._bus.send(Message(
            destination=BLUEZ_SERVICE,
            path=self._path,
            interface=DEVICE_INTERFACE,
            member="DisconnectProfile",
            signature="s",
            body=[A2DP_SOURCE_UUID],
        ))
        logger.debug("Sink handle for %s disposed", self._path)

    def _is_transport_path(self, path: str | None) -> bool:
        return bool(path) and path.startswith(self._path + "/")

    def _on_message(self, msg: Message) -> bool:
        if msg.message_type != MessageType.SIGNAL or not msg.body:
            return False
        try:
            if msg.member == "PropertiesChanged":
                iface, changed = msg.body[0], msg.body[1]
                if iface == MEDIA_TRANSPORT_INTERFACE and self._is_transport_path(msg.path):
                    if "State" in changed:
                        self._transports[msg.path] = unwrap(changed["State"])
                        self._recompute()
                elif iface == DEVICE_INTERFACE and msg.path == self._path:
                    if "Connected" in changed and not unwrap(changed["Connected"]):
                        self._transports.clear()
                        self._recompute()
            elif msg.member == "InterfacesAdded":
                path, interfaces = msg.body[0], msg.body[1]
                if self._is_transport_path(path) and MEDIA_TRANSPORT_INTERFACE in interfaces:
                    state = unwrap(interfaces[MEDIA_TRANSPORT_INTERFACE].get("State"))
                    self._transports[path] = state or ""
                    self._recompute()
            elif msg.member == "InterfacesRemoved":
                path, interfaces = msg.body[0], msg.body[1]
                if self._is_transport_path(path) and MEDIA_TRANSPORT_INTERFACE in interfaces:
                    self._transports.pop(path, None)
                    self._recompute()
        except Exception:
            logger.exception("Failed to process transport signal for %s", self._path)
        return False  # don't consume

    def _recompute(self) -> None:
        active = any(s == TRANSPORT_STATE_ACTIVE for s in self._transports.values())
        state = HandleState.OPENED if active else HandleState.CLOSED
        if state is self._state:
            return
        self._state = state
        logger.debug("Sink handle for %s is now %s", self._path, state.value)
        self._notify_state_changed()


class BluezSinkPlatform(AudioSinkPlatform):
    """Creates sink handles for BlueZ device object paths."""

    def __init__(self, bus: MessageBus):
        self._bus = bus

    async def try_create_handle(self, device_id: str) -> BluezSinkHandle | None:
        try:
            introspection = await self._bus.introspect(BLUEZ_SERVICE, device_id)
            proxy = self._bus.get_proxy_object(BLUEZ_SERVICE, device_id, introspection)
            device_iface = proxy.get_interface(DEVICE_INTERFACE)
            properties = proxy.get_interface(PROPERTIES_INTERFACE)
            uuids = await properties.call_get(DEVICE_INTERFACE, "UUIDs")
        except (DBusError, InterfaceNotFoundError, InvalidObjectPathError) as e:
            logger.debug("No BlueZ device at %s: %s", device_id, e)
            return None

        if A2DP_SOURCE_UUID not in (uuids.value or []):
            logger.info("Device %s does not advertise A2DP source", device_id)
            return None
        return BluezSinkHandle(self._bus, device_id, device_iface)

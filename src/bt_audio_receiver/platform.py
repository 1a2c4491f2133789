"""Interfaces to the platform device feed and audio sink API.

The watcher and orchestrator only talk to these abstractions; the BlueZ
implementations live in :mod:`bt_audio_receiver.bluez`.
"""

import abc
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

# Property bag key carrying the connectivity flag of a device.
CONNECTED_PROPERTY = "Connected"


@dataclass
class DeviceInfo:
    """Raw "added" notification from a device feed."""

    id: str
    name: str | None
    properties: dict = field(default_factory=dict)


@dataclass
class DeviceInfoUpdate:
    """Raw "updated"/"removed" notification from a device feed."""

    id: str
    properties: dict = field(default_factory=dict)


class DeviceFeed(abc.ABC):
    """Push-based source of audio-capable devices.

    Callbacks may fire on any thread, including synchronously from within
    ``start()`` while the initial enumeration is replayed.
    """

    def __init__(self):
        self._added_callbacks: list[Callable[[DeviceInfo], None]] = []
        self._updated_callbacks: list[Callable[[DeviceInfoUpdate], None]] = []
        self._removed_callbacks: list[Callable[[DeviceInfoUpdate], None]] = []
        self._completed_callbacks: list[Callable[[], None]] = []

    def on_added(self, callback: Callable[[DeviceInfo], None]) -> None:
        self._added_callbacks.append(callback)

    def on_updated(self, callback: Callable[[DeviceInfoUpdate], None]) -> None:
        self._updated_callbacks.append(callback)

    def on_removed(self, callback: Callable[[DeviceInfoUpdate], None]) -> None:
        self._removed_callbacks.append(callback)

    def on_enumeration_completed(self, callback: Callable[[], None]) -> None:
        self._completed_callbacks.append(callback)

    def clear_callbacks(self) -> None:
        """Drop every registered callback."""
        self._added_callbacks.clear()
        self._updated_callbacks.clear()
        self._removed_callbacks.clear()
        self._completed_callbacks.clear()

    def _notify_added(self, info: DeviceInfo) -> None:
        for cb in list(self._added_callbacks):
            cb(info)

    def _notify_updated(self, update: DeviceInfoUpdate) -> None:
        for cb in list(self._updated_callbacks):
            cb(update)

    def _notify_removed(self, update: DeviceInfoUpdate) -> None:
        for cb in list(self._removed_callbacks):
            cb(update)

    def _notify_enumeration_completed(self) -> None:
        for cb in list(self._completed_callbacks):
            cb()

    @abc.abstractmethod
    async def start(self) -> None:
        """Begin delivering notifications. Raises if the feed is unavailable."""

    @abc.abstractmethod
    async def stop(self) -> None:
        """Stop delivering notifications. Safe to call when not started."""


class HandleState(str, Enum):
    CLOSED = "closed"
    OPENED = "opened"


class OpenStatus(str, Enum):
    SUCCESS = "success"
    REQUEST_TIMED_OUT = "timeout"
    DENIED_BY_SYSTEM = "denied"
    UNAVAILABLE = "unavailable"
    UNKNOWN_FAILURE = "unknown"


@dataclass
class OpenResult:
    status: OpenStatus
    extended_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is OpenStatus.SUCCESS


class SinkHandle(abc.ABC):
    """One audio sink connection attempt to a device.

    State listeners receive the handle as their only argument and may be
    invoked on any thread.
    """

    def __init__(self, device_id: str):
        self.device_id = device_id
        self._state_listeners: list[Callable[["SinkHandle"], None]] = []

    def add_state_listener(self, listener: Callable[["SinkHandle"], None]) -> None:
        self._state_listeners.append(listener)

    def remove_state_listener(self, listener: Callable[["SinkHandle"], None]) -> None:
        try:
            self._state_listeners.remove(listener)
        except ValueError:
            pass

    def _notify_state_changed(self) -> None:
        for listener in list(self._state_listeners):
            listener(self)

    @property
    @abc.abstractmethod
    def state(self) -> HandleState:
        """Current platform-reported state."""

    @abc.abstractmethod
    async def start(self) -> None:
        """Activate the handle so it can be opened."""

    @abc.abstractmethod
    async def open(self) -> OpenResult:
        """Request the audio connection be opened."""

    @abc.abstractmethod
    def dispose(self) -> None:
        """Release the handle synchronously."""


class AudioSinkPlatform(abc.ABC):
    """Factory for sink handles."""

    @abc.abstractmethod
    async def try_create_handle(self, device_id: str) -> SinkHandle | None:
        """Return a handle, or None if the device cannot act as an audio source."""

"""Shared fakes for the device feed and the audio sink platform."""

from __future__ import annotations

import asyncio

import pytest

from bt_audio_receiver.events import EventBus
from bt_audio_receiver.platform import (
    CONNECTED_PROPERTY,
    AudioSinkPlatform,
    DeviceFeed,
    DeviceInfo,
    DeviceInfoUpdate,
    HandleState,
    OpenResult,
    OpenStatus,
    SinkHandle,
)


class FakeFeed(DeviceFeed):
    """Feed driven directly by the test.

    ``initial`` devices are replayed from ``start()`` followed by the
    enumeration-completed notification, the same way BlueZ enumeration
    behaves.
    """

    def __init__(self, initial: list[DeviceInfo] | None = None, fail_start: Exception | None = None):
        super().__init__()
        self.initial = list(initial or [])
        self.fail_start = fail_start
        self.started = False
        self.start_calls = 0
        self.stop_calls = 0

    async def start(self) -> None:
        self.start_calls += 1
        if self.fail_start is not None:
            raise self.fail_start
        self.started = True
        for info in self.initial:
            self._notify_added(info)
        self._notify_enumeration_completed()

    async def stop(self) -> None:
        self.stop_calls += 1
        self.started = False

    # -- test drivers --

    def add(self, device_id: str, name: str | None, connected: bool = False) -> None:
        self._notify_added(DeviceInfo(id=device_id, name=name,
                                      properties={CONNECTED_PROPERTY: connected}))

    def update(self, device_id: str, connected: bool) -> None:
        self._notify_updated(DeviceInfoUpdate(id=device_id,
                                              properties={CONNECTED_PROPERTY: connected}))

    def remove(self, device_id: str) -> None:
        self._notify_removed(DeviceInfoUpdate(id=device_id))

    def complete(self) -> None:
        self._notify_enumeration_completed()

    @property
    def callback_count(self) -> int:
        return (len(self._added_callbacks) + len(self._updated_callbacks)
                + len(self._removed_callbacks) + len(self._completed_callbacks))


class FakeHandle(SinkHandle):
    """Sink handle with a scripted open result and a settable state.

    When ``gate`` is given, ``open()`` blocks until the test sets it.
    """

    def __init__(
        self,
        device_id: str,
        result: OpenResult | None = None,
        opens_streaming: bool = True,
        open_error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ):
        super().__init__(device_id)
        self.result = result or OpenResult(OpenStatus.SUCCESS)
        self.opens_streaming = opens_streaming
        self.open_error = open_error
        self.gate = gate
        self._state = HandleState.CLOSED
        self.started = False
        self.open_calls = 0
        self.open_completed = False
        self.disposed = False

    @property
    def state(self) -> HandleState:
        return self._state

    def set_state(self, state: HandleState) -> None:
        if state is self._state:
            return
        self._state = state
        self._notify_state_changed()

    @property
    def listener_count(self) -> int:
        return len(self._state_listeners)

    async def start(self) -> None:
        self.started = True

    async def open(self) -> OpenResult:
        self.open_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.open_error is not None:
            raise self.open_error
        if self.result.ok and self.opens_streaming:
            self.set_state(HandleState.OPENED)
        self.open_completed = True
        return self.result

    def dispose(self) -> None:
        self.disposed = True


class FakePlatform(AudioSinkPlatform):
    """Hands out handles from ``factory``; ``None`` means no A2DP profile."""

    def __init__(self, factory=None):
        self.factory = factory or (lambda device_id: FakeHandle(device_id))
        self.handles: list[FakeHandle] = []
        self.requests: list[str] = []

    async def try_create_handle(self, device_id: str) -> FakeHandle | None:
        self.requests.append(device_id)
        handle = self.factory(device_id)
        if handle is not None:
            self.handles.append(handle)
        return handle


class Recorder:
    """Collects EventBus emissions as (event, payload) pairs."""

    def __init__(self, bus: EventBus, *kinds: str):
        self.events: list[tuple[str, object]] = []
        for kind in kinds:
            bus.on(kind, lambda payload, kind=kind: self.events.append((kind, payload)))

    def of(self, kind: str) -> list:
        return [payload for k, payload in self.events if k == kind]

    def kinds(self) -> list[str]:
        return [k for k, _ in self.events]


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def feed() -> FakeFeed:
    return FakeFeed()


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


class FakeVolume:
    """In-memory stand-in for VolumeService."""

    def __init__(self, volume: int = 100):
        self.connected = True
        self.volume = volume
        self.muted = False

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def get_volume(self) -> int:
        return self.volume

    async def set_volume(self, volume: int) -> None:
        self.volume = max(0, min(100, int(volume)))

    async def is_muted(self) -> bool:
        return self.muted

    async def set_muted(self, muted: bool) -> None:
        self.muted = muted

"""Top-level facade for the Bluetooth Audio Receiver.

Composes the device registry, watcher, connection orchestrator, volume
control and settings behind one event-driven API.  Consumers subscribe to
``event_bus``; events may be emitted from the D-Bus thread or the asyncio
loop, so single-threaded consumers should use ``event_bus.subscribe()``.
"""

import asyncio
import logging
import threading

from dbus_next import BusType
from dbus_next.aio import MessageBus

from . import events
from .audio.volume import DEFAULT_VOLUME, VolumeService
from .bluez.feed import BluezDeviceFeed
from .bluez.sink import BluezSinkPlatform
from .config import AppConfig
from .events import EventBus
from .i18n import Localizer
from .models import Device
from .orchestrator import STREAMING_LABEL, ConnectionOrchestrator
from .platform import AudioSinkPlatform, DeviceFeed
from .registry import DeviceRegistry
from .watcher import DeviceWatcher

logger = logging.getLogger(__name__)


class ReceiverManager:
    """Central facade: device list, connection control and status."""

    def __init__(
        self,
        config: AppConfig,
        *,
        feed: DeviceFeed | None = None,
        platform: AudioSinkPlatform | None = None,
        volume: VolumeService | None = None,
        event_bus: EventBus | None = None,
    ):
        self.config = config
        self.event_bus = event_bus or EventBus()
        self.localizer = Localizer(config.language)
        self.registry = DeviceRegistry()
        self.bus: MessageBus | None = None
        self.volume = volume
        self.watcher: DeviceWatcher | None = None
        self.orchestrator: ConnectionOrchestrator | None = None
        self._feed = feed
        self._platform = platform
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task] = set()
        self._auto_connect_attempted = False
        self._connected_device_id: str | None = None
        self._target_name: str | None = None

        # Presentation-facing status, guarded by _status_lock
        self._status_lock = threading.Lock()
        self._status = self.localizer.get("Idle")
        self._status_detail = self.localizer.get("SelectDevice")
        self._is_connecting = False
        self._is_connected = False
        self._error_message: str | None = None

        if feed is not None and platform is not None:
            self._build_core()

    def _build_core(self) -> None:
        self.watcher = DeviceWatcher(self._feed, self.registry, self.event_bus, self.localizer)
        self.orchestrator = ConnectionOrchestrator(self._platform, self.event_bus, self.localizer)

        self.event_bus.on(events.DEVICE_ADDED, self._on_device_added)
        self.event_bus.on(events.DEVICE_REMOVED, self._on_device_removed)
        self.event_bus.on(events.ENUMERATION_COMPLETED, self._on_enumeration_completed)
        self.event_bus.on(events.CONNECTION_STATE_CHANGED, self._on_connection_state_changed)
        self.event_bus.on(events.STREAMING_STATE_CHANGED, self._on_streaming_state_changed)
        self.event_bus.on(events.ERROR, self._on_error)

    async def start(self) -> None:
        """Full startup sequence."""
        self._loop = asyncio.get_running_loop()

        # 1. BlueZ feed + sink platform (unless injected)
        if self.watcher is None:
            self.bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
            logger.info("Connected to system D-Bus")
            logger.info("Using Bluetooth adapter: %s", self.config.bt_adapter)
            self._feed = self._feed or BluezDeviceFeed(self.bus, self.config.bt_adapter)
            self._platform = self._platform or BluezSinkPlatform(self.bus)
            self._build_core()

        # 2. Volume control
        if self.volume is None:
            self.volume = VolumeService()
        if not self.volume.connected:
            try:
                await self.volume.connect()
            except Exception as e:
                logger.warning("Volume control unavailable: %s", e)
        if self.volume.connected:
            await self.volume.set_volume(self.config.volume)

        # 3. Device discovery
        await self.start_watching()
        logger.info("Bluetooth Audio Receiver started")

    async def shutdown(self) -> None:
        """Teardown in reverse order. Never raises."""
        logger.info("Shutting down Bluetooth Audio Receiver...")

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self.watcher:
            try:
                await self.watcher.stop()
            except Exception as e:
                logger.warning("Error stopping device watcher: %s", e)

        # Synchronous so the handle is released even if the loop is going away
        if self.orchestrator:
            self.orchestrator.dispose()

        if self.volume:
            try:
                await self.volume.disconnect()
            except Exception as e:
                logger.debug("Error disconnecting volume control: %s", e)

        if self.bus:
            self.bus.disconnect()
            self.bus = None
        logger.info("Bluetooth Audio Receiver stopped")

    # -- commands --

    async def start_watching(self) -> bool:
        """Start device discovery. Returns False if Bluetooth is unavailable."""
        if self.watcher is None:
            return False
        self._update_status(status_detail=self.localizer.get("Scanning"))
        ok = await self.watcher.start()
        if not ok:
            self._update_status(status_detail=self.localizer.format("DevicesFound", 0))
        return ok

    async def stop_watching(self) -> None:
        if self.watcher is not None:
            await self.watcher.stop()

    async def refresh_devices(self) -> bool:
        """Restart discovery from scratch."""
        await self.stop_watching()
        return await self.start_watching()

    def list_devices(self) -> list[Device]:
        return self.registry.snapshot()

    async def open_connection(self, device_id: str, cancel: asyncio.Event | None = None) -> bool:
        """Connect the audio sink to ``device_id``. Returns True on success."""
        if self.orchestrator is None:
            return False
        device = self.registry.get(device_id)
        self._target_name = device.name if device else device_id
        self._update_status(
            is_connecting=True,
            status=self.localizer.get("Connecting"),
            status_detail=self.localizer.format("OpeningConnectionTo", self._target_name),
            error_message=None,
        )
        ok = await self.orchestrator.open_connection(device_id, cancel)
        if not ok and self._is_connecting:
            # Cancelled: no error event was raised to reset the status
            self._update_status(
                is_connecting=False,
                status=self.localizer.get("Idle"),
                status_detail=self.localizer.get("SelectDevice"),
            )
        return ok

    async def close_connection(self) -> None:
        if self.orchestrator is not None:
            await self.orchestrator.close_connection()

    # -- volume --

    async def get_volume(self) -> int:
        if self.volume is None:
            return DEFAULT_VOLUME
        return await self.volume.get_volume()

    async def set_volume(self, volume: int) -> int:
        volume = max(0, min(100, int(volume)))
        if self.volume is not None:
            await self.volume.set_volume(volume)
        self.config.volume = volume
        self.config.save_settings()
        return volume

    async def is_muted(self) -> bool:
        if self.volume is None:
            return False
        return await self.volume.is_muted()

    async def set_muted(self, muted: bool) -> None:
        if self.volume is not None:
            await self.volume.set_muted(muted)

    # -- settings --

    def update_settings(self, changes: dict) -> dict:
        """Apply and persist user settings. Returns the full settings dict."""
        applied = self.config.update_settings(changes)
        if "language" in applied:
            self.localizer.set_language(applied["language"])
        if "bt_adapter" in applied:
            logger.info("Bluetooth adapter changed to %s (takes effect on restart)",
                        applied["bt_adapter"])
        if applied:
            self.config.save_settings()
        return self.config.settings

    # -- status --

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    @property
    def is_connecting(self) -> bool:
        return self._is_connecting

    @property
    def current_device(self) -> Device | None:
        device_id = self._connected_device_id
        return self.registry.get(device_id) if device_id else None

    @property
    def status(self) -> dict:
        device = self.current_device
        with self._status_lock:
            return {
                "status": self._status,
                "status_detail": self._status_detail,
                "is_connecting": self._is_connecting,
                "is_connected": self._is_connected,
                "is_streaming": bool(self.orchestrator and self.orchestrator.is_streaming),
                "error": self._error_message,
                "device_id": self._connected_device_id,
                "device_name": device.name if device else None,
                "watching": bool(self.watcher and self.watcher.is_watching),
            }

    def _update_status(self, **changes) -> None:
        with self._status_lock:
            for key, value in changes.items():
                setattr(self, f"_{key}", value)
        self.event_bus.emit(events.STATUS, self.status)

    def _device_count_detail(self) -> str:
        return self.localizer.format("DevicesFound", len(self.registry))

    # -- event handlers --

    def _on_device_added(self, device: Device) -> None:
        if self.watcher.enumeration_completed and not (self._is_connected or self._is_connecting):
            self._update_status(status_detail=self._device_count_detail())

    def _on_device_removed(self, device_id: str) -> None:
        if not (self._is_connected or self._is_connecting):
            self._update_status(status_detail=self._device_count_detail())

    def _on_enumeration_completed(self, _payload) -> None:
        if not (self._is_connected or self._is_connecting):
            self._update_status(status_detail=self._device_count_detail())

        last_id = self.config.last_device_id
        if (
            self.config.auto_connect
            and not self._auto_connect_attempted
            and last_id
            and last_id in self.registry
            and not (self._is_connected or self._is_connecting)
        ):
            self._auto_connect_attempted = True
            logger.info("Auto-connecting to last device %s", self.config.last_device_name or last_id)
            self._schedule_open(last_id)

    def _schedule_open(self, device_id: str) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._spawn_open, device_id)

    def _spawn_open(self, device_id: str) -> None:
        task = self._loop.create_task(self.open_connection(device_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_connection_state_changed(self, connected: bool) -> None:
        if connected:
            device_id = self.orchestrator.current_device_id
            self._connected_device_id = device_id
            device = self.registry.get(device_id) if device_id else None
            name = device.name if device else self._target_name
            self._update_status(
                is_connected=True,
                is_connecting=False,
                status=self.localizer.get("Connected"),
                status_detail=self.localizer.format("AudioReadyFrom", name),
                error_message=None,
            )
            if device_id:
                self.config.last_device_id = device_id
                self.config.last_device_name = name
                self.config.save_settings()
            return

        device_id = self._connected_device_id
        self._connected_device_id = None
        if device_id:
            self.watcher.mark_streaming(device_id, False)
        if self._is_connecting:
            # Closing the previous session on the way to a new one
            self._update_status(is_connected=False)
        else:
            self._update_status(
                is_connected=False,
                status=self.localizer.get("Idle"),
                status_detail=self.localizer.get("SelectDevice"),
            )

    def _on_streaming_state_changed(self, label: str) -> None:
        streaming = label == STREAMING_LABEL
        if self._connected_device_id:
            self.watcher.mark_streaming(self._connected_device_id, streaming)
        changes = {"status": self.localizer.get(label)}
        if streaming:
            device = self.registry.get(self._connected_device_id) if self._connected_device_id else None
            name = device.name if device else self._target_name
            changes["status_detail"] = self.localizer.format("ReceivingAudioFrom", name)
        self._update_status(**changes)

    def _on_error(self, message: str) -> None:
        self._update_status(
            is_connecting=False,
            status=self.localizer.get("Idle"),
            status_detail=self.localizer.get("SelectDevice"),
            error_message=message,
        )

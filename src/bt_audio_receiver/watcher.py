"""Device watcher: turns feed notifications into registry updates and events."""

import logging
import threading

from . import events
from .events import EventBus
from .i18n import Localizer
from .models import Device, sanitize_device_name
from .platform import CONNECTED_PROPERTY, DeviceFeed, DeviceInfo, DeviceInfoUpdate
from .registry import DeviceRegistry

logger = logging.getLogger(__name__)


class DeviceWatcher:
    """Keeps a DeviceRegistry in sync with a DeviceFeed.

    Feed callbacks are processed in delivery order on the feed's thread;
    events are emitted after the registry lock has been released.
    """

    def __init__(
        self,
        feed: DeviceFeed,
        registry: DeviceRegistry,
        event_bus: EventBus,
        localizer: Localizer | None = None,
    ):
        self._feed = feed
        self._registry = registry
        self._event_bus = event_bus
        self._localizer = localizer or Localizer()
        self._state_lock = threading.Lock()
        self._watching = False
        self._enumeration_completed = False

    @property
    def is_watching(self) -> bool:
        return self._watching

    @property
    def enumeration_completed(self) -> bool:
        return self._enumeration_completed

    async def start(self) -> bool:
        """Subscribe to the feed. Returns False if the feed could not start.

        A feed that fails to start (e.g. Bluetooth switched off) leaves the
        watcher stopped with an empty device set.
        """
        with self._state_lock:
            if self._watching:
                return True
            self._watching = True
            self._enumeration_completed = False

        self._feed.on_added(self._on_added)
        self._feed.on_updated(self._on_updated)
        self._feed.on_removed(self._on_removed)
        self._feed.on_enumeration_completed(self._on_enumeration_completed)

        try:
            await self._feed.start()
        except Exception as e:
            logger.warning("Device feed failed to start: %s", e)
            await self.stop()
            return False

        logger.info("Device watcher started")
        return True

    async def stop(self) -> None:
        """Unsubscribe from the feed and clear state. Safe to call repeatedly."""
        with self._state_lock:
            if not self._watching:
                return
            self._watching = False

        # Callbacks go first so a late notification cannot touch cleared state
        self._feed.clear_callbacks()
        try:
            await self._feed.stop()
        except Exception as e:
            logger.debug("Device feed stop failed: %s", e)
        self._enumeration_completed = False
        for device_id in self._registry.clear():
            self._event_bus.emit(events.DEVICE_REMOVED, device_id)
        logger.info("Device watcher stopped")

    def mark_streaming(self, device_id: str, streaming: bool) -> None:
        """Record the audio streaming flag for a device and publish the change."""
        device = self._registry.update_streaming(device_id, streaming)
        if device is not None:
            self._event_bus.emit(events.DEVICE_UPDATED, device)

    # -- feed callbacks --

    def _on_added(self, info: DeviceInfo) -> None:
        if not self._watching:
            return
        try:
            name = sanitize_device_name(info.name, self._localizer.get("UnknownDevice"))
            connected = bool(info.properties.get(CONNECTED_PROPERTY, False))
            device, inserted = self._registry.upsert(
                Device(id=info.id, name=name, is_connected=connected)
            )
            if inserted:
                logger.info("Device added: %s (%s)", device.name, device.id)
                self._event_bus.emit(events.DEVICE_ADDED, device)
            else:
                logger.debug("Device %s re-added, treating as update", device.id)
                self._event_bus.emit(events.DEVICE_UPDATED, device)
        except Exception:
            logger.exception("Failed to handle added device %s", info.id)

    def _on_updated(self, update: DeviceInfoUpdate) -> None:
        if not self._watching:
            return
        try:
            if update.id not in self._registry:
                logger.debug("Ignoring update for unknown device %s", update.id)
                return
            if CONNECTED_PROPERTY in update.properties:
                device = self._registry.update_connected(
                    update.id, bool(update.properties[CONNECTED_PROPERTY])
                )
            else:
                device = self._registry.get(update.id)
            if device is None:
                return
            logger.debug("Device updated: %s -> %s", device.id, device.display_status.value)
            self._event_bus.emit(events.DEVICE_UPDATED, device)
        except Exception:
            logger.exception("Failed to handle updated device %s", update.id)

    def _on_removed(self, update: DeviceInfoUpdate) -> None:
        if not self._watching:
            return
        try:
            if self._registry.remove(update.id):
                logger.info("Device removed: %s", update.id)
                self._event_bus.emit(events.DEVICE_REMOVED, update.id)
        except Exception:
            logger.exception("Failed to handle removed device %s", update.id)

    def _on_enumeration_completed(self) -> None:
        with self._state_lock:
            if not self._watching or self._enumeration_completed:
                return
            self._enumeration_completed = True
        logger.info("Device enumeration completed (%d device(s))", len(self._registry))
        self._event_bus.emit(events.ENUMERATION_COMPLETED, None)

"""Thread-safe registry of discovered devices."""

import dataclasses
import logging
import threading

from .models import Device

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Maps device id -> Device behind a single lock.

    Written only by the DeviceWatcher; any thread may read.  The lock is
    held for the duration of a single mutation or copy and never while
    calling out to observers.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._devices: dict[str, Device] = {}

    def upsert(self, device: Device) -> tuple[Device, bool]:
        """Insert ``device`` or merge it into the existing entry.

        For a known id only the presence/connection flags are copied over;
        the stored display name wins.  Returns ``(stored, inserted)``.
        """
        with self._lock:
            existing = self._devices.get(device.id)
            if existing is None:
                self._devices[device.id] = device
                return device, True
            existing.is_connected = device.is_connected
            return existing, False

    def update_connected(self, device_id: str, connected: bool) -> Device | None:
        """Set the connected flag on a stored device. Returns it, or None if unknown."""
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                return None
            device.is_connected = connected
            if not connected:
                device.is_audio_streaming = False
            return device

    def update_streaming(self, device_id: str, streaming: bool) -> Device | None:
        """Set the streaming flag on a stored device. Returns it, or None if unknown."""
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                return None
            device.is_audio_streaming = streaming
            return device

    def remove(self, device_id: str) -> bool:
        """Remove an entry. Returns True if one existed."""
        with self._lock:
            return self._devices.pop(device_id, None) is not None

    def clear(self) -> list[str]:
        """Remove every entry. Returns the ids that were removed."""
        with self._lock:
            removed = list(self._devices)
            self._devices.clear()
        return removed

    def get(self, device_id: str) -> Device | None:
        with self._lock:
            return self._devices.get(device_id)

    def snapshot(self) -> list[Device]:
        """Return copies of all devices, sorted by name."""
        with self._lock:
            devices = [dataclasses.replace(d) for d in self._devices.values()]
        devices.sort(key=lambda d: (d.name.casefold(), d.id))
        return devices

    def __contains__(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._devices

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

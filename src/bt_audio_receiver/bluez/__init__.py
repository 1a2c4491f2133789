"""BlueZ (D-Bus) implementations of the device feed and audio sink platform."""

from .feed import AdapterNotPoweredError, BluezDeviceFeed
from .sink import BluezSinkHandle, BluezSinkPlatform

__all__ = ["AdapterNotPoweredError", "BluezDeviceFeed", "BluezSinkHandle", "BluezSinkPlatform"]

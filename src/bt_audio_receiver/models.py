"""Domain model for paired audio-source devices."""

import unicodedata
from dataclasses import asdict, dataclass
from enum import Enum

UNKNOWN_DEVICE_NAME = "Unknown Device"
MAX_NAME_LENGTH = 100


class DeviceStatus(str, Enum):
    """Derived display status, highest precedence first."""

    STREAMING = "Streaming"
    CONNECTED = "Connected"
    PAIRED = "Paired"


def sanitize_device_name(name: str | None, placeholder: str = UNKNOWN_DEVICE_NAME) -> str:
    """Make a raw device name safe for display.

    Control characters are removed, surrounding whitespace trimmed and the
    result capped at 100 characters.  Names that end up empty are replaced
    with ``placeholder``.
    """
    if not name or not name.strip():
        return placeholder

    sanitized = "".join(c for c in name if unicodedata.category(c) != "Cc")
    sanitized = sanitized.strip()
    if len(sanitized) > MAX_NAME_LENGTH:
        sanitized = sanitized[:MAX_NAME_LENGTH]

    if not sanitized.strip():
        return placeholder
    return sanitized


@dataclass
class Device:
    """A paired peripheral that can stream audio to this host.

    Instances held by the registry are updated in place, so observers
    holding a reference see connection changes.  Use
    ``DeviceRegistry.snapshot()`` for a stable copy.
    """

    id: str
    name: str
    is_connected: bool = False
    is_audio_streaming: bool = False

    @property
    def display_status(self) -> DeviceStatus:
        if self.is_audio_streaming:
            return DeviceStatus.STREAMING
        if self.is_connected:
            return DeviceStatus.CONNECTED
        return DeviceStatus.PAIRED

    def to_dict(self) -> dict:
        data = asdict(self)
        data["display_status"] = self.display_status.value
        return data

"""Master volume control for the host's default PulseAudio sink.

Audio received from the connected device is rendered on the default
sink, so its volume is the receiver's playback volume.  Every operation
is best-effort: failures are logged and a neutral value is returned.
"""

import logging
import os

from pulsectl_asyncio import PulseAsync

logger = logging.getLogger(__name__)

CLIENT_NAME = "bt-audio-receiver"
DEFAULT_VOLUME = 100

# Tried in order when PULSE_SERVER is not set
_FALLBACK_SERVERS = [
    None,  # libpulse default (user session socket)
    "unix:/run/pulse/native",
]


class VolumeService:
    """Reads and sets volume/mute on the default output sink."""

    def __init__(self):
        self._pulse: PulseAsync | None = None

    @property
    def connected(self) -> bool:
        return self._pulse is not None

    async def connect(self) -> None:
        """Connect to PulseAudio (or PipeWire's pulse server).

        Raises ConnectionError if no server is reachable.
        """
        servers = [os.environ["PULSE_SERVER"]] if os.environ.get("PULSE_SERVER") else _FALLBACK_SERVERS
        for server in servers:
            pulse = PulseAsync(CLIENT_NAME, server=server)
            try:
                await pulse.connect()
            except Exception:
                logger.debug("PulseAudio not available at %s", server or "default socket")
                pulse.close()
                continue
            self._pulse = pulse
            logger.info("Connected to PulseAudio via %s", server or "default socket")
            return
        raise ConnectionError("PulseAudio not reachable at any known address")

    async def disconnect(self) -> None:
        if self._pulse:
            self._pulse.close()
            self._pulse = None

    async def _default_sink(self):
        info = await self._pulse.server_info()
        return await self._pulse.get_sink_by_name(info.default_sink_name)

    async def get_volume(self) -> int:
        """Current volume 0-100 (100 when unknown)."""
        if self._pulse is None:
            return DEFAULT_VOLUME
        try:
            sink = await self._default_sink()
            return round(sink.volume.value_flat * 100)
        except Exception as e:
            logger.debug("get_volume failed: %s", e)
            return DEFAULT_VOLUME

    async def set_volume(self, volume: int) -> None:
        """Set volume 0-100; out-of-range values are clamped."""
        if self._pulse is None:
            return
        volume = max(0, min(100, int(volume)))
        try:
            sink = await self._default_sink()
            await self._pulse.volume_set_all_chans(sink, volume / 100)
            logger.info("Volume set to %d%% on %s", volume, sink.name)
        except Exception as e:
            logger.warning("set_volume(%d) failed: %s", volume, e)

    async def is_muted(self) -> bool:
        if self._pulse is None:
            return False
        try:
            sink = await self._default_sink()
            return bool(sink.mute)
        except Exception as e:
            logger.debug("is_muted failed: %s", e)
            return False

    async def set_muted(self, muted: bool) -> None:
        if self._pulse is None:
            return
        try:
            sink = await self._default_sink()
            await self._pulse.mute(sink, muted)
            logger.info("Mute %s on %s", "on" if muted else "off", sink.name)
        except Exception as e:
            logger.warning("set_muted(%s) failed: %s", muted, e)

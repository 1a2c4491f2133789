"""Logging handler that publishes records as ``log_entry`` events.

Records arrive from the asyncio loop, the D-Bus dispatch thread and any
foreign threads the platform callbacks run on, so both the replay buffer
and the re-entrancy guard are thread-aware.
"""

import collections
import logging
import threading

from ..events import LOG_ENTRY, EventBus


class LogStreamHandler(logging.Handler):
    """Buffers recent log entries and forwards each one to the EventBus."""

    MAX_RECENT_LOGS = 500

    def __init__(self, event_bus: EventBus, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._event_bus = event_bus
        self._local = threading.local()
        self._buffer_lock = threading.Lock()
        self._recent: collections.deque[dict] = collections.deque(maxlen=self.MAX_RECENT_LOGS)

    def recent(self, min_level: int = logging.NOTSET) -> list[dict]:
        """Copy of the buffered entries at or above ``min_level``, oldest first."""
        with self._buffer_lock:
            entries = list(self._recent)
        if min_level <= logging.NOTSET:
            return entries
        return [e for e in entries if e["levelno"] >= min_level]

    def emit(self, record: logging.LogRecord) -> None:
        # Publishing can log; drop records raised on this thread while publishing
        if getattr(self._local, "publishing", False):
            return
        self._local.publishing = True
        try:
            entry = {
                "ts": record.created,
                "level": record.levelname,
                "levelno": record.levelno,
                "logger": record.name,
                "thread": record.threadName,
                "message": self.format(record),
            }
            with self._buffer_lock:
                self._recent.append(entry)
            self._event_bus.emit(LOG_ENTRY, entry)
        except Exception:
            self.handleError(record)
        finally:
            self._local.publishing = False

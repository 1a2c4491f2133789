"""Event bus shared by the core services and the web API.

Two kinds of consumers are supported:

* observers registered per event kind with ``on()``; they are called
  synchronously on whichever thread emitted the event.
* clients with their own ``asyncio.Queue`` from ``subscribe()``; events are
  marshalled onto the client's event loop, so a single consumer thread can
  drain them.
"""

import asyncio
import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEVICE_ADDED = "device_added"
DEVICE_UPDATED = "device_updated"
DEVICE_REMOVED = "device_removed"
ENUMERATION_COMPLETED = "enumeration_completed"
CONNECTION_STATE_CHANGED = "connection_state_changed"
STREAMING_STATE_CHANGED = "streaming_state_changed"
ERROR = "error"
STATUS = "status"
LOG_ENTRY = "log_entry"


class EventBus:
    """Multicast pub/sub for core events."""

    QUEUE_SIZE = 64

    def __init__(self):
        self._lock = threading.Lock()
        self._observers: dict[str, list[Callable[[Any], None]]] = {}
        self._clients: dict[asyncio.Queue, asyncio.AbstractEventLoop] = {}

    def on(self, event: str, callback: Callable[[Any], None]) -> None:
        """Register an observer for one event kind."""
        with self._lock:
            self._observers.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Callable[[Any], None]) -> None:
        """Remove an observer. Unknown callbacks are ignored."""
        with self._lock:
            callbacks = self._observers.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def subscribe(self) -> asyncio.Queue:
        """Add a queue client bound to the running loop."""
        q: asyncio.Queue = asyncio.Queue(maxsize=self.QUEUE_SIZE)
        with self._lock:
            self._clients[q] = asyncio.get_running_loop()
            count = len(self._clients)
        logger.info("EventBus client subscribed (%d total)", count)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        with self._lock:
            self._clients.pop(q, None)
            count = len(self._clients)
        logger.info("EventBus client unsubscribed (%d remaining)", count)

    def emit(self, event: str, payload: Any = None) -> None:
        """Deliver an event to all observers and queue clients."""
        with self._lock:
            callbacks = list(self._observers.get(event, ()))
            clients = list(self._clients.items())

        for cb in callbacks:
            try:
                cb(payload)
            except Exception:
                logger.exception("Observer for '%s' failed", event)

        if not clients:
            return
        message = {"event": event, "data": payload}
        for q, loop in clients:
            if _on_loop_thread(loop):
                self._put(q, message)
            elif not loop.is_closed():
                loop.call_soon_threadsafe(self._put, q, message)

    @staticmethod
    def _put(q: asyncio.Queue, message: dict) -> None:
        try:
            q.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Dropping event '%s' for slow client (queue full)", message["event"])

    @property
    def client_count(self) -> int:
        return len(self._clients)


def _on_loop_thread(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False

"""Audio sink connection orchestrator.

Owns at most one ConnectionSession and its platform handle.  Opening a
connection retries a fixed number of times, and after a successful open
waits briefly for the platform to report the streaming-ready state.

Platform state callbacks may arrive on a foreign thread; session fields
they touch are guarded by ``_lock``.  Opening and closing are serialised
by an asyncio lock so that only one session can ever be live.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, TypeVar

from . import events
from .events import EventBus
from .i18n import Localizer
from .platform import AudioSinkPlatform, HandleState, SinkHandle

logger = logging.getLogger(__name__)

T = TypeVar("T")

STREAMING_LABEL = "Streaming"
CONNECTED_LABEL = "Connected"


class ConnectionCancelled(Exception):
    """Raised inside an attempt when the caller cancels or the session is disposed."""


class SessionState(str, Enum):
    IDLE = "idle"
    OPENING = "opening"
    OPEN = "open"
    STREAMING = "streaming"
    CLOSED = "closed"
    FAILED = "failed"


_ACTIVE_STATES = frozenset({SessionState.OPENING, SessionState.OPEN, SessionState.STREAMING})


@dataclass
class ConnectionSession:
    device_id: str
    handle: SinkHandle | None = None
    state: SessionState = SessionState.IDLE
    last_error: str | None = None

    @property
    def is_active(self) -> bool:
        return self.state in _ACTIVE_STATES

    @property
    def is_connected(self) -> bool:
        return self.state in (SessionState.OPEN, SessionState.STREAMING)


async def _guard(aw: Awaitable[T], cancel: asyncio.Event | None) -> T:
    """Await ``aw``, abandoning it if ``cancel`` is set first."""
    if cancel is None:
        return await aw
    if cancel.is_set():
        if asyncio.iscoroutine(aw):
            aw.close()
        raise ConnectionCancelled()

    task = asyncio.ensure_future(aw)
    cancel_wait = asyncio.ensure_future(cancel.wait())
    abandoned = False
    try:
        await asyncio.wait({task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        cancel_wait.cancel()
        # The wrapped call must not outlive us, whichever way we leave
        if not task.done():
            abandoned = True
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, Exception):
                pass

    if abandoned:
        raise ConnectionCancelled()
    return task.result()


async def wait_for_state(
    handle: SinkHandle,
    target: HandleState,
    timeout: float,
    cancel: asyncio.Event | None = None,
) -> bool:
    """Wait until ``handle`` reports ``target`` or ``timeout`` seconds pass.

    The listener is registered before the current state is checked so a
    transition racing with registration is not missed.  Returns False on
    timeout; the caller decides how to proceed.
    """
    loop = asyncio.get_running_loop()
    reached: asyncio.Future = loop.create_future()

    def _resolve() -> None:
        if not reached.done():
            reached.set_result(True)

    def _listener(sender: SinkHandle) -> None:
        if sender.state is target:
            loop.call_soon_threadsafe(_resolve)

    handle.add_state_listener(_listener)
    try:
        if handle.state is target:
            return True
        try:
            await asyncio.wait_for(_guard(reached, cancel), timeout)
            return True
        except asyncio.TimeoutError:
            logger.debug("Handle for %s did not reach %s within %.2fs",
                         handle.device_id, target.value, timeout)
            return False
    finally:
        handle.remove_state_listener(_listener)
        if not reached.done():
            reached.cancel()


class ConnectionOrchestrator:
    """Opens, supervises and closes the audio sink session."""

    MAX_ATTEMPTS = 3
    RETRY_DELAY = 0.5  # seconds between failed attempts
    OPEN_STATE_TIMEOUT = 0.5  # seconds to wait for the opened state

    def __init__(
        self,
        platform: AudioSinkPlatform,
        event_bus: EventBus,
        localizer: Localizer | None = None,
        *,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        state_timeout: float | None = None,
    ):
        self._platform = platform
        self._event_bus = event_bus
        self._localizer = localizer or Localizer()
        self._max_attempts = max_attempts or self.MAX_ATTEMPTS
        self._retry_delay = self.RETRY_DELAY if retry_delay is None else retry_delay
        self._state_timeout = self.OPEN_STATE_TIMEOUT if state_timeout is None else state_timeout
        self._lock = threading.Lock()
        self._op_lock = asyncio.Lock()
        self._session: ConnectionSession | None = None
        self._streaming = False

    # -- read-only state --

    @property
    def session(self) -> ConnectionSession | None:
        return self._session

    @property
    def current_device_id(self) -> str | None:
        session = self._session
        return session.device_id if session and session.is_active else None

    @property
    def is_connected(self) -> bool:
        session = self._session
        return bool(session and session.is_connected)

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    # -- commands --

    async def open_connection(self, device_id: str, cancel: asyncio.Event | None = None) -> bool:
        """Open an audio sink session to ``device_id``.

        Any existing session is closed first.  Returns True once the
        platform confirms the connection; False after the attempts are
        exhausted (an ``error`` event is emitted) or if ``cancel`` fires.
        """
        async with self._op_lock:
            await self._close_session()

            session = ConnectionSession(device_id=device_id, state=SessionState.OPENING)
            with self._lock:
                self._session = session
            logger.info("Opening audio connection to %s", device_id)

            try:
                for attempt in range(1, self._max_attempts + 1):
                    try:
                        if await self._try_open(session, attempt, cancel):
                            return True
                    except ConnectionCancelled:
                        raise
                    except Exception as e:
                        logger.warning(
                            "Connection attempt %d/%d to %s raised: %s",
                            attempt, self._max_attempts, device_id, e,
                        )
                        session.last_error = self._localizer.format("OpenError", e)
                        self._release(session)

                    if attempt < self._max_attempts:
                        await _guard(asyncio.sleep(self._retry_delay), cancel)
            except (ConnectionCancelled, asyncio.CancelledError) as e:
                logger.info("Connection to %s cancelled", device_id)
                self._release(session)
                with self._lock:
                    session.state = SessionState.CLOSED
                    if self._session is session:
                        self._session = None
                if isinstance(e, asyncio.CancelledError):
                    raise
                return False

            message = session.last_error or self._localizer.get("RetriesExhausted")
            with self._lock:
                session.state = SessionState.FAILED
                session.last_error = message
            logger.warning(
                "Could not connect to %s after %d attempt(s): %s",
                device_id, self._max_attempts, message,
            )
            self._event_bus.emit(events.ERROR, message)
            return False

    async def close_connection(self) -> None:
        """Close the current session. No-op when nothing is open."""
        async with self._op_lock:
            await self._close_session()

    def dispose(self) -> None:
        """Release the handle synchronously. Never raises."""
        with self._lock:
            session = self._session
            self._session = None
            self._streaming = False
        if session is None or session.handle is None:
            return
        handle = session.handle
        session.handle = None
        session.state = SessionState.CLOSED
        try:
            handle.remove_state_listener(self._on_handle_state_changed)
            handle.dispose()
        except Exception as e:
            logger.debug("Ignoring error while disposing handle for %s: %s", session.device_id, e)

    # -- internals --

    async def _try_open(self, session: ConnectionSession, attempt: int, cancel: asyncio.Event | None) -> bool:
        logger.debug("Connection attempt %d/%d to %s", attempt, self._max_attempts, session.device_id)
        self._ensure_current(session)
        handle = await _guard(self._platform.try_create_handle(session.device_id), cancel)
        if handle is None:
            self._ensure_current(session)
            session.last_error = self._localizer.get("DeviceNoProfile")
            logger.info("No audio sink handle for %s (attempt %d)", session.device_id, attempt)
            return False

        with self._lock:
            attached = self._session is session
            if attached:
                session.handle = handle
        if not attached:
            self._dispose_handle(handle)
            raise ConnectionCancelled()
        handle.add_state_listener(self._on_handle_state_changed)

        try:
            await _guard(handle.start(), cancel)
            self._ensure_current(session, handle)
            result = await _guard(handle.open(), cancel)
            self._ensure_current(session, handle)
        except BaseException:
            self._release(session)
            raise

        if not result.ok:
            logger.info(
                "Open to %s failed on attempt %d: %s (%s)",
                session.device_id, attempt, result.status.value,
                result.extended_error or "No extended error",
            )
            session.last_error = self._localizer.format("OpenFailed", result.status.value)
            self._release(session)
            return False

        try:
            await wait_for_state(handle, HandleState.OPENED, self._state_timeout, cancel)
        except BaseException:
            self._release(session)
            raise

        streaming = handle.state is HandleState.OPENED
        with self._lock:
            released = self._session is not session or session.handle is not handle
            if not released:
                self._streaming = streaming
                session.state = SessionState.STREAMING if streaming else SessionState.OPEN
                session.last_error = None
        if released:
            raise ConnectionCancelled()

        logger.info("Audio connection to %s open (%s)", session.device_id,
                    STREAMING_LABEL if streaming else CONNECTED_LABEL)
        self._event_bus.emit(events.CONNECTION_STATE_CHANGED, True)
        self._event_bus.emit(
            events.STREAMING_STATE_CHANGED,
            STREAMING_LABEL if streaming else CONNECTED_LABEL,
        )
        return True

    def _ensure_current(self, session: ConnectionSession, handle: SinkHandle | None = None) -> None:
        """Raise ConnectionCancelled if ``dispose()`` released the session or its handle."""
        with self._lock:
            current = self._session is session and session.handle is handle
        if not current:
            raise ConnectionCancelled()

    def _release(self, session: ConnectionSession) -> None:
        """Unsubscribe from and dispose the session's handle, if any."""
        handle = session.handle
        if handle is None:
            return
        self._dispose_handle(handle)
        session.handle = None

    def _dispose_handle(self, handle: SinkHandle) -> None:
        handle.remove_state_listener(self._on_handle_state_changed)
        try:
            handle.dispose()
        except Exception as e:
            logger.warning("Failed to release handle for %s: %s", handle.device_id, e)

    async def _close_session(self) -> None:
        session = self._session
        if session is None:
            return
        if not session.is_active:
            with self._lock:
                self._session = None
            return

        was_connected = session.is_connected
        if session.handle is not None:
            self._dispose_handle(session.handle)
        with self._lock:
            session.state = SessionState.CLOSED
            self._streaming = False
        logger.info("Audio connection to %s closed", session.device_id)
        # Observers hear about the disconnect before the references go away
        if was_connected:
            self._event_bus.emit(events.CONNECTION_STATE_CHANGED, False)
        with self._lock:
            session.handle = None
            if self._session is session:
                self._session = None

    def _on_handle_state_changed(self, handle: SinkHandle) -> None:
        try:
            streaming = handle.state is HandleState.OPENED
            with self._lock:
                session = self._session
                if session is None or session.handle is not handle or not session.is_connected:
                    return
                if streaming == self._streaming:
                    return
                self._streaming = streaming
                session.state = SessionState.STREAMING if streaming else SessionState.OPEN
            logger.info("Audio connection to %s is now %s", handle.device_id,
                        STREAMING_LABEL if streaming else CONNECTED_LABEL)
            self._event_bus.emit(
                events.STREAMING_STATE_CHANGED,
                STREAMING_LABEL if streaming else CONNECTED_LABEL,
            )
        except Exception:
            logger.exception("Failed to handle state change for %s", handle.device_id)

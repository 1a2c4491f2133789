"""Entry point for the Bluetooth Audio Receiver."""

import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from . import __version__
from .config import AppConfig
from .manager import ReceiverManager
from .web.log_handler import LogStreamHandler
from .web.server import WebServer

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

CRASH_LOG_NAME = "crash_log.txt"
CRASH_LOG_MAX_BYTES = 5 * 1024 * 1024


def setup_logging(level_name: str) -> None:
    """Configure logging to stdout."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    # Quiet noisy libraries
    logging.getLogger("dbus_next").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def setup_crash_log(log_dir: str) -> RotatingFileHandler | None:
    """Persist warnings and errors to a rotating file in ``log_dir``."""
    try:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            Path(log_dir) / CRASH_LOG_NAME,
            maxBytes=CRASH_LOG_MAX_BYTES,
            backupCount=1,
            encoding="utf-8",
        )
    except OSError as e:
        logging.getLogger(__name__).warning("Crash log disabled (%s): %s", log_dir, e)
        return None
    handler.setLevel(logging.WARNING)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    return handler


async def main() -> None:
    """Start all services and run until signalled to stop."""
    config = AppConfig.load()
    setup_logging(config.log_level)
    setup_crash_log(config.log_dir)

    logger = logging.getLogger(__name__)
    version = os.environ.get("BUILD_VERSION", __version__)
    logger.info("Bluetooth Audio Receiver v%s starting...", version)

    manager = ReceiverManager(config)

    # Publish application logs as events for API clients
    log_stream = LogStreamHandler(manager.event_bus)
    log_stream.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(log_stream)

    web_server = WebServer(manager, log_handler=log_stream)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Received shutdown signal")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _signal_handler)

    try:
        await web_server.start()
        await manager.start()
        logger.info("All services running. Waiting for shutdown signal...")
        await shutdown_event.wait()
    except Exception as e:
        logger.error("Fatal error: %s", e, exc_info=True)
    finally:
        await web_server.stop()
        await manager.shutdown()
        logging.getLogger().removeHandler(log_stream)
        logger.info("Goodbye.")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()

"""Configuration loader for the Bluetooth Audio Receiver.

Service options (log level, API port) are read from an options file.
User settings (adapter, volume, auto-connect, last device, language) live
in a separate settings file that the app rewrites as they change.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .i18n import AVAILABLE_LANGUAGES

logger = logging.getLogger(__name__)

OPTIONS_PATH = os.environ.get("BT_RECEIVER_OPTIONS", "/data/options.json")
SETTINGS_PATH = os.environ.get(
    "BT_RECEIVER_SETTINGS",
    str(Path.home() / ".config" / "bt-audio-receiver" / "settings.json"),
)
LOG_DIR = os.environ.get(
    "BT_RECEIVER_LOG_DIR",
    str(Path.home() / ".local" / "state" / "bt-audio-receiver" / "logs"),
)

# Settings files larger than this are ignored rather than parsed
MAX_SETTINGS_FILE_SIZE = 1024 * 1024

# Keys that live in settings.json (managed via the API)
_SETTINGS_KEYS = (
    "bt_adapter",
    "volume",
    "auto_connect",
    "last_device_id",
    "last_device_name",
    "show_notifications",
    "language",
)


@dataclass
class AppConfig:
    """Application configuration loaded from options + settings."""

    # From options.json (requires restart)
    log_level: str = "info"
    api_port: int = 8099

    # From settings.json
    bt_adapter: str = "/org/bluez/hci0"
    volume: int = 100
    auto_connect: bool = False
    last_device_id: str | None = None
    last_device_name: str | None = None
    show_notifications: bool = True
    language: str = "en"

    settings_path: str = SETTINGS_PATH
    log_dir: str = LOG_DIR

    @property
    def settings(self) -> dict:
        """Return current user settings as a dict."""
        return {key: getattr(self, key) for key in _SETTINGS_KEYS}

    def update_settings(self, changes: dict) -> dict:
        """Apply known, valid keys from ``changes``. Returns what was applied."""
        applied = {}
        for key, value in changes.items():
            if key not in _SETTINGS_KEYS:
                continue
            if key == "volume":
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    continue
                value = max(0, min(100, int(value)))
            elif key in ("auto_connect", "show_notifications"):
                if not isinstance(value, bool):
                    continue
            elif key == "language":
                if value not in AVAILABLE_LANGUAGES:
                    continue
            elif key == "bt_adapter":
                if not isinstance(value, str) or not value.strip():
                    continue
            elif value is not None and not isinstance(value, str):
                continue
            setattr(self, key, value)
            applied[key] = value
        return applied

    def save_settings(self) -> None:
        """Write all settings to the settings file. Failures are logged only."""
        path = Path(self.settings_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(self.settings, indent=2))
        except OSError as e:
            logger.error("Failed to save settings to %s: %s", path, e)
            return
        logger.info("Settings saved to %s", path)

    def _load_settings(self) -> None:
        path = Path(self.settings_path)
        if not path.exists():
            logger.info("No settings file at %s, using defaults", path)
            return
        try:
            if path.stat().st_size > MAX_SETTINGS_FILE_SIZE:
                logger.warning("Settings file %s is too large, using defaults", path)
                return
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to parse settings: %s, using defaults", e)
            return
        if not isinstance(data, dict):
            logger.error("Settings file %s is not a JSON object, using defaults", path)
            return
        self.update_settings(data)
        logger.info("Loaded settings from %s", path)

    @classmethod
    def load(
        cls,
        options_path: str = OPTIONS_PATH,
        settings_path: str = SETTINGS_PATH,
    ) -> "AppConfig":
        """Load configuration from the options and settings files."""
        config = cls(settings_path=settings_path)

        opts_path = Path(options_path)
        if opts_path.exists():
            try:
                data = json.loads(opts_path.read_text())
                config.log_level = data.get("log_level", "info")
                config.api_port = int(data.get("api_port", 8099))
                config.log_dir = data.get("log_dir", config.log_dir)
            except (OSError, json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
                logger.error("Failed to parse options: %s, using defaults", e)

        config._load_settings()
        return config

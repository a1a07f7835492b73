"""Application settings management.

This module handles loading, saving, and managing the autoleveling
settings (probe spacing, feeds, output location) stored as JSON.
"""

import json
import os
import sys
import shutil
import logging
from typing import Dict, Any, Optional
from pathlib import Path

from .constants import (
    ARC_SEGMENT_MM,
    BAUD_DEFAULT,
    DEFAULT_PROBE_FEED,
    DEFAULT_PROBE_FILE,
    DEFAULT_STEP,
    DEFAULT_TRAVEL_HEIGHT,
    PROGRESS_INTERVAL,
    SETTINGS_BACKUP_SUFFIX,
    SETTINGS_DIRNAME,
    SETTINGS_FILENAME,
    SETTINGS_TEMP_SUFFIX,
    VALID_BAUD_RATES,
)
from .exceptions import (
    SettingsLoadError,
    SettingsSaveError,
    SettingsValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Any] = {
    "arc_segment_mm": ARC_SEGMENT_MM,
    "baud_rate": BAUD_DEFAULT,
    "feed": DEFAULT_PROBE_FEED,
    "height": DEFAULT_TRAVEL_HEIGHT,
    "margin": None,
    "out_dir": "",
    "port": "",
    "probe_file": DEFAULT_PROBE_FILE,
    "progress_interval": PROGRESS_INTERVAL,
    "step": DEFAULT_STEP,
    "strict": False,
}


def _deep_merge_defaults(defaults: Dict[str, Any], loaded: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for key, default_val in defaults.items():
        if key in loaded:
            loaded_val = loaded[key]
            if isinstance(default_val, dict) and isinstance(loaded_val, dict):
                merged[key] = _deep_merge_defaults(default_val, loaded_val)
            else:
                merged[key] = loaded_val
        else:
            merged[key] = default_val
    for key, loaded_val in loaded.items():
        if key not in merged:
            merged[key] = loaded_val
    return merged


def get_default_settings_dir() -> str:
    """Get default directory for settings storage.

    Returns:
        Path to settings directory
    """
    env_dir = os.getenv("AUTOLEVELER_CONFIG_DIR")
    if env_dir:
        return env_dir

    if sys.platform.startswith("win"):
        base = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
    else:
        base = os.getenv("XDG_CONFIG_HOME")

    if not base:
        base = os.path.expanduser("~")

    return os.path.join(base, SETTINGS_DIRNAME)


def get_settings_path() -> str:
    """Get path to settings file.

    Creates directory if it doesn't exist.
    Falls back to a dot directory in the home folder if creation fails.

    Returns:
        Full path to settings file
    """
    base_dir = get_default_settings_dir()

    try:
        os.makedirs(base_dir, exist_ok=True)
    except OSError as e:
        logger.warning(f"Failed to create settings directory: {e}")
        fallback_dir = os.path.join(os.path.expanduser("~"), ".autoleveler")
        try:
            os.makedirs(fallback_dir, exist_ok=True)
            base_dir = fallback_dir
        except OSError:
            base_dir = os.path.dirname(__file__)

    return os.path.join(base_dir, SETTINGS_FILENAME)


class Settings:
    """Autoleveler settings manager.

    Handles loading, saving, and accessing settings with atomic file
    operations and automatic backup.

    Example:
        settings = Settings()
        settings.load()
        settings.set("step", 5.0)
        settings.save()
    """

    def __init__(self, filepath: Optional[str] = None):
        """Initialize settings manager.

        Args:
            filepath: Optional custom settings file path
        """
        self.filepath = filepath or get_settings_path()
        self.data: Dict[str, Any] = self._get_defaults()
        logger.info(f"Settings file: {self.filepath}")

    def _get_defaults(self) -> Dict[str, Any]:
        return dict(DEFAULT_SETTINGS)

    def load(self) -> bool:
        """Load settings from file.

        Returns:
            True if loaded successfully, False if no file exists

        Raises:
            SettingsLoadError: If the file exists but cannot be read
        """
        if not os.path.exists(self.filepath):
            logger.info("No settings file found, using defaults")
            return False

        try:
            with open(self.filepath, "r", encoding="utf-8") as f:
                loaded_data = json.load(f)
            if not isinstance(loaded_data, dict):
                raise SettingsLoadError("Settings file must contain a JSON object")

            self.data = _deep_merge_defaults(self._get_defaults(), loaded_data)

            logger.info("Settings loaded successfully")
            return True

        except SettingsLoadError:
            raise

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in settings file: {e}")
            raise SettingsLoadError(f"Invalid JSON: {e}")

        except IOError as e:
            logger.error(f"Failed to read settings file: {e}")
            raise SettingsLoadError(f"Failed to read file: {e}")

    def save(self) -> None:
        """Save settings to file atomically.

        Raises:
            SettingsSaveError: If save fails
        """
        filepath = Path(self.filepath)
        temp_path = Path(str(filepath) + SETTINGS_TEMP_SUFFIX)
        backup_path = Path(str(filepath) + SETTINGS_BACKUP_SUFFIX)

        try:
            filepath.parent.mkdir(parents=True, exist_ok=True)

            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(self.data, f, indent=2, sort_keys=True)

            if filepath.exists():
                try:
                    shutil.copy2(filepath, backup_path)
                except IOError as e:
                    logger.warning(f"Failed to create backup: {e}")

            temp_path.replace(filepath)

            logger.info("Settings saved successfully")

        except IOError as e:
            logger.error(f"Failed to write settings: {e}")

            if backup_path.exists():
                try:
                    shutil.copy2(backup_path, filepath)
                    logger.info("Settings restored from backup")
                except IOError as restore_exc:
                    logger.error(f"Failed to restore settings backup: {restore_exc}")

            raise SettingsSaveError(f"Failed to save: {e}")

        finally:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError as e:
                    logger.debug(f"Failed to remove temp settings file: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get setting value.

        Args:
            key: Setting key (supports dot notation for nested keys)
            default: Default value if key not found

        Returns:
            Setting value or default
        """
        keys = key.split(".")
        value = self.data

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set setting value.

        Args:
            key: Setting key (supports dot notation for nested keys)
            value: Value to set
        """
        keys = key.split(".")

        if len(keys) == 1:
            self.data[key] = value
        else:
            current = self.data
            for k in keys[:-1]:
                if k not in current or not isinstance(current[k], dict):
                    current[k] = {}
                current = current[k]
            current[keys[-1]] = value

    def validate(self) -> bool:
        """Validate current settings.

        Returns:
            True if valid

        Raises:
            SettingsValidationError: If validation fails
        """
        if not isinstance(self.data, dict):
            raise SettingsValidationError("Settings must be a dictionary")

        for key in ("step", "feed", "arc_segment_mm"):
            value = self.data.get(key)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                raise SettingsValidationError(f"Invalid {key}: {value}")

        height = self.data.get("height")
        if not isinstance(height, (int, float)) or isinstance(height, bool) or height < 0:
            raise SettingsValidationError(f"Invalid height: {height}")

        margin = self.data.get("margin")
        if margin is not None and (not isinstance(margin, (int, float)) or isinstance(margin, bool)):
            raise SettingsValidationError(f"Invalid margin: {margin}")

        interval = self.data.get("progress_interval")
        if not isinstance(interval, int) or isinstance(interval, bool) or interval <= 0:
            raise SettingsValidationError(f"Invalid progress interval: {interval}")

        baud = self.data.get("baud_rate")
        if baud not in VALID_BAUD_RATES:
            raise SettingsValidationError(f"Invalid baud rate: {baud}")

        return True

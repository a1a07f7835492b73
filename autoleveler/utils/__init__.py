"""Utility modules for Autoleveler."""

from .constants import *
from .exceptions import *
from .validation import *
from .config import Settings, get_settings_path

__all__ = [
    # Config
    "Settings",
    "get_settings_path",
]

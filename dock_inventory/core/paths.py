"""Centralized path constants for dock-inventory."""

from __future__ import annotations

import os
import sys
from pathlib import Path


def _is_frozen() -> bool:
    """Check if running as a PyInstaller bundle (Intune ships a single exe)."""
    return getattr(sys, "frozen", False) and hasattr(sys, "_MEIPASS")


if _is_frozen():
    PROJECT_ROOT = Path(sys._MEIPASS)
else:
    PROJECT_ROOT = Path(__file__).resolve().parents[2]
PACKAGE_ROOT = PROJECT_ROOT / "dock_inventory"

# Configuration
CONFIG_PATH = PROJECT_ROOT / "config.txt"

# User-specific state (allows running from read-only install directories)
_USER_STATE_ENV = os.environ.get("DOCK_INVENTORY_STATE_DIR")
USER_STATE_DIR = Path(_USER_STATE_ENV).expanduser() if _USER_STATE_ENV else (Path.home() / ".dock_inventory")
USER_CONFIG_OVERRIDES_DIR = USER_STATE_DIR / "config_overrides"
LOGS_DIR = USER_STATE_DIR / "logs"
DOWNLOADS_DIR = USER_STATE_DIR / "downloads"
DEFAULT_STATE_FILE = USER_STATE_DIR / "dock_state.txt"


def ensure_directories() -> None:
    """Create the per-user state directories if they don't exist."""

    USER_STATE_DIR.mkdir(parents=True, exist_ok=True)
    USER_CONFIG_OVERRIDES_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    DOWNLOADS_DIR.mkdir(parents=True, exist_ok=True)


__all__ = [
    "PROJECT_ROOT",
    "PACKAGE_ROOT",
    "CONFIG_PATH",
    "USER_STATE_DIR",
    "USER_CONFIG_OVERRIDES_DIR",
    "LOGS_DIR",
    "DOWNLOADS_DIR",
    "DEFAULT_STATE_FILE",
    "ensure_directories",
]

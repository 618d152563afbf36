"""
Platform detection for dock-inventory.

Detection backends, the result store and the Pi upgrade all depend on what
the host is, so detection runs once and the result is cached.
"""

import os
import platform
import sys
from dataclasses import dataclass
from typing import Optional

from dock_inventory.core.logging_utils import get_module_logger

logger = get_module_logger("PlatformInfo")


@dataclass(frozen=True)
class PlatformInfo:
    """Immutable platform information.

    Attributes:
        platform: System platform ('linux', 'darwin', 'win32')
        architecture: CPU architecture ('AMD64', 'x86_64', 'aarch64', 'armv7l')
        is_raspberry_pi: True if running on a Raspberry Pi
        pi_model: Raspberry Pi model string if applicable
        os_release: OS release version string
        is_admin: True when running as root / elevated
    """

    platform: str
    architecture: str
    is_raspberry_pi: bool
    pi_model: Optional[str]
    os_release: str
    is_admin: bool

    @property
    def is_windows(self) -> bool:
        return self.platform == "win32"

    @property
    def is_linux(self) -> bool:
        return self.platform.startswith("linux")

    def __str__(self) -> str:
        if self.is_raspberry_pi:
            return f"{self.pi_model or 'Raspberry Pi'} ({self.architecture})"
        return f"{self.platform} ({self.architecture})"


def _detect_raspberry_pi() -> tuple[bool, Optional[str]]:
    """Read the device tree model, present on Raspberry Pi boards."""
    model_paths = [
        "/proc/device-tree/model",
        "/sys/firmware/devicetree/base/model",
    ]

    for path in model_paths:
        try:
            with open(path, "r", encoding="utf-8") as f:
                model = f.read().strip().rstrip("\x00")
                if "raspberry pi" in model.lower():
                    return True, model
        except OSError:
            continue

    return False, None


def _detect_admin() -> bool:
    if sys.platform == "win32":
        try:
            import ctypes
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return hasattr(os, "geteuid") and os.geteuid() == 0


def detect_platform() -> PlatformInfo:
    """Detect current platform information (uncached)."""
    is_pi = False
    pi_model = None
    if sys.platform.startswith("linux"):
        is_pi, pi_model = _detect_raspberry_pi()

    info = PlatformInfo(
        platform=sys.platform,
        architecture=platform.machine(),
        is_raspberry_pi=is_pi,
        pi_model=pi_model,
        os_release=platform.release(),
        is_admin=_detect_admin(),
    )

    logger.debug("Platform detected: %s", info)
    return info


_platform_info: Optional[PlatformInfo] = None


def get_platform_info() -> PlatformInfo:
    """Get cached platform information (singleton)."""
    global _platform_info
    if _platform_info is None:
        _platform_info = detect_platform()
    return _platform_info


def reset_platform_info() -> None:
    """Reset the cached platform info (for testing only)."""
    global _platform_info
    _platform_info = None


__all__ = [
    "PlatformInfo",
    "detect_platform",
    "get_platform_info",
    "reset_platform_info",
]

"""
Detection collaborators: the platform backends and the default strategy list.

``build_default_strategies`` returns the four detection methods in priority
order for the current platform. Methods a platform cannot run raise
DetectionFailure, which the resolver records and skips past.
"""

from typing import Optional

from dock_inventory.core.platform_info import PlatformInfo, get_platform_info

from ..resolver import DetectionFailure, DetectionStrategy
from ..types import DetectionMethod
from .cim import DEFAULT_TIMEOUT, CimQueryRunner, parse_csv_rows
from .linux import LinuxDockBackend
from .windows import WindowsDockBackend


def _unsupported(method: DetectionMethod, platform_name: str):
    def _detect():
        raise DetectionFailure(f"{method.value} not supported on {platform_name}", method)
    return _detect


def build_default_strategies(
    platform_info: Optional[PlatformInfo] = None,
    *,
    timeout: float = DEFAULT_TIMEOUT,
) -> list[DetectionStrategy]:
    """Return the four detection strategies, highest priority first."""
    info = platform_info or get_platform_info()

    if info.is_windows:
        backend = WindowsDockBackend(timeout=timeout)
        detectors = {
            DetectionMethod.PRIMARY_MANAGEMENT_AGENT: backend.detect_management_agent,
            DetectionMethod.SECONDARY_MANAGEMENT_NAMESPACE: backend.detect_sysinv,
            DetectionMethod.USB_ENUMERATION: backend.detect_usb,
            DetectionMethod.THUNDERBOLT_ENUMERATION: backend.detect_thunderbolt,
        }
    elif info.is_linux:
        backend = LinuxDockBackend()
        detectors = {
            DetectionMethod.USB_ENUMERATION: backend.detect_usb,
            DetectionMethod.THUNDERBOLT_ENUMERATION: backend.detect_thunderbolt,
        }
    else:
        detectors = {}

    return [
        DetectionStrategy(method, detectors.get(method) or _unsupported(method, info.platform))
        for method in DetectionMethod
    ]


__all__ = [
    "CimQueryRunner",
    "LinuxDockBackend",
    "WindowsDockBackend",
    "build_default_strategies",
    "parse_csv_rows",
]

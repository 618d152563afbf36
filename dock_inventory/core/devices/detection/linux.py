"""
Linux dock detection backend.

There is no Dell management agent on Linux, so only the two enumeration
methods exist. Both read sysfs, a kernel interface that never touches the
hardware itself:

* ``/sys/bus/usb/devices/<bus>-<port>`` device nodes carry ``idVendor``,
  ``idProduct``, ``product``, ``serial`` and ``bcdDevice``. Interface nodes
  (``1-2:1.0``) are skipped, so composite docks appear once per hub.
* ``/sys/bus/thunderbolt/devices/<domain>-<route>`` carry ``vendor_name``,
  ``device_name``, ``unique_id`` and ``nvm_version``.
"""

import re
from pathlib import Path
from typing import Optional

from dock_inventory.core.logging_utils import get_module_logger

from ..catalog import identify_dock, normalize_product_id
from ..observation import Observation
from ..resolver import DetectionFailure
from ..types import DELL_VENDOR_ID, NOT_AVAILABLE, UNKNOWN, DetectionMethod

logger = get_module_logger("LinuxDockBackend")

USB_DEVICES_PATH = Path("/sys/bus/usb/devices")
THUNDERBOLT_DEVICES_PATH = Path("/sys/bus/thunderbolt/devices")


def _read_attr(device_dir: Path, name: str) -> Optional[str]:
    try:
        value = (device_dir / name).read_text(encoding="utf-8", errors="replace").strip()
    except OSError:
        return None
    return value or None


def format_bcd_device(value: Optional[str]) -> str:
    """Render a USB ``bcdDevice`` like ``0142`` as ``1.42``."""
    if not value or not re.fullmatch(r"[0-9A-Fa-f]{4}", value):
        return NOT_AVAILABLE
    return f"{int(value[:2], 16)}.{value[2:]}"


def _is_usb_device_node(name: str) -> bool:
    # Device nodes look like "1-2" or "1-2.3"; interfaces carry a colon, roots are "usbN"
    return "-" in name and ":" not in name


def _is_thunderbolt_device_node(name: str) -> bool:
    # "0-1", "0-301"; skip domains, the host router "0-0" and NVM/service nodes
    return bool(re.fullmatch(r"\d+-[0-9a-f]+", name)) and not name.endswith("-0")


class LinuxDockBackend:
    """Builds Observations from sysfs."""

    def __init__(
        self,
        usb_root: Path = USB_DEVICES_PATH,
        thunderbolt_root: Path = THUNDERBOLT_DEVICES_PATH,
    ):
        self._usb_root = usb_root
        self._thunderbolt_root = thunderbolt_root

    def detect_usb(self) -> list[Observation]:
        method = DetectionMethod.USB_ENUMERATION
        if not self._usb_root.is_dir():
            raise DetectionFailure(f"{self._usb_root} not present", method)

        observations = []
        for device_dir in sorted(self._usb_root.iterdir()):
            if not _is_usb_device_node(device_dir.name):
                continue
            vid = normalize_product_id(_read_attr(device_dir, "idVendor"))
            if vid is None or int(vid, 16) != DELL_VENDOR_ID:
                continue

            pid = normalize_product_id(_read_attr(device_dir, "idProduct"))
            spec = identify_dock(pid)
            product = _read_attr(device_dir, "product")
            observations.append(Observation(
                method=method,
                model=spec.model if spec else (product or UNKNOWN),
                serial_number=_read_attr(device_dir, "serial") or UNKNOWN,
                firmware_version=format_bcd_device(_read_attr(device_dir, "bcdDevice")),
                raw_device_id=device_dir.name,
                product_id=pid,
            ))

        logger.debug("sysfs USB scan found %d Dell device(s)", len(observations))
        return observations

    def detect_thunderbolt(self) -> list[Observation]:
        method = DetectionMethod.THUNDERBOLT_ENUMERATION
        if not self._thunderbolt_root.is_dir():
            raise DetectionFailure(f"{self._thunderbolt_root} not present", method)

        observations = []
        for device_dir in sorted(self._thunderbolt_root.iterdir()):
            if not _is_thunderbolt_device_node(device_dir.name):
                continue
            vendor = _read_attr(device_dir, "vendor_name")
            name = _read_attr(device_dir, "device_name")
            if not vendor or not name or "dell" not in vendor.lower():
                continue
            observations.append(Observation(
                method=method,
                model=name if name.lower().startswith("dell") else f"Dell {name}",
                serial_number=_read_attr(device_dir, "unique_id") or UNKNOWN,
                firmware_version=_read_attr(device_dir, "nvm_version") or NOT_AVAILABLE,
                raw_device_id=device_dir.name,
            ))

        logger.debug("sysfs Thunderbolt scan found %d Dell device(s)", len(observations))
        return observations


__all__ = ["LinuxDockBackend", "format_bcd_device"]

"""
Windows dock detection backend.

Four sources, one per DetectionMethod:

* Dell Command | Monitor (``root/dcim/sysman``), which reports docks as
  chassis of SMBIOS type 12 with real serial numbers and firmware.
* The Dell system-inventory namespace (``root/dell/sysinv``), populated by
  Dell's update tooling; lists dock firmware components by name.
* Plug and Play USB entities with Dell's vendor ID. Composite docks show up
  once per USB function and seldom expose a serial.
* Plug and Play Thunderbolt entities, the last resort for TB docks whose USB
  side is not enumerated yet.
"""

import re
from typing import Optional

from dock_inventory.core.logging_utils import get_module_logger

from ..catalog import GENERIC_DOCK_MODEL, identify_dock, normalize_product_id
from ..observation import Observation
from ..types import NOT_AVAILABLE, UNKNOWN, DetectionMethod
from .cim import DEFAULT_TIMEOUT, CimQueryRunner

logger = get_module_logger("WindowsDockBackend")

DCM_NAMESPACE = "root/dcim/sysman"
SYSINV_NAMESPACE = "root/dell/sysinv"
CIMV2_NAMESPACE = "root/cimv2"

# SMBIOS chassis type for docking stations
DOCKING_STATION_CHASSIS_TYPE = 12

_VID_PID = re.compile(r"VID_([0-9A-F]{4})&PID_([0-9A-F]{4})", re.IGNORECASE)


def parse_vid_pid(device_id: str) -> Optional[tuple[int, str]]:
    """Extract (vid, pid) from ``USB\\VID_413C&PID_B06E\\...``."""
    match = _VID_PID.search(device_id or "")
    if not match:
        return None
    return int(match.group(1), 16), normalize_product_id(match.group(2))


def serial_from_device_id(device_id: str) -> str:
    """Return the instance segment of a USB device path when it is a serial.

    Windows uses the device's iSerialNumber as the last path segment when the
    device reports one; otherwise it generates an ID such as ``5&1a2b3c&0&1``.
    """
    parts = (device_id or "").split("\\")
    if len(parts) < 3:
        return UNKNOWN
    instance = parts[-1].strip()
    if not instance or "&" in instance:
        return UNKNOWN
    return instance


def _chassis_types(value: str) -> set[int]:
    return {int(token) for token in re.findall(r"\d+", value or "")}


def _first(row: dict, *keys: str, default: str = "") -> str:
    for key in keys:
        value = (row.get(key) or "").strip()
        if value:
            return value
    return default


class WindowsDockBackend:
    """Builds Observations from CIM queries, one method per detection source."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, runner_factory=CimQueryRunner):
        self._timeout = timeout
        self._runner_factory = runner_factory

    def _runner(self, method: DetectionMethod) -> CimQueryRunner:
        return self._runner_factory(timeout=self._timeout, method=method)

    def detect_management_agent(self) -> list[Observation]:
        """Docks reported by Dell Command | Monitor."""
        method = DetectionMethod.PRIMARY_MANAGEMENT_AGENT
        rows = self._runner(method).query(
            DCM_NAMESPACE,
            "DCIM_Chassis",
            ["ElementName", "Model", "SerialNumber", "Tag", "Version", "Status", "ChassisTypes"],
            expressions={"ChassisTypes": "$_.ChassisTypes -join ' '"},
        )

        observations = []
        for row in rows:
            if DOCKING_STATION_CHASSIS_TYPE not in _chassis_types(row.get("ChassisTypes", "")):
                continue
            observations.append(Observation(
                method=method,
                model=_first(row, "Model", "ElementName", default=GENERIC_DOCK_MODEL),
                serial_number=_first(row, "SerialNumber", "Tag", default=UNKNOWN),
                firmware_version=_first(row, "Version", default=NOT_AVAILABLE),
                status=_first(row, "Status", default="OK"),
                raw_device_id=_first(row, "Tag"),
            ))

        logger.debug("Dell Command | Monitor reported %d dock chassis", len(observations))
        return observations

    def detect_sysinv(self) -> list[Observation]:
        """Dock firmware components from the Dell system-inventory namespace."""
        method = DetectionMethod.SECONDARY_MANAGEMENT_NAMESPACE
        rows = self._runner(method).query(
            SYSINV_NAMESPACE,
            "dell_softwareidentity",
            ["ElementName", "VersionString", "SerialNumber", "Status", "InstanceID"],
        )

        observations = [
            Observation(
                method=method,
                model=_first(row, "ElementName", default=GENERIC_DOCK_MODEL),
                serial_number=_first(row, "SerialNumber", default=UNKNOWN),
                firmware_version=_first(row, "VersionString", default=NOT_AVAILABLE),
                status=_first(row, "Status", default="OK"),
                raw_device_id=_first(row, "InstanceID"),
            )
            for row in rows
            if "dock" in _first(row, "ElementName").lower()
        ]
        logger.debug("sysinv namespace listed %d dock component(s)", len(observations))
        return observations

    def detect_usb(self) -> list[Observation]:
        """Dell USB devices that the catalog (or their name) identifies as docks."""
        method = DetectionMethod.USB_ENUMERATION
        rows = self._runner(method).query(
            CIMV2_NAMESPACE,
            "Win32_PnPEntity",
            ["Name", "DeviceID", "Status"],
            wql_filter=r"DeviceID LIKE 'USB\\VID_413C%'",
        )

        observations = []
        for row in rows:
            device_id = _first(row, "DeviceID")
            ids = parse_vid_pid(device_id)
            if ids is None:
                continue
            vid, pid = ids
            spec = identify_dock(pid, vid)
            observations.append(Observation(
                method=method,
                model=spec.model if spec else _first(row, "Name", default=GENERIC_DOCK_MODEL),
                serial_number=serial_from_device_id(device_id),
                status=_first(row, "Status", default="OK"),
                raw_device_id=device_id,
                product_id=pid,
            ))

        logger.debug("USB enumeration returned %d Dell device(s)", len(observations))
        return observations

    def detect_thunderbolt(self) -> list[Observation]:
        """Thunderbolt-attached docks known to Plug and Play."""
        method = DetectionMethod.THUNDERBOLT_ENUMERATION
        rows = self._runner(method).query(
            CIMV2_NAMESPACE,
            "Win32_PnPEntity",
            ["Name", "DeviceID", "Status"],
            wql_filter="DeviceID LIKE 'THUNDERBOLT%' OR Name LIKE '%Thunderbolt%Dock%'",
        )

        observations = [
            Observation(
                method=method,
                model=_first(row, "Name", default=GENERIC_DOCK_MODEL),
                status=_first(row, "Status", default="OK"),
                raw_device_id=_first(row, "DeviceID"),
            )
            for row in rows
        ]
        logger.debug("Thunderbolt enumeration returned %d device(s)", len(observations))
        return observations


__all__ = [
    "WindowsDockBackend",
    "parse_vid_pid",
    "serial_from_device_id",
]

"""
Persistence of detection results for Intune and other readers.

Intune detection/remediation scripts and inventory reports read a flat set of
values: ``DockCount``, ``DetectionMethod``, ``LastScan`` and one group of
``Dock<n>_*`` values per dock. On Windows they live under a registry key;
elsewhere in a ``key = value`` state file.
"""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

from dock_inventory.core.config_manager import ConfigManager
from dock_inventory.core.logging_utils import get_module_logger

from .observation import Inventory

logger = get_module_logger("ResultStore")

if sys.platform == "win32":
    import winreg
    WINREG_AVAILABLE = True
else:
    winreg = None
    WINREG_AVAILABLE = False

StoreValue = Union[int, str]


class StoreError(Exception):
    """Detection results could not be persisted."""


def inventory_values(inventory: Inventory) -> Dict[str, StoreValue]:
    """Flatten an inventory into the values written by every store."""
    values: Dict[str, StoreValue] = {
        "DockCount": inventory.dock_count,
        "DetectionMethod": inventory.method.value if inventory.method else "None",
        "LastScan": inventory.scanned_at.isoformat(timespec="seconds"),
    }
    for number, entry in enumerate(inventory.entries, start=1):
        values[f"Dock{number}_Model"] = entry.model
        values[f"Dock{number}_SerialNumber"] = entry.serial_number
        values[f"Dock{number}_FirmwareVersion"] = entry.firmware_version
        values[f"Dock{number}_Status"] = entry.status
    return values


def _is_stale_dock_value(name: str, dock_count: int) -> bool:
    if not name.startswith("Dock") or "_" not in name:
        return False
    number = name[4:].split("_", 1)[0]
    return number.isdigit() and int(number) > dock_count


class ResultStore(Protocol):
    def write_inventory(self, inventory: Inventory) -> None: ...

    def read_values(self) -> Dict[str, StoreValue]: ...


class FileStore:
    """Stores results as ``key = value`` lines, replaced atomically."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read_values(self) -> Dict[str, StoreValue]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                values: Dict[str, StoreValue] = dict(ConfigManager.parse_lines(fh))
        except OSError as e:
            raise StoreError(f"Cannot read {self.path}: {e}") from e
        if "DockCount" in values:
            values["DockCount"] = int(values["DockCount"])
        return values

    def write_inventory(self, inventory: Inventory) -> None:
        values = inventory_values(inventory)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write("# Written by dock-inventory; do not edit\n")
                    for key, value in values.items():
                        fh.write(f"{key} = {value}\n")
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StoreError(f"Cannot write {self.path}: {e}") from e
        logger.info("Wrote %d dock(s) to %s", inventory.dock_count, self.path)


_HIVES = {
    "HKLM": "HKEY_LOCAL_MACHINE",
    "HKEY_LOCAL_MACHINE": "HKEY_LOCAL_MACHINE",
    "HKCU": "HKEY_CURRENT_USER",
    "HKEY_CURRENT_USER": "HKEY_CURRENT_USER",
}


def split_registry_path(registry_path: str) -> tuple[str, str]:
    """Split ``HKLM\\SOFTWARE\\Vendor`` into (``HKEY_LOCAL_MACHINE``, ``SOFTWARE\\Vendor``)."""
    hive, _, subkey = registry_path.replace("/", "\\").partition("\\")
    hive_name = _HIVES.get(hive.upper().rstrip(":"))
    if hive_name is None or not subkey.strip("\\"):
        raise StoreError(f"Unsupported registry path: {registry_path!r}")
    return hive_name, subkey.strip("\\")


class RegistryStore:
    """Stores results as values under a registry key (64-bit view)."""

    def __init__(self, registry_path: str):
        self.registry_path = registry_path
        self._hive_name, self._subkey = split_registry_path(registry_path)

    def _open(self, create: bool):
        if not WINREG_AVAILABLE:
            raise StoreError("The Windows registry is not available on this platform")
        hive = getattr(winreg, self._hive_name)
        access = winreg.KEY_WOW64_64KEY | (winreg.KEY_ALL_ACCESS if create else winreg.KEY_READ)
        try:
            if create:
                return winreg.CreateKeyEx(hive, self._subkey, 0, access)
            return winreg.OpenKey(hive, self._subkey, 0, access)
        except OSError as e:
            raise StoreError(f"Cannot open {self.registry_path}: {e}") from e

    def read_values(self) -> Dict[str, StoreValue]:
        values: Dict[str, StoreValue] = {}
        try:
            key = self._open(create=False)
        except StoreError:
            return values
        with key:
            index = 0
            while True:
                try:
                    name, data, _kind = winreg.EnumValue(key, index)
                except OSError:
                    break
                values[name] = data
                index += 1
        return values

    def write_inventory(self, inventory: Inventory) -> None:
        values = inventory_values(inventory)
        stale = [name for name in self.read_values() if _is_stale_dock_value(name, inventory.dock_count)]

        with self._open(create=True) as key:
            try:
                for name, value in values.items():
                    if isinstance(value, int):
                        winreg.SetValueEx(key, name, 0, winreg.REG_DWORD, value)
                    else:
                        winreg.SetValueEx(key, name, 0, winreg.REG_SZ, value)
                for name in stale:
                    winreg.DeleteValue(key, name)
            except OSError as e:
                raise StoreError(f"Cannot write {self.registry_path}: {e}") from e

        logger.info("Wrote %d dock(s) to %s", inventory.dock_count, self.registry_path)


def create_store(kind: str, *, registry_path: str, state_file: Path) -> Optional[ResultStore]:
    """Build the store named by ``kind`` ('registry', 'file' or 'none')."""
    if kind == "none":
        return None
    if kind == "registry":
        return RegistryStore(registry_path)
    if kind == "file":
        return FileStore(state_file)
    raise StoreError(f"Unknown store kind: {kind!r}")


__all__ = [
    "FileStore",
    "RegistryStore",
    "ResultStore",
    "StoreError",
    "create_store",
    "inventory_values",
    "split_registry_path",
]

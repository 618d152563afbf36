"""Typed settings built from ``config.txt``."""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from .config_manager import ConfigManager, get_config_manager
from .logging_utils import get_module_logger
from .paths import CONFIG_PATH, DEFAULT_STATE_FILE

logger = get_module_logger("Settings")

DEFAULT_REGISTRY_PATH = r"HKLM\SOFTWARE\DockInventory"
DEFAULT_DCM_INSTALLER_URL = (
    "https://dl.dell.com/FOLDER11914075M/1/"
    "Dell-Command-Monitor_C6D8Y_WIN64_10.10.0.151_A00.EXE"
)
DEFAULT_DCM_MIN_VERSION = "10.0.0"

OUTPUT_FORMATS = ("json", "text")
STORE_KINDS = ("registry", "file", "none")


def _default_store() -> str:
    return "registry" if sys.platform == "win32" else "file"


@dataclass(frozen=True)
class DockInventorySettings:
    log_level: str = "info"
    output_format: str = "json"
    store: str = field(default_factory=_default_store)
    registry_path: str = DEFAULT_REGISTRY_PATH
    state_file: Path = DEFAULT_STATE_FILE
    model_filter_enabled: bool = True
    model_patterns: tuple[str, ...] = ()
    query_timeout: float = 30.0
    dcm_installer_url: str = DEFAULT_DCM_INSTALLER_URL
    dcm_installer_sha256: str = ""
    dcm_min_version: str = DEFAULT_DCM_MIN_VERSION
    pi_use_sudo: bool = True
    pi_min_boot_mb: int = 512

    def with_overrides(self, **changes) -> "DockInventorySettings":
        """Return a copy with the non-None ``changes`` applied (CLI flags)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _valid_model_patterns(patterns: list[str]) -> tuple[str, ...]:
    # An empty tuple selects the built-in dock patterns.
    for pattern in patterns:
        try:
            re.compile(pattern)
        except re.error as e:
            logger.warning("Invalid model pattern %r (%s), using built-in patterns", pattern, e)
            return ()
    return tuple(patterns)


def load_settings(
    config_path: Optional[Path] = None,
    manager: Optional[ConfigManager] = None,
) -> DockInventorySettings:
    """Read ``config_path`` (the project config.txt by default) into settings."""
    manager = manager or get_config_manager()
    path = config_path or CONFIG_PATH
    config = manager.read_config(path)
    defaults = DockInventorySettings()

    output_format = manager.get_str(config, "output_format", defaults.output_format).lower()
    if output_format not in OUTPUT_FORMATS:
        logger.warning("Unknown output_format %r, using %s", output_format, defaults.output_format)
        output_format = defaults.output_format

    store = manager.get_str(config, "store", defaults.store).lower()
    if store not in STORE_KINDS:
        logger.warning("Unknown store %r, using %s", store, defaults.store)
        store = defaults.store

    state_file = config.get("state_file")

    return DockInventorySettings(
        log_level=manager.get_str(config, "log_level", defaults.log_level).lower(),
        output_format=output_format,
        store=store,
        registry_path=manager.get_str(config, "registry_path", defaults.registry_path),
        state_file=Path(state_file).expanduser() if state_file else defaults.state_file,
        model_filter_enabled=manager.get_bool(config, "model_filter_enabled", defaults.model_filter_enabled),
        model_patterns=_valid_model_patterns(manager.get_list(config, "model_patterns")),
        query_timeout=manager.get_float(config, "query_timeout", defaults.query_timeout),
        dcm_installer_url=manager.get_str(config, "dcm_installer_url", defaults.dcm_installer_url),
        dcm_installer_sha256=manager.get_str(config, "dcm_installer_sha256", "").lower(),
        dcm_min_version=manager.get_str(config, "dcm_min_version", defaults.dcm_min_version),
        pi_use_sudo=manager.get_bool(config, "pi_use_sudo", defaults.pi_use_sudo),
        pi_min_boot_mb=manager.get_int(config, "pi_min_boot_mb", defaults.pi_min_boot_mb),
    )


__all__ = [
    "DEFAULT_REGISTRY_PATH",
    "DockInventorySettings",
    "OUTPUT_FORMATS",
    "STORE_KINDS",
    "load_settings",
]

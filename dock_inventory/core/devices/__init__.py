"""
Dock detection and inventory resolution.

Public API:
    DeviceResolver, deduplicate  - resolution core
    Observation, InventoryEntry  - records
    build_default_strategies     - detection methods for this platform
    create_store                 - registry / file persistence
"""

from .types import (
    NOT_AVAILABLE,
    UNKNOWN,
    AttemptOutcome,
    DetectionMethod,
    is_known_serial,
)
from .observation import Inventory, InventoryEntry, MethodAttempt, Observation
from .catalog import (
    DOCK_CATALOG,
    DockSpec,
    build_model_filter,
    identify_dock,
    is_dock_model,
)
from .resolver import (
    DetectionFailure,
    DetectionStrategy,
    DeviceResolver,
    deduplicate,
    is_multi_function_interface,
)
from .detection import build_default_strategies
from .store import FileStore, RegistryStore, StoreError, create_store
from .report import render, render_json, render_text

__all__ = [
    "AttemptOutcome",
    "DOCK_CATALOG",
    "DetectionFailure",
    "DetectionMethod",
    "DetectionStrategy",
    "DeviceResolver",
    "DockSpec",
    "FileStore",
    "Inventory",
    "InventoryEntry",
    "MethodAttempt",
    "NOT_AVAILABLE",
    "Observation",
    "RegistryStore",
    "StoreError",
    "UNKNOWN",
    "build_default_strategies",
    "build_model_filter",
    "create_store",
    "deduplicate",
    "identify_dock",
    "is_dock_model",
    "is_known_serial",
    "is_multi_function_interface",
    "render",
    "render_json",
    "render_text",
]
